"""Configuration package: YAML settings and target definitions."""

__all__ = ["ConfigController", "probe"]


def __getattr__(name: str):
    if name == "ConfigController":
        from config.controller import ConfigController

        return ConfigController
    if name == "probe":
        from config.diagnostics import probe

        return probe
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
