"""Configuration controller for YAML-based settings."""

from __future__ import annotations

from dataclasses import dataclass
import logging
from pathlib import Path
from typing import Any

import yaml

from core.target_models import ConnectionMode, Target


LOGGER = logging.getLogger(__name__)

_LEGACY_SSH_KEYS = {
    "ssh_binary": "binary",
    "ssh_server_alive_interval": "server_alive_interval",
    "ssh_server_alive_count_max": "server_alive_count_max",
    "ssh_connect_timeout": "connect_timeout",
}


@dataclass(frozen=True)
class ConfigPaths:
    """Filesystem paths for configuration files."""

    config_dir: Path
    config_file: Path
    override_file: Path


class ConfigController:
    """Singleton controller for loading and updating configuration."""

    _instance: "ConfigController | None" = None

    def __init__(self, config_file: str = "default.yaml", config_dir: Path | None = None) -> None:
        if ConfigController._instance is not None:
            raise RuntimeError("You cannot create another ConfigController class")

        config_dir = config_dir if config_dir is not None else Path("config")
        self.paths = ConfigPaths(
            config_dir=config_dir,
            config_file=config_dir / config_file,
            override_file=config_dir / "override.yaml",
        )
        self.config: dict[str, Any] = {}
        self.load_config()
        ConfigController._instance = self

    @classmethod
    def get_instance(cls) -> "ConfigController":
        """Return the singleton instance of the controller."""

        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    def load_config(self) -> None:
        """Load configuration from default and override YAML files."""

        with self.paths.config_file.open("r", encoding="utf-8") as file:
            config = yaml.safe_load(file) or {}

        if self.paths.override_file.exists():
            with self.paths.override_file.open("r", encoding="utf-8") as file:
                override_config = yaml.safe_load(file) or {}
            if override_config:
                config = self._deep_merge(config, override_config)

        self.config = self._normalize_legacy_config(config)

    def save_config(self, config: dict[str, Any]) -> None:
        """Persist configuration to override.yaml, archiving previous overrides."""

        if self.paths.override_file.exists():
            archive_index = 1
            archive_file = self._archive_path(archive_index)
            while archive_file.exists():
                archive_index += 1
                archive_file = self._archive_path(archive_index)
            self.paths.override_file.rename(archive_file)

        with self.paths.override_file.open("w", encoding="utf-8") as file:
            yaml.safe_dump(config, file, sort_keys=False)

    def get_config(self) -> dict[str, Any]:
        """Return the currently loaded configuration."""

        return dict(self.config)

    def set_config(self, config: dict[str, Any]) -> None:
        """Set and persist configuration values."""

        self.config = self._normalize_legacy_config(dict(config))
        self.save_config(self.config)

    def get_targets(self) -> list[Target]:
        """Parse configured targets, skipping malformed entries.

        Entries without an ``id`` get one generated here, and the ids are
        written back to the override file so they stay stable across runs.
        """

        targets: list[Target] = []
        seen: set[str] = set()
        raw_entries = list(self.config.get("targets") or [])
        generated = 0
        for index, entry in enumerate(raw_entries):
            if not isinstance(entry, dict):
                LOGGER.warning("Skipping target #%d: expected a mapping, got %r", index, entry)
                continue
            try:
                target = Target.from_dict(entry)
            except (TypeError, ValueError) as exc:
                LOGGER.warning("Skipping target #%d (%s): %s", index, entry.get("name"), exc)
                continue
            if target.id in seen:
                LOGGER.warning("Skipping target %s: duplicate id %s", target.name, target.id)
                continue
            if not entry.get("id"):
                raw_entries[index] = {"id": target.id, **entry}
                generated += 1
            seen.add(target.id)
            targets.append(target)

        if generated:
            self._persist_generated_ids(raw_entries, generated)
        return targets

    def _persist_generated_ids(self, raw_entries: list[Any], generated: int) -> None:
        config = dict(self.config)
        config["targets"] = raw_entries
        try:
            self.set_config(config)
        except OSError as exc:
            LOGGER.warning("Could not save %d generated target id(s): %s", generated, exc)
            return
        LOGGER.info("Saved %d generated target id(s) to %s", generated, self.paths.override_file)

    def save_targets(self, targets: list[Target]) -> None:
        """Persist the given targets into the override file."""

        config = dict(self.config)
        config["targets"] = [target.to_dict() for target in targets]
        self.set_config(config)

    def _archive_path(self, index: int) -> Path:
        """Return the archive path for a given override index."""

        filename = f"override_{index:04d}.yaml"
        return self.paths.config_dir / filename

    def _deep_merge(self, base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
        """Deep merge dictionaries, overriding base values with override values."""

        merged = dict(base)
        for key, value in override.items():
            if (
                key in merged
                and isinstance(merged[key], dict)
                and isinstance(value, dict)
            ):
                merged[key] = self._deep_merge(merged[key], value)
            else:
                merged[key] = value
        return merged

    def _normalize_legacy_config(self, config: dict[str, Any]) -> dict[str, Any]:
        """Normalize config while preserving backwards-compatible flat keys."""

        normalized = dict(config)

        if "targets" not in normalized and "servers" in normalized:
            normalized["targets"] = normalized.pop("servers")
        normalized["targets"] = list(normalized.get("targets") or [])

        health_cfg = dict(normalized.get("health") or {})
        health_cfg["check_interval_s"] = float(
            health_cfg.get("check_interval_s", normalized.get("health_check_interval", 30.0))
        )
        health_cfg["quick_timeout_s"] = float(health_cfg.get("quick_timeout_s", 5.0))
        health_cfg["verify_timeout_s"] = float(health_cfg.get("verify_timeout_s", 10.0))
        health_cfg["max_parallel_probes"] = int(health_cfg.get("max_parallel_probes", 8))
        health_cfg["stop_grace_s"] = float(health_cfg.get("stop_grace_s", 1.0))
        normalized["health"] = health_cfg

        ssh_cfg = dict(normalized.get("ssh") or {})
        for legacy_key, key in _LEGACY_SSH_KEYS.items():
            if legacy_key in normalized and key not in ssh_cfg:
                ssh_cfg[key] = normalized[legacy_key]
        ssh_cfg["binary"] = str(ssh_cfg.get("binary", "ssh"))
        ssh_cfg["server_alive_interval"] = int(ssh_cfg.get("server_alive_interval", 60))
        ssh_cfg["server_alive_count_max"] = int(ssh_cfg.get("server_alive_count_max", 3))
        ssh_cfg["connect_timeout"] = int(ssh_cfg.get("connect_timeout", 10))
        ssh_cfg["pause_after_direct"] = bool(ssh_cfg.get("pause_after_direct", True))
        normalized["ssh"] = ssh_cfg

        ui_cfg = dict(normalized.get("ui") or {})
        ui_cfg["tick_rate_s"] = float(ui_cfg.get("tick_rate_s", 0.25))
        ui_cfg["notification_ttl_s"] = float(ui_cfg.get("notification_ttl_s", 4.0))
        ui_cfg["history_limit"] = int(ui_cfg.get("history_limit", 50))
        normalized["ui"] = ui_cfg

        try:
            mode = ConnectionMode.parse(normalized.get("connection_mode"))
        except ValueError:
            LOGGER.warning(
                "Unknown connection_mode %r; falling back to auto",
                normalized.get("connection_mode"),
            )
            mode = ConnectionMode.AUTO
        normalized["connection_mode"] = mode.value

        return normalized
