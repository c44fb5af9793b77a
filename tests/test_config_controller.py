"""Tests for config loading, legacy keys and target parsing."""

from __future__ import annotations

import logging
from pathlib import Path

import yaml

from config.controller import ConfigController
from core.target_models import AuthKind


def _reset_singletons() -> None:
    ConfigController._instance = None


def _write_config(tmp_path: Path, default: str, override: str | None = None) -> None:
    config_dir = tmp_path / "config"
    config_dir.mkdir(parents=True, exist_ok=True)
    (config_dir / "default.yaml").write_text(default, encoding="utf-8")
    if override is not None:
        (config_dir / "override.yaml").write_text(override, encoding="utf-8")


def test_override_is_deep_merged(tmp_path: Path, monkeypatch) -> None:
    _write_config(
        tmp_path,
        "health:\n  check_interval_s: 30\n  quick_timeout_s: 5\n",
        "health:\n  check_interval_s: 10\n",
    )
    monkeypatch.chdir(tmp_path)
    _reset_singletons()

    health = ConfigController.get_instance().get_config()["health"]

    assert health["check_interval_s"] == 10.0
    assert health["quick_timeout_s"] == 5.0
    _reset_singletons()


def test_legacy_keys_are_mapped(tmp_path: Path, monkeypatch) -> None:
    _write_config(
        tmp_path,
        "\n".join(
            [
                "health_check_interval: 15",
                "ssh_connect_timeout: 4",
                "connection_mode: new_terminal",
                "servers:",
                "  - name: web",
                "    host: 10.0.0.5",
                "    user: deploy",
            ]
        ),
    )
    monkeypatch.chdir(tmp_path)
    _reset_singletons()

    config = ConfigController.get_instance().get_config()

    assert config["health"]["check_interval_s"] == 15.0
    assert config["ssh"]["connect_timeout"] == 4
    assert config["ssh"]["pause_after_direct"] is True
    assert config["connection_mode"] == "new-window"
    assert config["targets"][0]["name"] == "web"
    _reset_singletons()


def test_unknown_connection_mode_falls_back_to_auto(tmp_path: Path, monkeypatch, caplog) -> None:
    _write_config(tmp_path, "connection_mode: teleport\n")
    monkeypatch.chdir(tmp_path)
    _reset_singletons()

    with caplog.at_level(logging.WARNING, logger="config.controller"):
        config = ConfigController.get_instance().get_config()

    assert config["connection_mode"] == "auto"
    assert "teleport" in caplog.text
    _reset_singletons()


def test_get_targets_skips_invalid_entries(tmp_path: Path, monkeypatch, caplog) -> None:
    _write_config(
        tmp_path,
        "\n".join(
            [
                "targets:",
                "  - name: web",
                "    host: 10.0.0.5",
                "    user: deploy",
                "    auth:",
                "      type: key",
                "      key_path: ~/.ssh/id_ed25519",
                "  - name: broken-port",
                "    host: 10.0.0.6",
                "    port: 70000",
                "  - name: no-host",
                "  - just-a-string",
                "  - name: bastion",
                "    host: bastion.example.net",
                "    port: 2222",
                "    user: ops",
                "    auth: password",
            ]
        ),
    )
    monkeypatch.chdir(tmp_path)
    _reset_singletons()

    with caplog.at_level(logging.WARNING, logger="config.controller"):
        targets = ConfigController.get_instance().get_targets()

    assert [target.name for target in targets] == ["web", "bastion"]
    assert targets[0].auth.kind is AuthKind.KEY
    assert targets[1].port == 2222
    assert targets[1].auth.kind is AuthKind.PASSWORD
    assert caplog.text.count("Skipping target") == 3
    _reset_singletons()


def test_save_targets_archives_previous_override(tmp_path: Path, monkeypatch) -> None:
    _write_config(tmp_path, "targets: []\n", "ui:\n  tick_rate_s: 0.5\n")
    monkeypatch.chdir(tmp_path)
    _reset_singletons()
    controller = ConfigController.get_instance()

    from core.target_models import Target

    controller.save_targets([Target(name="web", host="10.0.0.5", user="deploy")])

    assert (tmp_path / "config" / "override_0001.yaml").exists()
    controller.load_config()
    assert [target.name for target in controller.get_targets()] == ["web"]
    assert controller.get_config()["ui"]["tick_rate_s"] == 0.5
    _reset_singletons()


def test_generated_target_ids_survive_reload(tmp_path: Path, monkeypatch) -> None:
    _write_config(
        tmp_path,
        "\n".join(
            [
                "targets:",
                "  - name: web",
                "    host: 10.0.0.5",
                "  - name: db",
                "    host: 10.0.0.6",
                "    id: db-primary",
            ]
        ),
    )
    monkeypatch.chdir(tmp_path)
    _reset_singletons()

    first = ConfigController.get_instance().get_targets()
    _reset_singletons()
    second = ConfigController.get_instance().get_targets()

    assert [target.id for target in first] == [target.id for target in second]
    assert second[1].id == "db-primary"
    override = yaml.safe_load((tmp_path / "config" / "override.yaml").read_text(encoding="utf-8"))
    assert [entry["id"] for entry in override["targets"]] == [first[0].id, "db-primary"]
    assert not (tmp_path / "config" / "override_0001.yaml").exists()
    _reset_singletons()


def test_targets_with_ids_are_not_rewritten(tmp_path: Path, monkeypatch) -> None:
    _write_config(tmp_path, "targets:\n  - name: web\n    host: 10.0.0.5\n    id: web-1\n")
    monkeypatch.chdir(tmp_path)
    _reset_singletons()

    ConfigController.get_instance().get_targets()

    assert not (tmp_path / "config" / "override.yaml").exists()
    _reset_singletons()
