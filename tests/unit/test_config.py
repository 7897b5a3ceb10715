"""Unit tests for configuration loading."""

from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from perfcycle.config import (
    LoggingConfig,
    PerfcycleConfig,
    SchedulerConfig,
    WorkflowConfig,
    load_config,
)


class TestDefaults:
    """Test default configuration values."""

    def test_default_sections(self) -> None:
        config = PerfcycleConfig()

        assert config.database.url.startswith("postgresql+asyncpg://")
        assert config.logging.level == "INFO"
        assert config.logging.format == "json"
        assert config.scheduler.enabled is True
        assert config.notifications.webhooks == {}
        assert config.web.port == 8000

    def test_calibration_gating_defaults_off(self) -> None:
        workflow = WorkflowConfig()

        assert workflow.calibration_requires_self_reviews is False
        assert workflow.calibration_requires_peer_reviews is False
        assert workflow.completed_window_hours == 24


class TestValidation:
    """Test field validators."""

    def test_log_level_normalised(self) -> None:
        assert LoggingConfig(level="debug").level == "DEBUG"

    def test_invalid_log_level(self) -> None:
        with pytest.raises(ValidationError):
            LoggingConfig(level="verbose")

    def test_invalid_log_format(self) -> None:
        with pytest.raises(ValidationError):
            LoggingConfig(format="xml")

    @pytest.mark.parametrize("value", ["9:00", "24:00", "09:60", "noon"])
    def test_invalid_sweep_time(self, value: str) -> None:
        with pytest.raises(ValidationError):
            SchedulerConfig(phase_check_time=value)

    def test_invalid_weekday(self) -> None:
        with pytest.raises(ValidationError):
            SchedulerConfig(weekly_digest_weekday=7)


class TestLoadConfig:
    """Test TOML loading and environment overrides."""

    def test_load_from_toml(self, tmp_path: Path) -> None:
        config_file = tmp_path / "perfcycle.toml"
        config_file.write_text(
            "\n".join(
                [
                    "[database]",
                    'url = "sqlite+aiosqlite:///perfcycle.db"',
                    "",
                    "[scheduler]",
                    'reminder_check_time = "11:30"',
                    "",
                    "[notifications.webhooks]",
                    'email = "http://hooks.example.com/email"',
                    "",
                    "[workflow]",
                    "calibration_requires_self_reviews = true",
                ]
            )
        )

        config = load_config(config_file)

        assert config.database.url == "sqlite+aiosqlite:///perfcycle.db"
        assert config.scheduler.reminder_check_time == "11:30"
        assert config.notifications.webhooks == {"email": "http://hooks.example.com/email"}
        assert config.workflow.calibration_requires_self_reviews is True

    def test_missing_explicit_file(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "missing.toml")

    def test_invalid_values_raise_value_error(self, tmp_path: Path) -> None:
        config_file = tmp_path / "bad.toml"
        config_file.write_text('[logging]\nlevel = "chatty"\n')

        with pytest.raises(ValueError, match="Invalid configuration"):
            load_config(config_file)

    def test_unknown_keys_rejected(self, tmp_path: Path) -> None:
        config_file = tmp_path / "bad.toml"
        config_file.write_text("[web]\nworkers = 4\n")

        with pytest.raises(ValueError):
            load_config(config_file)

    def test_no_file_uses_defaults(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.chdir(tmp_path)
        monkeypatch.setenv("HOME", str(tmp_path))

        config = load_config()

        assert config.scheduler.phase_check_time == "09:00"

    def test_environment_override(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.chdir(tmp_path)
        monkeypatch.setenv("HOME", str(tmp_path))
        monkeypatch.setenv("PERFCYCLE_SCHEDULER__ENABLED", "false")

        config = load_config()

        assert config.scheduler.enabled is False
