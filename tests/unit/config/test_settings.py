"""Unit tests for Settings class and get_settings function."""

from pathlib import Path

import pytest

from parley.config import get_settings, reload_settings
from parley.config.settings import Settings, set_toml_config


@pytest.fixture(autouse=True)
def reset_toml_config():
    set_toml_config({})
    yield
    set_toml_config({})


class TestSettings:
    """Tests for Settings model."""

    def test_default_values(self) -> None:
        """Settings has sensible defaults."""
        settings = Settings()
        assert settings.app_name == "parley"
        assert settings.debug is False
        assert settings.log_level == "INFO"

    def test_pipeline_defaults(self) -> None:
        """Pipeline configuration has defaults."""
        settings = Settings()
        assert settings.pipeline.preparation.max_tool_steps == 10
        assert settings.pipeline.pre_extraction.enabled is True
        assert settings.pipeline.routing.switch_threshold == 20
        assert settings.pipeline.routing.default_route is None
        assert settings.pipeline.generation.fallback_message is None

    def test_observability_defaults(self) -> None:
        """Observability configuration has defaults."""
        settings = Settings()
        assert settings.observability.logging.level == "INFO"
        assert settings.observability.logging.redact_pii is True

    def test_env_overrides_nested_values(self, env_override) -> None:
        """PARLEY_* variables with __ reach nested sections."""
        with env_override({
            "PARLEY_DEBUG": "true",
            "PARLEY_PIPELINE__ROUTING__SWITCH_THRESHOLD": "50",
        }):
            settings = Settings()

        assert settings.debug is True
        assert settings.pipeline.routing.switch_threshold == 50


class TestGetSettings:
    """Tests for get_settings function."""

    def test_reads_toml_files(
        self,
        test_config_dir: Path,
        mock_toml_files,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        """get_settings loads values from the TOML files."""
        mock_toml_files({
            "default.toml": (
                "app_name = 'from-toml'\n"
                "[pipeline.generation]\n"
                "fallback_message = 'Sorry, something went wrong.'"
            ),
        })
        monkeypatch.setenv("PARLEY_CONFIG_DIR", str(test_config_dir))
        monkeypatch.setenv("PARLEY_ENV", "test")

        settings = get_settings()

        assert settings.app_name == "from-toml"
        assert settings.pipeline.generation.fallback_message == "Sorry, something went wrong."

    def test_is_cached(
        self,
        test_config_dir: Path,
        mock_toml_files,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        """Repeated calls return the same instance."""
        mock_toml_files({"default.toml": "app_name = 'cached'"})
        monkeypatch.setenv("PARLEY_CONFIG_DIR", str(test_config_dir))

        assert get_settings() is get_settings()

    def test_reload_picks_up_changes(
        self,
        test_config_dir: Path,
        mock_toml_files,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        """reload_settings re-reads the files."""
        mock_toml_files({"default.toml": "app_name = 'first'"})
        monkeypatch.setenv("PARLEY_CONFIG_DIR", str(test_config_dir))
        monkeypatch.setenv("PARLEY_ENV", "test")
        assert get_settings().app_name == "first"

        mock_toml_files({"default.toml": "app_name = 'second'"})
        assert reload_settings().app_name == "second"

    def test_env_beats_toml(
        self,
        test_config_dir: Path,
        mock_toml_files,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        """Environment variables take precedence over TOML values."""
        mock_toml_files({"default.toml": "log_level = 'WARNING'"})
        monkeypatch.setenv("PARLEY_CONFIG_DIR", str(test_config_dir))
        monkeypatch.setenv("PARLEY_LOG_LEVEL", "DEBUG")

        assert get_settings().log_level == "DEBUG"
