"""Tests for configuration loading."""

from pathlib import Path

import pytest

from linz.config import DEFAULT_MODEL, ConsolidationConfig, config_from_env
from linz.errors import ConfigurationError


class TestConsolidationConfig:
    """Tests for ConsolidationConfig defaults and validation."""

    def test_defaults(self):
        """Defaults match the hourly 6h-window job."""
        config = ConsolidationConfig()
        assert config.window_hours == 6
        assert config.batch_limit == 500
        assert config.retention_hours == 6
        assert config.default_confidence == 0.9
        assert config.model == DEFAULT_MODEL
        assert config.enabled is False
        assert config.interval_minutes == 60
        assert config.db_path is not None
        assert config.log_dir is not None

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"window_hours": 0},
            {"batch_limit": 0},
            {"retention_hours": -1},
            {"request_timeout": 0},
            {"default_confidence": 1.5},
            {"interval_minutes": 0},
        ],
    )
    def test_invalid_values_rejected(self, kwargs):
        """Out-of-range values raise ValueError."""
        with pytest.raises(ValueError):
            ConsolidationConfig(**kwargs)

    def test_require_api_key(self):
        """A missing key raises ConfigurationError."""
        with pytest.raises(ConfigurationError):
            ConsolidationConfig().require_api_key()
        assert ConsolidationConfig(api_key="gsk-1").require_api_key() == "gsk-1"


class TestConfigFromEnv:
    """Tests for config_from_env."""

    def test_empty_environment_uses_defaults(self):
        """No variables means defaults."""
        config = config_from_env({})
        assert config.api_key is None
        assert config.window_hours == 6

    def test_reads_variables(self, tmp_path: Path):
        """Every supported variable is read."""
        config = config_from_env(
            {
                "LINZ_DB_PATH": str(tmp_path / "x.db"),
                "LINZ_LOG_DIR": str(tmp_path / "logs"),
                "LINZ_WINDOW_HOURS": "12",
                "LINZ_BATCH_LIMIT": "50",
                "LINZ_RETENTION_HOURS": "24",
                "LINZ_CONSOLIDATION_MODEL": "custom-model",
                "GROQ_API_KEY": "gsk-test",
                "LINZ_REQUEST_TIMEOUT": "5",
                "ENABLE_LINZ_CONSOLIDATION_JOB": "TRUE",
                "LINZ_INTERVAL_MINUTES": "15",
            }
        )
        assert config.db_path == tmp_path / "x.db"
        assert config.log_dir == tmp_path / "logs"
        assert config.window_hours == 12
        assert config.batch_limit == 50
        assert config.retention_hours == 24
        assert config.model == "custom-model"
        assert config.api_key == "gsk-test"
        assert config.request_timeout == 5
        assert config.enabled is True
        assert config.interval_minutes == 15

    def test_enable_flag_false_values(self):
        """Anything but a truthy word leaves the job disabled."""
        assert config_from_env({"ENABLE_LINZ_CONSOLIDATION_JOB": "no"}).enabled is False

    def test_non_numeric_value(self):
        """Unparseable numbers raise ConfigurationError."""
        with pytest.raises(ConfigurationError, match="LINZ_WINDOW_HOURS"):
            config_from_env({"LINZ_WINDOW_HOURS": "six"})

    def test_out_of_range_value(self):
        """Invalid ranges from the environment raise ConfigurationError."""
        with pytest.raises(ConfigurationError):
            config_from_env({"LINZ_BATCH_LIMIT": "0"})
