"""Tests for the pydantic configuration models."""

import pytest
from pydantic import ValidationError

from collab.config import get_config, reset_config
from collab.config.models import AppConfig, ClientConfig, CORSConfig, LoggingConfig, RelayConfig, SecurityConfig


class TestRelayConfig:
    """Test relay limits and timers."""

    def test_defaults(self):
        config = RelayConfig()

        assert config.idle_timeout_seconds == 60.0
        assert config.sweep_interval_seconds == 5.0
        assert config.max_message_size == 1024 * 1024
        assert config.outbox_size == 256
        assert config.max_capacity_violations == 5

    def test_reads_environment(self, monkeypatch):
        monkeypatch.setenv("RELAY_IDLE_TIMEOUT_SECONDS", "120")
        monkeypatch.setenv("RELAY_OUTBOX_SIZE", "32")

        config = RelayConfig()

        assert config.idle_timeout_seconds == 120.0
        assert config.outbox_size == 32

    def test_sweep_interval_may_not_exceed_idle_timeout(self):
        with pytest.raises(ValidationError):
            RelayConfig(idle_timeout_seconds=5, sweep_interval_seconds=10)

    @pytest.mark.parametrize("field", ["outbox_size", "max_message_size", "max_rooms_per_connection"])
    def test_limits_must_be_positive(self, field):
        with pytest.raises(ValidationError):
            RelayConfig(**{field: 0})


class TestSecurityConfig:
    def test_short_secret_rejected(self):
        with pytest.raises(ValidationError):
            SecurityConfig(jwt_secret="short")

    def test_algorithm_normalized(self):
        config = SecurityConfig(jwt_secret="x" * 32, jwt_algorithm="hs512")

        assert config.jwt_algorithm == "HS512"

    def test_asymmetric_algorithm_rejected(self):
        with pytest.raises(ValidationError):
            SecurityConfig(jwt_secret="x" * 32, jwt_algorithm="RS256")


class TestClientConfig:
    def test_defaults_match_reconnect_policy(self):
        config = ClientConfig()

        assert (config.initial_delay, config.max_delay, config.multiplier, config.max_attempts) == (1.0, 5.0, 2.0, 5)

    def test_ceiling_below_initial_delay_rejected(self):
        with pytest.raises(ValidationError):
            ClientConfig(initial_delay=10.0, max_delay=5.0)


class TestLoggingConfig:
    def test_level_normalized(self):
        assert LoggingConfig(level="debug").level == "DEBUG"

    @pytest.mark.parametrize("kwargs", [{"environment": "staging"}, {"format": "xml"}, {"level": "LOUD"}])
    def test_invalid_values_rejected(self, kwargs):
        with pytest.raises(ValidationError):
            LoggingConfig(**kwargs)

    def test_to_logging_dict(self):
        logging_dict = LoggingConfig(environment="unit_test", format="json").to_logging_dict()

        assert logging_dict["environment"] == "unit_test"
        assert logging_dict["format"] == "json"
        assert logging_dict["rotation"] == {"max_bytes": 10 * 1024 * 1024, "backup_count": 5}


class TestCORSConfig:
    def test_csv_origins_from_environment(self, monkeypatch):
        monkeypatch.setenv("CORS_ALLOW_ORIGINS", "https://a.test, https://b.test")

        assert CORSConfig().allow_origins == ["https://a.test", "https://b.test"]

    def test_json_origins_from_environment(self, monkeypatch):
        monkeypatch.setenv("CORS_ALLOW_ORIGINS", '["https://a.test"]')

        assert CORSConfig().allow_origins == ["https://a.test"]


class TestAppConfig:
    def test_composes_sections(self):
        config = AppConfig()

        assert config.security.jwt_secret
        assert config.relay.idle_timeout_seconds > 0
        assert config.to_logging_dict()["logging"]["environment"] == "unit_test"

    def test_missing_secret_rejected(self, monkeypatch):
        monkeypatch.delenv("COLLAB_JWT_SECRET")

        with pytest.raises(ValidationError):
            AppConfig(_env_file=None)

    def test_get_config_is_fresh_under_pytest(self, monkeypatch):
        """Test that tests see environment changes without a cache reset."""
        monkeypatch.setenv("RELAY_OUTBOX_SIZE", "7")
        assert get_config().relay.outbox_size == 7
        monkeypatch.setenv("RELAY_OUTBOX_SIZE", "9")
        assert get_config().relay.outbox_size == 9
        reset_config()
