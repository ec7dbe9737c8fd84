"""Tests for the structlog configuration helpers."""

from collab.logging.enhanced_logging_config import (
    add_correlation_id,
    bind_request_context,
    clear_request_context,
    detect_environment,
    get_current_context,
    get_logger,
    sanitize_sensitive_data,
    setup_enhanced_logging,
)


class TestProcessors:
    def test_sensitive_keys_redacted(self):
        event = sanitize_sensitive_data(
            None,
            "info",
            {"event": "handshake", "token": "abc", "headers": {"Authorization": "Bearer x"}, "user_id": "alice"},
        )

        assert event["token"] == "[REDACTED]"
        assert event["headers"]["Authorization"] == "[REDACTED]"
        assert event["user_id"] == "alice"

    def test_correlation_id_added_when_missing(self):
        assert add_correlation_id(None, "info", {"event": "x"})["correlation_id"]
        assert add_correlation_id(None, "info", {"correlation_id": "c-1"})["correlation_id"] == "c-1"


class TestRequestContext:
    def test_bind_and_clear(self):
        clear_request_context()
        bind_request_context(correlation_id="c-1", connection_id="conn-a", user_id=None, path="/api/ws")

        context = get_current_context()
        assert context == {"correlation_id": "c-1", "connection_id": "conn-a", "path": "/api/ws"}

        clear_request_context()
        assert get_current_context() == {}

    def test_correlation_id_generated(self):
        bind_request_context()
        try:
            assert get_current_context()["correlation_id"]
        finally:
            clear_request_context()


def test_detect_environment_under_pytest():
    assert detect_environment() == "unit_test"


def test_setup_enhanced_logging_is_idempotent():
    config = {"logging": {"environment": "unit_test", "level": "WARNING", "format": "json"}}

    setup_enhanced_logging(config, force_reconfigure=True)
    setup_enhanced_logging(config)

    get_logger("collab.tests").warning("Logging configured", token="hidden")
