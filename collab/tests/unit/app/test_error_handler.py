"""Tests for the HTTP rendering of collaboration errors."""

import json
from unittest.mock import Mock

import pytest

from collab.app.factory import collab_error_handler
from collab.exceptions import AuthenticationFailure, ConfigurationError, ProtocolViolation


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("error", "status_code", "error_type"),
    [
        (AuthenticationFailure("bad token"), 401, "authentication_failed"),
        (ProtocolViolation("bad body"), 400, "validation_error"),
        (ConfigurationError("no secret", config_key="COLLAB_JWT_SECRET"), 500, "internal_error"),
    ],
)
async def test_collab_error_mapped_to_status(error, status_code, error_type):
    response = await collab_error_handler(Mock(), error)

    body = json.loads(response.body)
    assert response.status_code == status_code
    assert body["error"]["type"] == error_type
    assert body["error"]["message"] == error.message
