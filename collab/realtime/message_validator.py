"""
WebSocket message validation for the event relay.

This module turns one raw inbound frame into a validated inbound message
model, classifying every rejection into the relay's failure taxonomy:
- oversized frame: CapacityFailure (event dropped)
- undecodable frame: TransportFailure with close code 1007 (connection closed)
- structurally or semantically invalid event: ProtocolViolation (event dropped)
"""

import json
from typing import Any

from pydantic import ValidationError

from ..exceptions import CapacityFailure, ProtocolViolation, TransportFailure, create_error_context
from ..logging.enhanced_logging_config import get_logger
from ..schemas.realtime.websocket_messages import (
    INBOUND_MESSAGE_TYPES,
    DocumentMessage,
    InboundMessage,
    parse_inbound_message,
)

logger = get_logger(__name__)

CLOSE_CODE_INVALID_PAYLOAD = 1007


class WebSocketMessageValidator:
    """
    Validates inbound WebSocket frames for safety and correctness.

    Implements:
    - Message size limits
    - JSON depth limits
    - Schema validation against the inbound message models
    - Document id length limits
    """

    MAX_MESSAGE_SIZE = 1024 * 1024
    MAX_JSON_DEPTH = 32
    MAX_DOCUMENT_ID_LENGTH = 256

    def __init__(
        self,
        max_message_size: int | None = None,
        max_json_depth: int | None = None,
        max_document_id_length: int | None = None,
    ):
        """
        Initialize the message validator.

        Args:
            max_message_size: Maximum frame size in bytes (default: 1 MiB)
            max_json_depth: Maximum JSON nesting depth (default: 32)
            max_document_id_length: Maximum document id length (default: 256)
        """
        self.max_message_size = max_message_size or self.MAX_MESSAGE_SIZE
        self.max_json_depth = max_json_depth or self.MAX_JSON_DEPTH
        self.max_document_id_length = max_document_id_length or self.MAX_DOCUMENT_ID_LENGTH

    def validate_size(self, data: str, connection_id: str | None = None) -> None:
        """
        Validate frame size.

        Raises:
            CapacityFailure: If the frame exceeds the size limit
        """
        size = len(data.encode("utf-8"))
        if size > self.max_message_size:
            raise CapacityFailure(
                f"Message size {size} bytes exceeds maximum {self.max_message_size} bytes",
                create_error_context(connection_id=connection_id),
                limit_type="payload_size",
                details={"size": size, "max_size": self.max_message_size},
            )

    def decode(self, data: str | bytes | None, connection_id: str | None = None) -> Any:
        """
        Decode a text frame as JSON.

        Raises:
            TransportFailure: If the frame is not a JSON text frame
        """
        if not isinstance(data, str):
            raise TransportFailure(
                "Binary or empty frame received",
                create_error_context(connection_id=connection_id),
                close_code=CLOSE_CODE_INVALID_PAYLOAD,
            )
        try:
            return json.loads(data)
        except json.JSONDecodeError as e:
            raise TransportFailure(
                f"Invalid JSON: {e}",
                create_error_context(connection_id=connection_id),
                close_code=CLOSE_CODE_INVALID_PAYLOAD,
            ) from e

    def validate_json_structure(self, message: Any, connection_id: str | None = None) -> None:
        """
        Validate JSON nesting depth.

        Raises:
            ProtocolViolation: If the structure is too deep
        """
        depth = self._calculate_depth(message)
        if depth > self.max_json_depth:
            raise ProtocolViolation(
                f"JSON depth {depth} exceeds maximum {self.max_json_depth}",
                create_error_context(connection_id=connection_id, event_type=_message_type(message)),
                operation="validate",
                details={"message_type": _message_type(message)},
            )

    def _calculate_depth(self, obj: Any, current_depth: int = 0) -> int:
        """
        Calculate the maximum nesting depth of a JSON structure.

        Stops descending once the limit is passed.
        """
        if current_depth > self.max_json_depth:
            return current_depth

        if isinstance(obj, dict):
            if not obj:
                return current_depth
            return max(self._calculate_depth(v, current_depth + 1) for v in obj.values())
        if isinstance(obj, list):
            if not obj:
                return current_depth
            return max(self._calculate_depth(item, current_depth + 1) for item in obj)
        return current_depth

    def validate_schema(self, message: Any, connection_id: str | None = None) -> InboundMessage:
        """
        Validate a decoded message against the inbound message models.

        Raises:
            ProtocolViolation: If the message matches no inbound model
        """
        message_type = _message_type(message)
        if not isinstance(message, dict):
            raise ProtocolViolation(
                "Message must be a JSON object",
                create_error_context(connection_id=connection_id),
                operation="validate",
                details={"message_type": None},
            )
        if message_type not in INBOUND_MESSAGE_TYPES:
            raise ProtocolViolation(
                f"Unknown message type: {message_type}",
                create_error_context(connection_id=connection_id, event_type=message_type),
                operation="validate",
                details={"message_type": message_type},
            )
        try:
            parsed = parse_inbound_message(message)
        except ValidationError as e:
            raise ProtocolViolation(
                f"Schema validation failed: {e.error_count()} error(s)",
                create_error_context(connection_id=connection_id, event_type=message_type),
                operation="validate",
                details={"message_type": message_type, "errors": e.errors(include_url=False, include_input=False)},
            ) from e

        if isinstance(parsed, DocumentMessage) and len(parsed.document_id) > self.max_document_id_length:
            raise ProtocolViolation(
                f"Document id exceeds maximum length {self.max_document_id_length}",
                create_error_context(connection_id=connection_id, event_type=message_type),
                operation="validate",
                details={"message_type": message_type},
            )
        return parsed

    def parse_and_validate(self, data: str | bytes | None, connection_id: str | None = None) -> InboundMessage:
        """
        Parse and validate one inbound frame.

        This is the main entry point for message validation.

        Args:
            data: Raw frame payload
            connection_id: Connection the frame arrived on, for error context

        Returns:
            The validated inbound message model

        Raises:
            CapacityFailure, TransportFailure, ProtocolViolation: see module docstring
        """
        if isinstance(data, str):
            self.validate_size(data, connection_id)
        elif isinstance(data, bytes) and len(data) > self.max_message_size:
            raise CapacityFailure(
                f"Message size {len(data)} bytes exceeds maximum {self.max_message_size} bytes",
                create_error_context(connection_id=connection_id),
                limit_type="payload_size",
            )

        message = self.decode(data, connection_id)
        self.validate_json_structure(message, connection_id)
        parsed = self.validate_schema(message, connection_id)

        logger.debug("Message validation successful", connection_id=connection_id, message_type=parsed.type)
        return parsed


def _message_type(message: Any) -> str | None:
    if isinstance(message, dict):
        value = message.get("type")
        return value if isinstance(value, str) else None
    return None
