"""Error hierarchy and code mapping for agnet."""

from __future__ import annotations

from enum import Enum
from typing import Any


class ErrorCode(str, Enum):
    FRAMING_ERROR = "FRAMING_ERROR"
    PROTOCOL_ERROR = "PROTOCOL_ERROR"
    TIMEOUT = "TIMEOUT"
    CONNECTION_CLOSED = "CONNECTION_CLOSED"
    CHAT_NOT_FOUND = "CHAT_NOT_FOUND"
    CHAT_EXISTS = "CHAT_EXISTS"
    CHAT_BUSY = "CHAT_BUSY"
    UNSUPPORTED_SKILL = "UNSUPPORTED_SKILL"
    PROVIDER_NOT_FOUND = "PROVIDER_NOT_FOUND"
    UNSUPPORTED_TRANSPORT = "UNSUPPORTED_TRANSPORT"
    INVALID_ARGS = "INVALID_ARGS"
    INVALID_CONFIG = "INVALID_CONFIG"
    SPAWN_FAILED = "SPAWN_FAILED"
    COMMAND_BLOCKED = "COMMAND_BLOCKED"
    INTERNAL_ERROR = "INTERNAL_ERROR"


EXIT_CODE_BY_ERROR: dict[ErrorCode, int] = {
    ErrorCode.INVALID_ARGS: 2,
    ErrorCode.INVALID_CONFIG: 2,
    ErrorCode.PROVIDER_NOT_FOUND: 3,
    ErrorCode.CHAT_NOT_FOUND: 3,
    ErrorCode.SPAWN_FAILED: 4,
    ErrorCode.COMMAND_BLOCKED: 4,
    ErrorCode.FRAMING_ERROR: 5,
    ErrorCode.PROTOCOL_ERROR: 5,
    ErrorCode.CONNECTION_CLOSED: 5,
    ErrorCode.TIMEOUT: 10,
}

# The connection must be discarded after any of these; retrying on it is unsafe.
CONNECTION_FAILURE_CODES = frozenset(
    {
        ErrorCode.FRAMING_ERROR,
        ErrorCode.PROTOCOL_ERROR,
        ErrorCode.TIMEOUT,
        ErrorCode.CONNECTION_CLOSED,
    }
)


class AgnetError(Exception):
    """Base typed exception carried across the runtime, SDK and CLI layers."""

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        *,
        details: dict[str, Any] | None = None,
        suggestion: str | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.details = details or {}
        self.suggestion = suggestion

    @property
    def exit_code(self) -> int:
        return EXIT_CODE_BY_ERROR.get(self.code, 1)

    @property
    def connection_failure(self) -> bool:
        return self.code in CONNECTION_FAILURE_CODES

    def to_error_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "code": self.code.value,
            "message": self.message,
            "details": self.details,
        }
        if self.suggestion:
            payload["suggestion"] = self.suggestion
        return payload


class FramingError(AgnetError):
    """Fatal codec failure; the byte stream cannot be resynchronized."""

    def __init__(self, message: str, *, details: dict[str, Any] | None = None) -> None:
        super().__init__(ErrorCode.FRAMING_ERROR, message, details=details)


def error_code_from_wire(value: Any) -> ErrorCode:
    try:
        return ErrorCode(str(value))
    except ValueError:
        return ErrorCode.INTERNAL_ERROR
