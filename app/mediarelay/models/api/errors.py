from __future__ import annotations

from enum import Enum


class ErrorCode(str, Enum):
    """Canonical error identifiers shared across HTTP and websocket APIs."""

    TOKEN_MISSING_OR_INVALID = "token_missing_or_invalid"
    INVALID_JSON_PAYLOAD = "invalid_json_payload"
    UNSUPPORTED_SOURCE = "unsupported_source"
    METADATA_FAILED = "metadata_failed"
    SHUTTING_DOWN = "shutting_down"

    def __str__(self) -> str:  # pragma: no cover - trivial
        return str(self.value)


__all__ = ["ErrorCode"]
