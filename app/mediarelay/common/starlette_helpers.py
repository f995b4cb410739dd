"""Starlette request and response helpers shared by the HTTP routes."""

from __future__ import annotations

import json
from typing import Any, Mapping, TypeAlias

from marshmallow import Schema, ValidationError  # type: ignore[import-not-found]
from starlette.requests import Request
from starlette.responses import JSONResponse

from ..log_config import verbose_log
from ..models.api.errors import ErrorCode

JSONPrimitive = str | int | float | bool | None
JSONValue: TypeAlias = JSONPrimitive | list["JSONValue"] | dict[str, "JSONValue"]


class RequestValidationError(RuntimeError):
    """Raised when an incoming request payload fails validation."""

    def __init__(
        self,
        errors: Mapping[str, Any] | None = None,
        *,
        message: str = "Invalid request payload",
    ) -> None:
        super().__init__(message)
        self.errors: dict[str, Any] = dict(errors or {})


async def read_json_object(request: Request) -> Mapping[str, Any]:
    """Return the request body as a JSON object or raise ``RequestValidationError``."""

    raw = await request.body()
    if not raw.strip():
        return {}
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise RequestValidationError({"json": "Invalid JSON payload"}) from exc
    if not isinstance(payload, Mapping):
        raise RequestValidationError({"json": "JSON object required"})
    return payload


def load_with_schema(
    schema: Schema, payload: Any, *, partial: bool | None = None
) -> Any:
    """Validate and deserialize input data with the provided Marshmallow schema."""

    try:
        return schema.load(payload, partial=partial)
    except ValidationError as exc:
        raise RequestValidationError(exc.normalized_messages()) from exc


def json_response(payload: Any, *, status_code: int = 200) -> JSONResponse:
    verbose_log("http_response", {"status": status_code, "payload": payload})
    return JSONResponse(content=payload, status_code=status_code)


def error_response(
    code: ErrorCode | str,
    *,
    status_code: int,
    detail: JSONValue | None = None,
) -> JSONResponse:
    payload: dict[str, JSONValue] = {
        "error": code.value if isinstance(code, ErrorCode) else str(code)
    }
    if detail is not None:
        payload["detail"] = detail
    return json_response(payload, status_code=status_code)


__all__ = [
    "JSONValue",
    "RequestValidationError",
    "error_response",
    "json_response",
    "load_with_schema",
    "read_json_object",
]
