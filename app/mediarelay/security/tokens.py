"""Helpers for validating the optional shared access token."""

from __future__ import annotations

import os
from typing import Mapping, Optional, TypeAlias

TOKEN_ENV = "MEDIARELAY_SERVER_TOKEN"

HeadersMapping: TypeAlias = Mapping[str, str]
QueryMapping: TypeAlias = Mapping[str, str]


def _normalize_token(token: Optional[str]) -> Optional[str]:
    if token is None:
        return None
    candidate = token.strip()
    return candidate or None


def expected_token() -> Optional[str]:
    """Return the configured secret, or ``None`` when the server runs open."""

    return _normalize_token(os.getenv(TOKEN_ENV))


def parse_authorization_header(value: Optional[str]) -> Optional[str]:
    """Return the token encoded inside an Authorization header."""

    normalized = _normalize_token(value)
    if not normalized:
        return None
    if normalized.lower().startswith("bearer "):
        return _normalize_token(normalized[7:])
    return normalized


def token_from_headers(headers: HeadersMapping) -> Optional[str]:
    token = parse_authorization_header(headers.get("authorization"))
    if token:
        return token
    return _normalize_token(headers.get("x-api-token"))


def token_from_query(query: QueryMapping) -> Optional[str]:
    return _normalize_token(query.get("token"))


def is_valid_token(candidate: Optional[str]) -> bool:
    """Accept anything when no secret is configured, otherwise require a match."""

    secret = expected_token()
    if secret is None:
        return True
    return candidate == secret


__all__ = [
    "HeadersMapping",
    "QueryMapping",
    "TOKEN_ENV",
    "expected_token",
    "is_valid_token",
    "parse_authorization_header",
    "token_from_headers",
    "token_from_query",
]
