"""Access control for the mediarelay backend."""

from .tokens import (
    TOKEN_ENV,
    HeadersMapping,
    QueryMapping,
    expected_token,
    is_valid_token,
    parse_authorization_header,
    token_from_headers,
    token_from_query,
)

__all__ = [
    "TOKEN_ENV",
    "HeadersMapping",
    "QueryMapping",
    "expected_token",
    "is_valid_token",
    "parse_authorization_header",
    "token_from_headers",
    "token_from_query",
]
