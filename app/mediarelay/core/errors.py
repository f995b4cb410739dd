"""Error taxonomy for tool invocations and job lifecycle."""

from __future__ import annotations

from typing import Optional

from ..config import ERROR_MESSAGE_LIMIT
from .markers import error_lines


class DownloadCancelled(Exception):
    """Raised when a job observes its cancellation flag. Not a failure."""


class InvalidStateTransition(RuntimeError):
    def __init__(self, job_id: str, current: str, requested: str) -> None:
        super().__init__(
            f"job {job_id} cannot move from '{current}' to '{requested}'"
        )
        self.job_id = job_id
        self.current = current
        self.requested = requested


class ToolError(Exception):
    """Base class for failures of an external tool invocation."""

    def __init__(self, message: str, *, stderr: str = "", exit_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.message = message
        self.stderr = stderr
        self.exit_code = exit_code


class ToolSpawnError(ToolError):
    pass


class ToolExitError(ToolError):
    pass


class OutputNotFoundError(ToolError):
    pass


class RateLimitedError(ToolError):
    pass


class AuthenticationRequiredError(ToolError):
    pass


def summarize_stderr(stderr: str, exit_code: Optional[int]) -> str:
    lines = error_lines(stderr)
    if lines:
        message = "; ".join(lines)
    else:
        message = stderr.strip() or f"Download tool exited with code {exit_code}"
    if len(message) > ERROR_MESSAGE_LIMIT:
        message = message[: ERROR_MESSAGE_LIMIT - 3] + "..."
    return message


def rate_limited_error(stderr: str, exit_code: Optional[int]) -> RateLimitedError:
    return RateLimitedError(
        "The site is rate limiting requests (HTTP 429). Wait a few minutes and try again.",
        stderr=stderr,
        exit_code=exit_code,
    )


def authentication_error(
    stderr: str, exit_code: Optional[int], *, cookies_supplied: bool
) -> AuthenticationRequiredError:
    if cookies_supplied:
        message = (
            "Access denied (HTTP 403). The supplied cookies.txt may be expired; "
            "export fresh cookies from a signed-in browser and retry."
        )
    else:
        message = (
            "Access denied (HTTP 403). This media requires a signed-in session; "
            "place a cookies.txt exported from your browser next to the server and retry."
        )
    return AuthenticationRequiredError(message, stderr=stderr, exit_code=exit_code)


__all__ = [
    "AuthenticationRequiredError",
    "DownloadCancelled",
    "InvalidStateTransition",
    "OutputNotFoundError",
    "RateLimitedError",
    "ToolError",
    "ToolExitError",
    "ToolSpawnError",
    "authentication_error",
    "rate_limited_error",
    "summarize_stderr",
]
