"""Process layer: drives the external download and mux tools."""

from .errors import (
    AuthenticationRequiredError,
    DownloadCancelled,
    InvalidStateTransition,
    OutputNotFoundError,
    RateLimitedError,
    ToolError,
    ToolExitError,
    ToolSpawnError,
)
from .runner import ProcessHandle, ProcessRunner, RunResult
from .tools import DownloaderSettings
from .updates import ToolUpdateReport, ToolVersion, ToolVersionService

__all__ = [
    "AuthenticationRequiredError",
    "DownloadCancelled",
    "DownloaderSettings",
    "InvalidStateTransition",
    "OutputNotFoundError",
    "ProcessHandle",
    "ProcessRunner",
    "RateLimitedError",
    "RunResult",
    "ToolError",
    "ToolExitError",
    "ToolSpawnError",
    "ToolUpdateReport",
    "ToolVersion",
    "ToolVersionService",
]
