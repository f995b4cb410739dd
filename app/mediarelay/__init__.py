"""mediarelay backend application package."""

from .download.models import DownloadJob, DownloadRequest  # noqa: F401
from .download.orchestrator import JobOrchestrator  # noqa: F401
from .server import ServerComponents, create_app  # noqa: F401
from .sockets.manager import ClientChannelManager  # noqa: F401

__all__ = [
    "ClientChannelManager",
    "DownloadJob",
    "DownloadRequest",
    "JobOrchestrator",
    "ServerComponents",
    "create_app",
]
