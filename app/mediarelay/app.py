"""Application bootstrap for the mediarelay backend."""

from __future__ import annotations

from typing import Optional

from starlette.applications import Starlette

from .download.models import DownloadRequest
from .download.orchestrator import JobOrchestrator
from .server import create_app
from .sockets.manager import ClientChannelManager

_components = create_app()
app: Starlette = _components.app
_orchestrator: JobOrchestrator = _components.orchestrator
_channels: ClientChannelManager = _components.channels


def download(client_id: str, url: str, *, container: str = "mp4") -> Optional[str]:
    """Queue a download for ``client_id`` from in-process code; needs a running loop."""
    url = url.strip()
    if not url:
        raise ValueError("A URL is required")
    return _orchestrator.submit(client_id, DownloadRequest(url=url, format=container))


__all__ = ["app", "create_app", "download"]
