from __future__ import annotations

import os
import signal
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Callable, Optional

import certifi
from starlette.applications import Starlette

from ..api.http import register_http_routes
from ..api.websockets import register_websocket_routes
from ..config import ServerEnvironmentConfig, get_server_environment
from ..core.runner import ProcessRunner
from ..core.tools import DownloaderSettings
from ..core.updates import ToolVersionService
from ..download.context import OrchestratorContext
from ..download.orchestrator import JobOrchestrator
from ..log_config import verbose_log
from ..models.socket.events import StatusEvent
from ..sockets.manager import ClientChannelManager


def _configure_certificates() -> None:
    # Child processes and the update check share the certifi bundle.
    cert_path = certifi.where()
    os.environ.setdefault("SSL_CERT_FILE", cert_path)
    os.environ.setdefault("REQUESTS_CA_BUNDLE", cert_path)


def _request_process_exit() -> None:
    """Ask the hosting server (uvicorn) to stop; the lifespan does the cleanup."""
    signal.raise_signal(signal.SIGINT)


@dataclass
class ServerComponents:
    app: Starlette
    orchestrator: JobOrchestrator
    channels: ClientChannelManager
    tools: ToolVersionService


def create_app(
    config: Optional[ServerEnvironmentConfig] = None,
    *,
    settings: Optional[DownloaderSettings] = None,
    runner: Optional[ProcessRunner] = None,
    tools: Optional[ToolVersionService] = None,
    request_exit: Callable[[], None] = _request_process_exit,
) -> ServerComponents:
    """Instantiate the Starlette app along with the orchestrator and channels."""

    _configure_certificates()
    config = config or get_server_environment()
    settings = settings or DownloaderSettings.from_environment(config)
    channels = ClientChannelManager()
    context = OrchestratorContext.build(settings, channels, runner=runner)
    orchestrator = JobOrchestrator(context)
    tools = tools or ToolVersionService(
        settings,
        update_check_url=config.update_check_url,
        check_interval=float(config.update_check_interval),
    )

    @asynccontextmanager
    async def lifespan(_: Starlette) -> AsyncIterator[None]:
        verbose_log(
            "server_started",
            {
                "host": config.host,
                "port": config.port,
                "downloads": str(settings.download_root),
            },
        )
        try:
            yield
        finally:
            channels.broadcast(StatusEvent(message="Server is shutting down..."))
            await orchestrator.shutdown(settings.shutdown_grace)
            await channels.aclose()
            verbose_log("server_stopped", {"name": config.name})

    app = Starlette(lifespan=lifespan)
    register_http_routes(
        app, orchestrator, channels, tools, config, request_exit=request_exit
    )
    register_websocket_routes(app, orchestrator, channels)
    app.state.orchestrator = orchestrator
    app.state.channels = channels
    app.state.tools = tools
    return ServerComponents(app=app, orchestrator=orchestrator, channels=channels, tools=tools)


__all__ = ["ServerComponents", "create_app"]
