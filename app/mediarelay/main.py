"""Application entrypoint for running the mediarelay backend locally."""

from __future__ import annotations

from typing import Optional

import uvicorn

from .config import get_server_environment


def run(
    host: Optional[str] = None,
    port: Optional[int] = None,
    log_level: Optional[str] = None,
) -> None:
    """Run the ASGI application using Uvicorn."""

    config = get_server_environment()
    from .app import app

    uvicorn.run(
        app,
        host=host or config.host,
        port=port or config.port,
        log_level=log_level or config.log_level,
    )


__all__ = ["run"]
