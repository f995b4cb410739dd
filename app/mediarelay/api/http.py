from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, Dict, cast

from marshmallow import Schema
from starlette import status
from starlette.applications import Starlette
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.staticfiles import StaticFiles

from ..common.starlette_helpers import (
    JSONValue,
    RequestValidationError,
    error_response,
    json_response,
    load_with_schema,
    read_json_object,
)
from ..config import (
    DOWNLOADS_MOUNT,
    HEALTH_CHECK_PATH,
    SERVICE_VERSION,
    ApiRoute,
    ServerEnvironmentConfig,
)
from ..core.errors import ToolError
from ..core.updates import ToolVersionService
from ..download.orchestrator import JobOrchestrator
from ..download.sources import strategy_for
from ..log_config import verbose_log
from ..models.api.errors import ErrorCode
from ..models.api.requests import (
    ToolUpdateRequestSchema,
    VideoInfoRequest,
    VideoInfoRequestSchema,
)
from ..models.socket.events import StatusEvent
from ..security import is_valid_token, token_from_headers, token_from_query
from ..sockets.manager import ClientChannelManager
from ..utils import now_iso

SHUTDOWN_MESSAGE = "Server is shutting down..."
# Leaves the HTTP response time to reach the client before the exit signal.
SHUTDOWN_DELAY_SECONDS = 0.1


def register_http_routes(
    app: Starlette,
    orchestrator: JobOrchestrator,
    channels: ClientChannelManager,
    tools: ToolVersionService,
    config: ServerEnvironmentConfig,
    *,
    request_exit: Callable[[], None],
) -> None:
    """Attach REST endpoints, the downloads mount and middleware to the app."""

    async def _parse_payload(request: Request, schema_cls: type[Schema]) -> Any:
        raw_body = await read_json_object(request)
        return load_with_schema(schema_cls(), raw_body)

    async def _handle_request_validation(
        _: Request, exc: RequestValidationError
    ) -> JSONResponse:
        detail: JSONValue | None = None
        if exc.errors:
            detail = cast(JSONValue, dict(exc.errors))
        elif exc.args:
            detail = cast(JSONValue, exc.args[0])
        return error_response(
            ErrorCode.INVALID_JSON_PAYLOAD,
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=detail,
        )

    app.add_exception_handler(RequestValidationError, _handle_request_validation)  # type: ignore[arg-type]

    def _route(
        path: str, *, methods: list[str]
    ) -> Callable[
        [Callable[..., Awaitable[JSONResponse]]], Callable[..., Awaitable[JSONResponse]]
    ]:
        def decorator(
            func: Callable[..., Awaitable[JSONResponse]],
        ) -> Callable[..., Awaitable[JSONResponse]]:
            app.router.add_route(path, func, methods=methods)
            return func

        return decorator

    def get(
        path: str,
    ) -> Callable[
        [Callable[..., Awaitable[JSONResponse]]], Callable[..., Awaitable[JSONResponse]]
    ]:
        return _route(path, methods=["GET"])

    def post(
        path: str,
    ) -> Callable[
        [Callable[..., Awaitable[JSONResponse]]], Callable[..., Awaitable[JSONResponse]]
    ]:
        return _route(path, methods=["POST"])

    async def enforce_token(
        request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        normalized_path = request.url.path.rstrip("/") or "/"
        health_path = HEALTH_CHECK_PATH.rstrip("/") or "/"
        if normalized_path == health_path or request.method.upper() == "OPTIONS":
            return await call_next(request)
        token = token_from_headers(request.headers) or token_from_query(
            request.query_params
        )
        if not is_valid_token(token):
            return error_response(
                ErrorCode.TOKEN_MISSING_OR_INVALID,
                status_code=status.HTTP_401_UNAUTHORIZED,
            )
        return await call_next(request)

    app.add_middleware(BaseHTTPMiddleware, dispatch=enforce_token)

    async def log_request(
        request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        verbose_log(
            "http_request",
            {
                "method": request.method,
                "path": request.url.path,
                "query": dict(request.query_params.multi_items()),
            },
        )
        return await call_next(request)

    app.add_middleware(BaseHTTPMiddleware, dispatch=log_request)

    @get(HEALTH_CHECK_PATH)
    async def health_check(request: Request) -> JSONResponse:  # noqa: ARG001 - Starlette route signature
        registry = orchestrator.registry
        payload: Dict[str, JSONValue] = {
            "service": config.name,
            "version": SERVICE_VERSION,
            "time": now_iso(),
            "active": len(registry.in_flight_jobs()),
            "queued": len(registry.queued_jobs()),
            "clients": len(channels.connected_clients()),
            "shuttingDown": orchestrator.closing,
        }
        return json_response(payload)

    @post(ApiRoute.VIDEO_INFO.value)
    async def video_info_endpoint(request: Request) -> JSONResponse:
        """Title, thumbnail, size estimate and qualities for one media URL."""

        payload = cast(VideoInfoRequest, await _parse_payload(request, VideoInfoRequestSchema))
        if strategy_for(payload.source) is None:
            return error_response(
                ErrorCode.UNSUPPORTED_SOURCE,
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=payload.source,
            )
        try:
            info = await orchestrator.lookup_media(payload.url, payload.format, payload.quality)
        except ToolError as exc:
            return error_response(
                ErrorCode.METADATA_FAILED,
                status_code=status.HTTP_502_BAD_GATEWAY,
                detail=exc.message,
            )
        info["source"] = payload.source
        return json_response(info)

    @get(ApiRoute.TOOLS.value)
    async def tool_versions_endpoint(request: Request) -> JSONResponse:  # noqa: ARG001 - Starlette route signature
        versions = await tools.versions()
        return json_response(
            {tool.value: version.to_payload() for tool, version in versions.items()}
        )

    @post(ApiRoute.TOOLS_UPDATE.value)
    async def tool_update_endpoint(request: Request) -> JSONResponse:
        force = cast(bool, await _parse_payload(request, ToolUpdateRequestSchema))
        reports = await tools.check_updates(force=force)
        body: Dict[str, JSONValue] = {
            tool.value: cast(JSONValue, report.to_payload()) for tool, report in reports.items()
        }
        failed = any(report.error for report in reports.values())
        if failed:
            verbose_log("tool_update_failed", body)
        return json_response(body)

    @post(ApiRoute.SHUTDOWN.value)
    async def shutdown_endpoint(request: Request) -> JSONResponse:  # noqa: ARG001 - Starlette route signature
        if orchestrator.closing:
            return error_response(
                ErrorCode.SHUTTING_DOWN, status_code=status.HTTP_409_CONFLICT
            )
        channels.broadcast(StatusEvent(message=SHUTDOWN_MESSAGE))
        loop = asyncio.get_running_loop()
        loop.call_later(SHUTDOWN_DELAY_SECONDS, request_exit)
        return json_response({"message": SHUTDOWN_MESSAGE}, status_code=status.HTTP_202_ACCEPTED)

    app.mount(
        DOWNLOADS_MOUNT,
        StaticFiles(directory=config.download_folder, check_dir=False),
        name="downloads",
    )

    _ = health_check
    _ = video_info_endpoint
    _ = tool_versions_endpoint
    _ = tool_update_endpoint
    _ = shutdown_endpoint
    _ = log_request


__all__ = ["register_http_routes"]
