from __future__ import annotations

import json
import typing as t
from typing import Awaitable, Callable

from marshmallow import ValidationError
from starlette.applications import Starlette
from starlette.websockets import WebSocket, WebSocketDisconnect

from ..config import CONNECTED_MESSAGE, ApiRoute, InboundType
from ..download.orchestrator import JobOrchestrator
from ..log_config import verbose_log
from ..models.api.requests import CancelRequest
from ..models.api.websockets import parse_inbound
from ..models.socket.events import ErrorEvent, StatusEvent
from ..security import is_valid_token, token_from_headers, token_from_query
from ..sockets.manager import ClientChannelManager

INVALID_JSON_MESSAGE = "Invalid message: expected a JSON object."


def first_error_message(errors: object) -> str:
    """Flatten marshmallow's nested error structure into one readable line."""

    if isinstance(errors, str):
        return errors
    if isinstance(errors, t.Mapping):
        for key, value in errors.items():
            message = first_error_message(value)
            if message:
                return message if key in ("_schema", "type", "url") else f"{key}: {message}"
    if isinstance(errors, (list, tuple)):
        for value in errors:
            message = first_error_message(value)
            if message:
                return message
    return ""


def register_websocket_routes(
    app: Starlette,
    orchestrator: JobOrchestrator,
    channels: ClientChannelManager,
) -> None:
    """Attach the client event channel endpoint."""

    async def _authorize_websocket(websocket: WebSocket) -> bool:
        token = token_from_query(websocket.query_params) or token_from_headers(
            websocket.headers
        )
        if not is_valid_token(token):
            await websocket.close(code=1008, reason="Missing or invalid token")
            return False
        return True

    def websocket_route(
        path: str,
    ) -> Callable[
        [Callable[[WebSocket], Awaitable[None]]], Callable[[WebSocket], Awaitable[None]]
    ]:
        def decorator(
            func: Callable[[WebSocket], Awaitable[None]],
        ) -> Callable[[WebSocket], Awaitable[None]]:
            app.router.add_websocket_route(path, func)
            return func

        return decorator

    def process_message(client_id: str, message: object) -> None:
        try:
            parsed = parse_inbound(message)
        except ValidationError as exc:
            errors = exc.normalized_messages()
            verbose_log("socket_invalid_message", {"client_id": client_id, "errors": errors})
            channels.send(
                client_id,
                ErrorEvent(message=first_error_message(errors) or "Invalid message."),
            )
            return
        if parsed.type is InboundType.DOWNLOAD_REQUEST:
            orchestrator.submit(client_id, parsed.payload)  # type: ignore[arg-type]
        elif parsed.type is InboundType.CANCEL:
            request = t.cast(CancelRequest, parsed.payload)
            orchestrator.cancel(client_id, request.item_id)

    @websocket_route(ApiRoute.WEBSOCKET.value)
    async def client_socket(websocket: WebSocket) -> None:
        if not await _authorize_websocket(websocket):
            return
        client_id = (websocket.query_params.get("clientId") or "").strip()
        if not client_id:
            await websocket.close(code=1008, reason="clientId is required")
            return
        await websocket.accept()
        await channels.connect(client_id, websocket)
        channels.send(client_id, StatusEvent(message=CONNECTED_MESSAGE))
        try:
            while True:
                frame = await websocket.receive()
                if frame["type"] == "websocket.disconnect":
                    raise WebSocketDisconnect(frame.get("code", 1000), frame.get("reason"))
                text = frame.get("text")
                if text is None:
                    verbose_log("socket_binary_frame", {"client_id": client_id})
                    channels.send(client_id, ErrorEvent(message=INVALID_JSON_MESSAGE))
                    continue
                try:
                    message = json.loads(text)
                except ValueError:
                    verbose_log("socket_invalid_json", {"client_id": client_id})
                    channels.send(client_id, ErrorEvent(message=INVALID_JSON_MESSAGE))
                    continue
                process_message(client_id, message)
        except WebSocketDisconnect:
            pass
        finally:
            await channels.disconnect(client_id, websocket)

    _ = client_socket


__all__ = ["first_error_message", "register_websocket_routes"]
