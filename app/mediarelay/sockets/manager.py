from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Union

from starlette.websockets import WebSocket, WebSocketState

from ..log_config import debug_verbose, verbose_log
from ..models.socket.base import SocketPayload

OutboundMessage = Union[SocketPayload, Mapping[str, Any]]


@dataclass
class ClientChannel:
    client_id: str
    websocket: WebSocket
    queue: "asyncio.Queue[Dict[str, Any]]" = field(default_factory=asyncio.Queue)
    sender: Optional["asyncio.Task[None]"] = None


class ClientChannelManager:
    """Maps client ids to live websockets and delivers events best effort.

    Every client gets an outbound queue drained by its own sender task, so
    ``send`` never blocks the caller. A missing or closed channel turns
    ``send`` into a no-op; a reconnect with the same id replaces the old
    channel without touching the client's jobs.
    """

    def __init__(self) -> None:
        self._channels: Dict[str, ClientChannel] = {}
        self._shutting_down = False

    def connected_clients(self) -> List[str]:
        return [
            client_id
            for client_id, channel in self._channels.items()
            if self._is_open(channel.websocket)
        ]

    def is_connected(self, client_id: str) -> bool:
        return client_id in self.connected_clients()

    async def connect(self, client_id: str, websocket: WebSocket) -> None:
        """Register ``websocket`` for ``client_id``, replacing any older channel."""
        channel = ClientChannel(client_id=client_id, websocket=websocket)
        previous = self._channels.get(client_id)
        self._channels[client_id] = channel
        channel.sender = asyncio.create_task(self._drain(channel))
        verbose_log("client_connected", {"client_id": client_id, "replaced": previous is not None})
        if previous is not None:
            await self._close_channel(previous)

    async def disconnect(self, client_id: str, websocket: WebSocket) -> None:
        """Forget the channel only if it is still the one bound to ``websocket``."""
        channel = self._channels.get(client_id)
        if channel is None or channel.websocket is not websocket:
            return
        del self._channels[client_id]
        verbose_log("client_disconnected", {"client_id": client_id})
        await self._stop_sender(channel)

    def send(self, client_id: str, event: OutboundMessage) -> None:
        """Queue ``event`` for ``client_id``; must be called on the event loop."""
        if self._shutting_down:
            return
        message = event.to_dict() if isinstance(event, SocketPayload) else dict(event)
        channel = self._channels.get(client_id)
        if channel is None:
            debug_verbose("event_dropped", {"client_id": client_id, "type": message.get("type")})
            return
        if self._is_open(channel.websocket):
            channel.queue.put_nowait(message)

    def broadcast(self, event: OutboundMessage) -> None:
        for client_id in list(self._channels):
            self.send(client_id, event)

    async def aclose(self) -> None:
        """Flush queued events, close every websocket and refuse further sends."""
        if self._shutting_down:
            return
        self._shutting_down = True
        channels = list(self._channels.values())
        self._channels.clear()
        for channel in channels:
            await self._close_channel(channel, flush=True)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    async def _drain(self, channel: ClientChannel) -> None:
        while True:
            message = await channel.queue.get()
            try:
                await channel.websocket.send_json(message)
            except Exception as exc:  # noqa: BLE001 - the socket is gone, drop it
                verbose_log(
                    "socket_send_failed",
                    {"client_id": channel.client_id, "type": message.get("type"), "error": repr(exc)},
                )
                self._forget(channel)
                return
            finally:
                channel.queue.task_done()

    async def _close_channel(self, channel: ClientChannel, *, flush: bool = False) -> None:
        if flush and channel.sender is not None and not channel.sender.done():
            try:
                await asyncio.wait_for(channel.queue.join(), timeout=1.0)
            except asyncio.TimeoutError:
                verbose_log("socket_flush_timeout", {"client_id": channel.client_id})
        await self._stop_sender(channel)
        if self._is_open(channel.websocket):
            try:
                await channel.websocket.close()
            except RuntimeError:
                return

    @staticmethod
    async def _stop_sender(channel: ClientChannel) -> None:
        if channel.sender is None:
            return
        channel.sender.cancel()
        await asyncio.gather(channel.sender, return_exceptions=True)

    def _forget(self, channel: ClientChannel) -> None:
        if self._channels.get(channel.client_id) is channel:
            del self._channels[channel.client_id]

    @staticmethod
    def _is_open(websocket: WebSocket) -> bool:
        client_state = getattr(websocket, "client_state", None)
        if client_state is not None and client_state != WebSocketState.CONNECTED:
            return False
        application_state = getattr(websocket, "application_state", None)
        if (
            application_state is not None
            and application_state != WebSocketState.CONNECTED
        ):
            return False
        return True


__all__ = ["ClientChannel", "ClientChannelManager", "OutboundMessage"]
