"""Typed websocket payload models pushed to clients."""

from .base import SocketPayload
from .events import (
    CancelConfirmEvent,
    CompleteEvent,
    ErrorEvent,
    ItemInfoEvent,
    PlaylistCompleteEvent,
    ProgressEvent,
    QueuedEvent,
    StatusEvent,
)

__all__ = [
    "SocketPayload",
    "CancelConfirmEvent",
    "CompleteEvent",
    "ErrorEvent",
    "ItemInfoEvent",
    "PlaylistCompleteEvent",
    "ProgressEvent",
    "QueuedEvent",
    "StatusEvent",
]
