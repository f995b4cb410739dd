"""Outbound websocket events, one dataclass per ``type``."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from ...config import ClientEvent
from .base import SocketPayload


@dataclass(slots=True)
class QueuedEvent(SocketPayload):
    event = ClientEvent.QUEUED

    item_id: str
    title: str
    source: Optional[str] = None
    is_playlist_item: Optional[bool] = None
    playlist_index: Optional[int] = None
    estimated_size: Optional[str] = None


@dataclass(slots=True)
class ItemInfoEvent(SocketPayload):
    event = ClientEvent.ITEM_INFO

    item_id: str
    title: str
    thumbnail: Optional[str] = None
    estimated_size: Optional[str] = None
    source: Optional[str] = None
    is_playlist_item: Optional[bool] = None
    playlist_index: Optional[int] = None
    full_path: Optional[str] = None


@dataclass(slots=True)
class ProgressEvent(SocketPayload):
    event = ClientEvent.PROGRESS

    item_id: str
    percent: float
    raw_speed: Optional[str] = None
    speed_bytes_per_sec: int = 0
    message: Optional[str] = None


@dataclass(slots=True)
class CompleteEvent(SocketPayload):
    event = ClientEvent.COMPLETE

    item_id: str
    message: str
    download_url: str
    filename: str
    actual_size: Optional[str]
    full_path: str
    download_folder: str
    source: Optional[str] = None


@dataclass(slots=True)
class ErrorEvent(SocketPayload):
    event = ClientEvent.ERROR

    message: str
    item_id: Optional[str] = None
    source: Optional[str] = None


@dataclass(slots=True)
class CancelConfirmEvent(SocketPayload):
    event = ClientEvent.CANCEL_CONFIRM

    item_id: str
    message: str
    source: Optional[str] = None


@dataclass(slots=True)
class StatusEvent(SocketPayload):
    event = ClientEvent.STATUS

    message: str
    item_id: Optional[str] = None
    source: Optional[str] = None


@dataclass(slots=True)
class PlaylistCompleteEvent(SocketPayload):
    event = ClientEvent.PLAYLIST_COMPLETE

    item_id: str
    message: str
    source: Optional[str] = None


__all__ = [
    "CancelConfirmEvent",
    "CompleteEvent",
    "ErrorEvent",
    "ItemInfoEvent",
    "PlaylistCompleteEvent",
    "ProgressEvent",
    "QueuedEvent",
    "StatusEvent",
]
