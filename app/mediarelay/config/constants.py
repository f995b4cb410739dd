from __future__ import annotations

from enum import Enum
from typing import Final, FrozenSet

from .environment import get_server_environment

# ---------------------------------------------------------------------------
# Application bootstrap defaults
# ---------------------------------------------------------------------------
_SERVER_ENV = get_server_environment()

SERVICE_VERSION: Final[str] = "1.0.0"
CACHE_FOLDER: Final[str] = _SERVER_ENV.cache_folder

# ---------------------------------------------------------------------------
# API routing conventions
# ---------------------------------------------------------------------------
HEALTH_CHECK_PATH: Final[str] = "/"
DOWNLOADS_MOUNT: Final[str] = "/downloads"


class ApiRoute(str, Enum):
    VIDEO_INFO = "/video-info"
    TOOLS = "/tools"
    TOOLS_UPDATE = "/tools/update"
    SHUTDOWN = "/shutdown"
    WEBSOCKET = "/ws"


# ---------------------------------------------------------------------------
# Job lifecycle constants
# ---------------------------------------------------------------------------
class JobState(str, Enum):
    QUEUED = "queued"
    METADATA_FETCHING = "metadata_fetching"
    DOWNLOADING = "downloading"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_STATES: Final[FrozenSet[JobState]] = frozenset(
    {JobState.COMPLETED, JobState.FAILED, JobState.CANCELLED}
)
ALLOWED_TRANSITIONS: Final[dict[JobState, FrozenSet[JobState]]] = {
    JobState.QUEUED: frozenset(
        {JobState.METADATA_FETCHING, JobState.CANCELLED, JobState.FAILED}
    ),
    JobState.METADATA_FETCHING: frozenset(
        {JobState.DOWNLOADING, JobState.CANCELLED, JobState.FAILED}
    ),
    JobState.DOWNLOADING: frozenset(
        {JobState.COMPLETED, JobState.FAILED, JobState.CANCELLED}
    ),
    JobState.COMPLETED: frozenset(),
    JobState.FAILED: frozenset(),
    JobState.CANCELLED: frozenset(),
}


class MediaSource(str, Enum):
    YOUTUBE = "youtube"
    INSTAGRAM = "instagram"


class PlaylistAction(str, Enum):
    SINGLE = "single"
    FULL = "full"


AUDIO_FORMATS: Final[FrozenSet[str]] = frozenset(
    {"mp3", "m4a", "aac", "wav", "flac", "opus"}
)
VIDEO_FORMATS: Final[FrozenSet[str]] = frozenset({"mp4", "mkv", "webm", "avi", "mov"})
SUPPORTED_FORMATS: Final[FrozenSet[str]] = AUDIO_FORMATS | VIDEO_FORMATS


# ---------------------------------------------------------------------------
# External tools
# ---------------------------------------------------------------------------
class ToolKind(str, Enum):
    DOWNLOADER = "yt-dlp"
    MUXER = "ffmpeg"


class RunMode(str, Enum):
    METADATA = "metadata"
    DOWNLOAD = "download"


PROGRESS_THROTTLE_SECONDS: Final[float] = 0.45
ERROR_MESSAGE_LIMIT: Final[int] = 250
FILENAME_LIMIT: Final[int] = 180
FALLBACK_FILENAME: Final[str] = "downloaded_media"
INSTAGRAM_FOLDER: Final[str] = "Instagram"


# ---------------------------------------------------------------------------
# Websocket protocol
# ---------------------------------------------------------------------------
class InboundType(str, Enum):
    DOWNLOAD_REQUEST = "download_request"
    CANCEL = "cancel"


class ClientEvent(str, Enum):
    QUEUED = "queued"
    ITEM_INFO = "item_info"
    PROGRESS = "progress"
    COMPLETE = "complete"
    ERROR = "error"
    CANCEL_CONFIRM = "cancel_confirm"
    STATUS = "status"
    PLAYLIST_COMPLETE = "playlist_complete"


TERMINAL_EVENTS: Final[FrozenSet[ClientEvent]] = frozenset(
    {
        ClientEvent.COMPLETE,
        ClientEvent.ERROR,
        ClientEvent.CANCEL_CONFIRM,
        ClientEvent.PLAYLIST_COMPLETE,
    }
)

CONNECTED_MESSAGE: Final[str] = "Successfully connected to the download server."


__all__ = [
    "ALLOWED_TRANSITIONS",
    "AUDIO_FORMATS",
    "ApiRoute",
    "CACHE_FOLDER",
    "ClientEvent",
    "CONNECTED_MESSAGE",
    "DOWNLOADS_MOUNT",
    "ERROR_MESSAGE_LIMIT",
    "FALLBACK_FILENAME",
    "FILENAME_LIMIT",
    "HEALTH_CHECK_PATH",
    "INSTAGRAM_FOLDER",
    "InboundType",
    "JobState",
    "MediaSource",
    "PlaylistAction",
    "PROGRESS_THROTTLE_SECONDS",
    "RunMode",
    "SERVICE_VERSION",
    "SUPPORTED_FORMATS",
    "TERMINAL_EVENTS",
    "TERMINAL_STATES",
    "ToolKind",
    "VIDEO_FORMATS",
]
