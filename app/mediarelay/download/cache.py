"""In-memory metadata cache with TTL and opportunistic sweeping."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from ..log_config import debug_verbose


@dataclass(slots=True)
class MediaMetadata:
    title: str
    thumbnail: Optional[str] = None
    available_qualities: List[int] = field(default_factory=list)
    formats: List[Dict[str, Any]] = field(default_factory=list)
    duration: Optional[float] = None
    filesize: Optional[float] = None
    bitrate: Optional[float] = None
    fetched_at: float = 0.0

    def as_info(self) -> Dict[str, Any]:
        """Shape expected by the size estimator."""
        return {
            "formats": self.formats,
            "duration": self.duration,
            "filesize": self.filesize,
            "tbr": self.bitrate,
        }


@dataclass(slots=True)
class CacheEntry:
    value: MediaMetadata
    expires_at: float


class MetadataCache:
    """Keyed by canonical media id; expired entries are dropped on read."""

    def __init__(
        self,
        ttl: float = 300.0,
        sweep_threshold: int = 100,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.ttl = ttl
        self.sweep_threshold = sweep_threshold
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, media_id: str) -> Optional[MediaMetadata]:
        entry = self._entries.get(media_id)
        if entry is None:
            return None
        if self._clock() > entry.expires_at:
            del self._entries[media_id]
            return None
        return entry.value

    def put(self, media_id: str, value: MediaMetadata) -> None:
        now = self._clock()
        value.fetched_at = now
        self._entries[media_id] = CacheEntry(value=value, expires_at=now + self.ttl)
        if len(self._entries) > self.sweep_threshold:
            self.sweep()

    def invalidate(self, media_id: str) -> bool:
        return self._entries.pop(media_id, None) is not None

    def sweep(self) -> int:
        """Remove all expired entries. Returns count removed."""
        now = self._clock()
        expired = [key for key, entry in self._entries.items() if entry.expires_at < now]
        for key in expired:
            del self._entries[key]
        if expired:
            debug_verbose("metadata_cache_sweep", {"removed": len(expired)})
        return len(expired)


__all__ = ["CacheEntry", "MediaMetadata", "MetadataCache"]
