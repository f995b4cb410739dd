from __future__ import annotations

import json
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Tuple

from ..config import RunMode, ToolKind
from ..core.errors import ToolError
from ..log_config import debug_verbose, error_log
from .cache import MediaMetadata, MetadataCache
from .formats import available_qualities
from .naming import media_id_from_url

if TYPE_CHECKING:  # pragma: no cover - only used for type hints
    from ..core.runner import ProcessHandle, ProcessRunner, RunnableJob

PLACEHOLDER_TITLE = "video"


class ProbeJob:
    """Stand-in owner for metadata calls that do not belong to a download job."""

    def __init__(self, job_id: str) -> None:
        self.job_id = job_id
        self.process: Optional["ProcessHandle"] = None

    @property
    def cancel_requested(self) -> bool:
        return False

    def attach_process(self, handle: "ProcessHandle") -> None:
        self.process = handle

    def release_process(self, handle: "ProcessHandle") -> None:
        if self.process is handle:
            self.process = None


@dataclass(slots=True)
class MetadataLookup:
    metadata: MediaMetadata
    cached: bool = False
    degraded: bool = False


def _last_json_line(stdout: str) -> Dict[str, Any]:
    for line in reversed(stdout.splitlines()):
        text = line.strip()
        if text.startswith("{"):
            payload = json.loads(text)
            if isinstance(payload, dict):
                return payload
    raise ValueError("no JSON object in tool output")


def _number(value: Any) -> Optional[float]:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return float(value)
    return None


class MetadataService:
    """Metadata-only tool queries, fronted by the TTL cache."""

    def __init__(self, runner: "ProcessRunner", cache: MetadataCache) -> None:
        self.runner = runner
        self.cache = cache

    async def describe(
        self, url: str, job: Optional["RunnableJob"] = None
    ) -> MetadataLookup:
        """Title, thumbnail and formats for ``url``; never raises on tool failure.

        A failed info query falls back to a lightweight title/thumbnail print,
        and a failed fallback yields the placeholder title with ``degraded``
        set. Cancellation still propagates.
        """

        media_id = media_id_from_url(url)
        cached = self.cache.get(media_id)
        if cached is not None:
            debug_verbose("metadata_cache_hit", {"media_id": media_id})
            return MetadataLookup(metadata=cached, cached=True)

        owner = job or ProbeJob(f"info_{media_id}")
        try:
            result = await self.runner.run(
                ToolKind.DOWNLOADER,
                ["--no-playlist", "--skip-download", "--print-json", url],
                owner,
                RunMode.METADATA,
            )
            info = _last_json_line(result.stdout)
        except (ToolError, ValueError) as exc:
            error_log("metadata_info_failed", {"url": url, "error": str(exc)})
            return await self._fallback(url, owner)

        formats = [entry for entry in info.get("formats") or [] if isinstance(entry, dict)]
        metadata = MediaMetadata(
            title=str(info.get("title") or PLACEHOLDER_TITLE),
            thumbnail=info.get("thumbnail") or None,
            available_qualities=available_qualities(formats),
            formats=formats,
            duration=_number(info.get("duration")),
            filesize=_number(info.get("filesize")) or _number(info.get("filesize_approx")),
            bitrate=_number(info.get("tbr")),
        )
        self.cache.put(media_id, metadata)
        return MetadataLookup(metadata=metadata)

    async def _fallback(self, url: str, owner: "RunnableJob") -> MetadataLookup:
        try:
            result = await self.runner.run(
                ToolKind.DOWNLOADER,
                [
                    "--no-playlist",
                    "--skip-download",
                    "--print",
                    "%(title)s",
                    "--print",
                    "%(thumbnail)s",
                    url,
                ],
                owner,
                RunMode.METADATA,
            )
        except ToolError as exc:
            error_log("metadata_fallback_failed", {"url": url, "error": str(exc)})
            return MetadataLookup(
                metadata=MediaMetadata(title=PLACEHOLDER_TITLE), degraded=True
            )
        lines = [line.strip() for line in result.stdout.splitlines() if line.strip()]
        title = lines[0] if lines else PLACEHOLDER_TITLE
        thumbnail = lines[1] if len(lines) > 1 and lines[1].startswith("http") else None
        return MetadataLookup(metadata=MediaMetadata(title=title, thumbnail=thumbnail))

    async def flatten_playlist(
        self, url: str, job: "RunnableJob"
    ) -> List[Tuple[str, str]]:
        """Ordered ``(media_id, title)`` pairs; tool failures propagate."""

        result = await self.runner.run(
            ToolKind.DOWNLOADER,
            ["--flat-playlist", "--print", "%(id)s\t%(title)s", url],
            job,
            RunMode.METADATA,
        )
        items: List[Tuple[str, str]] = []
        for line in result.stdout.splitlines():
            if "\t" not in line or not line.strip():
                continue
            media_id, _, title = line.partition("\t")
            media_id = media_id.strip()
            if not media_id:
                continue
            items.append((media_id, title.strip() or "Untitled Video"))
        return items

    async def playlist_title(self, url: str, job: "RunnableJob") -> Optional[str]:
        try:
            result = await self.runner.run(
                ToolKind.DOWNLOADER,
                [
                    "--flat-playlist",
                    "--playlist-items",
                    "1",
                    "--print",
                    "%(playlist_title)s",
                    url,
                ],
                job,
                RunMode.METADATA,
            )
        except ToolError as exc:
            error_log("playlist_title_failed", {"url": url, "error": str(exc)})
            return None
        for line in result.stdout.splitlines():
            title = line.strip()
            if title and title != "NA":
                return title
        return None


__all__ = ["MetadataLookup", "MetadataService", "PLACEHOLDER_TITLE", "ProbeJob"]
