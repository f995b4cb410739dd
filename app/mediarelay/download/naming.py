"""Job identifiers, file-name sanitising and output templates."""

from __future__ import annotations

import glob
import re
import secrets
import string
import time
from pathlib import Path
from typing import Callable, Optional
from urllib.parse import parse_qs, quote, urlparse

from ..config import FALLBACK_FILENAME, FILENAME_LIMIT

_ILLEGAL_CHARS_RE = re.compile(r'[<>:"/\\|?*~]')
_WHITESPACE_RE = re.compile(r"\s+")
_SUFFIX_ALPHABET = string.ascii_lowercase + string.digits


def sanitize_filename(title: Optional[str]) -> str:
    if not title or not title.strip():
        return FALLBACK_FILENAME
    sanitized = _ILLEGAL_CHARS_RE.sub("_", title)
    sanitized = _WHITESPACE_RE.sub("_", sanitized)
    return sanitized[:FILENAME_LIMIT]


def unique_folder(base: Path, name: str) -> Path:
    """``base/name``, or the first free ``base/name (N)``."""

    folder_name = sanitize_filename(name)
    candidate = base / folder_name
    if not candidate.exists():
        return candidate
    counter = 1
    while True:
        candidate = base / f"{folder_name} ({counter})"
        if not candidate.exists():
            return candidate
        counter += 1


def media_id_from_url(url: str) -> str:
    """Best-effort stable identifier for a media URL (``v=`` id, else last path part)."""

    text = url.strip()
    parsed = urlparse(text)
    if parsed.scheme and parsed.netloc:
        video_ids = parse_qs(parsed.query).get("v")
        if video_ids and video_ids[0]:
            return video_ids[0]
        host = parsed.netloc.lower()
        segments = [segment for segment in parsed.path.split("/") if segment]
        if host.endswith("youtu.be") and segments:
            return segments[0]
        if segments:
            return segments[-1]
        return text
    return text


def _random_suffix(length: int = 5) -> str:
    return "".join(secrets.choice(_SUFFIX_ALPHABET) for _ in range(length))


def _timestamp_ms(clock: Callable[[], float]) -> int:
    return int(clock() * 1000)


def single_job_id(
    source: str, url: str, *, suffix: Optional[str] = None
) -> str:
    media_id = sanitize_filename(media_id_from_url(url))[:64]
    return f"{source}_{media_id}_{suffix or _random_suffix()}"


def playlist_job_id(source: str, clock: Callable[[], float] = time.time) -> str:
    return f"playlist_{source}_{_timestamp_ms(clock)}_{_random_suffix(4)}"


def playlist_child_id(
    source: str, media_id: str, index: int, clock: Callable[[], float] = time.time
) -> str:
    return f"{source}_{media_id}_{_timestamp_ms(clock)}_{index}"


def output_template(
    folder: Path,
    *,
    source: str,
    title: Optional[str],
    job_id: str,
    playlist: bool = False,
    playlist_index: Optional[int] = None,
    numbered: bool = False,
) -> str:
    base = sanitize_filename(title)
    if playlist:
        if numbered and playlist_index is not None:
            name = f"{source}_playlist_{playlist_index + 1}_{base}"
        else:
            name = f"{source}_playlist_{base}"
    else:
        name = f"{source}_{base}_{job_id}"
    return str(folder / f"{name}.%(ext)s")


def temp_artifact_patterns(template: str) -> list[str]:
    """Globs for the partial files a tool run leaves next to ``template``."""

    stem = glob.escape(template.replace(".%(ext)s", ""))
    return [
        f"{stem}.*.part",
        f"{stem}.part",
        f"{stem}.*.ytdl",
        f"{stem}.ytdl",
        f"{stem}.f*.*",
        f"{stem}.temp.*",
        f"{stem}.fixed.mp4",
    ]


def download_link(path: Path, root: Path) -> str:
    try:
        relative = path.resolve().relative_to(root.resolve())
    except ValueError:
        relative = Path(path.name)
    return "/downloads/" + quote(relative.as_posix(), safe="/")


__all__ = [
    "download_link",
    "media_id_from_url",
    "output_template",
    "playlist_child_id",
    "playlist_job_id",
    "sanitize_filename",
    "single_job_id",
    "temp_artifact_patterns",
    "unique_folder",
]
