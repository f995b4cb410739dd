"""Parsers for the line-oriented output markers printed by the download tool."""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from ..utils import parse_size, parse_speed, strip_ansi

_PROGRESS_RE = re.compile(
    r"\[download\]\s*(\d+\.?\d*)%.*?of\s*~?\s*([\d.]+(?:[KMGT]?i?B)).*?at\s*([\d.]+(?:[KMGT]?i?B)/s)"
)
_PERCENT_ONLY_RE = re.compile(r"\[download\]\s*(\d+\.?\d*)%")
_DESTINATION_RE = re.compile(r"\[download\] Destination:\s*(.*)")
_MERGER_RE = re.compile(r'\[Merger\] Merging formats into "([^"]+)"')
_EXTRACT_AUDIO_RE = re.compile(r"\[ExtractAudio\] Destination:\s*(.*)")
_ALREADY_DOWNLOADED_RE = re.compile(r"\[download\] (.*?) has already been downloaded")
_RECODE_RE = re.compile(r'\[VideoConvertor\] Converting video from \S+ to \S+; Destination:\s*(.*)')

_FORBIDDEN_SIGNATURES = ("HTTP Error 403", "403: Forbidden", "Sign in to confirm")
_RATE_LIMIT_SIGNATURES = ("HTTP Error 429", "429: Too Many Requests")


class PathMarker(str, Enum):
    DESTINATION = "destination"
    MERGE = "merge"
    EXTRACT_AUDIO = "extract_audio"
    RECODE = "recode"
    ALREADY_DOWNLOADED = "already_downloaded"


# Later markers describe the file that survives post-processing.
PATH_PRIORITY: tuple[PathMarker, ...] = (
    PathMarker.RECODE,
    PathMarker.EXTRACT_AUDIO,
    PathMarker.MERGE,
    PathMarker.ALREADY_DOWNLOADED,
    PathMarker.DESTINATION,
)


@dataclass(slots=True, frozen=True)
class ProgressSample:
    percent: float
    total_label: Optional[str] = None
    total_bytes: Optional[int] = None
    speed_label: Optional[str] = None
    speed_bytes_per_sec: int = 0
    message: Optional[str] = None

    @property
    def finished(self) -> bool:
        return self.percent >= 100.0


@dataclass(slots=True, frozen=True)
class PathHint:
    marker: PathMarker
    path: str


def parse_progress(line: str) -> Optional[ProgressSample]:
    text = strip_ansi(line)
    if not text:
        return None
    match = _PROGRESS_RE.search(text)
    if match:
        percent = float(match.group(1))
        speed_label = match.group(3)
        return ProgressSample(
            percent=min(percent, 100.0),
            total_label=match.group(2),
            total_bytes=parse_size(match.group(2)),
            speed_label=speed_label,
            speed_bytes_per_sec=parse_speed(speed_label),
        )
    match = _PERCENT_ONLY_RE.search(text)
    if match:
        return ProgressSample(percent=min(float(match.group(1)), 100.0))
    return None


def parse_path_hint(line: str) -> Optional[PathHint]:
    """Return the output path announced on ``line``, if any."""

    text = strip_ansi(line)
    if not text:
        return None
    for marker, pattern in (
        (PathMarker.MERGE, _MERGER_RE),
        (PathMarker.EXTRACT_AUDIO, _EXTRACT_AUDIO_RE),
        (PathMarker.RECODE, _RECODE_RE),
        (PathMarker.ALREADY_DOWNLOADED, _ALREADY_DOWNLOADED_RE),
        (PathMarker.DESTINATION, _DESTINATION_RE),
    ):
        match = pattern.search(text)
        if match:
            path = match.group(1).strip().strip('"')
            if path:
                return PathHint(marker=marker, path=path)
    return None


def is_forbidden(line: str) -> bool:
    return any(signature in line for signature in _FORBIDDEN_SIGNATURES)


def is_rate_limited(line: str) -> bool:
    return any(signature in line for signature in _RATE_LIMIT_SIGNATURES)


def error_lines(stderr: str) -> list[str]:
    """Lines of ``stderr`` that carry an ``ERROR:`` report."""

    collected: list[str] = []
    for raw in stderr.splitlines():
        text = strip_ansi(raw)
        if text and "error:" in text.lower():
            collected.append(text)
    return collected


__all__ = [
    "PATH_PRIORITY",
    "PathHint",
    "PathMarker",
    "ProgressSample",
    "error_lines",
    "is_forbidden",
    "is_rate_limited",
    "parse_path_hint",
    "parse_progress",
]
