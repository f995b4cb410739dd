"""Format selectors, container handling and size estimates."""

from __future__ import annotations

from typing import Any, Dict, Iterable, List, Mapping, Optional

from ..config import AUDIO_FORMATS, VIDEO_FORMATS
from .models import QualitySpec

_MP4_AUDIO = "bestaudio[ext=m4a][acodec^=mp4a]/bestaudio[acodec^=mp4a]/bestaudio[ext=m4a]"
_WEBM_AUDIO = "bestaudio[acodec=opus]/bestaudio[ext=webm]"
_LOSSLESS = frozenset({"flac", "wav"})
_MIN_LISTED_HEIGHT = 240


def download_container(container: str) -> str:
    """Container the download tool merges into; mov is produced afterwards."""
    return "mp4" if container == "mov" else container


def _generic_video_selector(quality: QualitySpec) -> str:
    if quality.is_best:
        return "bestvideo+bestaudio/best"
    height = quality.target
    return (
        f"bestvideo[height={height}]+bestaudio"
        f"/bestvideo[height<={height}]+bestaudio/best"
    )


def video_selector(container: str, quality: QualitySpec) -> str:
    generic = _generic_video_selector(quality)
    merged = download_container(container)
    height_filter = "" if quality.is_best else f"[height<={quality.target}]"
    if merged in {"mp4", "avi"}:
        preferred = f"bestvideo[ext=mp4]{height_filter}+{_MP4_AUDIO}"
    elif merged == "webm":
        preferred = f"bestvideo[ext=webm]{height_filter}+{_WEBM_AUDIO}"
    else:
        return generic
    return f"{preferred}/{generic}"


def audio_selector(quality: QualitySpec) -> str:
    if quality.is_best:
        return "bestaudio/best"
    return f"bestaudio[abr<={quality.target}]/bestaudio"


def instagram_selector(quality: QualitySpec) -> str:
    if quality.is_best:
        return "bestvideo[ext=mp4]+bestaudio[ext=m4a]/best[ext=mp4]/best"
    height = quality.target
    return (
        f"bestvideo[height<=?{height}][ext=mp4]+bestaudio[ext=m4a]"
        f"/best[height<=?{height}][ext=mp4]/best"
    )


def audio_args(container: str, quality: QualitySpec) -> List[str]:
    return [
        "-f",
        audio_selector(quality),
        "--extract-audio",
        "--audio-format",
        container,
        "--audio-quality",
        "0" if quality.is_best else f"{quality.target}K",
    ]


def video_args(container: str, quality: QualitySpec) -> List[str]:
    args = [
        "-f",
        video_selector(container, quality),
        "--merge-output-format",
        download_container(container),
    ]
    if container == "avi":
        args.extend(["--recode-video", "avi"])
    return args


def mov_transcode_args(source: str, target: str) -> List[str]:
    return [
        "-y",
        "-i",
        source,
        "-c:v",
        "libx264",
        "-pix_fmt",
        "yuv420p",
        "-preset",
        "medium",
        "-movflags",
        "+faststart",
        "-c:a",
        "aac",
        "-b:a",
        "192k",
        target,
    ]


def aac_fix_args(source: str, target: str) -> List[str]:
    return ["-y", "-i", source, "-c:v", "copy", "-c:a", "aac", "-b:a", "192k", target]


def available_qualities(formats: Optional[Iterable[Mapping[str, Any]]]) -> List[int]:
    heights = set()
    for entry in formats or []:
        height = entry.get("height")
        if isinstance(height, (int, float)) and height >= _MIN_LISTED_HEIGHT:
            heights.add(int(height))
    return sorted(heights, reverse=True)


def _size_of(entry: Optional[Mapping[str, Any]]) -> Optional[float]:
    if not entry:
        return None
    value = entry.get("filesize") or entry.get("filesize_approx")
    return float(value) if value else None


def _has_codec(entry: Mapping[str, Any], key: str) -> bool:
    codec = entry.get(key)
    return bool(codec) and codec != "none"


def estimate_size(
    info: Mapping[str, Any], container: str, quality: QualitySpec
) -> Optional[int]:
    """Approximate final file size in bytes from a tool info dict."""

    formats: List[Dict[str, Any]] = [
        entry for entry in info.get("formats") or [] if isinstance(entry, dict)
    ]
    estimate: Optional[float] = None
    duration = info.get("duration") or 0

    if formats and container in AUDIO_FORMATS:
        audio = [entry for entry in formats if _has_codec(entry, "acodec")]
        selected: Optional[Dict[str, Any]] = None
        if audio:
            if quality.is_best:
                selected = max(audio, key=lambda entry: entry.get("abr") or 0)
            else:
                ceiling = quality.target or 128
                selected = next(
                    (entry for entry in audio if (entry.get("abr") or 128) <= ceiling),
                    audio[0],
                )
        base = _size_of(selected)
        if base:
            multiplier = 1.15 if container in _LOSSLESS else 1.05
            estimate = base * multiplier
    elif formats and container in VIDEO_FORMATS:
        limit = 9999 if quality.is_best else (quality.target or 720)
        videos = [
            entry
            for entry in formats
            if _has_codec(entry, "vcodec") and entry.get("height") and entry["height"] <= limit
        ]
        if videos:
            video = max(videos, key=lambda entry: entry.get("height") or 0)
            audio_only = [
                entry
                for entry in formats
                if not _has_codec(entry, "vcodec") and _has_codec(entry, "acodec")
            ]
            audio = max(audio_only, key=lambda entry: entry.get("abr") or 0) if audio_only else None
            audio_size = _size_of(audio)
            if not audio_size and audio and duration and audio.get("abr"):
                audio_size = audio["abr"] * 1000 / 8 * duration
            video_size = _size_of(video)
            if video_size:
                estimate = (video_size + (audio_size or 0)) * 1.06

    if not estimate:
        estimate = _size_of(info)
    if not estimate and duration > 0:
        bitrate = (info.get("tbr") or 0) + (info.get("abr") or 0)
        if bitrate > 0:
            estimate = bitrate * 1000 / 8 * duration
    return int(round(estimate)) if estimate else None


__all__ = [
    "aac_fix_args",
    "audio_args",
    "audio_selector",
    "available_qualities",
    "download_container",
    "estimate_size",
    "instagram_selector",
    "mov_transcode_args",
    "video_args",
    "video_selector",
]
