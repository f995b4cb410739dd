from __future__ import annotations

import os
import shutil
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Dict, Optional

_DEFAULTS: Dict[str, str] = {
    "MEDIARELAY_SERVER_NAME": "mediarelay download service",
    "MEDIARELAY_SERVER_HOST": "127.0.0.1",
    "MEDIARELAY_SERVER_PORT": "3000",
    "MEDIARELAY_SERVER_LOG_LEVEL": "info",
    "MEDIARELAY_SINGLE_CONCURRENCY": "1",
    "MEDIARELAY_PLAYLIST_CONCURRENCY": "3",
    "MEDIARELAY_METADATA_TTL": "300",
    "MEDIARELAY_METADATA_SWEEP_THRESHOLD": "100",
    "MEDIARELAY_SHUTDOWN_GRACE": "10",
    "MEDIARELAY_KILL_GRACE": "3",
    "MEDIARELAY_UPDATE_CHECK_URL": (
        "https://api.github.com/repos/yt-dlp/yt-dlp/releases/latest"
    ),
    "MEDIARELAY_UPDATE_CHECK_INTERVAL": "86400",
}


@dataclass(frozen=True)
class ServerEnvironmentConfig:
    name: str
    host: str
    port: int
    log_level: str
    data_folder: str
    cache_folder: str
    download_folder: str
    ytdlp_path: str
    ffmpeg_path: str
    cookies_file: Optional[str]
    single_concurrency: int
    playlist_concurrency: int
    metadata_ttl: int
    metadata_sweep_threshold: int
    shutdown_grace: int
    kill_grace: int
    update_check_url: str
    update_check_interval: int


def _coalesce_env(key: str) -> str:
    default = _DEFAULTS.get(key)
    value = os.getenv(key)
    if value is None:
        if default is None:
            raise RuntimeError(f"Missing environment variable '{key}'")
        return default
    trimmed = value.strip()
    if not trimmed:
        if default is not None:
            return default
        raise RuntimeError(f"Environment variable '{key}' cannot be empty")
    return trimmed


def _parse_int(key: str, *, minimum: int = 0) -> int:
    raw = _coalesce_env(key)
    try:
        value = int(raw)
    except ValueError as exc:  # pragma: no cover - defensive parsing
        raise RuntimeError(f"Environment variable '{key}' must be an integer") from exc
    if value < minimum:
        raise RuntimeError(f"Environment variable '{key}' must be >= {minimum}")
    return value


def _optional_env(key: str) -> Optional[str]:
    raw = os.getenv(key)
    if raw is None:
        return None
    trimmed = raw.strip()
    return trimmed or None


def _default_user_folder() -> Path:
    home = Path.home()
    if os.name == "nt":
        appdata = os.getenv("APPDATA")
        base = Path(appdata) if appdata else home / "AppData" / "Roaming"
        return base / "mediarelay"
    xdg = os.getenv("XDG_DATA_HOME")
    if xdg:
        return Path(xdg) / "mediarelay"
    return home / ".local" / "share" / "mediarelay"


def _resolve_executable(key: str, candidates: tuple[str, ...]) -> str:
    explicit = _optional_env(key)
    if explicit:
        return explicit
    for candidate in candidates:
        located = shutil.which(candidate)
        if located:
            return located
    return candidates[0]


@lru_cache(maxsize=1)
def get_server_environment() -> ServerEnvironmentConfig:
    name = _coalesce_env("MEDIARELAY_SERVER_NAME")
    host = _coalesce_env("MEDIARELAY_SERVER_HOST")
    port = _parse_int("MEDIARELAY_SERVER_PORT", minimum=1)
    log_level = _coalesce_env("MEDIARELAY_SERVER_LOG_LEVEL").lower()

    user_folder = _default_user_folder()
    data_folder = _optional_env("MEDIARELAY_SERVER_DATA") or str(user_folder)
    cache_folder = _optional_env("MEDIARELAY_SERVER_CACHE") or str(
        Path(data_folder, "cache")
    )
    download_folder = _optional_env("MEDIARELAY_SERVER_DOWNLOADS") or str(
        Path(data_folder, "downloads")
    )
    os.makedirs(data_folder, exist_ok=True)
    os.makedirs(cache_folder, exist_ok=True)
    os.makedirs(download_folder, exist_ok=True)

    return ServerEnvironmentConfig(
        name=name,
        host=host,
        port=port,
        log_level=log_level,
        data_folder=data_folder,
        cache_folder=cache_folder,
        download_folder=download_folder,
        ytdlp_path=_resolve_executable(
            "MEDIARELAY_YTDLP_PATH", ("yt-dlp", "yt-dlp.exe")
        ),
        ffmpeg_path=_resolve_executable(
            "MEDIARELAY_FFMPEG_PATH", ("ffmpeg", "ffmpeg.exe")
        ),
        cookies_file=_optional_env("MEDIARELAY_COOKIES"),
        single_concurrency=_parse_int("MEDIARELAY_SINGLE_CONCURRENCY", minimum=1),
        playlist_concurrency=_parse_int("MEDIARELAY_PLAYLIST_CONCURRENCY", minimum=1),
        metadata_ttl=_parse_int("MEDIARELAY_METADATA_TTL", minimum=1),
        metadata_sweep_threshold=_parse_int(
            "MEDIARELAY_METADATA_SWEEP_THRESHOLD", minimum=1
        ),
        shutdown_grace=_parse_int("MEDIARELAY_SHUTDOWN_GRACE"),
        kill_grace=_parse_int("MEDIARELAY_KILL_GRACE"),
        update_check_url=_coalesce_env("MEDIARELAY_UPDATE_CHECK_URL"),
        update_check_interval=_parse_int("MEDIARELAY_UPDATE_CHECK_INTERVAL"),
    )


__all__ = ["ServerEnvironmentConfig", "get_server_environment"]
