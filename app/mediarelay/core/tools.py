"""Executable locations and the argument conventions shared by every tool call."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from ..config import RunMode, ServerEnvironmentConfig, ToolKind, get_server_environment

METADATA_ARGS: tuple[str, ...] = ("--retries", "3", "--fragment-retries", "3")

DOWNLOAD_ARGS: tuple[str, ...] = (
    "--retries",
    "10",
    "--fragment-retries",
    "10",
    "--retry-sleep",
    "exp=1:30",
    "--sleep-requests",
    "1",
    "--sleep-interval",
    "1",
    "--max-sleep-interval",
    "5",
    "--concurrent-fragments",
    "4",
    "--add-header",
    "Accept-Language:en-US,en;q=0.9",
    "--progress",
    "--newline",
)


@dataclass(slots=True)
class DownloaderSettings:
    """Runtime knobs for the orchestrator, built once from the environment."""

    ytdlp_path: str
    ffmpeg_path: str
    download_root: Path
    data_folder: Path
    explicit_cookies: Optional[Path] = None
    single_concurrency: int = 1
    playlist_concurrency: int = 3
    metadata_ttl: float = 300.0
    metadata_sweep_threshold: int = 100
    kill_grace: float = 3.0
    shutdown_grace: float = 10.0
    extra_cookie_locations: List[Path] = field(default_factory=list)

    @classmethod
    def from_environment(
        cls, env: Optional[ServerEnvironmentConfig] = None
    ) -> "DownloaderSettings":
        config = env or get_server_environment()
        return cls(
            ytdlp_path=config.ytdlp_path,
            ffmpeg_path=config.ffmpeg_path,
            download_root=Path(config.download_folder),
            data_folder=Path(config.data_folder),
            explicit_cookies=Path(config.cookies_file) if config.cookies_file else None,
            single_concurrency=config.single_concurrency,
            playlist_concurrency=config.playlist_concurrency,
            metadata_ttl=float(config.metadata_ttl),
            metadata_sweep_threshold=config.metadata_sweep_threshold,
            kill_grace=float(config.kill_grace),
            shutdown_grace=float(config.shutdown_grace),
        )

    def executable(self, tool: ToolKind) -> str:
        if tool is ToolKind.MUXER:
            return self.ffmpeg_path
        return self.ytdlp_path

    def cookie_candidates(self) -> List[Path]:
        candidates: List[Path] = []
        if self.explicit_cookies is not None:
            candidates.append(self.explicit_cookies)
        candidates.append(self.data_folder / "cookies.txt")
        candidates.append(Path(os.getcwd()) / "cookies.txt")
        candidates.append(Path.home() / ".mediarelay" / "cookies.txt")
        candidates.extend(self.extra_cookie_locations)
        return candidates

    def find_cookies(self) -> Optional[Path]:
        """First non-empty cookies.txt among the known locations."""

        for candidate in self.cookie_candidates():
            try:
                if candidate.is_file() and candidate.stat().st_size > 0:
                    return candidate
            except OSError:
                continue
        return None


def downloader_args(
    settings: DownloaderSettings,
    args: List[str],
    mode: RunMode,
    *,
    cookies: Optional[Path] = None,
) -> List[str]:
    """Full argument list for a download tool call in ``mode``."""

    final: List[str] = []
    if settings.ffmpeg_path:
        final.extend(["--ffmpeg-location", settings.ffmpeg_path])
    if cookies is not None:
        final.extend(["--cookies", str(cookies)])
    final.extend(args)
    final.extend(["--encoding", "utf-8", "--no-colors"])
    if mode is RunMode.DOWNLOAD:
        final.extend(DOWNLOAD_ARGS)
    else:
        final.extend(METADATA_ARGS)
    return final


__all__ = [
    "DOWNLOAD_ARGS",
    "METADATA_ARGS",
    "DownloaderSettings",
    "downloader_args",
]
