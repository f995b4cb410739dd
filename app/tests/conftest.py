from __future__ import annotations

import asyncio
import json
import os
import tempfile
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

import pytest

# Configuration is read once at import time; keep logs and downloads out of $HOME.
os.environ.setdefault("MEDIARELAY_SERVER_DATA", tempfile.mkdtemp(prefix="mediarelay-tests-"))
os.environ.pop("MEDIARELAY_SERVER_TOKEN", None)

from mediarelay.config import RunMode, ToolKind  # noqa: E402
from mediarelay.core.errors import DownloadCancelled, ToolError, ToolExitError  # noqa: E402
from mediarelay.core.markers import ProgressSample  # noqa: E402
from mediarelay.core.runner import ProgressCallback, RunResult, RunnableJob  # noqa: E402
from mediarelay.core.tools import DownloaderSettings  # noqa: E402
from mediarelay.models.socket.base import SocketPayload  # noqa: E402

SAMPLE_URL = "https://www.youtube.com/watch?v=abc123XYZ"
PLAYLIST_URL = "https://www.youtube.com/playlist?list=PL0123456789"

SAMPLE_INFO: Dict[str, Any] = {
    "title": "Test Clip",
    "thumbnail": "https://i.ytimg.com/vi/abc123XYZ/hq.jpg",
    "duration": 10,
    "formats": [
        {"format_id": "18", "height": 360, "vcodec": "avc1", "acodec": "none", "filesize": 400_000},
        {"format_id": "22", "height": 720, "vcodec": "avc1", "acodec": "none", "filesize": 1_000_000},
        {"format_id": "140", "vcodec": "none", "acodec": "mp4a.40.2", "abr": 128, "filesize": 200_000},
    ],
}


class FakeRunner:
    """Scripted stand-in for the tool runner.

    Metadata calls answer from canned data; download calls write the file
    the real tool would leave behind, optionally holding until the job is
    cancelled.
    """

    def __init__(
        self,
        *,
        info: Optional[Dict[str, Any]] = None,
        infos: Optional[Dict[str, Dict[str, Any]]] = None,
        playlist: Sequence[Tuple[str, str]] = (),
        playlist_title: Optional[str] = None,
        fail_info: bool = False,
        fail_download: Optional[ToolError] = None,
        hold_downloads: bool = False,
        download_delay: float = 0.01,
    ) -> None:
        self.info = dict(info or SAMPLE_INFO)
        self.infos = dict(infos or {})
        self.playlist = list(playlist)
        self.playlist_title = playlist_title
        self.fail_info = fail_info
        self.fail_download = fail_download
        self.hold_downloads = hold_downloads
        self.download_delay = download_delay
        self.calls: List[Tuple[ToolKind, RunMode, List[str]]] = []
        self.download_started = asyncio.Event()
        self.active = 0
        self.max_active = 0

    def metadata_calls(self, flag: str) -> List[List[str]]:
        return [args for _, mode, args in self.calls if mode is RunMode.METADATA and flag in args]

    def download_calls(self) -> List[List[str]]:
        return [
            args
            for tool, mode, args in self.calls
            if tool is ToolKind.DOWNLOADER and mode is RunMode.DOWNLOAD
        ]

    async def run(
        self,
        tool: ToolKind,
        args: Sequence[str],
        job: RunnableJob,
        mode: RunMode,
        *,
        on_progress: Optional[ProgressCallback] = None,
        output_template: Optional[str] = None,
    ) -> RunResult:
        argv = list(args)
        self.calls.append((tool, mode, argv))
        if job.cancel_requested:
            raise DownloadCancelled(job.job_id)
        if mode is RunMode.METADATA:
            return self._metadata(argv)
        assert output_template is not None
        if tool is ToolKind.MUXER:
            target = Path(output_template)
            target.write_bytes(b"converted")
            return RunResult(stdout="", stderr="", output_path=target, exit_code=0)
        return await self._download(argv, job, on_progress, output_template)

    def _metadata(self, args: List[str]) -> RunResult:
        if "--print-json" in args:
            if self.fail_info:
                raise ToolExitError("ERROR: Video unavailable", exit_code=1)
            info = self.infos.get(args[-1], self.info)
            return RunResult(stdout=json.dumps(info) + "\n", stderr="", output_path=None, exit_code=0)
        if "--playlist-items" in args:
            return RunResult(stdout=f"{self.playlist_title or 'NA'}\n", stderr="", output_path=None, exit_code=0)
        if "--flat-playlist" in args:
            lines = "\n".join(f"{media_id}\t{title}" for media_id, title in self.playlist)
            return RunResult(stdout=lines, stderr="", output_path=None, exit_code=0)
        if self.fail_info:
            raise ToolExitError("ERROR: Video unavailable", exit_code=1)
        stdout = f"{self.info.get('title')}\n{self.info.get('thumbnail')}\n"
        return RunResult(stdout=stdout, stderr="", output_path=None, exit_code=0)

    async def _download(
        self,
        args: List[str],
        job: RunnableJob,
        on_progress: Optional[ProgressCallback],
        template: str,
    ) -> RunResult:
        stem = template.replace(".%(ext)s", "")
        partial = Path(f"{stem}.part")
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            partial.write_bytes(b"partial")
            if on_progress is not None:
                on_progress(
                    ProgressSample(
                        percent=42.0, speed_label="1.00MiB/s", speed_bytes_per_sec=1048576
                    )
                )
            self.download_started.set()
            await asyncio.sleep(self.download_delay)
            while self.hold_downloads and not job.cancel_requested:
                await asyncio.sleep(0.005)
            if job.cancel_requested:
                raise DownloadCancelled(job.job_id)
            if self.fail_download is not None:
                raise self.fail_download
            if "--audio-format" in args:
                ext = args[args.index("--audio-format") + 1]
            else:
                ext = args[args.index("--merge-output-format") + 1]
            partial.unlink()
            final = Path(f"{stem}.{ext}")
            final.write_bytes(b"media-bytes")
            if on_progress is not None:
                on_progress(ProgressSample(percent=100.0))
            return RunResult(stdout="", stderr="", output_path=final, exit_code=0)
        finally:
            self.active -= 1


class RecordingEvents:
    """Event sink that keeps every serialized event per client."""

    def __init__(self) -> None:
        self.sent: List[Tuple[str, Dict[str, Any]]] = []

    def send(self, client_id: str, event: SocketPayload) -> None:
        self.sent.append((client_id, event.to_dict()))

    def for_item(self, item_id: str) -> List[Dict[str, Any]]:
        return [event for _, event in self.sent if event.get("itemId") == item_id]

    def of_type(self, event_type: str) -> List[Dict[str, Any]]:
        return [event for _, event in self.sent if event["type"] == event_type]

    def terminal_for(self, item_id: str) -> List[Dict[str, Any]]:
        terminal = {"complete", "error", "cancel_confirm", "playlist_complete"}
        return [event for event in self.for_item(item_id) if event["type"] in terminal]


@pytest.fixture
def settings(tmp_path: Path) -> DownloaderSettings:
    download_root = tmp_path / "downloads"
    download_root.mkdir()
    return DownloaderSettings(
        ytdlp_path="yt-dlp",
        ffmpeg_path="ffmpeg",
        download_root=download_root,
        data_folder=tmp_path / "data",
        kill_grace=0.5,
        shutdown_grace=1.0,
    )
