"""Per-source download strategies (folder conventions, tool arguments, post-processing)."""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING, Dict, List, Optional

from ..config import INSTAGRAM_FOLDER, MediaSource, RunMode, ToolKind
from ..core.errors import ToolError
from ..log_config import error_log
from . import formats
from .models import DownloadJob

if TYPE_CHECKING:  # pragma: no cover - only used for type hints
    from ..core.runner import ProcessRunner


def _common_args(job: DownloadJob, template: str, *, no_overwrites: bool) -> List[str]:
    args: List[str] = ["--no-playlist", "-o", template]
    settings = job.settings
    if settings.max_speed and settings.max_speed > 0:
        args.extend(["--limit-rate", f"{settings.max_speed}K"])
    if no_overwrites:
        args.append("--no-overwrites")
    if settings.search_tags:
        args.append("--embed-metadata")
    return args


class SourceStrategy:
    source: MediaSource
    supports_playlists: bool = False
    info_message: Optional[str] = None
    complete_message: str = "Download complete!"

    def target_folder(self, job: DownloadJob, root: Path) -> Path:
        raise NotImplementedError

    def build_args(self, job: DownloadJob, template: str) -> List[str]:
        raise NotImplementedError

    def status_message(self, job: DownloadJob) -> str:
        return "Starting download..."

    async def post_process(
        self, job: DownloadJob, downloaded: Path, runner: "ProcessRunner"
    ) -> Path:
        return downloaded


class YoutubeStrategy(SourceStrategy):
    source = MediaSource.YOUTUBE
    supports_playlists = True

    def target_folder(self, job: DownloadJob, root: Path) -> Path:
        if job.playlist_folder is not None:
            return job.playlist_folder
        override = job.settings.download_folder
        if override and Path(override).is_dir():
            return Path(override)
        return root

    def build_args(self, job: DownloadJob, template: str) -> List[str]:
        args = _common_args(
            job,
            template,
            no_overwrites=job.settings.skip_duplicates and job.is_playlist_item,
        )
        if job.is_audio:
            args.extend(formats.audio_args(job.format, job.quality))
        else:
            args.extend(formats.video_args(job.format, job.quality))
        args.append(job.media_ref)
        return args

    def status_message(self, job: DownloadJob) -> str:
        if job.is_audio:
            return "Starting audio download..."
        if job.quality.is_best:
            return "Downloading in highest available quality..."
        return f"Downloading in {job.quality.target}p quality..."

    async def post_process(
        self, job: DownloadJob, downloaded: Path, runner: "ProcessRunner"
    ) -> Path:
        if job.format == "mov":
            target = downloaded.with_suffix(".mov")
            await runner.run(
                ToolKind.MUXER,
                formats.mov_transcode_args(str(downloaded), str(target)),
                job,
                RunMode.DOWNLOAD,
                output_template=str(target),
            )
            downloaded.unlink(missing_ok=True)
            return target
        if (
            job.format == "mp4"
            and job.settings.normalize_audio
            and downloaded.suffix.lower() == ".mp4"
        ):
            fixed = downloaded.with_name(f"{downloaded.stem}.fixed.mp4")
            try:
                await runner.run(
                    ToolKind.MUXER,
                    formats.aac_fix_args(str(downloaded), str(fixed)),
                    job,
                    RunMode.DOWNLOAD,
                    output_template=str(fixed),
                )
            except ToolError as exc:
                # The untouched download is still a valid result.
                error_log("aac_fix_failed", {"job_id": job.job_id, "error": str(exc)})
                fixed.unlink(missing_ok=True)
                return downloaded
            downloaded.unlink(missing_ok=True)
            return fixed
        return downloaded


class InstagramStrategy(SourceStrategy):
    source = MediaSource.INSTAGRAM
    info_message = "Fetching Instagram video info..."
    complete_message = "Instagram download complete."

    def target_folder(self, job: DownloadJob, root: Path) -> Path:
        return root / INSTAGRAM_FOLDER

    def build_args(self, job: DownloadJob, template: str) -> List[str]:
        args = _common_args(job, template, no_overwrites=job.settings.skip_duplicates)
        args.extend(
            [
                "-f",
                formats.instagram_selector(job.quality),
                "--merge-output-format",
                "mp4",
                job.media_ref,
            ]
        )
        return args

    def status_message(self, job: DownloadJob) -> str:
        return "Starting Instagram download..."


STRATEGIES: Dict[str, SourceStrategy] = {
    MediaSource.YOUTUBE.value: YoutubeStrategy(),
    MediaSource.INSTAGRAM.value: InstagramStrategy(),
}


def strategy_for(source: str) -> Optional[SourceStrategy]:
    return STRATEGIES.get(source)


__all__ = [
    "InstagramStrategy",
    "STRATEGIES",
    "SourceStrategy",
    "YoutubeStrategy",
    "strategy_for",
]
