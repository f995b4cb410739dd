"""Job orchestration: classification, admission, execution and cancellation."""

from __future__ import annotations

import asyncio
import glob
import os
import time
from pathlib import Path
from typing import Any, Dict, List, Optional, Set, Tuple

from ..config import JobState, RunMode, ToolKind
from ..core.errors import DownloadCancelled, ToolExitError
from ..core.markers import ProgressSample
from ..core.runner import terminate_tree
from ..log_config import verbose_log
from ..models.socket.base import SocketPayload
from ..models.socket.events import (
    CancelConfirmEvent,
    CompleteEvent,
    ErrorEvent,
    ItemInfoEvent,
    PlaylistCompleteEvent,
    ProgressEvent,
    QueuedEvent,
    StatusEvent,
)
from ..utils import format_bytes
from .context import OrchestratorContext
from .formats import estimate_size
from .job_logger import JobLogger
from .models import DownloadJob, DownloadRequest, QualitySpec
from .naming import (
    download_link,
    output_template,
    playlist_child_id,
    playlist_job_id,
    single_job_id,
    temp_artifact_patterns,
    unique_folder,
)
from .registry import JobRegistry
from .sources import SourceStrategy, strategy_for

PENDING_SIZE = "Fetching..."
DEGRADED_METADATA_MESSAGE = "Could not fetch video info, proceeding with defaults."
EMPTY_PLAYLIST_MESSAGE = "Playlist seems empty or contains no downloadable video items."


def _is_playlist_url(url: str) -> bool:
    return "list=" in url


def _child_reference(media_id: str) -> str:
    if media_id.startswith(("http://", "https://")):
        return media_id
    return f"https://www.youtube.com/watch?v={media_id}"


def _remove_artifacts(job: DownloadJob, log: JobLogger) -> None:
    for pattern in job.temp_artifacts:
        for match in glob.glob(pattern):
            try:
                os.remove(match)
            except FileNotFoundError:
                continue
            except OSError as exc:
                log.error("temp_cleanup_failed", path=match, error=str(exc))
                continue
            log.debug("temp_removed", path=match)


class JobOrchestrator:
    """Owns the life of every job from ``submit`` to its terminal event.

    All bookkeeping runs on the event loop. Each job's terminal event is
    emitted exactly once, after the job has been retired from the registry.
    """

    def __init__(self, context: OrchestratorContext) -> None:
        self.context = context
        self._admissions: Dict[str, "asyncio.Future[Any]"] = {}
        self._outstanding: Set["asyncio.Future[Any]"] = set()
        self._closing = False

    @property
    def registry(self) -> JobRegistry:
        return self.context.registry

    @property
    def closing(self) -> bool:
        return self._closing

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------
    def submit(self, client_id: str, request: DownloadRequest) -> Optional[str]:
        """Classify ``request``, register its job(s) and queue them.

        Returns the id of the top-level job, or ``None`` when the server is
        shutting down and nothing was queued.
        """

        if self._closing:
            self._send(client_id, ErrorEvent(message="Server is shutting down..."))
            return None
        self._apply_concurrency(request)
        strategy = strategy_for(request.source)
        if (
            strategy is not None
            and strategy.supports_playlists
            and _is_playlist_url(request.url)
            and self.context.wants_playlist(request.playlist_action)
        ):
            return self._submit_playlist(client_id, request, strategy)
        return self._submit_single(client_id, request, strategy)

    def cancel(self, client_id: str, job_id: str) -> bool:
        self._send(
            client_id, StatusEvent(message="Cancellation request received...", item_id=job_id)
        )
        if self._cancel_job(job_id):
            return True
        self._send(
            client_id,
            StatusEvent(
                message="Item not found or already completed/cancelled.", item_id=job_id
            ),
        )
        return False

    async def lookup_media(
        self, url: str, container: str, quality: QualitySpec
    ) -> Dict[str, Any]:
        """Metadata summary for the HTTP surface; raises ``ToolError`` when unavailable."""

        lookup = await self.context.metadata.describe(url)
        if lookup.degraded:
            raise ToolExitError("Failed to fetch video info.")
        metadata = lookup.metadata
        size = estimate_size(metadata.as_info(), container, quality)
        return {
            "title": metadata.title,
            "thumbnail": metadata.thumbnail,
            "fileSize": format_bytes(size) if size else "N/A",
            "availableQualities": list(metadata.available_qualities),
        }

    async def join(self) -> None:
        while self._outstanding:
            await asyncio.gather(*list(self._outstanding), return_exceptions=True)

    async def shutdown(self, grace: Optional[float] = None) -> None:
        """Cancel every job, then force-kill whatever outlives ``grace``."""

        grace = self.context.settings.shutdown_grace if grace is None else grace
        self._closing = True
        verbose_log("orchestrator_shutdown", {"jobs": len(self.registry), "grace": grace})
        for job in self.registry.all_jobs():
            self._cancel_job(job.job_id)
        if self._outstanding:
            _, pending = await asyncio.wait(set(self._outstanding), timeout=grace)
            if pending:
                handles = self.registry.live_processes()
                verbose_log("orchestrator_force_kill", {"processes": len(handles)})
                await asyncio.gather(
                    *(terminate_tree(handle.process, 0.0) for handle in handles),
                    return_exceptions=True,
                )
                await asyncio.wait(pending, timeout=self.context.settings.kill_grace)
        await self.context.single_limiter.aclose(timeout=0)
        await self.context.playlist_limiter.aclose(timeout=0)

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------
    def _apply_concurrency(self, request: DownloadRequest) -> None:
        if request.single_concurrency:
            self.context.single_limiter.set_capacity(request.single_concurrency)
        if request.concurrency:
            self.context.playlist_limiter.set_capacity(request.concurrency)

    def _submit_single(
        self,
        client_id: str,
        request: DownloadRequest,
        strategy: Optional[SourceStrategy],
    ) -> str:
        job = DownloadJob(
            job_id=single_job_id(request.source, request.url),
            client_id=client_id,
            source=request.source,
            media_ref=request.url,
            format=request.format,
            quality=request.quality,
            settings=request.settings,
            title=f"Video: {request.url}",
        )
        self.registry.register(job)
        self._send(
            client_id,
            QueuedEvent(
                item_id=job.job_id,
                title=job.title or "",
                source=job.source,
                estimated_size=PENDING_SIZE,
            ),
        )
        if strategy is None:
            job.transition(JobState.FAILED)
            job.error = f"Unsupported source: {job.source}"
            self._finish(job, ErrorEvent(message=job.error, item_id=job.job_id, source=job.source))
            return job.job_id
        self._schedule(job, strategy)
        return job.job_id

    def _submit_playlist(
        self, client_id: str, request: DownloadRequest, strategy: SourceStrategy
    ) -> str:
        parent = DownloadJob(
            job_id=playlist_job_id(request.source),
            client_id=client_id,
            source=request.source,
            media_ref=request.url,
            format=request.format,
            quality=request.quality,
            settings=request.settings,
            title=f"Playlist from {request.url}",
            is_playlist=True,
        )
        self.registry.register(parent)
        self._send(
            client_id,
            QueuedEvent(
                item_id=parent.job_id,
                title=f"Fetching playlist: {request.url}",
                source=parent.source,
            ),
        )
        self._track(asyncio.ensure_future(self._run_playlist(parent, strategy)))
        return parent.job_id

    def _schedule(
        self, job: DownloadJob, strategy: SourceStrategy
    ) -> "asyncio.Future[Any]":
        limiter = self.context.limiter_for(job.is_playlist_item)
        future = limiter.submit(lambda: self._execute_job(job, strategy))
        self._admissions[job.job_id] = future
        self._track(future)
        return future

    def _track(self, future: "asyncio.Future[Any]") -> None:
        self._outstanding.add(future)
        future.add_done_callback(self._outstanding.discard)

    # ------------------------------------------------------------------
    # Cancellation
    # ------------------------------------------------------------------
    def _cancel_job(self, job_id: str) -> bool:
        job = self.registry.lookup(job_id)
        if job is None:
            return False
        targets = [job, *self.registry.children_of(job_id)]
        self.registry.mark_cancelled(job_id)
        queued = {entry.job_id for entry in self.registry.queued_jobs()}
        for target in targets:
            if target.job_id in queued:
                self._cancel_queued(target)
        return True

    def _cancel_queued(self, job: DownloadJob) -> None:
        future = self._admissions.pop(job.job_id, None)
        if future is not None:
            self.context.limiter_for(job.is_playlist_item).withdraw(future)
        job.transition(JobState.CANCELLED)
        JobLogger(job.job_id, parent_id=job.parent_job_id).info("job_cancelled_in_queue")
        self._finish(
            job,
            CancelConfirmEvent(
                item_id=job.job_id,
                message="Download cancelled from queue.",
                source=job.source,
            ),
        )

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------
    async def _execute_job(self, job: DownloadJob, strategy: SourceStrategy) -> None:
        self._admissions.pop(job.job_id, None)
        if job.job_id not in self.registry:
            # Finalised while it waited for a slot.
            return
        self.registry.admit(job.job_id)
        log = JobLogger(job.job_id, parent_id=job.parent_job_id)
        outcome: SocketPayload
        try:
            if job.cancel_requested:
                raise DownloadCancelled(job.job_id)
            job.transition(JobState.METADATA_FETCHING)
            outcome = await self._download(job, strategy, log)
            job.transition(JobState.COMPLETED)
            log.info("job_completed", path=str(job.output_path))
        except DownloadCancelled:
            self._settle(job, JobState.CANCELLED)
            log.info("job_cancelled", state=job.state.value)
            outcome = CancelConfirmEvent(
                item_id=job.job_id,
                message="Processing stopped due to cancellation.",
                source=job.source,
            )
        except asyncio.CancelledError:
            self._settle(job, JobState.CANCELLED)
            self._finish(
                job,
                CancelConfirmEvent(
                    item_id=job.job_id,
                    message="Processing stopped due to cancellation.",
                    source=job.source,
                ),
            )
            raise
        except Exception as exc:  # noqa: BLE001 - job boundary
            if job.cancel_requested:
                self._settle(job, JobState.CANCELLED)
                outcome = CancelConfirmEvent(
                    item_id=job.job_id,
                    message="Processing stopped due to cancellation.",
                    source=job.source,
                )
            else:
                self._settle(job, JobState.FAILED)
                job.error = str(exc)
                log.error("job_failed", error=job.error, kind=type(exc).__name__)
                outcome = ErrorEvent(
                    message=f"Failed: {job.error}", item_id=job.job_id, source=job.source
                )
        finally:
            if job.state is not JobState.COMPLETED:
                _remove_artifacts(job, log)
        self._finish(job, outcome)

    async def _download(
        self, job: DownloadJob, strategy: SourceStrategy, log: JobLogger
    ) -> CompleteEvent:
        context = self.context
        if strategy.info_message:
            self._status(job, strategy.info_message)
        lookup = await context.metadata.describe(job.media_ref, job)
        if lookup.degraded:
            self._status(job, DEGRADED_METADATA_MESSAGE)
        if not (lookup.degraded and job.is_playlist_item):
            job.title = lookup.metadata.title
        estimate = estimate_size(lookup.metadata.as_info(), job.format, job.quality)
        self._send(
            job.client_id,
            ItemInfoEvent(
                item_id=job.job_id,
                title=job.title or "",
                thumbnail=lookup.metadata.thumbnail,
                estimated_size=format_bytes(estimate) if estimate else None,
                source=job.source,
                is_playlist_item=job.is_playlist_item or None,
                playlist_index=job.playlist_index,
            ),
        )
        self._checkpoint(job)

        root = context.settings.download_root
        folder = strategy.target_folder(job, root)
        folder.mkdir(parents=True, exist_ok=True)
        template = output_template(
            folder,
            source=job.source,
            title=job.title,
            job_id=job.job_id,
            playlist=job.is_playlist_item,
            playlist_index=job.playlist_index,
            numbered=job.settings.numerate_files,
        )
        job.temp_artifacts = temp_artifact_patterns(template)
        job.transition(JobState.DOWNLOADING)
        self._status(job, strategy.status_message(job))
        log.debug("download_started", template=template)

        result = await context.runner.run(
            ToolKind.DOWNLOADER,
            strategy.build_args(job, template),
            job,
            RunMode.DOWNLOAD,
            on_progress=lambda sample: self._progress(job, sample),
            output_template=template,
        )
        self._checkpoint(job)
        downloaded = result.output_path
        if downloaded is None:
            raise ToolExitError("Processing failed, final file not found.")

        if job.format == "mov":
            self._status(job, "Starting conversion...")
        final_path = await strategy.post_process(job, downloaded, context.runner)
        self._checkpoint(job)
        if not final_path.is_file():
            raise ToolExitError(f"Processing failed, final file not found at: {final_path}")

        try:
            os.utime(final_path, None)
        except OSError as exc:
            log.error("touch_failed", path=str(final_path), error=str(exc))
        job.output_path = final_path
        return CompleteEvent(
            item_id=job.job_id,
            message=strategy.complete_message,
            download_url=download_link(final_path, root),
            filename=final_path.name,
            actual_size=self._actual_size(final_path, log),
            full_path=str(final_path),
            download_folder=str(folder),
            source=job.source,
        )

    async def _run_playlist(self, parent: DownloadJob, strategy: SourceStrategy) -> None:
        if parent.job_id not in self.registry:
            return
        self.registry.admit(parent.job_id)
        log = JobLogger(parent.job_id)
        metadata = self.context.metadata
        outcome: SocketPayload
        try:
            parent.transition(JobState.METADATA_FETCHING)
            items = await metadata.flatten_playlist(parent.media_ref, parent)
            self._checkpoint(parent)
            if not items:
                parent.transition(JobState.DOWNLOADING)
                self._status(parent, EMPTY_PLAYLIST_MESSAGE)
            else:
                self._status(
                    parent, f"Found {len(items)} items in playlist. Queuing downloads..."
                )
                title = (
                    await metadata.playlist_title(parent.media_ref, parent)
                    or items[0][1]
                    or f"Playlist_{int(time.time() * 1000)}"
                )
                self._checkpoint(parent)
                folder = unique_folder(self.context.settings.download_root, title)
                folder.mkdir(parents=True, exist_ok=True)
                parent.title = title
                parent.playlist_folder = folder
                parent.transition(JobState.DOWNLOADING)
                log.info("playlist_expanded", items=len(items), folder=str(folder))
                children = self._enqueue_children(parent, items, folder, strategy)
                await asyncio.gather(*children, return_exceptions=True)
            self._checkpoint(parent)
            parent.transition(JobState.COMPLETED)
            outcome = PlaylistCompleteEvent(
                item_id=parent.job_id,
                message="All playlist items processed.",
                source=parent.source,
            )
        except DownloadCancelled:
            self._settle(parent, JobState.CANCELLED)
            outcome = CancelConfirmEvent(
                item_id=parent.job_id,
                message="Playlist processing cancelled.",
                source=parent.source,
            )
        except asyncio.CancelledError:
            self._cancel_job(parent.job_id)
            self._settle(parent, JobState.CANCELLED)
            self._finish(
                parent,
                CancelConfirmEvent(
                    item_id=parent.job_id,
                    message="Playlist processing cancelled.",
                    source=parent.source,
                ),
            )
            raise
        except Exception as exc:  # noqa: BLE001 - job boundary
            if parent.cancel_requested:
                self._settle(parent, JobState.CANCELLED)
                outcome = CancelConfirmEvent(
                    item_id=parent.job_id,
                    message="Playlist processing cancelled.",
                    source=parent.source,
                )
            else:
                self._settle(parent, JobState.FAILED)
                parent.error = str(exc)
                log.error("playlist_failed", error=parent.error)
                outcome = ErrorEvent(
                    message=f"Playlist processing error: {parent.error}",
                    item_id=parent.job_id,
                    source=parent.source,
                )
        self._finish(parent, outcome)

    def _enqueue_children(
        self,
        parent: DownloadJob,
        items: List[Tuple[str, str]],
        folder: Path,
        strategy: SourceStrategy,
    ) -> List["asyncio.Future[Any]"]:
        futures: List["asyncio.Future[Any]"] = []
        for index, (media_id, title) in enumerate(items):
            child = DownloadJob(
                job_id=playlist_child_id(parent.source, media_id, index),
                client_id=parent.client_id,
                source=parent.source,
                media_ref=_child_reference(media_id),
                format=parent.format,
                quality=parent.quality,
                settings=parent.settings,
                title=title or f"Video {index + 1}",
                parent_job_id=parent.job_id,
                playlist_index=index,
                playlist_folder=folder,
            )
            self.registry.register(child)
            self._send(
                child.client_id,
                QueuedEvent(
                    item_id=child.job_id,
                    title=child.title or "",
                    source=child.source,
                    is_playlist_item=True,
                    playlist_index=index,
                    estimated_size=PENDING_SIZE,
                ),
            )
            futures.append(self._schedule(child, strategy))
        return futures

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _checkpoint(self, job: DownloadJob) -> None:
        if job.cancel_requested:
            raise DownloadCancelled(job.job_id)

    def _settle(self, job: DownloadJob, target: JobState) -> None:
        if not job.is_terminal:
            job.transition(target)

    def _finish(self, job: DownloadJob, event: SocketPayload) -> None:
        # Retirement happens once, so it also guards the single terminal event.
        if self.registry.retire(job.job_id) is None:
            return
        self._send(job.client_id, event)

    def _progress(self, job: DownloadJob, sample: ProgressSample) -> None:
        self._send(
            job.client_id,
            ProgressEvent(
                item_id=job.job_id,
                percent=sample.percent,
                raw_speed=sample.speed_label,
                speed_bytes_per_sec=sample.speed_bytes_per_sec or 0,
                message=sample.message,
            ),
        )

    def _status(self, job: DownloadJob, message: str) -> None:
        self._send(
            job.client_id, StatusEvent(message=message, item_id=job.job_id, source=job.source)
        )

    @staticmethod
    def _actual_size(path: Path, log: JobLogger) -> Optional[str]:
        try:
            return format_bytes(path.stat().st_size)
        except OSError as exc:
            log.error("stat_failed", path=str(path), error=str(exc))
            return None

    def _send(self, client_id: str, event: SocketPayload) -> None:
        self.context.events.send(client_id, event)


__all__ = ["JobOrchestrator"]
