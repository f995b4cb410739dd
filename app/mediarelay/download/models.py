"""Data models for download jobs."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING, List, Optional

from ..config import (
    ALLOWED_TRANSITIONS,
    AUDIO_FORMATS,
    TERMINAL_STATES,
    JobState,
    MediaSource,
)
from ..core.errors import InvalidStateTransition

if TYPE_CHECKING:  # pragma: no cover - only used for type hints
    from ..core.runner import ProcessHandle


@dataclass(frozen=True, slots=True)
class QualitySpec:
    """``None`` target means "best available"."""

    target: Optional[int] = None

    @property
    def is_best(self) -> bool:
        return self.target is None

    @classmethod
    def parse(cls, raw: object) -> "QualitySpec":
        if raw is None or isinstance(raw, bool):
            return cls()
        if isinstance(raw, (int, float)):
            return cls(int(raw)) if raw > 0 else cls()
        text = str(raw).strip().lower()
        if not text or text in {"best", "highest", "max"}:
            return cls()
        digits = "".join(ch for ch in text if ch.isdigit())
        if not digits:
            return cls()
        value = int(digits)
        return cls(value) if value > 0 else cls()

    def label(self) -> str:
        return "best" if self.target is None else str(self.target)


@dataclass(slots=True)
class DownloadSettings:
    download_folder: Optional[str] = None
    max_speed: Optional[int] = None
    skip_duplicates: bool = False
    numerate_files: bool = False
    search_tags: bool = False
    normalize_audio: bool = False


@dataclass(slots=True)
class DownloadRequest:
    url: str
    format: str = "mp4"
    quality: QualitySpec = field(default_factory=QualitySpec)
    source: str = MediaSource.YOUTUBE.value
    playlist_action: str = "single"
    concurrency: Optional[int] = None
    single_concurrency: Optional[int] = None
    settings: DownloadSettings = field(default_factory=DownloadSettings)


@dataclass
class DownloadJob:
    job_id: str
    client_id: str
    source: str
    media_ref: str
    format: str
    quality: QualitySpec = field(default_factory=QualitySpec)
    settings: DownloadSettings = field(default_factory=DownloadSettings)
    state: JobState = JobState.QUEUED
    title: Optional[str] = None
    parent_job_id: Optional[str] = None
    playlist_index: Optional[int] = None
    playlist_folder: Optional[Path] = None
    is_playlist: bool = False
    created_at: datetime = field(default_factory=datetime.now)
    finished_at: Optional[datetime] = None
    error: Optional[str] = None
    output_path: Optional[Path] = None
    temp_artifacts: List[str] = field(default_factory=list)
    process: Optional["ProcessHandle"] = field(default=None, repr=False)
    _cancel_requested: bool = field(default=False, repr=False)

    @property
    def cancel_requested(self) -> bool:
        return self._cancel_requested

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    @property
    def is_audio(self) -> bool:
        return self.format in AUDIO_FORMATS

    @property
    def is_playlist_item(self) -> bool:
        return self.parent_job_id is not None

    def request_cancel(self) -> bool:
        """Flag the job; returns False when it already finished."""
        if self.is_terminal:
            return False
        self._cancel_requested = True
        if self.process is not None:
            self.process.request_termination()
        return True

    def transition(self, target: JobState) -> None:
        if target not in ALLOWED_TRANSITIONS[self.state]:
            raise InvalidStateTransition(self.job_id, self.state.value, target.value)
        self.state = target
        if target in TERMINAL_STATES:
            self.finished_at = datetime.now()

    def attach_process(self, handle: "ProcessHandle") -> None:
        if self.process is not None and self.process.running:
            raise RuntimeError(f"job {self.job_id} already owns a running process")
        self.process = handle
        # Cancellation may have landed between the spawn and the attach.
        if self._cancel_requested:
            handle.request_termination()

    def release_process(self, handle: "ProcessHandle") -> None:
        if self.process is handle:
            self.process = None


__all__ = [
    "DownloadJob",
    "DownloadRequest",
    "DownloadSettings",
    "QualitySpec",
]
