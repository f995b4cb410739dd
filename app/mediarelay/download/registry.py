from __future__ import annotations

from typing import TYPE_CHECKING, Dict, List, Optional

from ..log_config import debug_verbose
from .models import DownloadJob

if TYPE_CHECKING:  # pragma: no cover - only used for type hints
    from ..core.runner import ProcessHandle


class JobRegistry:
    """Tracks every non-terminal job, split between queued and in-flight.

    All mutation happens on the event loop thread between awaits, so no
    lock is needed. ``retire`` is the only way a job leaves the registry.
    """

    def __init__(self) -> None:
        self._queued: Dict[str, DownloadJob] = {}
        self._in_flight: Dict[str, DownloadJob] = {}
        self._children: Dict[str, List[str]] = {}

    def __contains__(self, job_id: object) -> bool:
        return job_id in self._queued or job_id in self._in_flight

    def __len__(self) -> int:
        return len(self._queued) + len(self._in_flight)

    def register(self, job: DownloadJob) -> None:
        if job.job_id in self:
            raise KeyError(f"job {job.job_id} is already registered")
        self._queued[job.job_id] = job
        if job.parent_job_id:
            self._children.setdefault(job.parent_job_id, []).append(job.job_id)
        debug_verbose("job_registered", {"job_id": job.job_id, "parent": job.parent_job_id})

    def admit(self, job_id: str) -> DownloadJob:
        """Move a queued job to the in-flight map."""
        job = self._queued.pop(job_id, None)
        if job is None:
            if job_id in self._in_flight:
                return self._in_flight[job_id]
            raise KeyError(f"job {job_id} is not queued")
        self._in_flight[job_id] = job
        return job

    def lookup(self, job_id: str) -> Optional[DownloadJob]:
        return self._queued.get(job_id) or self._in_flight.get(job_id)

    def retire(self, job_id: str) -> Optional[DownloadJob]:
        job = self._queued.pop(job_id, None) or self._in_flight.pop(job_id, None)
        if job is None:
            return None
        if job.parent_job_id:
            siblings = self._children.get(job.parent_job_id)
            if siblings and job_id in siblings:
                siblings.remove(job_id)
                if not siblings:
                    self._children.pop(job.parent_job_id, None)
        debug_verbose("job_retired", {"job_id": job_id, "state": job.state.value})
        return job

    def children_of(self, parent_id: str) -> List[DownloadJob]:
        jobs: List[DownloadJob] = []
        for child_id in self._children.get(parent_id, []):
            child = self.lookup(child_id)
            if child is not None:
                jobs.append(child)
        return jobs

    def mark_cancelled(self, job_id: str) -> List[DownloadJob]:
        """Flag a job and its live children; owned processes are asked to stop."""
        job = self.lookup(job_id)
        if job is None:
            return []
        marked: List[DownloadJob] = []
        if job.request_cancel():
            marked.append(job)
        for child in self.children_of(job_id):
            if child.request_cancel():
                marked.append(child)
        return marked

    def queued_jobs(self) -> List[DownloadJob]:
        return list(self._queued.values())

    def in_flight_jobs(self) -> List[DownloadJob]:
        return list(self._in_flight.values())

    def all_jobs(self) -> List[DownloadJob]:
        return [*self._queued.values(), *self._in_flight.values()]

    def live_processes(self) -> List["ProcessHandle"]:
        return [
            job.process
            for job in self._in_flight.values()
            if job.process is not None and job.process.running
        ]


__all__ = ["JobRegistry"]
