"""Dependency bundle handed to the orchestrator."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable, Optional, Protocol

from ..config import PlaylistAction
from ..core.runner import ProcessRunner
from ..core.tools import DownloaderSettings
from .cache import MetadataCache
from .limiter import ConcurrencyLimiter
from .metadata import MetadataService
from .registry import JobRegistry

if TYPE_CHECKING:  # pragma: no cover - only used for type hints
    from ..models.socket.base import SocketPayload


class EventSink(Protocol):
    """Anything able to push an event to a client; must never raise."""

    def send(self, client_id: str, event: "SocketPayload") -> None: ...


@dataclass
class OrchestratorContext:
    settings: DownloaderSettings
    runner: ProcessRunner
    registry: JobRegistry
    single_limiter: ConcurrencyLimiter
    playlist_limiter: ConcurrencyLimiter
    cache: MetadataCache
    metadata: MetadataService
    events: EventSink

    @classmethod
    def build(
        cls,
        settings: DownloaderSettings,
        events: EventSink,
        *,
        runner: Optional[ProcessRunner] = None,
        clock: Optional[Callable[[], float]] = None,
    ) -> "OrchestratorContext":
        runner = runner or ProcessRunner(settings)
        cache = (
            MetadataCache(settings.metadata_ttl, settings.metadata_sweep_threshold, clock=clock)
            if clock is not None
            else MetadataCache(settings.metadata_ttl, settings.metadata_sweep_threshold)
        )
        return cls(
            settings=settings,
            runner=runner,
            registry=JobRegistry(),
            single_limiter=ConcurrencyLimiter(settings.single_concurrency, name="single"),
            playlist_limiter=ConcurrencyLimiter(
                settings.playlist_concurrency, name="playlist"
            ),
            cache=cache,
            metadata=MetadataService(runner, cache),
            events=events,
        )

    def limiter_for(self, playlist_item: bool) -> ConcurrencyLimiter:
        return self.playlist_limiter if playlist_item else self.single_limiter

    def wants_playlist(self, action: str) -> bool:
        return action == PlaylistAction.FULL.value


__all__ = ["EventSink", "OrchestratorContext"]
