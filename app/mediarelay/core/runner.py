from __future__ import annotations

import asyncio
import glob
import os
import re
import signal
import subprocess
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Protocol, Sequence, cast

from ..config import PROGRESS_THROTTLE_SECONDS, RunMode, ToolKind
from ..log_config import debug_verbose, verbose_log
from .errors import (
    DownloadCancelled,
    OutputNotFoundError,
    ToolExitError,
    ToolSpawnError,
    authentication_error,
    rate_limited_error,
    summarize_stderr,
)
from .markers import (
    PATH_PRIORITY,
    PathMarker,
    ProgressSample,
    is_forbidden,
    is_rate_limited,
    parse_path_hint,
    parse_progress,
)
from .tools import DownloaderSettings, downloader_args

# --print-json emits a whole info dict on a single line.
_STREAM_LIMIT = 16 * 1024 * 1024
_TEMPLATE_FIELD_RE = re.compile(r"%\([^)]+\)s")
_PARTIAL_SUFFIXES = (".part", ".ytdl", ".temp")

ProgressCallback = Callable[[ProgressSample], None]


class RunnableJob(Protocol):
    job_id: str

    @property
    def cancel_requested(self) -> bool: ...

    def attach_process(self, handle: "ProcessHandle") -> None: ...

    def release_process(self, handle: "ProcessHandle") -> None: ...


@dataclass(slots=True)
class RunResult:
    stdout: str
    stderr: str
    output_path: Optional[Path]
    exit_code: int


class ProcessHandle:
    """A live child process owned by a job; termination is requested, not forced."""

    def __init__(self, tool: ToolKind, process: asyncio.subprocess.Process) -> None:
        self.tool = tool
        self.process = process
        self._termination = asyncio.Event()

    @property
    def pid(self) -> int:
        return self.process.pid

    @property
    def running(self) -> bool:
        return self.process.returncode is None

    @property
    def termination_requested(self) -> bool:
        return self._termination.is_set()

    def request_termination(self) -> None:
        self._termination.set()

    async def wait_for_termination_request(self) -> None:
        await self._termination.wait()


def _spawn_kwargs() -> Dict[str, Any]:
    if os.name == "nt":
        return {"creationflags": getattr(subprocess, "CREATE_NO_WINDOW", 0)}
    return {"start_new_session": True}


async def terminate_tree(process: asyncio.subprocess.Process, grace: float) -> None:
    """Stop ``process`` and every descendant, escalating after ``grace`` seconds."""

    if os.name == "nt":
        if process.returncode is None:
            killer = await asyncio.create_subprocess_exec(
                "taskkill",
                "/PID",
                str(process.pid),
                "/T",
                "/F",
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.DEVNULL,
            )
            await killer.wait()
        await process.wait()
        return

    # start_new_session makes the child the leader of its own process group.
    try:
        os.killpg(process.pid, signal.SIGTERM)
    except ProcessLookupError:
        await process.wait()
        return
    try:
        await asyncio.wait_for(process.wait(), timeout=grace)
    except asyncio.TimeoutError:
        verbose_log("process_kill_escalated", {"pid": process.pid})
    try:
        os.killpg(process.pid, signal.SIGKILL)
    except ProcessLookupError:
        pass
    await process.wait()


def resolve_output(
    hints: Dict[PathMarker, str], output_template: Optional[str]
) -> Optional[Path]:
    """Pick the finished file from the announced markers, then by template glob."""

    for marker in PATH_PRIORITY:
        candidate = hints.get(marker)
        if candidate and Path(candidate).is_file():
            return Path(candidate)
    if not output_template:
        return None
    if "%(" not in output_template:
        template_path = Path(output_template)
        return template_path if template_path.is_file() else None
    parts = _TEMPLATE_FIELD_RE.split(output_template)
    pattern = "*".join(glob.escape(part) for part in parts)
    matches = [
        Path(match)
        for match in glob.glob(pattern)
        if not match.endswith(_PARTIAL_SUFFIXES) and Path(match).is_file()
    ]
    if len(matches) == 1:
        verbose_log("output_resolved_by_glob", {"pattern": pattern, "path": str(matches[0])})
        return matches[0]
    verbose_log(
        "output_glob_unresolved",
        {"pattern": pattern, "matches": [str(match) for match in matches]},
    )
    return None


class ProgressThrottle:
    def __init__(
        self,
        interval: float = PROGRESS_THROTTLE_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.interval = interval
        self._clock = clock
        self._last: Optional[float] = None

    def allow(self, sample: ProgressSample) -> bool:
        now = self._clock()
        if sample.finished or self._last is None or now - self._last >= self.interval:
            self._last = now
            return True
        return False


class ProcessRunner:
    """Spawns the external tools for a job and interprets their output."""

    def __init__(
        self,
        settings: DownloaderSettings,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.settings = settings
        self._clock = clock

    def build_argv(
        self, tool: ToolKind, args: Sequence[str], mode: RunMode, cookies: Optional[Path]
    ) -> List[str]:
        executable = self.settings.executable(tool)
        if tool is ToolKind.MUXER:
            return [executable, *args]
        return [executable, *downloader_args(self.settings, list(args), mode, cookies=cookies)]

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
        if job.cancel_requested:
            raise DownloadCancelled(job.job_id)
        cookies = self.settings.find_cookies() if tool is ToolKind.DOWNLOADER else None
        argv = self.build_argv(tool, args, mode, cookies)
        debug_verbose("tool_spawn", {"job_id": job.job_id, "mode": mode.value, "argv": argv})
        try:
            process = await asyncio.create_subprocess_exec(
                *argv,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                limit=_STREAM_LIMIT,
                **_spawn_kwargs(),
            )
        except OSError as exc:
            raise ToolSpawnError(
                f"{tool.value} process failed to start ({argv[0]}): {exc}"
            ) from exc

        handle = ProcessHandle(tool, process)
        job.attach_process(handle)
        try:
            return await self._supervise(
                handle,
                job,
                mode,
                cookies_supplied=cookies is not None,
                on_progress=on_progress,
                output_template=output_template,
            )
        finally:
            job.release_process(handle)

    async def _supervise(
        self,
        handle: ProcessHandle,
        job: RunnableJob,
        mode: RunMode,
        *,
        cookies_supplied: bool,
        on_progress: Optional[ProgressCallback],
        output_template: Optional[str],
    ) -> RunResult:
        process = handle.process
        # Both pipes are requested at spawn time.
        stdout_stream = cast(asyncio.StreamReader, process.stdout)
        stderr_stream = cast(asyncio.StreamReader, process.stderr)
        grace = self.settings.kill_grace
        stdout_lines: List[str] = []
        stderr_lines: List[str] = []
        hints: Dict[PathMarker, str] = {}
        throttle = ProgressThrottle(clock=self._clock)

        async def _kill_on_request() -> None:
            await handle.wait_for_termination_request()
            await terminate_tree(process, grace)

        async def _collect_stderr() -> None:
            async for raw in stderr_stream:
                stderr_lines.append(raw.decode("utf-8", errors="replace").rstrip("\r\n"))

        killer = asyncio.create_task(_kill_on_request())
        stderr_task = asyncio.create_task(_collect_stderr())
        try:
            async for raw in stdout_stream:
                if job.cancel_requested:
                    handle.request_termination()
                    break
                line = raw.decode("utf-8", errors="replace").rstrip("\r\n")
                stdout_lines.append(line)
                hint = parse_path_hint(line)
                if hint is not None:
                    hints[hint.marker] = hint.path
                if mode is not RunMode.DOWNLOAD or on_progress is None:
                    continue
                if hint is not None and hint.marker is PathMarker.ALREADY_DOWNLOADED:
                    on_progress(
                        ProgressSample(
                            percent=100.0,
                            message=f"Already downloaded: {Path(hint.path).name}",
                        )
                    )
                    continue
                sample = parse_progress(line)
                if sample is not None and throttle.allow(sample):
                    on_progress(sample)
            if handle.termination_requested:
                await killer
            await stderr_task
            exit_code = await process.wait()
        finally:
            if process.returncode is None:
                await terminate_tree(process, grace)
            for task in (killer, stderr_task):
                if not task.done():
                    task.cancel()
            await asyncio.gather(killer, stderr_task, return_exceptions=True)

        stdout = "\n".join(stdout_lines)
        stderr = "\n".join(stderr_lines)
        debug_verbose(
            "tool_exit",
            {"job_id": job.job_id, "pid": handle.pid, "exit_code": exit_code},
        )
        if job.cancel_requested or handle.termination_requested:
            raise DownloadCancelled(job.job_id)
        if exit_code != 0:
            if any(is_rate_limited(line) for line in stderr_lines):
                raise rate_limited_error(stderr, exit_code)
            if any(is_forbidden(line) for line in stderr_lines):
                raise authentication_error(
                    stderr, exit_code, cookies_supplied=cookies_supplied
                )
            raise ToolExitError(
                summarize_stderr(stderr, exit_code), stderr=stderr, exit_code=exit_code
            )

        output_path: Optional[Path] = None
        if mode is RunMode.DOWNLOAD:
            if handle.tool is ToolKind.MUXER:
                if output_template and Path(output_template).is_file():
                    output_path = Path(output_template)
            else:
                output_path = resolve_output(hints, output_template)
            if output_path is None:
                raise OutputNotFoundError(
                    "Download finished but the output file could not be located.",
                    stderr=stderr,
                    exit_code=exit_code,
                )
        return RunResult(
            stdout=stdout, stderr=stderr, output_path=output_path, exit_code=exit_code
        )


__all__ = [
    "ProcessHandle",
    "ProcessRunner",
    "ProgressCallback",
    "ProgressThrottle",
    "RunResult",
    "RunnableJob",
    "resolve_output",
    "terminate_tree",
]
