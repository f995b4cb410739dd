"""Version reporting and self-update for the external tools."""

from __future__ import annotations

import asyncio
import json
import ssl
import time
import urllib.request
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

import certifi

from ..config import ToolKind
from ..log_config import error_log, verbose_log
from .tools import DownloaderSettings

_VERSION_TIMEOUT = 15.0
_UPDATE_TIMEOUT = 300.0


@dataclass(slots=True)
class ToolVersion:
    version: Optional[str]
    last_check_timestamp: Optional[float] = None

    def to_payload(self) -> Dict[str, Any]:
        return {"version": self.version, "lastCheckTimestamp": self.last_check_timestamp}


@dataclass(slots=True)
class ToolUpdateReport:
    updated: bool = False
    old_version: Optional[str] = None
    new_version: Optional[str] = None
    reason: Optional[str] = None
    error: Optional[str] = None

    def to_payload(self) -> Dict[str, Any]:
        return {
            "updated": self.updated,
            "oldVersion": self.old_version,
            "newVersion": self.new_version,
            "reason": self.reason,
            "error": self.error,
        }


def _fetch_latest_tag(url: str, timeout: float = 15.0) -> Optional[str]:
    context = ssl.create_default_context(cafile=certifi.where())
    request = urllib.request.Request(
        url,
        headers={"Accept": "application/vnd.github+json", "User-Agent": "mediarelay"},
    )
    with urllib.request.urlopen(request, timeout=timeout, context=context) as response:
        payload = json.loads(response.read().decode("utf-8"))
    tag = payload.get("tag_name") if isinstance(payload, dict) else None
    return str(tag).strip() if tag else None


class ToolVersionService:
    """Reports tool versions and keeps the downloader current.

    The release lookup runs in a worker thread; version probes and the
    self-update run as child processes on the event loop.
    """

    def __init__(
        self,
        settings: DownloaderSettings,
        *,
        update_check_url: str,
        check_interval: float = 86400.0,
        clock: Callable[[], float] = time.time,
        fetch_latest: Callable[[str], Optional[str]] = _fetch_latest_tag,
    ) -> None:
        self.settings = settings
        self.update_check_url = update_check_url
        self.check_interval = check_interval
        self._clock = clock
        self._fetch_latest = fetch_latest
        self._versions: Dict[ToolKind, ToolVersion] = {}
        self._last_update_check: Optional[float] = None
        self._update_lock = asyncio.Lock()

    async def _exec(self, argv: list[str], timeout: float) -> tuple[int, str, str]:
        process = await asyncio.create_subprocess_exec(
            *argv,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout)
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            raise
        return (
            process.returncode or 0,
            stdout.decode("utf-8", errors="replace"),
            stderr.decode("utf-8", errors="replace"),
        )

    async def probe(self, tool: ToolKind) -> Optional[str]:
        flag = "-version" if tool is ToolKind.MUXER else "--version"
        executable = self.settings.executable(tool)
        try:
            code, stdout, _ = await self._exec([executable, flag], _VERSION_TIMEOUT)
        except (OSError, asyncio.TimeoutError) as exc:
            error_log("tool_version_failed", {"tool": tool.value, "error": repr(exc)})
            return None
        if code != 0 or not stdout.strip():
            return None
        first = stdout.strip().splitlines()[0].strip()
        if tool is ToolKind.MUXER and first.startswith("ffmpeg version "):
            return first.split()[2]
        return first

    async def versions(self) -> Dict[ToolKind, ToolVersion]:
        for tool in ToolKind:
            version = await self.probe(tool)
            self._versions[tool] = ToolVersion(
                version=version, last_check_timestamp=self._clock()
            )
        return dict(self._versions)

    async def check_updates(self, force: bool = False) -> Dict[ToolKind, ToolUpdateReport]:
        async with self._update_lock:
            reports: Dict[ToolKind, ToolUpdateReport] = {
                ToolKind.MUXER: ToolUpdateReport(reason="managed externally"),
            }
            now = self._clock()
            if (
                not force
                and self._last_update_check is not None
                and now - self._last_update_check < self.check_interval
            ):
                current = self._versions.get(ToolKind.DOWNLOADER)
                reports[ToolKind.DOWNLOADER] = ToolUpdateReport(
                    old_version=current.version if current else None,
                    reason="checked recently",
                )
                return reports
            self._last_update_check = now
            reports[ToolKind.DOWNLOADER] = await self._update_downloader(force)
            return reports

    async def _update_downloader(self, force: bool) -> ToolUpdateReport:
        report = ToolUpdateReport()
        report.old_version = await self.probe(ToolKind.DOWNLOADER)
        try:
            latest = await asyncio.to_thread(self._fetch_latest, self.update_check_url)
        except (OSError, ValueError) as exc:
            error_log("tool_release_lookup_failed", {"error": repr(exc)})
            latest = None
            if not force:
                report.error = f"Release lookup failed: {exc}"
                return report
        if not force and latest and latest == report.old_version:
            report.new_version = report.old_version
            report.reason = "already up to date"
            return report

        executable = self.settings.executable(ToolKind.DOWNLOADER)
        try:
            code, stdout, stderr = await self._exec([executable, "-U"], _UPDATE_TIMEOUT)
        except (OSError, asyncio.TimeoutError) as exc:
            report.error = f"Update failed: {exc!r}"
            return report
        verbose_log("tool_update_output", {"code": code, "stdout": stdout, "stderr": stderr})
        if code != 0:
            report.error = (stderr.strip() or stdout.strip() or f"exit code {code}")[:250]
            return report
        report.new_version = await self.probe(ToolKind.DOWNLOADER)
        report.updated = bool(
            report.new_version and report.new_version != report.old_version
        )
        report.reason = "updated" if report.updated else "already up to date"
        self._versions[ToolKind.DOWNLOADER] = ToolVersion(
            version=report.new_version, last_check_timestamp=self._clock()
        )
        return report


__all__ = ["ToolUpdateReport", "ToolVersion", "ToolVersionService"]
