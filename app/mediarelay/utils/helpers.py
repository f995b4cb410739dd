from __future__ import annotations

import math
import re
from datetime import datetime, timezone
from typing import Optional, Union

Number = Union[int, float]
_ANSI_ESCAPE_RE = re.compile(r"\x1B[@-_][0-?]*[ -/]*[@-~]")
_SPEED_RE = re.compile(r"([\d.]+)\s*(K|M|G)?i?B/s", re.IGNORECASE)
_SIZE_RE = re.compile(r"([\d.]+)\s*(K|M|G|T)?i?B", re.IGNORECASE)
_UNIT_POWER = {"": 0, "K": 1, "M": 2, "G": 3, "T": 4}
_BYTE_UNITS = ("Bytes", "KB", "MB", "GB", "TB")


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def strip_ansi(text: Optional[str]) -> Optional[str]:
    if text is None:
        return None
    cleaned = _ANSI_ESCAPE_RE.sub("", text)
    trimmed = cleaned.strip()
    return trimmed or None


def _scaled(number: str, unit: Optional[str]) -> Optional[int]:
    try:
        value = float(number)
    except ValueError:
        return None
    power = _UNIT_POWER.get((unit or "").upper(), 0)
    return int(value * (1024**power))


def parse_speed(text: Optional[str]) -> int:
    """Convert a tool speed label such as ``1.5MiB/s`` into bytes per second."""

    if not text:
        return 0
    match = _SPEED_RE.search(text)
    if not match:
        return 0
    return _scaled(match.group(1), match.group(2)) or 0


def parse_size(text: Optional[str]) -> Optional[int]:
    """Convert a tool size label such as ``12.34MiB`` into bytes."""

    if not text:
        return None
    match = _SIZE_RE.search(text)
    if not match:
        return None
    return _scaled(match.group(1), match.group(2))


def format_bytes(size: Optional[Number], decimals: int = 2) -> str:
    if size is None or size <= 0:
        return "0 Bytes"
    index = max(0, min(int(math.floor(math.log(size, 1024))), len(_BYTE_UNITS) - 1))
    value = size / (1024**index)
    text = f"{value:.{max(decimals, 0)}f}".rstrip("0").rstrip(".")
    return f"{text} {_BYTE_UNITS[index]}"


__all__ = [
    "format_bytes",
    "now_iso",
    "parse_size",
    "parse_speed",
    "strip_ansi",
]
