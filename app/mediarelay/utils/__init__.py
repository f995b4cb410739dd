from .helpers import format_bytes, now_iso, parse_size, parse_speed, strip_ansi

__all__ = [
    "format_bytes",
    "now_iso",
    "parse_size",
    "parse_speed",
    "strip_ansi",
]
