from __future__ import annotations

import math
import re
from enum import Enum

from pysubs2.time import ms_to_times, times_to_ms

__all__ = [
    "TimestampLayout",
    "parse_timestamp",
    "format_timestamp",
]

# Guards against float noise such as 1.001 * 1000 == 1000.9999999999999.
_TRUNCATION_EPSILON = 1e-6


class TimestampLayout(Enum):
    SRT = "srt"
    VTT = "vtt"
    ASS = "ass"


_PATTERNS: dict[TimestampLayout, re.Pattern[str]] = {
    TimestampLayout.SRT: re.compile(r"^(\d{1,2}):(\d{2}):(\d{2}),(\d{3})$"),
    TimestampLayout.VTT: re.compile(r"^(?:(\d{1,2}):)?(\d{2}):(\d{2})\.(\d{3})$"),
    TimestampLayout.ASS: re.compile(r"^(\d{1,2}):(\d{2}):(\d{2})\.(\d{2})$"),
}


def _to_seconds(hours: str | None, minutes: str, seconds: str, fraction: str) -> float | None:
    mins = int(minutes)
    secs = int(seconds)
    if mins >= 60 or secs >= 60:
        return None
    millis = int(fraction) * 10 ** (3 - len(fraction))
    return times_to_ms(h=int(hours or 0), m=mins, s=secs, ms=millis) / 1000


def parse_timestamp(text: str, layout: TimestampLayout | None = None) -> float | None:
    """
    Convert a subtitle timestamp into seconds.

    Accepts ``HH:MM:SS,mmm`` (SRT), ``HH:MM:SS.mmm`` or ``MM:SS.mmm`` (WebVTT)
    and ``H:MM:SS.cc`` (ASS/SSA); pass ``layout`` to accept only one of them.
    Returns ``None`` when the text matches none of these layouts so the caller
    can drop the offending entry.
    """
    if not isinstance(text, str):
        return None
    value = text.strip()
    if not value:
        return None
    layouts = (layout,) if layout is not None else tuple(_PATTERNS)
    for candidate in layouts:
        match = _PATTERNS[candidate].match(value)
        if match:
            return _to_seconds(*match.groups())
    return None


def format_timestamp(seconds: float, layout: TimestampLayout = TimestampLayout.SRT) -> str:
    """
    Render seconds in the given layout.

    Sub-second fractions are truncated, never rounded. Round trips preserve the
    value to the layout's precision, not the exact text: single-digit SRT hours
    come back zero padded and the short WebVTT ``MM:SS.mmm`` form gains an
    hours field.
    """
    total = math.floor(max(seconds, 0.0) * 1000 + _TRUNCATION_EPSILON)
    hours, minutes, secs, millis = ms_to_times(total)
    if layout is TimestampLayout.ASS:
        return f"{hours}:{minutes:02d}:{secs:02d}.{millis // 10:02d}"
    separator = "," if layout is TimestampLayout.SRT else "."
    return f"{hours:02d}:{minutes:02d}:{secs:02d}{separator}{millis:03d}"
