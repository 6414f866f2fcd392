from __future__ import annotations

import logging
import re
from typing import Callable, Iterable

import pysubs2

from .models import Caption, SubtitleTrack, TrackMetadata, new_caption_id
from .normalize import DEFAULT_POLICY, OverlapPolicy, normalize_captions
from .timecodes import TimestampLayout, format_timestamp, parse_timestamp

__all__ = [
    "FormatUnrecognizedError",
    "PARSERS",
    "captions_to_srt",
    "detect_format",
    "load_track",
    "parse_ass",
    "parse_captions",
    "parse_srt",
    "parse_vtt",
]

logger = logging.getLogger(__name__)

_BLOCK_SPLIT_RE = re.compile(r"\n[ \t]*\n")
_SRT_TIMING_RE = re.compile(r"(\d{1,2}:\d{2}:\d{2},\d{3})\s*-->\s*(\d{1,2}:\d{2}:\d{2},\d{3})")
_VTT_TIMING_RE = re.compile(
    r"((?:\d{1,2}:)?\d{2}:\d{2}\.\d{3})\s*-->\s*((?:\d{1,2}:)?\d{2}:\d{2}\.\d{3})"
)
_ASS_PREAMBLE = (
    "[Script Info]\nScriptType: v4.00+\n\n[Events]\n"
    "Format: Layer, Start, End, Style, Name, MarginL, MarginR, MarginV, Effect, Text\n"
)
_ASS_MIN_FIELDS = 10
_VTT_SKIPPED_BLOCKS = ("NOTE", "STYLE", "REGION")

_HTML_ENTITIES = (
    ("&lt;", "<"),
    ("&gt;", ">"),
    ("&amp;", "&"),
    ("&quot;", '"'),
    ("&#39;", "'"),
)


class FormatUnrecognizedError(ValueError):
    """Raised when no subtitle parser accepts the supplied text."""


def _clean_source(text: str) -> str:
    return text.lstrip("\ufeff").replace("\r\n", "\n").replace("\r", "\n")


def _decode_entities(text: str) -> str:
    for entity, replacement in _HTML_ENTITIES:
        text = text.replace(entity, replacement)
    return text


def _build_caption(
    start: float | None,
    end: float | None,
    text: str,
    voice: str | None = None,
) -> Caption | None:
    if start is None or end is None or end <= start:
        return None
    return Caption(id=new_caption_id(), start_time=start, end_time=end, text=text, voice=voice)


def _split_blocks(text: str) -> list[str]:
    return [block for block in _BLOCK_SPLIT_RE.split(text.strip()) if block.strip()]


def parse_srt(text: str) -> list[Caption] | None:
    """Parse SubRip blocks (index, timing, text lines); ``None`` if nothing usable."""
    captions: list[Caption] = []
    for block in _split_blocks(_clean_source(text)):
        lines = block.strip().split("\n")
        # The index line is customary but optional.
        timing_at = None
        for idx, line in enumerate(lines[:2]):
            if _SRT_TIMING_RE.search(line):
                timing_at = idx
                break
        if timing_at is None:
            continue
        body = lines[timing_at + 1 :]
        if not body:
            continue
        match = _SRT_TIMING_RE.search(lines[timing_at])
        caption = _build_caption(
            parse_timestamp(match.group(1)),
            parse_timestamp(match.group(2)),
            _decode_entities("\n".join(body)),
        )
        if caption is not None:
            captions.append(caption)
    return captions or None


def parse_vtt(text: str) -> list[Caption] | None:
    """Parse WebVTT cues; requires the ``WEBVTT`` header on the first line."""
    source = _clean_source(text)
    if not source.startswith("WEBVTT"):
        return None
    captions: list[Caption] = []
    for block in _split_blocks(source)[1:]:
        lines = block.strip().split("\n")
        if lines[0].startswith(_VTT_SKIPPED_BLOCKS):
            continue
        timing_at = None
        for idx, line in enumerate(lines[:2]):
            if "-->" in line:
                timing_at = idx
                break
        if timing_at is None:
            continue
        match = _VTT_TIMING_RE.search(lines[timing_at])
        body = lines[timing_at + 1 :]
        if match is None or not body:
            continue
        caption = _build_caption(
            parse_timestamp(match.group(1)),
            parse_timestamp(match.group(2)),
            "\n".join(body),
        )
        if caption is not None:
            captions.append(caption)
    return captions or None


def _vetted_dialogue(line: str) -> str | None:
    body = line[len("Dialogue:") :].strip()
    fields = body.split(",", _ASS_MIN_FIELDS - 1)
    if len(fields) < _ASS_MIN_FIELDS:
        return None
    if parse_timestamp(fields[1], TimestampLayout.ASS) is None:
        return None
    if parse_timestamp(fields[2], TimestampLayout.ASS) is None:
        return None
    return f"Dialogue: {body}"


def parse_ass(text: str) -> list[Caption] | None:
    """
    Parse ``Dialogue:`` events from an ASS/SSA script.

    Events are re-emitted under a fixed v4+ ``Format:`` line and handed to
    pysubs2, which would otherwise refuse the whole script over a single bad
    timestamp; malformed events are dropped here first.
    """
    events = [line for line in _clean_source(text).split("\n") if line.startswith("Dialogue:")]
    if not events:
        return None
    vetted = [event for event in map(_vetted_dialogue, events) if event is not None]
    if not vetted:
        return None
    subs = pysubs2.SSAFile.from_string(_ASS_PREAMBLE + "\n".join(vetted) + "\n", format_="ass")
    captions: list[Caption] = []
    for event in subs:
        voice = f"{event.style} {event.name}" if event.style and event.name else None
        caption = _build_caption(
            event.start / 1000,
            event.end / 1000,
            event.plaintext.strip(),
            voice,
        )
        if caption is not None:
            captions.append(caption)
    return captions or None


Parser = Callable[[str], list[Caption] | None]

PARSERS: tuple[tuple[str, Parser], ...] = (
    ("vtt", parse_vtt),
    ("ass", parse_ass),
    ("srt", parse_srt),
)


def detect_format(text: str) -> tuple[str, list[Caption]] | None:
    for name, parser in PARSERS:
        parsed = parser(text)
        if parsed is not None:
            return name, parsed
    return None


def parse_captions(text: str, policy: OverlapPolicy = DEFAULT_POLICY) -> list[Caption] | None:
    """Detect the format, parse and normalize. ``None`` when no parser matches."""
    detected = detect_format(text)
    if detected is None:
        return None
    name, captions = detected
    logger.debug("Parsed %d captions as %s", len(captions), name)
    return normalize_captions(captions, policy)


def load_track(
    text: str,
    language: str | None = None,
    title: str | None = None,
    *,
    policy: OverlapPolicy = DEFAULT_POLICY,
    default_title: str = "Track 1",
) -> SubtitleTrack:
    captions = parse_captions(text, policy)
    if captions is None:
        raise FormatUnrecognizedError("Unsupported subtitle file: no known format matched.")
    metadata = TrackMetadata(language=language or "unknown", title=title or default_title)
    return SubtitleTrack(captions=captions, metadata=metadata)


def captions_to_srt(captions: Iterable[Caption]) -> str:
    blocks: list[str] = []
    for index, caption in enumerate(captions, start=1):
        start = format_timestamp(caption.start_time, TimestampLayout.SRT)
        end = format_timestamp(caption.end_time, TimestampLayout.SRT)
        blocks.append(f"{index}\n{start} --> {end}\n{caption.text}\n")
    return "\n".join(blocks)
