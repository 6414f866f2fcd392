from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import Iterable, NamedTuple

__all__ = [
    "Caption",
    "FuriganaSegment",
    "SubtitleTrack",
    "Token",
    "TrackMetadata",
    "new_caption_id",
    "serialize_caption",
    "serialize_furigana",
    "serialize_token",
    "serialize_track",
]


@dataclass
class Token:
    """One morphological unit as reported by an analyzer backend."""

    surface_form: str
    basic_form: str
    reading: str | None
    part_of_speech: str | None


class FuriganaSegment(NamedTuple):
    text: str
    reading: str | None = None


@dataclass
class Caption:
    """
    A timed subtitle unit.

    ``lane`` is filled by the normalizer, ``furigana`` and ``tokens`` by the
    enrichment pass; both stay ``None`` until then (or for good when
    enrichment fails for this caption).
    """

    id: str
    start_time: float
    end_time: float
    text: str
    voice: str | None = None
    lane: int | None = None
    furigana: list[FuriganaSegment] | None = None
    tokens: list[Token] | None = None

    @property
    def duration(self) -> float:
        return self.end_time - self.start_time

    def contains(self, time: float) -> bool:
        return self.start_time <= time <= self.end_time


@dataclass
class TrackMetadata:
    language: str
    title: str


@dataclass
class SubtitleTrack:
    captions: list[Caption] = field(default_factory=list)
    metadata: TrackMetadata = field(default_factory=lambda: TrackMetadata("unknown", "Track"))

    def __len__(self) -> int:
        return len(self.captions)

    def captions_at(self, time: float) -> list[Caption]:
        return [caption for caption in self.captions if caption.contains(time)]


def new_caption_id() -> str:
    return uuid.uuid4().hex[:13]


def serialize_token(token: Token) -> dict[str, object]:
    return {
        "surface_form": token.surface_form,
        "basic_form": token.basic_form,
        "reading": token.reading,
        "pos": token.part_of_speech,
    }


def serialize_furigana(segments: Iterable[FuriganaSegment]) -> list[list[str]]:
    return [[segment.text, segment.reading or ""] for segment in segments]


def serialize_caption(caption: Caption) -> dict[str, object]:
    payload: dict[str, object] = {
        "id": caption.id,
        "start": caption.start_time,
        "end": caption.end_time,
        "text": caption.text,
        "lane": caption.lane,
    }
    if caption.voice:
        payload["voice"] = caption.voice
    if caption.furigana is not None:
        payload["furigana"] = serialize_furigana(caption.furigana)
    if caption.tokens is not None:
        payload["tokens"] = [serialize_token(token) for token in caption.tokens]
    return payload


def serialize_track(track: SubtitleTrack) -> dict[str, object]:
    return {
        "language": track.metadata.language,
        "title": track.metadata.title,
        "captions": [serialize_caption(caption) for caption in track.captions],
    }
