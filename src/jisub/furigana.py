from __future__ import annotations

import logging
from typing import Iterable, Protocol

from .analyzers import contains_japanese
from .models import FuriganaSegment, Token

__all__ = [
    "contains_kanji",
    "format_ruby_text",
    "katakana_to_hiragana",
    "make_furigana",
    "synthesize_furigana",
]

logger = logging.getLogger(__name__)

_KATAKANA_TO_HIRAGANA_OFFSET = 0x60


class Tokenizer(Protocol):
    async def tokenize(self, text: str) -> list[Token]: ...


def _is_kanji(ch: str) -> bool:
    code = ord(ch)
    return (
        0x4E00 <= code <= 0x9FFF
        or 0x3400 <= code <= 0x4DBF
        or 0x20000 <= code <= 0x2A6DF
        or 0x2A700 <= code <= 0x2EBEF
        or 0x30000 <= code <= 0x3134F
        or 0xF900 <= code <= 0xFAFF
        or 0x2F800 <= code <= 0x2FA1F
        or ch in "々〆"
    )


def contains_kanji(text: str) -> bool:
    return any(_is_kanji(ch) for ch in text)


def katakana_to_hiragana(text: str) -> str:
    result = []
    for ch in text:
        code = ord(ch)
        if 0x30A1 <= code <= 0x30F6:
            result.append(chr(code - _KATAKANA_TO_HIRAGANA_OFFSET))
        else:
            result.append(ch)
    return "".join(result)


def _segment_for(token: Token) -> FuriganaSegment:
    surface = token.surface_form
    reading = token.reading
    if not surface or not surface.strip():
        return FuriganaSegment(surface)
    if not reading or reading == surface or not contains_kanji(surface):
        return FuriganaSegment(surface)
    hiragana = katakana_to_hiragana(reading)
    if hiragana == surface:
        return FuriganaSegment(surface)
    return FuriganaSegment(surface, hiragana)


def synthesize_furigana(tokens: Iterable[Token]) -> list[FuriganaSegment]:
    """
    Pair every token surface with a hiragana reading where one is useful.

    Readings are dropped for kana-only or Latin surfaces and whenever they just
    repeat the surface.
    """
    return [_segment_for(token) for token in tokens]


async def make_furigana(text: str, tokenizer: Tokenizer) -> list[FuriganaSegment]:
    """Tokenize ``text`` and build furigana; never raises."""
    if not text or not text.strip():
        return []
    if not contains_japanese(text):
        return [FuriganaSegment(text)]
    try:
        tokens = await tokenizer.tokenize(text)
    except Exception:
        logger.exception("Failed to tokenize %r for furigana", text[:30])
        return [FuriganaSegment(text)]
    if not tokens:
        logger.warning("No tokens generated for %r", text[:30])
        return [FuriganaSegment(text)]
    return synthesize_furigana(tokens)


def format_ruby_text(segments: Iterable[FuriganaSegment]) -> str:
    """Render segments as ``漢字(かんじ)`` plain text."""
    return "".join(
        f"{segment.text}({segment.reading})" if segment.reading else segment.text
        for segment in segments
    )
