from __future__ import annotations

import asyncio

from jisub.furigana import (
    contains_kanji,
    format_ruby_text,
    katakana_to_hiragana,
    make_furigana,
    synthesize_furigana,
)
from jisub.models import FuriganaSegment, Token


class _StubTokenizer:
    def __init__(self, tokens: list[Token] | None = None, error: Exception | None = None) -> None:
        self.tokens = tokens or []
        self.error = error
        self.calls: list[str] = []

    async def tokenize(self, text: str) -> list[Token]:
        self.calls.append(text)
        if self.error is not None:
            raise self.error
        return self.tokens


def _token(surface: str, reading: str | None) -> Token:
    return Token(surface, surface, reading, None)


def test_katakana_to_hiragana_shifts_only_katakana() -> None:
    assert katakana_to_hiragana("トウキョウ") == "とうきょう"
    assert katakana_to_hiragana("ヴァ") == "ゔぁ"
    # The long vowel mark and halfwidth forms are outside the shifted block.
    assert katakana_to_hiragana("ラーメン") == "らーめん"
    assert katakana_to_hiragana("abc漢") == "abc漢"


def test_contains_kanji() -> None:
    assert contains_kanji("日本")
    assert contains_kanji("人々")
    assert not contains_kanji("ひらがな")
    assert not contains_kanji("カタカナ")


def test_synthesize_keeps_readings_only_for_kanji_surfaces() -> None:
    segments = synthesize_furigana(
        [
            _token("東京", "トウキョウ"),
            _token("へ", "ヘ"),
            _token("行く", "イク"),
            _token("ラーメン", "ラーメン"),
            _token("本", None),
            _token("abc", "abc"),
        ]
    )
    assert segments == [
        FuriganaSegment("東京", "とうきょう"),
        FuriganaSegment("へ"),
        FuriganaSegment("行く", "いく"),
        FuriganaSegment("ラーメン"),
        FuriganaSegment("本"),
        FuriganaSegment("abc"),
    ]


def test_make_furigana_skips_non_japanese_text() -> None:
    tokenizer = _StubTokenizer()
    assert asyncio.run(make_furigana("Hello there", tokenizer)) == [FuriganaSegment("Hello there")]
    assert asyncio.run(make_furigana("   ", tokenizer)) == []
    assert tokenizer.calls == []


def test_make_furigana_degrades_to_plain_text() -> None:
    broken = _StubTokenizer(error=RuntimeError("analyzer down"))
    assert asyncio.run(make_furigana("日本語", broken)) == [FuriganaSegment("日本語")]
    empty = _StubTokenizer([])
    assert asyncio.run(make_furigana("日本語", empty)) == [FuriganaSegment("日本語")]


def test_make_furigana_uses_tokens() -> None:
    tokenizer = _StubTokenizer([_token("日本", "ニホン"), _token("語", "ゴ")])
    segments = asyncio.run(make_furigana("日本語", tokenizer))
    assert segments == [FuriganaSegment("日本", "にほん"), FuriganaSegment("語", "ご")]
    assert format_ruby_text(segments) == "日本(にほん)語(ご)"
