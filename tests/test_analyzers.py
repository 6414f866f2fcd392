from __future__ import annotations

import asyncio
from types import SimpleNamespace

import pytest
import requests

from jisub.analyzers import (
    NOT_AVAILABLE,
    AnalyzerBackend,
    AnalyzerChain,
    BackendState,
    BackendUnavailableError,
    DictionarySegmenter,
    RemoteSegmenter,
    build_chain,
    simple_tokenize,
    token_from_payload,
)
from jisub.config import AnalyzerSettings, RemoteSettings, TokenizationMethod
from jisub.models import Token

FAST = AnalyzerSettings(
    init_attempts=3,
    init_retry_delay=0.0,
    call_retries=2,
    call_retry_delay=0.0,
    max_consecutive_errors=2,
)


class _CountingBackend(AnalyzerBackend):
    name = "counting"

    def __init__(self, settings: AnalyzerSettings = FAST, *, fail_calls: bool = False) -> None:
        super().__init__(settings)
        self.init_calls = 0
        self.analyze_calls = 0
        self.fail_calls = fail_calls

    async def _initialize(self) -> None:
        self.init_calls += 1
        await asyncio.sleep(0)

    async def _analyze(self, text: str):
        self.analyze_calls += 1
        if self.fail_calls:
            raise RuntimeError("boom")
        return [Token(text, text, None, "noun")]


class _Response:
    def __init__(self, status_code: int, payload: object = None) -> None:
        self.status_code = status_code
        self._payload = payload
        self.text = ""

    def json(self) -> object:
        return self._payload


class _Session:
    def __init__(self, *, healthy: bool, payload: object = None) -> None:
        self.healthy = healthy
        self.payload = payload
        self.get_calls: list[str] = []
        self.post_calls: list[dict[str, object]] = []

    def get(self, url: str, timeout: float) -> _Response:
        self.get_calls.append(url)
        if not self.healthy:
            raise requests.ConnectionError("refused")
        return _Response(200)

    def post(self, url: str, json: dict[str, object], timeout: float) -> _Response:
        self.post_calls.append(json)
        return _Response(200, self.payload)

    def close(self) -> None:
        pass


def _word(surface: str, **feature: str) -> SimpleNamespace:
    return SimpleNamespace(surface=surface, feature=SimpleNamespace(**feature))


def test_simple_tokenize_japanese_is_per_character() -> None:
    tokens = simple_tokenize("日本 語")
    assert [t.surface_form for t in tokens] == ["日", "本", "語"]
    assert all(t.part_of_speech == "unknown" for t in tokens)
    assert tokens[0].reading == "日"


def test_simple_tokenize_latin_keeps_whitespace_runs() -> None:
    tokens = simple_tokenize("hello  world")
    assert [t.surface_form for t in tokens] == ["hello", "  ", "world"]


def test_simple_tokenize_always_returns_something_for_non_empty_text() -> None:
    assert simple_tokenize("") == []
    assert len(simple_tokenize("   ")) >= 1
    assert len(simple_tokenize("!")) == 1


def test_initialization_is_single_flight() -> None:
    backend = _CountingBackend()

    async def run() -> list[bool]:
        return list(await asyncio.gather(*(backend.ensure_ready() for _ in range(5))))

    assert asyncio.run(run()) == [True] * 5
    assert backend.init_calls == 1
    assert backend.state is BackendState.READY


def test_initialization_gives_up_after_configured_attempts() -> None:
    calls = []

    def broken_factory():
        calls.append(1)
        raise RuntimeError("no dictionary")

    segmenter = DictionarySegmenter(FAST, tagger_factory=broken_factory, kana_converter_factory=lambda: None)

    assert asyncio.run(segmenter.ensure_ready()) is False
    assert len(calls) == 3
    assert segmenter.state is BackendState.FAILED
    assert asyncio.run(segmenter.try_tokenize("日本")) is NOT_AVAILABLE
    assert len(calls) == 3


def test_consecutive_errors_reset_a_ready_backend() -> None:
    backend = _CountingBackend(fail_calls=True)

    async def run() -> None:
        with pytest.raises(BackendUnavailableError):
            await backend.try_tokenize("a")
        assert backend.state is BackendState.READY
        assert backend.consecutive_errors == 1
        with pytest.raises(BackendUnavailableError):
            await backend.try_tokenize("a")
        assert backend.state is BackendState.UNINITIALIZED
        assert backend.consecutive_errors == 0
        backend.fail_calls = False
        tokens = await backend.try_tokenize("a")
        assert tokens != NOT_AVAILABLE and tokens[0].surface_form == "a"

    asyncio.run(run())
    assert backend.init_calls == 2


def test_dictionary_segmenter_maps_features() -> None:
    words = [
        _word("東京", kana="トウキョウ", lemma="東京", pos1="名詞"),
        _word("へ", kana="ヘ", lemma="へ", pos1="助詞"),
        _word("新語", pos1="名詞"),
        _word(""),
    ]
    segmenter = DictionarySegmenter(
        FAST,
        tagger_factory=lambda: (lambda text: words),
        kana_converter_factory=lambda: (lambda text: "しんご"),
    )
    tokens = asyncio.run(segmenter.try_tokenize("東京へ新語"))
    assert tokens == [
        Token("東京", "東京", "トウキョウ", "名詞"),
        Token("へ", "へ", "ヘ", "助詞"),
        Token("新語", "新語", "しんご", "名詞"),
    ]


def test_token_from_payload_accepts_remote_field_names() -> None:
    token = token_from_payload(
        {
            "surface": "食べ",
            "dictionary_form": "食べる",
            "reading": "タベ",
            "part_of_speech": ["動詞", "一般", "*"],
        }
    )
    assert token == Token("食べ", "食べる", "タベ", "動詞-一般")
    assert token_from_payload({"reading": "x"}) is None
    fallback = token_from_payload({"surface": "x"})
    assert fallback == Token("x", "x", None, None)


def test_remote_unreachable_falls_back_without_posting() -> None:
    session = _Session(healthy=False)
    remote = RemoteSegmenter(
        FAST,
        RemoteSettings(health_retries=1, request_retry_delay=0.0),
        session=session,
        clock=lambda: 100.0,
    )
    chain = AnalyzerChain([remote], FAST)

    tokens = asyncio.run(chain.tokenize("日本語"))

    assert len(session.get_calls) == 2
    assert session.post_calls == []
    assert tokens == simple_tokenize("日本語")
    assert remote.available is False

    async def later_calls() -> list[list]:
        await chain.tokenize("東京")
        return list(await asyncio.gather(*(chain.tokenize(f"字{index}") for index in range(10))))

    later = asyncio.run(later_calls())

    assert len(session.get_calls) == 2
    assert session.post_calls == []
    assert later[3] == simple_tokenize("字3")


def test_concurrent_callers_share_one_health_check() -> None:
    session = _Session(healthy=False)
    settings = RemoteSettings(health_retries=1)
    remote = RemoteSegmenter(FAST, settings, session=session, clock=lambda: 100.0)
    chain = AnalyzerChain([remote], FAST)

    async def run() -> list[list]:
        return list(await asyncio.gather(*(chain.tokenize(f"字幕{index}") for index in range(20))))

    results = asyncio.run(run())

    assert len(session.get_calls) == settings.health_retries + 1
    assert session.post_calls == []
    assert all(result for result in results)


def test_remote_health_is_cached_for_interval() -> None:
    now = [0.0]
    session = _Session(healthy=True, payload=[{"surface": "猫", "reading": "ネコ"}])
    remote = RemoteSegmenter(
        FAST,
        RemoteSettings(base_url="http://analyzer:5000/", health_interval=30.0, mode="C"),
        session=session,
        clock=lambda: now[0],
    )

    async def run() -> None:
        first = await remote.try_tokenize("猫")
        assert first == [Token("猫", "猫", "ネコ", None)]
        now[0] = 10.0
        await remote.try_tokenize("猫")
        assert len(session.get_calls) == 1
        now[0] = 45.0
        await remote.try_tokenize("猫")
        assert len(session.get_calls) == 2

    asyncio.run(run())
    assert session.get_calls[0] == "http://analyzer:5000/health"
    assert session.post_calls[0] == {"text": "猫", "mode": "C"}


def test_chain_never_raises_and_retries_each_strategy() -> None:
    failing = _CountingBackend(
        AnalyzerSettings(init_retry_delay=0.0, call_retries=1, call_retry_delay=0.0, max_consecutive_errors=10),
        fail_calls=True,
    )
    chain = AnalyzerChain([failing], AnalyzerSettings(call_retries=1, call_retry_delay=0.0))
    tokens = asyncio.run(chain.tokenize("abc def"))
    assert [t.surface_form for t in tokens] == ["abc", " ", "def"]
    assert failing.analyze_calls == 2


def test_chain_moves_to_next_strategy_on_empty_result() -> None:
    class _Empty(_CountingBackend):
        name = "empty"

        async def _analyze(self, text: str):
            return []

    second = _CountingBackend()
    chain = AnalyzerChain([_Empty(), second], FAST)
    tokens = asyncio.run(chain.tokenize("日本"))
    assert tokens == [Token("日本", "日本", None, "noun")]
    assert second.analyze_calls == 1


def test_chain_handles_empty_and_whitespace_input() -> None:
    backend = _CountingBackend()
    chain = AnalyzerChain([backend], FAST)
    assert asyncio.run(chain.tokenize("")) == []
    assert asyncio.run(chain.tokenize(None)) == []  # type: ignore[arg-type]
    assert len(asyncio.run(chain.tokenize("  "))) >= 1
    assert backend.analyze_calls == 0


def test_build_chain_strategy_order() -> None:
    auto = build_chain(TokenizationMethod.AUTO)
    assert [b.name for b in auto.strategies] == ["dictionary", "remote"]
    assert [b.name for b in build_chain(TokenizationMethod.REMOTE).strategies] == ["remote"]
    assert build_chain(TokenizationMethod.SIMPLE).strategies == ()
