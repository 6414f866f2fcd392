from __future__ import annotations

import asyncio
import logging
import re
import shlex
import time
import warnings
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Iterable, Mapping, Sequence

import requests

from .config import AnalyzerSettings, RemoteSettings, TokenizationMethod
from .models import Token
from .tools import resolve_dictionary

__all__ = [
    "AnalyzerBackend",
    "AnalyzerChain",
    "BackendState",
    "BackendUnavailableError",
    "DictionarySegmenter",
    "NOT_AVAILABLE",
    "RemoteSegmenter",
    "build_chain",
    "contains_japanese",
    "simple_tokenize",
]

logger = logging.getLogger(__name__)

_JAPANESE_RE = re.compile(
    "[　-〿぀-ゟ゠-ヿ＀-ﾟ一-龯㐀-䶿]"
)
_WHITESPACE_SPLIT_RE = re.compile(r"(\s+)")
_UNKNOWN_POS = "unknown"


class BackendUnavailableError(RuntimeError):
    """Raised when an analyzer backend cannot be initialized or fails a call."""


class BackendState(Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    READY = "ready"
    FAILED = "failed"


class _Unavailable(Enum):
    NOT_AVAILABLE = "not-available"


NOT_AVAILABLE = _Unavailable.NOT_AVAILABLE


def contains_japanese(text: str) -> bool:
    return bool(_JAPANESE_RE.search(text))


def _simple_token(text: str) -> Token:
    return Token(surface_form=text, basic_form=text, reading=text, part_of_speech=_UNKNOWN_POS)


def simple_tokenize(text: str) -> list[Token]:
    """
    Last-resort segmentation that always succeeds.

    Japanese-looking text is split into single characters (whitespace
    dropped); anything else is split on whitespace runs, keeping the runs as
    their own tokens. Non-empty input always yields at least one token.
    """
    if not text:
        return []
    if contains_japanese(text):
        tokens = [_simple_token(ch) for ch in text if ch.strip()]
    else:
        tokens = [_simple_token(part) for part in _WHITESPACE_SPLIT_RE.split(text) if part]
    return tokens or [_simple_token(text)]


def _preview(text: str, limit: int = 30) -> str:
    return text if len(text) <= limit else f"{text[:limit]}..."


class AnalyzerBackend:
    """
    Lifecycle shared by all analyzer backends.

    ``UNINITIALIZED -> INITIALIZING -> READY | FAILED``. Concurrent callers of
    :meth:`ensure_ready` await the same initialization task. Initialization is
    retried ``init_attempts`` times; once exhausted the backend stays
    ``FAILED``. A ``READY`` backend that fails ``max_consecutive_errors``
    calls in a row is reset to ``UNINITIALIZED`` and rebuilt on next use.
    """

    name = "backend"

    def __init__(self, settings: AnalyzerSettings | None = None) -> None:
        self.settings = settings or AnalyzerSettings()
        self._state = BackendState.UNINITIALIZED
        self._init_task: asyncio.Task[bool] | None = None
        self._attempts = 0
        self._consecutive_errors = 0
        self.last_error: BaseException | None = None

    @property
    def state(self) -> BackendState:
        return self._state

    @property
    def consecutive_errors(self) -> int:
        return self._consecutive_errors

    async def _initialize(self) -> None:
        raise NotImplementedError

    async def _analyze(self, text: str) -> list[Token] | _Unavailable:
        raise NotImplementedError

    def _release(self) -> None:
        """Drop whatever :meth:`_initialize` built."""

    async def ensure_ready(self) -> bool:
        if self._state is BackendState.READY:
            return True
        if self._state is BackendState.FAILED:
            return False
        if self._init_task is None:
            self._init_task = asyncio.ensure_future(self._run_initialization())
        task = self._init_task
        try:
            return await task
        finally:
            if self._init_task is task and task.done():
                self._init_task = None

    async def _run_initialization(self) -> bool:
        self._state = BackendState.INITIALIZING
        limit = max(1, self.settings.init_attempts)
        while True:
            self._attempts += 1
            logger.info("Initializing %s analyzer (attempt %d/%d)", self.name, self._attempts, limit)
            try:
                await self._initialize()
            except Exception as exc:
                self.last_error = exc
                if self._attempts >= limit:
                    logger.error("%s analyzer unavailable after %d attempts: %s", self.name, self._attempts, exc)
                    self._state = BackendState.FAILED
                    return False
                logger.warning(
                    "%s analyzer initialization failed (%s); retrying in %.1fs",
                    self.name,
                    exc,
                    self.settings.init_retry_delay,
                )
                await asyncio.sleep(self.settings.init_retry_delay)
                continue
            self._state = BackendState.READY
            self._consecutive_errors = 0
            self.last_error = None
            logger.info("%s analyzer ready", self.name)
            return True

    def reset(self) -> None:
        self._release()
        self._state = BackendState.UNINITIALIZED
        self._init_task = None
        self._attempts = 0
        self._consecutive_errors = 0

    def _record_failure(self, exc: BaseException) -> None:
        self.last_error = exc
        self._consecutive_errors += 1
        limit = self.settings.max_consecutive_errors
        if self._state is BackendState.READY and self._consecutive_errors >= limit:
            logger.error("%d consecutive %s errors; resetting analyzer", limit, self.name)
            self.reset()

    async def try_tokenize(self, text: str) -> list[Token] | _Unavailable:
        if not await self.ensure_ready():
            return NOT_AVAILABLE
        try:
            result = await self._analyze(text)
        except Exception as exc:
            self._record_failure(exc)
            if isinstance(exc, BackendUnavailableError):
                raise
            raise BackendUnavailableError(f"{self.name} analysis failed: {exc}") from exc
        if result is not NOT_AVAILABLE:
            self._consecutive_errors = 0
        return result

    def describe(self) -> dict[str, object]:
        return {
            "state": self._state.value,
            "consecutive_errors": self._consecutive_errors,
            "last_error": str(self.last_error) if self.last_error else None,
        }


def _feature_value(feature: Any, names: Iterable[str]) -> str | None:
    if feature is None:
        return None
    for attr in names:
        if hasattr(feature, attr):
            value = getattr(feature, attr)
        else:
            try:
                value = feature[attr]
            except (KeyError, IndexError, TypeError):
                value = None
        if value and value != "*":
            return str(value)
    return None


def _default_tagger_factory(dicdir: Path | None) -> Callable[[], Any]:
    def _build() -> Any:
        try:
            from fugashi import GenericTagger, Tagger  # type: ignore
            from fugashi import fugashi as fugashi_core  # type: ignore
        except ImportError as exc:
            raise BackendUnavailableError(
                "The dictionary analyzer requires 'fugashi' (MeCab) to be installed."
            ) from exc
        status = resolve_dictionary(dicdir)
        try:
            # Tagger() discovers the packaged unidic / unidic-lite dictionaries itself.
            if status.path is None or status.source in ("unidic", "unidic-lite"):
                return Tagger()
            args = f"-d {shlex.quote(str(status.path))}"
            feature_wrapper = getattr(fugashi_core, "UnidicFeatures29", None)
            if feature_wrapper is not None:
                return GenericTagger(args, feature_wrapper)
            return GenericTagger(args)
        except RuntimeError as exc:
            raise BackendUnavailableError(f"Failed to load MeCab dictionary: {exc}") from exc

    return _build


def _default_kana_converter() -> Callable[[str], str] | None:
    try:
        import pykakasi  # type: ignore
    except ImportError as exc:
        raise BackendUnavailableError(
            "The dictionary analyzer requires 'pykakasi' for fallback readings."
        ) from exc

    with warnings.catch_warnings():
        warnings.filterwarnings("ignore", category=DeprecationWarning)
        kks = pykakasi.kakasi()

    def _convert(text: str) -> str:
        result = kks.convert(text)
        return "".join(item.get("kana") or item.get("orig", "") for item in result)

    return _convert


class DictionarySegmenter(AnalyzerBackend):
    """In-process MeCab segmenter built lazily from the bundled dictionary."""

    name = "dictionary"

    def __init__(
        self,
        settings: AnalyzerSettings | None = None,
        *,
        dicdir: Path | None = None,
        tagger_factory: Callable[[], Any] | None = None,
        kana_converter_factory: Callable[[], Callable[[str], str] | None] | None = None,
    ) -> None:
        super().__init__(settings)
        self._tagger_factory = tagger_factory or _default_tagger_factory(dicdir)
        self._kana_converter_factory = kana_converter_factory or _default_kana_converter
        self._tagger: Any = None
        self._kana_converter: Callable[[str], str] | None = None

    def _build(self) -> tuple[Any, Callable[[str], str] | None]:
        return self._tagger_factory(), self._kana_converter_factory()

    async def _initialize(self) -> None:
        loop = asyncio.get_running_loop()
        # Loading the dictionary hits the disk; keep it off the event loop.
        self._tagger, self._kana_converter = await loop.run_in_executor(None, self._build)

    def _release(self) -> None:
        self._tagger = None
        self._kana_converter = None

    def _reading_for(self, word: Any, surface: str) -> str | None:
        feature = getattr(word, "feature", None)
        reading = _feature_value(feature, ("kana", "reading", "reading_form", "pron", "pronunciation"))
        if reading:
            return reading
        if self._kana_converter is not None and contains_japanese(surface):
            converted = self._kana_converter(surface)
            return converted or None
        return None

    async def _analyze(self, text: str) -> list[Token] | _Unavailable:
        if self._tagger is None:
            raise BackendUnavailableError("Dictionary tagger is not loaded")
        tokens: list[Token] = []
        for word in self._tagger(text):
            surface = getattr(word, "surface", "")
            if not surface:
                continue
            feature = getattr(word, "feature", None)
            tokens.append(
                Token(
                    surface_form=surface,
                    basic_form=_feature_value(feature, ("lemma", "orthBase", "base_form")) or surface,
                    reading=self._reading_for(word, surface),
                    part_of_speech=_feature_value(feature, ("pos1", "pos")),
                )
            )
        logger.debug("dictionary analyzer produced %d tokens for %r", len(tokens), _preview(text))
        return tokens


def token_from_payload(entry: Mapping[str, object]) -> Token | None:
    surface = entry.get("surface") or entry.get("surface_form")
    if not isinstance(surface, str) or not surface:
        return None
    basic = entry.get("dictionary_form") or entry.get("basic_form")
    reading = entry.get("reading")
    pos = entry.get("part_of_speech") or entry.get("pos")
    if isinstance(pos, (list, tuple)):
        pos = "-".join(str(part) for part in pos if part and part != "*")
    return Token(
        surface_form=surface,
        basic_form=basic if isinstance(basic, str) and basic else surface,
        reading=reading if isinstance(reading, str) and reading else None,
        part_of_speech=str(pos) if pos else None,
    )


class RemoteSegmenter(AnalyzerBackend):
    """
    Client for an external ``/analyze`` segmentation service.

    Availability is refreshed at most once per ``health_interval`` through
    ``GET /health``; while the service is considered down, calls return
    :data:`NOT_AVAILABLE` without touching the network.
    """

    name = "remote"

    def __init__(
        self,
        settings: AnalyzerSettings | None = None,
        remote: RemoteSettings | None = None,
        *,
        session: requests.Session | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        super().__init__(settings)
        self.remote = remote or RemoteSettings()
        self.base_url = self.remote.base_url.rstrip("/")
        self._session = session
        self._owns_session = session is None
        self._clock = clock
        self._available = False
        self._last_check: float | None = None
        self._health_task: asyncio.Task[bool] | None = None

    @property
    def available(self) -> bool:
        return self._available

    async def _initialize(self) -> None:
        if self._session is None:
            self._session = requests.Session()

    def _release(self) -> None:
        if self._owns_session and self._session is not None:
            self._session.close()
            self._session = None
        self._last_check = None
        self._health_task = None

    def _probe(self) -> bool:
        assert self._session is not None
        for _ in range(self.remote.health_retries + 1):
            try:
                resp = self._session.get(f"{self.base_url}/health", timeout=self.remote.health_timeout)
            except requests.RequestException:
                continue
            if 200 <= resp.status_code < 300:
                return True
        return False

    async def check_availability(self) -> bool:
        """Refresh availability at most once per ``health_interval``; concurrent callers share one check."""
        now = self._clock()
        if self._last_check is not None and now - self._last_check < self.remote.health_interval:
            return self._available
        if self._health_task is None:
            self._health_task = asyncio.ensure_future(self._refresh_availability(now))
        task = self._health_task
        try:
            return await task
        finally:
            if self._health_task is task and task.done():
                self._health_task = None

    async def _refresh_availability(self, now: float) -> bool:
        loop = asyncio.get_running_loop()
        available = await loop.run_in_executor(None, self._probe)
        if available and not self._available:
            logger.info("Remote analyzer at %s is now available", self.base_url)
        elif not available and (self._available or self._last_check is None):
            logger.warning("Remote analyzer at %s is not available", self.base_url)
        self._available = available
        self._last_check = now
        return available

    def _post_analyze(self, text: str) -> list[object]:
        assert self._session is not None
        last_error: BaseException | None = None
        for attempt in range(self.remote.request_retries + 1):
            if attempt:
                time.sleep(self.remote.request_retry_delay)
            try:
                resp = self._session.post(
                    f"{self.base_url}/analyze",
                    json={"text": text, "mode": self.remote.mode},
                    timeout=self.remote.request_timeout,
                )
            except requests.RequestException as exc:
                last_error = exc
                continue
            if resp.status_code >= 500:
                last_error = BackendUnavailableError(f"/analyze failed with status {resp.status_code}")
                continue
            if resp.status_code != 200:
                raise BackendUnavailableError(f"/analyze failed with status {resp.status_code}: {resp.text}")
            try:
                payload = resp.json()
            except ValueError as exc:
                raise BackendUnavailableError("Remote analyzer returned invalid JSON") from exc
            if not isinstance(payload, list):
                raise BackendUnavailableError("Remote analyzer returned an unexpected payload")
            return payload
        raise BackendUnavailableError(f"Failed to contact remote analyzer at {self.base_url}") from last_error

    async def _analyze(self, text: str) -> list[Token] | _Unavailable:
        if not await self.check_availability():
            return NOT_AVAILABLE
        loop = asyncio.get_running_loop()
        try:
            payload = await loop.run_in_executor(None, self._post_analyze, text)
        except BackendUnavailableError:
            self._available = False
            raise
        tokens = [
            token
            for token in (token_from_payload(entry) for entry in payload if isinstance(entry, Mapping))
            if token is not None
        ]
        logger.debug("remote analyzer produced %d tokens for %r", len(tokens), _preview(text))
        return tokens

    def describe(self) -> dict[str, object]:
        info = super().describe()
        info["url"] = self.base_url
        info["available"] = self._available
        return info


class AnalyzerChain:
    """
    Ordered analyzer strategies ending in :func:`simple_tokenize`.

    :meth:`tokenize` never raises: every strategy failure is logged and the
    next strategy is tried.
    """

    def __init__(
        self,
        strategies: Sequence[AnalyzerBackend],
        settings: AnalyzerSettings | None = None,
    ) -> None:
        self.strategies = tuple(strategies)
        self.settings = settings or AnalyzerSettings()

    async def _attempt(self, backend: AnalyzerBackend, text: str) -> list[Token] | _Unavailable:
        retries = max(0, self.settings.call_retries)
        for attempt in range(retries + 1):
            try:
                return await backend.try_tokenize(text)
            except Exception as exc:
                logger.warning("%s tokenization failed for %r: %s", backend.name, _preview(text), exc)
                if attempt < retries:
                    logger.info("Retrying %s tokenization (%d/%d)", backend.name, attempt + 1, retries)
                    await asyncio.sleep(self.settings.call_retry_delay)
        return NOT_AVAILABLE

    async def tokenize(self, text: str) -> list[Token]:
        if not isinstance(text, str) or not text:
            return []
        if not text.strip():
            return simple_tokenize(text)
        for backend in self.strategies:
            result = await self._attempt(backend, text)
            if result is NOT_AVAILABLE or not result:
                continue
            return result
        logger.info("Using simple tokenizer as fallback for %r", _preview(text))
        return simple_tokenize(text)

    def describe(self) -> dict[str, dict[str, object]]:
        return {backend.name: backend.describe() for backend in self.strategies}


def build_chain(
    method: TokenizationMethod,
    settings: AnalyzerSettings | None = None,
    remote: RemoteSettings | None = None,
    *,
    dicdir: Path | None = None,
) -> AnalyzerChain:
    settings = settings or AnalyzerSettings()
    strategies: list[AnalyzerBackend] = []
    if method in (TokenizationMethod.DICTIONARY, TokenizationMethod.AUTO):
        strategies.append(DictionarySegmenter(settings, dicdir=dicdir))
    if method in (TokenizationMethod.REMOTE, TokenizationMethod.AUTO):
        strategies.append(RemoteSegmenter(settings, remote))
    return AnalyzerChain(strategies, settings)
