from __future__ import annotations

from typing import Sequence

from .analyzers import AnalyzerBackend, AnalyzerChain, build_chain
from .cache import ResultCache
from .config import PipelineConfig
from .enrich import CaptionEnricher, EnrichmentResult
from .formats import load_track
from .furigana import make_furigana
from .models import FuriganaSegment, SubtitleTrack, Token

__all__ = ["CaptionPipeline"]


class CaptionPipeline:
    """
    Owns the analyzer chain, its backend state and the result cache.

    Construct one per player session (or per test); nothing here is shared
    through module globals.
    """

    def __init__(
        self,
        config: PipelineConfig | None = None,
        *,
        strategies: Sequence[AnalyzerBackend] | None = None,
    ) -> None:
        self.config = config or PipelineConfig()
        if strategies is None:
            self.chain = build_chain(
                self.config.tokenizer,
                self.config.analyzer,
                self.config.remote,
                dicdir=self.config.unidic_dir,
            )
        else:
            self.chain = AnalyzerChain(strategies, self.config.analyzer)
        self.cache: ResultCache[str, EnrichmentResult] = ResultCache(self.config.cache_size)
        self.enricher = CaptionEnricher(self.chain, self.cache)

    async def tokenize(self, text: str) -> list[Token]:
        return await self.chain.tokenize(text)

    async def furigana(self, text: str) -> list[FuriganaSegment]:
        return await make_furigana(text, self.chain)

    def parse_track(
        self,
        text: str,
        language: str | None = None,
        title: str | None = None,
        *,
        default_title: str = "Track 1",
    ) -> SubtitleTrack:
        return load_track(
            text,
            language,
            title,
            policy=self.config.overlap,
            default_title=default_title,
        )

    async def enrich_track(self, track: SubtitleTrack) -> int:
        return await self.enricher.enrich_captions(track.captions, track.metadata.language)

    async def load_track(
        self,
        text: str,
        language: str | None = None,
        title: str | None = None,
        *,
        enrich: bool = True,
    ) -> SubtitleTrack:
        """Parse, normalize and (optionally) enrich a subtitle file."""
        track = self.parse_track(text, language, title)
        if enrich:
            await self.enrich_track(track)
        return track

    def describe(self) -> dict[str, object]:
        return {
            "tokenizer": self.config.tokenizer.value,
            "backends": self.chain.describe(),
            "cache": {
                "entries": len(self.cache),
                "max_entries": self.cache.max_entries,
                "hits": self.cache.hits,
                "misses": self.cache.misses,
            },
        }
