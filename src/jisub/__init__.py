from .analyzers import (
    AnalyzerChain,
    BackendState,
    BackendUnavailableError,
    DictionarySegmenter,
    RemoteSegmenter,
    simple_tokenize,
)
from .cache import ResultCache
from .config import PipelineConfig, TokenizationMethod
from .enrich import CaptionEnricher, EnrichmentError
from .formats import FormatUnrecognizedError, load_track, parse_captions
from .furigana import make_furigana, synthesize_furigana
from .models import Caption, FuriganaSegment, SubtitleTrack, Token, TrackMetadata
from .normalize import OverlapPolicy, normalize_captions
from .pipeline import CaptionPipeline
from .playback import DuplicateTrackError, PlaybackState, TrackMode
from .timecodes import TimestampLayout, format_timestamp, parse_timestamp

__all__ = [
    "AnalyzerChain",
    "BackendState",
    "BackendUnavailableError",
    "Caption",
    "CaptionEnricher",
    "CaptionPipeline",
    "DictionarySegmenter",
    "DuplicateTrackError",
    "EnrichmentError",
    "FormatUnrecognizedError",
    "FuriganaSegment",
    "OverlapPolicy",
    "PipelineConfig",
    "PlaybackState",
    "RemoteSegmenter",
    "ResultCache",
    "SubtitleTrack",
    "TimestampLayout",
    "Token",
    "TokenizationMethod",
    "TrackMetadata",
    "TrackMode",
    "format_timestamp",
    "load_track",
    "make_furigana",
    "normalize_captions",
    "parse_captions",
    "parse_timestamp",
    "simple_tokenize",
    "synthesize_furigana",
]
