from __future__ import annotations

import logging
from enum import Enum
from typing import Protocol

from .formats import captions_to_srt
from .models import Caption, SubtitleTrack
from .pipeline import CaptionPipeline

__all__ = [
    "CardExporter",
    "DuplicateTrackError",
    "PlaybackState",
    "TrackMode",
]

logger = logging.getLogger(__name__)

# Seeking exactly onto a start time would also match a caption ending there.
PLAY_CAPTION_OFFSET = 0.0001


class DuplicateTrackError(RuntimeError):
    """A track with the same language, title and caption count is already loaded."""


class TrackMode(Enum):
    EMPTY = "empty"
    SINGLE = "single"
    MULTI = "multi"


class CardExporter(Protocol):
    def export(self, caption: Caption, current_time: float) -> object: ...


class PlaybackState:
    """
    Subtitle tracks plus the playhead.

    ``active_caption_ids`` is derived state: every mutation of the current
    time, the track list or the active track index recomputes it before
    returning.
    """

    def __init__(self, pipeline: CaptionPipeline | None = None) -> None:
        self.pipeline = pipeline or CaptionPipeline()
        self.tracks: list[SubtitleTrack] = []
        self.active_track_index = 0
        self.current_time = 0.0
        self.media_url: str | None = None
        self.show_subtitles = True
        self.show_secondary_subtitles = True
        self.show_furigana = True
        self.is_auto_pause_mode = False
        self.is_offset_mode = False
        self.last_pause_time: float | None = None
        self._active_ids: tuple[str, ...] = ()
        self._generation = 0

    @property
    def mode(self) -> TrackMode:
        if not self.tracks:
            return TrackMode.EMPTY
        if len(self.tracks) == 1:
            return TrackMode.SINGLE
        return TrackMode.MULTI

    @property
    def active_track(self) -> SubtitleTrack | None:
        if 0 <= self.active_track_index < len(self.tracks):
            return self.tracks[self.active_track_index]
        return None

    @property
    def captions(self) -> list[Caption]:
        track = self.active_track
        return track.captions if track is not None else []

    @property
    def active_caption_ids(self) -> tuple[str, ...]:
        return self._active_ids

    @property
    def active_captions(self) -> list[Caption]:
        ids = set(self._active_ids)
        return [caption for caption in self.captions if caption.id in ids]

    def all_active_captions(self) -> list[Caption]:
        """Active captions of the active track, then those of every visible secondary track."""
        active: list[Caption] = []
        for index, track in enumerate(self.tracks):
            if index == self.active_track_index:
                active.extend(self.active_captions)
            elif self.show_secondary_subtitles:
                active.extend(track.captions_at(self.current_time))
        return active

    def _update_active_captions(self) -> None:
        self._active_ids = tuple(caption.id for caption in self.captions if caption.contains(self.current_time))

    def set_current_time(self, time: float) -> None:
        self.current_time = float(time)
        self._update_active_captions()

    def set_active_track(self, index: int) -> bool:
        if not 0 <= index < len(self.tracks):
            return False
        self.active_track_index = index
        self._update_active_captions()
        return True

    def cycle_active_track(self) -> int:
        if len(self.tracks) > 1:
            self.active_track_index = (self.active_track_index + 1) % len(self.tracks)
            self._update_active_captions()
        return self.active_track_index

    def _find_duplicate(self, track: SubtitleTrack) -> SubtitleTrack | None:
        for existing in self.tracks:
            if (
                existing.metadata.language == track.metadata.language
                and existing.metadata.title == track.metadata.title
                and len(existing.captions) == len(track.captions)
            ):
                return existing
        return None

    def add_track(self, track: SubtitleTrack) -> int | None:
        """Publish a fully processed track; duplicates are rejected and logged."""
        if self._find_duplicate(track) is not None:
            error = DuplicateTrackError(
                f"Skipping duplicate subtitle track: {track.metadata.language} - {track.metadata.title}"
            )
            logger.warning("%s", error)
            return None
        self.tracks.append(track)
        if len(self.tracks) == 1:
            self.active_track_index = 0
        self._update_active_captions()
        return len(self.tracks) - 1

    async def load_captions(
        self,
        content: str,
        language: str | None = None,
        title: str | None = None,
    ) -> int | None:
        """
        Parse, enrich and publish a subtitle file.

        Returns the new track index, or ``None`` when the track was a duplicate
        or the state was cleared while enrichment was running. Raises
        :class:`~jisub.formats.FormatUnrecognizedError` for unsupported files.
        """
        generation = self._generation
        track = self.pipeline.parse_track(
            content,
            language,
            title,
            default_title=f"Track {len(self.tracks) + 1}",
        )
        if self._find_duplicate(track) is not None:
            logger.warning(
                "Skipping duplicate subtitle track: %s - %s",
                track.metadata.language,
                track.metadata.title,
            )
            return None
        await self.pipeline.enrich_track(track)
        if generation != self._generation:
            logger.info("Discarding track %r: captions were cleared during processing", track.metadata.title)
            return None
        return self.add_track(track)

    def clear(self) -> None:
        self.tracks = []
        self.active_track_index = 0
        self._active_ids = ()
        self._generation += 1

    def play_caption(self, caption: Caption) -> None:
        self.set_current_time(caption.start_time + PLAY_CAPTION_OFFSET)

    def previous_caption(self) -> Caption | None:
        active = self.active_captions
        if not active:
            return None
        captions = self.captions
        index = captions.index(active[0])
        if index <= 0:
            return None
        target = captions[index - 1]
        self.play_caption(target)
        return target

    def next_caption(self) -> Caption | None:
        active = self.active_captions
        if not active:
            return None
        captions = self.captions
        index = captions.index(active[-1])
        if index >= len(captions) - 1:
            return None
        target = captions[index + 1]
        self.play_caption(target)
        return target

    def seek_to_caption_start(self) -> float | None:
        active = self.active_captions
        if not active:
            return None
        self.set_current_time(active[0].start_time)
        return self.current_time

    def toggle_subtitles(self) -> bool:
        self.show_subtitles = not self.show_subtitles
        return self.show_subtitles

    def toggle_secondary_subtitles(self) -> bool:
        self.show_secondary_subtitles = not self.show_secondary_subtitles
        return self.show_secondary_subtitles

    def toggle_furigana(self) -> bool:
        self.show_furigana = not self.show_furigana
        return self.show_furigana

    def toggle_offset_mode(self) -> bool:
        self.is_offset_mode = not self.is_offset_mode
        return self.is_offset_mode

    def toggle_auto_pause(self) -> bool:
        self.is_auto_pause_mode = not self.is_auto_pause_mode
        self.last_pause_time = self.current_time
        logger.info("Auto-pause mode %s", "enabled" if self.is_auto_pause_mode else "disabled")
        return self.is_auto_pause_mode

    def download_srt(self) -> str | None:
        captions = self.captions
        if not captions:
            return None
        return captions_to_srt(captions)

    def export_current_caption(self, exporter: CardExporter) -> object | None:
        active = self.active_captions
        if not active:
            return None
        return exporter.export(active[0], self.current_time)
