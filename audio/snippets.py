"""Snippet segment selection.

Picks up to three representative sub-clips from a decoded file:

1. Segment 1 always starts at 0 (truncated for short files).
2. Segment 2 uses a random offset at least 0.75x the snippet duration away
   from segment 1, only for files of at least 1.5x the snippet duration.
3. Segment 3 uses a random offset distant from both earlier segments, only
   for files of at least 2.5x the snippet duration.

Random offsets are re-rolled a bounded number of times; a segment that finds
no valid offset is skipped, which is not an error.
"""

import hashlib
import logging
import math
import random
import re
from dataclasses import dataclass

from audio.decoder import AudioDecoder
from audio.models import AudioBuffer, SnippetFile
from audio.wav import encode_wav
from config.settings import Settings

logger = logging.getLogger(__name__)

_UNSAFE_NAME_CHARS = re.compile(r"[^a-zA-Z0-9_.-]")


@dataclass(frozen=True)
class SnippetConfig:
    """Tunables for segment selection."""

    duration: float = 21.0
    min_duration: float = 1.0
    target_sample_rate: int = 44100
    target_channels: int = 2
    max_segments: int = 3
    offset_attempts: int = 10
    second_segment_factor: float = 1.5
    third_segment_factor: float = 2.5
    min_distance_factor: float = 0.75
    min_remaining_factor: float = 0.5

    @classmethod
    def from_settings(cls, settings: Settings) -> "SnippetConfig":
        return cls(
            duration=settings.snippet_duration_seconds,
            min_duration=settings.min_snippet_seconds,
            target_sample_rate=settings.target_sample_rate,
            target_channels=settings.target_channels,
            max_segments=settings.max_snippets_per_file,
            offset_attempts=settings.snippet_offset_attempts,
        )

    @property
    def min_distance(self) -> float:
        return self.duration * self.min_distance_factor


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def snippet_stem(file_name: str) -> str:
    """File name without its extension, reduced to filesystem-safe characters."""
    dot = file_name.rfind(".")
    stem = file_name[:dot] if dot > 0 else file_name
    return _UNSAFE_NAME_CHARS.sub("_", stem)


def snippet_name(source_name: str, segment_index: int, start: float, data: bytes) -> str:
    """Build ``<stem>_S<index>_<start>s_<digest>.wav``.

    The digest is taken over the encoded snippet so two segments of one
    source never collide, while re-processing identical audio reproduces the
    same name.
    """
    digest = hashlib.md5(data).hexdigest()[:8]
    return f"{snippet_stem(source_name)}_S{segment_index}_{round_half_up(start)}s_{digest}.wav"


class SnippetSelector:
    """Extracts and encodes representative segments of a decoded file."""

    def __init__(
        self,
        decoder: AudioDecoder,
        config: SnippetConfig | None = None,
        rng: random.Random | None = None,
    ):
        self.decoder = decoder
        self.config = config or SnippetConfig()
        self.rng = rng or random.Random()

    async def _render_snippet(
        self,
        buffer: AudioBuffer,
        start: float,
        source_name: str,
        segment_index: int,
    ) -> SnippetFile | None:
        """Render and encode one segment, or None if it is unusable."""
        start = max(0.0, start)
        if start >= buffer.duration:
            logger.warning(
                f"Start {start:.2f}s is beyond duration {buffer.duration:.2f}s for {source_name}"
            )
            return None

        duration = min(self.config.duration, buffer.duration - start)
        if duration < self.config.min_duration:
            logger.warning(
                f"Segment too short ({duration:.2f}s) for {source_name} at {start:.2f}s"
            )
            return None

        try:
            rendered = await self.decoder.render(
                buffer,
                start,
                duration,
                self.config.target_sample_rate,
                self.config.target_channels,
            )
            data = encode_wav(rendered)
        except Exception as e:
            logger.warning(
                f"Failed to render segment {segment_index} of {source_name} at {start:.2f}s: {e}"
            )
            return None

        snippet = SnippetFile(
            name=snippet_name(source_name, segment_index, start, data),
            data=data,
            source_name=source_name,
            segment_index=segment_index,
            start_seconds=start,
            duration_seconds=duration,
        )
        logger.debug(f"Created snippet {snippet.name} ({snippet.size} bytes)")
        return snippet

    def _is_distinct(self, start: float, previous_starts: list[float]) -> bool:
        return all(abs(start - prev) >= self.config.min_distance for prev in previous_starts)

    async def _random_segment(
        self,
        buffer: AudioBuffer,
        source_name: str,
        segment_index: int,
        previous_starts: list[float],
        low: float,
        span: float,
    ) -> SnippetFile | None:
        """Try random offsets in [low, low + span) until one yields a distinct segment."""
        total = buffer.duration
        min_remaining = self.config.duration * self.config.min_remaining_factor

        for _ in range(self.config.offset_attempts):
            start = low + self.rng.random() * span
            if start < 0 or total - start < min_remaining:
                continue
            if not self._is_distinct(start, previous_starts):
                continue
            snippet = await self._render_snippet(buffer, start, source_name, segment_index)
            if snippet is not None:
                return snippet

        logger.debug(
            f"No distinct offset found for segment {segment_index} of {source_name} "
            f"after {self.config.offset_attempts} attempts"
        )
        return None

    async def select(
        self, buffer: AudioBuffer, source_name: str, segment_count: int
    ) -> list[SnippetFile] | None:
        """Produce up to ``segment_count`` snippets from ``buffer``.

        Args:
            buffer: Decoded source audio
            source_name: Original file name, used to name the snippets
            segment_count: Requested number of segments (clamped to 1..max_segments)

        Returns:
            The produced snippets in segment order, or None if even the first
            segment could not be produced
        """
        wanted = max(1, min(segment_count, self.config.max_segments))
        duration = self.config.duration
        total = buffer.duration

        first = await self._render_snippet(buffer, 0.0, source_name, 1)
        if first is None:
            logger.warning(f"Could not generate first snippet for {source_name}")
            return None

        snippets = [first]
        starts = [0.0]

        if wanted >= 2 and total >= duration * self.config.second_segment_factor:
            second = await self._random_segment(
                buffer,
                source_name,
                len(snippets) + 1,
                starts,
                low=duration * 0.5,
                span=total - duration * 1.5,
            )
            if second is not None:
                snippets.append(second)
                starts.append(second.start_seconds)

        if wanted >= 3 and total >= duration * self.config.third_segment_factor:
            third = await self._random_segment(
                buffer,
                source_name,
                len(snippets) + 1,
                starts,
                low=0.0,
                span=total - duration,
            )
            if third is not None:
                snippets.append(third)

        logger.info(
            f"Generated {len(snippets)}/{wanted} snippet(s) for {source_name} ({total:.1f}s)"
        )
        return snippets
