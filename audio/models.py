"""Data structures shared by the audio decoding and snippet pipeline."""

import mimetypes
from dataclasses import dataclass, field
from pathlib import Path

import numpy as np

WAV_MIME_TYPE = "audio/wav"


@dataclass
class AudioBuffer:
    """Decoded PCM audio: one float32 sample array per channel.

    Samples are nominally in [-1.0, 1.0]. ``frames`` is the declared frame
    count; a channel may hold fewer samples than that, in which case readers
    stop at the shorter length.
    """

    sample_rate: int
    channels: list[np.ndarray]
    frames: int = -1

    def __post_init__(self) -> None:
        if not self.channels:
            raise ValueError("AudioBuffer requires at least one channel")
        if self.sample_rate <= 0:
            raise ValueError(f"Invalid sample rate: {self.sample_rate}")
        self.channels = [np.asarray(c, dtype=np.float32) for c in self.channels]
        if self.frames < 0:
            self.frames = max(len(c) for c in self.channels)

    @property
    def number_of_channels(self) -> int:
        return len(self.channels)

    @property
    def duration(self) -> float:
        """Duration in seconds."""
        return self.frames / self.sample_rate

    @classmethod
    def from_interleaved(cls, samples: np.ndarray, sample_rate: int, channels: int) -> "AudioBuffer":
        """Split an interleaved sample array into per-channel arrays."""
        usable = len(samples) - (len(samples) % channels)
        frames = np.asarray(samples[:usable], dtype=np.float32).reshape(-1, channels)
        return cls(sample_rate=sample_rate, channels=[frames[:, i].copy() for i in range(channels)])


@dataclass(frozen=True)
class SnippetFile:
    """One encoded sub-clip ready to submit for recognition."""

    name: str
    data: bytes = field(repr=False)
    source_name: str
    segment_index: int
    start_seconds: float
    duration_seconds: float
    mime_type: str = WAV_MIME_TYPE

    @property
    def size(self) -> int:
        return len(self.data)

    @property
    def key(self) -> tuple[str, int]:
        """Identity used to avoid queueing the same snippet twice."""
        return self.name, self.size


@dataclass(frozen=True)
class IncomingFile:
    """A user-selected or dropped file before any processing."""

    name: str
    mime_type: str
    data: bytes = field(repr=False)

    @property
    def size(self) -> int:
        return len(self.data)

    @property
    def is_audio(self) -> bool:
        return self.mime_type.lower().startswith("audio/")

    @classmethod
    def from_path(cls, path: Path | str, mime_type: str | None = None) -> "IncomingFile":
        """Read a file from disk, guessing its MIME type from the extension."""
        path = Path(path)
        if mime_type is None:
            mime_type = mimetypes.guess_type(path.name)[0] or "application/octet-stream"
        return cls(name=path.name, mime_type=mime_type, data=path.read_bytes())
