"""Audio decoding and offline rendering.

The snippet pipeline talks to audio only through the AudioDecoder protocol so
it can run against a fake decoder in tests. FfmpegAudioDecoder is the real
implementation: containers are decoded by ffprobe/ffmpeg subprocesses, PCM WAV
input is read directly, and rendering happens in-process with numpy.
"""

import asyncio
import json
import logging
import shutil
from typing import Protocol

import numpy as np

from audio.models import AudioBuffer
from audio.resample import render_segment
from audio.wav import decode_wav, is_wav
from config.settings import Settings
from core.exceptions import DecodeError

logger = logging.getLogger(__name__)


class AudioDecoder(Protocol):
    """Narrow decode/render interface used by the snippet pipeline."""

    async def decode(self, data: bytes) -> AudioBuffer: ...

    async def render(
        self,
        buffer: AudioBuffer,
        start: float,
        duration: float,
        target_rate: int,
        target_channels: int,
    ) -> AudioBuffer: ...

    async def close(self) -> None: ...


class FfmpegAudioDecoder:
    """Decoder backed by ffmpeg subprocesses.

    The decoding context (resolved executables and a concurrency semaphore) is
    created lazily on first use and released by close(). A closed decoder
    refuses further work.
    """

    def __init__(
        self,
        ffmpeg_path: str = "ffmpeg",
        ffprobe_path: str = "ffprobe",
        max_concurrent: int = 4,
    ):
        self.ffmpeg_path = ffmpeg_path
        self.ffprobe_path = ffprobe_path
        self.max_concurrent = max_concurrent
        self._ffmpeg: str | None = None
        self._ffprobe: str | None = None
        self._semaphore: asyncio.Semaphore | None = None
        self._closed = False

    @classmethod
    def from_settings(cls, settings: Settings) -> "FfmpegAudioDecoder":
        return cls(
            ffmpeg_path=settings.ffmpeg_path,
            ffprobe_path=settings.ffprobe_path,
            max_concurrent=settings.max_concurrent_decodes,
        )

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def is_open(self) -> bool:
        """Whether the decoding context has been created and not yet released."""
        return self._semaphore is not None and not self._closed

    def _ensure_context(self) -> asyncio.Semaphore:
        if self._closed:
            raise DecodeError("Audio decoder has been closed")
        if self._semaphore is None:
            self._ffmpeg = shutil.which(self.ffmpeg_path)
            self._ffprobe = shutil.which(self.ffprobe_path)
            self._semaphore = asyncio.Semaphore(self.max_concurrent)
            logger.debug(
                f"Decoder context created (ffmpeg: {self._ffmpeg}, ffprobe: {self._ffprobe})"
            )
        return self._semaphore

    async def _run(self, args: list[str], data: bytes) -> bytes:
        """Run a tool with ``data`` on stdin and return its stdout."""
        process = await asyncio.create_subprocess_exec(
            *args,
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        stdout, stderr = await process.communicate(input=data)
        if process.returncode != 0:
            message = stderr.decode(errors="replace").strip() or f"exit code {process.returncode}"
            raise DecodeError(f"Could not decode audio: {message}")
        return stdout

    async def _probe(self, data: bytes) -> tuple[int, int]:
        output = await self._run(
            [
                self._ffprobe or self.ffprobe_path,
                "-v", "error",
                "-select_streams", "a:0",
                "-show_entries", "stream=sample_rate,channels",
                "-of", "json",
                "-i", "pipe:0",
            ],
            data,
        )
        try:
            streams = json.loads(output or b"{}").get("streams", [])
            stream = streams[0]
            return int(stream["sample_rate"]), int(stream["channels"])
        except (ValueError, KeyError, IndexError) as e:
            raise DecodeError("No audio stream found") from e

    async def decode(self, data: bytes) -> AudioBuffer:
        """Decode any container ffmpeg understands into float samples.

        Raises:
            DecodeError: If the data is empty, unsupported or corrupted
        """
        semaphore = self._ensure_context()
        if not data:
            raise DecodeError("Empty audio data")

        if is_wav(data):
            try:
                return decode_wav(data)
            except DecodeError as e:
                logger.debug(f"WAV fast path failed, falling back to ffmpeg: {e}")

        if self._ffmpeg is None or self._ffprobe is None:
            raise DecodeError(
                f"Audio decoder unavailable: {self.ffmpeg_path}/{self.ffprobe_path} not found"
            )

        async with semaphore:
            sample_rate, channels = await self._probe(data)
            raw = await self._run(
                [
                    self._ffmpeg,
                    "-v", "error",
                    "-i", "pipe:0",
                    "-map", "0:a:0",
                    "-f", "f32le",
                    "-acodec", "pcm_f32le",
                    "pipe:1",
                ],
                data,
            )

        samples = np.frombuffer(raw, dtype="<f4")
        buffer = AudioBuffer.from_interleaved(samples, sample_rate, channels)
        logger.debug(
            f"Decoded {len(data)} bytes: {buffer.duration:.2f}s, "
            f"{sample_rate}Hz, {channels} channel(s)"
        )
        return buffer

    async def render(
        self,
        buffer: AudioBuffer,
        start: float,
        duration: float,
        target_rate: int,
        target_channels: int,
    ) -> AudioBuffer:
        """Render a slice of ``buffer`` off the event loop."""
        self._ensure_context()
        return await asyncio.to_thread(
            render_segment, buffer, start, duration, target_rate, target_channels
        )

    async def close(self) -> None:
        """Release the decoding context."""
        if not self._closed:
            self._closed = True
            self._semaphore = None
            logger.debug("Decoder context closed")
