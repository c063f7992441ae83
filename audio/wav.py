"""16-bit PCM WAV encoding and decoding."""

import io
import struct
import wave

import numpy as np

from audio.models import AudioBuffer
from core.exceptions import DecodeError

WAV_HEADER_SIZE = 44
BITS_PER_SAMPLE = 16
BYTES_PER_SAMPLE = BITS_PER_SAMPLE // 8

# RIFF header, fmt chunk (PCM, 16 bytes) and data chunk header, little-endian
_HEADER = struct.Struct("<4sI4s4sIHHIIHH4sI")


def pcm16_from_float(samples: np.ndarray) -> np.ndarray:
    """Clamp float samples to [-1, 1] and convert them to signed 16-bit integers.

    Negative samples scale by 32768 and positive ones by 32767 so both
    extremes map onto the int16 range; the fractional part is truncated.
    """
    clamped = np.clip(np.nan_to_num(samples.astype(np.float32), nan=0.0), -1.0, 1.0)
    scaled = np.where(clamped < 0, clamped * 32768.0, clamped * 32767.0)
    return scaled.astype(np.int16)


def encode_wav(buffer: AudioBuffer) -> bytes:
    """Encode an AudioBuffer as a canonical 44-byte-header PCM WAV file.

    The payload is always ``channels * frames * 2`` bytes. A channel holding
    fewer samples than ``buffer.frames`` stops early and the remainder of its
    payload stays silent.
    """
    num_channels = buffer.number_of_channels
    frames = buffer.frames
    data_size = frames * num_channels * BYTES_PER_SAMPLE

    interleaved = np.zeros((frames, num_channels), dtype="<i2")
    for index, channel in enumerate(buffer.channels):
        available = min(frames, len(channel))
        interleaved[:available, index] = pcm16_from_float(channel[:available])

    header = _HEADER.pack(
        b"RIFF",
        WAV_HEADER_SIZE - 8 + data_size,
        b"WAVE",
        b"fmt ",
        16,
        1,  # PCM
        num_channels,
        buffer.sample_rate,
        buffer.sample_rate * num_channels * BYTES_PER_SAMPLE,
        num_channels * BYTES_PER_SAMPLE,
        BITS_PER_SAMPLE,
        b"data",
        data_size,
    )
    return header + interleaved.tobytes()


def is_wav(data: bytes) -> bool:
    """Check for a RIFF/WAVE signature."""
    return len(data) >= 12 and data[:4] == b"RIFF" and data[8:12] == b"WAVE"


def decode_wav(data: bytes) -> AudioBuffer:
    """Decode a 16-bit PCM WAV file into an AudioBuffer.

    Raises:
        DecodeError: If the bytes are not a readable 16-bit PCM WAV file
    """
    try:
        with wave.open(io.BytesIO(data), "rb") as reader:
            sample_width = reader.getsampwidth()
            num_channels = reader.getnchannels()
            sample_rate = reader.getframerate()
            raw = reader.readframes(reader.getnframes())
    except (wave.Error, EOFError) as e:
        raise DecodeError(f"Unreadable WAV data: {e}") from e

    if sample_width != BYTES_PER_SAMPLE:
        raise DecodeError(f"Unsupported WAV sample width: {sample_width * 8} bits")

    samples = np.frombuffer(raw, dtype="<i2").astype(np.float32)
    samples = np.where(samples < 0, samples / 32768.0, samples / 32767.0)
    return AudioBuffer.from_interleaved(samples, sample_rate, num_channels)
