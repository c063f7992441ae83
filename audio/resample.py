"""Offline rendering of a time slice into a fixed sample rate and channel layout."""

import math

import numpy as np

from audio.models import AudioBuffer


def output_frame_count(duration: float, sample_rate: int) -> int:
    """Number of frames a rendered slice of ``duration`` seconds holds."""
    return math.ceil(duration * sample_rate)


def _resample_channel(
    channel: np.ndarray, source_rate: int, start: float, frames: int, target_rate: int
) -> np.ndarray:
    """Linearly interpolate ``frames`` samples starting at ``start`` seconds."""
    if frames == 0 or len(channel) == 0:
        return np.zeros(frames, dtype=np.float32)

    positions = start * source_rate + np.arange(frames, dtype=np.float64) * (
        source_rate / target_rate
    )
    first = max(0, int(math.floor(positions[0])))
    last = min(len(channel), int(math.ceil(positions[-1])) + 2)
    if first >= last:
        return np.zeros(frames, dtype=np.float32)

    window = channel[first:last].astype(np.float64)
    window_index = np.arange(first, last, dtype=np.float64)
    # Past the end of the source the render is silent, not a held sample
    rendered = np.interp(positions, window_index, window, left=0.0, right=0.0)
    return rendered.astype(np.float32)


def _map_channels(channels: list[np.ndarray], target_channels: int) -> list[np.ndarray]:
    """Map rendered channels onto the target layout.

    Mono sources are copied to the first two outputs, any layout rendered to
    mono is averaged, extra source channels are dropped and extra outputs
    stay silent.
    """
    source_count = len(channels)
    frames = len(channels[0])

    if source_count == target_channels:
        return channels
    if target_channels == 1:
        return [np.mean(np.stack(channels), axis=0).astype(np.float32)]

    silent = np.zeros(frames, dtype=np.float32)
    if source_count == 1:
        mapped = [channels[0], channels[0].copy()]
    else:
        mapped = list(channels[:target_channels])
    while len(mapped) < target_channels:
        mapped.append(silent.copy())
    return mapped[:target_channels]


def render_segment(
    buffer: AudioBuffer,
    start: float,
    duration: float,
    target_rate: int,
    target_channels: int,
) -> AudioBuffer:
    """Render ``duration`` seconds of ``buffer`` from ``start`` at a new rate and layout.

    The result always holds exactly ``ceil(duration * target_rate)`` frames.

    Args:
        buffer: Decoded source audio
        start: Offset into the source, in seconds
        duration: Length of the slice, in seconds
        target_rate: Output sample rate
        target_channels: Output channel count

    Returns:
        AudioBuffer at ``target_rate`` with ``target_channels`` channels
    """
    if target_channels < 1:
        raise ValueError(f"Invalid target channel count: {target_channels}")
    frames = output_frame_count(duration, target_rate)
    rendered = [
        _resample_channel(channel, buffer.sample_rate, max(0.0, start), frames, target_rate)
        for channel in buffer.channels
    ]
    return AudioBuffer(
        sample_rate=target_rate,
        channels=_map_channels(rendered, target_channels),
        frames=frames,
    )
