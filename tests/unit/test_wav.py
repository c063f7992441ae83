"""Unit tests for audio/wav.py."""

import struct

import numpy as np
import pytest

from audio.models import AudioBuffer
from audio.resample import render_segment
from audio.wav import decode_wav, encode_wav, is_wav, pcm16_from_float
from core.exceptions import DecodeError


def _buffer(frames=100, channels=2, rate=8000, value=0.25):
    return AudioBuffer(rate, [np.full(frames, value, dtype=np.float32) for _ in range(channels)])


class TestPcm16FromFloat:
    def test_extremes_map_onto_int16_range(self):
        out = pcm16_from_float(np.array([-1.0, 0.0, 1.0], dtype=np.float32))
        assert out.tolist() == [-32768, 0, 32767]

    def test_clamps_out_of_range(self):
        out = pcm16_from_float(np.array([-3.0, 2.0], dtype=np.float32))
        assert out.tolist() == [-32768, 32767]

    def test_truncates_fraction(self):
        assert pcm16_from_float(np.array([0.5], dtype=np.float32)).tolist() == [16383]

    def test_nan_is_silence(self):
        assert pcm16_from_float(np.array([np.nan], dtype=np.float32)).tolist() == [0]


class TestEncodeWav:
    def test_header_fields(self):
        data = encode_wav(_buffer(frames=100, channels=2, rate=8000))
        riff, riff_size, wave = struct.unpack("<4sI4s", data[:12])
        assert (riff, wave) == (b"RIFF", b"WAVE")
        assert riff_size == len(data) - 8
        fmt = struct.unpack("<4sIHHIIHH", data[12:36])
        assert fmt == (b"fmt ", 16, 1, 2, 8000, 8000 * 2 * 2, 4, 16)
        assert struct.unpack("<4sI", data[36:44]) == (b"data", 100 * 2 * 2)

    def test_payload_size(self):
        data = encode_wav(_buffer(frames=333, channels=1))
        assert len(data) == 44 + 333 * 2

    def test_short_channel_leaves_silence(self):
        buffer = AudioBuffer(8000, [np.ones(10, dtype=np.float32), np.ones(4, dtype=np.float32)])
        decoded = decode_wav(encode_wav(buffer))
        assert decoded.frames == 10
        assert decoded.channels[1][4:].tolist() == [0.0] * 6
        assert decoded.channels[0][-1] == pytest.approx(1.0)


class TestDecodeWav:
    def test_round_trip_keeps_format(self):
        decoded = decode_wav(encode_wav(_buffer(frames=50, channels=2, rate=22050, value=-0.5)))
        assert decoded.sample_rate == 22050
        assert decoded.number_of_channels == 2
        assert decoded.frames == 50
        assert decoded.channels[0][0] == pytest.approx(-0.5, abs=1e-4)

    def test_rendered_segment_round_trip(self):
        source = AudioBuffer(44100, [np.zeros(44100 * 3, dtype=np.float32)])
        rendered = render_segment(source, 0.5, 1.23456, 8000, 2)
        decoded = decode_wav(encode_wav(rendered))
        assert decoded.sample_rate == 8000
        assert decoded.number_of_channels == 2
        assert abs(decoded.frames - np.ceil(1.23456 * 8000)) <= 1

    def test_garbage_raises_decode_error(self):
        with pytest.raises(DecodeError):
            decode_wav(b"RIFF\x00\x00\x00\x00WAVEnot really")

    def test_is_wav(self):
        assert is_wav(encode_wav(_buffer()))
        assert not is_wav(b"ID3\x04mp3 data")
        assert not is_wav(b"RIFF")
