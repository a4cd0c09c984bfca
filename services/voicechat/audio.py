"""Audio types and PCM/WAV helpers for the voice chat bot.

Captured audio is kept as 16 kHz mono signed 16-bit little-endian PCM from
the moment it leaves the receiver. The transport delivers 48 kHz stereo, so
``downmix_to_capture_format`` converts every decoded packet on arrival.
"""

from __future__ import annotations

import io
import struct
import wave
from contextlib import suppress
from dataclasses import dataclass
from pathlib import Path

import numpy as np

SAMPLE_RATE = 16000
CHANNELS = 1
SAMPLE_WIDTH = 2

TRANSPORT_SAMPLE_RATE = 48000
TRANSPORT_CHANNELS = 2

WAV_HEADER_SIZE = 44

_DECIMATION = TRANSPORT_SAMPLE_RATE // SAMPLE_RATE


@dataclass(slots=True)
class CapturedUtterance:
    """A finished capture, ready for transcription."""

    guild_id: int
    user_id: int
    display_name: str
    pcm: bytes
    correlation_id: str
    started_at: float = 0.0

    @property
    def duration_ms(self) -> float:
        return pcm_duration_ms(self.pcm)


@dataclass(frozen=True, slots=True)
class WavHeader:
    """Fields of a canonical 44-byte PCM WAV header."""

    sample_rate: int
    channels: int
    bits_per_sample: int
    byte_rate: int
    block_align: int
    data_size: int


def pcm_duration_ms(
    pcm: bytes, *, sample_rate: int = SAMPLE_RATE, channels: int = CHANNELS
) -> float:
    """Duration of 16-bit PCM in milliseconds."""
    if not pcm:
        return 0.0
    frames = len(pcm) / (SAMPLE_WIDTH * channels)
    return frames / sample_rate * 1000.0


def pcm_to_wav_bytes(
    pcm: bytes, *, sample_rate: int = SAMPLE_RATE, channels: int = CHANNELS
) -> bytes:
    """Wrap raw 16-bit PCM in a RIFF/WAVE container."""
    buffer = io.BytesIO()
    with wave.open(buffer, "wb") as wav_file:
        wav_file.setnchannels(channels)
        wav_file.setsampwidth(SAMPLE_WIDTH)
        wav_file.setframerate(sample_rate)
        wav_file.writeframes(pcm)
    return buffer.getvalue()


def write_wav(
    path: Path, pcm: bytes, *, sample_rate: int = SAMPLE_RATE, channels: int = CHANNELS
) -> Path:
    path.write_bytes(pcm_to_wav_bytes(pcm, sample_rate=sample_rate, channels=channels))
    return path


def read_wav_header(data: bytes) -> WavHeader:
    """Parse the canonical header produced by ``pcm_to_wav_bytes``.

    Raises:
        ValueError: the data is not a 44-byte-header PCM WAV.
    """
    if len(data) < WAV_HEADER_SIZE:
        raise ValueError(f"WAV data too short: {len(data)} bytes")
    (
        riff,
        _riff_size,
        wave_id,
        fmt_id,
        fmt_size,
        audio_format,
        channels,
        sample_rate,
        byte_rate,
        block_align,
        bits_per_sample,
        data_id,
        data_size,
    ) = struct.unpack("<4sI4s4sIHHIIHH4sI", data[:WAV_HEADER_SIZE])
    if riff != b"RIFF" or wave_id != b"WAVE" or fmt_id != b"fmt " or data_id != b"data":
        raise ValueError("Not a canonical RIFF/WAVE header")
    if fmt_size != 16 or audio_format != 1:
        raise ValueError(f"Unsupported WAV format (fmt size {fmt_size}, format {audio_format})")
    return WavHeader(
        sample_rate=sample_rate,
        channels=channels,
        bits_per_sample=bits_per_sample,
        byte_rate=byte_rate,
        block_align=block_align,
        data_size=data_size,
    )


def discard_file(path: Path | None) -> None:
    """Delete a temporary audio file, ignoring any failure."""
    if path is None:
        return
    with suppress(OSError):
        Path(path).unlink(missing_ok=True)


def downmix_to_capture_format(pcm: bytes) -> bytes:
    """Convert 48 kHz stereo s16le to 16 kHz mono s16le.

    Channels are averaged, then each group of three samples is averaged,
    which doubles as a crude low-pass before decimation. Trailing samples
    that do not fill a group are dropped.
    """
    frame_bytes = SAMPLE_WIDTH * TRANSPORT_CHANNELS
    usable = len(pcm) - (len(pcm) % frame_bytes)
    if usable <= 0:
        return b""
    samples = np.frombuffer(pcm[:usable], dtype="<i2").astype(np.int32)
    mono = samples.reshape(-1, TRANSPORT_CHANNELS).mean(axis=1)
    groups = len(mono) // _DECIMATION
    if groups == 0:
        return b""
    decimated = mono[: groups * _DECIMATION].reshape(groups, _DECIMATION).mean(axis=1)
    return np.clip(np.rint(decimated), -32768, 32767).astype("<i2").tobytes()


__all__ = [
    "CHANNELS",
    "SAMPLE_RATE",
    "SAMPLE_WIDTH",
    "WAV_HEADER_SIZE",
    "CapturedUtterance",
    "WavHeader",
    "discard_file",
    "downmix_to_capture_format",
    "pcm_duration_ms",
    "pcm_to_wav_bytes",
    "read_wav_header",
    "write_wav",
]
