"""Shared fixtures and fakes for voicechat tests."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from pathlib import Path

import numpy as np
import pytest

from services.voicechat.audio import SAMPLE_RATE, CapturedUtterance
from services.voicechat.errors import SynthesisError, TranscriptionError


def make_pcm(duration_ms: int, *, frequency: float = 440.0, amplitude: float = 0.4) -> bytes:
    samples = int(SAMPLE_RATE * duration_ms / 1000)
    t = np.arange(samples) / SAMPLE_RATE
    audio = np.sin(2 * np.pi * frequency * t) * amplitude
    return (audio * 32767).astype(np.int16).tobytes()


class FrameStream:
    """Async iterator over prepared frames, optionally failing at the end."""

    def __init__(
        self,
        frames: list[bytes],
        *,
        error: BaseException | None = None,
        delay: float = 0.0,
        hang: bool = False,
    ) -> None:
        self._frames = list(frames)
        self._error = error
        self._delay = delay
        self._hang = hang

    def __aiter__(self) -> FrameStream:
        return self

    async def __anext__(self) -> bytes:
        if self._delay:
            await asyncio.sleep(self._delay)
        if self._frames:
            return self._frames.pop(0)
        if self._error is not None:
            raise self._error
        if self._hang:
            await asyncio.Event().wait()
        raise StopAsyncIteration


class FakeSubscriber:
    def __init__(self) -> None:
        self.streams: dict[int, list[bytes]] = {}
        self.subscribed: list[int] = []
        self.unsubscribe_calls = 0
        self.fail_with: Exception | None = None
        self.hang = False

    def subscribe(self, user_id: int, *, silence_ms: int) -> FrameStream:
        if self.fail_with is not None:
            raise self.fail_with
        self.subscribed.append(user_id)
        return FrameStream(self.streams.get(user_id, []), hang=self.hang)

    def unsubscribe_all(self) -> None:
        self.unsubscribe_calls += 1


class FakePlayer:
    """Records playback and how many plays overlapped."""

    def __init__(self, *, duration: float = 0.01) -> None:
        self.duration = duration
        self.played: list[bytes] = []
        self.existed_at_play: list[bool] = []
        self.active = 0
        self.max_active = 0
        self.stop_calls = 0
        self.fail_on: set[bytes] = set()
        self.started = asyncio.Event()

    async def play(self, path: Path) -> None:
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        self.started.set()
        try:
            exists = Path(path).exists()
            self.existed_at_play.append(exists)
            content = Path(path).read_bytes() if exists else b""
            if content in self.fail_on:
                raise RuntimeError(f"cannot play {content!r}")
            await asyncio.sleep(self.duration)
            self.played.append(content)
        finally:
            self.active -= 1

    def stop(self) -> None:
        self.stop_calls += 1


class FakeSynthesizer:
    """Writes the text into a temp file; per-text delays and failures."""

    def __init__(self, directory: Path) -> None:
        self.directory = directory
        self.delays: dict[str, float] = {}
        self.failures: set[str] = set()
        self.calls: list[str] = []
        self.outputs: list[Path] = []

    async def synthesize(self, text: str) -> Path:
        self.calls.append(text)
        await asyncio.sleep(self.delays.get(text, 0.0))
        if text in self.failures:
            raise SynthesisError(f"piper exited 1: bad text {text!r}", exit_code=1)
        path = self.directory / f"tts-{len(self.outputs)}.wav"
        path.write_bytes(text.encode("utf-8"))
        self.outputs.append(path)
        return path


class FakeTranscriber:
    def __init__(self, text: str = "hello there") -> None:
        self.text = text
        self.error: Exception | None = None
        self.delay = 0.0
        self.paths: list[Path] = []
        self.existed: list[bool] = []

    async def transcribe(self, wav_path: Path) -> str:
        self.paths.append(wav_path)
        self.existed.append(Path(wav_path).exists())
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.text


class FakeResponder:
    def __init__(self, text: str = "sure thing") -> None:
        self.text = text
        self.calls: list[dict[str, object]] = []
        self.error: Exception | None = None

    async def reply(self, **kwargs: object) -> str:
        self.calls.append(kwargs)
        if self.error is not None:
            raise self.error
        return self.text


@pytest.fixture
def pcm_factory() -> Callable[..., bytes]:
    return make_pcm


@pytest.fixture
def frame_stream() -> type[FrameStream]:
    return FrameStream


@pytest.fixture
def subscriber() -> FakeSubscriber:
    return FakeSubscriber()


@pytest.fixture
def player() -> FakePlayer:
    return FakePlayer()


@pytest.fixture
def synthesizer(tmp_path: Path) -> FakeSynthesizer:
    out = tmp_path / "tts"
    out.mkdir()
    return FakeSynthesizer(out)


@pytest.fixture
def transcriber() -> FakeTranscriber:
    return FakeTranscriber()


@pytest.fixture
def failing_transcriber() -> FakeTranscriber:
    fake = FakeTranscriber()
    fake.error = TranscriptionError("whisper-cli exited 1: model not found", exit_code=1)
    return fake


@pytest.fixture
def responder() -> FakeResponder:
    return FakeResponder()


@pytest.fixture
def utterance() -> CapturedUtterance:
    return CapturedUtterance(
        guild_id=111,
        user_id=222,
        display_name="alice",
        pcm=make_pcm(1200),
        correlation_id="voice-111-222-1700000000000-abcd1234",
    )
