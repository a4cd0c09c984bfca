"""Collaborator interfaces consumed by the session core."""

from __future__ import annotations

from collections.abc import AsyncIterator
from pathlib import Path
from typing import Protocol


class AudioSubscriber(Protocol):
    """Per-speaker decoded audio source."""

    def subscribe(self, user_id: int, *, silence_ms: int) -> AsyncIterator[bytes]:
        """Yield 16 kHz mono PCM frames until ``silence_ms`` of silence.

        Raising from the iterator signals a stream error.
        """
        ...

    def unsubscribe_all(self) -> None: ...


class AudioPlayer(Protocol):
    """Plays one audio file at a time on the channel."""

    async def play(self, path: Path) -> None:
        """Return once playback has finished (the player is idle again)."""
        ...

    def stop(self) -> None: ...


class Transcriber(Protocol):
    async def transcribe(self, wav_path: Path) -> str: ...


class Synthesizer(Protocol):
    async def synthesize(self, text: str) -> Path:
        """Render ``text`` into a new temporary WAV owned by the caller."""
        ...


class Responder(Protocol):
    async def reply(
        self,
        *,
        guild_id: int,
        user_id: int,
        username: str,
        transcript: str,
        source: str = "voice",
    ) -> str:
        """Produce reply text; implementations never raise."""
        ...


__all__ = [
    "AudioPlayer",
    "AudioSubscriber",
    "Responder",
    "Synthesizer",
    "Transcriber",
]
