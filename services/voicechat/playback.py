"""Audio playback on a Discord voice client."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from pathlib import Path
from typing import Any

import discord

from services.common.structured_logging import get_logger

from .errors import PlaybackError

logger = get_logger(__name__, service_name="voicechat")


class DiscordAudioPlayer:
    """Plays WAV files through FFmpeg and waits for the player to go idle."""

    def __init__(
        self,
        voice_client: discord.VoiceClient,
        *,
        source_factory: Callable[[str], discord.AudioSource] = discord.FFmpegPCMAudio,
    ) -> None:
        self._voice_client = voice_client
        self._source_factory = source_factory

    async def play(self, path: Path) -> None:
        if not self._voice_client.is_connected():
            raise PlaybackError("voice client is not connected")

        loop = asyncio.get_running_loop()
        finished: asyncio.Future[None] = loop.create_future()

        def _resolve(error: Exception | None) -> None:
            if finished.done():
                return
            if error is not None:
                finished.set_exception(PlaybackError(f"playback failed: {error}"))
            else:
                finished.set_result(None)

        def _after(error: Exception | None) -> None:
            # discord.py invokes this on its player thread
            try:
                loop.call_soon_threadsafe(_resolve, error)
            except RuntimeError:
                pass

        source = self._source_factory(str(path))
        try:
            self._voice_client.play(source, after=_after)
        except discord.ClientException as exc:
            source.cleanup()
            raise PlaybackError(f"could not start playback: {exc}") from exc

        try:
            await finished
        except asyncio.CancelledError:
            self.stop()
            raise

    def stop(self) -> None:
        client: Any = self._voice_client
        if client.is_playing() or client.is_paused():
            client.stop()
            logger.debug("playback.stopped")


__all__ = ["DiscordAudioPlayer"]
