"""Tests for the Discord audio player adapter."""

import asyncio
import threading
from unittest.mock import Mock

import discord
import pytest

from services.voicechat.errors import PlaybackError
from services.voicechat.playback import DiscordAudioPlayer

pytestmark = pytest.mark.timeout(10)


class FakeVoiceClient:
    """Calls ``after`` from another thread, like discord.py's player."""

    def __init__(self, *, error=None, finish=True, connected=True):
        self.error = error
        self.finish = finish
        self.connected = connected
        self.playing = False
        self.sources = []
        self.stop_calls = 0
        self._after = None

    def is_connected(self):
        return self.connected

    def is_playing(self):
        return self.playing

    def is_paused(self):
        return False

    def play(self, source, *, after=None):
        if self.playing:
            raise discord.ClientException("Already playing audio.")
        self.sources.append(source)
        self.playing = True
        self._after = after
        if self.finish:
            threading.Thread(target=self._complete, args=(self.error,)).start()

    def _complete(self, error):
        self.playing = False
        self._after(error)

    def stop(self):
        self.stop_calls += 1
        if self.playing:
            self._complete(None)


class TestDiscordAudioPlayer:
    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_play_waits_for_after_callback(self, tmp_path):
        client = FakeVoiceClient()
        factory = Mock(return_value=Mock())
        player = DiscordAudioPlayer(client, source_factory=factory)

        await player.play(tmp_path / "reply.wav")

        factory.assert_called_once_with(str(tmp_path / "reply.wav"))
        assert client.sources == [factory.return_value]

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_player_error_is_raised(self, tmp_path):
        client = FakeVoiceClient(error=RuntimeError("ffmpeg died"))
        player = DiscordAudioPlayer(client, source_factory=Mock(return_value=Mock()))

        with pytest.raises(PlaybackError, match="ffmpeg died"):
            await player.play(tmp_path / "reply.wav")

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_disconnected_client(self, tmp_path):
        player = DiscordAudioPlayer(FakeVoiceClient(connected=False), source_factory=Mock())

        with pytest.raises(PlaybackError):
            await player.play(tmp_path / "reply.wav")

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_busy_client_cleans_up_source(self, tmp_path):
        client = FakeVoiceClient(finish=False)
        client.playing = True
        source = Mock()
        player = DiscordAudioPlayer(client, source_factory=Mock(return_value=source))

        with pytest.raises(PlaybackError):
            await player.play(tmp_path / "reply.wav")
        source.cleanup.assert_called_once()

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_cancel_stops_playback(self, tmp_path):
        client = FakeVoiceClient(finish=False)
        player = DiscordAudioPlayer(client, source_factory=Mock(return_value=Mock()))

        task = asyncio.create_task(player.play(tmp_path / "reply.wav"))
        await asyncio.sleep(0.01)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert client.stop_calls == 1
