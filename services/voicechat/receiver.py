"""Bridges discord-ext-voice-recv packets into per-speaker PCM streams."""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable
from typing import Any

from discord.ext import voice_recv

from services.common.structured_logging import (
    get_logger,
    should_rate_limit,
    should_sample,
)

from .audio import downmix_to_capture_format

logger = get_logger(__name__, service_name="voicechat")

SpeakingStartCallback = Callable[[int, str], None]


class SpeakerStream:
    """Async iterator over one speaker's frames.

    Iteration stops once no frame has arrived for ``silence_ms``, or when
    ``end`` is called. ``fail`` makes the iterator raise instead.
    """

    def __init__(
        self,
        user_id: int,
        *,
        silence_ms: int,
        on_close: Callable[[SpeakerStream], None] | None = None,
    ) -> None:
        self.user_id = user_id
        self._silence_s = silence_ms / 1000.0
        self._on_close = on_close
        self._frames: asyncio.Queue[bytes | None] = asyncio.Queue()
        self._error: BaseException | None = None
        self._closing = False
        self._finished = False

    @property
    def finished(self) -> bool:
        return self._finished

    def feed(self, frame: bytes) -> None:
        if not self._closing and frame:
            self._frames.put_nowait(frame)

    def end(self) -> None:
        if not self._closing:
            self._closing = True
            self._frames.put_nowait(None)

    def fail(self, error: BaseException) -> None:
        if not self._closing:
            self._error = error
            self.end()

    def __aiter__(self) -> SpeakerStream:
        return self

    async def __anext__(self) -> bytes:
        if self._finished:
            raise StopAsyncIteration
        try:
            frame = await asyncio.wait_for(self._frames.get(), timeout=self._silence_s)
        except TimeoutError:
            self._finish()
            raise StopAsyncIteration from None
        if frame is None:
            self._finish()
            if self._error is not None:
                raise self._error
            raise StopAsyncIteration
        return frame

    def _finish(self) -> None:
        self._finished = True
        self._closing = True
        if self._on_close is not None:
            self._on_close(self)


class VoiceReceiver:
    """Routes decoded packets by speaker and detects speaking starts.

    ``on_packet`` runs on the voice receive thread; it only converts the
    audio and hands it to the event loop. Everything else happens on the
    loop. The first packet from a speaker after ``speaking_restart_ms``
    without packets is reported as a speaking start.
    """

    def __init__(
        self,
        loop: asyncio.AbstractEventLoop,
        *,
        on_speaking_start: SpeakingStartCallback,
        speaking_restart_ms: int = 250,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._loop = loop
        self._on_speaking_start = on_speaking_start
        self._restart_s = speaking_restart_ms / 1000.0
        self._clock = clock
        self._streams: dict[int, SpeakerStream] = {}
        self._last_packet: dict[int, float] = {}
        self._stopped = False

    @property
    def stopped(self) -> bool:
        return self._stopped

    def subscriber_count(self) -> int:
        return len(self._streams)

    def on_packet(self, user: Any, data: Any) -> None:
        """voice_recv sink callback (receive thread)."""
        if self._stopped:
            return
        user_id = getattr(user, "id", None)
        pcm = getattr(data, "pcm", None)
        if user_id is None or not pcm:
            if should_sample("voicechat.packet_unattributed", 100):
                logger.debug(
                    "receiver.packet_skipped",
                    has_user=user_id is not None,
                    has_pcm=bool(pcm),
                )
            return
        display_name = (
            getattr(user, "display_name", None) or getattr(user, "name", None) or "someone"
        )
        frame = downmix_to_capture_format(pcm)
        if should_rate_limit("voicechat.packet_received", 5.0):
            logger.debug("receiver.packet_received", user_id=user_id, bytes=len(frame))
        try:
            self._loop.call_soon_threadsafe(self.deliver, user_id, display_name, frame)
        except RuntimeError:
            # loop already closed during shutdown
            self._stopped = True

    def deliver(self, user_id: int, display_name: str, frame: bytes) -> None:
        """Handle one converted frame on the event loop."""
        if self._stopped:
            return
        now = self._clock()
        last = self._last_packet.get(user_id)
        self._last_packet[user_id] = now
        if last is None or now - last >= self._restart_s:
            try:
                self._on_speaking_start(user_id, display_name)
            except Exception as exc:
                logger.error(
                    "receiver.speaking_start_failed",
                    user_id=user_id,
                    error=str(exc),
                    error_type=type(exc).__name__,
                )
        stream = self._streams.get(user_id)
        if stream is not None:
            stream.feed(frame)

    def subscribe(self, user_id: int, *, silence_ms: int) -> SpeakerStream:
        if self._stopped:
            raise ConnectionError("voice receiver is stopped")
        previous = self._streams.get(user_id)
        if previous is not None:
            previous.end()
        stream = SpeakerStream(user_id, silence_ms=silence_ms, on_close=self._detach)
        self._streams[user_id] = stream
        return stream

    def _detach(self, stream: SpeakerStream) -> None:
        if self._streams.get(stream.user_id) is stream:
            del self._streams[stream.user_id]

    def unsubscribe_all(self) -> None:
        for stream in list(self._streams.values()):
            stream.end()
        self._streams.clear()

    def stop(self) -> None:
        """Stop routing and fail any open stream."""
        self._stopped = True
        for stream in list(self._streams.values()):
            stream.fail(ConnectionError("voice receiver stopped"))
        self._streams.clear()
        self._last_packet.clear()


def build_sink(receiver: VoiceReceiver) -> voice_recv.BasicSink:
    """Return a decoding BasicSink that feeds ``receiver``."""
    sink = voice_recv.BasicSink(receiver.on_packet, decode=True)
    logger.debug("receiver.sink_created", sink_type=type(sink).__name__)
    return sink


__all__ = ["SpeakerStream", "VoiceReceiver", "build_sink"]
