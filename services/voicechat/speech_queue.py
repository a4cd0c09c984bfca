"""Ordered, non-overlapping speech output for one voice channel."""

from __future__ import annotations

import asyncio
import time
from contextlib import suppress
from dataclasses import dataclass, field
from pathlib import Path

from services.common.structured_logging import bind_correlation_id, get_logger

from .audio import discard_file
from .errors import SynthesisError
from .interfaces import AudioPlayer, Synthesizer

logger = get_logger(__name__, service_name="voicechat")


@dataclass(slots=True, eq=False)
class SpeechAction:
    """One queued piece of speech.

    ``done`` resolves to True once the audio finished playing and to False
    when the action failed, was refused or was abandoned at shutdown.
    """

    text: str
    audio_path: Path | None
    source: str
    correlation_id: str
    done: asyncio.Future[bool]
    enqueued_at: float = field(default_factory=time.monotonic)

    async def wait(self) -> bool:
        return await asyncio.shield(self.done)


class SpeechOutputQueue:
    """FIFO of speech actions drained by a single worker task.

    ``enqueue`` is synchronous, so playback order is exactly call order no
    matter how long each producer took to get there. The worker owns the
    channel's speaking flag: it is set for the whole of an action and
    cleared on every exit path.
    """

    def __init__(
        self,
        *,
        guild_id: int,
        player: AudioPlayer,
        synthesizer: Synthesizer | None = None,
        synthesis_timeout: float = 30.0,
        playback_timeout: float = 120.0,
    ) -> None:
        self._guild_id = guild_id
        self._player = player
        self._synthesizer = synthesizer
        self._synthesis_timeout = synthesis_timeout
        self._playback_timeout = playback_timeout
        self._queue: asyncio.Queue[SpeechAction] = asyncio.Queue()
        self._worker: asyncio.Task[None] | None = None
        self._speaking = False
        self._closed = False
        self._current: SpeechAction | None = None
        self._logger = logger.bind(guild_id=guild_id)

    @property
    def is_speaking(self) -> bool:
        return self._speaking

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def current(self) -> SpeechAction | None:
        return self._current

    def enqueue(
        self,
        text: str,
        *,
        audio_path: Path | None = None,
        source: str = "reply",
        correlation_id: str = "",
    ) -> SpeechAction:
        """Append an action; ownership of ``audio_path`` passes to the queue."""
        loop = asyncio.get_running_loop()
        action = SpeechAction(
            text=text,
            audio_path=audio_path,
            source=source,
            correlation_id=correlation_id,
            done=loop.create_future(),
        )
        if self._closed:
            self._logger.warning(
                "speech_queue.enqueue_refused",
                source=source,
                correlation_id=correlation_id or None,
            )
            discard_file(audio_path)
            action.done.set_result(False)
            return action

        self._queue.put_nowait(action)
        self._ensure_worker()
        self._logger.debug(
            "speech_queue.enqueued",
            source=source,
            depth=self._queue.qsize(),
            precomputed=audio_path is not None,
            correlation_id=correlation_id or None,
        )
        return action

    async def wait_idle(self) -> None:
        """Wait until every action queued so far has finished."""
        await self._queue.join()

    async def close(self, *, drain: bool = False) -> None:
        """Stop accepting actions and shut the worker down.

        With ``drain`` the actions already queued are played first; otherwise
        current playback is stopped and pending actions resolve False.
        """
        if self._closed and self._worker is None:
            return
        self._closed = True

        if drain and self._worker is not None:
            await self._queue.join()
        elif self._speaking:
            self._player.stop()

        if self._worker is not None:
            self._worker.cancel()
            with suppress(asyncio.CancelledError):
                await self._worker
            self._worker = None

        abandoned = 0
        while not self._queue.empty():
            action = self._queue.get_nowait()
            discard_file(action.audio_path)
            if not action.done.done():
                action.done.set_result(False)
            self._queue.task_done()
            abandoned += 1
        self._logger.info("speech_queue.closed", drained=drain, abandoned=abandoned)

    def _ensure_worker(self) -> None:
        if self._worker is None or self._worker.done():
            self._worker = asyncio.create_task(
                self._run(), name=f"speech-queue-{self._guild_id}"
            )

    async def _run(self) -> None:
        while True:
            action = await self._queue.get()
            try:
                await self._perform(action)
            finally:
                self._queue.task_done()

    async def _perform(self, action: SpeechAction) -> None:
        action_logger = bind_correlation_id(self._logger, action.correlation_id or None)
        self._current = action
        self._speaking = True
        audio_path = action.audio_path
        played = False
        started = time.monotonic()
        try:
            if audio_path is None:
                audio_path = await self._synthesize(action.text)
            try:
                await asyncio.wait_for(
                    self._player.play(audio_path), timeout=self._playback_timeout
                )
            except TimeoutError:
                self._player.stop()
                raise
            played = True
            action_logger.info(
                "speech_queue.played",
                source=action.source,
                playback_ms=int((time.monotonic() - started) * 1000),
                queued_ms=int((started - action.enqueued_at) * 1000),
            )
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            action_logger.warning(
                "speech_queue.action_failed",
                source=action.source,
                error=str(exc) or "timed out",
                error_type=type(exc).__name__,
            )
        finally:
            self._speaking = False
            self._current = None
            discard_file(audio_path)
            if not action.done.done():
                action.done.set_result(played)

    async def _synthesize(self, text: str) -> Path:
        if self._synthesizer is None:
            raise SynthesisError("no synthesizer available for text-only speech")
        return await asyncio.wait_for(
            self._synthesizer.synthesize(text), timeout=self._synthesis_timeout
        )


__all__ = ["SpeechAction", "SpeechOutputQueue"]
