"""Per-channel voice session and the registry that owns them."""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable
from pathlib import Path

from services.common.correlation import (
    generate_speech_correlation_id,
    generate_utterance_correlation_id,
)
from services.common.structured_logging import get_logger

from .audio import CapturedUtterance
from .capture import CaptureInstance
from .gate import Admission, CaptureGate
from .interfaces import AudioSubscriber
from .pipeline import UtterancePipeline
from .speech_queue import SpeechAction, SpeechOutputQueue

logger = get_logger(__name__, service_name="voicechat")


class Session:
    """All turn-taking state for one guild's voice connection.

    Every method runs on the event loop; nothing here is touched from the
    voice receive thread.
    """

    def __init__(
        self,
        *,
        guild_id: int,
        channel_id: int,
        bot_user_id: int | None,
        subscriber: AudioSubscriber,
        queue: SpeechOutputQueue,
        pipeline: UtterancePipeline,
        silence_ms: int = 900,
        min_utterance_ms: int = 700,
        cooldown_ms: int = 2000,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.guild_id = guild_id
        self.channel_id = channel_id
        self.queue = queue
        self._subscriber = subscriber
        self._pipeline = pipeline
        self._silence_ms = silence_ms
        self._min_utterance_ms = min_utterance_ms
        self._clock = clock
        self.gate = CaptureGate(
            bot_user_id=bot_user_id,
            cooldown_ms=cooldown_ms,
            is_speaking=lambda: self.queue.is_speaking,
            clock=clock,
        )
        self._tasks: set[asyncio.Task[CapturedUtterance | None]] = set()
        self._closed = False
        self._logger = logger.bind(guild_id=guild_id, channel_id=channel_id)

    @property
    def is_speaking(self) -> bool:
        return self.queue.is_speaking

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def active_tasks(self) -> int:
        return len(self._tasks)

    def handle_speaking_start(self, user_id: int, display_name: str = "someone") -> Admission:
        """Admit or reject a speaking-start event and start the capture."""
        if self._closed:
            return Admission.CLOSED

        admission = self.gate.evaluate(user_id)
        if not admission.admitted:
            self._logger.debug(
                "session.capture_rejected", user_id=user_id, reason=admission.value
            )
            return admission

        try:
            stream = self._subscriber.subscribe(user_id, silence_ms=self._silence_ms)
        except Exception as exc:
            self.gate.release(user_id)
            self._logger.error(
                "session.subscribe_failed",
                user_id=user_id,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            return Admission.SUBSCRIBE_FAILED

        capture = CaptureInstance(
            guild_id=self.guild_id,
            user_id=user_id,
            display_name=display_name,
            stream=stream,
            min_utterance_ms=self._min_utterance_ms,
            release=lambda: self.gate.release(user_id),
            on_utterance=self._process_utterance,
            is_speaking=lambda: self.queue.is_speaking,
            correlation_id=generate_utterance_correlation_id(self.guild_id, user_id),
            clock=self._clock,
        )
        task = asyncio.create_task(
            capture.run(), name=f"capture-{self.guild_id}-{user_id}"
        )
        self._tasks.add(task)
        task.add_done_callback(self._task_finished)
        self._logger.debug("session.capture_started", user_id=user_id)
        return Admission.ADMIT

    async def _process_utterance(self, utterance: CapturedUtterance) -> None:
        await self._pipeline.process(utterance, self.queue)

    def _task_finished(self, task: asyncio.Task[CapturedUtterance | None]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            self._logger.error(
                "session.capture_task_failed",
                error=str(exc),
                error_type=type(exc).__name__,
            )

    def announce(
        self,
        text: str,
        *,
        source: str = "announcement",
        audio_path: Path | None = None,
    ) -> SpeechAction:
        """Queue speech that did not come from a capture (greetings, farewells)."""
        return self.queue.enqueue(
            text,
            audio_path=audio_path,
            source=source,
            correlation_id=generate_speech_correlation_id(self.guild_id, source),
        )

    async def close(self, *, drain: bool = False) -> None:
        """Tear down captures, subscriptions and the output queue."""
        if self._closed:
            return
        self._closed = True
        self.gate.reset()
        self._subscriber.unsubscribe_all()

        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()

        await self.queue.close(drain=drain)
        self._logger.info("session.closed", cancelled_captures=len(tasks), drained=drain)


class SessionRegistry:
    """guild id -> Session."""

    def __init__(self) -> None:
        self._sessions: dict[int, Session] = {}

    def __contains__(self, guild_id: object) -> bool:
        return guild_id in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)

    @property
    def guild_ids(self) -> list[int]:
        return list(self._sessions)

    def get(self, guild_id: int) -> Session | None:
        return self._sessions.get(guild_id)

    def get_or_create(self, guild_id: int, factory: Callable[[], Session]) -> Session:
        session = self._sessions.get(guild_id)
        if session is None or session.closed:
            session = factory()
            self._sessions[guild_id] = session
            logger.info("session.created", guild_id=guild_id, channel_id=session.channel_id)
        return session

    async def remove(self, guild_id: int, *, drain: bool = False) -> bool:
        session = self._sessions.pop(guild_id, None)
        if session is None:
            return False
        await session.close(drain=drain)
        return True

    async def close_all(self, *, drain: bool = False) -> None:
        for guild_id in list(self._sessions):
            await self.remove(guild_id, drain=drain)


__all__ = ["Session", "SessionRegistry"]
