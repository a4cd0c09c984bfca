"""Per-speaker utterance capture."""

from __future__ import annotations

import asyncio
import time
from collections.abc import AsyncIterator, Awaitable, Callable
from enum import Enum

from services.common.structured_logging import bind_correlation_id, get_logger

from .audio import CapturedUtterance, pcm_duration_ms

logger = get_logger(__name__, service_name="voicechat")

UtteranceHandler = Callable[[CapturedUtterance], Awaitable[object]]


class CaptureState(Enum):
    CAPTURING = "capturing"
    COMPLETED = "completed"
    FAILED = "failed"


class CaptureInstance:
    """Collects one speaker's frames until the stream ends.

    ``CAPTURING`` moves to ``COMPLETED`` when the subscription closes
    normally and to ``FAILED`` when it raises. Both are terminal. The
    ``release`` callback runs exactly once on every exit path, before the
    finished clip is handed downstream.
    """

    def __init__(
        self,
        *,
        guild_id: int,
        user_id: int,
        display_name: str,
        stream: AsyncIterator[bytes],
        min_utterance_ms: int,
        release: Callable[[], None],
        on_utterance: UtteranceHandler,
        is_speaking: Callable[[], bool] = lambda: False,
        correlation_id: str = "",
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.guild_id = guild_id
        self.user_id = user_id
        self.display_name = display_name
        self.correlation_id = correlation_id
        self.started_at = clock()
        self._stream = stream
        self._min_utterance_ms = min_utterance_ms
        self._release = release
        self._on_utterance = on_utterance
        self._is_speaking = is_speaking
        self._state = CaptureState.CAPTURING
        self._buffer = bytearray()
        self._frame_count = 0
        self._started = False
        self._logger = bind_correlation_id(logger, correlation_id or None).bind(
            guild_id=guild_id, user_id=user_id
        )

    @property
    def state(self) -> CaptureState:
        return self._state

    @property
    def pcm(self) -> bytes:
        return bytes(self._buffer)

    @property
    def frame_count(self) -> int:
        return self._frame_count

    async def run(self) -> CapturedUtterance | None:
        """Drive the capture to a terminal state.

        Returns the dispatched utterance, or None when the clip was dropped.
        Stream errors are logged and never propagated; cancellation is.
        """
        if self._started:
            raise RuntimeError("CaptureInstance.run() may only be called once")
        self._started = True

        try:
            async for frame in self._stream:
                if frame:
                    self._buffer.extend(frame)
                    self._frame_count += 1
            self._state = CaptureState.COMPLETED
        except asyncio.CancelledError:
            self._state = CaptureState.FAILED
            self._buffer.clear()
            raise
        except Exception as exc:
            self._state = CaptureState.FAILED
            self._buffer.clear()
            self._logger.warning(
                "capture.stream_failed",
                error=str(exc),
                error_type=type(exc).__name__,
            )
        finally:
            self._release()

        if self._state is not CaptureState.COMPLETED:
            return None
        return await self._dispatch()

    async def _dispatch(self) -> CapturedUtterance | None:
        duration_ms = pcm_duration_ms(self._buffer)
        if duration_ms < self._min_utterance_ms:
            self._logger.debug(
                "capture.too_short",
                duration_ms=round(duration_ms, 1),
                min_utterance_ms=self._min_utterance_ms,
            )
            return None
        if self._is_speaking():
            self._logger.debug(
                "capture.dropped_during_playback", duration_ms=round(duration_ms, 1)
            )
            return None

        utterance = CapturedUtterance(
            guild_id=self.guild_id,
            user_id=self.user_id,
            display_name=self.display_name,
            pcm=bytes(self._buffer),
            correlation_id=self.correlation_id,
            started_at=self.started_at,
        )
        self._logger.info(
            "capture.completed",
            duration_ms=round(duration_ms, 1),
            frames=self._frame_count,
        )
        try:
            await self._on_utterance(utterance)
        except Exception as exc:
            self._logger.error(
                "capture.dispatch_failed",
                error=str(exc),
                error_type=type(exc).__name__,
            )
        return utterance


__all__ = ["CaptureInstance", "CaptureState", "UtteranceHandler"]
