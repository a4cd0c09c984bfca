"""Admission control for new captures."""

from __future__ import annotations

import time
from collections.abc import Callable
from enum import Enum

from services.common.structured_logging import get_logger

logger = get_logger(__name__, service_name="voicechat")


class Admission(Enum):
    """Outcome of a speaking-start event."""

    ADMIT = "admit"
    BOT_SPEAKING = "bot_speaking"
    ALREADY_CAPTURING = "already_capturing"
    SELF_AUDIO = "self_audio"
    COOLDOWN = "cooldown"
    CLOSED = "closed"
    SUBSCRIBE_FAILED = "subscribe_failed"

    @property
    def admitted(self) -> bool:
        return self is Admission.ADMIT


class CaptureGate:
    """Decides whether a speaking-start event opens a capture.

    Rules are checked in order and the first failure rejects without side
    effects. A speaker that passes the cooldown check has its cooldown
    timestamp refreshed even if nothing downstream ever produces output.
    """

    def __init__(
        self,
        *,
        bot_user_id: int | None,
        cooldown_ms: int,
        is_speaking: Callable[[], bool],
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._bot_user_id = bot_user_id
        self._cooldown_s = cooldown_ms / 1000.0
        self._is_speaking = is_speaking
        self._clock = clock
        self._active: set[int] = set()
        self._last_admitted: dict[int, float] = {}

    @property
    def active_listeners(self) -> frozenset[int]:
        return frozenset(self._active)

    def is_capturing(self, user_id: int) -> bool:
        return user_id in self._active

    def last_admitted(self, user_id: int) -> float | None:
        return self._last_admitted.get(user_id)

    def evaluate(self, user_id: int) -> Admission:
        if self._is_speaking():
            return Admission.BOT_SPEAKING
        if user_id in self._active:
            return Admission.ALREADY_CAPTURING
        if self._bot_user_id is not None and user_id == self._bot_user_id:
            return Admission.SELF_AUDIO

        now = self._clock()
        last = self._last_admitted.get(user_id)
        if last is not None and now - last < self._cooldown_s:
            return Admission.COOLDOWN

        self._last_admitted[user_id] = now
        self._active.add(user_id)
        return Admission.ADMIT

    def release(self, user_id: int) -> None:
        """Remove a speaker from the active set. Safe to call repeatedly."""
        self._active.discard(user_id)

    def reset(self) -> None:
        """Forget every active speaker and cooldown."""
        if self._active:
            logger.debug("gate.reset", active=len(self._active))
        self._active.clear()
        self._last_admitted.clear()


__all__ = ["Admission", "CaptureGate"]
