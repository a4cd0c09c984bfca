"""Durable per-guild conversation memory.

Each guild gets one JSON document holding a rolling log of recent turns and
a condensed summary of earlier calls. Reads and writes run in a worker
thread; read-modify-write cycles are serialized per guild.
"""

from __future__ import annotations

import asyncio
import json
import os
import re
import time
from collections.abc import AsyncIterator, Iterable
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError

from services.common.structured_logging import get_logger

logger = get_logger(__name__, service_name="voicechat")

_SECRET_WORDS = ("password", "api key", "secret")
_SECRET_KEY_RE = re.compile(r"sk-[a-z0-9]{10,}", re.IGNORECASE)


class MemoryStoreError(Exception):
    """Memory could not be persisted."""


def _now_ms() -> int:
    return int(time.time() * 1000)


class MemoryTurn(BaseModel):
    """One line of conversation."""

    model_config = ConfigDict(populate_by_name=True)

    role: Literal["user", "assistant"] = Field(description="Who spoke")
    text: str = Field(description="What was said")
    ts: int = Field(default_factory=_now_ms, description="Epoch milliseconds")
    user_id: str | None = Field(
        default=None,
        validation_alias=AliasChoices("user_id", "userId"),
        description="Discord user id for user turns",
    )
    username: str | None = Field(default=None, description="Display name for user turns")


class ChannelMemory(BaseModel):
    """Stored memory for one guild."""

    call_summary: str = Field(default="", description="Recap of previous calls")
    recent_turns: list[MemoryTurn] = Field(default_factory=list)
    last_updated: str | None = Field(default=None, description="ISO-8601 time of the last save")

    def push_turn(self, turn: MemoryTurn, *, max_turns: int) -> None:
        self.recent_turns.append(turn)
        if len(self.recent_turns) > max_turns:
            del self.recent_turns[: len(self.recent_turns) - max_turns]


def should_store_text(text: str) -> bool:
    """False for text that looks like it carries a credential."""
    lowered = text.lower()
    if any(word in lowered for word in _SECRET_WORDS):
        return False
    return _SECRET_KEY_RE.search(text) is None


def format_turns(turns: Iterable[MemoryTurn], *, persona_name: str) -> str:
    lines = []
    for turn in turns:
        if turn.role == "user":
            lines.append(f"User({turn.username or 'unknown'}): {turn.text}")
        else:
            lines.append(f"{persona_name}: {turn.text}")
    return "\n".join(lines)


class MemoryStore:
    """JSON file per guild under ``directory``."""

    def __init__(self, directory: Path, *, max_turns: int = 60) -> None:
        self._directory = Path(directory)
        self._max_turns = max_turns
        self._locks: dict[int, asyncio.Lock] = {}

    @property
    def directory(self) -> Path:
        return self._directory

    def path_for(self, guild_id: int) -> Path:
        return self._directory / f"guild_{guild_id}.json"

    def _lock_for(self, guild_id: int) -> asyncio.Lock:
        lock = self._locks.get(guild_id)
        if lock is None:
            lock = self._locks[guild_id] = asyncio.Lock()
        return lock

    async def load(self, guild_id: int) -> ChannelMemory:
        """Return the stored memory; missing or unreadable files load as empty."""
        return await asyncio.to_thread(self._read, guild_id)

    def _read(self, guild_id: int) -> ChannelMemory:
        path = self.path_for(guild_id)
        try:
            raw = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return ChannelMemory()
        except OSError as exc:
            logger.warning("memory.read_failed", guild_id=guild_id, error=str(exc))
            return ChannelMemory()
        try:
            return ChannelMemory.model_validate(json.loads(raw))
        except (json.JSONDecodeError, ValidationError) as exc:
            logger.warning(
                "memory.corrupt_file",
                guild_id=guild_id,
                path=str(path),
                error=str(exc),
            )
            return ChannelMemory()

    def _write(self, guild_id: int, memory: ChannelMemory) -> None:
        path = self.path_for(guild_id)
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = path.with_suffix(f".{os.getpid()}.tmp")
        tmp_path.write_text(memory.model_dump_json(indent=2), encoding="utf-8")
        os.replace(tmp_path, path)

    async def save(self, guild_id: int, memory: ChannelMemory) -> None:
        memory.last_updated = datetime.now(timezone.utc).isoformat()
        try:
            await asyncio.to_thread(self._write, guild_id, memory)
        except OSError as exc:
            logger.error("memory.write_failed", guild_id=guild_id, error=str(exc))
            raise MemoryStoreError(f"Failed to save memory for guild {guild_id}") from exc

    @asynccontextmanager
    async def editing(self, guild_id: int) -> AsyncIterator[ChannelMemory]:
        """Load, yield for mutation, then save, holding the guild's lock."""
        async with self._lock_for(guild_id):
            memory = await self.load(guild_id)
            yield memory
            await self.save(guild_id, memory)

    async def append_turns(self, guild_id: int, turns: Iterable[MemoryTurn]) -> int:
        """Persist the storable turns and return how many were kept."""
        storable = [turn for turn in turns if should_store_text(turn.text)]
        if not storable:
            return 0
        async with self.editing(guild_id) as memory:
            for turn in storable:
                memory.push_turn(turn, max_turns=self._max_turns)
        return len(storable)

    async def set_summary(self, guild_id: int, summary: str) -> None:
        async with self.editing(guild_id) as memory:
            memory.call_summary = summary


__all__ = [
    "ChannelMemory",
    "MemoryStore",
    "MemoryStoreError",
    "MemoryTurn",
    "format_turns",
    "should_store_text",
]
