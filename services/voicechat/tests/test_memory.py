"""Tests for per-guild conversation memory."""

import asyncio
import json

import pytest

from services.voicechat.memory import (
    ChannelMemory,
    MemoryStore,
    MemoryStoreError,
    MemoryTurn,
    format_turns,
    should_store_text,
)


@pytest.fixture
def store(tmp_path):
    return MemoryStore(tmp_path / "memory", max_turns=5)


def _turn(text, role="user"):
    return MemoryTurn(role=role, text=text, user_id="42", username="alice")


class TestSecretFilter:
    @pytest.mark.unit
    @pytest.mark.parametrize(
        "text",
        ["my password is hunter2", "here's the API KEY", "top Secret stuff", "sk-abcdefghijklmnop"],
    )
    def test_sensitive_text_is_not_stored(self, text):
        assert not should_store_text(text)

    @pytest.mark.unit
    def test_normal_text_is_stored(self):
        assert should_store_text("what's for dinner")


class TestFormatTurns:
    @pytest.mark.unit
    def test_user_and_persona_lines(self):
        turns = [_turn("hi"), MemoryTurn(role="assistant", text="yo")]
        assert format_turns(turns, persona_name="Ember") == "User(alice): hi\nEmber: yo"


class TestMemoryStore:
    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_missing_file_loads_empty(self, store):
        memory = await store.load(1)
        assert memory == ChannelMemory()

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_corrupt_file_loads_empty(self, store):
        store.directory.mkdir(parents=True)
        store.path_for(1).write_text("{not json", encoding="utf-8")

        memory = await store.load(1)

        assert memory.recent_turns == []
        assert memory.call_summary == ""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_append_persists_and_caps(self, store):
        kept = await store.append_turns(1, [_turn(f"line {i}") for i in range(7)])

        memory = await store.load(1)
        assert kept == 7
        assert [t.text for t in memory.recent_turns] == [f"line {i}" for i in range(2, 7)]
        assert memory.last_updated is not None
        document = json.loads(store.path_for(1).read_text(encoding="utf-8"))
        assert document["recent_turns"][0]["user_id"] == "42"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_append_skips_secrets(self, store):
        kept = await store.append_turns(1, [_turn("my password is x"), _turn("hello")])

        memory = await store.load(1)
        assert kept == 1
        assert [t.text for t in memory.recent_turns] == ["hello"]

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_concurrent_appends_are_serialized(self, store):
        await asyncio.gather(*(store.append_turns(1, [_turn(f"t{i}")]) for i in range(5)))

        memory = await store.load(1)
        assert sorted(t.text for t in memory.recent_turns) == [f"t{i}" for i in range(5)]

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_set_summary_keeps_turns(self, store):
        await store.append_turns(1, [_turn("hello")])
        await store.set_summary(1, "we talked about dinner")

        memory = await store.load(1)
        assert memory.call_summary == "we talked about dinner"
        assert len(memory.recent_turns) == 1

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_accepts_camel_case_user_id(self, store):
        store.directory.mkdir(parents=True)
        store.path_for(1).write_text(
            json.dumps(
                {
                    "call_summary": "old",
                    "recent_turns": [{"role": "user", "text": "hi", "ts": 1, "userId": "7"}],
                }
            ),
            encoding="utf-8",
        )

        memory = await store.load(1)
        assert memory.recent_turns[0].user_id == "7"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_write_failure_raises_store_error(self, tmp_path):
        blocker = tmp_path / "blocked"
        blocker.write_text("file, not a directory")
        store = MemoryStore(blocker)

        with pytest.raises(MemoryStoreError):
            await store.append_turns(1, [_turn("hello")])
