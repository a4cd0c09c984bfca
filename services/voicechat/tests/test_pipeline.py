"""Tests for utterance processing."""

import asyncio
import random
import threading

import pytest

from services.voicechat.audio import write_wav
from services.voicechat.errors import GenerationError
from services.voicechat.farewell import LEAD_IN
from services.voicechat.persona import FILLER_REPLY
from services.voicechat.pipeline import UtterancePipeline
from services.voicechat.speech_queue import SpeechOutputQueue

pytestmark = pytest.mark.timeout(10)


@pytest.fixture
def queue(player, synthesizer):
    return SpeechOutputQueue(guild_id=111, player=player, synthesizer=synthesizer)


@pytest.fixture
def pipeline_factory(tmp_path, transcriber, responder, synthesizer):
    wav_dir = tmp_path / "wav"
    wav_dir.mkdir()

    def factory(**overrides):
        options = {
            "transcriber": transcriber,
            "responder": responder,
            "synthesizer": synthesizer,
            "temp_dir": wav_dir,
            "rng": random.Random(5),
        }
        options.update(overrides)
        return UtterancePipeline(**options)

    factory.wav_dir = wav_dir
    return factory


class TestUtterancePipeline:
    @pytest.mark.component
    @pytest.mark.asyncio
    async def test_reply_is_generated_and_queued(
        self, pipeline_factory, queue, utterance, responder, player
    ):
        action = await pipeline_factory().process(utterance, queue)

        assert action is not None
        assert action.source == "reply"
        assert action.text == "sure thing"
        assert action.correlation_id == utterance.correlation_id
        assert await action.wait() is True
        assert player.played == [b"sure thing"]
        assert responder.calls == [
            {
                "guild_id": 111,
                "user_id": 222,
                "username": "alice",
                "transcript": "hello there",
            }
        ]

    @pytest.mark.component
    @pytest.mark.asyncio
    async def test_transcription_failure_produces_nothing(
        self, pipeline_factory, queue, utterance, failing_transcriber, responder, synthesizer
    ):
        pipeline = pipeline_factory(transcriber=failing_transcriber)

        assert await pipeline.process(utterance, queue) is None
        assert responder.calls == []
        assert synthesizer.calls == []
        assert queue.pending == 0

    @pytest.mark.component
    @pytest.mark.asyncio
    async def test_transcription_timeout(self, pipeline_factory, queue, utterance, transcriber):
        transcriber.delay = 1.0
        pipeline = pipeline_factory(transcription_timeout=0.05)

        assert await pipeline.process(utterance, queue) is None

    @pytest.mark.component
    @pytest.mark.asyncio
    async def test_temp_wav_removed_on_every_path(
        self, pipeline_factory, queue, utterance, transcriber, failing_transcriber
    ):
        await pipeline_factory().process(utterance, queue)
        await pipeline_factory(transcriber=failing_transcriber).process(utterance, queue)

        assert transcriber.existed == [True]
        assert failing_transcriber.existed == [True]
        assert list(pipeline_factory.wav_dir.iterdir()) == []

    @pytest.mark.component
    @pytest.mark.asyncio
    async def test_temp_wav_removed_when_cancelled_mid_write(
        self, monkeypatch, pipeline_factory, queue, utterance, transcriber
    ):
        writing = threading.Event()
        release = threading.Event()
        written = threading.Event()

        def slow_write_wav(path, pcm):
            writing.set()
            release.wait(5)
            try:
                return write_wav(path, pcm)
            finally:
                written.set()

        monkeypatch.setattr("services.voicechat.pipeline.write_wav", slow_write_wav)
        task = asyncio.create_task(pipeline_factory().process(utterance, queue))
        assert await asyncio.to_thread(writing.wait, 5)

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        release.set()
        assert await asyncio.to_thread(written.wait, 5)
        for _ in range(50):
            if not list(pipeline_factory.wav_dir.iterdir()):
                break
            await asyncio.sleep(0.02)

        assert list(pipeline_factory.wav_dir.iterdir()) == []
        assert transcriber.paths == []

    @pytest.mark.component
    @pytest.mark.asyncio
    @pytest.mark.parametrize("text", ["", " ", "a", "  .  "])
    async def test_short_transcripts_are_ignored(
        self, pipeline_factory, queue, utterance, transcriber, responder, text
    ):
        transcriber.text = text

        assert await pipeline_factory().process(utterance, queue) is None
        assert responder.calls == []

    @pytest.mark.component
    @pytest.mark.asyncio
    async def test_goodnight_skips_generation(
        self, pipeline_factory, queue, utterance, transcriber, responder
    ):
        transcriber.text = "okay goodnight everyone"

        action = await pipeline_factory().process(utterance, queue)

        assert action is not None
        assert action.source == "farewell"
        assert action.text.startswith(LEAD_IN)
        assert len(action.text[len(LEAD_IN) + 1 :].split("  ")) == 4
        assert responder.calls == []

    @pytest.mark.component
    @pytest.mark.asyncio
    async def test_responder_error_falls_back_to_filler(
        self, pipeline_factory, queue, utterance, responder
    ):
        responder.error = GenerationError("Ollama error 500: boom", status_code=500)

        action = await pipeline_factory().process(utterance, queue)

        assert action is not None
        assert action.text == FILLER_REPLY

    @pytest.mark.component
    @pytest.mark.asyncio
    async def test_blank_reply_falls_back_to_filler(
        self, pipeline_factory, queue, utterance, responder
    ):
        responder.text = "   "

        action = await pipeline_factory().process(utterance, queue)

        assert action.text == FILLER_REPLY

    @pytest.mark.component
    @pytest.mark.asyncio
    async def test_synthesis_failure_produces_nothing(
        self, pipeline_factory, queue, utterance, synthesizer
    ):
        synthesizer.failures = {"sure thing"}

        assert await pipeline_factory().process(utterance, queue) is None
        assert queue.pending == 0
        assert not queue.is_speaking

    @pytest.mark.component
    @pytest.mark.asyncio
    async def test_concurrent_utterances_never_overlap(
        self, pipeline_factory, queue, utterance, player
    ):
        pipeline = pipeline_factory()

        actions = await asyncio.gather(
            pipeline.process(utterance, queue),
            pipeline.process(utterance, queue),
            pipeline.process(utterance, queue),
        )
        await queue.wait_idle()

        assert all(action is not None for action in actions)
        assert len(player.played) == 3
        assert player.max_active == 1
