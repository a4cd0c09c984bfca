"""Turns a captured utterance into queued speech."""

from __future__ import annotations

import asyncio
import functools
import random
import tempfile
import time
import uuid
from pathlib import Path

from services.common.structured_logging import get_logger

from .audio import CapturedUtterance, discard_file, write_wav
from .farewell import DEFAULT_COUNT, build_farewell_message, is_farewell_cue
from .interfaces import Responder, Synthesizer, Transcriber
from .persona import FILLER_REPLY
from .speech_queue import SpeechAction, SpeechOutputQueue
from .transcription import normalize_transcript

logger = get_logger(__name__, service_name="voicechat")

MIN_TRANSCRIPT_CHARS = 2


def _discard_after_write(write: asyncio.Future[Path], path: Path) -> None:
    if not write.cancelled():
        write.exception()
    discard_file(path)


class UtterancePipeline:
    """STT, then farewell or generated reply, then TTS, then enqueue.

    Every failure is contained to the utterance being processed: it is
    logged and the utterance produces no speech. Nothing is raised to the
    caller except cancellation.
    """

    def __init__(
        self,
        *,
        transcriber: Transcriber,
        responder: Responder,
        synthesizer: Synthesizer,
        transcription_timeout: float = 30.0,
        synthesis_timeout: float = 30.0,
        temp_dir: Path | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self._transcriber = transcriber
        self._responder = responder
        self._synthesizer = synthesizer
        self._transcription_timeout = transcription_timeout
        self._synthesis_timeout = synthesis_timeout
        self._temp_dir = temp_dir
        self._rng = rng

    async def process(
        self, utterance: CapturedUtterance, queue: SpeechOutputQueue
    ) -> SpeechAction | None:
        log = get_logger(
            __name__,
            correlation_id=utterance.correlation_id or None,
            service_name="voicechat",
        ).bind(guild_id=utterance.guild_id, user_id=utterance.user_id)
        started = time.perf_counter()

        transcript = await self._transcribe(utterance, log)
        if transcript is None:
            return None
        if len(transcript) < MIN_TRANSCRIPT_CHARS:
            log.debug("pipeline.empty_transcript", chars=len(transcript))
            return None

        if is_farewell_cue(transcript):
            text = build_farewell_message(DEFAULT_COUNT, include_default=True, rng=self._rng)
            source = "farewell"
        else:
            text = await self._reply(utterance, transcript, log)
            source = "reply"

        try:
            audio_path = await asyncio.wait_for(
                self._synthesizer.synthesize(text), timeout=self._synthesis_timeout
            )
        except TimeoutError:
            log.warning("pipeline.synthesis_timed_out", timeout_s=self._synthesis_timeout)
            return None
        except Exception as exc:
            log.warning(
                "pipeline.synthesis_failed",
                error=str(exc),
                error_type=type(exc).__name__,
            )
            return None

        action = queue.enqueue(
            text,
            audio_path=audio_path,
            source=source,
            correlation_id=utterance.correlation_id,
        )
        log.info(
            "pipeline.enqueued",
            source=source,
            transcript_chars=len(transcript),
            reply_chars=len(text),
            latency_ms=int((time.perf_counter() - started) * 1000),
        )
        return action

    async def _transcribe(self, utterance: CapturedUtterance, log) -> str | None:
        wav_path = self._temp_wav_path(utterance)
        write = asyncio.ensure_future(asyncio.to_thread(write_wav, wav_path, utterance.pcm))
        try:
            await asyncio.shield(write)
            raw = await asyncio.wait_for(
                self._transcriber.transcribe(wav_path), timeout=self._transcription_timeout
            )
        except TimeoutError:
            log.warning(
                "pipeline.transcription_timed_out", timeout_s=self._transcription_timeout
            )
            return None
        except Exception as exc:
            log.warning(
                "pipeline.transcription_failed",
                error=str(exc),
                error_type=type(exc).__name__,
            )
            return None
        finally:
            discard_file(wav_path)
            if not write.done():
                # the writer thread outlives a cancelled await
                write.add_done_callback(functools.partial(_discard_after_write, path=wav_path))
        return normalize_transcript(raw)

    async def _reply(self, utterance: CapturedUtterance, transcript: str, log) -> str:
        try:
            text = await self._responder.reply(
                guild_id=utterance.guild_id,
                user_id=utterance.user_id,
                username=utterance.display_name,
                transcript=transcript,
            )
        except Exception as exc:
            log.warning(
                "pipeline.reply_failed",
                error=str(exc),
                error_type=type(exc).__name__,
            )
            return FILLER_REPLY
        return text.strip() or FILLER_REPLY

    def _temp_wav_path(self, utterance: CapturedUtterance) -> Path:
        directory = self._temp_dir if self._temp_dir is not None else Path(tempfile.gettempdir())
        return directory / (
            f"voicechat-in-{utterance.guild_id}-{utterance.user_id}-{uuid.uuid4().hex[:12]}.wav"
        )


__all__ = ["MIN_TRANSCRIPT_CHARS", "UtterancePipeline"]
