"""Speech-to-text through the whisper.cpp command line."""

from __future__ import annotations

import time
from pathlib import Path

from services.common.structured_logging import get_logger

from .errors import TranscriptionError
from .process import run_process

logger = get_logger(__name__, service_name="voicechat")


def normalize_transcript(text: str) -> str:
    """Collapse all whitespace runs to single spaces and trim."""
    return " ".join(text.split())


class WhisperTranscriber:
    """Runs ``whisper-cli -m <model> -f <wav> -nt -np`` per utterance."""

    def __init__(self, binary: str, model: str, *, timeout: float = 30.0) -> None:
        self._binary = binary
        self._model = model
        self._timeout = timeout

    def build_command(self, wav_path: Path) -> list[str]:
        return [self._binary, "-m", self._model, "-f", str(wav_path), "-nt", "-np"]

    async def transcribe(self, wav_path: Path) -> str:
        started = time.perf_counter()
        try:
            result = await run_process(self.build_command(wav_path), timeout=self._timeout)
        except OSError as exc:
            raise TranscriptionError(f"could not start {self._binary}: {exc}") from exc
        except TimeoutError as exc:
            raise TranscriptionError(
                f"whisper-cli timed out after {self._timeout:.0f}s"
            ) from exc

        if result.returncode != 0:
            raise TranscriptionError(
                f"whisper-cli exited {result.returncode}: {result.stderr.strip()}",
                exit_code=result.returncode,
                stderr=result.stderr,
            )

        transcript = normalize_transcript(result.stdout)
        logger.debug(
            "transcription.completed",
            chars=len(transcript),
            latency_ms=int((time.perf_counter() - started) * 1000),
        )
        return transcript


__all__ = ["WhisperTranscriber", "normalize_transcript"]
