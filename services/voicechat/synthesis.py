"""Text-to-speech through the Piper command line."""

from __future__ import annotations

import tempfile
import time
from pathlib import Path

from services.common.structured_logging import get_logger

from .audio import discard_file
from .errors import SynthesisError
from .process import run_process

logger = get_logger(__name__, service_name="voicechat")

MIN_SPEAK_RATE = 0.6
MAX_SPEAK_RATE = 1.6


def length_scale_for(speak_rate: float) -> float:
    """Piper's length scale is the inverse of the clamped speaking rate."""
    rate = max(MIN_SPEAK_RATE, min(MAX_SPEAK_RATE, speak_rate))
    return 1.0 / rate


class PiperSynthesizer:
    """Renders text to a fresh temporary WAV file.

    The caller owns the returned file and must delete it.
    """

    def __init__(
        self,
        binary: str,
        model: str,
        *,
        speak_rate: float = 0.85,
        timeout: float = 30.0,
        temp_dir: Path | None = None,
    ) -> None:
        self._binary = binary
        self._model = model
        self._length_scale = length_scale_for(speak_rate)
        self._timeout = timeout
        self._temp_dir = temp_dir

    @property
    def length_scale(self) -> float:
        return self._length_scale

    def build_command(self, output_path: Path) -> list[str]:
        return [
            self._binary,
            "--model",
            self._model,
            "--output_file",
            str(output_path),
            "--length_scale",
            f"{self._length_scale:.4f}",
        ]

    def _new_output_path(self) -> Path:
        handle = tempfile.NamedTemporaryFile(
            prefix="voicechat-tts-", suffix=".wav", dir=self._temp_dir, delete=False
        )
        handle.close()
        return Path(handle.name)

    async def synthesize(self, text: str) -> Path:
        if not text.strip():
            raise SynthesisError("refusing to synthesize empty text")

        output_path = self._new_output_path()
        started = time.perf_counter()
        try:
            result = await run_process(
                self.build_command(output_path),
                stdin_data=text.encode("utf-8"),
                timeout=self._timeout,
            )
            if result.returncode != 0:
                raise SynthesisError(
                    f"piper exited {result.returncode}: {result.stderr.strip()}",
                    exit_code=result.returncode,
                    stderr=result.stderr,
                )
            if not output_path.exists() or output_path.stat().st_size == 0:
                raise SynthesisError("piper produced no audio")
        except OSError as exc:
            discard_file(output_path)
            raise SynthesisError(f"could not run {self._binary}: {exc}") from exc
        except TimeoutError as exc:
            discard_file(output_path)
            raise SynthesisError(f"piper timed out after {self._timeout:.0f}s") from exc
        except BaseException:
            discard_file(output_path)
            raise

        logger.debug(
            "synthesis.completed",
            chars=len(text),
            bytes=output_path.stat().st_size,
            latency_ms=int((time.perf_counter() - started) * 1000),
        )
        return output_path


__all__ = ["PiperSynthesizer", "length_scale_for"]
