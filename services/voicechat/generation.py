"""Reply generation through the Ollama HTTP API."""

from __future__ import annotations

import asyncio
import time
from dataclasses import asdict, dataclass
from types import TracebackType
from typing import Any

import httpx

from services.common.retry import post_with_retry
from services.common.structured_logging import get_logger

from .errors import CollaboratorError, GenerationError
from .memory import MemoryStore, MemoryStoreError, MemoryTurn, format_turns
from .persona import FILLER_REPLY, build_recap_prompt, build_reply_prompt

logger = get_logger(__name__, service_name="voicechat")


@dataclass(frozen=True, slots=True)
class GenerationOptions:
    """Sampling options sent as ``options`` to /api/generate."""

    temperature: float
    top_p: float
    num_predict: int
    num_ctx: int = 4096

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


REPLY_OPTIONS = GenerationOptions(temperature=0.9, top_p=0.9, num_predict=90)
SUMMARY_OPTIONS = GenerationOptions(temperature=0.2, top_p=0.9, num_predict=220)


class OllamaClient:
    """Minimal async client for non-streaming ``/api/generate`` calls."""

    def __init__(
        self,
        base_url: str,
        model: str,
        *,
        timeout: float = 45.0,
        max_retries: int = 2,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.model = model
        self._timeout = timeout
        self._max_retries = max_retries
        self._client = client
        self._owns_client = client is None

    async def __aenter__(self) -> OllamaClient:
        self._ensure_client()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.aclose()

    def _ensure_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self._timeout, connect=5.0)
            )
        return self._client

    async def aclose(self) -> None:
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None

    async def generate(self, prompt: str, options: GenerationOptions) -> str:
        """Return the trimmed completion text (possibly empty).

        Raises:
            GenerationError: transport failure after retries, non-2xx status
                or a malformed body.
        """
        payload = {
            "model": self.model,
            "prompt": prompt,
            "stream": False,
            "options": options.as_dict(),
        }
        started = time.perf_counter()
        try:
            response = await post_with_retry(
                self._ensure_client(),
                f"{self.base_url}/api/generate",
                json=payload,
                max_attempts=self._max_retries,
            )
        except httpx.HTTPError as exc:
            raise GenerationError(f"Ollama request failed: {exc}") from exc

        if not response.is_success:
            body = response.text
            raise GenerationError(
                f"Ollama error {response.status_code}: {body}",
                status_code=response.status_code,
                body=body,
            )
        try:
            data = response.json()
        except ValueError as exc:
            raise GenerationError("Ollama returned a non-JSON body", body=response.text) from exc

        text = str(data.get("response") or "").strip() if isinstance(data, dict) else ""
        logger.debug(
            "generation.completed",
            model=self.model,
            chars=len(text),
            latency_ms=int((time.perf_counter() - started) * 1000),
        )
        return text


class ReplyGenerator:
    """Builds persona prompts from guild memory and records each exchange."""

    def __init__(
        self,
        client: OllamaClient,
        memory: MemoryStore,
        *,
        persona_name: str = "Ember",
        context_turns: int = 20,
        summary_min_turns: int = 6,
        summary_window: int = 50,
        timeout: float = 45.0,
    ) -> None:
        self._client = client
        self._memory = memory
        self.persona_name = persona_name
        self._context_turns = context_turns
        self._summary_min_turns = summary_min_turns
        self._summary_window = summary_window
        self._timeout = timeout

    @property
    def memory(self) -> MemoryStore:
        return self._memory

    async def reply(
        self,
        *,
        guild_id: int,
        user_id: int,
        username: str,
        transcript: str,
        source: str = "voice",
    ) -> str:
        """Generate a reply; failures and timeouts fall back to the filler line."""
        memory = await self._memory.load(guild_id)
        recent_turns = memory.recent_turns[-self._context_turns :] if self._context_turns else []
        prompt = build_reply_prompt(
            name=self.persona_name,
            summary=memory.call_summary,
            recent=format_turns(recent_turns, persona_name=self.persona_name),
            username=username,
            transcript=transcript,
            source=source,
        )

        text = ""
        try:
            text = await asyncio.wait_for(
                self._client.generate(prompt, REPLY_OPTIONS), timeout=self._timeout
            )
        except TimeoutError:
            logger.warning("generation.timed_out", guild_id=guild_id, timeout_s=self._timeout)
        except CollaboratorError as exc:
            logger.warning(
                "generation.failed",
                guild_id=guild_id,
                error=str(exc),
                error_type=type(exc).__name__,
            )
        reply = text or FILLER_REPLY

        turns = [
            MemoryTurn(role="user", text=transcript, user_id=str(user_id), username=username),
            MemoryTurn(role="assistant", text=reply),
        ]
        try:
            await self._memory.append_turns(guild_id, turns)
        except MemoryStoreError as exc:
            logger.warning("generation.memory_not_saved", guild_id=guild_id, error=str(exc))
        return reply

    async def summarize_call(self, guild_id: int) -> str | None:
        """Condense recent turns into the guild's call summary.

        Returns the new summary, or None when there was too little to
        summarize or the model failed.
        """
        memory = await self._memory.load(guild_id)
        turns = memory.recent_turns[-self._summary_window :]
        if len(turns) < self._summary_min_turns:
            logger.debug("generation.summary_skipped", guild_id=guild_id, turns=len(turns))
            return None

        prompt = build_recap_prompt(format_turns(turns, persona_name=self.persona_name))
        try:
            recap = await asyncio.wait_for(
                self._client.generate(prompt, SUMMARY_OPTIONS), timeout=self._timeout
            )
        except (TimeoutError, CollaboratorError) as exc:
            logger.warning(
                "generation.summary_failed",
                guild_id=guild_id,
                error=str(exc) or "timed out",
                error_type=type(exc).__name__,
            )
            return None
        if not recap:
            return None

        try:
            await self._memory.set_summary(guild_id, recap)
        except MemoryStoreError as exc:
            logger.warning("generation.summary_not_saved", guild_id=guild_id, error=str(exc))
            return None
        logger.info("generation.summary_saved", guild_id=guild_id, turns=len(turns))
        return recap


__all__ = [
    "GenerationOptions",
    "OllamaClient",
    "REPLY_OPTIONS",
    "ReplyGenerator",
    "SUMMARY_OPTIONS",
]
