"""
Standardized correlation ID generation for the voice chat services.

Every captured utterance gets one ``voice-...`` identifier that follows it
through transcription, generation, synthesis and playback. Spoken output
that does not originate from a capture (greetings, farewells, mention
replies) gets a ``speech-...`` identifier instead.
"""

import re
import time
import uuid


def _generate_unique_suffix() -> str:
    """Generate a short unique suffix to prevent collisions."""
    return str(uuid.uuid4())[:8]


class CorrelationIDGenerator:
    """Correlation ID generator for voice sessions."""

    @staticmethod
    def generate_utterance_correlation_id(
        guild_id: int | None, user_id: int | None
    ) -> str:
        """
        Generate a correlation ID for a captured utterance.

        Format: voice-{guild_id}-{user_id}-{timestamp_ms}-{suffix}
        """
        if guild_id is None or user_id is None:
            raise ValueError("guild_id and user_id are required")

        timestamp_ms = int(time.time() * 1000)
        return f"voice-{guild_id}-{user_id}-{timestamp_ms}-{_generate_unique_suffix()}"

    @staticmethod
    def generate_speech_correlation_id(guild_id: int | None, source: str) -> str:
        """
        Generate a correlation ID for spoken output not tied to a capture.

        Format: speech-{guild_id}-{source}-{timestamp_ms}-{suffix}
        """
        if guild_id is None:
            raise ValueError("guild_id cannot be None")
        source_part = re.sub(r"[^a-zA-Z0-9_]", "_", source) or "unknown"
        timestamp_ms = int(time.time() * 1000)
        return (
            f"speech-{guild_id}-{source_part}-{timestamp_ms}-{_generate_unique_suffix()}"
        )


def generate_utterance_correlation_id(
    guild_id: int | None, user_id: int | None
) -> str:
    """Generate a capture correlation ID."""
    return CorrelationIDGenerator.generate_utterance_correlation_id(guild_id, user_id)


def generate_speech_correlation_id(guild_id: int | None, source: str) -> str:
    """Generate a spoken-output correlation ID."""
    return CorrelationIDGenerator.generate_speech_correlation_id(guild_id, source)


__all__ = [
    "CorrelationIDGenerator",
    "generate_speech_correlation_id",
    "generate_utterance_correlation_id",
]
