"""Exceptions raised by the collaborator adapters."""

from __future__ import annotations


class CollaboratorError(Exception):
    """An external process or service failed to produce a result."""


class TranscriptionError(CollaboratorError):
    """Speech-to-text failed."""

    def __init__(self, message: str, *, exit_code: int | None = None, stderr: str = "") -> None:
        super().__init__(message)
        self.exit_code = exit_code
        self.stderr = stderr


class GenerationError(CollaboratorError):
    """The language model endpoint returned an error."""

    def __init__(self, message: str, *, status_code: int | None = None, body: str = "") -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class SynthesisError(CollaboratorError):
    """Text-to-speech failed."""

    def __init__(self, message: str, *, exit_code: int | None = None, stderr: str = "") -> None:
        super().__init__(message)
        self.exit_code = exit_code
        self.stderr = stderr


class PlaybackError(CollaboratorError):
    """The voice transport could not play an audio file."""


__all__ = [
    "CollaboratorError",
    "GenerationError",
    "PlaybackError",
    "SynthesisError",
    "TranscriptionError",
]
