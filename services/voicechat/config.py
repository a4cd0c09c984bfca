"""Voice chat service configuration using the shared config library."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from services.common.config import (
    BaseConfig,
    FieldDefinition,
    LoggingConfig,
    ValidationError,
    load_config_from_env,
)


class DiscordConfig(BaseConfig):
    """Discord bot credentials and command registration."""

    @classmethod
    def get_field_definitions(cls) -> list[FieldDefinition]:
        return [
            FieldDefinition(
                name="token",
                field_type=str,
                required=True,
                description="Discord bot token",
                env_var="DISCORD_TOKEN",
            ),
            FieldDefinition(
                name="guild_id",
                field_type=int,
                default=0,
                description="Register commands to this guild only (0 registers globally)",
                env_var="DISCORD_GUILD_ID",
                min_value=0,
            ),
            FieldDefinition(
                name="sync_commands",
                field_type=bool,
                default=False,
                description="Sync the command tree when the bot starts",
                env_var="DISCORD_SYNC_COMMANDS",
            ),
        ]


class CaptureConfig(BaseConfig):
    """Endpointing and admission thresholds."""

    @classmethod
    def get_field_definitions(cls) -> list[FieldDefinition]:
        return [
            FieldDefinition(
                name="silence_ms",
                field_type=int,
                default=900,
                description="Continuous silence that ends an utterance",
                env_var="SILENCE_MS",
                min_value=100,
                max_value=10000,
            ),
            FieldDefinition(
                name="min_utterance_ms",
                field_type=int,
                default=700,
                description="Captured clips shorter than this are discarded",
                env_var="MIN_UTTERANCE_MS",
                min_value=0,
                max_value=10000,
            ),
            FieldDefinition(
                name="cooldown_ms",
                field_type=int,
                default=2000,
                description="Minimum gap between admitted captures for one speaker",
                env_var="COOLDOWN_MS",
                min_value=0,
                max_value=60000,
            ),
            FieldDefinition(
                name="speaking_restart_ms",
                field_type=int,
                default=250,
                description="Packet gap after which the next packet counts as a new speaking start",
                env_var="SPEAKING_RESTART_MS",
                min_value=20,
                max_value=5000,
            ),
            FieldDefinition(
                name="temp_dir",
                field_type=str,
                default="",
                description="Directory for temporary WAV files (system default when empty)",
                env_var="VOICECHAT_TEMP_DIR",
            ),
        ]


class WhisperConfig(BaseConfig):
    """whisper.cpp command line transcriber."""

    @classmethod
    def get_field_definitions(cls) -> list[FieldDefinition]:
        return [
            FieldDefinition(
                name="binary",
                field_type=str,
                required=True,
                description="Path to whisper-cli",
                env_var="WHISPER_BIN",
            ),
            FieldDefinition(
                name="model",
                field_type=str,
                required=True,
                description="Path to the ggml model file",
                env_var="WHISPER_MODEL",
            ),
            FieldDefinition(
                name="timeout",
                field_type=float,
                default=30.0,
                description="Seconds before a transcription is abandoned",
                env_var="WHISPER_TIMEOUT",
                min_value=1.0,
                max_value=600.0,
            ),
        ]


class OllamaConfig(BaseConfig):
    """Ollama text generation endpoint."""

    @classmethod
    def get_field_definitions(cls) -> list[FieldDefinition]:
        return [
            FieldDefinition(
                name="url",
                field_type=str,
                default="http://127.0.0.1:11434",
                description="Ollama base URL",
                env_var="OLLAMA_URL",
                pattern=r"^https?://",
            ),
            FieldDefinition(
                name="model",
                field_type=str,
                default="qwen2.5:7b",
                description="Model name passed to /api/generate",
                env_var="OLLAMA_MODEL",
            ),
            FieldDefinition(
                name="timeout",
                field_type=float,
                default=45.0,
                description="Seconds before generation falls back to the filler reply",
                env_var="OLLAMA_TIMEOUT",
                min_value=1.0,
                max_value=600.0,
            ),
            FieldDefinition(
                name="max_retries",
                field_type=int,
                default=2,
                description="Attempts for connection-level failures",
                env_var="OLLAMA_MAX_RETRIES",
                min_value=1,
                max_value=10,
            ),
        ]


class PiperConfig(BaseConfig):
    """Piper command line synthesizer."""

    @classmethod
    def get_field_definitions(cls) -> list[FieldDefinition]:
        return [
            FieldDefinition(
                name="binary",
                field_type=str,
                required=True,
                description="Path to the piper executable",
                env_var="PIPER_BIN",
            ),
            FieldDefinition(
                name="model",
                field_type=str,
                required=True,
                description="Path to the .onnx voice",
                env_var="PIPER_MODEL",
            ),
            FieldDefinition(
                name="speak_rate",
                field_type=float,
                default=0.85,
                description="Relative speaking rate (clamped to 0.6-1.6)",
                env_var="PIPER_SPEAK_RATE",
                min_value=0.1,
                max_value=5.0,
            ),
            FieldDefinition(
                name="timeout",
                field_type=float,
                default=30.0,
                description="Seconds before a synthesis is abandoned",
                env_var="PIPER_TIMEOUT",
                min_value=1.0,
                max_value=600.0,
            ),
        ]


class MemoryConfig(BaseConfig):
    """Per-guild conversation memory."""

    @classmethod
    def get_field_definitions(cls) -> list[FieldDefinition]:
        return [
            FieldDefinition(
                name="directory",
                field_type=str,
                default="./memory",
                description="Directory holding guild_<id>.json files",
                env_var="MEMORY_DIR",
            ),
            FieldDefinition(
                name="max_turns",
                field_type=int,
                default=60,
                description="Turns kept in the rolling log",
                env_var="MEMORY_MAX_TURNS",
                min_value=1,
                max_value=1000,
            ),
            FieldDefinition(
                name="context_turns",
                field_type=int,
                default=20,
                description="Recent turns included in reply prompts",
                env_var="MEMORY_CONTEXT_TURNS",
                min_value=0,
                max_value=1000,
            ),
            FieldDefinition(
                name="summary_min_turns",
                field_type=int,
                default=6,
                description="Turns required before a call summary is written",
                env_var="MEMORY_SUMMARY_MIN_TURNS",
                min_value=1,
                max_value=1000,
            ),
            FieldDefinition(
                name="summary_window",
                field_type=int,
                default=50,
                description="Most recent turns fed to the summarizer",
                env_var="MEMORY_SUMMARY_WINDOW",
                min_value=1,
                max_value=1000,
            ),
        ]

    def _validate(self) -> None:
        super()._validate()
        # a window smaller than the minimum never reaches it
        if self.summary_window < self.summary_min_turns:
            raise ValidationError(
                "summary_window",
                self.summary_window,
                f"Must be >= summary_min_turns ({self.summary_min_turns})",
            )


class SpeechConfig(BaseConfig):
    """Persona and playback behaviour."""

    @classmethod
    def get_field_definitions(cls) -> list[FieldDefinition]:
        return [
            FieldDefinition(
                name="persona_name",
                field_type=str,
                default="Ember",
                description="Name the bot answers as",
                env_var="PERSONA_NAME",
            ),
            FieldDefinition(
                name="playback_timeout",
                field_type=float,
                default=120.0,
                description="Seconds before a stuck playback is stopped",
                env_var="PLAYBACK_TIMEOUT",
                min_value=1.0,
                max_value=3600.0,
            ),
            FieldDefinition(
                name="departure_timezone",
                field_type=str,
                default="America/New_York",
                description="Time zone used to decide whether /leave says goodnight",
                env_var="DEPARTURE_TIMEZONE",
            ),
            FieldDefinition(
                name="night_start_hour",
                field_type=int,
                default=21,
                description="First hour (inclusive) of the goodnight window",
                env_var="NIGHT_START_HOUR",
                min_value=0,
                max_value=23,
            ),
            FieldDefinition(
                name="night_end_hour",
                field_type=int,
                default=4,
                description="Last hour (inclusive) of the goodnight window",
                env_var="NIGHT_END_HOUR",
                min_value=0,
                max_value=23,
            ),
        ]


@dataclass(slots=True)
class BotConfig:
    """Aggregated runtime configuration for the voice chat bot."""

    discord: DiscordConfig
    capture: CaptureConfig
    whisper: WhisperConfig
    ollama: OllamaConfig
    piper: PiperConfig
    memory: MemoryConfig
    speech: SpeechConfig
    logging: LoggingConfig

    @property
    def temp_dir(self) -> Path | None:
        return Path(self.capture.temp_dir) if self.capture.temp_dir else None


def load_config() -> BotConfig:
    """Load the full bot configuration from the environment.

    Raises:
        ConfigError: a required variable is missing or a value is invalid.
    """
    return BotConfig(
        discord=load_config_from_env(DiscordConfig),
        capture=load_config_from_env(CaptureConfig),
        whisper=load_config_from_env(WhisperConfig),
        ollama=load_config_from_env(OllamaConfig),
        piper=load_config_from_env(PiperConfig),
        memory=load_config_from_env(MemoryConfig),
        speech=load_config_from_env(SpeechConfig),
        logging=load_config_from_env(LoggingConfig),
    )


__all__ = [
    "BotConfig",
    "CaptureConfig",
    "DiscordConfig",
    "MemoryConfig",
    "OllamaConfig",
    "PiperConfig",
    "SpeechConfig",
    "WhisperConfig",
    "load_config",
]
