"""Entrypoint for the voice chat bot."""

from __future__ import annotations

import asyncio
import signal
from contextlib import suppress

from services.common.config import LoggingConfig, load_config_from_env
from services.common.structured_logging import configure_logging, get_logger

from .config import BotConfig, load_config


async def serve(config: BotConfig) -> None:
    """Run the bot until SIGINT or SIGTERM."""
    from .discord_voice import run_bot

    loop = asyncio.get_running_loop()
    stop = asyncio.Event()
    for sig in (signal.SIGINT, signal.SIGTERM):
        with suppress(NotImplementedError):
            loop.add_signal_handler(sig, stop.set)
    await run_bot(config, stop_event=stop)


def main() -> None:
    """Main entrypoint for the voice chat service."""
    # Logging first so configuration errors are rendered structurally
    logging_config = load_config_from_env(LoggingConfig)
    configure_logging(
        logging_config.level,
        json_logs=logging_config.json_logs,
        service_name=logging_config.service_name,
    )
    logger = get_logger(__name__, service_name="voicechat")

    config = load_config()
    logger.info(
        "voicechat.starting",
        guild_id=config.discord.guild_id,
        ollama_model=config.ollama.model,
        persona=config.speech.persona_name,
    )
    asyncio.run(serve(config))


if __name__ == "__main__":
    main()
