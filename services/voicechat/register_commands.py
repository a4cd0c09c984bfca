"""Publish the slash commands without starting the voice bot."""

from __future__ import annotations

import asyncio

import discord
from discord import app_commands

from services.common.config import LoggingConfig, load_config_from_env
from services.common.structured_logging import configure_logging, get_logger

from .config import DiscordConfig
from .discord_voice import install_commands, sync_command_tree

logger = get_logger(__name__, service_name="voicechat")


class CommandRegistrar(discord.Client):
    """Logs in, syncs the command tree once and disconnects."""

    def __init__(self, guild_id: int | None = None) -> None:
        super().__init__(intents=discord.Intents.none())
        self.tree = app_commands.CommandTree(self)
        install_commands(self.tree)
        self._guild_id = guild_id
        self.synced: list[app_commands.AppCommand] = []

    async def setup_hook(self) -> None:
        try:
            self.synced = await sync_command_tree(self.tree, self._guild_id)
        finally:
            await self.close()


async def register(config: DiscordConfig) -> list[app_commands.AppCommand]:
    registrar = CommandRegistrar(config.guild_id)
    async with registrar:
        await registrar.start(config.token)
    return registrar.synced


def main() -> None:
    logging_config = load_config_from_env(LoggingConfig)
    configure_logging(
        logging_config.level,
        json_logs=logging_config.json_logs,
        service_name=logging_config.service_name,
    )
    config = load_config_from_env(DiscordConfig)
    synced = asyncio.run(register(config))
    logger.info("discord.commands_registered", count=len(synced))


if __name__ == "__main__":
    main()
