"""Discord client wiring for the voice chat bot."""

from __future__ import annotations

import asyncio
import re
from contextlib import suppress
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import discord
from discord import app_commands
from discord.ext import voice_recv

from services.common.structured_logging import get_logger

from .announcements import build_greeting, is_departure_window
from .config import BotConfig
from .farewell import DEFAULT_COUNT, MAX_COUNT, MIN_COUNT, build_farewell_message
from .generation import OllamaClient, ReplyGenerator
from .interfaces import Synthesizer, Transcriber
from .memory import MemoryStore
from .pipeline import UtterancePipeline
from .playback import DiscordAudioPlayer
from .receiver import VoiceReceiver, build_sink
from .session import Session, SessionRegistry
from .speech_queue import SpeechOutputQueue
from .synthesis import PiperSynthesizer
from .transcription import WhisperTranscriber

logger = get_logger(__name__, service_name="voicechat")

MAX_MENTION_CHARS = 500

GUILD_ONLY_REPLY = "Use me in a server."
JOIN_VOICE_FIRST_REPLY = "Join a voice channel first."
EMPTY_MENTION_REPLY = "Say something after you ping me 😈"
MENTION_TOO_LONG_REPLY = "Too long. My brain is small."
LEFT_REPLY = "👋 Left voice (and saved a recap)."


@dataclass(slots=True)
class VoiceServices:
    """Collaborators shared by every session."""

    transcriber: Transcriber
    synthesizer: Synthesizer
    generator: ReplyGenerator
    ollama: OllamaClient | None = None


def build_services(config: BotConfig) -> VoiceServices:
    ollama = OllamaClient(
        config.ollama.url,
        config.ollama.model,
        timeout=config.ollama.timeout,
        max_retries=config.ollama.max_retries,
    )
    memory = MemoryStore(Path(config.memory.directory), max_turns=config.memory.max_turns)
    generator = ReplyGenerator(
        ollama,
        memory,
        persona_name=config.speech.persona_name,
        context_turns=config.memory.context_turns,
        summary_min_turns=config.memory.summary_min_turns,
        summary_window=config.memory.summary_window,
        timeout=config.ollama.timeout,
    )
    return VoiceServices(
        transcriber=WhisperTranscriber(
            config.whisper.binary, config.whisper.model, timeout=config.whisper.timeout
        ),
        synthesizer=PiperSynthesizer(
            config.piper.binary,
            config.piper.model,
            speak_rate=config.piper.speak_rate,
            timeout=config.piper.timeout,
            temp_dir=config.temp_dir,
        ),
        generator=generator,
        ollama=ollama,
    )


def _voice_bot(interaction: discord.Interaction) -> VoiceBot:
    client = interaction.client
    if not isinstance(client, VoiceBot):
        raise RuntimeError("command invoked on a client that is not a VoiceBot")
    return client


@app_commands.command(name="join", description="Join your voice channel and start listening")
async def join_command(interaction: discord.Interaction) -> None:
    await _voice_bot(interaction).handle_join(interaction)


@app_commands.command(name="leave", description="Leave voice and save a recap")
async def leave_command(interaction: discord.Interaction) -> None:
    await _voice_bot(interaction).handle_leave(interaction)


@app_commands.command(name="goodnight", description="Say goodnight in a few languages")
@app_commands.describe(
    count="How many languages (1-8)",
    english="Include English (default true)",
)
async def goodnight_command(
    interaction: discord.Interaction,
    count: app_commands.Range[int, MIN_COUNT, MAX_COUNT] = DEFAULT_COUNT,
    english: bool = True,
) -> None:
    await _voice_bot(interaction).handle_goodnight(interaction, count=count, english=english)


COMMANDS = (join_command, leave_command, goodnight_command)


def install_commands(tree: app_commands.CommandTree) -> None:
    for command in COMMANDS:
        tree.add_command(command)


async def sync_command_tree(
    tree: app_commands.CommandTree, guild_id: int | None = None
) -> list[app_commands.AppCommand]:
    """Publish the command tree to one guild, or globally when no guild is given."""
    if guild_id:
        guild = discord.Object(id=guild_id)
        tree.copy_global_to(guild=guild)
        synced = await tree.sync(guild=guild)
    else:
        synced = await tree.sync()
    logger.info(
        "discord.commands_synced",
        scope=f"guild:{guild_id}" if guild_id else "global",
        commands=[command.name for command in synced],
    )
    return synced


def strip_mentions(content: str, user_id: int) -> str:
    return re.sub(rf"<@!?{user_id}>", "", content).strip()


class VoiceBot(discord.Client):
    """Discord client that owns the voice sessions and the command surface."""

    def __init__(self, config: BotConfig, services: VoiceServices | None = None) -> None:
        super().__init__(intents=self._build_intents())
        self.config = config
        self.services = services or build_services(config)
        self.tree = app_commands.CommandTree(self)
        install_commands(self.tree)
        self.sessions = SessionRegistry()
        self.pipeline = UtterancePipeline(
            transcriber=self.services.transcriber,
            responder=self.services.generator,
            synthesizer=self.services.synthesizer,
            transcription_timeout=config.whisper.timeout,
            synthesis_timeout=config.piper.timeout,
            temp_dir=config.temp_dir,
        )
        self._receivers: dict[int, VoiceReceiver] = {}
        self._join_locks: dict[int, asyncio.Lock] = {}
        self._closing = False
        self._logger = get_logger(__name__, service_name="voicechat")

    async def setup_hook(self) -> None:
        if not discord.opus.is_loaded():
            with suppress(OSError):
                discord.opus._load_default()
        if self.config.discord.sync_commands:
            await sync_command_tree(self.tree, self.config.discord.guild_id)

    async def on_ready(self) -> None:
        self._logger.info(
            "discord.ready",
            user=str(self.user),
            guilds=[guild.id for guild in self.guilds],
        )

    async def close(self) -> None:
        if self._closing:
            return
        self._closing = True
        for guild_id in self.sessions.guild_ids:
            await self._summarize(guild_id)
        for guild_id in self.sessions.guild_ids:
            await self._end_session(guild_id)
        disconnects = [
            self._disconnect_voice_client(voice_client)
            for voice_client in list(self.voice_clients)
        ]
        if disconnects:
            await asyncio.gather(*disconnects, return_exceptions=True)
        if self.services.ollama is not None:
            await self.services.ollama.aclose()
        self._logger.info("discord.shutdown_complete")
        await super().close()

    # Commands

    async def handle_join(self, interaction: discord.Interaction) -> None:
        guild = interaction.guild
        if guild is None:
            await interaction.response.send_message(GUILD_ONLY_REPLY, ephemeral=True)
            return
        voice_state = getattr(interaction.user, "voice", None)
        channel = voice_state.channel if voice_state else None
        if channel is None:
            await interaction.response.send_message(JOIN_VOICE_FIRST_REPLY, ephemeral=True)
            return

        await interaction.response.defer(thinking=True)
        try:
            session = await self.join_voice_channel(guild, channel)
        except Exception as exc:
            self._logger.exception(
                "discord.voice_join_failed",
                guild_id=guild.id,
                channel_id=channel.id,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            await interaction.edit_original_response(content="Couldn't join voice right now.")
            return

        memory = await self.services.generator.memory.load(guild.id)
        greeting = build_greeting(memory.call_summary)
        if greeting:
            session.announce(greeting, source="greeting")
        await interaction.edit_original_response(
            content=f"🎤 Joined **{channel.name}**. Talk in VC — I'm listening."
        )

    async def handle_leave(self, interaction: discord.Interaction) -> None:
        guild = interaction.guild
        if guild is None:
            await interaction.response.send_message(GUILD_ONLY_REPLY, ephemeral=True)
            return
        await interaction.response.defer(ephemeral=True)

        session = self.sessions.get(guild.id)
        speech = self.config.speech
        if session is not None and is_departure_window(
            timezone=speech.departure_timezone,
            start_hour=speech.night_start_hour,
            end_hour=speech.night_end_hour,
        ):
            farewell = build_farewell_message(DEFAULT_COUNT, include_default=True)
            await session.announce(farewell, source="farewell").wait()

        await self._summarize(guild.id)
        await self._end_session(guild.id)
        voice_client = guild.voice_client
        if voice_client is not None:
            await self._disconnect_voice_client(voice_client)
        await interaction.edit_original_response(content=LEFT_REPLY)

    async def handle_goodnight(
        self,
        interaction: discord.Interaction,
        *,
        count: int = DEFAULT_COUNT,
        english: bool = True,
    ) -> None:
        guild = interaction.guild
        if guild is None:
            await interaction.response.send_message(GUILD_ONLY_REPLY, ephemeral=True)
            return
        text = build_farewell_message(count, include_default=english)
        await interaction.response.send_message(text)
        session = self.sessions.get(guild.id)
        if session is not None:
            session.announce(text, source="farewell")

    async def on_message(self, message: discord.Message) -> None:
        if message.author.bot or message.guild is None or self.user is None:
            return
        if not any(user.id == self.user.id for user in message.mentions):
            return

        text = strip_mentions(message.content, self.user.id)
        if not text:
            await message.reply(EMPTY_MENTION_REPLY)
            return
        if len(text) > MAX_MENTION_CHARS:
            await message.reply(MENTION_TOO_LONG_REPLY)
            return

        username = getattr(message.author, "display_name", None) or message.author.name
        async with message.channel.typing():
            reply = await self.services.generator.reply(
                guild_id=message.guild.id,
                user_id=message.author.id,
                username=username,
                transcript=text,
                source="text",
            )
        await message.reply(reply)
        session = self.sessions.get(message.guild.id)
        if session is not None:
            session.announce(reply, source="text_reply")

    async def on_voice_state_update(
        self,
        member: discord.Member,
        before: discord.VoiceState,
        after: discord.VoiceState,
    ) -> None:
        if self.user is None or member.id != self.user.id or self._closing:
            return
        guild_id = member.guild.id
        if after.channel is not None or guild_id not in self.sessions:
            return
        self._logger.warning(
            "discord.voice_connection_lost",
            guild_id=guild_id,
            channel_id=before.channel.id if before.channel else None,
        )
        await self._end_session(guild_id)

    # Voice lifecycle

    async def join_voice_channel(
        self, guild: discord.Guild, channel: discord.VoiceChannel | discord.StageChannel
    ) -> Session:
        lock = self._join_locks.setdefault(guild.id, asyncio.Lock())
        async with lock:
            voice_client = guild.voice_client
            session = self.sessions.get(guild.id)
            if (
                session is not None
                and isinstance(voice_client, voice_recv.VoiceRecvClient)
                and voice_client.channel is not None
                and voice_client.channel.id == channel.id
            ):
                self._logger.info(
                    "discord.voice_already_connected",
                    guild_id=guild.id,
                    channel_id=channel.id,
                )
                return session

            await self._end_session(guild.id)
            if voice_client is not None:
                await self._disconnect_voice_client(voice_client)

            self._logger.info(
                "discord.voice_join_attempt",
                guild_id=guild.id,
                channel_id=channel.id,
                channel_name=channel.name,
            )
            voice_client = await channel.connect(cls=voice_recv.VoiceRecvClient)
            return self._start_session(guild.id, channel.id, voice_client)

    def _start_session(
        self, guild_id: int, channel_id: int, voice_client: voice_recv.VoiceRecvClient
    ) -> Session:
        loop = asyncio.get_running_loop()
        receiver = VoiceReceiver(
            loop,
            on_speaking_start=lambda user_id, name: self._on_speaking_start(
                guild_id, user_id, name
            ),
            speaking_restart_ms=self.config.capture.speaking_restart_ms,
        )
        queue = SpeechOutputQueue(
            guild_id=guild_id,
            player=DiscordAudioPlayer(voice_client),
            synthesizer=self.services.synthesizer,
            synthesis_timeout=self.config.piper.timeout,
            playback_timeout=self.config.speech.playback_timeout,
        )
        capture = self.config.capture

        def factory() -> Session:
            return Session(
                guild_id=guild_id,
                channel_id=channel_id,
                bot_user_id=self.user.id if self.user else None,
                subscriber=receiver,
                queue=queue,
                pipeline=self.pipeline,
                silence_ms=capture.silence_ms,
                min_utterance_ms=capture.min_utterance_ms,
                cooldown_ms=capture.cooldown_ms,
            )

        session = self.sessions.get_or_create(guild_id, factory)
        voice_client.listen(build_sink(receiver))
        self._receivers[guild_id] = receiver
        self._logger.info(
            "voice.receiver_attached",
            guild_id=guild_id,
            channel_id=channel_id,
            voice_client_type=type(voice_client).__name__,
        )
        return session

    def _on_speaking_start(self, guild_id: int, user_id: int, display_name: str) -> None:
        session = self.sessions.get(guild_id)
        if session is not None:
            session.handle_speaking_start(user_id, display_name)

    async def _end_session(self, guild_id: int) -> None:
        receiver = self._receivers.pop(guild_id, None)
        voice_client = self._voice_client_for_guild(guild_id)
        if isinstance(voice_client, voice_recv.VoiceRecvClient):
            with suppress(Exception):
                voice_client.stop_listening()
        if receiver is not None:
            receiver.stop()
        if await self.sessions.remove(guild_id):
            self._logger.info("voice.session_ended", guild_id=guild_id)

    async def _summarize(self, guild_id: int) -> None:
        recap = await self.services.generator.summarize_call(guild_id)
        self._logger.debug("discord.summary_attempted", guild_id=guild_id, saved=recap is not None)

    def _voice_client_for_guild(self, guild_id: int) -> discord.VoiceProtocol | None:
        guild = self.get_guild(guild_id)
        return guild.voice_client if guild else None

    async def _disconnect_voice_client(self, voice_client: Any) -> None:
        guild_id = voice_client.guild.id if voice_client.guild else None
        try:
            await voice_client.disconnect(force=True)
            self._logger.info("discord.voice_disconnected", guild_id=guild_id)
        except Exception as exc:
            self._logger.warning(
                "discord.voice_disconnect_failed",
                guild_id=guild_id,
                error=str(exc),
                error_type=type(exc).__name__,
            )

    @staticmethod
    def _build_intents() -> discord.Intents:
        intents = discord.Intents.none()
        for name in ("guilds", "voice_states", "guild_messages", "message_content", "members"):
            setattr(intents, name, True)
        return intents


async def run_bot(config: BotConfig, *, stop_event: asyncio.Event | None = None) -> None:
    """Run the bot until it exits or ``stop_event`` is set."""
    bot = VoiceBot(config)
    bot_task = asyncio.create_task(bot.start(config.discord.token), name="discord-bot")
    waiters: set[asyncio.Task[Any]] = {bot_task}
    if stop_event is not None:
        waiters.add(asyncio.create_task(stop_event.wait(), name="stop-signal"))
    try:
        done, _ = await asyncio.wait(waiters, return_when=asyncio.FIRST_COMPLETED)
        if bot_task in done:
            bot_task.result()
        else:
            logger.info("discord.shutdown_requested")
    finally:
        await bot.close()
        for task in waiters:
            if not task.done():
                task.cancel()
                with suppress(asyncio.CancelledError):
                    await task


__all__ = [
    "COMMANDS",
    "VoiceBot",
    "VoiceServices",
    "build_services",
    "install_commands",
    "run_bot",
    "strip_mentions",
    "sync_command_tree",
]
