from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import TYPE_CHECKING

import discord

if TYPE_CHECKING:
    from voicegate.context import Context

from voicegate.exceptions import ChannelNotFoundError
from voicegate.services.constants import VoiceCaptureConstants
from voicegate.services.manager import BaseVoiceGatewayServiceManager
from voicegate.services.voice_transport.base import (
    QueuedSpeakerBurst,
    SpeakerInfo,
    SpeakingStartCallback,
    VoiceChannelInfo,
    VoiceTransport,
)
from voicegate.utils import BotUtils

logger = logging.getLogger(__name__)


def speaker_from_member(member: discord.abc.User) -> SpeakerInfo:
    return SpeakerInfo(
        user_id=str(member.id),
        user_name=member.name,
        display_name=getattr(member, "display_name", None),
        is_bot=member.bot,
    )


# -------------------------------------------------------------- #
# Burst Sink
# -------------------------------------------------------------- #


class BurstSink(discord.sinks.Sink):
    """
    Sink that cuts each user's decoded audio into speaking bursts.

    py-cord calls write() from its decoder thread. Frames are handed to
    the event loop, where the first frame of a user opens a burst and a
    silence timer closes it after SILENCE_GAP_MS without frames.

    py-cord prepends zeros for the whole gap since a user's previous
    packet, so the frame that opens a burst is cut down to its trailing
    decoded frame.
    """

    def __init__(
        self,
        loop: asyncio.AbstractEventLoop,
        resolve_speaker: Callable[[int], SpeakerInfo],
        on_burst: SpeakingStartCallback,
        silence_gap_ms: int = VoiceCaptureConstants.SILENCE_GAP_MS,
        frame_bytes: int = VoiceCaptureConstants.DISCORD_FRAME_BYTES,
    ):
        super().__init__()
        self.finished = False
        self.loop = loop
        self.resolve_speaker = resolve_speaker
        self.on_burst = on_burst
        self.silence_gap_seconds = silence_gap_ms / 1000
        self.frame_bytes = frame_bytes

        self._bursts: dict[int, QueuedSpeakerBurst] = {}
        self._timers: dict[int, asyncio.TimerHandle] = {}

    def write(self, data, user):
        """
        Hand one decoded packet to the event loop.

        Args:
            data: PCM bytes, or a VoiceData-like object carrying them in `pcm`
            user: The speaker's user id, or a User/Member
        """
        if self.finished or user is None:
            return
        user_id = int(getattr(user, "id", user))
        pcm = bytes(getattr(data, "pcm", data))
        self.loop.call_soon_threadsafe(self._on_frame, user_id, pcm)

    def cleanup(self):
        self.finished = True
        if self.loop.is_closed():
            return
        self.loop.call_soon_threadsafe(self.end_all)

    # -------------------------------------------------------------- #
    # Event Loop Side
    # -------------------------------------------------------------- #

    def _on_frame(self, user_id: int, frame: bytes) -> None:
        burst = self._bursts.get(user_id)
        if burst is None:
            burst = QueuedSpeakerBurst(self.resolve_speaker(user_id))
            self._bursts[user_id] = burst
            self.on_burst(burst)
            frame = frame[-self.frame_bytes :]

        burst.push(frame)

        timer = self._timers.pop(user_id, None)
        if timer:
            timer.cancel()
        self._timers[user_id] = self.loop.call_later(
            self.silence_gap_seconds, self._end_burst, user_id
        )

    def _end_burst(self, user_id: int) -> None:
        self._timers.pop(user_id, None)
        burst = self._bursts.pop(user_id, None)
        if burst:
            burst.end()

    def abort_speaker(self, user_id: int) -> None:
        """Abort a user's open burst, e.g. when they leave the channel mid-speech."""
        timer = self._timers.pop(user_id, None)
        if timer:
            timer.cancel()
        burst = self._bursts.pop(user_id, None)
        if burst:
            burst.abort(f"user {user_id} left the channel")

    def end_all(self) -> None:
        for user_id in list(self._bursts):
            timer = self._timers.pop(user_id, None)
            if timer:
                timer.cancel()
            self._end_burst(user_id)


# -------------------------------------------------------------- #
# Py-cord Voice Transport
# -------------------------------------------------------------- #


class PycordVoiceTransport(VoiceTransport):
    """VoiceTransport over a connected py-cord VoiceClient."""

    def __init__(
        self,
        voice_client: discord.VoiceClient,
        gateway: PycordVoiceGatewayService | None = None,
    ):
        super().__init__(
            guild_id=str(voice_client.guild.id), channel_id=str(voice_client.channel.id)
        )
        self.voice_client = voice_client
        self.gateway = gateway
        self._sink: BurstSink | None = None

    def start_receiving(self, callback: SpeakingStartCallback) -> None:
        super().start_receiving(callback)

        self._sink = BurstSink(
            loop=asyncio.get_running_loop(),
            resolve_speaker=self._resolve_speaker,
            on_burst=callback,
        )
        # sync_start=False keeps the event loop free while py-cord spins up its reader
        self.voice_client.start_recording(self._sink, self._recording_finished, sync_start=False)

    async def _recording_finished(self, _sink: BurstSink, *_args) -> None:
        logger.debug(f"Recording stopped for guild {self.guild_id}")

    def _resolve_speaker(self, user_id: int) -> SpeakerInfo:
        member = self.voice_client.guild.get_member(user_id)
        if member is None:
            return SpeakerInfo(user_id=str(user_id), user_name=str(user_id))
        return speaker_from_member(member)

    def abort_speaker(self, user_id: str) -> None:
        if self._sink:
            self._sink.abort_speaker(int(user_id))

    def list_members(self) -> list[SpeakerInfo]:
        channel = self.voice_client.channel
        return [speaker_from_member(member) for member in channel.members]

    def is_connected(self) -> bool:
        return self.voice_client.is_connected()

    async def wait_until_reconnected(self) -> None:
        while not self.voice_client.is_connected():
            await asyncio.sleep(0.25)

    async def destroy(self) -> None:
        if self._destroyed:
            return
        self._destroyed = True

        if self.voice_client.recording:
            self.voice_client.stop_recording()
        if self._sink:
            self._sink.end_all()

        try:
            await self.voice_client.disconnect(force=True)
        finally:
            if self.gateway:
                self.gateway.release_transport(self)


# -------------------------------------------------------------- #
# Py-cord Voice Gateway Service
# -------------------------------------------------------------- #


class PycordVoiceGatewayService(BaseVoiceGatewayServiceManager):
    """Voice gateway backed by the running py-cord bot on the context."""

    def __init__(self, context: "Context"):
        super().__init__(context)
        self._transports: dict[str, PycordVoiceTransport] = {}

    # -------------------------------------------------------------- #
    # Manager Methods
    # -------------------------------------------------------------- #

    async def on_start(self, services):
        await super().on_start(services)
        await self.services.logging_service.info("PycordVoiceGatewayService initialized")
        return True

    async def on_close(self):
        self._transports.clear()
        await self.services.logging_service.info("PycordVoiceGatewayService closed")
        return True

    @property
    def bot(self) -> discord.Bot:
        if self.context.bot is None:
            raise RuntimeError("Discord bot is not attached to the context")
        return self.context.bot

    # -------------------------------------------------------------- #
    # Gateway Methods
    # -------------------------------------------------------------- #

    async def _get_voice_channel(self, channel_id: str) -> discord.VoiceChannel:
        try:
            channel = self.bot.get_channel(int(channel_id))
            if channel is None:
                channel = await self.bot.fetch_channel(int(channel_id))
        except (ValueError, discord.NotFound, discord.Forbidden) as e:
            raise ChannelNotFoundError(channel_id) from e

        if not isinstance(channel, discord.VoiceChannel):
            raise ChannelNotFoundError(channel_id)
        return channel

    async def resolve_channel(self, channel_id: str) -> VoiceChannelInfo:
        channel = await self._get_voice_channel(channel_id)
        return VoiceChannelInfo(
            guild_id=str(channel.guild.id),
            channel_id=str(channel.id),
            channel_name=channel.name,
            members=[speaker_from_member(member) for member in channel.members],
        )

    async def connect(self, channel_id: str) -> PycordVoiceTransport:
        channel = await self._get_voice_channel(channel_id)
        voice_client = await channel.connect(reconnect=True)

        transport = PycordVoiceTransport(voice_client, gateway=self)
        self._transports[transport.guild_id] = transport
        await self.services.logging_service.info(
            f"Connected to voice channel {channel.name} ({channel_id}) "
            f"in guild {transport.guild_id}"
        )
        return transport

    async def teardown(self, guild_id: str) -> None:
        self._transports.pop(guild_id, None)

        guild = self.bot.get_guild(int(guild_id))
        if guild is None or guild.voice_client is None:
            return
        try:
            await guild.voice_client.disconnect(force=True)
        except discord.ClientException as e:
            await self.services.logging_service.warning(
                f"Failed to tear down voice connection for guild {guild_id}: {e}"
            )

    def release_transport(self, transport: PycordVoiceTransport) -> None:
        """Forget a destroyed transport unless a newer one replaced it."""
        if self._transports.get(transport.guild_id) is transport:
            del self._transports[transport.guild_id]

    async def send_dm(self, user_id: str, message: str) -> bool:
        return await BotUtils.send_dm(self.bot, user_id, message)

    # -------------------------------------------------------------- #
    # Event Dispatch (called from the voice cog)
    # -------------------------------------------------------------- #

    async def dispatch_disconnect(self, guild_id: str) -> None:
        """The bot was dropped from voice in a guild."""
        transport = self._transports.get(guild_id)
        if transport is None or transport.destroyed:
            return
        await transport.notify_disconnected()

    def dispatch_speaker_left(self, guild_id: str, user_id: str) -> None:
        """A member left the recorded channel; their open burst is cut short."""
        transport = self._transports.get(guild_id)
        if transport:
            transport.abort_speaker(user_id)
