import logging

import discord
from discord.ext import commands

from voicegate.context import Context
from voicegate.exceptions import (
    AlreadyRecordingError,
    ChannelNotFoundError,
    VoiceConnectTimeoutError,
)

logger = logging.getLogger(__name__)


# -------------------------------------------------------------- #
# Cog
# -------------------------------------------------------------- #


class Voice(commands.Cog):
    """Voice recording commands, voice state routing and consent DMs."""

    def __init__(self, context: Context):
        self.context = context
        self.bot = context.bot
        self.server = context.server_manager
        self.services = context.services_manager

    # -------------------------------------------------------------- #
    # Utils
    # -------------------------------------------------------------- #

    def find_user_vc(self, ctx: discord.ApplicationContext) -> discord.VoiceChannel | None:
        """Find the voice channel the user is in.

        Args:
            ctx: Discord application context

        Returns:
            Voice channel if user is connected, None otherwise
        """
        return ctx.author.voice.channel if ctx.author.voice else None

    # -------------------------------------------------------------- #
    # Listeners
    # -------------------------------------------------------------- #

    async def on_voice_state_update(
        self, member: discord.Member, before: discord.VoiceState, after: discord.VoiceState
    ):
        """Route voice state changes to the session orchestrator.

        Args:
            member: The member whose voice state has changed
            before: The previous voice state
            after: The new voice state
        """
        guild_id = str(member.guild.id)
        gateway = self.services.voice_gateway_service_manager
        sessions = self.services.voice_session_service_manager

        # The bot itself was dropped from voice
        if self.bot.user and member.id == self.bot.user.id:
            if before.channel and after.channel is None:
                await gateway.dispatch_disconnect(guild_id)
            return

        active = sessions.get_active_session(guild_id)
        if active is None:
            return

        before_id = str(before.channel.id) if before.channel else None
        after_id = str(after.channel.id) if after.channel else None
        if active.channel_id not in (before_id, after_id) or before_id == after_id:
            return

        if before_id == active.channel_id:
            gateway.dispatch_speaker_left(guild_id, str(member.id))

        await sessions.handle_membership_change(guild_id)

    # -------------------------------------------------------------- #
    # Consent DM Handler
    # -------------------------------------------------------------- #

    async def filter_message(self, message: discord.Message) -> bool:
        """Only DMs from users some active session is waiting on.

        Args:
            message: The Discord message object

        Returns:
            True if this handler should process the message
        """
        if message.author.bot or message.guild is not None:
            return False
        return self.services.consent_service_manager.is_awaiting_response(str(message.author.id))

    async def handle_message(self, message: discord.Message) -> bool:
        """Apply a consent reply and answer it.

        Args:
            message: The Discord message object

        Returns:
            False, the reply is not meant for other handlers
        """
        reply = await self.services.consent_service_manager.handle_response(
            user_id=str(message.author.id),
            user_name=message.author.name,
            text=message.content,
        )
        await message.channel.send(reply)
        return False

    # -------------------------------------------------------------- #
    # Slash Commands
    # -------------------------------------------------------------- #

    @commands.slash_command(name="record", description="Record the voice channel you are in")
    async def record(self, ctx: discord.ApplicationContext) -> None:
        """Join the caller's voice channel and start a recording session.

        Args:
            ctx: Discord application context
        """
        voice_channel = self.find_user_vc(ctx)
        if ctx.guild is None or voice_channel is None:
            await ctx.respond("❌ You must be in a voice channel to use this command.")
            return

        await ctx.defer()
        logger.info(f"Record command called by {ctx.author.id} in guild {ctx.guild.id}")

        try:
            active = await self.services.voice_session_service_manager.join(
                str(ctx.guild.id), str(voice_channel.id)
            )
        except AlreadyRecordingError:
            await ctx.edit(content="❌ This server is already being recorded.")
            return
        except ChannelNotFoundError:
            await ctx.edit(content="❌ Could not find that voice channel.")
            return
        except VoiceConnectTimeoutError:
            await ctx.edit(content="❌ Could not connect to the voice channel. Try again.")
            return

        pending = len(active.pending_consent_user_ids)
        await ctx.edit(
            content=(
                f"🎙️ Recording **{active.channel_name}** (session `{active.session_id}`).\n"
                f"{len(active.consented_user_ids)} consented, {pending} asked for consent by DM. "
                "Only people who consent are recorded. Use /stop to end."
            )
        )

    @commands.slash_command(name="stop", description="Stop recording in this server")
    async def stop(self, ctx: discord.ApplicationContext) -> None:
        """End this server's recording session.

        Args:
            ctx: Discord application context
        """
        if ctx.guild is None:
            await ctx.respond("❌ This command can only be used in a server.")
            return

        await ctx.defer()
        result = await self.services.voice_session_service_manager.leave(str(ctx.guild.id))
        if result is None:
            await ctx.edit(content="❌ No active recording in this server.")
            return

        await ctx.edit(
            content=(
                f"✅ Recording stopped. Session `{result.session_id}`: "
                f"{result.chunk_count} chunks in {result.elapsed_seconds}s."
            )
        )

    @commands.slash_command(name="recording_status", description="Show the active recording")
    async def recording_status(self, ctx: discord.ApplicationContext) -> None:
        if ctx.guild is None:
            await ctx.respond("❌ This command can only be used in a server.")
            return

        active = self.services.voice_session_service_manager.get_active_session(
            str(ctx.guild.id)
        )
        if active is None:
            await ctx.respond("No active recording in this server.", ephemeral=True)
            return

        snapshot = active.snapshot()
        await ctx.respond(
            f"🎙️ Recording **{active.channel_name}** for {snapshot.elapsed_seconds}s, "
            f"{snapshot.chunk_count} chunks saved, {len(active.consented_user_ids)} consented.",
            ephemeral=True,
        )

    @commands.slash_command(name="revoke_consent", description="Stop being recorded, everywhere")
    async def revoke_consent(self, ctx: discord.ApplicationContext) -> None:
        """Revoke all of the caller's recording consent.

        Args:
            ctx: Discord application context
        """
        revoked = await self.services.consent_service_manager.revoke_consent(str(ctx.author.id))
        if revoked:
            await ctx.respond(
                f"✅ Revoked {revoked} consent grant(s). You will not be recorded anymore.",
                ephemeral=True,
            )
        else:
            await ctx.respond("You had no active consent to revoke.", ephemeral=True)


def setup(context: Context) -> Voice:
    """Setup function for the Voice cog.

    Args:
        context: The application context instance

    Returns:
        The initialized Voice cog instance
    """
    voice = Voice(context)
    context.bot.add_cog(voice)

    # -------------------------------------------------------------- #
    # Add listeners
    # -------------------------------------------------------------- #

    context.bot.add_listener(voice.on_voice_state_update, "on_voice_state_update")
    return voice
