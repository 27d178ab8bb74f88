from __future__ import annotations

import asyncio
import enum
from dataclasses import dataclass, field
from datetime import datetime
from functools import partial
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from voicegate.context import Context

from voicegate.exceptions import AlreadyRecordingError, VoiceConnectTimeoutError
from voicegate.server.db_models import SessionSnapshot
from voicegate.services.consent_manager.manager import ConsentState
from voicegate.services.constants import VoiceCaptureConstants
from voicegate.services.manager import Manager
from voicegate.services.voice_transport.base import SpeakerBurst, VoiceTransport
from voicegate.utils import elapsed_seconds, get_current_timestamp

# -------------------------------------------------------------- #
# Session Types
# -------------------------------------------------------------- #


class GuildRecordingState(enum.Enum):
    IDLE = "idle"
    JOINING = "joining"
    RECORDING = "recording"
    ENDING = "ending"


@dataclass
class ActiveSession:
    """In-memory state of one recording session, owned by the orchestrator."""

    session_id: str
    guild_id: str
    channel_id: str
    channel_name: str
    transport: VoiceTransport
    started_at: datetime
    chunk_count: int = 0
    _consent_states: dict[str, ConsentState] = field(default_factory=dict)

    @property
    def consented_user_ids(self) -> frozenset[str]:
        return frozenset(
            user_id for user_id, state in self._consent_states.items() if state.is_granted
        )

    @property
    def pending_consent_user_ids(self) -> frozenset[str]:
        return frozenset(
            user_id
            for user_id, state in self._consent_states.items()
            if state == ConsentState.PENDING
        )

    def consent_state(self, user_id: str) -> ConsentState:
        return self._consent_states.get(user_id, ConsentState.UNSET)

    def set_consent_state(self, user_id: str, state: ConsentState) -> None:
        self._consent_states[user_id] = state

    def is_consented(self, user_id: str) -> bool:
        return self.consent_state(user_id).is_granted

    def elapsed_seconds(self) -> int:
        return elapsed_seconds(self.started_at)

    def snapshot(self) -> SessionSnapshot:
        return SessionSnapshot(
            session_id=self.session_id,
            guild_id=self.guild_id,
            channel_id=self.channel_id,
            chunk_count=self.chunk_count,
            elapsed_seconds=self.elapsed_seconds(),
        )


@dataclass(frozen=True)
class LeaveResult:
    session_id: str
    chunk_count: int
    elapsed_seconds: int


# -------------------------------------------------------------- #
# Voice Session Manager Service
# -------------------------------------------------------------- #


class VoiceSessionManagerService(Manager):
    """
    Owns the one-recording-per-guild registry and every session's lifecycle.

    Per guild: idle -> joining -> recording -> ending -> idle. The state
    check-and-set happens under a single asyncio.Lock; the slow parts of
    join and leave (connect, drain) run outside it.
    """

    def __init__(self, context: "Context"):
        super().__init__(context)
        self.sessions: dict[str, ActiveSession] = {}
        self._states: dict[str, GuildRecordingState] = {}
        self._registry_lock = asyncio.Lock()

    # -------------------------------------------------------------- #
    # Manager Methods
    # -------------------------------------------------------------- #

    async def on_start(self, services):
        await super().on_start(services)
        await self.services.logging_service.info("VoiceSessionManagerService initialized")
        return True

    async def on_close(self):
        await self.shutdown()
        await self.services.logging_service.info("VoiceSessionManagerService closed")
        return True

    # -------------------------------------------------------------- #
    # Registry
    # -------------------------------------------------------------- #

    def get_state(self, guild_id: str) -> GuildRecordingState:
        return self._states.get(guild_id, GuildRecordingState.IDLE)

    def get_active_session(self, guild_id: str) -> ActiveSession | None:
        return self.sessions.get(guild_id)

    async def _claim(
        self, guild_id: str, expected: GuildRecordingState, new: GuildRecordingState
    ) -> bool:
        async with self._registry_lock:
            if self.get_state(guild_id) != expected:
                return False
            self._states[guild_id] = new
            return True

    # -------------------------------------------------------------- #
    # Join
    # -------------------------------------------------------------- #

    async def join(self, guild_id: str, channel_id: str) -> ActiveSession:
        """
        Start recording a voice channel.

        Args:
            guild_id: Guild the channel belongs to
            channel_id: Voice channel to join

        Returns:
            The new ActiveSession

        Raises:
            AlreadyRecordingError: The guild is not idle
            ChannelNotFoundError: No such voice channel in this guild
            VoiceConnectTimeoutError: The connection was not ready in time
        """
        if self.context.is_shutting_down():
            raise RuntimeError("Shutting down, not accepting new sessions")

        if not await self._claim(guild_id, GuildRecordingState.IDLE, GuildRecordingState.JOINING):
            raise AlreadyRecordingError(guild_id)

        opened = False
        try:
            active = await self._open_session(guild_id, channel_id)
            opened = True
            return active
        finally:
            if not opened:
                async with self._registry_lock:
                    self._states.pop(guild_id, None)

    async def _open_session(self, guild_id: str, channel_id: str) -> ActiveSession:
        gateway = self.services.voice_gateway_service_manager
        logging_service = self.services.logging_service

        channel = await gateway.resolve_channel(channel_id)
        if channel.guild_id != guild_id:
            raise ValueError(f"Channel {channel_id} does not belong to guild {guild_id}")

        started_at = get_current_timestamp()
        session_id = await self.services.sql_voice_service_manager.insert_session(
            guild_id=guild_id,
            channel_id=channel_id,
            channel_name=channel.channel_name,
            started_at=started_at,
        )

        timeout = VoiceCaptureConstants.CONNECT_TIMEOUT_SECONDS
        try:
            transport = await asyncio.wait_for(gateway.connect(channel_id), timeout=timeout)
        except Exception as e:
            # session row stays as an orphan with status recording and no chunks
            await logging_service.error(
                f"Voice connect to {channel_id} failed for session {session_id}: "
                f"{type(e).__name__}: {e}"
            )
            await gateway.teardown(guild_id)
            raise VoiceConnectTimeoutError(channel_id, timeout) from e

        active = ActiveSession(
            session_id=session_id,
            guild_id=guild_id,
            channel_id=channel_id,
            channel_name=channel.channel_name,
            transport=transport,
            started_at=started_at,
        )
        self.sessions[guild_id] = active

        try:
            for member in transport.list_members():
                if not member.is_bot:
                    await self.services.consent_service_manager.solicit(active, member)

            transport.start_receiving(partial(self._on_speaking_start, active))
            transport.on_disconnect(partial(self.handle_transport_disconnect, guild_id))
        except Exception:
            self.sessions.pop(guild_id, None)
            await transport.destroy()
            raise

        async with self._registry_lock:
            self._states[guild_id] = GuildRecordingState.RECORDING

        await logging_service.info(
            f"Recording session {session_id} started in {channel.channel_name} ({channel_id}), "
            f"guild {guild_id}: {len(active.consented_user_ids)} consented, "
            f"{len(active.pending_consent_user_ids)} pending"
        )
        return active

    async def join_channel(self, channel_id: str) -> ActiveSession:
        """Join a voice channel, looking up its guild first."""
        channel = await self.services.voice_gateway_service_manager.resolve_channel(channel_id)
        return await self.join(channel.guild_id, channel_id)

    def _on_speaking_start(self, active: ActiveSession, burst: SpeakerBurst) -> None:
        if self.get_state(active.guild_id) != GuildRecordingState.RECORDING:
            burst.ignore()
            return
        self.services.speaker_stream_service_manager.handle_speaking_start(active, burst)

    # -------------------------------------------------------------- #
    # Leave
    # -------------------------------------------------------------- #

    def _pick_recording_guild(self) -> str | None:
        for guild_id, state in self._states.items():
            if state == GuildRecordingState.RECORDING:
                return guild_id
        return None

    async def leave(
        self, guild_id: str | None = None, session_id: str | None = None
    ) -> LeaveResult | None:
        """
        Stop recording a guild (any recording guild when omitted).

        Args:
            guild_id: Guild to stop recording
            session_id: Only leave while this session is the guild's current one

        Returns:
            LeaveResult, or None when nothing was being recorded
        """
        async with self._registry_lock:
            if guild_id is None:
                guild_id = self._pick_recording_guild()
            if guild_id is None or self.get_state(guild_id) != GuildRecordingState.RECORDING:
                return None
            active = self.sessions[guild_id]
            if session_id is not None and active.session_id != session_id:
                return None
            self._states[guild_id] = GuildRecordingState.ENDING

        logging_service = self.services.logging_service
        try:
            try:
                await active.transport.destroy()
            except Exception as e:
                await logging_service.error(
                    f"Failed to close voice transport for guild {guild_id}: {e}"
                )

            await self.services.speaker_stream_service_manager.drain(
                active.session_id, VoiceCaptureConstants.LEAVE_DRAIN_TIMEOUT_SECONDS
            )

            totals = await self.services.sql_voice_service_manager.end_session(active.session_id)
        finally:
            async with self._registry_lock:
                self.sessions.pop(guild_id, None)
                self._states.pop(guild_id, None)

        result = LeaveResult(
            session_id=active.session_id,
            chunk_count=totals["total_chunks"],
            elapsed_seconds=active.elapsed_seconds(),
        )
        await logging_service.info(
            f"Recording session {result.session_id} ended: {result.chunk_count} chunks "
            f"in {result.elapsed_seconds}s"
        )
        return result

    async def auto_stop(self, guild_id: str) -> LeaveResult | None:
        """Leave and revoke the session's one-time grants."""
        result = await self.leave(guild_id)
        if result is None:
            return None

        revoked = await self.services.consent_service_manager.revoke_session_consents(
            result.session_id
        )
        await self.services.logging_service.info(
            f"Auto-stopped session {result.session_id} in empty channel, "
            f"revoked {revoked} one-time grants"
        )
        return result

    # -------------------------------------------------------------- #
    # Events
    # -------------------------------------------------------------- #

    async def handle_membership_change(self, guild_id: str) -> None:
        """Re-check a recorded channel after someone joined or left it."""
        active = self.sessions.get(guild_id)
        if active is None or self.get_state(guild_id) != GuildRecordingState.RECORDING:
            return

        humans = [member for member in active.transport.list_members() if not member.is_bot]
        if not humans:
            await self.auto_stop(guild_id)
            return

        for member in humans:
            if active.consent_state(member.user_id) == ConsentState.UNSET:
                await self.services.consent_service_manager.solicit(active, member)

    async def handle_transport_disconnect(self, guild_id: str) -> None:
        """Give a dropped connection a short window to come back, else leave."""
        active = self.sessions.get(guild_id)
        if active is None:
            return

        timeout = VoiceCaptureConstants.RECONNECT_TIMEOUT_SECONDS
        await self.services.logging_service.warning(
            f"Voice connection lost in guild {guild_id}, waiting {timeout}s to reconnect"
        )
        try:
            await asyncio.wait_for(active.transport.wait_until_reconnected(), timeout=timeout)
            await self.services.logging_service.info(
                f"Voice connection restored in guild {guild_id}"
            )
        except asyncio.TimeoutError:
            if active.transport.destroyed:
                return
            result = await self.leave(guild_id, session_id=active.session_id)
            if result:
                await self.services.logging_service.warning(
                    f"Voice connection in guild {guild_id} did not recover, "
                    f"ended session {result.session_id}"
                )

    # -------------------------------------------------------------- #
    # Status and Shutdown
    # -------------------------------------------------------------- #

    def status(self) -> list[SessionSnapshot]:
        return [
            active.snapshot()
            for guild_id, active in self.sessions.items()
            if self.get_state(guild_id) == GuildRecordingState.RECORDING
        ]

    async def shutdown(self) -> list[LeaveResult]:
        """Force-leave every recording guild."""
        results = []
        for guild_id in list(self.sessions):
            try:
                result = await self.leave(guild_id)
            except Exception as e:
                await self.services.logging_service.error(
                    f"Failed to end session in guild {guild_id} during shutdown: {e}"
                )
                continue
            if result:
                results.append(result)
        return results
