from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import case, func, insert, select, update

if TYPE_CHECKING:
    from voicegate.context import Context

from voicegate.server.sql_models import (
    ChunkStatus,
    SessionStatus,
    VoiceChunkModel,
    VoiceSessionModel,
    VoiceTranscriptionModel,
)
from voicegate.services.constants import VoiceCaptureConstants
from voicegate.services.manager import Manager
from voicegate.utils import VOICE_UUID_LENGTH, generate_16_char_uuid, get_current_timestamp


def _validate_id(value: str, field: str) -> None:
    if not value or len(value) != VOICE_UUID_LENGTH:
        raise ValueError(f"{field} must be {VOICE_UUID_LENGTH} characters long")


# -------------------------------------------------------------- #
# SQL Voice Manager Service
# -------------------------------------------------------------- #


class SQLVoiceManagerService(Manager):
    """Service for voice session, chunk and transcription rows."""

    def __init__(self, context: "Context"):
        super().__init__(context)

    # -------------------------------------------------------------- #
    # Manager Methods
    # -------------------------------------------------------------- #

    async def on_start(self, services):
        await super().on_start(services)
        await self.services.logging_service.info("SQLVoiceManagerService initialized")
        return True

    async def on_close(self):
        await self.services.logging_service.info("SQLVoiceManagerService closed")
        return True

    # -------------------------------------------------------------- #
    # Session Methods
    # -------------------------------------------------------------- #

    async def insert_session(
        self,
        guild_id: str,
        channel_id: str,
        channel_name: str | None = None,
        started_at: datetime | None = None,
    ) -> str:
        """
        Insert a new voice session in recording status.

        Args:
            guild_id: Discord Guild ID
            channel_id: Discord voice channel ID
            channel_name: Channel name at join time
            started_at: Join timestamp (defaults to now)

        Returns:
            session_id: The generated session ID
        """
        if not guild_id or not channel_id:
            raise ValueError("guild_id and channel_id are required")

        session_id = generate_16_char_uuid()
        stmt = insert(VoiceSessionModel).values(
            id=session_id,
            guild_id=guild_id,
            channel_id=channel_id,
            channel_name=channel_name,
            started_at=started_at or get_current_timestamp(),
            status=SessionStatus.RECORDING,
            total_chunks=0,
            total_transcribed=0,
        )
        await self.server.sql_client.execute(stmt)
        await self.services.logging_service.info(
            f"Inserted voice session {session_id} for guild {guild_id}, channel {channel_id}"
        )
        return session_id

    async def get_session(self, session_id: str) -> dict | None:
        """Get a voice session row by ID."""
        _validate_id(session_id, "session_id")

        stmt = select(VoiceSessionModel).where(VoiceSessionModel.id == session_id)
        rows = await self.server.sql_client.execute(stmt)
        return rows[0] if rows else None

    async def get_open_sessions(self, guild_id: str | None = None) -> list[dict]:
        """Get sessions that were never ended (ended_at IS NULL)."""
        stmt = select(VoiceSessionModel).where(VoiceSessionModel.ended_at.is_(None))
        if guild_id:
            stmt = stmt.where(VoiceSessionModel.guild_id == guild_id)
        return await self.server.sql_client.execute(stmt.order_by(VoiceSessionModel.started_at))

    async def end_session(self, session_id: str) -> dict[str, int]:
        """
        Mark a session ended, with final counters computed from its persisted chunks.

        Returns:
            {"total_chunks": int, "total_transcribed": int}
        """
        _validate_id(session_id, "session_id")

        counts_stmt = select(
            func.count(VoiceChunkModel.id).label("total_chunks"),
            func.sum(case((VoiceChunkModel.status == ChunkStatus.TRANSCRIBED, 1), else_=0)).label(
                "total_transcribed"
            ),
        ).where(VoiceChunkModel.session_id == session_id)
        rows = await self.server.sql_client.execute(counts_stmt)
        totals = {
            "total_chunks": int(rows[0]["total_chunks"] or 0) if rows else 0,
            "total_transcribed": int(rows[0]["total_transcribed"] or 0) if rows else 0,
        }

        stmt = (
            update(VoiceSessionModel)
            .where(VoiceSessionModel.id == session_id)
            .values(status=SessionStatus.ENDED, ended_at=get_current_timestamp(), **totals)
        )
        await self.server.sql_client.execute(stmt)
        await self.services.logging_service.info(
            f"Ended voice session {session_id}: {totals['total_chunks']} chunks, "
            f"{totals['total_transcribed']} transcribed"
        )
        return totals

    # -------------------------------------------------------------- #
    # Chunk Methods
    # -------------------------------------------------------------- #

    async def insert_chunk(
        self,
        session_id: str,
        speaker_id: str,
        speaker_name: str | None,
        speaker_display_name: str | None,
        filename: str,
        duration_ms: int,
        file_size_bytes: int,
    ) -> str:
        """
        Insert a saved chunk and bump the owning session's chunk counter.

        Returns:
            chunk_id: The generated chunk ID
        """
        _validate_id(session_id, "session_id")
        if not speaker_id:
            raise ValueError("speaker_id is required")
        if duration_ms < 0 or file_size_bytes < 0:
            raise ValueError("duration_ms and file_size_bytes cannot be negative")

        chunk_id = generate_16_char_uuid()
        stmt = insert(VoiceChunkModel).values(
            id=chunk_id,
            session_id=session_id,
            speaker_id=speaker_id,
            speaker_name=speaker_name,
            speaker_display_name=speaker_display_name,
            filename=filename,
            duration_ms=duration_ms,
            file_size_bytes=file_size_bytes,
            status=ChunkStatus.SAVED,
            created_at=get_current_timestamp(),
        )
        await self.server.sql_client.execute(stmt)

        counter_stmt = (
            update(VoiceSessionModel)
            .where(VoiceSessionModel.id == session_id)
            .values(total_chunks=VoiceSessionModel.total_chunks + 1)
        )
        await self.server.sql_client.execute(counter_stmt)
        return chunk_id

    async def get_chunks_for_session(
        self, session_id: str, status_filter: ChunkStatus | None = None
    ) -> list[dict]:
        """Get a session's chunks in insertion order."""
        _validate_id(session_id, "session_id")

        stmt = select(VoiceChunkModel).where(VoiceChunkModel.session_id == session_id)
        if status_filter is not None:
            stmt = stmt.where(VoiceChunkModel.status == status_filter)
        return await self.server.sql_client.execute(stmt.order_by(VoiceChunkModel.created_at))

    async def update_chunk_status(self, chunk_id: str, status: ChunkStatus) -> None:
        """Move a chunk to a new status (used by the transcription worker)."""
        _validate_id(chunk_id, "chunk_id")

        stmt = update(VoiceChunkModel).where(VoiceChunkModel.id == chunk_id).values(status=status)
        await self.server.sql_client.execute(stmt)

    # -------------------------------------------------------------- #
    # Transcription Methods
    # -------------------------------------------------------------- #

    async def insert_transcription(
        self,
        chunk_id: str,
        text: str,
        language: str | None = "cs",
        confidence: float | None = None,
        model: str | None = None,
        processing_time_ms: int | None = None,
    ) -> str:
        """Store a worker's transcription for a chunk and mark the chunk transcribed."""
        _validate_id(chunk_id, "chunk_id")

        transcription_id = generate_16_char_uuid()
        stmt = insert(VoiceTranscriptionModel).values(
            id=transcription_id,
            chunk_id=chunk_id,
            text=text,
            language=language,
            confidence=confidence,
            model=model,
            processing_time_ms=processing_time_ms,
            transcribed_at=get_current_timestamp(),
        )
        await self.server.sql_client.execute(stmt)
        await self.update_chunk_status(chunk_id, ChunkStatus.TRANSCRIBED)
        return transcription_id

    async def get_transcriptions(
        self,
        session_id: str | None = None,
        speaker_id: str | None = None,
        limit: int = VoiceCaptureConstants.TRANSCRIPTIONS_DEFAULT_LIMIT,
    ) -> list[dict]:
        """
        Read transcriptions joined with their chunk metadata, oldest first.

        Args:
            session_id: Only this session
            speaker_id: Only this speaker
            limit: Row cap, clamped to 1..500

        Returns:
            Rows with chunk, speaker and transcription fields
        """
        limit = max(1, min(int(limit), VoiceCaptureConstants.TRANSCRIPTIONS_MAX_LIMIT))

        stmt = select(
            VoiceTranscriptionModel.id,
            VoiceTranscriptionModel.chunk_id,
            VoiceTranscriptionModel.text,
            VoiceTranscriptionModel.language,
            VoiceTranscriptionModel.confidence,
            VoiceTranscriptionModel.model,
            VoiceTranscriptionModel.processing_time_ms,
            VoiceTranscriptionModel.transcribed_at,
            VoiceChunkModel.session_id,
            VoiceChunkModel.speaker_id,
            VoiceChunkModel.speaker_name,
            VoiceChunkModel.speaker_display_name,
            VoiceChunkModel.duration_ms,
            VoiceChunkModel.created_at,
        ).join(VoiceChunkModel, VoiceChunkModel.id == VoiceTranscriptionModel.chunk_id)

        if session_id:
            stmt = stmt.where(VoiceChunkModel.session_id == session_id)
        if speaker_id:
            stmt = stmt.where(VoiceChunkModel.speaker_id == speaker_id)

        stmt = stmt.order_by(VoiceChunkModel.created_at).limit(limit)
        return await self.server.sql_client.execute(stmt)
