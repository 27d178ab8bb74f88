from __future__ import annotations

from typing import TYPE_CHECKING

from sqlalchemy.exc import SQLAlchemyError

if TYPE_CHECKING:
    from voicegate.context import Context
    from voicegate.services.recording_file_manager.manager import ChunkPaths
    from voicegate.services.voice_session_manager.manager import ActiveSession
    from voicegate.services.voice_transport.base import SpeakerInfo

from voicegate.exceptions import TranscodeError
from voicegate.services.constants import VoiceCaptureConstants
from voicegate.services.manager import Manager

# -------------------------------------------------------------- #
# Chunk Processor Service
# -------------------------------------------------------------- #


class ChunkProcessorService(Manager):
    """
    Turns a finished raw capture into a persisted chunk.

    raw PCM -> ffmpeg (loudnorm, 16 kHz mono, opus) -> ffprobe duration
    -> duration floor -> voice_chunks row. Every failure ends in cleanup
    and a log line; nothing is raised to the capture task.
    """

    def __init__(self, context: "Context"):
        super().__init__(context)

    # -------------------------------------------------------------- #
    # Manager Methods
    # -------------------------------------------------------------- #

    async def on_start(self, services):
        await super().on_start(services)
        await self.services.logging_service.info("ChunkProcessorService initialized")
        return True

    async def on_close(self):
        await self.services.logging_service.info("ChunkProcessorService closed")
        return True

    # -------------------------------------------------------------- #
    # Processing
    # -------------------------------------------------------------- #

    async def _transcode_and_probe(self, paths: ChunkPaths) -> tuple[int, int]:
        ffmpeg = self.services.ffmpeg_service_manager
        files = self.services.recording_file_service_manager

        success, _stdout, stderr = await ffmpeg.transcode_chunk(paths.raw_path, paths.final_path)
        if not success:
            raise TranscodeError(f"ffmpeg failed for {paths.raw_path}: {stderr.strip()[-500:]}")

        file_size = await files.get_file_size(paths.final_path)

        duration_ms = await ffmpeg.probe_duration_ms(paths.final_path)
        if duration_ms is None:
            raise TranscodeError(f"ffprobe could not read {paths.final_path}")

        return duration_ms, file_size

    async def process(
        self, paths: ChunkPaths, speaker: SpeakerInfo, active: ActiveSession
    ) -> str | None:
        """
        Process one raw capture.

        Args:
            paths: Raw and final artifact paths for the burst
            speaker: Who spoke
            active: The session the burst belongs to

        Returns:
            chunk_id of the persisted chunk, or None when it was discarded
        """
        files = self.services.recording_file_service_manager
        logging_service = self.services.logging_service

        try:
            duration_ms, file_size = await self._transcode_and_probe(paths)
        except (TranscodeError, OSError) as e:
            await logging_service.error(f"Chunk processing failed for {speaker.user_id}: {e}")
            await files.delete_file(paths.final_path)
            return None
        finally:
            await files.delete_file(paths.raw_path)

        if duration_ms < VoiceCaptureConstants.MIN_FINAL_DURATION_MS:
            await logging_service.debug(
                f"Discarding {duration_ms}ms chunk from {speaker.user_id} in session "
                f"{active.session_id}"
            )
            await files.delete_file(paths.final_path)
            return None

        try:
            chunk_id = await self.services.sql_voice_service_manager.insert_chunk(
                session_id=active.session_id,
                speaker_id=speaker.user_id,
                speaker_name=speaker.user_name,
                speaker_display_name=speaker.stored_display_name,
                filename=paths.relative_filename,
                duration_ms=duration_ms,
                file_size_bytes=file_size,
            )
        except (SQLAlchemyError, ValueError) as e:
            await logging_service.error(
                f"Failed to persist chunk {paths.relative_filename} for session "
                f"{active.session_id}: {e}"
            )
            await files.delete_file(paths.final_path)
            return None

        active.chunk_count += 1
        await logging_service.info(
            f"Saved chunk {chunk_id} ({duration_ms}ms, {file_size} bytes) from "
            f"{speaker.user_name} in session {active.session_id}"
        )
        return chunk_id
