from __future__ import annotations

import asyncio
import glob
import os
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from voicegate.context import Context
    from voicegate.services.voice_transport.base import SpeakerInfo

from voicegate.services.constants import VoiceCaptureConstants
from voicegate.services.manager import BaseRecordingFileServiceManager
from voicegate.utils import format_chunk_timestamp, sanitize_speaker_name


@dataclass(frozen=True)
class ChunkPaths:
    """Where one burst's intermediate and final artifacts live."""

    raw_path: str
    final_path: str
    relative_filename: str  # stored on the chunk row: <session_id>/<file>.ogg


# -------------------------------------------------------------- #
# Recording File Manager Service
# -------------------------------------------------------------- #


class RecordingFileManagerService(BaseRecordingFileServiceManager):
    """Service for laying out and cleaning up chunk files, one directory per session."""

    def __init__(self, context: Context, recording_storage_path: str):
        super().__init__(context)
        self.recording_storage_path = recording_storage_path

    # -------------------------------------------------------------- #
    # Manager Methods
    # -------------------------------------------------------------- #

    async def on_start(self, services):
        await super().on_start(services)

        loop = asyncio.get_event_loop()
        await loop.run_in_executor(
            None, lambda: os.makedirs(self.recording_storage_path, exist_ok=True)
        )

        removed = await self.cleanup_orphaned_raw_files()
        await self.services.logging_service.info(
            f"RecordingFileManagerService initialized with storage path: "
            f"{self.recording_storage_path} (removed {removed} orphaned raw files)"
        )
        return True

    async def on_close(self):
        removed = await self.cleanup_orphaned_raw_files()
        if removed:
            await self.services.logging_service.info(
                f"RecordingFileManagerService removed {removed} raw files on close"
            )
        return True

    # -------------------------------------------------------------- #
    # Path Methods
    # -------------------------------------------------------------- #

    def get_storage_path(self) -> str:
        """Get the absolute recordings root."""
        return os.path.abspath(self.recording_storage_path)

    def get_session_dir(self, session_id: str) -> str:
        """Get the absolute directory for one session."""
        return os.path.join(self.get_storage_path(), session_id)

    def resolve_relative_filename(self, relative_filename: str) -> str:
        """Turn a chunk row's filename back into an absolute path."""
        return os.path.join(self.get_storage_path(), relative_filename)

    def build_chunk_paths(
        self, session_id: str, speaker: SpeakerInfo, started_at: datetime
    ) -> ChunkPaths:
        """
        Build the artifact paths for one burst.

        The stem is <YYYY-MM-DD_HH-MM-SS-mmm>_<user id>_<sanitized name>.

        Args:
            session_id: Owning session
            speaker: Who is speaking
            started_at: When the burst started

        Returns:
            ChunkPaths with absolute raw and final paths
        """
        safe_name = sanitize_speaker_name(speaker.display_name or speaker.user_name)
        stem = f"{format_chunk_timestamp(started_at)}_{speaker.user_id}_{safe_name}"
        final_filename = f"{stem}{VoiceCaptureConstants.FINAL_EXTENSION}"

        session_dir = self.get_session_dir(session_id)
        return ChunkPaths(
            raw_path=os.path.join(session_dir, f"{stem}{VoiceCaptureConstants.RAW_SUFFIX}"),
            final_path=os.path.join(session_dir, final_filename),
            relative_filename=f"{session_id}/{final_filename}",
        )

    # -------------------------------------------------------------- #
    # File Operations
    # -------------------------------------------------------------- #

    async def ensure_session_dir(self, session_id: str) -> str:
        """Create the session directory if needed and return it."""
        session_dir = self.get_session_dir(session_id)
        loop = asyncio.get_event_loop()
        await loop.run_in_executor(None, lambda: os.makedirs(session_dir, exist_ok=True))
        return session_dir

    async def delete_file(self, path: str) -> bool:
        """Delete a file, returning False when it was already gone."""
        loop = asyncio.get_event_loop()
        try:
            await loop.run_in_executor(None, os.remove, path)
            return True
        except FileNotFoundError:
            return False
        except OSError as e:
            await self.services.logging_service.error(f"Failed to delete {path}: {e}")
            return False

    async def get_file_size(self, path: str) -> int:
        """Get the size of a file in bytes."""
        loop = asyncio.get_event_loop()
        return await loop.run_in_executor(None, os.path.getsize, path)

    async def file_exists(self, path: str) -> bool:
        """Check whether a file exists."""
        loop = asyncio.get_event_loop()
        return await loop.run_in_executor(None, os.path.isfile, path)

    async def cleanup_orphaned_raw_files(self) -> int:
        """Remove raw captures left behind by a crash. Returns how many were removed."""
        pattern = os.path.join(self.get_storage_path(), "*", f"*{VoiceCaptureConstants.RAW_SUFFIX}")
        loop = asyncio.get_event_loop()
        raw_files = await loop.run_in_executor(None, glob.glob, pattern)

        removed = 0
        for raw_file in raw_files:
            if await self.delete_file(raw_file):
                removed += 1
        return removed
