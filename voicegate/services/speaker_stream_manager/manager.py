from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

import aiofiles

if TYPE_CHECKING:
    from voicegate.context import Context
    from voicegate.services.voice_session_manager.manager import ActiveSession

from voicegate.services.constants import VoiceCaptureConstants
from voicegate.services.manager import Manager
from voicegate.services.voice_transport.base import BurstAbortedError, SpeakerBurst
from voicegate.utils import get_current_timestamp

# -------------------------------------------------------------- #
# Speaker Stream Manager Service
# -------------------------------------------------------------- #


class SpeakerStreamManagerService(Manager):
    """
    Captures each speaking burst of a consented speaker in its own task.

    The speaking-start callback must never block, so handle_speaking_start
    only schedules work. Tasks are tracked per session so leave() can wait
    for the bursts that were cut short by the transport closing.
    """

    def __init__(self, context: "Context"):
        super().__init__(context)
        self._tasks: dict[str, set[asyncio.Task]] = {}

    # -------------------------------------------------------------- #
    # Manager Methods
    # -------------------------------------------------------------- #

    async def on_start(self, services):
        await super().on_start(services)
        await self.services.logging_service.info("SpeakerStreamManagerService initialized")
        return True

    async def on_close(self):
        remaining = [task for tasks in self._tasks.values() for task in tasks]
        for task in remaining:
            task.cancel()
        if remaining:
            await asyncio.gather(*remaining, return_exceptions=True)
            await self.services.logging_service.warning(
                f"SpeakerStreamManagerService cancelled {len(remaining)} unfinished captures"
            )
        self._tasks.clear()
        await self.services.logging_service.info("SpeakerStreamManagerService closed")
        return True

    # -------------------------------------------------------------- #
    # Burst Handling
    # -------------------------------------------------------------- #

    def pending_count(self, session_id: str) -> int:
        return len(self._tasks.get(session_id, ()))

    def handle_speaking_start(self, active: ActiveSession, burst: SpeakerBurst) -> None:
        """
        Speaking-start callback. Ignores the burst of a non-consented speaker,
        otherwise schedules its capture.
        """
        if not active.is_consented(burst.speaker.user_id):
            burst.ignore()
            return

        task = asyncio.create_task(self._capture_burst(active, burst))
        tasks = self._tasks.setdefault(active.session_id, set())
        tasks.add(task)
        task.add_done_callback(lambda t: self._forget_task(active.session_id, t))

    def _forget_task(self, session_id: str, task: asyncio.Task) -> None:
        tasks = self._tasks.get(session_id)
        if tasks is None:
            return
        tasks.discard(task)
        if not tasks:
            self._tasks.pop(session_id, None)

    async def drain(self, session_id: str, timeout: float) -> int:
        """
        Wait for a session's in-flight captures.

        Returns:
            Number of captures still running when the timeout expired
        """
        tasks = list(self._tasks.get(session_id, ()))
        if not tasks:
            return 0

        _done, pending = await asyncio.wait(tasks, timeout=timeout)
        if pending:
            await self.services.logging_service.warning(
                f"{len(pending)} captures still running for session {session_id} "
                f"after {timeout}s"
            )
        return len(pending)

    async def _capture_burst(self, active: ActiveSession, burst: SpeakerBurst) -> None:
        files = self.services.recording_file_service_manager
        logging_service = self.services.logging_service
        speaker = burst.speaker

        paths = files.build_chunk_paths(active.session_id, speaker, get_current_timestamp())
        total_bytes = 0
        frame_count = 0

        try:
            await files.ensure_session_dir(active.session_id)
            async with aiofiles.open(paths.raw_path, mode="wb") as f:
                async for frame in burst:
                    await f.write(frame)
                    total_bytes += len(frame)
                    frame_count += 1
                    if frame_count % VoiceCaptureConstants.FRAME_LOG_INTERVAL == 0:
                        await logging_service.debug(
                            f"Capturing {speaker.user_name}: {frame_count} frames, "
                            f"{total_bytes} bytes"
                        )
        except BurstAbortedError:
            await files.delete_file(paths.raw_path)
            return
        except asyncio.CancelledError:
            await files.delete_file(paths.raw_path)
            raise
        except Exception as e:
            await logging_service.error(
                f"Capture of {speaker.user_name} ({speaker.user_id}) failed in session "
                f"{active.session_id}: {e}"
            )
            await files.delete_file(paths.raw_path)
            return

        if total_bytes < VoiceCaptureConstants.MIN_RAW_BYTES:
            await logging_service.debug(
                f"Dropping {total_bytes}-byte capture from {speaker.user_name} (below "
                f"{VoiceCaptureConstants.MIN_RAW_DURATION_MS}ms)"
            )
            await files.delete_file(paths.raw_path)
            return

        try:
            await self.services.chunk_processor_service.process(paths, speaker, active)
        except Exception as e:
            await logging_service.error(f"Unexpected chunk processing error: {e}")
