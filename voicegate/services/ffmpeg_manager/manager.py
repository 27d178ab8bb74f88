import asyncio
import subprocess
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from voicegate.context import Context

from voicegate.services.constants import VoiceCaptureConstants
from voicegate.services.manager import BaseFFmpegServiceManager

# -------------------------------------------------------------- #
# FFmpeg Handler
# -------------------------------------------------------------- #


class FFmpegHandler:
    """Runs ffmpeg and ffprobe in the default executor so the event loop never blocks."""

    def __init__(self, ffmpeg_path: str, ffprobe_path: str):
        self.ffmpeg_path = ffmpeg_path
        self.ffprobe_path = ffprobe_path

    async def _run(self, cmd: list[str], timeout: float) -> subprocess.CompletedProcess:
        loop = asyncio.get_event_loop()
        return await asyncio.wait_for(
            loop.run_in_executor(
                None,
                lambda: subprocess.run(cmd, capture_output=True, timeout=timeout, text=True),
            ),
            timeout=timeout + 5.0,  # slightly longer than the subprocess timeout
        )

    # -------------------------------------------------------------- #
    # FFmpeg Management Methods
    # -------------------------------------------------------------- #

    async def validate_ffmpeg(self) -> bool:
        """Validate that FFmpeg is installed and accessible."""
        try:
            result = await self._run([self.ffmpeg_path, "-version"], timeout=5)
            return result.returncode == 0
        except (OSError, subprocess.TimeoutExpired, asyncio.TimeoutError):
            return False

    # -------------------------------------------------------------- #
    # Media Conversion Methods
    # -------------------------------------------------------------- #

    def build_transcode_command(self, input_path: str, output_path: str) -> list[str]:
        """
        Build the ffmpeg command for one raw capture.

        Raw input is Discord PCM (s16le, 48 kHz, stereo); the output is
        loudness-normalized, 16 kHz mono Opus in an Ogg container.
        """
        # Format options MUST come BEFORE -i for raw input
        return [
            self.ffmpeg_path,
            "-y",
            "-f",
            "s16le",
            "-ar",
            str(VoiceCaptureConstants.DISCORD_SAMPLE_RATE),
            "-ac",
            str(VoiceCaptureConstants.DISCORD_CHANNELS),
            "-i",
            input_path,
            "-af",
            VoiceCaptureConstants.LOUDNORM_FILTER,
            "-ar",
            str(VoiceCaptureConstants.TARGET_SAMPLE_RATE),
            "-ac",
            str(VoiceCaptureConstants.TARGET_CHANNELS),
            "-c:a",
            VoiceCaptureConstants.TARGET_CODEC,
            "-b:a",
            VoiceCaptureConstants.TARGET_BITRATE,
            output_path,
        ]

    async def transcode_pcm_chunk(self, input_path: str, output_path: str) -> tuple[bool, str, str]:
        """
        Transcode a raw PCM capture into the final chunk format.

        Args:
            input_path: Path to the raw PCM file
            output_path: Path to the final .ogg file

        Returns:
            Tuple of (success: bool, stdout: str, stderr: str)
        """
        cmd = self.build_transcode_command(input_path, output_path)
        try:
            result = await self._run(cmd, timeout=VoiceCaptureConstants.TRANSCODE_TIMEOUT_SECONDS)
            return result.returncode == 0, result.stdout, result.stderr
        except (subprocess.TimeoutExpired, asyncio.TimeoutError):
            return False, "", "FFmpeg process timed out"
        except OSError as e:
            return False, "", str(e)

    async def probe_duration_ms(self, path: str) -> int | None:
        """
        Read an audio file's duration with ffprobe.

        Returns:
            Duration in milliseconds, or None if ffprobe failed
        """
        cmd = [
            self.ffprobe_path,
            "-v",
            "quiet",
            "-show_entries",
            "format=duration",
            "-of",
            "csv=p=0",
            path,
        ]
        try:
            result = await self._run(cmd, timeout=VoiceCaptureConstants.PROBE_TIMEOUT_SECONDS)
        except (OSError, subprocess.TimeoutExpired, asyncio.TimeoutError):
            return None

        if result.returncode != 0:
            return None
        try:
            return round(float(result.stdout.strip()) * 1000)
        except ValueError:
            return None


# -------------------------------------------------------------- #
# FFmpeg Manager Service
# -------------------------------------------------------------- #


class FFmpegManagerService(BaseFFmpegServiceManager):
    """Bounded-concurrency front for chunk transcodes and duration probes."""

    def __init__(
        self,
        context: "Context",
        ffmpeg_path: str | None = None,
        ffprobe_path: str | None = None,
        max_concurrent_jobs: int = VoiceCaptureConstants.MAX_CONCURRENT_TRANSCODES,
    ):
        super().__init__(context)

        self.ffmpeg_path = ffmpeg_path or "ffmpeg"
        self.ffprobe_path = ffprobe_path or "ffprobe"
        self.handler = FFmpegHandler(self.ffmpeg_path, self.ffprobe_path)

        self.max_concurrent_jobs = max_concurrent_jobs
        self._job_slots = asyncio.Semaphore(max_concurrent_jobs)
        self._active_jobs = 0
        self._idle = asyncio.Event()
        self._idle.set()

    # -------------------------------------------------------------- #
    # Manager Methods
    # -------------------------------------------------------------- #

    async def on_start(self, services):
        await super().on_start(services)

        if await self.handler.validate_ffmpeg():
            await self.services.logging_service.info(
                f"FFmpegManagerService initialized ({self.ffmpeg_path}, "
                f"{self.max_concurrent_jobs} concurrent jobs)"
            )
        else:
            await self.services.logging_service.warning(
                f"FFmpeg not found at '{self.ffmpeg_path}' - every chunk will fail to transcode"
            )
        return True

    async def on_close(self):
        """Wait for running transcodes to finish."""
        await self._idle.wait()
        await self.services.logging_service.info("FFmpegManagerService closed")
        return True

    # -------------------------------------------------------------- #
    # FFmpeg Methods
    # -------------------------------------------------------------- #

    def get_ffmpeg_path(self) -> str:
        return self.ffmpeg_path

    @property
    def active_jobs(self) -> int:
        return self._active_jobs

    async def transcode_chunk(self, input_path: str, output_path: str) -> tuple[bool, str, str]:
        async with self._job_slots:
            self._active_jobs += 1
            self._idle.clear()
            try:
                return await self.handler.transcode_pcm_chunk(input_path, output_path)
            finally:
                self._active_jobs -= 1
                if self._active_jobs == 0:
                    self._idle.set()

    async def probe_duration_ms(self, path: str) -> int | None:
        return await self.handler.probe_duration_ms(path)
