from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from voicegate.context import Context
    from voicegate.services.voice_transport.base import VoiceChannelInfo, VoiceTransport


# -------------------------------------------------------------- #
# Services Manager Class
# -------------------------------------------------------------- #


class ServicesManager:
    """Manager for handling multiple service instances."""

    def __init__(
        self,
        context: Context,
        logging_service: BaseAsyncLoggingService,
        recording_file_service_manager: BaseRecordingFileServiceManager,
        ffmpeg_service_manager: BaseFFmpegServiceManager,
        sql_voice_service_manager: Any,
        sql_consent_service_manager: Any,
        voice_gateway_service_manager: BaseVoiceGatewayServiceManager,
        consent_service_manager: Any,
        chunk_processor_service: Any,
        speaker_stream_service_manager: Any,
        voice_session_service_manager: Any,
        sql_command_relay_service_manager: Any | None = None,
        command_relay_service_manager: Any | None = None,
    ):
        self.context = context
        self.server = context.server_manager

        self.logging_service = logging_service

        # files and media
        self.recording_file_service_manager = recording_file_service_manager
        self.ffmpeg_service_manager = ffmpeg_service_manager

        # DB interfaces
        self.sql_voice_service_manager = sql_voice_service_manager
        self.sql_consent_service_manager = sql_consent_service_manager
        self.sql_command_relay_service_manager = sql_command_relay_service_manager

        # Voice transport (py-cord in production, fakes in tests)
        self.voice_gateway_service_manager = voice_gateway_service_manager

        # Capture pipeline
        self.consent_service_manager = consent_service_manager
        self.chunk_processor_service = chunk_processor_service
        self.speaker_stream_service_manager = speaker_stream_service_manager
        self.voice_session_service_manager = voice_session_service_manager

        # Control plane
        self.command_relay_service_manager = command_relay_service_manager

    async def initialize_all(self) -> None:
        """Initialize all service managers."""

        # Logging
        await self.logging_service.on_start(self)

        # Files and media
        await self.recording_file_service_manager.on_start(self)
        await self.ffmpeg_service_manager.on_start(self)

        # DB interfaces
        await self.sql_voice_service_manager.on_start(self)
        await self.sql_consent_service_manager.on_start(self)
        if self.sql_command_relay_service_manager:
            await self.sql_command_relay_service_manager.on_start(self)

        # Voice transport
        await self.voice_gateway_service_manager.on_start(self)

        # Capture pipeline
        await self.consent_service_manager.on_start(self)
        await self.chunk_processor_service.on_start(self)
        await self.speaker_stream_service_manager.on_start(self)
        await self.voice_session_service_manager.on_start(self)

        # Control plane last, so commands only arrive once everything is up
        if self.command_relay_service_manager:
            await self.command_relay_service_manager.on_start(self)

    async def shutdown_all(self, timeout: float = 60.0) -> None:
        """
        Gracefully shutdown all service managers.

        Phases:
        1. Stop taking relayed commands
        2. Leave every active voice session
        3. Cancel capture units that outlived their session
        4. Wait for running transcodes
        5. Close the remaining services and the database connections
        6. Flush logs

        Args:
            timeout: Maximum time in seconds to wait for services to shutdown (default: 60s)
        """
        await self.logging_service.info("=" * 60)
        await self.logging_service.info("Starting graceful shutdown of all services...")

        if self.context:
            self.context.mark_shutdown_started()
            await self.logging_service.info("✓ Shutdown flag set - no new sessions will start")

        try:
            # Phase 1: Stop relayed commands
            await self.logging_service.info("Phase 1: Stopping command relay...")
            if self.command_relay_service_manager:
                await asyncio.wait_for(
                    self.command_relay_service_manager.on_close(), timeout=timeout * 0.05
                )
                await self.logging_service.info("✓ Command relay stopped")

            # Phase 2: Force-leave every guild
            await self.logging_service.info("Phase 2: Ending active voice sessions...")
            await asyncio.wait_for(
                self.voice_session_service_manager.on_close(), timeout=timeout * 0.4
            )
            await self.logging_service.info("✓ All voice sessions ended")

            # Phase 3: Capture units
            await self.logging_service.info("Phase 3: Stopping speaker streams...")
            await asyncio.wait_for(
                self.speaker_stream_service_manager.on_close(), timeout=timeout * 0.1
            )
            await self.chunk_processor_service.on_close()
            await self.consent_service_manager.on_close()
            await self.logging_service.info("✓ Speaker streams stopped")

            # Phase 4: Transcodes
            await self.logging_service.info("Phase 4: Waiting for FFmpeg jobs...")
            await asyncio.wait_for(self.ffmpeg_service_manager.on_close(), timeout=timeout * 0.2)
            await self.logging_service.info("✓ FFmpeg jobs finished")

            # Phase 5: Remaining services and servers
            await self.logging_service.info("Phase 5: Closing services and servers...")
            await self.voice_gateway_service_manager.on_close()
            await self.recording_file_service_manager.on_close()
            await self.sql_voice_service_manager.on_close()
            await self.sql_consent_service_manager.on_close()
            if self.sql_command_relay_service_manager:
                await self.sql_command_relay_service_manager.on_close()
            if self.context and self.context.server_manager:
                await self.context.server_manager.disconnect_all()
            await self.logging_service.info("✓ Services closed and servers disconnected")

            await self.logging_service.info("✓ Graceful shutdown completed successfully")
            await self.logging_service.info("=" * 60)

        except asyncio.TimeoutError:
            await self.logging_service.error(
                f"⚠️  Shutdown timeout exceeded ({timeout}s) - forcing shutdown"
            )
        except Exception as e:
            await self.logging_service.error(f"⚠️  Error during shutdown: {e}")

        # Phase 6: Always flush and close logging
        try:
            await asyncio.wait_for(self.logging_service.on_close(), timeout=5.0)
        except asyncio.TimeoutError:
            pass  # don't wait forever for logging to flush


# -------------------------------------------------------------- #
# Base Service Manager Class
# -------------------------------------------------------------- #


class Manager(ABC):
    """Base class for all manager services."""

    def __init__(self, context: Context):
        self.context = context
        self.server = context.server_manager
        self.services = None

        # check if server has been initialized
        if self.server is not None and not self.server.is_initialized:
            raise RuntimeError(
                "ServerManager must be initialized before creating Manager instances."
            )

    # -------------------------------------------------------------- #
    # Manager Methods
    # -------------------------------------------------------------- #

    async def on_start(self, services: ServicesManager) -> None:
        """Actions to perform on manager start."""
        self.services = services

    async def on_close(self) -> None:
        """Actions to perform on manager close."""
        pass


# -------------------------------------------------------------- #
# Specialized Manager Classes
# -------------------------------------------------------------- #


class BaseAsyncLoggingService(Manager):
    """Specialized manager for asynchronous logging services."""

    def __init__(self, context):
        super().__init__(context)

    @abstractmethod
    async def log(self, message: str) -> None:
        """Log a message asynchronously."""
        pass

    @abstractmethod
    async def debug(self, message: str) -> None:
        """Log a debug message asynchronously."""
        pass

    @abstractmethod
    async def info(self, message: str) -> None:
        """Log an info message asynchronously."""
        pass

    @abstractmethod
    async def warning(self, message: str) -> None:
        """Log a warning message asynchronously."""
        pass

    @abstractmethod
    async def error(self, message: str) -> None:
        """Log an error message asynchronously."""
        pass

    @abstractmethod
    async def critical(self, message: str) -> None:
        """Log a critical message asynchronously."""
        pass


class BaseRecordingFileServiceManager(Manager):
    """Specialized manager for chunk file storage."""

    def __init__(self, context):
        super().__init__(context)

    @abstractmethod
    def get_storage_path(self) -> str:
        """Get the absolute recordings root."""
        pass

    @abstractmethod
    def get_session_dir(self, session_id: str) -> str:
        """Get the directory holding one session's chunks."""
        pass

    @abstractmethod
    async def delete_file(self, path: str) -> bool:
        """Delete a file if it exists."""
        pass

    @abstractmethod
    async def get_file_size(self, path: str) -> int:
        """Get the size of a file in bytes."""
        pass


class BaseFFmpegServiceManager(Manager):
    """Specialized manager for FFmpeg services."""

    def __init__(self, context):
        super().__init__(context)

    @abstractmethod
    def get_ffmpeg_path(self) -> str:
        """Get the FFmpeg executable path."""
        pass

    @abstractmethod
    async def transcode_chunk(self, input_path: str, output_path: str) -> tuple[bool, str, str]:
        """
        Normalize, resample and compress one raw PCM capture.

        Args:
            input_path: Path to the raw PCM file
            output_path: Path to the final audio file

        Returns:
            Tuple of (success, stdout, stderr)
        """
        pass

    @abstractmethod
    async def probe_duration_ms(self, path: str) -> int | None:
        """Probe the duration of an audio file, None when it cannot be read."""
        pass


class BaseVoiceGatewayServiceManager(Manager):
    """Specialized manager for the chat platform's voice gateway."""

    def __init__(self, context):
        super().__init__(context)

    @abstractmethod
    async def resolve_channel(self, channel_id: str) -> VoiceChannelInfo:
        """Look up a voice channel, raising ChannelNotFoundError when missing."""
        pass

    @abstractmethod
    async def connect(self, channel_id: str) -> VoiceTransport:
        """Open a voice connection and return once it is ready."""
        pass

    @abstractmethod
    async def teardown(self, guild_id: str) -> None:
        """Drop whatever voice connection exists for a guild."""
        pass

    @abstractmethod
    async def send_dm(self, user_id: str, message: str) -> bool:
        """Send a direct message, returning False when it could not be delivered."""
        pass
