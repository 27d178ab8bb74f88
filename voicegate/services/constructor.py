import os
import platform
from typing import TYPE_CHECKING

from dotenv import load_dotenv

if TYPE_CHECKING:
    from voicegate.context import Context
    from voicegate.services.consent_manager.manager import ConsentClassifier
    from voicegate.services.manager import BaseVoiceGatewayServiceManager

from voicegate.constructor import ServerManagerType
from voicegate.services.chunk_processor.manager import ChunkProcessorService
from voicegate.services.command_relay_manager.manager import (
    CommandRelayManagerService,
    SQLCommandRelayManagerService,
)
from voicegate.services.consent_manager.manager import ConsentManagerService
from voicegate.services.consent_sql_manager.manager import SQLConsentManagerService
from voicegate.services.constants import VoiceCaptureConstants
from voicegate.services.ffmpeg_manager.manager import FFmpegManagerService
from voicegate.services.logger import AsyncLoggingService
from voicegate.services.manager import ServicesManager
from voicegate.services.recording_file_manager.manager import RecordingFileManagerService
from voicegate.services.speaker_stream_manager.manager import SpeakerStreamManagerService
from voicegate.services.voice_session_manager.manager import VoiceSessionManagerService
from voicegate.services.voice_sql_manager.manager import SQLVoiceManagerService

load_dotenv(dotenv_path=".env.local")


def resolve_binary_path(name: str) -> str | None:
    """
    Pick the ffmpeg / ffprobe binary for this platform.

    WINDOWS_<NAME>_PATH or MAC_<NAME>_PATH win, then <NAME>_PATH; None
    means "use whatever is on PATH".
    """
    if platform.system().lower().startswith("win") or os.name == "nt":
        platform_env = os.getenv(f"WINDOWS_{name}_PATH")
    else:
        platform_env = os.getenv(f"MAC_{name}_PATH")
    return platform_env or os.getenv(f"{name}_PATH")


# -------------------------------------------------------------- #
# Constructor for Dynamic Creation of Services Manager
# -------------------------------------------------------------- #


def construct_services_manager(
    service_type: ServerManagerType,
    context: "Context",
    recording_storage_path: str,
    default_logging_path: str = "logs",
    log_file: str | None = None,
    use_timestamp_logs: bool = True,
    voice_gateway: "BaseVoiceGatewayServiceManager | None" = None,
    command_relay_polling: bool = True,
    consent_classifier: "ConsentClassifier | None" = None,
) -> ServicesManager:
    """Construct and return a services manager for the given environment.

    Args:
        service_type: DEVELOPMENT, PRODUCTION or TESTING
        context: Context instance containing server and services
        recording_storage_path: Root directory for chunk files
        default_logging_path: Directory to store log files (default: "logs")
        log_file: Specific log file name (optional, overrides use_timestamp_logs)
        use_timestamp_logs: If True and log_file is None, creates timestamped log files
        voice_gateway: Voice gateway to use instead of the py-cord one (tests pass a fake)
        command_relay_polling: Start the relay poll loop on startup
        consent_classifier: Replaces the keyword classifier for DM replies
    """
    if not isinstance(service_type, ServerManagerType):
        raise ValueError(f"Unsupported service type: {service_type}")

    logging_service = AsyncLoggingService(
        context=context,
        log_dir=default_logging_path,
        log_file=log_file,
        use_timestamp=use_timestamp_logs,
        console_output=service_type != ServerManagerType.TESTING,
    )

    # -------------------------------------------------------------- #
    # Files and Media
    # -------------------------------------------------------------- #

    recording_file_service_manager = RecordingFileManagerService(
        context=context, recording_storage_path=recording_storage_path
    )
    ffmpeg_service_manager = FFmpegManagerService(
        context=context,
        ffmpeg_path=resolve_binary_path("FFMPEG"),
        ffprobe_path=resolve_binary_path("FFPROBE"),
    )

    # -------------------------------------------------------------- #
    # DB Interfaces
    # -------------------------------------------------------------- #

    sql_voice_service_manager = SQLVoiceManagerService(context=context)
    sql_consent_service_manager = SQLConsentManagerService(context=context)
    sql_command_relay_service_manager = SQLCommandRelayManagerService(context=context)

    # -------------------------------------------------------------- #
    # Voice Gateway
    # -------------------------------------------------------------- #

    if voice_gateway is None:
        from voicegate.services.voice_transport.manager import PycordVoiceGatewayService

        voice_gateway = PycordVoiceGatewayService(context=context)

    # -------------------------------------------------------------- #
    # Capture Pipeline and Control Plane
    # -------------------------------------------------------------- #

    consent_service_manager = ConsentManagerService(
        context=context, classifier=consent_classifier
    )
    chunk_processor_service = ChunkProcessorService(context=context)
    speaker_stream_service_manager = SpeakerStreamManagerService(context=context)
    voice_session_service_manager = VoiceSessionManagerService(context=context)
    command_relay_service_manager = CommandRelayManagerService(
        context=context,
        poll_interval=VoiceCaptureConstants.COMMAND_POLL_INTERVAL_SECONDS,
        start_polling=command_relay_polling,
    )

    return ServicesManager(
        context=context,
        logging_service=logging_service,
        recording_file_service_manager=recording_file_service_manager,
        ffmpeg_service_manager=ffmpeg_service_manager,
        sql_voice_service_manager=sql_voice_service_manager,
        sql_consent_service_manager=sql_consent_service_manager,
        voice_gateway_service_manager=voice_gateway,
        consent_service_manager=consent_service_manager,
        chunk_processor_service=chunk_processor_service,
        speaker_stream_service_manager=speaker_stream_service_manager,
        voice_session_service_manager=voice_session_service_manager,
        sql_command_relay_service_manager=sql_command_relay_service_manager,
        command_relay_service_manager=command_relay_service_manager,
    )
