import os

from dotenv import load_dotenv

from voicegate.services.pcm import calculate_pcm_bytes

load_dotenv(dotenv_path=".env.local")

# -------------------------------------------------------------- #
# Configuration Constants
# -------------------------------------------------------------- #


class VoiceCaptureConstants:
    """Configuration constants for voice capture, consent and chunk processing."""

    # Audio format handed over by py-cord's Opus decoder
    DISCORD_SAMPLE_RATE = 48000  # 48 kHz
    DISCORD_BITS_PER_SAMPLE = 16  # 16-bit signed PCM
    DISCORD_CHANNELS = 2  # Stereo
    DISCORD_FRAME_MS = 20
    DISCORD_FRAME_BYTES = calculate_pcm_bytes(
        DISCORD_FRAME_MS, DISCORD_SAMPLE_RATE, DISCORD_BITS_PER_SAMPLE, DISCORD_CHANNELS
    )  # 3840 bytes

    # A burst ends after this much silence from one speaker
    SILENCE_GAP_MS = 300

    # Raw captures shorter than this are noise (clicks, breaths)
    MIN_RAW_DURATION_MS = 100
    MIN_RAW_BYTES = calculate_pcm_bytes(
        MIN_RAW_DURATION_MS, DISCORD_SAMPLE_RATE, DISCORD_BITS_PER_SAMPLE, DISCORD_CHANNELS
    )  # 19200 bytes

    # Final artifacts shorter than this are discarded after transcoding
    MIN_FINAL_DURATION_MS = 200

    # Transcoding target, tuned for speech recognition
    LOUDNORM_FILTER = "loudnorm=I=-16:TP=-1.5:LRA=11"
    TARGET_SAMPLE_RATE = 16000
    TARGET_CHANNELS = 1
    TARGET_CODEC = "libopus"
    TARGET_BITRATE = "32k"

    # Artifact naming
    RAW_SUFFIX = "_raw.pcm"
    FINAL_EXTENSION = ".ogg"

    # Subprocess limits
    TRANSCODE_TIMEOUT_SECONDS = 120
    PROBE_TIMEOUT_SECONDS = 15
    MAX_CONCURRENT_TRANSCODES = int(os.getenv("VOICE_MAX_CONCURRENT_TRANSCODES", "4"))

    # Session lifecycle
    CONNECT_TIMEOUT_SECONDS = 10.0
    RECONNECT_TIMEOUT_SECONDS = 5.0
    LEAVE_DRAIN_TIMEOUT_SECONDS = 15.0

    # Progress logging for long bursts
    FRAME_LOG_INTERVAL = 50

    # Command relay
    COMMAND_POLL_INTERVAL_SECONDS = float(os.getenv("VOICE_COMMAND_POLL_INTERVAL", "1.0"))
    COMMAND_RESULT_POLL_ATTEMPTS = 15

    # Transcription read path
    TRANSCRIPTIONS_DEFAULT_LIMIT = 100
    TRANSCRIPTIONS_MAX_LIMIT = 500
