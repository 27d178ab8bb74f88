"""Errors raised by the voice capture services to their direct callers."""


class VoiceGateError(Exception):
    """Base class for voicegate errors."""


class AlreadyRecordingError(VoiceGateError):
    """A guild already has an active recording session."""

    def __init__(self, guild_id: str):
        super().__init__(f"Guild {guild_id} is already being recorded")
        self.guild_id = guild_id


class VoiceConnectTimeoutError(VoiceGateError):
    """The voice connection did not become ready in time."""

    def __init__(self, channel_id: str, timeout: float):
        super().__init__(f"Voice connection to channel {channel_id} not ready after {timeout}s")
        self.channel_id = channel_id
        self.timeout = timeout


class ChannelNotFoundError(VoiceGateError):
    """The requested channel does not exist or is not a voice channel."""

    def __init__(self, channel_id: str):
        super().__init__(f"Voice channel {channel_id} not found")
        self.channel_id = channel_id


class TranscodeError(VoiceGateError):
    """FFmpeg or ffprobe failed for a chunk."""
