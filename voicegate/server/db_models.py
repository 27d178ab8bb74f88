from pydantic import BaseModel, Field, field_validator

from voicegate.server.sql_models import (
    BotConfigModel,
    UserConsentModel,
    VoiceChunkModel,
    VoiceSessionModel,
    VoiceTranscriptionModel,
)

# -------------------------------------------------------------- #
# SQL DB Models
# -------------------------------------------------------------- #

# creation order matters for foreign keys
SQL_DATABASE_MODELS = [
    VoiceSessionModel,
    VoiceChunkModel,
    VoiceTranscriptionModel,
    UserConsentModel,
    BotConfigModel,
]


# -------------------------------------------------------------- #
# Pydantic Models for bot_config JSON Values
# -------------------------------------------------------------- #


class CommandResult(BaseModel):
    """
    Result of a relayed voice command, stored as JSON under voice_command_result.
    Failed commands carry only success=False and an error message.
    """

    success: bool
    error: str | None = None

    def to_json(self) -> str:
        return self.model_dump_json(exclude_none=True)


class JoinCommandResult(CommandResult):
    """{success, session_id, channel_name}"""

    success: bool = True
    session_id: str
    channel_name: str | None = None


class LeaveCommandResult(CommandResult):
    """{success, session_id, chunks, duration} where duration is in seconds."""

    success: bool = True
    session_id: str
    chunks: int = Field(ge=0)
    duration: int = Field(ge=0)


class SessionSnapshot(BaseModel):
    """Point-in-time view of one active recording session."""

    session_id: str
    guild_id: str
    channel_id: str
    chunk_count: int
    elapsed_seconds: int

    @field_validator("chunk_count", "elapsed_seconds")
    def validate_non_negative(cls, v: int) -> int:
        if v < 0:
            raise ValueError("Counters cannot be negative")
        return v


class StatusCommandResult(CommandResult):
    """{success, sessions: [snapshot, ...]}"""

    success: bool = True
    sessions: list[SessionSnapshot] = Field(default_factory=list)
