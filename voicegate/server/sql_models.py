import enum

from sqlalchemy import Boolean, Column, DateTime, Enum, Float, ForeignKey, Integer, String, Text
from sqlalchemy.orm import declarative_base

from voicegate.utils import VOICE_UUID_LENGTH

# -------------------------------------------------------------- #
# SQL Database Data Models
# -------------------------------------------------------------- #

Base = declarative_base()


def _enum_values(enum_class: type[enum.Enum]) -> list[str]:
    return [member.value for member in enum_class]


class SessionStatus(enum.Enum):
    RECORDING = "recording"
    ENDED = "ended"


class ChunkStatus(enum.Enum):
    SAVED = "saved"
    SYNCED = "synced"
    TRANSCRIBING = "transcribing"
    TRANSCRIBED = "transcribed"
    ERROR = "error"


class ConsentType(enum.Enum):
    ONE_TIME = "one_time"
    PERMANENT = "permanent"


# -------------------------------------------------------------- #
# Models
# -------------------------------------------------------------- #


class VoiceSessionModel(Base):
    """
    ID = Session ID
    Guild ID = Discord Guild (Server) ID
    Channel ID = Discord Voice Channel ID
    Channel Name = Voice channel name at join time
    Started At = Timestamp when the bot joined
    Ended At = Timestamp when the session ended (NULL while recording)
    Status = recording or ended
    Total Chunks = Number of persisted chunks
    Total Transcribed = Number of chunks with status transcribed
    """

    __tablename__ = "voice_sessions"

    id = Column(String(VOICE_UUID_LENGTH), primary_key=True, index=True)
    guild_id = Column(String(20), nullable=False, index=True)
    channel_id = Column(String(20), nullable=False)
    channel_name = Column(String(100), nullable=True)
    started_at = Column(DateTime, nullable=False)
    ended_at = Column(DateTime, nullable=True)
    status = Column(
        Enum(SessionStatus, name="voice_session_status_enum", values_callable=_enum_values),
        nullable=False,
        default=SessionStatus.RECORDING,
    )
    total_chunks = Column(Integer, nullable=False, default=0)
    total_transcribed = Column(Integer, nullable=False, default=0)


class VoiceChunkModel(Base):
    """
    ID = Chunk ID
    Session ID = Foreign Key to the owning voice session
    Speaker ID / Name / Display Name = Discord user who spoke
        (display name is NULL when it equals the username)
    Filename = Path relative to the recordings root: <session_id>/<file>.ogg
    Duration in ms = Probed duration of the final artifact
    File Size Bytes = Size of the final artifact
    Status = saved -> synced -> transcribing -> transcribed | error
    Created At = Timestamp when the chunk row was written
    """

    __tablename__ = "voice_chunks"

    id = Column(String(VOICE_UUID_LENGTH), primary_key=True, index=True)
    session_id = Column(
        String(VOICE_UUID_LENGTH), ForeignKey("voice_sessions.id"), nullable=False, index=True
    )
    speaker_id = Column(String(20), nullable=False, index=True)
    speaker_name = Column(String(100), nullable=True)
    speaker_display_name = Column(String(100), nullable=True)
    filename = Column(String(255), nullable=False, unique=True)
    duration_ms = Column(Integer, nullable=True)
    file_size_bytes = Column(Integer, nullable=True)
    status = Column(
        Enum(ChunkStatus, name="voice_chunk_status_enum", values_callable=_enum_values),
        nullable=False,
        default=ChunkStatus.SAVED,
    )
    created_at = Column(DateTime, nullable=False)


class VoiceTranscriptionModel(Base):
    """
    ID = Transcription ID
    Chunk ID = Foreign Key to the transcribed chunk (one transcription per chunk)
    Text = Transcribed text
    Language = Language code reported by the worker
    Confidence = Worker confidence, if reported
    Model = Name of the transcription model
    Processing Time ms = Time the worker spent on the chunk
    Transcribed At = Timestamp when the transcription was written
    """

    __tablename__ = "voice_transcriptions"

    id = Column(String(VOICE_UUID_LENGTH), primary_key=True, index=True)
    chunk_id = Column(
        String(VOICE_UUID_LENGTH), ForeignKey("voice_chunks.id"), nullable=False, unique=True
    )
    text = Column(Text, nullable=False)
    language = Column(String(10), nullable=True, default="cs")
    confidence = Column(Float, nullable=True)
    model = Column(String(50), nullable=True)
    processing_time_ms = Column(Integer, nullable=True)
    transcribed_at = Column(DateTime, nullable=False)


class UserConsentModel(Base):
    """
    ID = Consent grant ID
    User ID / Name = Discord user the grant belongs to
    Consent Type = one_time (scoped to a session) or permanent (scoped to a guild)
    Guild ID = Guild the grant applies to
    Channel ID / Session ID = Only set for one_time grants
    Is Active = False once revoked; rows are never deleted
    Created At = Timestamp when consent was given
    Revoked At = Timestamp when the grant was deactivated
    """

    __tablename__ = "user_consents"

    id = Column(String(VOICE_UUID_LENGTH), primary_key=True, index=True)
    user_id = Column(String(20), nullable=False, index=True)
    user_name = Column(String(100), nullable=True)
    consent_type = Column(
        Enum(ConsentType, name="user_consent_type_enum", values_callable=_enum_values),
        nullable=False,
    )
    guild_id = Column(String(20), nullable=True)
    channel_id = Column(String(20), nullable=True)
    session_id = Column(String(VOICE_UUID_LENGTH), nullable=True, index=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, nullable=False)
    revoked_at = Column(DateTime, nullable=True)


class BotConfigModel(Base):
    """
    Key = Config key (voice_command, voice_command_result, voice_command_at)
    Value = Config value
    Updated At = Timestamp of the last write
    """

    __tablename__ = "bot_config"

    key = Column(String(64), primary_key=True)
    value = Column(Text, nullable=True)
    updated_at = Column(DateTime, nullable=True)
