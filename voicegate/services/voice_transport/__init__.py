"""Voice transport interface.

A transport hands the capture pipeline one SpeakerBurst per speaking burst;
the py-cord implementation lives in voicegate.services.voice_transport.manager.
"""

from voicegate.services.voice_transport.base import (
    BurstAbortedError,
    QueuedSpeakerBurst,
    SpeakerBurst,
    SpeakerInfo,
    VoiceChannelInfo,
    VoiceTransport,
)

__all__ = [
    "BurstAbortedError",
    "QueuedSpeakerBurst",
    "SpeakerBurst",
    "SpeakerInfo",
    "VoiceChannelInfo",
    "VoiceTransport",
]
