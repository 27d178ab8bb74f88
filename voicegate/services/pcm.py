# -------------------------------------------------------------- #
# PCM Helpers
# -------------------------------------------------------------- #
#
# py-cord hands the sink decoded Opus as signed 16-bit little-endian
# PCM at 48 kHz, stereo. These helpers convert between byte counts and
# durations for that layout, and build synthetic audio for tests.
#

import math
import struct


def _bytes_per_ms(sample_rate: int, bits_per_sample: int, channels: int) -> float:
    return sample_rate * (bits_per_sample // 8) * channels / 1000


def calculate_pcm_duration_ms(
    num_bytes: int,
    sample_rate: int = 48000,
    bits_per_sample: int = 16,
    channels: int = 2,
) -> int:
    """
    Calculate the duration in milliseconds for a given number of PCM bytes.

    Example:
        >>> calculate_pcm_duration_ms(192000)  # 1 second of Discord PCM
        1000
    """
    return int(num_bytes / _bytes_per_ms(sample_rate, bits_per_sample, channels))


def calculate_pcm_bytes(
    duration_ms: int,
    sample_rate: int = 48000,
    bits_per_sample: int = 16,
    channels: int = 2,
) -> int:
    """
    Calculate the number of PCM bytes for a given duration.

    Example:
        >>> calculate_pcm_bytes(100)  # smallest burst worth keeping
        19200
    """
    return int(duration_ms * _bytes_per_ms(sample_rate, bits_per_sample, channels))


class SinePCM:
    """
    Generate a 16-bit signed sine tone, interleaved across channels.
    Defaults: 440 Hz at 48 kHz stereo, a third of full scale.
    """

    def __init__(
        self,
        frequency_hz: float = 440.0,
        sample_rate: int = 48000,
        channels: int = 2,
        amplitude: float = 0.33,
    ):
        if not 0.0 <= amplitude <= 1.0:
            raise ValueError("amplitude must be between 0.0 and 1.0")
        self.frequency_hz = frequency_hz
        self.sample_rate = sample_rate
        self.channels = channels
        self.amplitude = amplitude

    def generate(self, ms: int) -> bytes:
        """Return `ms` milliseconds of tone."""
        num_samples = int(self.sample_rate * ms / 1000)
        peak = int(32767 * self.amplitude)
        frames = bytearray()
        for i in range(num_samples):
            value = int(peak * math.sin(2 * math.pi * self.frequency_hz * i / self.sample_rate))
            frames += struct.pack("<h", value) * self.channels
        return bytes(frames)

    def frames(self, ms: int, frame_ms: int = 20) -> list[bytes]:
        """Split `ms` milliseconds of tone into packets of `frame_ms` each."""
        data = self.generate(ms)
        frame_bytes = calculate_pcm_bytes(frame_ms, self.sample_rate, 16, self.channels)
        return [data[i : i + frame_bytes] for i in range(0, len(data), frame_bytes)]
