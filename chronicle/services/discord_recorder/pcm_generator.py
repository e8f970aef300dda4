from abc import ABC, abstractmethod

from chronicle.constants import RecorderConstants

# -------------------------------------------------------------- #
# PCM Utility Functions
# -------------------------------------------------------------- #


def calculate_pcm_duration_ms(num_bytes: int) -> int:
    """
    Calculate the duration in milliseconds of Discord PCM bytes.

    Example:
        >>> calculate_pcm_duration_ms(192000)  # 1 second of Discord PCM
        1000
    """
    return num_bytes // RecorderConstants.BYTES_PER_MS


def calculate_pcm_bytes(duration_ms: int) -> int:
    """
    Calculate the number of Discord PCM bytes for a duration.

    Example:
        >>> calculate_pcm_bytes(20)  # one Opus frame
        3840
    """
    return duration_ms * RecorderConstants.BYTES_PER_MS


def is_frame_aligned(num_bytes: int) -> bool:
    """Check if a byte count is a whole number of 20ms frames."""
    return num_bytes % RecorderConstants.FRAME_BYTES == 0


# -------------------------------------------------------------- #
# PCM Generator Base Class
# -------------------------------------------------------------- #


class PCMGenerator(ABC):
    """Base class for PCM audio data generators."""

    @abstractmethod
    def generate(self, ms: int) -> bytes:
        """Generate `ms` milliseconds of PCM audio data."""
        pass


class SilentPCM(PCMGenerator):
    """
    Generate silent PCM bytes.
    Defaults: 48 kHz, 16-bit signed, stereo, little-endian.
    """

    def __init__(
        self,
        sample_rate: int = RecorderConstants.SAMPLE_RATE,
        bits_per_sample: int = RecorderConstants.BITS_PER_SAMPLE,
        channels: int = RecorderConstants.CHANNELS,
    ):
        if bits_per_sample not in (16, 24, 32):
            raise ValueError("bits_per_sample must be 16, 24 or 32")
        self.sample_rate = sample_rate
        self.bits_per_sample = bits_per_sample
        self.channels = channels

    def generate(self, ms: int) -> bytes:
        # signed PCM silence is all zeros
        frames = round(self.sample_rate * (ms / 1000.0))
        return bytes(frames * self.channels * (self.bits_per_sample // 8))

    def generate_bytes(self, num_bytes: int) -> bytes:
        """Generate exactly `num_bytes` of silence."""
        return bytes(num_bytes)


# -------------------------------------------------------------- #
# Frame Aligner
# -------------------------------------------------------------- #


class FrameAligner:
    """
    Re-chunks an arbitrary PCM byte stream into whole 20ms frames.

    Bytes that do not complete a frame are carried to the next push. At the
    end of the stream `flush` pads the remainder with silence.
    """

    def __init__(self, frame_bytes: int = RecorderConstants.FRAME_BYTES):
        self.frame_bytes = frame_bytes
        self._remainder = bytearray()
        self._silence = SilentPCM()

    @property
    def pending_bytes(self) -> int:
        return len(self._remainder)

    def push(self, data: bytes) -> bytes:
        """Add bytes and return the frame-aligned prefix ready to encode."""
        self._remainder.extend(data)
        aligned_length = len(self._remainder) - (len(self._remainder) % self.frame_bytes)
        if aligned_length == 0:
            return b""

        aligned = bytes(self._remainder[:aligned_length])
        del self._remainder[:aligned_length]
        return aligned

    def flush(self) -> bytes:
        """Return the last partial frame padded with silence, or nothing."""
        if not self._remainder:
            return b""

        padding = self.frame_bytes - len(self._remainder)
        frame = bytes(self._remainder) + self._silence.generate_bytes(padding)
        self._remainder.clear()
        return frame
