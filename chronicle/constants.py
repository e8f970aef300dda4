# -------------------------------------------------------------- #
# Recorder Constants
# -------------------------------------------------------------- #


class RecorderConstants:
    # Discord voice is 48kHz, 16-bit signed little-endian, stereo
    SAMPLE_RATE = 48000
    CHANNELS = 2
    BITS_PER_SAMPLE = 16

    # One Opus packet from Discord decodes to 20ms of PCM
    FRAME_MS = 20
    BYTES_PER_MS = SAMPLE_RATE * (BITS_PER_SAMPLE // 8) * CHANNELS // 1000  # 192
    FRAME_BYTES = FRAME_MS * BYTES_PER_MS  # 3840

    # A speaker's clip ends after this much trailing silence
    SILENCE_DURATION_MS = 1000

    # Voice connection must become ready within this window
    CONNECTION_TIMEOUT_SECONDS = 30.0

    # Ogg container: at most 10 Opus packets (200ms) per page
    MAX_PACKETS_PER_PAGE = 10
    OGG_PAGE_DURATION_US = MAX_PACKETS_PER_PAGE * FRAME_MS * 1000
    OPUS_BITRATE = "64k"

    # Frames held for a speaker before a clip unit subscribes (5s)
    MAX_PENDING_FRAMES = 250

    # Post-processing waits at most this long for truncated clips to finish writing
    CLIP_SETTLE_TIMEOUT_SECONDS = 5.0


# -------------------------------------------------------------- #
# Filesystem Constants
# -------------------------------------------------------------- #


class FilesystemConstants:
    DEFAULT_RECORDINGS_PATH = "recordings"
    CLIP_EXTENSION = ".ogg"
    MIXED_PREFIX = "mixed_"
    MIXED_FILENAME = "mixed_timeline.ogg"
    TRANSCRIPT_FILENAME = "transcript.md"
    SUMMARY_FILENAME = "summary.md"
    PARTIAL_SUFFIX = ".partial"
    UNKNOWN_SPEAKER = "Unknown_Speaker"

    # Session ids are folder names; keep them short and path-safe
    MAX_SESSION_ID_LENGTH = 100


# -------------------------------------------------------------- #
# Mixer Constants
# -------------------------------------------------------------- #


class MixerConstants:
    OUTPUT_CODEC = "libopus"
    OUTPUT_CHANNELS = 2
    OUTPUT_SAMPLE_RATE = 48000
    MIX_TIMEOUT_SECONDS = 600


# -------------------------------------------------------------- #
# Transcription Constants
# -------------------------------------------------------------- #


class TranscriptionConstants:
    DEFAULT_ENDPOINT = "https://api.groq.com/openai/v1/audio/transcriptions"
    DEFAULT_MODEL = "whisper-large-v3-turbo"
    RESPONSE_FORMAT = "verbose_json"
    TEMPERATURE = 0

    # Hosted endpoints reject uploads above this size
    MAX_FILE_SIZE_BYTES = 25 * 1024 * 1024
    REQUEST_TIMEOUT_SECONDS = 300

    # Segment filters
    MAX_NO_SPEECH_PROB = 0.5
    MIN_SEGMENT_DURATION_SECONDS = 0.1


# -------------------------------------------------------------- #
# Summarization Constants
# -------------------------------------------------------------- #


class SummarizationConstants:
    DEFAULT_MODEL = "llama3.1"
    TEMPERATURE = 0.1
    DEFAULT_HOST = "localhost"
    DEFAULT_PORT = "11434"
