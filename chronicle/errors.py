"""Exceptions raised across the recording and post-processing pipeline."""


class ChronicleError(Exception):
    """Base class for all recorder errors."""


# -------------------------------------------------------------- #
# Capture
# -------------------------------------------------------------- #


class VoiceConnectionError(ChronicleError):
    """The bot could not join, or stay in, a voice channel."""


class SessionAlreadyActiveError(ChronicleError):
    """A recording session already exists for the channel."""

    def __init__(self, channel_id: int):
        super().__init__(f"A recording session is already active for channel {channel_id}")
        self.channel_id = channel_id


class FFmpegError(ChronicleError):
    """The ffmpeg subprocess failed to start or exited with an error."""


# -------------------------------------------------------------- #
# Input Validation
# -------------------------------------------------------------- #


class TimestampParseError(ChronicleError, ValueError):
    """A clip filename does not start with a valid ISO timestamp."""

    def __init__(self, text: str):
        super().__init__(f"Could not parse timestamp from filename: {text}")
        self.text = text


class NoInputError(ChronicleError):
    """A session folder holds no clips to process."""


# -------------------------------------------------------------- #
# Post-processing
# -------------------------------------------------------------- #


class MixError(ChronicleError):
    """Mixing the session clips into a single timeline failed."""


class TranscribeError(ChronicleError):
    """No transcribable speech was found in a session."""


class TranscriptionAPIError(ChronicleError):
    """The speech-to-text endpoint rejected a request."""

    def __init__(self, status: int, body: str):
        super().__init__(f"Transcription API error ({status}): {body}")
        self.status = status
        self.body = body


class SummarizationError(ChronicleError):
    """The summarization model returned nothing usable."""
