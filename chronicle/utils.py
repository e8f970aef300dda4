import os
import re
from datetime import datetime, timezone
from enum import Enum

from chronicle.constants import FilesystemConstants
from chronicle.errors import TimestampParseError

# -------------------------------------------------------------- #
# Constants
# -------------------------------------------------------------- #


# ISO-8601 UTC with milliseconds, anchored at the start of a clip filename
FILE_TIMESTAMP_PATTERN = re.compile(r"^(\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}\.\d{3}Z)")

# <timestamp>_<speaker>.ogg
CLIP_FILENAME_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}\.\d{3}Z_(.+)\.ogg$")

SESSION_ID_PATTERN = re.compile(r"^[a-zA-Z0-9_-]+$")
UNSAFE_FILENAME_CHAR = re.compile(r"[^a-zA-Z0-9_-]")


class TimestampMode(Enum):
    """Textual layouts for session and clip timestamps."""

    FOLDER = "folder"  # 2025-07-30_15-45-30-123
    FILE = "file"  # 2025-07-30T15:45:30.123Z


# -------------------------------------------------------------- #
# Timestamp Codec
# -------------------------------------------------------------- #


def utc_now() -> datetime:
    """Get the current UTC time."""
    return datetime.now(timezone.utc)


def encode_timestamp(time: datetime, mode: TimestampMode) -> str:
    """
    Render a datetime in one of the two on-disk layouts.

    Naive datetimes are taken to be UTC. Precision below a millisecond is
    dropped, never rounded.

    Args:
        time: The instant to encode
        mode: FOLDER for session directories, FILE for clip filenames

    Returns:
        The encoded timestamp string
    """
    if time.tzinfo is None:
        time = time.replace(tzinfo=timezone.utc)
    else:
        time = time.astimezone(timezone.utc)

    millis = time.microsecond // 1000
    date_part = f"{time.year:04d}-{time.month:02d}-{time.day:02d}"

    if mode == TimestampMode.FOLDER:
        return f"{date_part}_{time.hour:02d}-{time.minute:02d}-{time.second:02d}-{millis:03d}"
    return f"{date_part}T{time.hour:02d}:{time.minute:02d}:{time.second:02d}.{millis:03d}Z"


def decode_timestamp(text: str) -> datetime:
    """
    Parse the FILE-mode timestamp at the start of a clip filename.

    Args:
        text: A clip filename, or any string starting with a FILE timestamp

    Returns:
        Timezone-aware UTC datetime

    Raises:
        TimestampParseError: If the prefix is missing or is not a real calendar instant
    """
    match = FILE_TIMESTAMP_PATTERN.match(text)
    if not match:
        raise TimestampParseError(text)

    try:
        parsed = datetime.strptime(match.group(1), "%Y-%m-%dT%H:%M:%S.%fZ")
    except ValueError as e:
        raise TimestampParseError(text) from e

    return parsed.replace(tzinfo=timezone.utc)


# -------------------------------------------------------------- #
# Filename Helpers
# -------------------------------------------------------------- #


def _replace_unsafe_char(match: re.Match) -> str:
    # astral characters count as two UTF-16 units in names already on disk
    return "__" if ord(match.group(0)) > 0xFFFF else "_"


def sanitize_display_name(name: str) -> str:
    """Replace every character outside [A-Za-z0-9_-] with an underscore."""
    return UNSAFE_FILENAME_CHAR.sub(_replace_unsafe_char, name)


def build_clip_filename(start_time: datetime, label: str) -> str:
    """Build `<FILE timestamp>_<sanitized label>.ogg` for a clip."""
    return (
        f"{encode_timestamp(start_time, TimestampMode.FILE)}_"
        f"{sanitize_display_name(label)}{FilesystemConstants.CLIP_EXTENSION}"
    )


def extract_speaker_from_filename(filename: str) -> str:
    """Get the speaker label from a clip filename, or `Unknown_Speaker`."""
    match = CLIP_FILENAME_PATTERN.match(filename)
    return match.group(1) if match else FilesystemConstants.UNKNOWN_SPEAKER


def is_clip_filename(filename: str) -> bool:
    """Check if a file in a session folder is a speaker clip."""
    return filename.endswith(FilesystemConstants.CLIP_EXTENSION) and not filename.startswith(
        FilesystemConstants.MIXED_PREFIX
    )


def list_session_clips(folder_path: str) -> list[str]:
    """
    List the clip filenames of a session folder, sorted by name.

    Mixed output files are never treated as clips.
    """
    if not os.path.isdir(folder_path):
        return []
    return sorted(name for name in os.listdir(folder_path) if is_clip_filename(name))


def validate_session_id(session_id: str | None) -> str | None:
    """
    Validate a user supplied session id (a session folder name).

    Returns:
        The stripped id, or None if it is empty, too long or not path-safe
    """
    if not session_id:
        return None

    session_id = session_id.strip()
    if not session_id or len(session_id) > FilesystemConstants.MAX_SESSION_ID_LENGTH:
        return None
    if not SESSION_ID_PATTERN.match(session_id):
        return None
    return session_id
