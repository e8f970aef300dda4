"""Unit tests for the timestamp codec and filename helpers."""

from datetime import datetime, timedelta, timezone

import pytest

from chronicle.constants import FilesystemConstants
from chronicle.errors import TimestampParseError
from chronicle.utils import (
    TimestampMode,
    build_clip_filename,
    decode_timestamp,
    encode_timestamp,
    extract_speaker_from_filename,
    list_session_clips,
    sanitize_display_name,
    validate_session_id,
)

# -------------------------------------------------------------- #
# Timestamp Codec
# -------------------------------------------------------------- #


@pytest.mark.unit
class TestTimestampCodec:
    """Encoding and decoding of folder and clip timestamps."""

    def test_file_mode_format(self):
        time = datetime(2025, 7, 30, 15, 45, 30, 123000, tzinfo=timezone.utc)
        assert encode_timestamp(time, TimestampMode.FILE) == "2025-07-30T15:45:30.123Z"

    def test_folder_mode_format(self):
        time = datetime(2025, 7, 30, 15, 45, 30, 123000, tzinfo=timezone.utc)
        assert encode_timestamp(time, TimestampMode.FOLDER) == "2025-07-30_15-45-30-123"

    def test_sub_millisecond_precision_is_truncated(self):
        time = datetime(2025, 7, 30, 15, 45, 30, 123999, tzinfo=timezone.utc)
        assert encode_timestamp(time, TimestampMode.FILE) == "2025-07-30T15:45:30.123Z"

    def test_naive_datetime_is_treated_as_utc(self):
        naive = datetime(2025, 1, 2, 3, 4, 5, 6000)
        assert encode_timestamp(naive, TimestampMode.FILE) == "2025-01-02T03:04:05.006Z"

    def test_aware_datetime_is_converted_to_utc(self):
        plus_two = timezone(timedelta(hours=2))
        time = datetime(2025, 7, 30, 17, 0, 0, tzinfo=plus_two)
        assert encode_timestamp(time, TimestampMode.FILE) == "2025-07-30T15:00:00.000Z"

    def test_round_trip_at_millisecond_precision(self):
        time = datetime(2024, 2, 29, 23, 59, 59, 999000, tzinfo=timezone.utc)
        decoded = decode_timestamp(f"{encode_timestamp(time, TimestampMode.FILE)}_alice.ogg")
        assert decoded == time
        assert decoded.tzinfo is not None

    def test_decode_reads_prefix_of_clip_filename(self):
        decoded = decode_timestamp("2025-07-30T15:45:30.123Z_bob.ogg")
        assert decoded == datetime(2025, 7, 30, 15, 45, 30, 123000, tzinfo=timezone.utc)

    @pytest.mark.parametrize(
        "text",
        [
            "",
            "alice.ogg",
            "2025-13-45T25:70:70.999Z_alice.ogg",
            "alice_2025-07-30T15:45:30.123Z.ogg",
            "2025-07-30_15-45-30-123",
            "2025-07-30T15:45:30Z_alice.ogg",
            "2025-02-30T10:00:00.000Z_alice.ogg",
        ],
    )
    def test_decode_rejects_invalid_text(self, text):
        with pytest.raises(TimestampParseError):
            decode_timestamp(text)

    def test_parse_error_is_a_value_error(self):
        with pytest.raises(ValueError):
            decode_timestamp("not-a-clip.ogg")


# -------------------------------------------------------------- #
# Filename Helpers
# -------------------------------------------------------------- #


@pytest.mark.unit
class TestFilenameHelpers:
    """Display name sanitizing and clip filename parsing."""

    def test_sanitize_keeps_safe_characters(self):
        assert sanitize_display_name("Alice_Smith-99") == "Alice_Smith-99"

    def test_sanitize_replaces_each_unsafe_character(self):
        assert sanitize_display_name("a.b c/d") == "a_b_c_d"

    def test_sanitize_replaces_non_ascii(self):
        assert sanitize_display_name("Zoë") == "Zo_"

    def test_sanitize_astral_character_uses_two_underscores(self):
        assert sanitize_display_name("hi🎙") == "hi__"

    def test_sanitize_is_idempotent(self):
        once = sanitize_display_name("Dr. Who? 🎙 (guest)")
        assert sanitize_display_name(once) == once

    def test_build_clip_filename(self):
        start = datetime(2025, 7, 30, 15, 45, 30, 123000, tzinfo=timezone.utc)
        assert build_clip_filename(start, "Bob Ross") == "2025-07-30T15:45:30.123Z_Bob_Ross.ogg"

    def test_extract_speaker(self):
        assert extract_speaker_from_filename("2025-07-30T15:45:30.123Z_Bob_Ross.ogg") == "Bob_Ross"

    def test_extract_speaker_falls_back_for_unrecognized_names(self):
        assert (
            extract_speaker_from_filename("recording.ogg") == FilesystemConstants.UNKNOWN_SPEAKER
        )

    def test_list_session_clips_skips_mixed_and_other_files(self, tmp_path):
        for name in (
            "2025-07-30T15:45:31.000Z_b.ogg",
            "2025-07-30T15:45:30.000Z_a.ogg",
            "mixed_timeline.ogg",
            "transcript.md",
        ):
            (tmp_path / name).write_bytes(b"x")

        assert list_session_clips(str(tmp_path)) == [
            "2025-07-30T15:45:30.000Z_a.ogg",
            "2025-07-30T15:45:31.000Z_b.ogg",
        ]

    def test_list_session_clips_missing_folder(self, tmp_path):
        assert list_session_clips(str(tmp_path / "missing")) == []


@pytest.mark.unit
class TestValidateSessionId:
    def test_valid_folder_name(self):
        assert validate_session_id("2025-07-30_15-45-30-123") == "2025-07-30_15-45-30-123"

    def test_strips_whitespace(self):
        assert validate_session_id("  abc_123  ") == "abc_123"

    @pytest.mark.parametrize("session_id", [None, "", "   ", "../etc", "a/b", "a b", "x" * 101])
    def test_rejects_unsafe_ids(self, session_id):
        assert validate_session_id(session_id) is None
