"""Unit tests for transcript segments: rebasing, filtering, merging and rendering."""

import math
from datetime import datetime, timezone

import pytest

from chronicle.services.transcription.segments import (
    TranscriptionSegment,
    format_duration,
    format_offset,
    is_transcribable,
    merge_consecutive_segments,
    render_transcript_markdown,
    segment_from_response,
)


def make_segment(speaker="alice", text="hello", start=0.0, end=1.0, confidence=0.9, no_speech=0.1):
    return TranscriptionSegment(
        speaker=speaker,
        text=text,
        start_time=start,
        end_time=end,
        confidence=confidence,
        no_speech_prob=no_speech,
    )


@pytest.mark.unit
class TestSegmentFromResponse:
    def test_rebases_onto_session_timeline(self):
        raw = {"text": " hi there ", "start": 0.5, "end": 2.0, "avg_logprob": 0.0}
        segment = segment_from_response(raw, "bob", offset_seconds=10.0)

        assert segment.speaker == "bob"
        assert segment.text == "hi there"
        assert segment.start_time == pytest.approx(10.5)
        assert segment.end_time == pytest.approx(12.0)

    def test_confidence_is_exp_of_avg_logprob(self):
        raw = {"text": "x", "start": 0, "end": 1, "avg_logprob": -0.25, "no_speech_prob": 0.2}
        segment = segment_from_response(raw, "bob", offset_seconds=0.0)

        assert segment.confidence == pytest.approx(math.exp(-0.25))
        assert segment.no_speech_prob == pytest.approx(0.2)

    def test_missing_fields_default(self):
        segment = segment_from_response({}, "bob", offset_seconds=3.0)

        assert segment.text == ""
        assert segment.start_time == 3.0
        assert segment.confidence == 1.0


@pytest.mark.unit
class TestIsTranscribable:
    def test_keeps_ordinary_speech(self):
        assert is_transcribable(make_segment())

    def test_drops_high_no_speech_probability(self):
        assert not is_transcribable(make_segment(no_speech=0.8), max_no_speech_prob=0.5)

    def test_cutoff_itself_is_kept(self):
        assert is_transcribable(make_segment(no_speech=0.5), max_no_speech_prob=0.5)

    @pytest.mark.parametrize("text", ["", "   ", "...", "?!"])
    def test_drops_text_without_words(self, text):
        assert not is_transcribable(make_segment(text=text))

    def test_drops_near_zero_duration(self):
        assert not is_transcribable(make_segment(start=1.0, end=1.05), min_duration=0.1)


# -------------------------------------------------------------- #
# Merge
# -------------------------------------------------------------- #


@pytest.mark.unit
class TestMergeConsecutiveSegments:
    def test_pairwise_sequential_confidence(self):
        segments = [
            make_segment(text=f"s{i}", start=i, end=i + 1, confidence=confidence)
            for i, confidence in enumerate([0.9, 0.8, 0.7, 0.95])
        ]

        merged = merge_consecutive_segments(segments)

        assert len(merged) == 1
        assert merged[0].confidence == pytest.approx(0.8625)
        assert merged[0].confidence != pytest.approx(0.8375)

    def test_merged_span_and_text(self):
        merged = merge_consecutive_segments(
            [
                make_segment(text="hello", start=1.0, end=2.0, no_speech=0.2),
                make_segment(text="world", start=2.5, end=4.0, no_speech=0.4),
            ]
        )

        assert merged[0].text == "hello world"
        assert merged[0].start_time == 1.0
        assert merged[0].end_time == 4.0
        assert merged[0].no_speech_prob == pytest.approx(0.3)

    def test_alternating_speakers_are_not_merged(self):
        segments = [
            make_segment(speaker=speaker, start=i, end=i + 1)
            for i, speaker in enumerate(["a", "b", "a", "b"])
        ]
        assert len(merge_consecutive_segments(segments)) == 4

    def test_only_adjacent_runs_merge(self):
        segments = [
            make_segment(speaker=speaker, text=speaker + str(i), start=i, end=i + 1)
            for i, speaker in enumerate(["a", "a", "b", "a"])
        ]

        merged = merge_consecutive_segments(segments)

        assert [segment.speaker for segment in merged] == ["a", "b", "a"]
        assert merged[0].text == "a0 a1"

    def test_empty_and_single(self):
        assert merge_consecutive_segments([]) == []

        single = make_segment()
        merged = merge_consecutive_segments([single])
        assert merged == [single]
        assert merged[0] is not single

    def test_input_is_not_mutated(self):
        first = make_segment(text="one", confidence=0.9)
        second = make_segment(text="two", start=1.0, end=2.0, confidence=0.5)

        merge_consecutive_segments([first, second])

        assert first.text == "one"
        assert first.confidence == 0.9
        assert first.end_time == 1.0


# -------------------------------------------------------------- #
# Rendering
# -------------------------------------------------------------- #


@pytest.mark.unit
class TestRenderTranscript:
    def test_format_helpers(self):
        assert format_offset(0) == "00:00"
        assert format_offset(75.9) == "01:15"
        assert format_offset(-3) == "00:00"
        assert format_duration(125) == "2m 5s"

    def test_document_layout(self):
        document = render_transcript_markdown(
            [
                make_segment(speaker="alice", text="hi", start=5.0, end=6.0, confidence=0.91),
                make_segment(speaker="bob", text="hey", start=65.0, end=66.0, confidence=0.5),
            ],
            session_id="2025-07-30_15-45-30-123",
            session_start=datetime(2025, 7, 30, 15, 45, 30, 123000, tzinfo=timezone.utc),
            duration_seconds=130,
            model="whisper-large-v3-turbo",
            max_no_speech_prob=0.5,
        )

        assert document.startswith("# Recording Transcript")
        assert "**Session:** 2025-07-30_15-45-30-123" in document
        assert "**Started:** 2025-07-30T15:45:30.123Z" in document
        assert "**Duration:** 2m 10s" in document
        assert "**Segments:** 2" in document
        assert "**[00:05] alice (91% confidence):** hi" in document
        assert "**[01:05] bob (50% confidence):** hey" in document
        assert "*Transcript generated automatically using whisper-large-v3-turbo*" in document
        assert ">50% no-speech probability" in document
        assert document.index("alice") < document.index("bob")
