import math
import re
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any

from chronicle.constants import TranscriptionConstants
from chronicle.utils import TimestampMode, encode_timestamp

WORD_CHARACTER = re.compile(r"\w")

# -------------------------------------------------------------- #
# Transcription Segment
# -------------------------------------------------------------- #


@dataclass
class TranscriptionSegment:
    """A span of recognized speech, timed from the session start in seconds."""

    speaker: str
    text: str
    start_time: float
    end_time: float
    confidence: float
    no_speech_prob: float

    @property
    def duration(self) -> float:
        return self.end_time - self.start_time


def segment_from_response(
    raw: dict[str, Any], speaker: str, offset_seconds: float
) -> TranscriptionSegment:
    """
    Build a segment from one verbose JSON entry, shifted onto the session timeline.

    Confidence is `exp(avg_logprob)`, mapping the model's mean token
    log-probability into (0, 1].
    """
    return TranscriptionSegment(
        speaker=speaker,
        text=(raw.get("text") or "").strip(),
        start_time=float(raw.get("start", 0.0)) + offset_seconds,
        end_time=float(raw.get("end", 0.0)) + offset_seconds,
        confidence=math.exp(float(raw.get("avg_logprob", 0.0))),
        no_speech_prob=float(raw.get("no_speech_prob", 0.0)),
    )


def is_transcribable(
    segment: TranscriptionSegment,
    max_no_speech_prob: float = TranscriptionConstants.MAX_NO_SPEECH_PROB,
    min_duration: float = TranscriptionConstants.MIN_SEGMENT_DURATION_SECONDS,
) -> bool:
    """Check if a segment is likely real speech rather than noise or a hallucination."""
    if segment.no_speech_prob > max_no_speech_prob:
        return False
    if not WORD_CHARACTER.search(segment.text):
        return False
    return segment.duration >= min_duration


# -------------------------------------------------------------- #
# Merging
# -------------------------------------------------------------- #


def merge_consecutive_segments(segments: list[TranscriptionSegment]) -> list[TranscriptionSegment]:
    """
    Merge runs of consecutive segments from the same speaker.

    Confidence and no-speech probability are averaged pairwise as each
    segment is folded in, so for a run A, B, C the confidence is
    ((A + B) / 2 + C) / 2. The input list and its segments are left untouched.

    Args:
        segments: Segments sorted by start time

    Returns:
        New list of merged segments
    """
    merged: list[TranscriptionSegment] = []

    for segment in segments:
        if merged and merged[-1].speaker == segment.speaker:
            current = merged[-1]
            merged[-1] = replace(
                current,
                text=f"{current.text} {segment.text}",
                end_time=segment.end_time,
                confidence=(current.confidence + segment.confidence) / 2,
                no_speech_prob=(current.no_speech_prob + segment.no_speech_prob) / 2,
            )
        else:
            merged.append(replace(segment))

    return merged


# -------------------------------------------------------------- #
# Rendering
# -------------------------------------------------------------- #


def format_offset(seconds: float) -> str:
    """Format seconds from the session start as `mm:ss`."""
    total = max(0, int(seconds))
    return f"{total // 60:02d}:{total % 60:02d}"


def format_duration(seconds: float) -> str:
    total = max(0, int(seconds))
    return f"{total // 60}m {total % 60}s"


def render_transcript_markdown(
    segments: list[TranscriptionSegment],
    session_id: str,
    session_start: datetime,
    duration_seconds: float,
    model: str,
    max_no_speech_prob: float = TranscriptionConstants.MAX_NO_SPEECH_PROB,
) -> str:
    """Render merged segments as the session's transcript document."""
    lines = [
        "# Recording Transcript",
        "",
        f"**Session:** {session_id}",
        f"**Started:** {encode_timestamp(session_start, TimestampMode.FILE)}",
        f"**Duration:** {format_duration(duration_seconds)}",
        f"**Segments:** {len(segments)}",
        "",
        "---",
        "",
        "## Transcript",
        "",
    ]

    for segment in segments:
        lines.append(
            f"**[{format_offset(segment.start_time)}] {segment.speaker} "
            f"({round(segment.confidence * 100)}% confidence):** {segment.text}"
        )
        lines.append("")

    lines.extend(
        [
            "---",
            "",
            f"*Transcript generated automatically using {model}*",
            f"*Segments with >{round(max_no_speech_prob * 100)}% no-speech probability "
            "were filtered out*",
            "",
        ]
    )
    return "\n".join(lines)
