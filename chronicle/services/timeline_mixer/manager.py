import asyncio
import contextlib
import os
import shutil
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING

from chronicle.constants import FilesystemConstants
from chronicle.errors import MixError, NoInputError, TimestampParseError
from chronicle.services.manager import BaseTimelineMixerService
from chronicle.utils import decode_timestamp, list_session_clips

if TYPE_CHECKING:
    from chronicle.context import Context

# -------------------------------------------------------------- #
# Timeline Helpers
# -------------------------------------------------------------- #


@dataclass
class ClipTimelineEntry:
    """A clip placed on the session timeline."""

    filename: str
    filepath: str
    timestamp: datetime
    offset_ms: int


def build_clip_timeline(
    folder_path: str, filenames: list[str]
) -> tuple[list[ClipTimelineEntry], list[TimestampParseError]]:
    """
    Place clips on a timeline relative to the earliest one.

    Offsets are always recomputed from the filenames, never cached.

    Args:
        folder_path: Session folder holding the clips
        filenames: Clip filenames to place

    Returns:
        Tuple of (entries sorted by start time, errors for unparseable names)
    """
    parsed: list[tuple[str, datetime]] = []
    errors: list[TimestampParseError] = []
    for filename in filenames:
        try:
            parsed.append((filename, decode_timestamp(filename)))
        except TimestampParseError as e:
            errors.append(e)

    if not parsed:
        return [], errors

    parsed.sort(key=lambda item: item[1])
    earliest = parsed[0][1]

    entries = [
        ClipTimelineEntry(
            filename=filename,
            filepath=os.path.join(folder_path, filename),
            timestamp=timestamp,
            offset_ms=int((timestamp - earliest).total_seconds() * 1000),
        )
        for filename, timestamp in parsed
    ]
    return entries, errors


def build_mix_filter(entries: list[ClipTimelineEntry]) -> str:
    """
    Build the ffmpeg filter graph that delays each clip to its offset and sums them.

    Example for two clips, the second 1.5s late:
        `[1]adelay=1500|1500[delayed1];[0][delayed1]amix=inputs=2:duration=longest:normalize=0`
    """
    delays = []
    labels = []
    for index, entry in enumerate(entries):
        if entry.offset_ms > 0:
            delays.append(f"[{index}]adelay={entry.offset_ms}|{entry.offset_ms}[delayed{index}];")
            labels.append(f"[delayed{index}]")
        else:
            labels.append(f"[{index}]")

    return (
        "".join(delays)
        + "".join(labels)
        + f"amix=inputs={len(entries)}:duration=longest:normalize=0"
    )


# -------------------------------------------------------------- #
# Timeline Mixer Service
# -------------------------------------------------------------- #


class TimelineMixerService(BaseTimelineMixerService):
    """Mixes a session's per-speaker clips into one time-aligned Ogg file."""

    def __init__(self, context: "Context"):
        super().__init__(context)

    async def on_start(self, services) -> None:
        await super().on_start(services)
        await self.services.logging_service.info("TimelineMixerService initialized")

    async def mix_session_folder(self, folder_path: str) -> str:
        """
        Mix every clip in a session folder into `mixed_timeline.ogg`.

        A single clip is copied verbatim. Output is written to a temporary
        name and renamed on success, so a failed mix never leaves a partial
        `mixed_timeline.ogg` behind.

        Returns:
            Path of the mixed file

        Raises:
            NoInputError: If the folder holds no usable clips
            MixError: If ffmpeg or the copy fails
        """
        filenames = list_session_clips(folder_path)
        if not filenames:
            raise NoInputError(f"No OGG files found to mix in {folder_path}")

        output_path = os.path.join(folder_path, FilesystemConstants.MIXED_FILENAME)
        partial_path = output_path + FilesystemConstants.PARTIAL_SUFFIX

        if len(filenames) == 1:
            await self._copy_single_clip(os.path.join(folder_path, filenames[0]), partial_path)
        else:
            entries, errors = build_clip_timeline(folder_path, filenames)
            for error in errors:
                await self.services.logging_service.warning(f"Skipping clip in mix: {error}")

            if not entries:
                raise NoInputError(f"No clips with valid timestamps to mix in {folder_path}")

            if len(entries) == 1:
                await self._copy_single_clip(entries[0].filepath, partial_path)
            else:
                await self._mix_entries(entries, partial_path)

        os.replace(partial_path, output_path)
        await self.services.logging_service.info(f"Mixed timeline written: {output_path}")
        return output_path

    # -------------------------------------------------------------- #
    # Private Methods
    # -------------------------------------------------------------- #

    async def _copy_single_clip(self, source_path: str, partial_path: str) -> None:
        await self.services.logging_service.info(
            f"Single clip in session, copying {os.path.basename(source_path)}"
        )
        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(None, shutil.copyfile, source_path, partial_path)
        except OSError as e:
            self._discard(partial_path)
            raise MixError(f"Could not copy {source_path}: {e}") from e

    async def _mix_entries(self, entries: list[ClipTimelineEntry], partial_path: str) -> None:
        for entry in entries:
            await self.services.logging_service.debug(
                f"  {entry.filename} at +{entry.offset_ms}ms"
            )

        try:
            await self.services.ffmpeg_service_manager.mix_to_ogg(
                [entry.filepath for entry in entries],
                build_mix_filter(entries),
                partial_path,
            )
        except Exception as e:
            self._discard(partial_path)
            raise MixError(f"Mixing {len(entries)} clips failed: {e}") from e

    @staticmethod
    def _discard(path: str) -> None:
        with contextlib.suppress(FileNotFoundError):
            os.remove(path)
