import asyncio
import contextlib
import subprocess
from typing import TYPE_CHECKING

from chronicle.constants import MixerConstants, RecorderConstants
from chronicle.errors import FFmpegError
from chronicle.services.manager import BaseFFmpegServiceManager

if TYPE_CHECKING:
    from chronicle.context import Context

# -------------------------------------------------------------- #
# FFmpeg Handler
# -------------------------------------------------------------- #


class FFmpegHandler:
    """Runs one-shot ffmpeg commands off the event loop."""

    def __init__(self, ffmpeg_service_manager: BaseFFmpegServiceManager, ffmpeg_path: str):
        self.ffmpeg_service_manager = ffmpeg_service_manager
        self.ffmpeg_path = ffmpeg_path

    async def validate_ffmpeg(self) -> bool:
        """Validate that FFmpeg is installed and accessible."""
        try:
            success, _, _ = await self.run_command(["-version"], timeout=5)
            return success
        except (OSError, subprocess.SubprocessError):
            return False

    async def run_command(self, args: list[str], timeout: float) -> tuple[bool, str, str]:
        """
        Run ffmpeg with the given arguments in a worker thread.

        Args:
            args: Arguments after the ffmpeg executable
            timeout: Seconds before the process is killed

        Returns:
            Tuple of (success: bool, stdout: str, stderr: str)
        """
        cmd = [self.ffmpeg_path, *args]

        loop = asyncio.get_running_loop()
        try:
            result = await asyncio.wait_for(
                loop.run_in_executor(
                    None,
                    lambda: subprocess.run(
                        cmd,
                        capture_output=True,
                        timeout=timeout,
                        text=True,
                    ),
                ),
                timeout=timeout + 10.0,  # Slightly longer than subprocess timeout
            )
        except (subprocess.TimeoutExpired, asyncio.TimeoutError):
            return False, "", f"FFmpeg process timed out after {timeout}s"

        return result.returncode == 0, result.stdout, result.stderr


# -------------------------------------------------------------- #
# Streaming Encoder
# -------------------------------------------------------------- #


class FFmpegOggStream:
    """
    Streams raw Discord PCM into an Ogg/Opus file through ffmpeg's stdin.

    Input is s16le, 48kHz, stereo. Pages are flushed every
    MAX_PACKETS_PER_PAGE packets so a truncated file stays playable.
    """

    def __init__(self, ffmpeg_path: str, output_path: str):
        self.ffmpeg_path = ffmpeg_path
        self.output_path = output_path
        self.bytes_written = 0
        self._process: asyncio.subprocess.Process | None = None

    def build_command(self) -> list[str]:
        return [
            self.ffmpeg_path,
            "-hide_banner",
            "-loglevel",
            "error",
            "-f",
            "s16le",
            "-ar",
            str(RecorderConstants.SAMPLE_RATE),
            "-ac",
            str(RecorderConstants.CHANNELS),
            "-i",
            "pipe:0",
            "-c:a",
            "libopus",
            "-b:a",
            RecorderConstants.OPUS_BITRATE,
            "-frame_duration",
            str(RecorderConstants.FRAME_MS),
            "-page_duration",
            str(RecorderConstants.OGG_PAGE_DURATION_US),
            "-f",
            "ogg",
            "-y",
            self.output_path,
        ]

    @property
    def is_running(self) -> bool:
        return self._process is not None and self._process.returncode is None

    async def start(self) -> None:
        """Spawn the encoder process."""
        try:
            self._process = await asyncio.create_subprocess_exec(
                *self.build_command(),
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise FFmpegError(f"Could not start ffmpeg for {self.output_path}: {e}") from e

    async def write(self, data: bytes) -> None:
        """Write PCM bytes, waiting if the pipe is full."""
        if not self.is_running or self._process.stdin is None:
            raise FFmpegError(f"Encoder for {self.output_path} is not running")

        try:
            self._process.stdin.write(data)
            await self._process.stdin.drain()
        except (BrokenPipeError, ConnectionResetError) as e:
            raise FFmpegError(f"Encoder for {self.output_path} closed its input: {e}") from e
        self.bytes_written += len(data)

    async def close(self, timeout: float = 10.0) -> None:
        """
        Close stdin and wait for ffmpeg to finalize the file.

        Raises:
            FFmpegError: If ffmpeg exits non-zero or does not exit in time
        """
        if self._process is None:
            return

        process = self._process
        if process.stdin is not None and not process.stdin.is_closing():
            process.stdin.close()
            with contextlib.suppress(BrokenPipeError, ConnectionResetError):
                await process.stdin.wait_closed()

        try:
            stderr = await asyncio.wait_for(process.stderr.read(), timeout=timeout)
            returncode = await asyncio.wait_for(process.wait(), timeout=timeout)
        except asyncio.TimeoutError as e:
            await self.abort()
            raise FFmpegError(f"Encoder for {self.output_path} did not exit in time") from e

        self._process = None
        if returncode != 0:
            raise FFmpegError(
                f"Encoder for {self.output_path} exited with {returncode}: "
                f"{stderr.decode('utf-8', errors='replace').strip()}"
            )

    async def abort(self) -> None:
        """Kill the encoder without finalizing the file."""
        process = self._process
        self._process = None
        if process is None or process.returncode is not None:
            return

        with contextlib.suppress(ProcessLookupError):
            process.kill()
        await process.wait()


# -------------------------------------------------------------- #
# FFmpeg Manager Service
# -------------------------------------------------------------- #


class FFmpegManagerService(BaseFFmpegServiceManager):
    """Service for ffmpeg encoding streams and timeline mixes."""

    def __init__(self, context: "Context", ffmpeg_path: str):
        super().__init__(context)
        self.ffmpeg_path = ffmpeg_path
        self.handler = FFmpegHandler(self, ffmpeg_path)
        self._streams: set[FFmpegOggStream] = set()

    # -------------------------------------------------------------- #
    # Manager Methods
    # -------------------------------------------------------------- #

    async def on_start(self, services):
        await super().on_start(services)

        if await self.handler.validate_ffmpeg():
            await self.services.logging_service.info(
                f"FFmpeg validated at path: {self.ffmpeg_path}"
            )
        else:
            await self.services.logging_service.warning(
                f"FFmpeg validation failed at path: {self.ffmpeg_path}"
            )

    async def on_close(self):
        """Kill any encoder still running."""
        running = [stream for stream in self._streams if stream.is_running]
        for stream in running:
            await stream.abort()
        if running:
            await self.services.logging_service.warning(
                f"Aborted {len(running)} running encoder(s) on shutdown"
            )
        self._streams.clear()

    # -------------------------------------------------------------- #
    # FFmpeg Methods
    # -------------------------------------------------------------- #

    def get_ffmpeg_path(self) -> str:
        return self.ffmpeg_path

    def create_ogg_opus_stream(self, output_path: str) -> FFmpegOggStream:
        stream = FFmpegOggStream(self.ffmpeg_path, output_path)
        self._streams.add(stream)
        return stream

    def release_stream(self, stream: FFmpegOggStream) -> None:
        self._streams.discard(stream)

    async def mix_to_ogg(
        self, input_paths: list[str], filter_complex: str, output_path: str
    ) -> None:
        """
        Mix inputs through a filter graph into a stereo 48kHz Ogg/Opus file.

        Raises:
            FFmpegError: If ffmpeg fails
        """
        args = ["-hide_banner", "-y"]
        for path in input_paths:
            args.extend(["-i", path])
        args.extend(
            [
                "-filter_complex",
                filter_complex,
                "-c:a",
                MixerConstants.OUTPUT_CODEC,
                "-ac",
                str(MixerConstants.OUTPUT_CHANNELS),
                "-ar",
                str(MixerConstants.OUTPUT_SAMPLE_RATE),
                "-f",
                "ogg",
                output_path,
            ]
        )

        await self.services.logging_service.debug(
            f"Running ffmpeg mix of {len(input_paths)} inputs -> {output_path}"
        )
        success, _, stderr = await self.handler.run_command(
            args, timeout=MixerConstants.MIX_TIMEOUT_SECONDS
        )
        if not success:
            raise FFmpegError(stderr.strip()[-2000:] or "ffmpeg mix failed")
