"""
Integration tests for FFmpeg Manager Service.

These tests run the real ffmpeg executable: streaming PCM into Ogg/Opus
clips, then mixing clips onto one timeline. They are skipped when ffmpeg
is not installed.
"""

import math
import os
import struct
import subprocess

import pytest

from chronicle.constants import RecorderConstants
from chronicle.errors import FFmpegError
from chronicle.services.manager import ServicesManager


def sine_pcm(duration_ms: int, frequency: float = 440.0) -> bytes:
    """Stereo s16le tone at 48kHz."""
    samples = RecorderConstants.SAMPLE_RATE * duration_ms // 1000
    frames = []
    for n in range(samples):
        value = int(8000 * math.sin(2 * math.pi * frequency * n / RecorderConstants.SAMPLE_RATE))
        frames.append(struct.pack("<hh", value, value))
    return b"".join(frames)


async def encode_clip(services_manager: ServicesManager, path: str, duration_ms: int) -> None:
    ffmpeg = services_manager.ffmpeg_service_manager
    stream = ffmpeg.create_ogg_opus_stream(path)
    try:
        await stream.start()
        await stream.write(sine_pcm(duration_ms))
        await stream.close()
    finally:
        ffmpeg.release_stream(stream)


def decode_mono_pcm(ffmpeg_path: str, path: str, sample_rate: int = 8000) -> list[int]:
    """Decode an audio file to mono s16le samples."""
    command = [ffmpeg_path, "-v", "error", "-i", path]
    command += ["-f", "s16le", "-ac", "1", "-ar", str(sample_rate), "-"]
    result = subprocess.run(command, capture_output=True, check=True)
    count = len(result.stdout) // 2
    return list(struct.unpack(f"<{count}h", result.stdout[: count * 2]))


def rms_between(samples: list[int], start_s: float, end_s: float, sample_rate: int = 8000) -> float:
    window = samples[int(start_s * sample_rate) : int(end_s * sample_rate)]
    return math.sqrt(sum(sample * sample for sample in window) / len(window))


def is_ogg(path: str) -> bool:
    with open(path, "rb") as f:
        return f.read(4) == b"OggS"


# ============================================================================
# FFmpeg Service Tests
# ============================================================================


@pytest.mark.integration
class TestFFmpegManagerService:
    """Test FFmpeg Manager Service functionality."""

    async def test_streaming_encoder_writes_ogg_opus(
        self, services_manager: ServicesManager, tmp_path
    ):
        output_path = str(tmp_path / "2025-07-30T15:45:30.000Z_alice.ogg")

        await encode_clip(services_manager, output_path, duration_ms=500)

        assert os.path.getsize(output_path) > 0
        assert is_ogg(output_path)

    async def test_abort_leaves_encoder_stopped(self, services_manager: ServicesManager, tmp_path):
        stream = services_manager.ffmpeg_service_manager.create_ogg_opus_stream(
            str(tmp_path / "aborted.ogg")
        )
        await stream.start()
        await stream.write(sine_pcm(100))

        await stream.abort()

        assert not stream.is_running
        with pytest.raises(FFmpegError):
            await stream.write(sine_pcm(20))

    async def test_session_folder_is_mixed(self, services_manager: ServicesManager, tmp_path):
        folder = tmp_path / "session"
        folder.mkdir()
        await encode_clip(
            services_manager, str(folder / "2025-07-30T15:45:30.000Z_alice.ogg"), 400
        )
        await encode_clip(services_manager, str(folder / "2025-07-30T15:45:30.700Z_bob.ogg"), 400)

        output = await services_manager.timeline_mixer_service.mix_session_folder(str(folder))

        assert output == str(folder / "mixed_timeline.ogg")
        assert is_ogg(output)
        assert not os.path.exists(output + ".partial")

    async def test_mixed_clips_keep_their_offsets(
        self, services_manager: ServicesManager, tmp_path
    ):
        folder = tmp_path / "session"
        folder.mkdir()
        await encode_clip(
            services_manager, str(folder / "2025-07-30T15:45:30.000Z_alice.ogg"), 1000
        )
        await encode_clip(
            services_manager, str(folder / "2025-07-30T15:45:31.500Z_bob.ogg"), 1000
        )

        output = await services_manager.timeline_mixer_service.mix_session_folder(str(folder))
        samples = decode_mono_pcm(
            services_manager.ffmpeg_service_manager.get_ffmpeg_path(), output
        )

        # alice alone, then the gap, then bob 1500ms after alice started
        assert len(samples) / 8000 == pytest.approx(2.5, abs=0.1)
        assert rms_between(samples, 0.1, 0.9) > 2000
        assert rms_between(samples, 1.1, 1.4) < 200
        assert rms_between(samples, 1.6, 2.4) > 2000

    async def test_mix_of_unreadable_input_raises(
        self, services_manager: ServicesManager, tmp_path
    ):
        bad_input = tmp_path / "bad.ogg"
        bad_input.write_bytes(b"definitely not audio")

        with pytest.raises(FFmpegError):
            await services_manager.ffmpeg_service_manager.mix_to_ogg(
                [str(bad_input), str(bad_input)],
                "[0][1]amix=inputs=2:duration=longest:normalize=0",
                str(tmp_path / "out.ogg"),
            )
