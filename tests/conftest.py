"""
Pytest configuration and shared fixtures.

This file is automatically loaded by pytest and provides
fixtures and configuration that can be used across all tests.
"""

import os
import shutil
from unittest.mock import AsyncMock, MagicMock

import pytest

# Configure pytest-asyncio
pytest_plugins = ("pytest_asyncio",)


# ============================================================================
# Pytest Configuration
# ============================================================================


def pytest_configure(config: pytest.Config) -> None:
    """Register custom markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "integration: Integration tests")
    config.addinivalue_line("markers", "slow: Slow running tests")


def pytest_collection_modifyitems(config: pytest.Config, items: list) -> None:
    """
    Apply a 30s timeout to every test not marked slow, and skip
    ffmpeg-backed integration tests when ffmpeg is not installed.
    """
    ffmpeg_available = shutil.which(os.getenv("FFMPEG_PATH", "ffmpeg")) is not None
    skip_ffmpeg = pytest.mark.skip(reason="ffmpeg executable not found")

    for item in items:
        if "slow" not in item.keywords:
            item.add_marker(pytest.mark.timeout(30))
        if "integration" in item.keywords and not ffmpeg_available:
            item.add_marker(skip_ffmpeg)


@pytest.fixture(scope="session")
def shared_test_log_file(tmp_path_factory) -> str:
    """
    Create a single shared log file for all tests in the session.

    Returns:
        str: Path to the shared log file
    """
    from datetime import datetime

    logs_dir = tmp_path_factory.mktemp("logs")
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    return str(logs_dir / f"test_run_{timestamp}.log")


# ============================================================================
# Mock Discord Fixtures
# ============================================================================


@pytest.fixture
def mock_discord_bot() -> MagicMock:
    """Create a mock Discord bot instance."""
    bot = MagicMock()
    bot.user = MagicMock()
    bot.user.name = "TestBot"
    bot.user.id = 123456789
    bot.guilds = []
    bot.get_user = MagicMock(return_value=None)
    bot.fetch_user = AsyncMock()
    return bot


@pytest.fixture
def mock_discord_context() -> MagicMock:
    """Create a mock Discord application context (py-cord)."""
    ctx = MagicMock()
    ctx.author = MagicMock()
    ctx.author.name = "TestUser"
    ctx.author.id = 987654321
    ctx.author.voice = None
    ctx.guild = MagicMock()
    ctx.guild.id = 111222333
    ctx.guild.name = "Test Guild"
    ctx.defer = AsyncMock()
    ctx.respond = AsyncMock()
    ctx.edit = AsyncMock()
    ctx.followup = MagicMock()
    ctx.followup.send = AsyncMock()
    return ctx


@pytest.fixture
def mock_voice_client() -> MagicMock:
    """Create a mock py-cord voice client that is connected but not recording."""
    voice_client = MagicMock()
    voice_client.recording = False
    voice_client.is_connected = MagicMock(return_value=True)
    voice_client.disconnect = AsyncMock()
    return voice_client


@pytest.fixture
def mock_voice_channel(mock_voice_client: MagicMock) -> MagicMock:
    """Create a mock Discord voice channel the bot is allowed to record."""
    channel = MagicMock()
    channel.id = 444555666
    channel.name = "Test Voice Channel"
    channel.guild = MagicMock()
    channel.guild.id = 111222333
    channel.guild.get_member = MagicMock(return_value=None)
    channel.guild.voice_client = None
    channel.connect = AsyncMock(return_value=mock_voice_client)

    permissions = MagicMock()
    permissions.connect = True
    permissions.speak = True
    permissions.use_voice_activation = True
    channel.permissions_for = MagicMock(return_value=permissions)
    return channel


@pytest.fixture
def mock_discord_user_in_voice(
    mock_discord_context: MagicMock,
    mock_voice_channel: MagicMock,
) -> MagicMock:
    """Create a mock Discord user in a voice channel."""
    mock_discord_context.author.voice = MagicMock()
    mock_discord_context.author.voice.channel = mock_voice_channel
    return mock_discord_context


# ============================================================================
# Shared Server and Services Fixtures
# ============================================================================


@pytest.fixture
async def server_manager():
    """
    Create and connect a server manager backed by the mock clients.

    Yields:
        ServerManager: Connected server manager instance
    """
    from chronicle.constructor import ServerManagerType
    from chronicle.context import Context
    from chronicle.server.constructor import construct_server_manager

    context = Context()
    server = construct_server_manager(ServerManagerType.TESTING, context)
    context.set_server_manager(server)
    await server.connect_all()

    yield server

    if server.is_initialized:
        await server.disconnect_all()


@pytest.fixture
async def services_manager(server_manager, tmp_path, shared_test_log_file, mock_discord_bot):
    """
    Create and initialize a services manager with temporary storage.

    Args:
        server_manager: Connected server manager from server_manager fixture
        tmp_path: Pytest's built-in temporary directory fixture
        shared_test_log_file: Session-scoped shared log file path
        mock_discord_bot: Bot stand-in placed on the context

    Yields:
        ServicesManager: Initialized services manager instance
    """
    from chronicle.constructor import ServerManagerType
    from chronicle.services.constructor import construct_services_manager

    context = server_manager.context
    context.set_bot(mock_discord_bot)

    services = construct_services_manager(
        ServerManagerType.TESTING,
        context=context,
        recordings_path=str(tmp_path / "recordings"),
        default_logging_path=os.path.dirname(shared_test_log_file),
        log_file=os.path.basename(shared_test_log_file),
    )
    context.set_services_manager(services)
    await services.initialize_all()

    yield services

    await services.shutdown_all(timeout=10.0)


@pytest.fixture
def transcription_client(server_manager):
    """The mock transcription client of the testing server manager."""
    return server_manager.transcription_client


@pytest.fixture
def summarization_client(server_manager):
    """The mock summarization client of the testing server manager."""
    return server_manager.summarization_client


@pytest.fixture
def session_folder(tmp_path) -> str:
    """An empty session folder under the temporary recordings root."""
    folder = tmp_path / "recordings" / "2025-07-30_15-45-30-123"
    folder.mkdir(parents=True)
    return str(folder)


@pytest.fixture
def write_clip():
    """Write a placeholder clip file into a folder and return its path."""

    def _write(folder: str, filename: str, payload: bytes = b"OggS fake clip") -> str:
        path = os.path.join(folder, filename)
        with open(path, "wb") as f:
            f.write(payload)
        return path

    return _write


# ============================================================================
# Fake Encoder
# ============================================================================


class FakeOggStream:
    """Records what a capture unit would send to the ffmpeg encoder."""

    def __init__(self, output_path: str, fail_on_write: bool = False):
        self.output_path = output_path
        self.fail_on_write = fail_on_write
        self.written = bytearray()
        self.writes: list[int] = []
        self.started = False
        self.closed = False
        self.aborted = False

    async def start(self) -> None:
        self.started = True

    async def write(self, data: bytes) -> None:
        if self.fail_on_write:
            from chronicle.errors import FFmpegError

            raise FFmpegError("Broken pipe")
        self.writes.append(len(data))
        self.written.extend(data)

    async def close(self) -> None:
        self.closed = True
        with open(self.output_path, "wb") as f:
            f.write(b"OggS")

    async def abort(self) -> None:
        self.aborted = True


class FakeFFmpegService:
    """Stands in for FFmpegManagerService's streaming side."""

    def __init__(self):
        self.fail_on_write = False
        self.streams: list[FakeOggStream] = []
        self.released: list[FakeOggStream] = []

    def create_ogg_opus_stream(self, output_path: str) -> FakeOggStream:
        stream = FakeOggStream(output_path, self.fail_on_write)
        self.streams.append(stream)
        return stream

    def release_stream(self, stream: FakeOggStream) -> None:
        self.released.append(stream)


@pytest.fixture
def fake_ffmpeg() -> FakeFFmpegService:
    """A fake encoder service recording every stream it hands out."""
    return FakeFFmpegService()


@pytest.fixture
def mock_logging_service() -> MagicMock:
    """A logging service whose methods are awaitable mocks."""
    service = MagicMock()
    service.debug = AsyncMock()
    service.info = AsyncMock()
    service.warning = AsyncMock()
    service.error = AsyncMock()
    return service
