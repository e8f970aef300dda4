"""
Constructor for the testing ServerManager.

Both capabilities are replaced by in-memory mocks so tests never touch the
network.
"""

from typing import TYPE_CHECKING

from chronicle.server.server import ServerManager
from chronicle.server.testing.summarization import MockSummarizationClient
from chronicle.server.testing.transcription import MockTranscriptionClient

if TYPE_CHECKING:
    from chronicle.context import Context

# -------------------------------------------------------------- #
# Constructor for Testing Server Manager
# -------------------------------------------------------------- #


def construct_server_manager(context: "Context") -> ServerManager:
    """Construct a ServerManager backed by mock clients."""
    return ServerManager(
        context=context,
        transcription_client=MockTranscriptionClient(),
        summarization_client=MockSummarizationClient(),
    )
