"""
Connections to the external capabilities used after a recording.

The ServerManager owns one client per capability and drives their
connect/disconnect lifecycle.
"""

import logging
from typing import TYPE_CHECKING

from chronicle.server.services import SummarizationServerHandler, TranscriptionServerHandler

if TYPE_CHECKING:
    from chronicle.context import Context

logger = logging.getLogger(__name__)

# -------------------------------------------------------------- #
# Server Manager
# -------------------------------------------------------------- #


class ServerManager:
    """Manager for the transcription and summarization clients."""

    def __init__(
        self,
        context: "Context",
        transcription_client: TranscriptionServerHandler,
        summarization_client: SummarizationServerHandler,
    ):
        self.context = context
        self._initialized = False
        self._transcription_client = transcription_client
        self._summarization_client = summarization_client

        self._servers = {
            "transcription": transcription_client,
            "summarization": summarization_client,
        }

    # ------------------------------------------------------ #
    # Server Management
    # ------------------------------------------------------ #

    async def connect_all(self) -> None:
        """Connect every client and run its startup actions."""
        logger.info("[ServerManager] Connecting %d clients...", len(self._servers))

        for server in self._servers.values():
            await server.connect()
            await server.on_startup()
            logger.info(f"[ServerManager] '{server.name}' is ready.")

        self._initialized = True

    async def disconnect_all(self) -> None:
        """Disconnect every client, continuing past individual failures."""
        for server in self._servers.values():
            try:
                await server.on_close()
                await server.disconnect()
                logger.info(f"[ServerManager] '{server.name}' disconnected.")
            except Exception as e:
                logger.error(
                    f"[ServerManager] Failed to disconnect '{server.name}'. "
                    f"Error Type: {type(e).__name__}, Details: {str(e)}"
                )

        self._initialized = False

    async def health_check_all(self) -> dict[str, bool]:
        """
        Check health of all registered clients.

        Returns:
            Dictionary mapping client names to health status
        """
        results = {}
        for name, server in self._servers.items():
            results[name] = await server.health_check()
        return results

    # ------------------------------------------------------ #
    # Properties
    # ------------------------------------------------------ #

    @property
    def transcription_client(self) -> TranscriptionServerHandler:
        return self._transcription_client

    @property
    def summarization_client(self) -> SummarizationServerHandler:
        return self._summarization_client

    @property
    def is_initialized(self) -> bool:
        return self._initialized
