import asyncio
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    import discord

    from chronicle.server.server import ServerManager
    from chronicle.services.manager import ServicesManager

# -------------------------------------------------------------- #
# Context Class
# -------------------------------------------------------------- #


class Context:
    """
    Shared handle to the server connections, the services and the bot.

    Services reach each other through this object instead of importing one
    another, so a test can assemble any subset of them.
    """

    def __init__(self):
        self.server_manager: ServerManager | None = None
        self.services_manager: ServicesManager | None = None
        self.bot: discord.Bot | None = None
        self._shutdown_event: asyncio.Event = asyncio.Event()

    def set_server_manager(self, server_manager: "ServerManager") -> None:
        """Set the server manager instance."""
        self.server_manager = server_manager

    def set_services_manager(self, services_manager: "ServicesManager") -> None:
        """Set the services manager instance."""
        self.services_manager = services_manager

    def set_bot(self, bot: "discord.Bot") -> None:
        """Set the Discord bot instance."""
        self.bot = bot

    def is_shutting_down(self) -> bool:
        """Check if new recordings should be refused."""
        return self._shutdown_event.is_set()

    def mark_shutdown_started(self) -> None:
        self._shutdown_event.set()
