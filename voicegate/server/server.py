"""
Server handlers for external services.

The voice orchestrator only talks to one external server, the SQL
database, but the manager keeps the registry shape so more can be added.
"""

import logging
from typing import TYPE_CHECKING

from voicegate.server.services import BaseServerHandler, SQLDatabase

if TYPE_CHECKING:
    from voicegate.context import Context

logger = logging.getLogger(__name__)

# -------------------------------------------------------------- #
# Server Manager
# -------------------------------------------------------------- #


class ServerManager:
    """Manager for handling multiple server instances."""

    def __init__(self, context: "Context", sql_client: SQLDatabase):
        self.context = context
        self._initialized = False
        self._sql_client = sql_client

        self._servers: dict[str, BaseServerHandler] = {
            "sql": sql_client,
        }

    # ------------------------------------------------------ #
    # Server Management
    # ------------------------------------------------------ #

    async def connect_all(self) -> None:
        """Connect to all servers."""
        logger.info("=" * 60)
        logger.info("[ServerManager] Connecting all servers...")

        for server in self._servers.values():
            logger.info(f"[ServerManager] Connecting to '{server.name}' server...")
            await server.connect()
            logger.info(f"[ServerManager] Executing startup actions for '{server.name}' server...")
            await server.on_startup()
            logger.info(f"[ServerManager] '{server.name}' server is ready.")

        self._initialized = True
        logger.info("[ServerManager] All servers connected successfully.")
        logger.info("=" * 60)

    async def disconnect_all(self) -> None:
        """Disconnect from all servers."""
        logger.info("=" * 60)
        logger.info("[ServerManager] Disconnecting all servers...")

        for server in self._servers.values():
            await server.on_close()
            await server.disconnect()
            logger.info(f"[ServerManager] '{server.name}' server disconnected.")

        self._initialized = False
        logger.info("[ServerManager] All servers disconnected successfully.")
        logger.info("=" * 60)

    async def health_check_all(self) -> dict[str, bool]:
        """
        Check health of all registered servers.

        Returns:
            Dictionary mapping server names to health status
        """
        results = {}
        for name, server in self._servers.items():
            results[name] = await server.health_check()
        return results

    def list_servers(self) -> list[str]:
        """Get list of all registered server names."""
        return list(self._servers.keys())

    # ------------------------------------------------------ #
    # Properties
    # ------------------------------------------------------ #

    @property
    def sql_client(self) -> SQLDatabase:
        """Get the SQL client."""
        return self._sql_client

    @property
    def is_initialized(self) -> bool:
        """Check if the server manager is initialized."""
        return self._initialized
