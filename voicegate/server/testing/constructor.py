"""
Constructor for Testing Server Manager.

Builds a ServerManager whose SQL client is an in-memory SQLite database.
"""

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from voicegate.context import Context

from voicegate.server.server import ServerManager
from voicegate.server.testing.mysql import InMemoryMySQLServer

# -------------------------------------------------------------- #
# Constructor for Testing Server Manager
# -------------------------------------------------------------- #


def load_sql_client() -> InMemoryMySQLServer:
    """Load and return the in-memory SQL client for testing."""
    return InMemoryMySQLServer(name="test_mysql")


def construct_server_manager(context: "Context") -> ServerManager:
    """
    Construct and return a ServerManager instance for testing.

    Args:
        context: Context instance to pass to ServerManager

    Returns:
        ServerManager backed by an in-memory SQLite database
    """
    return ServerManager(context=context, sql_client=load_sql_client())
