import os
from typing import TYPE_CHECKING

from dotenv import load_dotenv

if TYPE_CHECKING:
    from voicegate.context import Context

from voicegate.server.dev.mysql import MySQLServer
from voicegate.server.server import ServerManager

load_dotenv(dotenv_path=".env.local")

# -------------------------------------------------------------- #
# Constructor for Development / Production Server Manager
# -------------------------------------------------------------- #


def load_sql_client() -> MySQLServer:
    """Load and return the SQL client from SQL_* environment variables."""
    host = os.getenv("SQL_HOST")
    port = int(os.getenv("SQL_PORT", "3306"))
    user = os.getenv("SQL_USER")
    password = os.getenv("SQL_PASSWORD")
    database = os.getenv("SQL_DATABASE")

    if not host or not user or not password or not database:
        raise ValueError("Missing required SQL environment variables.")

    return MySQLServer(host=host, port=port, user=user, password=password, database=database)


def construct_server_manager(context: "Context") -> ServerManager:
    """
    Construct and return a ServerManager backed by MySQL.

    Args:
        context: Context instance to pass to ServerManager

    Returns:
        Configured ServerManager instance
    """
    sql_client = load_sql_client()
    return ServerManager(context=context, sql_client=sql_client)
