"""Server handlers for external connections."""

from .server import ServerManager
from .services import BaseServerHandler, SQLDatabase

__all__ = [
    "BaseServerHandler",
    "SQLDatabase",
    "ServerManager",
]
