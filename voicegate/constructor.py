from enum import Enum

# -------------------------------------------------------------- #
# Server Manager Types
# -------------------------------------------------------------- #


class ServerManagerType(Enum):
    """Which backend set the server and services constructors should build."""

    DEVELOPMENT = "development"
    PRODUCTION = "production"
    TESTING = "testing"
