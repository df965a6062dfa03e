"""Database helpers: engines, sessions and the stored-function RPC client."""

from .engine import create_sync_engine, get_shared_engine
from .rpc import (
    BULK_QUERY_FUNCTION,
    DISPLAY_QUERY_FUNCTION,
    DatabaseRPC,
    RPCError,
    RPCTimeoutError,
)
from .session import get_sessionmaker

__all__ = [
    "BULK_QUERY_FUNCTION",
    "DISPLAY_QUERY_FUNCTION",
    "DatabaseRPC",
    "RPCError",
    "RPCTimeoutError",
    "create_sync_engine",
    "get_shared_engine",
    "get_sessionmaker",
]
