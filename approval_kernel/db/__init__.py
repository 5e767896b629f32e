"""Database layer - engine, base classes and portable column types."""

from approval_kernel.db.base import Base, JSONDocument, UTCDateTime, UUIDString
from approval_kernel.db.engine import (
    PoolSettings,
    create_tables,
    drop_tables,
    get_engine,
    get_session,
    get_session_factory,
    init_engine_from_url,
    reset_engine,
    session_scope,
)

__all__ = [
    "Base",
    "PoolSettings",
    "JSONDocument",
    "UTCDateTime",
    "UUIDString",
    "create_tables",
    "drop_tables",
    "get_engine",
    "get_session",
    "get_session_factory",
    "init_engine_from_url",
    "reset_engine",
    "session_scope",
]
