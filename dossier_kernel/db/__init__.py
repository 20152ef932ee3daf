"""Database layer - engine, base classes, and immutability listeners."""

from dossier_kernel.db.base import UUID, Base, TrackedBase, UTCDateTime, UUIDString
from dossier_kernel.db.engine import (
    create_tables,
    get_engine,
    get_session,
    get_session_factory,
    session_scope,
)

__all__ = [
    "get_engine",
    "get_session",
    "get_session_factory",
    "session_scope",
    "create_tables",
    "Base",
    "TrackedBase",
    "UUIDString",
    "UTCDateTime",
    "UUID",
]
