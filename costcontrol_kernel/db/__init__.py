"""Database layer - engine, base classes, and column types."""

from costcontrol_kernel.db.base import UUID, Base, TrackedBase, UUIDString
from costcontrol_kernel.db.engine import create_tables, get_engine, get_session
from costcontrol_kernel.db.types import round_money, round_percentage

__all__ = [
    "get_engine",
    "get_session",
    "create_tables",
    "Base",
    "TrackedBase",
    "UUIDString",
    "UUID",
    "round_money",
    "round_percentage",
]
