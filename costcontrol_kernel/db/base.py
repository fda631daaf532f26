"""
Module: costcontrol_kernel.db.base
Responsibility: Declarative base for the cost control ORM models: portable
    UUID keys, the Python-type to column-type map, and the audit columns
    every stored row carries.
Architecture position: Kernel > DB.  Lowest import target in the kernel;
    models import from here, this module imports nothing from the kernel.

Invariants enforced:
    - Every row has a uuid4 primary key, stored as its canonical 36-char
      string on every backend.
    - ``Decimal`` annotations map to Numeric(38, 9).  Money never touches
      float on the way in or out.
    - Every row records who created it; ``updated_by_id`` is filled on the
      first change.
"""

from datetime import datetime
from decimal import Decimal
from typing import ClassVar
from uuid import UUID as PyUUID, uuid4

from sqlalchemy import BigInteger, DateTime, Numeric, String, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator


class UUIDString(TypeDecorator):
    """
    UUID persisted as String(36).

    The lowercase hex form orders identically in SQL and in Python, which
    the keyset pagination over cost items depends on.
    """

    impl = String(36)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        return None if value is None else str(value)

    def process_result_value(self, value, dialect):
        return None if value is None else PyUUID(value)


class Base(DeclarativeBase):
    """Declarative base; supplies ``id`` and the annotation type map."""

    type_annotation_map: ClassVar[dict] = {
        PyUUID: UUIDString(),
        Decimal: Numeric(38, 9),
        datetime: DateTime(timezone=True),
        int: BigInteger,
    }

    id: Mapped[PyUUID] = mapped_column(UUIDString(), primary_key=True, default=uuid4)


class TrackedBase(Base):
    """
    Abstract base adding creation/update timestamps and actors.

    ``created_at``/``updated_at`` are filled by the database (NOW()); the
    actor columns are filled by the services.
    """

    __abstract__ = True

    created_at: Mapped[datetime] = mapped_column(server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        server_default=func.now(), onupdate=func.now(), nullable=False
    )
    created_by_id: Mapped[PyUUID] = mapped_column(nullable=False)
    updated_by_id: Mapped[PyUUID | None] = mapped_column(nullable=True)


UUID = PyUUID
