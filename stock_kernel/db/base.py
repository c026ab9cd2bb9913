"""
Module: stock_kernel.db.base
Responsibility: Declarative base class for the stock ledger ORM models.
    Provides the autoincrement integer primary key convention and the type
    annotation map for consistent column types.
Architecture position: Kernel > DB.  Lowest-level import target within the
    kernel's persistence layer.  ALL model files import from here.  This module
    MUST NOT import from models/, services/, domain/, or outer layers.

Invariants enforced:
    - Monotonic primary keys: the integer ``id`` doubles as the ledger
      ``record_id`` and breaks ties between records sharing a created_at.
    - datetime maps to DateTime(timezone=True) -- always timezone-aware.
"""

from datetime import date, datetime
from typing import ClassVar

from sqlalchemy import BigInteger, Date, DateTime, Integer
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

# BIGINT ids everywhere except SQLite, whose rowid autoincrement needs INTEGER
RecordId = BigInteger().with_variant(Integer(), "sqlite")


class Base(DeclarativeBase):
    """
    Declarative base for all SQLAlchemy models.

    Contract:
        Every ORM model in the stock kernel inherits from Base.
    Guarantees:
        - id is a database-generated, strictly increasing integer.
        - datetime columns are timezone-aware.
    """

    type_annotation_map: ClassVar[dict] = {
        datetime: DateTime(timezone=True),
        date: Date,
        int: BigInteger,
    }

    id: Mapped[int] = mapped_column(
        RecordId,
        primary_key=True,
        autoincrement=True,
    )
