"""
Declarative base and mixins shared by users and the RBAC tables.

- TimestampMixin: created_at, updated_at
- UUIDMixin: UUID primary key
- StandardMixin: both

Application resource models may use their own primary keys; the
resolution engine only needs the columns it is told about.
"""

from datetime import datetime
from uuid import UUID as PyUUID, uuid4
from sqlalchemy import DateTime, Uuid, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all models."""

    # Common type annotations - all datetimes are timezone-aware
    type_annotation_map = {
        datetime: DateTime(timezone=True),
    }


class TimestampMixin:
    """
    Mixin for created_at and updated_at timestamps.

    All timestamps are stored in UTC (timezone-aware).

    Usage:
        class Invoice(Base, TimestampMixin):
            __tablename__ = "invoices"
            ...
    """

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )


class UUIDMixin:
    """
    Mixin for UUID primary key.

    Uses UUID v4 (random) for primary keys. The generic Uuid type maps to
    a native UUID column on PostgreSQL and CHAR(32) elsewhere.
    """

    id: Mapped[PyUUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid4,
    )


class StandardMixin(UUIDMixin, TimestampMixin):
    """
    Standard mixin combining UUID + timestamps.

    Provides:
        - id: UUID primary key
        - created_at: When created (UTC)
        - updated_at: When last modified (UTC)
    """
    pass
