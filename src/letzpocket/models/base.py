"""SQLAlchemy declarative base and column mixins shared by the tables.

Cache, value-history and usage-log rows are append-only, so they only carry
``created_at``. Quota rows are updated in place and also carry
``updated_at``.
"""

import uuid
from datetime import datetime

from sqlalchemy import DateTime, String, func
from sqlalchemy.orm import DeclarativeBase, Mapped, declared_attr, mapped_column


class Base(DeclarativeBase):
    """Base class for all LetzPocket tables (picked up by create_all)."""


class UUIDPrimaryKeyMixin:
    @declared_attr
    def id(cls) -> Mapped[uuid.UUID]:
        return mapped_column(primary_key=True, default=uuid.uuid4, nullable=False)


class CreatedAtMixin:
    """Insert time, set by the database."""

    @declared_attr
    def created_at(cls) -> Mapped[datetime]:
        return mapped_column(
            DateTime(timezone=True),
            server_default=func.now(),
            nullable=False,
        )


class UpdatedAtMixin:
    """Last modification time.

    Refreshed by the database on UPDATE, so the attribute is expired after a
    flush; read it inside a session only.
    """

    @declared_attr
    def updated_at(cls) -> Mapped[datetime]:
        return mapped_column(
            DateTime(timezone=True),
            server_default=func.now(),
            onupdate=func.now(),
            nullable=False,
        )


class PropertyKeyMixin:
    """Columns locating a row: the normalized postcode and optional property.

    ``property_id`` points at the landlord application's property record,
    which lives outside this service, so it is indexed but not a foreign key.
    """

    @declared_attr
    def property_id(cls) -> Mapped[uuid.UUID | None]:
        return mapped_column(nullable=True, index=True)

    @declared_attr
    def postcode(cls) -> Mapped[str]:
        return mapped_column(String(16), nullable=False)
