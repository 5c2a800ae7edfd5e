"""PropertyValueHistory model - append-only valuation history."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, Float, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from letzpocket.models.base import (
    Base,
    CreatedAtMixin,
    PropertyKeyMixin,
    UUIDPrimaryKeyMixin,
)


class PropertyValueHistory(UUIDPrimaryKeyMixin, PropertyKeyMixin, CreatedAtMixin, Base):
    """One valuation observation, written on every fresh valuation fetch."""

    __tablename__ = "property_value_history"

    valuation_date: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )
    rental_value: Mapped[float] = mapped_column(Float, nullable=False)
    confidence_interval_lower: Mapped[float] = mapped_column(Float, nullable=False)
    confidence_interval_upper: Mapped[float] = mapped_column(Float, nullable=False)
    data_source: Mapped[str] = mapped_column(
        String(32),
        nullable=False,
        default="propertydata",
    )

    __table_args__ = (
        Index("ix_property_value_history_postcode_date", "postcode", "valuation_date"),
    )

    def __repr__(self) -> str:
        return (
            f"<PropertyValueHistory(postcode='{self.postcode}', "
            f"rental_value={self.rental_value}, date={self.valuation_date})>"
        )
