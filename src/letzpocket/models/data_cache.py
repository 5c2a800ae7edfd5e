"""PropertyDataCache model - persisted PropertyData responses.

Each row is one provider response for a (postcode, data type) pair.
Rows are never updated: a fresh fetch inserts a newer row, and expired
rows are kept so they can be served when the provider is down.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import JSON, DateTime, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from letzpocket.models.base import (
    Base,
    CreatedAtMixin,
    PropertyKeyMixin,
    UUIDPrimaryKeyMixin,
)


class PropertyDataCache(UUIDPrimaryKeyMixin, PropertyKeyMixin, CreatedAtMixin, Base):
    """Cached PropertyData API response.

    Attributes:
        property_id: Owning property, if the fetch was made for one
        postcode: Normalized postcode (uppercase, no spaces)
        data_type: One of the DataType values
        api_response: Canonical payload (typed DTO serialized to JSON)
        cached_at: When the response was fetched
        expires_at: End of the live window for this entry
        api_cost_credits: Provider credits spent obtaining it
    """

    __tablename__ = "property_data_cache"

    data_type: Mapped[str] = mapped_column(String(32), nullable=False)
    api_response: Mapped[dict] = mapped_column(JSON, nullable=False)
    cached_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )
    expires_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        index=True,
    )
    api_cost_credits: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    __table_args__ = (
        Index(
            "ix_property_data_cache_lookup",
            "postcode",
            "data_type",
            "cached_at",
        ),
    )

    def __repr__(self) -> str:
        return (
            f"<PropertyDataCache(postcode='{self.postcode}', "
            f"data_type='{self.data_type}', expires_at={self.expires_at})>"
        )
