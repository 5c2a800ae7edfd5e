"""UserApiQuota model - per-user PropertyData credit accounting.

State per user within a billing period:
    remaining_credits = plan allotment + bonus_credits - used_credits

The check constraint backs the non-negative invariant at the database
level; QuotaRepository.try_deduct relies on a conditional UPDATE so two
writers can never both spend the last credits.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import CheckConstraint, DateTime, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from letzpocket.models.base import (
    Base,
    CreatedAtMixin,
    UpdatedAtMixin,
    UUIDPrimaryKeyMixin,
)

# Breakdown counter columns, in display order
BREAKDOWN_COLUMNS: tuple[str, ...] = (
    "valuations",
    "rents",
    "sold_prices",
    "growth",
    "demographics",
    "batch_requests",
)


class UserApiQuota(UUIDPrimaryKeyMixin, CreatedAtMixin, UpdatedAtMixin, Base):
    """Subscription plan and credit usage for one user."""

    __tablename__ = "user_api_quota"

    user_id: Mapped[str] = mapped_column(
        String(128),
        unique=True,
        nullable=False,
        index=True,
    )
    plan_id: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    used_credits: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    remaining_credits: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    bonus_credits: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    reset_date: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )

    valuations: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    rents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    sold_prices: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    growth: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    demographics: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    batch_requests: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    __table_args__ = (
        CheckConstraint("remaining_credits >= 0", name="ck_user_api_quota_remaining"),
        CheckConstraint("used_credits >= 0", name="ck_user_api_quota_used"),
    )

    def __repr__(self) -> str:
        return (
            f"<UserApiQuota(user_id='{self.user_id}', plan='{self.plan_id}', "
            f"used={self.used_credits}, remaining={self.remaining_credits})>"
        )
