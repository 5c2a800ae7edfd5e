"""ApiUsageLog model - audit trail of provider calls and credit movements."""

from __future__ import annotations

from enum import Enum

from sqlalchemy import JSON, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from letzpocket.models.base import Base, CreatedAtMixin, UUIDPrimaryKeyMixin


class UsageStatus(str, Enum):
    """What a usage-log row records."""

    SUCCESS = "success"  # live provider call succeeded
    ERROR = "error"  # live provider call failed
    CHARGED = "charged"  # credits deducted from a user
    BONUS = "bonus"  # admin granted bonus credits
    PLAN_CHANGE = "plan_change"  # admin changed a user's plan

    @classmethod
    def provider_statuses(cls) -> tuple[str, ...]:
        return (cls.SUCCESS.value, cls.ERROR.value)


class ApiUsageLog(UUIDPrimaryKeyMixin, CreatedAtMixin, Base):
    """One usage event.

    Provider calls are logged without a user; quota events always carry one.
    """

    __tablename__ = "api_usage_log"

    user_id: Mapped[str | None] = mapped_column(String(128), nullable=True, index=True)
    endpoint: Mapped[str] = mapped_column(String(64), nullable=False)
    credits_used: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    request_params: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    response_status: Mapped[str] = mapped_column(String(20), nullable=False)

    __table_args__ = (
        Index("ix_api_usage_log_status_created", "response_status", "created_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<ApiUsageLog(endpoint='{self.endpoint}', "
            f"status='{self.response_status}', credits={self.credits_used})>"
        )
