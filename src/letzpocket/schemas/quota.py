"""Quota and admin API schemas."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from letzpocket.schemas.common import BaseSchema
from letzpocket.services.quota import QuotaPlan, QuotaUsage

# =============================================================================
# Plans and balances
# =============================================================================


class QuotaPlanResponse(BaseModel):
    id: str
    name: str
    monthly_credits: int
    features: list[str]
    price: str | None = None

    @classmethod
    def from_plan(cls, plan: QuotaPlan) -> "QuotaPlanResponse":
        return cls.model_validate(plan.to_dict())


class QuotaUsageResponse(BaseModel):
    """A user's credits for the current period."""

    user_id: str
    plan_id: str
    used_credits: int
    remaining_credits: int
    bonus_credits: int
    reset_date: datetime
    usage_breakdown: dict[str, int]

    @classmethod
    def from_usage(cls, usage: QuotaUsage) -> "QuotaUsageResponse":
        return cls.model_validate(usage.to_dict())


class CreditCheckResponse(BaseModel):
    user_id: str
    required_credits: int
    has_credits: bool


# =============================================================================
# Admin requests
# =============================================================================


class PlanUpdateRequest(BaseSchema):
    plan_id: str = Field(..., min_length=1, max_length=32)
    admin_user_id: str = Field(..., min_length=1, max_length=128)


class BonusCreditsRequest(BaseSchema):
    credits: int = Field(..., gt=0, le=10_000)
    reason: str = Field(..., min_length=1, max_length=500)
    admin_user_id: str = Field(..., min_length=1, max_length=128)


class BulkPlanUpdateItem(BaseSchema):
    user_id: str = Field(..., min_length=1, max_length=128)
    plan_id: str = Field(..., min_length=1, max_length=32)


class BulkPlanUpdateRequest(BaseSchema):
    updates: list[BulkPlanUpdateItem] = Field(..., max_length=1000)
    admin_user_id: str = Field(..., min_length=1, max_length=128)


# =============================================================================
# Admin responses
# =============================================================================


class BulkPlanUpdateResponse(BaseModel):
    succeeded: list[str]
    failed: list[dict[str, str]]


class QuotaResetResponse(BaseModel):
    users_reset: int


class ActionableUsersResponse(BaseModel):
    near_quota_limit: list[str]
    inactive_users: list[str]
    high_usage: list[str]


class AdminDashboardResponse(BaseModel):
    quota_stats: dict[str, Any]
    efficiency: dict[str, Any]
    recent_activity: list[dict[str, Any]]
    system_health: dict[str, Any]
