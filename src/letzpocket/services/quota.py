"""QuotaManager - PropertyData credit accounting per user.

Every user is on one plan from QUOTA_PLANS and receives its monthly
allotment on the first of each month. Credits are spent before a live
provider call; cache hits are free. Admins can grant bonus credits, which
last until the next reset.

Balances are written through an in-process cache. Deductions for one user
are serialized by a per-user lock, and the database applies them with a
conditional UPDATE so the remaining balance can never go negative.
"""

import asyncio
import weakref
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any

import structlog

from letzpocket.core.exceptions import (
    InsufficientCreditsError,
    InvalidPlanError,
    QuotaNotFoundError,
    ValidationError,
)
from letzpocket.core.timeutils import as_utc, first_of_next_month, utcnow
from letzpocket.models.quota import BREAKDOWN_COLUMNS, UserApiQuota
from letzpocket.services.cache import ResponseCacheManager
from letzpocket.services.propertydata import DataType
from letzpocket.stores.quota_store import QuotaStore

logger = structlog.get_logger(__name__)

BATCH_ENDPOINT = "batch"


@dataclass(frozen=True)
class QuotaPlan:
    """A subscription plan."""

    id: str
    name: str
    monthly_credits: int
    features: tuple[str, ...]
    price: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "monthly_credits": self.monthly_credits,
            "features": list(self.features),
            "price": self.price,
        }


QUOTA_PLANS: tuple[QuotaPlan, ...] = (
    QuotaPlan(
        id="free",
        name="Free Tier",
        monthly_credits=10,
        features=("Basic valuations", "Monthly updates", "Email support"),
        price="£0/month",
    ),
    QuotaPlan(
        id="professional",
        name="Professional",
        monthly_credits=100,
        features=(
            "Unlimited valuations",
            "Real-time updates",
            "Priority support",
            "Advanced analytics",
            "Batch processing",
        ),
        price="£29/month",
    ),
    QuotaPlan(
        id="enterprise",
        name="Enterprise",
        monthly_credits=500,
        features=(
            "Everything in Professional",
            "Custom integrations",
            "Dedicated support",
            "API access",
            "White-label options",
        ),
        price="Custom pricing",
    ),
    QuotaPlan(
        id="trial",
        name="14-Day Trial",
        monthly_credits=50,
        features=("Full API access", "All features enabled"),
        price="Free trial",
    ),
)

_PLANS_BY_ID: dict[str, QuotaPlan] = {plan.id: plan for plan in QUOTA_PLANS}

_BREAKDOWN_BY_DATA_TYPE: dict[DataType, str] = {
    DataType.VALUATION: "valuations",
    DataType.RENTS: "rents",
    DataType.SOLD_PRICES: "sold_prices",
    DataType.GROWTH: "growth",
    DataType.DEMOGRAPHICS: "demographics",
}

# Accepts data type values, provider paths and the batch endpoint
_BREAKDOWN_BY_ENDPOINT: dict[str, str] = {
    **{dt.value: col for dt, col in _BREAKDOWN_BY_DATA_TYPE.items()},
    **{dt.endpoint: col for dt, col in _BREAKDOWN_BY_DATA_TYPE.items()},
    BATCH_ENDPOINT: "batch_requests",
}


def get_plan(plan_id: str) -> QuotaPlan:
    """Look up a plan by id.

    Raises:
        InvalidPlanError: Unknown plan id
    """
    plan = _PLANS_BY_ID.get(plan_id)
    if plan is None:
        raise InvalidPlanError(plan_id)
    return plan


def breakdown_category(endpoint: str) -> str | None:
    """Usage breakdown counter charged for an endpoint, if any."""
    return _BREAKDOWN_BY_ENDPOINT.get(endpoint)


@dataclass
class QuotaUsage:
    """Snapshot of one user's credits for the current period."""

    user_id: str
    plan_id: str
    used_credits: int
    remaining_credits: int
    bonus_credits: int
    reset_date: datetime
    usage_breakdown: dict[str, int] = field(default_factory=dict)

    @property
    def allocated_credits(self) -> int:
        """Plan allotment plus bonus for this period."""
        plan = _PLANS_BY_ID.get(self.plan_id)
        monthly = plan.monthly_credits if plan else 0
        return monthly + self.bonus_credits

    @property
    def utilisation(self) -> float:
        allocated = self.allocated_credits
        return self.used_credits / allocated if allocated else 0.0

    def copy(self) -> "QuotaUsage":
        return replace(self, usage_breakdown=dict(self.usage_breakdown))

    @classmethod
    def from_model(cls, quota: UserApiQuota) -> "QuotaUsage":
        return cls(
            user_id=quota.user_id,
            plan_id=quota.plan_id,
            used_credits=quota.used_credits,
            remaining_credits=quota.remaining_credits,
            bonus_credits=quota.bonus_credits,
            reset_date=as_utc(quota.reset_date),
            usage_breakdown={col: getattr(quota, col) for col in BREAKDOWN_COLUMNS},
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "user_id": self.user_id,
            "plan_id": self.plan_id,
            "used_credits": self.used_credits,
            "remaining_credits": self.remaining_credits,
            "bonus_credits": self.bonus_credits,
            "reset_date": self.reset_date.isoformat(),
            "usage_breakdown": dict(self.usage_breakdown),
        }


@dataclass
class QuotaStatistics:
    """Aggregates over every user's quota."""

    total_users: int
    plan_distribution: dict[str, int]
    total_credits_used: int
    total_credits_allocated: int
    average_usage_per_user: float
    top_users: list[dict[str, Any]]

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_users": self.total_users,
            "plan_distribution": dict(self.plan_distribution),
            "total_credits_used": self.total_credits_used,
            "total_credits_allocated": self.total_credits_allocated,
            "average_usage_per_user": self.average_usage_per_user,
            "top_users": list(self.top_users),
        }


@dataclass
class EfficiencyMetrics:
    """How much the cache is saving."""

    cache_hit_rate: float
    total_api_calls: int
    api_error_rate: float
    credits_saved: int
    stale_served: int
    recommendations: list[str]

    def to_dict(self) -> dict[str, Any]:
        return {
            "cache_hit_rate": self.cache_hit_rate,
            "total_api_calls": self.total_api_calls,
            "api_error_rate": self.api_error_rate,
            "credits_saved": self.credits_saved,
            "stale_served": self.stale_served,
            "recommendations": list(self.recommendations),
        }


class QuotaManager:
    """Plans, balances and monthly resets for PropertyData credits.

    Usage:
        ```python
        manager = QuotaManager(QuotaStore(session_factory))
        if await manager.check_credits("user-1", 2):
            await manager.deduct_credits("user-1", 2, "valuation")
        ```
    """

    # Efficiency thresholds for recommendations
    LOW_HIT_RATE = 0.5
    HIGH_ERROR_RATE = 0.1

    def __init__(
        self,
        store: QuotaStore,
        *,
        default_plan: str = "free",
        cache_manager: ResponseCacheManager | None = None,
    ) -> None:
        """Initialize the quota manager.

        Args:
            store: Persisted quota rows
            default_plan: Plan assigned on a user's first lookup
            cache_manager: ResponseCacheManager used for efficiency metrics
        """
        self.store = store
        self.default_plan = get_plan(default_plan)
        self.cache_manager = cache_manager
        self.last_reset_at: datetime | None = None
        self._usage_cache: dict[str, QuotaUsage] = {}
        # Bumped by every monthly reset; rows read before it are not cached.
        self._generation = 0
        # Entries disappear once no caller holds or waits on the lock.
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

    @staticmethod
    def get_available_plans() -> list[QuotaPlan]:
        return list(QUOTA_PLANS)

    def _lock(self, user_id: str) -> asyncio.Lock:
        lock = self._locks.get(user_id)
        if lock is None:
            lock = self._locks[user_id] = asyncio.Lock()
        return lock

    def _remember(self, quota: UserApiQuota, generation: int) -> QuotaUsage:
        """Cache a freshly read row unless a reset happened since it was read."""
        usage = QuotaUsage.from_model(quota)
        if generation == self._generation:
            self._usage_cache[usage.user_id] = usage
        return usage.copy()

    def forget(self, user_id: str) -> None:
        """Drop a user's cached balance."""
        self._usage_cache.pop(user_id, None)

    # -------------------------------------------------------------------------
    # Balances
    # -------------------------------------------------------------------------

    async def get_user_quota(self, user_id: str) -> QuotaUsage:
        """Current quota, creating it on the default plan on first lookup."""
        cached = self._usage_cache.get(user_id)
        if cached is not None:
            return cached.copy()

        generation = self._generation
        quota = await self.store.get_or_create(
            user_id,
            plan_id=self.default_plan.id,
            monthly_credits=self.default_plan.monthly_credits,
            reset_date=first_of_next_month(),
        )
        return self._remember(quota, generation)

    async def check_credits(self, user_id: str, required_credits: int = 1) -> bool:
        """True if the user can afford ``required_credits``."""
        quota = await self.get_user_quota(user_id)
        return quota.remaining_credits >= required_credits

    async def deduct_credits(
        self,
        user_id: str,
        credits: int,
        endpoint: str,
        params: dict[str, Any] | None = None,
    ) -> QuotaUsage:
        """Spend credits for a provider call.

        Args:
            user_id: Who pays
            credits: How many (positive)
            endpoint: Data type, provider path or "batch"; selects the
                breakdown counter
            params: Request parameters for the usage log

        Returns:
            The updated balance

        Raises:
            ValidationError: credits is not positive
            InsufficientCreditsError: Not enough credits remain
        """
        if credits <= 0:
            raise ValidationError("Credits must be positive", field="credits")

        async with self._lock(user_id):
            generation = self._generation
            quota = await self.get_user_quota(user_id)
            if quota.remaining_credits < credits:
                raise InsufficientCreditsError(
                    required=credits,
                    available=quota.remaining_credits,
                    user_id=user_id,
                )

            updated = await self.store.try_deduct(
                user_id,
                credits,
                endpoint=endpoint,
                breakdown_column=breakdown_category(endpoint),
                request_params=params,
            )
            if updated is None:
                # Balance moved underneath us (another process)
                self.forget(user_id)
                fresh = await self.get_user_quota(user_id)
                raise InsufficientCreditsError(
                    required=credits,
                    available=fresh.remaining_credits,
                    user_id=user_id,
                )

            usage = self._remember(updated, generation)

        logger.info(
            "credits_deducted",
            user_id=user_id,
            credits=credits,
            endpoint=endpoint,
            remaining=usage.remaining_credits,
        )
        return usage

    async def add_credits(
        self,
        user_id: str,
        credits: int,
        reason: str,
        *,
        admin_user_id: str | None = None,
    ) -> QuotaUsage:
        """Grant bonus credits; used credits are left unchanged."""
        if credits <= 0:
            raise ValidationError("Credits must be positive", field="credits")

        async with self._lock(user_id):
            generation = self._generation
            await self.get_user_quota(user_id)
            params: dict[str, Any] = {"reason": reason}
            if admin_user_id:
                params["admin_user_id"] = admin_user_id
            updated = await self.store.add_bonus(
                user_id, credits, request_params=params
            )
            if updated is None:
                self.forget(user_id)
                raise QuotaNotFoundError(user_id)
            usage = self._remember(updated, generation)

        logger.info(
            "credits_added",
            user_id=user_id,
            credits=credits,
            reason=reason,
            remaining=usage.remaining_credits,
        )
        return usage

    async def update_user_plan(
        self,
        user_id: str,
        plan_id: str,
        *,
        admin_user_id: str | None = None,
    ) -> QuotaUsage:
        """Move a user to another plan for the rest of the period.

        Used and bonus credits are kept; remaining credits become
        ``max(0, allotment + bonus - used)``.

        Raises:
            InvalidPlanError: Unknown plan id
        """
        plan = get_plan(plan_id)

        async with self._lock(user_id):
            generation = self._generation
            current = await self.get_user_quota(user_id)
            params: dict[str, Any] = {
                "old_plan": current.plan_id,
                "new_plan": plan.id,
            }
            if admin_user_id:
                params["admin_user_id"] = admin_user_id
            updated = await self.store.set_plan(
                user_id, plan.id, plan.monthly_credits, request_params=params
            )
            if updated is None:
                self.forget(user_id)
                raise QuotaNotFoundError(user_id)
            usage = self._remember(updated, generation)

        logger.info(
            "plan_updated",
            user_id=user_id,
            plan_id=plan.id,
            plan_name=plan.name,
            remaining=usage.remaining_credits,
        )
        return usage

    async def reset_monthly_quotas(self) -> int:
        """Start a new billing period for every user.

        Used and bonus credits and the breakdown go to zero, remaining
        credits to the plan allotment, and the reset date moves to the
        first of next month.

        Returns:
            Number of users reset
        """
        now = utcnow()
        allotments = {plan.id: plan.monthly_credits for plan in QUOTA_PLANS}
        user_ids = await self.store.reset_all(allotments, first_of_next_month(now))
        self._generation += 1
        self._usage_cache.clear()
        self.last_reset_at = now
        logger.info("monthly_quotas_reset", users=len(user_ids))
        return len(user_ids)

    # -------------------------------------------------------------------------
    # Reporting
    # -------------------------------------------------------------------------

    async def list_usages(self) -> list[QuotaUsage]:
        return [QuotaUsage.from_model(q) for q in await self.store.list_all()]

    async def get_users_near_quota_limit(self, threshold: float = 0.8) -> list[str]:
        """Ids of users who have used at least ``threshold`` of their credits."""
        return [
            usage.user_id
            for usage in await self.list_usages()
            if usage.allocated_credits and usage.utilisation >= threshold
        ]

    async def get_quota_statistics(self) -> QuotaStatistics:
        usages = await self.list_usages()
        distribution = {plan.id: 0 for plan in QUOTA_PLANS}
        for usage in usages:
            distribution[usage.plan_id] = distribution.get(usage.plan_id, 0) + 1

        total_used = sum(u.used_credits for u in usages)
        top = sorted(usages, key=lambda u: u.used_credits, reverse=True)[:10]
        return QuotaStatistics(
            total_users=len(usages),
            plan_distribution=distribution,
            total_credits_used=total_used,
            total_credits_allocated=sum(u.allocated_credits for u in usages),
            average_usage_per_user=total_used / len(usages) if usages else 0.0,
            top_users=[
                {
                    "user_id": u.user_id,
                    "plan_id": u.plan_id,
                    "credits_used": u.used_credits,
                    "utilisation": round(u.utilisation, 4),
                }
                for u in top
            ],
        )

    async def get_efficiency_metrics(self) -> EfficiencyMetrics:
        """Cache effectiveness and provider health, with suggestions."""
        if self.cache_manager is None:
            return EfficiencyMetrics(0.0, 0, 0.0, 0, 0, [])

        stats = await self.cache_manager.get_cache_stats()
        counters = self.cache_manager.counters
        usage = await self.cache_manager.store.usage_counts()
        errors = usage.get("error", 0)
        calls = stats.total_api_calls
        error_rate = errors / calls if calls else 0.0

        recommendations: list[str] = []
        lookups = counters.hits + counters.misses
        if lookups and stats.cache_hit_rate < self.LOW_HIT_RATE:
            recommendations.append("Increase cache duration for stable data types")
        if calls and error_rate > self.HIGH_ERROR_RATE:
            recommendations.append(
                "Provider error rate is high; check the API key and rate limits"
            )
        if counters.stale_served:
            recommendations.append(
                "Stale data was served during provider outages; review provider health"
            )
        if calls and counters.misses > counters.hits:
            recommendations.append("Implement batch processing for similar postcodes")

        return EfficiencyMetrics(
            cache_hit_rate=stats.cache_hit_rate,
            total_api_calls=calls,
            api_error_rate=error_rate,
            credits_saved=counters.hits,
            stale_served=counters.stale_served,
            recommendations=recommendations,
        )
