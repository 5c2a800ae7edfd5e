"""Tests for QuotaManager with a mocked QuotaStore."""

import asyncio
import gc
from datetime import UTC, datetime
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from letzpocket.core.exceptions import (
    InsufficientCreditsError,
    InvalidPlanError,
    ValidationError,
)
from letzpocket.models.quota import BREAKDOWN_COLUMNS
from letzpocket.services.cache import CacheCounters, CacheStats
from letzpocket.services.quota import (
    QUOTA_PLANS,
    QuotaManager,
    QuotaUsage,
    breakdown_category,
    get_plan,
)

RESET_DATE = datetime(2026, 11, 1, tzinfo=UTC)


def make_row(
    user_id: str = "user-1",
    plan_id: str = "free",
    used: int = 0,
    remaining: int = 10,
    bonus: int = 0,
    **breakdown: int,
) -> MagicMock:
    row = MagicMock()
    row.user_id = user_id
    row.plan_id = plan_id
    row.used_credits = used
    row.remaining_credits = remaining
    row.bonus_credits = bonus
    row.reset_date = RESET_DATE
    for column in BREAKDOWN_COLUMNS:
        setattr(row, column, breakdown.get(column, 0))
    return row


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def mock_store() -> MagicMock:
    store = MagicMock()
    store.get_or_create = AsyncMock(return_value=make_row())
    store.try_deduct = AsyncMock()
    store.add_bonus = AsyncMock()
    store.set_plan = AsyncMock()
    store.reset_all = AsyncMock(return_value=[])
    store.list_all = AsyncMock(return_value=[])
    return store


@pytest.fixture
def manager(mock_store: MagicMock) -> QuotaManager:
    return QuotaManager(mock_store)


# =============================================================================
# Plan Catalog Tests
# =============================================================================


class TestPlans:
    def test_catalog(self) -> None:
        credits = {plan.id: plan.monthly_credits for plan in QUOTA_PLANS}

        assert credits == {
            "free": 10,
            "professional": 100,
            "enterprise": 500,
            "trial": 50,
        }
        assert get_plan("professional").price == "£29/month"
        assert get_plan("enterprise").price == "Custom pricing"

    def test_unknown_plan(self) -> None:
        with pytest.raises(InvalidPlanError, match="Invalid plan ID: platinum"):
            get_plan("platinum")

    def test_unknown_default_plan_rejected(self, mock_store: MagicMock) -> None:
        with pytest.raises(InvalidPlanError):
            QuotaManager(mock_store, default_plan="platinum")

    @pytest.mark.parametrize(
        ("endpoint", "column"),
        [
            ("valuation", "valuations"),
            ("/valuation-rent", "valuations"),
            ("sold_prices", "sold_prices"),
            ("batch", "batch_requests"),
            ("unknown", None),
        ],
    )
    def test_breakdown_category(self, endpoint: str, column: str | None) -> None:
        assert breakdown_category(endpoint) == column


# =============================================================================
# Balance Tests
# =============================================================================


class TestBalances:
    @pytest.mark.asyncio
    async def test_first_lookup_creates_default_plan(
        self, manager: QuotaManager, mock_store: MagicMock
    ) -> None:
        usage = await manager.get_user_quota("user-1")

        assert usage.plan_id == "free"
        assert usage.remaining_credits == 10
        kwargs = mock_store.get_or_create.await_args.kwargs
        assert kwargs["plan_id"] == "free"
        assert kwargs["monthly_credits"] == 10

    @pytest.mark.asyncio
    async def test_lookup_is_cached(
        self, manager: QuotaManager, mock_store: MagicMock
    ) -> None:
        await manager.get_user_quota("user-1")
        await manager.get_user_quota("user-1")

        assert mock_store.get_or_create.await_count == 1

    @pytest.mark.asyncio
    async def test_check_credits(self, manager: QuotaManager) -> None:
        assert await manager.check_credits("user-1", 10) is True
        assert await manager.check_credits("user-1", 11) is False

    @pytest.mark.asyncio
    async def test_deduct_updates_cache(
        self, manager: QuotaManager, mock_store: MagicMock
    ) -> None:
        mock_store.try_deduct.return_value = make_row(used=3, remaining=7, rents=1)

        usage = await manager.deduct_credits("user-1", 3, "rents")

        assert usage.remaining_credits == 7
        assert usage.usage_breakdown["rents"] == 1
        assert (await manager.get_user_quota("user-1")).remaining_credits == 7
        kwargs = mock_store.try_deduct.await_args.kwargs
        assert kwargs["breakdown_column"] == "rents"
        assert kwargs["endpoint"] == "rents"

    @pytest.mark.asyncio
    async def test_deduct_rejected_before_side_effects(
        self, manager: QuotaManager, mock_store: MagicMock
    ) -> None:
        with pytest.raises(InsufficientCreditsError) as exc_info:
            await manager.deduct_credits("user-1", 11, "valuation")

        assert exc_info.value.required == 11
        assert exc_info.value.available == 10
        message = "Insufficient credits. Required: 11, Available: 10"
        assert str(exc_info.value) == message
        mock_store.try_deduct.assert_not_called()

    @pytest.mark.asyncio
    async def test_conditional_update_miss_raises(
        self, manager: QuotaManager, mock_store: MagicMock
    ) -> None:
        mock_store.try_deduct.return_value = None
        mock_store.get_or_create.side_effect = [
            make_row(remaining=10),
            make_row(used=9, remaining=1),
        ]

        with pytest.raises(InsufficientCreditsError) as exc_info:
            await manager.deduct_credits("user-1", 2, "growth")

        assert exc_info.value.available == 1

    @pytest.mark.asyncio
    @pytest.mark.parametrize("credits", [0, -5])
    async def test_non_positive_credits_rejected(
        self, manager: QuotaManager, credits: int
    ) -> None:
        with pytest.raises(ValidationError):
            await manager.deduct_credits("user-1", credits, "rents")
        with pytest.raises(ValidationError):
            await manager.add_credits("user-1", credits, "goodwill")

    @pytest.mark.asyncio
    async def test_add_credits_records_reason(
        self, manager: QuotaManager, mock_store: MagicMock
    ) -> None:
        mock_store.add_bonus.return_value = make_row(remaining=20, bonus=10)

        usage = await manager.add_credits(
            "user-1", 10, "goodwill", admin_user_id="admin-1"
        )

        assert usage.remaining_credits == 20
        assert usage.bonus_credits == 10
        params = mock_store.add_bonus.await_args.kwargs["request_params"]
        assert params == {"reason": "goodwill", "admin_user_id": "admin-1"}

    @pytest.mark.asyncio
    async def test_update_plan(
        self, manager: QuotaManager, mock_store: MagicMock
    ) -> None:
        mock_store.set_plan.return_value = make_row(
            plan_id="professional", used=4, remaining=96
        )

        usage = await manager.update_user_plan("user-1", "professional")

        assert usage.plan_id == "professional"
        assert usage.remaining_credits == 96
        args = mock_store.set_plan.await_args
        assert args.args == ("user-1", "professional", 100)
        assert args.kwargs["request_params"]["old_plan"] == "free"

    @pytest.mark.asyncio
    async def test_update_plan_invalid(
        self, manager: QuotaManager, mock_store: MagicMock
    ) -> None:
        with pytest.raises(InvalidPlanError):
            await manager.update_user_plan("user-1", "gold")

        mock_store.set_plan.assert_not_called()

    @pytest.mark.asyncio
    async def test_reset_clears_cache(
        self, manager: QuotaManager, mock_store: MagicMock
    ) -> None:
        await manager.get_user_quota("user-1")
        mock_store.reset_all.return_value = ["user-1", "user-2"]

        count = await manager.reset_monthly_quotas()

        assert count == 2
        assert manager.last_reset_at is not None
        allotments = mock_store.reset_all.await_args.args[0]
        assert allotments["trial"] == 50
        await manager.get_user_quota("user-1")
        assert mock_store.get_or_create.await_count == 2

    @pytest.mark.asyncio
    async def test_reset_during_deduction_keeps_fresh_balance(
        self, manager: QuotaManager, mock_store: MagicMock
    ) -> None:
        started = asyncio.Event()
        release = asyncio.Event()

        async def slow_deduct(*args: Any, **kwargs: Any) -> MagicMock:
            started.set()
            await release.wait()
            return make_row(used=10, remaining=0, rents=10)

        mock_store.try_deduct.side_effect = slow_deduct
        mock_store.reset_all.return_value = ["user-1"]

        deduction = asyncio.create_task(manager.deduct_credits("user-1", 10, "rents"))
        await started.wait()
        await manager.reset_monthly_quotas()
        release.set()
        usage = await deduction

        assert usage.remaining_credits == 0
        # the post-reset row is read again instead of the stale balance
        assert await manager.check_credits("user-1", 10) is True
        assert mock_store.get_or_create.await_count == 2

    @pytest.mark.asyncio
    async def test_returned_usage_is_a_copy(self, manager: QuotaManager) -> None:
        usage = await manager.get_user_quota("user-1")
        usage.remaining_credits = 0
        usage.usage_breakdown["rents"] = 99

        again = await manager.get_user_quota("user-1")

        assert again.remaining_credits == 10
        assert again.usage_breakdown["rents"] == 0

    @pytest.mark.asyncio
    async def test_idle_user_locks_are_dropped(
        self, manager: QuotaManager, mock_store: MagicMock
    ) -> None:
        mock_store.try_deduct.return_value = make_row(used=1, remaining=9)

        for n in range(5):
            await manager.deduct_credits(f"user-{n}", 1, "rents")
        gc.collect()

        assert len(manager._locks) == 0


# =============================================================================
# Reporting Tests
# =============================================================================


class TestReporting:
    @pytest.mark.asyncio
    async def test_empty_statistics(self, manager: QuotaManager) -> None:
        stats = await manager.get_quota_statistics()

        assert stats.total_users == 0
        assert stats.plan_distribution == {
            "free": 0,
            "professional": 0,
            "enterprise": 0,
            "trial": 0,
        }
        assert stats.average_usage_per_user == 0.0
        assert stats.top_users == []

    @pytest.mark.asyncio
    async def test_statistics(
        self, manager: QuotaManager, mock_store: MagicMock
    ) -> None:
        mock_store.list_all.return_value = [
            make_row("a", "free", used=9, remaining=1),
            make_row("b", "professional", used=20, remaining=80),
            make_row("c", "free", used=0, remaining=15, bonus=5),
        ]

        stats = await manager.get_quota_statistics()

        assert stats.total_users == 3
        assert stats.plan_distribution["free"] == 2
        assert stats.total_credits_used == 29
        assert stats.total_credits_allocated == 10 + 100 + 15
        assert stats.top_users[0]["user_id"] == "b"
        assert stats.top_users[1]["utilisation"] == 0.9

    @pytest.mark.asyncio
    async def test_users_near_limit(
        self, manager: QuotaManager, mock_store: MagicMock
    ) -> None:
        mock_store.list_all.return_value = [
            make_row("a", "free", used=8, remaining=2),
            make_row("b", "free", used=7, remaining=3),
            make_row("c", "free", used=8, remaining=7, bonus=5),
        ]

        assert await manager.get_users_near_quota_limit() == ["a"]
        assert await manager.get_users_near_quota_limit(0.5) == ["a", "b", "c"]

    @pytest.mark.asyncio
    async def test_efficiency_without_cache_manager(
        self, manager: QuotaManager
    ) -> None:
        metrics = await manager.get_efficiency_metrics()

        assert metrics.total_api_calls == 0
        assert metrics.recommendations == []

    @pytest.mark.asyncio
    async def test_efficiency_with_cache_manager(self, mock_store: MagicMock) -> None:
        cache_manager = MagicMock()
        cache_manager.counters = CacheCounters(hits=1, misses=4)
        cache_manager.get_cache_stats = AsyncMock(
            return_value=CacheStats(
                total_cached_entries=4,
                cache_hit_rate=0.2,
                total_api_calls=4,
                credits_used=4,
            )
        )
        cache_manager.store.usage_counts = AsyncMock(
            return_value={"success": 3, "error": 1}
        )
        manager = QuotaManager(mock_store, cache_manager=cache_manager)

        metrics = await manager.get_efficiency_metrics()

        assert metrics.cache_hit_rate == 0.2
        assert metrics.api_error_rate == 0.25
        assert metrics.credits_saved == 1
        assert len(metrics.recommendations) >= 2


class TestQuotaUsage:
    def test_utilisation_includes_bonus(self) -> None:
        usage = QuotaUsage.from_model(make_row(used=6, remaining=9, bonus=5))

        assert usage.allocated_credits == 15
        assert usage.utilisation == pytest.approx(0.4)
        assert usage.to_dict()["reset_date"] == RESET_DATE.isoformat()
