"""QuotaStore - persisted side of the quota manager.

Each mutating call changes the quota row and appends its usage-log row in
one transaction, so the audit trail never disagrees with the balances.
"""

from collections.abc import AsyncIterator, Mapping
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from letzpocket.models.quota import UserApiQuota
from letzpocket.models.usage_log import ApiUsageLog, UsageStatus
from letzpocket.repositories.quota import QuotaRepository
from letzpocket.repositories.usage_log import UsageLogRepository


class QuotaStore:
    """Database access for user quota rows."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    @asynccontextmanager
    async def _unit_of_work(self) -> AsyncIterator[AsyncSession]:
        async with self._session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    async def get(self, user_id: str) -> UserApiQuota | None:
        async with self._unit_of_work() as session:
            return await QuotaRepository(session).get_by_user(user_id)

    async def get_or_create(
        self,
        user_id: str,
        *,
        plan_id: str,
        monthly_credits: int,
        reset_date: datetime,
    ) -> UserApiQuota:
        """Fetch the user's quota row, creating it on the given plan if absent."""
        existing = await self.get(user_id)
        if existing is not None:
            return existing

        try:
            async with self._unit_of_work() as session:
                return await QuotaRepository(session).create(
                    UserApiQuota(
                        user_id=user_id,
                        plan_id=plan_id,
                        used_credits=0,
                        remaining_credits=monthly_credits,
                        bonus_credits=0,
                        reset_date=reset_date,
                    )
                )
        except IntegrityError:
            # Another process created it first
            quota = await self.get(user_id)
            if quota is None:
                raise
            return quota

    async def try_deduct(
        self,
        user_id: str,
        credits: int,
        *,
        endpoint: str,
        breakdown_column: str | None = None,
        request_params: dict[str, Any] | None = None,
    ) -> UserApiQuota | None:
        """Spend credits if enough remain, logging a ``charged`` row.

        Returns:
            The updated row, or None when the conditional update matched
            nothing (insufficient credits or no row)
        """
        async with self._unit_of_work() as session:
            quotas = QuotaRepository(session)
            if not await quotas.try_deduct(user_id, credits, breakdown_column):
                return None
            await UsageLogRepository(session).create(
                ApiUsageLog(
                    user_id=user_id,
                    endpoint=endpoint,
                    credits_used=credits,
                    request_params=request_params,
                    response_status=UsageStatus.CHARGED.value,
                )
            )
            quota = await quotas.get_by_user(user_id)
            if quota is not None:
                await session.refresh(quota)
            return quota

    async def add_bonus(
        self,
        user_id: str,
        credits: int,
        *,
        request_params: dict[str, Any] | None = None,
    ) -> UserApiQuota | None:
        """Grant bonus credits, logging a ``bonus`` row."""
        async with self._unit_of_work() as session:
            quotas = QuotaRepository(session)
            if not await quotas.add_bonus(user_id, credits):
                return None
            await UsageLogRepository(session).create(
                ApiUsageLog(
                    user_id=user_id,
                    endpoint="bonus",
                    credits_used=0,
                    request_params={"credits": credits, **(request_params or {})},
                    response_status=UsageStatus.BONUS.value,
                )
            )
            quota = await quotas.get_by_user(user_id)
            if quota is not None:
                await session.refresh(quota)
            return quota

    async def set_plan(
        self,
        user_id: str,
        plan_id: str,
        monthly_credits: int,
        *,
        request_params: dict[str, Any] | None = None,
    ) -> UserApiQuota | None:
        """Move a user to another plan, logging a ``plan_change`` row."""
        async with self._unit_of_work() as session:
            quota = await QuotaRepository(session).set_plan(
                user_id, plan_id, monthly_credits
            )
            if quota is None:
                return None
            await UsageLogRepository(session).create(
                ApiUsageLog(
                    user_id=user_id,
                    endpoint="plan_change",
                    credits_used=0,
                    request_params=request_params,
                    response_status=UsageStatus.PLAN_CHANGE.value,
                )
            )
            return quota

    async def reset_all(
        self,
        allotments: Mapping[str, int],
        reset_date: datetime,
    ) -> list[str]:
        """Start a new period for every user; returns the reset user ids."""
        async with self._unit_of_work() as session:
            return await QuotaRepository(session).reset_all(allotments, reset_date)

    async def list_all(self) -> list[UserApiQuota]:
        async with self._unit_of_work() as session:
            return await QuotaRepository(session).list_all()
