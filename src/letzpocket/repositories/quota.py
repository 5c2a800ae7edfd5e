"""QuotaRepository with concurrency-safe credit operations.

Deductions use a conditional UPDATE (``remaining_credits >= :credits``) in
the same spirit as optimistic locking: the database decides, so two
concurrent writers can never both spend the last credits.
"""

from __future__ import annotations

from collections.abc import Mapping
from datetime import datetime

from sqlalchemy import select, update

from letzpocket.models.quota import BREAKDOWN_COLUMNS, UserApiQuota
from letzpocket.repositories.base import BaseRepository


class QuotaRepository(BaseRepository[UserApiQuota]):
    """Repository for UserApiQuota rows."""

    async def get_by_user(self, user_id: str) -> UserApiQuota | None:
        """Get the quota row for a user.

        Args:
            user_id: Application user id

        Returns:
            The row if present, None otherwise
        """
        return await self._one_or_none(
            self._select().where(UserApiQuota.user_id == user_id)
        )

    async def try_deduct(
        self,
        user_id: str,
        credits: int,
        breakdown_column: str | None = None,
    ) -> bool:
        """Atomically spend credits if enough remain.

        Args:
            user_id: Application user id
            credits: Credits to spend (positive)
            breakdown_column: Usage counter to increment, if any

        Returns:
            True if the row was updated, False if credits were insufficient
            or the row does not exist
        """
        values: dict[str, object] = {
            "used_credits": UserApiQuota.used_credits + credits,
            "remaining_credits": UserApiQuota.remaining_credits - credits,
        }
        if breakdown_column is not None:
            if breakdown_column not in BREAKDOWN_COLUMNS:
                raise ValueError(f"Unknown breakdown column: {breakdown_column}")
            column = getattr(UserApiQuota, breakdown_column)
            values[breakdown_column] = column + 1

        stmt = (
            update(UserApiQuota)
            .where(UserApiQuota.user_id == user_id)
            .where(UserApiQuota.remaining_credits >= credits)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return result.rowcount > 0

    async def add_bonus(self, user_id: str, credits: int) -> bool:
        """Grant bonus credits without touching used credits."""
        stmt = (
            update(UserApiQuota)
            .where(UserApiQuota.user_id == user_id)
            .values(
                remaining_credits=UserApiQuota.remaining_credits + credits,
                bonus_credits=UserApiQuota.bonus_credits + credits,
            )
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return result.rowcount > 0

    async def set_plan(
        self,
        user_id: str,
        plan_id: str,
        monthly_credits: int,
    ) -> UserApiQuota | None:
        """Switch plan, keeping used and bonus credits for the period.

        Remaining credits are recomputed against the new allotment and
        floored at zero.

        Returns:
            The updated row, or None if the user has no quota row
        """
        quota = await self.get_by_user(user_id)
        if quota is None:
            return None

        quota.plan_id = plan_id
        quota.remaining_credits = max(
            0, monthly_credits + quota.bonus_credits - quota.used_credits
        )
        await self.session.flush()
        return quota

    async def reset_all(
        self,
        allotments: Mapping[str, int],
        reset_date: datetime,
    ) -> list[str]:
        """Start a new billing period for every user.

        Used, bonus and breakdown counters go to zero and remaining credits
        to the plan allotment. Users on plans missing from ``allotments``
        are left untouched.

        Args:
            allotments: Monthly credits keyed by plan id
            reset_date: Next reset date to store

        Returns:
            Ids of the users that were reset
        """
        result = await self.session.execute(
            select(UserApiQuota.user_id).where(
                UserApiQuota.plan_id.in_(list(allotments))
            )
        )
        user_ids = list(result.scalars().all())

        zeroed = {column: 0 for column in BREAKDOWN_COLUMNS}
        for plan_id, monthly_credits in allotments.items():
            await self.session.execute(
                update(UserApiQuota)
                .where(UserApiQuota.plan_id == plan_id)
                .values(
                    used_credits=0,
                    bonus_credits=0,
                    remaining_credits=monthly_credits,
                    reset_date=reset_date,
                    **zeroed,
                )
                .execution_options(synchronize_session=False)
            )

        return user_ids

    async def list_all(self) -> list[UserApiQuota]:
        """Every quota row."""
        return await self._all(self._select().order_by(UserApiQuota.user_id))
