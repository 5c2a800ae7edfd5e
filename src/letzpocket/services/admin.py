"""PropertyDataAdmin - administrative operations over quotas.

Admin actions are attributed to the admin user id passed by the caller and
recorded in the usage log; permission checks happen upstream.
"""

from dataclasses import dataclass, field
from typing import Any

import structlog
from sqlalchemy.exc import SQLAlchemyError

from letzpocket.config import Settings, get_settings
from letzpocket.core.exceptions import LetzPocketError
from letzpocket.core.timeutils import as_utc
from letzpocket.services.cache import ResponseCacheManager
from letzpocket.services.quota import QuotaManager, QuotaUsage, get_plan

logger = structlog.get_logger(__name__)


@dataclass
class PlanUpdate:
    user_id: str
    plan_id: str


@dataclass
class BulkUpdateResult:
    """Outcome of a bulk plan change."""

    succeeded: list[str] = field(default_factory=list)
    failed: list[dict[str, str]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {"succeeded": list(self.succeeded), "failed": list(self.failed)}


class PropertyDataAdmin:
    """Plan changes, bonus credits and dashboards for administrators."""

    NEAR_LIMIT_THRESHOLD = 0.9
    RECENT_ACTIVITY_LIMIT = 20

    def __init__(
        self,
        quota_manager: QuotaManager,
        cache_manager: ResponseCacheManager | None = None,
        settings: Settings | None = None,
    ) -> None:
        self.quota_manager = quota_manager
        self.cache_manager = cache_manager
        self._settings = settings or get_settings()

    async def update_user_plan(
        self,
        user_id: str,
        plan_id: str,
        admin_user_id: str,
    ) -> QuotaUsage:
        logger.info(
            "admin_plan_update",
            admin_user_id=admin_user_id,
            user_id=user_id,
            plan_id=plan_id,
        )
        return await self.quota_manager.update_user_plan(
            user_id, plan_id, admin_user_id=admin_user_id
        )

    async def grant_bonus_credits(
        self,
        user_id: str,
        credits: int,
        reason: str,
        admin_user_id: str,
    ) -> QuotaUsage:
        logger.info(
            "admin_bonus_granted",
            admin_user_id=admin_user_id,
            user_id=user_id,
            credits=credits,
            reason=reason,
        )
        return await self.quota_manager.add_credits(
            user_id, credits, reason, admin_user_id=admin_user_id
        )

    async def bulk_update_plans(
        self,
        updates: list[PlanUpdate],
        admin_user_id: str,
    ) -> BulkUpdateResult:
        """Apply plan changes one by one; a failure does not stop the rest."""
        logger.info(
            "admin_bulk_plan_update",
            admin_user_id=admin_user_id,
            count=len(updates),
        )
        result = BulkUpdateResult()
        for update in updates:
            try:
                plan = get_plan(update.plan_id)
                await self.quota_manager.update_user_plan(
                    update.user_id, plan.id, admin_user_id=admin_user_id
                )
            except (LetzPocketError, SQLAlchemyError) as e:
                error = getattr(e, "message", None) or str(e)
                logger.warning(
                    "admin_plan_update_failed",
                    user_id=update.user_id,
                    plan_id=update.plan_id,
                    error=error,
                    error_type=type(e).__name__,
                )
                result.failed.append(
                    {
                        "user_id": update.user_id,
                        "plan_id": update.plan_id,
                        "error": error,
                    }
                )
                continue
            result.succeeded.append(update.user_id)
        return result

    async def get_admin_dashboard(self) -> dict[str, Any]:
        """Quota statistics, efficiency, recent activity and system health."""
        stats = await self.quota_manager.get_quota_statistics()
        efficiency = await self.quota_manager.get_efficiency_metrics()

        recent: list[dict[str, Any]] = []
        if self.cache_manager is not None:
            rows = await self.cache_manager.store.recent_usage(
                self.RECENT_ACTIVITY_LIMIT
            )
            recent = [
                {
                    "user_id": row.user_id,
                    "endpoint": row.endpoint,
                    "credits_used": row.credits_used,
                    "status": row.response_status,
                    "created_at": as_utc(row.created_at).isoformat(),
                }
                for row in rows
            ]

        last_reset = self.quota_manager.last_reset_at
        return {
            "quota_stats": stats.to_dict(),
            "efficiency": efficiency.to_dict(),
            "recent_activity": recent,
            "system_health": {
                "api_status": (
                    "operational"
                    if self._settings.propertydata_configured
                    else "not_configured"
                ),
                "cache_hit_rate": efficiency.cache_hit_rate,
                "last_reset": last_reset.isoformat() if last_reset else None,
            },
        }

    async def get_actionable_users(self) -> dict[str, list[str]]:
        """Users who need attention, grouped by reason."""
        usages = await self.quota_manager.list_usages()
        near_limit = await self.quota_manager.get_users_near_quota_limit(
            self.NEAR_LIMIT_THRESHOLD
        )
        return {
            "near_quota_limit": near_limit,
            "inactive_users": [u.user_id for u in usages if u.used_credits == 0],
            "high_usage": [u.user_id for u in usages if u.remaining_credits == 0],
        }
