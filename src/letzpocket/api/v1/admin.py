"""Admin endpoints for plans, bonus credits and reporting.

Callers pass the acting admin's id; authorization happens upstream.
"""

from fastapi import APIRouter, status

from letzpocket.core.logging import get_logger
from letzpocket.dependencies import AdminDep, QuotaManagerDep
from letzpocket.schemas.common import ErrorResponse
from letzpocket.schemas.quota import (
    ActionableUsersResponse,
    AdminDashboardResponse,
    BonusCreditsRequest,
    BulkPlanUpdateRequest,
    BulkPlanUpdateResponse,
    PlanUpdateRequest,
    QuotaResetResponse,
    QuotaUsageResponse,
)
from letzpocket.services.admin import PlanUpdate

logger = get_logger(__name__)

router = APIRouter()


@router.get(
    "/dashboard",
    response_model=AdminDashboardResponse,
    status_code=status.HTTP_200_OK,
    summary="Admin dashboard",
)
async def get_dashboard(admin: AdminDep) -> AdminDashboardResponse:
    return AdminDashboardResponse.model_validate(await admin.get_admin_dashboard())


@router.put(
    "/users/{user_id}/plan",
    response_model=QuotaUsageResponse,
    status_code=status.HTTP_200_OK,
    summary="Change a user's plan",
    responses={
        400: {"model": ErrorResponse, "description": "Invalid plan ID"},
    },
)
async def update_user_plan(
    user_id: str,
    request: PlanUpdateRequest,
    admin: AdminDep,
) -> QuotaUsageResponse:
    usage = await admin.update_user_plan(
        user_id, request.plan_id, request.admin_user_id
    )
    return QuotaUsageResponse.from_usage(usage)


@router.post(
    "/users/{user_id}/credits",
    response_model=QuotaUsageResponse,
    status_code=status.HTTP_200_OK,
    summary="Grant bonus credits",
)
async def grant_bonus_credits(
    user_id: str,
    request: BonusCreditsRequest,
    admin: AdminDep,
) -> QuotaUsageResponse:
    usage = await admin.grant_bonus_credits(
        user_id, request.credits, request.reason, request.admin_user_id
    )
    return QuotaUsageResponse.from_usage(usage)


@router.post(
    "/plans/bulk",
    response_model=BulkPlanUpdateResponse,
    status_code=status.HTTP_200_OK,
    summary="Change many users' plans",
    description="Best effort: failures are reported per user.",
)
async def bulk_update_plans(
    request: BulkPlanUpdateRequest,
    admin: AdminDep,
) -> BulkPlanUpdateResponse:
    result = await admin.bulk_update_plans(
        [PlanUpdate(user_id=u.user_id, plan_id=u.plan_id) for u in request.updates],
        request.admin_user_id,
    )
    return BulkPlanUpdateResponse.model_validate(result.to_dict())


@router.post(
    "/quotas/reset",
    response_model=QuotaResetResponse,
    status_code=status.HTTP_200_OK,
    summary="Run the monthly quota reset now",
)
async def reset_quotas(quota_manager: QuotaManagerDep) -> QuotaResetResponse:
    logger.info("manual_quota_reset_requested")
    count = await quota_manager.reset_monthly_quotas()
    return QuotaResetResponse(users_reset=count)


@router.get(
    "/users/actionable",
    response_model=ActionableUsersResponse,
    status_code=status.HTTP_200_OK,
    summary="Users who need attention",
)
async def get_actionable_users(admin: AdminDep) -> ActionableUsersResponse:
    return ActionableUsersResponse.model_validate(await admin.get_actionable_users())
