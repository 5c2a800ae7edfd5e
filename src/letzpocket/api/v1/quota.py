"""Quota endpoints: plan catalog, balances and credit checks."""

from typing import Annotated

from fastapi import APIRouter, Query, status

from letzpocket.dependencies import QuotaManagerDep
from letzpocket.schemas.quota import (
    CreditCheckResponse,
    QuotaPlanResponse,
    QuotaUsageResponse,
)

router = APIRouter()


@router.get(
    "/plans",
    response_model=list[QuotaPlanResponse],
    status_code=status.HTTP_200_OK,
    summary="Available plans",
)
async def list_plans(quota_manager: QuotaManagerDep) -> list[QuotaPlanResponse]:
    return [
        QuotaPlanResponse.from_plan(plan)
        for plan in quota_manager.get_available_plans()
    ]


@router.get(
    "/{user_id}",
    response_model=QuotaUsageResponse,
    status_code=status.HTTP_200_OK,
    summary="A user's quota",
    description="Creates the quota on the default plan on first lookup.",
)
async def get_user_quota(
    user_id: str,
    quota_manager: QuotaManagerDep,
) -> QuotaUsageResponse:
    usage = await quota_manager.get_user_quota(user_id)
    return QuotaUsageResponse.from_usage(usage)


@router.get(
    "/{user_id}/check",
    response_model=CreditCheckResponse,
    status_code=status.HTTP_200_OK,
    summary="Check whether a user can afford a charge",
)
async def check_credits(
    user_id: str,
    quota_manager: QuotaManagerDep,
    credits: Annotated[int, Query(ge=1, le=10_000)] = 1,
) -> CreditCheckResponse:
    has_credits = await quota_manager.check_credits(user_id, credits)
    return CreditCheckResponse(
        user_id=user_id,
        required_credits=credits,
        has_credits=has_credits,
    )
