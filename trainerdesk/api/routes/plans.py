"""
Plan catalog endpoints.

Plans are edited rarely. Changing one never touches existing balances;
the new terms apply the next time a student pays for it.
"""

import logging
from typing import Optional

from fastapi import APIRouter
from pydantic import BaseModel, Field

from ...core.billing.models import Plan, PlanKind
from ..dependencies import AuthenticatedUser, OrchestratorDep

logger = logging.getLogger(__name__)

router = APIRouter()


class PlanRequest(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    price: float = Field(ge=0)
    kind: PlanKind
    duration_days: Optional[int] = Field(None, gt=0, description="Required for duration plans")
    session_count: Optional[int] = Field(None, gt=0, description="Required for session packs")


class PlanResponse(BaseModel):
    plan_id: str
    name: str
    price: float
    kind: PlanKind
    duration_days: Optional[int] = None
    session_count: Optional[int] = None

    @classmethod
    def from_plan(cls, plan: Plan) -> "PlanResponse":
        return cls(
            plan_id=plan.id,
            name=plan.name,
            price=plan.price,
            kind=plan.kind,
            duration_days=plan.duration_days,
            session_count=plan.session_count,
        )


@router.get(
    "",
    response_model=list[PlanResponse],
    summary="List plans",
)
async def list_plans(
    api_key: AuthenticatedUser = None,
    orchestrator: OrchestratorDep = None,
) -> list[PlanResponse]:
    return [PlanResponse.from_plan(plan) for plan in await orchestrator.list_plans()]


@router.put(
    "/{plan_id}",
    response_model=PlanResponse,
    summary="Create or replace a plan",
)
async def save_plan(
    plan_id: str,
    request: PlanRequest,
    api_key: AuthenticatedUser = None,
    orchestrator: OrchestratorDep = None,
) -> PlanResponse:
    plan = await orchestrator.save_plan(Plan(
        id=plan_id,
        name=request.name,
        price=request.price,
        kind=request.kind,
        duration_days=request.duration_days,
        session_count=request.session_count,
    ))
    return PlanResponse.from_plan(plan)
