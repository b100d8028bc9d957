"""
Dashboard report endpoints.
"""

from fastapi import APIRouter
from pydantic import BaseModel

from ..dependencies import AuthenticatedUser, OrchestratorDep

router = APIRouter()


class AlertItem(BaseModel):
    student_id: str
    student_name: str
    message: str


class RosterResponse(BaseModel):
    total: int
    active: int
    inactive: int
    alerts: list[AlertItem]


class RevenueResponse(BaseModel):
    this_month: float
    last_month: float
    change_percent: float


class AgendaEntry(BaseModel):
    student_id: str
    student_name: str
    start_time: str


@router.get("/roster", response_model=RosterResponse, summary="Headcounts and alerts")
async def roster(
    api_key: AuthenticatedUser = None,
    orchestrator: OrchestratorDep = None,
) -> RosterResponse:
    summary = await orchestrator.roster_summary()
    return RosterResponse(
        total=summary.total,
        active=summary.active,
        inactive=summary.inactive,
        alerts=[
            AlertItem(student_id=a.student_id, student_name=a.student_name, message=a.message)
            for a in summary.alerts
        ],
    )


@router.get("/revenue", response_model=RevenueResponse, summary="Revenue this month vs last")
async def revenue(
    api_key: AuthenticatedUser = None,
    orchestrator: OrchestratorDep = None,
) -> RevenueResponse:
    summary = await orchestrator.revenue_summary()
    return RevenueResponse(
        this_month=summary.this_month,
        last_month=summary.last_month,
        change_percent=round(summary.change_percent, 1),
    )


@router.get("/agenda", response_model=list[AgendaEntry], summary="Today's classes")
async def agenda(
    api_key: AuthenticatedUser = None,
    orchestrator: OrchestratorDep = None,
) -> list[AgendaEntry]:
    return [
        AgendaEntry(student_id=item.student_id, student_name=item.student_name, start_time=item.start_time)
        for item in await orchestrator.agenda()
    ]
