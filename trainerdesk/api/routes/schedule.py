"""
Schedule conflict check.

Lets the dashboard warn about an overlap while the trainer is still
editing, before anything is saved.
"""

from typing import Optional

from fastapi import APIRouter
from pydantic import BaseModel, Field

from ..dependencies import AuthenticatedUser, OrchestratorDep
from .students import TimeSlotModel, to_slots

router = APIRouter()


class ConflictCheckRequest(BaseModel):
    slots: list[TimeSlotModel] = Field(default_factory=list)
    exclude_student_id: Optional[str] = Field(
        None,
        description="The student being edited, so their own slots don't count",
    )


class ConflictCheckResponse(BaseModel):
    conflict: bool
    conflicting_student_id: Optional[str] = None


@router.post(
    "/conflicts",
    response_model=ConflictCheckResponse,
    summary="Check slots against every other student's schedule",
)
async def check_conflicts(
    request: ConflictCheckRequest,
    api_key: AuthenticatedUser = None,
    orchestrator: OrchestratorDep = None,
) -> ConflictCheckResponse:
    conflict = await orchestrator.check_schedule(
        to_slots(request.slots),
        exclude_student_id=request.exclude_student_id,
    )
    return ConflictCheckResponse(conflict=conflict is not None, conflicting_student_id=conflict)
