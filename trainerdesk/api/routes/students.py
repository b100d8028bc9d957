"""
Student account API endpoints.

Enrollment, plan changes, class history, payments, schedule and access
blocking. Every mutation goes through the accounting orchestrator, which
applies it as one atomic read-modify-write on the student's account.

Domain errors are not caught here; the handler registered in main maps
them to status codes.
"""

import logging
from datetime import date, datetime
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, status
from pydantic import BaseModel, Field

from ...core.billing.account import AccountStatus, StatusReport
from ...core.billing.models import (
    ClassEvent,
    ClassEventKind,
    PaymentMethod,
    PaymentRecord,
    StudentAccount,
    TimeSlot,
)
from ..dependencies import AuthenticatedUser, OrchestratorDep

logger = logging.getLogger(__name__)

router = APIRouter()


# ---------------------------------------------------------------------------
# Request/Response Models
# ---------------------------------------------------------------------------

class TimeSlotModel(BaseModel):
    """A weekly slot as the dashboard edits it."""
    day: str = Field(description="Weekday key, e.g. 'monday'")
    start_time: Optional[str] = Field(None, description="Start time, HH:MM")
    end_time: Optional[str] = Field(None, description="End time, HH:MM")

    @classmethod
    def from_slot(cls, slot: TimeSlot) -> "TimeSlotModel":
        return cls(day=slot.weekday.key, start_time=slot.start_time, end_time=slot.end_time)


def to_slots(models: list[TimeSlotModel]) -> list[TimeSlot]:
    """Usable slots only; blank or malformed rows are dropped."""
    slots = []
    for model in models:
        slot = TimeSlot.parse(model.day, model.start_time, model.end_time)
        if slot is not None:
            slots.append(slot)
    return slots


class EnrollRequest(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    email: str = Field(default="", max_length=320)
    phone: str = Field(default="", max_length=40)
    plan_id: Optional[str] = Field(None, description="Starting plan, if any")


class StudentResponse(BaseModel):
    student_id: str
    name: str
    email: str
    phone: str
    start_date: Optional[date] = None
    plan_id: Optional[str] = None
    due_date: Optional[date] = None
    remaining_sessions: Optional[int] = None
    access_blocked: bool = False
    schedule: list[TimeSlotModel] = []

    @classmethod
    def from_account(cls, account: StudentAccount) -> "StudentResponse":
        return cls(
            student_id=account.id,
            name=account.name,
            email=account.email,
            phone=account.phone,
            start_date=account.start_date,
            plan_id=account.plan_id,
            due_date=account.due_date,
            remaining_sessions=account.remaining_sessions,
            access_blocked=account.access_blocked,
            schedule=[TimeSlotModel.from_slot(slot) for slot in account.schedule],
        )


class StatusResponse(BaseModel):
    student_id: str
    status: AccountStatus
    count: Optional[int] = None
    due_date: Optional[date] = None
    blocked: bool = False
    situation: str

    @classmethod
    def from_report(cls, student_id: str, report: StatusReport) -> "StatusResponse":
        return cls(
            student_id=student_id,
            status=report.status,
            count=report.count,
            due_date=report.due_date,
            blocked=report.blocked,
            situation=report.situation,
        )


class PlanChangeRequest(BaseModel):
    plan_id: Optional[str] = Field(None, description="New plan; null removes the plan")


class ClassEventRequest(BaseModel):
    kind: ClassEventKind = Field(
        ClassEventKind.REGULAR,
        description="regular and absent consume a session from a pack; extra never does",
    )


class ClassEventResponse(BaseModel):
    event_id: UUID
    kind: ClassEventKind
    timestamp: datetime

    @classmethod
    def from_event(cls, event: ClassEvent) -> "ClassEventResponse":
        return cls(event_id=event.id, kind=event.kind, timestamp=event.timestamp)


class PaymentRequest(BaseModel):
    plan_id: Optional[str] = Field(None, description="Plan being paid for; defaults to the current plan")
    method: PaymentMethod = PaymentMethod.PIX


class PaymentResponse(BaseModel):
    payment_id: UUID
    student_id: str
    plan_id: str
    plan_name: str
    amount: float
    method: PaymentMethod
    paid_at: datetime

    @classmethod
    def from_record(cls, payment: PaymentRecord) -> "PaymentResponse":
        return cls(
            payment_id=payment.id,
            student_id=payment.student_id,
            plan_id=payment.plan_id,
            plan_name=payment.plan_name,
            amount=payment.amount,
            method=payment.method,
            paid_at=payment.paid_at,
        )


class ScheduleRequest(BaseModel):
    slots: list[TimeSlotModel] = Field(default_factory=list)
    allow_conflict: bool = Field(
        False,
        description="Save even if another student holds an overlapping slot",
    )


class ScheduleResponse(BaseModel):
    student_id: str
    slots: list[TimeSlotModel]
    conflicting_student_id: Optional[str] = None


class AccessRequest(BaseModel):
    blocked: bool


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@router.post(
    "",
    response_model=StudentResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Enroll a student",
)
async def enroll_student(
    request: EnrollRequest,
    api_key: AuthenticatedUser = None,
    orchestrator: OrchestratorDep = None,
) -> StudentResponse:
    account = await orchestrator.enroll_student(
        name=request.name,
        email=request.email,
        plan_id=request.plan_id,
        phone=request.phone,
    )
    return StudentResponse.from_account(account)


@router.get(
    "/{student_id}",
    response_model=StudentResponse,
    summary="Get a student's account",
)
async def get_student(
    student_id: str,
    api_key: AuthenticatedUser = None,
    orchestrator: OrchestratorDep = None,
) -> StudentResponse:
    return StudentResponse.from_account(await orchestrator.get_account(student_id))


@router.get(
    "/{student_id}/status",
    response_model=StatusResponse,
    summary="Get a student's plan status",
    description="Derived view of the balance: expired, expiring soon, sessions owed, and so on.",
)
async def get_status(
    student_id: str,
    api_key: AuthenticatedUser = None,
    orchestrator: OrchestratorDep = None,
) -> StatusResponse:
    report = await orchestrator.get_status(student_id)
    return StatusResponse.from_report(student_id, report)


@router.put(
    "/{student_id}/plan",
    response_model=StudentResponse,
    summary="Change a student's plan",
    description="A student without a balance gets one from the plan; an existing balance is kept.",
)
async def change_plan(
    student_id: str,
    request: PlanChangeRequest,
    api_key: AuthenticatedUser = None,
    orchestrator: OrchestratorDep = None,
) -> StudentResponse:
    account = await orchestrator.change_plan(student_id, request.plan_id)
    return StudentResponse.from_account(account)


@router.post(
    "/{student_id}/classes",
    response_model=ClassEventResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Record a class",
)
async def record_class(
    student_id: str,
    request: ClassEventRequest,
    api_key: AuthenticatedUser = None,
    orchestrator: OrchestratorDep = None,
) -> ClassEventResponse:
    event = await orchestrator.record_class_event(student_id, request.kind)
    return ClassEventResponse.from_event(event)


@router.delete(
    "/{student_id}/classes/{event_id}",
    response_model=ClassEventResponse,
    summary="Remove a class",
    description="Gives back the session the class consumed, if any.",
)
async def remove_class(
    student_id: str,
    event_id: UUID,
    api_key: AuthenticatedUser = None,
    orchestrator: OrchestratorDep = None,
) -> ClassEventResponse:
    event = await orchestrator.remove_class_event(student_id, event_id)
    return ClassEventResponse.from_event(event)


@router.post(
    "/{student_id}/payments",
    response_model=PaymentResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Record a payment",
    description="Renews the plan: extends the due date or adds the pack's sessions.",
)
async def record_payment(
    student_id: str,
    request: PaymentRequest,
    api_key: AuthenticatedUser = None,
    orchestrator: OrchestratorDep = None,
) -> PaymentResponse:
    payment = await orchestrator.record_payment(
        student_id,
        plan_id=request.plan_id,
        method=request.method,
    )
    return PaymentResponse.from_record(payment)


@router.put(
    "/{student_id}/schedule",
    response_model=ScheduleResponse,
    summary="Replace a student's weekly schedule",
    description="Rejected with 409 on overlap unless allow_conflict is set.",
)
async def update_schedule(
    student_id: str,
    request: ScheduleRequest,
    api_key: AuthenticatedUser = None,
    orchestrator: OrchestratorDep = None,
) -> ScheduleResponse:
    slots = to_slots(request.slots)
    conflict = await orchestrator.update_schedule(
        student_id,
        slots,
        allow_conflict=request.allow_conflict,
    )
    return ScheduleResponse(
        student_id=student_id,
        slots=[TimeSlotModel.from_slot(slot) for slot in slots],
        conflicting_student_id=conflict,
    )


@router.put(
    "/{student_id}/access",
    response_model=StudentResponse,
    summary="Block or unblock a student",
)
async def set_access(
    student_id: str,
    request: AccessRequest,
    api_key: AuthenticatedUser = None,
    orchestrator: OrchestratorDep = None,
) -> StudentResponse:
    account = await orchestrator.set_access_blocked(student_id, request.blocked)
    logger.info(
        "Student access changed",
        extra={"student_id": student_id, "blocked": request.blocked}
    )
    return StudentResponse.from_account(account)
