"""
Reminder endpoints.

The sweep normally runs from scripts/run_reminder_sweep.py on a daily
schedule. These endpoints let the trainer preview what is due and trigger
a sweep by hand. Running the sweep twice on the same day sends nothing
new. The trainer can also send a free-text message to every student.
"""

import logging
from datetime import date, datetime

from fastapi import APIRouter
from pydantic import BaseModel, ConfigDict, Field

from ...core.billing.models import ThresholdKey
from ...core.billing.orchestrator import BroadcastReport, SweepReport
from ..dependencies import AuthenticatedUser, OrchestratorDep

logger = logging.getLogger(__name__)

router = APIRouter()


class DueReminder(BaseModel):
    student_id: str
    recipient_email: str
    recipient_name: str
    threshold: ThresholdKey


class SentItem(BaseModel):
    student_id: str
    threshold: ThresholdKey
    sent_at: datetime


class FailedItem(BaseModel):
    student_id: str
    threshold: ThresholdKey
    stage: str
    error: str


class SweepResponse(BaseModel):
    today: date
    intents: int
    sent: list[SentItem]
    failed: list[FailedItem]

    @classmethod
    def from_report(cls, report: SweepReport) -> "SweepResponse":
        return cls(
            today=report.today,
            intents=report.intents,
            sent=[
                SentItem(student_id=s.student_id, threshold=s.threshold_key, sent_at=s.sent_at)
                for s in report.sent
            ],
            failed=[
                FailedItem(
                    student_id=f.student_id,
                    threshold=f.threshold_key,
                    stage=f.stage,
                    error=f.error,
                )
                for f in report.failed
            ],
        )


@router.get(
    "/due",
    response_model=list[DueReminder],
    summary="Preview reminders a sweep would send now",
)
async def due_reminders(
    api_key: AuthenticatedUser = None,
    orchestrator: OrchestratorDep = None,
) -> list[DueReminder]:
    intents = await orchestrator.preview_reminders()
    return [
        DueReminder(
            student_id=intent.student_id,
            recipient_email=intent.recipient_email,
            recipient_name=intent.recipient_name,
            threshold=intent.threshold_key,
        )
        for intent in intents
    ]


@router.post(
    "/sweep",
    response_model=SweepResponse,
    summary="Run the reminder sweep",
    description="Individual send failures are reported in the response, not as an error status.",
)
async def run_sweep(
    api_key: AuthenticatedUser = None,
    orchestrator: OrchestratorDep = None,
) -> SweepResponse:
    report = await orchestrator.run_sweep()
    return SweepResponse.from_report(report)


class BroadcastRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    subject: str = Field(..., min_length=1, max_length=200)
    message: str = Field(..., min_length=1, max_length=10000)


class BroadcastResponse(BaseModel):
    recipients: int
    sent: list[str]
    failed: dict[str, str]

    @classmethod
    def from_report(cls, report: BroadcastReport) -> "BroadcastResponse":
        return cls(recipients=report.recipients, sent=report.sent, failed=report.failed)


@router.post(
    "/broadcast",
    response_model=BroadcastResponse,
    summary="E-mail a message to every student",
    description="Students without an e-mail address are skipped. Failed recipients are listed in the response.",
)
async def broadcast(
    request: BroadcastRequest,
    api_key: AuthenticatedUser = None,
    orchestrator: OrchestratorDep = None,
) -> BroadcastResponse:
    report = await orchestrator.broadcast(request.subject, request.message)
    return BroadcastResponse.from_report(report)
