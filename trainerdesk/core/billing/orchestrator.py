"""
Accounting orchestration.

This is the one entry point the outside world calls: a scheduler runs the
reminder sweep once a day, and request handlers call the interactive
mutations. The orchestrator owns no state. It reads through the
persistence gateway, decides with the pure functions in account,
schedule and reminders, and asks the collaborators to carry out the
effects.

Each interactive mutation is a single atomic read-modify-write on one
account via PersistenceGateway.update_account; a payment goes through
apply_payment so the renewal and its record commit together. Each
reminder in a sweep is its own unit: send, then mark the ledger if the
threshold still holds. A failed send leaves the ledger alone so the next
sweep tries again, and never stops the other reminders in the sweep.
"""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, tzinfo
from typing import Callable, Optional, Protocol, Sequence, TypeVar
from uuid import UUID

from . import account as accounts
from .account import StatusReport
from .catalog import PlanCatalog
from .errors import PlanNotFoundError, ScheduleConflictError
from .models import (
    ClassEvent,
    ClassEventKind,
    PaymentMethod,
    PaymentRecord,
    Plan,
    StudentAccount,
    ThresholdKey,
    TimeSlot,
)
from .reminders import ReminderIntent, compute_due_reminders, threshold_holds
from .reports import (
    AgendaItem,
    RevenueSummary,
    RosterSummary,
    summarize_revenue,
    summarize_roster,
    todays_agenda,
)
from .schedule import find_conflict, roster_of
from .templates import TrainerProfile, render_message, render_reminder


logger = logging.getLogger(__name__)

T = TypeVar("T")


# ---------------------------------------------------------------------------
# Protocols (collaborators)
# ---------------------------------------------------------------------------

class PersistenceGateway(Protocol):
    """
    Storage for accounts, plans and payments.

    update_account is the atomic read-modify-write: it loads the account,
    applies mutate, and writes only that account back. If another writer
    got there first it must retry or raise, never overwrite. If mutate
    raises, nothing is written. apply_payment does the same and stores
    the returned payment in the same transaction.
    """

    async def load_account(self, student_id: str) -> StudentAccount: ...

    async def save_account(self, account: StudentAccount) -> None: ...

    async def list_accounts(self) -> list[StudentAccount]: ...

    async def update_account(
        self,
        student_id: str,
        mutate: Callable[[StudentAccount], T],
    ) -> T: ...

    async def load_plan(self, plan_id: str) -> Plan: ...

    async def list_plans(self) -> list[Plan]: ...

    async def save_plan(self, plan: Plan) -> None: ...

    async def apply_payment(
        self,
        student_id: str,
        mutate: Callable[[StudentAccount], PaymentRecord],
    ) -> PaymentRecord: ...

    async def list_payments(self) -> list[PaymentRecord]: ...


class Notifier(Protocol):
    """Delivers one e-mail. Raises on failure; never retries on its own."""

    async def send(
        self,
        recipient_email: str,
        recipient_name: str,
        subject: str,
        html_body: str,
    ) -> None: ...


class Clock(Protocol):
    @property
    def tz(self) -> tzinfo: ...

    def now(self) -> datetime: ...

    def today(self) -> date: ...


# ---------------------------------------------------------------------------
# Sweep results
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class SentReminder:
    student_id: str
    threshold_key: ThresholdKey
    sent_at: datetime


@dataclass(frozen=True)
class FailedReminder:
    student_id: str
    threshold_key: ThresholdKey
    stage: str  # "render", "send" or "ledger"
    error: str


@dataclass
class SweepReport:
    """What one sweep decided and what actually happened."""
    today: date
    intents: int = 0
    sent: list[SentReminder] = field(default_factory=list)
    failed: list[FailedReminder] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed


@dataclass
class BroadcastReport:
    """Who a trainer message reached. failed maps student id to error."""
    recipients: int = 0
    sent: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------

class AccountingOrchestrator:
    """
    Coordinates accounting decisions with storage and notification.

    Stateless beyond its collaborators; safe to build one per request.
    """

    def __init__(
        self,
        gateway: PersistenceGateway,
        notifier: Notifier,
        clock: Clock,
        trainer: Optional[TrainerProfile] = None,
    ) -> None:
        self._gateway = gateway
        self._notifier = notifier
        self._clock = clock
        self._trainer = trainer or TrainerProfile()

    async def _catalog(self) -> PlanCatalog:
        return PlanCatalog(await self._gateway.list_plans())

    # -----------------------------------------------------------------------
    # Reminder sweep
    # -----------------------------------------------------------------------

    async def preview_reminders(self) -> list[ReminderIntent]:
        """The intents a sweep would act on right now, without sending."""
        accounts_list = await self._gateway.list_accounts()
        return compute_due_reminders(accounts_list, await self._catalog(), self._clock.today())

    async def run_sweep(self) -> SweepReport:
        """
        Send every due reminder, one at a time.

        Safe to re-run: anything already marked in a student's ledger is
        not sent again, and anything that failed is picked up next time.
        """
        today = self._clock.today()
        catalog = await self._catalog()
        intents = compute_due_reminders(await self._gateway.list_accounts(), catalog, today)
        report = SweepReport(today=today, intents=len(intents))

        logger.info(
            "Reminder sweep started",
            extra={"today": today.isoformat(), "intents": len(intents)}
        )

        for intent in intents:
            await self._dispatch(intent, catalog, report)

        logger.info(
            "Reminder sweep finished",
            extra={
                "today": today.isoformat(),
                "sent": len(report.sent),
                "failed": len(report.failed),
            }
        )
        return report

    async def _dispatch(
        self,
        intent: ReminderIntent,
        catalog: PlanCatalog,
        report: SweepReport,
    ) -> None:
        context = {
            "student_id": intent.student_id,
            "threshold": intent.threshold_key.value,
        }

        try:
            email = render_reminder(intent, self._trainer)
        except Exception as e:
            logger.error(
                "Reminder could not be rendered",
                extra={**context, "error": str(e)},
                exc_info=e,
            )
            report.failed.append(FailedReminder(
                intent.student_id, intent.threshold_key, "render", str(e)
            ))
            return

        try:
            await self._notifier.send(
                recipient_email=intent.recipient_email,
                recipient_name=intent.recipient_name,
                subject=email.subject,
                html_body=email.html_body,
            )
        except Exception as e:
            logger.error(
                "Reminder send failed",
                extra={**context, "error": str(e)},
                exc_info=e,
            )
            report.failed.append(FailedReminder(
                intent.student_id, intent.threshold_key, "send", str(e)
            ))
            return

        sent_at = self._clock.now()

        def mark(account: StudentAccount) -> bool:
            # A renewal during the send starts a new cycle; its ledger stays clean
            plan = catalog.find(account.plan_id)
            if not threshold_holds(account, plan, intent.threshold_key, report.today):
                return False
            account.reminders_sent.mark(intent.threshold_key, sent_at)
            return True

        try:
            marked = await self._gateway.update_account(intent.student_id, mark)
        except Exception as e:
            # The e-mail went out; without the ledger entry it will go out again next sweep
            logger.error(
                "Reminder sent but ledger update failed",
                extra={**context, "error": str(e)},
                exc_info=e,
            )
            report.failed.append(FailedReminder(
                intent.student_id, intent.threshold_key, "ledger", str(e)
            ))
            return

        if marked:
            logger.info("Reminder sent", extra=context)
        else:
            logger.warning("Reminder sent but balance changed meanwhile; ledger left as is", extra=context)
        report.sent.append(SentReminder(intent.student_id, intent.threshold_key, sent_at))

    # -----------------------------------------------------------------------
    # Messages
    # -----------------------------------------------------------------------

    async def broadcast(self, subject: str, message: str) -> BroadcastReport:
        """
        Send one free-text message to every student with an e-mail address.

        Each student gets their own e-mail so addresses aren't shared.
        Nothing is written, and a failed recipient doesn't stop the rest.
        """
        if not subject.strip() or not message.strip():
            raise ValueError("Subject and message are required")

        email = render_message(subject.strip(), message, self._trainer)
        recipients = [a for a in await self._gateway.list_accounts() if a.has_contact]
        report = BroadcastReport(recipients=len(recipients))

        for account in recipients:
            try:
                await self._notifier.send(
                    recipient_email=account.email.strip(),
                    recipient_name=account.name,
                    subject=email.subject,
                    html_body=email.html_body,
                )
            except Exception as e:
                logger.error(
                    "Broadcast send failed",
                    extra={"student_id": account.id, "error": str(e)},
                    exc_info=e,
                )
                report.failed[account.id] = str(e)
                continue
            report.sent.append(account.id)

        logger.info(
            "Broadcast finished",
            extra={"recipients": report.recipients, "failed": len(report.failed)}
        )
        return report

    # -----------------------------------------------------------------------
    # Interactive mutations
    # -----------------------------------------------------------------------

    async def enroll_student(
        self,
        name: str,
        email: str,
        plan_id: Optional[str] = None,
        phone: str = "",
    ) -> StudentAccount:
        plan = (await self._catalog()).get(plan_id) if plan_id else None
        account = accounts.enroll(name, email, plan, self._clock.today(), phone=phone)
        await self._gateway.save_account(account)
        logger.info(
            "Student enrolled",
            extra={"student_id": account.id, "plan_id": plan_id}
        )
        return account

    async def change_plan(self, student_id: str, plan_id: Optional[str]) -> StudentAccount:
        catalog = await self._catalog()
        plan = catalog.get(plan_id) if plan_id else None
        today = self._clock.today()

        def apply(account: StudentAccount) -> StudentAccount:
            accounts.enroll_or_change_plan(account, plan, today)
            return account

        return await self._gateway.update_account(student_id, apply)

    async def record_class_event(self, student_id: str, kind: ClassEventKind) -> ClassEvent:
        catalog = await self._catalog()
        now = self._clock.now()

        def apply(account: StudentAccount) -> ClassEvent:
            return accounts.record_class_event(account, catalog.find(account.plan_id), kind, now)

        event = await self._gateway.update_account(student_id, apply)
        logger.info(
            "Class recorded",
            extra={"student_id": student_id, "kind": kind.value, "event_id": str(event.id)}
        )
        return event

    async def remove_class_event(self, student_id: str, event_id: UUID) -> ClassEvent:
        catalog = await self._catalog()

        def apply(account: StudentAccount) -> ClassEvent:
            return accounts.remove_class_event(account, catalog.find(account.plan_id), event_id)

        event = await self._gateway.update_account(student_id, apply)
        logger.info(
            "Class removed",
            extra={"student_id": student_id, "event_id": str(event_id)}
        )
        return event

    async def record_payment(
        self,
        student_id: str,
        plan_id: Optional[str] = None,
        method: PaymentMethod = PaymentMethod.PIX,
    ) -> PaymentRecord:
        """
        Renew a student's plan and store the payment.

        plan_id defaults to the student's current plan. A missing or
        misconfigured plan raises before the account is touched.
        """
        catalog = await self._catalog()
        today = self._clock.today()
        now = self._clock.now()

        def apply(account: StudentAccount) -> PaymentRecord:
            target = plan_id or account.plan_id
            if not target:
                raise PlanNotFoundError(f"Student {account.id} has no plan to pay for")
            return accounts.record_payment(account, catalog.get(target), today, now, method)

        payment = await self._gateway.apply_payment(student_id, apply)
        logger.info(
            "Payment recorded",
            extra={
                "student_id": student_id,
                "plan_id": payment.plan_id,
                "amount": payment.amount,
            }
        )
        return payment

    async def set_access_blocked(self, student_id: str, blocked: bool) -> StudentAccount:
        def apply(account: StudentAccount) -> StudentAccount:
            accounts.set_access_blocked(account, blocked)
            return account

        return await self._gateway.update_account(student_id, apply)

    async def save_plan(self, plan: Plan) -> Plan:
        """
        Create or replace a plan.

        Existing balances keep the terms they were bought on; the new
        terms apply from the next payment.
        """
        await self._gateway.save_plan(plan)
        logger.info("Plan saved", extra={"plan_id": plan.id, "kind": plan.kind.value})
        return plan

    # -----------------------------------------------------------------------
    # Schedule
    # -----------------------------------------------------------------------

    async def check_schedule(
        self,
        slots: Sequence[TimeSlot],
        exclude_student_id: Optional[str] = None,
    ) -> Optional[str]:
        """Id of a student the slots would collide with, if any."""
        roster = roster_of(await self._gateway.list_accounts())
        return find_conflict(slots, exclude_student_id, roster)

    async def update_schedule(
        self,
        student_id: str,
        slots: Sequence[TimeSlot],
        allow_conflict: bool = False,
    ) -> Optional[str]:
        """
        Replace a student's fixed weekly slots.

        Without allow_conflict an overlap raises ScheduleConflictError and
        nothing is written. With it, the write goes ahead and the
        conflicting student's id is returned so the caller can warn.
        """
        conflict = await self.check_schedule(slots, exclude_student_id=student_id)
        if conflict is not None:
            if not allow_conflict:
                raise ScheduleConflictError(conflict)
            logger.warning(
                "Saving schedule that overlaps another student",
                extra={"student_id": student_id, "conflicting_student_id": conflict}
            )

        def apply(account: StudentAccount) -> None:
            account.schedule = list(slots)

        await self._gateway.update_account(student_id, apply)
        return conflict

    # -----------------------------------------------------------------------
    # Read side
    # -----------------------------------------------------------------------

    async def get_account(self, student_id: str) -> StudentAccount:
        return await self._gateway.load_account(student_id)

    async def list_plans(self) -> list[Plan]:
        return list(await self._catalog())

    async def get_status(self, student_id: str) -> StatusReport:
        account = await self._gateway.load_account(student_id)
        plan = (await self._catalog()).find(account.plan_id)
        return accounts.classify(account, plan, self._clock.today())

    async def roster_summary(self) -> RosterSummary:
        return summarize_roster(
            await self._gateway.list_accounts(),
            await self._catalog(),
            self._clock.today(),
        )

    async def revenue_summary(self) -> RevenueSummary:
        return summarize_revenue(
            await self._gateway.list_payments(),
            self._clock.today(),
            self._clock.tz,
        )

    async def agenda(self) -> list[AgendaItem]:
        return todays_agenda(await self._gateway.list_accounts(), self._clock.today())
