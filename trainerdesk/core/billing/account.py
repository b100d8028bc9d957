"""
Per-student plan accounting.

The account's state is implicit in its balance track and plan. This module
holds the transitions that move it (class taken, class removed, payment,
plan change) and a read-only classifier for display.

Every transition is a plain function over a StudentAccount. They don't
know about storage: the orchestrator loads an account, applies one of
these inside an atomic read-modify-write, and saves the result.
"""

from dataclasses import dataclass
from datetime import date, datetime, timedelta
from enum import Enum
from typing import Optional
from uuid import UUID

from .errors import ClassEventNotFoundError, InvalidPlanConfiguration
from .models import (
    ClassEvent,
    ClassEventKind,
    DurationBalance,
    PaymentMethod,
    PaymentRecord,
    Plan,
    PlanKind,
    SessionBalance,
    StudentAccount,
    Untracked,
)


EXPIRING_SOON_DAYS = 7
LOW_BALANCE_SESSIONS = 3


# ---------------------------------------------------------------------------
# Enrollment and plan changes
# ---------------------------------------------------------------------------

def _positive(value: Optional[int]) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value > 0


def enroll(
    name: str,
    email: str,
    plan: Optional[Plan],
    today: date,
    phone: str = "",
    student_id: Optional[str] = None,
) -> StudentAccount:
    """Create a fresh account and put it on its starting plan, if any."""
    account = StudentAccount(
        name=name.strip(),
        email=email.strip().lower(),
        phone=phone.strip(),
        start_date=today,
    )
    if student_id:
        account.id = student_id
    enroll_or_change_plan(account, plan, today)
    return account


def enroll_or_change_plan(
    account: StudentAccount,
    plan: Optional[Plan],
    today: date,
) -> None:
    """
    Point the account at a plan.

    An account that has never had a balance gets one straight from the
    plan's terms (today + duration, or the full session pack). An account
    that already has a balance keeps it; only a payment renews it.
    Passing None clears the plan.
    """
    account.plan_id = plan.id if plan else None
    if plan is None or not isinstance(account.balance, Untracked):
        return

    if plan.kind == PlanKind.DURATION and _positive(plan.duration_days):
        account.balance = DurationBalance(today + timedelta(days=plan.duration_days))
    elif plan.kind == PlanKind.SESSION_PACK and _positive(plan.session_count):
        account.balance = SessionBalance(plan.session_count)


def set_access_blocked(account: StudentAccount, blocked: bool) -> None:
    """Manual override, independent of the balance."""
    account.access_blocked = blocked


# ---------------------------------------------------------------------------
# Class history
# ---------------------------------------------------------------------------

def _adjust_sessions(account: StudentAccount, plan: Optional[Plan], delta: int) -> None:
    # Only a tracked session pack has a counter to move
    if plan is None or plan.kind != PlanKind.SESSION_PACK:
        return
    if isinstance(account.balance, SessionBalance):
        account.balance = SessionBalance(account.balance.remaining + delta)


def record_class_event(
    account: StudentAccount,
    plan: Optional[Plan],
    kind: ClassEventKind,
    now: datetime,
) -> ClassEvent:
    """
    Append a class to the history.

    On a session pack, regular classes and absences consume one session.
    There is no floor: the counter goes negative when the student owes
    sessions. Duration plans are never affected by class events.
    """
    event = ClassEvent(kind=kind, timestamp=now)
    account.history.append(event)
    if event.is_chargeable:
        _adjust_sessions(account, plan, -1)
    return event


def remove_class_event(
    account: StudentAccount,
    plan: Optional[Plan],
    event_id: UUID,
) -> ClassEvent:
    """
    Delete a class from the history, giving back the session it consumed.

    This is the exact inverse of record_class_event, so an extra class
    comes off without touching the balance.
    """
    event = account.find_event(event_id)
    if event is None:
        raise ClassEventNotFoundError(
            f"Class event {event_id} not found for student {account.id}"
        )
    account.history = [e for e in account.history if e.id != event_id]
    if event.is_chargeable:
        _adjust_sessions(account, plan, +1)
    return event


# ---------------------------------------------------------------------------
# Payment
# ---------------------------------------------------------------------------

def record_payment(
    account: StudentAccount,
    plan: Plan,
    today: date,
    now: datetime,
    method: PaymentMethod = PaymentMethod.PIX,
) -> PaymentRecord:
    """
    Renew the account on the given plan.

    Duration: the new due date is max(today, current due date) plus the
    plan's days, so paying early stacks and paying late restarts from
    today. Session pack: the plan's sessions are added to whatever is
    left, which settles any owed sessions.

    The plan's terms are checked before anything is touched. A
    misconfigured plan raises InvalidPlanConfiguration and leaves the
    account exactly as it was.
    """
    if plan.kind == PlanKind.DURATION:
        if not _positive(plan.duration_days):
            raise InvalidPlanConfiguration(plan.id, "duration plan needs positive duration_days")
        current = account.due_date
        start = max(today, current) if current else today
        new_balance = DurationBalance(start + timedelta(days=plan.duration_days))
    else:
        if not _positive(plan.session_count):
            raise InvalidPlanConfiguration(plan.id, "session plan needs positive session_count")
        current_sessions = account.remaining_sessions or 0
        new_balance = SessionBalance(current_sessions + plan.session_count)

    account.plan_id = plan.id
    account.balance = new_balance
    account.reminders_sent.reset(plan.kind)

    return PaymentRecord(
        student_id=account.id,
        student_name=account.name,
        plan_id=plan.id,
        plan_name=plan.name,
        amount=plan.price,
        paid_at=now,
        method=method,
    )


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------

class AccountStatus(Enum):
    NO_PLAN = "no_plan"
    ACTIVE_NO_DUE_DATE = "active_no_due_date"
    EXPIRED = "expired"
    EXPIRING_SOON = "expiring_soon"
    ACTIVE = "active"
    ACTIVE_UNTRACKED = "active_untracked"
    OWING = "owing"
    DEPLETED = "depleted"
    LOW_BALANCE = "low_balance"


@dataclass(frozen=True)
class StatusReport:
    """
    Display-level view of an account.

    count is the session figure for session packs (owed sessions for
    OWING, so always positive there). blocked mirrors the manual override
    and doesn't change status.
    """
    status: AccountStatus
    count: Optional[int] = None
    due_date: Optional[date] = None
    blocked: bool = False

    @property
    def situation(self) -> str:
        """Short human description, e.g. '2 sessions owed'."""
        if self.blocked:
            return "Access blocked"
        if self.status == AccountStatus.NO_PLAN:
            return "N/A"
        if self.status == AccountStatus.ACTIVE_NO_DUE_DATE:
            return "No due date"
        if self.due_date is not None:
            return f"Due {self.due_date.isoformat()}"
        if self.status == AccountStatus.ACTIVE_UNTRACKED:
            return "Sessions N/A"
        if self.status == AccountStatus.DEPLETED:
            return "No sessions left"
        plural = "s" if self.count != 1 else ""
        if self.status == AccountStatus.OWING:
            return f"{self.count} session{plural} owed"
        return f"{self.count} session{plural}"


def classify(
    account: StudentAccount,
    plan: Optional[Plan],
    today: date,
) -> StatusReport:
    """Derive the account's status without mutating it."""
    blocked = account.access_blocked

    if plan is None:
        return StatusReport(AccountStatus.NO_PLAN, blocked=blocked)

    if plan.kind == PlanKind.DURATION:
        due = account.due_date
        if due is None:
            return StatusReport(AccountStatus.ACTIVE_NO_DUE_DATE, blocked=blocked)
        if due < today:
            status = AccountStatus.EXPIRED
        elif due <= today + timedelta(days=EXPIRING_SOON_DAYS):
            status = AccountStatus.EXPIRING_SOON
        else:
            status = AccountStatus.ACTIVE
        return StatusReport(status, due_date=due, blocked=blocked)

    remaining = account.remaining_sessions
    if remaining is None:
        return StatusReport(AccountStatus.ACTIVE_UNTRACKED, blocked=blocked)
    if remaining < 0:
        return StatusReport(AccountStatus.OWING, count=abs(remaining), blocked=blocked)
    if remaining == 0:
        return StatusReport(AccountStatus.DEPLETED, count=0, blocked=blocked)
    if remaining <= LOW_BALANCE_SESSIONS:
        return StatusReport(AccountStatus.LOW_BALANCE, count=remaining, blocked=blocked)
    return StatusReport(AccountStatus.ACTIVE, count=remaining, blocked=blocked)
