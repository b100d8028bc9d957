"""
Dashboard figures derived from accounts and payments.

Read-only summaries: headcounts, alerts worth looking at this week,
monthly revenue and today's agenda.
"""

from dataclasses import dataclass, field
from datetime import date, datetime, timezone, tzinfo
from typing import Iterable, Optional

from .account import EXPIRING_SOON_DAYS, LOW_BALANCE_SESSIONS
from .catalog import PlanCatalog
from .models import PaymentRecord, PlanKind, StudentAccount, Weekday, format_clock_time


MAX_ALERTS = 5


@dataclass(frozen=True)
class RosterAlert:
    student_id: str
    student_name: str
    message: str


@dataclass
class RosterSummary:
    total: int = 0
    active: int = 0
    alerts: list[RosterAlert] = field(default_factory=list)

    @property
    def inactive(self) -> int:
        return self.total - self.active


def is_active(account: StudentAccount, plans: PlanCatalog, today: date) -> bool:
    """Blocked accounts and exhausted balances count as inactive."""
    plan = plans.find(account.plan_id)
    if plan is None or account.access_blocked:
        return False
    if plan.kind == PlanKind.DURATION:
        return account.due_date is not None and account.due_date >= today
    return account.remaining_sessions is not None and account.remaining_sessions > 0


def _alert_for(account: StudentAccount, plans: PlanCatalog, today: date) -> Optional[str]:
    plan = plans.find(account.plan_id)
    if plan is None or account.access_blocked:
        return None

    if plan.kind == PlanKind.DURATION:
        due = account.due_date
        if due is None:
            return None
        if due < today:
            return "Plan expired"
        if (due - today).days <= EXPIRING_SOON_DAYS:
            return f"Due {due.isoformat()}"
        return None

    remaining = account.remaining_sessions
    if remaining is None or remaining > LOW_BALANCE_SESSIONS:
        return None
    if remaining <= 0:
        return "No sessions left"
    return f"{remaining} session{'s' if remaining > 1 else ''} left"


def summarize_roster(
    accounts: Iterable[StudentAccount],
    plans: PlanCatalog,
    today: date,
) -> RosterSummary:
    summary = RosterSummary()
    for account in accounts:
        summary.total += 1
        if is_active(account, plans, today):
            summary.active += 1
        if len(summary.alerts) < MAX_ALERTS:
            message = _alert_for(account, plans, today)
            if message:
                summary.alerts.append(RosterAlert(account.id, account.name, message))
    return summary


@dataclass(frozen=True)
class RevenueSummary:
    this_month: float
    last_month: float

    @property
    def change_percent(self) -> float:
        if self.last_month > 0:
            return (self.this_month - self.last_month) / self.last_month * 100
        return 100.0 if self.this_month > 0 else 0.0


def _local_date(moment: datetime, tz: tzinfo) -> date:
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(tz).date()


def summarize_revenue(
    payments: Iterable[PaymentRecord],
    today: date,
    tz: tzinfo = timezone.utc,
) -> RevenueSummary:
    """
    Totals for the current and previous calendar month.

    today is a local date, so payment times are read in the same zone.
    Naive timestamps are taken as UTC.
    """
    this_month_start = today.replace(day=1)
    if this_month_start.month == 1:
        last_month_start = this_month_start.replace(year=this_month_start.year - 1, month=12)
    else:
        last_month_start = this_month_start.replace(month=this_month_start.month - 1)

    this_month = 0.0
    last_month = 0.0
    for payment in payments:
        paid_on = _local_date(payment.paid_at, tz)
        if paid_on >= this_month_start:
            this_month += payment.amount
        elif paid_on >= last_month_start:
            last_month += payment.amount
    return RevenueSummary(this_month=this_month, last_month=last_month)


@dataclass(frozen=True)
class AgendaItem:
    student_id: str
    student_name: str
    start_minutes: int

    @property
    def start_time(self) -> str:
        return format_clock_time(self.start_minutes)


def todays_agenda(accounts: Iterable[StudentAccount], today: date) -> list[AgendaItem]:
    weekday = Weekday.of(today)
    items = []
    for account in accounts:
        starts = [slot.start_minutes for slot in account.schedule if slot.weekday == weekday]
        if starts:
            items.append(AgendaItem(account.id, account.name, min(starts)))
    return sorted(items, key=lambda item: item.start_minutes)
