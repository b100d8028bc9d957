"""
Reminder threshold evaluation.

Decides which students should be reminded that their plan is running out.
This module never sends anything and never writes the ledger: it only
returns intents. The orchestrator sends them and marks the ledger after a
confirmed send, which is what makes repeated sweeps idempotent.

Thresholds fire on an exact match (3 days out, 1 day out, 3 sessions
left, 1 session left). A sweep skipped on the matching day doesn't send
a late reminder.

The message texts are here, not in config, because they are part of what
the product does.
"""

from dataclasses import dataclass, field
from datetime import date
from typing import Any, Iterable, Optional

from .catalog import PlanCatalog
from .models import Plan, PlanKind, StudentAccount, ThresholdKey


# ---------------------------------------------------------------------------
# Message templates
# ---------------------------------------------------------------------------

DURATION_SUBJECT_TEMPLATE = "Your plan expires in {days_left} {day_word}"

DURATION_BODY_TEMPLATE = """<p>Hi {student_name},</p>
<p>Just a reminder that your <strong>{plan_name}</strong> plan is due on <strong>{due_date}</strong>.</p>
<p>Renew before then to keep your training schedule uninterrupted.</p>"""

SESSIONS_SUBJECT_TEMPLATE = "{remaining} {session_word} left on your plan"

SESSIONS_BODY_TEMPLATE = """<p>Hi {student_name},</p>
<p>You have <strong>{remaining} {session_word}</strong> left on your <strong>{plan_name}</strong> plan.</p>
<p>Get in touch to renew your pack so we can keep training together.</p>"""


@dataclass(frozen=True)
class ReminderRule:
    """One trigger point: fire key when the track's measure equals trigger."""
    key: ThresholdKey
    trigger: int
    subject_template: str
    body_template: str

    @property
    def track(self) -> PlanKind:
        return self.key.track


# Order matters: within a track the first unmet rule wins
REMINDER_RULES: tuple[ReminderRule, ...] = (
    ReminderRule(ThresholdKey.DURATION_3_DAYS, 3, DURATION_SUBJECT_TEMPLATE, DURATION_BODY_TEMPLATE),
    ReminderRule(ThresholdKey.DURATION_1_DAY, 1, DURATION_SUBJECT_TEMPLATE, DURATION_BODY_TEMPLATE),
    ReminderRule(ThresholdKey.SESSIONS_3, 3, SESSIONS_SUBJECT_TEMPLATE, SESSIONS_BODY_TEMPLATE),
    ReminderRule(ThresholdKey.SESSIONS_1, 1, SESSIONS_SUBJECT_TEMPLATE, SESSIONS_BODY_TEMPLATE),
)

_RULES_BY_KEY = {rule.key: rule for rule in REMINDER_RULES}


@dataclass(frozen=True)
class ReminderIntent:
    """
    A reminder that should be sent, not yet rendered.

    context holds the raw values the templates interpolate. Rendering
    (escaping and layout) happens in templates.render_reminder.
    """
    student_id: str
    threshold_key: ThresholdKey
    subject_template: str
    body_template: str
    recipient_email: str
    recipient_name: str
    context: dict[str, Any] = field(default_factory=dict)


def days_between(start: date, end: date) -> int:
    """Whole calendar days from start to end (negative if end is earlier)."""
    return (end - start).days


def _measure(account: StudentAccount, kind: PlanKind, today: date) -> Optional[int]:
    if kind == PlanKind.DURATION:
        due = account.due_date
        return days_between(today, due) if due is not None else None
    return account.remaining_sessions


def _context(account: StudentAccount, plan_name: str, kind: PlanKind, measure: int) -> dict[str, Any]:
    context: dict[str, Any] = {
        "student_name": account.name,
        "plan_name": plan_name,
    }
    if kind == PlanKind.DURATION:
        context.update(
            days_left=measure,
            day_word="day" if measure == 1 else "days",
            due_date=account.due_date.strftime("%d/%m/%Y") if account.due_date else "",
        )
    else:
        context.update(
            remaining=measure,
            session_word="session" if measure == 1 else "sessions",
        )
    return context


def threshold_holds(
    account: StudentAccount,
    plan: Optional[Plan],
    key: ThresholdKey,
    today: date,
) -> bool:
    """Whether key's trigger still matches the account as it is now."""
    if plan is None or plan.kind != key.track:
        return False
    return _measure(account, plan.kind, today) == _RULES_BY_KEY[key].trigger


def compute_due_reminders(
    accounts: Iterable[StudentAccount],
    plans: PlanCatalog,
    today: date,
) -> list[ReminderIntent]:
    """
    Find every (student, threshold) that should be reminded today.

    Accounts without a known plan or without an e-mail address are
    skipped. Each account yields at most one intent per sweep.
    """
    intents: list[ReminderIntent] = []

    for account in accounts:
        plan = plans.find(account.plan_id)
        if plan is None or not account.has_contact:
            continue

        measure = _measure(account, plan.kind, today)
        if measure is None:
            continue

        for rule in REMINDER_RULES:
            if rule.track != plan.kind or measure != rule.trigger:
                continue
            if account.reminders_sent.has(rule.key):
                continue
            intents.append(ReminderIntent(
                student_id=account.id,
                threshold_key=rule.key,
                subject_template=rule.subject_template,
                body_template=rule.body_template,
                recipient_email=account.email.strip(),
                recipient_name=account.name,
                context=_context(account, plan.name, plan.kind, measure),
            ))
            break

    return intents
