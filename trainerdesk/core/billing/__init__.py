"""
Plan accounting: balances, schedules and reminders.

Contains the account state machine, the schedule conflict detector, the
reminder engine and the orchestrator that ties them to storage and e-mail.
"""

from .account import AccountStatus, StatusReport, classify
from .catalog import PlanCatalog
from .errors import (
    AccountingError,
    AccountNotFoundError,
    ClassEventNotFoundError,
    ConcurrentModificationError,
    InvalidPlanConfiguration,
    NotificationFailure,
    PersistenceFailure,
    PlanNotFoundError,
    ScheduleConflictError,
)
from .models import (
    ClassEvent,
    ClassEventKind,
    DurationBalance,
    PaymentMethod,
    PaymentRecord,
    Plan,
    PlanKind,
    ReminderLedger,
    SessionBalance,
    StudentAccount,
    ThresholdKey,
    TimeSlot,
    Untracked,
    Weekday,
)
from .orchestrator import AccountingOrchestrator, SweepReport
from .reminders import ReminderIntent, compute_due_reminders
from .schedule import find_conflict
from .templates import TrainerProfile

__all__ = [
    "AccountStatus",
    "StatusReport",
    "classify",
    "PlanCatalog",
    "AccountingError",
    "AccountNotFoundError",
    "ClassEventNotFoundError",
    "ConcurrentModificationError",
    "InvalidPlanConfiguration",
    "NotificationFailure",
    "PersistenceFailure",
    "PlanNotFoundError",
    "ScheduleConflictError",
    "ClassEvent",
    "ClassEventKind",
    "DurationBalance",
    "PaymentMethod",
    "PaymentRecord",
    "Plan",
    "PlanKind",
    "ReminderLedger",
    "SessionBalance",
    "StudentAccount",
    "ThresholdKey",
    "TimeSlot",
    "Untracked",
    "Weekday",
    "AccountingOrchestrator",
    "SweepReport",
    "ReminderIntent",
    "compute_due_reminders",
    "find_conflict",
    "TrainerProfile",
]
