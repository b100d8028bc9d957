"""
Domain models for plan accounting.

These models represent billing plans, weekly time slots, class history and
the per-student account aggregate. They have no dependencies on databases,
HTTP or e-mail providers.
"""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from enum import Enum, IntEnum
from typing import Optional, Union
from uuid import UUID, uuid4


logger = logging.getLogger(__name__)

MINUTES_PER_DAY = 24 * 60


class PlanKind(Enum):
    """The two billing tracks a plan can be on."""
    DURATION = "duration"  # Access until a due date
    SESSION_PACK = "session"  # Access metered by a session counter


class PaymentMethod(Enum):
    PIX = "pix"
    CASH = "cash"
    CREDIT_CARD = "credit_card"
    BANK_TRANSFER = "bank_transfer"


class Weekday(IntEnum):
    """
    Day of the week, numbered from Sunday.

    Stored schedules use lowercase English day keys ("monday"), so
    from_key/key convert both ways.
    """
    SUNDAY = 0
    MONDAY = 1
    TUESDAY = 2
    WEDNESDAY = 3
    THURSDAY = 4
    FRIDAY = 5
    SATURDAY = 6

    @property
    def key(self) -> str:
        return self.name.lower()

    @classmethod
    def from_key(cls, key: str) -> "Weekday":
        try:
            return cls[key.strip().upper()]
        except KeyError:
            raise ValueError(f"Unknown weekday: {key!r}")

    @classmethod
    def of(cls, day: date) -> "Weekday":
        """Weekday of a calendar date (Python counts from Monday)."""
        return cls((day.weekday() + 1) % 7)


@dataclass(frozen=True)
class Plan:
    """
    A billing plan offered by the trainer.

    Duration plans carry duration_days, session packs carry session_count.
    Both are optional here so that a badly edited plan can still be loaded;
    it is rejected when someone tries to pay for it.
    """
    id: str
    name: str
    price: float
    kind: PlanKind
    duration_days: Optional[int] = None
    session_count: Optional[int] = None

    @property
    def is_duration(self) -> bool:
        return self.kind == PlanKind.DURATION

    @property
    def is_session_pack(self) -> bool:
        return self.kind == PlanKind.SESSION_PACK


def parse_clock_time(value: Optional[str]) -> Optional[int]:
    """
    Parse "HH:MM" into minutes since midnight.

    Returns None for unset or malformed values instead of raising, because
    schedule rows are edited by hand and half-filled rows are common.
    """
    if not value or ":" not in value:
        return None
    hours_text, _, minutes_text = value.strip().partition(":")
    try:
        hours = int(hours_text)
        minutes = int(minutes_text[:2])
    except ValueError:
        return None
    if not (0 <= hours <= 24 and 0 <= minutes < 60):
        return None
    total = hours * 60 + minutes
    if total > MINUTES_PER_DAY:
        return None
    return total


def format_clock_time(minutes: int) -> str:
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


@dataclass(frozen=True)
class TimeSlot:
    """
    A fixed weekly slot: [start_minutes, end_minutes) on a weekday.

    Frozen because slots are values. Two slots with the same day and
    times are the same slot.
    """
    weekday: Weekday
    start_minutes: int
    end_minutes: int

    def __post_init__(self) -> None:
        if not 0 <= self.start_minutes < self.end_minutes <= MINUTES_PER_DAY:
            raise ValueError(
                "Time slot must start before it ends and stay within one day"
            )

    @classmethod
    def parse(
        cls,
        day: Union[str, int, Weekday],
        start_time: Optional[str],
        end_time: Optional[str],
    ) -> Optional["TimeSlot"]:
        """Build a slot from stored strings; None if the row is unset or unusable."""
        start = parse_clock_time(start_time)
        end = parse_clock_time(end_time)
        if start is None or end is None or start >= end:
            return None
        try:
            weekday = Weekday.from_key(day) if isinstance(day, str) else Weekday(day)
        except ValueError:
            return None
        return cls(weekday=weekday, start_minutes=start, end_minutes=end)

    def overlaps(self, other: "TimeSlot") -> bool:
        """Half-open overlap on the same weekday; touching boundaries don't count."""
        return (
            self.weekday == other.weekday
            and self.start_minutes < other.end_minutes
            and other.start_minutes < self.end_minutes
        )

    @property
    def start_time(self) -> str:
        return format_clock_time(self.start_minutes)

    @property
    def end_time(self) -> str:
        return format_clock_time(self.end_minutes)


class ClassEventKind(Enum):
    REGULAR = "regular"
    EXTRA = "extra"  # Bonus class, never charged
    ABSENT = "absent"  # Missed class, charged like a regular one


@dataclass(frozen=True)
class ClassEvent:
    """An entry in a student's class history. Added or removed, never edited."""
    kind: ClassEventKind
    timestamp: datetime
    id: UUID = field(default_factory=uuid4)

    @property
    def is_chargeable(self) -> bool:
        """Regular classes and absences consume a session from a pack."""
        return self.kind in (ClassEventKind.REGULAR, ClassEventKind.ABSENT)


# ---------------------------------------------------------------------------
# Balance tracks
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class DurationBalance:
    """Access runs until due_date."""
    due_date: date


@dataclass(frozen=True)
class SessionBalance:
    """Remaining sessions; negative means sessions are owed."""
    remaining: int


@dataclass(frozen=True)
class Untracked:
    """No balance has been established yet."""
    pass


BalanceTrack = Union[DurationBalance, SessionBalance, Untracked]


# ---------------------------------------------------------------------------
# Reminder ledger
# ---------------------------------------------------------------------------

class ThresholdKey(Enum):
    """
    Identifiers for reminder trigger points.

    The values are what gets persisted in the ledger, so they must
    never change.
    """
    DURATION_3_DAYS = "duration:3days"
    DURATION_1_DAY = "duration:1day"
    SESSIONS_3 = "sessions:3"
    SESSIONS_1 = "sessions:1"

    @property
    def track(self) -> PlanKind:
        if self.value.startswith("duration:"):
            return PlanKind.DURATION
        return PlanKind.SESSION_PACK


@dataclass
class ReminderLedger:
    """
    Reminders already dispatched, keyed by threshold.

    Entries only accumulate within a balance cycle. A renewal on a track
    calls reset() for that track so its thresholds can fire again.
    """
    entries: dict[ThresholdKey, datetime] = field(default_factory=dict)

    def has(self, key: ThresholdKey) -> bool:
        return key in self.entries

    def mark(self, key: ThresholdKey, sent_at: datetime) -> None:
        # First successful send wins; a re-mark keeps the original timestamp
        self.entries.setdefault(key, sent_at)

    def reset(self, track: PlanKind) -> None:
        """Forget every reminder belonging to one plan track."""
        self.entries = {
            key: sent_at
            for key, sent_at in self.entries.items()
            if key.track != track
        }

    def to_dict(self) -> dict[str, str]:
        return {key.value: sent_at.isoformat() for key, sent_at in self.entries.items()}

    @classmethod
    def from_dict(cls, raw: Optional[dict]) -> "ReminderLedger":
        ledger = cls()
        for key_text, sent_at in (raw or {}).items():
            try:
                key = ThresholdKey(key_text)
            except ValueError:
                logger.warning(
                    "Dropping unknown reminder ledger key",
                    extra={"key": key_text}
                )
                continue
            if isinstance(sent_at, str):
                sent_at = datetime.fromisoformat(sent_at)
            ledger.entries[key] = sent_at
        return ledger

    def __len__(self) -> int:
        return len(self.entries)


# ---------------------------------------------------------------------------
# Aggregate
# ---------------------------------------------------------------------------

@dataclass
class StudentAccount:
    """
    A student's billing state.

    This is the aggregate root the accounting transitions mutate. The
    balance is a single tagged track so a due date and a session counter
    can never both be active.
    """
    id: str = field(default_factory=lambda: str(uuid4()))
    name: str = ""
    email: str = ""
    phone: str = ""
    start_date: Optional[date] = None
    plan_id: Optional[str] = None
    balance: BalanceTrack = field(default_factory=Untracked)
    history: list[ClassEvent] = field(default_factory=list)
    schedule: list[TimeSlot] = field(default_factory=list)
    reminders_sent: ReminderLedger = field(default_factory=ReminderLedger)
    access_blocked: bool = False
    version: int = 0  # Optimistic concurrency token, owned by persistence

    @property
    def due_date(self) -> Optional[date]:
        if isinstance(self.balance, DurationBalance):
            return self.balance.due_date
        return None

    @property
    def remaining_sessions(self) -> Optional[int]:
        if isinstance(self.balance, SessionBalance):
            return self.balance.remaining
        return None

    @property
    def has_contact(self) -> bool:
        return bool(self.email and self.email.strip())

    def find_event(self, event_id: UUID) -> Optional[ClassEvent]:
        for event in self.history:
            if event.id == event_id:
                return event
        return None


@dataclass(frozen=True)
class PaymentRecord:
    """A payment taken for a plan renewal."""
    student_id: str
    student_name: str
    plan_id: str
    plan_name: str
    amount: float
    paid_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    method: PaymentMethod = PaymentMethod.PIX
    id: UUID = field(default_factory=uuid4)
