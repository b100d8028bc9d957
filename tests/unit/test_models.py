"""
Unit tests for the accounting domain models.

These tests verify the value objects and the ledger without touching
external services (no database, no e-mail, no HTTP).

Testing philosophy:
- Test behavior, not implementation
- Each test should have a clear "given/when/then" structure
- Use descriptive names that explain what we're testing
- Prefer real objects over mocks where practical
"""

from datetime import date, datetime, timezone

import pytest

from trainerdesk.core.billing.models import (
    DurationBalance,
    PlanKind,
    ReminderLedger,
    SessionBalance,
    StudentAccount,
    ThresholdKey,
    TimeSlot,
    Untracked,
    Weekday,
    parse_clock_time,
)


# ---------------------------------------------------------------------------
# Weekday and clock time Tests
# ---------------------------------------------------------------------------

class TestWeekday:
    """Tests for weekday numbering and day keys."""

    def test_counts_from_sunday(self):
        """Sunday is day 0, the way stored schedules number days."""
        assert Weekday.of(date(2026, 3, 8)) == Weekday.SUNDAY
        assert Weekday.of(date(2026, 3, 9)) == Weekday.MONDAY
        assert Weekday.of(date(2026, 3, 14)) == Weekday.SATURDAY

    def test_day_keys_round_trip(self):
        for day in Weekday:
            assert Weekday.from_key(day.key) == day

    def test_day_keys_are_case_insensitive(self):
        assert Weekday.from_key(" Monday ") == Weekday.MONDAY

    def test_unknown_key_rejected(self):
        with pytest.raises(ValueError, match="Unknown weekday"):
            Weekday.from_key("funday")


class TestParseClockTime:

    def test_parses_hours_and_minutes(self):
        assert parse_clock_time("08:30") == 8 * 60 + 30

    def test_midnight_end_of_day(self):
        assert parse_clock_time("24:00") == 24 * 60

    @pytest.mark.parametrize("value", [None, "", "830", "ab:cd", "25:00", "10:75"])
    def test_unusable_values_give_none(self, value):
        assert parse_clock_time(value) is None


# ---------------------------------------------------------------------------
# TimeSlot Tests
# ---------------------------------------------------------------------------

class TestTimeSlot:
    """Tests for the TimeSlot value object."""

    def test_rejects_start_after_end(self):
        with pytest.raises(ValueError, match="start before it ends"):
            TimeSlot(Weekday.MONDAY, 600, 540)

    def test_rejects_zero_duration(self):
        with pytest.raises(ValueError):
            TimeSlot(Weekday.MONDAY, 540, 540)

    def test_parse_builds_slot(self):
        slot = TimeSlot.parse("monday", "08:00", "09:00")
        assert slot == TimeSlot(Weekday.MONDAY, 480, 540)
        assert slot.start_time == "08:00"
        assert slot.end_time == "09:00"

    @pytest.mark.parametrize("start,end", [("", "09:00"), ("08:00", ""), ("09:00", "09:00"), ("10:00", "09:00")])
    def test_parse_skips_unset_or_empty_rows(self, start, end):
        """Half-filled schedule rows are treated as absent, not as errors."""
        assert TimeSlot.parse("monday", start, end) is None

    def test_parse_skips_unknown_day(self):
        assert TimeSlot.parse("someday", "08:00", "09:00") is None

    def test_overlap_is_half_open(self):
        """Touching at a boundary is not an overlap."""
        a = TimeSlot.parse("monday", "08:00", "09:00")
        b = TimeSlot.parse("monday", "09:00", "10:00")
        assert not a.overlaps(b)
        assert not b.overlaps(a)

    def test_overlap_needs_same_weekday(self):
        a = TimeSlot.parse("monday", "08:00", "09:00")
        b = TimeSlot.parse("tuesday", "08:00", "09:00")
        assert not a.overlaps(b)

    def test_contained_slot_overlaps(self):
        outer = TimeSlot.parse("friday", "07:00", "10:00")
        inner = TimeSlot.parse("friday", "08:00", "08:30")
        assert outer.overlaps(inner)
        assert inner.overlaps(outer)


# ---------------------------------------------------------------------------
# Balance and account Tests
# ---------------------------------------------------------------------------

class TestStudentAccountBalance:
    """The balance is one track at a time."""

    def test_new_account_is_untracked(self):
        account = StudentAccount()
        assert account.balance == Untracked()
        assert account.due_date is None
        assert account.remaining_sessions is None

    def test_duration_track_exposes_only_due_date(self):
        account = StudentAccount(balance=DurationBalance(date(2026, 4, 1)))
        assert account.due_date == date(2026, 4, 1)
        assert account.remaining_sessions is None

    def test_session_track_exposes_only_remaining(self):
        account = StudentAccount(balance=SessionBalance(-2))
        assert account.remaining_sessions == -2
        assert account.due_date is None

    def test_blank_email_is_no_contact(self):
        assert not StudentAccount(email="   ").has_contact
        assert StudentAccount(email="ana@example.com").has_contact


# ---------------------------------------------------------------------------
# Reminder ledger Tests
# ---------------------------------------------------------------------------

SENT_AT = datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)


class TestReminderLedger:

    def test_threshold_keys_know_their_track(self):
        assert ThresholdKey.DURATION_3_DAYS.track == PlanKind.DURATION
        assert ThresholdKey.DURATION_1_DAY.track == PlanKind.DURATION
        assert ThresholdKey.SESSIONS_3.track == PlanKind.SESSION_PACK
        assert ThresholdKey.SESSIONS_1.track == PlanKind.SESSION_PACK

    def test_mark_keeps_first_timestamp(self):
        ledger = ReminderLedger()
        ledger.mark(ThresholdKey.SESSIONS_3, SENT_AT)
        ledger.mark(ThresholdKey.SESSIONS_3, datetime(2026, 3, 2, tzinfo=timezone.utc))
        assert ledger.entries[ThresholdKey.SESSIONS_3] == SENT_AT

    def test_reset_only_clears_one_track(self):
        ledger = ReminderLedger()
        ledger.mark(ThresholdKey.DURATION_3_DAYS, SENT_AT)
        ledger.mark(ThresholdKey.SESSIONS_1, SENT_AT)

        ledger.reset(PlanKind.DURATION)

        assert not ledger.has(ThresholdKey.DURATION_3_DAYS)
        assert ledger.has(ThresholdKey.SESSIONS_1)
        assert len(ledger) == 1

    def test_dict_round_trip(self):
        ledger = ReminderLedger()
        ledger.mark(ThresholdKey.DURATION_1_DAY, SENT_AT)
        assert ReminderLedger.from_dict(ledger.to_dict()) == ledger

    def test_stored_keys_use_stable_names(self):
        ledger = ReminderLedger()
        ledger.mark(ThresholdKey.DURATION_3_DAYS, SENT_AT)
        assert list(ledger.to_dict()) == ["duration:3days"]

    def test_unknown_stored_keys_dropped(self):
        ledger = ReminderLedger.from_dict({
            "sessions:1": SENT_AT.isoformat(),
            "legacy:whatever": SENT_AT.isoformat(),
        })
        assert list(ledger.entries) == [ThresholdKey.SESSIONS_1]
