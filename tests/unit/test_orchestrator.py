"""
Tests for the accounting orchestrator.

Runs against the real repository on the mock Snowflake connection, a
fixed clock and the in-memory e-mail client, so each test exercises the
whole path from decision to stored ledger.
"""

from datetime import timedelta

import pytest

from trainerdesk.core.billing.account import AccountStatus
from trainerdesk.core.billing.errors import (
    AccountNotFoundError,
    InvalidPlanConfiguration,
    PersistenceFailure,
    PlanNotFoundError,
    ScheduleConflictError,
)
from trainerdesk.core.billing.models import (
    ClassEventKind,
    DurationBalance,
    PaymentMethod,
    SessionBalance,
    StudentAccount,
    ThresholdKey,
    TimeSlot,
)
from trainerdesk.core.billing.orchestrator import AccountingOrchestrator
from trainerdesk.core.billing.templates import TrainerProfile, render_reminder
from trainerdesk.infrastructure.snowflake.repositories.accounts import AccountRepository


async def seed(repository, plans, *accounts):
    for plan in plans:
        await repository.save_plan(plan)
    for account in accounts:
        await repository.save_account(account)


@pytest.fixture
def plans(monthly_plan, pack_plan, broken_pack_plan):
    return [monthly_plan, pack_plan, broken_pack_plan]


@pytest.fixture
def orchestrator(repository, outbox, clock):
    return AccountingOrchestrator(
        gateway=repository,
        notifier=outbox,
        clock=clock,
        trainer=TrainerProfile(name="Coach Bia"),
    )


def student(student_id="s1", email="ana@example.com", **kwargs) -> StudentAccount:
    return StudentAccount(id=student_id, name=student_id.upper(), email=email, **kwargs)


# ---------------------------------------------------------------------------
# Reminder sweep
# ---------------------------------------------------------------------------

class TestRunSweep:

    @pytest.mark.asyncio
    async def test_sends_and_marks_ledger(self, orchestrator, repository, outbox, clock, plans):
        await seed(repository, plans, student(plan_id="pack10", balance=SessionBalance(3)))

        report = await orchestrator.run_sweep()

        assert report.ok
        assert report.intents == 1
        assert [(s.student_id, s.threshold_key) for s in report.sent] == [("s1", ThresholdKey.SESSIONS_3)]
        assert len(outbox.sent) == 1
        assert outbox.sent[0].recipient_email == "ana@example.com"
        assert outbox.sent[0].subject == "3 sessions left on your plan"
        assert "Coach Bia" in outbox.sent[0].html_body

        stored = await repository.load_account("s1")
        assert stored.reminders_sent.entries == {ThresholdKey.SESSIONS_3: clock.now()}

    @pytest.mark.asyncio
    async def test_second_sweep_sends_nothing(self, orchestrator, repository, outbox, plans):
        await seed(repository, plans, student(plan_id="pack10", balance=SessionBalance(3)))

        await orchestrator.run_sweep()
        report = await orchestrator.run_sweep()

        assert report.intents == 0
        assert len(outbox.sent) == 1

    @pytest.mark.asyncio
    async def test_classes_then_sweep_then_repeat(self, orchestrator, repository, outbox, plans):
        """Pack at 4, three classes, one sessions:1 reminder, then silence."""
        await seed(repository, plans, student(plan_id="pack10", balance=SessionBalance(4)))
        for _ in range(3):
            await orchestrator.record_class_event("s1", ClassEventKind.REGULAR)

        first = await orchestrator.run_sweep()
        second = await orchestrator.run_sweep()

        assert [s.threshold_key for s in first.sent] == [ThresholdKey.SESSIONS_1]
        assert second.intents == 0
        assert len(outbox.sent) == 1

    @pytest.mark.asyncio
    async def test_duration_reminders_across_days(self, orchestrator, repository, clock, plans):
        due = clock.today() + timedelta(days=3)
        await seed(repository, plans, student(plan_id="monthly", balance=DurationBalance(due)))

        first = await orchestrator.run_sweep()
        clock.advance(2)
        second = await orchestrator.run_sweep()

        assert [s.threshold_key for s in first.sent] == [ThresholdKey.DURATION_3_DAYS]
        assert [s.threshold_key for s in second.sent] == [ThresholdKey.DURATION_1_DAY]
        stored = await repository.load_account("s1")
        assert set(stored.reminders_sent.entries) == {
            ThresholdKey.DURATION_3_DAYS,
            ThresholdKey.DURATION_1_DAY,
        }

    @pytest.mark.asyncio
    async def test_failed_send_is_isolated_and_retried(self, orchestrator, repository, outbox, plans):
        await seed(
            repository,
            plans,
            student("a", email="a@example.com", plan_id="pack10", balance=SessionBalance(3)),
            student("b", email="b@example.com", plan_id="pack10", balance=SessionBalance(1)),
        )
        outbox.failing_recipients.add("a@example.com")

        report = await orchestrator.run_sweep()

        assert not report.ok
        assert [(f.student_id, f.stage) for f in report.failed] == [("a", "send")]
        assert [s.student_id for s in report.sent] == ["b"]
        assert len((await repository.load_account("a")).reminders_sent) == 0

        # Provider recovers; only the failed one goes out
        outbox.failing_recipients.clear()
        retry = await orchestrator.run_sweep()

        assert [s.student_id for s in retry.sent] == ["a"]
        assert [m.recipient_email for m in outbox.sent] == ["b@example.com", "a@example.com"]

    @pytest.mark.asyncio
    async def test_ledger_failure_is_reported(self, repository, outbox, clock, plans):
        await seed(repository, plans, student(plan_id="pack10", balance=SessionBalance(3)))

        class LedgerFailingGateway:
            def __getattr__(self, name):
                return getattr(repository, name)

            async def update_account(self, student_id, mutate):
                raise PersistenceFailure("write timed out")

        orchestrator = AccountingOrchestrator(LedgerFailingGateway(), outbox, clock)

        report = await orchestrator.run_sweep()

        assert len(outbox.sent) == 1
        assert [(f.stage, f.error) for f in report.failed] == [("ledger", "write timed out")]
        assert report.sent == []

    @pytest.mark.asyncio
    async def test_render_failure_is_isolated(self, orchestrator, repository, outbox, plans, monkeypatch):
        await seed(
            repository,
            plans,
            student("a", email="a@example.com", plan_id="pack10", balance=SessionBalance(3)),
            student("b", email="b@example.com", plan_id="pack10", balance=SessionBalance(1)),
        )

        def render(intent, trainer):
            if intent.student_id == "a":
                raise KeyError("student_name")
            return render_reminder(intent, trainer)

        monkeypatch.setattr("trainerdesk.core.billing.orchestrator.render_reminder", render)

        report = await orchestrator.run_sweep()

        assert [(f.student_id, f.stage) for f in report.failed] == [("a", "render")]
        assert [s.student_id for s in report.sent] == ["b"]
        assert [m.recipient_email for m in outbox.sent] == ["b@example.com"]

    @pytest.mark.asyncio
    async def test_renewal_during_send_keeps_new_cycle_unmarked(self, repository, clock, plans):
        """A payment that lands mid-send resets the ledger; the stale mark must not undo that."""
        await seed(repository, plans, student(plan_id="pack10", balance=SessionBalance(1)))

        class RenewingNotifier:
            def __init__(self):
                self.orchestrator = None
                self.sent = []

            async def send(self, recipient_email, recipient_name, subject, html_body):
                self.sent.append(recipient_email)
                await self.orchestrator.record_payment("s1")

        notifier = RenewingNotifier()
        orchestrator = AccountingOrchestrator(repository, notifier, clock)
        notifier.orchestrator = orchestrator

        report = await orchestrator.run_sweep()

        assert notifier.sent == ["ana@example.com"]
        assert [s.threshold_key for s in report.sent] == [ThresholdKey.SESSIONS_1]
        stored = await repository.load_account("s1")
        assert stored.remaining_sessions == 11
        assert len(stored.reminders_sent) == 0

    @pytest.mark.asyncio
    async def test_preview_does_not_send(self, orchestrator, repository, outbox, plans):
        await seed(repository, plans, student(plan_id="pack10", balance=SessionBalance(1)))

        intents = await orchestrator.preview_reminders()

        assert [i.threshold_key for i in intents] == [ThresholdKey.SESSIONS_1]
        assert outbox.sent == []
        assert len((await repository.load_account("s1")).reminders_sent) == 0


# ---------------------------------------------------------------------------
# Interactive mutations
# ---------------------------------------------------------------------------

class TestMutations:

    @pytest.mark.asyncio
    async def test_enroll_persists_account(self, orchestrator, repository, clock, plans):
        await seed(repository, plans)

        account = await orchestrator.enroll_student("Ana", "Ana@Example.com", plan_id="monthly")

        stored = await repository.load_account(account.id)
        assert stored.email == "ana@example.com"
        assert stored.due_date == clock.today() + timedelta(days=30)

    @pytest.mark.asyncio
    async def test_enroll_with_unknown_plan(self, orchestrator, repository, plans):
        await seed(repository, plans)
        with pytest.raises(PlanNotFoundError):
            await orchestrator.enroll_student("Ana", "ana@example.com", plan_id="gold")
        assert await repository.list_accounts() == []

    @pytest.mark.asyncio
    async def test_class_round_trip(self, orchestrator, repository, plans):
        await seed(repository, plans, student(plan_id="pack10", balance=SessionBalance(2)))

        event = await orchestrator.record_class_event("s1", ClassEventKind.ABSENT)
        assert (await repository.load_account("s1")).remaining_sessions == 1

        await orchestrator.remove_class_event("s1", event.id)
        stored = await repository.load_account("s1")
        assert stored.remaining_sessions == 2
        assert stored.history == []

    @pytest.mark.asyncio
    async def test_payment_renews_and_is_stored(self, orchestrator, repository, clock, plans):
        account = student(plan_id="pack10", balance=SessionBalance(1))
        account.reminders_sent.mark(ThresholdKey.SESSIONS_1, clock.now())
        await seed(repository, plans, account)

        payment = await orchestrator.record_payment("s1", method=PaymentMethod.CASH)

        stored = await repository.load_account("s1")
        assert stored.remaining_sessions == 11
        assert len(stored.reminders_sent) == 0
        assert await repository.list_payments() == [payment]
        assert payment.method == PaymentMethod.CASH

    @pytest.mark.asyncio
    async def test_failed_payment_record_leaves_balance(self, payments_down_connection, outbox, clock, plans):
        repository = AccountRepository(payments_down_connection)
        await seed(repository, plans, student(plan_id="pack10", balance=SessionBalance(2)))
        orchestrator = AccountingOrchestrator(repository, outbox, clock)

        with pytest.raises(PersistenceFailure):
            await orchestrator.record_payment("s1")

        assert (await repository.load_account("s1")).remaining_sessions == 2

        # Retrying once storage is back credits the pack exactly once
        payments_down_connection.payments_down = False
        payment = await orchestrator.record_payment("s1")

        assert (await repository.load_account("s1")).remaining_sessions == 12
        assert await repository.list_payments() == [payment]

    @pytest.mark.asyncio
    async def test_payment_for_other_plan_switches_track(self, orchestrator, repository, clock, plans):
        await seed(repository, plans, student(plan_id="pack10", balance=SessionBalance(-1)))

        await orchestrator.record_payment("s1", plan_id="monthly")

        stored = await repository.load_account("s1")
        assert stored.plan_id == "monthly"
        assert stored.due_date == clock.today() + timedelta(days=30)
        assert stored.remaining_sessions is None

    @pytest.mark.asyncio
    async def test_invalid_plan_payment_changes_nothing(self, orchestrator, repository, plans):
        await seed(repository, plans, student(plan_id="broken", balance=SessionBalance(2)))

        with pytest.raises(InvalidPlanConfiguration):
            await orchestrator.record_payment("s1")

        stored = await repository.load_account("s1")
        assert stored.remaining_sessions == 2
        assert stored.version == 1
        assert await repository.list_payments() == []

    @pytest.mark.asyncio
    async def test_payment_without_any_plan(self, orchestrator, repository, plans):
        await seed(repository, plans, student())
        with pytest.raises(PlanNotFoundError):
            await orchestrator.record_payment("s1")

    @pytest.mark.asyncio
    async def test_unknown_student(self, orchestrator, repository, plans):
        await seed(repository, plans)
        with pytest.raises(AccountNotFoundError):
            await orchestrator.record_class_event("ghost", ClassEventKind.REGULAR)

    @pytest.mark.asyncio
    async def test_change_plan_and_block(self, orchestrator, repository, plans):
        await seed(repository, plans, student(plan_id="pack10", balance=SessionBalance(5)))

        await orchestrator.change_plan("s1", "monthly")
        await orchestrator.set_access_blocked("s1", True)

        stored = await repository.load_account("s1")
        assert stored.plan_id == "monthly"
        assert stored.remaining_sessions == 5
        assert stored.access_blocked


# ---------------------------------------------------------------------------
# Messages
# ---------------------------------------------------------------------------

class TestBroadcast:

    @pytest.mark.asyncio
    async def test_sends_to_every_student_with_an_address(self, orchestrator, repository, outbox, plans):
        await seed(
            repository,
            plans,
            student("a", email="a@example.com"),
            student("b", email=""),
            student("c", email="c@example.com"),
        )
        outbox.failing_recipients.add("c@example.com")

        report = await orchestrator.broadcast("Holiday hours", "No classes on Friday.\nSee you Monday!")

        assert report.recipients == 2
        assert report.sent == ["a"]
        assert list(report.failed) == ["c"]
        [email] = outbox.sent
        assert email.recipient_email == "a@example.com"
        assert email.subject == "Holiday hours"
        assert "No classes on Friday.<br>See you Monday!" in email.html_body
        assert (await repository.load_account("a")).version == 1

    @pytest.mark.asyncio
    async def test_message_is_escaped(self, orchestrator, repository, outbox, plans):
        await seed(repository, plans, student())

        await orchestrator.broadcast("Hi", "<b>bold</b> & more")

        assert "&lt;b&gt;bold&lt;/b&gt; &amp; more" in outbox.sent[0].html_body

    @pytest.mark.asyncio
    async def test_blank_message_is_rejected(self, orchestrator, outbox):
        with pytest.raises(ValueError):
            await orchestrator.broadcast("Hi", "   ")
        assert outbox.sent == []


# ---------------------------------------------------------------------------
# Schedule
# ---------------------------------------------------------------------------

class TestSchedule:

    @pytest.mark.asyncio
    async def test_conflicting_write_is_blocked(self, orchestrator, repository, plans):
        await seed(
            repository,
            plans,
            student("a", schedule=[TimeSlot.parse("monday", "08:00", "09:00")]),
            student("b"),
        )

        with pytest.raises(ScheduleConflictError) as excinfo:
            await orchestrator.update_schedule("b", [TimeSlot.parse("monday", "08:30", "09:30")])

        assert excinfo.value.conflicting_student_id == "a"
        assert (await repository.load_account("b")).schedule == []

    @pytest.mark.asyncio
    async def test_conflict_allowed_is_written(self, orchestrator, repository, plans):
        await seed(
            repository,
            plans,
            student("a", schedule=[TimeSlot.parse("monday", "08:00", "09:00")]),
            student("b"),
        )
        slots = [TimeSlot.parse("monday", "08:30", "09:30")]

        conflict = await orchestrator.update_schedule("b", slots, allow_conflict=True)

        assert conflict == "a"
        assert (await repository.load_account("b")).schedule == slots

    @pytest.mark.asyncio
    async def test_own_slots_do_not_conflict(self, orchestrator, repository, plans):
        slots = [TimeSlot.parse("monday", "08:00", "09:00")]
        await seed(repository, plans, student("a", schedule=slots))

        assert await orchestrator.update_schedule("a", slots) is None
        assert await orchestrator.check_schedule(slots) == "a"
        assert await orchestrator.check_schedule(slots, exclude_student_id="a") is None


# ---------------------------------------------------------------------------
# Read side
# ---------------------------------------------------------------------------

class TestReadSide:

    @pytest.mark.asyncio
    async def test_status(self, orchestrator, repository, plans):
        await seed(repository, plans, student(plan_id="pack10", balance=SessionBalance(-2)))
        report = await orchestrator.get_status("s1")
        assert report.status == AccountStatus.OWING
        assert report.situation == "2 sessions owed"

    @pytest.mark.asyncio
    async def test_reports(self, orchestrator, repository, clock, plans):
        await seed(
            repository,
            plans,
            student("a", plan_id="pack10", balance=SessionBalance(4),
                    schedule=[TimeSlot.parse("tuesday", "07:00", "08:00")]),
        )
        await orchestrator.record_payment("a")

        roster = await orchestrator.roster_summary()
        revenue = await orchestrator.revenue_summary()
        agenda = await orchestrator.agenda()

        assert (roster.total, roster.active) == (1, 1)
        assert revenue.this_month == 500.0
        assert [item.student_id for item in agenda] == ["a"]

