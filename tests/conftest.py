"""
Shared fixtures.

Plans, a controllable clock, and the mock Snowflake connection wired
into a real AccountRepository, so orchestrator and API tests run the
same SQL paths production does.
"""

from datetime import date, datetime, timedelta, timezone, tzinfo

import pytest

from trainerdesk.core.billing.catalog import PlanCatalog
from trainerdesk.core.billing.models import Plan, PlanKind
from trainerdesk.infrastructure.email.brevo import MockEmailClient
from trainerdesk.infrastructure.snowflake.client import MockSnowflakeConnection, MockSnowflakeCursor
from trainerdesk.infrastructure.snowflake.repositories.accounts import AccountRepository


TODAY = date(2026, 3, 10)  # A Tuesday


class FixedClock:
    """Clock that only moves when a test moves it."""

    def __init__(self, today: date = TODAY, tz: tzinfo = timezone.utc) -> None:
        self._today = today
        self.tz = tz

    def now(self) -> datetime:
        return datetime(self._today.year, self._today.month, self._today.day, 12, 0, tzinfo=timezone.utc)

    def today(self) -> date:
        return self._today

    def advance(self, days: int) -> None:
        self._today += timedelta(days=days)


@pytest.fixture
def monthly_plan() -> Plan:
    return Plan(id="monthly", name="Monthly", price=300.0, kind=PlanKind.DURATION, duration_days=30)


@pytest.fixture
def pack_plan() -> Plan:
    return Plan(id="pack10", name="10-Class Pack", price=500.0, kind=PlanKind.SESSION_PACK, session_count=10)


@pytest.fixture
def broken_pack_plan() -> Plan:
    """A session pack someone saved without a session count."""
    return Plan(id="broken", name="Broken Pack", price=100.0, kind=PlanKind.SESSION_PACK)


@pytest.fixture
def catalog(monthly_plan, pack_plan, broken_pack_plan) -> PlanCatalog:
    return PlanCatalog([monthly_plan, pack_plan, broken_pack_plan])


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock()


class PaymentsDownCursor(MockSnowflakeCursor):
    def execute(self, query, params=None):
        if self._connection.payments_down and "INSERT INTO payments" in query:
            raise RuntimeError("payments table is locked")
        return super().execute(query, params)


class PaymentsDownConnection(MockSnowflakeConnection):
    """Mock connection whose payment inserts fail while payments_down is set."""

    def __init__(self) -> None:
        super().__init__()
        self.payments_down = True

    def cursor(self) -> PaymentsDownCursor:
        return PaymentsDownCursor(self)


@pytest.fixture
def connection() -> MockSnowflakeConnection:
    return MockSnowflakeConnection()


@pytest.fixture
def payments_down_connection() -> PaymentsDownConnection:
    return PaymentsDownConnection()


@pytest.fixture
def repository(connection) -> AccountRepository:
    return AccountRepository(connection, max_retries=3)


@pytest.fixture
def outbox() -> MockEmailClient:
    return MockEmailClient()
