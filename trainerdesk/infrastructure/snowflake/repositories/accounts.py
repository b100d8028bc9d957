"""
Snowflake repository for student accounts, plans and payments.

This module implements the repository pattern for accounting data:
1. Translates between domain models and database rows
2. Encapsulates all SQL queries
3. Implements the PersistenceGateway protocol the orchestrator depends on

Each account is one row. Class history, schedule and the reminder ledger
are JSON documents in VARCHAR columns, so an account is always read and
written as a whole. Concurrent writers are detected with a version
column: update_account only writes if the version it read is still
current, and retries its read-modify-write otherwise. A renewal writes
the account and its payment row in one transaction.
"""

import json
import logging
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Callable, Iterator, Optional, Protocol, TypeVar
from uuid import UUID

from trainerdesk.core.billing.errors import (
    AccountingError,
    AccountNotFoundError,
    ConcurrentModificationError,
    PersistenceFailure,
    PlanNotFoundError,
)
from trainerdesk.core.billing.models import (
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
    TimeSlot,
    Untracked,
)


logger = logging.getLogger(__name__)

T = TypeVar("T")

ACCOUNT_COLUMNS = (
    "student_id",
    "name",
    "email",
    "phone",
    "start_date",
    "plan_id",
    "due_date",
    "remaining_sessions",
    "history",
    "schedule",
    "reminders_sent",
    "access_blocked",
    "version",
)

PLAN_COLUMNS = (
    "plan_id",
    "name",
    "price",
    "kind",
    "duration_days",
    "session_count",
)

PAYMENT_COLUMNS = (
    "payment_id",
    "student_id",
    "student_name",
    "plan_id",
    "plan_name",
    "amount",
    "method",
    "paid_at",
)


def _merge_sql(table: str, columns: tuple[str, ...]) -> str:
    key, *rest = columns
    source = ", ".join(f"%s AS {column}" for column in columns)
    updates = ", ".join(f"{column} = source.{column}" for column in rest)
    inserts = ", ".join(columns)
    values = ", ".join(f"source.{column}" for column in columns)
    return f"""
        MERGE INTO {table} AS target
        USING (SELECT {source}) AS source
        ON target.{key} = source.{key}
        WHEN MATCHED THEN UPDATE SET {updates}
        WHEN NOT MATCHED THEN INSERT ({inserts}) VALUES ({values})
    """


SELECT_ACCOUNT_SQL = f"""
    SELECT {", ".join(ACCOUNT_COLUMNS)}
    FROM student_accounts
    WHERE student_id = %s
"""

LIST_ACCOUNTS_SQL = f"""
    SELECT {", ".join(ACCOUNT_COLUMNS)}
    FROM student_accounts
    ORDER BY name
"""

MERGE_ACCOUNT_SQL = _merge_sql("student_accounts", ACCOUNT_COLUMNS)

UPDATE_ACCOUNT_SQL = f"""
    UPDATE student_accounts
    SET {", ".join(f"{column} = %s" for column in ACCOUNT_COLUMNS[1:])}
    WHERE student_id = %s AND version = %s
"""

SELECT_PLAN_SQL = f"""
    SELECT {", ".join(PLAN_COLUMNS)}
    FROM plans
    WHERE plan_id = %s
"""

LIST_PLANS_SQL = f"""
    SELECT {", ".join(PLAN_COLUMNS)}
    FROM plans
    ORDER BY name
"""

MERGE_PLAN_SQL = _merge_sql("plans", PLAN_COLUMNS)

INSERT_PAYMENT_SQL = f"""
    INSERT INTO payments ({", ".join(PAYMENT_COLUMNS)})
    VALUES ({", ".join("%s" for _ in PAYMENT_COLUMNS)})
"""

BEGIN_SQL = "BEGIN"

LIST_PAYMENTS_SQL = f"""
    SELECT {", ".join(PAYMENT_COLUMNS)}
    FROM payments
    ORDER BY paid_at DESC
"""


class SnowflakeConnection(Protocol):
    """
    Protocol for Snowflake connections.

    Using a protocol means tests can provide a mock without
    importing the actual snowflake-connector-python.
    """

    def cursor(self): ...
    def commit(self) -> None: ...
    def rollback(self) -> None: ...


@dataclass
class SnowflakeConfig:
    """Configuration for Snowflake connection."""
    account: str
    user: str
    password: Optional[str] = None
    private_key_path: Optional[str] = None
    private_key_base64: Optional[str] = None
    database: str = "TRAINERDESK"
    schema: str = "ACCOUNTING"
    warehouse: str = "COMPUTE_WH"
    role: Optional[str] = None


# ---------------------------------------------------------------------------
# Row translation
# ---------------------------------------------------------------------------

def _as_date(value: Any) -> Optional[date]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


def _as_datetime(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value))


def _as_json(value: Any, default: Any) -> Any:
    if value is None or value == "":
        return default
    if isinstance(value, (str, bytes)):
        return json.loads(value)
    return value


def _encode_history(history: list[ClassEvent]) -> str:
    return json.dumps([
        {
            "id": str(event.id),
            "kind": event.kind.value,
            "timestamp": event.timestamp.isoformat(),
        }
        for event in history
    ])


def _decode_history(raw: Any) -> list[ClassEvent]:
    return [
        ClassEvent(
            id=UUID(item["id"]),
            kind=ClassEventKind(item["kind"]),
            timestamp=_as_datetime(item["timestamp"]),
        )
        for item in _as_json(raw, [])
    ]


def _encode_schedule(schedule: list[TimeSlot]) -> str:
    return json.dumps([
        {"day": slot.weekday.key, "start_time": slot.start_time, "end_time": slot.end_time}
        for slot in schedule
    ])


def _decode_schedule(raw: Any) -> list[TimeSlot]:
    slots = []
    for item in _as_json(raw, []):
        slot = TimeSlot.parse(item.get("day", ""), item.get("start_time"), item.get("end_time"))
        if slot is not None:
            slots.append(slot)
    return slots


def account_to_row(account: StudentAccount, version: int) -> tuple:
    """Flatten an account into ACCOUNT_COLUMNS order."""
    return (
        account.id,
        account.name,
        account.email,
        account.phone,
        account.start_date,
        account.plan_id,
        account.due_date,
        account.remaining_sessions,
        _encode_history(account.history),
        _encode_schedule(account.schedule),
        json.dumps(account.reminders_sent.to_dict()),
        account.access_blocked,
        version,
    )


def account_from_row(row: tuple) -> StudentAccount:
    data = dict(zip(ACCOUNT_COLUMNS, row))

    due_date = _as_date(data["due_date"])
    remaining = data["remaining_sessions"]
    if due_date is not None:
        balance = DurationBalance(due_date)
    elif remaining is not None:
        balance = SessionBalance(int(remaining))
    else:
        balance = Untracked()

    return StudentAccount(
        id=str(data["student_id"]),
        name=data["name"] or "",
        email=data["email"] or "",
        phone=data["phone"] or "",
        start_date=_as_date(data["start_date"]),
        plan_id=data["plan_id"] or None,
        balance=balance,
        history=_decode_history(data["history"]),
        schedule=_decode_schedule(data["schedule"]),
        reminders_sent=ReminderLedger.from_dict(_as_json(data["reminders_sent"], {})),
        access_blocked=bool(data["access_blocked"]),
        version=int(data["version"] or 0),
    )


def plan_to_row(plan: Plan) -> tuple:
    return (
        plan.id,
        plan.name,
        plan.price,
        plan.kind.value,
        plan.duration_days,
        plan.session_count,
    )


def plan_from_row(row: tuple) -> Plan:
    data = dict(zip(PLAN_COLUMNS, row))
    return Plan(
        id=str(data["plan_id"]),
        name=data["name"],
        price=float(data["price"] or 0),
        kind=PlanKind(data["kind"]),
        duration_days=int(data["duration_days"]) if data["duration_days"] is not None else None,
        session_count=int(data["session_count"]) if data["session_count"] is not None else None,
    )


def payment_to_row(payment: PaymentRecord) -> tuple:
    return (
        str(payment.id),
        payment.student_id,
        payment.student_name,
        payment.plan_id,
        payment.plan_name,
        payment.amount,
        payment.method.value,
        payment.paid_at,
    )


def payment_from_row(row: tuple) -> PaymentRecord:
    data = dict(zip(PAYMENT_COLUMNS, row))
    return PaymentRecord(
        id=UUID(str(data["payment_id"])),
        student_id=str(data["student_id"]),
        student_name=data["student_name"] or "",
        plan_id=str(data["plan_id"]),
        plan_name=data["plan_name"] or "",
        amount=float(data["amount"]),
        method=PaymentMethod(data["method"]),
        paid_at=_as_datetime(data["paid_at"]),
    )


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------

class AccountRepository:
    """
    Snowflake-backed PersistenceGateway.

    Methods are async to match the gateway protocol even though the
    Snowflake connector is synchronous.
    """

    def __init__(self, connection: SnowflakeConnection, max_retries: int = 3) -> None:
        if max_retries < 1:
            raise ValueError("max_retries must be at least 1")
        self._conn = connection
        self._max_retries = max_retries

    @contextmanager
    def _cursor(self, operation: str, **context: Any) -> Iterator[Any]:
        """Cursor that always closes and turns driver errors into PersistenceFailure."""
        cursor = self._conn.cursor()
        try:
            yield cursor
        except AccountingError:
            raise
        except Exception as e:
            logger.error(
                "Snowflake operation failed",
                extra={"operation": operation, "error": str(e), **context}
            )
            raise PersistenceFailure(f"{operation} failed: {e}") from e
        finally:
            cursor.close()

    # -----------------------------------------------------------------------
    # Accounts
    # -----------------------------------------------------------------------

    async def load_account(self, student_id: str) -> StudentAccount:
        with self._cursor("load_account", student_id=student_id) as cursor:
            cursor.execute(SELECT_ACCOUNT_SQL, (student_id,))
            row = cursor.fetchone()
            if not row:
                raise AccountNotFoundError(f"Student {student_id} not found")
            return account_from_row(row)

    async def list_accounts(self) -> list[StudentAccount]:
        with self._cursor("list_accounts") as cursor:
            cursor.execute(LIST_ACCOUNTS_SQL)
            return [account_from_row(row) for row in cursor.fetchall()]

    async def save_account(self, account: StudentAccount) -> None:
        """
        Insert or overwrite an account.

        Meant for new enrollments. Changes to existing accounts should go
        through update_account so concurrent writers aren't clobbered.
        """
        new_version = account.version + 1
        with self._cursor("save_account", student_id=account.id) as cursor:
            cursor.execute(MERGE_ACCOUNT_SQL, account_to_row(account, new_version))
            self._conn.commit()
        account.version = new_version

    async def update_account(
        self,
        student_id: str,
        mutate: Callable[[StudentAccount], T],
    ) -> T:
        """
        Atomic read-modify-write of one account.

        mutate runs against a fresh copy. The write only lands if nobody
        else wrote the row since it was read; otherwise the whole cycle
        is retried with a new read. If mutate raises, nothing is written.
        """
        return await self._read_modify_write(student_id, mutate, with_payment=False)

    async def apply_payment(
        self,
        student_id: str,
        mutate: Callable[[StudentAccount], PaymentRecord],
    ) -> PaymentRecord:
        """
        update_account for renewals.

        mutate renews the account and returns the payment. The account
        write and the payment insert commit together, so a failed insert
        leaves the balance as it was.
        """
        return await self._read_modify_write(student_id, mutate, with_payment=True)

    async def _read_modify_write(
        self,
        student_id: str,
        mutate: Callable[[StudentAccount], T],
        with_payment: bool,
    ) -> T:
        for attempt in range(1, self._max_retries + 1):
            account = await self.load_account(student_id)
            expected_version = account.version
            result = mutate(account)
            payment = result if with_payment else None

            if self._compare_and_swap(account, expected_version, payment):
                account.version = expected_version + 1
                return result

            logger.warning(
                "Concurrent account update, retrying",
                extra={"student_id": student_id, "attempt": attempt}
            )

        raise ConcurrentModificationError(student_id, self._max_retries)

    def _compare_and_swap(
        self,
        account: StudentAccount,
        expected_version: int,
        payment: Optional[PaymentRecord] = None,
    ) -> bool:
        row = account_to_row(account, expected_version + 1)
        with self._cursor("update_account", student_id=account.id) as cursor:
            cursor.execute(BEGIN_SQL)
            try:
                cursor.execute(UPDATE_ACCOUNT_SQL, (*row[1:], account.id, expected_version))
                updated = cursor.rowcount == 1
                if updated and payment is not None:
                    cursor.execute(INSERT_PAYMENT_SQL, payment_to_row(payment))
            except Exception:
                self._conn.rollback()
                raise
            self._conn.commit()
        logger.debug(
            "Account write attempted",
            extra={"student_id": account.id, "updated": updated}
        )
        return updated

    # -----------------------------------------------------------------------
    # Plans
    # -----------------------------------------------------------------------

    async def load_plan(self, plan_id: str) -> Plan:
        with self._cursor("load_plan", plan_id=plan_id) as cursor:
            cursor.execute(SELECT_PLAN_SQL, (plan_id,))
            row = cursor.fetchone()
            if not row:
                raise PlanNotFoundError(f"Plan {plan_id} not found")
            return plan_from_row(row)

    async def list_plans(self) -> list[Plan]:
        with self._cursor("list_plans") as cursor:
            cursor.execute(LIST_PLANS_SQL)
            return [plan_from_row(row) for row in cursor.fetchall()]

    async def save_plan(self, plan: Plan) -> None:
        with self._cursor("save_plan", plan_id=plan.id) as cursor:
            cursor.execute(MERGE_PLAN_SQL, plan_to_row(plan))
            self._conn.commit()

    # -----------------------------------------------------------------------
    # Payments
    # -----------------------------------------------------------------------

    async def list_payments(self) -> list[PaymentRecord]:
        with self._cursor("list_payments") as cursor:
            cursor.execute(LIST_PAYMENTS_SQL)
            return [payment_from_row(row) for row in cursor.fetchall()]
