"""
Snowflake database connection management.

Provides connection factory and context manager for Snowflake operations.
Includes mock mode with in-memory storage for local development.

Using the repository pattern means most code never touches this module
directly - it goes through AccountRepository which handles the translation
between domain models and database rows.
"""

import base64
import copy
import logging
from contextlib import contextmanager
from typing import Generator, Optional

from .repositories.accounts import (
    ACCOUNT_COLUMNS,
    PAYMENT_COLUMNS,
    PLAN_COLUMNS,
    SnowflakeConfig,
    SnowflakeConnection,
)

logger = logging.getLogger(__name__)


class SnowflakeConnectionError(Exception):
    """Raised when Snowflake connection fails."""
    pass


def _load_private_key(config: SnowflakeConfig) -> bytes:
    """
    Load the private key for key-pair authentication.

    Snowflake requires the key as DER bytes, not a file path. The key can
    come from a PEM file or, for deployments without a filesystem, from a
    base64-encoded PEM in the environment.
    """
    from cryptography.hazmat.backends import default_backend
    from cryptography.hazmat.primitives import serialization

    if config.private_key_base64:
        pem = base64.b64decode(config.private_key_base64)
    else:
        with open(config.private_key_path, 'rb') as key_file:
            pem = key_file.read()

    private_key = serialization.load_pem_private_key(
        pem,
        password=None,  # No password on the key
        backend=default_backend()
    )

    return private_key.private_bytes(
        encoding=serialization.Encoding.DER,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption()
    )


@contextmanager
def get_snowflake_connection(config: SnowflakeConfig) -> Generator[SnowflakeConnection, None, None]:
    """
    Provide Snowflake connection with automatic cleanup.

    Supports both password and key-pair authentication:
    - If a private key (path or base64) is set, uses key-pair auth
    - Otherwise, uses password auth

    Usage:
        with get_snowflake_connection(config) as conn:
            repo = AccountRepository(conn)
    """
    import snowflake.connector

    conn = None
    try:
        connect_params = {
            'account': config.account,
            'user': config.user,
            'database': config.database,
            'schema': config.schema,
            'warehouse': config.warehouse,
            'role': config.role,
            'client_session_keep_alive': True,
        }

        if config.private_key_path or config.private_key_base64:
            logger.info("Using key-pair authentication for Snowflake")
            connect_params['private_key'] = _load_private_key(config)
        elif config.password:
            logger.info("Using password authentication for Snowflake")
            connect_params['password'] = config.password
        else:
            raise SnowflakeConnectionError(
                "Either password or a private key must be provided"
            )

        conn = snowflake.connector.connect(**connect_params)

        logger.debug(
            "Established Snowflake connection",
            extra={
                "account": config.account,
                "database": config.database,
                "schema": config.schema,
            }
        )

    except snowflake.connector.errors.DatabaseError as e:
        logger.error(
            "Snowflake connection failed",
            extra={"error": str(e), "account": config.account}
        )
        raise SnowflakeConnectionError(f"Database connection failed: {e}") from e

    try:
        yield conn
    finally:
        try:
            conn.close()
            logger.debug("Closed Snowflake connection")
        except Exception as e:
            logger.warning(
                "Error closing Snowflake connection",
                extra={"error": str(e)}
            )


# ---------------------------------------------------------------------------
# Mock Connection for Local Development
# ---------------------------------------------------------------------------

_TABLE_COLUMNS = {
    'student_accounts': ACCOUNT_COLUMNS,
    'plans': PLAN_COLUMNS,
    'payments': PAYMENT_COLUMNS,
}

_ORDERING = {
    'student_accounts': ('name', False),
    'plans': ('name', False),
    'payments': ('paid_at', True),
}


class MockSnowflakeCursor:
    """
    Mock Snowflake cursor for testing.

    Implements just enough of the cursor interface to support
    AccountRepository without a real database. Queries are recognised by
    pattern matching, and parameters are mapped to columns in the order
    the repository sends them.
    """

    def __init__(self, connection: 'MockSnowflakeConnection') -> None:
        self._connection = connection
        self._storage = connection._storage
        self._results: list = []
        self._rowcount: int = 0

    @staticmethod
    def _table_of(query: str) -> Optional[str]:
        for table in _TABLE_COLUMNS:
            if f" {table.upper()}" in query:
                return table
        return None

    def execute(self, query: str, params: Optional[tuple] = None) -> 'MockSnowflakeCursor':
        """Execute a query against mock storage."""
        logger.debug(
            "Mock cursor execute",
            extra={"query": query[:100], "params": params}
        )

        query_upper = " ".join(query.upper().split())
        table = self._table_of(query_upper)
        self._results = []
        self._rowcount = 0

        if query_upper == 'BEGIN':
            self._connection._begin()
            return self

        if table is None:
            return self

        if query_upper.startswith('MERGE INTO'):
            self._handle_upsert(table, params)
        elif query_upper.startswith('INSERT INTO'):
            self._handle_upsert(table, params)
        elif query_upper.startswith('UPDATE'):
            self._handle_versioned_update(table, params)
        elif query_upper.startswith('SELECT'):
            self._handle_select(table, query_upper, params)

        return self

    def _handle_upsert(self, table: str, params: Optional[tuple]) -> None:
        """MERGE and INSERT both carry one full row in column order."""
        if not params:
            return
        row = dict(zip(_TABLE_COLUMNS[table], params))
        key = str(params[0])
        self._storage[table][key] = row
        self._rowcount = 1

    def _handle_versioned_update(self, table: str, params: Optional[tuple]) -> None:
        """UPDATE ... SET <all but key> WHERE key = %s AND version = %s."""
        if not params:
            return
        columns = _TABLE_COLUMNS[table]
        *values, key, expected_version = params
        current = self._storage[table].get(str(key))
        if current is None or current.get('version') != expected_version:
            return
        current.update(zip(columns[1:], values))
        self._rowcount = 1

    def _handle_select(self, table: str, query: str, params: Optional[tuple]) -> None:
        columns = _TABLE_COLUMNS[table]
        rows = self._storage[table]

        if 'WHERE' in query and params:
            row = rows.get(str(params[0]))
            selected = [row] if row else []
        else:
            order_by, descending = _ORDERING[table]
            selected = sorted(rows.values(), key=lambda r: r[order_by], reverse=descending)

        self._results = [tuple(row[column] for column in columns) for row in selected]

    def fetchone(self):
        """Fetch one row from results."""
        if not self._results:
            return None
        return self._results[0]

    def fetchall(self) -> list:
        """Fetch all rows from results."""
        return self._results

    def close(self) -> None:
        """Close cursor (no-op for mock)."""
        pass

    @property
    def rowcount(self) -> int:
        """Return number of rows affected."""
        return self._rowcount


class MockSnowflakeConnection:
    """
    Mock Snowflake connection for local development.

    Stores data in memory using a simple dictionary structure.
    This enables running the full API without a real database.

    Not suitable for production, but perfect for:
    - Local development
    - Unit tests
    - CI/CD environments
    """

    def __init__(self) -> None:
        # In-memory storage: {table_name: {id: row_dict}}
        self._storage: dict[str, dict[str, dict]] = {
            table: {} for table in _TABLE_COLUMNS
        }
        self._snapshot: Optional[dict] = None

        logger.info("Initialized mock Snowflake connection (in-memory)")

    def cursor(self) -> MockSnowflakeCursor:
        """Create a mock cursor."""
        return MockSnowflakeCursor(self)

    def _begin(self) -> None:
        """Remember the current state so rollback can restore it."""
        self._snapshot = copy.deepcopy(self._storage)

    def commit(self) -> None:
        """Commit transaction. Outside BEGIN every statement auto-commits."""
        self._snapshot = None
        logger.debug("Mock connection commit")

    def rollback(self) -> None:
        """Undo everything since BEGIN."""
        if self._snapshot is not None:
            self._storage.update(self._snapshot)
            self._snapshot = None
        logger.debug("Mock connection rollback")

    def close(self) -> None:
        """Close connection (no-op for mock)."""
        logger.debug("Mock connection close")

    # Helper methods for testing
    def _get_row(self, table: str, key: str) -> Optional[dict]:
        """Get a stored row (for test assertions)."""
        return self._storage[table].get(str(key))


@contextmanager
def get_mock_snowflake_connection() -> Generator[MockSnowflakeConnection, None, None]:
    """
    Provide mock Snowflake connection for local development.

    Returns a connection that stores data in memory. Perfect for
    testing and local development without provisioning Snowflake.
    """
    conn = MockSnowflakeConnection()
    try:
        yield conn
    finally:
        conn.close()


# ---------------------------------------------------------------------------
# Factory Function
# ---------------------------------------------------------------------------

@contextmanager
def create_snowflake_connection(
    config: Optional[SnowflakeConfig] = None,
    mock_mode: bool = False,
) -> Generator[SnowflakeConnection, None, None]:
    """
    Create Snowflake connection based on configuration.

    Factory function that returns either a real or mock connection
    depending on mock_mode flag.

    Args:
        config: Snowflake configuration (required if not mock_mode)
        mock_mode: If True, return mock connection for testing

    Yields:
        SnowflakeConnection implementation (real or mock)
    """
    if mock_mode:
        with get_mock_snowflake_connection() as conn:
            yield conn
    else:
        if config is None:
            raise ValueError("config is required when not in mock mode")

        with get_snowflake_connection(config) as conn:
            yield conn
