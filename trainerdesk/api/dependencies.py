"""
FastAPI dependency injection.

Dependencies provide instances of services, clients, and configuration
to route handlers. Using dependency injection means:
- Routes don't instantiate their own dependencies (easier to test)
- Dependencies can be mocked for testing
- Configuration is centralized
- Resource lifecycle (connections, clients) is managed properly

Each dependency is a function that FastAPI calls when needed.
"""

import logging
from typing import Annotated, AsyncGenerator, Generator

from fastapi import Depends, HTTPException, Security, status
from fastapi.security import APIKeyHeader

from ..config.settings import Settings, get_settings
from ..core.billing.orchestrator import AccountingOrchestrator, Clock, Notifier
from ..core.billing.templates import TrainerProfile
from ..infrastructure.clock import SystemClock
from ..infrastructure.email.brevo import EmailConfig, create_email_client
from ..infrastructure.snowflake.client import (
    MockSnowflakeConnection,
    create_snowflake_connection,
)
from ..infrastructure.snowflake.repositories.accounts import (
    AccountRepository,
    SnowflakeConfig,
)

logger = logging.getLogger(__name__)

# API Key security scheme
api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)

# Global mock instances (shared across requests for testing)
_mock_snowflake_connection = None
_mock_email_client = None


# ---------------------------------------------------------------------------
# Configuration builders
# ---------------------------------------------------------------------------

def build_snowflake_config(settings: Settings) -> SnowflakeConfig:
    return SnowflakeConfig(
        account=settings.snowflake_account,
        user=settings.snowflake_user,
        password=settings.snowflake_password or None,
        private_key_path=settings.snowflake_private_key_path,
        private_key_base64=settings.snowflake_private_key_base64,
        database=settings.snowflake_database,
        schema=settings.snowflake_schema,
        warehouse=settings.snowflake_warehouse,
        role=settings.snowflake_role,
    )


def build_email_config(settings: Settings) -> EmailConfig:
    return EmailConfig(
        api_key=settings.brevo_api_key,
        sender_email=settings.brevo_sender_email,
        sender_name=settings.trainer_name,
        reply_to_email=settings.trainer_contact_email,
        api_url=settings.brevo_api_url,
        timeout_seconds=settings.brevo_timeout_seconds,
    )


def build_trainer_profile(settings: Settings) -> TrainerProfile:
    return TrainerProfile(
        name=settings.trainer_name,
        contact_email=settings.trainer_contact_email,
        whatsapp=settings.trainer_whatsapp,
        instagram=settings.trainer_instagram,
    )


# ---------------------------------------------------------------------------
# Authentication
# ---------------------------------------------------------------------------

async def verify_api_key(
    settings: Annotated[Settings, Depends(get_settings)],
    api_key: str = Security(api_key_header),
) -> str:
    """
    Validate API key from request header.

    The API is used by the trainer's own dashboard, so a shared key list
    is enough. Raises 403 if key is invalid or missing.
    """
    if not api_key:
        logger.warning("Request missing API key")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="API key required. Provide X-API-Key header.",
        )

    if api_key not in settings.api_keys_list:
        logger.warning(
            "Invalid API key attempt",
            extra={"key_prefix": api_key[:8] if api_key else ""}
        )
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Invalid API key",
        )

    return api_key


# ---------------------------------------------------------------------------
# Infrastructure Dependencies
# ---------------------------------------------------------------------------

def get_account_repository(
    settings: Annotated[Settings, Depends(get_settings)],
) -> Generator[AccountRepository, None, None]:
    """
    Provide AccountRepository with database connection.

    This is a generator function (yields instead of returns) because
    we need to manage the connection lifecycle:
    1. Create connection
    2. Create repository
    3. Yield repository (FastAPI injects it)
    4. Close connection (cleanup after request)

    In mock mode, we reuse the same connection across requests
    so that data persists during the testing session.
    """
    global _mock_snowflake_connection

    if settings.snowflake_mock_mode:
        # Use shared mock connection (persists across requests)
        if _mock_snowflake_connection is None:
            _mock_snowflake_connection = MockSnowflakeConnection()
            logger.info("Created shared mock Snowflake connection for session")

        yield AccountRepository(
            _mock_snowflake_connection,
            max_retries=settings.persistence_max_retries,
        )
    else:
        with create_snowflake_connection(config=build_snowflake_config(settings)) as conn:
            logger.debug("Created AccountRepository with Snowflake connection")
            yield AccountRepository(conn, max_retries=settings.persistence_max_retries)


async def get_notifier(
    settings: Annotated[Settings, Depends(get_settings)],
) -> AsyncGenerator[Notifier, None]:
    """
    Provide the e-mail client used for reminders.

    In mock mode, we reuse the same client across requests so the
    outbox can be inspected after a sweep.
    """
    global _mock_email_client

    if settings.email_mock_mode:
        if _mock_email_client is None:
            _mock_email_client = create_email_client(mock_mode=True)
            logger.info("Created shared mock e-mail client for session")
        yield _mock_email_client
        return

    client = create_email_client(config=build_email_config(settings))
    try:
        yield client
    finally:
        await client.aclose()


def get_clock(
    settings: Annotated[Settings, Depends(get_settings)],
) -> Clock:
    return SystemClock(settings.timezone)


# ---------------------------------------------------------------------------
# Service Dependencies
# ---------------------------------------------------------------------------

def get_orchestrator(
    settings: Annotated[Settings, Depends(get_settings)],
    repository: Annotated[AccountRepository, Depends(get_account_repository)],
    notifier: Annotated[Notifier, Depends(get_notifier)],
    clock: Annotated[Clock, Depends(get_clock)],
) -> AccountingOrchestrator:
    """
    Provide the accounting orchestrator.

    The orchestrator is stateless, so we create a new instance per request
    around the request's repository.
    """
    return AccountingOrchestrator(
        gateway=repository,
        notifier=notifier,
        clock=clock,
        trainer=build_trainer_profile(settings),
    )


# ---------------------------------------------------------------------------
# Convenience Type Aliases
# ---------------------------------------------------------------------------

# These type aliases make route signatures cleaner
AuthenticatedUser = Annotated[str, Depends(verify_api_key)]
AccountRepositoryDep = Annotated[AccountRepository, Depends(get_account_repository)]
OrchestratorDep = Annotated[AccountingOrchestrator, Depends(get_orchestrator)]
SettingsDep = Annotated[Settings, Depends(get_settings)]
