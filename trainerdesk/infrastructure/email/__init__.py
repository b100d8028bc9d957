"""E-mail delivery (Brevo) with an in-memory mock."""

from .brevo import (
    BrevoEmailClient,
    EmailConfig,
    MockEmailClient,
    create_email_client,
)

__all__ = [
    "BrevoEmailClient",
    "EmailConfig",
    "MockEmailClient",
    "create_email_client",
]
