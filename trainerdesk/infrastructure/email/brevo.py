"""
Transactional e-mail client for reminder delivery.

Sends through Brevo's SMTP API with mock mode for local development.
Both clients implement the Notifier protocol from the accounting core, so
the orchestrator never knows which one it is talking to.

Mock mode keeps sent messages in memory, enabling a full reminder sweep
without an e-mail provider account.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional

import httpx

from trainerdesk.core.billing.errors import NotificationFailure
from trainerdesk.core.billing.orchestrator import Notifier

logger = logging.getLogger(__name__)

BREVO_API_URL = "https://api.brevo.com/v3/smtp/email"


@dataclass
class EmailConfig:
    """
    Configuration for the Brevo client.

    The sender address is the platform's verified address; the trainer's
    name is shown as the sender name and their own address receives the
    replies.
    """
    api_key: str
    sender_email: str
    sender_name: str = "Personal Trainer"
    reply_to_email: Optional[str] = None
    api_url: str = BREVO_API_URL
    timeout_seconds: float = 15.0

    def __post_init__(self) -> None:
        if not self.api_key:
            raise ValueError("API key is required")
        if not self.sender_email:
            raise ValueError("Sender e-mail is required")
        if self.timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be positive")


class BrevoEmailClient(Notifier):
    """
    Notifier backed by the Brevo transactional e-mail API.

    One request per message. Failures raise NotificationFailure and are
    not retried here; the next reminder sweep is the retry.
    """

    def __init__(
        self,
        config: EmailConfig,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self._config = config
        self._http = http_client or httpx.AsyncClient(timeout=config.timeout_seconds)

        logger.info(
            "Initialized Brevo e-mail client",
            extra={"sender": config.sender_email, "api_url": config.api_url}
        )

    def _payload(
        self,
        recipient_email: str,
        recipient_name: str,
        subject: str,
        html_body: str,
    ) -> dict:
        recipient = {"email": recipient_email}
        if recipient_name:
            recipient["name"] = recipient_name
        return {
            "sender": {
                "email": self._config.sender_email,
                "name": self._config.sender_name,
            },
            "to": [recipient],
            "replyTo": {
                "email": self._config.reply_to_email or self._config.sender_email,
                "name": self._config.sender_name,
            },
            "subject": subject,
            "htmlContent": html_body,
        }

    async def send(
        self,
        recipient_email: str,
        recipient_name: str,
        subject: str,
        html_body: str,
    ) -> None:
        try:
            response = await self._http.post(
                self._config.api_url,
                headers={
                    "accept": "application/json",
                    "api-key": self._config.api_key,
                    "content-type": "application/json",
                },
                json=self._payload(recipient_email, recipient_name, subject, html_body),
            )
        except httpx.HTTPError as e:
            logger.error(
                "E-mail request failed",
                extra={"recipient": recipient_email, "error": str(e)}
            )
            raise NotificationFailure(f"E-mail request failed: {e}") from e

        if response.is_error:
            detail = self._error_detail(response)
            logger.error(
                "Brevo API error",
                extra={
                    "recipient": recipient_email,
                    "status": response.status_code,
                    "error": detail,
                }
            )
            raise NotificationFailure(
                f"Brevo API returned {response.status_code}: {detail}"
            )

        logger.debug("E-mail sent", extra={"recipient": recipient_email})

    @staticmethod
    def _error_detail(response: httpx.Response) -> str:
        try:
            body = response.json()
        except ValueError:
            return response.text
        if isinstance(body, dict):
            return body.get("message") or str(body)
        return str(body)

    async def aclose(self) -> None:
        await self._http.aclose()


# ---------------------------------------------------------------------------
# Mock Client for Local Development
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class SentEmail:
    recipient_email: str
    recipient_name: str
    subject: str
    html_body: str


@dataclass
class MockEmailClient(Notifier):
    """
    In-memory notifier.

    Records every message instead of sending it. Addresses listed in
    failing_recipients raise NotificationFailure, which is how tests
    exercise partial sweep failures.
    """
    sent: list[SentEmail] = field(default_factory=list)
    failing_recipients: set[str] = field(default_factory=set)

    def __post_init__(self) -> None:
        logger.info("Initialized mock e-mail client (in-memory)")

    async def send(
        self,
        recipient_email: str,
        recipient_name: str,
        subject: str,
        html_body: str,
    ) -> None:
        if recipient_email in self.failing_recipients:
            raise NotificationFailure(f"Mock delivery failure for {recipient_email}")
        self.sent.append(SentEmail(recipient_email, recipient_name, subject, html_body))
        logger.debug("Stored e-mail in mock outbox", extra={"recipient": recipient_email})

    async def aclose(self) -> None:
        pass


# ---------------------------------------------------------------------------
# Factory Function
# ---------------------------------------------------------------------------

def create_email_client(
    config: Optional[EmailConfig] = None,
    mock_mode: bool = False,
) -> Notifier:
    """
    Create e-mail client based on configuration.

    Args:
        config: E-mail configuration (required if not mock_mode)
        mock_mode: If True, return mock client for testing

    Returns:
        Notifier implementation (Brevo or Mock)
    """
    if mock_mode:
        return MockEmailClient()

    if config is None:
        raise ValueError("config is required when not in mock mode")

    return BrevoEmailClient(config)
