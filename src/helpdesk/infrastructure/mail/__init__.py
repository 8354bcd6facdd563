"""
Mail Transport Infrastructure
==============================

Outbound email transports:
- HTTP mail API transport (Mailtrap-compatible JSON send endpoint) with a
  circuit breaker to stop hammering a failing provider
- Logging transport used when no mail credentials are configured
"""

import time
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import httpx

from helpdesk.config import Settings, settings as default_settings
from helpdesk.core import NotificationError
from helpdesk.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)


@dataclass
class MailMessage:
    """Outbound email. At least one of ``text``/``html`` is required."""
    to: List[str]
    subject: str
    text: Optional[str] = None
    html: Optional[str] = None
    from_address: Optional[str] = None

    def __post_init__(self):
        if isinstance(self.to, str):
            self.to = [self.to]
        if not self.to:
            raise ValueError("MailMessage needs at least one recipient")
        if not self.text and not self.html:
            raise ValueError("MailMessage needs `text` or `html`")


@dataclass
class DeliveryInfo:
    """Transport receipt for a sent message."""
    message_ids: List[str] = field(default_factory=list)
    transport: str = "unknown"


class IMailTransport(ABC):
    """Interface for mail transports."""

    @abstractmethod
    async def send(self, message: MailMessage) -> DeliveryInfo:
        """Send a message; raises NotificationError on transport failure."""

    async def close(self) -> None:
        """Release transport resources."""


class CircuitBreaker:
    """
    Stops calling a failing mail provider for a while.

    After ``failure_threshold`` consecutive failures the circuit opens and
    requests are refused until ``recovery_timeout`` seconds have passed; then
    one trial request is let through. A success closes the circuit again.
    """

    def __init__(self, failure_threshold: int = 5, recovery_timeout: float = 60.0):
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self._consecutive_failures = 0
        self._opened_at: Optional[float] = None

    @property
    def is_open(self) -> bool:
        if self._opened_at is None:
            return False
        return time.monotonic() - self._opened_at < self.recovery_timeout

    def allow_request(self) -> bool:
        return not self.is_open

    def record_success(self) -> None:
        if self._opened_at is not None:
            logger.info("Mail circuit closed")
        self._consecutive_failures = 0
        self._opened_at = None

    def record_failure(self) -> None:
        self._consecutive_failures += 1
        if self._consecutive_failures < self.failure_threshold:
            return
        # Re-arms the timer when the trial request fails as well
        self._opened_at = time.monotonic()
        logger.warning(
            "Mail circuit opened",
            extra={
                "consecutive_failures": self._consecutive_failures,
                "recovery_timeout": self.recovery_timeout
            }
        )


class HttpMailTransport(IMailTransport):
    """
    HTTP mail API transport.

    Posts a JSON payload (from/to/subject/text/html) with a bearer token,
    the shape used by Mailtrap's sending API.
    """

    def __init__(
        self,
        api_url: Optional[str] = None,
        api_token: Optional[str] = None,
        config: Optional[Settings] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        circuit_breaker: Optional[CircuitBreaker] = None
    ):
        config = config or default_settings
        self._api_url = api_url or config.mail_api_url
        self._api_token = api_token or config.mail_api_token
        self._sender = {"email": config.mail_from, "name": config.mail_from_name}
        self._timeout = config.mail_timeout_seconds
        self._http_client = http_client
        self._breaker = circuit_breaker or CircuitBreaker()

    @property
    def client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self._timeout)
        return self._http_client

    def _build_payload(self, message: MailMessage) -> Dict[str, Any]:
        sender = dict(self._sender)
        if message.from_address:
            sender["email"] = message.from_address

        payload: Dict[str, Any] = {
            "from": sender,
            "to": [{"email": address} for address in message.to],
            "subject": message.subject,
        }
        if message.text:
            payload["text"] = message.text
        if message.html:
            payload["html"] = message.html
        return payload

    async def send(self, message: MailMessage) -> DeliveryInfo:
        if not self._breaker.allow_request():
            raise NotificationError("circuit breaker open, message not sent")

        try:
            response = await self.client.post(
                self._api_url,
                json=self._build_payload(message),
                headers={"Authorization": f"Bearer {self._api_token}"}
            )
        except httpx.HTTPError as e:
            self._breaker.record_failure()
            raise NotificationError(f"mail API request failed: {e}") from e

        if response.is_error:
            self._breaker.record_failure()
            raise NotificationError(
                f"mail API returned {response.status_code}",
                details={"body": response.text[:300]}
            )

        self._breaker.record_success()
        try:
            body = response.json() if response.content else {}
        except ValueError:
            logger.warning(
                "Mail API accepted message with a non-JSON body",
                extra={"status_code": response.status_code, "body": response.text[:300]}
            )
            body = {}
        if not isinstance(body, dict):
            body = {}
        return DeliveryInfo(
            message_ids=[str(i) for i in body.get("message_ids", [])],
            transport="http"
        )

    async def close(self) -> None:
        if self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None


class LoggingMailTransport(IMailTransport):
    """Development transport: logs the message instead of sending it."""

    async def send(self, message: MailMessage) -> DeliveryInfo:
        message_id = str(uuid.uuid4())
        logger.info(
            "Mail not sent (no transport configured)",
            extra={"to": message.to, "subject": message.subject, "message_id": message_id}
        )
        return DeliveryInfo(message_ids=[message_id], transport="log")


def create_mail_transport(config: Optional[Settings] = None) -> IMailTransport:
    """HTTP transport when a mail token is configured, logging transport otherwise."""
    config = config or default_settings
    if not config.mail_api_token:
        logger.info("Mail API token not configured - using logging transport")
        return LoggingMailTransport()
    return HttpMailTransport(config=config)
