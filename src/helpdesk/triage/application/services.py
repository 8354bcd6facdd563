"""
Triage Application Services
============================

Application services for ticket classification, assignment and notification.

Orchestrates business logic between domain entities and repositories.
"""

import asyncio
import json
import re
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Any, AsyncContextManager, Awaitable, Callable, List, Mapping, Optional, TypeVar

from pydantic import ValidationError

from helpdesk.config import Role, settings
from helpdesk.core import ClassificationError, ConfigurationException, NotificationError
from helpdesk.infrastructure.llm import ILLMClient
from helpdesk.infrastructure.mail import DeliveryInfo, IMailTransport, MailMessage
from helpdesk.shared.infrastructure.logging import get_logger, log_latency
from helpdesk.triage.application.dto import Verdict, repair_verdict_payload
from helpdesk.triage.domain import (
    Candidate,
    ClassificationPromptBuilder,
    Ticket,
    clean_skill_tokens,
)

logger = get_logger(__name__)

T = TypeVar("T")

RAW_EXCERPT_LENGTH = 300


# ========== Repository Interfaces ==========

class ITicketRepository(ABC):
    """Interface for ticket data access."""

    @abstractmethod
    async def get_ticket(self, ticket_id: str) -> Optional[Ticket]:
        """Get ticket by id with the creator reference populated."""

    @abstractmethod
    async def update_ticket(self, ticket_id: str, fields: Mapping[str, Any]) -> Optional[Ticket]:
        """
        Apply a partial update.

        Accepted keys: status, priority, helpful_notes, related_skills,
        assigned_to. Returns None when the ticket does not exist.
        """

    @abstractmethod
    async def create_ticket(
        self,
        title: str,
        description: str,
        created_by: Optional[str] = None,
        deadline: Optional[datetime] = None,
    ) -> Ticket:
        """Create a TODO ticket; a missing deadline defaults to now + 7 days."""


class ICandidateRepository(ABC):
    """Interface for assignment candidate lookups."""

    @abstractmethod
    async def find_by_role_and_skills(self, role: Role, skill_tokens: List[str]) -> Optional[Candidate]:
        """First candidate of ``role`` with a skill matching any token."""

    @abstractmethod
    async def find_by_role(self, role: Role) -> Optional[Candidate]:
        """First candidate of ``role``."""

    @abstractmethod
    async def get_by_email(self, email: str) -> Optional[Candidate]:
        """Get a user by email."""


@dataclass
class TriageStorage:
    """Repositories sharing one storage session."""
    tickets: ITicketRepository
    candidates: ICandidateRepository


class IStorageProvider(ABC):
    """Hands out scoped storage sessions."""

    @abstractmethod
    def session(self) -> AsyncContextManager[TriageStorage]:
        """Acquire storage for one unit of work; released on exit."""


async def with_storage(
    provider: IStorageProvider,
    fn: Callable[[TriageStorage], Awaitable[T]],
) -> T:
    """
    Run ``fn`` against a freshly acquired storage scope.

    Usage:
        ticket = await with_storage(provider, lambda s: s.tickets.get_ticket(ticket_id))
    """
    async with provider.session() as storage:
        return await fn(storage)


# ========== Application Services ==========

_FENCE_RE = re.compile(r"```(?:json)?\s*([\s\S]*?)\s*```", re.IGNORECASE)


def extract_json_candidate(text: str) -> str:
    """Unwrap a fenced block when present, otherwise return the trimmed text."""
    match = _FENCE_RE.search(text or "")
    return match.group(1) if match else (text or "").strip()


def format_issues(error: ValidationError) -> List[str]:
    """One "path: message" line per validation issue."""
    issues = []
    for err in error.errors():
        path = ".".join(str(part) for part in err.get("loc", ())) or "(root)"
        issues.append(f"{path}: {err.get('msg', 'invalid')}")
    return issues


def parse_verdict(raw_text: str) -> Verdict:
    """
    Parse and validate a raw classification answer.

    Tries the answer as-is first, then one local repair pass. Raises
    ClassificationError when the text is not JSON or the repaired object is
    still invalid.
    """
    excerpt = (raw_text or "")[:RAW_EXCERPT_LENGTH]
    candidate = extract_json_candidate(raw_text)

    try:
        parsed = json.loads(candidate)
    except (json.JSONDecodeError, TypeError) as e:
        raise ClassificationError(
            f"Classifier returned non-JSON output. Raw (truncated): {excerpt}",
            raw_excerpt=excerpt
        ) from e

    try:
        return Verdict.model_validate(parsed)
    except ValidationError as e:
        issues = format_issues(e)

    logger.warning("Classification output invalid, attempting repair", extra={"issues": issues})

    try:
        return Verdict.model_validate(repair_verdict_payload(parsed))
    except ValidationError as e:
        raise ClassificationError(
            "Classification JSON validation failed: " + "; ".join(issues),
            raw_excerpt=excerpt,
            issues=issues
        ) from e


class ClassificationService:
    """
    Service for ticket classification using an LLM.

    One call per ``analyze``; retrying is left to the workflow step.
    """

    def __init__(
        self,
        llm_client: ILLMClient,
        timeout_seconds: Optional[float] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ):
        self._llm = llm_client
        self._timeout = timeout_seconds or settings.classification_timeout_seconds
        self._temperature = settings.llm_temperature if temperature is None else temperature
        self._max_tokens = max_tokens or settings.llm_max_tokens

    async def analyze(self, title: str, description: str) -> Verdict:
        """
        Classify a ticket into summary, priority, notes and skills.

        Args:
            title: Ticket title
            description: Ticket description

        Returns:
            Verdict

        Raises:
            ClassificationError: call failed, timed out, or produced invalid output
        """
        start_time = time.perf_counter()

        messages = [
            {"role": "system", "content": ClassificationPromptBuilder.get_system_prompt()},
            {"role": "user", "content": ClassificationPromptBuilder.build_prompt(title, description)},
        ]

        try:
            response = await asyncio.wait_for(
                self._llm.chat_completion(
                    messages=messages,
                    temperature=self._temperature,
                    max_tokens=self._max_tokens,
                    operation="classification"
                ),
                timeout=self._timeout
            )
        except asyncio.TimeoutError as e:
            raise ClassificationError(f"Classification timed out after {self._timeout}s") from e
        except ConfigurationException:
            raise
        except Exception as e:
            raise ClassificationError(f"Classification call failed: {e}") from e

        verdict = parse_verdict(response.content)

        logger.info(
            "Ticket classified",
            extra={
                "priority": verdict.priority.value,
                "related_skills": verdict.related_skills,
                "latency_ms": int((time.perf_counter() - start_time) * 1000),
            }
        )
        return verdict


class AssignmentService:
    """
    Picks an assignee for a set of skill tags.

    Moderator with a matching skill first, then any admin, else nobody.
    """

    def __init__(self, candidates: ICandidateRepository):
        self._candidates = candidates

    async def select_assignee(self, skills: Optional[List[str]]) -> Optional[Candidate]:
        tokens = clean_skill_tokens(skills)

        if tokens:
            moderator = await self._candidates.find_by_role_and_skills(Role.MODERATOR, tokens)
            if moderator is not None:
                return moderator

        admin = await self._candidates.find_by_role(Role.ADMIN)
        if admin is None:
            logger.info("No assignee available", extra={"skills": tokens})
        return admin


def build_assignment_message(assignee_name: str, assignee_email: str, ticket: Ticket) -> MailMessage:
    """Email telling a moderator a ticket was assigned to them."""
    text = (
        f"Hello {assignee_name},\n"
        "\n"
        "A new ticket has been assigned to you:\n"
        "\n"
        f"Title: {ticket.title}\n"
        f"Description: {ticket.description}\n"
        f"Created By: {ticket.creator_label}\n"
    )
    return MailMessage(to=[assignee_email], subject="New Ticket Assigned", text=text)


def build_welcome_message(name: str, email: str) -> MailMessage:
    text = (
        f"Hello {name},\n"
        "\n"
        "Welcome to our application! We are excited to have you on board."
    )
    return MailMessage(to=[email], subject="Welcome to the App!", text=text)


class NotificationService:
    """
    Sends email through the configured mail transport.

    ``deliver`` propagates failures; ``notify`` is best-effort and never
    raises.
    """

    def __init__(self, transport: IMailTransport, timeout_seconds: Optional[float] = None):
        self._transport = transport
        self._timeout = timeout_seconds or settings.notification_timeout_seconds

    async def deliver(self, message: MailMessage) -> DeliveryInfo:
        """Send a message, bounded by the notification timeout."""
        try:
            with log_latency(logger, "mail_delivery", to=message.to, subject=message.subject):
                return await asyncio.wait_for(self._transport.send(message), timeout=self._timeout)
        except asyncio.TimeoutError as e:
            raise NotificationError(f"Mail send timed out after {self._timeout}s") from e

    async def notify(self, assignee_email: str, assignee_name: str, ticket: Ticket) -> Optional[DeliveryInfo]:
        """Tell the assignee about the ticket. Returns None when sending failed."""
        try:
            message = build_assignment_message(assignee_name, assignee_email, ticket)
            delivery = await self.deliver(message)
        except Exception as e:
            logger.error(
                "Assignee notification failed",
                extra={
                    "ticket_id": ticket.id,
                    "error": str(e),
                    "error_type": type(e).__name__,
                }
            )
            return None

        logger.info(
            "Assignee notified",
            extra={"ticket_id": ticket.id, "message_ids": delivery.message_ids}
        )
        return delivery
