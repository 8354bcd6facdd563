from __future__ import annotations

import copy
import json
from contextlib import asynccontextmanager
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Mapping, Optional
from uuid import uuid4

import pytest

from helpdesk.config import Priority, Role, TicketStatus
from helpdesk.core import NotificationError, StorageError
from helpdesk.infrastructure.llm import ChatCompletionResult, ILLMClient
from helpdesk.infrastructure.mail import DeliveryInfo, IMailTransport, MailMessage
from helpdesk.triage.application import (
    ICandidateRepository,
    IStorageProvider,
    ITicketRepository,
    TriageStorage,
)
from helpdesk.triage.domain import Candidate, PopulatedRef, Ticket, normalize_ref, skills_match

FIXED_NOW = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)


class InMemoryTicketRepository(ITicketRepository):
    def __init__(self, store: "InMemoryStorageProvider"):
        self._store = store

    async def get_ticket(self, ticket_id: str) -> Optional[Ticket]:
        ticket = self._store.tickets.get(ticket_id)
        if ticket is None:
            return None
        ticket = copy.deepcopy(ticket)
        creator = self._store.users.get(ticket.created_by.id) if ticket.created_by else None
        if creator is not None:
            ticket.created_by = PopulatedRef(id=creator.id, name=creator.name, email=creator.email)
        return ticket

    async def update_ticket(self, ticket_id: str, fields: Mapping[str, Any]) -> Optional[Ticket]:
        ticket = self._store.tickets.get(ticket_id)
        if ticket is None:
            return None
        for key, value in fields.items():
            if key == "status":
                value = TicketStatus(value)
            elif key == "priority":
                value = Priority(value)
            elif key == "assigned_to":
                value = normalize_ref(value)
            setattr(ticket, key, value)
        self._store.updates.append((ticket_id, dict(fields)))
        return await self.get_ticket(ticket_id)

    async def create_ticket(self, title, description, created_by=None, deadline=None) -> Ticket:
        ticket = Ticket(
            id=str(uuid4()),
            title=title,
            description=description,
            status=TicketStatus.TODO,
            created_by=normalize_ref(created_by),
            deadline=deadline or FIXED_NOW + timedelta(days=7),
            created_at=FIXED_NOW,
        )
        self._store.tickets[ticket.id] = ticket
        return await self.get_ticket(ticket.id)


class InMemoryCandidateRepository(ICandidateRepository):
    def __init__(self, store: "InMemoryStorageProvider"):
        self._store = store

    def _ordered(self, role: Role) -> List[Candidate]:
        users = [u for u in self._store.users.values() if u.role == role]
        return sorted(users, key=lambda u: (u.created_at or FIXED_NOW, u.id))

    async def find_by_role_and_skills(self, role, skill_tokens):
        for user in self._ordered(role):
            if skills_match(user.skills, skill_tokens):
                return replace(user)
        return None

    async def find_by_role(self, role):
        users = self._ordered(role)
        return replace(users[0]) if users else None

    async def get_by_email(self, email):
        for user in self._store.users.values():
            if user.email == email:
                return replace(user)
        return None


class InMemoryStorageProvider(IStorageProvider):
    """Dict-backed storage; ``fail_next(n)`` makes the next n acquisitions fail."""

    def __init__(self):
        self.tickets: Dict[str, Ticket] = {}
        self.users: Dict[str, Candidate] = {}
        self.updates: List[tuple] = []
        self._failures = 0

    def fail_next(self, times: int) -> None:
        self._failures = times

    def add_user(self, name: str, email: str, role: Role, skills=None, minutes: int = 0) -> Candidate:
        user = Candidate(
            id=str(uuid4()),
            name=name,
            email=email,
            role=role,
            skills=list(skills or []),
            created_at=FIXED_NOW + timedelta(minutes=minutes),
        )
        self.users[user.id] = user
        return user

    def add_ticket(self, title: str, description: str, created_by=None, deadline=None) -> Ticket:
        ticket = Ticket(
            id=str(uuid4()),
            title=title,
            description=description,
            status=TicketStatus.TODO,
            created_by=normalize_ref(created_by),
            deadline=deadline,
            created_at=FIXED_NOW,
        )
        self.tickets[ticket.id] = ticket
        return ticket

    @asynccontextmanager
    async def session(self):
        if self._failures > 0:
            self._failures -= 1
            raise StorageError("storage unavailable")
        yield TriageStorage(
            tickets=InMemoryTicketRepository(self),
            candidates=InMemoryCandidateRepository(self),
        )


class FakeLLMClient(ILLMClient):
    """Returns queued raw answers (or raises queued exceptions) in order."""

    def __init__(self, *responses: Any):
        self.responses = list(responses)
        self.calls: List[List[dict]] = []

    async def chat_completion(self, messages, temperature=0.2, max_tokens=1000, operation="chat_completion"):
        self.calls.append(messages)
        response = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(response, BaseException):
            raise response
        if callable(response):
            response = await response()
        if isinstance(response, dict):
            response = json.dumps(response)
        return ChatCompletionResult(
            content=response,
            model="fake-model",
            prompt_tokens=10,
            completion_tokens=10,
            latency_ms=1,
        )


class FakeMailTransport(IMailTransport):
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.sent: List[MailMessage] = []
        self.attempts = 0

    async def send(self, message: MailMessage) -> DeliveryInfo:
        self.attempts += 1
        if self.fail:
            raise NotificationError("smtp down")
        self.sent.append(message)
        return DeliveryInfo(message_ids=[f"msg-{len(self.sent)}"], transport="fake")


class RecordingSleep:
    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


def verdict_json(
    priority: str = "medium",
    skills: Optional[List[str]] = None,
    summary: str = "Checkout is failing",
    notes: str = "Check the payment provider status page.",
) -> Dict[str, Any]:
    return {
        "summary": summary,
        "priority": priority,
        "helpfulNotes": notes,
        "relatedSkills": skills if skills is not None else [],
    }


@pytest.fixture
def now() -> datetime:
    return FIXED_NOW


@pytest.fixture
def clock() -> Callable[[], datetime]:
    return lambda: FIXED_NOW


@pytest.fixture
def storage() -> InMemoryStorageProvider:
    return InMemoryStorageProvider()


@pytest.fixture
def mail() -> FakeMailTransport:
    return FakeMailTransport()


@pytest.fixture
def sleep() -> RecordingSleep:
    return RecordingSleep()
