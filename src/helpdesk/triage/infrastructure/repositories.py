"""
Triage Infrastructure Repositories
====================================

SQLAlchemy implementations of triage repositories and the storage provider.
"""

from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from typing import Any, AsyncGenerator, List, Mapping, Optional, Sequence
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import joinedload

from helpdesk.config import Priority, Role, TicketStatus, settings
from helpdesk.core import StorageError
from helpdesk.infrastructure.database import get_session_context
from helpdesk.shared.infrastructure.logging import get_logger
from helpdesk.triage.application import (
    ICandidateRepository,
    IStorageProvider,
    ITicketRepository,
    TriageStorage,
)
from helpdesk.triage.domain import (
    Candidate,
    ModeratorReply,
    Ticket,
    normalize_ref,
    parse_deadline,
    skills_match,
)
from helpdesk.triage.infrastructure.models import TicketModel, UserModel

logger = get_logger(__name__)

UPDATABLE_FIELDS = {"status", "priority", "helpful_notes", "related_skills", "assigned_to"}


def _as_uuid(value: Any) -> Optional[UUID]:
    if value is None or isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except ValueError:
        return None


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands back naive datetimes; they are stored as UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def to_candidate(model: UserModel) -> Candidate:
    return Candidate(
        id=str(model.id),
        name=model.name,
        email=model.email,
        role=Role(model.role),
        skills=list(model.skills or []),
        created_at=_aware(model.created_at),
    )


def to_ticket(model: TicketModel, creator: Optional[UserModel] = None) -> Ticket:
    """Map a row to the domain entity, normalizing references at the boundary."""
    reply = None
    if model.reply_explanation:
        reply = ModeratorReply(
            code=model.reply_code,
            explanation=model.reply_explanation,
            replied_at=_aware(model.replied_at),
        )

    return Ticket(
        id=str(model.id),
        title=model.title,
        description=model.description,
        status=TicketStatus(model.status),
        created_by=normalize_ref(creator if creator is not None else model.created_by),
        deadline=parse_deadline(model.deadline),
        priority=Priority(model.priority) if model.priority else None,
        related_skills=list(model.related_skills or model.skills or []),
        assigned_to=normalize_ref(model.assigned_to),
        helpful_notes=model.helpful_notes,
        reply_from_moderator=reply,
        created_at=_aware(model.created_at),
    )


class SQLAlchemyTicketRepository(ITicketRepository):
    """SQLAlchemy implementation for tickets."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def _load(self, ticket_id: Any) -> Optional[TicketModel]:
        ticket_uuid = _as_uuid(ticket_id)
        if ticket_uuid is None:
            return None

        stmt = (
            select(TicketModel)
            .options(joinedload(TicketModel.creator))
            .where(TicketModel.id == ticket_uuid)
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_ticket(self, ticket_id: str) -> Optional[Ticket]:
        model = await self._load(ticket_id)
        if model is None:
            return None
        return to_ticket(model, model.creator)

    async def update_ticket(self, ticket_id: str, fields: Mapping[str, Any]) -> Optional[Ticket]:
        unknown = set(fields) - UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Fields not updatable by triage: {sorted(unknown)}")

        model = await self._load(ticket_id)
        if model is None:
            return None

        for key, value in fields.items():
            if key in ("status", "priority") and value is not None:
                value = value.value if hasattr(value, "value") else str(value)
            elif key == "related_skills":
                value = list(value or [])
            elif key == "assigned_to":
                value = _as_uuid(value.id if hasattr(value, "id") else value)
            setattr(model, key, value)

        model.updated_at = datetime.now(timezone.utc)
        await self._session.flush()
        return to_ticket(model, model.creator)

    async def create_ticket(
        self,
        title: str,
        description: str,
        created_by: Optional[str] = None,
        deadline: Optional[datetime] = None,
    ) -> Ticket:
        now = datetime.now(timezone.utc)
        model = TicketModel(
            id=uuid4(),
            title=title,
            description=description,
            status=TicketStatus.TODO.value,
            related_skills=[],
            created_by=_as_uuid(created_by),
            deadline=deadline or now + timedelta(days=settings.default_deadline_days),
            created_at=now,
        )

        self._session.add(model)
        await self._session.flush()

        return await self.get_ticket(str(model.id))


class SQLAlchemyCandidateRepository(ICandidateRepository):
    """
    SQLAlchemy implementation for assignment candidates.

    Candidates are scanned in creation order (then id) so the first match is
    stable; skill matching runs in Python for portable substring semantics.
    """

    def __init__(self, session: AsyncSession):
        self._session = session

    async def _by_role(self, role: Role) -> Sequence[UserModel]:
        stmt = (
            select(UserModel)
            .where(UserModel.role == Role(role).value)
            .order_by(UserModel.created_at, UserModel.id)
        )
        result = await self._session.execute(stmt)
        return result.scalars().all()

    async def find_by_role_and_skills(self, role: Role, skill_tokens: List[str]) -> Optional[Candidate]:
        for model in await self._by_role(role):
            if skills_match(model.skills or [], skill_tokens):
                return to_candidate(model)
        return None

    async def find_by_role(self, role: Role) -> Optional[Candidate]:
        models = await self._by_role(role)
        return to_candidate(models[0]) if models else None

    async def get_by_email(self, email: str) -> Optional[Candidate]:
        stmt = select(UserModel).where(UserModel.email == email)
        result = await self._session.execute(stmt)
        model = result.scalar_one_or_none()
        return to_candidate(model) if model else None

    async def create_user(
        self,
        name: str,
        email: str,
        role: Role = Role.USER,
        skills: Optional[List[str]] = None,
        created_at: Optional[datetime] = None,
    ) -> Candidate:
        """Insert a user (seeding and tests; registration lives elsewhere)."""
        model = UserModel(
            id=uuid4(),
            name=name,
            email=email,
            role=Role(role).value,
            skills=list(skills or []),
            created_at=created_at or datetime.now(timezone.utc),
        )
        self._session.add(model)
        await self._session.flush()
        return to_candidate(model)


class SQLAlchemyStorageProvider(IStorageProvider):
    """
    Scoped storage backed by the shared async engine.

    Each ``session()`` is one transaction: committed on clean exit, rolled
    back on error. SQLAlchemy errors surface as StorageError.
    """

    def __init__(self, session_maker: Optional[async_sessionmaker[AsyncSession]] = None):
        self._session_maker = session_maker

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[TriageStorage, None]:
        try:
            async with get_session_context(self._session_maker) as session:
                yield TriageStorage(
                    tickets=SQLAlchemyTicketRepository(session),
                    candidates=SQLAlchemyCandidateRepository(session),
                )
        except SQLAlchemyError as e:
            logger.error("Storage operation failed", extra={"error": str(e)})
            raise StorageError(f"Storage operation failed: {e}") from e
