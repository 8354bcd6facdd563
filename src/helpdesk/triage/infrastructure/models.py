"""
Triage Infrastructure Models
=============================

SQLAlchemy ORM models for the triage module.
"""

from datetime import datetime, timezone
from typing import List, Optional
from uuid import UUID, uuid4

from sqlalchemy import JSON, DateTime, ForeignKey, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from helpdesk.config import Role, TicketStatus
from helpdesk.infrastructure.database import Base


class UserModel(Base):
    """
    Database model for users.

    Triage only reads it: moderators and admins are assignment candidates.
    """
    __tablename__ = "users"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str] = mapped_column(String(320), nullable=False, unique=True, index=True)
    role: Mapped[str] = mapped_column(String(20), nullable=False, default=Role.USER.value, index=True)
    skills: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc)
    )


class TicketModel(Base):
    """
    Database model for the Ticket entity.

    ``related_skills`` is canonical. ``skills`` is the legacy column, read as a
    fallback when ``related_skills`` is empty and never written.
    """
    __tablename__ = "tickets"

    # Primary key
    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)

    # Ticket content
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)

    # Triage results
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=TicketStatus.TODO.value, index=True
    )
    priority: Mapped[Optional[str]] = mapped_column(String(10), nullable=True)
    helpful_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    related_skills: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)
    skills: Mapped[Optional[List[str]]] = mapped_column(JSON, nullable=True)

    # References
    created_by: Mapped[Optional[UUID]] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True
    )
    assigned_to: Mapped[Optional[UUID]] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True
    )
    deadline: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    # Moderator reply (written outside triage)
    reply_code: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    reply_explanation: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    replied_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    creator: Mapped[Optional[UserModel]] = relationship(foreign_keys=[created_by], lazy="raise")
