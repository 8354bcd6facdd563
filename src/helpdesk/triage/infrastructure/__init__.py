"""
Triage Infrastructure Layer
============================

Infrastructure implementations for the ticket triage module.

Contains:
- Models: SQLAlchemy ORM models
- Repositories: data access and the scoped storage provider
- External: priority rules file manager
"""

from helpdesk.triage.infrastructure.external import RulesConfigManager, RulesFileHandler
from helpdesk.triage.infrastructure.models import TicketModel, UserModel
from helpdesk.triage.infrastructure.repositories import (
    SQLAlchemyCandidateRepository,
    SQLAlchemyStorageProvider,
    SQLAlchemyTicketRepository,
    to_candidate,
    to_ticket,
)

__all__ = [
    "RulesConfigManager",
    "RulesFileHandler",
    "TicketModel",
    "UserModel",
    "SQLAlchemyCandidateRepository",
    "SQLAlchemyStorageProvider",
    "SQLAlchemyTicketRepository",
    "to_candidate",
    "to_ticket",
]
