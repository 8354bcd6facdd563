"""
Triage Domain Layer
===================

Domain layer for the ticket triage module.

Contains:
- Entities: Ticket, Candidate, user references, prompt contract
- Value Objects: priority rules, rule engine, blender, skill matching

This layer is framework-agnostic and contains pure business logic.
"""

from helpdesk.triage.domain.entities import (
    Candidate,
    ClassificationPromptBuilder,
    IdRef,
    ModeratorReply,
    PopulatedRef,
    Ref,
    Ticket,
    normalize_ref,
)
from helpdesk.triage.domain.value_objects import (
    DEFAULT_RULES,
    PriorityRules,
    clean_skill_tokens,
    parse_deadline,
    pick_higher,
    rule_priority,
    skills_match,
)

__all__ = [
    "Candidate",
    "ClassificationPromptBuilder",
    "IdRef",
    "ModeratorReply",
    "PopulatedRef",
    "Ref",
    "Ticket",
    "normalize_ref",
    "DEFAULT_RULES",
    "PriorityRules",
    "clean_skill_tokens",
    "parse_deadline",
    "pick_higher",
    "rule_priority",
    "skills_match",
]
