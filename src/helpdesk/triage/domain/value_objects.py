"""
Triage Value Objects
====================

Immutable value objects and pure functions for deterministic triage:

- ``PriorityRules``: keyword sets and deadline thresholds (YAML-overridable)
- ``rule_priority``: deadline/keyword based priority
- ``pick_higher``: blend two priorities by urgency
- ``skills_match``: case-insensitive substring skill matching
"""

from datetime import datetime, timezone
from typing import Iterable, List, Optional, Sequence, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from helpdesk.config import Priority

DEFAULT_HIGH_TERMS = (
    "outage",
    "down",
    "cannot login",
    "data loss",
    "security",
    "breach",
    "payment failed",
    "billing error",
    "leak",
)

DEFAULT_MEDIUM_TERMS = ("degraded", "timeout", "slow", "intermittent")

DeadlineInput = Union[datetime, str, None]


class PriorityRules(BaseModel):
    """
    Rule engine configuration loaded from YAML.

    Terms are matched as lower-case substrings of "<title> <description>".
    """
    model_config = ConfigDict(frozen=True)

    high_terms: List[str] = Field(default_factory=lambda: list(DEFAULT_HIGH_TERMS))
    medium_terms: List[str] = Field(default_factory=lambda: list(DEFAULT_MEDIUM_TERMS))
    high_deadline_hours: float = Field(default=24.0, gt=0)
    medium_deadline_hours: float = Field(default=72.0, gt=0)

    @field_validator("high_terms", "medium_terms")
    @classmethod
    def normalize_terms(cls, v: List[str]) -> List[str]:
        """Lower-case terms and drop blanks."""
        return [term.strip().lower() for term in v if term and term.strip()]

    @model_validator(mode="after")
    def check_thresholds(self) -> "PriorityRules":
        if self.medium_deadline_hours < self.high_deadline_hours:
            raise ValueError("medium_deadline_hours must be >= high_deadline_hours")
        return self


DEFAULT_RULES = PriorityRules()


def parse_deadline(value: DeadlineInput) -> Optional[datetime]:
    """
    Parse a deadline into an aware datetime.

    Naive values are taken as UTC. Returns None when missing or unparseable.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        except ValueError:
            return None
    else:
        return None

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def hours_until(deadline: DeadlineInput, now: datetime) -> Optional[float]:
    """Hours from ``now`` to ``deadline`` (negative when overdue)."""
    parsed = parse_deadline(deadline)
    if parsed is None:
        return None
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return (parsed - now).total_seconds() / 3600


def rule_priority(
    title: str,
    description: str,
    deadline: DeadlineInput = None,
    *,
    now: datetime,
    rules: PriorityRules = DEFAULT_RULES,
) -> Priority:
    """
    Deterministic priority from deadline proximity and keyword severity.

    First matching rule wins:
    1. deadline within ``high_deadline_hours`` -> high, within
       ``medium_deadline_hours`` -> medium (later deadlines fall through)
    2. any high term -> high, else any medium term -> medium
    3. low
    """
    hrs = hours_until(deadline, now)
    if hrs is not None:
        if hrs <= rules.high_deadline_hours:
            return Priority.HIGH
        if hrs <= rules.medium_deadline_hours:
            return Priority.MEDIUM

    text = f"{title or ''} {description or ''}".lower()

    if any(term in text for term in rules.high_terms):
        return Priority.HIGH
    if any(term in text for term in rules.medium_terms):
        return Priority.MEDIUM

    return Priority.LOW


def pick_higher(a: Priority, b: Priority) -> Priority:
    """
    Return the more urgent of two priorities.

    On a tie the first argument is returned, so callers pass the classifier
    priority first and the rule priority second.
    """
    a, b = Priority(a), Priority(b)
    return a if a.rank >= b.rank else b


def clean_skill_tokens(skills: Optional[Iterable[str]]) -> List[str]:
    """Strip skill tokens and drop blanks, keeping order."""
    if not skills:
        return []
    return [s.strip() for s in skills if isinstance(s, str) and s.strip()]


def skills_match(candidate_skills: Sequence[str], tokens: Sequence[str]) -> bool:
    """
    True when any token appears, case-insensitively, inside any candidate skill.

    An OR of substring tests, not set membership: "payments" matches
    "Payments/Stripe integration".
    """
    wanted = [t.lower() for t in clean_skill_tokens(tokens)]
    if not wanted:
        return False
    have = [s.lower() for s in candidate_skills or [] if isinstance(s, str)]
    return any(token in skill for token in wanted for skill in have)
