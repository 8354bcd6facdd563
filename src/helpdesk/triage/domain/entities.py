"""
Triage Domain Entities
======================

Domain entities for the ticket triage module.

Contains pure Python business objects: tickets, assignment candidates,
user references and the classification prompt contract.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, List, Optional, Union

from helpdesk.config import Priority, Role, TicketStatus


@dataclass(frozen=True)
class IdRef:
    """Reference to a user known only by id."""
    id: str


@dataclass(frozen=True)
class PopulatedRef:
    """Reference to a user with display fields loaded."""
    id: str
    name: str = ""
    email: Optional[str] = None


Ref = Union[IdRef, PopulatedRef]


def normalize_ref(value: Any) -> Optional[Ref]:
    """
    Normalize a createdBy/assignedTo value into ``IdRef | PopulatedRef``.

    Accepts an existing ref, a bare id (str/UUID), a mapping with
    ``id``/``_id`` and optional ``name``/``email``, or any object exposing
    ``id``/``name``/``email`` attributes (ORM rows, candidates).
    """
    if value is None:
        return None
    if isinstance(value, (IdRef, PopulatedRef)):
        return value
    if isinstance(value, dict):
        ref_id = value.get("id", value.get("_id"))
        if ref_id is None:
            return None
        if "name" in value or "email" in value:
            name = value.get("name")
            email = value.get("email")
            return PopulatedRef(
                id=str(ref_id),
                name=name if isinstance(name, str) else "",
                email=email if isinstance(email, str) else None,
            )
        return IdRef(id=str(ref_id))
    if hasattr(value, "id") and (hasattr(value, "name") or hasattr(value, "email")):
        name = getattr(value, "name", None)
        email = getattr(value, "email", None)
        return PopulatedRef(
            id=str(value.id),
            name=name if isinstance(name, str) else "",
            email=email if isinstance(email, str) else None,
        )
    return IdRef(id=str(value))


@dataclass
class ModeratorReply:
    """Reply written by a moderator; never touched by triage."""
    code: Optional[str]
    explanation: str
    replied_at: Optional[datetime] = None


@dataclass
class Ticket:
    """
    Ticket entity as seen by the triage pipeline.

    ``related_skills`` is canonical; the legacy ``skills`` column is only a
    read fallback applied by the repository.
    """
    id: str
    title: str
    description: str
    status: TicketStatus
    created_by: Optional[Ref]
    deadline: Optional[datetime]
    priority: Optional[Priority] = None
    related_skills: List[str] = field(default_factory=list)
    assigned_to: Optional[Ref] = None
    helpful_notes: Optional[str] = None
    reply_from_moderator: Optional[ModeratorReply] = None
    created_at: Optional[datetime] = None

    @property
    def creator_label(self) -> str:
        """Human readable creator for notifications."""
        if isinstance(self.created_by, PopulatedRef):
            return f"{self.created_by.name} ({self.created_by.email or ''})"
        return "Unknown"


@dataclass
class Candidate:
    """Read-only projection of a user eligible for assignment."""
    id: str
    name: str
    email: str
    role: Role
    skills: List[str] = field(default_factory=list)
    created_at: Optional[datetime] = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "role": self.role.value,
            "skills": list(self.skills),
        }


class ClassificationPromptBuilder:
    """
    Builds prompts for ticket classification.

    The urgency heuristics in the prompt mirror the rule engine on purpose;
    both priorities are computed and blended.
    """

    SYSTEM_PROMPT = """You are an expert AI assistant that processes technical support tickets.

Your job is to:
1. Summarize the issue.
2. Estimate its priority.
3. Provide helpful notes and resource links for human moderators.
4. List relevant technical skills required.

IMPORTANT:
- Respond with only valid raw JSON.
- Do NOT include markdown, code fences, comments, or extra formatting.
- The format must be a raw JSON object.

Repeat: Do not wrap your output in markdown or code fences."""

    USER_PROMPT_TEMPLATE = """You are a ticket triage agent.
Only return a strict JSON object with no extra text, header or markdown.

Analyze the following support ticket and provide a JSON object with:

- summary: A short 1-2 sentence summary of the issue.
- priority: One of "low", "medium", or "high". Use:
  - "high" if service is down, security/payment/data-loss risk, or deadline <= 24h.
  - "medium" for partial outages, performance degradation, or deadline <= 72h.
  - "low" for routine/how-to or non-urgent requests.
- helpfulNotes: A detailed technical explanation that a moderator can use to solve this issue. Include useful external links or resources if possible.
- relatedSkills: An array of relevant skills required to solve the issue (e.g., ["React", "PostgreSQL"]).

Respond ONLY with a single JSON object (no code fences, no comments):

{{
  "summary": "Short summary of the ticket",
  "priority": "medium",
  "helpfulNotes": "Here are useful tips ...",
  "relatedSkills": ["React", "Node.js"]
}}

Ticket information:

- Title: {title}
- Description: {description}"""

    @classmethod
    def build_prompt(cls, title: str, description: str) -> str:
        """Build classification prompt from ticket content."""
        return cls.USER_PROMPT_TEMPLATE.format(title=title, description=description)

    @classmethod
    def get_system_prompt(cls) -> str:
        """Get the system prompt for classification."""
        return cls.SYSTEM_PROMPT
