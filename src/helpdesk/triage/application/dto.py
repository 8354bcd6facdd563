"""
Triage Application DTOs
========================

Pydantic models for the classification verdict, inbound workflow events and
API responses.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from helpdesk.config import Priority


# ========== Classification ==========

class Verdict(BaseModel):
    """
    Structured result of the classification step.

    Field aliases follow the JSON contract given to the model
    (``helpfulNotes``, ``relatedSkills``).
    """
    model_config = ConfigDict(populate_by_name=True)

    summary: str = Field(..., min_length=1)
    priority: Priority
    helpful_notes: str = Field(..., alias="helpfulNotes", min_length=1)
    related_skills: List[str] = Field(default_factory=list, alias="relatedSkills")

    def to_payload(self) -> Dict[str, Any]:
        """JSON-serialisable form, used for journaling."""
        return self.model_dump(mode="json", by_alias=True)


def _coerce_priority(value: Any) -> str:
    text = value.lower() if isinstance(value, str) else ""
    valid = {p.value for p in Priority}
    return text if text in valid else Priority.MEDIUM.value


def _coerce_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def repair_verdict_payload(parsed: Any) -> Dict[str, Any]:
    """
    Single local repair pass over a schema-invalid classification answer.

    Priority is matched case-insensitively (default medium), text fields are
    stringified (default ""), skills become a list of strings (default []).
    """
    source = parsed if isinstance(parsed, dict) else {}
    skills = source.get("relatedSkills")
    return {
        "summary": _coerce_text(source.get("summary")),
        "priority": _coerce_priority(source.get("priority")),
        "helpfulNotes": _coerce_text(source.get("helpfulNotes")),
        "relatedSkills": [_coerce_text(s) for s in skills] if isinstance(skills, list) else [],
    }


# ========== Events ==========

class WorkflowEvent(BaseModel):
    """Inbound event starting a workflow run."""
    name: str = Field(..., min_length=1, description="Event name, e.g. ticket/create")
    data: Dict[str, Any] = Field(default_factory=dict)


class TicketCreateData(BaseModel):
    """Payload of ``ticket/create``: only the id, never a snapshot."""
    model_config = ConfigDict(populate_by_name=True)

    ticket_id: str = Field(..., alias="ticketId", min_length=1)


class UserSignupData(BaseModel):
    """Payload of ``user/signup``."""
    email: str = Field(..., min_length=3)

    @field_validator("email")
    @classmethod
    def validate_email(cls, v: str) -> str:
        v = v.strip()
        if "@" not in v:
            raise ValueError("email must contain '@'")
        return v


# ========== Response DTOs ==========

class EventAcceptedResponse(BaseModel):
    """Response model for an accepted event."""
    ids: List[str] = Field(..., description="Workflow run ids started by the event")


class WorkflowRunResponse(BaseModel):
    """Response model for a workflow run lookup."""
    run_id: str
    function_id: str
    event_name: str
    status: str
    completed_steps: List[str]
    error: Optional[str] = None
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
