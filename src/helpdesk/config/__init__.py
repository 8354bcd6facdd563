"""
Configuration Module
====================

Settings (environment / .env via pydantic-settings) and the enum constants
shared by the triage and workflow modules.
"""

from enum import Enum
from functools import lru_cache
from pathlib import Path
from typing import List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Helpdesk triage settings.

    Every field maps to an upper-case environment variable (``LLM_API_KEY``,
    ``WORKFLOW_STEP_RETRIES`` ...); unknown variables are ignored.
    """

    # ========== Application ==========
    environment: str = Field(default="development", description="Environment name")
    debug: bool = Field(default=False, description="Enable debug mode")
    log_level: str = Field(default="INFO", description="Root log level")

    # ========== Server ==========
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=8000, description="Server port", ge=1, le=65535)

    # ========== Database ==========
    database_url: str = Field(
        default="postgresql+asyncpg://localhost:5432/helpdesk",
        description="Database connection URL (async driver)"
    )
    db_pool_size: int = Field(default=5, description="Database connection pool size", ge=1)
    db_max_overflow: int = Field(default=10, description="Max overflow connections", ge=0)

    # ========== Workflow Engine ==========
    workflow_step_retries: int = Field(
        default=2,
        description="Additional attempts per workflow step on transient failure",
        ge=0,
        le=10
    )
    workflow_retry_backoff_seconds: float = Field(
        default=1.0,
        description="Base delay of the exponential backoff between step attempts",
        ge=0.0
    )
    workflow_retry_backoff_max_seconds: float = Field(
        default=30.0,
        description="Upper bound for a single backoff delay",
        ge=0.0
    )
    workflow_background: bool = Field(
        default=True,
        description="Run workflows on the background scheduler; false runs them within the request"
    )

    # ========== Triage ==========
    classification_timeout_seconds: float = Field(
        default=30.0,
        description="Timeout for a single classification call",
        gt=0
    )
    notification_timeout_seconds: float = Field(
        default=30.0,
        description="Timeout for sending the assignee notification",
        gt=0
    )
    default_deadline_days: int = Field(
        default=7,
        description="Deadline applied to tickets created without one",
        ge=1
    )
    triage_rules_path: Path = Field(
        default=Path("triage_rules.yaml"),
        description="Path to the priority rules YAML file"
    )

    # ========== LLM Settings ==========
    llm_api_key: Optional[str] = Field(
        default=None,
        description="API key for the OpenAI-compatible classification endpoint"
    )
    llm_base_url: Optional[str] = Field(
        default=None,
        description="Base URL for OpenAI-compatible providers (None uses api.openai.com)"
    )
    llm_model: str = Field(
        default="gpt-4o-mini",
        description="Model used for ticket classification"
    )
    llm_temperature: float = Field(
        default=0.2,
        description="Sampling temperature for classification",
        ge=0.0,
        le=1.0
    )
    llm_max_tokens: int = Field(
        default=1000,
        description="Max tokens for a classification answer",
        ge=1,
        le=8000
    )
    mock_llm: bool = Field(
        default=False,
        description="Use mock LLM responses (no API calls)"
    )

    # ========== Mail ==========
    mail_api_url: str = Field(
        default="https://send.api.mailtrap.io/api/send",
        description="HTTP mail sending endpoint"
    )
    mail_api_token: Optional[str] = Field(
        default=None,
        description="Bearer token for the mail sending endpoint"
    )
    mail_from: str = Field(default="no-reply@localhost", description="Default From address")
    mail_from_name: str = Field(default="Helpdesk", description="Default From display name")
    mail_timeout_seconds: float = Field(
        default=10.0,
        description="HTTP timeout for the mail API",
        ge=0.1,
        le=60
    )

    # ========== CORS ==========
    cors_origins: List[str] = Field(
        default=["http://localhost:3000"],
        description="Allowed CORS origins"
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Reject unknown deployment environments early."""
        allowed = {"development", "test", "staging", "production"}
        if v not in allowed:
            raise ValueError(f"environment must be one of {allowed}")
        return v


@lru_cache()
def get_settings() -> Settings:
    """Settings are read once per process."""
    return Settings()


# Module-level instance imported by infrastructure code
settings = get_settings()


# ========== Constants ==========

class Priority(str, Enum):
    """Ticket priority levels, ordered by urgency."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @property
    def rank(self) -> int:
        return PRIORITY_RANK[self]


class TicketStatus(str, Enum):
    """Ticket lifecycle statuses."""
    TODO = "TODO"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"


class Role(str, Enum):
    """User roles."""
    USER = "user"
    MODERATOR = "moderator"
    ADMIN = "admin"


class WorkflowRunStatus(str, Enum):
    """Workflow run states."""
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


PRIORITY_RANK = {
    Priority.LOW: 0,
    Priority.MEDIUM: 1,
    Priority.HIGH: 2,
}

# Event names accepted by the workflow dispatcher
TICKET_CREATED_EVENT = "ticket/create"
USER_SIGNUP_EVENT = "user/signup"
