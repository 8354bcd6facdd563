"""
Triage Application Layer
========================

Application services, DTOs and workflow definitions for the triage module.
"""

from helpdesk.triage.application.dto import (
    EventAcceptedResponse,
    TicketCreateData,
    UserSignupData,
    Verdict,
    WorkflowEvent,
    WorkflowRunResponse,
    repair_verdict_payload,
)
from helpdesk.triage.application.services import (
    AssignmentService,
    ClassificationService,
    ICandidateRepository,
    IStorageProvider,
    ITicketRepository,
    NotificationService,
    TriageStorage,
    build_assignment_message,
    build_welcome_message,
    extract_json_candidate,
    parse_verdict,
    with_storage,
)
from helpdesk.triage.application.workflows import (
    PAYLOAD_MODELS,
    SIGNUP_WORKFLOW_ID,
    TICKET_WORKFLOW_ID,
    TicketTriageWorkflow,
    UserSignupWorkflow,
    create_workflow_functions,
)

__all__ = [
    # DTOs
    "EventAcceptedResponse",
    "TicketCreateData",
    "UserSignupData",
    "Verdict",
    "WorkflowEvent",
    "WorkflowRunResponse",
    "repair_verdict_payload",
    # Interfaces
    "ICandidateRepository",
    "IStorageProvider",
    "ITicketRepository",
    "TriageStorage",
    "with_storage",
    # Services
    "AssignmentService",
    "ClassificationService",
    "NotificationService",
    "build_assignment_message",
    "build_welcome_message",
    "extract_json_candidate",
    "parse_verdict",
    # Workflows
    "PAYLOAD_MODELS",
    "SIGNUP_WORKFLOW_ID",
    "TICKET_WORKFLOW_ID",
    "TicketTriageWorkflow",
    "UserSignupWorkflow",
    "create_workflow_functions",
]
