"""
Triage Workflows
================

Workflow functions triggered by ``ticket/create`` and ``user/signup``.

Each side effect runs as a named step so a resumed run replays completed
steps from the journal. Step results are plain JSON.

ticket/create:
    1. get-ticket-details       load ticket (missing -> NotFoundError, aborts)
    2. update-ticket-status     reaffirm TODO
    3. ai-analysis              classify title/description (memoized verdict)
    4. persist-ai-results       re-read ticket, blend priorities, store notes/skills, IN_PROGRESS
    5. assign-moderator         pick assignee from the verdict's skills
    6. send-email-notification  best-effort mail to the assignee
"""

from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from pydantic import BaseModel, ValidationError

from helpdesk.config import TICKET_CREATED_EVENT, USER_SIGNUP_EVENT, TicketStatus
from helpdesk.core import NonRetriableError, NotFoundError
from helpdesk.shared.infrastructure.logging import get_logger
from helpdesk.triage.application.dto import TicketCreateData, UserSignupData, Verdict
from helpdesk.triage.application.services import (
    AssignmentService,
    ClassificationService,
    IStorageProvider,
    NotificationService,
    TriageStorage,
    build_welcome_message,
    with_storage,
)
from helpdesk.triage.domain import (
    DEFAULT_RULES,
    Candidate,
    PriorityRules,
    Ticket,
    pick_higher,
    rule_priority,
)
from helpdesk.workflow import StepRunner, WorkflowFunction

logger = get_logger(__name__)

Clock = Callable[[], datetime]
RulesProvider = Callable[[], PriorityRules]

TICKET_WORKFLOW_ID = "on-ticket-create"
SIGNUP_WORKFLOW_ID = "on-user-signup"

PAYLOAD_MODELS: Dict[str, type[BaseModel]] = {
    TICKET_CREATED_EVENT: TicketCreateData,
    USER_SIGNUP_EVENT: UserSignupData,
}


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def ticket_snapshot(ticket: Ticket) -> Dict[str, Any]:
    """JSON form of the fields later steps read."""
    return {
        "id": ticket.id,
        "title": ticket.title,
        "description": ticket.description,
        "deadline": ticket.deadline.isoformat() if ticket.deadline else None,
    }


def _parse_payload(model: type[BaseModel], data: Dict[str, Any]) -> Any:
    try:
        return model.model_validate(data)
    except ValidationError as e:
        raise NonRetriableError(f"Invalid event payload: {e}") from e


class TicketTriageWorkflow:
    """Triage and assign a newly created ticket."""

    def __init__(
        self,
        storage: IStorageProvider,
        classifier: ClassificationService,
        notifier: NotificationService,
        rules_provider: RulesProvider = lambda: DEFAULT_RULES,
        clock: Clock = utc_now,
    ):
        self._storage = storage
        self._classifier = classifier
        self._notifier = notifier
        self._rules = rules_provider
        self._clock = clock

    def as_function(self) -> WorkflowFunction:
        return WorkflowFunction(TICKET_WORKFLOW_ID, TICKET_CREATED_EVENT, self)

    async def __call__(self, data: Dict[str, Any], step: StepRunner) -> Dict[str, Any]:
        ticket_id = _parse_payload(TicketCreateData, data).ticket_id
        step.bind(ticket_id=ticket_id)

        # 1) Fetch ticket
        async def get_ticket_details():
            ticket = await with_storage(self._storage, lambda s: s.tickets.get_ticket(ticket_id))
            if ticket is None:
                raise NotFoundError("Ticket", ticket_id)
            return ticket_snapshot(ticket)

        ticket = await step.run_step("get-ticket-details", get_ticket_details)

        # 2) Reaffirm TODO
        async def update_ticket_status():
            await self._update(ticket["id"], {"status": TicketStatus.TODO})

        await step.run_step("update-ticket-status", update_ticket_status)

        # 3) Classify
        async def ai_analysis():
            verdict = await self._classifier.analyze(ticket["title"], ticket["description"])
            return verdict.to_payload()

        verdict = Verdict.model_validate(await step.run_step("ai-analysis", ai_analysis))

        # 4) Blend with the rule engine and persist
        async def persist_ai_results():
            current = await with_storage(self._storage, lambda s: s.tickets.get_ticket(ticket["id"]))
            if current is None:
                raise NotFoundError("Ticket", ticket["id"])
            rule_based = rule_priority(
                current.title,
                current.description,
                current.deadline,
                now=self._clock(),
                rules=self._rules(),
            )
            final_priority = pick_higher(verdict.priority, rule_based)
            await self._update(ticket["id"], {
                "priority": final_priority,
                "helpful_notes": verdict.helpful_notes,
                "related_skills": list(verdict.related_skills),
                "status": TicketStatus.IN_PROGRESS,
            })
            logger.info(
                "Ticket priority blended",
                extra={
                    "ticket_id": ticket["id"],
                    "classifier_priority": verdict.priority.value,
                    "rule_priority": rule_based.value,
                    "final_priority": final_priority.value,
                }
            )
            return {
                "priority": final_priority.value,
                "classifierPriority": verdict.priority.value,
                "rulePriority": rule_based.value,
            }

        persisted = await step.run_step("persist-ai-results", persist_ai_results)

        # 5) Pick and store assignee
        async def assign_moderator():
            async def select(storage: TriageStorage) -> Optional[Candidate]:
                candidate = await AssignmentService(storage.candidates).select_assignee(
                    verdict.related_skills
                )
                updated = await storage.tickets.update_ticket(
                    ticket["id"], {"assigned_to": candidate.id if candidate else None}
                )
                if updated is None:
                    raise NotFoundError("Ticket", ticket["id"])
                return candidate

            candidate = await with_storage(self._storage, select)
            return candidate.to_dict() if candidate else None

        assignee = await step.run_step("assign-moderator", assign_moderator)

        # 6) Notify assignee, never fails the run
        async def send_email_notification():
            if not assignee:
                return {"sent": False}
            try:
                fresh = await with_storage(self._storage, lambda s: s.tickets.get_ticket(ticket["id"]))
                if fresh is None:
                    return {"sent": False}
                delivery = await self._notifier.notify(assignee["email"], assignee["name"], fresh)
            except Exception as e:
                logger.error(
                    "Notification step failed",
                    extra={"ticket_id": ticket["id"], "error": str(e)}
                )
                return {"sent": False}
            return {"sent": delivery is not None}

        await step.run_step("send-email-notification", send_email_notification, best_effort=True)

        return {
            "success": True,
            "ticketId": ticket["id"],
            "priority": persisted["priority"],
            "assignedTo": assignee["id"] if assignee else None,
        }

    async def _update(self, ticket_id: str, fields: Dict[str, Any]) -> Ticket:
        updated = await with_storage(self._storage, lambda s: s.tickets.update_ticket(ticket_id, fields))
        if updated is None:
            raise NotFoundError("Ticket", ticket_id)
        return updated


class UserSignupWorkflow:
    """Send a welcome email to a newly registered user."""

    def __init__(self, storage: IStorageProvider, notifier: NotificationService):
        self._storage = storage
        self._notifier = notifier

    def as_function(self) -> WorkflowFunction:
        return WorkflowFunction(SIGNUP_WORKFLOW_ID, USER_SIGNUP_EVENT, self)

    async def __call__(self, data: Dict[str, Any], step: StepRunner) -> Dict[str, Any]:
        email = _parse_payload(UserSignupData, data).email

        async def get_user_email():
            user = await with_storage(self._storage, lambda s: s.candidates.get_by_email(email))
            if user is None:
                raise NotFoundError("User", email)
            return {"name": user.name, "email": user.email}

        user = await step.run_step("get-user-email", get_user_email)

        async def send_welcome_email():
            delivery = await self._notifier.deliver(build_welcome_message(user["name"], user["email"]))
            return {"messageIds": delivery.message_ids}

        await step.run_step("send-welcome-email", send_welcome_email)

        return {"success": True}


def create_workflow_functions(
    storage: IStorageProvider,
    classifier: ClassificationService,
    notifier: NotificationService,
    rules_provider: RulesProvider = lambda: DEFAULT_RULES,
    clock: Clock = utc_now,
) -> List[WorkflowFunction]:
    """All workflow functions of the triage module."""
    return [
        TicketTriageWorkflow(storage, classifier, notifier, rules_provider, clock).as_function(),
        UserSignupWorkflow(storage, notifier).as_function(),
    ]


__all__ = [
    "PAYLOAD_MODELS",
    "SIGNUP_WORKFLOW_ID",
    "TICKET_WORKFLOW_ID",
    "TicketTriageWorkflow",
    "UserSignupWorkflow",
    "create_workflow_functions",
    "ticket_snapshot",
    "utc_now",
]
