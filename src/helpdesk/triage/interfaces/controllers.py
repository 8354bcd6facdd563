"""
Triage Controllers (API Routes)
================================

FastAPI routes for the workflow event surface.

Controllers delegate to the event dispatcher; triage itself runs in the
background.
"""

from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import ValidationError

from helpdesk.core import UnknownEventError
from helpdesk.shared.infrastructure.logging import get_logger
from helpdesk.triage.application import (
    EventAcceptedResponse,
    WorkflowEvent,
    WorkflowRunResponse,
)
from helpdesk.workflow import EventDispatcher

logger = get_logger(__name__)
router = APIRouter(prefix="/events", tags=["Workflow Events"])


# ========== Example payloads for Swagger ==========

EVENT_REQUEST_EXAMPLE = {
    "name": "ticket/create",
    "data": {"ticketId": "123e4567-e89b-12d3-a456-426614174000"}
}

RUN_RESPONSE_EXAMPLE = {
    "run_id": "4f0c2a6e9b8d4a43a1c3f5f7d2e1b0a9",
    "function_id": "on-ticket-create",
    "event_name": "ticket/create",
    "status": "completed",
    "completed_steps": [
        "get-ticket-details",
        "update-ticket-status",
        "ai-analysis",
        "persist-ai-results",
        "assign-moderator",
        "send-email-notification"
    ],
    "error": None
}


# ========== Dependencies ==========

def get_dispatcher(request: Request) -> EventDispatcher:
    """Get the event dispatcher from app state."""
    dispatcher = getattr(request.app.state, "dispatcher", None)
    if dispatcher is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Workflow dispatcher not initialized"
        )
    return dispatcher


# ========== Route Handlers ==========

@router.post(
    "",
    response_model=EventAcceptedResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Send a workflow event",
    description="""
    Start the workflow runs registered for an event.

    **Events**:
    - `ticket/create` - `{"ticketId": "..."}` triages and assigns the ticket
    - `user/signup` - `{"email": "..."}` sends the welcome email

    Runs execute in the background (or within the request when background
    execution is disabled); poll `GET /events/runs/{run_id}` for status.
    """,
    responses={
        202: {"description": "Event accepted, runs scheduled"},
        400: {"description": "Unknown event name"},
        422: {"description": "Invalid event payload"},
        503: {"description": "Workflow dispatcher not available"}
    },
    openapi_extra={"requestBody": {"content": {"application/json": {"example": EVENT_REQUEST_EXAMPLE}}}}
)
async def send_event(
    event: WorkflowEvent,
    dispatcher: EventDispatcher = Depends(get_dispatcher)
):
    if not dispatcher.is_running:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Workflow dispatcher not running"
        )

    try:
        run_ids = await dispatcher.send(event.name, event.data)
    except UnknownEventError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=e.message)
    except ValidationError as e:
        raise HTTPException(
            status_code=422,
            detail=e.errors(include_url=False, include_context=False)
        )

    logger.info(
        "Workflow event accepted",
        extra={"event_name": event.name, "run_ids": run_ids}
    )
    return EventAcceptedResponse(ids=run_ids)


@router.get(
    "/runs/{run_id}",
    response_model=WorkflowRunResponse,
    summary="Get workflow run status",
    responses={
        200: {
            "description": "Run found",
            "content": {"application/json": {"example": RUN_RESPONSE_EXAMPLE}}
        },
        404: {"description": "Run not found"}
    }
)
async def get_run(
    run_id: str,
    dispatcher: EventDispatcher = Depends(get_dispatcher)
):
    run = await dispatcher.engine.get_run(run_id)
    if run is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Run {run_id} not found")

    return WorkflowRunResponse(
        run_id=run.run_id,
        function_id=run.function_id,
        event_name=run.event_name,
        status=run.status.value,
        completed_steps=run.steps,
        error=run.error,
        started_at=run.started_at,
        finished_at=run.finished_at,
    )
