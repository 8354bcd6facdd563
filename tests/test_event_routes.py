from __future__ import annotations

from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient
from pydantic import ValidationError

from helpdesk.config import WorkflowRunStatus
from helpdesk.core import UnknownEventError
from helpdesk.main import create_app
from helpdesk.triage.application import TicketCreateData
from helpdesk.triage.interfaces.controllers import get_dispatcher
from helpdesk.workflow import WorkflowRun


@pytest.fixture
def dispatcher():
    mock = MagicMock()
    mock.is_running = True
    mock.send = AsyncMock(return_value=["run-1"])
    mock.engine.get_run = AsyncMock(return_value=None)
    return mock


@pytest.fixture
def app(dispatcher):
    application = create_app()
    application.dependency_overrides[get_dispatcher] = lambda: dispatcher
    return application


@pytest.fixture
def client(app):
    return TestClient(app)


def payload_validation_error() -> ValidationError:
    with pytest.raises(ValidationError) as exc_info:
        TicketCreateData.model_validate({})
    return exc_info.value


def test_event_is_accepted(client, dispatcher):
    response = client.post("/events", json={"name": "ticket/create", "data": {"ticketId": "t-1"}})

    assert response.status_code == 202
    assert response.json() == {"ids": ["run-1"]}
    dispatcher.send.assert_awaited_once_with("ticket/create", {"ticketId": "t-1"})


def test_correlation_id_is_echoed(client):
    response = client.post(
        "/events",
        json={"name": "ticket/create", "data": {"ticketId": "t-1"}},
        headers={"X-Correlation-ID": "abc-123"},
    )

    assert response.headers["X-Correlation-ID"] == "abc-123"


def test_unknown_event_is_bad_request(client, dispatcher):
    dispatcher.send.side_effect = UnknownEventError("ticket/delete")

    response = client.post("/events", json={"name": "ticket/delete", "data": {}})

    assert response.status_code == 400
    assert "ticket/delete" in response.json()["detail"]


def test_invalid_payload_is_unprocessable(client, dispatcher):
    dispatcher.send.side_effect = payload_validation_error()

    response = client.post("/events", json={"name": "ticket/create", "data": {}})

    assert response.status_code == 422
    assert response.json()["detail"][0]["loc"] == ["ticketId"]


def test_missing_event_name_is_unprocessable(client, dispatcher):
    response = client.post("/events", json={"data": {}})

    assert response.status_code == 422
    dispatcher.send.assert_not_awaited()


def test_stopped_dispatcher_is_unavailable(client, dispatcher):
    dispatcher.is_running = False

    response = client.post("/events", json={"name": "ticket/create", "data": {"ticketId": "t-1"}})

    assert response.status_code == 503


def test_missing_dispatcher_is_unavailable():
    client = TestClient(create_app())

    response = client.post("/events", json={"name": "ticket/create", "data": {"ticketId": "t-1"}})

    assert response.status_code == 503


def test_run_status_is_reported(client, dispatcher):
    started = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)
    dispatcher.engine.get_run.return_value = WorkflowRun(
        run_id="run-1",
        function_id="on-ticket-create",
        event_name="ticket/create",
        event_data={"ticketId": "t-1"},
        status=WorkflowRunStatus.FAILED,
        started_at=started,
        finished_at=started,
        error="Ticket with id 't-1' not found",
        steps=[],
    )

    response = client.get("/events/runs/run-1")

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "failed"
    assert body["function_id"] == "on-ticket-create"
    assert body["completed_steps"] == []
    assert "not found" in body["error"]


def test_unknown_run_is_not_found(client):
    response = client.get("/events/runs/nope")

    assert response.status_code == 404


def test_health_and_root(client):
    health = client.get("/health")
    root = client.get("/")

    assert health.status_code == 200
    assert health.json()["status"] == "healthy"
    assert health.json()["checks"]["dispatcher"] == "stopped"
    assert root.json()["modules"]["events"]["prefix"] == "/events"
