from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from conftest import FakeMailTransport
from helpdesk.config import Settings
from helpdesk.core import NotificationError
from helpdesk.infrastructure.mail import (
    CircuitBreaker,
    HttpMailTransport,
    LoggingMailTransport,
    MailMessage,
    create_mail_transport,
)
from helpdesk.triage.application import NotificationService, build_welcome_message

API_URL = "https://send.example.test/api/send"


def http_transport(handler, breaker=None):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return HttpMailTransport(
        api_url=API_URL,
        api_token="secret-token",
        http_client=client,
        circuit_breaker=breaker,
    )


@pytest.mark.asyncio
async def test_http_transport_posts_json_with_bearer_token():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"success": True, "message_ids": ["m-1"]})

    transport = http_transport(handler)
    delivery = await transport.send(MailMessage(to="mo@example.com", subject="Hi", text="Body"))
    await transport.close()

    assert delivery.message_ids == ["m-1"]
    assert delivery.transport == "http"
    request = seen[0]
    assert str(request.url) == API_URL
    assert request.headers["Authorization"] == "Bearer secret-token"
    payload = json.loads(request.content)
    assert payload["to"] == [{"email": "mo@example.com"}]
    assert payload["subject"] == "Hi"
    assert payload["text"] == "Body"
    assert "html" not in payload


@pytest.mark.asyncio
async def test_http_error_status_raises_notification_error():
    transport = http_transport(lambda request: httpx.Response(401, text="bad token"))

    with pytest.raises(NotificationError, match="401"):
        await transport.send(MailMessage(to=["a@example.com"], subject="s", text="t"))


@pytest.mark.asyncio
async def test_accepted_message_with_non_json_body_is_delivered():
    transport = http_transport(lambda request: httpx.Response(200, text="queued"))

    delivery = await transport.send(MailMessage(to=["a@example.com"], subject="s", text="t"))

    assert delivery.message_ids == []
    assert delivery.transport == "http"


@pytest.mark.asyncio
async def test_connection_error_raises_notification_error():
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    with pytest.raises(NotificationError, match="request failed"):
        await http_transport(handler).send(MailMessage(to=["a@example.com"], subject="s", text="t"))


@pytest.mark.asyncio
async def test_circuit_opens_after_repeated_failures():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(503)

    transport = http_transport(handler, CircuitBreaker(failure_threshold=2, recovery_timeout=60))
    message = MailMessage(to=["a@example.com"], subject="s", text="t")
    for _ in range(2):
        with pytest.raises(NotificationError):
            await transport.send(message)

    with pytest.raises(NotificationError, match="circuit breaker open"):
        await transport.send(message)
    assert len(calls) == 2


def test_message_requires_recipient_and_body():
    with pytest.raises(ValueError):
        MailMessage(to=[], subject="s", text="t")
    with pytest.raises(ValueError):
        MailMessage(to=["a@example.com"], subject="s")


def test_transport_selection_follows_token():
    assert isinstance(create_mail_transport(Settings(mail_api_token=None)), LoggingMailTransport)
    assert isinstance(create_mail_transport(Settings(mail_api_token="t")), HttpMailTransport)


@pytest.mark.asyncio
async def test_logging_transport_returns_message_id():
    delivery = await LoggingMailTransport().send(build_welcome_message("Nia", "nia@example.com"))

    assert delivery.transport == "log"
    assert len(delivery.message_ids) == 1


@pytest.mark.asyncio
async def test_deliver_propagates_and_notify_swallows(storage):
    ticket = storage.add_ticket("Title", "Body")
    service = NotificationService(FakeMailTransport(fail=True), timeout_seconds=1)

    with pytest.raises(NotificationError):
        await service.deliver(build_welcome_message("Nia", "nia@example.com"))
    assert await service.notify("mo@example.com", "Mo", ticket) is None


@pytest.mark.asyncio
async def test_slow_transport_times_out(storage):
    class SlowTransport(FakeMailTransport):
        async def send(self, message):
            await asyncio.sleep(5)

    service = NotificationService(SlowTransport(), timeout_seconds=0.05)

    with pytest.raises(NotificationError, match="timed out"):
        await service.deliver(build_welcome_message("Nia", "nia@example.com"))
    assert await service.notify("mo@example.com", "Mo", storage.add_ticket("T", "D")) is None
