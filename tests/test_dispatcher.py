from __future__ import annotations

import asyncio

import pytest
import pytest_asyncio
from pydantic import ValidationError

from helpdesk.config import TICKET_CREATED_EVENT, USER_SIGNUP_EVENT, WorkflowRunStatus
from helpdesk.core import UnknownEventError
from helpdesk.triage.application import PAYLOAD_MODELS
from helpdesk.workflow import EventDispatcher, InMemoryStepJournal, WorkflowEngine, WorkflowFunction


class Recorder:
    def __init__(self, fail=False):
        self.fail = fail
        self.calls = []

    async def __call__(self, data, step):
        value = await step.run_step("record", self._record(data))
        if self.fail:
            raise RuntimeError("handler failed")
        return value

    def _record(self, data):
        async def record():
            self.calls.append(data)
            return data
        return record


@pytest.fixture
def journal():
    return InMemoryStepJournal()


@pytest.fixture
def dispatcher(journal, sleep):
    return EventDispatcher(WorkflowEngine(journal, retries=0, sleep=sleep))


@pytest_asyncio.fixture
async def started(dispatcher):
    await dispatcher.start()
    yield dispatcher
    await dispatcher.stop()


async def wait_for_status(journal, run_id, expected, timeout=2.0):
    async def poll():
        while True:
            run = await journal.get_run(run_id)
            if run is not None and run.status == expected:
                return run
            await asyncio.sleep(0.01)

    return await asyncio.wait_for(poll(), timeout)


@pytest.mark.asyncio
async def test_run_executes_every_registered_function(dispatcher, journal):
    first, second = Recorder(), Recorder()
    dispatcher.register(WorkflowFunction("first", TICKET_CREATED_EVENT, first))
    dispatcher.register(WorkflowFunction("second", TICKET_CREATED_EVENT, second))

    run_ids = await dispatcher.run(TICKET_CREATED_EVENT, {"ticketId": "t-1"})

    assert len(run_ids) == 2
    assert first.calls == [{"ticketId": "t-1"}]
    assert second.calls == [{"ticketId": "t-1"}]
    for run_id in run_ids:
        assert (await journal.get_run(run_id)).status == WorkflowRunStatus.COMPLETED


@pytest.mark.asyncio
async def test_unknown_event_is_rejected(dispatcher):
    with pytest.raises(UnknownEventError) as exc_info:
        await dispatcher.run("ticket/delete", {})

    assert exc_info.value.retriable is False
    assert "ticket/delete" in exc_info.value.message


@pytest.mark.asyncio
async def test_payload_is_validated_before_any_run(dispatcher, journal):
    recorder = Recorder()
    dispatcher.register(WorkflowFunction("fn", TICKET_CREATED_EVENT, recorder), PAYLOAD_MODELS[TICKET_CREATED_EVENT])

    with pytest.raises(ValidationError):
        await dispatcher.run(TICKET_CREATED_EVENT, {"ticket": "t-1"})

    assert recorder.calls == []
    assert await journal.list_incomplete_runs() == []


def test_register_all_wires_payload_models(dispatcher):
    dispatcher.register_all(
        [
            WorkflowFunction("on-ticket-create", TICKET_CREATED_EVENT, Recorder()),
            WorkflowFunction("on-user-signup", USER_SIGNUP_EVENT, Recorder()),
        ],
        PAYLOAD_MODELS,
    )

    assert dispatcher.event_names == [TICKET_CREATED_EVENT, USER_SIGNUP_EVENT]
    with pytest.raises(ValidationError):
        dispatcher._resolve(USER_SIGNUP_EVENT, {})


@pytest.mark.asyncio
async def test_send_requires_started_dispatcher(dispatcher):
    dispatcher.register(WorkflowFunction("fn", TICKET_CREATED_EVENT, Recorder()))

    with pytest.raises(RuntimeError):
        await dispatcher.send(TICKET_CREATED_EVENT, {"ticketId": "t-1"})


@pytest.mark.asyncio
async def test_send_runs_in_background(started, journal):
    recorder = Recorder()
    started.register(WorkflowFunction("fn", TICKET_CREATED_EVENT, recorder))

    [run_id] = await started.send(TICKET_CREATED_EVENT, {"ticketId": "t-1"})
    run = await wait_for_status(journal, run_id, WorkflowRunStatus.COMPLETED)

    assert run.steps == ["record"]
    assert recorder.calls == [{"ticketId": "t-1"}]


@pytest.mark.asyncio
async def test_background_failure_is_journaled(started, journal):
    started.register(WorkflowFunction("fn", TICKET_CREATED_EVENT, Recorder(fail=True)))

    [run_id] = await started.send(TICKET_CREATED_EVENT, {"ticketId": "t-1"})
    run = await wait_for_status(journal, run_id, WorkflowRunStatus.FAILED)

    assert run.error == "handler failed"
    assert started.is_running


@pytest.mark.asyncio
async def test_send_without_background_finishes_runs_before_returning(journal, sleep):
    dispatcher = EventDispatcher(WorkflowEngine(journal, retries=0, sleep=sleep), background=False)
    ok = Recorder()
    dispatcher.register(WorkflowFunction("ok", TICKET_CREATED_EVENT, ok))
    dispatcher.register(WorkflowFunction("failing", TICKET_CREATED_EVENT, Recorder(fail=True)))
    await dispatcher.start()

    run_ids = await dispatcher.send(TICKET_CREATED_EVENT, {"ticketId": "t-1"})
    await dispatcher.stop()

    statuses = [(await journal.get_run(run_id)).status for run_id in run_ids]
    assert statuses == [WorkflowRunStatus.COMPLETED, WorkflowRunStatus.FAILED]
    assert ok.calls == [{"ticketId": "t-1"}]


@pytest.mark.asyncio
async def test_resume_incomplete_reuses_run_id_and_journal(dispatcher, journal):
    recorder = Recorder()
    dispatcher.register(WorkflowFunction("fn", TICKET_CREATED_EVENT, recorder))
    await journal.start_run("run-7", "fn", TICKET_CREATED_EVENT, {"ticketId": "t-7"})
    await journal.start_run("run-8", "gone", TICKET_CREATED_EVENT, {})

    resumed = await dispatcher.resume_incomplete()

    assert resumed == ["run-7"]
    assert recorder.calls == [{"ticketId": "t-7"}]
    assert (await journal.get_run("run-7")).status == WorkflowRunStatus.COMPLETED
    assert (await journal.get_run("run-8")).status == WorkflowRunStatus.RUNNING


@pytest.mark.asyncio
async def test_resume_skips_memoized_steps(dispatcher, journal):
    recorder = Recorder()
    dispatcher.register(WorkflowFunction("fn", TICKET_CREATED_EVENT, recorder))
    await journal.start_run("run-7", "fn", TICKET_CREATED_EVENT, {"ticketId": "t-7"})
    await journal.save_step("run-7", "record", {"ticketId": "t-7"})

    await dispatcher.resume_incomplete()

    assert recorder.calls == []
    assert (await journal.get_run("run-7")).status == WorkflowRunStatus.COMPLETED


@pytest.mark.asyncio
async def test_stop_is_idempotent(dispatcher):
    await dispatcher.start()
    await dispatcher.stop()
    await dispatcher.stop()

    assert not dispatcher.is_running
