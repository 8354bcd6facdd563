"""
Workflow Engine
===============

Minimal in-process durable step execution.

A workflow function is an async handler receiving the event payload and a
``StepRunner``. Every side effect goes through ``runner.run_step(name, fn)``:

- a step already completed in this run returns its journaled result
- otherwise ``fn`` is attempted up to ``retries + 1`` times with exponential
  backoff between attempts
- errors with ``retriable = False`` abort the run without further attempts
- a journal outage (``StorageError``) is retried under the same budget

Usage:
    async def handler(data, step):
        ticket = await step.run_step("get-ticket-details", load_ticket)
        ...

    engine = WorkflowEngine(journal)
    await engine.execute(WorkflowFunction("on-ticket-create", "ticket/create", handler),
                         run_id, {"ticketId": "..."})
"""

import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional

from helpdesk.config import WorkflowRunStatus, settings
from helpdesk.core import StorageError
from helpdesk.shared.infrastructure.logging import get_logger
from helpdesk.workflow.journal import StepJournal, WorkflowRun

logger = get_logger(__name__)

StepFn = Callable[[], Awaitable[Any]]
Sleep = Callable[[float], Awaitable[Any]]


def is_retriable(exc: BaseException) -> bool:
    """Errors are retriable unless they say otherwise."""
    return bool(getattr(exc, "retriable", True))


def backoff_delay(attempt: int, base: float, maximum: float) -> float:
    """Delay before retry number ``attempt`` (0-based): ``base * 2**attempt``, capped."""
    return min(base * (2 ** attempt), maximum)


class StepRunner:
    """
    Executes and memoizes the steps of one workflow run.

    Steps of the same run execute strictly one after another; the handler
    awaits each ``run_step`` before starting the next.
    """

    def __init__(
        self,
        run_id: str,
        journal: StepJournal,
        retries: Optional[int] = None,
        backoff_seconds: Optional[float] = None,
        backoff_max_seconds: Optional[float] = None,
        sleep: Sleep = asyncio.sleep,
        log_context: Optional[Dict[str, Any]] = None,
    ):
        self.run_id = run_id
        self._journal = journal
        self._retries = settings.workflow_step_retries if retries is None else retries
        self._backoff = (
            settings.workflow_retry_backoff_seconds if backoff_seconds is None else backoff_seconds
        )
        self._backoff_max = (
            settings.workflow_retry_backoff_max_seconds
            if backoff_max_seconds is None else backoff_max_seconds
        )
        self._sleep = sleep
        self._log_context = dict(log_context or {})

    def bind(self, **context: Any) -> None:
        """Attach extra fields (e.g. ticket_id) to every step log line."""
        self._log_context.update(context)

    async def run_step(
        self,
        name: str,
        fn: StepFn,
        *,
        retries: Optional[int] = None,
        best_effort: bool = False,
    ) -> Any:
        """
        Run ``fn`` as the named step of this run.

        Returns the memoized result when the step already completed.
        Re-raises the last error once the retry budget is exhausted.
        Journal reads and writes get the same budget; with ``best_effort``
        a result that still cannot be journaled is logged and returned.
        """
        extra = {"run_id": self.run_id, "step": name, **self._log_context}

        budget = self._retries if retries is None else retries
        attempts = budget + 1

        record = await self._journal_call(
            lambda: self._journal.get_step(self.run_id, name), attempts, extra
        )
        if record is not None:
            logger.info("Step replayed from journal", extra=extra)
            return record.result

        for attempt in range(attempts):
            logger.info("Step started", extra={**extra, "attempt": attempt + 1})
            try:
                result = await fn()
            except Exception as e:
                if not is_retriable(e):
                    logger.error(
                        "Step failed with non-retriable error",
                        extra={**extra, "attempt": attempt + 1, "error": str(e)}
                    )
                    raise
                if attempt + 1 >= attempts:
                    logger.error(
                        "Step failed, retries exhausted",
                        extra={**extra, "attempt": attempt + 1, "error": str(e)}
                    )
                    raise

                delay = backoff_delay(attempt, self._backoff, self._backoff_max)
                logger.warning(
                    "Step failed, retrying",
                    extra={
                        **extra,
                        "attempt": attempt + 1,
                        "retry_in_seconds": delay,
                        "error": str(e),
                    }
                )
                await self._sleep(delay)
                continue

            try:
                await self._journal_call(
                    lambda: self._journal.save_step(self.run_id, name, result), attempts, extra
                )
            except StorageError as e:
                if not best_effort:
                    raise
                logger.error("Step result not journaled", extra={**extra, "error": str(e)})
            logger.info("Step completed", extra={**extra, "attempt": attempt + 1})
            return result

        raise RuntimeError("unreachable")  # pragma: no cover

    async def _journal_call(self, call: StepFn, attempts: int, extra: Dict[str, Any]) -> Any:
        """Retry transient journal failures; ``fn`` itself is never re-run for them."""
        for attempt in range(attempts):
            try:
                return await call()
            except StorageError as e:
                if attempt + 1 >= attempts:
                    logger.error("Journal unavailable, retries exhausted", extra={**extra, "error": str(e)})
                    raise
                delay = backoff_delay(attempt, self._backoff, self._backoff_max)
                logger.warning(
                    "Journal unavailable, retrying",
                    extra={**extra, "retry_in_seconds": delay, "error": str(e)}
                )
                await self._sleep(delay)
        raise RuntimeError("unreachable")  # pragma: no cover


WorkflowHandler = Callable[[Dict[str, Any], StepRunner], Awaitable[Any]]


@dataclass(frozen=True)
class WorkflowFunction:
    """A named handler triggered by one event name."""
    function_id: str
    event_name: str
    handler: WorkflowHandler


class WorkflowEngine:
    """
    Runs workflow functions against a step journal.

    The run is recorded as ``running`` before the handler starts and marked
    ``completed`` or ``failed`` afterwards; handler errors are re-raised.
    """

    def __init__(
        self,
        journal: StepJournal,
        retries: Optional[int] = None,
        backoff_seconds: Optional[float] = None,
        backoff_max_seconds: Optional[float] = None,
        sleep: Sleep = asyncio.sleep,
    ):
        self.journal = journal
        self._retries = retries
        self._backoff = backoff_seconds
        self._backoff_max = backoff_max_seconds
        self._sleep = sleep

    async def execute(
        self,
        function: WorkflowFunction,
        run_id: str,
        event_data: Dict[str, Any],
    ) -> Any:
        """Execute (or resume) a run of ``function``."""
        run = await self.journal.start_run(run_id, function.function_id, function.event_name, event_data)
        extra = {"run_id": run_id, "function_id": function.function_id}
        if run.steps:
            logger.info("Resuming workflow run", extra={**extra, "completed_steps": run.steps})
        else:
            logger.info("Workflow run started", extra=extra)

        runner = StepRunner(
            run_id,
            self.journal,
            retries=self._retries,
            backoff_seconds=self._backoff,
            backoff_max_seconds=self._backoff_max,
            sleep=self._sleep,
        )

        try:
            result = await function.handler(dict(event_data), runner)
        except Exception as e:
            await self.journal.finish_run(run_id, WorkflowRunStatus.FAILED, error=str(e))
            logger.error(
                "Workflow run failed",
                extra={**extra, "error": str(e), "error_type": type(e).__name__}
            )
            raise

        await self.journal.finish_run(run_id, WorkflowRunStatus.COMPLETED)
        logger.info("Workflow run completed", extra=extra)
        return result

    async def get_run(self, run_id: str) -> Optional[WorkflowRun]:
        return await self.journal.get_run(run_id)
