"""
Event Dispatcher
================

Maps event names to workflow functions and starts one run per function.

Runs are executed either inline (``run``) or, through ``send``, as one-off
APScheduler jobs. With ``background=False`` (serverless, where nothing runs
after the response) ``send`` finishes its runs before returning.

Runs interrupted by a restart are picked up by ``resume_incomplete`` with
their original run id, so completed steps replay from the journal.
"""

from typing import Any, Dict, List, Optional, Sequence
from uuid import uuid4

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from pydantic import BaseModel

from helpdesk.core import UnknownEventError
from helpdesk.shared.infrastructure.logging import get_logger
from helpdesk.workflow.engine import WorkflowEngine, WorkflowFunction

logger = get_logger(__name__)


class EventDispatcher:
    """
    Routes events to registered workflow functions.

    Payload models are optional per event; when registered, event data is
    validated (``pydantic.ValidationError`` propagates) before any run starts.
    """

    def __init__(self, engine: WorkflowEngine, background: bool = True):
        self.engine = engine
        self.background = background
        self._functions: Dict[str, List[WorkflowFunction]] = {}
        self._payload_models: Dict[str, type[BaseModel]] = {}
        self._scheduler: Optional[AsyncIOScheduler] = None
        self._running = False

    # ========== Registration ==========

    def register(
        self,
        function: WorkflowFunction,
        payload_model: Optional[type[BaseModel]] = None,
    ) -> None:
        """Register a workflow function for its event name."""
        self._functions.setdefault(function.event_name, []).append(function)
        if payload_model is not None:
            self._payload_models[function.event_name] = payload_model
        logger.info(
            "Workflow function registered",
            extra={"function_id": function.function_id, "event_name": function.event_name}
        )

    def register_all(self, functions: Sequence[WorkflowFunction], payload_models=None) -> None:
        payload_models = payload_models or {}
        for function in functions:
            self.register(function, payload_models.get(function.event_name))

    @property
    def event_names(self) -> List[str]:
        return sorted(self._functions)

    def _resolve(self, name: str, data: Dict[str, Any]) -> List[WorkflowFunction]:
        functions = self._functions.get(name)
        if not functions:
            raise UnknownEventError(name)
        model = self._payload_models.get(name)
        if model is not None:
            model.model_validate(data)
        return functions

    def _function_by_id(self, function_id: str) -> Optional[WorkflowFunction]:
        for functions in self._functions.values():
            for function in functions:
                if function.function_id == function_id:
                    return function
        return None

    # ========== Execution ==========

    async def run(self, name: str, data: Dict[str, Any]) -> List[str]:
        """
        Execute every function for the event inline, in registration order.

        Returns the run ids. Workflow errors propagate.
        """
        run_ids = []
        for function in self._resolve(name, data):
            run_id = uuid4().hex
            run_ids.append(run_id)
            await self.engine.execute(function, run_id, data)
        return run_ids

    async def send(self, name: str, data: Dict[str, Any]) -> List[str]:
        """
        Start every function for the event; returns run ids.

        Failures are journaled on the run, never raised to the caller.
        """
        functions = self._resolve(name, data)
        if not self._running:
            raise RuntimeError("Event dispatcher not started")

        run_ids = []
        for function in functions:
            run_id = uuid4().hex
            # Journaled before scheduling so a restart still finds the run
            await self.engine.journal.start_run(run_id, function.function_id, function.event_name, data)
            if self.background:
                self._schedule(function, run_id, data)
            else:
                await self._execute_logged(function, run_id, data)
            run_ids.append(run_id)

        logger.info("Event accepted", extra={"event_name": name, "run_ids": run_ids})
        return run_ids

    async def resume_incomplete(self) -> List[str]:
        """Re-run every run still marked running, keeping its run id."""
        resumed = []
        for run in await self.engine.journal.list_incomplete_runs():
            function = self._function_by_id(run.function_id)
            if function is None:
                logger.warning(
                    "Cannot resume run of unknown workflow function",
                    extra={"run_id": run.run_id, "function_id": run.function_id}
                )
                continue

            if self._running and self.background:
                self._schedule(function, run.run_id, run.event_data)
            else:
                await self._execute_logged(function, run.run_id, run.event_data)
            resumed.append(run.run_id)

        if resumed:
            logger.info("Resumed incomplete workflow runs", extra={"run_ids": resumed})
        return resumed

    def _schedule(self, function: WorkflowFunction, run_id: str, data: Dict[str, Any]) -> None:
        self._scheduler.add_job(
            self._execute_logged,
            args=[function, run_id, dict(data)],
            id=run_id,
            name=f"{function.function_id}:{run_id}",
            misfire_grace_time=None,
            replace_existing=True,
        )

    async def _execute_logged(
        self,
        function: WorkflowFunction,
        run_id: str,
        data: Dict[str, Any],
    ) -> None:
        """Entry point for ``send`` and resumes: the failure is already journaled, only log it."""
        try:
            await self.engine.execute(function, run_id, data)
        except Exception as e:
            logger.error(
                "Dispatched workflow run failed",
                extra={
                    "run_id": run_id,
                    "function_id": function.function_id,
                    "error": str(e),
                    "error_type": type(e).__name__,
                }
            )

    # ========== Lifecycle ==========

    async def start(self) -> None:
        """Start accepting events; the scheduler needs a running event loop."""
        if self._running:
            logger.warning("Event dispatcher already running")
            return

        if self.background:
            self._scheduler = AsyncIOScheduler()
            self._scheduler.start()
        self._running = True
        logger.info(
            "Event dispatcher started",
            extra={"events": self.event_names, "background": self.background}
        )

    async def stop(self) -> None:
        """Stop the scheduler; pending runs stay journaled as running."""
        if not self._running:
            return

        if self._scheduler:
            self._scheduler.shutdown(wait=False)
            self._scheduler = None

        self._running = False
        logger.info("Event dispatcher stopped")

    @property
    def is_running(self) -> bool:
        return self._running
