"""
Workflow Journal
================

Durable record of workflow runs and their completed steps.

A step's result is journaled once it succeeds; replaying the same run reads
the result back instead of executing the step again. Results must be
JSON-serialisable.
"""

import copy
import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from helpdesk.config import WorkflowRunStatus


@dataclass
class StepRecord:
    """A completed step and its memoized result."""
    name: str
    result: Any
    completed_at: datetime


@dataclass
class WorkflowRun:
    """One execution instance of a workflow function."""
    run_id: str
    function_id: str
    event_name: str
    event_data: Dict[str, Any]
    status: WorkflowRunStatus
    started_at: datetime
    finished_at: Optional[datetime] = None
    error: Optional[str] = None
    steps: List[str] = field(default_factory=list)


class StepJournal(ABC):
    """Interface for workflow run persistence."""

    @abstractmethod
    async def start_run(
        self,
        run_id: str,
        function_id: str,
        event_name: str,
        event_data: Dict[str, Any],
    ) -> WorkflowRun:
        """Create the run, or mark an existing run as running again."""

    @abstractmethod
    async def get_step(self, run_id: str, name: str) -> Optional[StepRecord]:
        """Get a completed step of a run."""

    @abstractmethod
    async def save_step(self, run_id: str, name: str, result: Any) -> StepRecord:
        """Record a completed step."""

    @abstractmethod
    async def finish_run(
        self,
        run_id: str,
        status: WorkflowRunStatus,
        error: Optional[str] = None,
    ) -> None:
        """Mark a run completed or failed."""

    @abstractmethod
    async def get_run(self, run_id: str) -> Optional[WorkflowRun]:
        """Get a run with the names of its completed steps."""

    @abstractmethod
    async def list_incomplete_runs(self) -> List[WorkflowRun]:
        """Runs still marked running (interrupted by a restart)."""


def ensure_json(result: Any) -> Any:
    """Round-trip through JSON so every journal stores the same shapes."""
    try:
        return json.loads(json.dumps(result))
    except (TypeError, ValueError) as e:
        raise TypeError(f"Step result is not JSON-serialisable: {e}") from e


class InMemoryStepJournal(StepJournal):
    """Process-local journal; runs do not survive a restart."""

    def __init__(self):
        self._runs: Dict[str, WorkflowRun] = {}
        self._steps: Dict[str, Dict[str, StepRecord]] = {}

    async def start_run(self, run_id, function_id, event_name, event_data):
        run = self._runs.get(run_id)
        if run is None:
            run = WorkflowRun(
                run_id=run_id,
                function_id=function_id,
                event_name=event_name,
                event_data=ensure_json(event_data),
                status=WorkflowRunStatus.RUNNING,
                started_at=datetime.now(timezone.utc),
            )
            self._runs[run_id] = run
            self._steps[run_id] = {}
        else:
            run.status = WorkflowRunStatus.RUNNING
            run.finished_at = None
            run.error = None
        return copy.deepcopy(self._with_steps(run))

    async def get_step(self, run_id, name):
        record = self._steps.get(run_id, {}).get(name)
        return copy.deepcopy(record)

    async def save_step(self, run_id, name, result):
        record = StepRecord(
            name=name,
            result=ensure_json(result),
            completed_at=datetime.now(timezone.utc),
        )
        self._steps.setdefault(run_id, {})[name] = record
        return copy.deepcopy(record)

    async def finish_run(self, run_id, status, error=None):
        run = self._runs[run_id]
        run.status = status
        run.error = error
        run.finished_at = datetime.now(timezone.utc)

    async def get_run(self, run_id):
        run = self._runs.get(run_id)
        if run is None:
            return None
        return copy.deepcopy(self._with_steps(run))

    async def list_incomplete_runs(self):
        return [
            copy.deepcopy(self._with_steps(run))
            for run in self._runs.values()
            if run.status == WorkflowRunStatus.RUNNING
        ]

    def _with_steps(self, run: WorkflowRun) -> WorkflowRun:
        run.steps = list(self._steps.get(run.run_id, {}))
        return run
