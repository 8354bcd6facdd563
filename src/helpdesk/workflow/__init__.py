"""
Workflow Module
===============

Step-sequenced workflow execution with a per-run step journal.

Contains:
- Journal: run and step persistence (in-memory and SQLAlchemy)
- Engine: ``StepRunner.run_step`` retry/memoization and ``WorkflowEngine``
- Dispatcher: event routing with inline and background (APScheduler) runs
"""

from helpdesk.workflow.dispatcher import EventDispatcher
from helpdesk.workflow.engine import (
    StepRunner,
    WorkflowEngine,
    WorkflowFunction,
    backoff_delay,
    is_retriable,
)
from helpdesk.workflow.journal import (
    InMemoryStepJournal,
    StepJournal,
    StepRecord,
    WorkflowRun,
)
from helpdesk.workflow.repositories import SQLAlchemyStepJournal

__all__ = [
    "EventDispatcher",
    "StepRunner",
    "WorkflowEngine",
    "WorkflowFunction",
    "backoff_delay",
    "is_retriable",
    "InMemoryStepJournal",
    "StepJournal",
    "StepRecord",
    "WorkflowRun",
    "SQLAlchemyStepJournal",
]
