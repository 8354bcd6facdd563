"""
Workflow Journal Repository
===========================

SQLAlchemy implementation of the step journal.
"""

from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from helpdesk.config import WorkflowRunStatus
from helpdesk.core import StorageError
from helpdesk.infrastructure.database import get_session_context
from helpdesk.workflow.journal import StepJournal, StepRecord, WorkflowRun, ensure_json
from helpdesk.workflow.models import WorkflowRunModel, WorkflowStepModel


class SQLAlchemyStepJournal(StepJournal):
    """Journal persisted in the ``workflow_runs``/``workflow_steps`` tables."""

    def __init__(self, session_maker: Optional[async_sessionmaker[AsyncSession]] = None):
        self._session_maker = session_maker

    async def start_run(self, run_id, function_id, event_name, event_data):
        try:
            async with get_session_context(self._session_maker) as session:
                model = await session.get(WorkflowRunModel, run_id)
                if model is None:
                    model = WorkflowRunModel(
                        run_id=run_id,
                        function_id=function_id,
                        event_name=event_name,
                        event_data=ensure_json(event_data),
                        status=WorkflowRunStatus.RUNNING.value,
                        started_at=datetime.now(timezone.utc),
                    )
                    session.add(model)
                else:
                    model.status = WorkflowRunStatus.RUNNING.value
                    model.finished_at = None
                    model.error = None
                await session.flush()
                steps = await self._step_names(session, run_id)
                return self._to_run(model, steps)
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to start workflow run {run_id}: {e}") from e

    async def get_step(self, run_id, name):
        try:
            async with get_session_context(self._session_maker) as session:
                stmt = select(WorkflowStepModel).where(
                    WorkflowStepModel.run_id == run_id,
                    WorkflowStepModel.name == name
                )
                model = (await session.execute(stmt)).scalar_one_or_none()
                if model is None:
                    return None
                return StepRecord(name=model.name, result=model.result, completed_at=model.completed_at)
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to read step {name} of run {run_id}: {e}") from e

    async def save_step(self, run_id, name, result):
        record = StepRecord(
            name=name,
            result=ensure_json(result),
            completed_at=datetime.now(timezone.utc),
        )
        try:
            async with get_session_context(self._session_maker) as session:
                session.add(WorkflowStepModel(
                    run_id=run_id,
                    name=name,
                    result=record.result,
                    completed_at=record.completed_at,
                ))
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to save step {name} of run {run_id}: {e}") from e
        return record

    async def finish_run(self, run_id, status, error=None):
        try:
            async with get_session_context(self._session_maker) as session:
                model = await session.get(WorkflowRunModel, run_id)
                if model is None:
                    raise StorageError(f"Workflow run {run_id} does not exist")
                model.status = WorkflowRunStatus(status).value
                model.error = error
                model.finished_at = datetime.now(timezone.utc)
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to finish workflow run {run_id}: {e}") from e

    async def get_run(self, run_id):
        try:
            async with get_session_context(self._session_maker) as session:
                model = await session.get(WorkflowRunModel, run_id)
                if model is None:
                    return None
                return self._to_run(model, await self._step_names(session, run_id))
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to read workflow run {run_id}: {e}") from e

    async def list_incomplete_runs(self) -> List[WorkflowRun]:
        try:
            async with get_session_context(self._session_maker) as session:
                stmt = (
                    select(WorkflowRunModel)
                    .where(WorkflowRunModel.status == WorkflowRunStatus.RUNNING.value)
                    .order_by(WorkflowRunModel.started_at)
                )
                models = (await session.execute(stmt)).scalars().all()
                return [
                    self._to_run(model, await self._step_names(session, model.run_id))
                    for model in models
                ]
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to list incomplete workflow runs: {e}") from e

    @staticmethod
    async def _step_names(session: AsyncSession, run_id: str) -> List[str]:
        stmt = (
            select(WorkflowStepModel.name)
            .where(WorkflowStepModel.run_id == run_id)
            .order_by(WorkflowStepModel.id)
        )
        return list((await session.execute(stmt)).scalars().all())

    @staticmethod
    def _to_run(model: WorkflowRunModel, steps: List[str]) -> WorkflowRun:
        return WorkflowRun(
            run_id=model.run_id,
            function_id=model.function_id,
            event_name=model.event_name,
            event_data=dict(model.event_data or {}),
            status=WorkflowRunStatus(model.status),
            started_at=model.started_at,
            finished_at=model.finished_at,
            error=model.error,
            steps=steps,
        )
