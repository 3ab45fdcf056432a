"""
Run Logger - Append-only audit of tool runs and purchases.

Writes are best-effort: a failed write is logged and counted but never
propagated, so it cannot undo a ledger mutation or fail the user's request.
"""

from datetime import datetime
from uuid import uuid4

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from structlog import get_logger

from autonest.db.models import WorkflowRunLog
from autonest.models.api import RunStatus
from autonest.models.domain import RunLogEntry
from autonest.observability.metrics import metrics

logger = get_logger(__name__)


class RunLogger:
    """Records one immutable WorkflowRunLog row per attempt."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def record(self, entry: RunLogEntry) -> str | None:
        """
        Append a run log entry in its own transaction.

        Returns:
            The new row id, or None when the write failed
        """
        row = WorkflowRunLog(
            id=uuid4(),
            workflow_id=entry.workflow_id,
            workflow_name=entry.workflow_name,
            user_id=entry.user_id,
            user_email=entry.user_email,
            status=entry.status,
            credit_cost_at_run=entry.credit_cost_at_run,
            input_details=entry.input_details,
            output_summary=entry.output_summary,
            full_output=entry.full_output,
            error_details=entry.error_details,
        )
        try:
            async with self.session_factory() as session:
                session.add(row)
                await session.commit()
        except (SQLAlchemyError, OSError) as e:
            metrics.run_log_write_failures_total.inc()
            logger.error(
                "run_log_write_failed",
                workflow_id=entry.workflow_id,
                user_id=entry.user_id,
                status=entry.status.value,
                error=str(e),
            )
            return None

        logger.info(
            "run_logged",
            run_id=str(row.id),
            workflow_id=entry.workflow_id,
            user_id=entry.user_id,
            status=entry.status.value,
            credit_cost=entry.credit_cost_at_run,
        )
        return str(row.id)


class RunLogQueries:
    """Read side of the run log for history and admin views."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def list_for_account(
        self,
        user_id: str,
        workflow_id: str | None = None,
        limit: int = 50,
    ) -> list[WorkflowRunLog]:
        """Most recent runs of one user, optionally for a single workflow."""
        query = select(WorkflowRunLog).where(WorkflowRunLog.user_id == user_id)
        if workflow_id:
            query = query.where(WorkflowRunLog.workflow_id == workflow_id)
        query = query.order_by(WorkflowRunLog.timestamp.desc()).limit(limit)

        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def list_recent(
        self,
        limit: int = 50,
        offset: int = 0,
        status: RunStatus | None = None,
    ) -> tuple[list[WorkflowRunLog], int]:
        """Most recent runs across all users, with the total count."""
        count_query = select(func.count()).select_from(WorkflowRunLog)
        query = select(WorkflowRunLog)
        if status:
            count_query = count_query.where(WorkflowRunLog.status == status)
            query = query.where(WorkflowRunLog.status == status)

        total = (await self.session.execute(count_query)).scalar() or 0

        result = await self.session.execute(
            query.order_by(WorkflowRunLog.timestamp.desc()).offset(offset).limit(limit)
        )
        return list(result.scalars().all()), total

    async def usage_by_workflow(self, user_id: str) -> dict[str, tuple[int, datetime | None]]:
        """Run count and last run time per workflow for one user."""
        result = await self.session.execute(
            select(
                WorkflowRunLog.workflow_id,
                func.count(),
                func.max(WorkflowRunLog.timestamp),
            )
            .where(WorkflowRunLog.user_id == user_id)
            .group_by(WorkflowRunLog.workflow_id)
        )
        return {workflow_id: (count, last_run) for workflow_id, count, last_run in result.all()}
