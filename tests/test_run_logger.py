"""
Tests for the run logger and run log queries.
"""

from datetime import UTC, datetime, timedelta
from unittest.mock import MagicMock

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from autonest.db.models import WorkflowRunLog
from autonest.models.api import RunStatus
from autonest.models.domain import RunLogEntry
from autonest.services.run_logger import RunLogger, RunLogQueries


def make_entry(
    workflow_id: str = "tool-linkedin-post-generator",
    user_id: str = "firebase-uid-123",
    status: RunStatus = RunStatus.COMPLETED,
    **kwargs,
) -> RunLogEntry:
    if status == RunStatus.FAILED:
        kwargs.setdefault("error_details", "Upstream request failed with status 500.")
    return RunLogEntry(
        workflow_id=workflow_id,
        workflow_name="LinkedIn Post Generator",
        user_id=user_id,
        status=status,
        credit_cost_at_run=2,
        **kwargs,
    )


async def insert_run(session_factory, timestamp: datetime, **kwargs) -> None:
    entry = make_entry(**kwargs)
    async with session_factory() as session:
        session.add(
            WorkflowRunLog(
                workflow_id=entry.workflow_id,
                workflow_name=entry.workflow_name,
                user_id=entry.user_id,
                status=entry.status,
                credit_cost_at_run=entry.credit_cost_at_run,
                input_details={},
                error_details=entry.error_details,
                timestamp=timestamp,
            )
        )
        await session.commit()


class TestRunLogger:
    """Tests for RunLogger.record."""

    async def test_record_persists_entry(self, run_logger, session_factory):
        """A recorded entry is stored with its payloads."""
        run_id = await run_logger.record(
            make_entry(
                user_email="user@example.com",
                input_details={"linkedinKeyword": "ai"},
                output_summary="Hello post",
                full_output={"postText": "Hello post"},
            )
        )

        assert run_id is not None
        async with session_factory() as session:
            (row,) = (await session.execute(select(WorkflowRunLog))).scalars().all()
        assert str(row.id) == run_id
        assert row.status == RunStatus.COMPLETED
        assert row.input_details == {"linkedinKeyword": "ai"}
        assert row.full_output == {"postText": "Hello post"}

    @pytest.mark.parametrize(
        "error",
        [
            OperationalError("INSERT", {}, Exception("database is locked")),
            ConnectionRefusedError(111, "Connection refused"),
        ],
    )
    async def test_write_failure_is_swallowed(self, error):
        """A failing write or an unreachable database returns None instead of raising."""

        class FailingSession:
            def add(self, row):
                pass

            async def commit(self):
                raise error

            async def __aenter__(self):
                return self

            async def __aexit__(self, *exc_info):
                return False

        factory = MagicMock(return_value=FailingSession())
        result = await RunLogger(factory).record(make_entry())

        assert result is None

    def test_failed_entry_requires_error_details(self):
        """Failed entries without error details are rejected."""
        with pytest.raises(ValueError):
            RunLogEntry(
                workflow_id="tool-blog-factory",
                workflow_name="Blog Factory",
                user_id="uid",
                status=RunStatus.FAILED,
                credit_cost_at_run=5,
            )


class TestRunLogQueries:
    """Tests for RunLogQueries."""

    async def test_list_for_account_newest_first(self, session_factory):
        """Only the user's runs are returned, newest first, filtered by workflow."""
        now = datetime.now(UTC)
        await insert_run(session_factory, now - timedelta(minutes=2))
        await insert_run(session_factory, now, workflow_id="tool-blog-factory")
        await insert_run(session_factory, now - timedelta(minutes=1), user_id="someone-else")

        async with session_factory() as session:
            queries = RunLogQueries(session)
            runs = await queries.list_for_account("firebase-uid-123")
            linkedin_runs = await queries.list_for_account(
                "firebase-uid-123", workflow_id="tool-linkedin-post-generator"
            )

        assert [run.workflow_id for run in runs] == [
            "tool-blog-factory",
            "tool-linkedin-post-generator",
        ]
        assert len(linkedin_runs) == 1

    async def test_list_recent_filters_status_and_counts(self, session_factory):
        """Status filter applies to both the page and the total."""
        now = datetime.now(UTC)
        for minutes in range(3):
            await insert_run(session_factory, now - timedelta(minutes=minutes))
        await insert_run(session_factory, now, status=RunStatus.FAILED)

        async with session_factory() as session:
            queries = RunLogQueries(session)
            failed, failed_total = await queries.list_recent(status=RunStatus.FAILED)
            page, total = await queries.list_recent(limit=2, offset=1)

        assert failed_total == 1
        assert failed[0].status == RunStatus.FAILED
        assert total == 4
        assert len(page) == 2

    async def test_usage_by_workflow(self, session_factory):
        """Run counts are grouped per workflow."""
        now = datetime.now(UTC)
        await insert_run(session_factory, now - timedelta(minutes=1))
        await insert_run(session_factory, now)
        await insert_run(session_factory, now, workflow_id="tool-blog-factory")

        async with session_factory() as session:
            usage = await RunLogQueries(session).usage_by_workflow("firebase-uid-123")

        assert usage["tool-linkedin-post-generator"][0] == 2
        assert usage["tool-blog-factory"][0] == 1
        assert usage["tool-blog-factory"][1] is not None
