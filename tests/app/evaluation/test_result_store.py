"""
Unit tests for the result stores.

The stores should:
1. Accept IN_PROGRESS over anything, terminal statuses only over IN_PROGRESS
2. Enforce the record presence rules (score/completions on DONE, message on ERROR)
3. Keep records of different (run, test case) keys independent
"""

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest
from psycopg.types.json import Jsonb
from pydantic import ValidationError

from app.evaluation.services.result_store import (
    InMemoryResultStore,
    PostgresResultStore,
    check_transition,
)
from promptlab_core.domain.exceptions import InvalidStatusTransitionError
from promptlab_core.domain.models import TestResultsStatus

IN_PROGRESS = TestResultsStatus.IN_PROGRESS
DONE = TestResultsStatus.DONE
ERROR = TestResultsStatus.ERROR


class TestCheckTransition:
    @pytest.mark.parametrize("current", [None, IN_PROGRESS, DONE, ERROR])
    def test_in_progress_allowed_from_anything(self, current):
        check_transition(current, IN_PROGRESS)

    @pytest.mark.parametrize("new", [DONE, ERROR])
    def test_terminal_allowed_from_in_progress(self, new):
        check_transition(IN_PROGRESS, new)

    @pytest.mark.parametrize("status", [DONE, ERROR])
    def test_repeating_terminal_status_is_idempotent(self, status):
        check_transition(status, status)

    @pytest.mark.parametrize(
        "current,new", [(None, DONE), (None, ERROR), (DONE, ERROR), (ERROR, DONE)]
    )
    def test_terminal_rejected_otherwise(self, current, new):
        with pytest.raises(InvalidStatusTransitionError):
            check_transition(current, new)


class TestInMemoryResultStore:
    @pytest.mark.asyncio
    async def test_done_record_carries_score_and_completions(self):
        store = InMemoryResultStore()

        await store.set_status("run-1", "case-1", IN_PROGRESS)
        await store.save_result("run-1", "case-1", 0.87, ["Hi there!"])

        record = await store.get_result("run-1", "case-1")
        assert record.status is DONE
        assert record.cosine_similarity_score == 0.87
        assert record.llm_completions == ["Hi there!"]
        assert record.error_message is None
        assert record.updated_at is not None

    @pytest.mark.asyncio
    async def test_error_record_carries_message_only(self):
        store = InMemoryResultStore()

        await store.set_status("run-1", "case-1", IN_PROGRESS)
        await store.set_status("run-1", "case-1", ERROR, "completion request failed")

        record = await store.get_result("run-1", "case-1")
        assert record.status is ERROR
        assert record.error_message == "completion request failed"
        assert record.cosine_similarity_score is None
        assert record.llm_completions is None

    @pytest.mark.asyncio
    async def test_error_without_message_gets_placeholder(self):
        store = InMemoryResultStore()

        await store.set_status("run-1", "case-1", IN_PROGRESS)
        await store.set_status("run-1", "case-1", ERROR)

        record = await store.get_result("run-1", "case-1")
        assert record.error_message == "unknown error"

    @pytest.mark.asyncio
    async def test_done_through_set_status_is_rejected(self):
        store = InMemoryResultStore()

        with pytest.raises(ValueError):
            await store.set_status("run-1", "case-1", DONE)

    @pytest.mark.asyncio
    async def test_save_without_in_progress_is_rejected(self):
        store = InMemoryResultStore()

        with pytest.raises(InvalidStatusTransitionError):
            await store.save_result("run-1", "case-1", 0.5, ["Hi"])

        assert await store.get_result("run-1", "case-1") is None

    @pytest.mark.asyncio
    async def test_out_of_range_score_is_rejected(self):
        store = InMemoryResultStore()
        await store.set_status("run-1", "case-1", IN_PROGRESS)

        with pytest.raises(ValidationError):
            await store.save_result("run-1", "case-1", 1.2, ["Hi"])

        record = await store.get_result("run-1", "case-1")
        assert record.status is IN_PROGRESS

    @pytest.mark.asyncio
    async def test_rerun_starts_fresh(self):
        store = InMemoryResultStore()
        await store.set_status("run-1", "case-1", IN_PROGRESS)
        await store.set_status("run-1", "case-1", ERROR, "boom")

        await store.set_status("run-1", "case-1", IN_PROGRESS)
        await store.save_result("run-1", "case-1", 0.1, ["ok"])

        assert store.history("run-1", "case-1") == [IN_PROGRESS, ERROR, IN_PROGRESS, DONE]
        record = await store.get_result("run-1", "case-1")
        assert record.error_message is None

    @pytest.mark.asyncio
    async def test_keys_are_independent(self):
        store = InMemoryResultStore()
        await store.set_status("run-1", "case-1", IN_PROGRESS)
        await store.set_status("run-1", "case-2", IN_PROGRESS)
        await store.set_status("run-2", "case-1", IN_PROGRESS)

        await store.save_result("run-1", "case-1", 0.9, ["a"])
        await store.set_status("run-1", "case-2", ERROR, "bad")

        results = await store.list_results("run-1")
        assert set(results) == {"case-1", "case-2"}
        assert results["case-1"].status is DONE
        assert results["case-2"].status is ERROR
        assert (await store.get_result("run-2", "case-1")).status is IN_PROGRESS


class FakeConnection:
    """Minimal stand-in for psycopg.AsyncConnection."""

    def __init__(self, rowcount=1, rows=None):
        self.cursor = MagicMock()
        self.cursor.rowcount = rowcount
        self.cursor.fetchone = AsyncMock(return_value=rows[0] if rows else None)
        self.cursor.fetchall = AsyncMock(return_value=rows or [])
        self.execute = AsyncMock(return_value=self.cursor)
        self.commit = AsyncMock()


@pytest.fixture
def fake_connection():
    return FakeConnection()


@pytest.fixture
def mock_database(fake_connection):
    database = MagicMock()

    @asynccontextmanager
    async def connection():
        yield fake_connection

    database.connection = connection
    return database


def executed_params(conn):
    return conn.execute.call_args[0][1]


class TestPostgresResultStore:
    @pytest.mark.asyncio
    async def test_ensure_schema_creates_table(self, mock_database, fake_connection):
        store = PostgresResultStore(mock_database)

        await store.ensure_schema()

        fake_connection.execute.assert_awaited_once()
        fake_connection.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_in_progress_upserts_and_commits(self, mock_database, fake_connection):
        store = PostgresResultStore(mock_database)

        await store.set_status("run-1", "case-1", IN_PROGRESS)

        params = executed_params(fake_connection)
        assert params[:3] == ("run-1", "case-1", "IN_PROGRESS")
        fake_connection.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_error_update_is_conditional_on_in_progress(
        self, mock_database, fake_connection
    ):
        store = PostgresResultStore(mock_database)

        await store.set_status("run-1", "case-1", ERROR, "timed out")

        params = executed_params(fake_connection)
        assert params[0] == "ERROR"
        assert params[1] == "timed out"
        assert params[2] is None
        assert params[3] is None
        assert params[5:] == ("run-1", "case-1", "IN_PROGRESS", "ERROR")

    @pytest.mark.asyncio
    async def test_save_result_writes_score_and_completions(
        self, mock_database, fake_connection
    ):
        store = PostgresResultStore(mock_database)

        await store.save_result("run-1", "case-1", 0.42, ["Hello", "Hi"])

        params = executed_params(fake_connection)
        assert params[0] == "DONE"
        assert params[1] is None
        assert params[2] == 0.42
        assert isinstance(params[3], Jsonb)
        assert params[3].obj == ["Hello", "Hi"]

    @pytest.mark.asyncio
    async def test_terminal_write_without_in_progress_row_raises(
        self, mock_database, fake_connection
    ):
        fake_connection.cursor.rowcount = 0
        store = PostgresResultStore(mock_database)

        with pytest.raises(InvalidStatusTransitionError):
            await store.save_result("run-1", "case-1", 0.42, ["Hello"])

    @pytest.mark.asyncio
    async def test_out_of_range_score_never_reaches_database(
        self, mock_database, fake_connection
    ):
        store = PostgresResultStore(mock_database)

        with pytest.raises(ValidationError):
            await store.save_result("run-1", "case-1", -1.5, ["Hello"])

        fake_connection.execute.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_get_result_maps_row(self, mock_database, fake_connection):
        updated = datetime(2024, 5, 1, tzinfo=timezone.utc)
        fake_connection.cursor.fetchone = AsyncMock(
            return_value=("DONE", None, 0.5, ["Hi"], updated)
        )
        store = PostgresResultStore(mock_database)

        record = await store.get_result("run-1", "case-1")

        assert record.status is DONE
        assert record.cosine_similarity_score == 0.5
        assert record.llm_completions == ["Hi"]
        assert record.updated_at == updated

    @pytest.mark.asyncio
    async def test_get_result_missing_returns_none(self, mock_database):
        store = PostgresResultStore(mock_database)

        assert await store.get_result("run-1", "nope") is None

    @pytest.mark.asyncio
    async def test_list_results_keys_by_test_case(self, mock_database, fake_connection):
        updated = datetime(2024, 5, 1, tzinfo=timezone.utc)
        fake_connection.cursor.fetchall = AsyncMock(
            return_value=[
                ("case-1", "DONE", None, 0.5, ["Hi"], updated),
                ("case-2", "ERROR", "boom", None, None, updated),
            ]
        )
        store = PostgresResultStore(mock_database)

        results = await store.list_results("run-1")

        assert results["case-1"].status is DONE
        assert results["case-2"].error_message == "boom"
