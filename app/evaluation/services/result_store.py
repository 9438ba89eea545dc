"""
ResultStore implementations: persisted per-(run, test case) status records.

Status transitions:
- IN_PROGRESS may be written over no record or any status (each evaluation
  invocation starts fresh, e.g. when a run is retried).
- DONE and ERROR may only be written over IN_PROGRESS. Rewriting the same
  terminal status is accepted so that a repeated write is idempotent.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone

from loguru import logger
from psycopg import sql
from psycopg.types.json import Jsonb

from promptlab_core.domain.exceptions import InvalidStatusTransitionError
from promptlab_core.domain.models import TestResultRecord, TestResultsStatus
from promptlab_core.infrastructure.postgres import Database

Key = tuple[str, str]


def check_transition(
    current: TestResultsStatus | None, new: TestResultsStatus
) -> None:
    """
    Validate a status write for one key.

    Raises:
        InvalidStatusTransitionError: If new is terminal and the record is not
            IN_PROGRESS (or already in that same terminal status).
    """
    if new is TestResultsStatus.IN_PROGRESS:
        return
    if current is TestResultsStatus.IN_PROGRESS or current is new:
        return
    raise InvalidStatusTransitionError(
        f"Cannot move result from {current.value if current else 'no record'} to {new.value}"
    )


def _now() -> datetime:
    return datetime.now(timezone.utc)


class InMemoryResultStore:
    """
    Result store kept in process memory.

    Used for local runs and tests. Keeps the full status history per key so
    callers can check that a record moved IN_PROGRESS -> terminal exactly once.
    """

    def __init__(self):
        self._records: dict[Key, TestResultRecord] = {}
        self._history: dict[Key, list[TestResultsStatus]] = {}
        self._lock = asyncio.Lock()

    async def set_status(
        self,
        run_id: str,
        test_case_id: str,
        status: TestResultsStatus,
        message: str | None = None,
    ) -> None:
        if status is TestResultsStatus.DONE:
            raise ValueError("DONE results must be written with save_result()")

        record = TestResultRecord(
            status=status,
            error_message=(message or "unknown error") if status is TestResultsStatus.ERROR else None,
            updated_at=_now(),
        )
        await self._write((run_id, test_case_id), record)

    async def save_result(
        self, run_id: str, test_case_id: str, score: float, completions: list[str]
    ) -> None:
        record = TestResultRecord(
            status=TestResultsStatus.DONE,
            cosine_similarity_score=score,
            llm_completions=list(completions),
            updated_at=_now(),
        )
        await self._write((run_id, test_case_id), record)

    async def _write(self, key: Key, record: TestResultRecord) -> None:
        async with self._lock:
            current = self._records.get(key)
            check_transition(current.status if current else None, record.status)
            self._records[key] = record
            self._history.setdefault(key, []).append(record.status)

    async def get_result(self, run_id: str, test_case_id: str) -> TestResultRecord | None:
        return self._records.get((run_id, test_case_id))

    async def list_results(self, run_id: str) -> dict[str, TestResultRecord]:
        return {
            test_case_id: record
            for (record_run_id, test_case_id), record in self._records.items()
            if record_run_id == run_id
        }

    def history(self, run_id: str, test_case_id: str) -> list[TestResultsStatus]:
        """Statuses written for the key, oldest first."""
        return list(self._history.get((run_id, test_case_id), []))


class PostgresResultStore:
    """
    Result store backed by a PostgreSQL table.

    Every write runs in its own transaction, committed before the method
    returns. Terminal writes are conditional on the current status, so a
    record never leaves DONE or ERROR except through a new IN_PROGRESS.

    Usage:
        store = PostgresResultStore(Database(settings.POSTGRES_DSN))
        await store.ensure_schema()
        await store.set_status("run-1", "case-1", TestResultsStatus.IN_PROGRESS)
        await store.save_result("run-1", "case-1", 0.87, ["Hi there!"])
    """

    def __init__(self, database: Database, table: str = "test_case_results"):
        self._db = database
        self._table = sql.Identifier(table)

    async def ensure_schema(self) -> None:
        """Create the results table if it does not exist."""
        query = sql.SQL(
            """
            CREATE TABLE IF NOT EXISTS {table} (
                run_id TEXT NOT NULL,
                test_case_id TEXT NOT NULL,
                status TEXT NOT NULL,
                error_message TEXT,
                cosine_similarity_score DOUBLE PRECISION
                    CHECK (cosine_similarity_score BETWEEN -1 AND 1),
                llm_completions JSONB,
                updated_at TIMESTAMPTZ NOT NULL,
                PRIMARY KEY (run_id, test_case_id)
            )
            """
        ).format(table=self._table)

        async with self._db.connection() as conn:
            await conn.execute(query)
            await conn.commit()

        logger.info("Ensured results table exists")

    async def set_status(
        self,
        run_id: str,
        test_case_id: str,
        status: TestResultsStatus,
        message: str | None = None,
    ) -> None:
        """
        Persist a status for one (run, test case) pair.

        Args:
            run_id: The run identifier.
            test_case_id: The test case identifier.
            status: IN_PROGRESS or ERROR.
            message: Error message (ERROR only).
        """
        if status is TestResultsStatus.DONE:
            raise ValueError("DONE results must be written with save_result()")

        if status is TestResultsStatus.IN_PROGRESS:
            await self._start(run_id, test_case_id)
        else:
            await self._finish(
                run_id,
                test_case_id,
                status,
                error_message=message or "unknown error",
            )

        logger.debug(f"[{run_id}/{test_case_id}] status={status.value}")

    async def save_result(
        self, run_id: str, test_case_id: str, score: float, completions: list[str]
    ) -> None:
        """
        Persist a DONE record with its score and the generated completions.
        """
        # Validates the score range before anything is written
        TestResultRecord(
            status=TestResultsStatus.DONE,
            cosine_similarity_score=score,
            llm_completions=completions,
        )
        await self._finish(
            run_id,
            test_case_id,
            TestResultsStatus.DONE,
            score=score,
            completions=completions,
        )

        logger.info(f"[{run_id}/{test_case_id}] Saved result with score {score:.4f}")

    async def _start(self, run_id: str, test_case_id: str) -> None:
        query = sql.SQL(
            """
            INSERT INTO {table}
            (run_id, test_case_id, status, error_message,
             cosine_similarity_score, llm_completions, updated_at)
            VALUES (%s, %s, %s, NULL, NULL, NULL, %s)
            ON CONFLICT (run_id, test_case_id) DO UPDATE
            SET status = EXCLUDED.status, error_message = NULL,
                cosine_similarity_score = NULL, llm_completions = NULL,
                updated_at = EXCLUDED.updated_at
            """
        ).format(table=self._table)

        async with self._db.connection() as conn:
            await conn.execute(
                query,
                (run_id, test_case_id, TestResultsStatus.IN_PROGRESS.value, _now()),
            )
            await conn.commit()

    async def _finish(
        self,
        run_id: str,
        test_case_id: str,
        status: TestResultsStatus,
        *,
        error_message: str | None = None,
        score: float | None = None,
        completions: list[str] | None = None,
    ) -> None:
        query = sql.SQL(
            """
            UPDATE {table}
            SET status = %s, error_message = %s,
                cosine_similarity_score = %s, llm_completions = %s,
                updated_at = %s
            WHERE run_id = %s AND test_case_id = %s
              AND status IN (%s, %s)
            """
        ).format(table=self._table)

        async with self._db.connection() as conn:
            cursor = await conn.execute(
                query,
                (
                    status.value,
                    error_message,
                    score,
                    Jsonb(completions) if completions is not None else None,
                    _now(),
                    run_id,
                    test_case_id,
                    TestResultsStatus.IN_PROGRESS.value,
                    status.value,
                ),
            )
            updated = cursor.rowcount
            await conn.commit()

        if updated == 0:
            raise InvalidStatusTransitionError(
                f"No IN_PROGRESS result for run={run_id} test_case={test_case_id}; "
                f"refusing to write {status.value}"
            )

    async def get_result(self, run_id: str, test_case_id: str) -> TestResultRecord | None:
        """Get one record, or None if nothing was written for the key."""
        query = sql.SQL(
            """
            SELECT status, error_message, cosine_similarity_score,
                   llm_completions, updated_at
            FROM {table}
            WHERE run_id = %s AND test_case_id = %s
            """
        ).format(table=self._table)

        async with self._db.connection() as conn:
            cursor = await conn.execute(query, (run_id, test_case_id))
            row = await cursor.fetchone()

        return self._row_to_record(row) if row else None

    async def list_results(self, run_id: str) -> dict[str, TestResultRecord]:
        """Get every record of a run, keyed by test case id."""
        query = sql.SQL(
            """
            SELECT test_case_id, status, error_message, cosine_similarity_score,
                   llm_completions, updated_at
            FROM {table}
            WHERE run_id = %s
            ORDER BY test_case_id
            """
        ).format(table=self._table)

        async with self._db.connection() as conn:
            cursor = await conn.execute(query, (run_id,))
            rows = await cursor.fetchall()

        return {row[0]: self._row_to_record(row[1:]) for row in rows}

    @staticmethod
    def _row_to_record(row) -> TestResultRecord:
        return TestResultRecord(
            status=TestResultsStatus(row[0]),
            error_message=row[1],
            cosine_similarity_score=row[2],
            llm_completions=row[3],
            updated_at=row[4],
        )
