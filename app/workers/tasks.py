"""
Celery task definitions for prompt evaluation.

Each task evaluates exactly one test case against one prompt for a run.
Fanning out over the test cases of a run is the caller's job.
"""

import asyncio
from typing import Any

from billiard.process import current_process
from celery.signals import worker_process_init, worker_process_shutdown
from loguru import logger
from pydantic import ValidationError

from app.evaluation.factory import get_evaluator
from app.evaluation.services.result_store import PostgresResultStore
from app.workers.celery_app import celery_app
from promptlab_core.config import settings
from promptlab_core.domain.exceptions import PreconditionError
from promptlab_core.domain.models import (
    EvaluationReceipt,
    PromptCandidate,
    PromptTestResults,
    TestCase,
)
from promptlab_core.infrastructure.postgres import Database
from promptlab_core.infrastructure.telemetry import setup_telemetry, shutdown_telemetry
from promptlab_core.logging import setup_logging

_database: Database | None = None
_schema_ready = False


def _metrics_port() -> int | None:
    """One /metrics port per pool process, offset by the process index."""
    if settings.METRICS_PORT is None:
        return None
    return settings.METRICS_PORT + (getattr(current_process(), "index", None) or 0)


@worker_process_init.connect
def init_worker_process(**kwargs: Any) -> None:
    """Configure logging, telemetry and the shared database handle once per worker process."""
    global _database
    setup_logging(settings.LOG_LEVEL, settings.SERVICE_NAME)
    setup_telemetry(metrics_port=_metrics_port())
    _database = Database(settings.POSTGRES_DSN)


@worker_process_shutdown.connect
def shutdown_worker_process(**kwargs: Any) -> None:
    shutdown_telemetry()


def get_database() -> Database:
    global _database
    if _database is None:
        _database = Database(settings.POSTGRES_DSN)
    return _database


async def _ensure_schema(database: Database) -> None:
    """Create the results table on the first task of this process."""
    global _schema_ready
    if _schema_ready:
        return
    # Left unset on failure so the next task tries again
    await PostgresResultStore(database, table=settings.RESULTS_TABLE).ensure_schema()
    _schema_ready = True


async def _evaluate(
    prompt: PromptCandidate, test_case: TestCase, run: PromptTestResults
) -> EvaluationReceipt:
    database = get_database()
    await _ensure_schema(database)
    # Backends hold loop-bound HTTP clients, so they live for one event loop only
    evaluator = get_evaluator(database=database)
    try:
        return await evaluator.process_test_case(prompt, test_case, run)
    finally:
        await evaluator.aclose()


@celery_app.task(
    bind=True,
    name="app.workers.tasks.evaluate_test_case",
    max_retries=0,
)
def evaluate_test_case(
    self,
    prompt: dict,
    test_case: dict,
    run: dict,
) -> dict:
    """
    Celery task to evaluate one test case against a prompt.

    The pipeline retries its own external calls and records the outcome in the
    result store, so the task is never retried by Celery.

    Args:
        self: Celery task instance.
        prompt: PromptCandidate record (camelCase or snake_case keys).
        test_case: TestCase record.
        run: PromptTestResults record.

    Returns:
        dict: {"status": "finished", ...receipt} or {"status": "rejected", "error": ...}
    """
    try:
        prompt_model = PromptCandidate.model_validate(prompt)
        test_case_model = TestCase.model_validate(test_case)
        run_model = PromptTestResults.model_validate(run)
    except ValidationError as e:
        logger.error(f"Rejected evaluation task with invalid payload: {e}")
        return {"status": "rejected", "error": str(e)}

    logger.info(
        f"[{run_model.id}/{test_case_model.id}] Starting evaluation task {self.request.id}"
    )

    try:
        receipt = asyncio.run(_evaluate(prompt_model, test_case_model, run_model))
    except PreconditionError as e:
        logger.error(f"Rejected evaluation task: {e}")
        return {"status": "rejected", "error": str(e)}

    return {"status": "finished", **receipt.model_dump()}
