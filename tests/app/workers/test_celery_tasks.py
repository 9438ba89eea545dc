"""
Unit tests for Celery app configuration and tasks.

Tests cover:
1. Celery app configuration (broker, backend, serialization)
2. Task registration
3. Task execution against fake backends
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from app.evaluation.services.orchestrator import PromptEvaluator
from app.evaluation.services.result_store import InMemoryResultStore
from promptlab_core.domain.models import TestResultsStatus
from tests.app.evaluation.fakes import FakeCompletionClient, FakeEmbeddingClient


@pytest.fixture
def payloads(sample_prompt, sample_test_case, sample_run):
    """Task arguments as they arrive from the broker (JSON, camelCase)."""
    return {
        "prompt": sample_prompt.model_dump(mode="json", by_alias=True),
        "test_case": sample_test_case.model_dump(mode="json", by_alias=True),
        "run": sample_run.model_dump(mode="json", by_alias=True),
    }


@pytest.fixture
def fake_evaluator(fast_policy):
    store = InMemoryResultStore()
    evaluator = PromptEvaluator(
        FakeCompletionClient(),
        FakeEmbeddingClient(),
        store,
        completion_policy=fast_policy,
        embedding_policy=fast_policy,
    )
    with patch("app.workers.tasks.get_evaluator", return_value=evaluator) as factory, patch(
        "app.workers.tasks.get_database", return_value=MagicMock()
    ), patch("app.workers.tasks._ensure_schema", new=AsyncMock()) as ensure_schema:
        yield {
            "evaluator": evaluator,
            "store": store,
            "factory": factory,
            "ensure_schema": ensure_schema,
        }


class TestCeleryAppConfiguration:
    """Tests for Celery app setup."""

    def test_celery_app_uses_configured_broker(self):
        from app.workers.celery_app import celery_app
        from promptlab_core.config import settings

        assert celery_app.conf.broker_url == settings.CELERY_BROKER_URL

    def test_celery_app_uses_configured_backend(self):
        from app.workers.celery_app import celery_app
        from promptlab_core.config import settings

        assert celery_app.conf.result_backend == settings.CELERY_RESULT_BACKEND

    def test_celery_app_has_task_serializer_json(self):
        """Tasks should use JSON serialization for safety."""
        from app.workers.celery_app import celery_app

        assert celery_app.conf.task_serializer == "json"


class TestEvaluateTestCaseTask:
    """Tests for the evaluate_test_case Celery task."""

    def test_task_is_registered(self):
        from app.workers.celery_app import celery_app
        from app.workers.tasks import evaluate_test_case

        assert evaluate_test_case.name == "app.workers.tasks.evaluate_test_case"
        assert evaluate_test_case.name in celery_app.tasks

    def test_task_is_never_retried_by_celery(self):
        from app.workers.tasks import evaluate_test_case

        assert evaluate_test_case.max_retries == 0

    def test_task_runs_evaluation_and_returns_receipt(self, payloads, fake_evaluator):
        from app.workers.tasks import evaluate_test_case

        result = evaluate_test_case.run(**payloads)

        assert result == {
            "status": "finished",
            "run_id": "run-1",
            "test_case_id": "case-1",
            "recorded": True,
        }
        store = fake_evaluator["store"]
        assert store.history("run-1", "case-1") == [
            TestResultsStatus.IN_PROGRESS,
            TestResultsStatus.DONE,
        ]

    def test_task_closes_evaluator(self, payloads, fake_evaluator):
        from app.workers.tasks import evaluate_test_case

        evaluator = fake_evaluator["evaluator"]
        with patch.object(evaluator, "aclose", new=AsyncMock()) as aclose:
            evaluate_test_case.run(**payloads)

        aclose.assert_awaited_once()

    def test_invalid_payload_is_rejected_without_evaluating(self, payloads, fake_evaluator):
        from app.workers.tasks import evaluate_test_case

        payloads["test_case"] = {**payloads["test_case"], "goodCompletions": []}

        result = evaluate_test_case.run(**payloads)

        assert result["status"] == "rejected"
        fake_evaluator["factory"].assert_not_called()

    def test_missing_test_case_id_is_rejected(self, payloads, fake_evaluator):
        from app.workers.tasks import evaluate_test_case

        payloads["test_case"] = {**payloads["test_case"], "id": None}

        result = evaluate_test_case.run(**payloads)

        assert result["status"] == "rejected"
        assert "Test case id is missing" in result["error"]
        assert fake_evaluator["store"].history("run-1", "case-1") == []

    def test_task_creates_schema_before_evaluating(self, payloads, fake_evaluator):
        from app.workers.tasks import evaluate_test_case

        evaluate_test_case.run(**payloads)

        fake_evaluator["ensure_schema"].assert_awaited_once()

    def test_failed_evaluation_still_finishes(self, payloads, fake_evaluator):
        """Backend failures end in a persisted ERROR, not a task failure."""
        from app.workers.tasks import evaluate_test_case

        evaluator = fake_evaluator["evaluator"]
        evaluator._completions = FakeCompletionClient(failures=10)

        result = evaluate_test_case.run(**payloads)

        assert result["status"] == "finished"
        assert fake_evaluator["store"].history("run-1", "case-1")[-1] is TestResultsStatus.ERROR


class TestWorkerProcessInit:
    def test_init_configures_logging_telemetry_and_database(self):
        import app.workers.tasks as tasks

        with patch.object(tasks, "setup_logging") as setup_logging, patch.object(
            tasks, "setup_telemetry"
        ) as setup_telemetry, patch.object(tasks, "_database", None):
            tasks.init_worker_process()

            setup_logging.assert_called_once_with(
                tasks.settings.LOG_LEVEL, tasks.settings.SERVICE_NAME
            )
            setup_telemetry.assert_called_once()
            assert tasks.get_database() is tasks._database
            assert tasks._database.dsn == tasks.settings.POSTGRES_DSN

    def test_metrics_port_is_offset_by_pool_index(self):
        import app.workers.tasks as tasks

        process = MagicMock(index=2)
        with patch.object(tasks.settings, "METRICS_PORT", 9464), patch.object(
            tasks, "current_process", return_value=process
        ), patch.object(tasks, "setup_logging"), patch.object(
            tasks, "setup_telemetry"
        ) as setup_telemetry, patch.object(tasks, "_database", None):
            tasks.init_worker_process()

        setup_telemetry.assert_called_once_with(metrics_port=9466)

    def test_no_metrics_port_configured(self):
        import app.workers.tasks as tasks

        with patch.object(tasks.settings, "METRICS_PORT", None), patch.object(
            tasks, "setup_logging"
        ), patch.object(tasks, "setup_telemetry") as setup_telemetry, patch.object(
            tasks, "_database", None
        ):
            tasks.init_worker_process()

        setup_telemetry.assert_called_once_with(metrics_port=None)

    def test_shutdown_flushes_telemetry(self):
        import app.workers.tasks as tasks

        with patch.object(tasks, "shutdown_telemetry") as shutdown_telemetry:
            tasks.shutdown_worker_process()

        shutdown_telemetry.assert_called_once()


class TestEnsureSchema:
    """The results table is created once per worker process."""

    def test_schema_created_once(self):
        import app.workers.tasks as tasks

        with patch.object(tasks, "PostgresResultStore") as store_cls, patch.object(
            tasks, "_schema_ready", False
        ):
            store_cls.return_value.ensure_schema = AsyncMock()
            database = MagicMock()

            asyncio.run(tasks._ensure_schema(database))
            asyncio.run(tasks._ensure_schema(database))

            store_cls.assert_called_once_with(database, table=tasks.settings.RESULTS_TABLE)
            store_cls.return_value.ensure_schema.assert_awaited_once()
            assert tasks._schema_ready is True

    def test_failed_creation_is_retried_by_next_task(self):
        import app.workers.tasks as tasks

        with patch.object(tasks, "PostgresResultStore") as store_cls, patch.object(
            tasks, "_schema_ready", False
        ):
            store_cls.return_value.ensure_schema = AsyncMock(
                side_effect=[ConnectionError("db down"), None]
            )

            with pytest.raises(ConnectionError):
                asyncio.run(tasks._ensure_schema(MagicMock()))
            assert tasks._schema_ready is False

            asyncio.run(tasks._ensure_schema(MagicMock()))
            assert tasks._schema_ready is True
