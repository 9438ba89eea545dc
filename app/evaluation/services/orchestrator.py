"""
Evaluation orchestrator: runs one test case against one prompt for a run.

Flow for a (run, test case) pair:
1. Mark the result IN_PROGRESS (before any external call)
2. Expand the prompt template with the test case fields
3. Request completions (retried)
4. Embed the generated and the reference completions (retried, separately)
5. Average each embedding set and score the pair with cosine similarity
6. Persist DONE with score and completions, or ERROR with a message

Only a missing identifier is raised to the caller; every other failure ends
in a persisted ERROR status.
"""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, TypeVar

from loguru import logger
from opentelemetry import trace

from app.evaluation.services.scoring import score_embeddings, validate_score
from app.evaluation.services.template import expand_template, fields_for_test_case
from promptlab_core.domain.exceptions import EvaluationCancelledError, PreconditionError
from promptlab_core.domain.interfaces import CompletionClient, EmbeddingClient, ResultStore
from promptlab_core.domain.models import (
    EvaluationReceipt,
    PromptCandidate,
    PromptTestResults,
    TestCase,
    TestResultsStatus,
)
from promptlab_core.infrastructure.telemetry import meter, tracer
from promptlab_core.runtime.retry import DEFAULT_RETRY_POLICY, RetryPolicy, run_with_retry

T = TypeVar("T")

evaluation_counter = meter.create_counter(
    "promptlab.evaluations",
    unit="1",
    description="Evaluations by persisted terminal status",
)
score_histogram = meter.create_histogram(
    "promptlab.cosine_similarity",
    description="Cosine similarity scores of DONE evaluations",
)


def describe_error(error: BaseException) -> str:
    """Human-readable message stored on ERROR records."""
    message = str(error)
    return f"{type(error).__name__}: {message}" if message else type(error).__name__


class PromptEvaluator:
    """
    Composes template expansion, completion and embedding backends, scoring
    and the result store into one evaluation per call.

    Instances hold no per-evaluation state, so one evaluator can run many
    evaluations concurrently (one asyncio task per test case).

    Usage:
        evaluator = PromptEvaluator(completions, embeddings, store)
        await evaluator.process_test_case(prompt, test_case, run)
        record = await store.get_result(run.id, test_case.id)
    """

    def __init__(
        self,
        completion_client: CompletionClient,
        embedding_client: EmbeddingClient,
        result_store: ResultStore,
        completion_policy: RetryPolicy | None = None,
        embedding_policy: RetryPolicy | None = None,
    ):
        self._completions = completion_client
        self._embeddings = embedding_client
        self._results = result_store
        self.completion_policy = completion_policy or DEFAULT_RETRY_POLICY
        self.embedding_policy = embedding_policy or DEFAULT_RETRY_POLICY

    async def process_test_case(
        self,
        prompt: PromptCandidate,
        test_case: TestCase,
        run: PromptTestResults,
        *,
        cancel_event: asyncio.Event | None = None,
    ) -> EvaluationReceipt:
        """
        Evaluate a test case against a prompt and persist the outcome.

        Args:
            prompt: The prompt candidate whose template is expanded.
            test_case: The fixture to run.
            run: The run record carrying model and generation parameters.
            cancel_event: Optional signal; once set, pending retries are
                abandoned and the result is recorded as ERROR.

        Returns:
            EvaluationReceipt: Confirms the evaluation was attempted. The
            outcome itself is only available from the result store.

        Raises:
            PreconditionError: If the test case or the run has no id. Nothing
                is written in that case.
        """
        if not test_case.id:
            raise PreconditionError("Test case id is missing")
        if not run.id:
            raise PreconditionError("Prompt test results id is missing")

        with tracer.start_as_current_span(
            "process_test_case",
            attributes={
                "promptlab.run_id": run.id,
                "promptlab.test_case_id": test_case.id,
                "promptlab.llm_model": run.llm_model,
                "promptlab.embeddings_model": run.embeddings_model,
            },
        ):
            return await self._run(prompt, test_case, run, cancel_event)

    async def _run(
        self,
        prompt: PromptCandidate,
        test_case: TestCase,
        run: PromptTestResults,
        cancel_event: asyncio.Event | None,
    ) -> EvaluationReceipt:
        run_id, test_case_id = run.id, test_case.id
        tag = f"[{run_id}/{test_case_id}]"

        try:
            await self._results.set_status(run_id, test_case_id, TestResultsStatus.IN_PROGRESS)
        except asyncio.CancelledError:
            logger.warning(f"{tag} Evaluation task cancelled while marking it in progress")
            await self._record_error(run_id, test_case_id, "Cancelled while starting evaluation")
            raise
        except Exception as e:
            logger.error(f"{tag} Failed to mark test case in progress: {e}")
            recorded = await self._record_error(
                run_id, test_case_id, f"Could not start evaluation: {describe_error(e)}"
            )
            return EvaluationReceipt(run_id=run_id, test_case_id=test_case_id, recorded=recorded)

        logger.debug(f"{tag} Running test case against prompt {prompt.id}")

        step = "template expansion"
        try:
            formatted_prompt = expand_template(prompt.prompt, fields_for_test_case(test_case))

            step = f"completion request ({self.completion_policy.max_attempts} attempts)"
            llm_completions = await self._retry(
                lambda: self._completions.get_completions(
                    formatted_prompt, run.llm_model, run.temperature, run.max_tokens
                ),
                self.completion_policy,
                cancel_event,
                f"{tag} completion request",
            )

            step = f"embedding of generated completions ({self.embedding_policy.max_attempts} attempts)"
            generated_embeddings = await self._retry(
                lambda: self._embeddings.embed(llm_completions, run.embeddings_model),
                self.embedding_policy,
                cancel_event,
                f"{tag} generated completions embedding",
            )

            step = f"embedding of good completions ({self.embedding_policy.max_attempts} attempts)"
            good_embeddings = await self._retry(
                lambda: self._embeddings.embed(list(test_case.good_completions), run.embeddings_model),
                self.embedding_policy,
                cancel_event,
                f"{tag} good completions embedding",
            )

            step = "scoring"
            cosine_similarity_score = validate_score(
                score_embeddings(generated_embeddings, good_embeddings)
            )
        except asyncio.CancelledError:
            logger.warning(f"{tag} Evaluation task cancelled during {step}")
            await self._record_error(run_id, test_case_id, f"Cancelled during {step}")
            raise
        except EvaluationCancelledError as e:
            logger.warning(f"{tag} {e}")
            recorded = await self._record_error(
                run_id, test_case_id, f"Cancelled during {step}: {describe_error(e)}"
            )
            return EvaluationReceipt(run_id=run_id, test_case_id=test_case_id, recorded=recorded)
        except Exception as e:
            logger.error(f"{tag} Error running test case: {step} failed: {describe_error(e)}")
            recorded = await self._record_error(
                run_id, test_case_id, f"{step} failed: {describe_error(e)}"
            )
            return EvaluationReceipt(run_id=run_id, test_case_id=test_case_id, recorded=recorded)

        logger.info(
            f"{tag} Test case completed with cosine similarity score: {cosine_similarity_score:.4f}"
        )

        try:
            await self._results.save_result(
                run_id, test_case_id, cosine_similarity_score, llm_completions
            )
        except asyncio.CancelledError:
            logger.warning(f"{tag} Evaluation task cancelled while saving the result")
            await self._record_error(run_id, test_case_id, "Cancelled while saving result")
            raise
        except Exception as e:
            logger.error(f"{tag} Failed to save result: {e}")
            recorded = await self._record_error(
                run_id, test_case_id, f"Could not save result: {describe_error(e)}"
            )
            return EvaluationReceipt(run_id=run_id, test_case_id=test_case_id, recorded=recorded)

        evaluation_counter.add(1, {"status": TestResultsStatus.DONE.value, "recorded": True})
        score_histogram.record(cosine_similarity_score, {"llm_model": run.llm_model})
        trace.get_current_span().set_attribute("promptlab.status", TestResultsStatus.DONE.value)
        return EvaluationReceipt(run_id=run_id, test_case_id=test_case_id, recorded=True)

    async def aclose(self) -> None:
        """Close backends that hold network connections."""
        for client in (self._completions, self._embeddings):
            close = getattr(client, "close", None)
            if close is not None:
                await close()

    @staticmethod
    async def _retry(
        operation: Callable[[], Awaitable[T]],
        policy: RetryPolicy,
        cancel_event: asyncio.Event | None,
        description: str,
    ) -> T:
        return await run_with_retry(
            operation,
            policy.max_attempts,
            policy.delay_seconds,
            attempt_timeout=policy.attempt_timeout,
            cancel_event=cancel_event,
            description=description,
        )

    async def _record_error(self, run_id: str, test_case_id: str, message: str) -> bool:
        """Persist ERROR; returns False if even that write fails."""
        span = trace.get_current_span()
        span.set_attribute("promptlab.status", TestResultsStatus.ERROR.value)
        span.set_status(trace.StatusCode.ERROR, message)
        try:
            await self._results.set_status(
                run_id, test_case_id, TestResultsStatus.ERROR, message
            )
            recorded = True
        except Exception as e:
            logger.exception(f"[{run_id}/{test_case_id}] Failed to record ERROR status: {e}")
            recorded = False

        evaluation_counter.add(1, {"status": TestResultsStatus.ERROR.value, "recorded": recorded})
        return recorded


async def process_test_case(
    prompt: PromptCandidate,
    test_case: TestCase,
    run: PromptTestResults,
    *,
    completion_client: CompletionClient,
    embedding_client: EmbeddingClient,
    result_store: ResultStore,
    completion_policy: RetryPolicy | None = None,
    embedding_policy: RetryPolicy | None = None,
    cancel_event: asyncio.Event | None = None,
) -> EvaluationReceipt:
    """Run one evaluation with explicitly supplied collaborators."""
    evaluator = PromptEvaluator(
        completion_client,
        embedding_client,
        result_store,
        completion_policy=completion_policy,
        embedding_policy=embedding_policy,
    )
    return await evaluator.process_test_case(prompt, test_case, run, cancel_event=cancel_event)
