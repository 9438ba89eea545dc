# Evaluation services

from .completion import OpenAICompletionClient
from .embedding import HuggingFaceEmbeddingClient, LocalEmbeddingClient
from .orchestrator import PromptEvaluator, process_test_case
from .result_store import InMemoryResultStore, PostgresResultStore, check_transition
from .scoring import average_of_vectors, cosine_similarity, score_embeddings, validate_score
from .template import TEMPLATE_TOKENS, expand_template, fields_for_test_case

__all__ = [
    # Orchestration
    "PromptEvaluator",
    "process_test_case",
    # Backends
    "OpenAICompletionClient",
    "HuggingFaceEmbeddingClient",
    "LocalEmbeddingClient",
    # Result stores
    "InMemoryResultStore",
    "PostgresResultStore",
    "check_transition",
    # Scoring
    "average_of_vectors",
    "cosine_similarity",
    "score_embeddings",
    "validate_score",
    # Templates
    "TEMPLATE_TOKENS",
    "expand_template",
    "fields_for_test_case",
]
