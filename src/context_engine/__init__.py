"""Compressed Context Engine - token-bounded multi-layer knowledge retrieval.

Answers a natural-language query with the most relevant pre-summarized
knowledge that fits a token budget:
- Configuration management with environment overrides
- Embedding service client (OpenAI-compatible /embeddings)
- Per-layer similarity retrieval over Qdrant (L2 documents, L3 topics, L4 concepts)
- Greedy budget allocation and prompt formatting
- Topic cluster browsing

Python Version: 3.10+ required
"""

# Configure before other imports
from .logging_config import StructuredFormatter, configure_logging

# Initialize structured logging on module import
configure_logging()

from .allocator import allocate, rank_candidates  # noqa: E402
from .assembler import ContextAssembler, resolve_budget  # noqa: E402
from .config import EngineConfig, get_config, reset_config  # noqa: E402
from .embeddings import EmbeddingClient  # noqa: E402
from .errors import (  # noqa: E402
    ContextEngineError,
    EmbeddingUnavailable,
    InvalidInput,
    InvalidQuery,
    RetrievalFailed,
    TenantNotFound,
    TopicNotFound,
    Unauthorized,
)
from .formatting import format_context_for_prompt  # noqa: E402
from .models import (  # noqa: E402
    CompressedContext,
    Concept,
    ContextQuery,
    ContextResponse,
    DocumentSummary,
    KnowledgeItem,
    Layer,
    ScoredItem,
    Topic,
    TopicDocument,
)
from .qdrant_client import check_qdrant_health, get_qdrant_client  # noqa: E402
from .retriever import MultiLayerRetriever, RetrievalResult  # noqa: E402
from .similarity_store import (  # noqa: E402
    InMemorySimilarityStore,
    QdrantSimilarityStore,
    SimilarityStore,
)
from .timing import timed_operation  # noqa: E402
from .tokens import count_tokens  # noqa: E402
from .topics import TopicClusterStore, TopicIndex  # noqa: E402

__all__ = [
    "CompressedContext",
    "Concept",
    "ContextAssembler",
    "ContextEngineError",
    "ContextQuery",
    "ContextResponse",
    "DocumentSummary",
    "EmbeddingClient",
    "EmbeddingUnavailable",
    "EngineConfig",
    "InMemorySimilarityStore",
    "InvalidInput",
    "InvalidQuery",
    "KnowledgeItem",
    "Layer",
    "MultiLayerRetriever",
    "QdrantSimilarityStore",
    "RetrievalFailed",
    "RetrievalResult",
    "ScoredItem",
    "SimilarityStore",
    "StructuredFormatter",
    "TenantNotFound",
    "Topic",
    "TopicClusterStore",
    "TopicDocument",
    "TopicIndex",
    "TopicNotFound",
    "Unauthorized",
    "allocate",
    "check_qdrant_health",
    "configure_logging",
    "count_tokens",
    "format_context_for_prompt",
    "get_config",
    "get_qdrant_client",
    "rank_candidates",
    "reset_config",
    "resolve_budget",
    "timed_operation",
]
