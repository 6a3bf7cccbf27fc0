"""Compressed context assembly: query text in, token-bounded context out.

Pipeline per request:
    validate -> resolve budget -> embed query -> retrieve per layer
    -> allocate under budget -> fold statistics

Read-only with respect to the knowledge store and not memoized: identical
requests recompute the embedding and re-query the store.
"""

import logging
import time
import uuid

from .allocator import allocate
from .config import EngineConfig, get_config
from .embeddings import EmbeddingClient
from .errors import ContextEngineError, InvalidInput, InvalidQuery, TenantNotFound
from .metrics import context_requests_total
from .models import CompressedContext, ContextQuery, ContextResponse, Layer
from .qdrant_client import get_qdrant_client
from .retriever import MultiLayerRetriever
from .similarity_store import QdrantSimilarityStore
from .timing import timed_operation
from .topics import TopicClusterStore

__all__ = ["ContextAssembler", "resolve_budget"]

logger = logging.getLogger("context_engine.assemble")


def resolve_budget(max_tokens: int | None, config: EngineConfig) -> int:
    """Default and clamp a requested budget into [0, ceiling].

    Out-of-range values are clamped, never rejected.

    Raises:
        InvalidInput: If max_tokens is not an integer.
    """
    if max_tokens is None:
        return config.default_max_tokens
    if isinstance(max_tokens, bool) or not isinstance(max_tokens, int):
        raise InvalidInput("max_tokens must be an integer")
    return max(0, min(max_tokens, config.max_tokens_ceiling))


class ContextAssembler:
    """Orchestrates embedding, retrieval and allocation for one request.

    Attributes:
        embedder: Object exposing ``embed(text) -> list[float]``
        retriever: MultiLayerRetriever
        config: EngineConfig with budget defaults
    """

    def __init__(
        self,
        embedder: EmbeddingClient,
        retriever: MultiLayerRetriever,
        config: EngineConfig | None = None,
    ):
        self.embedder = embedder
        self.retriever = retriever
        self.config = config or get_config()

    @classmethod
    def from_config(cls, config: EngineConfig | None = None) -> "ContextAssembler":
        """Wire the production collaborators (Qdrant + embedding service)."""
        config = config or get_config()
        client = get_qdrant_client(config)
        retriever = MultiLayerRetriever(
            QdrantSimilarityStore(client, config),
            topic_store=TopicClusterStore(client, config),
            config=config,
        )
        return cls(EmbeddingClient(config), retriever, config)

    def get_compressed_context(self, query: ContextQuery) -> ContextResponse:
        """Build the compressed context for a query.

        Raises:
            InvalidQuery: Query text empty after trimming (no store access).
            InvalidInput: Non-integer budget or unknown layer.
            TenantNotFound: No tenant in the caller context.
            EmbeddingUnavailable: Query embedding failed.
            RetrievalFailed: Every requested layer failed.
        """
        start_time = time.perf_counter()
        query_id = uuid.uuid4().hex

        try:
            text = (query.text or "").strip()
            if not text:
                raise InvalidQuery()
            if not query.tenant_id:
                raise TenantNotFound()
            budget = resolve_budget(query.max_tokens, self.config)
        except ContextEngineError as e:
            context_requests_total.labels(status="invalid").inc()
            logger.info(
                "context_request_rejected",
                extra={"query_id": query_id, "error_kind": e.kind},
            )
            raise

        extra = {
            "query_id": query_id,
            "tenant_id": query.tenant_id,
            "workspace_id": query.workspace_id,
            "budget": budget,
        }

        if budget == 0:
            context_requests_total.labels(status="success").inc()
            logger.info("context_zero_budget", extra=extra)
            return ContextResponse(
                context=CompressedContext(),
                query_id=query_id,
                duration_ms=round((time.perf_counter() - start_time) * 1000, 2),
                budget=budget,
            )

        try:
            with timed_operation("compressed_context", logger, extra=extra) as log_ctx:
                vector = self.embedder.embed(text)
                retrieval = self.retriever.retrieve(
                    vector,
                    query.tenant_id,
                    workspace_id=query.workspace_id,
                    layers=query.layers,
                )
                selected = allocate(retrieval.candidates, budget)
                context = CompressedContext.from_items(selected)

                topic_members = {}
                if query.expand_topics:
                    topic_members = self.retriever.expand_topics(
                        [s.source_id for s in selected if s.layer == Layer.L3],
                        query.tenant_id,
                    )

                log_ctx.update(
                    {
                        "candidates": retrieval.total_candidates,
                        "items_selected": len(context.items),
                        "total_tokens": context.total_tokens,
                        "degraded_layers": [layer.value for layer in retrieval.failed_layers],
                    }
                )
        except ContextEngineError:
            context_requests_total.labels(status="failed").inc()
            raise

        context_requests_total.labels(status="success").inc()
        return ContextResponse(
            context=context,
            query_id=query_id,
            duration_ms=round((time.perf_counter() - start_time) * 1000, 2),
            budget=budget,
            degraded_layers=retrieval.failed_layers,
            topic_members=topic_members,
        )
