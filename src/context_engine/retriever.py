"""Multi-layer retrieval: one similarity query per knowledge layer.

Layer queries for a request are independent and run concurrently on a small
thread pool; the caller gets the result only after every requested layer has
returned or failed. A layer whose store query fails is reported in
``failed_layers`` and contributes no candidates; the request fails only when
every requested layer failed.

Each layer's candidate pool is bounded by ``config.candidate_pool_size``. The
allocator only ever sees this bounded pool, so selection is optimal over the
pool, not over the whole corpus.
"""

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field

from .config import EngineConfig, get_config
from .errors import InvalidInput, RetrievalFailed, StoreUnavailable, TopicNotFound
from .metrics import (
    failure_events_total,
    layer_retrieval_duration_seconds,
    layer_retrievals_total,
)
from .models import RETRIEVABLE_LAYERS, Layer, ScoredItem, TopicDocument
from .similarity_store import SimilarityStore
from .topics import TopicClusterStore

__all__ = ["MultiLayerRetriever", "RetrievalResult", "prefer_workspace_items"]

logger = logging.getLogger("context_engine.retrieve")


@dataclass(frozen=True)
class RetrievalResult:
    """Ranked candidates per layer.

    Attributes:
        candidates: Layer -> items sorted by similarity descending
        failed_layers: Layers whose store query failed
        topic_members: Topic id -> member documents, when expansion ran
    """

    candidates: dict[Layer, list[ScoredItem]]
    failed_layers: tuple[Layer, ...] = ()
    topic_members: dict[str, list[TopicDocument]] = field(default_factory=dict)

    def __getitem__(self, layer: Layer) -> list[ScoredItem]:
        return self.candidates[layer]

    @property
    def total_candidates(self) -> int:
        return sum(len(items) for items in self.candidates.values())


def prefer_workspace_items(
    items: list[ScoredItem], workspace_id: str | None
) -> list[ScoredItem]:
    """Collapse duplicates of one source within a layer.

    The workspace-scoped copy beats a tenant-wide copy; otherwise the higher
    similarity wins. Output is sorted by similarity descending (stable).
    """
    best: dict[str, ScoredItem] = {}

    def rank(scored: ScoredItem) -> tuple[bool, float]:
        in_workspace = workspace_id is not None and scored.item.workspace_id == workspace_id
        return in_workspace, scored.similarity

    for scored in items:
        current = best.get(scored.source_id)
        if current is None or rank(scored) > rank(current):
            best[scored.source_id] = scored

    return sorted(best.values(), key=lambda s: s.similarity, reverse=True)


def _normalize_layers(layers) -> tuple[Layer, ...]:
    normalized = []
    for layer in layers:
        try:
            layer = Layer(layer)
        except ValueError:
            raise InvalidInput(f"Unknown layer: {layer}") from None
        if layer not in RETRIEVABLE_LAYERS:
            raise InvalidInput(f"Layer {layer.value} is not retrievable")
        if layer not in normalized:
            normalized.append(layer)
    return tuple(normalized)


class MultiLayerRetriever:
    """Issues per-layer similarity queries and returns ranked candidates.

    Collaborators are injected so tests can substitute deterministic doubles.

    Attributes:
        store: SimilarityStore answering nearest-neighbour queries
        topic_store: Optional TopicClusterStore used for topic expansion
        config: EngineConfig with pool size, threshold and worker count
    """

    def __init__(
        self,
        store: SimilarityStore,
        topic_store: TopicClusterStore | None = None,
        config: EngineConfig | None = None,
    ):
        self.store = store
        self.topic_store = topic_store
        self.config = config or get_config()

    def retrieve(
        self,
        query_vector: list[float],
        tenant_id: str,
        workspace_id: str | None = None,
        layers=RETRIEVABLE_LAYERS,
        expand_topics: bool = False,
    ) -> RetrievalResult:
        """Retrieve ranked candidates for each requested layer.

        Args:
            query_vector: Query embedding
            tenant_id: Tenant scope (required)
            workspace_id: Optional workspace scope
            layers: Subset of L2, L3, L4
            expand_topics: Also fetch member documents of every L3 candidate

        Returns:
            RetrievalResult with one entry per requested layer.

        Raises:
            InvalidInput: If a requested layer is not retrievable.
            RetrievalFailed: If every requested layer failed.
        """
        requested = _normalize_layers(layers)
        if not requested:
            return RetrievalResult(candidates={})

        workers = min(self.config.retrieval_workers, len(requested))
        with ThreadPoolExecutor(
            max_workers=workers, thread_name_prefix="layer-retrieval"
        ) as executor:
            futures = {
                layer: executor.submit(
                    self._retrieve_layer, layer, query_vector, tenant_id, workspace_id
                )
                for layer in requested
            }
            # Fan-in: allocation needs every layer's answer
            outcomes = {layer: future.result() for layer, future in futures.items()}

        candidates = {layer: items for layer, items in outcomes.items() if items is not None}
        failed = tuple(layer for layer, items in outcomes.items() if items is None)

        if failed and len(failed) == len(requested):
            failure_events_total.labels(
                component="retriever", error_code="RETRIEVAL_FAILED"
            ).inc()
            logger.error(
                "retrieval_failed_all_layers",
                extra={
                    "tenant_id": tenant_id,
                    "layers": [layer.value for layer in failed],
                },
            )
            raise RetrievalFailed()

        for layer in failed:
            candidates[layer] = []

        topic_members = {}
        if expand_topics and candidates.get(Layer.L3):
            topic_members = self.expand_topics(
                [scored.source_id for scored in candidates[Layer.L3]], tenant_id
            )

        return RetrievalResult(
            candidates={layer: candidates[layer] for layer in requested},
            failed_layers=failed,
            topic_members=topic_members,
        )

    def _retrieve_layer(
        self,
        layer: Layer,
        query_vector: list[float],
        tenant_id: str,
        workspace_id: str | None,
    ) -> list[ScoredItem] | None:
        """Query one layer; None signals a failed layer."""
        start_time = time.perf_counter()
        pool_size = self.config.candidate_pool_size
        try:
            items = self.store.nearest(
                layer,
                query_vector,
                tenant_id,
                workspace_id=workspace_id,
                limit=pool_size,
                score_threshold=self.config.similarity_threshold,
            )
        except StoreUnavailable as e:
            layer_retrieval_duration_seconds.labels(layer=layer.value).observe(
                time.perf_counter() - start_time
            )
            layer_retrievals_total.labels(layer=layer.value, status="failed").inc()
            failure_events_total.labels(
                component="qdrant", error_code="STORE_UNAVAILABLE"
            ).inc()
            logger.warning(
                "layer_retrieval_failed",
                extra={
                    "layer": layer.value,
                    "tenant_id": tenant_id,
                    "workspace_id": workspace_id,
                    "error": str(e),
                },
            )
            return None

        items = prefer_workspace_items(items, workspace_id)[:pool_size]

        duration_seconds = time.perf_counter() - start_time
        layer_retrieval_duration_seconds.labels(layer=layer.value).observe(duration_seconds)
        layer_retrievals_total.labels(
            layer=layer.value, status="success" if items else "empty"
        ).inc()
        logger.debug(
            "layer_retrieval_completed",
            extra={
                "layer": layer.value,
                "results_count": len(items),
                "top_score": round(items[0].similarity, 4) if items else 0.0,
                "duration_ms": round(duration_seconds * 1000, 2),
            },
        )
        return items

    def expand_topics(
        self, topic_ids: list[str], tenant_id: str
    ) -> dict[str, list[TopicDocument]]:
        """Fetch member documents for the given topics.

        A topic whose members cannot be fetched is left out of the result and
        logged; expansion never fails the request.
        """
        if self.topic_store is None or not topic_ids:
            return {}

        members = {}
        for topic_id in dict.fromkeys(topic_ids):
            try:
                members[topic_id] = self.topic_store.list_topic_documents(
                    topic_id, tenant_id
                )
            except (TopicNotFound, RetrievalFailed) as e:
                logger.warning(
                    "topic_expansion_skipped",
                    extra={"tenant_id": tenant_id, "error_kind": e.kind},
                )
        return members
