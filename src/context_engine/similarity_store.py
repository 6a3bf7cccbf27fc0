"""Similarity store boundary: nearest-neighbour queries per knowledge layer.

The persistent store is an external collaborator. ``SimilarityStore`` is the
seam the retriever depends on; ``QdrantSimilarityStore`` implements it over
one Qdrant collection per layer. Loosely-typed Qdrant payloads are mapped into
KnowledgeItem entities here and nowhere else.

Payload schema shared by all layer collections:
    source_id, source_name, content, token_count, tenant_id, workspace_id
L3 topics add ``member_document_ids``; L4 concepts add ``concept_type``,
``related_topic_ids`` and ``related_document_ids``.
"""

import logging
from abc import ABC, abstractmethod
from collections.abc import Iterable
from typing import Any

import numpy as np
from qdrant_client import QdrantClient
from qdrant_client.models import (
    FieldCondition,
    Filter,
    IsEmptyCondition,
    MatchValue,
    PayloadField,
)

from .config import EngineConfig, get_config
from .errors import StoreUnavailable
from .models import (
    RETRIEVABLE_LAYERS,
    Concept,
    DocumentSummary,
    KnowledgeItem,
    Layer,
    ScoredItem,
    Topic,
)
from .tokens import resolve_token_count

__all__ = [
    "InMemorySimilarityStore",
    "QdrantSimilarityStore",
    "SimilarityStore",
    "build_scope_filter",
    "cosine_similarity",
    "item_from_payload",
]

logger = logging.getLogger("context_engine.store")


class SimilarityStore(ABC):
    """Keyed similarity search partitioned by tenant, workspace and layer."""

    @abstractmethod
    def nearest(
        self,
        layer: Layer,
        vector: list[float],
        tenant_id: str,
        workspace_id: str | None = None,
        limit: int = 20,
        score_threshold: float | None = None,
    ) -> list[ScoredItem]:
        """Return up to ``limit`` items of ``layer`` most similar to ``vector``.

        With a workspace, items of that workspace and tenant-wide items (no
        workspace) are both eligible.

        Raises:
            StoreUnavailable: If the store cannot answer the query.
        """


def build_scope_filter(tenant_id: str, workspace_id: str | None = None) -> Filter:
    """Build the tenant (and optional workspace) scope filter.

    Tenant is always a hard filter. A workspace narrows the scope to that
    workspace plus tenant-wide items.
    """
    must = [FieldCondition(key="tenant_id", match=MatchValue(value=tenant_id))]
    if workspace_id is None:
        return Filter(must=must)
    return Filter(
        must=must,
        should=[
            FieldCondition(key="workspace_id", match=MatchValue(value=workspace_id)),
            IsEmptyCondition(is_empty=PayloadField(key="workspace_id")),
        ],
    )


def _id_set(value: Any) -> frozenset[str]:
    if not value:
        return frozenset()
    if isinstance(value, str):
        return frozenset([value])
    return frozenset(str(v) for v in value)


def item_from_payload(
    layer: Layer,
    point_id: Any,
    payload: dict | None,
    vector: Any = None,
) -> KnowledgeItem:
    """Map a raw store row into the typed entity for its layer."""
    payload = payload or {}
    source_id = str(payload.get("source_id") or point_id)
    content = str(payload.get("content") or "")
    workspace_id = payload.get("workspace_id")

    common = {
        "source_id": source_id,
        "source_name": str(payload.get("source_name") or payload.get("name") or source_id),
        "content": content,
        "token_count": resolve_token_count(payload.get("token_count"), content, layer),
        "embedding": tuple(float(v) for v in vector) if isinstance(vector, list) else (),
        "tenant_id": str(payload.get("tenant_id") or ""),
        "workspace_id": str(workspace_id) if workspace_id else None,
    }

    if layer == Layer.L2:
        return DocumentSummary(**common)
    if layer == Layer.L3:
        return Topic(
            **common, member_document_ids=_id_set(payload.get("member_document_ids"))
        )
    if layer == Layer.L4:
        return Concept(
            **common,
            concept_type=payload.get("concept_type"),
            related_topic_ids=_id_set(payload.get("related_topic_ids")),
            related_document_ids=_id_set(payload.get("related_document_ids")),
        )
    raise ValueError(f"Layer {layer.value} is not stored by this engine")


class QdrantSimilarityStore(SimilarityStore):
    """SimilarityStore over one Qdrant collection per layer.

    Attributes:
        client: QdrantClient passed in by the caller
        config: EngineConfig with collection names
        collections: Layer -> collection name
    """

    def __init__(self, client: QdrantClient, config: EngineConfig | None = None):
        self.client = client
        self.config = config or get_config()
        self.collections = {
            Layer.L2: self.config.collection_documents,
            Layer.L3: self.config.collection_topics,
            Layer.L4: self.config.collection_concepts,
        }

    def collection_for(self, layer: Layer) -> str:
        try:
            return self.collections[layer]
        except KeyError:
            raise ValueError(f"Layer {layer.value} is not stored by this engine") from None

    def nearest(
        self,
        layer: Layer,
        vector: list[float],
        tenant_id: str,
        workspace_id: str | None = None,
        limit: int = 20,
        score_threshold: float | None = None,
    ) -> list[ScoredItem]:
        collection = self.collection_for(layer)
        try:
            response = self.client.query_points(
                collection_name=collection,
                query=vector,
                query_filter=build_scope_filter(tenant_id, workspace_id),
                limit=limit,
                score_threshold=score_threshold,
                with_payload=True,
                with_vectors=False,
            )
        except Exception as e:
            logger.error(
                "qdrant_query_failed",
                extra={
                    "collection": collection,
                    "layer": layer.value,
                    "tenant_id": tenant_id,
                    "error": str(e),
                },
            )
            raise StoreUnavailable(f"Query on {collection} failed: {e}") from e

        try:
            return [
                ScoredItem(
                    item=item_from_payload(layer, point.id, point.payload),
                    similarity=float(point.score),
                )
                for point in response.points
            ]
        except (TypeError, ValueError) as e:
            logger.error(
                "qdrant_payload_malformed",
                extra={
                    "collection": collection,
                    "layer": layer.value,
                    "tenant_id": tenant_id,
                    "error": str(e),
                    "error_type": type(e).__name__,
                },
            )
            raise StoreUnavailable(f"Malformed row in {collection}: {e}") from e


def cosine_similarity(a: Iterable[float], b: Iterable[float]) -> float:
    """Cosine similarity of two vectors; 0.0 when either has zero norm."""
    first = np.asarray(a, dtype=float)
    second = np.asarray(b, dtype=float)
    norm = np.linalg.norm(first) * np.linalg.norm(second)
    if norm == 0:
        return 0.0
    return float(np.dot(first, second) / norm)


class InMemorySimilarityStore(SimilarityStore):
    """Brute-force cosine store over items held in process.

    Applies the same scope rules as the Qdrant filter: tenant is a hard
    filter; a workspace admits its own items plus tenant-wide ones. Suitable
    for small embedded corpora and deterministic tests.
    """

    def __init__(self, items: Iterable[KnowledgeItem] = ()):
        self._items: dict[Layer, list[KnowledgeItem]] = {
            layer: [] for layer in RETRIEVABLE_LAYERS
        }
        for item in items:
            self.add(item)

    def add(self, item: KnowledgeItem) -> None:
        if item.layer not in self._items:
            raise ValueError(f"Layer {item.layer.value} is not stored by this engine")
        if not item.embedding:
            raise ValueError(f"Item {item.source_id} has no embedding")
        self._items[item.layer].append(item)

    def __len__(self) -> int:
        return sum(len(items) for items in self._items.values())

    def nearest(
        self,
        layer: Layer,
        vector: list[float],
        tenant_id: str,
        workspace_id: str | None = None,
        limit: int = 20,
        score_threshold: float | None = None,
    ) -> list[ScoredItem]:
        if layer not in self._items:
            raise ValueError(f"Layer {layer.value} is not stored by this engine")

        scored = []
        for item in self._items[layer]:
            if item.tenant_id != tenant_id:
                continue
            if workspace_id is not None and item.workspace_id not in (None, workspace_id):
                continue
            if len(item.embedding) != len(vector):
                logger.error(
                    "embedding_dimension_mismatch",
                    extra={
                        "layer": layer.value,
                        "source_id": item.source_id,
                        "expected": len(vector),
                        "actual": len(item.embedding),
                    },
                )
                raise StoreUnavailable(
                    f"Item {item.source_id} has {len(item.embedding)} dimensions, "
                    f"query has {len(vector)}"
                )
            similarity = cosine_similarity(vector, item.embedding)
            if score_threshold is not None and similarity < score_threshold:
                continue
            scored.append(ScoredItem(item=item, similarity=similarity))

        scored.sort(key=lambda s: s.similarity, reverse=True)
        return scored[:limit]
