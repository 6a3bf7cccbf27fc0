"""Data models for layered knowledge and compressed context responses.

Knowledge items are immutable once mapped from the store: the ingestion
pipeline (external) is the only writer. Query and response objects are
request-scoped values with no persistence.
"""

from dataclasses import dataclass, field
from enum import Enum

__all__ = [
    "DEFAULT_TOKEN_COUNTS",
    "LAYER_PRECEDENCE",
    "RETRIEVABLE_LAYERS",
    "CompressedContext",
    "Concept",
    "ContextQuery",
    "ContextResponse",
    "DocumentSummary",
    "KnowledgeItem",
    "Layer",
    "ScoredItem",
    "Topic",
    "TopicDocument",
]


class Layer(str, Enum):
    """Abstraction tier of pre-summarized knowledge.

    Uses the (str, Enum) pattern so values serialize as plain strings.
    L1 (raw source) is reserved and never produced by this engine.
    """

    L1 = "L1"  # Raw source documents (reserved)
    L2 = "L2"  # Document summaries (~200 tokens)
    L3 = "L3"  # Topic summaries (~500 tokens)
    L4 = "L4"  # Concepts (~50 tokens)


RETRIEVABLE_LAYERS = (Layer.L2, Layer.L3, Layer.L4)

# Final tiebreak in allocation: more specific evidence first
LAYER_PRECEDENCE = {Layer.L2: 0, Layer.L3: 1, Layer.L4: 2}

# Cost assumed when a stored row has neither token_count nor content
DEFAULT_TOKEN_COUNTS = {Layer.L2: 200, Layer.L3: 100, Layer.L4: 50}


@dataclass(frozen=True)
class KnowledgeItem:
    """Base for layer members.

    Attributes:
        source_id: Identifier unique within its layer and tenant
        source_name: Human label
        content: Pre-rendered summary text
        token_count: Precomputed cost of content under the target tokenizer
        layer: L2, L3 or L4
        embedding: Fixed-length vector (empty when not fetched from the store)
        tenant_id: Owning tenant
        workspace_id: Narrower scope, None for tenant-wide items
    """

    source_id: str
    source_name: str
    content: str
    token_count: int
    layer: Layer
    embedding: tuple[float, ...] = ()
    tenant_id: str = ""
    workspace_id: str | None = None


@dataclass(frozen=True)
class DocumentSummary(KnowledgeItem):
    """L2 item: summary of one source document."""

    layer: Layer = Layer.L2


@dataclass(frozen=True)
class Topic(KnowledgeItem):
    """L3 item: summary of a cluster of L2 documents.

    Membership is maintained by the external clustering process; order is
    irrelevant so it is held as a frozenset.
    """

    layer: Layer = Layer.L3
    member_document_ids: frozenset[str] = field(default_factory=frozenset)

    @property
    def document_count(self) -> int:
        return len(self.member_document_ids)


@dataclass(frozen=True)
class Concept(KnowledgeItem):
    """L4 item: atomic idea with loose "relates to" edges."""

    layer: Layer = Layer.L4
    concept_type: str | None = None
    related_topic_ids: frozenset[str] = field(default_factory=frozenset)
    related_document_ids: frozenset[str] = field(default_factory=frozenset)


@dataclass(frozen=True)
class TopicDocument:
    """Member document of a topic, as returned by topic browsing."""

    document_id: str
    name: str
    summary: str
    token_count: int
    workspace_id: str | None = None

    def to_dict(self) -> dict:
        return {
            "document_id": self.document_id,
            "name": self.name,
            "summary": self.summary,
            "token_count": self.token_count,
            "workspace_id": self.workspace_id,
        }


@dataclass(frozen=True)
class ScoredItem:
    """A knowledge item paired with its similarity to the query.

    ``similarity`` keeps full precision for ranking; ``display_similarity``
    is the 3-decimal value emitted to callers.
    """

    item: KnowledgeItem
    similarity: float

    @property
    def layer(self) -> Layer:
        return self.item.layer

    @property
    def token_count(self) -> int:
        return self.item.token_count

    @property
    def source_id(self) -> str:
        return self.item.source_id

    @property
    def display_similarity(self) -> float:
        return round(self.similarity, 3)

    def to_dict(self) -> dict:
        return {
            "layer": self.layer.value,
            "source_id": self.item.source_id,
            "source_name": self.item.source_name,
            "content": self.item.content,
            "similarity": self.display_similarity,
            "token_count": self.item.token_count,
        }


@dataclass(frozen=True)
class ContextQuery:
    """Compressed context request.

    tenant_id comes from the authenticated caller context, never from the
    request body. max_tokens=None means "use the configured default".
    """

    text: str
    tenant_id: str
    workspace_id: str | None = None
    max_tokens: int | None = None
    expand_topics: bool = False
    layers: tuple[Layer, ...] = RETRIEVABLE_LAYERS


def _count_layers(items: list[ScoredItem]) -> dict[Layer, int]:
    counts = {layer: 0 for layer in Layer}
    for scored in items:
        counts[scored.layer] += 1
    return counts


@dataclass(frozen=True)
class CompressedContext:
    """Selected items plus summary statistics folded over them."""

    items: tuple[ScoredItem, ...] = ()
    total_tokens: int = 0
    layer_counts: dict[Layer, int] = field(
        default_factory=lambda: {layer: 0 for layer in Layer}
    )

    @classmethod
    def from_items(cls, items: list[ScoredItem]) -> "CompressedContext":
        return cls(
            items=tuple(items),
            total_tokens=sum(scored.token_count for scored in items),
            layer_counts=_count_layers(items),
        )

    def filter_by_similarity(self, threshold: float) -> "CompressedContext":
        """Return a new context keeping items with similarity >= threshold.

        Compares against the displayed (rounded) similarity, matching what
        callers see.
        """
        kept = [s for s in self.items if s.display_similarity >= threshold]
        return CompressedContext.from_items(kept)

    def to_dict(self) -> dict:
        return {
            "items": [scored.to_dict() for scored in self.items],
            "total_tokens": self.total_tokens,
            "layer_counts": {layer.value: count for layer, count in self.layer_counts.items()},
        }


@dataclass(frozen=True)
class ContextResponse:
    """Result of one compressed context request.

    Attributes:
        context: Selected items and statistics
        query_id: Request-identifying token
        duration_ms: Elapsed time for the request
        budget: Effective token budget after defaulting and clamping
        degraded_layers: Layers whose store query failed (returned empty)
        topic_members: Member documents of selected topics, when expansion
            was requested (topic id -> documents)
    """

    context: CompressedContext
    query_id: str
    duration_ms: float
    budget: int
    degraded_layers: tuple[Layer, ...] = ()
    topic_members: dict[str, list[TopicDocument]] = field(default_factory=dict)

    def to_dict(self) -> dict:
        result = {
            "context": self.context.to_dict(),
            "query_id": self.query_id,
            "duration_ms": self.duration_ms,
            "budget": self.budget,
            "degraded_layers": [layer.value for layer in self.degraded_layers],
        }
        if self.topic_members:
            result["topic_members"] = {
                topic_id: [doc.to_dict() for doc in docs]
                for topic_id, docs in self.topic_members.items()
            }
        return result
