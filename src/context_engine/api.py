"""Compressed Context HTTP API.

FastAPI service exposing:
- POST /context: multi-layer compressed context for an AI prompt
- GET /context: contract description
- GET /topics: topic clusters, optionally with member documents inlined
- GET /topics/{topic_id}/documents and /topics/{topic_id}/concepts
- GET /health, /metrics

Authentication happens upstream. The authenticated caller context reaches
this service as headers set by the gateway; a ``TenantResolver`` turns it
into a tenant id. Every failure is returned as
``{"error": {"kind": ..., "message": ...}}``.

Run with: ``uvicorn context_engine.api:create_app --factory``
"""

import logging
from typing import Callable, Optional

from fastapi import Depends, FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from prometheus_client import make_asgi_app
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from .__version__ import __version__
from .assembler import ContextAssembler
from .config import EngineConfig, get_config
from .embeddings import EmbeddingClient
from .errors import ContextEngineError, TenantNotFound, Unauthorized
from .logging_config import configure_logging
from .models import ContextQuery, ContextResponse, ScoredItem, TopicDocument
from .qdrant_client import check_qdrant_health, get_qdrant_client
from .retriever import MultiLayerRetriever
from .similarity_store import QdrantSimilarityStore
from .topics import TopicClusterStore

__all__ = ["TenantResolver", "create_app", "header_tenant_resolver"]

logger = logging.getLogger("context_engine.api")

USER_HEADER = "X-Authenticated-User"
TENANT_HEADER = "X-Tenant-Id"

TenantResolver = Callable[[Request], str]


def header_tenant_resolver(request: Request) -> str:
    """Resolve the tenant from gateway-set headers.

    Raises:
        Unauthorized: No authenticated user header.
        TenantNotFound: Authenticated user without a team/tenant.
    """
    if not request.headers.get(USER_HEADER):
        raise Unauthorized()
    tenant_id = request.headers.get(TENANT_HEADER, "").strip()
    if not tenant_id:
        raise TenantNotFound()
    return tenant_id


# =============================================================================
# Request / response models (camelCase on the wire)
# =============================================================================


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ContextRequest(CamelModel):
    """Compressed context request body."""

    query: Optional[str] = Field(None, description="Search query (required, non-empty)")
    workspace_id: Optional[str] = Field(None, description="Optional workspace scope")
    max_tokens: Optional[int] = Field(
        None, description="Token budget (default 2000, clamped to 8000)"
    )
    expand_topics: bool = Field(
        False, description="Inline member documents of selected topics"
    )


class ContextItemModel(CamelModel):
    layer: str = Field(..., description="L2, L3 or L4")
    source_id: str
    source_name: str
    content: str
    similarity: float = Field(..., description="0.000-1.000, 3 decimals")
    token_count: int

    @classmethod
    def from_scored(cls, scored: ScoredItem) -> "ContextItemModel":
        return cls(
            layer=scored.layer.value,
            source_id=scored.item.source_id,
            source_name=scored.item.source_name,
            content=scored.item.content,
            similarity=scored.display_similarity,
            token_count=scored.item.token_count,
        )


class TopicDocumentModel(CamelModel):
    document_id: str
    name: str
    summary: str
    token_count: int
    workspace_id: Optional[str] = None

    @classmethod
    def from_document(cls, doc: TopicDocument) -> "TopicDocumentModel":
        return cls(**doc.to_dict())


class CompressedContextModel(CamelModel):
    items: list[ContextItemModel]
    total_tokens: int
    layer_counts: dict[str, int] = Field(..., description="Item count per layer, L1 always 0")


class ContextResponseModel(CamelModel):
    context: CompressedContextModel
    query_id: str
    duration_ms: float
    budget: int = Field(..., description="Effective budget after defaulting and clamping")
    degraded_layers: list[str] = Field(default_factory=list)
    topic_members: Optional[dict[str, list[TopicDocumentModel]]] = None

    @classmethod
    def from_response(cls, response: ContextResponse) -> "ContextResponseModel":
        context = response.context
        topic_members = None
        if response.topic_members:
            topic_members = {
                topic_id: [TopicDocumentModel.from_document(d) for d in docs]
                for topic_id, docs in response.topic_members.items()
            }
        return cls(
            context=CompressedContextModel(
                items=[ContextItemModel.from_scored(s) for s in context.items],
                total_tokens=context.total_tokens,
                layer_counts={layer.value: n for layer, n in context.layer_counts.items()},
            ),
            query_id=response.query_id,
            duration_ms=response.duration_ms,
            budget=response.budget,
            degraded_layers=[layer.value for layer in response.degraded_layers],
            topic_members=topic_members,
        )


class TopicModel(CamelModel):
    id: str
    name: str
    summary: str
    token_count: int
    workspace_id: Optional[str] = None
    document_count: int
    member_document_ids: list[str]
    documents: Optional[list[TopicDocumentModel]] = None


class ConceptModel(CamelModel):
    id: str
    name: str
    description: str
    concept_type: Optional[str] = None
    token_count: int


class HealthResponse(BaseModel):
    status: str = Field(..., description="healthy or degraded")
    qdrant_available: bool
    embedding_available: bool


def _topic_model(topic, documents=None) -> TopicModel:
    return TopicModel(
        id=topic.source_id,
        name=topic.source_name,
        summary=topic.content,
        token_count=topic.token_count,
        workspace_id=topic.workspace_id,
        document_count=topic.document_count,
        member_document_ids=sorted(topic.member_document_ids),
        documents=(
            [TopicDocumentModel.from_document(d) for d in documents]
            if documents is not None
            else None
        ),
    )


API_DESCRIPTION = {
    "endpoint": "Compressed Context API",
    "method": "POST",
    "description": "Get multi-layer compressed context for AI prompts",
    "requestBody": {
        "query": "string (required) - Search query",
        "workspaceId": "string (optional) - Workspace scope",
        "maxTokens": "number (optional, default: 2000, max: 8000) - Token budget",
        "expandTopics": "boolean (optional) - Inline member documents of selected topics",
    },
    "response": {
        "context": {
            "items": "Array of context items with layer, source, content, similarity",
            "totalTokens": "number - Total tokens in response",
            "layerCounts": "object - Count of items per layer (L1 always 0)",
        },
        "queryId": "string - Unique query ID",
        "durationMs": "number - Search duration",
        "budget": "number - Effective token budget",
        "degradedLayers": "array - Layers whose index could not be queried",
    },
    "layers": {
        "L2": "Document summaries (~200 tokens each)",
        "L3": "Topic summaries (~500 tokens each)",
        "L4": "Concept descriptions (~50 tokens each)",
    },
}


def create_app(
    assembler: ContextAssembler | None = None,
    topic_store: TopicClusterStore | None = None,
    tenant_resolver: TenantResolver = header_tenant_resolver,
    config: EngineConfig | None = None,
) -> FastAPI:
    """Create the FastAPI application.

    Collaborators default to the production wiring (one shared Qdrant
    client, the configured embedding service). Tests inject doubles.
    """
    config = config or get_config()
    configure_logging(config.log_level, config.log_format)
    qdrant = None
    if assembler is None or topic_store is None:
        qdrant = get_qdrant_client(config)
    if topic_store is None:
        topic_store = TopicClusterStore(qdrant, config)
    if assembler is None:
        embedder = EmbeddingClient(config)
        retriever = MultiLayerRetriever(
            QdrantSimilarityStore(qdrant, config), topic_store=topic_store, config=config
        )
        assembler = ContextAssembler(embedder, retriever, config)

    app = FastAPI(
        title="Compressed Context API",
        description="Token-bounded multi-layer knowledge retrieval for AI prompts",
        version=__version__,
    )
    app.mount("/metrics", make_asgi_app())

    @app.exception_handler(ContextEngineError)
    async def engine_error_handler(request: Request, exc: ContextEngineError):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.to_dict()})

    @app.exception_handler(Exception)
    async def unexpected_error_handler(request: Request, exc: Exception):
        logger.error(
            "request_failed_unexpectedly",
            extra={
                "path": request.url.path,
                "error": str(exc),
                "error_type": type(exc).__name__,
            },
        )
        error = ContextEngineError()
        return JSONResponse(status_code=error.status_code, content={"error": error.to_dict()})

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        fields = [".".join(str(p) for p in err.get("loc", ())) for err in exc.errors()]
        return JSONResponse(
            status_code=400,
            content={
                "error": {
                    "kind": "invalid_input",
                    "message": f"Invalid request fields: {', '.join(fields)}",
                }
            },
        )

    def resolve_tenant(request: Request) -> str:
        return tenant_resolver(request)

    @app.post(
        "/context",
        response_model=ContextResponseModel,
        response_model_exclude_none=True,
        tags=["Context"],
    )
    def get_compressed_context(
        body: ContextRequest, tenant_id: str = Depends(resolve_tenant)
    ):
        """Get compressed context for a query within a token budget."""
        response = assembler.get_compressed_context(
            ContextQuery(
                text=body.query or "",
                tenant_id=tenant_id,
                workspace_id=body.workspace_id,
                max_tokens=body.max_tokens,
                expand_topics=body.expand_topics,
            )
        )
        logger.info(
            "context_served",
            extra={
                "query_id": response.query_id,
                "query_length": len(body.query or ""),
                "items_count": len(response.context.items),
                "total_tokens": response.context.total_tokens,
                "duration_ms": response.duration_ms,
            },
        )
        return ContextResponseModel.from_response(response)

    @app.get("/context", tags=["Context"])
    def describe_context_api():
        """Describe the compressed context contract."""
        return API_DESCRIPTION

    @app.get("/topics", tags=["Topics"])
    def list_topics(
        workspace_id: Optional[str] = Query(None, alias="workspaceId"),
        include_documents: bool = Query(False, alias="includeDocuments"),
        tenant_id: str = Depends(resolve_tenant),
    ):
        """List topic clusters, optionally with member documents."""
        if include_documents:
            pairs = topic_store.list_topics_with_documents(tenant_id, workspace_id)
            topics = [_topic_model(topic, docs) for topic, docs in pairs]
        else:
            topics = [_topic_model(t) for t in topic_store.list_topics(tenant_id, workspace_id)]
        return {"topics": [t.model_dump(by_alias=True, exclude_none=True) for t in topics]}

    @app.get("/topics/{topic_id}/documents", tags=["Topics"])
    def list_topic_documents(topic_id: str, tenant_id: str = Depends(resolve_tenant)):
        """List member documents of one topic."""
        documents = topic_store.list_topic_documents(topic_id, tenant_id)
        return {
            "topicId": topic_id,
            "documents": [
                TopicDocumentModel.from_document(d).model_dump(by_alias=True)
                for d in documents
            ],
        }

    @app.get("/topics/{topic_id}/concepts", tags=["Topics"])
    def list_topic_concepts(topic_id: str, tenant_id: str = Depends(resolve_tenant)):
        """List concepts related to one topic."""
        concepts = topic_store.list_topic_concepts(topic_id, tenant_id)
        return {
            "topicId": topic_id,
            "concepts": [
                ConceptModel(
                    id=c.source_id,
                    name=c.source_name,
                    description=c.content,
                    concept_type=c.concept_type,
                    token_count=c.token_count,
                ).model_dump(by_alias=True)
                for c in concepts
            ],
        }

    @app.get("/health", response_model=HealthResponse, tags=["Health"])
    def health():
        """Report vector store and embedding service availability."""
        qdrant_ok = check_qdrant_health(topic_store.client)
        embed_client = getattr(assembler, "embedder", None)
        embedding_ok = bool(embed_client is not None and embed_client.health_check())
        status = "healthy" if qdrant_ok and embedding_ok else "degraded"
        logger.info(
            "health_checked",
            extra={
                "qdrant_available": qdrant_ok,
                "embedding_available": embedding_ok,
                "status": status,
            },
        )
        return HealthResponse(
            status=status, qdrant_available=qdrant_ok, embedding_available=embedding_ok
        )

    return app
