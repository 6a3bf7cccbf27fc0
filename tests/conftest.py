"""Shared pytest fixtures for Compressed Context Engine tests.

Fixture Organization:
    - Test doubles: FakeSimilarityStore (in-process cosine store with a call
      counter and injectable layer failures) and FakeEmbedder
    - Sample data: documents, topics and concepts with embeddings chosen so
      that their similarity to QUERY_VECTOR is exactly the requested value
    - Integration: requires_qdrant marker, skipped unless --run-integration

Similarity trick: QUERY_VECTOR is the unit x-axis, so an item embedded at
(s, sqrt(1 - s^2)) has cosine similarity s with the query.
"""

import logging
import math
import socket
from unittest.mock import Mock

import pytest

from context_engine.config import EngineConfig, reset_config
from context_engine.errors import EmbeddingUnavailable, StoreUnavailable
from context_engine.models import Concept, DocumentSummary, Topic
from context_engine.similarity_store import InMemorySimilarityStore

TENANT = "tenant-acme"
OTHER_TENANT = "tenant-globex"
QUERY_VECTOR = [1.0, 0.0]


# =============================================================================
# Pytest CLI Options
# =============================================================================


def pytest_addoption(parser):
    """Add custom command line options for test selection."""
    parser.addoption(
        "--run-integration",
        action="store_true",
        default=False,
        help="Run integration tests requiring a live Qdrant",
    )


def _is_port_open(port: int, host: str = "localhost") -> bool:
    try:
        with socket.create_connection((host, port), timeout=1):
            return True
    except OSError:
        return False


def pytest_collection_modifyitems(config, items):
    """Skip requires_qdrant tests unless requested and Qdrant is reachable."""
    if config.getoption("--run-integration") and _is_port_open(6333):
        return
    skip_qdrant = pytest.mark.skip(reason="needs --run-integration and Qdrant on :6333")
    for item in items:
        if "requires_qdrant" in item.keywords:
            item.add_marker(skip_qdrant)


# =============================================================================
# Sample data builders
# =============================================================================


def vector_with_similarity(similarity: float) -> tuple[float, float]:
    """2-d embedding whose cosine similarity with QUERY_VECTOR is ``similarity``."""
    return (similarity, math.sqrt(max(0.0, 1.0 - similarity * similarity)))


def make_document(
    source_id, similarity=0.9, token_count=200, tenant_id=TENANT, workspace_id=None
):
    return DocumentSummary(
        source_id=source_id,
        source_name=f"Document {source_id}",
        content=f"Summary of {source_id}",
        token_count=token_count,
        embedding=vector_with_similarity(similarity),
        tenant_id=tenant_id,
        workspace_id=workspace_id,
    )


def make_topic(
    source_id,
    similarity=0.9,
    token_count=500,
    members=(),
    tenant_id=TENANT,
    workspace_id=None,
):
    return Topic(
        source_id=source_id,
        source_name=f"Topic {source_id}",
        content=f"Theme of {source_id}",
        token_count=token_count,
        embedding=vector_with_similarity(similarity),
        tenant_id=tenant_id,
        workspace_id=workspace_id,
        member_document_ids=frozenset(members),
    )


def make_concept(source_id, similarity=0.9, token_count=50, tenant_id=TENANT, workspace_id=None):
    return Concept(
        source_id=source_id,
        source_name=f"Concept {source_id}",
        content=f"Idea {source_id}",
        token_count=token_count,
        embedding=vector_with_similarity(similarity),
        tenant_id=tenant_id,
        workspace_id=workspace_id,
    )


# =============================================================================
# Test doubles
# =============================================================================


class FakeSimilarityStore(InMemorySimilarityStore):
    """In-process store that records every query and can fail chosen layers."""

    def __init__(self, items=(), failing_layers=()):
        super().__init__(items)
        self.failing_layers = set(failing_layers)
        self.calls = []

    @property
    def call_count(self) -> int:
        return len(self.calls)

    def nearest(
        self,
        layer,
        vector,
        tenant_id,
        workspace_id=None,
        limit=20,
        score_threshold=None,
    ):
        self.calls.append(
            {
                "layer": layer,
                "tenant_id": tenant_id,
                "workspace_id": workspace_id,
                "limit": limit,
                "score_threshold": score_threshold,
            }
        )
        if layer in self.failing_layers:
            raise StoreUnavailable(f"{layer.value} index offline")
        return super().nearest(
            layer,
            vector,
            tenant_id,
            workspace_id=workspace_id,
            limit=limit,
            score_threshold=score_threshold,
        )


class FakeEmbedder:
    """Deterministic embedder returning a fixed vector."""

    def __init__(self, vector=None, error: Exception | None = None):
        self.vector = list(vector or QUERY_VECTOR)
        self.error = error
        self.calls = []

    def embed(self, text):
        self.calls.append(text)
        if self.error is not None:
            raise self.error
        return list(self.vector)

    def health_check(self):
        return self.error is None


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture(autouse=True)
def _reset_config():
    """Clear the cached config singleton around every test."""
    reset_config()
    yield
    reset_config()


@pytest.fixture
def engine_config():
    """Config with a similarity floor low enough for the sample data."""
    return EngineConfig(similarity_threshold=0.5, candidate_pool_size=20)


@pytest.fixture
def scenario_items():
    """Pool from the allocation scenarios: L2 0.91/200, L3 0.88/500, L4 0.70/50."""
    return [
        make_document("doc-onboarding", similarity=0.91, token_count=200),
        make_topic("topic-activation", similarity=0.88, token_count=500),
        make_concept("concept-churn", similarity=0.70, token_count=50),
    ]


@pytest.fixture
def fake_store(scenario_items):
    return FakeSimilarityStore(scenario_items)


@pytest.fixture
def fake_embedder():
    return FakeEmbedder()


@pytest.fixture
def unavailable_embedder():
    return FakeEmbedder(error=EmbeddingUnavailable())


@pytest.fixture
def mock_topic_store():
    """Mock TopicClusterStore for expansion and API tests."""
    store = Mock()
    store.list_topic_documents.return_value = []
    store.list_topics.return_value = []
    store.list_topics_with_documents.return_value = []
    store.list_topic_concepts.return_value = []
    return store


@pytest.fixture
def propagate_logs():
    """Let context_engine records reach caplog's root handler."""
    logger = logging.getLogger("context_engine")
    logger.propagate = True
    yield
    logger.propagate = False
