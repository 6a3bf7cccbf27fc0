"""Tests for the Compressed Context HTTP API.

Uses FastAPI's TestClient with an in-process store, a fake embedder and a
mocked topic store; no network services are required.
"""

import logging
from unittest.mock import Mock

import pytest
from conftest import (
    TENANT,
    FakeEmbedder,
    FakeSimilarityStore,
    make_concept,
    make_document,
    make_topic,
)
from fastapi.testclient import TestClient

from context_engine.api import create_app
from context_engine.assembler import ContextAssembler
from context_engine.config import EngineConfig
from context_engine.errors import EmbeddingUnavailable, TopicNotFound
from context_engine.logging_config import ROOT_LOGGER, TextFormatter
from context_engine.models import Layer, TopicDocument
from context_engine.retriever import MultiLayerRetriever

HEADERS = {"X-Authenticated-User": "user-7", "X-Tenant-Id": TENANT}


def build_client(engine_config, topic_store, store=None, embedder=None):
    store = store if store is not None else FakeSimilarityStore(
        [
            make_document("doc-onboarding", similarity=0.91, token_count=200),
            make_topic("topic-activation", similarity=0.88, token_count=500),
            make_concept("concept-churn", similarity=0.70, token_count=50),
        ]
    )
    retriever = MultiLayerRetriever(store, topic_store=topic_store, config=engine_config)
    assembler = ContextAssembler(embedder or FakeEmbedder(), retriever, engine_config)
    app = create_app(assembler=assembler, topic_store=topic_store, config=engine_config)
    return TestClient(app)


@pytest.fixture
def client(engine_config, mock_topic_store):
    return build_client(engine_config, mock_topic_store)


class TestPostContext:
    """Test POST /context."""

    def test_success_shape(self, client):
        response = client.post(
            "/context", json={"query": "why do users churn?", "maxTokens": 700}, headers=HEADERS
        )

        assert response.status_code == 200
        body = response.json()
        context = body["context"]
        assert [item["layer"] for item in context["items"]] == ["L2", "L3"]
        assert context["items"][0] == {
            "layer": "L2",
            "sourceId": "doc-onboarding",
            "sourceName": "Document doc-onboarding",
            "content": "Summary of doc-onboarding",
            "similarity": 0.91,
            "tokenCount": 200,
        }
        assert context["totalTokens"] == 700
        assert context["layerCounts"] == {"L1": 0, "L2": 1, "L3": 1, "L4": 0}
        assert len(body["queryId"]) == 32
        assert body["durationMs"] >= 0
        assert body["budget"] == 700
        assert body["degradedLayers"] == []
        assert "topicMembers" not in body

    def test_skip_dont_stop(self, client):
        response = client.post(
            "/context", json={"query": "churn", "maxTokens": 260}, headers=HEADERS
        )

        context = response.json()["context"]
        assert [item["layer"] for item in context["items"]] == ["L2", "L4"]
        assert context["totalTokens"] == 250

    def test_budget_defaults_and_clamps(self, client):
        default = client.post("/context", json={"query": "churn"}, headers=HEADERS)
        clamped = client.post(
            "/context", json={"query": "churn", "maxTokens": 50000}, headers=HEADERS
        )

        assert default.json()["budget"] == 2000
        assert clamped.json()["budget"] == 8000

    def test_zero_budget(self, client):
        response = client.post("/context", json={"query": "churn", "maxTokens": 0}, headers=HEADERS)

        context = response.json()["context"]
        assert context["items"] == []
        assert context["totalTokens"] == 0

    @pytest.mark.parametrize("body", [{"query": "   "}, {"query": ""}, {}])
    def test_blank_query_is_400(self, client, body):
        response = client.post("/context", json=body, headers=HEADERS)

        assert response.status_code == 400
        assert response.json() == {
            "error": {"kind": "invalid_input", "message": "Query is required"}
        }

    def test_non_integer_budget_is_400(self, client):
        response = client.post(
            "/context", json={"query": "churn", "maxTokens": "plenty"}, headers=HEADERS
        )

        assert response.status_code == 400
        assert response.json()["error"]["kind"] == "invalid_input"

    def test_unauthenticated_is_401(self, client):
        response = client.post("/context", json={"query": "churn"}, headers={"X-Tenant-Id": TENANT})

        assert response.status_code == 401
        assert response.json()["error"]["kind"] == "unauthorized"

    def test_missing_tenant_is_404(self, client):
        response = client.post(
            "/context", json={"query": "churn"}, headers={"X-Authenticated-User": "user-7"}
        )

        assert response.status_code == 404
        assert response.json() == {
            "error": {"kind": "tenant_not_found", "message": "Team not found"}
        }

    def test_embedding_unavailable_is_503(self, engine_config, mock_topic_store):
        client = build_client(
            engine_config, mock_topic_store, embedder=FakeEmbedder(error=EmbeddingUnavailable())
        )

        response = client.post("/context", json={"query": "churn"}, headers=HEADERS)

        assert response.status_code == 503
        assert response.json()["error"]["kind"] == "embedding_unavailable"

    def test_all_layers_failed_is_502(self, engine_config, mock_topic_store):
        store = FakeSimilarityStore(failing_layers={Layer.L2, Layer.L3, Layer.L4})
        client = build_client(engine_config, mock_topic_store, store=store)

        response = client.post("/context", json={"query": "churn"}, headers=HEADERS)

        assert response.status_code == 502
        assert response.json() == {
            "error": {"kind": "retrieval_failed", "message": "Search failed"}
        }

    def test_degraded_layer_still_200(self, engine_config, mock_topic_store):
        store = FakeSimilarityStore(
            [make_document("doc-1"), make_concept("concept-1")], failing_layers={Layer.L3}
        )
        client = build_client(engine_config, mock_topic_store, store=store)

        response = client.post("/context", json={"query": "churn"}, headers=HEADERS)

        assert response.status_code == 200
        assert response.json()["degradedLayers"] == ["L3"]
        assert response.json()["context"]["layerCounts"]["L3"] == 0

    def test_expand_topics(self, client, mock_topic_store):
        mock_topic_store.list_topic_documents.return_value = [
            TopicDocument("doc-onboarding", "Survey", "Import is slow", 180)
        ]

        response = client.post(
            "/context",
            json={"query": "churn", "maxTokens": 700, "expandTopics": True},
            headers=HEADERS,
        )

        members = response.json()["topicMembers"]
        assert members == {
            "topic-activation": [
                {
                    "documentId": "doc-onboarding",
                    "name": "Survey",
                    "summary": "Import is slow",
                    "tokenCount": 180,
                }
            ]
        }

    def test_workspace_forwarded(self, engine_config, mock_topic_store):
        store = FakeSimilarityStore([make_document("doc-1")])
        client = build_client(engine_config, mock_topic_store, store=store)

        client.post("/context", json={"query": "churn", "workspaceId": "ws-3"}, headers=HEADERS)

        assert {call["workspace_id"] for call in store.calls} == {"ws-3"}


class TestGetContext:
    """Test GET /context self-description."""

    def test_describes_contract(self, client):
        body = client.get("/context").json()

        assert body["method"] == "POST"
        assert set(body["requestBody"]) == {"query", "workspaceId", "maxTokens", "expandTopics"}
        assert set(body["layers"]) == {"L2", "L3", "L4"}


class TestTopics:
    """Test topic browsing endpoints."""

    def test_list_topics(self, client, mock_topic_store):
        mock_topic_store.list_topics.return_value = [
            make_topic("topic-1", members={"doc-2", "doc-1"}, workspace_id="ws-1")
        ]

        response = client.get("/topics", params={"workspaceId": "ws-1"}, headers=HEADERS)

        assert response.status_code == 200
        assert response.json() == {
            "topics": [
                {
                    "id": "topic-1",
                    "name": "Topic topic-1",
                    "summary": "Theme of topic-1",
                    "tokenCount": 500,
                    "workspaceId": "ws-1",
                    "documentCount": 2,
                    "memberDocumentIds": ["doc-1", "doc-2"],
                }
            ]
        }
        mock_topic_store.list_topics.assert_called_once_with(TENANT, "ws-1")

    def test_list_topics_with_documents(self, client, mock_topic_store):
        topic = make_topic("topic-1", members={"doc-1"})
        mock_topic_store.list_topics_with_documents.return_value = [
            (topic, [TopicDocument("doc-1", "Survey", "Import is slow", 180)])
        ]

        response = client.get("/topics", params={"includeDocuments": "true"}, headers=HEADERS)

        topics = response.json()["topics"]
        assert topics[0]["documents"] == [
            {"documentId": "doc-1", "name": "Survey", "summary": "Import is slow", "tokenCount": 180}
        ]
        mock_topic_store.list_topics_with_documents.assert_called_once_with(TENANT, None)
        mock_topic_store.list_topics.assert_not_called()

    def test_topic_documents(self, client, mock_topic_store):
        mock_topic_store.list_topic_documents.return_value = [
            TopicDocument("doc-1", "Survey", "Import is slow", 180, "ws-1")
        ]

        response = client.get("/topics/topic-1/documents", headers=HEADERS)

        assert response.json() == {
            "topicId": "topic-1",
            "documents": [
                {
                    "documentId": "doc-1",
                    "name": "Survey",
                    "summary": "Import is slow",
                    "tokenCount": 180,
                    "workspaceId": "ws-1",
                }
            ],
        }
        mock_topic_store.list_topic_documents.assert_called_once_with("topic-1", TENANT)

    def test_unknown_topic_is_404(self, client, mock_topic_store):
        mock_topic_store.list_topic_documents.side_effect = TopicNotFound()

        response = client.get("/topics/topic-x/documents", headers=HEADERS)

        assert response.status_code == 404
        assert response.json()["error"]["kind"] == "topic_not_found"

    def test_topic_concepts(self, client, mock_topic_store):
        mock_topic_store.list_topic_concepts.return_value = [make_concept("concept-1")]

        response = client.get("/topics/topic-1/concepts", headers=HEADERS)

        assert response.json()["concepts"] == [
            {
                "id": "concept-1",
                "name": "Concept concept-1",
                "description": "Idea concept-1",
                "conceptType": None,
                "tokenCount": 50,
            }
        ]

    def test_topics_require_tenant(self, client):
        response = client.get("/topics", headers={"X-Authenticated-User": "user-7"})
        assert response.status_code == 404


class TestHealthAndMetrics:
    """Test operational endpoints."""

    def test_health(self, client):
        body = client.get("/health").json()

        assert body == {"status": "healthy", "qdrant_available": True, "embedding_available": True}

    def test_health_degraded(self, engine_config, mock_topic_store):
        mock_topic_store.client.get_collections.side_effect = ConnectionError("down")
        client = build_client(engine_config, mock_topic_store)

        assert client.get("/health").json()["status"] == "degraded"

    def test_metrics_exposed(self, client):
        client.post("/context", json={"query": "churn"}, headers=HEADERS)

        response = client.get("/metrics/")

        assert response.status_code == 200
        assert "context_engine_requests_total" in response.text


class TestUnexpectedErrors:
    """Test that unclassified failures keep the error envelope."""

    def test_unexpected_exception_is_structured_500(self, engine_config, mock_topic_store):
        assembler = Mock()
        assembler.get_compressed_context.side_effect = RuntimeError("index corrupted")
        app = create_app(assembler=assembler, topic_store=mock_topic_store, config=engine_config)
        client = TestClient(app, raise_server_exceptions=False)

        response = client.post("/context", json={"query": "churn"}, headers=HEADERS)

        assert response.status_code == 500
        assert response.headers["content-type"].startswith("application/json")
        assert response.json() == {
            "error": {"kind": "internal_error", "message": "Internal error"}
        }
        assert "index corrupted" not in response.text


class TestLoggingFromConfig:
    """Test that the app applies the configured log level and format."""

    @pytest.fixture
    def restore_logger(self):
        logger = logging.getLogger(ROOT_LOGGER)
        level = logger.level
        formatter = logger.handlers[0].formatter if logger.handlers else None
        yield logger
        logger.setLevel(level)
        if logger.handlers:
            logger.handlers[0].setFormatter(formatter)

    def test_config_drives_logging(self, mock_topic_store, restore_logger):
        config = EngineConfig(
            similarity_threshold=0.5, log_level="debug", log_format="text"
        )

        build_client(config, mock_topic_store)

        assert restore_logger.level == logging.DEBUG
        assert len(restore_logger.handlers) == 1
        assert isinstance(restore_logger.handlers[0].formatter, TextFormatter)
