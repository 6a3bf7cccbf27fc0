"""Topic cluster store: L3 topics, their member documents and related concepts.

Topic membership is produced by an external clustering process and is
read-only here. The many-to-many graph is held as two lookups: topic ->
member document ids (stored on the topic), and document -> topics derived on
demand by ``TopicIndex``. Nothing holds back-pointers.

Lookups by id are tenant-scoped; a topic of another tenant is reported exactly
like a missing one.
"""

import logging

from qdrant_client import QdrantClient
from qdrant_client.models import FieldCondition, Filter, MatchAny, MatchValue

from .config import EngineConfig, get_config
from .errors import RetrievalFailed, TopicNotFound
from .models import Concept, Layer, Topic, TopicDocument
from .similarity_store import build_scope_filter, item_from_payload

__all__ = ["TopicClusterStore", "TopicIndex"]

logger = logging.getLogger("context_engine.topics")

SCROLL_PAGE_SIZE = 256


class TopicIndex:
    """Bidirectional view over topic membership.

    Example:
        >>> index = TopicIndex.from_topics(topics)
        >>> index.members("topic-1")
        frozenset({'doc-1', 'doc-2'})
        >>> index.topics_for_document("doc-2")
        ['topic-1', 'topic-7']
    """

    def __init__(self, members_by_topic: dict[str, frozenset[str]]):
        self._members = dict(members_by_topic)

    @classmethod
    def from_topics(cls, topics: list[Topic]) -> "TopicIndex":
        return cls({topic.source_id: topic.member_document_ids for topic in topics})

    def __len__(self) -> int:
        return len(self._members)

    def __contains__(self, topic_id: str) -> bool:
        return topic_id in self._members

    def topic_ids(self) -> list[str]:
        return sorted(self._members)

    def members(self, topic_id: str) -> frozenset[str]:
        try:
            return self._members[topic_id]
        except KeyError:
            raise TopicNotFound() from None

    def topics_for_document(self, document_id: str) -> list[str]:
        return sorted(
            topic_id
            for topic_id, members in self._members.items()
            if document_id in members
        )

    def document_ids(self) -> frozenset[str]:
        return frozenset().union(*self._members.values()) if self._members else frozenset()


class TopicClusterStore:
    """Read access to topics, topic membership and topic-related concepts.

    Attributes:
        client: QdrantClient passed in by the caller
        config: EngineConfig with collection names
    """

    def __init__(self, client: QdrantClient, config: EngineConfig | None = None):
        self.client = client
        self.config = config or get_config()

    def _scroll_all(
        self,
        collection: str,
        scroll_filter: Filter,
        with_vectors: bool = False,
        limit: int | None = None,
    ) -> list:
        """Scroll every point matching the filter, following page offsets.

        Raises:
            RetrievalFailed: If Qdrant cannot be reached.
        """
        points = []
        offset = None
        try:
            while True:
                page_size = SCROLL_PAGE_SIZE
                if limit is not None:
                    page_size = min(page_size, limit - len(points))
                page, offset = self.client.scroll(
                    collection_name=collection,
                    scroll_filter=scroll_filter,
                    limit=page_size,
                    offset=offset,
                    with_payload=True,
                    with_vectors=with_vectors,
                )
                points.extend(page)
                if offset is None or (limit is not None and len(points) >= limit):
                    break
        except Exception as e:
            logger.error(
                "topic_scroll_failed",
                extra={"collection": collection, "error": str(e)},
            )
            raise RetrievalFailed() from e
        return points

    def list_topics(self, tenant_id: str, workspace_id: str | None = None) -> list[Topic]:
        """List topics visible in the tenant (and workspace) scope.

        Sorted by member count descending, then name.
        """
        points = self._scroll_all(
            self.config.collection_topics,
            build_scope_filter(tenant_id, workspace_id),
            with_vectors=True,
        )
        topics = [
            item_from_payload(Layer.L3, point.id, point.payload, point.vector)
            for point in points
        ]
        topics.sort(key=lambda t: (-t.document_count, t.source_name))

        logger.info(
            "topics_listed",
            extra={
                "tenant_id": tenant_id,
                "workspace_id": workspace_id,
                "topics_count": len(topics),
            },
        )
        return topics

    def get_topic(self, topic_id: str, tenant_id: str) -> Topic:
        """Fetch one topic of the tenant.

        Raises:
            TopicNotFound: If the id is unknown or belongs to another tenant.
        """
        points = self._scroll_all(
            self.config.collection_topics,
            Filter(
                must=[
                    FieldCondition(key="tenant_id", match=MatchValue(value=tenant_id)),
                    FieldCondition(key="source_id", match=MatchValue(value=topic_id)),
                ]
            ),
            with_vectors=True,
            limit=1,
        )
        if not points:
            logger.info("topic_not_found", extra={"tenant_id": tenant_id})
            raise TopicNotFound()
        point = points[0]
        return item_from_payload(Layer.L3, point.id, point.payload, point.vector)

    def _fetch_documents(
        self, tenant_id: str, document_ids: frozenset[str]
    ) -> dict[str, TopicDocument]:
        if not document_ids:
            return {}
        points = self._scroll_all(
            self.config.collection_documents,
            Filter(
                must=[
                    FieldCondition(key="tenant_id", match=MatchValue(value=tenant_id)),
                    FieldCondition(
                        key="source_id", match=MatchAny(any=sorted(document_ids))
                    ),
                ]
            ),
        )
        documents = {}
        for point in points:
            item = item_from_payload(Layer.L2, point.id, point.payload)
            documents[item.source_id] = TopicDocument(
                document_id=item.source_id,
                name=item.source_name,
                summary=item.content,
                token_count=item.token_count,
                workspace_id=item.workspace_id,
            )
        return documents

    def list_topic_documents(self, topic_id: str, tenant_id: str) -> list[TopicDocument]:
        """List the member documents of a topic with their summaries.

        Members without a stored summary are omitted.

        Raises:
            TopicNotFound: If the topic is unknown or belongs to another tenant.
        """
        topic = self.get_topic(topic_id, tenant_id)
        documents = self._fetch_documents(tenant_id, topic.member_document_ids)
        return sorted(documents.values(), key=lambda d: (d.name, d.document_id))

    def list_topics_with_documents(
        self, tenant_id: str, workspace_id: str | None = None
    ) -> list[tuple[Topic, list[TopicDocument]]]:
        """List topics with their member documents inlined.

        All members are fetched in one pass and distributed to their topics.
        """
        topics = self.list_topics(tenant_id, workspace_id)
        index = TopicIndex.from_topics(topics)
        documents = self._fetch_documents(tenant_id, index.document_ids())

        result = []
        for topic in topics:
            members = [
                documents[doc_id]
                for doc_id in topic.member_document_ids
                if doc_id in documents
            ]
            members.sort(key=lambda d: (d.name, d.document_id))
            result.append((topic, members))
        return result

    def list_topic_concepts(self, topic_id: str, tenant_id: str) -> list[Concept]:
        """List L4 concepts related to a topic.

        Raises:
            TopicNotFound: If the topic is unknown or belongs to another tenant.
        """
        topic = self.get_topic(topic_id, tenant_id)
        points = self._scroll_all(
            self.config.collection_concepts,
            Filter(
                must=[
                    FieldCondition(key="tenant_id", match=MatchValue(value=tenant_id)),
                    FieldCondition(
                        key="related_topic_ids",
                        match=MatchValue(value=topic.source_id),
                    ),
                ]
            ),
        )
        concepts = [item_from_payload(Layer.L4, p.id, p.payload) for p in points]
        concepts.sort(key=lambda c: (c.source_name, c.source_id))
        return concepts

    def build_index(self, tenant_id: str, workspace_id: str | None = None) -> TopicIndex:
        """Build a TopicIndex over the topics visible in scope."""
        return TopicIndex.from_topics(self.list_topics(tenant_id, workspace_id))
