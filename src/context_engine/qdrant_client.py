"""Qdrant client wrapper for the Compressed Context Engine.

Provides the configured Qdrant client, a never-raising health check and the
payload index helpers that make tenant-scoped filtering efficient.
"""

import logging

from qdrant_client import QdrantClient
from qdrant_client.models import KeywordIndexParams

from .config import EngineConfig, get_config

__all__ = [
    "check_qdrant_health",
    "create_scope_indexes",
    "get_qdrant_client",
]

logger = logging.getLogger("context_engine.store")


def get_qdrant_client(config: EngineConfig | None = None) -> QdrantClient:
    """Get configured Qdrant client.

    Callers build one client and pass it to the stores explicitly; there is
    no module-level singleton.

    Args:
        config: Optional EngineConfig instance. Uses get_config() if not provided.

    Returns:
        Configured QdrantClient instance.
    """
    config = config or get_config()

    api_key = (
        config.qdrant_api_key.get_secret_value()
        if config.qdrant_api_key is not None
        else None
    )
    return QdrantClient(
        host=config.qdrant_host,
        port=config.qdrant_port,
        api_key=api_key,
        https=config.qdrant_use_https,
        timeout=config.qdrant_timeout,
    )


def check_qdrant_health(client: QdrantClient) -> bool:
    """Check if Qdrant is healthy.

    Lists collections to verify Qdrant is reachable. Never raises.

    Returns:
        True if Qdrant responds successfully, False otherwise.
    """
    try:
        client.get_collections()
        return True

    except Exception as e:
        logger.warning(
            "qdrant_unhealthy",
            extra={
                "error": str(e),
                "error_type": type(e).__name__,
            },
        )
        return False


def create_scope_indexes(client: QdrantClient, collection_name: str) -> None:
    """Create keyword payload indexes for tenant_id and workspace_id.

    ``tenant_id`` uses ``is_tenant=True`` so Qdrant co-locates each tenant's
    vectors; ``workspace_id`` is a plain keyword index.

    Args:
        client: QdrantClient instance
        collection_name: Layer collection to index

    Raises:
        Exception: If the tenant index cannot be created.
    """
    try:
        client.create_payload_index(
            collection_name=collection_name,
            field_name="tenant_id",
            field_schema=KeywordIndexParams(type="keyword", is_tenant=True),
        )
    except Exception as e:
        logger.error(
            "index_creation_failed",
            extra={
                "collection": collection_name,
                "field": "tenant_id",
                "error": str(e),
                "error_type": type(e).__name__,
            },
        )
        raise

    try:
        client.create_payload_index(
            collection_name=collection_name,
            field_name="workspace_id",
            field_schema=KeywordIndexParams(type="keyword"),
        )
    except Exception as e:
        # Index may already exist
        logger.warning(
            "workspace_index_exists_or_failed",
            extra={"collection": collection_name, "error": str(e)},
        )

    logger.info("scope_indexes_created", extra={"collection": collection_name})
