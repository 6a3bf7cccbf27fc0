"""Embedding service client for the Compressed Context Engine.

Provides an httpx-based client for an OpenAI-compatible ``/embeddings``
endpoint with connection pooling, structured logging and typed failures.
A query embedding failure is terminal for the request: the client does not
retry, retry policy belongs to the caller.
"""

import contextlib
import logging
import math
import time

import httpx

from .config import EngineConfig, get_config
from .errors import EmbeddingUnavailable
from .metrics import (
    embedding_duration_seconds,
    embedding_requests_total,
    failure_events_total,
)

__all__ = ["EmbeddingClient"]

logger = logging.getLogger("context_engine.embed")


class EmbeddingClient:
    """Client for the embedding service.

    Uses a long-lived httpx.Client with connection pooling; reuse one
    instance across requests.

    Attributes:
        config: EngineConfig instance with service endpoint and model
        base_url: Base URL of the embeddings API
        client: Shared httpx.Client instance

    Example:
        >>> with EmbeddingClient() as client:
        ...     vector = client.embed("why do users churn after onboarding?")
        >>> len(vector)
        1536
    """

    def __init__(
        self,
        config: EngineConfig | None = None,
        transport: httpx.BaseTransport | None = None,
    ):
        """Initialize embedding client with configuration.

        Args:
            config: Optional EngineConfig instance. Uses get_config() if not provided.
            transport: Optional httpx transport (tests pass httpx.MockTransport).
        """
        self.config = config or get_config()
        self.base_url = self.config.embedding_base_url.rstrip("/")
        self.model = self.config.embedding_model
        self.dimensions = self.config.embedding_dimensions

        timeout_config = httpx.Timeout(
            connect=3.0,
            read=self.config.embedding_timeout,
            write=5.0,
            pool=3.0,
        )
        limits = httpx.Limits(
            max_keepalive_connections=20,
            max_connections=100,
            keepalive_expiry=10.0,
        )

        headers = {"Content-Type": "application/json"}
        if self.config.embedding_api_key is not None:
            headers["Authorization"] = (
                f"Bearer {self.config.embedding_api_key.get_secret_value()}"
            )

        self.client = httpx.Client(
            timeout=timeout_config,
            limits=limits,
            headers=headers,
            transport=transport,
        )

    def embed(self, text: str) -> list[float]:
        """Generate the embedding vector for a single text.

        Args:
            text: Non-empty text to embed.

        Returns:
            Vector of ``config.embedding_dimensions`` floats.

        Raises:
            EmbeddingUnavailable: On timeout, HTTP/transport error, or a
                response that is not a well-formed vector of the expected size.
        """
        start_time = time.perf_counter()

        try:
            response = self.client.post(
                f"{self.base_url}/embeddings",
                json={
                    "model": self.model,
                    "input": text,
                    "dimensions": self.dimensions,
                },
            )
            response.raise_for_status()
            vector = self._parse_vector(response)

        except httpx.TimeoutException as e:
            self._record_failure("timeout", "EMBEDDING_TIMEOUT", start_time, e)
            raise EmbeddingUnavailable("Embedding service timed out") from e

        except httpx.HTTPError as e:
            self._record_failure("failed", "EMBEDDING_ERROR", start_time, e)
            raise EmbeddingUnavailable("Embedding service unavailable") from e

        except ValueError as e:
            self._record_failure("failed", "EMBEDDING_MALFORMED", start_time, e)
            raise EmbeddingUnavailable(
                "Embedding service returned malformed output"
            ) from e

        duration_seconds = time.perf_counter() - start_time
        embedding_requests_total.labels(status="success").inc()
        embedding_duration_seconds.observe(duration_seconds)
        logger.debug(
            "embedding_generated",
            extra={
                "model": self.model,
                "dimensions": len(vector),
                "duration_ms": round(duration_seconds * 1000, 2),
            },
        )
        return vector

    def _parse_vector(self, response: httpx.Response) -> list[float]:
        """Extract ``data[0].embedding`` and validate its shape.

        Raises:
            ValueError: If the payload is not a vector of the expected size.
        """
        try:
            raw = response.json()["data"][0]["embedding"]
        except (KeyError, IndexError, TypeError) as e:
            raise ValueError(f"missing data[0].embedding: {e}") from e

        if not isinstance(raw, list) or len(raw) != self.dimensions:
            got = len(raw) if isinstance(raw, list) else type(raw).__name__
            raise ValueError(f"expected {self.dimensions} dimensions, got {got}")

        vector = []
        for value in raw:
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise ValueError("embedding contains non-numeric values")
            if not math.isfinite(value):
                raise ValueError("embedding contains non-finite values")
            vector.append(float(value))
        return vector

    def _record_failure(
        self, status: str, error_code: str, start_time: float, error: Exception
    ) -> None:
        duration_seconds = time.perf_counter() - start_time
        embedding_requests_total.labels(status=status).inc()
        embedding_duration_seconds.observe(duration_seconds)
        failure_events_total.labels(component="embedding", error_code=error_code).inc()
        logger.error(
            "embedding_failed",
            extra={
                "base_url": self.base_url,
                "model": self.model,
                "error_code": error_code,
                "error": str(error),
            },
        )

    def health_check(self) -> bool:
        """Check if the embedding service answers a tiny request.

        Never raises.

        Returns:
            True if an embedding was produced, False otherwise.
        """
        try:
            self.embed("health")
            return True
        except EmbeddingUnavailable as e:
            logger.warning(
                "embedding_health_check_failed",
                extra={"base_url": self.base_url, "error": str(e)},
            )
            return False

    def close(self) -> None:
        """Close httpx client and release resources."""
        if getattr(self, "client", None) is not None:
            self.client.close()

    def __enter__(self) -> "EmbeddingClient":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def __del__(self) -> None:
        # httpx may already be unloaded at interpreter shutdown
        with contextlib.suppress(Exception):
            self.close()
