"""Typed error taxonomy for the Compressed Context Engine.

Every failure surfaced to a caller is a ContextEngineError carrying a
machine-readable ``kind`` and a human-readable ``message``. ``to_dict()`` is the
only representation that leaves the engine; it never contains stack traces or
internal identifiers.
"""

__all__ = [
    "ContextEngineError",
    "EmbeddingUnavailable",
    "InvalidInput",
    "InvalidQuery",
    "RetrievalFailed",
    "StoreUnavailable",
    "TenantNotFound",
    "TopicNotFound",
    "Unauthorized",
]


class ContextEngineError(Exception):
    """Base class for all engine errors.

    Attributes:
        kind: Machine-readable error kind (snake_case)
        message: Human-readable message safe to show to callers
        status_code: HTTP status used by the API layer
    """

    kind = "internal_error"
    status_code = 500
    default_message = "Internal error"

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {"kind": self.kind, "message": self.message}


class InvalidInput(ContextEngineError):
    """Request failed validation before any store access."""

    kind = "invalid_input"
    status_code = 400
    default_message = "Invalid input"


class InvalidQuery(InvalidInput):
    """Query text is missing or blank after trimming."""

    default_message = "Query is required"


class Unauthorized(ContextEngineError):
    """Caller is not authenticated."""

    kind = "unauthorized"
    status_code = 401
    default_message = "Unauthorized"


class TenantNotFound(ContextEngineError):
    """Caller's tenant/team could not be resolved."""

    kind = "tenant_not_found"
    status_code = 404
    default_message = "Team not found"


class TopicNotFound(ContextEngineError):
    """Topic does not exist or belongs to another tenant.

    Both cases produce the same error so cross-tenant ids are not confirmed.
    """

    kind = "topic_not_found"
    status_code = 404
    default_message = "Topic not found"


class EmbeddingUnavailable(ContextEngineError):
    """Embedding capability unreachable or returned malformed output.

    Terminal for the request; not retried internally.
    """

    kind = "embedding_unavailable"
    status_code = 503
    default_message = "Embedding service unavailable"


class RetrievalFailed(ContextEngineError):
    """The similarity store could not be reached for any requested layer."""

    kind = "retrieval_failed"
    status_code = 502
    default_message = "Search failed"


class StoreUnavailable(Exception):
    """Raised by store adapters when a single store call fails.

    Internal to the engine: the retriever degrades the affected layer to
    empty, topic browsing converts it into RetrievalFailed.
    """

    pass
