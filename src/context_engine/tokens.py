"""Token counting with tiktoken.

Stored items carry a precomputed ``token_count``; this module is the fallback
used at the store boundary when a row lacks one, and for request-side
accounting of rendered prompt context.
"""

from functools import lru_cache

import tiktoken

from .models import DEFAULT_TOKEN_COUNTS, Layer

DEFAULT_ENCODING = "cl100k_base"


@lru_cache(maxsize=4)
def _get_encoding(encoding_name: str) -> tiktoken.Encoding:
    return tiktoken.get_encoding(encoding_name)


def count_tokens(text: str, encoding_name: str = DEFAULT_ENCODING) -> int:
    """Count tokens in text using tiktoken.

    Args:
        text: Text to count tokens for
        encoding_name: tiktoken encoding (default: cl100k_base)

    Returns:
        Number of tokens in the text, 0 for empty text.

    Example:
        >>> count_tokens("Hello world")
        2
    """
    if not text:
        return 0
    return len(_get_encoding(encoding_name).encode(text))


def resolve_token_count(stored: object, content: str, layer: Layer) -> int:
    """Resolve an item's cost from a stored value, falling back to counting.

    A valid non-negative integer stored by the ingestion pipeline wins. Without
    one, the content is counted; empty content costs the layer default.
    """
    if isinstance(stored, int) and not isinstance(stored, bool) and stored >= 0:
        return stored
    if isinstance(stored, float) and stored >= 0 and stored.is_integer():
        return int(stored)
    counted = count_tokens(content)
    return counted if counted > 0 else DEFAULT_TOKEN_COUNTS[layer]
