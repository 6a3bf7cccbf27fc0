"""Version information for the Compressed Context Engine.

Single source of truth for version number.
Follows PEP 440 and semantic versioning principles.
"""

__version__ = "1.2.0"
__version_info__ = tuple(int(part) for part in __version__.split("."))

# Version history:
# 1.2.0 - Workspace precedence, topic concepts lookup, prompt formatting
# 1.1.0 - Per-layer fan-out, partial-failure tolerance, Prometheus metrics
# 1.0.0 - Initial release (L2/L3/L4 retrieval with greedy token budget)
