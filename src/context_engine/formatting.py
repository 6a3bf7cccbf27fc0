"""Render a compressed context for injection into a system prompt.

Items are grouped by layer under markdown headings, preserving selection
order inside each group. An empty context renders as an empty string so
callers can concatenate unconditionally. The block starts at its heading;
callers add their own separator.
"""

from .models import CompressedContext, Layer

__all__ = ["format_context_for_prompt"]

_SECTION_TITLES = {
    Layer.L2: "Document Summaries",
    Layer.L3: "Topic Context",
    Layer.L4: "Key Concepts",
}

_HEADER = (
    "## Knowledge Base Context\n"
    "Relevant information from the knowledge base:\n"
)


def format_context_for_prompt(
    context: CompressedContext, include_scores: bool = False
) -> str:
    """Format selected items as a markdown knowledge block.

    Args:
        context: Compressed context to render
        include_scores: Append the displayed similarity to each entry

    Returns:
        Markdown string, or "" when the context has no items.

    Example:
        >>> print(format_context_for_prompt(context))
        ## Knowledge Base Context
        ...
        ### Document Summaries
        **Onboarding survey**: Users drop off at the import step...
    """
    if not context.items:
        return ""

    sections = []
    for layer, title in _SECTION_TITLES.items():
        entries = []
        for scored in context.items:
            if scored.layer != layer:
                continue
            entry = f"**{scored.item.source_name}**: {scored.item.content}"
            if include_scores:
                entry += f" ({int(scored.display_similarity * 100)}%)"
            entries.append(entry)
        if entries:
            sections.append(f"### {title}\n" + "\n\n".join(entries))

    return _HEADER + "\n\n".join(sections)
