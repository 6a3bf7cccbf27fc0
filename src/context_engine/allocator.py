"""Token budget allocation over ranked multi-layer candidates.

Greedy fill under a hard token ceiling:
- Flatten every layer's candidates into one pool
- Rank by similarity descending; ties go to the cheaper item, then to the
  more specific layer (L2 before L3 before L4)
- Walk the ranking and admit each item that still fits. An item that does
  not fit is skipped, not truncated, and the walk continues: a later,
  smaller item may still fit
- Stop when the pool is exhausted or the budget is exactly consumed

No de-duplication across layers: a document retrieved at L2 and summarized
inside a retrieved L3 topic may appear in both representations.
"""

import logging
from collections.abc import Iterable, Mapping

from .metrics import context_budget_utilization, context_tokens_selected
from .models import LAYER_PRECEDENCE, Layer, ScoredItem

__all__ = ["allocate", "rank_candidates"]

logger = logging.getLogger("context_engine.allocate")


def _ranking_key(scored: ScoredItem) -> tuple[float, int, int]:
    return (-scored.similarity, scored.token_count, LAYER_PRECEDENCE[scored.layer])


def rank_candidates(
    candidates_by_layer: Mapping[Layer, Iterable[ScoredItem]],
) -> list[ScoredItem]:
    """Flatten per-layer candidates into one pool in admission order."""
    pool = [scored for items in candidates_by_layer.values() for scored in items]
    pool.sort(key=_ranking_key)
    return pool


def allocate(
    candidates_by_layer: Mapping[Layer, Iterable[ScoredItem]],
    budget: int,
) -> list[ScoredItem]:
    """Select the most relevant candidates whose total cost fits the budget.

    Args:
        candidates_by_layer: Layer -> candidates (any order)
        budget: Token ceiling; values <= 0 select nothing

    Returns:
        Admitted items in admission order (similarity descending).
    """
    pool = rank_candidates(candidates_by_layer)
    selected: list[ScoredItem] = []
    tokens_used = 0
    skipped = 0

    if budget > 0:
        for scored in pool:
            if tokens_used + scored.token_count <= budget:
                selected.append(scored)
                tokens_used += scored.token_count
                if tokens_used == budget:
                    break
            else:
                skipped += 1

    context_tokens_selected.observe(tokens_used)
    if budget > 0:
        context_budget_utilization.observe(tokens_used / budget)

    logger.debug(
        "greedy_fill_completed",
        extra={
            "budget": budget,
            "tokens_used": tokens_used,
            "utilization_pct": int(tokens_used / budget * 100) if budget > 0 else 0,
            "results_considered": len(pool),
            "results_selected": len(selected),
            "oversized_skipped": skipped,
        },
    )
    return selected
