"""Query routing: decide which strategies a query can use."""

from dataclasses import dataclass, field
from typing import Dict, Tuple

import structlog

from .models import SearchQuery, StrategyKind

logger = structlog.get_logger("search_service.router")

SKIP_NO_TEXT = "no_text"
SKIP_NO_VECTOR = "no_vector"
SKIP_ZERO_WEIGHT = "zero_weight"


@dataclass(frozen=True)
class RoutingDecision:
    """Strategies to dispatch, plus the reason each remaining one was skipped."""
    strategies: Tuple[StrategyKind, ...] = ()
    skipped: Dict[StrategyKind, str] = field(default_factory=dict)

    @property
    def is_empty(self) -> bool:
        return not self.strategies


class QueryRouter:
    """Maps a query onto the strategies worth invoking.

    Rules
    - blank text disables keyword and fuzzy matching
    - a missing or empty vector disables semantic matching
    - a zero weight disables a strategy, since it cannot move the ranking
    """

    def route(self, query: SearchQuery) -> RoutingDecision:
        strategies = []
        skipped: Dict[StrategyKind, str] = {}

        for kind in StrategyKind:
            if kind is StrategyKind.SEMANTIC:
                available = query.has_vector
                reason = SKIP_NO_VECTOR
            else:
                available = query.has_text
                reason = SKIP_NO_TEXT

            if not available:
                skipped[kind] = reason
            elif query.weights.for_kind(kind) == 0:
                skipped[kind] = SKIP_ZERO_WEIGHT
            else:
                strategies.append(kind)

        decision = RoutingDecision(strategies=tuple(strategies), skipped=skipped)
        logger.debug(
            "Query routed",
            strategies=[kind.value for kind in decision.strategies],
            skipped={kind.value: reason for kind, reason in skipped.items()}
        )
        return decision
