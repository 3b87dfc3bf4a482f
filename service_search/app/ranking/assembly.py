"""Result assembly: order, tie-break and truncate fused candidates."""

import math
from datetime import date, datetime, time, timezone
from typing import Any, Callable, Hashable, List, Mapping, Optional, Tuple

import structlog

from ..hybrid.models import Candidate, RankedResult

logger = structlog.get_logger("search_assembly")

TieBreaker = Callable[[Candidate], Any]


def timestamp_value(value: Any) -> Optional[float]:
    """Convert a payload timestamp to epoch seconds.

    Accepts ``datetime`` (naive values are read as UTC), ``date``, ISO-8601
    strings and epoch numbers. Anything else yields ``None``.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.timestamp()
    if isinstance(value, date):
        return datetime.combine(value, time.min, tzinfo=timezone.utc).timestamp()
    if isinstance(value, (int, float)):
        return float(value) if math.isfinite(value) else None
    if isinstance(value, str):
        try:
            return timestamp_value(datetime.fromisoformat(value.strip().replace("Z", "+00:00")))
        except ValueError:
            return None
    return None


def id_sort_key(record_id: Hashable) -> Tuple[int, Any]:
    """Ascending key for ids of mixed types: numbers, then strings, then the rest."""
    if isinstance(record_id, (int, float)) and not isinstance(record_id, bool):
        return (0, record_id)
    if isinstance(record_id, str):
        return (1, record_id)
    return (2, repr(record_id))


class ResultAssembler:
    """Turns fused scores into the final ranked list.

    Ordering: final score descending, then the tie-breaker ascending. The
    default tie-breaker prefers the most recent ``timestamp_field`` (missing
    timestamps last) and then the smallest id, which makes the order total.
    """

    def __init__(self, timestamp_field: str = "updated_at"):
        self.timestamp_field = timestamp_field

    def default_tie_breaker(self, candidate: Candidate) -> Tuple:
        ts = timestamp_value(candidate.payload.get(self.timestamp_field))
        if ts is None:
            return (1, 0.0, id_sort_key(candidate.id))
        return (0, -ts, id_sort_key(candidate.id))

    def assemble(
        self,
        candidates: Mapping[Hashable, Candidate],
        fused: Mapping[Hashable, float],
        limit: int,
        tie_breaker: Optional[TieBreaker] = None
    ) -> List[RankedResult]:
        """Rank, truncate to ``limit`` and wrap as ``RankedResult``.

        ``limit <= 0`` yields an empty list.
        """
        if limit <= 0 or not fused:
            return []

        secondary = tie_breaker or self.default_tie_breaker
        ordered = sorted(
            fused,
            key=lambda record_id: (-fused[record_id], secondary(candidates[record_id]))
        )

        results = []
        for record_id in ordered[:limit]:
            candidate = candidates[record_id]
            per_strategy = dict(candidate.normalized_scores)
            results.append(RankedResult(
                id=record_id,
                final_score=fused[record_id],
                per_strategy_scores=per_strategy,
                payload=candidate.payload,
            ))

        logger.debug(
            "Results assembled",
            candidate_count=len(fused),
            returned_count=len(results),
            limit=limit
        )
        return results
