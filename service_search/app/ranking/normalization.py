"""Score normalization for hybrid search.

Each strategy reports scores on its own scale and in its own direction:

- keyword: ``ts_rank_cd`` style rank, higher is better, unbounded; divided by
  the best score in the current batch
- fuzzy: trigram similarity, already in ``[0, 1]``; passed through
- semantic: cosine distance, lower is better, ``[0, 2]``; mapped to
  ``1 - distance``

All normalized scores are clamped to ``[0, 1]``.
"""

import math
from dataclasses import dataclass
from typing import Dict, Hashable, Iterable, Optional

import structlog

from libs.candidate_store.base import SourceHit
from ..hybrid.models import StrategyKind

logger = structlog.get_logger("search_normalization")


def clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    """Clamp ``value`` into ``[low, high]``; non-finite values become ``low``."""
    if not math.isfinite(value):
        return low
    return max(low, min(high, value))


@dataclass(frozen=True)
class BatchStats:
    """Statistics of one strategy's raw scores for the current query."""
    max_score: float = 0.0
    count: int = 0

    @classmethod
    def from_scores(cls, scores: Iterable[float]) -> "BatchStats":
        finite = [float(s) for s in scores if math.isfinite(s)]
        return cls(max_score=max(finite) if finite else 0.0, count=len(finite))


class ScoreNormalizer:
    """Maps raw per-strategy scores onto ``[0, 1]``."""

    def normalize(
        self,
        kind: StrategyKind,
        raw_score: float,
        stats: Optional[BatchStats] = None
    ) -> float:
        """Normalize a single raw score.

        ``stats`` is only needed for keyword scores; without it the raw score
        is treated as its own batch maximum.
        """
        raw_score = float(raw_score)
        if not math.isfinite(raw_score):
            return 0.0

        if kind is StrategyKind.KEYWORD:
            batch_max = stats.max_score if stats is not None else raw_score
            if batch_max <= 0:
                return 0.0
            return clamp(raw_score / batch_max)

        if kind is StrategyKind.FUZZY:
            return clamp(raw_score)

        if kind is StrategyKind.SEMANTIC:
            return clamp(1.0 - raw_score)

        raise ValueError(f"Unknown strategy: {kind}")

    def normalize_batch(
        self,
        kind: StrategyKind,
        hits: Iterable[SourceHit]
    ) -> Dict[Hashable, float]:
        """Normalize one strategy's hits, keyed by record id.

        A record id reported more than once keeps its best normalized score.
        """
        hits = list(hits)
        stats = BatchStats.from_scores(score for _, score, _ in hits)

        normalized: Dict[Hashable, float] = {}
        for record_id, raw_score, _ in hits:
            score = self.normalize(kind, raw_score, stats)
            if record_id not in normalized or score > normalized[record_id]:
                normalized[record_id] = score

        logger.debug(
            "Batch normalized",
            strategy=kind.value,
            hits=len(hits),
            batch_max=stats.max_score
        )
        return normalized
