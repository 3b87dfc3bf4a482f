"""Query, candidate and result types for hybrid search.

Everything here lives for a single search execution: a ``SearchQuery`` comes
in, ``Candidate`` objects are built while strategy results are merged by id,
and ``RankedResult`` objects go out inside a ``SearchResponse``.
"""

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Hashable, List, Optional, Sequence, Tuple

DEFAULT_LIMIT = 20


class StrategyKind(Enum):
    """Matching strategies, in the fixed order used for deterministic merging."""
    KEYWORD = "keyword"
    FUZZY = "fuzzy"
    SEMANTIC = "semantic"


@dataclass(frozen=True)
class SearchWeights:
    """Per-strategy blend weights.

    Weights must be non-negative; they need not sum to 1 because fusion
    renormalizes per candidate.
    """
    keyword: float = 0.5
    fuzzy: float = 0.2
    semantic: float = 0.3

    def __post_init__(self):
        for kind in StrategyKind:
            value = getattr(self, kind.value)
            if not isinstance(value, (int, float)) or isinstance(value, bool):
                raise ValueError(f"{kind.value} weight must be a number, got {value!r}")
            if not math.isfinite(value) or value < 0:
                raise ValueError(f"{kind.value} weight must be a finite non-negative number, got {value!r}")

    def for_kind(self, kind: StrategyKind) -> float:
        return float(getattr(self, kind.value))

    def to_dict(self) -> Dict[str, float]:
        return {kind.value: self.for_kind(kind) for kind in StrategyKind}


@dataclass(frozen=True)
class SearchQuery:
    """One search request.

    ``text`` and ``vector`` are both optional; a query with neither is valid
    and simply produces no results.
    """
    text: Optional[str] = None
    vector: Optional[Tuple[float, ...]] = None
    limit: int = DEFAULT_LIMIT
    weights: SearchWeights = field(default_factory=SearchWeights)
    deadline_seconds: Optional[float] = None

    def __post_init__(self):
        if self.vector is not None:
            object.__setattr__(self, "vector", tuple(float(v) for v in self.vector))
        if self.deadline_seconds is not None and self.deadline_seconds <= 0:
            raise ValueError("deadline_seconds must be positive")

    @property
    def has_text(self) -> bool:
        return bool(self.text and self.text.strip())

    @property
    def has_vector(self) -> bool:
        return self.vector is not None and len(self.vector) > 0


@dataclass
class Candidate:
    """A record surfaced by at least one strategy for the current query."""
    id: Hashable
    raw_scores: Dict[StrategyKind, float] = field(default_factory=dict)
    normalized_scores: Dict[StrategyKind, float] = field(default_factory=dict)
    payload: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class RankedResult:
    """One entry of the final ranking."""
    id: Hashable
    final_score: float
    per_strategy_scores: Dict[StrategyKind, float]
    payload: Dict[str, Any]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "final_score": self.final_score,
            "per_strategy_scores": {kind.value: score for kind, score in self.per_strategy_scores.items()},
            "payload": self.payload,
        }


@dataclass
class SearchDiagnostics:
    """Which strategies ran, which contributed, and why the others did not.

    - ``skipped``: strategies the router never dispatched (``no_text``,
      ``no_vector``, ``zero_weight``)
    - ``degraded``: dispatched strategies whose contribution was dropped
      (``timeout``, ``unavailable``, ``circuit_open``, ``error``)
    """
    invoked: List[StrategyKind] = field(default_factory=list)
    contributed: List[StrategyKind] = field(default_factory=list)
    skipped: Dict[StrategyKind, str] = field(default_factory=dict)
    degraded: Dict[StrategyKind, str] = field(default_factory=dict)
    candidate_counts: Dict[StrategyKind, int] = field(default_factory=dict)
    latency_ms: float = 0.0

    @property
    def is_degraded(self) -> bool:
        return bool(self.degraded)

    @property
    def degraded_count(self) -> int:
        return len(self.degraded)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "invoked": [kind.value for kind in self.invoked],
            "contributed": [kind.value for kind in self.contributed],
            "skipped": {kind.value: reason for kind, reason in self.skipped.items()},
            "degraded": {kind.value: reason for kind, reason in self.degraded.items()},
            "candidate_counts": {kind.value: count for kind, count in self.candidate_counts.items()},
            "latency_ms": self.latency_ms,
        }


@dataclass
class SearchResponse:
    """Ranked results plus diagnostics for one query."""
    results: List[RankedResult] = field(default_factory=list)
    diagnostics: SearchDiagnostics = field(default_factory=SearchDiagnostics)

    @property
    def ids(self) -> List[Hashable]:
        return [result.id for result in self.results]

    def __len__(self) -> int:
        return len(self.results)


def strategies_label(kinds: Sequence[StrategyKind]) -> str:
    """Stable label such as ``keyword+semantic`` for logs and metrics."""
    ordered = [kind.value for kind in StrategyKind if kind in kinds]
    return "+".join(ordered) if ordered else "none"
