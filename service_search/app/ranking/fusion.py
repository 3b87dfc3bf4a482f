"""Result fusion for hybrid search.

Merges the per-strategy hit lists into one ``Candidate`` per record id and
blends their normalized scores with per-candidate weight renormalization:

    final = sum(w[k] * s[k]) / sum(w[k])    over strategies k that scored it

A record found only by the semantic strategy is therefore scored on its
semantic similarity alone instead of being diluted by keyword and fuzzy
weights it was never eligible for.
"""

from typing import Dict, Hashable, List, Mapping

import structlog

from libs.candidate_store.base import SourceHit
from ..hybrid.models import Candidate, SearchWeights, StrategyKind
from .normalization import ScoreNormalizer, clamp

logger = structlog.get_logger("search_fusion")


def build_candidates(
    hits_by_kind: Mapping[StrategyKind, List[SourceHit]],
    normalizer: ScoreNormalizer
) -> Dict[Hashable, Candidate]:
    """Merge strategy hits by record id.

    Strategies are visited in ``StrategyKind`` order whatever order the
    mapping was filled in, so the first non-empty payload always comes from
    the same strategy and the output does not depend on response arrival.
    """
    candidates: Dict[Hashable, Candidate] = {}

    for kind in StrategyKind:
        hits = hits_by_kind.get(kind)
        if not hits:
            continue

        normalized = normalizer.normalize_batch(kind, hits)
        for record_id, raw_score, payload in hits:
            candidate = candidates.get(record_id)
            if candidate is None:
                candidate = Candidate(id=record_id)
                candidates[record_id] = candidate

            previous = candidate.raw_scores.get(kind)
            if previous is None or _better(kind, raw_score, previous):
                candidate.raw_scores[kind] = float(raw_score)
            candidate.normalized_scores[kind] = normalized[record_id]

            if not candidate.payload and payload:
                candidate.payload = dict(payload)

    return candidates


def _better(kind: StrategyKind, score: float, previous: float) -> bool:
    if kind is StrategyKind.SEMANTIC:
        return score < previous
    return score > previous


class WeightedScoreFusion:
    """Weighted score fusion with per-candidate weight renormalization."""

    def fuse(
        self,
        candidates: Mapping[Hashable, Mapping[StrategyKind, float]],
        weights: SearchWeights
    ) -> Dict[Hashable, float]:
        """Blend normalized per-strategy scores into one score per candidate.

        Candidates whose contributing strategies all carry zero weight are
        dropped: nothing in the blend speaks for them.
        """
        fused: Dict[Hashable, float] = {}
        dropped = 0

        for record_id, scores in candidates.items():
            weighted_sum = 0.0
            weight_total = 0.0
            for kind in StrategyKind:
                if kind not in scores:
                    continue
                weight = weights.for_kind(kind)
                weighted_sum += weight * scores[kind]
                weight_total += weight

            if weight_total <= 0:
                dropped += 1
                continue

            fused[record_id] = clamp(weighted_sum / weight_total)

        logger.debug(
            "Weighted score fusion completed",
            candidate_count=len(candidates),
            fused_count=len(fused),
            dropped_count=dropped,
            weights=weights.to_dict()
        )

        return fused

    def fuse_candidates(
        self,
        candidates: Mapping[Hashable, Candidate],
        weights: SearchWeights
    ) -> Dict[Hashable, float]:
        """Convenience wrapper over ``fuse`` for ``Candidate`` objects."""
        return self.fuse(
            {record_id: candidate.normalized_scores for record_id, candidate in candidates.items()},
            weights
        )
