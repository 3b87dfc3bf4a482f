"""In-memory implementation of the candidate source.

Useful for local development, demos and tests where a PostgreSQL instance is
not available. Scoring mimics the PostgreSQL backend closely enough that the
ranking pipeline sees the same score shapes:

- keyword: every query term must appear (``plainto_tsquery`` AND semantics);
  score is matched term frequency over document length
- fuzzy: ``pg_trgm``-style trigram similarity, best text field wins
- semantic: cosine distance computed with numpy
"""

import re
from typing import Any, Dict, Hashable, List, Optional, Sequence, Set

import numpy as np
import structlog

from .base import (
    CandidateSource,
    CandidateSourceConfigurationError,
    SourceHit,
)

logger = structlog.get_logger("candidate_store.memory")

_WORD_RE = re.compile(r"[0-9a-z]+")

# A small subset of the PostgreSQL ``english`` stop word list.
STOP_WORDS = frozenset({
    "a", "an", "and", "are", "as", "at", "be", "by", "for", "from", "in",
    "is", "it", "of", "on", "or", "the", "to", "with",
})


def tokenize(text: str) -> List[str]:
    """Lower-case alphanumeric words."""
    return _WORD_RE.findall((text or "").lower())


def trigrams(text: str) -> Set[str]:
    """Trigram set of ``text`` the way ``pg_trgm`` builds it.

    Each word is padded with two spaces in front and one behind.
    """
    grams: Set[str] = set()
    for word in tokenize(text):
        padded = f"  {word} "
        for i in range(len(padded) - 2):
            grams.add(padded[i:i + 3])
    return grams


def trigram_similarity(left: str, right: str) -> float:
    """Jaccard similarity of the two trigram sets, in ``[0, 1]``."""
    a = trigrams(left)
    b = trigrams(right)
    if not a or not b:
        return 0.0
    return len(a & b) / len(a | b)


class InMemoryCandidateSource(CandidateSource):
    """Candidate source over a list of records held in process memory."""

    def __init__(
        self,
        text_fields: Sequence[str] = ("title", "body"),
        vector_dimension: Optional[int] = None,
        fuzzy_threshold: float = 0.3,
        max_distance: Optional[float] = None,
    ):
        self.text_fields = list(text_fields)
        self.vector_dimension = vector_dimension
        self.fuzzy_threshold = fuzzy_threshold
        self.max_distance = max_distance
        self._records: Dict[Hashable, Dict[str, Any]] = {}
        self._embeddings: Dict[Hashable, np.ndarray] = {}

    def add_record(
        self,
        record_id: Hashable,
        fields: Dict[str, Any],
        embedding: Optional[Sequence[float]] = None,
    ) -> None:
        """Insert or replace a record; ``fields`` is returned as its payload."""
        self._records[record_id] = dict(fields)
        if embedding is not None:
            self._embeddings[record_id] = self._ensure_vector_dimension(embedding)
        else:
            self._embeddings.pop(record_id, None)

    def remove_record(self, record_id: Hashable) -> bool:
        self._embeddings.pop(record_id, None)
        return self._records.pop(record_id, None) is not None

    def __len__(self) -> int:
        return len(self._records)

    def _text_of(self, record: Dict[str, Any]) -> str:
        return " ".join(str(record.get(field) or "") for field in self.text_fields)

    def _payload(self, record_id: Hashable) -> Dict[str, Any]:
        return dict(self._records[record_id])

    @staticmethod
    def _top(scored: List[tuple], limit: int, descending: bool = True) -> List[tuple]:
        # Python's sort is stable, so equal scores keep insertion order.
        scored.sort(key=lambda item: item[1], reverse=descending)
        return scored[:max(limit, 0)]

    async def keyword_match(self, text: str, limit: int = 20) -> List[SourceHit]:
        terms = [t for t in tokenize(text) if t not in STOP_WORDS]
        if not terms:
            return []

        scored = []
        for record_id, record in self._records.items():
            tokens = tokenize(self._text_of(record))
            if not tokens or not all(term in tokens for term in terms):
                continue
            frequency = sum(tokens.count(term) for term in set(terms))
            scored.append((record_id, frequency / len(tokens)))

        hits = [(rid, score, self._payload(rid)) for rid, score in self._top(scored, limit)]
        logger.debug("Keyword match completed", results_count=len(hits))
        return hits

    async def fuzzy_match(self, text: str, limit: int = 20) -> List[SourceHit]:
        if not tokenize(text):
            return []

        scored = []
        for record_id, record in self._records.items():
            best = max(
                (trigram_similarity(str(record.get(field) or ""), text) for field in self.text_fields),
                default=0.0,
            )
            if best >= self.fuzzy_threshold:
                scored.append((record_id, best))

        hits = [(rid, score, self._payload(rid)) for rid, score in self._top(scored, limit)]
        logger.debug("Fuzzy match completed", results_count=len(hits))
        return hits

    async def semantic_match(self, vector: Sequence[float], limit: int = 20) -> List[SourceHit]:
        query = self._ensure_vector_dimension(vector)
        query_norm = float(np.linalg.norm(query))

        scored = []
        for record_id, embedding in self._embeddings.items():
            if embedding.shape != query.shape:
                raise CandidateSourceConfigurationError(
                    f"Stored embedding for {record_id!r} has dimension {embedding.shape[0]}, "
                    f"query has {query.shape[0]}"
                )
            denominator = query_norm * float(np.linalg.norm(embedding))
            if denominator == 0.0:
                distance = 1.0
            else:
                distance = 1.0 - float(np.dot(query, embedding)) / denominator
            if self.max_distance is not None and distance >= self.max_distance:
                continue
            scored.append((record_id, distance))

        hits = [
            (rid, distance, self._payload(rid))
            for rid, distance in self._top(scored, limit, descending=False)
        ]
        logger.debug("Semantic match completed", query_vector_dim=query.shape[0], results_count=len(hits))
        return hits

    async def health_check(self) -> bool:
        return True

    def _ensure_vector_dimension(self, vector: Sequence[float]) -> np.ndarray:
        """Ensure a vector matches the expected dimensionality."""
        array = np.asarray(vector, dtype=np.float64)
        if array.ndim != 1:
            raise CandidateSourceConfigurationError("Vector must be one-dimensional")

        if self.vector_dimension is not None and array.shape[0] != self.vector_dimension:
            raise CandidateSourceConfigurationError(
                f"Expected vector dimension {self.vector_dimension}, "
                f"got {array.shape[0]}"
            )
        return array
