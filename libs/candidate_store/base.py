"""Base candidate source interface.

Defines the abstract contract the search service depends on, independent of
the backing implementation (PostgreSQL with pg_trgm/pgvector, in-memory, etc.).

The three matching operations are independent: each may return zero hits,
fail transiently, or fail because the backend is misconfigured. All methods
are asynchronous so the service can dispatch them concurrently.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, Hashable, List, Sequence, Tuple

# ``(record_id, raw_score, payload)``. Keyword and fuzzy hits carry a
# relevance score (higher is better); semantic hits carry a distance
# (lower is better).
SourceHit = Tuple[Hashable, float, Dict[str, Any]]


class CandidateSource(ABC):
    """Abstract base class for candidate sources.

    Implementations should return hits sorted best-first, honor the ``limit``
    hint, and raise the exceptions defined below so callers can tell a
    transient outage from a configuration problem.
    """

    @abstractmethod
    async def keyword_match(self, text: str, limit: int = 20) -> List[SourceHit]:
        """Exact/stemmed keyword matching.

        Returns
        - ``(record_id, rank_score, payload)`` tuples; ``rank_score >= 0``
        """
        pass

    @abstractmethod
    async def fuzzy_match(self, text: str, limit: int = 20) -> List[SourceHit]:
        """Typo-tolerant approximate string matching.

        Returns
        - ``(record_id, similarity, payload)`` tuples; similarity in ``[0, 1]``
        """
        pass

    @abstractmethod
    async def semantic_match(self, vector: Sequence[float], limit: int = 20) -> List[SourceHit]:
        """Nearest-neighbour vector matching.

        Returns
        - ``(record_id, cosine_distance, payload)`` tuples sorted by
          ascending distance. Records without an embedding are never returned.
        """
        pass

    @abstractmethod
    async def health_check(self) -> bool:
        """Check if the candidate source is healthy."""
        pass

    async def close(self) -> None:
        """Release any held resources."""
        return None


class CandidateSourceError(Exception):
    """Base exception for candidate source operations."""
    pass


class CandidateSourceUnavailableError(CandidateSourceError):
    """Transient failure: connection lost, timeout, overloaded backend.

    Retrying later may succeed.
    """
    pass


class CandidateSourceConfigurationError(CandidateSourceError):
    """Permanent failure: wrong vector dimension, missing column or extension.

    Retrying will not help.
    """
    pass
