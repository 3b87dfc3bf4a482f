"""Shared fixtures for search service tests."""

import asyncio
from typing import Any, Dict, List, Optional

import pytest

from libs.candidate_store.base import CandidateSource, SourceHit
from libs.candidate_store.memory import InMemoryCandidateSource
from libs.common.config import SearchConfig
from service_search.app.hybrid.search_manager import SearchManager


class ScriptedCandidateSource(CandidateSource):
    """Candidate source returning canned hits, with optional delays and errors."""

    def __init__(
        self,
        keyword: Optional[List[SourceHit]] = None,
        fuzzy: Optional[List[SourceHit]] = None,
        semantic: Optional[List[SourceHit]] = None,
        delays: Optional[Dict[str, float]] = None,
        errors: Optional[Dict[str, Exception]] = None,
    ):
        self.results = {
            "keyword": list(keyword or []),
            "fuzzy": list(fuzzy or []),
            "semantic": list(semantic or []),
        }
        self.delays = delays or {}
        self.errors = errors or {}
        self.calls: List[tuple] = []
        self.closed = False

    async def _respond(self, strategy: str, argument: Any, limit: int) -> List[SourceHit]:
        self.calls.append((strategy, argument, limit))
        delay = self.delays.get(strategy)
        if delay:
            await asyncio.sleep(delay)
        error = self.errors.get(strategy)
        if error is not None:
            raise error
        return self.results[strategy][:limit]

    def strategies_called(self) -> List[str]:
        return [call[0] for call in self.calls]

    async def keyword_match(self, text, limit=20):
        return await self._respond("keyword", text, limit)

    async def fuzzy_match(self, text, limit=20):
        return await self._respond("fuzzy", text, limit)

    async def semantic_match(self, vector, limit=20):
        return await self._respond("semantic", list(vector), limit)

    async def health_check(self) -> bool:
        return True

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def search_config() -> SearchConfig:
    """Search configuration pointed at the in-memory backend."""
    return SearchConfig(
        search_candidate_backend="memory",
        search_vector_dimension=3,
        search_deadline_seconds=1.0,
        search_breaker_failure_threshold=3,
        search_breaker_recovery_timeout=60.0,
    )


@pytest.fixture
def make_manager(search_config):
    """Factory building a ``SearchManager`` over a given candidate source."""
    def _make(source: CandidateSource, **config_overrides: Any) -> SearchManager:
        config = search_config.model_copy(update=config_overrides) if config_overrides else search_config
        return SearchManager(config, candidate_source=source)
    return _make


@pytest.fixture
def request_source() -> InMemoryCandidateSource:
    """A small in-memory corpus of help requests."""
    source = InMemoryCandidateSource(
        text_fields=("req_subj", "req_desc", "req_loc"),
        vector_dimension=3,
    )
    source.add_record(
        "REQ-1",
        {
            "req_subj": "Emergency medical supplies",
            "req_desc": "Need first aid kits and medicine for flood victims",
            "req_loc": "Richmond",
            "updated_at": "2024-05-01T10:00:00Z",
        },
        embedding=[1.0, 0.0, 0.0],
    )
    source.add_record(
        "REQ-2",
        {
            "req_subj": "Grocery delivery",
            "req_desc": "Elderly resident needs groceries delivered weekly",
            "req_loc": "Norfolk",
            "updated_at": "2024-05-03T09:00:00Z",
        },
        embedding=[0.0, 1.0, 0.0],
    )
    source.add_record(
        "REQ-3",
        {
            "req_subj": "Medical transport",
            "req_desc": "Ride to dialysis appointment, medical emergency backup",
            "req_loc": "Arlington",
            "updated_at": "2024-04-20T08:30:00Z",
        },
        embedding=[0.8, 0.2, 0.0],
    )
    source.add_record(
        "REQ-4",
        {
            "req_subj": "Tutoring",
            "req_desc": "Math tutoring for high school student",
            "req_loc": "Richmond",
            "updated_at": None,
        },
    )
    return source
