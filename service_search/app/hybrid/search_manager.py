"""Search manager for hybrid keyword, fuzzy and semantic search.

Runs the ranking pipeline for one query:

    QueryRouter -> candidate source (concurrently, per strategy)
                -> ScoreNormalizer -> WeightedScoreFusion -> ResultAssembler

Every strategy fetch is isolated in its own task behind its own circuit
breaker. A strategy that times out or fails transiently only removes its own
contribution; the query fails only when nothing could be fetched at all, or
when a strategy reports a misconfiguration that retrying cannot fix.
"""

import asyncio
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence

import structlog

from libs.candidate_store.base import (
    CandidateSource,
    CandidateSourceConfigurationError,
    CandidateSourceUnavailableError,
    SourceHit,
)
from libs.candidate_store.factory import create_candidate_source
from libs.common.config import SearchConfig
from libs.common.logging import log_performance
from libs.common.metrics import MetricsCollector
from libs.common.tracing import get_search_tracer
from ..adapters.circuit_breaker import CircuitBreakerError, CircuitBreakerManager
from ..ranking.assembly import ResultAssembler, TieBreaker
from ..ranking.fusion import WeightedScoreFusion, build_candidates
from ..ranking.normalization import ScoreNormalizer
from .errors import NoStrategyAvailableError, SearchConfigurationError
from .models import (
    SearchDiagnostics,
    SearchQuery,
    SearchResponse,
    SearchWeights,
    StrategyKind,
    strategies_label,
)
from .router import QueryRouter

logger = structlog.get_logger("search_service.search_manager")

STATUS_OK = "ok"
STATUS_TIMEOUT = "timeout"
STATUS_UNAVAILABLE = "unavailable"
STATUS_CIRCUIT_OPEN = "circuit_open"
STATUS_ERROR = "error"
STATUS_MISCONFIGURED = "misconfigured"


@dataclass
class StrategyOutcome:
    """What happened to one dispatched strategy."""
    kind: StrategyKind
    status: str
    hits: List[SourceHit] = field(default_factory=list)
    error: Optional[str] = None
    duration_ms: float = 0.0

    @property
    def ok(self) -> bool:
        return self.status == STATUS_OK


class SearchManager:
    """Manages hybrid search operations.

    Responsibilities
    - Own the candidate source and one circuit breaker per strategy
    - Dispatch routed strategies concurrently under a per-query deadline
    - Normalize, fuse and assemble the ranked response
    - Record degraded strategies in diagnostics, logs and metrics
    """

    def __init__(
        self,
        config: SearchConfig,
        candidate_source: Optional[CandidateSource] = None,
        metrics_collector: Optional[MetricsCollector] = None,
        breaker_manager: Optional[CircuitBreakerManager] = None
    ):
        """Construct a search manager.

        Parameters
        - config: ``SearchConfig`` with defaults, deadline and breaker settings
        - candidate_source: Backend to query; built from ``config`` if omitted
        - metrics_collector: Optional Prometheus collector
        - breaker_manager: Optional breaker registry (one is created if omitted)
        """
        self.config = config
        self.candidate_source = candidate_source or create_candidate_source(
            config.candidate_store_config()
        )
        self.metrics_collector = metrics_collector
        self.breakers = breaker_manager or CircuitBreakerManager()
        self.tracer = get_search_tracer(config.search_otel_service_name)

        self.router = QueryRouter()
        self.normalizer = ScoreNormalizer()
        self.fusion = WeightedScoreFusion()
        self.assembler = ResultAssembler(timestamp_field=config.search_timestamp_field)

    def default_weights(self) -> SearchWeights:
        """Blend weights used when a caller does not supply any."""
        return SearchWeights(
            keyword=self.config.search_keyword_weight,
            fuzzy=self.config.search_fuzzy_weight,
            semantic=self.config.search_semantic_weight,
        )

    def build_query(
        self,
        text: Optional[str] = None,
        vector: Optional[Sequence[float]] = None,
        limit: Optional[int] = None,
        weights: Optional[Mapping[str, Optional[float]]] = None,
        deadline_seconds: Optional[float] = None
    ) -> SearchQuery:
        """Build a ``SearchQuery``, filling omitted settings from configuration.

        ``weights`` may override any subset of ``keyword``/``fuzzy``/``semantic``.
        ``limit`` is capped at ``search_max_limit``.
        """
        resolved = self.default_weights().to_dict()
        for name, value in (weights or {}).items():
            if name not in resolved:
                raise ValueError(f"Unknown strategy weight: {name}")
            if value is not None:
                resolved[name] = value

        if limit is None:
            limit = self.config.search_default_limit

        return SearchQuery(
            text=text,
            vector=vector,
            limit=min(limit, self.config.search_max_limit),
            weights=SearchWeights(**resolved),
            deadline_seconds=deadline_seconds,
        )

    async def search(
        self,
        query: SearchQuery,
        tie_breaker: Optional[TieBreaker] = None
    ) -> SearchResponse:
        """Perform hybrid search.

        Returns a ``SearchResponse`` whose results are ordered by fused score
        (ties broken by ``tie_breaker`` or recency then id) and whose
        diagnostics name the strategies that were skipped or degraded.

        Raises
        - ``SearchConfigurationError`` when a strategy is misconfigured
        - ``NoStrategyAvailableError`` when every dispatched strategy failed
        """
        start_time = time.perf_counter()
        decision = self.router.route(query)
        diagnostics = SearchDiagnostics(skipped=dict(decision.skipped))

        if decision.is_empty or query.limit <= 0:
            diagnostics.latency_ms = (time.perf_counter() - start_time) * 1000
            logger.info(
                "Search short-circuited",
                limit=query.limit,
                skipped={kind.value: reason for kind, reason in decision.skipped.items()}
            )
            return SearchResponse(results=[], diagnostics=diagnostics)

        query_type = strategies_label(decision.strategies)
        fetch_limit = query.limit * self.config.search_candidate_multiplier
        deadline = query.deadline_seconds or self.config.search_deadline_seconds

        with self.tracer.trace_search_query(query_type, query.limit, deadline_seconds=deadline):
            outcomes = await self._dispatch(decision.strategies, query, fetch_limit, deadline)
            diagnostics.invoked = list(decision.strategies)

            misconfigured = {
                kind: outcome.error for kind, outcome in outcomes.items()
                if outcome.status == STATUS_MISCONFIGURED
            }
            if misconfigured:
                logger.error(
                    "Search misconfigured",
                    errors={kind.value: error for kind, error in misconfigured.items()}
                )
                raise SearchConfigurationError(misconfigured)

            hits_by_kind: Dict[StrategyKind, List[SourceHit]] = {}
            for kind in decision.strategies:
                outcome = outcomes[kind]
                if outcome.ok:
                    hits_by_kind[kind] = outcome.hits
                    diagnostics.contributed.append(kind)
                    diagnostics.candidate_counts[kind] = len(outcome.hits)
                else:
                    diagnostics.degraded[kind] = outcome.status

            if not hits_by_kind:
                logger.error(
                    "All search strategies failed",
                    degraded={kind.value: reason for kind, reason in diagnostics.degraded.items()}
                )
                raise NoStrategyAvailableError(diagnostics.degraded)

            candidates = build_candidates(hits_by_kind, self.normalizer)
            fused = self.fusion.fuse_candidates(candidates, query.weights)
            results = self.assembler.assemble(candidates, fused, query.limit, tie_breaker)

        duration = time.perf_counter() - start_time
        diagnostics.latency_ms = duration * 1000

        if diagnostics.is_degraded:
            logger.warning(
                "Search served degraded response",
                degraded={kind.value: reason for kind, reason in diagnostics.degraded.items()},
                contributed=[kind.value for kind in diagnostics.contributed]
            )

        if self.metrics_collector:
            self.metrics_collector.record_search(query_type=query_type, duration=duration)
            self.metrics_collector.record_fused_candidates(len(candidates))
            if diagnostics.is_degraded:
                self.metrics_collector.record_degraded_response()

        logger.info(
            "Search completed",
            query_type=query_type,
            candidate_count=len(candidates),
            results_count=len(results),
            latency_ms=diagnostics.latency_ms
        )

        return SearchResponse(results=results, diagnostics=diagnostics)

    async def _dispatch(
        self,
        strategies: Sequence[StrategyKind],
        query: SearchQuery,
        fetch_limit: int,
        deadline: float
    ) -> Dict[StrategyKind, StrategyOutcome]:
        """Run the strategies concurrently and wait for all of them or the deadline."""
        tasks = {
            kind: asyncio.create_task(self._run_strategy(kind, query, fetch_limit))
            for kind in strategies
        }

        try:
            _, pending = await asyncio.wait(tasks.values(), timeout=deadline)
        except asyncio.CancelledError:
            unfinished = [task for task in tasks.values() if not task.done()]
            for task in unfinished:
                task.cancel()
            await asyncio.gather(*unfinished, return_exceptions=True)
            logger.info("Search cancelled by caller", cancelled_strategies=len(unfinished))
            raise

        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

        outcomes: Dict[StrategyKind, StrategyOutcome] = {}
        for kind, task in tasks.items():
            if task in pending:
                outcome = StrategyOutcome(
                    kind=kind,
                    status=STATUS_TIMEOUT,
                    error=f"no response within {deadline:.3f}s",
                    duration_ms=deadline * 1000,
                )
                await self._breaker_for(kind).record_failure()
                logger.warning("Strategy timed out", strategy=kind.value, deadline_seconds=deadline)
            else:
                outcome = task.result()

            if self.metrics_collector:
                self.metrics_collector.record_strategy_call(kind.value, outcome.status)
            outcomes[kind] = outcome

        return outcomes

    def _breaker_for(self, kind: StrategyKind):
        return self.breakers.get_breaker(
            f"candidate_source.{kind.value}",
            failure_threshold=self.config.search_breaker_failure_threshold,
            recovery_timeout=self.config.search_breaker_recovery_timeout,
            expected_exception=CandidateSourceUnavailableError
        )

    async def _run_strategy(
        self,
        kind: StrategyKind,
        query: SearchQuery,
        fetch_limit: int
    ) -> StrategyOutcome:
        """Fetch one strategy's hits; never raises except on cancellation."""
        source = self.candidate_source
        if kind is StrategyKind.KEYWORD:
            fetch, argument = source.keyword_match, query.text.strip()
        elif kind is StrategyKind.FUZZY:
            fetch, argument = source.fuzzy_match, query.text.strip()
        else:
            fetch, argument = source.semantic_match, list(query.vector)

        breaker = self._breaker_for(kind)
        start_time = time.perf_counter()
        status = STATUS_OK
        error: Optional[str] = None
        hits: List[SourceHit] = []

        try:
            with self.tracer.trace_strategy_fetch(kind.value, fetch_limit):
                hits = list(await breaker.call(fetch, argument, fetch_limit))
        except CircuitBreakerError as e:
            status, error = STATUS_CIRCUIT_OPEN, str(e)
        except CandidateSourceConfigurationError as e:
            status, error = STATUS_MISCONFIGURED, str(e)
        except CandidateSourceUnavailableError as e:
            status, error = STATUS_UNAVAILABLE, str(e)
        except Exception as e:
            logger.exception("Strategy raised unexpected error", strategy=kind.value)
            status, error = STATUS_ERROR, f"{type(e).__name__}: {e}"

        duration_ms = (time.perf_counter() - start_time) * 1000
        if status != STATUS_OK and status != STATUS_MISCONFIGURED:
            logger.warning(
                "Strategy degraded",
                strategy=kind.value,
                status=status,
                error=error,
                duration_ms=duration_ms
            )
        else:
            log_performance(f"strategy.{kind.value}", duration_ms, status=status, hits=len(hits))

        return StrategyOutcome(kind=kind, status=status, hits=hits, error=error, duration_ms=duration_ms)

    def get_breaker_stats(self) -> Dict[str, Dict[str, Any]]:
        """Circuit breaker state per strategy."""
        return self.breakers.get_all_stats()

    async def reset_breakers(self) -> Dict[str, Dict[str, Any]]:
        """Close every strategy breaker, e.g. after the backend was repaired."""
        await self.breakers.reset_all()
        return self.get_breaker_stats()

    async def health_check(self) -> bool:
        """Check if the candidate source is healthy."""
        try:
            return await self.candidate_source.health_check()
        except Exception as e:
            logger.error("Health check failed", error=str(e))
            return False

    async def cleanup(self):
        """Cleanup resources."""
        try:
            await self.candidate_source.close()
            logger.info("Search manager cleanup completed")
        except Exception as e:
            logger.error("Search manager cleanup failed", error=str(e))
