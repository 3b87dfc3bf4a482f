"""Tests for common utilities."""

import pytest

from libs.candidate_store.factory import (
    CandidateSourceFactory,
    CandidateSourceType,
    create_candidate_source,
)
from libs.candidate_store.memory import InMemoryCandidateSource
from libs.candidate_store.postgres import PostgresCandidateSource
from libs.common.config import BaseConfig, SearchConfig, get_config
from libs.common.logging import configure_logging, log_performance
from libs.common.metrics import MetricsCollector
from libs.common.tracing import get_search_tracer
from service_search.app.adapters.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerError,
    CircuitBreakerManager,
    CircuitBreakerState,
)


def test_config_loading():
    """Test configuration loading."""
    config = BaseConfig()
    assert config.search_env == "local"
    assert config.search_log_level == "INFO"
    assert config.search_vector_dimension == 384


def test_search_config():
    """Test search configuration defaults."""
    config = SearchConfig()
    assert config.search_port == 9007
    assert config.search_keyword_weight == 0.5
    assert config.search_fuzzy_weight == 0.2
    assert config.search_semantic_weight == 0.3
    assert config.search_default_limit == 20
    assert config.search_deadline_seconds == 2.0
    assert config.search_timestamp_field == "updated_at"


def test_search_config_from_environment(monkeypatch):
    """Settings are read from SEARCH_* environment variables."""
    monkeypatch.setenv("SEARCH_KEYWORD_WEIGHT", "0.7")
    monkeypatch.setenv("SEARCH_CANDIDATE_BACKEND", "memory")
    monkeypatch.setenv("SEARCH_TEXT_COLUMNS", '["subject", "description"]')

    config = get_config("search")

    assert isinstance(config, SearchConfig)
    assert config.search_keyword_weight == 0.7
    store = config.candidate_store_config()
    assert store["type"] == "memory"
    assert store["text_columns"] == ["subject", "description"]


def test_search_config_rejects_negative_weight(monkeypatch):
    monkeypatch.setenv("SEARCH_SEMANTIC_WEIGHT", "-1")
    with pytest.raises(ValueError):
        SearchConfig()


def test_unknown_service_gets_base_config():
    config = get_config("unknown")
    assert type(config) is BaseConfig


def test_logging_configuration():
    """Test logging configuration."""
    # This should not raise an exception
    configure_logging("test-service", "INFO", "json", env="test")
    configure_logging("test-service", "debug", "console")
    log_performance("strategy.keyword", 1.5, status="ok")


def test_metrics_collector():
    """Test metrics collector."""
    collector = MetricsCollector("test-service")
    assert collector.service_name == "test-service"

    collector.record_http_request("POST", "/api/v1/search", 200, 0.1)
    collector.record_search("keyword+semantic", 0.05)
    collector.record_strategy_call("semantic", "timeout")
    collector.record_degraded_response()
    collector.record_fused_candidates(12)

    metrics = collector.get_metrics()
    assert isinstance(metrics, str)
    assert "http_requests_total" in metrics
    assert "search_duration_seconds" in metrics
    assert collector.registry.get_sample_value(
        "search_strategy_calls_total", {"strategy": "semantic", "status": "timeout"}
    ) == 1.0


def test_search_tracer_without_provider():
    """Spans are no-ops until tracing is configured."""
    tracer = get_search_tracer("test-service")
    with tracer.trace_search_query("keyword", 10, deadline_seconds=2.0):
        with tracer.trace_strategy_fetch("keyword", 20):
            pass

    with pytest.raises(RuntimeError):
        with tracer.trace_strategy_fetch("fuzzy", 20):
            raise RuntimeError("boom")


def test_candidate_source_factory():
    memory = create_candidate_source({"type": "memory", "vector_dimension": 3, "text_columns": ["subject"]})
    assert isinstance(memory, InMemoryCandidateSource)
    assert memory.text_fields == ["subject"]

    postgres = CandidateSourceFactory.create(
        CandidateSourceType.POSTGRES,
        SearchConfig().candidate_store_config()
    )
    assert isinstance(postgres, PostgresCandidateSource)
    assert postgres.table == '"search_items"'


def test_candidate_source_factory_errors():
    with pytest.raises(ValueError):
        create_candidate_source({"type": "elasticsearch"})
    with pytest.raises(ValueError):
        CandidateSourceFactory.create(CandidateSourceType.POSTGRES, {})


@pytest.mark.asyncio
async def test_circuit_breaker_recovers_after_timeout():
    breaker = CircuitBreaker(failure_threshold=1, recovery_timeout=0.0, expected_exception=ValueError, name="t")

    async def fail():
        raise ValueError("down")

    async def succeed():
        return "ok"

    with pytest.raises(ValueError):
        await breaker.call(fail)
    assert breaker.get_state() == CircuitBreakerState.OPEN

    assert await breaker.call(succeed) == "ok"
    assert breaker.get_state() == CircuitBreakerState.CLOSED
    assert breaker.failure_count == 0


@pytest.mark.asyncio
async def test_circuit_breaker_rejects_while_open():
    breaker = CircuitBreaker(failure_threshold=2, recovery_timeout=60.0, expected_exception=ValueError, name="t")

    await breaker.record_failure()
    await breaker.record_failure()

    with pytest.raises(CircuitBreakerError):
        await breaker.call(lambda: "never")
    assert breaker.get_stats()["state"] == "open"


@pytest.mark.asyncio
async def test_circuit_breaker_ignores_unexpected_exceptions():
    breaker = CircuitBreaker(failure_threshold=1, expected_exception=ValueError)

    def explode():
        raise KeyError("x")

    with pytest.raises(KeyError):
        await breaker.call(explode)
    assert breaker.get_state() == CircuitBreakerState.CLOSED


@pytest.mark.asyncio
async def test_circuit_breaker_manager():
    manager = CircuitBreakerManager()
    breaker = manager.get_breaker("candidate_source.keyword", failure_threshold=1)
    assert manager.get_breaker("candidate_source.keyword") is breaker

    await breaker.record_failure()
    assert manager.get_all_stats()["candidate_source.keyword"]["state"] == "open"

    await manager.reset_all()
    assert breaker.get_state() == CircuitBreakerState.CLOSED
