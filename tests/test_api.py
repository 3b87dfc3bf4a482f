"""Tests for the search HTTP API."""

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from prometheus_client import CONTENT_TYPE_LATEST

from libs.candidate_store.base import (
    CandidateSourceConfigurationError,
    CandidateSourceUnavailableError,
)
from service_search.app import main
from service_search.app.api.routes import router
from service_search.app.hybrid.search_manager import SearchManager

from tests.conftest import ScriptedCandidateSource


def make_client(search_config, source):
    app = FastAPI()
    app.include_router(router, prefix="/api/v1")
    app.state.search_manager = SearchManager(search_config, candidate_source=source)
    return TestClient(app)


def test_search_endpoint(search_config, request_source):
    client = make_client(search_config, request_source)

    response = client.post("/api/v1/search", json={
        "text": "medical emergency",
        "vector": [1.0, 0.0, 0.0],
        "limit": 2,
    })

    assert response.status_code == 200
    body = response.json()
    assert body["total"] == 2
    assert [result["id"] for result in body["results"]] == ["REQ-3", "REQ-1"]
    assert set(body["results"][0]["per_strategy_scores"]) == {"keyword", "fuzzy", "semantic"}
    assert body["results"][0]["payload"]["req_loc"] == "Arlington"
    assert body["diagnostics"]["contributed"] == ["keyword", "fuzzy", "semantic"]
    assert body["diagnostics"]["degraded"] == {}


def test_search_endpoint_weights_and_skips(search_config, request_source):
    client = make_client(search_config, request_source)

    response = client.post("/api/v1/search", json={
        "text": "medical emergency",
        "weights": {"fuzzy": 0},
    })

    assert response.status_code == 200
    diagnostics = response.json()["diagnostics"]
    assert diagnostics["invoked"] == ["keyword"]
    assert diagnostics["skipped"] == {"fuzzy": "zero_weight", "semantic": "no_vector"}


def test_empty_request_returns_empty_results(search_config, request_source):
    client = make_client(search_config, request_source)

    response = client.post("/api/v1/search", json={})

    assert response.status_code == 200
    assert response.json()["results"] == []


def test_degraded_response_is_still_successful(search_config):
    source = ScriptedCandidateSource(
        keyword=[("a", 1.0, {})],
        errors={"fuzzy": CandidateSourceUnavailableError("down")},
    )
    client = make_client(search_config, source)

    response = client.post("/api/v1/search", json={"text": "flood"})

    assert response.status_code == 200
    assert response.json()["diagnostics"]["degraded"] == {"fuzzy": "unavailable"}


def test_no_strategy_available_is_503(search_config):
    source = ScriptedCandidateSource(errors={
        "keyword": CandidateSourceUnavailableError("down"),
        "fuzzy": CandidateSourceUnavailableError("down"),
    })
    client = make_client(search_config, source)

    response = client.post("/api/v1/search", json={"text": "flood"})

    assert response.status_code == 503


def test_misconfiguration_is_422(search_config, request_source):
    client = make_client(search_config, request_source)

    response = client.post("/api/v1/search", json={"vector": [1.0, 0.0]})

    assert response.status_code == 422
    assert "dimension" in response.json()["detail"]


@pytest.mark.parametrize("payload", [
    {"text": "flood", "weights": {"keyword": -1}},
    {"text": "flood", "deadline_seconds": 0},
])
def test_invalid_request_is_422(search_config, request_source, payload):
    client = make_client(search_config, request_source)
    assert client.post("/api/v1/search", json=payload).status_code == 422


def test_unexpected_failure_is_500(search_config):
    class BrokenManager(SearchManager):
        async def search(self, query, tie_breaker=None):
            raise RuntimeError("boom")

    app = FastAPI()
    app.include_router(router, prefix="/api/v1")
    app.state.search_manager = BrokenManager(search_config, candidate_source=ScriptedCandidateSource())

    response = TestClient(app).post("/api/v1/search", json={"text": "flood"})

    assert response.status_code == 500


def test_circuit_breaker_endpoint(search_config):
    source = ScriptedCandidateSource(
        keyword=[("a", 1.0, {})],
        errors={"fuzzy": CandidateSourceConfigurationError("missing column")},
    )
    client = make_client(search_config, source)

    assert client.post("/api/v1/search", json={"text": "flood"}).status_code == 422

    stats = client.get("/api/v1/circuit-breakers").json()
    assert set(stats) == {"candidate_source.keyword", "candidate_source.fuzzy"}
    assert stats["candidate_source.fuzzy"]["state"] == "closed"


def test_circuit_breaker_reset_endpoint(search_config):
    source = ScriptedCandidateSource(
        fuzzy=[("a", 0.9, {})],
        errors={"keyword": CandidateSourceUnavailableError("down")},
    )
    client = make_client(search_config, source)

    for _ in range(search_config.search_breaker_failure_threshold):
        assert client.post("/api/v1/search", json={"text": "flood"}).status_code == 200

    stats = client.get("/api/v1/circuit-breakers").json()
    assert stats["candidate_source.keyword"]["state"] == "open"

    reset = client.post("/api/v1/circuit-breakers/reset")
    assert reset.status_code == 200
    assert reset.json()["candidate_source.keyword"]["state"] == "closed"

    response = client.post("/api/v1/search", json={"text": "flood"})
    assert response.json()["diagnostics"]["degraded"] == {"keyword": "unavailable"}


def test_service_endpoints(search_config, request_source):
    main.app.state.search_manager = SearchManager(search_config, candidate_source=request_source)
    try:
        client = TestClient(main.app)

        root = client.get("/")
        assert root.status_code == 200
        assert root.json()["endpoints"]["search"] == "/api/v1/search"
        assert "X-Process-Time" in root.headers

        health = client.get("/health")
        assert health.status_code == 200
        assert health.json() == {"status": "healthy", "service": "search-service", "open_circuits": []}
        metrics = client.get("/metrics")
        assert metrics.status_code == 200
        assert metrics.headers["content-type"] == CONTENT_TYPE_LATEST
    finally:
        del main.app.state.search_manager
