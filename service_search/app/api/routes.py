"""API routes for search service."""

import time
from typing import Any, Dict, List, Optional
from fastapi import APIRouter, HTTPException, Request, Depends
from pydantic import BaseModel, Field
import structlog

from ..hybrid.errors import NoStrategyAvailableError, SearchConfigurationError
from ..hybrid.models import SearchResponse as EngineResponse
from ..hybrid.search_manager import SearchManager

logger = structlog.get_logger("search_service.api")

router = APIRouter()


class SearchWeightsModel(BaseModel):
    """Optional per-request blend weights; omitted ones use service defaults."""
    keyword: Optional[float] = Field(None, ge=0.0, description="Keyword match weight")
    fuzzy: Optional[float] = Field(None, ge=0.0, description="Fuzzy match weight")
    semantic: Optional[float] = Field(None, ge=0.0, description="Semantic match weight")


class SearchRequest(BaseModel):
    """Request model for search endpoint."""
    text: Optional[str] = Field(None, description="Free-text query")
    vector: Optional[List[float]] = Field(None, description="Precomputed query embedding")
    limit: Optional[int] = Field(None, description="Maximum number of results")
    weights: Optional[SearchWeightsModel] = Field(None, description="Strategy weights")
    deadline_seconds: Optional[float] = Field(None, gt=0.0, description="Per-query deadline")


class SearchResult(BaseModel):
    """Search result model."""
    id: Any = Field(..., description="Record ID")
    final_score: float = Field(..., description="Fused relevance score in [0, 1]")
    per_strategy_scores: Dict[str, float] = Field(..., description="Normalized score per contributing strategy")
    payload: Dict[str, Any] = Field(..., description="Record fields")


class SearchDiagnosticsModel(BaseModel):
    """Strategy availability for one search."""
    invoked: List[str] = Field(..., description="Strategies dispatched")
    contributed: List[str] = Field(..., description="Strategies whose results were fused")
    skipped: Dict[str, str] = Field(..., description="Strategies not dispatched, with reason")
    degraded: Dict[str, str] = Field(..., description="Dispatched strategies that failed, with reason")
    candidate_counts: Dict[str, int] = Field(..., description="Hits fetched per strategy")
    latency_ms: float = Field(..., description="Engine latency in milliseconds")


class SearchResponse(BaseModel):
    """Response model for search endpoint."""
    results: List[SearchResult] = Field(..., description="Search results")
    total: int = Field(..., description="Total number of results")
    diagnostics: SearchDiagnosticsModel = Field(..., description="Strategy diagnostics")
    latency_ms: float = Field(..., description="Request latency in milliseconds")


def get_search_manager(request: Request) -> SearchManager:
    """Get search manager from application state."""
    return request.app.state.search_manager


def to_response_model(response: EngineResponse, latency_ms: float) -> SearchResponse:
    return SearchResponse(
        results=[SearchResult(**result.to_dict()) for result in response.results],
        total=len(response.results),
        diagnostics=SearchDiagnosticsModel(**response.diagnostics.to_dict()),
        latency_ms=latency_ms
    )


@router.post("/search", response_model=SearchResponse)
async def search(
    request: SearchRequest,
    search_manager: SearchManager = Depends(get_search_manager)
):
    """Perform hybrid search."""
    start_time = time.time()

    try:
        query = search_manager.build_query(
            text=request.text,
            vector=request.vector,
            limit=request.limit,
            weights=request.weights.model_dump() if request.weights else None,
            deadline_seconds=request.deadline_seconds
        )
        response = await search_manager.search(query)

    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    except SearchConfigurationError as e:
        logger.error("Search misconfigured", error=str(e))
        raise HTTPException(status_code=422, detail=str(e))
    except NoStrategyAvailableError as e:
        logger.error("No search strategy available", reasons={k.value: v for k, v in e.reasons.items()})
        raise HTTPException(status_code=503, detail=str(e))
    except Exception as e:
        logger.error("Search failed", error=str(e))
        raise HTTPException(status_code=500, detail=f"Search failed: {str(e)}")

    latency_ms = (time.time() - start_time) * 1000
    return to_response_model(response, latency_ms)


@router.get("/circuit-breakers")
async def circuit_breakers(
    search_manager: SearchManager = Depends(get_search_manager)
):
    """Circuit breaker state for each matching strategy."""
    return search_manager.get_breaker_stats()


@router.post("/circuit-breakers/reset")
async def reset_circuit_breakers(
    search_manager: SearchManager = Depends(get_search_manager)
):
    """Close all strategy breakers so the next search calls the backend again."""
    logger.info("Circuit breaker reset requested")
    return await search_manager.reset_breakers()
