"""Search service main application."""

import time
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import structlog
from prometheus_client import CONTENT_TYPE_LATEST

from .api.routes import router as api_router
from .hybrid.search_manager import SearchManager
from .runtime.metrics import get_metrics_collector
from libs.common.config import SearchConfig
from libs.common.logging import configure_logging
from libs.common.tracing import configure_tracing

logger = structlog.get_logger("search_service")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    # Startup
    config = SearchConfig()
    configure_logging("search-service", config.search_log_level, config.search_log_format, env=config.search_env)

    if config.search_tracing_enabled:
        tracer = configure_tracing(config.search_otel_service_name, config.search_otel_exporter)
        if tracer:
            logger.info("OpenTelemetry tracing enabled", exporter=config.search_otel_exporter)
        else:
            logger.warning("Tracing initialization failed")
    else:
        tracer = None
        logger.info("OpenTelemetry tracing disabled via configuration")
    app.state.tracer = tracer

    logger.info("Starting search service", candidate_backend=config.search_candidate_backend)

    app.state.metrics_collector = get_metrics_collector("search-service")
    app.state.search_manager = SearchManager(config, metrics_collector=app.state.metrics_collector)

    if not await app.state.search_manager.health_check():
        logger.warning("Candidate source not reachable at startup; searches will degrade until it is")

    logger.info("Search service started successfully")

    yield

    # Shutdown
    logger.info("Shutting down search service")
    if hasattr(app.state, 'search_manager'):
        await app.state.search_manager.cleanup()
    logger.info("Search service shutdown complete")


app = FastAPI(
    title="Search Service",
    description="Hybrid keyword, fuzzy and semantic search service",
    version="0.1.0",
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(api_router, prefix="/api/v1")


@app.middleware("http")
async def metrics_middleware(request: Request, call_next):
    """Collect metrics for HTTP requests and add the processing time header."""
    start_time = time.time()

    try:
        response = await call_next(request)
        status_code = response.status_code
    except Exception as e:
        status_code = 500
        response = JSONResponse(
            status_code=500,
            content={"error": "Internal server error", "detail": str(e)}
        )

    duration = time.time() - start_time
    response.headers["X-Process-Time"] = str(duration)

    if hasattr(app.state, 'metrics_collector'):
        app.state.metrics_collector.record_http_request(
            method=request.method,
            endpoint=request.url.path,
            status=status_code,
            duration=duration
        )

    return response


def open_circuits():
    """Names of strategy breakers currently rejecting calls."""
    if not hasattr(app.state, 'search_manager'):
        return []
    stats = app.state.search_manager.get_breaker_stats()
    return sorted(name for name, breaker in stats.items() if breaker["state"] != "closed")


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    try:
        if hasattr(app.state, 'search_manager'):
            search_health = await app.state.search_manager.health_check()
        else:
            search_health = False

        content = {
            "status": "healthy" if search_health else "unhealthy",
            "service": "search-service",
            "open_circuits": open_circuits(),
        }
        if search_health:
            return content
        return JSONResponse(status_code=503, content=content)
    except Exception as e:
        logger.error("Health check failed", error=str(e))
        return JSONResponse(
            status_code=503,
            content={"status": "unhealthy", "service": "search-service", "error": str(e)}
        )


@app.get("/metrics")
async def metrics():
    """Prometheus metrics endpoint."""
    if hasattr(app.state, 'metrics_collector'):
        metrics_data = app.state.metrics_collector.get_metrics()
        return Response(content=metrics_data, media_type=CONTENT_TYPE_LATEST)
    else:
        return Response(content="# No metrics available\n", media_type=CONTENT_TYPE_LATEST)


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "service": "search-service",
        "version": "0.1.0",
        "status": "running",
        "endpoints": {
            "health": "/health",
            "metrics": "/metrics",
            "search": "/api/v1/search",
            "circuit_breakers": "/api/v1/circuit-breakers",
            "circuit_breakers_reset": "/api/v1/circuit-breakers/reset"
        }
    }


if __name__ == "__main__":
    uvicorn.run(
        "service_search.app.main:app",
        host="0.0.0.0",
        port=SearchConfig().search_port,
        log_level="info"
    )
