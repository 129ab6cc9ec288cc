"""
================================================================================
⚡ GENESIS GENERATION API
================================================================================
FastAPI surface for the marketing content generation engine.

Endpoints:
- POST /api/generate                        - Run one generation workflow
- GET  /api/generate/stream/{request_id}    - SSE progress stream with replay
- GET  /health                              - Breakers, sequencer and storage state
- GET  /metrics                             - Prometheus metrics
- POST /api/admin/circuit/{service}/open    - Force a breaker open
- POST /api/admin/circuit/{service}/close   - Force a breaker closed

================================================================================
Author: Barrios A2I | Version: 3.0.0 | October 2026
================================================================================
"""

import logging
import os
import time
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional, Set

from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response, StreamingResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from pydantic import BaseModel, Field

from agents.base import AdapterSet
from generation_config import GenerationConfig
from generation_orchestrator import create_generation_orchestrator
from progress_stream import (
    SSE_HEADERS,
    CompositeProgressReporter,
    LoggingProgressReporter,
    StreamConfig,
    StreamingProgressReporter,
)
from request_sequencer import CapacityError, RequestSequencer
from resilience import CircuitBreakerRegistry
from result_aggregator import AggregationError
from schemas.generation_schema import ErrorCode, GenerationRequest

logger = logging.getLogger("genesis.api")

API_VERSION = "3.0.0"

LOG_FORMAT = '{"timestamp": "%(asctime)s", "level": "%(levelname)s", "logger": "%(name)s", "message": "%(message)s"}'


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO), format=LOG_FORMAT)


# =============================================================================
# REQUEST/RESPONSE MODELS
# =============================================================================

class GenerateRequest(BaseModel):
    """Intake form submission"""
    category: str = Field(..., min_length=1, description="Business category, e.g. tea-stall")
    raw_message: str = Field(..., min_length=1, description="What the owner wants to announce")
    target_language: str = Field(..., min_length=1, description="Caption language, e.g. hindi")
    custom_category: Optional[str] = Field(None, description="Required when category is 'other'")
    request_id: Optional[str] = Field(None, description="Client-chosen id, used for the progress stream")

    model_config = {
        "json_schema_extra": {
            "example": {
                "category": "tea-stall",
                "raw_message": "Fresh masala chai at 10 rs, open 6am to 10pm near bus stand",
                "target_language": "hindi",
            }
        }
    }

    def to_domain(self) -> GenerationRequest:
        fields = {
            "category": self.category,
            "raw_message": self.raw_message,
            "target_language": self.target_language,
            "custom_category": self.custom_category,
        }
        if self.request_id:
            fields["request_id"] = self.request_id
        return GenerationRequest(**fields)


class HealthResponse(BaseModel):
    """Health check response"""
    status: str  # healthy, degraded, warning
    version: str
    uptime_seconds: float
    circuits: Dict[str, Any]
    sequencer: Dict[str, Any]
    progress: Dict[str, Any]
    storage: Dict[str, Any]


# =============================================================================
# APPLICATION SETUP
# =============================================================================

class GenesisServices:
    """Long-lived objects shared by every request"""

    def __init__(
        self,
        config: GenerationConfig,
        adapters: Optional[AdapterSet] = None,
        registry: Optional[CircuitBreakerRegistry] = None
    ):
        self.config = config
        self.registry = registry or CircuitBreakerRegistry(config.circuit)
        self.orchestrator = create_generation_orchestrator(config, adapters=adapters, registry=self.registry)
        self.sequencer = RequestSequencer(self.orchestrator, max_queue_depth=config.max_queue_depth)
        self.stream = StreamingProgressReporter(
            StreamConfig(max_tracked_requests=config.max_tracked_requests)
        )
        self.reporter = CompositeProgressReporter([LoggingProgressReporter(), self.stream])
        # Ids admitted by /api/generate that have not returned yet
        self.active_requests: Set[str] = set()
        self.started_at = time.time()

    def storage_health(self) -> Dict[str, Any]:
        """Health of every object store the media adapters upload to"""
        a = self.orchestrator.adapters
        stores = {}
        for adapter in (a.speech, a.image, a.video):
            store = getattr(adapter, "object_store", None)
            if store is not None:
                stores[store.name] = store.health()
        return stores


def create_app(
    config: Optional[GenerationConfig] = None,
    adapters: Optional[AdapterSet] = None,
    registry: Optional[CircuitBreakerRegistry] = None
) -> FastAPI:
    """Build the API; services are created on startup"""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # =====================================================================
        # STARTUP
        # =====================================================================
        resolved = config or GenerationConfig.from_env()
        configure_logging(resolved.log_level)
        logger.info("🚀 Starting GENESIS Generation API...")

        app.state.services = GenesisServices(resolved, adapters=adapters, registry=registry)

        logger.info(f"✅ Orchestrator ready: {resolved.summary()}")
        logger.info("⚡ GENESIS GENERATION API READY")

        yield

        # =====================================================================
        # SHUTDOWN
        # =====================================================================
        logger.info("👋 Shutting down GENESIS Generation API...")

    app = FastAPI(
        title="GENESIS Generation API",
        description="""
        Marketing content generation for small local businesses.

        One message in; caption, voiceover, poster image and short video out.
        """,
        version=API_VERSION,
        lifespan=lifespan
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[
            "https://barriosa2i.com",
            "http://localhost:3000",
            "http://localhost:5173"
        ],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    _register_routes(app)
    return app


def _services(request: Request) -> GenesisServices:
    services = getattr(request.app.state, "services", None)
    if services is None:
        raise HTTPException(status_code=503, detail="Orchestrator not initialized")
    return services


def _register_routes(app: FastAPI) -> None:

    # =========================================================================
    # HEALTH & METRICS
    # =========================================================================

    @app.get("/health", response_model=HealthResponse, tags=["Health"])
    async def health_check(request: Request):
        """Breaker state per adapter, sequencer load, progress streams and storage"""
        services = _services(request)
        health = services.orchestrator.get_health()
        storage = services.storage_health()
        status = health["status"]
        if status == "healthy" and not all(s["configured"] for s in storage.values()):
            # Asset URLs are handed out but nothing is uploaded
            status = "warning"

        return HealthResponse(
            status=status,
            version=API_VERSION,
            uptime_seconds=time.time() - services.started_at,
            circuits=health["circuits"],
            sequencer=services.sequencer.stats(),
            progress=services.stream.stats(),
            storage=storage,
        )

    @app.get("/metrics", tags=["Observability"])
    async def prometheus_metrics():
        """Prometheus metrics endpoint"""
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    # =========================================================================
    # GENERATION
    # =========================================================================

    @app.post("/api/generate", tags=["Generation"])
    async def generate(body: GenerateRequest, request: Request):
        """
        Run one generation workflow and return its result.

        Completed, partial and failed results all return 200; inspect
        `status` and `errors`. A full waiting line returns 429, a request id
        that is already running or streamable returns 409.
        """
        services = _services(request)
        generation_request = body.to_domain()
        request_id = generation_request.request_id

        if request_id in services.active_requests or request_id in services.stream.event_log:
            return JSONResponse(
                status_code=409,
                content={"code": "duplicate_request", "detail": f"Request id {request_id} is already in use",
                         "request_id": request_id},
            )

        services.active_requests.add(request_id)
        try:
            result = await services.sequencer.submit(generation_request, services.reporter)
        except CapacityError as e:
            return JSONResponse(
                status_code=429,
                content={"code": e.code, "detail": str(e), "request_id": generation_request.request_id},
                headers={"Retry-After": "30"},
            )
        except AggregationError as e:
            logger.error(f"[{generation_request.request_id}] Aggregation failed: {e}")
            return JSONResponse(
                status_code=500,
                content={
                    "code": ErrorCode.INTERNAL_ERROR,
                    "detail": str(e),
                    "request_id": generation_request.request_id,
                },
            )
        finally:
            services.active_requests.discard(request_id)

        return result.to_dict()

    @app.get("/api/generate/stream/{request_id}", tags=["Streaming"])
    async def stream_progress(
        request_id: str,
        request: Request,
        last_seen_sequence: int = Query(0, ge=0, description="Last event sequence the client saw")
    ):
        """
        Stream progress events via Server-Sent Events (SSE).

        Reconnect with `last_seen_sequence` to replay missed events. The
        stream ends after the `workflow_complete` or `workflow_error` event.
        """
        services = _services(request)
        header_id = request.headers.get("last-event-id")
        if header_id and header_id.isdigit() and not last_seen_sequence:
            last_seen_sequence = int(header_id)

        async def event_generator():
            yield ": connected\n\n"
            async for sse in services.stream.stream_sse(request_id, last_seen_sequence):
                yield sse

        return StreamingResponse(
            event_generator(),
            media_type="text/event-stream",
            headers=SSE_HEADERS
        )

    # =========================================================================
    # ADMIN ENDPOINTS
    # =========================================================================

    @app.post("/api/admin/circuit/{service}/open", tags=["Admin"])
    async def force_open_circuit(service: str, request: Request, reason: str = "manual"):
        """Force open a circuit breaker (admin only)"""
        services = _services(request)
        if service not in services.registry:
            raise HTTPException(status_code=404, detail=f"Circuit {service} not found")

        services.registry.get(service).force_open(reason)
        return {"status": "opened", "service": service, "reason": reason}

    @app.post("/api/admin/circuit/{service}/close", tags=["Admin"])
    async def force_close_circuit(service: str, request: Request):
        """Force close a circuit breaker (admin only)"""
        services = _services(request)
        if service not in services.registry:
            raise HTTPException(status_code=404, detail=f"Circuit {service} not found")

        services.registry.get(service).force_close()
        return {"status": "closed", "service": service}

    @app.get("/", tags=["Root"])
    async def root():
        """API root - returns basic info"""
        return {
            "name": "GENESIS Generation API",
            "version": API_VERSION,
            "status": "operational",
            "docs": "/docs",
            "health": "/health",
            "metrics": "/metrics"
        }


app = create_app()


# =============================================================================
# RUN SERVER
# =============================================================================

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "generation_api:app",
        host="0.0.0.0",
        port=int(os.getenv("PORT", "8000")),
    )
