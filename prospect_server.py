"""HTTP API for the prospect data cache.

This module implements a FastAPI server that lets the research agent loop
initialize prospect records, persist tool results and read cached data.
Every error response has the shape ``{"error": "..."}``.
"""

from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from pydantic import BaseModel, Field
import uvicorn

from models import ProspectIdentifier, ProspectInput, utc_now
from services.data_collector import (
    ProspectDataCollector,
    get_data_summary,
    get_prospect_search_queries,
    is_cache_stale,
)
from services.prospect_cache import ProspectDataCacheStore
from utils.config import Config
from utils.logging_config import get_logger
from utils.rate_limiter import FixedWindowRateLimiter

logger = get_logger(__name__)


class CollectRequest(ProspectInput):
    """Request to initialize or fetch a prospect record."""

    force_refresh: bool = Field(False, description="Skip the cache and start a fresh record")


class ToolResultRequest(BaseModel):
    """A research tool's output to persist."""

    prospect: ProspectIdentifier
    tool_name: str = Field(..., min_length=1, description="Tool name as called by the agent")
    result: Any = Field(..., description="Raw tool output")
    ttl_ms: Optional[int] = Field(None, gt=0, description="Freshness window for this result")


# ============================================================================
# REQUEST GUARDS
# ============================================================================

def _client_ip(request: Request) -> str:
    """Client address used as the rate-limit key."""
    if request.app.state.config.server.rate_limit.trust_forwarded_for:
        forwarded = request.headers.get("x-forwarded-for")
        if forwarded:
            return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


async def require_api_key(request: Request) -> None:
    """Reject requests without the configured API key."""
    expected = request.app.state.config.server.api_key
    if expected and request.headers.get("x-api-key") != expected:
        raise HTTPException(status_code=401, detail="Invalid or missing API key")


async def enforce_rate_limit(request: Request, response: Response) -> None:
    """Fixed-window rate limit per client IP."""
    limiter: Optional[FixedWindowRateLimiter] = request.app.state.rate_limiter
    if limiter is None:
        return

    client_ip = _client_ip(request)
    result = limiter.check(client_ip)
    headers = {
        "X-RateLimit-Limit": str(result.limit),
        "X-RateLimit-Remaining": str(result.remaining),
        "X-RateLimit-Reset": str(result.reset_in_seconds),
    }

    if not result.allowed:
        logger.warning(f"Rate limit exceeded for {client_ip}")
        raise HTTPException(
            status_code=429,
            detail=f"Rate limit exceeded. Try again in {result.reset_in_seconds} seconds.",
            headers=headers
        )

    response.headers.update(headers)


async def require_store(request: Request) -> None:
    """Answer 503 when the hosted database is required but unavailable."""
    config: Config = request.app.state.config
    store: ProspectDataCacheStore = request.app.state.store
    if config.supabase.required and not store.is_supabase_cache_available():
        raise HTTPException(status_code=503, detail="Prospect database is not configured")


def get_collector(request: Request) -> ProspectDataCollector:
    return request.app.state.collector


def get_store(request: Request) -> ProspectDataCacheStore:
    return request.app.state.store


router = APIRouter(
    prefix="/prospects",
    dependencies=[Depends(require_api_key), Depends(enforce_rate_limit), Depends(require_store)]
)


# ============================================================================
# PROSPECT ENDPOINTS
# ============================================================================

@router.post("/collect")
async def collect_prospect(
    request_body: CollectRequest,
    collector: ProspectDataCollector = Depends(get_collector)
) -> Dict[str, Any]:
    """Return the cached record for a prospect, initializing it on a miss."""
    prospect = ProspectInput(**request_body.model_dump(exclude={"force_refresh"}))
    result = await collector.collect_prospect_data(prospect, force_refresh=request_body.force_refresh)

    payload = result.to_dict()
    payload["search_queries"] = get_prospect_search_queries(prospect)
    return payload


@router.post("/tool-result")
async def store_tool_result(
    request_body: ToolResultRequest,
    collector: ProspectDataCollector = Depends(get_collector),
    store: ProspectDataCacheStore = Depends(get_store)
) -> Dict[str, Any]:
    """Persist one tool's output into the prospect's record."""
    updated = await collector.update_prospect_tool_result(
        request_body.prospect,
        request_body.tool_name,
        request_body.result,
        request_body.ttl_ms
    )
    if not updated:
        raise HTTPException(
            status_code=404,
            detail=f"No cached record for prospect or unknown tool '{request_body.tool_name}'"
        )

    record = await store.get_cached_prospect_data(request_body.prospect)
    return {
        "success": True,
        "data_quality": record.data_quality.value if record else None,
    }


@router.get("/cache")
async def get_prospect_cache(
    name: str,
    address: Optional[str] = None,
    city: Optional[str] = None,
    state: Optional[str] = None,
    store: ProspectDataCacheStore = Depends(get_store)
) -> Dict[str, Any]:
    """Read a cached prospect record."""
    prospect = ProspectIdentifier(name=name, address=address, city=city, state=state)
    record = await store.get_cached_prospect_data(prospect)
    if record is None:
        raise HTTPException(status_code=404, detail="Prospect not found in cache")

    return {
        "data": record.model_dump(mode="json"),
        "stale": is_cache_stale(record),
        "summary": get_data_summary(record).model_dump(),
    }


@router.delete("/cache")
async def delete_prospect_cache(
    name: str,
    address: Optional[str] = None,
    city: Optional[str] = None,
    state: Optional[str] = None,
    store: ProspectDataCacheStore = Depends(get_store)
) -> Dict[str, Any]:
    """Remove a prospect's cached record."""
    prospect = ProspectIdentifier(name=name, address=address, city=city, state=state)
    await store.clear_prospect_cache(prospect)
    return {"success": True}


@router.post("/cleanup")
async def cleanup_expired(
    store: ProspectDataCacheStore = Depends(get_store)
) -> Dict[str, Any]:
    """Delete expired records."""
    removed = await store.cleanup_expired()
    return {"success": True, "removed": removed}


# ============================================================================
# ERROR HANDLERS
# ============================================================================

async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.detail}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": str(exc.detail)},
        headers=getattr(exc, "headers", None)
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    message = errors[0].get("msg", "Invalid request") if errors else "Invalid request"
    logger.info(f"{request.method} {request.url.path} rejected: {message}")
    return JSONResponse(status_code=400, content={"error": message})


async def value_error_handler(request: Request, exc: ValueError) -> JSONResponse:
    logger.info(f"{request.method} {request.url.path} rejected: {exc}")
    return JSONResponse(status_code=400, content={"error": str(exc)})


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    return JSONResponse(status_code=500, content={"error": "Internal server error"})


# ============================================================================
# APPLICATION
# ============================================================================

def create_app(
    config: Optional[Config] = None,
    store: Optional[ProspectDataCacheStore] = None
) -> FastAPI:
    """Create the FastAPI application."""
    config = config or Config.load_from_file()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Manage application lifecycle."""
        logger.info("Starting prospect data server")
        if app.state.store is None:
            config.ensure_directories()
            app.state.store = ProspectDataCacheStore.from_config(config)
        app.state.collector = ProspectDataCollector(
            app.state.store,
            tool_timeout_ms=config.collector.tool_timeout_ms
        )

        yield

        logger.info("Shutting down prospect data server")
        app.state.store.cache_manager.close()

    app = FastAPI(
        title="Prospect Data Server",
        description="Per-prospect research cache for donor prospecting",
        version="1.0.0",
        lifespan=lifespan
    )

    app.state.config = config
    app.state.store = store
    app.state.collector = None
    rate_limit = config.server.rate_limit
    app.state.rate_limiter = (
        FixedWindowRateLimiter(
            rate_limit.requests,
            rate_limit.window_seconds,
            cleanup_interval=rate_limit.cleanup_interval_seconds
        )
        if rate_limit.enabled else None
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(ValueError, value_error_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    @app.get("/health")
    async def health_check(request: Request) -> Dict[str, Any]:
        """Health check endpoint."""
        return {
            "status": "healthy",
            "timestamp": utc_now().isoformat(),
            "cache": request.app.state.store.get_cache_stats(),
        }

    app.include_router(router)
    return app


def run_server(config: Optional[Config] = None):
    """Run the prospect data server."""
    config = config or Config.load_from_file()
    uvicorn.run(create_app(config), host=config.server.host, port=config.server.port)


if __name__ == "__main__":
    run_server()
