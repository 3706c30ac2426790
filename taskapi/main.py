"""
Task Completion API - HTTP front end for the completion registry.

Provides REST endpoints for:
- Registering a completion (POST /api/complete-task)
- Checking completion status (GET /api/task-status/{userAddress})
- Health checks (GET /api/health)
- Stats (GET /api/stats)
- Service description (GET /) and a browser test page (GET /test)
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

import structlog
import uvicorn
from fastapi import APIRouter, Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import HTMLResponse, JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from . import __version__
from .address import is_evm_address
from .config import Settings, get_settings
from .db import SqlCompletionStore
from .middleware import RateLimitMiddleware, RequestLoggingMiddleware, describe_rate_limit
from .models import (
    MISSING_FIELD_MESSAGES,
    CompleteTaskRequest,
    ErrorResponse,
    HealthResponse,
    ServiceInfoResponse,
    StatsResponse,
    TaskResponse,
)
from .registry import (
    INVALID_ADDRESS,
    CompletionRegistry,
    CompletionStore,
    InternalError,
    MemoryCompletionStore,
    RegistryError,
)
from .testpage import TEST_PAGE_HTML

# Configure logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.JSONRenderer(),
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
)

logger = structlog.get_logger()


def configure_logging(level: str) -> None:
    """Route structlog output through a stdlib root handler."""
    logging.basicConfig(format="%(message)s", level=level.upper())
    # basicConfig is a no-op once a handler exists
    logging.getLogger().setLevel(level.upper())


def build_registry(settings: Settings) -> CompletionRegistry:
    """Create the registry with the store selected by DATABASE_URL."""
    store: CompletionStore
    if settings.database_url:
        store = SqlCompletionStore(settings.database_url)
    else:
        store = MemoryCompletionStore()
    return CompletionRegistry(
        store=store,
        max_age_seconds=settings.max_timestamp_age_seconds,
        max_skew_seconds=settings.max_clock_skew_seconds,
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler."""
    settings: Settings = app.state.settings
    registry: CompletionRegistry = app.state.registry

    logger.info(
        "API started",
        version=__version__,
        host=settings.host,
        port=settings.port,
        store=registry.store.backend,
        rate_limit=settings.rate_limit,
    )

    yield

    registry.close()
    logger.info("API stopped")


def get_registry(request: Request) -> CompletionRegistry:
    return request.app.state.registry


def error_response(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=TaskResponse.failure(message).model_dump())


router = APIRouter()


# ============================================================================
# Tasks
# ============================================================================


@router.post(
    "/api/complete-task",
    response_model=TaskResponse,
    response_model_exclude_none=True,
)
def complete_task(
    request: CompleteTaskRequest,
    registry: CompletionRegistry = Depends(get_registry),
):
    """
    Register that an address completed the task.

    Repeat calls for the same address return the first completion.
    A transaction hash can only ever be used once.
    """
    try:
        result = registry.register_completion(
            address=request.user_address,
            timestamp=request.timestamp,
            tx_hash=request.tx,
        )
    except InternalError as e:
        logger.error(
            "Failed to complete task",
            error=str(e.__cause__ or e),
            address=request.user_address,
        )
        return error_response(500, str(e))
    except RegistryError as e:
        logger.info(
            "Task completion rejected",
            reason=e.kind,
            address=request.user_address,
            tx=request.tx,
        )
        return error_response(400, str(e))
    except Exception as e:
        logger.error("Failed to complete task", error=str(e), address=request.user_address)
        return error_response(500, InternalError.message)

    return TaskResponse.complete(result.record)


@router.get(
    "/api/task-status/{user_address}",
    response_model=TaskResponse,
    response_model_exclude_none=True,
)
def task_status(
    user_address: str,
    registry: CompletionRegistry = Depends(get_registry),
):
    """
    Check whether an address completed the task.

    An address that never completed is reported with status 0, not an error.
    """
    if not is_evm_address(user_address):
        return error_response(400, INVALID_ADDRESS)

    try:
        record = registry.get_status(user_address)
    except Exception as e:
        logger.error("Failed to check task status", error=str(e), address=user_address)
        return error_response(500, InternalError.message)

    if record is None:
        return TaskResponse.incomplete()
    return TaskResponse.complete(record)


# ============================================================================
# Health / Stats
# ============================================================================


@router.get("/api/health", response_model=HealthResponse)
def health_check(registry: CompletionRegistry = Depends(get_registry)) -> HealthResponse:
    """Report service status and registry counts."""
    snapshot = registry.health_snapshot()
    return HealthResponse(
        status="healthy",
        version=__version__,
        timestamp=snapshot.timestamp,
        completions=snapshot.completions,
        transactions=snapshot.transactions,
    )


@router.get("/api/stats", response_model=StatsResponse)
def stats(registry: CompletionRegistry = Depends(get_registry)) -> StatsResponse:
    """Report total completions and consumed transaction hashes."""
    snapshot = registry.stats_snapshot()
    return StatsResponse(
        total_completions=snapshot.completions,
        total_transactions=snapshot.transactions,
        timestamp=snapshot.timestamp,
    )


# ============================================================================
# Service Info
# ============================================================================


@router.get("/", response_model=ServiceInfoResponse)
def service_info(request: Request) -> ServiceInfoResponse:
    settings: Settings = request.app.state.settings
    registry: CompletionRegistry = request.app.state.registry
    return ServiceInfoResponse(
        message="Blockchain Task Completion API",
        version=__version__,
        endpoints={
            "complete_task": "POST /api/complete-task",
            "check_status": "GET /api/task-status/:userAddress",
            "health": "GET /api/health",
            "stats": "GET /api/stats",
        },
        rate_limit=describe_rate_limit(settings.rate_limit),
        timestamp=registry.now(),
    )


@router.get("/test", response_class=HTMLResponse, include_in_schema=False)
def serve_test_page() -> str:
    return TEST_PAGE_HTML


# ============================================================================
# Error Handlers
# ============================================================================


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Report the first invalid field as a 400 task error."""
    errors = exc.errors()
    message = "Invalid request"
    if errors:
        first = errors[0]
        field = first["loc"][-1] if first.get("loc") else None
        if first.get("type") == "missing" and field in MISSING_FIELD_MESSAGES:
            message = MISSING_FIELD_MESSAGES[field]
        else:
            message = first.get("msg", message)
    return error_response(400, message)


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    if exc.status_code == 404:
        detail = "Endpoint not found"
    else:
        detail = str(exc.detail)
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(error=detail).model_dump(),
        headers=getattr(exc, "headers", None),
    )


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error("Unhandled error", error=str(exc), path=request.url.path)
    return JSONResponse(
        status_code=500,
        content=ErrorResponse(error=InternalError.message).model_dump(),
    )


# ============================================================================
# App Factory
# ============================================================================


def create_app(
    settings: Optional[Settings] = None,
    registry: Optional[CompletionRegistry] = None,
) -> FastAPI:
    """Build the FastAPI application around a registry."""
    settings = settings or get_settings()
    configure_logging(settings.log_level)

    app = FastAPI(
        title="Task Completion API",
        description="Records which addresses completed the task",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.registry = registry if registry is not None else build_registry(settings)

    # Last added runs first: CORS, then logging, then the rate cap
    app.add_middleware(
        RateLimitMiddleware,
        rate_limit=settings.rate_limit,
        per_client=settings.rate_limit_per_client,
    )
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    app.include_router(router)
    return app


app = create_app()


# ============================================================================
# Entry Point
# ============================================================================


def run() -> None:
    """Run the API server."""
    settings = get_settings()
    uvicorn.run(
        "taskapi.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
    )


if __name__ == "__main__":
    run()
