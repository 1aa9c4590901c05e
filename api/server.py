"""
Query Server.

============================================================
PURPOSE
============================================================
Read-mostly HTTP surface over the warehouse and the tracer,
plus label management.

- GET  /v1/health                     (never requires a key)
- GET  /v1/networks, /v1/networks/{id}/tip
- GET  /v1/transactions/{hash}
- GET  /v1/addresses/{network}/{address}/balance | /links
- POST /v1/trace, GET /v1/upstream
- /v1/labels CRUD, address label assignment and deletion

When API keys are configured every other endpoint requires
``Authorization: Bearer <key>``.

============================================================
ERROR MAPPING
============================================================
- invalid trace / validation failure  -> 400
- missing or wrong key                -> 401
- unknown record                      -> 404
- duplicate name / locked record      -> 409
- storage failure                     -> 503

============================================================
"""

import logging
from typing import Optional

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from api.routers import chain, health, labels, trace
from core.config import ServerConfig
from core.constants import SYSTEM_VERSION
from core.exceptions import IndexerException, StoreFailure, TraceError
from storage.repositories.exceptions import (
    ConflictError,
    RecordNotFoundError,
    RepositoryException,
    ValidationError,
)
from storage.warehouse import Warehouse
from tracer.fund_flow import FundFlowTracer


logger = logging.getLogger(__name__)


def _error(status_code: int, error: str, detail: str, context: Optional[dict] = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"error": error, "detail": detail, "context": context or {}},
    )


def _register_error_handlers(app: FastAPI) -> None:

    @app.exception_handler(RequestValidationError)
    async def request_invalid(request: Request, exc: RequestValidationError):
        detail = "; ".join(
            f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}"
            for error in exc.errors()
        )
        return _error(status.HTTP_400_BAD_REQUEST, "validation_error", detail)

    @app.exception_handler(TraceError)
    async def trace_error(request: Request, exc: TraceError):
        return _error(status.HTTP_400_BAD_REQUEST, "invalid_trace", exc.message, exc.context)

    @app.exception_handler(StoreFailure)
    async def store_failure(request: Request, exc: StoreFailure):
        logger.error(f"Storage failure serving {request.url.path}: {exc}")
        return _error(status.HTTP_503_SERVICE_UNAVAILABLE, "store_failure", "Storage unavailable")

    @app.exception_handler(IndexerException)
    async def indexer_error(request: Request, exc: IndexerException):
        logger.error(f"Error serving {request.url.path}: {exc.to_dict()}")
        return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, type(exc).__name__, exc.message)

    @app.exception_handler(RepositoryException)
    async def repository_error(request: Request, exc: RepositoryException):
        if isinstance(exc, RecordNotFoundError):
            return _error(status.HTTP_404_NOT_FOUND, "not_found", exc.message, exc.details)
        if isinstance(exc, ConflictError):
            return _error(status.HTTP_409_CONFLICT, "conflict", exc.message, exc.details)
        if isinstance(exc, ValidationError):
            return _error(status.HTTP_400_BAD_REQUEST, "validation_error", exc.message, exc.details)
        logger.error(f"Repository error serving {request.url.path}: {exc}")
        return _error(status.HTTP_503_SERVICE_UNAVAILABLE, "store_failure", "Storage unavailable")


def create_app(
    warehouse: Warehouse,
    tracer: Optional[FundFlowTracer] = None,
    settings: Optional[ServerConfig] = None,
    scheduler=None,
) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        warehouse: Store every endpoint reads from
        tracer: Fund-flow tracer (defaults to one over ``warehouse``)
        settings: Server settings (API keys)
        scheduler: Running ScanScheduler, reported by /v1/health
    """
    settings = settings or ServerConfig()

    app = FastAPI(
        title="Fund-Flow Indexer API",
        description="Indexed blockchain data, fund-flow tracing and address labels.",
        version=SYSTEM_VERSION,
    )
    app.state.warehouse = warehouse
    app.state.tracer = tracer or FundFlowTracer(warehouse)
    app.state.settings = settings
    app.state.scheduler = scheduler

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(health.router)
    app.include_router(chain.router)
    app.include_router(trace.router)
    app.include_router(labels.router)
    _register_error_handlers(app)

    if settings.api_keys:
        logger.info(f"API key auth enabled ({len(settings.api_keys)} keys)")
    return app
