"""
Nexus AI - FastAPI Application
Orchestration core API: chat, comparison, agents, documents and guardrails
"""
from contextlib import asynccontextmanager
import logging
from datetime import datetime, timezone

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from uvicorn.middleware.proxy_headers import ProxyHeadersMiddleware

from nexus.config import settings
from nexus.core.exceptions import (
    AppError,
    BlockedByPolicy,
    CircularDependencyError,
    ConfigurationError,
    IngestionFailure,
    NotFoundError,
    UpstreamError,
    ValidationError,
    WorkflowExecutionError,
)
from nexus.core.logging_config import configure_logging
from nexus.database import SessionLocal, init_db
from nexus.guardrails.policy import PolicyCache, database_loader
from nexus.api.routes import agents, chat, documents, guardrails, health, rag

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Handle startup and shutdown events."""
    configure_logging(settings.log_level)
    logger.info("Starting %s...", settings.app_name)

    try:
        init_db()
        logger.info("Database initialized")
    except SQLAlchemyError as e:
        logger.error("Database initialization failed: %s", e)

    if getattr(app.state, "policy_cache", None) is None:
        app.state.policy_cache = PolicyCache(
            database_loader(SessionLocal, settings.guardrail_policy_name),
            ttl_seconds=settings.guardrail_cache_ttl_seconds,
        )
    logger.info("API running on %s environment", settings.app_env)
    yield
    logger.info("Shutting down %s...", settings.app_name)


app = FastAPI(
    title=settings.app_name,
    description="LLM orchestration core",
    version="1.0.0",
    lifespan=lifespan,
)

# Respect forwarded proto/host from the fronting gateway.
app.add_middleware(ProxyHeadersMiddleware, trusted_hosts="*")

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _error(status_code: int, exc: Exception, **extra) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"detail": str(exc), **extra})


@app.exception_handler(BlockedByPolicy)
async def blocked_handler(request: Request, exc: BlockedByPolicy) -> JSONResponse:
    return _error(status.HTTP_403_FORBIDDEN, exc, action="blocked", pii_types=exc.categories)


@app.exception_handler(ValidationError)
async def validation_handler(request: Request, exc: ValidationError) -> JSONResponse:
    return _error(status.HTTP_400_BAD_REQUEST, exc)


@app.exception_handler(CircularDependencyError)
async def cycle_handler(request: Request, exc: CircularDependencyError) -> JSONResponse:
    return _error(
        status.HTTP_400_BAD_REQUEST,
        exc,
        node_id=exc.node_id,
        trace=[entry.to_dict() for entry in exc.trace],
    )


@app.exception_handler(NotFoundError)
async def not_found_handler(request: Request, exc: NotFoundError) -> JSONResponse:
    return _error(status.HTTP_404_NOT_FOUND, exc)


@app.exception_handler(IngestionFailure)
async def ingestion_handler(request: Request, exc: IngestionFailure) -> JSONResponse:
    return _error(status.HTTP_422_UNPROCESSABLE_ENTITY, exc, document_id=exc.document_id)


@app.exception_handler(UpstreamError)
async def upstream_handler(request: Request, exc: UpstreamError) -> JSONResponse:
    return _error(status.HTTP_502_BAD_GATEWAY, exc, hint=exc.hint, upstream_status=exc.status_code)


@app.exception_handler(ConfigurationError)
async def configuration_handler(request: Request, exc: ConfigurationError) -> JSONResponse:
    return _error(status.HTTP_503_SERVICE_UNAVAILABLE, exc)


@app.exception_handler(WorkflowExecutionError)
async def workflow_handler(request: Request, exc: WorkflowExecutionError) -> JSONResponse:
    return _error(
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        exc,
        node_id=exc.node_id,
        trace=[entry.to_dict() for entry in exc.trace],
    )


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, exc)


@app.get("/")
async def root() -> dict:
    return {
        "name": settings.app_name,
        "environment": settings.app_env,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


prefix = settings.api_v1_prefix
app.include_router(health.router, prefix=prefix, tags=["Health"])
app.include_router(chat.router, prefix=f"{prefix}/chat", tags=["Chat"])
app.include_router(agents.router, prefix=f"{prefix}/agents", tags=["Agents"])
app.include_router(documents.router, prefix=f"{prefix}/documents", tags=["Documents"])
app.include_router(rag.router, prefix=f"{prefix}/rag", tags=["RAG"])
app.include_router(guardrails.router, prefix=f"{prefix}/guardrails", tags=["Guardrails"])
