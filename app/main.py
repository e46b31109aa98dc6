"""FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.api.middleware import RequestContextMiddleware
from app.api.routes import api_router
from app.core.action_authorization import ActionAuthorizer, build_action_registry
from app.core.exceptions import PersistenceError
from app.infrastructure.notifications import drain_background_deliveries, get_notifier
from app.logging_config import setup_logging
from app.settings import settings

# Setup logging
setup_logging()

logger = logging.getLogger(__name__)

GENERIC_ERROR_MESSAGE = "I had trouble processing that, please try again"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    # Startup
    app.state.action_authorizer = ActionAuthorizer(build_action_registry())
    app.state.notifier = get_notifier()
    # Domain executors are registered by the deployment, keyed by ActionKind
    app.state.action_executors = {}
    yield
    # Shutdown
    await drain_background_deliveries()


# Create FastAPI app
app = FastAPI(
    title="School Escalation Engine API",
    description="Escalation and authorization workflow for school agents",
    version="0.1.0",
    lifespan=lifespan,
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_middleware(RequestContextMiddleware)


@app.exception_handler(PersistenceError)
async def persistence_error_handler(request: Request, exc: PersistenceError) -> JSONResponse:
    logger.error(f"Persistence failure during {exc.operation}: {exc}")
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"detail": GENERIC_ERROR_MESSAGE},
    )


# Include API routes
app.include_router(api_router, prefix=settings.api_v1_prefix)

# Include worker routes (for the scheduler)
from app.workers import escalation_expiry_worker
app.include_router(escalation_expiry_worker.router, prefix="/workers", tags=["workers"])


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy"}


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "message": "School Escalation Engine API",
        "version": "0.1.0",
        "docs": "/docs",
    }
