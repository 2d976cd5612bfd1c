"""
Main FastAPI application entry point.
"""
import logging
import threading
import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, HTTPException
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware

from acl_architect.core.config import settings
from acl_architect.core.logging_config import setup_logging
from acl_architect.api.v1.router import api_router
from acl_architect.api.v1.endpoints import health
from acl_architect.middleware.request_logging import RequestLoggingMiddleware
from acl_architect.services.config_service import LastKnownGoodCache

# Setup logging
setup_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup and shutdown events."""
    logger.info("Starting up NGINX ACL Architect API...")
    app.state.config_cache = LastKnownGoodCache()
    app.state.config_lock = threading.RLock()
    logger.info(
        f"Managing {settings.NGINX_CONF_PATH} "
        f"(test: '{settings.NGINX_TEST_COMMAND}', reload: '{settings.NGINX_RELOAD_COMMAND}')"
    )
    if not settings.is_auth_enabled():
        logger.warning("API_KEY not set - write endpoints are not authenticated")
    yield
    logger.info("Shutting down NGINX ACL Architect API...")


app = FastAPI(
    title="NGINX ACL Architect API",
    description="Parse, edit and regenerate the ACL section of an nginx forward proxy configuration",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
    redirect_slashes=False,
)

# Request logging middleware (must be added before other middleware)
app.add_middleware(RequestLoggingMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(api_router, prefix="/api/v1")


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Global exception handler for unhandled errors with trace_id."""
    if isinstance(exc, HTTPException):
        raise exc

    trace_id = getattr(request.state, "trace_id", str(uuid.uuid4()))
    logger.error(
        f"[{trace_id}] Unhandled exception: {type(exc).__name__}: {exc}",
        exc_info=True
    )

    return JSONResponse(
        status_code=500,
        content={
            "detail": str(exc) if settings.DEBUG else "Internal Server Error",
            "trace_id": trace_id,
            "error": type(exc).__name__,
            "message": str(exc) if settings.DEBUG else "An unexpected error occurred",
        },
    )


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "message": "NGINX ACL Architect API",
        "version": "1.0.0",
        "docs": "/docs",
    }


@app.get("/health")
async def health_check():
    """Health check for load balancers; same payload as /api/v1/health."""
    return await health.health_check()
