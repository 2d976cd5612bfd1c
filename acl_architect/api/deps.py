"""
Shared FastAPI dependencies and error translation.
"""
import logging
import threading

from fastapi import HTTPException, Request, status

from acl_architect.core.config import get_settings
from acl_architect.services.acl_service import AclValidationError
from acl_architect.services.config_service import (
    ConfigApplyError,
    ConfigNotFoundError,
    ConfigService,
    LastKnownGoodCache,
)

logger = logging.getLogger(__name__)

# Exceptions the services raise for bad input or proxy failures
DOMAIN_ERRORS = (ValueError, LookupError, ConfigNotFoundError, ConfigApplyError)


def get_config_cache(request: Request) -> LastKnownGoodCache:
    """The application's last-known-good cache, created on first use."""
    cache = getattr(request.app.state, "config_cache", None)
    if cache is None:
        cache = LastKnownGoodCache()
        request.app.state.config_cache = cache
    return cache


def get_config_lock(request: Request) -> "threading.RLock":
    """The application's writer lock, created on first use."""
    lock = getattr(request.app.state, "config_lock", None)
    if lock is None:
        lock = threading.RLock()
        request.app.state.config_lock = lock
    return lock


def get_config_service(request: Request) -> ConfigService:
    """Build a ConfigService for the current request."""
    return ConfigService(get_settings(), get_config_cache(request), lock=get_config_lock(request))


def http_error(exc: Exception) -> HTTPException:
    """Translate a service exception into an HTTPException keeping its message."""
    if isinstance(exc, ConfigApplyError):
        code = status.HTTP_400_BAD_REQUEST if exc.stage == "test" else status.HTTP_500_INTERNAL_SERVER_ERROR
    elif isinstance(exc, (ConfigNotFoundError, LookupError)):
        code = status.HTTP_404_NOT_FOUND
    elif isinstance(exc, AclValidationError):
        code = status.HTTP_422_UNPROCESSABLE_ENTITY
    else:
        # ConfigValidationError, disallowed paths, bad uploads
        code = status.HTTP_400_BAD_REQUEST
    logger.info(f"Request failed with {code}: {exc}")
    return HTTPException(status_code=code, detail=str(exc))


async def read_text_body(request: Request) -> str:
    """Read a text/plain request body."""
    body = await request.body()
    try:
        return body.decode("utf-8")
    except UnicodeDecodeError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Request body must be UTF-8 text",
        )
