"""
Health check endpoint for monitoring and diagnostics.
"""
import logging
from pathlib import Path

from fastapi import APIRouter

from acl_architect.core.config import get_settings

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/health")
async def health_check():
    """
    Health check endpoint.

    Reports whether the configured nginx file is present; a missing file is
    not an error (the service can still serve a cached copy or the template).
    """
    settings = get_settings()
    config_exists = Path(settings.NGINX_CONF_PATH).is_file()
    if not config_exists:
        logger.debug(f"Configured nginx file {settings.NGINX_CONF_PATH} does not exist")

    return {
        "ok": True,
        "environment": settings.APP_ENV,
        "config_path": settings.NGINX_CONF_PATH,
        "config_exists": config_exists,
    }
