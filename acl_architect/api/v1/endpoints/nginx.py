"""
Raw nginx configuration endpoints: read, save, list, upload, validate and fix.
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, File, HTTPException, Query, Request, UploadFile, status
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import PlainTextResponse

from acl_architect.api.deps import DOMAIN_ERRORS, get_config_service, http_error, read_text_body
from acl_architect.core.auth import APIClient, get_current_api_client
from acl_architect.schemas.config import ConfigFileListResponse, SaveResult, UploadResponse
from acl_architect.services.config_service import ConfigService
from acl_architect.services.config_validator import (
    ValidationResult,
    validate_and_fix_nginx_config,
    validate_nginx_config,
)

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/config", response_class=PlainTextResponse)
def get_config(
    path: Optional[str] = Query(default=None, description="Configuration file; defaults to NGINX_CONF_PATH"),
    service: ConfigService = Depends(get_config_service),
):
    """Return the raw configuration text."""
    try:
        return PlainTextResponse(service.read_config(path))
    except DOMAIN_ERRORS as e:
        raise http_error(e)


@router.post("/config", response_model=SaveResult)
async def save_config(
    request: Request,
    path: Optional[str] = Query(default=None, description="Configuration file; defaults to NGINX_CONF_PATH"),
    client: APIClient = Depends(get_current_api_client),
    service: ConfigService = Depends(get_config_service),
):
    """
    Save raw configuration text.

    The previous file is backed up, the proxy's configuration test is run
    and the file is restored if the test fails. On success the proxy is
    reloaded. The proxy commands run in the threadpool.
    """
    text = await read_text_body(request)
    try:
        result = await run_in_threadpool(service.save_config, text, path)
    except DOMAIN_ERRORS as e:
        raise http_error(e)

    logger.info(f"Configuration saved to {result.path} by {client.source} client")
    return result


@router.get("/files", response_model=ConfigFileListResponse)
def list_files(service: ConfigService = Depends(get_config_service)):
    """List candidate configuration files and uploaded files."""
    return ConfigFileListResponse(
        files=service.list_config_files(),
        default_path=service.settings.NGINX_CONF_PATH,
    )


@router.post("/upload", response_model=UploadResponse, status_code=status.HTTP_201_CREATED)
async def upload_config_file(
    file: UploadFile = File(...),
    client: APIClient = Depends(get_current_api_client),
    service: ConfigService = Depends(get_config_service),
):
    """Upload a configuration file to work on."""
    content = await file.read()
    if len(content) > service.settings.MAX_UPLOAD_SIZE:
        raise HTTPException(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail=f"File size exceeds maximum allowed size of {service.settings.MAX_UPLOAD_SIZE} bytes"
        )

    try:
        stored = await run_in_threadpool(service.save_uploaded_file, file.filename, content)
    except DOMAIN_ERRORS as e:
        raise http_error(e)

    logger.info(f"Config uploaded by {client.source} client: '{file.filename}' -> {stored}")
    return UploadResponse(path=str(stored), filename=stored.name, size=len(content))


@router.post("/validate", response_model=ValidationResult)
async def validate_config(request: Request):
    """Check configuration text without changing it."""
    return validate_nginx_config(await read_text_body(request))


@router.post("/fix", response_class=PlainTextResponse)
async def fix_config(request: Request):
    """Rewrite unsupported conditionals and return the repaired text."""
    return PlainTextResponse(validate_and_fix_nginx_config(await read_text_body(request)))
