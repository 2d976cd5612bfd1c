"""
Structured ACL endpoints.

Edits follow load -> change via AclService -> save, so every change goes
through the same backup/test/reload path as a raw configuration save.
Handlers that touch files or run proxy commands are plain functions so
they run in the threadpool; the service lock admits one writer at a time.
"""
import logging
from typing import Callable, Optional

from fastapi import APIRouter, Depends, Query, Request, status
from fastapi.responses import PlainTextResponse

from acl_architect.api.deps import DOMAIN_ERRORS, get_config_service, http_error, read_text_body
from acl_architect.core.auth import APIClient, get_current_api_client
from acl_architect.models.nginx import CombinedAcl, CombinedAclRule, IpAclEntry, NginxConfig, UrlAclEntry
from acl_architect.schemas.acl import (
    AclEditResponse,
    CombinedRuleUpdate,
    GroupCreate,
    IpEntryUpdate,
    UrlEntryUpdate,
)
from acl_architect.schemas.config import AvailableGroup, AvailableGroupsResponse, SaveResult
from acl_architect.services.acl_service import AclService
from acl_architect.services.config_service import ConfigService
from acl_architect.services.config_validator import validate_and_fix_nginx_config
from acl_architect.utils.parsers.acl_models import ParseResult
from acl_architect.utils.parsers.nginx_parser import parse_nginx_config

logger = logging.getLogger(__name__)

router = APIRouter()

PATH_DESCRIPTION = "Configuration file; defaults to NGINX_CONF_PATH"


def _apply_edit(service: ConfigService, path: Optional[str], edit: Callable[[AclService], object]) -> AclEditResponse:
    try:
        with service.lock:
            acls = AclService(service.load_acls(path).config)
            edit(acls)
            result = service.save_acls(acls.config, path)
    except DOMAIN_ERRORS as e:
        raise http_error(e)
    return AclEditResponse(config=acls.config, result=result)


@router.get("", response_model=ParseResult)
def get_acls(
    path: Optional[str] = Query(default=None, description=PATH_DESCRIPTION),
    service: ConfigService = Depends(get_config_service),
):
    """Parse the configuration file into the ACL model."""
    try:
        return service.load_acls(path)
    except DOMAIN_ERRORS as e:
        raise http_error(e)


@router.put("", response_model=SaveResult)
def save_acls(
    config: NginxConfig,
    path: Optional[str] = Query(default=None, description=PATH_DESCRIPTION),
    client: APIClient = Depends(get_current_api_client),
    service: ConfigService = Depends(get_config_service),
):
    """Replace the ACL region of the configuration file with the given model."""
    try:
        result = service.save_acls(config, path)
    except DOMAIN_ERRORS as e:
        raise http_error(e)
    logger.info(f"ACL model saved to {result.path} by {client.source} client")
    return result


@router.post("/parse", response_model=ParseResult)
async def parse_acls(request: Request, service: ConfigService = Depends(get_config_service)):
    """Parse posted configuration text without touching any file."""
    text = validate_and_fix_nginx_config(await read_text_body(request))
    return parse_nginx_config(text, anchored=service.settings.URL_REGEX_ANCHORED)


@router.post("/generate", response_class=PlainTextResponse)
def generate_acls(
    config: NginxConfig,
    base: bool = Query(default=False, description="Splice into the current file instead of the built-in template"),
    path: Optional[str] = Query(default=None, description=PATH_DESCRIPTION),
    service: ConfigService = Depends(get_config_service),
):
    """Render configuration text for a model without saving it."""
    try:
        return PlainTextResponse(service.generate_config(config, path, use_base=base))
    except DOMAIN_ERRORS as e:
        raise http_error(e)


@router.get("/groups", response_model=AvailableGroupsResponse)
def list_available_groups(
    path: Optional[str] = Query(default=None, description=PATH_DESCRIPTION),
    service: ConfigService = Depends(get_config_service),
):
    """Flag variables that a combined ACL can use as sources."""
    try:
        config = service.load_acls(path).config
    except DOMAIN_ERRORS as e:
        raise http_error(e)
    return AvailableGroupsResponse(groups=[AvailableGroup(**g) for g in config.available_groups()])


# IP ACL groups

@router.post("/ip-groups", response_model=AclEditResponse, status_code=status.HTTP_201_CREATED)
def create_ip_group(
    group: GroupCreate,
    path: Optional[str] = Query(default=None, description=PATH_DESCRIPTION),
    _client: APIClient = Depends(get_current_api_client),
    service: ConfigService = Depends(get_config_service),
):
    return _apply_edit(service, path, lambda acls: acls.add_ip_group(group.name, group.description))


@router.delete("/ip-groups/{group}", response_model=AclEditResponse)
def delete_ip_group(
    group: str,
    path: Optional[str] = Query(default=None, description=PATH_DESCRIPTION),
    _client: APIClient = Depends(get_current_api_client),
    service: ConfigService = Depends(get_config_service),
):
    return _apply_edit(service, path, lambda acls: acls.remove_ip_group(group))


@router.post("/ip-groups/{group}/entries", response_model=AclEditResponse, status_code=status.HTTP_201_CREATED)
def add_ip_entry(
    group: str,
    entry: IpAclEntry,
    path: Optional[str] = Query(default=None, description=PATH_DESCRIPTION),
    _client: APIClient = Depends(get_current_api_client),
    service: ConfigService = Depends(get_config_service),
):
    return _apply_edit(service, path, lambda acls: acls.add_ip_entry(group, entry))


@router.put("/ip-groups/{group}/entries", response_model=AclEditResponse)
def update_ip_entry(
    group: str,
    update: IpEntryUpdate,
    path: Optional[str] = Query(default=None, description=PATH_DESCRIPTION),
    _client: APIClient = Depends(get_current_api_client),
    service: ConfigService = Depends(get_config_service),
):
    return _apply_edit(service, path, lambda acls: acls.update_ip_entry(group, update.key, update.entry))


@router.delete("/ip-groups/{group}/entries", response_model=AclEditResponse)
def delete_ip_entry(
    group: str,
    key: str = Query(..., description="CIDR of the entry to remove"),
    path: Optional[str] = Query(default=None, description=PATH_DESCRIPTION),
    _client: APIClient = Depends(get_current_api_client),
    service: ConfigService = Depends(get_config_service),
):
    return _apply_edit(service, path, lambda acls: acls.remove_ip_entry(group, key))


# URL ACL groups

@router.post("/url-groups", response_model=AclEditResponse, status_code=status.HTTP_201_CREATED)
def create_url_group(
    group: GroupCreate,
    path: Optional[str] = Query(default=None, description=PATH_DESCRIPTION),
    _client: APIClient = Depends(get_current_api_client),
    service: ConfigService = Depends(get_config_service),
):
    return _apply_edit(service, path, lambda acls: acls.add_url_group(group.name, group.description))


@router.delete("/url-groups/{group}", response_model=AclEditResponse)
def delete_url_group(
    group: str,
    path: Optional[str] = Query(default=None, description=PATH_DESCRIPTION),
    _client: APIClient = Depends(get_current_api_client),
    service: ConfigService = Depends(get_config_service),
):
    return _apply_edit(service, path, lambda acls: acls.remove_url_group(group))


@router.post("/url-groups/{group}/entries", response_model=AclEditResponse, status_code=status.HTTP_201_CREATED)
def add_url_entry(
    group: str,
    entry: UrlAclEntry,
    path: Optional[str] = Query(default=None, description=PATH_DESCRIPTION),
    _client: APIClient = Depends(get_current_api_client),
    service: ConfigService = Depends(get_config_service),
):
    return _apply_edit(service, path, lambda acls: acls.add_url_entry(group, entry))


@router.put("/url-groups/{group}/entries", response_model=AclEditResponse)
def update_url_entry(
    group: str,
    update: UrlEntryUpdate,
    path: Optional[str] = Query(default=None, description=PATH_DESCRIPTION),
    _client: APIClient = Depends(get_current_api_client),
    service: ConfigService = Depends(get_config_service),
):
    return _apply_edit(service, path, lambda acls: acls.update_url_entry(group, update.key, update.entry))


@router.delete("/url-groups/{group}/entries", response_model=AclEditResponse)
def delete_url_entry(
    group: str,
    key: str = Query(..., description="Pattern of the entry to remove"),
    path: Optional[str] = Query(default=None, description=PATH_DESCRIPTION),
    _client: APIClient = Depends(get_current_api_client),
    service: ConfigService = Depends(get_config_service),
):
    return _apply_edit(service, path, lambda acls: acls.remove_url_entry(group, key))


# Combined ACLs

@router.post("/combined", response_model=AclEditResponse, status_code=status.HTTP_201_CREATED)
def create_combined_acl(
    acl: CombinedAcl,
    path: Optional[str] = Query(default=None, description=PATH_DESCRIPTION),
    _client: APIClient = Depends(get_current_api_client),
    service: ConfigService = Depends(get_config_service),
):
    return _apply_edit(service, path, lambda acls: acls.add_combined_acl(acl))


@router.delete("/combined/{name}", response_model=AclEditResponse)
def delete_combined_acl(
    name: str,
    path: Optional[str] = Query(default=None, description=PATH_DESCRIPTION),
    _client: APIClient = Depends(get_current_api_client),
    service: ConfigService = Depends(get_config_service),
):
    return _apply_edit(service, path, lambda acls: acls.remove_combined_acl(name))


@router.post("/combined/{name}/rules", response_model=AclEditResponse, status_code=status.HTTP_201_CREATED)
def add_combined_rule(
    name: str,
    rule: CombinedAclRule,
    path: Optional[str] = Query(default=None, description=PATH_DESCRIPTION),
    _client: APIClient = Depends(get_current_api_client),
    service: ConfigService = Depends(get_config_service),
):
    return _apply_edit(service, path, lambda acls: acls.add_combined_rule(name, rule))


@router.put("/combined/{name}/rules", response_model=AclEditResponse)
def update_combined_rule(
    name: str,
    update: CombinedRuleUpdate,
    path: Optional[str] = Query(default=None, description=PATH_DESCRIPTION),
    _client: APIClient = Depends(get_current_api_client),
    service: ConfigService = Depends(get_config_service),
):
    return _apply_edit(service, path, lambda acls: acls.update_combined_rule(name, update.key, update.rule))


@router.delete("/combined/{name}/rules", response_model=AclEditResponse)
def delete_combined_rule(
    name: str,
    key: str = Query(..., description="Pattern of the rule to remove"),
    path: Optional[str] = Query(default=None, description=PATH_DESCRIPTION),
    _client: APIClient = Depends(get_current_api_client),
    service: ConfigService = Depends(get_config_service),
):
    return _apply_edit(service, path, lambda acls: acls.remove_combined_rule(name, key))
