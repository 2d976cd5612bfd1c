"""Request/response schemas for the ACL editing endpoints."""
from acl_architect.models.nginx import (
    AclBaseModel,
    CombinedAclRule,
    IpAclEntry,
    NginxConfig,
    UrlAclEntry,
)
from acl_architect.schemas.config import SaveResult


class IpEntryUpdate(AclBaseModel):
    """Replace the IP entry whose cidr is `key`."""
    key: str
    entry: IpAclEntry


class UrlEntryUpdate(AclBaseModel):
    """Replace the URL entry whose pattern is `key`."""
    key: str
    entry: UrlAclEntry


class CombinedRuleUpdate(AclBaseModel):
    """Replace the combined rule whose pattern is `key`."""
    key: str
    rule: CombinedAclRule


class AclEditResponse(AclBaseModel):
    """Outcome of an entry edit: the saved model and the write result."""
    config: NginxConfig
    result: SaveResult


class GroupCreate(AclBaseModel):
    """New IP or URL group."""
    name: str
    description: str = ""
