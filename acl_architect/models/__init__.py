"""ACL configuration models."""
from acl_architect.models.nginx import (
    CombinedAcl,
    CombinedAclRule,
    IpAclEntry,
    IpAclGroup,
    NginxConfig,
    UrlAclEntry,
    UrlAclGroup,
)

__all__ = [
    "IpAclEntry",
    "IpAclGroup",
    "UrlAclEntry",
    "UrlAclGroup",
    "CombinedAclRule",
    "CombinedAcl",
    "NginxConfig",
]
