"""
Pydantic models for the editable ACL section of an nginx configuration.

Python attributes are snake_case; JSON uses the camelCase names the UI
works with (ipAclGroups, isRegex, sourceGroups, ...).
"""
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator, model_validator
from pydantic.alias_generators import to_camel

from acl_architect.utils.validators import (
    validate_cidr,
    validate_combined_pattern,
    validate_url_pattern,
    validate_variable_name,
)

# Flag value: "0" denies, "1" allows
FlagValue = Literal["0", "1"]

# IP and URL group variables carry this prefix so they can be told apart
# from unrelated geo/map blocks
ACL_PREFIX = "acl_"

# Variables the generator derives from the model; never user-defined
RESERVED_VARIABLES = frozenset({"deny_reason", "deny_log"})

# Labels for well-known variables that are defined without a description
GROUP_DESCRIPTIONS: Dict[str, str] = {
    "acl_internal_ips": "Internal Production Network",
    "acl_test_ips": "Test Environment IPs",
    "acl_microsoft_urls": "Microsoft Services",
    "acl_redhat_urls": "Red Hat Services",
    "acl_cdn_urls": "Content Delivery Networks",
    "ip_acl": "Combined IP Access Control",
    "url_acl": "Combined URL Access Control",
    "access_granted": "Final Access Decision",
}


def get_group_description(name: str) -> str:
    """Human-readable label for a well-known variable, else the name itself."""
    return GROUP_DESCRIPTIONS.get(name, name)


def _check_description(v: str) -> str:
    if "\n" in v or "\r" in v:
        raise ValueError("Description must be a single line")
    return v.strip()


def _check_quoted_pattern(v: str) -> None:
    # Patterns are emitted inside double quotes
    if '"' in v or "\n" in v or "\r" in v:
        raise ValueError("Pattern must not contain double quotes or line breaks")


def _check_variable_name(v: str, require_prefix: bool = False) -> str:
    if not validate_variable_name(v):
        raise ValueError(
            f"Invalid name '{v}': use letters, digits and underscores only, not starting with a digit"
        )
    if require_prefix and not v.startswith(ACL_PREFIX):
        raise ValueError(f"Invalid name '{v}': group names must start with '{ACL_PREFIX}'")
    return v


class AclBaseModel(BaseModel):
    """Common model configuration: camelCase JSON, snake_case attributes."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class NamedAclModel(AclBaseModel):
    """A flag variable definition; an empty description becomes its label."""

    @model_validator(mode="after")
    def fill_description(self) -> "NamedAclModel":
        if not self.description:
            self.description = get_group_description(self.name)
        return self


class IpAclEntry(AclBaseModel):
    """One `<cidr> <flag>;` line of a geo block."""
    cidr: str
    value: FlagValue = "1"
    description: str = ""

    @field_validator("cidr")
    @classmethod
    def check_cidr(cls, v: str) -> str:
        v = v.strip()
        if not validate_cidr(v):
            raise ValueError(
                f"Invalid IP address or CIDR format: '{v}'. "
                "Expected A.B.C.D or A.B.C.D/N with octets 0-255 and prefix 0-32"
            )
        return v

    @field_validator("description")
    @classmethod
    def check_description(cls, v: str) -> str:
        return _check_description(v)


class IpAclGroup(NamedAclModel):
    """A geo block mapping client addresses to a flag."""
    name: str
    description: str = ""
    entries: List[IpAclEntry] = Field(default_factory=list)

    @field_validator("name")
    @classmethod
    def check_name(cls, v: str) -> str:
        return _check_variable_name(v, require_prefix=True)

    @field_validator("description")
    @classmethod
    def check_description(cls, v: str) -> str:
        return _check_description(v)


class UrlAclEntry(AclBaseModel):
    """One host pattern line of a URL map block."""
    # Declared before pattern so the pattern validator can see them
    is_regex: bool = False
    case_insensitive: bool = False
    pattern: str
    value: FlagValue = "1"
    description: str = ""

    @field_validator("pattern")
    @classmethod
    def check_pattern(cls, v: str, info: ValidationInfo) -> str:
        _check_quoted_pattern(v)
        is_regex = info.data.get("is_regex", False)
        if not validate_url_pattern(v, is_regex):
            if is_regex:
                raise ValueError(f"Invalid regular expression: '{v}'")
            raise ValueError(
                f"Invalid hostname: '{v}'. Expected a dotted hostname such as "
                "'example.com' (wildcards are only allowed in regex mode)"
            )
        return v

    @field_validator("description")
    @classmethod
    def check_description(cls, v: str) -> str:
        return _check_description(v)

    @model_validator(mode="after")
    def literal_is_case_sensitive(self) -> "UrlAclEntry":
        # Literal host keys have no case flag in nginx; only ~* regexes do
        if not self.is_regex:
            self.case_insensitive = False
        return self


class UrlAclGroup(NamedAclModel):
    """A map block keyed on $host mapping host patterns to a flag."""
    name: str
    description: str = ""
    entries: List[UrlAclEntry] = Field(default_factory=list)

    @field_validator("name")
    @classmethod
    def check_name(cls, v: str) -> str:
        return _check_variable_name(v, require_prefix=True)

    @field_validator("description")
    @classmethod
    def check_description(cls, v: str) -> str:
        return _check_description(v)


class CombinedAclRule(AclBaseModel):
    """One positional mask (or ~* regex) line of a combined map block."""
    pattern: str
    value: FlagValue = "1"
    description: str = ""

    @field_validator("pattern")
    @classmethod
    def check_pattern(cls, v: str) -> str:
        _check_quoted_pattern(v)
        if not validate_combined_pattern(v):
            raise ValueError(
                f"Invalid combined pattern: '{v}'. Expected only '0', '1' and '.' characters "
                "(one per source group) or a '~*' prefixed regular expression"
            )
        return v

    @field_validator("description")
    @classmethod
    def check_description(cls, v: str) -> str:
        return _check_description(v)

    @property
    def is_regex(self) -> bool:
        return self.pattern.startswith("~*")


class CombinedAcl(NamedAclModel):
    """A map block keyed on the concatenation of two or more flag variables."""
    name: str
    description: str = ""
    source_groups: List[str] = Field(min_length=2)
    rules: List[CombinedAclRule] = Field(default_factory=list)

    @field_validator("name")
    @classmethod
    def check_name(cls, v: str) -> str:
        _check_variable_name(v)
        if v in RESERVED_VARIABLES:
            raise ValueError(f"Invalid name '{v}': reserved for generated variables")
        return v

    @field_validator("source_groups")
    @classmethod
    def check_source_groups(cls, v: List[str]) -> List[str]:
        for name in v:
            _check_variable_name(name)
        return v

    @field_validator("description")
    @classmethod
    def check_description(cls, v: str) -> str:
        return _check_description(v)


class NginxConfig(AclBaseModel):
    """Root of the ACL model: every group and combined ACL of one configuration."""
    ip_acl_groups: List[IpAclGroup] = Field(default_factory=list)
    url_acl_groups: List[UrlAclGroup] = Field(default_factory=list)
    combined_acls: List[CombinedAcl] = Field(default_factory=list)

    @model_validator(mode="after")
    def check_unique_names(self) -> "NginxConfig":
        seen = set()
        for name in self.variable_names():
            if name in seen:
                raise ValueError(f"Duplicate ACL name '{name}': names must be unique within a configuration")
            seen.add(name)
        return self

    def variable_names(self) -> List[str]:
        """Names of every flag variable defined by this configuration, in order."""
        return (
            [g.name for g in self.ip_acl_groups]
            + [g.name for g in self.url_acl_groups]
            + [a.name for a in self.combined_acls]
        )

    def available_groups(self) -> List[Dict[str, str]]:
        """Flag variables a combined ACL may reference, with their labels."""
        groups = []
        for item in [*self.ip_acl_groups, *self.url_acl_groups, *self.combined_acls]:
            groups.append({"name": item.name, "description": item.description})
        return groups

    def get_ip_group(self, name: str) -> Optional[IpAclGroup]:
        return next((g for g in self.ip_acl_groups if g.name == name), None)

    def get_url_group(self, name: str) -> Optional[UrlAclGroup]:
        return next((g for g in self.url_acl_groups if g.name == name), None)

    def get_combined_acl(self, name: str) -> Optional[CombinedAcl]:
        return next((a for a in self.combined_acls if a.name == name), None)
