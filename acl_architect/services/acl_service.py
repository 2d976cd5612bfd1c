"""
Service for editing the ACL model.

Every edit is validated here, so an invalid entry never reaches the
in-memory NginxConfig. Entries have no identity beyond their key field
(cidr for IP entries, pattern for URL entries and combined rules).
"""
import logging
from typing import Any, Dict, List, Type, TypeVar, Union

from pydantic import BaseModel, ValidationError

from acl_architect.models.nginx import (
    CombinedAcl,
    CombinedAclRule,
    IpAclEntry,
    IpAclGroup,
    NginxConfig,
    UrlAclEntry,
    UrlAclGroup,
)

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)


class AclValidationError(ValueError):
    """User input rejected at the model boundary."""

    def __init__(self, field: str, message: str):
        super().__init__(message)
        self.field = field
        self.message = message


class AclNotFoundError(LookupError):
    """Referenced group, ACL, entry or rule does not exist."""


def build_model(model_cls: Type[ModelT], data: Union[ModelT, Dict[str, Any]]) -> ModelT:
    """
    Validate input into a model, converting pydantic errors to AclValidationError.

    The error names the first failing field and carries its message.
    """
    if isinstance(data, model_cls):
        return data
    try:
        return model_cls.model_validate(data)
    except ValidationError as e:
        error = e.errors()[0]
        field = ".".join(str(part) for part in error["loc"]) or model_cls.__name__
        message = error["msg"]
        if message.startswith("Value error, "):
            message = message[len("Value error, "):]
        raise AclValidationError(field, f"{field}: {message}") from e


class AclService:
    """Edits applied to one NginxConfig."""

    def __init__(self, config: NginxConfig):
        """
        Args:
            config: Model to edit in place
        """
        self.config = config

    # Lookups

    def _ip_group(self, name: str) -> IpAclGroup:
        group = self.config.get_ip_group(name)
        if group is None:
            raise AclNotFoundError(f"IP ACL group not found: {name}")
        return group

    def _url_group(self, name: str) -> UrlAclGroup:
        group = self.config.get_url_group(name)
        if group is None:
            raise AclNotFoundError(f"URL ACL group not found: {name}")
        return group

    def _combined(self, name: str) -> CombinedAcl:
        acl = self.config.get_combined_acl(name)
        if acl is None:
            raise AclNotFoundError(f"Combined ACL not found: {name}")
        return acl

    def _check_new_name(self, name: str) -> None:
        if name in self.config.variable_names():
            raise AclValidationError("name", f"name: an ACL named '{name}' already exists")

    def _check_unreferenced(self, name: str) -> None:
        users = [acl.name for acl in self.config.combined_acls if name in acl.source_groups]
        if users:
            raise AclValidationError(
                "name", f"name: '{name}' is used by combined ACL(s) {', '.join(users)}; remove those references first"
            )

    @staticmethod
    def _index_by(items: List[Any], field: str, key: str) -> int:
        for i, item in enumerate(items):
            if getattr(item, field) == key:
                return i
        return -1

    def _replace(self, items: List[Any], field: str, key: str, new: Any, label: str) -> None:
        index = self._index_by(items, field, key)
        if index < 0:
            raise AclNotFoundError(f"{label} not found: {key}")
        new_key = getattr(new, field)
        if new_key != key and self._index_by(items, field, new_key) >= 0:
            raise AclValidationError(field, f"{field}: '{new_key}' already exists")
        items[index] = new

    def _remove(self, items: List[Any], field: str, key: str, label: str) -> None:
        index = self._index_by(items, field, key)
        if index < 0:
            raise AclNotFoundError(f"{label} not found: {key}")
        del items[index]

    # IP ACL groups

    def add_ip_group(self, name: str, description: str = "") -> IpAclGroup:
        group = build_model(IpAclGroup, {"name": name, "description": description})
        self._check_new_name(group.name)
        self.config.ip_acl_groups.append(group)
        logger.info(f"Added IP ACL group {group.name}")
        return group

    def remove_ip_group(self, name: str) -> None:
        group = self._ip_group(name)
        self._check_unreferenced(name)
        self.config.ip_acl_groups.remove(group)
        logger.info(f"Removed IP ACL group {name}")

    def add_ip_entry(self, group_name: str, entry: Union[IpAclEntry, Dict[str, Any]]) -> IpAclEntry:
        group = self._ip_group(group_name)
        entry = build_model(IpAclEntry, entry)
        if self._index_by(group.entries, "cidr", entry.cidr) >= 0:
            raise AclValidationError("cidr", f"cidr: '{entry.cidr}' is already in {group_name}")
        group.entries.append(entry)
        return entry

    def update_ip_entry(self, group_name: str, cidr: str, entry: Union[IpAclEntry, Dict[str, Any]]) -> IpAclEntry:
        group = self._ip_group(group_name)
        entry = build_model(IpAclEntry, entry)
        self._replace(group.entries, "cidr", cidr, entry, "IP ACL entry")
        return entry

    def remove_ip_entry(self, group_name: str, cidr: str) -> None:
        self._remove(self._ip_group(group_name).entries, "cidr", cidr, "IP ACL entry")

    # URL ACL groups

    def add_url_group(self, name: str, description: str = "") -> UrlAclGroup:
        group = build_model(UrlAclGroup, {"name": name, "description": description})
        self._check_new_name(group.name)
        self.config.url_acl_groups.append(group)
        logger.info(f"Added URL ACL group {group.name}")
        return group

    def remove_url_group(self, name: str) -> None:
        group = self._url_group(name)
        self._check_unreferenced(name)
        self.config.url_acl_groups.remove(group)
        logger.info(f"Removed URL ACL group {name}")

    def add_url_entry(self, group_name: str, entry: Union[UrlAclEntry, Dict[str, Any]]) -> UrlAclEntry:
        group = self._url_group(group_name)
        entry = build_model(UrlAclEntry, entry)
        if self._index_by(group.entries, "pattern", entry.pattern) >= 0:
            raise AclValidationError("pattern", f"pattern: '{entry.pattern}' is already in {group_name}")
        group.entries.append(entry)
        return entry

    def update_url_entry(self, group_name: str, pattern: str, entry: Union[UrlAclEntry, Dict[str, Any]]) -> UrlAclEntry:
        group = self._url_group(group_name)
        entry = build_model(UrlAclEntry, entry)
        self._replace(group.entries, "pattern", pattern, entry, "URL ACL entry")
        return entry

    def remove_url_entry(self, group_name: str, pattern: str) -> None:
        self._remove(self._url_group(group_name).entries, "pattern", pattern, "URL ACL entry")

    # Combined ACLs

    def _check_rule_width(self, acl: CombinedAcl, rule: CombinedAclRule) -> None:
        if rule.is_regex:
            return
        width = len(acl.source_groups)
        if len(rule.pattern) != width:
            raise AclValidationError(
                "pattern",
                f"pattern: '{rule.pattern}' has {len(rule.pattern)} positions but {acl.name} "
                f"combines {width} source groups",
            )

    def add_combined_acl(self, acl: Union[CombinedAcl, Dict[str, Any]]) -> CombinedAcl:
        acl = build_model(CombinedAcl, acl)
        self._check_new_name(acl.name)
        known = self.config.variable_names()
        for source in acl.source_groups:
            if source == acl.name:
                raise AclValidationError("sourceGroups", f"sourceGroups: {acl.name} cannot reference itself")
            if source not in known:
                raise AclValidationError(
                    "sourceGroups",
                    f"sourceGroups: unknown group '{source}'. Expected one of: {', '.join(known) or 'none defined'}",
                )
        for rule in acl.rules:
            self._check_rule_width(acl, rule)
        self.config.combined_acls.append(acl)
        logger.info(f"Added combined ACL {acl.name} over {acl.source_groups}")
        return acl

    def remove_combined_acl(self, name: str) -> None:
        acl = self._combined(name)
        self._check_unreferenced(name)
        self.config.combined_acls.remove(acl)
        logger.info(f"Removed combined ACL {name}")

    def add_combined_rule(self, acl_name: str, rule: Union[CombinedAclRule, Dict[str, Any]]) -> CombinedAclRule:
        acl = self._combined(acl_name)
        rule = build_model(CombinedAclRule, rule)
        self._check_rule_width(acl, rule)
        if self._index_by(acl.rules, "pattern", rule.pattern) >= 0:
            raise AclValidationError("pattern", f"pattern: '{rule.pattern}' is already in {acl_name}")
        acl.rules.append(rule)
        return rule

    def update_combined_rule(
        self, acl_name: str, pattern: str, rule: Union[CombinedAclRule, Dict[str, Any]]
    ) -> CombinedAclRule:
        acl = self._combined(acl_name)
        rule = build_model(CombinedAclRule, rule)
        self._check_rule_width(acl, rule)
        self._replace(acl.rules, "pattern", pattern, rule, "Combined ACL rule")
        return rule

    def remove_combined_rule(self, acl_name: str, pattern: str) -> None:
        self._remove(self._combined(acl_name).rules, "pattern", pattern, "Combined ACL rule")
