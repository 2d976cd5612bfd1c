"""
nginx ACL configuration parser.

IP ACL groups come from `geo` blocks, URL ACL groups from single-source
`map` blocks and combined ACLs from `map` blocks keyed on two or more
variables. Anything else is skipped and reported in the ParseResult.
"""
import re
import logging
from typing import Dict, List, Optional, Tuple

from pydantic import ValidationError

from acl_architect.models.nginx import (
    ACL_PREFIX,
    RESERVED_VARIABLES,
    CombinedAcl,
    CombinedAclRule,
    IpAclEntry,
    IpAclGroup,
    UrlAclEntry,
    UrlAclGroup,
)
from acl_architect.utils.parsers.acl_models import ParseResult
from acl_architect.utils.parsers.base_parser import BaseParser
from acl_architect.utils.parsers.block_scanner import Block, BlockScanner

logger = logging.getLogger(__name__)

# <key> <value>; [# comment]
ENTRY_PATTERN = re.compile(
    r"""^\s*(?P<key>"(?:[^"\\]|\\.)*"|'(?:[^'\\]|\\.)*'|[^\s"';#]+)"""
    r"""\s+(?P<value>"[^"]*"|'[^']*'|[^\s;#]+)\s*;\s*(?:#\s?(?P<comment>.*))?$"""
)
VARIABLE_REF = re.compile(r"\$\{?([A-Za-z_][A-Za-z0-9_]*)\}?")
TARGET_VARIABLE = re.compile(r"\$([A-Za-z_][A-Za-z0-9_]*)")

# Directives that may appear inside geo/map bodies but are not entries
BODY_DIRECTIVES = {"default", "hostnames", "volatile", "ranges", "proxy", "proxy_recursive", "include", "delete"}


def _unquote(token: str) -> str:
    if len(token) >= 2 and token[0] == token[-1] and token[0] in ('"', "'"):
        return token[1:-1]
    return token


def strip_anchors(pattern: str) -> str:
    """Remove one leading '^' and one unescaped trailing '$'."""
    if pattern.startswith("^"):
        pattern = pattern[1:]
    if pattern.endswith("$") and not pattern.endswith("\\$"):
        pattern = pattern[:-1]
    return pattern


class NginxAclParser(BaseParser):
    """Parser for the ACL section of an nginx configuration."""

    def __init__(self, config_content: str, anchored: bool = False):
        """
        Args:
            config_content: The configuration file content as string
            anchored: Regex URL patterns are written as ~^...$ and the anchors are stripped
        """
        super().__init__(config_content)
        self.anchored = anchored
        self.scanner = BlockScanner(config_content)

    def reset(self) -> None:
        super().reset()
        self._classified: Optional[Dict[str, List[Tuple[Block, str, List[str]]]]] = None

    def _entries(self, block: Block):
        """Yield (key, value, comment, raw_line) for each entry line of a block body."""
        for raw in block.body.splitlines():
            line = raw.strip()
            if not line or line.startswith("#"):
                continue
            match = ENTRY_PATTERN.match(line)
            if not match:
                first = line.split(None, 1)[0].rstrip(";")
                if first not in BODY_DIRECTIVES:
                    self.skip_entry(line, "unrecognized line")
                continue
            key = match.group("key")
            if key in BODY_DIRECTIVES:
                continue
            value = _unquote(match.group("value"))
            if value not in ("0", "1"):
                self.skip_entry(line, f"value '{value}' is not a flag")
                continue
            yield key, value, (match.group("comment") or "").strip(), line

    def parse_ip_acls(self) -> List[IpAclGroup]:
        """Parse geo blocks into IP ACL groups."""
        groups = []
        for block in self.scanner.iter_blocks(["geo"]):
            tokens = block.header.split()
            target = TARGET_VARIABLE.fullmatch(tokens[-1]) if 0 < len(tokens) <= 2 else None
            name = target.group(1) if target else None
            if block.error:
                self.skip_block("geo", name, block.error, block.line)
                continue
            if not target:
                self.skip_block("geo", None, "unrecognized header", block.line)
                continue
            if not name.startswith(ACL_PREFIX):
                self.skip_block("geo", name, "not an ACL variable", block.line)
                continue
            if not self.claim_name("geo", name, block.line):
                continue

            entries = []
            for key, value, comment, line in self._entries(block):
                try:
                    entries.append(IpAclEntry(cidr=key, value=value, description=comment))
                except ValidationError as e:
                    self.skip_entry(line, e.errors()[0]["msg"])

            groups.append(IpAclGroup(name=name, description=block.header_comment or "", entries=entries))
        return groups

    def _classify_maps(self) -> Dict[str, List[Tuple[Block, str, List[str]]]]:
        """Sort map blocks into URL groups and combined ACLs, recording skips once."""
        if self._classified is not None:
            return self._classified

        classified = {"url": [], "combined": []}
        for block in self.scanner.iter_blocks(["map"]):
            tokens = block.header.split()
            target = TARGET_VARIABLE.fullmatch(tokens[-1]) if len(tokens) >= 2 else None
            name = target.group(1) if target else None
            if block.error:
                self.skip_block("map", name, block.error, block.line)
                continue
            if not target:
                self.skip_block("map", None, "unrecognized header", block.line)
                continue
            if name in RESERVED_VARIABLES:
                self.skip_block("map", name, "derived", block.line)
                continue

            source = block.header[: block.header.rfind(tokens[-1])]
            sources = VARIABLE_REF.findall(source)
            if not sources:
                self.skip_block("map", name, "no source variables", block.line)
                continue
            if len(sources) > 1:
                classified["combined"].append((block, name, sources))
            elif name.startswith(ACL_PREFIX):
                classified["url"].append((block, name, sources))
            else:
                self.skip_block("map", name, "not an ACL variable", block.line)

        self._classified = classified
        return classified

    def _url_entry(self, key: str, value: str, comment: str) -> UrlAclEntry:
        pattern = _unquote(key)
        is_regex = pattern.startswith("~")
        case_insensitive = pattern.startswith("~*")
        if is_regex:
            pattern = pattern[2:] if case_insensitive else pattern[1:]
            if self.anchored:
                pattern = strip_anchors(pattern)
        return UrlAclEntry(
            pattern=pattern,
            value=value,
            description=comment,
            is_regex=is_regex,
            case_insensitive=case_insensitive,
        )

    def parse_url_acls(self) -> List[UrlAclGroup]:
        """Parse single-source map blocks into URL ACL groups."""
        groups = []
        for block, name, _sources in self._classify_maps()["url"]:
            if not self.claim_name("map", name, block.line):
                continue

            entries = []
            for key, value, comment, line in self._entries(block):
                try:
                    entries.append(self._url_entry(key, value, comment))
                except ValidationError as e:
                    self.skip_entry(line, e.errors()[0]["msg"])

            groups.append(UrlAclGroup(name=name, description=block.header_comment or "", entries=entries))
        return groups

    def parse_combined_acls(self) -> List[CombinedAcl]:
        """Parse multi-source map blocks into combined ACLs."""
        acls = []
        for block, name, sources in self._classify_maps()["combined"]:
            if not self.claim_name("map", name, block.line):
                continue

            rules = []
            for key, value, comment, line in self._entries(block):
                try:
                    rules.append(CombinedAclRule(pattern=_unquote(key), value=value, description=comment))
                except ValidationError as e:
                    self.skip_entry(line, e.errors()[0]["msg"])

            acls.append(
                CombinedAcl(
                    name=name,
                    description=block.header_comment or "",
                    source_groups=sources,
                    rules=rules,
                )
            )
        return acls


def parse_nginx_config(config_content: str, anchored: bool = False) -> ParseResult:
    """Parse configuration text into a fresh ParseResult."""
    return NginxAclParser(config_content, anchored=anchored).parse_all()
