"""
Base parser class for ACL configuration files.
"""
from abc import ABC, abstractmethod
from typing import List, Optional, Set
import logging

from acl_architect.models.nginx import CombinedAcl, IpAclGroup, NginxConfig, UrlAclGroup
from acl_architect.utils.parsers.acl_models import ParseResult, SkippedBlock

logger = logging.getLogger(__name__)


class BaseParser(ABC):
    """Base class for ACL configuration parsers."""

    def __init__(self, config_content: str):
        """
        Initialize parser with config content.

        Args:
            config_content: The configuration file content as string
        """
        self.config_content = config_content
        self.reset()

    def reset(self) -> None:
        """Forget skip bookkeeping from a previous run."""
        self.skipped_blocks: List[SkippedBlock] = []
        self.skipped_entries = 0
        self._seen_names: Set[str] = set()

    @abstractmethod
    def parse_ip_acls(self) -> List[IpAclGroup]:
        """Parse IP ACL groups from config."""
        pass

    @abstractmethod
    def parse_url_acls(self) -> List[UrlAclGroup]:
        """Parse URL ACL groups from config."""
        pass

    @abstractmethod
    def parse_combined_acls(self) -> List[CombinedAcl]:
        """Parse combined ACLs from config."""
        pass

    def skip_block(self, kind: str, name: Optional[str], reason: str, line: int) -> None:
        """Record a block that is left out of the model."""
        logger.debug(f"Skipping {kind} block '{name or '?'}' at line {line}: {reason}")
        self.skipped_blocks.append(SkippedBlock(kind=kind, name=name, reason=reason, line=line))

    def skip_entry(self, line_text: str, reason: str) -> None:
        """Record a body line that is left out of the model."""
        logger.debug(f"Skipping entry '{line_text.strip()}': {reason}")
        self.skipped_entries += 1

    def claim_name(self, kind: str, name: str, line: int) -> bool:
        """Reserve a variable name; later blocks defining it again are skipped."""
        if name in self._seen_names:
            self.skip_block(kind, name, "duplicate name", line)
            return False
        self._seen_names.add(name)
        return True

    def parse_all(self) -> ParseResult:
        """
        Parse all ACL elements.

        Returns:
            ParseResult with the model and the skipped input
        """
        self.reset()
        config = NginxConfig(
            ip_acl_groups=self.parse_ip_acls(),
            url_acl_groups=self.parse_url_acls(),
            combined_acls=self.parse_combined_acls(),
        )
        result = ParseResult(
            config=config,
            skipped_blocks=sorted(self.skipped_blocks, key=lambda b: b.line),
            skipped_entries=self.skipped_entries,
        )
        logger.info(
            f"Parsed ACL config: {len(config.ip_acl_groups)} IP groups, "
            f"{len(config.url_acl_groups)} URL groups, "
            f"{len(config.combined_acls)} combined ACLs, "
            f"{result.skipped_count} blocks and {result.skipped_entries} entries skipped"
        )
        return result
