"""
Pydantic models describing the outcome of a parse.
"""
from typing import List, Optional

from pydantic import Field, computed_field

from acl_architect.models.nginx import AclBaseModel, NginxConfig


class SkippedBlock(AclBaseModel):
    """A geo/map block that was found but not represented in the model."""
    kind: str  # "geo" or "map"
    name: Optional[str] = None
    reason: str
    line: int


class ParseResult(AclBaseModel):
    """Parsed ACL model plus the input that was deliberately ignored."""
    config: NginxConfig = Field(default_factory=NginxConfig)
    skipped_blocks: List[SkippedBlock] = Field(default_factory=list)
    skipped_entries: int = 0

    @computed_field
    @property
    def skipped_count(self) -> int:
        return len(self.skipped_blocks)
