"""Schemas for configuration file operations."""
from typing import List, Optional
from pydantic import BaseModel


class SaveResult(BaseModel):
    """Response schema for a configuration write."""
    success: bool
    message: str
    path: str
    backup_path: Optional[str] = None


class ConfigFileListResponse(BaseModel):
    """Response schema for the file listing endpoint."""
    files: List[str]
    default_path: str


class UploadResponse(BaseModel):
    """Response schema for an uploaded configuration file."""
    path: str
    filename: str
    size: int


class AvailableGroup(BaseModel):
    """A flag variable a combined ACL can use as a source."""
    name: str
    description: str


class AvailableGroupsResponse(BaseModel):
    """Response schema for the combined ACL source listing."""
    groups: List[AvailableGroup]
