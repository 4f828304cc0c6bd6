"""
Pydantic schemas for file requests and responses.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator


# ========================================
# Request Schemas
# ========================================

class FileAdmitRequest(BaseModel):
    """Ask whether an upload may proceed before transferring bytes."""
    name: str = Field(..., min_length=1, max_length=255)
    mime_type: str = Field(default="application/octet-stream", max_length=255)
    size: int = Field(..., gt=0)
    content_hash: str = Field(..., min_length=8, max_length=128)
    folder_id: Optional[str] = None
    backend_id: Optional[str] = Field(default=None, description="Explicit backend instead of the default")


class FileCommitRequest(FileAdmitRequest):
    """Record a completed transfer as a new file."""
    storage_key: str = Field(..., min_length=1, max_length=1024)
    bytes_transferred: int = Field(..., ge=0)
    reused_key: bool = Field(default=False, description="Storage key was reused from a dedup candidate")
    original_name: Optional[str] = Field(default=None, max_length=255)
    description: Optional[str] = Field(default=None, max_length=500)
    is_public: bool = False
    tags: List[str] = Field(default_factory=list)

    @field_validator("tags")
    @classmethod
    def normalize_tags(cls, v):
        """Lowercase, strip and de-duplicate tags while preserving order."""
        seen = set()
        result = []
        for tag in v:
            tag = tag.strip().lower()
            if tag and tag not in seen:
                seen.add(tag)
                result.append(tag)
        return result


class VersionAdmitRequest(BaseModel):
    size: int = Field(..., gt=0)
    content_hash: Optional[str] = Field(default=None, max_length=128)


class VersionCommitRequest(VersionAdmitRequest):
    storage_key: str = Field(..., min_length=1, max_length=1024)
    bytes_transferred: int = Field(..., ge=0)
    reused_key: bool = False


class BatchCheckRequest(BaseModel):
    sizes: List[int] = Field(..., min_length=1)

    @field_validator("sizes")
    @classmethod
    def positive_sizes(cls, v):
        if any(s <= 0 for s in v):
            raise ValueError("All sizes must be greater than zero")
        return v


# ========================================
# Response Schemas
# ========================================

class AdmissionResponse(BaseModel):
    status: str
    owner_id: str
    requested_bytes: int
    backend_id: Optional[str] = None
    dedup_candidate_key: Optional[str] = None
    dedup_file_id: Optional[str] = None
    available_bytes: int
    shortfall_bytes: int
    unhealthy_backends: List[Dict[str, Any]] = Field(default_factory=list)


class FileVersionResponse(BaseModel):
    version: int
    size: int
    storage_key: str
    uploaded_by: str
    uploaded_at: datetime

    class Config:
        from_attributes = True


class FileResponse(BaseModel):
    id: str
    name: str
    original_name: str
    description: Optional[str]
    mime_type: str
    extension: str
    category: str
    size: int
    storage_key: str
    current_version: int
    backend_id: str
    content_hash: str
    owner_id: str
    folder_id: Optional[str]
    is_public: bool
    tags: List[str]
    views: int
    downloads: int
    last_accessed_at: Optional[datetime]
    is_deleted: bool
    deleted_at: Optional[datetime]
    deleted_by: Optional[str]
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class FileDetailResponse(FileResponse):
    versions: List[FileVersionResponse]


class FileListResponse(BaseModel):
    files: List[FileResponse]
    total: int
