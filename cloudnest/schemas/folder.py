"""
Pydantic schemas for folder requests and responses.
"""
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field


class FolderCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    parent_id: Optional[str] = None
    description: Optional[str] = Field(default=None, max_length=500)
    color: Optional[str] = Field(default=None, pattern=r"^#[0-9A-Fa-f]{6}$")


class FolderRename(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)


class FolderMove(BaseModel):
    parent_id: Optional[str] = Field(default=None, description="New parent; null moves to the root")


class FolderResponse(BaseModel):
    id: str
    name: str
    description: Optional[str]
    owner_id: str
    parent_id: Optional[str]
    path: str
    depth: int
    color: str
    is_deleted: bool
    deleted_at: Optional[datetime]
    deleted_by: Optional[str]
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class FolderListResponse(BaseModel):
    folders: List[FolderResponse]
    total: int


class FolderCascadeResponse(BaseModel):
    folder_id: str
    path: str
    folders_deleted: int
    files_deleted: int
