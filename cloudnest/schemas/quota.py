"""
Pydantic schemas for quota and cleanup responses.
"""
from typing import List

from pydantic import BaseModel


class QuotaResponse(BaseModel):
    owner_id: str
    used_bytes: int
    limit_bytes: int
    available_bytes: int
    percentage: float
    is_exceeded: bool
    is_near_limit: bool


class CapacityCheckResponse(BaseModel):
    owner_id: str
    requested_bytes: int
    available_bytes: int
    file_count: int
    allowed: bool
    exceeds_by: int


class CleanupSuggestionResponse(BaseModel):
    file_id: str
    name: str
    size: int
    size_mb: float
    reason: str
    score: float


class CleanupResponse(BaseModel):
    owner_id: str
    target_bytes: int
    suggested_bytes: int
    suggestions: List[CleanupSuggestionResponse]
