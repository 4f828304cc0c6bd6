"""
Pydantic schemas for storage backend administration.
Credentials are accepted on input but only ever returned redacted.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from cloudnest.models.storage_backend import BackendKind, HealthState, StorageBackendConfig
from cloudnest.schemas.credentials import parse_credentials


# ========================================
# Request Schemas
# ========================================

class BackendSettings(BaseModel):
    """Operational settings shared by create and update."""
    upload_timeout_ms: Optional[int] = Field(default=None, ge=1000, le=600000)
    retry_attempts: Optional[int] = Field(default=None, ge=0, le=10)
    chunk_size: Optional[int] = Field(default=None, ge=1024 * 1024, le=100 * 1024 * 1024)
    max_file_size: Optional[int] = Field(default=None, gt=0)
    enable_compression: Optional[bool] = None
    enable_encryption: Optional[bool] = None
    enable_versioning: Optional[bool] = None
    enable_deduplication: Optional[bool] = None
    auto_cleanup: Optional[bool] = None
    cleanup_days: Optional[int] = Field(default=None, ge=1, le=3650)


class StorageBackendCreate(BackendSettings):
    """Schema for registering a storage backend."""
    name: str = Field(..., min_length=1, max_length=100)
    kind: BackendKind
    credentials: Dict[str, Any] = Field(..., description="Kind-specific credential bundle")
    capabilities: Optional[Dict[str, bool]] = None
    is_default: bool = False


class StorageBackendUpdate(BackendSettings):
    """Schema for updating a storage backend."""
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    capabilities: Optional[Dict[str, bool]] = None


# ========================================
# Response Schemas
# ========================================

class StorageBackendResponse(BaseModel):
    """Storage backend as shown to administrators."""
    id: str
    name: str
    kind: BackendKind
    credentials: Dict[str, Any]
    capabilities: Dict[str, bool]
    upload_timeout_ms: int
    retry_attempts: int
    chunk_size: int
    max_file_size: Optional[int]
    enable_compression: bool
    enable_encryption: bool
    enable_versioning: bool
    enable_deduplication: bool
    auto_cleanup: bool
    cleanup_days: int
    is_active: bool
    is_default: bool
    health_state: HealthState
    consecutive_successes: int
    consecutive_failures: int
    last_health_check: Optional[datetime]
    last_latency_ms: Optional[float]
    last_error: Optional[str]
    total_files: int
    total_bytes: int
    error_count: int
    last_used_at: Optional[datetime]
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True

    @classmethod
    def from_model(cls, config: StorageBackendConfig) -> "StorageBackendResponse":
        data = {
            column.name: getattr(config, column.name)
            for column in StorageBackendConfig.__table__.columns
        }
        try:
            data["credentials"] = parse_credentials(config.kind, config.credentials).redacted()
        except ValueError:
            data["credentials"] = {"kind": BackendKind(config.kind).value, "invalid": True}
        return cls.model_validate(data)


class ProbeResultResponse(BaseModel):
    backend_id: str
    ok: bool
    latency_ms: float
    error: Optional[str] = None
    timed_out: bool = False
    checked_at: datetime


class BulkHealthCheckResponse(BaseModel):
    total: int
    healthy: int
    results: List[ProbeResultResponse]


class BackendStatsResponse(BaseModel):
    total_backends: int
    active_backends: int
    healthy_backends: int
    total_files: int
    total_bytes: int
    total_errors: int
    default_backend_id: Optional[str]
    by_kind: Dict[str, Dict[str, int]]
