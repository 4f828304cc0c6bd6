"""
Pydantic schemas for request/response validation.
"""
from cloudnest.schemas.credentials import (
    S3CompatibleCredentials,
    EmbeddedStoreCredentials,
    BackendCredentials,
    parse_credentials,
)
from cloudnest.schemas.storage_backend import (
    StorageBackendCreate,
    StorageBackendUpdate,
    StorageBackendResponse,
    ProbeResultResponse,
    BulkHealthCheckResponse,
    BackendStatsResponse,
)
from cloudnest.schemas.file import (
    FileAdmitRequest,
    FileCommitRequest,
    VersionAdmitRequest,
    VersionCommitRequest,
    BatchCheckRequest,
    AdmissionResponse,
    FileVersionResponse,
    FileResponse,
    FileDetailResponse,
    FileListResponse,
)
from cloudnest.schemas.folder import (
    FolderCreate,
    FolderRename,
    FolderMove,
    FolderResponse,
    FolderListResponse,
    FolderCascadeResponse,
)
from cloudnest.schemas.quota import (
    QuotaResponse,
    CapacityCheckResponse,
    CleanupSuggestionResponse,
    CleanupResponse,
)

__all__ = [
    # Credentials
    "S3CompatibleCredentials",
    "EmbeddedStoreCredentials",
    "BackendCredentials",
    "parse_credentials",
    # Storage backend schemas
    "StorageBackendCreate",
    "StorageBackendUpdate",
    "StorageBackendResponse",
    "ProbeResultResponse",
    "BulkHealthCheckResponse",
    "BackendStatsResponse",
    # File schemas
    "FileAdmitRequest",
    "FileCommitRequest",
    "VersionAdmitRequest",
    "VersionCommitRequest",
    "BatchCheckRequest",
    "AdmissionResponse",
    "FileVersionResponse",
    "FileResponse",
    "FileDetailResponse",
    "FileListResponse",
    # Folder schemas
    "FolderCreate",
    "FolderRename",
    "FolderMove",
    "FolderResponse",
    "FolderListResponse",
    "FolderCascadeResponse",
    # Quota schemas
    "QuotaResponse",
    "CapacityCheckResponse",
    "CleanupSuggestionResponse",
    "CleanupResponse",
]
