"""
SQLAlchemy models for the CloudNest storage engine.
"""
from cloudnest.models.base import Base
from cloudnest.models.storage_backend import StorageBackendConfig, BackendKind, HealthState
from cloudnest.models.file import FileRecord, FileVersion
from cloudnest.models.folder import FolderRecord

__all__ = [
    "Base",
    "StorageBackendConfig",
    "BackendKind",
    "HealthState",
    "FileRecord",
    "FileVersion",
    "FolderRecord",
]
