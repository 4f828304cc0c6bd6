"""
Storage Admission & Hierarchy Module

This module provides the storage engine core:
- Backend registry with health tracking and default selection
- Health probing with bounded deadlines
- Per-owner quota accounting
- Upload admission decisions
- File catalog with version chains and hash lookups
- Folder tree with materialized paths and cascading soft-delete
- Cleanup suggestions and duplicate reports
"""

from .quota import QuotaLedger, QuotaState, CapacityCheck, QuotaWarningEvent
from .registry import StorageBackendRegistry, BackendSnapshot, next_health_state, DEFAULT_CAPABILITIES
from .health import HealthProbe, HealthMonitor, ProbeResult
from .catalog import FileCatalog, FileMeta, VersionData, validate_file_name
from .folders import FolderTree, FolderCascade, validate_folder_name
from .admission import AdmissionController, AdmissionDecision, AdmissionStatus
from .cleanup import CleanupAdvisor, CleanupSuggestion
from .deduplication import DuplicateDetector, FileHash, DuplicateFile
from .engine import StorageEngine

__all__ = [
    # Quota accounting
    'QuotaLedger',
    'QuotaState',
    'CapacityCheck',
    'QuotaWarningEvent',

    # Backends
    'StorageBackendRegistry',
    'BackendSnapshot',
    'next_health_state',
    'DEFAULT_CAPABILITIES',
    'HealthProbe',
    'HealthMonitor',
    'ProbeResult',

    # Files and folders
    'FileCatalog',
    'FileMeta',
    'VersionData',
    'validate_file_name',
    'FolderTree',
    'FolderCascade',
    'validate_folder_name',

    # Admission
    'AdmissionController',
    'AdmissionDecision',
    'AdmissionStatus',

    # Advisory
    'CleanupAdvisor',
    'CleanupSuggestion',
    'DuplicateDetector',
    'FileHash',
    'DuplicateFile',

    # Wiring
    'StorageEngine',
]
