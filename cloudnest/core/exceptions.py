"""
Error taxonomy for the storage engine.

Every error carries a stable ``code`` and a structured ``details`` payload so
the HTTP layer can render an actionable message without parsing strings.
"""
from typing import Any, Dict, List, Optional


class StorageEngineError(Exception):
    """Base class for all storage engine errors."""

    code = "storage_error"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary"""
        return {
            "error": self.code,
            "message": self.message,
            "details": self.details,
        }


class ValidationError(StorageEngineError):
    """Bad filename, size, MIME type or path input."""

    code = "validation_error"

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message, {"field": field} if field else {})
        self.field = field


class QuotaExceededError(StorageEngineError):
    """Raised when storage quota would be exceeded"""

    code = "quota_exceeded"

    def __init__(self, owner_id: str, requested_bytes: int, available_bytes: int):
        self.owner_id = owner_id
        self.requested_bytes = requested_bytes
        self.available_bytes = available_bytes
        self.shortfall_bytes = max(0, requested_bytes - available_bytes)
        super().__init__(
            f"Storage quota exceeded: {requested_bytes} bytes requested, "
            f"{available_bytes} bytes available",
            {
                "owner_id": owner_id,
                "requested_bytes": requested_bytes,
                "available_bytes": available_bytes,
                "shortfall_bytes": self.shortfall_bytes,
            },
        )


class NotFoundError(StorageEngineError):
    """Entity id is unknown, or the entity is soft-deleted where a live one is required."""

    code = "not_found"

    def __init__(self, entity: str, entity_id: Any):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(
            f"{entity} '{entity_id}' not found",
            {"entity": entity, "id": str(entity_id)},
        )


class ConflictError(StorageEngineError):
    """Duplicate sibling name or a concurrent modification race."""

    code = "conflict"


class NoBackendAvailableError(StorageEngineError):
    """No active and healthy storage backend can accept the write."""

    code = "no_backend_available"

    def __init__(self, message: str, unhealthy_backends: Optional[List[Dict[str, Any]]] = None):
        self.unhealthy_backends = unhealthy_backends or []
        super().__init__(message, {"unhealthy_backends": self.unhealthy_backends})


class InvalidOperationError(StorageEngineError):
    """Structurally impossible request, e.g. moving a folder into its own subtree."""

    code = "invalid_operation"


class AdmissionCancelledError(StorageEngineError):
    """The caller-supplied deadline expired before admission finished."""

    code = "admission_cancelled"


class BackendProbeTimeout(StorageEngineError):
    """
    Probe did not finish within its deadline.

    Internal to the health probe: it is converted into a failed probe result
    and never reaches API callers.
    """

    code = "backend_probe_timeout"

    def __init__(self, backend_id: str, timeout_seconds: float):
        self.backend_id = backend_id
        self.timeout_seconds = timeout_seconds
        super().__init__(
            f"Health probe for backend '{backend_id}' timed out after {timeout_seconds:.2f}s",
            {"backend_id": backend_id, "timeout_seconds": timeout_seconds},
        )
