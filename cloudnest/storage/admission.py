"""
Upload Admission

Decides whether a write may proceed: validates the upload against policy,
checks the owner's quota and picks a healthy backend. Read-only: nothing is
reserved or recorded until the caller finalizes a successful transfer.
"""
import enum
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from cloudnest.core.exceptions import (
    AdmissionCancelledError,
    NoBackendAvailableError,
    NotFoundError,
    QuotaExceededError,
    ValidationError,
)
from cloudnest.metrics import record_admission
from cloudnest.models.storage_backend import StorageBackendConfig
from cloudnest.storage.catalog import FileCatalog, FileMeta, validate_file_name
from cloudnest.storage.quota import QuotaLedger
from cloudnest.storage.registry import StorageBackendRegistry

logger = logging.getLogger(__name__)


class AdmissionStatus(str, enum.Enum):
    ADMITTED = "admitted"
    QUOTA_EXCEEDED = "quota_exceeded"
    NO_BACKEND = "no_backend_available"


@dataclass
class AdmissionDecision:
    """
    Outcome of an admission check

    ``dedup_candidate_key`` is set when the chosen backend deduplicates and
    a live file with the same content hash already exists there; the caller
    may reuse that key instead of transferring the bytes again.
    """
    status: AdmissionStatus
    owner_id: str
    requested_bytes: int
    backend_id: Optional[str] = None
    dedup_candidate_key: Optional[str] = None
    dedup_file_id: Optional[str] = None
    available_bytes: int = 0
    shortfall_bytes: int = 0
    unhealthy_backends: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def admitted(self) -> bool:
        return self.status == AdmissionStatus.ADMITTED

    def raise_for_status(self) -> "AdmissionDecision":
        """
        Raises:
            QuotaExceededError: Status is QUOTA_EXCEEDED
            NoBackendAvailableError: Status is NO_BACKEND
        """
        if self.status == AdmissionStatus.QUOTA_EXCEEDED:
            raise QuotaExceededError(self.owner_id, self.requested_bytes, self.available_bytes)
        if self.status == AdmissionStatus.NO_BACKEND:
            raise NoBackendAvailableError(
                "No active and healthy storage backend is available",
                self.unhealthy_backends,
            )
        return self

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary"""
        return {
            "status": self.status.value,
            "owner_id": self.owner_id,
            "requested_bytes": self.requested_bytes,
            "backend_id": self.backend_id,
            "dedup_candidate_key": self.dedup_candidate_key,
            "dedup_file_id": self.dedup_file_id,
            "available_bytes": self.available_bytes,
            "shortfall_bytes": self.shortfall_bytes,
            "unhealthy_backends": self.unhealthy_backends,
        }


def _check_deadline(deadline: Optional[float], owner_id: str) -> None:
    if deadline is not None and time.monotonic() >= deadline:
        raise AdmissionCancelledError(
            "Admission deadline expired", {"owner_id": owner_id}
        )


class AdmissionController:
    """
    Upload admission service

    Args:
        ledger: Quota ledger (must already be hydrated for the owner)
        registry: Backend registry for the caller's session
        catalog: File catalog for the caller's session (dedup lookups only)
        max_file_size: Per-file upper bound in bytes
        allowed_mime_types: Allow-list; empty allows everything
    """

    def __init__(
        self,
        ledger: QuotaLedger,
        registry: StorageBackendRegistry,
        catalog: FileCatalog,
        max_file_size: int,
        allowed_mime_types: Sequence[str] = (),
    ):
        self.ledger = ledger
        self.registry = registry
        self.catalog = catalog
        self.max_file_size = max_file_size
        self.allowed_mime_types = set(allowed_mime_types or ())

    def validate(self, name: str, size: int, mime_type: str) -> None:
        """
        Raises:
            ValidationError: Bad filename, size out of range or MIME type not allowed
        """
        validate_file_name(name)
        if size is None or size <= 0:
            raise ValidationError("File size must be greater than zero", field="size")
        if size > self.max_file_size:
            raise ValidationError(
                f"File size {size} exceeds the maximum of {self.max_file_size} bytes",
                field="size",
            )
        if self.allowed_mime_types and mime_type not in self.allowed_mime_types:
            raise ValidationError(f"File type '{mime_type}' is not allowed", field="mime_type")

    def admit_upload(
        self,
        owner_id: str,
        meta: FileMeta,
        backend_id: Optional[str] = None,
        deadline: Optional[float] = None,
    ) -> AdmissionDecision:
        """
        Decide whether a new file may be uploaded.

        Args:
            owner_id: Uploading owner
            meta: File metadata (name, size, MIME type, content hash)
            backend_id: Explicit backend instead of the default
            deadline: ``time.monotonic()`` value after which to give up

        Raises:
            ValidationError: Upload breaks policy
            AdmissionCancelledError: Deadline passed
        """
        _check_deadline(deadline, owner_id)
        self.validate(meta.name, meta.size, meta.mime_type)
        return self._decide(owner_id, meta.size, meta.content_hash, backend_id, deadline)

    def admit_version(
        self,
        owner_id: str,
        file_id: str,
        size: int,
        content_hash: Optional[str] = None,
        deadline: Optional[float] = None,
    ) -> AdmissionDecision:
        """
        Decide whether a new version of an existing file may be uploaded.
        The version goes to the backend holding the file.

        Raises:
            NotFoundError: File missing, deleted or owned by someone else
        """
        _check_deadline(deadline, owner_id)
        record = self.catalog.get(file_id)
        if record.owner_id != owner_id:
            raise NotFoundError("File", file_id)
        self.validate(record.name, size, record.mime_type)
        return self._decide(owner_id, size, content_hash, record.backend_id, deadline)

    def _decide(
        self,
        owner_id: str,
        size: int,
        content_hash: Optional[str],
        backend_id: Optional[str],
        deadline: Optional[float],
    ) -> AdmissionDecision:
        check = self.ledger.check_capacity(owner_id, size)
        if not check.allowed:
            logger.warning(
                f"Upload denied for '{owner_id}': {size} bytes requested, "
                f"{check.available_bytes} available (short {check.shortfall_bytes})"
            )
            record_admission(AdmissionStatus.QUOTA_EXCEEDED.value)
            return AdmissionDecision(
                status=AdmissionStatus.QUOTA_EXCEEDED,
                owner_id=owner_id,
                requested_bytes=size,
                available_bytes=check.available_bytes,
                shortfall_bytes=check.shortfall_bytes,
            )

        _check_deadline(deadline, owner_id)
        try:
            backend = self.registry.select_backend(backend_id)
        except NoBackendAvailableError as e:
            logger.warning(f"Upload denied for '{owner_id}': {e.message}")
            record_admission(AdmissionStatus.NO_BACKEND.value)
            return AdmissionDecision(
                status=AdmissionStatus.NO_BACKEND,
                owner_id=owner_id,
                requested_bytes=size,
                available_bytes=check.available_bytes,
                unhealthy_backends=e.unhealthy_backends,
            )

        self._check_backend_limit(backend, size)

        _check_deadline(deadline, owner_id)
        decision = AdmissionDecision(
            status=AdmissionStatus.ADMITTED,
            owner_id=owner_id,
            requested_bytes=size,
            backend_id=backend.id,
            available_bytes=check.available_bytes,
        )
        if content_hash and backend.deduplication_enabled:
            candidate = self.catalog.find_by_hash(content_hash, backend.id)
            if candidate is not None:
                decision.dedup_candidate_key = candidate.storage_key
                decision.dedup_file_id = candidate.id

        record_admission(AdmissionStatus.ADMITTED.value, decision.dedup_candidate_key is not None)
        logger.debug(f"Admitted {size} bytes for '{owner_id}' on backend {backend.id}")
        return decision

    def _check_backend_limit(self, backend: StorageBackendConfig, size: int) -> None:
        if backend.max_file_size and size > backend.max_file_size:
            raise ValidationError(
                f"File size {size} exceeds backend '{backend.name}' limit of "
                f"{backend.max_file_size} bytes",
                field="size",
            )
