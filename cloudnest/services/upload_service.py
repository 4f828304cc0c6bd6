"""
Upload finalization service.

Applies a successful byte transfer to the catalog, the quota ledger and the
backend usage counters. Runs after admission and after the transfer layer
has stored the bytes (or chosen to reuse a dedup candidate's key).
"""
import logging
from dataclasses import dataclass, replace
from typing import Optional

from sqlalchemy.orm import Session

from cloudnest.core.exceptions import InvalidOperationError, NotFoundError, ValidationError
from cloudnest.models.file import FileRecord
from cloudnest.storage.admission import AdmissionDecision
from cloudnest.storage.catalog import FileMeta, VersionData
from cloudnest.storage.engine import StorageEngine

logger = logging.getLogger(__name__)


@dataclass
class TransferResult:
    """What the transfer layer reports back after writing bytes."""
    storage_key: str
    bytes_transferred: int
    reused_key: bool = False


class UploadService:
    """Service for committing admitted uploads."""

    def __init__(self, engine: StorageEngine, db: Session):
        self.engine = engine
        self.db = db
        self.ledger = engine.ledger
        self.registry = engine.registry(db)
        # quota is reserved explicitly below, so the catalog must not report it again
        self.catalog = engine.catalog(db, track_usage=False)

    def _check_transfer(self, decision: AdmissionDecision, owner_id: str, size: int, transfer: TransferResult) -> None:
        decision.raise_for_status()
        if decision.owner_id != owner_id:
            raise InvalidOperationError(
                "Admission decision belongs to a different owner",
                {"owner_id": owner_id},
            )
        if size != decision.requested_bytes:
            raise ValidationError(
                f"Upload size {size} does not match the admitted {decision.requested_bytes} bytes",
                field="size",
            )
        if transfer.reused_key:
            if transfer.storage_key != decision.dedup_candidate_key:
                raise InvalidOperationError(
                    "Only the admitted dedup candidate key can be reused",
                    {"storage_key": transfer.storage_key},
                )
        elif transfer.bytes_transferred != size:
            raise ValidationError(
                f"Transferred {transfer.bytes_transferred} bytes, expected {size}",
                field="bytes_transferred",
            )

    def _live_folder(self, folder_id: str, owner_id: str) -> None:
        folder = self.engine.folders(self.db).get(folder_id)
        if folder.owner_id != owner_id:
            raise NotFoundError("Folder", folder_id)

    def _resync_usage(self, owner_id: str) -> None:
        """
        Reload the owner's usage from the catalog before reserving.
        Picks up files committed by other processes sharing the database.
        Caller must hold the owner's lock.
        """
        self.ledger.hydrate(owner_id, self.catalog.usage_bytes(owner_id))

    def finalize_upload(
        self,
        owner_id: str,
        meta: FileMeta,
        decision: AdmissionDecision,
        transfer: TransferResult,
    ) -> FileRecord:
        """
        Create the file record for a completed transfer.

        Under the owner's lock: reserve quota (re-checked), bump backend
        counters and create the file, with the database work in one
        transaction. On any failure the reservation is released.

        Raises:
            QuotaExceededError: Usage changed since admission and no longer fits
            NotFoundError: Target folder is missing, deleted or not the owner's
        """
        self._check_transfer(decision, owner_id, meta.size, transfer)
        meta = replace(meta, owner_id=owner_id, backend_id=decision.backend_id)

        with self.ledger.owner_lock(owner_id):
            # folder deletes cascade under the same lock
            if meta.folder_id:
                self._live_folder(meta.folder_id, owner_id)
            self._resync_usage(owner_id)
            self.ledger.commit(owner_id, meta.size)
            try:
                self.registry.record_usage(
                    decision.backend_id,
                    delta_files=1,
                    delta_bytes=0 if transfer.reused_key else transfer.bytes_transferred,
                    commit=False,
                )
                record = self.catalog.create_file(
                    meta,
                    VersionData(
                        size=meta.size,
                        storage_key=transfer.storage_key,
                        uploaded_by=owner_id,
                        content_hash=meta.content_hash,
                    ),
                )
            except Exception:
                self.db.rollback()
                self.ledger.release(owner_id, meta.size)
                raise

        logger.info(
            f"Finalized upload '{record.name}' for '{owner_id}' on backend {decision.backend_id}"
            f"{' (deduplicated)' if transfer.reused_key else ''}"
        )
        return record

    def finalize_version(
        self,
        owner_id: str,
        file_id: str,
        decision: AdmissionDecision,
        transfer: TransferResult,
        content_hash: Optional[str] = None,
    ) -> FileRecord:
        """Append a new version for a completed transfer."""
        size = decision.requested_bytes
        self._check_transfer(decision, owner_id, size, transfer)

        record = self.catalog.get(file_id)
        if record.owner_id != owner_id:
            raise NotFoundError("File", file_id)

        with self.ledger.owner_lock(owner_id):
            self._resync_usage(owner_id)
            self.ledger.commit(owner_id, size)
            try:
                self.registry.record_usage(
                    record.backend_id,
                    delta_files=0,
                    delta_bytes=0 if transfer.reused_key else transfer.bytes_transferred,
                    commit=False,
                )
                record = self.catalog.add_version(
                    file_id,
                    VersionData(
                        size=size,
                        storage_key=transfer.storage_key,
                        uploaded_by=owner_id,
                        content_hash=content_hash,
                    ),
                )
            except Exception:
                self.db.rollback()
                self.ledger.release(owner_id, size)
                raise

        logger.info(f"Finalized version {record.current_version} of file {file_id} for '{owner_id}'")
        return record
