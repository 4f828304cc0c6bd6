"""
File Catalog

Owns file records: metadata, version chains, content-hash lookups and
soft-delete state.

Usage changes are reported through an optional ``on_usage_delta(owner_id,
delta_bytes)`` callback, fired only after the database commit succeeds.
"""
import logging
import os
import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Iterable, List, Optional

from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from cloudnest.core.exceptions import NotFoundError, ValidationError
from cloudnest.models.base import utcnow
from cloudnest.models.file import FileRecord, FileVersion

logger = logging.getLogger(__name__)

MAX_FILENAME_LENGTH = 255
INVALID_NAME_CHARS = re.compile(r'[<>:"/\\|?*]')

UsageCallback = Callable[[str, int], None]


def validate_file_name(name: str) -> str:
    """
    Check a display filename.

    Raises:
        ValidationError: Empty, longer than 255 characters, or containing
            any of ``<>:"/\\|?*``
    """
    if name is None or not name.strip():
        raise ValidationError("File name is required", field="name")
    if len(name) > MAX_FILENAME_LENGTH:
        raise ValidationError(
            f"File name cannot exceed {MAX_FILENAME_LENGTH} characters", field="name"
        )
    if INVALID_NAME_CHARS.search(name):
        raise ValidationError("File name contains invalid characters", field="name")
    return name.strip()


def file_extension(name: str) -> str:
    """Lowercase extension without the dot, or ''."""
    return os.path.splitext(name)[1].lstrip(".").lower()


@dataclass
class FileMeta:
    """
    Metadata for a new file, as supplied by the uploader
    """
    owner_id: str
    name: str
    mime_type: str
    size: int
    content_hash: str
    backend_id: Optional[str] = None
    folder_id: Optional[str] = None
    original_name: Optional[str] = None
    description: Optional[str] = None
    is_public: bool = False
    tags: List[str] = field(default_factory=list)


@dataclass
class VersionData:
    """
    One stored object produced by a byte transfer
    """
    size: int
    storage_key: str
    uploaded_by: str
    content_hash: Optional[str] = None
    uploaded_at: Optional[datetime] = None


class FileCatalog:
    """
    File catalog service

    Every write commits its own transaction and rolls back on error, except
    the ``mark_*`` helpers the folder tree uses inside its own transaction.
    """

    def __init__(
        self,
        db: Session,
        on_usage_delta: Optional[UsageCallback] = None,
        count_soft_deleted: bool = True,
    ):
        """
        Args:
            db: Database session
            on_usage_delta: Called with (owner_id, delta_bytes) after commits
            count_soft_deleted: Keep soft-deleted bytes counted against quota
        """
        self.db = db
        self.on_usage_delta = on_usage_delta
        self.count_soft_deleted = count_soft_deleted

    def _notify(self, owner_id: str, delta_bytes: int) -> None:
        if self.on_usage_delta is not None and delta_bytes:
            self.on_usage_delta(owner_id, delta_bytes)

    def _commit(self) -> None:
        try:
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create_file(self, meta: FileMeta, initial: VersionData, commit: bool = True) -> FileRecord:
        """
        Create a file whose version 1 is ``initial``.

        Raises:
            ValidationError: Bad name, non-positive size, size mismatch with
                the initial version, or missing backend/storage key
        """
        name = validate_file_name(meta.name)
        if meta.size is None or meta.size <= 0:
            raise ValidationError("File size must be greater than zero", field="size")
        if initial.size != meta.size:
            raise ValidationError(
                f"Initial version size {initial.size} does not match file size {meta.size}",
                field="size",
            )
        if not meta.backend_id:
            raise ValidationError("A storage backend is required", field="backend_id")
        if not initial.storage_key:
            raise ValidationError("A storage key is required", field="storage_key")

        now = utcnow()
        record = FileRecord(
            name=name,
            original_name=meta.original_name or name,
            description=meta.description,
            mime_type=meta.mime_type or "application/octet-stream",
            extension=file_extension(name),
            size=initial.size,
            storage_key=initial.storage_key,
            current_version=1,
            backend_id=meta.backend_id,
            content_hash=initial.content_hash or meta.content_hash,
            owner_id=meta.owner_id,
            folder_id=meta.folder_id,
            is_public=meta.is_public,
            tags=list(meta.tags or []),
            created_at=now,
            updated_at=now,
        )
        record.versions.append(
            FileVersion(
                version=1,
                size=initial.size,
                storage_key=initial.storage_key,
                uploaded_by=initial.uploaded_by,
                uploaded_at=initial.uploaded_at or now,
            )
        )

        self.db.add(record)
        if not commit:
            self.db.flush()
            return record

        self._commit()
        self.db.refresh(record)
        logger.info(f"Created file '{record.name}' ({record.size} bytes) id={record.id} owner={record.owner_id}")
        self._notify(record.owner_id, record.size)
        return record

    def add_version(self, file_id: str, data: VersionData, commit: bool = True) -> FileRecord:
        """
        Append version ``current_version + 1`` and mirror it on the file.

        Raises:
            NotFoundError: File missing or soft-deleted
            ValidationError: Non-positive size or missing storage key
        """
        record = self.get(file_id)
        if data.size is None or data.size <= 0:
            raise ValidationError("Version size must be greater than zero", field="size")
        if not data.storage_key:
            raise ValidationError("A storage key is required", field="storage_key")

        now = utcnow()
        number = self._max_version(record) + 1
        record.versions.append(
            FileVersion(
                version=number,
                size=data.size,
                storage_key=data.storage_key,
                uploaded_by=data.uploaded_by,
                uploaded_at=data.uploaded_at or now,
            )
        )
        record.current_version = number
        record.size = data.size
        record.storage_key = data.storage_key
        if data.content_hash:
            record.content_hash = data.content_hash
        record.updated_at = now

        if not commit:
            self.db.flush()
            return record

        self._commit()
        self.db.refresh(record)
        logger.info(f"Added version {number} to file {record.id} ({data.size} bytes)")
        self._notify(record.owner_id, data.size)
        return record

    def _max_version(self, record: FileRecord) -> int:
        highest = (
            self.db.query(func.max(FileVersion.version))
            .filter(FileVersion.file_id == record.id)
            .scalar()
        )
        return max(highest or 0, record.current_version or 0)

    def soft_delete(self, file_id: str, actor: str) -> FileRecord:
        """Mark a file deleted. Deleting a deleted file is a no-op."""
        record = self.get(file_id, include_deleted=True)
        if record.is_deleted:
            return record

        self._mark_deleted(record, actor, utcnow())
        self._commit()
        self.db.refresh(record)
        logger.info(f"Soft-deleted file {record.id} by {actor}")
        self._notify(record.owner_id, self.soft_delete_delta(record))
        return record

    def restore(self, file_id: str) -> FileRecord:
        """Clear the delete flag. Restoring a live file is a no-op."""
        record = self.get(file_id, include_deleted=True)
        if not record.is_deleted:
            return record

        record.is_deleted = False
        record.deleted_at = None
        record.deleted_by = None
        record.updated_at = utcnow()
        self._commit()
        self.db.refresh(record)
        logger.info(f"Restored file {record.id}")
        self._notify(record.owner_id, -self.soft_delete_delta(record))
        return record

    def soft_delete_delta(self, record: FileRecord) -> int:
        """Quota change caused by soft-deleting ``record``."""
        if self.count_soft_deleted:
            return 0
        return -record.stored_bytes

    def _mark_deleted(self, record: FileRecord, actor: str, when: datetime) -> None:
        record.is_deleted = True
        record.deleted_at = when
        record.deleted_by = actor
        record.updated_at = when

    def mark_deleted_in_folders(
        self, folder_ids: Iterable[str], actor: str, when: datetime
    ) -> List[FileRecord]:
        """
        Mark every live file in ``folder_ids`` deleted without committing.

        Returns:
            The files that changed; the caller commits, then reports usage
            through ``notify_deleted``.
        """
        folder_ids = list(folder_ids)
        if not folder_ids:
            return []
        files = (
            self.db.query(FileRecord)
            .filter(FileRecord.folder_id.in_(folder_ids), FileRecord.is_deleted.is_(False))
            .all()
        )
        for record in files:
            self._mark_deleted(record, actor, when)
        return files

    def notify_deleted(self, files: Iterable[FileRecord]) -> None:
        for record in files:
            self._notify(record.owner_id, self.soft_delete_delta(record))

    def record_view(self, file_id: str) -> FileRecord:
        record = self.get(file_id)
        record.views = (record.views or 0) + 1
        record.last_accessed_at = utcnow()
        self._commit()
        self.db.refresh(record)
        return record

    def record_download(self, file_id: str) -> FileRecord:
        record = self.get(file_id)
        record.downloads = (record.downloads or 0) + 1
        record.last_accessed_at = utcnow()
        self._commit()
        self.db.refresh(record)
        return record

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, file_id: str, include_deleted: bool = False) -> FileRecord:
        """
        Raises:
            NotFoundError: Unknown id, or soft-deleted and ``include_deleted`` is False
        """
        record = self.db.query(FileRecord).filter(FileRecord.id == file_id).first()
        if record is None or (record.is_deleted and not include_deleted):
            raise NotFoundError("File", file_id)
        return record

    def find_by_hash(self, content_hash: str, backend_id: Optional[str] = None) -> Optional[FileRecord]:
        """
        Oldest live file with ``content_hash`` (on ``backend_id`` if given).

        Lookup only: whether to reuse the storage key is the caller's call.
        """
        query = self.db.query(FileRecord).filter(
            FileRecord.content_hash == content_hash,
            FileRecord.is_deleted.is_(False),
        )
        if backend_id:
            query = query.filter(FileRecord.backend_id == backend_id)
        return query.order_by(FileRecord.created_at).first()

    def list_by_owner(
        self,
        owner_id: str,
        folder_id: Optional[str] = None,
        root_only: bool = False,
        limit: int = 100,
        offset: int = 0,
    ) -> List[FileRecord]:
        query = self.db.query(FileRecord).filter(
            FileRecord.owner_id == owner_id,
            FileRecord.is_deleted.is_(False),
        )
        if folder_id:
            query = query.filter(FileRecord.folder_id == folder_id)
        elif root_only:
            query = query.filter(FileRecord.folder_id.is_(None))
        return query.order_by(FileRecord.created_at.desc()).offset(offset).limit(limit).all()

    def list_in_folder(self, folder_id: str, include_deleted: bool = False) -> List[FileRecord]:
        query = self.db.query(FileRecord).filter(FileRecord.folder_id == folder_id)
        if not include_deleted:
            query = query.filter(FileRecord.is_deleted.is_(False))
        return query.order_by(FileRecord.name).all()

    def search(self, owner_id: str, query_text: str, limit: int = 50) -> List[FileRecord]:
        """Case-insensitive substring match on the display or original name."""
        pattern = f"%{query_text.strip().lower()}%"
        return (
            self.db.query(FileRecord)
            .filter(
                FileRecord.owner_id == owner_id,
                FileRecord.is_deleted.is_(False),
                or_(
                    func.lower(FileRecord.name).like(pattern),
                    func.lower(FileRecord.original_name).like(pattern),
                ),
            )
            .order_by(FileRecord.updated_at.desc())
            .limit(limit)
            .all()
        )

    def list_deleted(self, owner_id: str) -> List[FileRecord]:
        return (
            self.db.query(FileRecord)
            .filter(FileRecord.owner_id == owner_id, FileRecord.is_deleted.is_(True))
            .order_by(FileRecord.deleted_at.desc())
            .all()
        )

    def list_live(self, owner_id: Optional[str] = None) -> List[FileRecord]:
        query = self.db.query(FileRecord).filter(FileRecord.is_deleted.is_(False))
        if owner_id:
            query = query.filter(FileRecord.owner_id == owner_id)
        return query.all()

    def latest_version(self, file_id: str) -> FileVersion:
        record = self.get(file_id, include_deleted=True)
        return max(record.versions, key=lambda v: v.version)

    def usage_bytes(self, owner_id: str) -> int:
        """
        Bytes held by an owner across all versions.

        Soft-deleted files count unless ``count_soft_deleted`` is off.
        """
        query = (
            self.db.query(func.coalesce(func.sum(FileVersion.size), 0))
            .join(FileRecord, FileVersion.file_id == FileRecord.id)
            .filter(FileRecord.owner_id == owner_id)
        )
        if not self.count_soft_deleted:
            query = query.filter(FileRecord.is_deleted.is_(False))
        return int(query.scalar() or 0)
