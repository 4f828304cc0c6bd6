"""
Duplicate Detection

Groups live catalog files by content hash and reports duplicates and the
space they waste. Advisory only: records are never merged or removed here.

Wasted space counts only duplicates stored under their own key; files that
already reuse the original's storage key cost nothing extra.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional

from cloudnest.models.base import as_utc
from cloudnest.models.file import FileRecord
from cloudnest.storage.catalog import FileCatalog

logger = logging.getLogger(__name__)


@dataclass
class FileHash:
    """
    File hash information
    """
    file_id: str
    name: str
    hash_value: str
    backend_id: str
    storage_key: str
    size_bytes: int
    created_at: datetime

    @classmethod
    def from_record(cls, record: FileRecord) -> "FileHash":
        return cls(
            file_id=record.id,
            name=record.name,
            hash_value=record.content_hash,
            backend_id=record.backend_id,
            storage_key=record.storage_key,
            size_bytes=record.size,
            created_at=as_utc(record.created_at),
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary"""
        return {
            "file_id": self.file_id,
            "name": self.name,
            "hash": self.hash_value,
            "backend_id": self.backend_id,
            "storage_key": self.storage_key,
            "size_bytes": self.size_bytes,
            "size_mb": round(self.size_bytes / (1024 ** 2), 2),
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


@dataclass
class DuplicateFile:
    """
    Duplicate file information
    """
    original: FileHash
    duplicates: List[FileHash]
    total_duplicates: int
    wasted_space_bytes: int

    @property
    def wasted_space_mb(self) -> float:
        """Get wasted space in MB"""
        return self.wasted_space_bytes / (1024 ** 2)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary"""
        return {
            "original": self.original.to_dict(),
            "duplicates": [d.to_dict() for d in self.duplicates],
            "total_duplicates": self.total_duplicates,
            "wasted_space_bytes": self.wasted_space_bytes,
            "wasted_space_mb": round(self.wasted_space_mb, 2),
        }


class DuplicateDetector:
    """
    Duplicate file detection over the catalog
    """

    def __init__(self, catalog: FileCatalog):
        self.catalog = catalog
        self.hash_db: Dict[str, List[FileHash]] = {}  # hash -> list of files

    def scan(self, owner_id: Optional[str] = None) -> List[DuplicateFile]:
        """
        Find duplicate groups among live files (of ``owner_id`` if given).

        The oldest file in each group is treated as the original.
        """
        self.hash_db.clear()
        for record in self.catalog.list_live(owner_id):
            file_hash = FileHash.from_record(record)
            self.hash_db.setdefault(file_hash.hash_value, []).append(file_hash)

        groups: List[DuplicateFile] = []
        for files in self.hash_db.values():
            if len(files) < 2:
                continue
            files_sorted = sorted(files, key=lambda x: x.created_at)
            original, dups = files_sorted[0], files_sorted[1:]
            wasted = sum(
                d.size_bytes
                for d in dups
                if not (d.storage_key == original.storage_key and d.backend_id == original.backend_id)
            )
            groups.append(DuplicateFile(
                original=original,
                duplicates=dups,
                total_duplicates=len(dups),
                wasted_space_bytes=wasted,
            ))

        groups.sort(key=lambda g: g.wasted_space_bytes, reverse=True)
        return groups

    def report(self, owner_id: Optional[str] = None) -> Dict[str, Any]:
        """Summary of duplicate groups and wasted space."""
        groups = self.scan(owner_id)
        total_files = sum(len(files) for files in self.hash_db.values())
        total_size = sum(f.size_bytes for files in self.hash_db.values() for f in files)
        wasted_space = sum(g.wasted_space_bytes for g in groups)

        logger.info(
            f"Duplicate scan complete: {total_files} files scanned, "
            f"{sum(g.total_duplicates for g in groups)} duplicates found, "
            f"{wasted_space / (1024 ** 2):.2f}MB wasted"
        )

        return {
            "owner_id": owner_id,
            "total_files": total_files,
            "total_size_bytes": total_size,
            "unique_hashes": len(self.hash_db),
            "duplicate_groups": len(groups),
            "total_duplicates": sum(g.total_duplicates for g in groups),
            "wasted_space_bytes": wasted_space,
            "savings_percentage": round(wasted_space / total_size * 100, 2) if total_size > 0 else 0,
            "duplicates": [g.to_dict() for g in groups],
        }
