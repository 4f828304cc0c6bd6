"""
Folder Tree

Path-addressed folder hierarchy with materialized paths.

Structural changes (create, rename, move, soft-delete, restore) run under
the owner's lock and commit in a single transaction, so a reader never sees
a subtree with a mix of old and new paths.
"""
import logging
import re
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from cloudnest.core.exceptions import (
    ConflictError,
    InvalidOperationError,
    NotFoundError,
    ValidationError,
)
from cloudnest.core.locks import KeyedLock
from cloudnest.metrics import record_folder_cascade
from cloudnest.models.base import utcnow
from cloudnest.models.folder import FolderRecord
from cloudnest.storage.catalog import FileCatalog

logger = logging.getLogger(__name__)

MAX_FOLDER_NAME_LENGTH = 100
INVALID_NAME_CHARS = re.compile(r'[<>:"/\\|?*]')
COLOR_PATTERN = re.compile(r"^#[0-9A-Fa-f]{6}$")


def validate_folder_name(name: str) -> str:
    """
    Raises:
        ValidationError: Empty, longer than 100 characters, or containing
            any of ``<>:"/\\|?*``
    """
    if name is None or not name.strip():
        raise ValidationError("Folder name is required", field="name")
    name = name.strip()
    if len(name) > MAX_FOLDER_NAME_LENGTH:
        raise ValidationError(
            f"Folder name cannot exceed {MAX_FOLDER_NAME_LENGTH} characters", field="name"
        )
    if INVALID_NAME_CHARS.search(name):
        raise ValidationError("Folder name contains invalid characters", field="name")
    return name


def join_path(parent_path: Optional[str], name: str) -> str:
    return f"{parent_path}/{name}" if parent_path else f"/{name}"


@dataclass
class FolderCascade:
    """
    Entities touched by a cascading soft-delete
    """
    folder: FolderRecord
    folder_ids: List[str] = field(default_factory=list)
    file_ids: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary"""
        return {
            "folder_id": self.folder.id,
            "path": self.folder.path,
            "folders_deleted": len(self.folder_ids),
            "files_deleted": len(self.file_ids),
        }


class FolderTree:
    """
    Folder tree service

    Args:
        db: Database session
        catalog: File catalog sharing ``db``, used for the file part of cascades
        owner_locks: Per-owner locks shared across requests
        max_depth: Deepest permitted nesting (root folders are depth 1)
        max_path_length: Longest permitted materialized path
    """

    def __init__(
        self,
        db: Session,
        catalog: FileCatalog,
        owner_locks: Optional[KeyedLock] = None,
        max_depth: int = 10,
        max_path_length: int = 1000,
    ):
        self.db = db
        self.catalog = catalog
        self.owner_locks = owner_locks or KeyedLock()
        self.max_depth = max_depth
        self.max_path_length = max_path_length

    def _commit(self) -> None:
        try:
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

    def _check_path(self, path: str) -> None:
        depth = path.count("/")
        if depth > self.max_depth:
            raise ValidationError(
                f"Folder nesting cannot exceed {self.max_depth} levels", field="parent_id"
            )
        if len(path) > self.max_path_length:
            raise ValidationError(
                f"Folder path cannot exceed {self.max_path_length} characters", field="name"
            )

    def _sibling_exists(
        self,
        owner_id: str,
        parent_id: Optional[str],
        name: str,
        exclude_id: Optional[str] = None,
    ) -> bool:
        query = self.db.query(FolderRecord.id).filter(
            FolderRecord.owner_id == owner_id,
            FolderRecord.name == name,
            FolderRecord.is_deleted.is_(False),
        )
        if parent_id:
            query = query.filter(FolderRecord.parent_id == parent_id)
        else:
            query = query.filter(FolderRecord.parent_id.is_(None))
        if exclude_id:
            query = query.filter(FolderRecord.id != exclude_id)
        return query.first() is not None

    def _live_parent(self, owner_id: str, parent_id: str) -> FolderRecord:
        parent = self.get(parent_id)
        if parent.owner_id != owner_id:
            raise NotFoundError("Folder", parent_id)
        return parent

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, folder_id: str, include_deleted: bool = False) -> FolderRecord:
        """
        Raises:
            NotFoundError: Unknown id, or soft-deleted and ``include_deleted`` is False
        """
        folder = self.db.query(FolderRecord).filter(FolderRecord.id == folder_id).first()
        if folder is None or (folder.is_deleted and not include_deleted):
            raise NotFoundError("Folder", folder_id)
        return folder

    def get_by_path(self, owner_id: str, path: str) -> FolderRecord:
        folder = (
            self.db.query(FolderRecord)
            .filter(
                FolderRecord.owner_id == owner_id,
                FolderRecord.path == path,
                FolderRecord.is_deleted.is_(False),
            )
            .first()
        )
        if folder is None:
            raise NotFoundError("Folder", path)
        return folder

    def list_roots(self, owner_id: str) -> List[FolderRecord]:
        return (
            self.db.query(FolderRecord)
            .filter(
                FolderRecord.owner_id == owner_id,
                FolderRecord.parent_id.is_(None),
                FolderRecord.is_deleted.is_(False),
            )
            .order_by(FolderRecord.name)
            .all()
        )

    def children(self, folder_id: str, include_deleted: bool = False) -> List[FolderRecord]:
        query = self.db.query(FolderRecord).filter(FolderRecord.parent_id == folder_id)
        if not include_deleted:
            query = query.filter(FolderRecord.is_deleted.is_(False))
        return query.order_by(FolderRecord.name).all()

    def descendants(self, folder_id: str, include_deleted: bool = False) -> List[FolderRecord]:
        """All folders below ``folder_id``, breadth-first."""
        found: List[FolderRecord] = []
        queue = deque([folder_id])
        while queue:
            current = queue.popleft()
            for child in self.children(current, include_deleted=True):
                queue.append(child.id)
                if include_deleted or not child.is_deleted:
                    found.append(child)
        return found

    def list_deleted(self, owner_id: str) -> List[FolderRecord]:
        return (
            self.db.query(FolderRecord)
            .filter(FolderRecord.owner_id == owner_id, FolderRecord.is_deleted.is_(True))
            .order_by(FolderRecord.deleted_at.desc())
            .all()
        )

    def depth(self, folder_id: str) -> int:
        return self.get(folder_id, include_deleted=True).depth

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create(
        self,
        name: str,
        owner_id: str,
        parent_id: Optional[str] = None,
        description: Optional[str] = None,
        color: Optional[str] = None,
    ) -> FolderRecord:
        """
        Create a folder under ``parent_id`` (or at the root).

        Raises:
            ValidationError: Bad name or color, too deep, path too long
            NotFoundError: Parent missing, deleted or owned by someone else
            ConflictError: A live sibling already has this name
        """
        name = validate_folder_name(name)
        if color is not None and not COLOR_PATTERN.match(color):
            raise ValidationError("Color must be a hex value like #3B82F6", field="color")

        with self.owner_locks.hold(owner_id):
            parent_path = None
            if parent_id:
                parent_path = self._live_parent(owner_id, parent_id).path

            path = join_path(parent_path, name)
            self._check_path(path)
            if self._sibling_exists(owner_id, parent_id, name):
                raise ConflictError(
                    f"A folder named '{name}' already exists here",
                    {"name": name, "parent_id": parent_id},
                )

            now = utcnow()
            folder = FolderRecord(
                name=name,
                owner_id=owner_id,
                parent_id=parent_id,
                path=path,
                description=description,
                created_at=now,
                updated_at=now,
            )
            if color is not None:
                folder.color = color

            self.db.add(folder)
            self._commit()
            self.db.refresh(folder)

        logger.info(f"Created folder '{folder.path}' id={folder.id} owner={owner_id}")
        return folder

    def rename(self, folder_id: str, new_name: str) -> FolderRecord:
        """
        Rename a folder and rewrite the path of every descendant.

        Raises:
            ValidationError: Bad name or resulting path too long
            ConflictError: A live sibling already has the new name
        """
        new_name = validate_folder_name(new_name)
        folder = self.get(folder_id)

        with self.owner_locks.hold(folder.owner_id):
            self.db.refresh(folder)
            if folder.is_deleted:
                raise NotFoundError("Folder", folder_id)
            if folder.name == new_name:
                return folder
            if self._sibling_exists(folder.owner_id, folder.parent_id, new_name, exclude_id=folder.id):
                raise ConflictError(
                    f"A folder named '{new_name}' already exists here",
                    {"name": new_name, "parent_id": folder.parent_id},
                )

            parent_path = folder.path.rsplit("/", 1)[0] or None
            old_path = folder.path
            folder.name = new_name
            self._rewrite_subtree(folder, join_path(parent_path, new_name))
            self._commit()
            self.db.refresh(folder)

        logger.info(f"Renamed folder '{old_path}' -> '{folder.path}'")
        return folder

    def move(self, folder_id: str, new_parent_id: Optional[str] = None) -> FolderRecord:
        """
        Move a folder under ``new_parent_id`` (None moves it to the root).

        Raises:
            InvalidOperationError: Target is the folder itself or one of its
                descendants; checked before anything is modified
            NotFoundError: Target missing, deleted or owned by someone else
            ConflictError: A live sibling at the target has the same name
            ValidationError: Resulting tree too deep or a path too long
        """
        folder = self.get(folder_id)

        with self.owner_locks.hold(folder.owner_id):
            self.db.refresh(folder)
            if folder.is_deleted:
                raise NotFoundError("Folder", folder_id)
            if new_parent_id == folder.parent_id:
                return folder

            parent_path = None
            if new_parent_id:
                if new_parent_id == folder.id:
                    raise InvalidOperationError(
                        "Cannot move a folder into itself", {"folder_id": folder_id}
                    )
                new_parent = self._live_parent(folder.owner_id, new_parent_id)
                if self._is_ancestor(folder.id, new_parent):
                    raise InvalidOperationError(
                        "Cannot move a folder into one of its own subfolders",
                        {"folder_id": folder_id, "target_id": new_parent_id},
                    )
                parent_path = new_parent.path

            if self._sibling_exists(folder.owner_id, new_parent_id, folder.name, exclude_id=folder.id):
                raise ConflictError(
                    f"A folder named '{folder.name}' already exists at the destination",
                    {"name": folder.name, "parent_id": new_parent_id},
                )

            old_path = folder.path
            folder.parent_id = new_parent_id
            self._rewrite_subtree(folder, join_path(parent_path, folder.name))
            self._commit()
            self.db.refresh(folder)

        logger.info(f"Moved folder '{old_path}' -> '{folder.path}'")
        return folder

    def _is_ancestor(self, candidate_id: str, folder: FolderRecord) -> bool:
        """True if ``candidate_id`` is ``folder`` or any folder above it."""
        seen = set()
        current: Optional[FolderRecord] = folder
        while current is not None:
            if current.id == candidate_id:
                return True
            if current.id in seen or not current.parent_id:
                return False
            seen.add(current.id)
            current = self.db.query(FolderRecord).filter(FolderRecord.id == current.parent_id).first()
        return False

    def _rewrite_subtree(self, folder: FolderRecord, new_path: str) -> int:
        """
        Recompute paths for ``folder`` and every descendant, deleted ones
        included. All new paths are validated before any row changes.

        Returns:
            Number of folders rewritten
        """
        new_paths: Dict[str, str] = {folder.id: new_path}
        nodes: List[FolderRecord] = [folder]
        queue = deque([folder])
        while queue:
            current = queue.popleft()
            for child in self.children(current.id, include_deleted=True):
                new_paths[child.id] = join_path(new_paths[current.id], child.name)
                nodes.append(child)
                queue.append(child)

        try:
            for path in new_paths.values():
                self._check_path(path)
        except ValidationError:
            self.db.rollback()
            raise

        now = utcnow()
        for node in nodes:
            node.path = new_paths[node.id]
            node.updated_at = now

        record_folder_cascade("path_rewrite", len(nodes))
        return len(nodes)

    def soft_delete(self, folder_id: str, actor: str) -> FolderCascade:
        """
        Delete a folder, every live descendant folder, and every live file
        in the subtree, all with the same actor and timestamp.

        Deleting a deleted folder is a no-op.
        """
        folder = self.get(folder_id, include_deleted=True)
        if folder.is_deleted:
            return FolderCascade(folder=folder)

        with self.owner_locks.hold(folder.owner_id):
            self.db.refresh(folder)
            if folder.is_deleted:
                return FolderCascade(folder=folder)

            now = utcnow()
            subtree: List[str] = []
            marked: List[str] = []
            queue = deque([folder])
            while queue:
                current = queue.popleft()
                subtree.append(current.id)
                if not current.is_deleted:
                    current.is_deleted = True
                    current.deleted_at = now
                    current.deleted_by = actor
                    current.updated_at = now
                    marked.append(current.id)
                queue.extend(self.children(current.id, include_deleted=True))

            files = self.catalog.mark_deleted_in_folders(subtree, actor, now)
            self._commit()
            self.db.refresh(folder)
            self.catalog.notify_deleted(files)

        cascade = FolderCascade(folder=folder, folder_ids=marked, file_ids=[f.id for f in files])
        record_folder_cascade("soft_delete", len(marked) + len(files))
        logger.info(
            f"Soft-deleted folder '{folder.path}' by {actor}: "
            f"{len(marked)} folders, {len(files)} files"
        )
        return cascade

    def restore(self, folder_id: str) -> FolderRecord:
        """
        Restore only this folder; descendants and files stay deleted until
        restored explicitly. Restoring a live folder is a no-op.

        Raises:
            ConflictError: A live sibling took the name in the meantime
        """
        folder = self.get(folder_id, include_deleted=True)
        if not folder.is_deleted:
            return folder

        with self.owner_locks.hold(folder.owner_id):
            self.db.refresh(folder)
            if not folder.is_deleted:
                return folder
            if self._sibling_exists(folder.owner_id, folder.parent_id, folder.name, exclude_id=folder.id):
                raise ConflictError(
                    f"A folder named '{folder.name}' already exists here",
                    {"name": folder.name, "parent_id": folder.parent_id},
                )

            folder.is_deleted = False
            folder.deleted_at = None
            folder.deleted_by = None
            folder.updated_at = utcnow()
            self._commit()
            self.db.refresh(folder)

        logger.info(f"Restored folder '{folder.path}'")
        return folder
