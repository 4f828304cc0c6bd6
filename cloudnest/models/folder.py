"""
SQLAlchemy model for folders.
Represents the folders table in the database.
"""
from sqlalchemy import (
    Column,
    String,
    DateTime,
    Boolean,
    ForeignKey,
    Index,
)

from cloudnest.models.base import Base, new_id, utcnow


class FolderRecord(Base):
    """
    Folder in a user's tree.
    Maps to the 'folders' table.

    ``path`` is materialized: ``/name`` for a root folder and
    ``parent.path + "/" + name`` for a child.
    """
    __tablename__ = "folders"

    id = Column(String(36), primary_key=True, default=new_id)
    name = Column(String(100), nullable=False)
    description = Column(String(500), nullable=True)
    owner_id = Column(String(36), nullable=False, index=True)
    parent_id = Column(String(36), ForeignKey("folders.id"), nullable=True, index=True)
    path = Column(String(1000), nullable=False, index=True)
    color = Column(String(7), default="#3B82F6", nullable=False)

    # Soft delete
    is_deleted = Column(Boolean, default=False, nullable=False, index=True)
    deleted_at = Column(DateTime(timezone=True), nullable=True)
    deleted_by = Column(String(36), nullable=True)

    # Timestamps
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    __table_args__ = (
        Index("idx_folders_owner_parent_deleted", "owner_id", "parent_id", "is_deleted"),
        Index("idx_folders_path_owner", "path", "owner_id"),
    )

    def __repr__(self):
        return f"<FolderRecord(id={self.id}, path={self.path})>"

    @property
    def depth(self) -> int:
        """Nesting level, 1 for root folders."""
        return self.path.count("/")
