"""
SQLAlchemy models for stored files and their version chains.
Represents the files and file_versions tables in the database.
"""
from sqlalchemy import (
    Column,
    Integer,
    String,
    DateTime,
    Boolean,
    BigInteger,
    ForeignKey,
    Index,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from cloudnest.models.base import Base, JSONType, new_id, utcnow


class FileVersion(Base):
    """
    One committed version of a file.
    Maps to the 'file_versions' table.
    """
    __tablename__ = "file_versions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    file_id = Column(String(36), ForeignKey("files.id", ondelete="CASCADE"), nullable=False, index=True)
    version = Column(Integer, nullable=False)
    size = Column(BigInteger, nullable=False)
    storage_key = Column(String(1024), nullable=False)
    uploaded_by = Column(String(36), nullable=False)
    uploaded_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    file = relationship("FileRecord", back_populates="versions")

    __table_args__ = (
        UniqueConstraint("file_id", "version", name="uq_file_versions_file_version"),
    )

    def __repr__(self):
        return f"<FileVersion(file_id={self.file_id}, version={self.version}, size={self.size})>"


class FileRecord(Base):
    """
    File metadata record.
    Maps to the 'files' table.

    ``size`` and ``storage_key`` always mirror the version numbered
    ``current_version``.
    """
    __tablename__ = "files"

    # Primary Key
    id = Column(String(36), primary_key=True, default=new_id)

    # Naming
    name = Column(String(255), nullable=False)
    original_name = Column(String(255), nullable=False)
    description = Column(String(500), nullable=True)
    mime_type = Column(String(255), nullable=False, index=True)
    extension = Column(String(32), nullable=False, default="")

    # Current version mirror
    size = Column(BigInteger, nullable=False)
    storage_key = Column(String(1024), nullable=False)
    current_version = Column(Integer, default=1, nullable=False)

    # Placement
    backend_id = Column(String(36), ForeignKey("storage_backends.id"), nullable=False, index=True)
    content_hash = Column(String(128), nullable=False, index=True)
    owner_id = Column(String(36), nullable=False, index=True)
    folder_id = Column(String(36), ForeignKey("folders.id"), nullable=True, index=True)
    is_public = Column(Boolean, default=False, nullable=False)
    tags = Column(JSONType, nullable=False, default=list)

    # Access counters
    views = Column(BigInteger, default=0, nullable=False)
    downloads = Column(BigInteger, default=0, nullable=False)
    last_accessed_at = Column(DateTime(timezone=True), nullable=True)

    # Soft delete
    is_deleted = Column(Boolean, default=False, nullable=False, index=True)
    deleted_at = Column(DateTime(timezone=True), nullable=True)
    deleted_by = Column(String(36), nullable=True)

    # Timestamps
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False, index=True)
    updated_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    versions = relationship(
        "FileVersion",
        back_populates="file",
        order_by="FileVersion.version",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        Index("idx_files_owner_deleted", "owner_id", "is_deleted"),
        Index("idx_files_folder_deleted", "folder_id", "is_deleted"),
        Index("idx_files_hash_backend", "content_hash", "backend_id"),
    )

    def __repr__(self):
        return f"<FileRecord(id={self.id}, name={self.name}, version={self.current_version})>"

    @property
    def category(self) -> str:
        """Coarse file type derived from the MIME type."""
        mime = self.mime_type or ""
        if mime.startswith("image/"):
            return "image"
        if mime.startswith("video/"):
            return "video"
        if mime.startswith("audio/"):
            return "audio"
        if mime == "application/pdf":
            return "pdf"
        if mime.startswith("text/") or mime == "application/json":
            return "text"
        return "other"

    @property
    def stored_bytes(self) -> int:
        """Bytes held across every version of this file."""
        return sum(v.size for v in self.versions)
