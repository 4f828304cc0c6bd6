"""
SQLAlchemy model for storage backend configurations.
Represents the storage_backends table in the database.
"""
from sqlalchemy import (
    Column,
    Integer,
    String,
    DateTime,
    Enum,
    Boolean,
    BigInteger,
    Float,
    Index,
)
import enum

from cloudnest.models.base import Base, JSONType, new_id, utcnow


class BackendKind(str, enum.Enum):
    """Physical storage backend kinds."""
    AWS_S3 = "aws"
    CLOUDFLARE_R2 = "cloudflare"
    WASABI = "wasabi"
    EMBEDDED = "embedded"  # database-backed blob store

    @property
    def is_s3_compatible(self) -> bool:
        return self is not BackendKind.EMBEDDED


class HealthState(str, enum.Enum):
    """Reported backend health."""
    UNKNOWN = "unknown"
    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"


class StorageBackendConfig(Base):
    """
    Storage backend configuration.
    Maps to the 'storage_backends' table.

    Rows are never hard-deleted: administrators deactivate them instead.
    The credential bundle is stored as JSON and must never be returned to
    untrusted readers (see schemas.storage_backend for the redacted view).
    """
    __tablename__ = "storage_backends"

    # Primary Key
    id = Column(String(36), primary_key=True, default=new_id)

    # Identity
    name = Column(String(100), nullable=False)
    kind = Column(Enum(BackendKind, name="backend_kind"), nullable=False, index=True)

    # Credentials (tagged union, validated by schemas.credentials)
    credentials = Column(JSONType, nullable=False)

    # Capability set: multipart, versioning, encryption, cdn, deduplication
    capabilities = Column(JSONType, nullable=False, default=dict)

    # Operational settings
    upload_timeout_ms = Column(Integer, default=30000, nullable=False)
    retry_attempts = Column(Integer, default=3, nullable=False)
    chunk_size = Column(Integer, default=5 * 1024 * 1024, nullable=False)
    max_file_size = Column(BigInteger, nullable=True)
    enable_compression = Column(Boolean, default=False, nullable=False)
    enable_encryption = Column(Boolean, default=False, nullable=False)
    enable_versioning = Column(Boolean, default=True, nullable=False)
    enable_deduplication = Column(Boolean, default=False, nullable=False)
    auto_cleanup = Column(Boolean, default=True, nullable=False)
    cleanup_days = Column(Integer, default=30, nullable=False)

    # Status
    is_active = Column(Boolean, default=True, nullable=False, index=True)
    is_default = Column(Boolean, default=False, nullable=False, index=True)

    # Health state machine
    health_state = Column(
        Enum(HealthState, name="health_state"),
        default=HealthState.UNKNOWN,
        nullable=False,
        index=True,
    )
    consecutive_successes = Column(Integer, default=0, nullable=False)
    consecutive_failures = Column(Integer, default=0, nullable=False)
    last_health_check = Column(DateTime(timezone=True), nullable=True)
    last_latency_ms = Column(Float, nullable=True)
    last_error = Column(String(1024), nullable=True)

    # Usage counters
    total_files = Column(BigInteger, default=0, nullable=False)
    total_bytes = Column(BigInteger, default=0, nullable=False)
    error_count = Column(Integer, default=0, nullable=False)
    last_used_at = Column(DateTime(timezone=True), nullable=True)

    # Timestamps
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    __table_args__ = (
        Index("idx_storage_backends_kind_active", "kind", "is_active"),
    )

    def __repr__(self):
        return f"<StorageBackendConfig(id={self.id}, name={self.name}, kind={self.kind})>"

    @property
    def is_healthy(self) -> bool:
        return self.health_state == HealthState.HEALTHY

    @property
    def is_eligible(self) -> bool:
        """Active and healthy backends are the only ones that may accept writes."""
        return bool(self.is_active) and self.is_healthy

    @property
    def upload_timeout_seconds(self) -> float:
        return self.upload_timeout_ms / 1000.0

    def supports(self, capability: str) -> bool:
        """Check a capability flag."""
        return bool((self.capabilities or {}).get(capability, False))

    @property
    def deduplication_enabled(self) -> bool:
        return bool(self.enable_deduplication)
