"""
Storage engine wiring.

Process-wide state (quota ledger, per-owner locks, the default-switch lock
and the health monitor) lives on one ``StorageEngine``; session-scoped
services are built from it per request.
"""
import logging
import threading
from typing import Callable, Dict, Optional, Sequence

from sqlalchemy.orm import Session

from cloudnest.core.config import Settings, settings as default_settings
from cloudnest.core.locks import KeyedLock
from cloudnest.db.session import SessionLocal
from cloudnest.models.storage_backend import BackendKind
from cloudnest.storage.admission import AdmissionController
from cloudnest.storage.catalog import FileCatalog
from cloudnest.storage.cleanup import CleanupAdvisor
from cloudnest.storage.deduplication import DuplicateDetector
from cloudnest.storage.folders import FolderTree
from cloudnest.storage.health import Checker, HealthMonitor, HealthProbe
from cloudnest.storage.quota import QuotaLedger, QuotaState
from cloudnest.storage.registry import StorageBackendRegistry

logger = logging.getLogger(__name__)


class StorageEngine:
    """
    Container for the storage admission and hierarchy services
    """

    def __init__(
        self,
        config: Optional[Settings] = None,
        session_factory: Callable[[], Session] = SessionLocal,
        checkers: Optional[Dict[BackendKind, Checker]] = None,
    ):
        self.config = config or default_settings
        self.session_factory = session_factory
        self.owner_locks = KeyedLock()
        self.default_lock = threading.Lock()
        self.ledger = QuotaLedger(
            default_limit_bytes=self.config.DEFAULT_QUOTA_BYTES,
            warning_threshold=self.config.QUOTA_WARNING_THRESHOLD,
            owner_locks=self.owner_locks,
        )
        self.probe = HealthProbe(
            checkers=checkers,
            timeout_factor=self.config.HEALTH_PROBE_TIMEOUT_FACTOR,
            max_timeout_seconds=self.config.HEALTH_PROBE_MAX_TIMEOUT_SECONDS,
            concurrency=self.config.HEALTH_PROBE_CONCURRENCY,
        )
        self.monitor = HealthMonitor(
            probe=self.probe,
            session_factory=session_factory,
            registry_factory=self.registry,
            interval_seconds=self.config.HEALTH_CHECK_INTERVAL_SECONDS,
            stale_after_seconds=self.config.HEALTH_STALE_AFTER_SECONDS,
        )

    def registry(self, db: Session) -> StorageBackendRegistry:
        return StorageBackendRegistry(
            db,
            default_lock=self.default_lock,
            healthy_threshold=self.config.HEALTH_HEALTHY_THRESHOLD,
            unhealthy_threshold=self.config.HEALTH_UNHEALTHY_THRESHOLD,
        )

    def catalog(self, db: Session, track_usage: bool = True) -> FileCatalog:
        """
        Args:
            track_usage: Report usage deltas to the ledger. Off for callers
                that account for quota themselves (the upload service).
        """
        return FileCatalog(
            db,
            on_usage_delta=self.ledger.apply_delta if track_usage else None,
            count_soft_deleted=self.config.QUOTA_COUNT_SOFT_DELETED,
        )

    def folders(self, db: Session) -> FolderTree:
        return FolderTree(
            db,
            self.catalog(db),
            owner_locks=self.owner_locks,
            max_depth=self.config.MAX_FOLDER_DEPTH,
            max_path_length=self.config.MAX_PATH_LENGTH,
        )

    def admission(self, db: Session, allowed_mime_types: Optional[Sequence[str]] = None) -> AdmissionController:
        return AdmissionController(
            self.ledger,
            self.registry(db),
            self.catalog(db),
            max_file_size=self.config.MAX_FILE_SIZE,
            allowed_mime_types=(
                self.config.ALLOWED_MIME_TYPES if allowed_mime_types is None else allowed_mime_types
            ),
        )

    def cleanup(self, db: Session) -> CleanupAdvisor:
        return CleanupAdvisor(self.catalog(db))

    def duplicates(self, db: Session) -> DuplicateDetector:
        return DuplicateDetector(self.catalog(db))

    def ensure_quota_loaded(
        self,
        db: Session,
        owner_id: str,
        limit_bytes: Optional[int] = None,
    ) -> QuotaState:
        """
        Hydrate an owner's quota from the catalog on first use.

        Later calls only update the limit if one is given.
        """
        with self.ledger.owner_lock(owner_id):
            if not self.ledger.is_loaded(owner_id):
                used = self.catalog(db).usage_bytes(owner_id)
                return self.ledger.hydrate(owner_id, used, limit_bytes)
            if limit_bytes is not None and self.ledger.state(owner_id).limit_bytes != limit_bytes:
                return self.ledger.set_limit(owner_id, limit_bytes)
            return self.ledger.state(owner_id)
