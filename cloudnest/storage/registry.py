"""
Storage Backend Registry

Holds configured storage backends, their capability flags and live health
state, and selects the backend new writes go to.

Implements:
- Backend registration with per-kind credential validation
- Default selection with fallback to the first healthy backend
- Atomic default switching
- Health state machine with hysteresis
- Usage accounting and aggregated statistics
"""
import logging
import threading
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

import pydantic
from sqlalchemy.orm import Session

from cloudnest.core.exceptions import (
    InvalidOperationError,
    NoBackendAvailableError,
    NotFoundError,
    ValidationError,
)
from cloudnest.metrics import record_health_transition, update_backend_health
from cloudnest.models.base import as_utc, utcnow
from cloudnest.models.storage_backend import BackendKind, HealthState, StorageBackendConfig
from cloudnest.schemas.credentials import parse_credentials

logger = logging.getLogger(__name__)


DEFAULT_CAPABILITIES: Dict[BackendKind, Dict[str, bool]] = {
    BackendKind.AWS_S3: {
        "multipart": True, "versioning": True, "encryption": True, "cdn": True, "deduplication": False,
    },
    BackendKind.CLOUDFLARE_R2: {
        "multipart": True, "versioning": False, "encryption": True, "cdn": True, "deduplication": False,
    },
    BackendKind.WASABI: {
        "multipart": True, "versioning": True, "encryption": True, "cdn": False, "deduplication": False,
    },
    BackendKind.EMBEDDED: {
        "multipart": False, "versioning": True, "encryption": True, "cdn": False, "deduplication": True,
    },
}

SETTING_FIELDS = (
    "upload_timeout_ms",
    "retry_attempts",
    "chunk_size",
    "max_file_size",
    "enable_compression",
    "enable_encryption",
    "enable_versioning",
    "enable_deduplication",
    "auto_cleanup",
    "cleanup_days",
)


def default_settings(kind: BackendKind) -> Dict[str, Any]:
    """Operational defaults for a newly registered backend of ``kind``."""
    capabilities = DEFAULT_CAPABILITIES[kind]
    return {
        "upload_timeout_ms": 30000,
        "retry_attempts": 3,
        "chunk_size": 5 * 1024 * 1024,
        "max_file_size": None,
        "enable_compression": False,
        "enable_encryption": capabilities["encryption"],
        "enable_versioning": capabilities["versioning"],
        "enable_deduplication": capabilities["deduplication"],
        "auto_cleanup": True,
        "cleanup_days": 30,
    }


def next_health_state(
    state: HealthState,
    successes: int,
    failures: int,
    ok: bool,
    healthy_threshold: int = 2,
    unhealthy_threshold: int = 3,
) -> Tuple[HealthState, int, int]:
    """
    Apply one probe result to the health state machine.

    Unknown moves on the first result. Leaving Healthy takes
    ``unhealthy_threshold`` consecutive failures and leaving Unhealthy takes
    ``healthy_threshold`` consecutive successes.

    Returns:
        (new state, consecutive successes, consecutive failures)
    """
    if ok:
        successes, failures = successes + 1, 0
        if state == HealthState.UNKNOWN:
            return HealthState.HEALTHY, successes, failures
        if state == HealthState.UNHEALTHY and successes >= healthy_threshold:
            return HealthState.HEALTHY, successes, failures
        return state, successes, failures

    successes, failures = 0, failures + 1
    if state == HealthState.UNKNOWN:
        return HealthState.UNHEALTHY, successes, failures
    if state == HealthState.HEALTHY and failures >= unhealthy_threshold:
        return HealthState.UNHEALTHY, successes, failures
    return state, successes, failures


@dataclass(frozen=True)
class BackendSnapshot:
    """
    Detached copy of the fields a health probe needs.
    Lets probes run without holding a database session.
    """
    id: str
    name: str
    kind: BackendKind
    credentials: Dict[str, Any]
    upload_timeout_seconds: float
    health_state: HealthState

    @classmethod
    def from_config(cls, config: StorageBackendConfig) -> "BackendSnapshot":
        return cls(
            id=config.id,
            name=config.name,
            kind=BackendKind(config.kind),
            credentials=dict(config.credentials or {}),
            upload_timeout_seconds=config.upload_timeout_seconds,
            health_state=HealthState(config.health_state),
        )


class StorageBackendRegistry:
    """
    Storage backend registry service

    One instance per database session. ``default_lock`` must be shared by
    every registry in the process so default switches are serialized.
    """

    def __init__(
        self,
        db: Session,
        default_lock: Optional[threading.Lock] = None,
        healthy_threshold: int = 2,
        unhealthy_threshold: int = 3,
    ):
        self.db = db
        self.default_lock = default_lock or threading.Lock()
        self.healthy_threshold = healthy_threshold
        self.unhealthy_threshold = unhealthy_threshold

    # ------------------------------------------------------------------
    # Registration & lookup
    # ------------------------------------------------------------------

    def register(
        self,
        name: str,
        kind: BackendKind,
        credentials: Dict[str, Any],
        capabilities: Optional[Dict[str, bool]] = None,
        is_default: bool = False,
        **settings: Any,
    ) -> StorageBackendConfig:
        """
        Register a new backend.

        The backend starts in the Unknown health state and is not eligible
        for writes until its first successful probe.

        Raises:
            ValidationError: If the credentials do not match the kind
        """
        kind = BackendKind(kind)
        validated = self._validate_credentials(kind, credentials)

        unknown = set(settings) - set(SETTING_FIELDS)
        if unknown:
            raise ValidationError(f"Unknown backend settings: {', '.join(sorted(unknown))}", field="settings")

        merged_capabilities = dict(DEFAULT_CAPABILITIES[kind])
        merged_capabilities.update(capabilities or {})
        values = default_settings(kind)
        values.update({k: v for k, v in settings.items() if v is not None})

        config = StorageBackendConfig(
            name=name,
            kind=kind,
            credentials=validated.model_dump(exclude={"kind"}),
            capabilities=merged_capabilities,
            **values,
        )
        try:
            self.db.add(config)
            self.db.commit()
            self.db.refresh(config)
        except Exception:
            self.db.rollback()
            raise

        logger.info(f"Registered storage backend '{name}' ({kind.value}) id={config.id}")

        if is_default:
            config = self.set_default(config.id)
        return config

    def _validate_credentials(self, kind: BackendKind, credentials: Dict[str, Any]):
        try:
            return parse_credentials(kind, credentials)
        except pydantic.ValidationError as e:
            errors = "; ".join(
                f"{'.'.join(str(p) for p in err['loc'][1:]) or 'credentials'}: {err['msg']}"
                for err in e.errors()
            )
            raise ValidationError(f"Invalid {kind.value} credentials: {errors}", field="credentials")

    def get(self, backend_id: str) -> StorageBackendConfig:
        config = self.db.query(StorageBackendConfig).filter(StorageBackendConfig.id == backend_id).first()
        if not config:
            raise NotFoundError("StorageBackend", backend_id)
        return config

    def list_all(self, include_inactive: bool = True) -> List[StorageBackendConfig]:
        query = self.db.query(StorageBackendConfig)
        if not include_inactive:
            query = query.filter(StorageBackendConfig.is_active.is_(True))
        return query.order_by(StorageBackendConfig.name).all()

    def list_active(self) -> List[StorageBackendConfig]:
        """Active AND healthy backends, ordered by name."""
        return (
            self.db.query(StorageBackendConfig)
            .filter(
                StorageBackendConfig.is_active.is_(True),
                StorageBackendConfig.health_state == HealthState.HEALTHY,
            )
            .order_by(StorageBackendConfig.name)
            .all()
        )

    def find_by_kind(self, kind: BackendKind) -> List[StorageBackendConfig]:
        return (
            self.db.query(StorageBackendConfig)
            .filter(
                StorageBackendConfig.kind == BackendKind(kind),
                StorageBackendConfig.is_active.is_(True),
            )
            .order_by(StorageBackendConfig.name)
            .all()
        )

    def snapshots(self, active_only: bool = True) -> List[BackendSnapshot]:
        return [BackendSnapshot.from_config(c) for c in self.list_all(include_inactive=not active_only)]

    # ------------------------------------------------------------------
    # Default selection
    # ------------------------------------------------------------------

    def get_default(self) -> Optional[StorageBackendConfig]:
        """
        Backend new writes should go to.

        The flagged default if it is active and healthy, otherwise the first
        active and healthy backend by name, otherwise None.
        """
        default = (
            self.db.query(StorageBackendConfig)
            .filter(StorageBackendConfig.is_default.is_(True))
            .first()
        )
        if default is not None and default.is_eligible:
            return default

        active = self.list_active()
        if not active:
            return None
        if default is not None:
            logger.warning(
                f"Default backend '{default.name}' is not available "
                f"(active={default.is_active}, health={HealthState(default.health_state).value}); "
                f"falling back to '{active[0].name}'"
            )
        return active[0]

    def set_default(self, backend_id: str) -> StorageBackendConfig:
        """
        Make ``backend_id`` the only default.

        Clearing the old flag and setting the new one happen in a single
        transaction, serialized across the process by ``default_lock``.

        Raises:
            NotFoundError: Unknown backend
            InvalidOperationError: Backend is deactivated
        """
        with self.default_lock:
            config = self.get(backend_id)
            if not config.is_active:
                raise InvalidOperationError(
                    f"Cannot make inactive backend '{config.name}' the default",
                    {"backend_id": backend_id},
                )
            try:
                self.db.query(StorageBackendConfig).filter(
                    StorageBackendConfig.id != backend_id,
                    StorageBackendConfig.is_default.is_(True),
                ).update({StorageBackendConfig.is_default: False}, synchronize_session="fetch")
                config.is_default = True
                config.updated_at = utcnow()
                self.db.commit()
                self.db.refresh(config)
            except Exception:
                self.db.rollback()
                raise

        logger.info(f"Default storage backend set to '{config.name}' ({config.id})")
        return config

    def select_backend(self, preferred_id: Optional[str] = None) -> StorageBackendConfig:
        """
        Pick the backend for a write.

        Args:
            preferred_id: Explicit backend, e.g. a retry after the default
                was unavailable. Must itself be active and healthy.

        Raises:
            NoBackendAvailableError: Nothing eligible; carries the unhealthy list
        """
        if preferred_id:
            config = self.get(preferred_id)
            if config.is_eligible:
                return config
            raise NoBackendAvailableError(
                f"Storage backend '{config.name}' is not available",
                self.unhealthy_summary(),
            )

        config = self.get_default()
        if config is None:
            raise NoBackendAvailableError(
                "No active and healthy storage backend is available",
                self.unhealthy_summary(),
            )
        return config

    def unhealthy_summary(self) -> List[Dict[str, Any]]:
        """Active backends that cannot take writes, for error payloads."""
        backends = self.list_all(include_inactive=False)
        return [
            {
                "id": b.id,
                "name": b.name,
                "kind": BackendKind(b.kind).value,
                "health_state": HealthState(b.health_state).value,
                "last_health_check": as_utc(b.last_health_check).isoformat() if b.last_health_check else None,
            }
            for b in backends
            if not b.is_healthy
        ]

    # ------------------------------------------------------------------
    # Administration
    # ------------------------------------------------------------------

    def update_settings(self, backend_id: str, **changes: Any) -> StorageBackendConfig:
        """Update operational settings, capabilities or the display name."""
        config = self.get(backend_id)
        allowed = set(SETTING_FIELDS) | {"name", "capabilities"}
        unknown = set(changes) - allowed
        if unknown:
            raise ValidationError(f"Unknown backend settings: {', '.join(sorted(unknown))}", field="settings")

        try:
            for key, value in changes.items():
                if value is None and key != "max_file_size":
                    continue
                if key == "capabilities":
                    merged = dict(config.capabilities or {})
                    merged.update(value)
                    config.capabilities = merged
                else:
                    setattr(config, key, value)
            config.updated_at = utcnow()
            self.db.commit()
            self.db.refresh(config)
        except Exception:
            self.db.rollback()
            raise

        logger.info(f"Updated settings for backend '{config.name}': {sorted(changes)}")
        return config

    def deactivate(self, backend_id: str) -> StorageBackendConfig:
        """Take a backend out of rotation. Rows are never hard-deleted."""
        with self.default_lock:
            config = self.get(backend_id)
            try:
                config.is_active = False
                config.is_default = False
                config.updated_at = utcnow()
                self.db.commit()
                self.db.refresh(config)
            except Exception:
                self.db.rollback()
                raise

        update_backend_health(config.id, BackendKind(config.kind).value, False)
        logger.info(f"Deactivated storage backend '{config.name}'")
        return config

    def activate(self, backend_id: str) -> StorageBackendConfig:
        config = self.get(backend_id)
        try:
            config.is_active = True
            config.updated_at = utcnow()
            self.db.commit()
            self.db.refresh(config)
        except Exception:
            self.db.rollback()
            raise

        logger.info(f"Activated storage backend '{config.name}'")
        return config

    # ------------------------------------------------------------------
    # Health & usage
    # ------------------------------------------------------------------

    def apply_probe_result(self, result) -> StorageBackendConfig:
        """
        Feed a probe result through the health state machine and persist it.

        Args:
            result: ProbeResult from the health probe
        """
        config = self.get(result.backend_id)
        previous = HealthState(config.health_state)
        state, successes, failures = next_health_state(
            previous,
            config.consecutive_successes,
            config.consecutive_failures,
            result.ok,
            self.healthy_threshold,
            self.unhealthy_threshold,
        )

        try:
            config.health_state = state
            config.consecutive_successes = successes
            config.consecutive_failures = failures
            config.last_health_check = result.checked_at
            config.last_latency_ms = result.latency_ms
            if result.ok:
                config.last_error = None
            else:
                config.last_error = (result.error or "probe failed")[:1024]
                config.error_count = (config.error_count or 0) + 1
            self.db.commit()
            self.db.refresh(config)
        except Exception:
            self.db.rollback()
            raise

        kind = BackendKind(config.kind).value
        update_backend_health(config.id, kind, state == HealthState.HEALTHY)
        if state != previous:
            record_health_transition(state.value)
            log = logger.info if state == HealthState.HEALTHY else logger.warning
            log(f"Backend '{config.name}' health: {previous.value} -> {state.value}")

        return config

    def record_usage(
        self,
        backend_id: str,
        delta_files: int,
        delta_bytes: int,
        commit: bool = True,
    ) -> StorageBackendConfig:
        """
        Adjust cumulative usage counters.

        Args:
            commit: Set False to leave the change in the caller's transaction
        """
        config = self.get(backend_id)
        config.total_files = max(0, (config.total_files or 0) + delta_files)
        config.total_bytes = max(0, (config.total_bytes or 0) + delta_bytes)
        config.last_used_at = utcnow()

        if commit:
            try:
                self.db.commit()
                self.db.refresh(config)
            except Exception:
                self.db.rollback()
                raise
        return config

    def aggregate_stats(self) -> Dict[str, Any]:
        """Usage and health totals across all backends."""
        backends = self.list_all()
        by_kind: Dict[str, Dict[str, int]] = {}
        for b in backends:
            entry = by_kind.setdefault(BackendKind(b.kind).value, {"backends": 0, "files": 0, "bytes": 0})
            entry["backends"] += 1
            entry["files"] += b.total_files or 0
            entry["bytes"] += b.total_bytes or 0

        default = next((b for b in backends if b.is_default), None)
        return {
            "total_backends": len(backends),
            "active_backends": sum(1 for b in backends if b.is_active),
            "healthy_backends": sum(1 for b in backends if b.is_eligible),
            "total_files": sum(b.total_files or 0 for b in backends),
            "total_bytes": sum(b.total_bytes or 0 for b in backends),
            "total_errors": sum(b.error_count or 0 for b in backends),
            "default_backend_id": default.id if default else None,
            "by_kind": by_kind,
        }
