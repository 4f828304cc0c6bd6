"""
Storage Quota Ledger

Tracks per-owner storage usage against a limit. Pure accounting: the ledger
never touches the database or a storage backend. Callers hydrate it from the
catalog and feed it usage deltas as files are committed.

Implements:
- Capacity checks (single file and batch)
- Checked commits serialized per owner
- Unchecked usage deltas for catalog callbacks (soft-delete/restore)
- Quota-warning events for an external notifier
"""
import logging
from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Callable, Dict, Iterable, Iterator, List, Optional, Any

from cloudnest.core.exceptions import QuotaExceededError
from cloudnest.core.locks import KeyedLock
from cloudnest.metrics import quota_warnings_total, update_quota_metrics
from cloudnest.models.base import utcnow

logger = logging.getLogger(__name__)


@dataclass
class QuotaState:
    """
    Usage snapshot for one owner
    """
    owner_id: str
    limit_bytes: int
    used_bytes: int = 0
    warning_threshold: float = 0.9

    @property
    def available_bytes(self) -> int:
        """Get available space in bytes"""
        return max(0, self.limit_bytes - self.used_bytes)

    @property
    def usage_percentage(self) -> float:
        """Get usage percentage"""
        if self.limit_bytes == 0:
            return 100.0 if self.used_bytes > 0 else 0.0
        return (self.used_bytes / self.limit_bytes) * 100

    @property
    def is_exceeded(self) -> bool:
        return self.used_bytes > self.limit_bytes

    @property
    def is_near_limit(self) -> bool:
        """Check if usage is at or above the warning threshold"""
        return self.usage_percentage >= self.warning_threshold * 100

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary"""
        return {
            "owner_id": self.owner_id,
            "used_bytes": self.used_bytes,
            "limit_bytes": self.limit_bytes,
            "available_bytes": self.available_bytes,
            "percentage": round(self.usage_percentage, 2),
            "is_exceeded": self.is_exceeded,
            "is_near_limit": self.is_near_limit,
        }


@dataclass
class CapacityCheck:
    """
    Result of checking whether incoming bytes fit an owner's quota
    """
    owner_id: str
    requested_bytes: int
    available_bytes: int
    allowed: bool
    file_count: int = 1

    @property
    def shortfall_bytes(self) -> int:
        return max(0, self.requested_bytes - self.available_bytes)

    @property
    def exceeds_by(self) -> int:
        return self.shortfall_bytes

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary"""
        return {
            "owner_id": self.owner_id,
            "requested_bytes": self.requested_bytes,
            "available_bytes": self.available_bytes,
            "file_count": self.file_count,
            "allowed": self.allowed,
            "exceeds_by": self.exceeds_by,
        }


@dataclass
class QuotaWarningEvent:
    """
    Emitted once when an owner's usage crosses the warning threshold.
    Handed to registered listeners as plain data.
    """
    owner_id: str
    used_bytes: int
    limit_bytes: int
    percentage: float
    occurred_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary"""
        return {
            "owner_id": self.owner_id,
            "used_bytes": self.used_bytes,
            "limit_bytes": self.limit_bytes,
            "percentage": round(self.percentage, 2),
            "occurred_at": self.occurred_at.isoformat(),
        }


QuotaListener = Callable[[QuotaWarningEvent], None]


class QuotaLedger:
    """
    In-memory quota accounting

    All mutations for an owner run under that owner's lock. The lock is
    re-entrant and exposed through ``owner_lock`` so callers can hold it
    around a re-check plus their own commit.
    """

    def __init__(
        self,
        default_limit_bytes: int,
        warning_threshold: float = 0.9,
        owner_locks: Optional[KeyedLock] = None,
    ):
        """
        Initialize quota ledger

        Args:
            default_limit_bytes: Limit for owners with no explicit limit
            warning_threshold: Usage ratio (0.0-1.0) that triggers a warning event
            owner_locks: Shared per-owner locks (a private set is created if omitted)
        """
        self.default_limit_bytes = default_limit_bytes
        self.warning_threshold = warning_threshold
        self._locks = owner_locks or KeyedLock()
        self._states: Dict[str, QuotaState] = {}
        self._listeners: List[QuotaListener] = []

    @contextmanager
    def owner_lock(self, owner_id: str) -> Iterator[None]:
        """Serialize a check-then-commit sequence for one owner."""
        with self._locks.hold(owner_id):
            yield

    def add_listener(self, listener: QuotaListener) -> None:
        self._listeners.append(listener)

    def _state_for(self, owner_id: str) -> QuotaState:
        state = self._states.get(owner_id)
        if state is None:
            state = QuotaState(
                owner_id=owner_id,
                limit_bytes=self.default_limit_bytes,
                warning_threshold=self.warning_threshold,
            )
            self._states[owner_id] = state
        return state

    def is_loaded(self, owner_id: str) -> bool:
        return owner_id in self._states

    def hydrate(self, owner_id: str, used_bytes: int, limit_bytes: Optional[int] = None) -> QuotaState:
        """
        Seed an owner's usage from the catalog.

        Args:
            owner_id: Owner to seed
            used_bytes: Bytes currently counted against the owner
            limit_bytes: Explicit limit (keeps the current one if omitted)
        """
        with self._locks.hold(owner_id):
            state = self._state_for(owner_id)
            state.used_bytes = max(0, int(used_bytes))
            if limit_bytes is not None:
                state.limit_bytes = int(limit_bytes)
            update_quota_metrics(owner_id, state.used_bytes, state.limit_bytes)
            logger.debug(f"Hydrated quota for '{owner_id}': {state.used_bytes}/{state.limit_bytes} bytes")
            return replace(state)

    def set_limit(self, owner_id: str, limit_bytes: int) -> QuotaState:
        if limit_bytes < 0:
            raise ValueError("limit_bytes must not be negative")
        with self._locks.hold(owner_id):
            state = self._state_for(owner_id)
            state.limit_bytes = int(limit_bytes)
            update_quota_metrics(owner_id, state.used_bytes, state.limit_bytes)
            logger.info(f"Set quota for '{owner_id}' to {limit_bytes} bytes")
            return replace(state)

    def state(self, owner_id: str) -> QuotaState:
        """Copy of the owner's current quota state."""
        with self._locks.hold(owner_id):
            return replace(self._state_for(owner_id))

    def check_capacity(self, owner_id: str, incoming_bytes: int) -> CapacityCheck:
        """
        Check whether ``incoming_bytes`` fit the owner's remaining quota.

        Pure comparison against cached usage; mutates nothing.
        """
        with self._locks.hold(owner_id):
            state = self._state_for(owner_id)
            return CapacityCheck(
                owner_id=owner_id,
                requested_bytes=incoming_bytes,
                available_bytes=state.available_bytes,
                allowed=state.used_bytes + incoming_bytes <= state.limit_bytes,
            )

    def check_many(self, owner_id: str, sizes: Iterable[int]) -> CapacityCheck:
        """Check a batch of uploads as a whole."""
        sizes = list(sizes)
        check = self.check_capacity(owner_id, sum(sizes))
        check.file_count = len(sizes)
        return check

    def commit(self, owner_id: str, delta_bytes: int) -> QuotaState:
        """
        Add ``delta_bytes`` after re-checking capacity under the owner's lock.

        Raises:
            QuotaExceededError: If the delta would push usage over the limit
        """
        with self._locks.hold(owner_id):
            state = self._state_for(owner_id)
            if delta_bytes > 0 and state.used_bytes + delta_bytes > state.limit_bytes:
                logger.warning(
                    f"Quota exceeded for '{owner_id}': {delta_bytes} bytes requested, "
                    f"{state.available_bytes} bytes available"
                )
                raise QuotaExceededError(owner_id, delta_bytes, state.available_bytes)
            return self._apply(state, delta_bytes)

    def release(self, owner_id: str, released_bytes: int) -> QuotaState:
        """Give bytes back to an owner (purge or a rolled-back reservation)."""
        return self.apply_delta(owner_id, -abs(released_bytes))

    def apply_delta(self, owner_id: str, delta_bytes: int) -> QuotaState:
        """
        Apply a usage delta without a capacity check.

        Used as the catalog's usage callback: the write it reports has
        already been committed, so it must not be refused here.
        """
        with self._locks.hold(owner_id):
            return self._apply(self._state_for(owner_id), delta_bytes)

    def _apply(self, state: QuotaState, delta_bytes: int) -> QuotaState:
        was_near_limit = state.is_near_limit
        state.used_bytes = max(0, state.used_bytes + delta_bytes)
        update_quota_metrics(state.owner_id, state.used_bytes, state.limit_bytes)

        if delta_bytes > 0 and state.is_near_limit and not was_near_limit:
            self._emit_warning(state)

        return replace(state)

    def _emit_warning(self, state: QuotaState) -> None:
        event = QuotaWarningEvent(
            owner_id=state.owner_id,
            used_bytes=state.used_bytes,
            limit_bytes=state.limit_bytes,
            percentage=state.usage_percentage,
        )
        quota_warnings_total.inc()
        logger.warning(
            f"Quota warning for '{state.owner_id}': {state.usage_percentage:.1f}% used"
        )
        for listener in self._listeners:
            try:
                listener(event)
            except Exception as e:
                logger.error(f"Quota warning listener failed: {e}", exc_info=True)
