"""
Storage Backend Health Probing

Connectivity checks against storage backends, bounded by a hard per-probe
deadline, plus a monitor that feeds results into the registry's health
state machine on a schedule or on demand.

A probe never raises: timeouts and backend errors become failed results.
"""
import asyncio
import inspect
import logging
import math
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Union

import urllib3
from minio import Minio
from sqlalchemy import create_engine, make_url, text
from sqlalchemy.pool import NullPool
from sqlalchemy.orm import Session

from cloudnest.core.exceptions import BackendProbeTimeout
from cloudnest.metrics import record_probe
from cloudnest.models.base import as_utc, utcnow
from cloudnest.models.storage_backend import BackendKind
from cloudnest.schemas.credentials import (
    EmbeddedStoreCredentials,
    S3CompatibleCredentials,
    parse_credentials,
)
from cloudnest.storage.registry import BackendSnapshot, StorageBackendRegistry

logger = logging.getLogger(__name__)

# (snapshot, timeout_seconds) -> None; raises on failure
Checker = Callable[[BackendSnapshot, float], Union[None, Awaitable[None]]]


@dataclass
class ProbeResult:
    """
    Outcome of one health probe
    """
    backend_id: str
    ok: bool
    latency_ms: float
    error: Optional[str] = None
    timed_out: bool = False
    checked_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary"""
        return {
            "backend_id": self.backend_id,
            "ok": self.ok,
            "latency_ms": round(self.latency_ms, 2),
            "error": self.error,
            "timed_out": self.timed_out,
            "checked_at": self.checked_at.isoformat(),
        }


def check_s3_compatible(snapshot: BackendSnapshot, timeout: float) -> None:
    """Verify the configured bucket is reachable with the stored keys."""
    creds = parse_credentials(snapshot.kind, snapshot.credentials)
    if not isinstance(creds, S3CompatibleCredentials):
        raise TypeError(f"Expected S3 credentials for {snapshot.kind.value}")

    # The SDK default is a five minute timeout with retries
    http_client = urllib3.PoolManager(
        timeout=urllib3.Timeout(connect=timeout, read=timeout),
        retries=urllib3.Retry(total=0),
    )
    client = Minio(
        creds.resolved_endpoint,
        access_key=creds.access_key_id,
        secret_key=creds.secret_access_key,
        region=creds.region,
        secure=creds.secure,
        http_client=http_client,
    )
    try:
        exists = client.bucket_exists(creds.bucket)
    finally:
        http_client.clear()
    if not exists:
        raise LookupError(f"Bucket '{creds.bucket}' does not exist")


def deadline_connect_args(database_url: str, timeout: float) -> Dict[str, Any]:
    """Driver arguments that bound connecting (and, for PostgreSQL, querying) by ``timeout``."""
    backend = make_url(database_url).get_backend_name()
    if backend == "sqlite":
        return {"timeout": timeout}
    if backend == "postgresql":
        seconds = max(1, math.ceil(timeout))
        return {
            "connect_timeout": seconds,
            "options": f"-c statement_timeout={int(timeout * 1000)}",
        }
    return {}


def check_embedded_store(snapshot: BackendSnapshot, timeout: float) -> None:
    """Open a connection to the blob store database and run a trivial query."""
    creds = parse_credentials(snapshot.kind, snapshot.credentials)
    if not isinstance(creds, EmbeddedStoreCredentials):
        raise TypeError("Expected embedded store credentials")

    engine = create_engine(
        creds.database_url,
        poolclass=NullPool,
        connect_args=deadline_connect_args(creds.database_url, timeout),
    )
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
    finally:
        engine.dispose()


DEFAULT_CHECKERS: Dict[BackendKind, Checker] = {
    BackendKind.AWS_S3: check_s3_compatible,
    BackendKind.CLOUDFLARE_R2: check_s3_compatible,
    BackendKind.WASABI: check_s3_compatible,
    BackendKind.EMBEDDED: check_embedded_store,
}


class HealthProbe:
    """
    Runs connectivity checks with a per-probe deadline

    The deadline is the backend's upload timeout scaled by
    ``timeout_factor`` and capped at ``max_timeout_seconds``. Sync checkers
    run in a worker thread so a hung SDK call cannot block the event loop.
    """

    def __init__(
        self,
        checkers: Optional[Dict[BackendKind, Checker]] = None,
        timeout_factor: float = 0.25,
        max_timeout_seconds: float = 10.0,
        concurrency: int = 4,
    ):
        self.checkers = dict(DEFAULT_CHECKERS if checkers is None else checkers)
        self.timeout_factor = timeout_factor
        self.max_timeout_seconds = max_timeout_seconds
        self.concurrency = max(1, concurrency)

    def timeout_for(self, snapshot: BackendSnapshot) -> float:
        scaled = snapshot.upload_timeout_seconds * self.timeout_factor
        return max(0.001, min(scaled, self.max_timeout_seconds))

    async def probe(self, snapshot: BackendSnapshot) -> ProbeResult:
        """
        Probe one backend.

        Returns:
            ProbeResult; failures and timeouts are reported, never raised
        """
        timeout = self.timeout_for(snapshot)
        kind = snapshot.kind.value
        started = time.perf_counter()

        def elapsed_ms() -> float:
            return (time.perf_counter() - started) * 1000

        checker = self.checkers.get(snapshot.kind)
        if checker is None:
            return ProbeResult(snapshot.id, False, 0.0, error=f"No health checker for kind '{kind}'")

        try:
            if inspect.iscoroutinefunction(checker):
                work = checker(snapshot, timeout)
            else:
                work = asyncio.to_thread(checker, snapshot, timeout)
            try:
                await asyncio.wait_for(work, timeout=timeout)
            except asyncio.TimeoutError:
                raise BackendProbeTimeout(snapshot.id, timeout)
        except BackendProbeTimeout as e:
            latency = elapsed_ms()
            record_probe(kind, "timeout", latency / 1000)
            logger.warning(f"Health probe timed out for backend '{snapshot.name}': {e.message}")
            return ProbeResult(snapshot.id, False, latency, error=e.message, timed_out=True)
        except Exception as e:
            latency = elapsed_ms()
            record_probe(kind, "failure", latency / 1000)
            logger.warning(f"Health probe failed for backend '{snapshot.name}': {type(e).__name__}: {e}")
            return ProbeResult(snapshot.id, False, latency, error=f"{type(e).__name__}: {e}")

        latency = elapsed_ms()
        record_probe(kind, "success", latency / 1000)
        logger.debug(f"Health probe ok for backend '{snapshot.name}' in {latency:.1f}ms")
        return ProbeResult(snapshot.id, True, latency)

    async def probe_many(self, snapshots: Iterable[BackendSnapshot]) -> List[ProbeResult]:
        """
        Probe backends concurrently, at most ``concurrency`` at a time.

        Each probe is bounded by its own deadline, so one hung backend only
        holds its own slot.
        """
        semaphore = asyncio.Semaphore(self.concurrency)

        async def bounded(snapshot: BackendSnapshot) -> ProbeResult:
            async with semaphore:
                return await self.probe(snapshot)

        return list(await asyncio.gather(*(bounded(s) for s in snapshots)))


class HealthMonitor:
    """
    Applies probe results to the registry

    - ``run_once``: probe every active backend (admin "run now")
    - ``check_backend``: probe one backend
    - ``refresh_if_stale``: lazy per-request probe when the last check is old
    - ``start``/``stop``: periodic background loop
    """

    def __init__(
        self,
        probe: HealthProbe,
        session_factory: Callable[[], Session],
        registry_factory: Callable[[Session], StorageBackendRegistry],
        interval_seconds: float = 60,
        stale_after_seconds: float = 300,
    ):
        self.probe = probe
        self.session_factory = session_factory
        self.registry_factory = registry_factory
        self.interval_seconds = interval_seconds
        self.stale_after_seconds = stale_after_seconds
        self._task: Optional[asyncio.Task] = None
        self._stop_event: Optional[asyncio.Event] = None

    async def run_once(self, db: Optional[Session] = None) -> List[ProbeResult]:
        """Probe all active backends and record the results."""
        own_session = db is None
        db = db or self.session_factory()
        try:
            registry = self.registry_factory(db)
            snapshots = registry.snapshots(active_only=True)
            if not snapshots:
                return []

            results = await self.probe.probe_many(snapshots)
            for result in results:
                registry.apply_probe_result(result)

            failed = sum(1 for r in results if not r.ok)
            logger.info(f"Health check complete: {len(results) - failed}/{len(results)} backends ok")
            return results
        finally:
            if own_session:
                db.close()

    async def check_backend(self, backend_id: str, db: Optional[Session] = None) -> ProbeResult:
        """Probe a single backend and record the result."""
        own_session = db is None
        db = db or self.session_factory()
        try:
            registry = self.registry_factory(db)
            snapshot = BackendSnapshot.from_config(registry.get(backend_id))
            result = await self.probe.probe(snapshot)
            registry.apply_probe_result(result)
            return result
        finally:
            if own_session:
                db.close()

    async def refresh_if_stale(self, backend_id: str, db: Optional[Session] = None) -> Optional[ProbeResult]:
        """
        Probe a backend if its last check is older than the staleness window.

        Returns:
            The new result, or None if the recorded state is still fresh
        """
        own_session = db is None
        db = db or self.session_factory()
        try:
            config = self.registry_factory(db).get(backend_id)
            last = as_utc(config.last_health_check)
            if last is not None and utcnow() - last < timedelta(seconds=self.stale_after_seconds):
                return None
            return await self.check_backend(backend_id, db=db)
        finally:
            if own_session:
                db.close()

    async def refresh_stale(self, db: Optional[Session] = None) -> List[ProbeResult]:
        """Lazily refresh every active backend whose health is stale."""
        if self.stale_after_seconds <= 0:
            return []
        own_session = db is None
        db = db or self.session_factory()
        try:
            registry = self.registry_factory(db)
            cutoff = utcnow() - timedelta(seconds=self.stale_after_seconds)
            stale = [
                BackendSnapshot.from_config(c)
                for c in registry.list_all(include_inactive=False)
                if c.last_health_check is None or as_utc(c.last_health_check) < cutoff
            ]
            if not stale:
                return []
            results = await self.probe.probe_many(stale)
            for result in results:
                registry.apply_probe_result(result)
            return results
        finally:
            if own_session:
                db.close()

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start the periodic loop on the running event loop."""
        if self.interval_seconds <= 0 or self.is_running:
            return
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self._loop())
        logger.info(f"Started backend health monitor (interval={self.interval_seconds}s)")

    async def stop(self) -> None:
        if self._stop_event is not None:
            self._stop_event.set()
        if self._task is not None and not self._task.done():
            try:
                await asyncio.wait_for(self._task, timeout=5.0)
            except asyncio.TimeoutError:
                self._task.cancel()
                try:
                    await self._task
                except asyncio.CancelledError:
                    pass
        self._task = None
        logger.info("Stopped backend health monitor")

    async def _loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval_seconds)
                break
            except asyncio.TimeoutError:
                pass

            try:
                await self.run_once()
            except Exception as e:
                logger.error(f"Error in backend health monitor loop: {e}", exc_info=True)
