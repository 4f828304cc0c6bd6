"""
Storage backend administration endpoints.
Registry mutations and health checks require the admin role.
"""
import logging
from typing import List

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from cloudnest.api.v1.deps import get_engine
from cloudnest.core.security import Principal, require_admin
from cloudnest.db import get_db
from cloudnest.schemas.storage_backend import (
    BackendStatsResponse,
    BulkHealthCheckResponse,
    ProbeResultResponse,
    StorageBackendCreate,
    StorageBackendResponse,
    StorageBackendUpdate,
)
from cloudnest.storage.engine import StorageEngine

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/storage-backends", tags=["storage-backends"])


@router.get("", response_model=List[StorageBackendResponse])
async def list_backends(
    include_inactive: bool = False,
    admin: Principal = Depends(require_admin),
    engine: StorageEngine = Depends(get_engine),
    db: Session = Depends(get_db),
):
    """List configured backends (credentials redacted)."""
    backends = engine.registry(db).list_all(include_inactive=include_inactive)
    return [StorageBackendResponse.from_model(b) for b in backends]


@router.post("", response_model=StorageBackendResponse, status_code=status.HTTP_201_CREATED)
async def register_backend(
    data: StorageBackendCreate,
    admin: Principal = Depends(require_admin),
    engine: StorageEngine = Depends(get_engine),
    db: Session = Depends(get_db),
):
    """
    Register a storage backend.

    The backend starts in the `unknown` health state and is probed once
    immediately; it only accepts writes after a successful probe.
    """
    settings_fields = data.model_dump(
        exclude={"name", "kind", "credentials", "capabilities", "is_default"},
        exclude_none=True,
    )
    registry = engine.registry(db)
    config = registry.register(
        name=data.name,
        kind=data.kind,
        credentials=data.credentials,
        capabilities=data.capabilities,
        is_default=data.is_default,
        **settings_fields,
    )
    logger.info(f"Backend '{config.name}' registered by {admin.user_id}")

    await engine.monitor.check_backend(config.id, db=db)
    db.refresh(config)
    return StorageBackendResponse.from_model(config)


@router.get("/stats", response_model=BackendStatsResponse)
async def backend_stats(
    admin: Principal = Depends(require_admin),
    engine: StorageEngine = Depends(get_engine),
    db: Session = Depends(get_db),
):
    """Usage and health totals across all backends."""
    return engine.registry(db).aggregate_stats()


@router.post("/health-check", response_model=BulkHealthCheckResponse)
async def check_all_backends(
    admin: Principal = Depends(require_admin),
    engine: StorageEngine = Depends(get_engine),
    db: Session = Depends(get_db),
):
    """Probe every active backend now."""
    results = await engine.monitor.run_once(db=db)
    return BulkHealthCheckResponse(
        total=len(results),
        healthy=sum(1 for r in results if r.ok),
        results=[ProbeResultResponse(**r.to_dict()) for r in results],
    )


@router.get("/{backend_id}", response_model=StorageBackendResponse)
async def get_backend(
    backend_id: str,
    admin: Principal = Depends(require_admin),
    engine: StorageEngine = Depends(get_engine),
    db: Session = Depends(get_db),
):
    return StorageBackendResponse.from_model(engine.registry(db).get(backend_id))


@router.patch("/{backend_id}", response_model=StorageBackendResponse)
async def update_backend(
    backend_id: str,
    data: StorageBackendUpdate,
    admin: Principal = Depends(require_admin),
    engine: StorageEngine = Depends(get_engine),
    db: Session = Depends(get_db),
):
    """Update name, capabilities or operational settings."""
    changes = data.model_dump(exclude_unset=True)
    config = engine.registry(db).update_settings(backend_id, **changes)
    return StorageBackendResponse.from_model(config)


@router.post("/{backend_id}/default", response_model=StorageBackendResponse)
async def set_default_backend(
    backend_id: str,
    admin: Principal = Depends(require_admin),
    engine: StorageEngine = Depends(get_engine),
    db: Session = Depends(get_db),
):
    """Make this backend the only default."""
    config = engine.registry(db).set_default(backend_id)
    return StorageBackendResponse.from_model(config)


@router.post("/{backend_id}/activate", response_model=StorageBackendResponse)
async def activate_backend(
    backend_id: str,
    admin: Principal = Depends(require_admin),
    engine: StorageEngine = Depends(get_engine),
    db: Session = Depends(get_db),
):
    config = engine.registry(db).activate(backend_id)
    return StorageBackendResponse.from_model(config)


@router.delete("/{backend_id}", response_model=StorageBackendResponse)
async def deactivate_backend(
    backend_id: str,
    admin: Principal = Depends(require_admin),
    engine: StorageEngine = Depends(get_engine),
    db: Session = Depends(get_db),
):
    """Deactivate a backend. Backends are never hard-deleted."""
    config = engine.registry(db).deactivate(backend_id)
    return StorageBackendResponse.from_model(config)


@router.post("/{backend_id}/health-check", response_model=ProbeResultResponse)
async def check_backend(
    backend_id: str,
    admin: Principal = Depends(require_admin),
    engine: StorageEngine = Depends(get_engine),
    db: Session = Depends(get_db),
):
    """Probe one backend now."""
    result = await engine.monitor.check_backend(backend_id, db=db)
    return ProbeResultResponse(**result.to_dict())
