"""
File endpoints.

Uploads are two-step: `POST /files/admit` decides whether the upload may
proceed and where it goes; after the transfer layer stores the bytes,
`POST /files` records the file. Admission is re-run at commit time so a
stale decision can never be committed.
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from cloudnest.api.v1.deps import get_engine, load_quota
from cloudnest.core.exceptions import NotFoundError
from cloudnest.core.security import Principal, get_principal
from cloudnest.db import get_db
from cloudnest.models.file import FileRecord
from cloudnest.schemas.file import (
    AdmissionResponse,
    FileAdmitRequest,
    FileCommitRequest,
    FileDetailResponse,
    FileListResponse,
    FileResponse,
    VersionAdmitRequest,
    VersionCommitRequest,
)
from cloudnest.services.upload_service import TransferResult, UploadService
from cloudnest.storage.catalog import FileCatalog, FileMeta
from cloudnest.storage.engine import StorageEngine
from cloudnest.storage.quota import QuotaState

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/files", tags=["files"])


def _owned_file(catalog: FileCatalog, file_id: str, principal: Principal, include_deleted: bool = False) -> FileRecord:
    record = catalog.get(file_id, include_deleted=include_deleted)
    if record.owner_id != principal.user_id and not principal.is_admin:
        raise NotFoundError("File", file_id)
    return record


def _check_folder(engine: StorageEngine, db: Session, folder_id: Optional[str], principal: Principal) -> None:
    if folder_id:
        folder = engine.folders(db).get(folder_id)
        if folder.owner_id != principal.user_id:
            raise NotFoundError("Folder", folder_id)


@router.post("/admit", response_model=AdmissionResponse)
async def admit_upload(
    data: FileAdmitRequest,
    principal: Principal = Depends(get_principal),
    quota: QuotaState = Depends(load_quota),
    engine: StorageEngine = Depends(get_engine),
    db: Session = Depends(get_db),
):
    """
    Decide whether an upload may proceed.

    Returns the decision even when it is negative (`quota_exceeded` with
    the shortfall, `no_backend_available` with the unhealthy backends).
    """
    _check_folder(engine, db, data.folder_id, principal)
    await engine.monitor.refresh_stale(db=db)

    meta = FileMeta(
        owner_id=principal.user_id,
        name=data.name,
        mime_type=data.mime_type,
        size=data.size,
        content_hash=data.content_hash,
        folder_id=data.folder_id,
    )
    decision = engine.admission(db).admit_upload(principal.user_id, meta, backend_id=data.backend_id)
    return AdmissionResponse(**decision.to_dict())


@router.post("", response_model=FileResponse, status_code=status.HTTP_201_CREATED)
async def commit_upload(
    data: FileCommitRequest,
    principal: Principal = Depends(get_principal),
    quota: QuotaState = Depends(load_quota),
    engine: StorageEngine = Depends(get_engine),
    db: Session = Depends(get_db),
):
    """Record a completed transfer as a new file."""
    _check_folder(engine, db, data.folder_id, principal)

    meta = FileMeta(
        owner_id=principal.user_id,
        name=data.name,
        mime_type=data.mime_type,
        size=data.size,
        content_hash=data.content_hash,
        folder_id=data.folder_id,
        original_name=data.original_name,
        description=data.description,
        is_public=data.is_public,
        tags=data.tags,
    )
    decision = engine.admission(db).admit_upload(principal.user_id, meta, backend_id=data.backend_id)
    transfer = TransferResult(
        storage_key=data.storage_key,
        bytes_transferred=data.bytes_transferred,
        reused_key=data.reused_key,
    )
    record = UploadService(engine, db).finalize_upload(principal.user_id, meta, decision, transfer)
    return FileResponse.model_validate(record)


@router.get("", response_model=FileListResponse)
async def list_files(
    folder_id: Optional[str] = None,
    root_only: bool = False,
    limit: int = Query(default=100, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    principal: Principal = Depends(get_principal),
    engine: StorageEngine = Depends(get_engine),
    db: Session = Depends(get_db),
):
    files = engine.catalog(db).list_by_owner(
        principal.user_id, folder_id=folder_id, root_only=root_only, limit=limit, offset=offset
    )
    return FileListResponse(files=[FileResponse.model_validate(f) for f in files], total=len(files))


@router.get("/search", response_model=FileListResponse)
async def search_files(
    q: str = Query(..., min_length=1, max_length=255),
    limit: int = Query(default=50, ge=1, le=200),
    principal: Principal = Depends(get_principal),
    engine: StorageEngine = Depends(get_engine),
    db: Session = Depends(get_db),
):
    files = engine.catalog(db).search(principal.user_id, q, limit=limit)
    return FileListResponse(files=[FileResponse.model_validate(f) for f in files], total=len(files))


@router.get("/trash", response_model=FileListResponse)
async def list_trash(
    principal: Principal = Depends(get_principal),
    engine: StorageEngine = Depends(get_engine),
    db: Session = Depends(get_db),
):
    files = engine.catalog(db).list_deleted(principal.user_id)
    return FileListResponse(files=[FileResponse.model_validate(f) for f in files], total=len(files))


@router.get("/duplicates")
async def duplicate_report(
    principal: Principal = Depends(get_principal),
    engine: StorageEngine = Depends(get_engine),
    db: Session = Depends(get_db),
):
    """Duplicate groups among the caller's live files."""
    return engine.duplicates(db).report(principal.user_id)


@router.get("/{file_id}", response_model=FileDetailResponse)
async def get_file(
    file_id: str,
    principal: Principal = Depends(get_principal),
    engine: StorageEngine = Depends(get_engine),
    db: Session = Depends(get_db),
):
    """File metadata with its version chain. Counts as a view."""
    catalog = engine.catalog(db)
    _owned_file(catalog, file_id, principal)
    return FileDetailResponse.model_validate(catalog.record_view(file_id))


@router.post("/{file_id}/versions/admit", response_model=AdmissionResponse)
async def admit_version(
    file_id: str,
    data: VersionAdmitRequest,
    principal: Principal = Depends(get_principal),
    quota: QuotaState = Depends(load_quota),
    engine: StorageEngine = Depends(get_engine),
    db: Session = Depends(get_db),
):
    await engine.monitor.refresh_stale(db=db)
    decision = engine.admission(db).admit_version(
        principal.user_id, file_id, data.size, content_hash=data.content_hash
    )
    return AdmissionResponse(**decision.to_dict())


@router.post("/{file_id}/versions", response_model=FileDetailResponse, status_code=status.HTTP_201_CREATED)
async def commit_version(
    file_id: str,
    data: VersionCommitRequest,
    principal: Principal = Depends(get_principal),
    quota: QuotaState = Depends(load_quota),
    engine: StorageEngine = Depends(get_engine),
    db: Session = Depends(get_db),
):
    """Record a completed transfer as the next version of a file."""
    decision = engine.admission(db).admit_version(
        principal.user_id, file_id, data.size, content_hash=data.content_hash
    )
    transfer = TransferResult(
        storage_key=data.storage_key,
        bytes_transferred=data.bytes_transferred,
        reused_key=data.reused_key,
    )
    record = UploadService(engine, db).finalize_version(
        principal.user_id, file_id, decision, transfer, content_hash=data.content_hash
    )
    return FileDetailResponse.model_validate(record)


@router.post("/{file_id}/download", response_model=FileResponse)
async def record_download(
    file_id: str,
    principal: Principal = Depends(get_principal),
    engine: StorageEngine = Depends(get_engine),
    db: Session = Depends(get_db),
):
    catalog = engine.catalog(db)
    _owned_file(catalog, file_id, principal)
    return FileResponse.model_validate(catalog.record_download(file_id))


@router.delete("/{file_id}", response_model=FileResponse)
async def delete_file(
    file_id: str,
    principal: Principal = Depends(get_principal),
    quota: QuotaState = Depends(load_quota),
    engine: StorageEngine = Depends(get_engine),
    db: Session = Depends(get_db),
):
    """Soft-delete a file. Deleting a deleted file succeeds without change."""
    catalog = engine.catalog(db)
    _owned_file(catalog, file_id, principal, include_deleted=True)
    return FileResponse.model_validate(catalog.soft_delete(file_id, principal.user_id))


@router.post("/{file_id}/restore", response_model=FileResponse)
async def restore_file(
    file_id: str,
    principal: Principal = Depends(get_principal),
    quota: QuotaState = Depends(load_quota),
    engine: StorageEngine = Depends(get_engine),
    db: Session = Depends(get_db),
):
    catalog = engine.catalog(db)
    _owned_file(catalog, file_id, principal, include_deleted=True)
    return FileResponse.model_validate(catalog.restore(file_id))
