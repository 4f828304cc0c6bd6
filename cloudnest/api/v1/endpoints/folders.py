"""
Folder endpoints.
"""
import logging

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from cloudnest.api.v1.deps import get_engine, load_quota
from cloudnest.core.exceptions import NotFoundError
from cloudnest.core.security import Principal, get_principal
from cloudnest.db import get_db
from cloudnest.models.folder import FolderRecord
from cloudnest.schemas.folder import (
    FolderCascadeResponse,
    FolderCreate,
    FolderListResponse,
    FolderMove,
    FolderRename,
    FolderResponse,
)
from cloudnest.storage.engine import StorageEngine
from cloudnest.storage.folders import FolderTree
from cloudnest.storage.quota import QuotaState

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/folders", tags=["folders"])


def _owned_folder(tree: FolderTree, folder_id: str, principal: Principal, include_deleted: bool = False) -> FolderRecord:
    folder = tree.get(folder_id, include_deleted=include_deleted)
    if folder.owner_id != principal.user_id:
        raise NotFoundError("Folder", folder_id)
    return folder


def _folder_list(folders) -> FolderListResponse:
    return FolderListResponse(
        folders=[FolderResponse.model_validate(f) for f in folders],
        total=len(folders),
    )


@router.post("", response_model=FolderResponse, status_code=status.HTTP_201_CREATED)
async def create_folder(
    data: FolderCreate,
    principal: Principal = Depends(get_principal),
    engine: StorageEngine = Depends(get_engine),
    db: Session = Depends(get_db),
):
    folder = engine.folders(db).create(
        data.name,
        principal.user_id,
        parent_id=data.parent_id,
        description=data.description,
        color=data.color,
    )
    return FolderResponse.model_validate(folder)


@router.get("", response_model=FolderListResponse)
async def list_root_folders(
    principal: Principal = Depends(get_principal),
    engine: StorageEngine = Depends(get_engine),
    db: Session = Depends(get_db),
):
    return _folder_list(engine.folders(db).list_roots(principal.user_id))


@router.get("/by-path", response_model=FolderResponse)
async def get_folder_by_path(
    path: str = Query(..., min_length=2, max_length=1000),
    principal: Principal = Depends(get_principal),
    engine: StorageEngine = Depends(get_engine),
    db: Session = Depends(get_db),
):
    return FolderResponse.model_validate(engine.folders(db).get_by_path(principal.user_id, path))


@router.get("/trash", response_model=FolderListResponse)
async def list_deleted_folders(
    principal: Principal = Depends(get_principal),
    engine: StorageEngine = Depends(get_engine),
    db: Session = Depends(get_db),
):
    return _folder_list(engine.folders(db).list_deleted(principal.user_id))


@router.get("/{folder_id}", response_model=FolderResponse)
async def get_folder(
    folder_id: str,
    principal: Principal = Depends(get_principal),
    engine: StorageEngine = Depends(get_engine),
    db: Session = Depends(get_db),
):
    return FolderResponse.model_validate(_owned_folder(engine.folders(db), folder_id, principal))


@router.get("/{folder_id}/children", response_model=FolderListResponse)
async def list_children(
    folder_id: str,
    recursive: bool = False,
    principal: Principal = Depends(get_principal),
    engine: StorageEngine = Depends(get_engine),
    db: Session = Depends(get_db),
):
    """Direct subfolders, or the whole subtree with `recursive=true`."""
    tree = engine.folders(db)
    _owned_folder(tree, folder_id, principal)
    folders = tree.descendants(folder_id) if recursive else tree.children(folder_id)
    return _folder_list(folders)


@router.post("/{folder_id}/rename", response_model=FolderResponse)
async def rename_folder(
    folder_id: str,
    data: FolderRename,
    principal: Principal = Depends(get_principal),
    engine: StorageEngine = Depends(get_engine),
    db: Session = Depends(get_db),
):
    """Rename a folder; every descendant path is rewritten atomically."""
    tree = engine.folders(db)
    _owned_folder(tree, folder_id, principal)
    return FolderResponse.model_validate(tree.rename(folder_id, data.name))


@router.post("/{folder_id}/move", response_model=FolderResponse)
async def move_folder(
    folder_id: str,
    data: FolderMove,
    principal: Principal = Depends(get_principal),
    engine: StorageEngine = Depends(get_engine),
    db: Session = Depends(get_db),
):
    """Move a folder under another folder, or to the root with `parent_id: null`."""
    tree = engine.folders(db)
    _owned_folder(tree, folder_id, principal)
    return FolderResponse.model_validate(tree.move(folder_id, data.parent_id))


@router.delete("/{folder_id}", response_model=FolderCascadeResponse)
async def delete_folder(
    folder_id: str,
    principal: Principal = Depends(get_principal),
    quota: QuotaState = Depends(load_quota),
    engine: StorageEngine = Depends(get_engine),
    db: Session = Depends(get_db),
):
    """Soft-delete a folder with its whole subtree and the files in it."""
    tree = engine.folders(db)
    _owned_folder(tree, folder_id, principal, include_deleted=True)
    cascade = tree.soft_delete(folder_id, principal.user_id)
    return FolderCascadeResponse(**cascade.to_dict())


@router.post("/{folder_id}/restore", response_model=FolderResponse)
async def restore_folder(
    folder_id: str,
    principal: Principal = Depends(get_principal),
    engine: StorageEngine = Depends(get_engine),
    db: Session = Depends(get_db),
):
    """Restore only this folder; its contents are restored separately."""
    tree = engine.folders(db)
    _owned_folder(tree, folder_id, principal, include_deleted=True)
    return FolderResponse.model_validate(tree.restore(folder_id))
