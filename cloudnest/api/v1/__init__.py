"""
API v1 router aggregation.
"""
from fastapi import APIRouter
from cloudnest.api.v1.endpoints import storage_backends, files, folders, quota

api_router = APIRouter()

# Include storage backend administration endpoints
api_router.include_router(storage_backends.router)

# Include file endpoints
api_router.include_router(files.router)

# Include folder endpoints
api_router.include_router(folders.router)

# Include quota endpoints
api_router.include_router(quota.router)

__all__ = ["api_router"]
