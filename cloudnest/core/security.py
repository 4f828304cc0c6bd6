"""
Caller identity for API requests.

Authentication happens upstream; the gateway forwards the authenticated
user id and role in request headers. This module only reads them.
"""
from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, HTTPException, Security, status
from fastapi.security import APIKeyHeader

# Header schemes (APIKeyHeader so they show up in the OpenAPI docs)
user_id_header = APIKeyHeader(name="X-User-Id", auto_error=False)
user_role_header = APIKeyHeader(name="X-User-Role", auto_error=False)
storage_limit_header = APIKeyHeader(name="X-Storage-Limit", auto_error=False)

ADMIN_ROLE = "admin"


@dataclass
class Principal:
    """Authenticated caller as reported by the gateway."""
    user_id: str
    role: str = "user"
    storage_limit_bytes: Optional[int] = None

    @property
    def is_admin(self) -> bool:
        return self.role == ADMIN_ROLE


async def get_principal(
    user_id: Optional[str] = Security(user_id_header),
    role: Optional[str] = Security(user_role_header),
    storage_limit: Optional[str] = Security(storage_limit_header),
) -> Principal:
    """
    FastAPI dependency for caller identity.

    Raises:
        HTTPException: 401 if X-User-Id is missing, 400 if X-Storage-Limit is malformed
    """
    if not user_id or not user_id.strip():
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing X-User-Id header",
            headers={"WWW-Authenticate": "ApiKey"},
        )

    limit = None
    if storage_limit:
        try:
            limit = int(storage_limit)
        except ValueError:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="X-Storage-Limit must be an integer number of bytes",
            )
        if limit < 0:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="X-Storage-Limit must not be negative",
            )

    return Principal(
        user_id=user_id.strip(),
        role=(role or "user").strip().lower(),
        storage_limit_bytes=limit,
    )


async def require_admin(principal: Principal = Depends(get_principal)) -> Principal:
    """
    FastAPI dependency for admin-only registry mutations.

    Raises:
        HTTPException: 403 if the caller is not an admin
    """
    if not principal.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin role required",
        )
    return principal
