"""
FastAPI dependencies (DB session, tenant scope)
"""
from fastapi import Header, HTTPException, status

from opsdesk.infrastructure.db.session import get_db as _get_db


# Re-export get_db for convenience
get_db = _get_db


def get_account_id(x_account_id: int | None = Header(default=None)) -> int:
    """
    Tenant id from the X-Account-Id header, set by the upstream gateway.

    Raises:
        HTTPException(403): header missing
    """
    if x_account_id is None:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Tenant context required",
        )
    return x_account_id
