"""FastAPI dependencies for the Dayplan API.

Provides:
- Database session dependency (re-exported from db)
- Current user resolution from the X-User-Id header
"""

from typing import Optional

from fastapi import Header, HTTPException

from .db import get_db  # noqa: F401


def get_current_user(
    x_user_id: Optional[str] = Header(None, alias="X-User-Id"),
) -> str:
    """Return the caller's user id.

    Authentication happens upstream; this service trusts the header.

    Raises:
        HTTPException 401 if the header is missing or blank
    """
    user_id = (x_user_id or "").strip()
    if not user_id:
        raise HTTPException(status_code=401, detail="X-User-Id header required")
    if len(user_id) > 64:
        raise HTTPException(status_code=401, detail="Invalid user id")
    return user_id
