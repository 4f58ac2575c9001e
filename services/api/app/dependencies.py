"""
Request guards shared by the routers.

Identity comes from the gateway: it validates the session token and forwards
the caller's numeric id in X-User-Id. Requests that arrive without it are
anonymous.
"""
import logging
import secrets
from typing import Optional

from fastapi import Header, HTTPException, status

from app.config import settings

logger = logging.getLogger(__name__)


async def get_current_user_id(
    x_user_id: Optional[int] = Header(None, description="Authenticated user id"),
) -> int:
    if x_user_id is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Authentication required"
        )
    return x_user_id


async def get_optional_user_id(
    x_user_id: Optional[int] = Header(None, description="Authenticated user id"),
) -> Optional[int]:
    return x_user_id


async def require_update_secret(
    x_update_secret: Optional[str] = Header(None),
) -> None:
    """Admin guard for the similarity rebuild trigger."""
    provided = x_update_secret or ""
    if not secrets.compare_digest(provided.encode(), settings.update_secret.encode()):
        logger.warning("Rejected similarity rebuild request: bad or missing secret")
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Forbidden")
