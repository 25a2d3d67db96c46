"""FastAPI dependencies shared by the routers."""

from typing import Optional

from fastapi import Header

from ..errors import NotAuthenticatedError
from ..models import get_db

__all__ = ["get_current_user_id", "get_db"]


async def get_current_user_id(x_user_id: Optional[str] = Header(None)) -> str:
    """Caller identity, set by the auth provider in front of the API.

    Raises:
        NotAuthenticatedError: If the header is missing or blank.
    """
    if not x_user_id or not x_user_id.strip():
        raise NotAuthenticatedError("Not authenticated")
    return x_user_id.strip()
