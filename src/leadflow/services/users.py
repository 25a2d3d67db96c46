"""User records and their Polar customer link."""

import asyncio
from typing import Any, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from ..errors import NotFoundError
from ..integrations.polar import PolarClient, PolarError
from ..logging_utils import get_logger
from ..models import User, utcnow

logger = get_logger(__name__)


async def upsert_user(
    session: AsyncSession,
    user_id: str,
    name: str,
    email: str,
) -> User:
    """Create the user on first sight, or refresh its name and email."""
    user = await session.get(User, user_id)
    if user is None:
        user = User(id=user_id, name=name, email=email)
        session.add(user)
        logger.info("Created user %s", user_id)
    else:
        user.name = name
        user.email = email
        user.updated_at = utcnow()
    await session.flush()
    return user


async def get_user(session: AsyncSession, user_id: str) -> User:
    user = await session.get(User, user_id)
    if user is None:
        raise NotFoundError("User not found")
    return user


async def create_or_sync_polar_customer(
    session: AsyncSession,
    user_id: str,
    polar_client: Optional[PolarClient] = None,
) -> dict[str, Any]:
    """Make sure the user has a Polar customer and link its id.

    An already linked id is returned as is. Otherwise the customer is looked
    up by email and created when Polar has none.

    Returns:
        ``{"success": True, "polar_customer_id": ..., "is_new": bool}``
    """
    user = await get_user(session, user_id)

    if user.polar_customer_id:
        logger.debug("User %s already linked to Polar customer %s",
                     user_id, user.polar_customer_id)
        return {"success": True, "polar_customer_id": user.polar_customer_id,
                "is_new": False}

    client = polar_client or PolarClient()
    loop = asyncio.get_running_loop()

    try:
        customer = await loop.run_in_executor(
            None, client.find_customer_by_email, user.email
        )
        is_new = customer is None
        if is_new:
            customer = await loop.run_in_executor(
                None,
                lambda: client.create_customer(
                    email=user.email,
                    name=user.name or None,
                    metadata={"leadflow_user_id": user.id, "created_from": "manual_sync"},
                ),
            )
    except PolarError as e:
        logger.error("Failed to sync Polar customer for user %s: %s", user_id, e)
        raise

    user.polar_customer_id = customer["id"]
    user.updated_at = utcnow()
    await session.flush()

    logger.info(
        "%s Polar customer %s for user %s",
        "Created" if is_new else "Linked existing",
        customer["id"],
        user_id,
    )
    return {"success": True, "polar_customer_id": customer["id"], "is_new": is_new}
