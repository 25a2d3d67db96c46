"""Company workspace operations.

Every other authenticated service checks ownership through
``require_company``: a record belongs to the caller when its company's
``user_id`` matches.
"""

from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..errors import NotAuthorizedError, NotFoundError
from ..logging_utils import get_logger
from ..models import Company, utcnow
from .users import get_user

logger = get_logger(__name__)


async def require_company(
    session: AsyncSession,
    company_id: str,
    user_id: str,
    action: str = "access",
) -> Company:
    """Load a company and check the caller owns it.

    Raises:
        NotFoundError: If the company does not exist.
        NotAuthorizedError: If it belongs to another user.
    """
    company = await session.get(Company, company_id)
    if company is None:
        raise NotFoundError("Company not found")
    if company.user_id != user_id:
        raise NotAuthorizedError(f"Not authorized to {action} this company")
    return company


async def owned_company_ids(session: AsyncSession, user_id: str) -> list[str]:
    result = await session.execute(
        select(Company.id).where(Company.user_id == user_id)
    )
    return list(result.scalars().all())


async def get_default(session: AsyncSession, user_id: str) -> Company:
    """Return the user's first company."""
    result = await session.execute(
        select(Company)
        .where(Company.user_id == user_id)
        .order_by(Company.created_at.asc())
        .limit(1)
    )
    company = result.scalar_one_or_none()
    if company is None:
        raise NotFoundError("No company found. Please create one first.")
    return company


async def get_or_create_default(session: AsyncSession, user_id: str) -> Company:
    """Return the user's first company, creating one on first login."""
    try:
        return await get_default(session, user_id)
    except NotFoundError:
        pass

    user = await get_user(session, user_id)
    company = Company(user_id=user_id, name=f"{user.name}'s Company")
    session.add(company)
    await session.flush()
    logger.info("Created default company %s for user %s", company.id, user_id)
    return company


async def create(
    session: AsyncSession,
    user_id: str,
    name: str,
    description: Optional[str] = None,
) -> Company:
    company = Company(user_id=user_id, name=name, description=description)
    session.add(company)
    await session.flush()
    return company


async def get(session: AsyncSession, user_id: str, company_id: str) -> Company:
    return await require_company(session, company_id, user_id, "view")


async def list_companies(session: AsyncSession, user_id: str) -> list[Company]:
    result = await session.execute(
        select(Company)
        .where(Company.user_id == user_id)
        .order_by(Company.created_at.desc())
    )
    return list(result.scalars().all())


async def update(
    session: AsyncSession,
    user_id: str,
    company_id: str,
    name: Optional[str] = None,
    description: Optional[str] = None,
    industry: Optional[str] = None,
    url: Optional[str] = None,
) -> Company:
    """Patch the given fields; ``None`` leaves a field unchanged."""
    company = await require_company(session, company_id, user_id, "update")

    if name is not None:
        company.name = name
    if description is not None:
        company.description = description
    if industry is not None:
        company.industry = industry
    if url is not None:
        company.url = url
    company.updated_at = utcnow()

    await session.flush()
    logger.debug("Updated company %s", company_id)
    return company
