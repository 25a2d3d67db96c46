"""User and company routes."""

from typing import Any

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from ...services import companies, users
from ..deps import get_current_user_id, get_db
from ..schemas import CompanyCreate, CompanyUpdate, UserSync

router = APIRouter(tags=["users"])


@router.post("/users/me")
async def sync_current_user(
    body: UserSync,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    """Record the signed-in user and make sure they have a company."""
    user = await users.upsert_user(db, user_id, body.name, body.email)
    company = await companies.get_or_create_default(db, user_id)
    return {"user": user.to_dict(), "company": company.to_dict()}


@router.get("/users/me")
async def get_current_user(
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    user = await users.get_user(db, user_id)
    return user.to_dict()


@router.post("/users/me/polar-customer")
async def sync_polar_customer(
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    return await users.create_or_sync_polar_customer(db, user_id)


@router.post("/companies/default")
async def get_or_create_default_company(
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    company = await companies.get_or_create_default(db, user_id)
    return company.to_dict()


@router.get("/companies/default")
async def get_default_company(
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    company = await companies.get_default(db, user_id)
    return company.to_dict()


@router.post("/companies", status_code=status.HTTP_201_CREATED)
async def create_company(
    body: CompanyCreate,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    company = await companies.create(db, user_id, body.name, body.description)
    return company.to_dict()


@router.get("/companies")
async def list_companies(
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
) -> list[dict[str, Any]]:
    return [c.to_dict() for c in await companies.list_companies(db, user_id)]


@router.get("/companies/{company_id}")
async def get_company(
    company_id: str,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    company = await companies.get(db, user_id, company_id)
    return company.to_dict()


@router.patch("/companies/{company_id}")
async def update_company(
    company_id: str,
    body: CompanyUpdate,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    details = body.details
    company = await companies.update(
        db,
        user_id,
        company_id,
        name=body.name,
        description=body.description,
        industry=details.industry if details else None,
        url=details.url if details else None,
    )
    return company.to_dict()
