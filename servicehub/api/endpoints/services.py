from typing import Any, List
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from servicehub.api import deps
from servicehub.db.database import get_db
from servicehub.db.db_models import Service, ProfessionalProfile
from servicehub.models.service import ServiceCreate, ServiceResponse
from servicehub.models.user import CurrentUser

router = APIRouter()


@router.get("/", response_model=List[ServiceResponse])
async def list_services(db: AsyncSession = Depends(get_db)) -> Any:
    result = await db.execute(select(Service).order_by(Service.created_at.desc()))
    return result.scalars().all()


@router.get("/{service_id}", response_model=ServiceResponse)
async def get_service(service_id: str, db: AsyncSession = Depends(get_db)) -> Any:
    service = await db.get(Service, service_id)
    if not service:
        raise HTTPException(status_code=404, detail="Service not found")
    return service


@router.post("/", response_model=ServiceResponse, status_code=status.HTTP_201_CREATED)
async def create_service(
    service_in: ServiceCreate,
    current_user: CurrentUser = Depends(deps.get_current_professional),
    db: AsyncSession = Depends(get_db),
) -> Any:
    """Professional advertises a new service under their profile."""
    result = await db.execute(
        select(ProfessionalProfile).where(ProfessionalProfile.user_id == current_user.id)
    )
    profile = result.scalar_one_or_none()
    if profile is None:
        profile = ProfessionalProfile(user_id=current_user.id)
        db.add(profile)
        await db.flush()

    service = Service(
        professional_id=profile.id,
        title=service_in.title,
        description=service_in.description,
        pricing_type=service_in.pricing_type.value,
        price=service_in.price,
    )
    db.add(service)
    await db.flush()
    await db.refresh(service)
    return service
