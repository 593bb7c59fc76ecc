from fastapi import APIRouter, Depends, Query
from typing import List
from sqlalchemy.ext.asyncio import AsyncSession

from telehealth.core.middleware import get_current_user, get_db
from telehealth.db.crud.user import list_doctors
from telehealth.schemas.shared import PublicDoctorOut

router = APIRouter(prefix="/doctors", tags=["doctors"])


@router.get("/", response_model=List[PublicDoctorOut])
async def list_doctors_route(
    limit: int = Query(100, ge=1, le=500),
    db: AsyncSession = Depends(get_db),
    current_user: dict = Depends(get_current_user),
):
    """Doctor directory used when opening or reassigning a consultation."""
    doctors = await list_doctors(db, limit=limit)
    return [
        PublicDoctorOut(
            id=d.user_id,
            name=d.name,
            specialization=d.specialization,
            experience_years=d.experience_years,
        )
        for d in doctors
    ]
