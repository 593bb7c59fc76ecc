# telehealth/db/crud/user.py
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from sqlalchemy.orm import selectinload
from typing import List, Optional

from telehealth.db.models.user import UserModel
from telehealth.db.models.doctor import DoctorModel


def _with_profiles(query):
    return query.options(
        selectinload(UserModel.patient_profile),
        selectinload(UserModel.doctor_profile)
    ).execution_options(populate_existing=True)


async def get_user(db: AsyncSession, user_id: int) -> Optional[UserModel]:
    """
    Get a user by ID with their profiles loaded.

    Args:
        db: Database session
        user_id: User ID

    Returns:
        UserModel or None if not found
    """
    query = _with_profiles(select(UserModel)).where(UserModel.id == user_id)

    result = await db.execute(query)
    return result.scalar_one_or_none()


async def get_user_by_email(db: AsyncSession, email: str) -> Optional[UserModel]:
    """Get a user by email with their profiles loaded."""
    query = _with_profiles(select(UserModel)).where(UserModel.email == email)

    result = await db.execute(query)
    return result.scalar_one_or_none()


async def get_doctor(db: AsyncSession, doctor_id: int) -> Optional[UserModel]:
    """Returns the user only if it exists and carries the doctor role."""
    user = await get_user(db, doctor_id)
    if user is None or user.role != "doctor":
        return None
    return user


async def list_doctors(db: AsyncSession, limit: int = 100) -> List[DoctorModel]:
    """Onboarded doctors with a profile, for the doctor directory."""
    query = (
        select(DoctorModel)
        .join(DoctorModel.user)
        .where(UserModel.role == "doctor")
        .order_by(DoctorModel.name)
        .limit(limit)
    )
    result = await db.execute(query)
    return list(result.scalars().all())
