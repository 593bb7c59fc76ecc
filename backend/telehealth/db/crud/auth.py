import logging

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from fastapi import HTTPException, status
from jose import JWTError

from telehealth.core.auth import (
    create_tokens_for_user,
    decode_access_token,
    get_password_hash,
    verify_password,
)
from telehealth.core.errors import InvalidState, NotFound
from telehealth.db.base import utcnow
from telehealth.db.crud.user import get_user, get_user_by_email
from telehealth.db.models.user import UserModel
from telehealth.db.models.patient import PatientModel
from telehealth.db.models.doctor import DoctorModel
from telehealth.schemas.auth import AuthResponse, LoginRequest, RegisterRequest
from telehealth.schemas.shared import DoctorMetadata, PatientMetadata

logger = logging.getLogger(__name__)


async def create_user(db: AsyncSession, data: RegisterRequest) -> UserModel:
    """Provision an account. Role defaults to patient until onboarding picks one."""
    hashed = get_password_hash(data.password)
    user = UserModel(
        email=data.email, password_hash=hashed, name=data.name, role="patient"
    )
    db.add(user)

    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise HTTPException(status_code=409, detail="Email already registered")

    logger.info(f"Registered user_id={user.id}")
    return await get_user(db, user.id)


async def authenticate_user(db: AsyncSession, login_data: LoginRequest) -> UserModel | None:
    user = await get_user_by_email(db, login_data.email)
    if not user:
        return None
    if not verify_password(login_data.password, user.password_hash):
        return None
    return user


async def refresh_user_token(db: AsyncSession, refresh_token: str) -> AuthResponse:
    """Refreshes user tokens using a refresh token."""
    if not refresh_token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing refresh token")
    try:
        payload = decode_access_token(refresh_token)
    except JWTError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid refresh token")
    if payload.get("type") != "refresh":
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid refresh token")

    user = await db.get(UserModel, int(payload.get("sub")))
    if not user:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="User not found")

    return create_tokens_for_user(user)


async def update_role(db: AsyncSession, user_id: int, role: str) -> UserModel:
    """Select the role before onboarding. The role is fixed once onboarding completes."""
    result = await db.execute(
        update(UserModel)
        .where(UserModel.id == user_id, UserModel.onboarded.is_(False))
        .values(role=role, updated_at=utcnow())
    )
    if result.rowcount == 0:
        await db.rollback()
        if await get_user(db, user_id) is None:
            raise NotFound("User not found")
        raise InvalidState("Role cannot be changed after onboarding")
    await db.commit()
    logger.info(f"User {user_id} selected role '{role}'")
    return await get_user(db, user_id)


async def complete_onboarding(
    db: AsyncSession, user_id: int, metadata: PatientMetadata | DoctorMetadata
) -> UserModel:
    """
    Store the role-specific profile and fix the role. Runs once per account;
    the `onboarded` guard in the UPDATE makes a second attempt fail.
    """
    result = await db.execute(
        update(UserModel)
        .where(UserModel.id == user_id, UserModel.onboarded.is_(False))
        .values(
            role=metadata.role,
            name=metadata.name,
            onboarded=True,
            updated_at=utcnow(),
        )
    )
    if result.rowcount == 0:
        await db.rollback()
        if await get_user(db, user_id) is None:
            raise NotFound("User not found")
        raise InvalidState("Onboarding has already been completed")

    profile_fields = metadata.model_dump(exclude={"role"})
    profile_fields["sex"] = metadata.sex.value
    if isinstance(metadata, DoctorMetadata):
        db.add(DoctorModel(user_id=user_id, **profile_fields))
    else:
        db.add(PatientModel(user_id=user_id, **profile_fields))

    await db.commit()
    logger.info(f"User {user_id} completed onboarding as {metadata.role}")
    return await get_user(db, user_id)
