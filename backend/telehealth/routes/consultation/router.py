from fastapi import APIRouter, Depends, Query, Request, status
from typing import List, Optional
from sqlalchemy.ext.asyncio import AsyncSession
import logging

from telehealth.config.constants import ConsultationStatus, Role
from telehealth.config.settings import settings
from telehealth.core.errors import Forbidden
from telehealth.core.middleware import get_current_db_user, get_db
from telehealth.db.models.user import UserModel
from telehealth.schemas.consultation import (
    ConsultationCreate,
    ConsultationOut,
    MemoryOut,
    ReassignRequest,
    StatusUpdateRequest,
)
from telehealth.services import lifecycle

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/consultations", tags=["consultations"])


@router.post("/", response_model=ConsultationOut, status_code=status.HTTP_201_CREATED)
async def create_consultation_route(
    body: ConsultationCreate,
    db: AsyncSession = Depends(get_db),
    user: UserModel = Depends(get_current_db_user),
):
    return await lifecycle.create_consultation(
        db, user, body.title, body.description, body.doctor_id
    )


@router.get("/mine", response_model=List[ConsultationOut])
async def my_consultations(
    db: AsyncSession = Depends(get_db),
    user: UserModel = Depends(get_current_db_user),
):
    """Everything the caller may see: all own consultations for a patient, pending/active ones for a doctor."""
    return await lifecycle.list_consultations(db, user)


@router.get("/", response_model=List[ConsultationOut])
async def consultations_by_status(
    status_filter: Optional[ConsultationStatus] = Query(None, alias="status"),
    db: AsyncSession = Depends(get_db),
    user: UserModel = Depends(get_current_db_user),
):
    status_value = status_filter.value if status_filter else None
    return await lifecycle.list_consultations(db, user, status_value)


@router.get("/{consultation_id}", response_model=ConsultationOut)
async def get_consultation_route(
    consultation_id: int,
    db: AsyncSession = Depends(get_db),
    user: UserModel = Depends(get_current_db_user),
):
    return await lifecycle.get_consultation_for_user(db, consultation_id, user)


@router.post("/{consultation_id}/accept", response_model=ConsultationOut)
async def accept_consultation_route(
    consultation_id: int,
    db: AsyncSession = Depends(get_db),
    user: UserModel = Depends(get_current_db_user),
):
    return await lifecycle.accept_consultation(db, consultation_id, user)


@router.post("/{consultation_id}/status", response_model=ConsultationOut)
async def update_status_route(
    consultation_id: int,
    body: StatusUpdateRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
    user: UserModel = Depends(get_current_db_user),
):
    consultation = await lifecycle.update_status(db, consultation_id, body.action, user)

    # both actions leave the consultation inactive
    if settings.purge_memory_on_end:
        memory = request.app.state.memory
        try:
            await memory.clear_consultation_data(consultation_id)
        except Exception:
            logger.exception(f"Failed to purge memory for closed consultation {consultation_id}")

    return consultation


@router.post("/{consultation_id}/reassign", response_model=ConsultationOut)
async def reassign_doctor_route(
    consultation_id: int,
    body: ReassignRequest,
    db: AsyncSession = Depends(get_db),
    user: UserModel = Depends(get_current_db_user),
):
    return await lifecycle.reassign_doctor(db, consultation_id, body.doctor_id, user)


@router.get("/{consultation_id}/memory", response_model=MemoryOut)
async def get_memory_route(
    consultation_id: int,
    request: Request,
    db: AsyncSession = Depends(get_db),
    user: UserModel = Depends(get_current_db_user),
):
    """Facts the AI assistant keeps for this consultation (doctor advice and the like)."""
    await lifecycle.get_consultation_for_user(db, consultation_id, user)
    memories = await request.app.state.memory.get_all_memories(consultation_id)
    return MemoryOut(consultation_id=consultation_id, memories=memories)


@router.delete("/{consultation_id}/memory", status_code=status.HTTP_204_NO_CONTENT)
async def purge_memory_route(
    consultation_id: int,
    request: Request,
    db: AsyncSession = Depends(get_db),
    user: UserModel = Depends(get_current_db_user),
):
    consultation = await lifecycle.get_consultation(db, consultation_id)
    if user.role != Role.PATIENT.value or consultation.patient_id != user.id:
        raise Forbidden("Only the patient can clear consultation memory")
    await request.app.state.memory.clear_consultation_data(consultation_id)
