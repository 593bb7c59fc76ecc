"""
Consultation lifecycle
──────────────────────
Who may do what to a consultation and in which order.

    pending ──accept──▶ active ──end──▶ inactive
       │                                   ▲
       └──────────────reject───────────────┘

    reassign (patient only, status != active): doctor_id := new doctor, status := pending

Status changes belong to the assigned doctor; reassignment belongs to the
owning patient. Every transition is written as a conditional UPDATE that
only matches while the row still has the status the checks were made
against, so two racing callers cannot both win.
"""

import logging
from typing import Dict, List, Optional, Set

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from telehealth.config.constants import ConsultationStatus, Role, StatusAction
from telehealth.core.errors import Forbidden, Internal, InvalidArgument, InvalidState, NotFound
from telehealth.db.base import utcnow
from telehealth.db.crud.user import get_doctor
from telehealth.db.models.consultation import ConsultationModel
from telehealth.db.models.user import UserModel

logger = logging.getLogger(__name__)

PENDING = ConsultationStatus.PENDING.value
ACTIVE = ConsultationStatus.ACTIVE.value
INACTIVE = ConsultationStatus.INACTIVE.value

TRANSITIONS: Dict[str, Set[str]] = {
    PENDING: {ACTIVE, INACTIVE},
    ACTIVE: {INACTIVE},
    INACTIVE: set(),
}

# statuses under which a doctor still sees a consultation in their lists
DOCTOR_VISIBLE_STATUSES = (PENDING, ACTIVE)


# ---------------------------------------------------------------------------
# Pure rules
# ---------------------------------------------------------------------------
def can_transition(current: Optional[str], new: str) -> bool:
    return new in TRANSITIONS.get(current, set())


def validate_transition(current: Optional[str], new: str) -> None:
    if not can_transition(current, new):
        raise InvalidState(f"Invalid status transition from {current} to {new}")


def can_access(consultation: ConsultationModel, user_id: int, role: str) -> bool:
    """
    Patients always reach their own consultations. A doctor reaches one only
    while assigned to it and it has not gone inactive.
    """
    if role == Role.PATIENT.value:
        return consultation.patient_id == user_id
    if role == Role.DOCTOR.value:
        return consultation.doctor_id == user_id and consultation.status != INACTIVE
    return False


def ensure_access(consultation: ConsultationModel, user_id: int, role: str) -> None:
    if can_access(consultation, user_id, role):
        return
    if role == Role.DOCTOR.value and consultation.doctor_id == user_id:
        raise Forbidden("Access denied: consultation is inactive")
    raise Forbidden("Access denied: user not associated with this consultation")


def is_participant(consultation: ConsultationModel, user_id: int, role: str) -> bool:
    """Owning patient or assigned doctor, whatever the status."""
    if role == Role.PATIENT.value:
        return consultation.patient_id == user_id
    if role == Role.DOCTOR.value:
        return consultation.doctor_id == user_id
    return False


def _require_role(caller: UserModel, role: Role, message: str) -> None:
    if caller.role != role.value:
        raise Forbidden(message)


# ---------------------------------------------------------------------------
# Record store helpers
# ---------------------------------------------------------------------------
async def get_consultation(db: AsyncSession, consultation_id: int) -> ConsultationModel:
    result = await db.execute(
        select(ConsultationModel)
        .where(ConsultationModel.id == consultation_id)
        .execution_options(populate_existing=True)
    )
    consultation = result.scalar_one_or_none()
    if consultation is None:
        raise NotFound("Consultation not found")
    return consultation


async def _compare_and_set(
    db: AsyncSession,
    consultation: ConsultationModel,
    expected_status: str,
    conflict_message: str,
    match_doctor: bool = True,
    **values,
) -> ConsultationModel:
    """
    UPDATE ... WHERE id = :id AND status = :expected [AND doctor_id = :doctor].
    Zero matched rows means someone else moved the consultation first.
    """
    # rollback expires the instance, so nothing below may touch its attributes
    consultation_id = consultation.id
    doctor_id = consultation.doctor_id

    conditions = [
        ConsultationModel.id == consultation_id,
        ConsultationModel.status == expected_status,
    ]
    if match_doctor:
        conditions.append(ConsultationModel.doctor_id == doctor_id)

    try:
        result = await db.execute(
            update(ConsultationModel)
            .where(*conditions)
            .values(updated_at=utcnow(), **values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            await db.rollback()
            logger.warning(
                f"Conditional update lost for consultation_id={consultation_id} "
                f"(expected status '{expected_status}')"
            )
            raise InvalidState(conflict_message)
        await db.commit()
    except SQLAlchemyError as e:
        await db.rollback()
        logger.error(
            f"Storage error updating consultation_id={consultation_id}: {e}", exc_info=True
        )
        raise Internal("Failed to update consultation") from e

    return await get_consultation(db, consultation_id)


# ---------------------------------------------------------------------------
# Operations
# ---------------------------------------------------------------------------
async def create_consultation(
    db: AsyncSession,
    caller: UserModel,
    title: str,
    description: str,
    doctor_id: int,
) -> ConsultationModel:
    """
    Open a new consultation for the calling patient with the chosen doctor.

    Raises:
        Forbidden: the caller is not a patient
        InvalidArgument: empty title/description or the patient picked themselves
        NotFound: `doctor_id` is not a doctor
    """
    _require_role(caller, Role.PATIENT, "Only patients can create consultations")
    if not title.strip() or not description.strip():
        raise InvalidArgument("Title and description are required")
    if doctor_id == caller.id:
        raise InvalidArgument("A patient cannot be their own doctor")

    doctor = await get_doctor(db, doctor_id)
    if doctor is None:
        raise NotFound("Doctor not found or the specified user is not a doctor")

    patient_id = caller.id
    consultation = ConsultationModel(
        patient_id=patient_id,
        doctor_id=doctor.id,
        title=title.strip(),
        description=description.strip(),
        status=PENDING,
    )
    db.add(consultation)
    try:
        await db.commit()
    except SQLAlchemyError as e:
        await db.rollback()
        logger.error(f"Failed to create consultation for patient_id={patient_id}: {e}", exc_info=True)
        raise Internal("Failed to create consultation") from e

    logger.info(
        f"Consultation {consultation.id} created by patient {patient_id} for doctor {doctor.id}"
    )
    return consultation


async def _load_for_doctor(
    db: AsyncSession, consultation_id: int, caller: UserModel
) -> ConsultationModel:
    _require_role(caller, Role.DOCTOR, "Only doctors can change consultation status")
    consultation = await get_consultation(db, consultation_id)
    if consultation.doctor_id != caller.id:
        raise Forbidden("Doctor is not assigned to this consultation")
    return consultation


async def accept_consultation(
    db: AsyncSession, consultation_id: int, caller: UserModel
) -> ConsultationModel:
    consultation = await _load_for_doctor(db, consultation_id, caller)
    if consultation.status != PENDING:
        raise InvalidState("Can only accept pending consultations")
    validate_transition(consultation.status, ACTIVE)

    updated = await _compare_and_set(
        db, consultation, PENDING, "Consultation already accepted or processed", status=ACTIVE
    )
    logger.info(f"Consultation {consultation_id} accepted by doctor {caller.id}")
    return updated


async def reject_consultation(
    db: AsyncSession, consultation_id: int, caller: UserModel
) -> ConsultationModel:
    consultation = await _load_for_doctor(db, consultation_id, caller)
    if consultation.status != PENDING:
        raise InvalidState("Can only reject pending consultations")
    validate_transition(consultation.status, INACTIVE)

    updated = await _compare_and_set(
        db, consultation, PENDING, "Consultation already processed", status=INACTIVE
    )
    logger.info(f"Consultation {consultation_id} rejected by doctor {caller.id}")
    return updated


async def end_consultation(
    db: AsyncSession, consultation_id: int, caller: UserModel
) -> ConsultationModel:
    consultation = await _load_for_doctor(db, consultation_id, caller)
    if consultation.status != ACTIVE:
        raise InvalidState("Can only end active consultations")
    validate_transition(consultation.status, INACTIVE)

    updated = await _compare_and_set(
        db, consultation, ACTIVE, "Consultation already ended", status=INACTIVE
    )
    logger.info(f"Consultation {consultation_id} ended by doctor {caller.id}")
    return updated


async def update_status(
    db: AsyncSession, consultation_id: int, action: StatusAction, caller: UserModel
) -> ConsultationModel:
    if action == StatusAction.REJECT:
        return await reject_consultation(db, consultation_id, caller)
    if action == StatusAction.END:
        return await end_consultation(db, consultation_id, caller)
    raise InvalidArgument(f"Unsupported status action '{action}'")


async def reassign_doctor(
    db: AsyncSession, consultation_id: int, new_doctor_id: int, caller: UserModel
) -> ConsultationModel:
    """
    Hand a pending or inactive consultation to another doctor. The
    consultation goes back to pending so the new doctor has to accept it.
    """
    consultation = await get_consultation(db, consultation_id)
    if caller.role != Role.PATIENT.value or consultation.patient_id != caller.id:
        raise Forbidden("Only the patient can reassign a doctor")
    if consultation.status == ACTIVE:
        raise InvalidState("Cannot reassign doctor for an active consultation")
    if new_doctor_id == consultation.patient_id:
        raise InvalidArgument("A patient cannot be their own doctor")
    if new_doctor_id == consultation.doctor_id:
        raise InvalidArgument("Consultation is already assigned to this doctor")

    doctor = await get_doctor(db, new_doctor_id)
    if doctor is None:
        raise NotFound("Invalid doctor selected")

    previous_doctor = consultation.doctor_id
    updated = await _compare_and_set(
        db,
        consultation,
        consultation.status,
        "Consultation changed while reassigning, please retry",
        doctor_id=doctor.id,
        status=PENDING,
    )
    logger.info(
        f"Consultation {consultation_id} reassigned by patient {caller.id} "
        f"from doctor {previous_doctor} to doctor {doctor.id}"
    )
    return updated


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------
async def get_consultation_for_user(
    db: AsyncSession, consultation_id: int, caller: UserModel
) -> ConsultationModel:
    consultation = await get_consultation(db, consultation_id)
    ensure_access(consultation, caller.id, caller.role)
    return consultation


async def list_consultations(
    db: AsyncSession, caller: UserModel, status: Optional[str] = None
) -> List[ConsultationModel]:
    """
    The caller's consultations, newest activity first. Doctors only get the
    ones they are assigned to while pending or active; patients get all of
    their own.
    """
    query = select(ConsultationModel)
    if caller.role == Role.DOCTOR.value:
        statuses = DOCTOR_VISIBLE_STATUSES
        if status is not None:
            if status not in DOCTOR_VISIBLE_STATUSES:
                return []
            statuses = (status,)
        query = query.where(
            ConsultationModel.doctor_id == caller.id,
            ConsultationModel.status.in_(statuses),
        )
    elif caller.role == Role.PATIENT.value:
        query = query.where(ConsultationModel.patient_id == caller.id)
        if status is not None:
            query = query.where(ConsultationModel.status == status)
    else:
        raise Forbidden(f"Unknown role '{caller.role}'")

    query = query.order_by(ConsultationModel.updated_at.desc(), ConsultationModel.id.desc())
    result = await db.execute(query)
    return list(result.scalars().all())
