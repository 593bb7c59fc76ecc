# telehealth/schemas/consultation.py
from __future__ import annotations

from datetime import datetime
from typing import Annotated, Optional

from pydantic import BaseModel, ConfigDict, Field

from telehealth.config.constants import ConsultationStatus, StatusAction


class ConsultationCreate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    title: Annotated[str, Field(min_length=1, max_length=200)]
    description: Annotated[str, Field(min_length=1)]
    doctor_id: int


class ConsultationOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    patient_id: int
    doctor_id: Optional[int] = None
    title: str
    description: str
    status: ConsultationStatus
    created_at: datetime
    updated_at: datetime


class StatusUpdateRequest(BaseModel):
    """Doctor-side status change: `reject` a pending or `end` an active consultation."""
    action: StatusAction


class ReassignRequest(BaseModel):
    doctor_id: int


class MemoryOut(BaseModel):
    consultation_id: int
    memories: dict[str, str]
