# telehealth/schemas/shared.py
from datetime import datetime, date
from enum import Enum
from typing import Annotated, Literal, Optional, Union
from pydantic import BaseModel, ConfigDict, EmailStr, Field

from telehealth.config.constants import Role


class Sex(str, Enum):
    male = "male"
    female = "female"
    other = "other"


# ──────────────────────────────────────────────────────────────────────────
# Role-specific metadata, tagged by `role`
# ──────────────────────────────────────────────────────────────────────────
class PatientMetadata(BaseModel):
    model_config = ConfigDict(extra="forbid")

    role: Literal["patient"] = "patient"
    name: Annotated[str, Field(min_length=1, max_length=100)]
    date_of_birth: date
    sex: Sex


class DoctorMetadata(PatientMetadata):
    role: Literal["doctor"] = "doctor"
    specialization: Annotated[str, Field(min_length=1, max_length=100)]
    license_number: Optional[Annotated[str, Field(max_length=50)]] = None
    experience_years: Optional[Annotated[int, Field(ge=0)]] = None


ProfileMetadata = Annotated[
    Union[PatientMetadata, DoctorMetadata], Field(discriminator="role")
]


class PatientOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    name: str
    date_of_birth: date
    sex: Sex

class DoctorOut(PatientOut):
    specialization: str
    license_number: Optional[str] = None
    experience_years: Optional[int] = None

class UserOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    email: EmailStr
    name: Optional[str] = None
    role: Role
    onboarded: bool
    patient_profile: Optional[PatientOut] = None
    doctor_profile: Optional[DoctorOut] = None
    created_at: datetime


class PublicDoctorOut(BaseModel):
    """What patients see in the doctor directory."""
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    specialization: str
    experience_years: Optional[int] = None
