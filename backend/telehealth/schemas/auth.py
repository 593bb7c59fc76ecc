# telehealth/schemas/auth.py
from __future__ import annotations

from enum import Enum
from typing import Annotated, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field

from telehealth.config.constants import Role
from telehealth.schemas.shared import ProfileMetadata

# bcrypt only looks at the first 72 bytes
Password = Annotated[str, Field(min_length=8, max_length=72)]


class RegisterRequest(BaseModel):
    model_config = ConfigDict(extra='forbid')

    email: EmailStr
    password: Password
    name: Optional[Annotated[str, Field(min_length=1, max_length=100)]] = None


class LoginRequest(BaseModel):
    model_config = ConfigDict(extra='forbid')

    email: EmailStr
    password: Password


class TokenType(Enum):
    bearer = 'bearer'

class AuthResponse(BaseModel):
    model_config = ConfigDict(extra='forbid')

    access_token: str
    refresh_token: str
    token_type: TokenType
    expires_in: int


class RoleUpdateRequest(BaseModel):
    model_config = ConfigDict(extra='forbid')

    role: Role


class OnboardingRequest(BaseModel):
    """
    Completes onboarding. `metadata.role` selects the profile variant:

    * patient - name, date_of_birth, sex
    * doctor  - the patient fields plus specialization, optional
                license_number and experience_years
    """
    model_config = ConfigDict(extra='forbid')

    metadata: ProfileMetadata
