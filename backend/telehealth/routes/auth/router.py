from fastapi import APIRouter, Depends, HTTPException, status, Response, Cookie
from sqlalchemy.ext.asyncio import AsyncSession
from telehealth.core.auth import create_tokens_for_user
from telehealth.config.settings import env, settings
from telehealth.db.crud.auth import (
    authenticate_user,
    complete_onboarding,
    create_user,
    refresh_user_token,
    update_role,
)
from telehealth.db.models.user import UserModel
from telehealth.schemas.auth import (
    AuthResponse,
    LoginRequest,
    OnboardingRequest,
    RegisterRequest,
    RoleUpdateRequest,
)
from telehealth.core.middleware import get_current_db_user, get_db
from telehealth.schemas.shared import UserOut as User

router = APIRouter(
    prefix="/auth",
    tags=["auth"],
)

# determine secure flag
secure_cookie = env == "production"


def set_auth_cookies(response: Response, tokens: AuthResponse) -> None:
    response.set_cookie(
        key="session",
        value=tokens.access_token,
        httponly=True,
        secure=secure_cookie,
        samesite="lax",
        max_age=settings.access_token_expire_minutes * 60
    )
    response.set_cookie(
        key="refresh",
        value=tokens.refresh_token,
        httponly=True,
        secure=secure_cookie,
        samesite="lax",
        max_age=settings.refresh_token_expire_days * 86400
    )


@router.post("/register", response_model=AuthResponse, status_code=status.HTTP_201_CREATED)
async def register(
    user_data: RegisterRequest,
    response: Response,
    db: AsyncSession = Depends(get_db)
):
    new_user = await create_user(db, user_data)
    tokens = create_tokens_for_user(new_user)
    set_auth_cookies(response, tokens)
    return tokens

@router.post("/login", response_model=AuthResponse)
async def login(
    login_data: LoginRequest,
    response: Response,
    db: AsyncSession = Depends(get_db)
):
    user = await authenticate_user(db, login_data)
    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )
    tokens = create_tokens_for_user(user)
    set_auth_cookies(response, tokens)
    return tokens

@router.post("/refresh", response_model=AuthResponse)
async def refresh(
    response: Response,
    refresh_token: str = Cookie(None, alias="refresh"),
    db: AsyncSession = Depends(get_db)
):
    tokens = await refresh_user_token(db, refresh_token)
    set_auth_cookies(response, tokens)
    return tokens

@router.post("/logout", status_code=status.HTTP_204_NO_CONTENT)
async def logout():
    response = Response(status_code=status.HTTP_204_NO_CONTENT)
    response.delete_cookie(key="session")
    response.delete_cookie(key="refresh")
    return response

@router.get("/session", response_model=User)
async def session(user: UserModel = Depends(get_current_db_user)):
    """The signed-in account with its role and onboarding state."""
    return user

@router.patch("/role", response_model=User)
async def select_role(
    body: RoleUpdateRequest,
    user: UserModel = Depends(get_current_db_user),
    db: AsyncSession = Depends(get_db),
):
    return await update_role(db, user.id, body.role.value)

@router.post("/onboarding", response_model=AuthResponse)
async def onboarding(
    body: OnboardingRequest,
    response: Response,
    user: UserModel = Depends(get_current_db_user),
    db: AsyncSession = Depends(get_db),
):
    """
    Store the profile and fix the role. Returns fresh tokens because the
    role claim changes with onboarding.
    """
    updated = await complete_onboarding(db, user.id, body.metadata)
    tokens = create_tokens_for_user(updated)
    set_auth_cookies(response, tokens)
    return tokens
