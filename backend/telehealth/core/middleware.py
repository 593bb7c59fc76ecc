from fastapi import Request, HTTPException, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Optional

from .auth import identity_from_token
from telehealth.db.session import get_db_session
from telehealth.db.crud.user import get_user
from telehealth.db.models.user import UserModel

# List of paths that should be excluded from authentication checks
PUBLIC_PATHS = [
    "/auth/login",
    "/auth/register",
    "/auth/refresh",
    "/health",
    "/docs",
    "/openapi.json",
    "/redoc"
]


def token_from_request(request) -> Optional[str]:
    """Session cookie first, then an `Authorization: Bearer` header."""
    session_cookie = request.cookies.get("session")
    if session_cookie:
        return session_cookie
    auth_header = request.headers.get("Authorization")
    if auth_header and auth_header.startswith("Bearer "):
        return auth_header.split(" ", 1)[1]
    return None


async def verify_token_middleware(request: Request, call_next):
    """
    Middleware to check the session cookie and add the authenticated user to request state.
    This doesn't block unauthenticated requests, but just adds user info if authenticated.
    """
    request.state.user = None

    # Skip authentication for public paths
    if any(request.url.path.startswith(public_path) for public_path in PUBLIC_PATHS):
        return await call_next(request)

    request.state.user = identity_from_token(token_from_request(request))
    return await call_next(request)

# FastAPI dependency for protected routes
def get_current_user(request: Request):
    """
    Dependency to use in FastAPI route functions that require authentication.
    This will raise an HTTPException if the user is not authenticated.
    """
    if not getattr(request.state, "user", None):
        raise HTTPException(status_code=401, detail="Not authenticated")
    return request.state.user

# Database session dependency used by every router
get_db = get_db_session

async def get_current_db_user(
    db: AsyncSession = Depends(get_db), current_user: dict = Depends(get_current_user)
) -> UserModel:
    """
    The authenticated caller as a database row. Authorization decisions use
    the stored role, not the role claim baked into the token.
    """
    db_user = await get_user(db, int(current_user["user_id"]))

    if not db_user:
        raise HTTPException(status_code=401, detail="User not found")

    return db_user

def require_roles(roles: list):
    """
    Factory function to create a dependency that requires specific roles.
    Usage: @router.get("/x", dependencies=[Depends(require_roles(["doctor"]))])
    """
    async def _require_roles(user: UserModel = Depends(get_current_db_user)):
        if user.role not in roles:
            raise HTTPException(status_code=403, detail="Not enough permissions")
        return user

    return _require_roles
