"""Bearer-token authentication for dashboard users.

The token subject is the caller's profile id and the ``role`` claim is
``admin`` or ``user``. Admins see every contact; users only the contacts
whose ``user_id`` is their profile id. The Vapi webhook does not use these
tokens, it is checked by signature instead.
"""

import warnings
from datetime import datetime, timedelta, timezone
from typing import Annotated
from uuid import UUID

import jwt
from fastapi import APIRouter, Depends, HTTPException, Request, Security, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel

from crm_dialer.api.rate_limits import RateLimits, limiter
from crm_dialer.config import get_settings
from crm_dialer.core.logging import get_logger
from crm_dialer.db.repositories.profiles import ProfileRepository
from crm_dialer.dependencies import DatabaseDep
from crm_dialer.domain import Role

log = get_logger(__name__)

router = APIRouter()

bearer = HTTPBearer(auto_error=True)

DEV_SECRET = "INSECURE-DEV-SECRET-DO-NOT-USE-IN-PRODUCTION"
TOKEN_TYPE = "access"


class AuthenticatedUser(BaseModel):
    """Caller identity taken from a verified token."""

    id: str
    role: str = Role.USER.value

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN.value


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def signing_key() -> str:
    """``CRM_JWT_SECRET_KEY``, or a fixed development key outside production.

    Raises:
        ValueError: In production without a configured key
    """
    settings = get_settings()
    if settings.jwt_secret_key:
        return settings.jwt_secret_key
    if settings.is_production:
        raise ValueError("Set CRM_JWT_SECRET_KEY before running in production")
    warnings.warn(
        "CRM_JWT_SECRET_KEY is not set; tokens are signed with a development key",
        RuntimeWarning,
        stacklevel=2,
    )
    return DEV_SECRET


def create_access_token(
    profile_id: str,
    role: str = Role.USER.value,
    lifetime: timedelta | None = None,
) -> str:
    """Signed token for a profile, valid for ``jwt_expiry_minutes`` by default."""
    settings = get_settings()
    issued = datetime.now(timezone.utc)
    claims = {
        "sub": profile_id,
        "role": role,
        "type": TOKEN_TYPE,
        "iat": issued,
        "exp": issued + (lifetime or timedelta(minutes=settings.jwt_expiry_minutes)),
    }
    return jwt.encode(claims, signing_key(), algorithm=settings.jwt_algorithm)


def read_token(token: str) -> AuthenticatedUser:
    """Verify a token and return who it belongs to.

    Raises:
        HTTPException: 401 for expired, malformed or non-access tokens
    """
    try:
        claims = jwt.decode(
            token,
            signing_key(),
            algorithms=[get_settings().jwt_algorithm],
            options={"require": ["sub", "exp"]},
        )
    except jwt.ExpiredSignatureError:
        raise _unauthorized("Token has expired")
    except jwt.InvalidTokenError as e:
        raise _unauthorized(f"Invalid token: {e}")

    if claims.get("type", TOKEN_TYPE) != TOKEN_TYPE:
        raise _unauthorized("Not an access token")
    role = claims.get("role", Role.USER.value)
    if role not in {r.value for r in Role}:
        raise _unauthorized(f"Unknown role {role!r}")
    return AuthenticatedUser(id=str(claims["sub"]), role=role)


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Security(bearer),
) -> AuthenticatedUser:
    return read_token(credentials.credentials)


async def require_admin(
    user: AuthenticatedUser = Depends(get_current_user),
) -> AuthenticatedUser:
    if not user.is_admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin role required")
    return user


CurrentUser = Annotated[AuthenticatedUser, Depends(get_current_user)]
AdminUser = Annotated[AuthenticatedUser, Depends(require_admin)]


def owner_scope(user: AuthenticatedUser) -> UUID | None:
    """Owner filter for contact queries: None for admins, the profile id otherwise."""
    if user.is_admin:
        return None
    try:
        return UUID(user.id)
    except ValueError:
        raise _unauthorized("Token subject is not a profile id")


class TokenRequest(BaseModel):
    email: str


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_in: int
    role: str


@router.post("/auth/token", response_model=TokenResponse)
@limiter.limit(RateLimits.SENSITIVE)
async def issue_token(
    request: Request,
    data: TokenRequest,
    db: DatabaseDep,
) -> TokenResponse:
    """Token for an existing profile, looked up by email.

    For development and internal tooling only: answers 404 in production
    unless debug is on.
    """
    settings = get_settings()
    if settings.is_production and not settings.debug:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Not Found")

    profile = await ProfileRepository(db).find_by_email(data.email)
    if profile is None:
        raise _unauthorized("Unknown profile")

    log.info("Access token issued", profile_id=str(profile.id), role=profile.role)
    return TokenResponse(
        access_token=create_access_token(str(profile.id), role=profile.role),
        expires_in=settings.jwt_expiry_minutes * 60,
        role=profile.role,
    )
