"""
Auth Router — self-service registration and password login.

Both endpoints return the user together with a bearer token.
"""

import structlog
from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from api.deps import get_db
from api.v1.routers.users import UserResponse
from core.roles import SELF_SERVICE_ROLES, Role
from core.security import create_access_token, hash_password, verify_password
from db.models import User

router = APIRouter(prefix="/api/v1/auth", tags=["auth"])
logger = structlog.get_logger()


# ─── Schemas ────────────────────────────────────────────────────────────────


class RegisterRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    email: str = Field(..., pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$", max_length=255)
    password: str = Field(..., min_length=8, max_length=128)
    role: Role
    phone: str | None = Field(None, max_length=30)
    address: str | None = None


class LoginRequest(BaseModel):
    email: str
    password: str


class AuthResponse(BaseModel):
    user: UserResponse
    access_token: str
    token_type: str = "bearer"


def _issue(user: User) -> AuthResponse:
    token = create_access_token({"sub": str(user.user_id), "role": user.role})
    return AuthResponse(user=UserResponse.model_validate(user), access_token=token)


# ─── Endpoints ──────────────────────────────────────────────────────────────


@router.post("/register", response_model=AuthResponse, status_code=201)
async def register(
    body: RegisterRequest,
    db: AsyncSession = Depends(get_db),
):
    if body.role not in SELF_SERVICE_ROLES:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=f"Role '{body.role.value}' cannot self-register",
        )

    email = body.email.strip().lower()
    existing = await db.execute(select(User.user_id).where(func.lower(User.email) == email))
    if existing.first() is not None:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Email already registered")

    user = User(
        name=body.name,
        email=email,
        phone=body.phone,
        address=body.address,
        hashed_password=hash_password(body.password),
        role=body.role.value,
        balance=0.0,
    )
    db.add(user)
    await db.commit()
    await db.refresh(user)

    logger.info("auth.registered", user_id=str(user.user_id), role=user.role)
    return _issue(user)


@router.post("/login", response_model=AuthResponse)
async def login(
    body: LoginRequest,
    db: AsyncSession = Depends(get_db),
):
    result = await db.execute(select(User).where(func.lower(User.email) == body.email.strip().lower()))
    user = result.scalar_one_or_none()
    if user is None or not verify_password(body.password, user.hashed_password):
        logger.warning("auth.login_failed", email=body.email)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Incorrect email or password",
            headers={"WWW-Authenticate": "Bearer"},
        )
    if not user.is_active:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Account is disabled")

    return _issue(user)
