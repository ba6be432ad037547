"""Auth router — password login, current user profile, password change."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from backoffice.auth.dependencies import get_current_user
from backoffice.auth.models import User
from backoffice.auth.schemas import (
    ChangePasswordRequest,
    LoginRequest,
    MeResponse,
    TokenResponse,
    UserInfo,
)
from backoffice.auth.service import authenticate, change_password, create_access_token
from backoffice.database import get_db
from backoffice.employees.models import Employee

router = APIRouter(prefix="", tags=["auth"])


def _user_info(user: User) -> UserInfo:
    return UserInfo(
        id=user.id,
        name=user.name,
        email=user.email,
        role=user.role.value,
        must_change_password=user.must_change_password,
    )


# ── POST /login — Email + password ─────────────────────────────────

@router.post("/login", response_model=TokenResponse)
async def login(
    body: LoginRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
):
    ip = request.client.host if request.client else None
    user_agent = request.headers.get("user-agent")
    user = await authenticate(db, body.email, body.password, ip=ip, user_agent=user_agent)

    access_token, expires_in = create_access_token(user)
    return TokenResponse(
        access_token=access_token,
        expires_in=expires_in,
        user=_user_info(user),
    )


# ── GET /me — Current user profile ─────────────────────────────────

@router.get("/me", response_model=MeResponse)
async def me(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    result = await db.execute(
        select(Employee).where(func.lower(Employee.email) == user.email.lower()),
    )
    employee = result.scalars().first()

    return MeResponse(
        **_user_info(user).model_dump(),
        employee_code=employee.public_code if employee else None,
        kyc_status=employee.kyc_status.value if employee else None,
    )


# ── POST /change-password ──────────────────────────────────────────

@router.post("/change-password")
async def change_own_password(
    body: ChangePasswordRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    await change_password(db, user, body.current_password, body.new_password)
    return {"message": "Password changed successfully."}
