"""Auth service — password login, JWT issuance, password change."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi.exceptions import HTTPException
from jose import jwt
from sqlalchemy.ext.asyncio import AsyncSession

from backoffice.auth.credentials import get_user_by_email, hash_password, verify_password
from backoffice.auth.models import AccessLog, User
from backoffice.common.exceptions import ValidationException
from backoffice.config import settings

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 8


# ── JWT helpers ─────────────────────────────────────────────────────

def create_access_token(user: User) -> tuple[str, int]:
    """Return (encoded_jwt, expires_in_seconds)."""
    expires_in = settings.JWT_EXPIRY_HOURS * 3600
    payload = {
        "sub": str(user.id),
        "role": user.role.value,
        "type": "access",
        "exp": datetime.now(timezone.utc) + timedelta(hours=settings.JWT_EXPIRY_HOURS),
    }
    token = jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)
    return token, expires_in


# ── Access log ──────────────────────────────────────────────────────

async def record_access(
    db: AsyncSession,
    email: Optional[str],
    action: str,
    ip: Optional[str],
    user_agent: Optional[str],
) -> None:
    db.add(AccessLog(email=email, action=action, ip=ip, user_agent=user_agent))
    await db.flush()


# ── Login ───────────────────────────────────────────────────────────

async def authenticate(
    db: AsyncSession,
    email: str,
    password: str,
    *,
    ip: Optional[str] = None,
    user_agent: Optional[str] = None,
) -> User:
    """Verify credentials; every attempt leaves an AccessLog row."""
    user = await get_user_by_email(db, email)
    if user is None or not verify_password(password, user.password_hash):
        await record_access(db, email.lower(), "failed_login", ip, user_agent)
        # Commit the log row before the 401 rolls the session back
        await db.commit()
        logger.info("Failed login for %s", email)
        raise HTTPException(status_code=401, detail="Invalid email or password.")

    if not user.active:
        await record_access(db, user.email, "failed_login", ip, user_agent)
        await db.commit()
        raise HTTPException(status_code=401, detail="User account is inactive.")

    await record_access(db, user.email, "login", ip, user_agent)
    return user


async def change_password(
    db: AsyncSession,
    user: User,
    current_password: str,
    new_password: str,
) -> None:
    if not verify_password(current_password, user.password_hash):
        raise ValidationException({"current_password": ["Current password is incorrect."]})
    if len(new_password) < MIN_PASSWORD_LENGTH:
        raise ValidationException(
            {"new_password": [f"Password must be at least {MIN_PASSWORD_LENGTH} characters."]},
        )
    if new_password == current_password:
        raise ValidationException(
            {"new_password": ["New password must differ from the current one."]},
        )

    user.password_hash = hash_password(new_password)
    user.must_change_password = False
    user.updated_at = datetime.now(timezone.utc)
    await db.flush()
    logger.info("Password changed for %s", user.email)
