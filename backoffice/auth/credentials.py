"""Credential issuer — temporary passwords, hashing, and the User upsert.

A User row mirrors an Employee by email. ``issue`` is the only place
that creates one for an employee; it always forces a password change on
next login and syncs ``active`` to the employee's access eligibility.
"""

from __future__ import annotations

import logging
import secrets
import string
from typing import Optional

from passlib.context import CryptContext
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from backoffice.auth.models import User
from backoffice.common.constants import (
    DEFAULT_USER_ROLE,
    ROLE_LABELS,
    UserRole,
    normalise_role_label,
)
from backoffice.config import settings
from backoffice.employees.models import Employee

logger = logging.getLogger(__name__)

pwd_context = CryptContext(
    schemes=["bcrypt"],
    deprecated="auto",
    bcrypt__rounds=settings.BCRYPT_ROUNDS,
)

_PASSWORD_ALPHABET = string.ascii_letters + string.digits


# ── Passwords ───────────────────────────────────────────────────────

def generate_temp_password(length: Optional[int] = None) -> str:
    """Random letters-and-digits password, always containing one of each."""
    length = max(length or settings.TEMP_PASSWORD_LENGTH, 8)
    while True:
        password = "".join(secrets.choice(_PASSWORD_ALPHABET) for _ in range(length))
        if any(c.isdigit() for c in password) and any(c.isalpha() for c in password):
            return password


def hash_password(plaintext: str) -> str:
    return pwd_context.hash(plaintext)


def verify_password(plaintext: str, digest: str) -> bool:
    try:
        return pwd_context.verify(plaintext, digest)
    except ValueError:
        # Malformed or unknown hash format
        return False


# ── Roles ───────────────────────────────────────────────────────────

def role_for_label(label: Optional[str]) -> UserRole:
    """Map a free-form Employee.role label onto a login role."""
    if not label:
        return DEFAULT_USER_ROLE
    return ROLE_LABELS.get(normalise_role_label(label), DEFAULT_USER_ROLE)


# ── User lookup / upsert ────────────────────────────────────────────

async def get_user_by_email(db: AsyncSession, email: str) -> Optional[User]:
    result = await db.execute(
        select(User).where(func.lower(User.email) == email.lower()),
    )
    return result.scalars().first()


async def issue(db: AsyncSession, employee: Employee) -> str:
    """Create or refresh the employee's login account.

    Returns the plaintext temporary password; only its hash is stored.
    """
    temp_password = generate_temp_password()
    digest = hash_password(temp_password)
    role = role_for_label(employee.role)

    user = await get_user_by_email(db, employee.email)
    if user is None:
        user = User(
            email=employee.email,
            name=employee.name,
            role=role,
            password_hash=digest,
            must_change_password=True,
            active=employee.has_system_access,
        )
        db.add(user)
        logger.info("Created login account for %s", employee.email)
    else:
        user.name = employee.name
        user.role = role
        user.password_hash = digest
        user.must_change_password = True
        user.active = employee.has_system_access
        logger.info("Reset login account for existing user %s", employee.email)

    await db.flush()
    return temp_password
