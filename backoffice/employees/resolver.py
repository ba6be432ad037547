"""Employee resolution for KYC.

A Kyc row references its employee by a free-text code that may predate
the current code format, so finding "the employee behind this request"
is a fallback chain. Each use gets its own named function; the matched
strategy is reported so callers can log how confident the match was.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Iterable, Literal, Optional

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from backoffice.common.constants import MALFORMED_CODES, PLACEHOLDER_CODE_PREFIX
from backoffice.common.exceptions import ValidationException
from backoffice.employees.models import Employee

logger = logging.getLogger(__name__)

MatchedBy = Literal["code", "name", "email", "supplied", "placeholder"]


@dataclass
class Resolution:
    employee: Optional[Employee]
    code: str
    matched_by: MatchedBy


def is_well_formed(code: Optional[str]) -> bool:
    return code is not None and code.strip().lower() not in MALFORMED_CODES


def placeholder_code() -> str:
    return f"{PLACEHOLDER_CODE_PREFIX}{int(time.time() * 1000)}"


# ── Lookups ─────────────────────────────────────────────────────────

async def find_by_code(db: AsyncSession, code: str) -> Optional[Employee]:
    """Employee whose provisional or permanent code equals *code*."""
    result = await db.execute(
        select(Employee)
        .where(or_(Employee.emp_id == code, Employee.employee_code == code))
        .order_by(Employee.id),
    )
    return result.scalars().first()


async def find_by_name(
    db: AsyncSession,
    name: str,
    *,
    exact: bool = False,
) -> Optional[Employee]:
    column = Employee.name
    condition = column == name if exact else func.lower(column) == name.strip().lower()
    result = await db.execute(select(Employee).where(condition).order_by(Employee.id))
    return result.scalars().first()


async def find_by_email(db: AsyncSession, email: str) -> Optional[Employee]:
    result = await db.execute(
        select(Employee).where(func.lower(Employee.email) == email.strip().lower()),
    )
    return result.scalars().first()


@dataclass
class EmployeeIndex:
    """Employees keyed the way ``find_by_code`` and ``find_by_name`` match."""

    by_code: dict[str, Employee] = field(default_factory=dict)
    by_name: dict[str, Employee] = field(default_factory=dict)

    def lookup(self, code: Optional[str], full_name: str) -> Optional[Employee]:
        employee = self.by_code.get(code) if code else None
        if employee is None:
            employee = self.by_name.get(full_name.strip().lower())
        return employee


async def index_employees(
    db: AsyncSession,
    codes: Iterable[str],
    names: Iterable[str],
) -> EmployeeIndex:
    """Load every employee matching any of *codes* or *names* in one query.

    The lowest id wins a shared key, as in the single-row lookups.
    """
    codes = {code for code in codes if code}
    names = {name.strip().lower() for name in names if name}
    index = EmployeeIndex()
    if not codes and not names:
        return index

    result = await db.execute(
        select(Employee)
        .where(
            or_(
                Employee.emp_id.in_(codes),
                Employee.employee_code.in_(codes),
                func.lower(Employee.name).in_(names),
            ),
        )
        .order_by(Employee.id),
    )
    for employee in result.scalars():
        for code in (employee.emp_id, employee.employee_code):
            if code:
                index.by_code.setdefault(code, employee)
        index.by_name.setdefault(employee.name.lower(), employee)
    return index


# ── Submission ──────────────────────────────────────────────────────

async def resolve_for_submission(
    db: AsyncSession,
    code: Optional[str],
    full_name: str,
    email: Optional[str] = None,
) -> Resolution:
    """Pick the employee and code a new Kyc row should carry.

    1. a well-formed *code* whose employee has *full_name*;
    2. the employee named *full_name*;
    3. the employee with *email*;
    4. the supplied code as-is, unless it belongs to somebody else;
    5. a ``USER_<epoch-ms>`` placeholder.
    """
    supplied = code.strip() if is_well_formed(code) else None

    owner: Optional[Employee] = None
    if supplied:
        owner = await find_by_code(db, supplied)
        if owner is not None and owner.name.lower() == full_name.strip().lower():
            return Resolution(owner, owner.public_code or supplied, "code")

    by_name = await find_by_name(db, full_name)
    if by_name is not None:
        return Resolution(by_name, by_name.public_code or supplied or placeholder_code(), "name")

    if email:
        by_email = await find_by_email(db, email)
        if by_email is not None:
            return Resolution(by_email, by_email.public_code or supplied or placeholder_code(), "email")

    if supplied:
        if owner is not None:
            logger.info(
                "Rejected KYC for %r: code %s belongs to %r",
                full_name, supplied, owner.name,
            )
            raise ValidationException(
                {"employee_id": ["Employee ID does not match employee name."]},
            )
        return Resolution(None, supplied, "supplied")

    return Resolution(None, placeholder_code(), "placeholder")


# ── Review ──────────────────────────────────────────────────────────

async def match_for_review(
    db: AsyncSession,
    *,
    code: Optional[str],
    full_name: Optional[str],
    email: Optional[str],
) -> Optional[Employee]:
    """Employee a reviewed Kyc row belongs to: code, exact name, email, any-case name."""
    if is_well_formed(code):
        employee = await find_by_code(db, code.strip())
        if employee is not None:
            return employee

    if full_name:
        employee = await find_by_name(db, full_name, exact=True)
        if employee is not None:
            return employee

    if email:
        employee = await find_by_email(db, email)
        if employee is not None:
            return employee

    if full_name:
        return await find_by_name(db, full_name)
    return None
