"""Employee code allocation.

Two formats coexist:

* provisional — ``<PROVISIONAL_CODE_PREFIX><year><4 random digits>``,
  e.g. ``EMP20260042``, assigned when an employee is created;
* permanent — ``<PERMANENT_CODE_PREFIX><n>``, e.g. ``RST1007``, assigned on
  KYC approval, ``n`` strictly increasing from ``PERMANENT_CODE_START``.

Both allocators read the stored codes and pick a value that is free at
that moment. Two concurrent callers can pick the same value, so the
write goes through ``assign_with_retry``, which treats a unique-constraint
violation on the code column as a reason to draw again.
"""

from __future__ import annotations

import logging
import re
import secrets
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Iterable, Optional

from sqlalchemy import func, or_, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from backoffice.common.exceptions import CodeAllocationConflict
from backoffice.config import settings
from backoffice.employees.models import Employee

logger = logging.getLogger(__name__)


def _permanent_pattern() -> re.Pattern[str]:
    return re.compile(rf"^{re.escape(settings.PERMANENT_CODE_PREFIX)}(\d+)$")


def is_permanent_code(code: Optional[str]) -> bool:
    return bool(code) and _permanent_pattern().match(code) is not None


# ── Provisional codes ───────────────────────────────────────────────

def provisional_code(year: Optional[int] = None) -> str:
    year = year or datetime.now(timezone.utc).year
    return f"{settings.PROVISIONAL_CODE_PREFIX}{year}{secrets.randbelow(10000):04d}"


async def _code_taken(db: AsyncSession, code: str) -> bool:
    result = await db.execute(
        select(Employee.id).where(
            or_(Employee.employee_code == code, Employee.emp_id == code),
        ),
    )
    return result.first() is not None


async def allocate_provisional(db: AsyncSession) -> str:
    """Draw provisional codes until one is unused (best effort)."""
    candidate = provisional_code()
    for _ in range(settings.CODE_ALLOCATION_ATTEMPTS):
        if not await _code_taken(db, candidate):
            return candidate
        candidate = provisional_code()
    # Let the unique constraint arbitrate
    return candidate


# ── Permanent codes ─────────────────────────────────────────────────

def _max_suffix(codes: Iterable[Optional[str]]) -> Optional[int]:
    pattern = _permanent_pattern()
    numbers = [
        int(match.group(1))
        for match in (pattern.match(code) for code in codes if code)
        if match
    ]
    return max(numbers) if numbers else None


async def next_permanent_code(db: AsyncSession) -> str:
    """``max(existing suffix) + 1``, compared as integers.

    Falls back to ``PERMANENT_CODE_START + count(employees)`` when the
    lookup fails.
    """
    prefix = settings.PERMANENT_CODE_PREFIX
    like = f"{prefix}%"
    try:
        async with db.begin_nested():
            result = await db.execute(
                select(Employee.emp_id, Employee.employee_code).where(
                    or_(Employee.emp_id.like(like), Employee.employee_code.like(like)),
                ),
            )
            rows = result.all()
    except SQLAlchemyError:
        logger.exception("Permanent code lookup failed; falling back to row count")
        count = (await db.execute(select(func.count()).select_from(Employee))).scalar_one()
        return f"{prefix}{settings.PERMANENT_CODE_START + count}"

    highest = _max_suffix(code for row in rows for code in row)
    if highest is None or highest < settings.PERMANENT_CODE_START:
        return f"{prefix}{settings.PERMANENT_CODE_START}"
    return f"{prefix}{highest + 1}"


# ── Retry on conflict ───────────────────────────────────────────────

async def assign_with_retry(
    db: AsyncSession,
    allocate: Callable[[AsyncSession], Awaitable[str]],
    apply: Callable[[str], Any],
    *,
    field: str,
    refresh: Iterable[Any] = (),
) -> str:
    """Allocate a code, apply it and flush inside a SAVEPOINT.

    A unique violation on *field* rolls back the SAVEPOINT, reloads the
    objects in *refresh* and tries a fresh code, up to
    ``CODE_ALLOCATION_ATTEMPTS`` times. Other integrity errors propagate.
    """
    refresh = list(refresh)
    code = ""
    for attempt in range(1, settings.CODE_ALLOCATION_ATTEMPTS + 1):
        code = await allocate(db)
        try:
            async with db.begin_nested():
                apply(code)
                await db.flush()
        except IntegrityError as exc:
            if field not in str(exc.orig):
                raise
            logger.warning(
                "Code %s for %s already taken (attempt %d/%d)",
                code, field, attempt, settings.CODE_ALLOCATION_ATTEMPTS,
            )
            for obj in refresh:
                await db.refresh(obj)
            continue
        return code

    raise CodeAllocationConflict(field, code)
