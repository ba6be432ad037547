"""Employee deletion — soft (deactivate) and hard (cascade) policies.

The hard delete is a sequence of steps rather than one transaction: each
step runs in its own SAVEPOINT, and a failing step is logged, recorded
in the summary and skipped so the remaining steps still run. Only the
final step, removing the Employee row itself, may fail the request.
Dependent tables reference the employee by email or code, never by
foreign key, so every step matches on those keys.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from typing import Any, Awaitable, Callable

from sqlalchemy import delete, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from backoffice.attendance.models import Attendance
from backoffice.auth.models import AccessLog, User
from backoffice.common.constants import WorkStatus
from backoffice.employees.models import Employee
from backoffice.kyc.models import Kyc
from backoffice.kyc.storage import DocumentStore, RemovalSummary
from backoffice.leave.models import Leave
from backoffice.payroll.models import Payslip

logger = logging.getLogger(__name__)


@dataclass
class DeletionSummary:
    kyc_requests: int = 0
    attendance: int = 0
    leaves: int = 0
    payslips: int = 0
    access_logs: int = 0
    users: int = 0
    employee: int = 0
    files: RemovalSummary = field(default_factory=RemovalSummary)
    failed_steps: list[dict[str, str]] = field(default_factory=list)

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


# ── Soft delete ─────────────────────────────────────────────────────

async def soft_delete(db: AsyncSession, employee: Employee) -> DeletionSummary:
    """Deactivate the employee and their login; dependents stay as they are."""
    summary = DeletionSummary()
    employee.is_active = False
    employee.status = WorkStatus.not_working

    result = await db.execute(
        select(User).where(func.lower(User.email) == employee.email.lower()),
    )
    user = result.scalars().first()
    if user is not None:
        user.active = False
        summary.users = 1
    else:
        logger.info("Soft delete of %s: no login account to deactivate", employee.email)

    await db.flush()
    summary.employee = 1
    return summary


# ── Hard delete steps ───────────────────────────────────────────────

async def _delete_kyc(
    db: AsyncSession, employee: Employee, store: DocumentStore, summary: DeletionSummary,
) -> list[dict[str, Any]]:
    result = await db.execute(
        select(Kyc).where(
            or_(
                Kyc.employee_id.in_(employee.codes()),
                func.lower(Kyc.full_name) == employee.name.lower(),
            ),
        ),
    )
    rows = result.scalars().all()
    documents = [doc for row in rows for doc in row.document_list]
    for row in rows:
        await db.delete(row)
    await db.flush()
    summary.kyc_requests = len(rows)
    return documents


async def _delete_attendance(
    db: AsyncSession, employee: Employee, store: DocumentStore, summary: DeletionSummary,
) -> list[dict[str, Any]]:
    result = await db.execute(
        delete(Attendance).where(func.lower(Attendance.email) == employee.email.lower()),
    )
    summary.attendance = result.rowcount or 0
    return []


async def _delete_leaves(
    db: AsyncSession, employee: Employee, store: DocumentStore, summary: DeletionSummary,
) -> list[dict[str, Any]]:
    result = await db.execute(
        select(Leave).where(func.lower(Leave.email) == employee.email.lower()),
    )
    rows = result.scalars().all()
    attachments = [{"path": row.attachment_url} for row in rows if row.attachment_url]
    for row in rows:
        await db.delete(row)
    await db.flush()
    summary.leaves = len(rows)
    return attachments


async def _delete_payslips(
    db: AsyncSession, employee: Employee, store: DocumentStore, summary: DeletionSummary,
) -> list[dict[str, Any]]:
    result = await db.execute(
        delete(Payslip).where(
            or_(
                Payslip.employee_id == employee.id,
                func.lower(Payslip.employee_email) == employee.email.lower(),
            ),
        ),
    )
    summary.payslips = result.rowcount or 0
    return []


async def _delete_access_logs(
    db: AsyncSession, employee: Employee, store: DocumentStore, summary: DeletionSummary,
) -> list[dict[str, Any]]:
    result = await db.execute(
        delete(AccessLog).where(func.lower(AccessLog.email) == employee.email.lower()),
    )
    summary.access_logs = result.rowcount or 0
    return []


async def _delete_user(
    db: AsyncSession, employee: Employee, store: DocumentStore, summary: DeletionSummary,
) -> list[dict[str, Any]]:
    result = await db.execute(
        delete(User).where(func.lower(User.email) == employee.email.lower()),
    )
    summary.users = result.rowcount or 0
    return []


Step = Callable[
    [AsyncSession, Employee, DocumentStore, DeletionSummary],
    Awaitable[list[dict[str, Any]]],
]

# Order matters: the Employee row goes last, after everything that points at it.
HARD_DELETE_STEPS: list[tuple[str, Step]] = [
    ("kyc_requests", _delete_kyc),
    ("attendance", _delete_attendance),
    ("leaves", _delete_leaves),
    ("payslips", _delete_payslips),
    ("access_logs", _delete_access_logs),
    ("users", _delete_user),
]


async def hard_delete(
    db: AsyncSession,
    employee: Employee,
    store: DocumentStore,
) -> DeletionSummary:
    """Remove the employee and every row and file that references them."""
    summary = DeletionSummary()
    label = f"{employee.public_code or employee.id} <{employee.email}>"
    files: list[dict[str, Any]] = []

    for name, step in HARD_DELETE_STEPS:
        try:
            async with db.begin_nested():
                files.extend(await step(db, employee, store, summary))
        except Exception as exc:
            logger.exception("Hard delete of %s: step %s failed", label, name)
            summary.failed_steps.append({"step": name, "error": str(exc)})
            await db.refresh(employee)

    async with db.begin_nested():
        await db.delete(employee)
        await db.flush()
    summary.employee = 1

    # Unlink only once every row is gone; a failure above keeps the files
    if files:
        summary.files.merge(store.remove(files))

    logger.info(
        "Hard-deleted %s: %d kyc, %d attendance, %d leaves, %d payslips, "
        "%d access logs, %d users, %d files removed, %d missing, %d failed steps",
        label, summary.kyc_requests, summary.attendance, summary.leaves,
        summary.payslips, summary.access_logs, summary.users,
        summary.files.removed, summary.files.missing, len(summary.failed_steps),
    )
    return summary
