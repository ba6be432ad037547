"""Employee service layer — lifecycle of an employee record.

Uses:
  - ``assign_with_retry`` / ``allocate_provisional`` from backoffice.employees.allocator
  - ``issue`` from backoffice.auth.credentials
  - ``soft_delete`` / ``hard_delete`` from backoffice.employees.deletion
  - ``create_audit_entry`` from backoffice.common.audit

Everything after the Employee insert is best effort: a failure to create
the login or send the welcome mail is logged and returned as a warning,
never as an error, because the employee row is already written.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from backoffice.auth import credentials
from backoffice.common.audit import create_audit_entry
from backoffice.common.constants import UserRole
from backoffice.common.exceptions import (
    ConflictError,
    ForbiddenException,
    NotFoundException,
    ValidationException,
)
from backoffice.common.pagination import PaginatedResponse, PaginationParams, paginate
from backoffice.employees.allocator import allocate_provisional, assign_with_retry
from backoffice.employees.deletion import hard_delete, soft_delete
from backoffice.employees.models import Employee
from backoffice.employees.schemas import (
    CreateOutcome,
    DeletionResponse,
    EmployeeCreate,
    EmployeeResponse,
    EmployeeUpdate,
    UpdateOutcome,
)
from backoffice.kyc.storage import DocumentStore
from backoffice.notifications.mailer import EmailNotifier

logger = logging.getLogger(__name__)


def _snapshot(employee: Employee) -> dict[str, Any]:
    return EmployeeResponse.model_validate(employee).model_dump(mode="json")


async def _email_taken(
    db: AsyncSession,
    email: str,
    *,
    exclude_id: Optional[int] = None,
) -> bool:
    """True if any employee, active or not, already uses *email*."""
    query = select(Employee.id).where(func.lower(Employee.email) == email.lower())
    if exclude_id is not None:
        query = query.where(Employee.id != exclude_id)
    return (await db.execute(query)).first() is not None


# ═════════════════════════════════════════════════════════════════════
# EmployeeService
# ═════════════════════════════════════════════════════════════════════


class EmployeeService:
    """Async lifecycle operations for employees."""

    # ── List ────────────────────────────────────────────────────────

    @staticmethod
    async def list_employees(
        db: AsyncSession,
        pagination: PaginationParams,
        *,
        search: Optional[str] = None,
        include_inactive: bool = False,
    ) -> PaginatedResponse:
        query = select(Employee)
        if not include_inactive:
            query = query.where(Employee.is_active.is_(True))
        if search:
            pattern = f"%{search.strip().lower()}%"
            query = query.where(
                or_(
                    func.lower(Employee.name).like(pattern),
                    func.lower(Employee.email).like(pattern),
                    func.lower(Employee.employee_code).like(pattern),
                    func.lower(Employee.emp_id).like(pattern),
                ),
            )
        return await paginate(db, query, pagination, model=Employee)

    # ── Get single ──────────────────────────────────────────────────

    @staticmethod
    async def get_employee(db: AsyncSession, employee_id: int) -> Employee:
        result = await db.execute(select(Employee).where(Employee.id == employee_id))
        employee = result.scalars().first()
        if employee is None:
            raise NotFoundException("Employee", employee_id)
        return employee

    # ── Create ──────────────────────────────────────────────────────

    @staticmethod
    async def create_employee(
        db: AsyncSession,
        data: EmployeeCreate,
        *,
        notifier: EmailNotifier,
        actor_id: Optional[int] = None,
    ) -> CreateOutcome:
        """Insert the employee, then issue a login and send the welcome mail."""
        if await _email_taken(db, data.email):
            raise ValidationException(
                {"email": [f"An employee with email '{data.email}' already exists."]},
            )

        fields = data.model_dump()
        fields["name"] = fields["name"].upper()
        created: list[Employee] = []

        def _insert(code: str) -> None:
            employee = Employee(**fields, employee_code=code)
            db.add(employee)
            created[:] = [employee]

        try:
            await assign_with_retry(db, allocate_provisional, _insert, field="employee_code")
        except IntegrityError as exc:
            if "email" in str(exc.orig):
                raise ConflictError("email", data.email)
            raise

        employee = created[0]
        await db.refresh(employee)
        logger.info("Created employee %s (%s)", employee.employee_code, employee.email)

        await create_audit_entry(
            db,
            action="create",
            entity_type="employee",
            entity_id=employee.id,
            actor_id=actor_id,
            new_values=_snapshot(employee),
        )

        warnings: list[str] = []

        # Login account
        temp_password: Optional[str] = None
        try:
            async with db.begin_nested():
                temp_password = await credentials.issue(db, employee)
        except Exception as exc:
            logger.exception("Could not issue credentials for %s", employee.email)
            warnings.append(f"Login account could not be created: {exc}")
            await db.refresh(employee)

        # Welcome mail
        if not employee.has_system_access:
            notification = "skipped"
        elif temp_password is None:
            notification = "skipped"
            warnings.append("Welcome email not sent because no login account was created.")
        else:
            sent = await notifier.send(
                employee.email,
                "new_employee",
                {
                    "full_name": employee.name,
                    "temp_employee_id": employee.public_code,
                    "temp_password": temp_password,
                },
            )
            notification = "sent" if sent.success else "failed"
            if not sent.success:
                warnings.append(f"Welcome email could not be sent: {sent.error}")

        return CreateOutcome(
            employee=EmployeeResponse.model_validate(employee),
            temp_password=temp_password,
            credentials_issued=temp_password is not None,
            notification=notification,
            warnings=warnings,
        )

    # ── Update ──────────────────────────────────────────────────────

    @staticmethod
    async def update_employee(
        db: AsyncSession,
        employee_id: int,
        data: EmployeeUpdate,
        *,
        actor_id: Optional[int] = None,
    ) -> UpdateOutcome:
        """Partial update, then mirror identity fields onto the login account."""
        employee = await EmployeeService.get_employee(db, employee_id)

        changes = data.model_dump(exclude_unset=True)
        if not changes:
            return UpdateOutcome(
                employee=EmployeeResponse.model_validate(employee),
                user_synced=False,
            )

        new_email = changes.get("email")
        if new_email and new_email != employee.email.lower():
            if await _email_taken(db, new_email, exclude_id=employee.id):
                raise ValidationException(
                    {"email": [f"An employee with email '{new_email}' already exists."]},
                )
        if changes.get("name"):
            changes["name"] = changes["name"].upper()

        previous_email = employee.email
        old_values = _snapshot(employee)
        for field_name, value in changes.items():
            setattr(employee, field_name, value)
        employee.updated_at = datetime.now(timezone.utc)

        try:
            async with db.begin_nested():
                await db.flush()
        except IntegrityError as exc:
            if "email" in str(exc.orig):
                raise ConflictError("email", new_email)
            raise

        await create_audit_entry(
            db,
            action="update",
            entity_type="employee",
            entity_id=employee.id,
            actor_id=actor_id,
            old_values={k: old_values.get(k) for k in changes},
            new_values=EmployeeUpdate.model_validate(changes).model_dump(
                mode="json", exclude_unset=True,
            ),
        )

        warnings: list[str] = []
        user_synced = False
        try:
            async with db.begin_nested():
                user = await credentials.get_user_by_email(db, previous_email)
                if user is not None:
                    user.name = employee.name
                    user.email = employee.email
                    user.role = credentials.role_for_label(employee.role)
                    user.active = employee.has_system_access
                    user.updated_at = datetime.now(timezone.utc)
                    await db.flush()
                    user_synced = True
                else:
                    logger.info("No login account for %s; nothing to sync", previous_email)
        except Exception as exc:
            logger.exception("Could not sync login account for %s", previous_email)
            warnings.append(f"Login account could not be updated: {exc}")
            await db.refresh(employee)

        return UpdateOutcome(
            employee=EmployeeResponse.model_validate(employee),
            user_synced=user_synced,
            warnings=warnings,
        )

    # ── Delete ──────────────────────────────────────────────────────

    @staticmethod
    async def delete_employee(
        db: AsyncSession,
        employee_id: int,
        *,
        caller_role: UserRole,
        store: DocumentStore,
        actor_id: Optional[int] = None,
    ) -> DeletionResponse:
        """``hr`` deactivates, ``admin`` removes everything; nobody else may delete."""
        if caller_role not in (UserRole.hr, UserRole.admin):
            raise ForbiddenException("Only HR or admin users can delete employees.")

        employee = await EmployeeService.get_employee(db, employee_id)
        old_values = _snapshot(employee)

        if caller_role == UserRole.hr:
            summary = await soft_delete(db, employee)
            deletion_type = "soft"
        else:
            summary = await hard_delete(db, employee, store)
            deletion_type = "permanent"

        await create_audit_entry(
            db,
            action="soft_delete" if deletion_type == "soft" else "hard_delete",
            entity_type="employee",
            entity_id=employee_id,
            actor_id=actor_id,
            old_values=old_values,
            new_values=summary.as_dict(),
        )
        logger.info("Employee %s deleted (%s) by user %s", employee_id, deletion_type, actor_id)

        return DeletionResponse(deletion_type=deletion_type, summary=summary.as_dict())
