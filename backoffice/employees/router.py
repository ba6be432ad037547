"""Employees router — CRUD endpoints with role-based access control.

Routes:
    /employees       — List, create employees
    /employees/{id}  — Get, update, delete an employee
"""


from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from backoffice.auth.dependencies import get_current_user, is_at_least, require_role
from backoffice.auth.models import User
from backoffice.common.constants import UserRole
from backoffice.common.exceptions import ForbiddenException
from backoffice.common.pagination import PaginationParams
from backoffice.database import get_db
from backoffice.employees.schemas import EmployeeCreate, EmployeeResponse, EmployeeUpdate
from backoffice.employees.service import EmployeeService
from backoffice.kyc.storage import DocumentStore, get_document_store
from backoffice.notifications.mailer import EmailNotifier, get_notifier

router = APIRouter(prefix="", tags=["employees"])


# ── GET /employees — List employees ─────────────────────────────────

@router.get("")
async def list_employees(
    request: Request,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_role(UserRole.manager)),
    pagination: PaginationParams = Depends(),
    search: Optional[str] = Query(None, description="Search by name, email, or employee code"),
    include_inactive: bool = Query(False, description="Include soft-deleted employees"),
):
    """List employees. Soft-deleted rows are visible to **hr** and above only."""
    if include_inactive and not is_at_least(request.state.user_role, UserRole.hr):
        raise ForbiddenException("Only HR or admin users can list inactive employees.")

    result = await EmployeeService.list_employees(
        db,
        pagination,
        search=search,
        include_inactive=include_inactive,
    )
    return {
        "data": [
            EmployeeResponse.model_validate(emp).model_dump(mode="json")
            for emp in result.data
        ],
        "meta": result.meta.model_dump(),
    }


# ── GET /employees/{id} — Single employee ──────────────────────────

@router.get("/{employee_id}")
async def get_employee(
    employee_id: int,
    request: Request,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Employees may read their own record; managers and above any record."""
    employee = await EmployeeService.get_employee(db, employee_id)
    is_own = employee.email.lower() == current_user.email.lower()
    if not is_own and not is_at_least(request.state.user_role, UserRole.manager):
        raise ForbiddenException("You can only view your own employee record.")

    return {
        "data": EmployeeResponse.model_validate(employee).model_dump(mode="json"),
        "message": "Employee retrieved successfully.",
    }


# ── POST /employees — Create employee ──────────────────────────────

@router.post("", status_code=201)
async def create_employee(
    body: EmployeeCreate,
    db: AsyncSession = Depends(get_db),
    notifier: EmailNotifier = Depends(get_notifier),
    current_user: User = Depends(require_role(UserRole.hr)),
):
    """Create an employee with a login account. Requires **hr** or above.

    The temporary password is returned once, here, and never stored in
    plaintext.
    """
    outcome = await EmployeeService.create_employee(
        db,
        body,
        notifier=notifier,
        actor_id=current_user.id,
    )
    return {
        "data": outcome.model_dump(mode="json"),
        "message": "Employee created successfully.",
    }


# ── PUT /employees/{id} — Update employee ──────────────────────────

@router.put("/{employee_id}")
async def update_employee(
    employee_id: int,
    body: EmployeeUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_role(UserRole.hr)),
):
    outcome = await EmployeeService.update_employee(
        db,
        employee_id,
        body,
        actor_id=current_user.id,
    )
    return {
        "data": outcome.model_dump(mode="json"),
        "message": "Employee updated successfully.",
    }


# ── DELETE /employees/{id} — Soft (hr) or permanent (admin) ────────

@router.delete("/{employee_id}")
async def delete_employee(
    employee_id: int,
    request: Request,
    db: AsyncSession = Depends(get_db),
    store: DocumentStore = Depends(get_document_store),
    current_user: User = Depends(require_role(UserRole.hr)),
):
    result = await EmployeeService.delete_employee(
        db,
        employee_id,
        caller_role=request.state.user_role,
        store=store,
        actor_id=current_user.id,
    )
    message = (
        "Employee deactivated."
        if result.deletion_type == "soft"
        else "Employee and all related records permanently deleted."
    )
    return {"data": result.model_dump(mode="json"), "message": message}
