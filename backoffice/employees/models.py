"""Employee ORM model.

SQLAlchemy 2.0 async-compatible model with Mapped[] annotations.
Employees are linked to users, KYC submissions and the attendance /
leave / payslip / access-log tables only by email and employee code;
none of those tables carries a foreign key to ``employees``.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Optional

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column

from backoffice.common.constants import EmployeeKycStatus, WorkStatus
from backoffice.database import Base


class Employee(Base):
    """Core employee record — identity of a person in the organisation."""

    __tablename__ = "employees"

    # ── Primary key ─────────────────────────────────────────────────
    id: Mapped[int] = mapped_column(sa.Integer, primary_key=True, autoincrement=True)

    # ── Identity ────────────────────────────────────────────────────
    name: Mapped[str] = mapped_column(sa.String(255), nullable=False)
    email: Mapped[str] = mapped_column(sa.String(255), unique=True, nullable=False)
    mobile_number: Mapped[Optional[str]] = mapped_column(sa.String(20))

    # ── Codes ───────────────────────────────────────────────────────
    # Provisional code assigned at creation (legacy "employeeId" column).
    employee_code: Mapped[Optional[str]] = mapped_column(sa.String(30), unique=True)
    # Permanent code assigned at KYC approval.
    emp_id: Mapped[Optional[str]] = mapped_column(sa.String(30), unique=True)

    # ── Job ─────────────────────────────────────────────────────────
    role: Mapped[Optional[str]] = mapped_column(sa.String(100))
    department: Mapped[Optional[str]] = mapped_column(sa.String(150))
    designation: Mapped[Optional[str]] = mapped_column(sa.String(150))
    position: Mapped[Optional[str]] = mapped_column(sa.String(150))
    location: Mapped[Optional[str]] = mapped_column(sa.String(150))
    hire_date: Mapped[Optional[date]] = mapped_column(sa.Date)
    salary: Mapped[Optional[Decimal]] = mapped_column(sa.Numeric(12, 2))

    # ── Status flags ────────────────────────────────────────────────
    status: Mapped[WorkStatus] = mapped_column(
        sa.Enum(
            WorkStatus,
            name="work_status",
            values_callable=lambda e: [m.value for m in e],
        ),
        default=WorkStatus.working,
        nullable=False,
    )
    is_active: Mapped[bool] = mapped_column(sa.Boolean, default=True, nullable=False)
    can_access_system: Mapped[bool] = mapped_column(
        sa.Boolean, default=True, nullable=False,
    )
    kyc_status: Mapped[EmployeeKycStatus] = mapped_column(
        sa.Enum(EmployeeKycStatus, name="employee_kyc_status"),
        default=EmployeeKycStatus.pending,
        nullable=False,
    )

    # ── Timestamps ──────────────────────────────────────────────────
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), server_default=sa.func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), server_default=sa.func.now(),
    )

    # ── Helpers ─────────────────────────────────────────────────────

    @property
    def public_code(self) -> Optional[str]:
        """Permanent code once KYC is approved, otherwise the provisional one."""
        return self.emp_id or self.employee_code

    @property
    def has_system_access(self) -> bool:
        return bool(self.is_active and self.can_access_system)

    def codes(self) -> list[str]:
        """Every string this employee may be referenced by from other tables."""
        values = [self.emp_id, self.employee_code, str(self.id) if self.id else None]
        return [v for v in values if v]

    def __repr__(self) -> str:
        return f"<Employee {self.public_code} {self.name}>"
