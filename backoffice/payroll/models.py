"""Payslip ORM model — deletion target keyed by employee id or email."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column

from backoffice.database import Base


class Payslip(Base):
    __tablename__ = "payslips"

    id: Mapped[int] = mapped_column(sa.Integer, primary_key=True, autoincrement=True)
    # Numeric Employee.id, copied at generation time; not a foreign key.
    employee_id: Mapped[int] = mapped_column(sa.Integer, nullable=False, index=True)
    employee_name: Mapped[str] = mapped_column(sa.String(255), nullable=False)
    employee_email: Mapped[str] = mapped_column(sa.String(255), nullable=False, index=True)
    month: Mapped[int] = mapped_column(sa.Integer, nullable=False)
    year: Mapped[int] = mapped_column(sa.Integer, nullable=False)
    basic_salary: Mapped[Decimal] = mapped_column(sa.Numeric(10, 2), nullable=False)
    net_salary: Mapped[Decimal] = mapped_column(sa.Numeric(10, 2), nullable=False)
    status: Mapped[str] = mapped_column(sa.String(20), default="pending")
    generated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), server_default=sa.func.now(),
    )
    paid_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))

    def __repr__(self) -> str:
        return f"<Payslip {self.employee_email} {self.month}/{self.year}>"
