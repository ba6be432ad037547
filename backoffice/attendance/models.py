"""Attendance ORM model.

Check-in/out handling lives outside this service; rows are read here only
as deletion targets keyed by the employee's email.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Optional

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column

from backoffice.database import Base


class Attendance(Base):
    __tablename__ = "attendance"

    id: Mapped[int] = mapped_column(sa.Integer, primary_key=True, autoincrement=True)
    email: Mapped[str] = mapped_column(sa.String(255), nullable=False, index=True)
    name: Mapped[Optional[str]] = mapped_column(sa.String(255))
    work_date: Mapped[date] = mapped_column("date", sa.Date, nullable=False)
    check_in: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))
    check_out: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))
    status: Mapped[str] = mapped_column(sa.String(20), default="checked_in")
    is_late: Mapped[bool] = mapped_column(sa.Boolean, default=False)
    notes: Mapped[Optional[str]] = mapped_column(sa.Text)

    def __repr__(self) -> str:
        return f"<Attendance {self.email} {self.work_date}>"
