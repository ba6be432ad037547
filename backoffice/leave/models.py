"""Leave ORM model — deletion target keyed by email."""

from __future__ import annotations

from datetime import date, datetime
from typing import Optional

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column

from backoffice.database import Base


class Leave(Base):
    __tablename__ = "leaves"

    id: Mapped[int] = mapped_column(sa.Integer, primary_key=True, autoincrement=True)
    email: Mapped[str] = mapped_column(sa.String(255), nullable=False, index=True)
    name: Mapped[Optional[str]] = mapped_column(sa.String(255))
    type: Mapped[str] = mapped_column(sa.String(20), default="casual", nullable=False)
    start_date: Mapped[date] = mapped_column(sa.Date, nullable=False)
    end_date: Mapped[date] = mapped_column(sa.Date, nullable=False)
    reason: Mapped[Optional[str]] = mapped_column(sa.Text)
    # Public path of an uploaded attachment, e.g. /uploads/leaves/<file>
    attachment_url: Mapped[Optional[str]] = mapped_column(sa.String(500))
    status: Mapped[str] = mapped_column(sa.String(20), default="pending")
    applied_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), server_default=sa.func.now(),
    )

    def __repr__(self) -> str:
        return f"<Leave {self.email} {self.start_date}..{self.end_date}>"
