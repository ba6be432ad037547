"""KYC ORM model — one verification attempt per row."""

from __future__ import annotations

from datetime import date, datetime
from typing import Any, Optional

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column

from backoffice.common.constants import IdentityDocumentType, KycStatus
from backoffice.database import Base, JSONType


class Kyc(Base):
    """A KYC submission.

    ``employee_id`` holds the employee's public code as a string. It is a
    soft reference: nothing stops it from drifting when the code changes,
    which is why lookups fall back to ``full_name`` and ``email``.

    ``documents`` keeps the uploaded files plus the personal, bank and
    emergency-contact blocks::

        {"documents": [{"type", "field", "path", "originalName"}, ...],
         "personalInfo": {...}, "emergencyContact": {...}, "bankAccount": {...}}

    ``document_reviews`` keeps itemised review state::

        {"pan_card": {"status": "approved", "remark": None},
         "education_documents": [{"status": "rejected", "remark": "blurry"}]}
    """

    __tablename__ = "kyc_requests"

    id: Mapped[int] = mapped_column(sa.Integer, primary_key=True, autoincrement=True)
    employee_id: Mapped[Optional[str]] = mapped_column(sa.String(50), index=True)
    full_name: Mapped[str] = mapped_column(sa.String(255), nullable=False, index=True)
    email: Mapped[Optional[str]] = mapped_column(sa.String(255))
    dob: Mapped[Optional[date]] = mapped_column(sa.Date)
    address: Mapped[Optional[str]] = mapped_column(sa.Text)
    document_type: Mapped[Optional[IdentityDocumentType]] = mapped_column(
        sa.Enum(IdentityDocumentType, name="identity_document_type"),
    )
    document_number: Mapped[Optional[str]] = mapped_column(sa.String(100))
    documents: Mapped[dict[str, Any]] = mapped_column(JSONType, default=dict)
    document_reviews: Mapped[dict[str, Any]] = mapped_column(JSONType, default=dict)
    status: Mapped[KycStatus] = mapped_column(
        sa.Enum(KycStatus, name="kyc_status"),
        default=KycStatus.pending,
        nullable=False,
    )
    submitted_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), server_default=sa.func.now(),
    )
    reviewed_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))
    reviewed_by: Mapped[Optional[str]] = mapped_column(sa.String(255))
    remarks: Mapped[Optional[str]] = mapped_column(sa.Text)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), server_default=sa.func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), server_default=sa.func.now(),
    )

    # ── Helpers ─────────────────────────────────────────────────────

    @property
    def document_list(self) -> list[dict[str, Any]]:
        return list((self.documents or {}).get("documents", []))

    def __repr__(self) -> str:
        return f"<Kyc {self.id} {self.employee_id} {self.status.value}>"
