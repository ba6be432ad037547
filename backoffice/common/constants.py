"""Enums and constants for the back office — matching PostgreSQL ENUM types."""

from __future__ import annotations

import enum


# ── Employee ────────────────────────────────────────────────────────

class WorkStatus(str, enum.Enum):
    working = "Working"
    not_working = "Not Working"


class EmployeeKycStatus(str, enum.Enum):
    pending = "pending"
    approved = "approved"
    rejected = "rejected"


# ── Auth / Roles ────────────────────────────────────────────────────

class UserRole(str, enum.Enum):
    employee = "employee"
    manager = "manager"
    hr = "hr"
    admin = "admin"


# Human-readable Employee.role labels → login role.
# Keys are normalised with ``normalise_role_label``; anything else maps
# to DEFAULT_USER_ROLE.
ROLE_LABELS: dict[str, UserRole] = {
    "admin": UserRole.admin,
    "administrator": UserRole.admin,
    "system admin": UserRole.admin,
    "system administrator": UserRole.admin,
    "super admin": UserRole.admin,
    "hr": UserRole.hr,
    "human resources": UserRole.hr,
    "hr executive": UserRole.hr,
    "hr manager": UserRole.hr,
    "manager": UserRole.manager,
    "team lead": UserRole.manager,
    "team manager": UserRole.manager,
    "project manager": UserRole.manager,
    "engineering manager": UserRole.manager,
    "employee": UserRole.employee,
    "staff": UserRole.employee,
    "intern": UserRole.employee,
}

DEFAULT_USER_ROLE = UserRole.employee


def normalise_role_label(label: str) -> str:
    return " ".join(label.replace("_", " ").replace("-", " ").lower().split())


# ── KYC ─────────────────────────────────────────────────────────────

class KycStatus(str, enum.Enum):
    pending = "pending"
    approved = "approved"
    rejected = "rejected"
    partially_rejected = "partially_rejected"


class DocumentReviewStatus(str, enum.Enum):
    pending = "pending"
    approved = "approved"
    rejected = "rejected"
    resubmitted = "resubmitted"


class IdentityDocumentType(str, enum.Enum):
    aadhaar = "aadhaar"
    pan = "pan"
    passport = "passport"
    driver_license = "driver_license"


# Upload field → (document label, max files). Multi-file labels are
# numbered: "Education Document 1", "Education Document 2", ...
KYC_UPLOAD_FIELDS: dict[str, tuple[str, int]] = {
    "doc_front": ("Document Front", 1),
    "doc_back": ("Document Back", 1),
    "selfie": ("Selfie", 1),
    "aadhaar_card": ("Aadhaar Card", 1),
    "pan_card": ("PAN Card", 1),
    "employee_photo": ("Employee Photo", 1),
    "aadhaar_front": ("Aadhaar Card - Front", 1),
    "aadhaar_back": ("Aadhaar Card - Back", 1),
    "salary_slip_month_1": ("Salary Slip - Month 1", 1),
    "salary_slip_month_2": ("Salary Slip - Month 2", 1),
    "salary_slip_month_3": ("Salary Slip - Month 3", 1),
    "bank_proof": ("Bank Proof (Cancelled Cheque/Passbook)", 1),
    "education_documents": ("Education Document", 10),
    "additional_documents": ("Additional Document", 5),
}

# Upload field names used by older clients.
KYC_UPLOAD_FIELD_ALIASES: dict[str, str] = {
    "docFront": "doc_front",
    "docBack": "doc_back",
    "panCard": "pan_card",
    "aadharCard": "aadhaar_card",
    "employeePhoto": "employee_photo",
    "additionalDocs": "additional_documents",
}

# Documents that are reviewed one by one.
REVIEWABLE_DOCUMENTS: tuple[str, ...] = (
    "salary_slip_month_1",
    "salary_slip_month_2",
    "salary_slip_month_3",
    "bank_proof",
    "aadhaar_front",
    "aadhaar_back",
    "employee_photo",
    "pan_card",
)

EDUCATION_DOCUMENTS = "education_documents"

ALLOWED_UPLOAD_MIME_TYPES: frozenset[str] = frozenset({
    "application/pdf",
    "image/jpeg",
    "image/jpg",
    "image/png",
    "image/webp",
    "application/msword",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
})

ALLOWED_UPLOAD_EXTENSIONS: frozenset[str] = frozenset({
    ".pdf", ".jpg", ".jpeg", ".png", ".webp",
})


# ── Notifications ───────────────────────────────────────────────────

class NotificationType(str, enum.Enum):
    info = "info"
    success = "success"
    warning = "warning"
    error = "error"


# ── Misc constants ──────────────────────────────────────────────────

PLACEHOLDER_CODE_PREFIX = "USER_"
APPROVED_PASSWORD_PLACEHOLDER = "Your set password"
MALFORMED_CODES = frozenset({"", "0", "undefined", "null", "none"})
