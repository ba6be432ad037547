"""Common module — shared utilities for the employee back office."""

from backoffice.common.audit import AuditTrail, create_audit_entry
from backoffice.common.constants import (
    DEFAULT_USER_ROLE,
    ROLE_LABELS,
    DocumentReviewStatus,
    EmployeeKycStatus,
    IdentityDocumentType,
    KycStatus,
    NotificationType,
    UserRole,
    WorkStatus,
)
from backoffice.common.exceptions import (
    AppException,
    CodeAllocationConflict,
    ConflictError,
    ForbiddenException,
    InvalidTransition,
    KycResubmissionBlocked,
    NotFoundException,
    ValidationException,
    register_exception_handlers,
)

__all__ = [
    # Audit
    "AuditTrail",
    "create_audit_entry",
    # Constants / Enums
    "DocumentReviewStatus",
    "EmployeeKycStatus",
    "IdentityDocumentType",
    "KycStatus",
    "NotificationType",
    "UserRole",
    "WorkStatus",
    "ROLE_LABELS",
    "DEFAULT_USER_ROLE",
    # Exceptions
    "AppException",
    "CodeAllocationConflict",
    "ConflictError",
    "ForbiddenException",
    "InvalidTransition",
    "KycResubmissionBlocked",
    "NotFoundException",
    "ValidationException",
    "register_exception_handlers",
]
