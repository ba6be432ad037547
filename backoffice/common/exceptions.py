"""Custom exceptions and RFC 7807 Problem Detail error handlers."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

BASE_ERROR_URI = "https://backoffice.local/errors"


# ── Exception hierarchy ─────────────────────────────────────────────

class AppException(Exception):
    """Base for all application exceptions → RFC 7807 JSON."""

    def __init__(
        self,
        status_code: int,
        error_type: str,
        title: str,
        detail: str,
        errors: Optional[dict[str, Any]] = None,
        extra: Optional[dict[str, Any]] = None,
    ) -> None:
        self.status_code = status_code
        self.error_type = error_type
        self.title = title
        self.detail = detail
        self.errors = errors
        self.extra = extra or {}
        super().__init__(detail)


class NotFoundException(AppException):
    """404 — entity not found."""

    def __init__(self, entity_type: str, entity_id: Any) -> None:
        super().__init__(
            status_code=404,
            error_type="not-found",
            title=f"{entity_type} Not Found",
            detail=f"{entity_type} with id '{entity_id}' does not exist.",
        )


class ConflictError(AppException):
    """409 — unique-constraint / duplicate."""

    def __init__(self, field: str, value: Any, *, retryable: bool = False) -> None:
        self.retryable = retryable
        super().__init__(
            status_code=409,
            error_type="conflict",
            title="Conflict",
            detail=f"An entry with {field}='{value}' already exists.",
            errors={field: [f"'{value}' is already in use."]},
            extra={"retryable": retryable},
        )


class CodeAllocationConflict(ConflictError):
    """409 — every allocated employee code collided with a concurrent insert."""

    def __init__(self, field: str, last_value: Any) -> None:
        super().__init__(field, last_value, retryable=True)
        self.error_type = "code-allocation-conflict"
        self.detail = (
            f"Could not allocate a unique {field}; another request took "
            f"'{last_value}'. Retry the request."
        )


class ForbiddenException(AppException):
    """403 — insufficient permissions."""

    def __init__(
        self,
        detail: str = "You do not have permission to perform this action.",
    ) -> None:
        super().__init__(
            status_code=403,
            error_type="forbidden",
            title="Forbidden",
            detail=detail,
        )


class ValidationException(AppException):
    """422 — business-logic validation failures."""

    def __init__(self, errors: dict[str, list[str]]) -> None:
        super().__init__(
            status_code=422,
            error_type="validation-error",
            title="Validation Error",
            detail="One or more fields failed validation.",
            errors=errors,
        )


class KycResubmissionBlocked(AppException):
    """409 — an earlier submission still blocks a new one."""

    def __init__(self, status: str, submitted_at: Optional[datetime]) -> None:
        messages = {
            "pending": "KYC is already pending review. Please wait for admin approval.",
            "approved": "KYC has already been approved. No resubmission needed.",
            "partially_rejected": (
                "KYC has rejected documents. Re-upload the rejected documents "
                "instead of submitting again."
            ),
        }
        super().__init__(
            status_code=409,
            error_type="kyc-resubmission-blocked",
            title="KYC Resubmission Blocked",
            detail=messages.get(status, f"KYC is {status}."),
            extra={
                "kyc_status": status,
                "submitted_at": submitted_at.isoformat() if submitted_at else None,
            },
        )


class InvalidTransition(AppException):
    """409 — a state change that the current state does not permit."""

    def __init__(self, entity_type: str, current: str, requested: str) -> None:
        super().__init__(
            status_code=409,
            error_type="invalid-transition",
            title="Invalid State Transition",
            detail=f"{entity_type} in state '{current}' cannot move to '{requested}'.",
            extra={"current_status": current, "requested_status": requested},
        )


# ── RFC 7807 builder ────────────────────────────────────────────────

def _build_problem_detail(exc: AppException, request: Request) -> dict[str, Any]:
    body: dict[str, Any] = {
        "type": f"{BASE_ERROR_URI}/{exc.error_type}",
        "title": exc.title,
        "status": exc.status_code,
        "detail": exc.detail,
        "instance": str(request.url.path),
    }
    if exc.errors:
        body["errors"] = exc.errors
    body.update(exc.extra)
    return body


# ── FastAPI handlers ────────────────────────────────────────────────

async def _handle_app_exception(
    request: Request,
    exc: AppException,
) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content=_build_problem_detail(exc, request),
        media_type="application/problem+json",
    )


async def _handle_validation_error(
    request: Request,
    exc: RequestValidationError,
) -> JSONResponse:
    field_errors: dict[str, list[str]] = {}
    for err in exc.errors():
        loc = err.get("loc", ())
        name = (
            ".".join(str(p) for p in loc[1:])
            if len(loc) > 1
            else str(loc[0]) if loc else "unknown"
        )
        field_errors.setdefault(name, []).append(err.get("msg", "Invalid value"))

    return JSONResponse(
        status_code=422,
        content={
            "type": f"{BASE_ERROR_URI}/validation-error",
            "title": "Validation Error",
            "status": 422,
            "detail": "Request validation failed.",
            "instance": str(request.url.path),
            "errors": field_errors,
        },
        media_type="application/problem+json",
    )


# ── Registration helper (called from main.py) ──────────────────────

def register_exception_handlers(app: FastAPI) -> None:
    """Attach all custom exception handlers to the FastAPI app."""
    app.add_exception_handler(AppException, _handle_app_exception)          # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, _handle_validation_error)  # type: ignore[arg-type]
