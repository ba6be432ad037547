"""KYC router — submission, review, re-upload, file serving.

Routes:
    POST   /kyc                                   — Submit (multipart, no auth, rate limited)
    GET    /kyc                                   — List (manager+) or own status (?email=)
    GET    /kyc/file/{filename}                   — Serve a stored document
    GET    /kyc/{id}                              — Single submission (manager+)
    POST   /kyc/{id}/review                       — Review whole submission (manager+)
    POST   /kyc/{id}/documents/{type}/review      — Review one document (manager+)
    POST   /kyc/{id}/documents/{type}/reupload    — Replace a rejected document
    POST   /kyc/reminders/{employee_id}           — Mail a KYC reminder (manager+)
    DELETE /kyc/{id}                              — Delete submission and files (manager+)
"""


from typing import Optional

from fastapi import APIRouter, Depends, File, Form, Query, Request, UploadFile
from fastapi.responses import FileResponse
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.datastructures import UploadFile as StarletteUploadFile

from backoffice.auth.dependencies import get_current_user, is_at_least, require_role
from backoffice.auth.models import User
from backoffice.common.constants import KYC_UPLOAD_FIELD_ALIASES, KycStatus, UserRole
from backoffice.common.exceptions import ForbiddenException, ValidationException
from backoffice.common.rate_limit import limiter
from backoffice.config import settings
from backoffice.database import get_db
from backoffice.kyc.schemas import DocumentReviewRequest, KycResponse, KycReviewRequest, KycSubmit
from backoffice.kyc.service import KycService
from backoffice.kyc.storage import DocumentStore, get_document_store
from backoffice.notifications.mailer import EmailNotifier, get_notifier

router = APIRouter(prefix="", tags=["kyc"])


def _field_errors(exc: ValidationError) -> dict[str, list[str]]:
    errors: dict[str, list[str]] = {}
    for err in exc.errors():
        name = ".".join(str(p) for p in err.get("loc", ())) or "form"
        errors.setdefault(name, []).append(err.get("msg", "Invalid value"))
    return errors


# ── POST /kyc — Submit ─────────────────────────────────────────────

@router.post("", status_code=201)
@limiter.limit(settings.KYC_SUBMIT_RATE_LIMIT)
async def submit_kyc(
    request: Request,
    db: AsyncSession = Depends(get_db),
    store: DocumentStore = Depends(get_document_store),
):
    """Self-service submission; callers need not be logged in yet."""
    form = await request.form()
    text_fields: dict[str, str] = {}
    uploads: list[tuple[str, StarletteUploadFile]] = []
    for key, value in form.multi_items():
        if isinstance(value, StarletteUploadFile):
            uploads.append((KYC_UPLOAD_FIELD_ALIASES.get(key, key), value))
        else:
            text_fields[key] = value

    try:
        data = KycSubmit.model_validate(text_fields)
    except ValidationError as exc:
        raise ValidationException(_field_errors(exc))

    outcome = await KycService.submit_kyc(db, data, uploads, store=store)
    return {
        "data": outcome.model_dump(mode="json"),
        "message": "KYC submitted successfully.",
    }


# ── GET /kyc — List or own status ──────────────────────────────────

@router.get("")
async def list_kyc(
    request: Request,
    email: Optional[str] = Query(None, description="Return the KYC status for this e-mail"),
    status: Optional[KycStatus] = Query(None, description="Filter by status"),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    is_staff = is_at_least(request.state.user_role, UserRole.manager)

    if email:
        if not is_staff and email.strip().lower() != current_user.email.lower():
            raise ForbiddenException("You can only check your own KYC status.")
        result = await KycService.get_status_for_email(db, email.strip())
        return {"data": result.model_dump(mode="json")}

    if not is_staff:
        raise ForbiddenException("Only managers, HR or admin users can list KYC requests.")

    items = await KycService.list_kyc(db, status)
    return {"data": [item.model_dump(mode="json") for item in items]}


# ── GET /kyc/file/{filename} — Serve document ──────────────────────

@router.get("/file/{filename}")
async def get_file(
    filename: str,
    store: DocumentStore = Depends(get_document_store),
    current_user: User = Depends(get_current_user),
):
    return FileResponse(store.resolve(filename))


# ── GET /kyc/{id} ──────────────────────────────────────────────────

@router.get("/{kyc_id}")
async def get_kyc(
    kyc_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_role(UserRole.manager)),
):
    kyc = await KycService.get_kyc(db, kyc_id)
    return {"data": KycResponse.from_kyc(kyc).model_dump(mode="json")}


# ── POST /kyc/{id}/review — Whole submission ───────────────────────

@router.post("/{kyc_id}/review")
async def review_kyc(
    kyc_id: int,
    body: KycReviewRequest,
    db: AsyncSession = Depends(get_db),
    notifier: EmailNotifier = Depends(get_notifier),
    current_user: User = Depends(require_role(UserRole.manager)),
):
    outcome = await KycService.review_kyc(
        db,
        kyc_id,
        body.status,
        current_user.email,
        body.remarks,
        notifier=notifier,
        actor_id=current_user.id,
    )
    return {
        "data": outcome.model_dump(mode="json"),
        "message": f"KYC {body.status.replace('_', ' ')}.",
    }


# ── POST /kyc/{id}/documents/{type}/review — Single document ───────

@router.post("/{kyc_id}/documents/{document_type}/review")
async def review_document(
    kyc_id: int,
    document_type: str,
    body: DocumentReviewRequest,
    db: AsyncSession = Depends(get_db),
    notifier: EmailNotifier = Depends(get_notifier),
    current_user: User = Depends(require_role(UserRole.manager)),
):
    outcome = await KycService.review_document(
        db,
        kyc_id,
        document_type,
        body.action,
        body.remark,
        current_user.email,
        index=body.index,
        notifier=notifier,
        actor_id=current_user.id,
    )
    verb = "approved" if body.action == "approve" else "rejected"
    return {"data": outcome.model_dump(mode="json"), "message": f"Document {verb}."}


# ── POST /kyc/{id}/documents/{type}/reupload ───────────────────────

@router.post("/{kyc_id}/documents/{document_type}/reupload")
async def reupload_document(
    kyc_id: int,
    document_type: str,
    request: Request,
    file: UploadFile = File(...),
    index: Optional[int] = Form(None, ge=0),
    db: AsyncSession = Depends(get_db),
    store: DocumentStore = Depends(get_document_store),
    current_user: User = Depends(get_current_user),
):
    kyc = await KycService.reupload_document(
        db,
        kyc_id,
        document_type,
        file,
        store=store,
        requester=current_user,
        requester_role=request.state.user_role,
        index=index,
    )
    return {
        "data": kyc.model_dump(mode="json"),
        "message": "Document re-uploaded. It is pending review again.",
    }


# ── POST /kyc/reminders/{employee_id} ─────────────────────────────

@router.post("/reminders/{employee_id}")
async def send_reminder(
    employee_id: int,
    db: AsyncSession = Depends(get_db),
    notifier: EmailNotifier = Depends(get_notifier),
    current_user: User = Depends(require_role(UserRole.manager)),
):
    sent = await KycService.send_reminder(db, employee_id, notifier=notifier)
    return {
        "data": {"sent": sent.success, "error": sent.error},
        "message": "Reminder sent." if sent.success else "Reminder could not be sent.",
    }


# ── DELETE /kyc/{id} ───────────────────────────────────────────────

@router.delete("/{kyc_id}")
async def delete_kyc(
    kyc_id: int,
    db: AsyncSession = Depends(get_db),
    store: DocumentStore = Depends(get_document_store),
    current_user: User = Depends(require_role(UserRole.manager)),
):
    summary = await KycService.delete_kyc(db, kyc_id, store=store, actor_id=current_user.id)
    return {
        "data": {
            "files_removed": summary.removed,
            "files_missing": summary.missing,
            "files_failed": summary.failed,
        },
        "message": "KYC record deleted successfully.",
    }
