"""KYC service — submission gate, review state machine and its side effects.

States::

    not_submitted → pending → approved | rejected | partially_rejected
    rejected      → pending        (by a new submission, never in place)

Approval is the only transition that touches the Employee's identity: it
assigns the permanent code and re-points older Kyc rows at it.
"""

from __future__ import annotations

import copy
import logging
from datetime import datetime, timezone
from typing import Any, Optional, Sequence

from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.datastructures import UploadFile

from backoffice.auth.credentials import get_user_by_email
from backoffice.auth.dependencies import is_at_least
from backoffice.auth.models import User
from backoffice.common.audit import create_audit_entry
from backoffice.common.constants import (
    APPROVED_PASSWORD_PLACEHOLDER,
    EDUCATION_DOCUMENTS,
    REVIEWABLE_DOCUMENTS,
    DocumentReviewStatus,
    EmployeeKycStatus,
    KycStatus,
    UserRole,
)
from backoffice.common.exceptions import (
    ForbiddenException,
    InvalidTransition,
    KycResubmissionBlocked,
    NotFoundException,
    ValidationException,
)
from backoffice.config import settings
from backoffice.employees.allocator import (
    assign_with_retry,
    is_permanent_code,
    next_permanent_code,
)
from backoffice.employees.models import Employee
from backoffice.employees.resolver import (
    find_by_email,
    index_employees,
    match_for_review,
    resolve_for_submission,
)
from backoffice.kyc.models import Kyc
from backoffice.kyc.schemas import (
    KycResponse,
    KycStatusResponse,
    KycSubmit,
    RejectedDocument,
    RejectedFile,
    ReviewOutcome,
    SubmitOutcome,
)
from backoffice.kyc.storage import DocumentStore, RemovalSummary, document_label
from backoffice.notifications.mailer import EmailNotifier, SendResult
from backoffice.notifications.service import notify_kyc_document_rejected

logger = logging.getLogger(__name__)

# A new submission is refused while the latest one is in any of these.
BLOCKING_STATUSES = frozenset({
    KycStatus.pending,
    KycStatus.approved,
    KycStatus.partially_rejected,
})

# Rows a reviewer may act on when KYC_ALLOW_REREVIEW is turned off.
REVIEWABLE_STATUSES = frozenset({KycStatus.pending, KycStatus.partially_rejected})


# ── Document review helpers ─────────────────────────────────────────

def _submitted_fields(kyc: Kyc) -> tuple[list[str], int]:
    """Reviewable single-file fields present on *kyc* and its education count."""
    fields = {doc.get("field") for doc in kyc.document_list}
    singles = [name for name in REVIEWABLE_DOCUMENTS if name in fields]
    education = sum(1 for doc in kyc.document_list if doc.get("field") == EDUCATION_DOCUMENTS)
    return singles, education


def _review_entry(reviews: dict[str, Any], document_type: str, index: Optional[int]) -> dict[str, Any]:
    if document_type == EDUCATION_DOCUMENTS:
        entries = reviews.get(EDUCATION_DOCUMENTS) or []
        return entries[index] if index is not None and index < len(entries) else {}
    return reviews.get(document_type) or {}


def document_status(kyc: Kyc, document_type: str, index: Optional[int] = None) -> DocumentReviewStatus:
    entry = _review_entry(kyc.document_reviews or {}, document_type, index)
    return DocumentReviewStatus(entry.get("status", DocumentReviewStatus.pending.value))


def overall_status(kyc: Kyc) -> KycStatus:
    """Aggregate the itemised reviews of the documents actually submitted."""
    singles, education = _submitted_fields(kyc)
    statuses = [document_status(kyc, name) for name in singles]
    statuses += [document_status(kyc, EDUCATION_DOCUMENTS, i) for i in range(education)]

    if any(s == DocumentReviewStatus.rejected for s in statuses):
        return KycStatus.partially_rejected
    if not statuses or any(
        s in (DocumentReviewStatus.pending, DocumentReviewStatus.resubmitted) for s in statuses
    ):
        return KycStatus.pending
    return KycStatus.approved


def _set_review(
    kyc: Kyc,
    document_type: str,
    index: Optional[int],
    status: DocumentReviewStatus,
    remark: Optional[str],
) -> None:
    # Reassign the whole dict so the JSON column is flagged dirty
    reviews = copy.deepcopy(kyc.document_reviews or {})
    entry = {"status": status.value, "remark": remark}
    if document_type == EDUCATION_DOCUMENTS:
        entries = list(reviews.get(EDUCATION_DOCUMENTS) or [])
        while len(entries) <= index:
            entries.append({"status": DocumentReviewStatus.pending.value, "remark": None})
        entries[index] = entry
        reviews[EDUCATION_DOCUMENTS] = entries
    else:
        reviews[document_type] = entry
    kyc.document_reviews = reviews


def _validate_document_ref(kyc: Kyc, document_type: str, index: Optional[int]) -> None:
    if document_type == EDUCATION_DOCUMENTS:
        _, education = _submitted_fields(kyc)
        if index is None or not 0 <= index < education:
            raise ValidationException(
                {"index": [f"Education document index must be between 0 and {education - 1}."]}
                if education else
                {"index": ["This submission has no education documents."]},
            )
    elif document_type not in REVIEWABLE_DOCUMENTS:
        raise ValidationException(
            {"document_type": [f"Invalid document type: {document_type}."]},
        )


def _find_document(
    documents: list[dict[str, Any]],
    document_type: str,
    index: Optional[int],
) -> Optional[int]:
    """Position in *documents* of the given field (and education index)."""
    label = document_label(document_type, index or 0)
    seen = 0
    for position, doc in enumerate(documents):
        if doc.get("field") == document_type or (not doc.get("field") and doc.get("type") == label):
            if document_type != EDUCATION_DOCUMENTS or seen == index:
                return position
            seen += 1
    return None


# ═════════════════════════════════════════════════════════════════════
# KycService
# ═════════════════════════════════════════════════════════════════════


class KycService:
    """Async KYC operations."""

    @staticmethod
    async def get_kyc(db: AsyncSession, kyc_id: int) -> Kyc:
        result = await db.execute(select(Kyc).where(Kyc.id == kyc_id))
        kyc = result.scalars().first()
        if kyc is None:
            raise NotFoundException("KYC request", kyc_id)
        return kyc

    @staticmethod
    async def latest_for(
        db: AsyncSession,
        *,
        codes: Sequence[str] = (),
        full_name: Optional[str] = None,
    ) -> Optional[Kyc]:
        """Newest Kyc row for any of *codes*, else for *full_name* (any case)."""
        order = (Kyc.submitted_at.desc(), Kyc.id.desc())
        if codes:
            result = await db.execute(
                select(Kyc).where(Kyc.employee_id.in_(list(codes))).order_by(*order).limit(1),
            )
            kyc = result.scalars().first()
            if kyc is not None:
                return kyc
        if full_name:
            result = await db.execute(
                select(Kyc)
                .where(func.lower(Kyc.full_name) == full_name.strip().lower())
                .order_by(*order)
                .limit(1),
            )
            return result.scalars().first()
        return None

    # ── Submit ──────────────────────────────────────────────────────

    @staticmethod
    async def submit_kyc(
        db: AsyncSession,
        data: KycSubmit,
        uploads: Sequence[tuple[str, UploadFile]],
        *,
        store: DocumentStore,
    ) -> SubmitOutcome:
        """Create a new ``pending`` submission unless an earlier one blocks it."""
        resolution = await resolve_for_submission(db, data.employee_id, data.full_name, data.email)
        employee = resolution.employee

        codes = {resolution.code}
        if employee is not None:
            codes.update(employee.codes())
        latest = await KycService.latest_for(db, codes=sorted(codes), full_name=data.full_name)
        if latest is not None and latest.status in BLOCKING_STATUSES:
            logger.info(
                "Blocked KYC resubmission for %s: latest #%d is %s",
                resolution.code, latest.id, latest.status.value,
            )
            raise KycResubmissionBlocked(latest.status.value, latest.submitted_at)

        accepted = await store.accept(uploads)

        kyc = Kyc(
            employee_id=resolution.code,
            full_name=data.full_name,
            email=data.email or (employee.email if employee else None),
            dob=data.dob,
            address=data.address,
            document_type=data.document_type,
            document_number=data.document_number,
            documents={"documents": accepted.documents, **data.details()},
            document_reviews={},
            status=KycStatus.pending,
            submitted_at=datetime.now(timezone.utc),
        )
        db.add(kyc)
        try:
            await db.flush()
        except SQLAlchemyError:
            # The row is not written, so its files would be unreachable
            store.remove(accepted.documents)
            raise
        await db.refresh(kyc)

        logger.info(
            "KYC #%d submitted for %s (matched by %s, %d files, %d rejected)",
            kyc.id, resolution.code, resolution.matched_by,
            len(accepted.documents), len(accepted.rejected),
        )
        return SubmitOutcome(
            kyc=KycResponse.from_kyc(kyc),
            matched_by=resolution.matched_by,
            rejected_files=[
                RejectedFile(field=r.field, filename=r.filename, reason=r.reason)
                for r in accepted.rejected
            ],
        )

    # ── Approval side effects ───────────────────────────────────────

    @staticmethod
    async def _apply_approval(
        db: AsyncSession,
        kyc: Kyc,
        employee: Employee,
        notifier: EmailNotifier,
        warnings: list[str],
    ) -> str:
        """Give *employee* a permanent code and mark their KYC approved."""
        old_codes = set(employee.codes())
        if kyc.employee_id:
            old_codes.add(kyc.employee_id)

        existing = next(
            (code for code in (employee.emp_id, employee.employee_code) if is_permanent_code(code)),
            None,
        )
        if existing:
            employee.emp_id = existing
            permanent = existing
        else:
            permanent = await assign_with_retry(
                db,
                next_permanent_code,
                lambda code: setattr(employee, "emp_id", code),
                field="emp_id",
                refresh=[employee],
            )
            logger.info("Assigned permanent code %s to %s", permanent, employee.email)

        employee.kyc_status = EmployeeKycStatus.approved
        employee.updated_at = datetime.now(timezone.utc)

        old_codes.discard(permanent)
        if old_codes:
            await db.execute(
                update(Kyc)
                .where(Kyc.employee_id.in_(sorted(old_codes)))
                .values(employee_id=permanent, updated_at=datetime.now(timezone.utc)),
            )
        kyc.employee_id = permanent
        await db.flush()

        if not employee.has_system_access:
            logger.info("Approval mail skipped for %s: no system access", employee.email)
            return permanent

        user = await get_user_by_email(db, employee.email)
        if user is None or not user.active:
            logger.info("Approval mail skipped for %s: no active login", employee.email)
            return permanent

        sent = await notifier.send(
            employee.email,
            "kyc_approved",
            {
                "full_name": employee.name,
                "permanent_employee_id": permanent,
                "password": APPROVED_PASSWORD_PLACEHOLDER,
            },
        )
        if not sent.success:
            warnings.append(f"Approval email could not be sent: {sent.error}")
        return permanent

    # ── Review (whole submission) ───────────────────────────────────

    @staticmethod
    async def review_kyc(
        db: AsyncSession,
        kyc_id: int,
        status: str,
        reviewer: str,
        remarks: Optional[str] = None,
        *,
        notifier: EmailNotifier,
        actor_id: Optional[int] = None,
    ) -> ReviewOutcome:
        kyc = await KycService.get_kyc(db, kyc_id)
        requested = KycStatus(status)
        current = kyc.status

        if current not in REVIEWABLE_STATUSES and not settings.KYC_ALLOW_REREVIEW:
            raise InvalidTransition("KYC", current.value, requested.value)

        kyc.status = requested
        kyc.reviewed_at = datetime.now(timezone.utc)
        kyc.reviewed_by = reviewer
        kyc.remarks = remarks
        kyc.updated_at = datetime.now(timezone.utc)
        await db.flush()

        warnings: list[str] = []
        employee = await match_for_review(
            db, code=kyc.employee_id, full_name=kyc.full_name, email=kyc.email,
        )
        employee_code: Optional[str] = employee.public_code if employee else None

        if employee is None:
            logger.warning("KYC #%d reviewed but no employee matches %r", kyc.id, kyc.full_name)
            warnings.append(f"No employee record found for '{kyc.full_name}'.")
        elif requested == KycStatus.approved:
            employee_code = await KycService._apply_approval(db, kyc, employee, notifier, warnings)
        elif requested == KycStatus.rejected:
            employee.kyc_status = EmployeeKycStatus.rejected
            employee.updated_at = datetime.now(timezone.utc)
            await db.flush()

        await create_audit_entry(
            db,
            action="kyc_review",
            entity_type="kyc",
            entity_id=kyc.id,
            actor_id=actor_id,
            old_values={"status": current.value},
            new_values={"status": requested.value, "remarks": remarks, "employee_code": employee_code},
        )
        logger.info("KYC #%d: %s → %s by %s", kyc.id, current.value, requested.value, reviewer)

        return ReviewOutcome(
            kyc=KycResponse.from_kyc(kyc),
            employee_code=employee_code,
            warnings=warnings,
        )

    # ── Review (single document) ────────────────────────────────────

    @staticmethod
    async def review_document(
        db: AsyncSession,
        kyc_id: int,
        document_type: str,
        action: str,
        remark: Optional[str],
        reviewer: str,
        *,
        index: Optional[int] = None,
        notifier: EmailNotifier,
        actor_id: Optional[int] = None,
    ) -> ReviewOutcome:
        """Approve or reject one document and recompute the overall status."""
        if action not in ("approve", "reject"):
            raise ValidationException({"action": ["Action must be 'approve' or 'reject'."]})
        remark = (remark or "").strip() or None
        if action == "reject" and not remark:
            raise ValidationException({"remark": ["A remark is required when rejecting a document."]})

        kyc = await KycService.get_kyc(db, kyc_id)
        if kyc.status not in REVIEWABLE_STATUSES and not settings.KYC_ALLOW_REREVIEW:
            raise InvalidTransition("KYC", kyc.status.value, "document review")
        _validate_document_ref(kyc, document_type, index)

        previous = kyc.status
        new_status = DocumentReviewStatus.approved if action == "approve" else DocumentReviewStatus.rejected
        _set_review(kyc, document_type, index, new_status, remark if action == "reject" else None)
        kyc.status = overall_status(kyc)
        kyc.reviewed_at = datetime.now(timezone.utc)
        kyc.reviewed_by = reviewer
        kyc.updated_at = datetime.now(timezone.utc)
        await db.flush()

        warnings: list[str] = []
        employee = await match_for_review(
            db, code=kyc.employee_id, full_name=kyc.full_name, email=kyc.email,
        )
        employee_code: Optional[str] = employee.public_code if employee else None

        if kyc.status == KycStatus.approved and previous != KycStatus.approved:
            if employee is None:
                warnings.append(f"No employee record found for '{kyc.full_name}'.")
            else:
                employee_code = await KycService._apply_approval(db, kyc, employee, notifier, warnings)

        if action == "reject":
            await KycService._notify_rejection(db, kyc, employee, document_type, remark, index, warnings)

        await create_audit_entry(
            db,
            action="kyc_document_review",
            entity_type="kyc",
            entity_id=kyc.id,
            actor_id=actor_id,
            old_values={"status": previous.value},
            new_values={
                "document_type": document_type,
                "index": index,
                "document_status": new_status.value,
                "remark": remark,
                "status": kyc.status.value,
            },
        )
        return ReviewOutcome(
            kyc=KycResponse.from_kyc(kyc),
            employee_code=employee_code,
            warnings=warnings,
        )

    @staticmethod
    async def _notify_rejection(
        db: AsyncSession,
        kyc: Kyc,
        employee: Optional[Employee],
        document_type: str,
        remark: str,
        index: Optional[int],
        warnings: list[str],
    ) -> None:
        email = employee.email if employee else kyc.email
        if not email:
            warnings.append("Rejection notice not created: no e-mail on file.")
            return
        try:
            async with db.begin_nested():
                user = await get_user_by_email(db, email)
                if user is None:
                    warnings.append(f"Rejection notice not created: no login for {email}.")
                    return
                await notify_kyc_document_rejected(
                    db, user, kyc, document_type, remark,
                    index if document_type == EDUCATION_DOCUMENTS else None,
                )
        except SQLAlchemyError as exc:
            logger.exception("Could not create rejection notice for KYC #%d", kyc.id)
            warnings.append(f"Rejection notice could not be created: {exc}")
            await db.refresh(kyc)

    # ── Re-upload ───────────────────────────────────────────────────

    @staticmethod
    async def reupload_document(
        db: AsyncSession,
        kyc_id: int,
        document_type: str,
        upload: UploadFile,
        *,
        store: DocumentStore,
        requester: User,
        requester_role: UserRole,
        index: Optional[int] = None,
    ) -> KycResponse:
        """Replace a rejected document; it goes back to review as ``resubmitted``."""
        kyc = await KycService.get_kyc(db, kyc_id)

        if not is_at_least(requester_role, UserRole.manager):
            own = await find_by_email(db, requester.email)
            owns_row = (
                (own is not None and kyc.employee_id in own.codes())
                or (kyc.email or "").lower() == requester.email.lower()
            )
            if not owns_row:
                raise ForbiddenException("You can only re-upload documents of your own KYC.")

        if kyc.status not in REVIEWABLE_STATUSES:
            raise InvalidTransition("KYC", kyc.status.value, KycStatus.pending.value)
        _validate_document_ref(kyc, document_type, index)
        current = document_status(kyc, document_type, index)
        if current != DocumentReviewStatus.rejected:
            raise InvalidTransition("KYC document", current.value, DocumentReviewStatus.resubmitted.value)

        accepted = await store.accept([(document_type, upload)])
        if not accepted.documents:
            reason = accepted.rejected[0].reason if accepted.rejected else "File was not accepted."
            raise ValidationException({document_type: [reason]})
        new_doc = dict(accepted.documents[0], type=document_label(document_type, index or 0))

        stored = copy.deepcopy(kyc.documents or {})
        documents = list(stored.get("documents", []))
        position = _find_document(documents, document_type, index)
        old_doc = documents[position] if position is not None else None
        if position is None:
            documents.append(new_doc)
        else:
            documents[position] = new_doc
        stored["documents"] = documents
        kyc.documents = stored

        _set_review(kyc, document_type, index, DocumentReviewStatus.resubmitted, None)
        kyc.status = overall_status(kyc)
        kyc.updated_at = datetime.now(timezone.utc)
        await db.flush()

        if old_doc is not None:
            store.remove([old_doc])

        logger.info("KYC #%d: %s re-uploaded by %s", kyc.id, document_type, requester.email)
        return KycResponse.from_kyc(kyc)

    # ── Status lookup ───────────────────────────────────────────────

    @staticmethod
    async def get_status_for_email(db: AsyncSession, email: str) -> KycStatusResponse:
        """Latest submission for the employee behind *email*, or ``not_submitted``."""
        employee = await find_by_email(db, email)
        if employee is not None:
            kyc = await KycService.latest_for(db, codes=employee.codes(), full_name=employee.name)
        else:
            local_part = email.split("@", 1)[0]
            guessed_name = " ".join(local_part.replace(".", " ").replace("_", " ").replace("-", " ").split())
            kyc = await KycService.latest_for(db, full_name=guessed_name) if guessed_name else None

        if kyc is None:
            return KycStatusResponse(status="not_submitted")

        rejected: list[RejectedDocument] = []
        reviews = kyc.document_reviews or {}
        for name in REVIEWABLE_DOCUMENTS:
            entry = reviews.get(name) or {}
            if entry.get("status") == DocumentReviewStatus.rejected.value:
                rejected.append(RejectedDocument(document_type=name, remark=entry.get("remark")))
        for i, entry in enumerate(reviews.get(EDUCATION_DOCUMENTS) or []):
            if (entry or {}).get("status") == DocumentReviewStatus.rejected.value:
                rejected.append(
                    RejectedDocument(document_type=EDUCATION_DOCUMENTS, index=i, remark=entry.get("remark")),
                )

        return KycStatusResponse(
            status=kyc.status.value,
            kyc_id=kyc.id,
            full_name=kyc.full_name,
            employee_id=employee.public_code if employee else kyc.employee_id,
            submitted_at=kyc.submitted_at,
            remarks=kyc.remarks,
            rejected_documents=rejected,
        )

    # ── Reminder ────────────────────────────────────────────────────

    @staticmethod
    async def send_reminder(
        db: AsyncSession,
        employee_id: int,
        *,
        notifier: EmailNotifier,
    ) -> SendResult:
        """Mail a KYC reminder to an employee who is not yet approved."""
        result = await db.execute(select(Employee).where(Employee.id == employee_id))
        employee = result.scalars().first()
        if employee is None:
            raise NotFoundException("Employee", employee_id)
        if employee.kyc_status == EmployeeKycStatus.approved:
            raise ValidationException({"employee_id": ["KYC is already approved for this employee."]})
        if not employee.has_system_access:
            raise ValidationException({"employee_id": ["Employee has no system access."]})

        sent = await notifier.send(employee.email, "kyc_reminder", {"full_name": employee.name})
        if not sent.success:
            logger.warning("KYC reminder to %s not delivered: %s", employee.email, sent.error)
        return sent

    # ── List ────────────────────────────────────────────────────────

    @staticmethod
    async def list_kyc(
        db: AsyncSession,
        status: Optional[KycStatus] = None,
    ) -> list[KycResponse]:
        """Newest first, each showing the employee's current public code."""
        query = select(Kyc).order_by(Kyc.submitted_at.desc(), Kyc.id.desc())
        if status is not None:
            query = query.where(Kyc.status == status)
        rows = (await db.execute(query)).scalars().all()

        index = await index_employees(
            db, (kyc.employee_id for kyc in rows), (kyc.full_name for kyc in rows),
        )
        items: list[KycResponse] = []
        for kyc in rows:
            employee = index.lookup(kyc.employee_id, kyc.full_name)
            items.append(
                KycResponse.from_kyc(kyc, employee_code=employee.public_code if employee else None),
            )
        return items

    # ── Delete ──────────────────────────────────────────────────────

    @staticmethod
    async def delete_kyc(
        db: AsyncSession,
        kyc_id: int,
        *,
        store: DocumentStore,
        actor_id: Optional[int] = None,
    ) -> RemovalSummary:
        kyc = await KycService.get_kyc(db, kyc_id)
        documents = kyc.document_list
        old_values = {"employee_id": kyc.employee_id, "full_name": kyc.full_name, "status": kyc.status.value}

        await db.delete(kyc)
        await db.flush()
        summary = store.remove(documents)

        await create_audit_entry(
            db,
            action="delete",
            entity_type="kyc",
            entity_id=kyc_id,
            actor_id=actor_id,
            old_values=old_values,
            new_values={"files_removed": summary.removed, "files_missing": summary.missing},
        )
        logger.info(
            "KYC #%d deleted: %d files removed, %d missing, %d failed",
            kyc_id, summary.removed, summary.missing, len(summary.failed),
        )
        return summary
