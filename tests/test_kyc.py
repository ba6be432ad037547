"""KYC service test suite — submission gate, review transitions, approval
side effects, itemised document review, re-upload, status lookup, delete.

Tests exercise the service layer directly against in-memory SQLite.
"""

from __future__ import annotations

import os
from typing import Optional

import pytest
from sqlalchemy import event, func, select

from backoffice.common.constants import EmployeeKycStatus, KycStatus, NotificationType, UserRole
from backoffice.common.exceptions import (
    ForbiddenException,
    InvalidTransition,
    KycResubmissionBlocked,
    NotFoundException,
    ValidationException,
)
from backoffice.config import settings
from backoffice.kyc.models import Kyc
from backoffice.kyc.schemas import KycSubmit
from backoffice.kyc.service import KycService, overall_status
from backoffice.notifications.mailer import SendResult
from backoffice.notifications.models import Notification
from tests.conftest import make_employee, make_upload, make_user


# ── Helpers ─────────────────────────────────────────────────────────


async def _submit(
    db,
    store,
    *,
    employee_id: Optional[str] = "EMP20260001",
    full_name: str = "Asha Rao",
    uploads=None,
    **fields,
):
    data = KycSubmit(employee_id=employee_id, full_name=full_name, **fields)
    if uploads is None:
        uploads = [
            ("pan_card", make_upload("pan.pdf")),
            ("bank_proof", make_upload("bank.pdf")),
        ]
    return await KycService.submit_kyc(db, data, uploads, store=store)


async def _set_status(db, kyc_id: int, status: KycStatus) -> None:
    kyc = await KycService.get_kyc(db, kyc_id)
    kyc.status = status
    await db.flush()


async def _kyc_count(db) -> int:
    return (await db.execute(select(func.count()).select_from(Kyc))).scalar_one()


# ═════════════════════════════════════════════════════════════════════
# SUBMIT
# ═════════════════════════════════════════════════════════════════════


class TestSubmit:
    async def test_new_submission_is_pending(self, db, store):
        await make_employee(db)
        data = KycSubmit.model_validate({
            "employeeId": "EMP20260001",
            "fullName": "Asha  Rao",
            "panNumber": "ABCDE1234F",
            "status": "approved",
        })

        outcome = await KycService.submit_kyc(
            db, data, [("pan_card", make_upload("pan.pdf"))], store=store,
        )

        assert outcome.kyc.status == KycStatus.pending
        assert outcome.matched_by == "code"
        assert outcome.kyc.employee_id == "EMP20260001"
        assert outcome.kyc.full_name == "Asha Rao"
        assert outcome.kyc.personal_info["panNumber"] == "ABCDE1234F"
        assert outcome.kyc.email == "asha.rao@example.com"

    async def test_rejected_files_are_reported(self, db, store):
        outcome = await _submit(
            db,
            store,
            uploads=[
                ("pan_card", make_upload("pan.pdf")),
                ("bank_proof", make_upload("bank.exe", content_type="application/x-msdownload")),
            ],
        )

        assert [d["field"] for d in outcome.kyc.documents] == ["pan_card"]
        assert outcome.rejected_files[0].field == "bank_proof"

    @pytest.mark.parametrize(
        "status",
        [KycStatus.pending, KycStatus.approved, KycStatus.partially_rejected],
    )
    async def test_blocked_while_latest_is_open_or_approved(self, db, store, status):
        await make_employee(db)
        first = await _submit(db, store)
        await _set_status(db, first.kyc.id, status)

        with pytest.raises(KycResubmissionBlocked) as exc_info:
            await _submit(db, store)

        assert exc_info.value.status_code == 409
        assert exc_info.value.extra["kyc_status"] == status.value
        assert await _kyc_count(db) == 1

    async def test_blocked_by_name_when_code_differs(self, db, store):
        await _submit(db, store, employee_id=None)

        with pytest.raises(KycResubmissionBlocked):
            await _submit(db, store, employee_id=None, full_name="ASHA RAO")

    async def test_allowed_after_rejection_and_old_row_untouched(self, db, store):
        await make_employee(db)
        first = await _submit(db, store)
        await _set_status(db, first.kyc.id, KycStatus.rejected)

        second = await _submit(db, store)

        assert second.kyc.id != first.kyc.id
        assert second.kyc.status == KycStatus.pending
        old = await KycService.get_kyc(db, first.kyc.id)
        assert old.status == KycStatus.rejected
        assert await _kyc_count(db) == 2

    async def test_code_of_someone_else_is_refused_before_storing(self, db, store):
        await make_employee(db)

        with pytest.raises(ValidationException):
            await _submit(db, store, full_name="Somebody Else")

        assert not os.path.exists(store.directory) or os.listdir(store.directory) == []


# ═════════════════════════════════════════════════════════════════════
# REVIEW (whole submission)
# ═════════════════════════════════════════════════════════════════════


class TestReview:
    async def test_approve_assigns_permanent_code(self, db, store, notifier):
        employee = await make_employee(db)
        await make_user(db)
        submitted = await _submit(db, store)

        outcome = await KycService.review_kyc(
            db, submitted.kyc.id, "approved", "manager@example.com", notifier=notifier,
        )

        assert employee.emp_id == f"RST{settings.PERMANENT_CODE_START}"
        assert employee.emp_id != employee.employee_code
        assert employee.employee_code == "EMP20260001"
        assert employee.kyc_status == EmployeeKycStatus.approved
        assert outcome.employee_code == employee.emp_id
        assert outcome.kyc.status == KycStatus.approved
        assert outcome.kyc.employee_id == employee.emp_id
        assert outcome.warnings == []

        notifier.send.assert_awaited_once()
        to_email, template, payload = notifier.send.await_args.args
        assert to_email == employee.email
        assert template == "kyc_approved"
        assert payload["permanent_employee_id"] == employee.emp_id
        assert payload["password"] == "Your set password"

    async def test_approve_repoints_older_rows(self, db, store, notifier):
        await make_employee(db)
        first = await _submit(db, store)
        await _set_status(db, first.kyc.id, KycStatus.rejected)
        second = await _submit(db, store)

        outcome = await KycService.review_kyc(db, second.kyc.id, "approved", "hr", notifier=notifier)

        rows = (await db.execute(select(Kyc.employee_id))).scalars().all()
        assert rows == [outcome.employee_code, outcome.employee_code]

    async def test_existing_permanent_code_is_reused(self, db, store, notifier):
        employee = await make_employee(db, emp_id="RST1005")
        submitted = await _submit(db, store, employee_id="RST1005")

        outcome = await KycService.review_kyc(db, submitted.kyc.id, "approved", "hr", notifier=notifier)

        assert outcome.employee_code == "RST1005"
        assert employee.emp_id == "RST1005"

    async def test_no_mail_without_active_login(self, db, store, notifier):
        await make_employee(db)
        submitted = await _submit(db, store)

        await KycService.review_kyc(db, submitted.kyc.id, "approved", "hr", notifier=notifier)

        notifier.send.assert_not_awaited()

    async def test_no_mail_without_system_access(self, db, store, notifier):
        await make_employee(db, can_access_system=False)
        await make_user(db)
        submitted = await _submit(db, store)

        await KycService.review_kyc(db, submitted.kyc.id, "approved", "hr", notifier=notifier)

        notifier.send.assert_not_awaited()

    async def test_mail_failure_is_a_warning(self, db, store, notifier):
        employee = await make_employee(db)
        await make_user(db)
        notifier.send.return_value = SendResult(success=False, error="smtp down")
        submitted = await _submit(db, store)

        outcome = await KycService.review_kyc(db, submitted.kyc.id, "approved", "hr", notifier=notifier)

        assert employee.kyc_status == EmployeeKycStatus.approved
        assert any("smtp down" in w for w in outcome.warnings)

    async def test_reject_keeps_employee_codes(self, db, store, notifier):
        employee = await make_employee(db)
        submitted = await _submit(db, store)

        outcome = await KycService.review_kyc(
            db, submitted.kyc.id, "rejected", "hr", "Blurry scans", notifier=notifier,
        )

        assert outcome.kyc.status == KycStatus.rejected
        assert outcome.kyc.remarks == "Blurry scans"
        assert employee.employee_code == "EMP20260001"
        assert employee.emp_id is None
        assert employee.kyc_status == EmployeeKycStatus.rejected

    async def test_missing_employee_is_a_warning(self, db, store, notifier):
        submitted = await _submit(db, store, employee_id=None, full_name="Nobody Known")

        outcome = await KycService.review_kyc(db, submitted.kyc.id, "approved", "hr", notifier=notifier)

        assert outcome.kyc.status == KycStatus.approved
        assert outcome.employee_code is None
        assert outcome.warnings

    @pytest.mark.parametrize("locked", [KycStatus.approved, KycStatus.rejected])
    async def test_terminal_rows_are_locked_when_rereview_is_off(
        self, db, store, notifier, locked, monkeypatch,
    ):
        monkeypatch.setattr(settings, "KYC_ALLOW_REREVIEW", False)
        await make_employee(db)
        submitted = await _submit(db, store)
        await _set_status(db, submitted.kyc.id, locked)

        with pytest.raises(InvalidTransition):
            await KycService.review_kyc(db, submitted.kyc.id, "rejected", "hr", notifier=notifier)

    async def test_rereview_allowed_by_default(self, db, store, notifier):
        assert settings.KYC_ALLOW_REREVIEW is True
        await make_employee(db)
        submitted = await _submit(db, store)
        await _set_status(db, submitted.kyc.id, KycStatus.rejected)

        outcome = await KycService.review_kyc(db, submitted.kyc.id, "approved", "hr", notifier=notifier)

        assert outcome.kyc.status == KycStatus.approved

    async def test_unknown_id(self, db, notifier):
        with pytest.raises(NotFoundException):
            await KycService.review_kyc(db, 999, "approved", "hr", notifier=notifier)


# ═════════════════════════════════════════════════════════════════════
# DOCUMENT REVIEW / RE-UPLOAD
# ═════════════════════════════════════════════════════════════════════


class TestDocumentReview:
    async def test_reject_requires_remark(self, db, store, notifier):
        submitted = await _submit(db, store)

        with pytest.raises(ValidationException):
            await KycService.review_document(
                db, submitted.kyc.id, "pan_card", "reject", "  ", "hr", notifier=notifier,
            )

    async def test_unknown_document_type(self, db, store, notifier):
        submitted = await _submit(db, store)

        with pytest.raises(ValidationException):
            await KycService.review_document(
                db, submitted.kyc.id, "selfie", "approve", None, "hr", notifier=notifier,
            )

    async def test_rejection_makes_submission_partially_rejected(self, db, store, notifier):
        await make_employee(db)
        user = await make_user(db)
        submitted = await _submit(db, store)

        outcome = await KycService.review_document(
            db, submitted.kyc.id, "pan_card", "reject", "Unreadable", "hr", notifier=notifier,
        )

        assert outcome.kyc.status == KycStatus.partially_rejected
        assert outcome.kyc.document_reviews["pan_card"] == {"status": "rejected", "remark": "Unreadable"}
        notices = (
            await db.execute(select(Notification).where(Notification.user_id == user.id))
        ).scalars().all()
        assert len(notices) == 1
        assert notices[0].type == NotificationType.error
        assert "PAN Card" in notices[0].message
        assert "Unreadable" in notices[0].message

    async def test_rejection_without_login_is_a_warning(self, db, store, notifier):
        await make_employee(db)
        submitted = await _submit(db, store)

        outcome = await KycService.review_document(
            db, submitted.kyc.id, "pan_card", "reject", "Unreadable", "hr", notifier=notifier,
        )

        assert outcome.kyc.status == KycStatus.partially_rejected
        assert outcome.warnings

    async def test_approving_every_document_approves_the_submission(self, db, store, notifier):
        employee = await make_employee(db)
        submitted = await _submit(db, store)

        first = await KycService.review_document(
            db, submitted.kyc.id, "pan_card", "approve", None, "hr", notifier=notifier,
        )
        assert first.kyc.status == KycStatus.pending

        second = await KycService.review_document(
            db, submitted.kyc.id, "bank_proof", "approve", None, "hr", notifier=notifier,
        )

        assert second.kyc.status == KycStatus.approved
        assert employee.kyc_status == EmployeeKycStatus.approved
        assert second.employee_code == employee.emp_id
        assert employee.emp_id.startswith("RST")

    async def test_education_documents_need_a_valid_index(self, db, store, notifier):
        submitted = await _submit(
            db,
            store,
            uploads=[
                ("education_documents", make_upload("degree.pdf")),
                ("education_documents", make_upload("marks.pdf")),
            ],
        )

        with pytest.raises(ValidationException):
            await KycService.review_document(
                db, submitted.kyc.id, "education_documents", "approve", None, "hr",
                index=2, notifier=notifier,
            )

        outcome = await KycService.review_document(
            db, submitted.kyc.id, "education_documents", "reject", "Cropped", "hr",
            index=1, notifier=notifier,
        )
        reviews = outcome.kyc.document_reviews["education_documents"]
        assert reviews[0]["status"] == "pending"
        assert reviews[1] == {"status": "rejected", "remark": "Cropped"}
        assert outcome.kyc.status == KycStatus.partially_rejected


class TestReupload:
    async def _rejected_pan(self, db, store, notifier):
        await make_employee(db)
        requester = await make_user(db)
        submitted = await _submit(db, store)
        await KycService.review_document(
            db, submitted.kyc.id, "pan_card", "reject", "Unreadable", "hr", notifier=notifier,
        )
        return submitted, requester

    async def test_replaces_rejected_document(self, db, store, notifier):
        submitted, requester = await self._rejected_pan(db, store, notifier)
        old_path = next(d["path"] for d in submitted.kyc.documents if d["field"] == "pan_card")

        kyc = await KycService.reupload_document(
            db, submitted.kyc.id, "pan_card", make_upload("pan-new.pdf", b"new"),
            store=store, requester=requester, requester_role=UserRole.employee,
        )

        assert kyc.document_reviews["pan_card"] == {"status": "resubmitted", "remark": None}
        assert kyc.status == KycStatus.pending
        new_doc = next(d for d in kyc.documents if d["field"] == "pan_card")
        assert new_doc["path"] != old_path
        assert new_doc["type"] == "PAN Card"
        assert len(kyc.documents) == 2
        assert not os.path.exists(os.path.join(store.directory, os.path.basename(old_path)))

    async def test_only_rejected_documents(self, db, store, notifier):
        submitted, requester = await self._rejected_pan(db, store, notifier)

        with pytest.raises(InvalidTransition):
            await KycService.reupload_document(
                db, submitted.kyc.id, "bank_proof", make_upload(),
                store=store, requester=requester, requester_role=UserRole.employee,
            )

    @pytest.mark.parametrize("closed", [KycStatus.approved, KycStatus.rejected])
    async def test_closed_submission_refuses_reupload(self, db, store, notifier, closed):
        submitted, requester = await self._rejected_pan(db, store, notifier)
        await _set_status(db, submitted.kyc.id, closed)

        with pytest.raises(InvalidTransition):
            await KycService.reupload_document(
                db, submitted.kyc.id, "pan_card", make_upload("pan-new.pdf", b"new"),
                store=store, requester=requester, requester_role=UserRole.employee,
            )

        kyc = await KycService.get_kyc(db, submitted.kyc.id)
        assert kyc.status == closed
        assert kyc.document_reviews["pan_card"]["status"] == "rejected"

    async def test_other_employees_are_forbidden(self, db, store, notifier):
        submitted, _ = await self._rejected_pan(db, store, notifier)
        stranger = await make_user(db, email="stranger@example.com", name="STRANGER")

        with pytest.raises(ForbiddenException):
            await KycService.reupload_document(
                db, submitted.kyc.id, "pan_card", make_upload(),
                store=store, requester=stranger, requester_role=UserRole.employee,
            )

    async def test_staff_may_reupload_for_anyone(self, db, store, notifier):
        submitted, _ = await self._rejected_pan(db, store, notifier)
        manager = await make_user(db, email="manager@example.com", name="LEAD", role=UserRole.manager)

        kyc = await KycService.reupload_document(
            db, submitted.kyc.id, "pan_card", make_upload(),
            store=store, requester=manager, requester_role=UserRole.manager,
        )

        assert kyc.document_reviews["pan_card"]["status"] == "resubmitted"

    async def test_bad_file_is_refused(self, db, store, notifier):
        submitted, requester = await self._rejected_pan(db, store, notifier)

        with pytest.raises(ValidationException):
            await KycService.reupload_document(
                db, submitted.kyc.id, "pan_card",
                make_upload("pan.exe", content_type="application/x-msdownload"),
                store=store, requester=requester, requester_role=UserRole.employee,
            )


# ═════════════════════════════════════════════════════════════════════
# STATUS / LIST / DELETE / REMINDER
# ═════════════════════════════════════════════════════════════════════


class TestStatusLookup:
    async def test_not_submitted(self, db):
        await make_employee(db)

        status = await KycService.get_status_for_email(db, "asha.rao@example.com")

        assert status.status == "not_submitted"
        assert status.kyc_id is None

    async def test_lists_rejected_documents(self, db, store, notifier):
        await make_employee(db)
        submitted = await _submit(db, store)
        await KycService.review_document(
            db, submitted.kyc.id, "bank_proof", "reject", "Wrong account", "hr", notifier=notifier,
        )

        status = await KycService.get_status_for_email(db, "ASHA.RAO@example.com")

        assert status.status == "partially_rejected"
        assert status.employee_id == "EMP20260001"
        assert [(d.document_type, d.remark) for d in status.rejected_documents] == [
            ("bank_proof", "Wrong account"),
        ]

    async def test_guesses_name_from_email_without_employee(self, db, store):
        await _submit(db, store, employee_id=None, full_name="Ravi Kumar")

        status = await KycService.get_status_for_email(db, "ravi.kumar@example.com")

        assert status.status == "pending"
        assert status.full_name == "Ravi Kumar"


class TestListAndDelete:
    async def test_list_shows_current_public_code(self, db, store):
        employee = await make_employee(db)
        submitted = await _submit(db, store)
        employee.emp_id = "RST1042"
        await db.flush()

        items = await KycService.list_kyc(db)

        assert [i.id for i in items] == [submitted.kyc.id]
        assert items[0].employee_id == "RST1042"

    async def test_list_loads_employees_in_one_query(self, db, engine, store):
        asha = await make_employee(db)
        await make_employee(db, name="RAVI KUMAR", email="ravi@example.com", employee_code="EMP20260002")
        await make_employee(db, name="MEERA IYER", email="meera@example.com", employee_code="EMP20260003")
        by_code = await _submit(db, store)
        by_new_code = await _submit(db, store, employee_id="EMP20260002", full_name="Ravi Kumar")
        by_name = await _submit(db, store, employee_id=None, full_name="Meera Iyer")
        unknown = await _submit(db, store, employee_id=None, full_name="Nobody Known")
        asha.emp_id = "RST1042"
        (await KycService.get_kyc(db, by_name.kyc.id)).employee_id = "LEGACY-17"
        await db.flush()

        selects: list[str] = []

        def _record(conn, cursor, statement, parameters, context, executemany):
            if statement.lstrip().upper().startswith("SELECT"):
                selects.append(statement)

        event.listen(engine.sync_engine, "before_cursor_execute", _record)
        try:
            items = await KycService.list_kyc(db)
        finally:
            event.remove(engine.sync_engine, "before_cursor_execute", _record)

        codes = {item.id: item.employee_id for item in items}
        assert codes == {
            by_code.kyc.id: "RST1042",
            by_new_code.kyc.id: "EMP20260002",
            by_name.kyc.id: "EMP20260003",
            unknown.kyc.id: unknown.kyc.employee_id,
        }
        assert len(selects) == 2

    async def test_list_filters_by_status(self, db, store):
        first = await _submit(db, store, employee_id="EMP20269001", full_name="One Person")
        await _submit(db, store, employee_id="EMP20269002", full_name="Two Person")
        await _set_status(db, first.kyc.id, KycStatus.rejected)

        items = await KycService.list_kyc(db, KycStatus.rejected)

        assert [i.id for i in items] == [first.kyc.id]

    async def test_delete_removes_row_and_files(self, db, store):
        submitted = await _submit(db, store)
        paths = [
            os.path.join(store.directory, os.path.basename(d["path"]))
            for d in submitted.kyc.documents
        ]
        os.remove(paths[0])

        summary = await KycService.delete_kyc(db, submitted.kyc.id, store=store)

        assert summary.removed == 1
        assert summary.missing == 1
        assert await _kyc_count(db) == 0
        assert not any(os.path.exists(p) for p in paths)


class TestReminder:
    async def test_sends_reminder(self, db, notifier):
        employee = await make_employee(db)

        sent = await KycService.send_reminder(db, employee.id, notifier=notifier)

        assert sent.success
        notifier.send.assert_awaited_once_with(
            employee.email, "kyc_reminder", {"full_name": employee.name},
        )

    async def test_refused_once_approved(self, db, notifier):
        employee = await make_employee(db, kyc_status=EmployeeKycStatus.approved)

        with pytest.raises(ValidationException):
            await KycService.send_reminder(db, employee.id, notifier=notifier)

        notifier.send.assert_not_awaited()


class TestOverallStatus:
    @staticmethod
    def _kyc(reviews: dict) -> Kyc:
        documents = [
            {"field": "pan_card", "type": "PAN Card", "path": "/uploads/kyc/a.pdf"},
            {"field": "bank_proof", "type": "Bank Proof", "path": "/uploads/kyc/b.pdf"},
            {"field": "selfie", "type": "Selfie", "path": "/uploads/kyc/c.pdf"},
        ]
        return Kyc(full_name="X", documents={"documents": documents}, document_reviews=reviews)

    def test_unreviewed_is_pending(self):
        assert overall_status(self._kyc({})) == KycStatus.pending

    def test_any_rejection_wins(self):
        reviews = {"pan_card": {"status": "approved"}, "bank_proof": {"status": "rejected"}}
        assert overall_status(self._kyc(reviews)) == KycStatus.partially_rejected

    def test_resubmitted_counts_as_pending(self):
        reviews = {"pan_card": {"status": "approved"}, "bank_proof": {"status": "resubmitted"}}
        assert overall_status(self._kyc(reviews)) == KycStatus.pending

    def test_all_reviewable_approved(self):
        # selfie is not reviewed one by one, so it does not hold the status back
        reviews = {"pan_card": {"status": "approved"}, "bank_proof": {"status": "approved"}}
        assert overall_status(self._kyc(reviews)) == KycStatus.approved
