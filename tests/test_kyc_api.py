"""KYC HTTP API — multipart submission, access rules, review over HTTP,
file serving, and the full create → submit → approve lifecycle.
"""

from __future__ import annotations

import os
import re

from sqlalchemy import select

from backoffice.common.constants import EmployeeKycStatus
from backoffice.config import settings
from backoffice.employees.models import Employee
from backoffice.kyc.models import Kyc
from tests.conftest import auth_headers, make_employee, make_user

PDF = ("pan.pdf", b"%PDF-1.4 pan", "application/pdf")


def _form(**overrides) -> dict[str, str]:
    return {
        "employeeId": "EMP20260001",
        "fullName": "Asha Rao",
        "email": "asha.rao@example.com",
        "panNumber": "ABCDE1234F",
        "bankName": "State Bank",
        **overrides,
    }


async def _submit(client, *, data=None, files=None):
    if files is None:
        files = [
            ("panCard", PDF),
            ("bank_proof", ("bank.pdf", b"%PDF-1.4 bank", "application/pdf")),
        ]
    return await client.post("/api/v1/kyc", data=data or _form(), files=files)


# ── Submission ──────────────────────────────────────────────────────


class TestSubmitAPI:
    async def test_multipart_submission_with_camel_case_fields(self, client, db, store):
        await make_employee(db)
        await db.commit()

        resp = await _submit(client, data=_form(status="approved"))

        assert resp.status_code == 201
        body = resp.json()["data"]
        assert body["matched_by"] == "code"
        kyc = body["kyc"]
        assert kyc["status"] == "pending"
        assert kyc["employee_id"] == "EMP20260001"
        assert kyc["personal_info"]["panNumber"] == "ABCDE1234F"
        assert kyc["bank_account"]["bankName"] == "State Bank"
        assert [d["field"] for d in kyc["documents"]] == ["pan_card", "bank_proof"]
        stored = os.path.join(store.directory, os.path.basename(kyc["documents"][0]["path"]))
        assert os.path.exists(stored)

    async def test_bad_file_is_listed_not_fatal(self, client, db):
        await make_employee(db)
        await db.commit()

        resp = await _submit(
            client,
            files=[
                ("panCard", PDF),
                ("selfie", ("run.exe", b"MZ", "application/x-msdownload")),
            ],
        )

        assert resp.status_code == 201
        body = resp.json()["data"]
        assert len(body["kyc"]["documents"]) == 1
        assert body["rejected_files"][0]["field"] == "selfie"

    async def test_missing_full_name(self, client):
        resp = await _submit(client, data={"employeeId": "EMP20260001"})

        assert resp.status_code == 422
        assert "fullName" in resp.json()["errors"]

    async def test_second_submission_while_pending_is_blocked(self, client, db):
        await make_employee(db)
        await db.commit()

        first = await _submit(client)
        second = await _submit(client)

        assert first.status_code == 201
        assert second.status_code == 409
        body = second.json()
        assert body["type"].endswith("/kyc-resubmission-blocked")
        assert body["kyc_status"] == "pending"
        assert body["submitted_at"] is not None


# ── Access rules ────────────────────────────────────────────────────


class TestAccessAPI:
    async def test_list_requires_login(self, client):
        resp = await client.get("/api/v1/kyc")
        assert resp.status_code == 401

    async def test_employee_cannot_list(self, client, db):
        user = await make_user(db)
        await db.commit()

        resp = await client.get("/api/v1/kyc", headers=auth_headers(user))

        assert resp.status_code == 403

    async def test_employee_reads_own_status_only(self, client, db):
        await make_employee(db)
        user = await make_user(db)
        await db.commit()
        await _submit(client)

        own = await client.get("/api/v1/kyc?email=asha.rao@example.com", headers=auth_headers(user))
        other = await client.get("/api/v1/kyc?email=ravi@example.com", headers=auth_headers(user))

        assert own.status_code == 200
        assert own.json()["data"]["status"] == "pending"
        assert other.status_code == 403

    async def test_manager_lists_with_status_filter(self, client, db, manager_user):
        await make_employee(db)
        await db.commit()
        await _submit(client)

        pending = await client.get("/api/v1/kyc?status=pending", headers=auth_headers(manager_user))
        approved = await client.get("/api/v1/kyc?status=approved", headers=auth_headers(manager_user))

        assert len(pending.json()["data"]) == 1
        assert approved.json()["data"] == []

    async def test_file_serving_requires_login(self, client, db, manager_user):
        await make_employee(db)
        await db.commit()
        submitted = await _submit(client)
        name = os.path.basename(submitted.json()["data"]["kyc"]["documents"][0]["path"])

        anonymous = await client.get(f"/api/v1/kyc/file/{name}")
        served = await client.get(f"/api/v1/kyc/file/{name}", headers=auth_headers(manager_user))
        missing = await client.get("/api/v1/kyc/file/nope.pdf", headers=auth_headers(manager_user))

        assert anonymous.status_code == 401
        assert served.status_code == 200
        assert served.content == b"%PDF-1.4 pan"
        assert missing.status_code == 404

    async def test_employee_cannot_review(self, client, db):
        await make_employee(db)
        user = await make_user(db)
        await db.commit()
        kyc_id = (await _submit(client)).json()["data"]["kyc"]["id"]

        resp = await client.post(
            f"/api/v1/kyc/{kyc_id}/review",
            json={"status": "approved"},
            headers=auth_headers(user),
        )

        assert resp.status_code == 403


# ── Review, re-upload, delete ───────────────────────────────────────


class TestReviewAPI:
    async def test_invalid_review_status(self, client, db, manager_user):
        await make_employee(db)
        await db.commit()
        kyc_id = (await _submit(client)).json()["data"]["kyc"]["id"]

        resp = await client.post(
            f"/api/v1/kyc/{kyc_id}/review",
            json={"status": "pending"},
            headers=auth_headers(manager_user),
        )

        assert resp.status_code == 422

    async def test_reviewing_a_closed_submission_conflicts_when_locked(
        self, client, db, manager_user, monkeypatch,
    ):
        monkeypatch.setattr(settings, "KYC_ALLOW_REREVIEW", False)
        await make_employee(db)
        await db.commit()
        kyc_id = (await _submit(client)).json()["data"]["kyc"]["id"]
        headers = auth_headers(manager_user)

        await client.post(f"/api/v1/kyc/{kyc_id}/review", json={"status": "rejected"}, headers=headers)
        again = await client.post(f"/api/v1/kyc/{kyc_id}/review", json={"status": "approved"}, headers=headers)

        assert again.status_code == 409
        assert again.json()["type"].endswith("/invalid-transition")

    async def test_document_rejection_and_reupload(self, client, db, manager_user):
        await make_employee(db)
        user = await make_user(db)
        await db.commit()
        kyc_id = (await _submit(client)).json()["data"]["kyc"]["id"]

        no_remark = await client.post(
            f"/api/v1/kyc/{kyc_id}/documents/bank_proof/review",
            json={"action": "reject"},
            headers=auth_headers(manager_user),
        )
        assert no_remark.status_code == 422

        rejected = await client.post(
            f"/api/v1/kyc/{kyc_id}/documents/bank_proof/review",
            json={"action": "reject", "remark": "Cheque is not cancelled"},
            headers=auth_headers(manager_user),
        )
        assert rejected.status_code == 200

        status = await client.get("/api/v1/kyc?email=asha.rao@example.com", headers=auth_headers(user))
        assert status.json()["data"]["status"] == "partially_rejected"
        assert status.json()["data"]["rejected_documents"][0]["document_type"] == "bank_proof"

        notices = await client.get("/api/v1/notifications", headers=auth_headers(user))
        assert notices.json()["unread"] == 1

        reupload = await client.post(
            f"/api/v1/kyc/{kyc_id}/documents/bank_proof/reupload",
            files={"file": ("cheque.pdf", b"%PDF-1.4 cheque", "application/pdf")},
            headers=auth_headers(user),
        )
        assert reupload.status_code == 200
        body = reupload.json()["data"]
        assert body["status"] == "pending"
        assert body["document_reviews"]["bank_proof"]["status"] == "resubmitted"

    async def test_delete_removes_row_and_files(self, client, db, store, manager_user):
        await make_employee(db)
        await db.commit()
        kyc = (await _submit(client)).json()["data"]["kyc"]

        resp = await client.delete(f"/api/v1/kyc/{kyc['id']}", headers=auth_headers(manager_user))

        assert resp.status_code == 200
        assert resp.json()["data"]["files_removed"] == 2
        assert (await db.execute(select(Kyc))).scalars().all() == []
        assert os.listdir(store.directory) == []

    async def test_reminder(self, client, db, notifier, manager_user):
        employee = await make_employee(db)
        await db.commit()

        resp = await client.post(
            f"/api/v1/kyc/reminders/{employee.id}", headers=auth_headers(manager_user),
        )

        assert resp.status_code == 200
        assert resp.json()["data"] == {"sent": True, "error": None}
        notifier.send.assert_awaited_once_with(
            "asha.rao@example.com", "kyc_reminder", {"full_name": "ASHA RAO"},
        )


# ── End to end ──────────────────────────────────────────────────────


async def test_employee_lifecycle_from_creation_to_permanent_code(client, db, notifier, hr_user, manager_user):
    """HR creates an employee, they log in and submit KYC, a manager approves."""
    await db.commit()

    created = await client.post(
        "/api/v1/employees",
        json={"name": "asha", "email": "asha@x.co"},
        headers=auth_headers(hr_user),
    )
    assert created.status_code == 201
    outcome = created.json()["data"]
    provisional = outcome["employee"]["employee_code"]
    assert re.match(r"^EMP\d{8}$", provisional)
    assert outcome["employee"]["name"] == "ASHA"

    login = await client.post(
        "/api/v1/auth/login",
        json={"email": "asha@x.co", "password": outcome["temp_password"]},
    )
    assert login.status_code == 200
    assert login.json()["user"]["must_change_password"] is True
    employee_headers = {"Authorization": f"Bearer {login.json()['access_token']}"}

    submitted = await client.post(
        "/api/v1/kyc",
        data={"employeeId": provisional, "fullName": "Asha", "email": "asha@x.co", "status": "approved"},
        files=[("panCard", PDF)],
    )
    assert submitted.status_code == 201
    kyc_id = submitted.json()["data"]["kyc"]["id"]
    assert submitted.json()["data"]["kyc"]["status"] == "pending"

    reviewed = await client.post(
        f"/api/v1/kyc/{kyc_id}/review",
        json={"status": "approved", "remarks": "All good"},
        headers=auth_headers(manager_user),
    )
    assert reviewed.status_code == 200
    permanent = reviewed.json()["data"]["employee_code"]
    assert permanent == "RST1001"
    assert permanent != provisional

    me = await client.get("/api/v1/auth/me", headers=employee_headers)
    assert me.json()["employee_code"] == permanent
    assert me.json()["kyc_status"] == "approved"

    employee = (await db.execute(select(Employee).where(Employee.email == "asha@x.co"))).scalars().one()
    assert employee.employee_code == provisional
    assert employee.emp_id == permanent
    assert employee.kyc_status == EmployeeKycStatus.approved

    templates = [call.args[1] for call in notifier.send.await_args_list]
    assert templates == ["new_employee", "kyc_approved"]
