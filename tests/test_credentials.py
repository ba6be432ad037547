"""Credential issuer — temporary passwords, hashing, role table, User upsert."""

from __future__ import annotations

import pytest
from sqlalchemy import func, select

from backoffice.auth.credentials import (
    generate_temp_password,
    hash_password,
    issue,
    role_for_label,
    verify_password,
)
from backoffice.auth.models import User
from backoffice.common.constants import DEFAULT_USER_ROLE, ROLE_LABELS, UserRole
from tests.conftest import make_employee, make_user


class TestTempPassword:
    def test_default_length_and_alphabet(self):
        password = generate_temp_password()
        assert len(password) == 10
        assert password.isalnum()
        assert any(c.isdigit() for c in password)
        assert any(c.isalpha() for c in password)

    def test_minimum_length_is_enforced(self):
        assert len(generate_temp_password(4)) == 8

    def test_passwords_differ(self):
        assert len({generate_temp_password() for _ in range(20)}) == 20


class TestHashing:
    def test_round_trip(self):
        digest = hash_password("Welcome123")
        assert digest != "Welcome123"
        assert verify_password("Welcome123", digest)
        assert not verify_password("welcome123", digest)

    def test_malformed_hash_does_not_verify(self):
        assert verify_password("anything", "not-a-bcrypt-hash") is False


class TestRoleTable:
    @pytest.mark.parametrize("label, role", sorted(ROLE_LABELS.items()))
    def test_every_listed_label(self, label, role):
        assert role_for_label(label) == role

    @pytest.mark.parametrize(
        "label, role",
        [
            ("Admin", UserRole.admin),
            ("  SYSTEM_ADMIN ", UserRole.admin),
            ("Human-Resources", UserRole.hr),
            ("HR Manager", UserRole.hr),
            ("Team  Lead", UserRole.manager),
            ("Intern", UserRole.employee),
        ],
    )
    def test_labels_are_normalised(self, label, role):
        assert role_for_label(label) == role

    @pytest.mark.parametrize("label", [None, "", "Designer", "Chief Happiness Officer", "admins"])
    def test_unknown_labels_fall_back_to_default(self, label):
        assert role_for_label(label) == DEFAULT_USER_ROLE == UserRole.employee


class TestIssue:
    async def test_creates_user_that_must_change_password(self, db):
        employee = await make_employee(db, role="HR Manager")

        password = await issue(db, employee)

        user = (await db.execute(select(User).where(User.email == employee.email))).scalars().one()
        assert user.name == employee.name
        assert user.role == UserRole.hr
        assert user.must_change_password is True
        assert user.active is True
        assert verify_password(password, user.password_hash)

    async def test_user_inactive_without_system_access(self, db):
        employee = await make_employee(db, can_access_system=False)

        await issue(db, employee)

        user = (await db.execute(select(User).where(User.email == employee.email))).scalars().one()
        assert user.active is False

    async def test_existing_user_is_updated_not_duplicated(self, db):
        await make_user(db, email="asha.rao@example.com", name="OLD NAME", password="OldPass123")
        employee = await make_employee(db, role="Team Lead")

        password = await issue(db, employee)

        users = (
            await db.execute(select(User).where(func.lower(User.email) == "asha.rao@example.com"))
        ).scalars().all()
        assert len(users) == 1
        assert users[0].name == "ASHA RAO"
        assert users[0].role == UserRole.manager
        assert users[0].must_change_password is True
        assert verify_password(password, users[0].password_hash)
        assert not verify_password("OldPass123", users[0].password_hash)
