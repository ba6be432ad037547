"""Shared test fixtures — async DB, client, auth helpers, factories.

Uses SQLite + aiosqlite for fast isolated tests without PostgreSQL. The
driver's own transaction handling is switched off so SAVEPOINTs behave
as they do on PostgreSQL.
"""

from __future__ import annotations

import os

# Set test settings before any other import touches pydantic-settings
os.environ.setdefault("JWT_SECRET", "test-secret-for-ci-do-not-use-in-production")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")
os.environ.setdefault("MAIL_ENABLED", "false")

import io
from typing import AsyncGenerator, Optional
from unittest.mock import AsyncMock

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool
from starlette.datastructures import Headers, UploadFile

from backoffice.auth.credentials import hash_password
from backoffice.auth.models import User
from backoffice.auth.service import create_access_token
from backoffice.common.constants import UserRole
from backoffice.database import Base, get_db
from backoffice.employees.models import Employee
from backoffice.kyc.storage import DocumentStore, get_document_store
from backoffice.main import create_app
from backoffice.notifications.mailer import EmailNotifier, SendResult, get_notifier

# Import ALL model modules so metadata.create_all sees every table
import backoffice.attendance.models  # noqa: F401
import backoffice.common.audit  # noqa: F401
import backoffice.kyc.models  # noqa: F401
import backoffice.leave.models  # noqa: F401
import backoffice.notifications.models  # noqa: F401
import backoffice.payroll.models  # noqa: F401

TEST_DATABASE_URL = "sqlite+aiosqlite://"
DEFAULT_PASSWORD = "Secret123"


# ── Test database (SQLite in-memory, one per test) ──────────────────

@pytest.fixture
async def engine():
    test_engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    @event.listens_for(test_engine.sync_engine, "connect")
    def _no_driver_transactions(dbapi_conn, connection_record):
        dbapi_conn.isolation_level = None

    @event.listens_for(test_engine.sync_engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield test_engine
    await test_engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Session for direct DB work. Commit before issuing HTTP requests."""
    async with session_factory() as session:
        yield session


# ── Collaborators ───────────────────────────────────────────────────

@pytest.fixture
def notifier() -> AsyncMock:
    """Mail notifier that reports every send as delivered."""
    mock = AsyncMock(spec=EmailNotifier)
    mock.send.return_value = SendResult(success=True)
    return mock


@pytest.fixture
def store(tmp_path) -> DocumentStore:
    return DocumentStore(root=str(tmp_path / "uploads"), subdir="kyc")


# ── FastAPI test client ─────────────────────────────────────────────

@pytest.fixture
async def app(session_factory, notifier, store):
    """Fresh app with DB, mail and storage dependencies overridden."""

    async def _override_get_db() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    application = create_app()
    application.dependency_overrides[get_db] = _override_get_db
    application.dependency_overrides[get_notifier] = lambda: notifier
    application.dependency_overrides[get_document_store] = lambda: store
    yield application
    application.dependency_overrides.clear()


@pytest.fixture
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client wired to the test app."""
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac


# ── Model factories ─────────────────────────────────────────────────

async def make_employee(
    db: AsyncSession,
    *,
    name: str = "ASHA RAO",
    email: str = "asha.rao@example.com",
    employee_code: Optional[str] = "EMP20260001",
    emp_id: Optional[str] = None,
    role: Optional[str] = "Employee",
    **kwargs,
) -> Employee:
    employee = Employee(
        name=name,
        email=email,
        employee_code=employee_code,
        emp_id=emp_id,
        role=role,
        **kwargs,
    )
    db.add(employee)
    await db.flush()
    await db.refresh(employee)
    return employee


async def make_user(
    db: AsyncSession,
    *,
    email: str = "asha.rao@example.com",
    name: str = "ASHA RAO",
    role: UserRole = UserRole.employee,
    password: str = DEFAULT_PASSWORD,
    active: bool = True,
    must_change_password: bool = False,
) -> User:
    user = User(
        email=email,
        name=name,
        role=role,
        password_hash=hash_password(password),
        active=active,
        must_change_password=must_change_password,
    )
    db.add(user)
    await db.flush()
    await db.refresh(user)
    return user


def make_upload(
    filename: str = "document.pdf",
    content: bytes = b"%PDF-1.4 test document",
    content_type: Optional[str] = "application/pdf",
) -> UploadFile:
    headers = Headers({"content-type": content_type}) if content_type else Headers({})
    return UploadFile(file=io.BytesIO(content), filename=filename, headers=headers)


# ── Auth helpers ────────────────────────────────────────────────────

def auth_headers(user: User) -> dict[str, str]:
    token, _ = create_access_token(user)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
async def admin_user(db) -> User:
    return await make_user(db, email="admin@example.com", name="ADMIN", role=UserRole.admin)


@pytest.fixture
async def hr_user(db) -> User:
    return await make_user(db, email="hr@example.com", name="HR DESK", role=UserRole.hr)


@pytest.fixture
async def manager_user(db) -> User:
    return await make_user(db, email="manager@example.com", name="TEAM LEAD", role=UserRole.manager)
