"""001 – Initial schema: employees, users, KYC, deletion targets, audit.

Revision ID: 001_initial_schema
Revises:
Create Date: 2026-10-17 10:00:00.000000+05:30
"""

from alembic import op

# Revision identifiers
revision = "001_initial_schema"
down_revision = None
branch_labels = None
depends_on = None


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

ENUM_TYPES: list[tuple[str, list[str]]] = [
    ("work_status", ["Working", "Not Working"]),
    ("employee_kyc_status", ["pending", "approved", "rejected"]),
    ("user_role", ["employee", "manager", "hr", "admin"]),
    ("kyc_status", ["pending", "approved", "rejected", "partially_rejected"]),
    ("identity_document_type", ["aadhaar", "pan", "passport", "driver_license"]),
    ("notification_type", ["info", "success", "warning", "error"]),
]


def _create_enum(name: str, values: list[str]) -> None:
    vals = ", ".join(f"'{v}'" for v in values)
    op.execute(f"CREATE TYPE {name} AS ENUM ({vals})")


def _drop_enum(name: str) -> None:
    op.execute(f"DROP TYPE IF EXISTS {name}")


# ---------------------------------------------------------------------------
# UPGRADE
# ---------------------------------------------------------------------------


def upgrade() -> None:
    for name, values in ENUM_TYPES:
        _create_enum(name, values)

    # ── 1. employees ──────────────────────────────────────────────────────
    # No table below carries a foreign key to employees; they reference
    # it by email or by employee code.
    op.execute("""
        CREATE TABLE employees (
            id                SERIAL PRIMARY KEY,
            name              VARCHAR(255) NOT NULL,
            email             VARCHAR(255) NOT NULL UNIQUE,
            mobile_number     VARCHAR(20),
            employee_code     VARCHAR(30) UNIQUE,
            emp_id            VARCHAR(30) UNIQUE,
            role              VARCHAR(100),
            department        VARCHAR(150),
            designation       VARCHAR(150),
            position          VARCHAR(150),
            location          VARCHAR(150),
            hire_date         DATE,
            salary            NUMERIC(12, 2),
            status            work_status NOT NULL DEFAULT 'Working',
            is_active         BOOLEAN NOT NULL DEFAULT TRUE,
            can_access_system BOOLEAN NOT NULL DEFAULT TRUE,
            kyc_status        employee_kyc_status NOT NULL DEFAULT 'pending',
            created_at        TIMESTAMPTZ DEFAULT NOW(),
            updated_at        TIMESTAMPTZ DEFAULT NOW()
        )
    """)
    op.execute("CREATE INDEX idx_employees_name_lower ON employees (LOWER(name))")

    # ── 2. users ──────────────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE users (
            id                   SERIAL PRIMARY KEY,
            name                 VARCHAR(255) NOT NULL,
            email                VARCHAR(255) NOT NULL UNIQUE,
            password_hash        VARCHAR(255) NOT NULL,
            role                 user_role NOT NULL DEFAULT 'employee',
            must_change_password BOOLEAN NOT NULL DEFAULT TRUE,
            active               BOOLEAN NOT NULL DEFAULT TRUE,
            created_at           TIMESTAMPTZ DEFAULT NOW(),
            updated_at           TIMESTAMPTZ DEFAULT NOW()
        )
    """)

    # ── 3. access_logs ────────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE access_logs (
            id         SERIAL PRIMARY KEY,
            email      VARCHAR(255),
            action     VARCHAR(50) NOT NULL,
            ip         VARCHAR(64),
            user_agent TEXT,
            created_at TIMESTAMPTZ DEFAULT NOW()
        )
    """)
    op.execute("CREATE INDEX ix_access_logs_email ON access_logs (email)")

    # ── 4. kyc_requests ───────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE kyc_requests (
            id               SERIAL PRIMARY KEY,
            employee_id      VARCHAR(50),
            full_name        VARCHAR(255) NOT NULL,
            email            VARCHAR(255),
            dob              DATE,
            address          TEXT,
            document_type    identity_document_type,
            document_number  VARCHAR(100),
            documents        JSONB DEFAULT '{}'::jsonb,
            document_reviews JSONB DEFAULT '{}'::jsonb,
            status           kyc_status NOT NULL DEFAULT 'pending',
            submitted_at     TIMESTAMPTZ DEFAULT NOW(),
            reviewed_at      TIMESTAMPTZ,
            reviewed_by      VARCHAR(255),
            remarks          TEXT,
            created_at       TIMESTAMPTZ DEFAULT NOW(),
            updated_at       TIMESTAMPTZ DEFAULT NOW()
        )
    """)
    op.execute("CREATE INDEX ix_kyc_requests_employee_id ON kyc_requests (employee_id)")
    op.execute("CREATE INDEX ix_kyc_requests_full_name ON kyc_requests (full_name)")

    # ── 5. attendance ─────────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE attendance (
            id        SERIAL PRIMARY KEY,
            email     VARCHAR(255) NOT NULL,
            name      VARCHAR(255),
            date      DATE NOT NULL,
            check_in  TIMESTAMPTZ,
            check_out TIMESTAMPTZ,
            status    VARCHAR(20) DEFAULT 'checked_in',
            is_late   BOOLEAN DEFAULT FALSE,
            notes     TEXT
        )
    """)
    op.execute("CREATE INDEX ix_attendance_email ON attendance (email)")

    # ── 6. leaves ─────────────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE leaves (
            id             SERIAL PRIMARY KEY,
            email          VARCHAR(255) NOT NULL,
            name           VARCHAR(255),
            type           VARCHAR(20) NOT NULL DEFAULT 'casual',
            start_date     DATE NOT NULL,
            end_date       DATE NOT NULL,
            reason         TEXT,
            attachment_url VARCHAR(500),
            status         VARCHAR(20) DEFAULT 'pending',
            applied_at     TIMESTAMPTZ DEFAULT NOW()
        )
    """)
    op.execute("CREATE INDEX ix_leaves_email ON leaves (email)")

    # ── 7. payslips ───────────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE payslips (
            id             SERIAL PRIMARY KEY,
            employee_id    INTEGER NOT NULL,
            employee_name  VARCHAR(255) NOT NULL,
            employee_email VARCHAR(255) NOT NULL,
            month          INTEGER NOT NULL,
            year           INTEGER NOT NULL,
            basic_salary   NUMERIC(10, 2) NOT NULL,
            net_salary     NUMERIC(10, 2) NOT NULL,
            status         VARCHAR(20) DEFAULT 'pending',
            generated_at   TIMESTAMPTZ DEFAULT NOW(),
            paid_at        TIMESTAMPTZ
        )
    """)
    op.execute("CREATE INDEX ix_payslips_employee_id ON payslips (employee_id)")
    op.execute("CREATE INDEX ix_payslips_employee_email ON payslips (employee_email)")

    # ── 8. notifications ──────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE notifications (
            id          SERIAL PRIMARY KEY,
            user_id     INTEGER NOT NULL,
            user_email  VARCHAR(255) NOT NULL,
            type        notification_type DEFAULT 'info',
            title       VARCHAR(200) NOT NULL,
            message     TEXT NOT NULL,
            link        VARCHAR(500),
            entity_type VARCHAR(50),
            entity_id   VARCHAR(100),
            is_read     BOOLEAN DEFAULT FALSE,
            read_at     TIMESTAMPTZ,
            created_at  TIMESTAMPTZ DEFAULT NOW()
        )
    """)
    op.execute("CREATE INDEX ix_notifications_user_id ON notifications (user_id)")

    # ── 9. audit_trail ────────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE audit_trail (
            id          SERIAL PRIMARY KEY,
            actor_id    INTEGER,
            action      VARCHAR(50) NOT NULL,
            entity_type VARCHAR(50) NOT NULL,
            entity_id   VARCHAR(100) NOT NULL,
            old_values  JSONB,
            new_values  JSONB,
            created_at  TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("CREATE INDEX ix_audit_trail_actor_id ON audit_trail (actor_id)")
    op.execute("CREATE INDEX ix_audit_trail_entity ON audit_trail (entity_type, entity_id)")
    op.execute("CREATE INDEX ix_audit_trail_action ON audit_trail (action)")


# ---------------------------------------------------------------------------
# DOWNGRADE
# ---------------------------------------------------------------------------


def downgrade() -> None:
    tables = [
        "audit_trail",
        "notifications",
        "payslips",
        "leaves",
        "attendance",
        "kyc_requests",
        "access_logs",
        "users",
        "employees",
    ]
    for t in tables:
        op.execute(f"DROP TABLE IF EXISTS {t} CASCADE")

    for name, _ in reversed(ENUM_TYPES):
        _drop_enum(name)
