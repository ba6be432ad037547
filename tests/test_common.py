"""Tests for common utilities — pagination, problem details, audit trail."""

from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from backoffice.common.audit import AuditTrail, create_audit_entry
from backoffice.common.pagination import PaginationParams, paginate
from backoffice.employees.models import Employee
from tests.conftest import auth_headers, make_employee


async def _seed_employees(db: AsyncSession, count: int) -> None:
    for i in range(count):
        await make_employee(
            db,
            name=f"PERSON {i}",
            email=f"p{i}@example.com",
            employee_code=f"EMP2026000{i}",
        )


class TestPagination:
    """Tests for pagination helper."""

    async def test_paginate_with_sort(self, db: AsyncSession):
        """paginate() with sort parameter applies ORDER BY."""
        await _seed_employees(db, 5)

        params = PaginationParams(page=1, page_size=3, sort="name")
        result = await paginate(db, select(Employee), params, model=Employee)

        assert [e.name for e in result.data] == ["PERSON 0", "PERSON 1", "PERSON 2"]
        assert result.meta.total == 5
        assert result.meta.total_pages == 2
        assert result.meta.has_next is True

    async def test_paginate_page_2(self, db: AsyncSession):
        """paginate() page 2 returns remaining items."""
        await _seed_employees(db, 5)

        params = PaginationParams(page=2, page_size=3, sort=None)
        result = await paginate(db, select(Employee), params, model=Employee)

        assert len(result.data) == 2
        assert result.meta.has_prev is True
        assert result.meta.has_next is False

    async def test_unknown_sort_column_falls_back_to_newest(self, db: AsyncSession):
        await _seed_employees(db, 3)

        params = PaginationParams(page=1, page_size=10, sort="name; DROP TABLE employees")
        result = await paginate(db, select(Employee), params, model=Employee)

        assert [e.name for e in result.data] == ["PERSON 2", "PERSON 1", "PERSON 0"]

    async def test_paginate_empty_result(self, db: AsyncSession):
        """paginate() with no matching rows returns empty data."""
        query = select(Employee).where(Employee.name == "ZZZ_NONEXISTENT")
        params = PaginationParams(page=1, page_size=10, sort=None)
        result = await paginate(db, query, params, model=Employee)

        assert len(result.data) == 0
        assert result.meta.total == 0
        assert result.meta.total_pages == 0


class TestProblemDetails:
    async def test_not_found_shape(self, client, db, manager_user):
        await db.commit()

        resp = await client.get("/api/v1/employees/4040", headers=auth_headers(manager_user))

        assert resp.status_code == 404
        assert resp.headers["content-type"].startswith("application/problem+json")
        body = resp.json()
        assert body["type"].endswith("/not-found")
        assert body["title"] == "Employee Not Found"
        assert body["status"] == 404
        assert body["instance"] == "/api/v1/employees/4040"

    async def test_request_validation_shape(self, client, db, manager_user):
        await db.commit()

        resp = await client.get("/api/v1/employees?page=0", headers=auth_headers(manager_user))

        assert resp.status_code == 422
        assert "page" in resp.json()["errors"]


async def test_audit_entry_stores_values_as_text_id(db):
    entry = await create_audit_entry(
        db,
        action="update",
        entity_type="employee",
        entity_id=17,
        actor_id=3,
        old_values={"name": "A"},
        new_values={"name": "B"},
    )

    stored = (await db.execute(select(AuditTrail))).scalars().one()
    assert stored.id == entry.id
    assert stored.entity_id == "17"
    assert stored.new_values == {"name": "B"}


async def test_health(client):
    resp = await client.get("/api/v1/health")
    assert resp.status_code == 200
