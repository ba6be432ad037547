"""Employee Pydantic v2 schemas — request / response validation.

Naming conventions:
  - *Create / *Update  → request bodies (write)
  - *Response          → response bodies (read)
  - *Outcome           → lifecycle results that carry warnings
"""


from datetime import date, datetime
from decimal import Decimal
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

from backoffice.common.constants import EmployeeKycStatus, WorkStatus


# ═════════════════════════════════════════════════════════════════════
# Write schemas
# ═════════════════════════════════════════════════════════════════════


class _EmployeeFields(BaseModel):
    @field_validator("email", check_fields=False)
    @classmethod
    def _lower_email(cls, value: Optional[str]) -> Optional[str]:
        return value.strip().lower() if value else value

    @field_validator("name", check_fields=False)
    @classmethod
    def _strip_name(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return value
        value = " ".join(value.split())
        if not value:
            raise ValueError("Name must not be blank.")
        return value


class EmployeeCreate(_EmployeeFields):
    """Payload for creating a new employee."""

    name: str = Field(..., min_length=1, max_length=255)
    email: EmailStr
    mobile_number: Optional[str] = Field(None, max_length=20)
    role: Optional[str] = Field(None, max_length=100)
    department: Optional[str] = Field(None, max_length=150)
    designation: Optional[str] = Field(None, max_length=150)
    position: Optional[str] = Field(None, max_length=150)
    location: Optional[str] = Field(None, max_length=150)
    hire_date: Optional[date] = None
    salary: Optional[Decimal] = Field(None, ge=0)
    status: WorkStatus = WorkStatus.working
    is_active: bool = True
    can_access_system: bool = True


class EmployeeUpdate(_EmployeeFields):
    """Partial-update payload (all fields optional)."""

    name: Optional[str] = Field(None, min_length=1, max_length=255)
    email: Optional[EmailStr] = None
    mobile_number: Optional[str] = Field(None, max_length=20)
    role: Optional[str] = Field(None, max_length=100)
    department: Optional[str] = Field(None, max_length=150)
    designation: Optional[str] = Field(None, max_length=150)
    position: Optional[str] = Field(None, max_length=150)
    location: Optional[str] = Field(None, max_length=150)
    hire_date: Optional[date] = None
    salary: Optional[Decimal] = Field(None, ge=0)
    status: Optional[WorkStatus] = None
    is_active: Optional[bool] = None
    can_access_system: Optional[bool] = None

    # May be omitted, but the columns are NOT NULL
    @field_validator("name", "email", "status", "is_active", "can_access_system", mode="before")
    @classmethod
    def _reject_null(cls, value: Any) -> Any:
        if value is None:
            raise ValueError("Field cannot be null; omit it to keep the current value.")
        return value


# ═════════════════════════════════════════════════════════════════════
# Read schemas
# ═════════════════════════════════════════════════════════════════════


class EmployeeResponse(BaseModel):
    """Employee as returned by every employee endpoint."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    email: str
    public_code: Optional[str] = None
    employee_code: Optional[str] = None
    emp_id: Optional[str] = None
    mobile_number: Optional[str] = None
    role: Optional[str] = None
    department: Optional[str] = None
    designation: Optional[str] = None
    position: Optional[str] = None
    location: Optional[str] = None
    hire_date: Optional[date] = None
    salary: Optional[Decimal] = None
    status: WorkStatus
    is_active: bool
    can_access_system: bool
    kyc_status: EmployeeKycStatus
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class CreateOutcome(BaseModel):
    employee: EmployeeResponse
    temp_password: Optional[str] = None
    credentials_issued: bool
    notification: Literal["sent", "skipped", "failed"]
    warnings: list[str] = Field(default_factory=list)


class UpdateOutcome(BaseModel):
    employee: EmployeeResponse
    user_synced: bool
    warnings: list[str] = Field(default_factory=list)


class DeletionResponse(BaseModel):
    deletion_type: Literal["soft", "permanent"]
    summary: dict[str, Any]
