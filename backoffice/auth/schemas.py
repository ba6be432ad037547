"""Auth Pydantic schemas for request / response validation."""


from typing import Optional

from pydantic import BaseModel, EmailStr


# ── Requests ────────────────────────────────────────────────────────

class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class ChangePasswordRequest(BaseModel):
    current_password: str
    new_password: str


# ── Responses ───────────────────────────────────────────────────────

class UserInfo(BaseModel):
    id: int
    name: str
    email: str
    role: str
    must_change_password: bool


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_in: int
    user: UserInfo


class MeResponse(UserInfo):
    employee_code: Optional[str] = None
    kyc_status: Optional[str] = None
