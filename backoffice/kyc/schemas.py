"""KYC Pydantic schemas — request / response validation."""


from datetime import date, datetime
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator
from pydantic.alias_generators import to_camel

from backoffice.common.constants import IdentityDocumentType, KycStatus
from backoffice.kyc.models import Kyc


# ═════════════════════════════════════════════════════════════════════
# Requests
# ═════════════════════════════════════════════════════════════════════


class KycSubmit(BaseModel):
    """Text fields of the multipart KYC submission.

    Accepts snake_case or camelCase keys (``fullName``, ``panNumber``).
    A ``status`` sent by the client is ignored; new rows always start
    as ``pending``.
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )

    employee_id: Optional[str] = Field(None, max_length=50)
    full_name: str = Field(..., min_length=1, max_length=255)
    email: Optional[EmailStr] = None
    dob: Optional[date] = None
    address: Optional[str] = None
    document_type: Optional[IdentityDocumentType] = None
    document_number: Optional[str] = Field(None, max_length=100)

    pan_number: str = ""
    aadhar_number: str = ""
    phone_number: str = ""

    emergency_contact_name: str = ""
    emergency_contact_phone: str = ""
    emergency_contact_relation: str = ""
    emergency_contact_address: str = ""

    bank_name: str = ""
    bank_branch: str = ""
    account_number: str = ""
    ifsc_code: str = ""

    @field_validator("full_name")
    @classmethod
    def _collapse_whitespace(cls, value: str) -> str:
        value = " ".join(value.split())
        if not value:
            raise ValueError("Full name must not be blank.")
        return value

    @field_validator("dob", "document_type", "email", mode="before")
    @classmethod
    def _blank_as_none(cls, value: Any) -> Any:
        return None if value == "" else value

    def details(self) -> dict[str, Any]:
        """Personal, emergency-contact and bank blocks stored beside the files."""
        return {
            "personalInfo": {
                "panNumber": self.pan_number,
                "aadharNumber": self.aadhar_number,
                "phoneNumber": self.phone_number,
            },
            "emergencyContact": {
                "name": self.emergency_contact_name,
                "phone": self.emergency_contact_phone,
                "relation": self.emergency_contact_relation,
                "address": self.emergency_contact_address,
            },
            "bankAccount": {
                "bankName": self.bank_name,
                "bankBranch": self.bank_branch,
                "accountNumber": self.account_number,
                "ifscCode": self.ifsc_code,
            },
        }


class KycReviewRequest(BaseModel):
    status: Literal["approved", "rejected", "partially_rejected"]
    remarks: Optional[str] = None


class DocumentReviewRequest(BaseModel):
    action: Literal["approve", "reject"]
    remark: Optional[str] = None
    index: Optional[int] = Field(None, ge=0, description="Required for education documents")


# ═════════════════════════════════════════════════════════════════════
# Responses
# ═════════════════════════════════════════════════════════════════════


class KycResponse(BaseModel):
    id: int
    employee_id: Optional[str] = None
    full_name: str
    email: Optional[str] = None
    dob: Optional[date] = None
    address: Optional[str] = None
    document_type: Optional[IdentityDocumentType] = None
    document_number: Optional[str] = None
    documents: list[dict[str, Any]] = Field(default_factory=list)
    personal_info: dict[str, Any] = Field(default_factory=dict)
    emergency_contact: dict[str, Any] = Field(default_factory=dict)
    bank_account: dict[str, Any] = Field(default_factory=dict)
    document_reviews: dict[str, Any] = Field(default_factory=dict)
    status: KycStatus
    submitted_at: Optional[datetime] = None
    reviewed_at: Optional[datetime] = None
    reviewed_by: Optional[str] = None
    remarks: Optional[str] = None

    @classmethod
    def from_kyc(cls, kyc: Kyc, *, employee_code: Optional[str] = None) -> "KycResponse":
        stored = kyc.documents or {}
        return cls(
            id=kyc.id,
            employee_id=employee_code or kyc.employee_id,
            full_name=kyc.full_name,
            email=kyc.email,
            dob=kyc.dob,
            address=kyc.address,
            document_type=kyc.document_type,
            document_number=kyc.document_number,
            documents=kyc.document_list,
            personal_info=stored.get("personalInfo", {}),
            emergency_contact=stored.get("emergencyContact", {}),
            bank_account=stored.get("bankAccount", {}),
            document_reviews=kyc.document_reviews or {},
            status=kyc.status,
            submitted_at=kyc.submitted_at,
            reviewed_at=kyc.reviewed_at,
            reviewed_by=kyc.reviewed_by,
            remarks=kyc.remarks,
        )


class RejectedFile(BaseModel):
    field: str
    filename: Optional[str] = None
    reason: str


class SubmitOutcome(BaseModel):
    kyc: KycResponse
    matched_by: str
    rejected_files: list[RejectedFile] = Field(default_factory=list)


class ReviewOutcome(BaseModel):
    kyc: KycResponse
    employee_code: Optional[str] = None
    warnings: list[str] = Field(default_factory=list)


class RejectedDocument(BaseModel):
    document_type: str
    index: Optional[int] = None
    remark: Optional[str] = None


class KycStatusResponse(BaseModel):
    status: str
    kyc_id: Optional[int] = None
    full_name: Optional[str] = None
    employee_id: Optional[str] = None
    submitted_at: Optional[datetime] = None
    remarks: Optional[str] = None
    rejected_documents: list[RejectedDocument] = Field(default_factory=list)
