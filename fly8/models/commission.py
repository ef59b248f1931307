"""
Commission model and schemas for the agent commission ledger
"""
from pydantic import AliasChoices, BaseModel, Field, field_validator, model_validator
from typing import Optional, List, Literal, Dict, Any
from datetime import datetime
from enum import Enum


class CommissionType(str, Enum):
    APPLICATION = "APPLICATION"
    VAS = "VAS"


class CommissionStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    PAID = "paid"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


# Legal status transitions; paid, rejected and cancelled are terminal
LEGAL_TRANSITIONS: Dict[str, set] = {
    CommissionStatus.PENDING.value: {
        CommissionStatus.APPROVED.value,
        CommissionStatus.REJECTED.value,
        CommissionStatus.CANCELLED.value,
    },
    CommissionStatus.APPROVED.value: {
        CommissionStatus.PAID.value,
        CommissionStatus.CANCELLED.value,
    },
    CommissionStatus.PAID.value: set(),
    CommissionStatus.REJECTED.value: set(),
    CommissionStatus.CANCELLED.value: set(),
}

# Statuses that count towards an agent's tier progress and wallet totals
EARNING_STATUSES = [
    CommissionStatus.PENDING.value,
    CommissionStatus.APPROVED.value,
    CommissionStatus.PAID.value,
]


def is_legal_transition(current: str, target: str) -> bool:
    return target in LEGAL_TRANSITIONS.get(current, set())


class ServiceType(str, Enum):
    PROFILE_ASSESSMENT = "PROFILE_ASSESSMENT"
    UNIVERSITY_SHORTLISTING = "UNIVERSITY_SHORTLISTING"
    APPLICATION_ASSISTANCE = "APPLICATION_ASSISTANCE"
    VISA_GUIDANCE = "VISA_GUIDANCE"
    SCHOLARSHIP_SEARCH = "SCHOLARSHIP_SEARCH"
    LOAN_ASSISTANCE = "LOAN_ASSISTANCE"
    ACCOMMODATION_HELP = "ACCOMMODATION_HELP"
    PRE_DEPARTURE_ORIENTATION = "PRE_DEPARTURE_ORIENTATION"


SERVICE_TYPE_NAMES = {
    ServiceType.PROFILE_ASSESSMENT.value: "Profile Assessment",
    ServiceType.UNIVERSITY_SHORTLISTING.value: "University Shortlisting",
    ServiceType.APPLICATION_ASSISTANCE.value: "Application Assistance",
    ServiceType.VISA_GUIDANCE.value: "Visa Guidance",
    ServiceType.SCHOLARSHIP_SEARCH.value: "Scholarship Search",
    ServiceType.LOAN_ASSISTANCE.value: "Loan Assistance",
    ServiceType.ACCOMMODATION_HELP.value: "Accommodation Help",
    ServiceType.PRE_DEPARTURE_ORIENTATION.value: "Pre-Departure Orientation",
}


PayoutMethod = Literal["bank_transfer", "paypal", "stripe", "other"]


class StatusHistoryEntry(BaseModel):
    status: str
    changedBy: str
    changedAt: datetime = Field(default_factory=datetime.utcnow)
    note: Optional[str] = None


class TierSnapshot(BaseModel):
    minStudents: Optional[int] = None
    maxStudents: Optional[int] = None
    commissionRate: float


class CommissionRecord(BaseModel):
    """Commission ledger entry (one per source application / service request)"""
    commissionId: str
    referenceId: str
    invoiceNumber: Optional[str] = None

    agentId: str
    studentId: str
    serviceId: Optional[str] = None
    commissionType: CommissionType

    # APPLICATION source
    applicationId: Optional[str] = None
    universityName: Optional[str] = None
    universityCode: Optional[str] = None
    programName: Optional[str] = None

    # VAS source
    serviceRequestId: Optional[str] = None
    serviceType: Optional[str] = None

    # Financials
    baseAmount: float = Field(..., ge=0)
    percentage: float = Field(..., ge=0, le=100)
    amount: float = Field(..., ge=0)
    currency: str = "USD"
    baseAmountSource: Optional[str] = None
    tierApplied: Optional[TierSnapshot] = None

    # Lifecycle
    status: CommissionStatus = CommissionStatus.PENDING
    statusHistory: List[StatusHistoryEntry] = Field(default_factory=list)
    approvedBy: Optional[str] = None
    approvedAt: Optional[datetime] = None
    rejectedBy: Optional[str] = None
    rejectedAt: Optional[datetime] = None
    rejectionReason: Optional[str] = None
    paidAt: Optional[datetime] = None
    payoutRequestedAt: Optional[datetime] = None
    payoutMethod: Optional[PayoutMethod] = None
    payoutReference: Optional[str] = None
    activePayoutId: Optional[str] = None
    processedBy: Optional[str] = None

    description: Optional[str] = None
    adminNotes: Optional[str] = None
    isDeleted: bool = False

    @model_validator(mode="after")
    def check_single_source(self):
        if self.commissionType == CommissionType.APPLICATION and self.serviceRequestId:
            raise ValueError("APPLICATION commissions cannot reference a service request")
        if self.commissionType == CommissionType.VAS and self.applicationId:
            raise ValueError("VAS commissions cannot reference an application")
        return self

    def to_document(self) -> Dict[str, Any]:
        """Storage form: unset optionals are omitted so sparse/partial indexes skip them."""
        doc = self.model_dump(mode="python", exclude_none=True)
        doc["commissionType"] = self.commissionType.value
        doc["status"] = self.status.value
        doc["isDeleted"] = self.isDeleted
        return doc


# ─── Request bodies ───────────────────────────────────────────────────────────

class ManualCommissionCreate(BaseModel):
    agentId: str = Field(..., min_length=1)
    studentId: str = Field(..., min_length=1)
    amount: float = Field(..., gt=0)
    commissionType: CommissionType
    description: Optional[str] = None
    applicationId: Optional[str] = None
    serviceRequestId: Optional[str] = None
    universityName: Optional[str] = None
    universityCode: Optional[str] = None
    programName: Optional[str] = None
    serviceType: Optional[ServiceType] = None
    baseAmount: Optional[float] = Field(None, gt=0)
    percentage: Optional[float] = Field(None, ge=0, le=100)
    currency: Optional[str] = Field(None, min_length=3, max_length=3)


class RejectCommissionRequest(BaseModel):
    reason: str = ""


class DirectPayoutRequest(BaseModel):
    externalReference: Optional[str] = None


class BulkApproveRequest(BaseModel):
    ids: List[str] = Field(default_factory=list, validation_alias=AliasChoices("ids", "commissionIds"))

    @field_validator("ids")
    @classmethod
    def non_empty(cls, v):
        if not v:
            raise ValueError("ids must be a non-empty list")
        return v
