"""
Payout model – an agent-initiated batch over approved commissions
"""
from pydantic import AliasChoices, BaseModel, Field
from typing import Optional, List
from datetime import datetime
from enum import Enum

from fly8.models.commission import PayoutMethod, StatusHistoryEntry


class PayoutStatus(str, Enum):
    REQUESTED = "requested"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


PROCESSABLE_PAYOUT_STATUSES = [
    PayoutStatus.REQUESTED.value,
    PayoutStatus.PROCESSING.value,
]


class BankDetailsSnapshot(BaseModel):
    """Frozen copy of the agent's bank details at request time"""
    bankName: Optional[str] = None
    accountNumber: Optional[str] = None
    routingNumber: Optional[str] = None
    accountHolderName: Optional[str] = None


class PayoutRecord(BaseModel):
    payoutId: str
    agentId: str
    amount: float = Field(..., ge=0)
    currency: str = "USD"
    commissionIds: List[str] = Field(default_factory=list)
    status: PayoutStatus = PayoutStatus.REQUESTED
    payoutMethod: PayoutMethod = "bank_transfer"
    bankDetailsSnapshot: BankDetailsSnapshot = Field(default_factory=BankDetailsSnapshot)
    requestedAt: datetime = Field(default_factory=datetime.utcnow)
    processedAt: Optional[datetime] = None
    processedBy: Optional[str] = None
    externalReference: Optional[str] = None
    invoiceNumber: Optional[str] = None
    agentNote: Optional[str] = None
    adminNote: Optional[str] = None
    failureReason: Optional[str] = None
    statusHistory: List[StatusHistoryEntry] = Field(default_factory=list)

    def to_document(self) -> dict:
        doc = self.model_dump(mode="python", exclude_none=True)
        doc["status"] = self.status.value
        return doc


# ─── Request bodies ───────────────────────────────────────────────────────────

class PayoutCreateRequest(BaseModel):
    commissionIds: List[str] = Field(..., min_length=1)
    method: PayoutMethod = Field(
        "bank_transfer", validation_alias=AliasChoices("method", "payoutMethod")
    )
    note: Optional[str] = None


class ProcessPayoutRequest(BaseModel):
    externalReference: Optional[str] = None
    note: Optional[str] = None


class RejectPayoutRequest(BaseModel):
    reason: str = ""
