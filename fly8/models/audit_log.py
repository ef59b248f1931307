"""
Audit log entry – append-only record of every ledger transition
"""
from pydantic import BaseModel, Field
from typing import Optional, Any, Dict
from datetime import datetime
from enum import Enum


class AuditAction(str, Enum):
    COMMISSION_CREATED = "commission_created"
    COMMISSION_APPROVED = "commission_approved"
    COMMISSION_REJECTED = "commission_rejected"
    COMMISSION_PAID = "commission_paid"
    COMMISSIONS_BULK_APPROVED = "commissions_bulk_approved"
    PAYOUT_REQUESTED = "payout_requested"
    PAYOUT_PROCESSED = "payout_processed"
    PAYOUT_REJECTED = "payout_rejected"
    COMMISSION_RATE_UPDATED = "commission_rate_updated"
    SETTINGS_UPDATED = "settings_updated"


class AuditEntityType(str, Enum):
    COMMISSION = "commission"
    PAYOUT = "payout"
    USER = "user"
    SETTINGS = "settings"


class AuditLogEntry(BaseModel):
    logId: str
    actorUserId: str
    actorRole: str = "system"
    action: AuditAction
    entityType: AuditEntityType
    entityId: Optional[str] = None
    previousState: Optional[Dict[str, Any]] = None
    newState: Optional[Dict[str, Any]] = None
    details: Dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=datetime.utcnow)
