"""
Dashboard notification record written by the engine
"""
from pydantic import BaseModel, Field
from typing import Optional, Literal, Dict, Any
from datetime import datetime
from enum import Enum


class NotificationType(str, Enum):
    COMMISSION_EARNED = "COMMISSION_EARNED"
    COMMISSION_PENDING_REVIEW = "COMMISSION_PENDING_REVIEW"
    COMMISSION_CREDITED = "COMMISSION_CREDITED"
    COMMISSION_REJECTED = "COMMISSION_REJECTED"
    PAYOUT_REQUESTED = "PAYOUT_REQUESTED"
    PAYOUT_COMPLETED = "PAYOUT_COMPLETED"
    PAYOUT_FAILED = "PAYOUT_FAILED"


class NotificationRecord(BaseModel):
    notificationId: str
    recipientId: str
    type: NotificationType
    title: str
    message: str
    channel: Literal["DASHBOARD", "BOTH"] = "BOTH"
    priority: Literal["LOW", "NORMAL", "HIGH"] = "NORMAL"
    metadata: Dict[str, Any] = Field(default_factory=dict)
    isRead: bool = False
    createdAt: datetime = Field(default_factory=datetime.utcnow)
    readAt: Optional[datetime] = None
