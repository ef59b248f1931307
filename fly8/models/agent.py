"""
Agent registry view and wallet projection schemas
"""
from pydantic import BaseModel, Field
from typing import Optional
from datetime import datetime


class AgentCommissionRateUpdate(BaseModel):
    commissionPercentage: float = Field(..., ge=0, le=100)


class AgentWallet(BaseModel):
    """Projected from the ledger; never read from the cached fields on the agent"""
    availableBalance: float = 0.0
    pendingBalance: float = 0.0
    lifetimeEarnings: float = 0.0
    totalCommissions: int = 0
    payoutThreshold: float = 0.0
    isPayoutEligible: bool = False
    lastPayoutDate: Optional[datetime] = None
    lastPayoutAmount: Optional[float] = None
    currency: str = "USD"
