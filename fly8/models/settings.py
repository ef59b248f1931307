"""
Platform settings singleton – only the sections the commission engine reads
"""
from pydantic import BaseModel, Field, model_validator
from typing import Optional, List, Literal

from fly8.config.settings import settings as app_settings

SETTINGS_ID = "platform_settings"


class CommissionTier(BaseModel):
    minStudents: int = Field(0, ge=0)
    maxStudents: Optional[int] = Field(None, ge=0)
    commissionRate: float = Field(..., ge=0, le=100)

    @model_validator(mode="after")
    def check_bounds(self):
        if self.maxStudents is not None and self.maxStudents < self.minStudents:
            raise ValueError("maxStudents must be >= minStudents")
        return self


class CommissionSettings(BaseModel):
    defaultAgentCommission: Optional[float] = Field(app_settings.DEFAULT_COMMISSION_RATE, ge=0, le=100)
    defaultCounselorCommission: float = Field(5, ge=0, le=100)
    minCommission: float = Field(0, ge=0)
    maxCommission: float = Field(50, ge=0)
    commissionCurrency: str = Field(app_settings.DEFAULT_CURRENCY, min_length=3, max_length=3)
    payoutThreshold: float = Field(app_settings.DEFAULT_PAYOUT_THRESHOLD, ge=0)
    payoutFrequency: Literal["weekly", "biweekly", "monthly", "on_request"] = "monthly"
    autoApproveCommissions: bool = False
    commissionTiers: List[CommissionTier] = Field(default_factory=list)


class ServiceFees(BaseModel):
    profileAssessment: float = Field(0, ge=0)
    universityShortlisting: float = Field(0, ge=0)
    applicationAssistance: float = Field(0, ge=0)
    visaGuidance: float = Field(0, ge=0)
    scholarshipSearch: float = Field(0, ge=0)
    loanAssistance: float = Field(0, ge=0)
    accommodationHelp: float = Field(0, ge=0)
    preDepartureOrientation: float = Field(0, ge=0)


class PaymentSettings(BaseModel):
    currency: str = app_settings.DEFAULT_CURRENCY
    serviceFees: ServiceFees = Field(default_factory=ServiceFees)


class PlatformSettings(BaseModel):
    settingsId: str = SETTINGS_ID
    commission: CommissionSettings = Field(default_factory=CommissionSettings)
    payment: PaymentSettings = Field(default_factory=PaymentSettings)


class CommissionSettingsUpdate(BaseModel):
    defaultAgentCommission: Optional[float] = Field(None, ge=0, le=100)
    defaultCounselorCommission: Optional[float] = Field(None, ge=0, le=100)
    minCommission: Optional[float] = Field(None, ge=0)
    maxCommission: Optional[float] = Field(None, ge=0)
    commissionCurrency: Optional[str] = Field(None, min_length=3, max_length=3)
    payoutThreshold: Optional[float] = Field(None, ge=0)
    payoutFrequency: Optional[Literal["weekly", "biweekly", "monthly", "on_request"]] = None
    autoApproveCommissions: Optional[bool] = None
    commissionTiers: Optional[List[CommissionTier]] = None
    serviceFees: Optional[ServiceFees] = None
