"""
Payloads of the completion events that produce commissions.

Applications and service requests are owned by other services; only the fields
the engine reads are modelled, anything else on the document is ignored.
"""
from pydantic import BaseModel, ConfigDict
from typing import Optional

APPLICATION_COMPLETED = "Completed"
SERVICE_REQUEST_COMPLETED = "COMPLETED"


class CompletedApplication(BaseModel):
    model_config = ConfigDict(extra="ignore")

    applicationId: str
    studentId: str
    agentId: Optional[str] = None
    universityName: Optional[str] = None
    universityCode: Optional[str] = None
    programName: Optional[str] = None
    status: Optional[str] = None


class CompletedServiceRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    serviceRequestId: str
    studentId: str
    serviceType: str
    assignedAgent: Optional[str] = None
    serviceId: Optional[str] = None
    status: Optional[str] = None
