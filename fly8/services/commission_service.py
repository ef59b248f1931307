"""
Commission Service – the engine that turns completed applications and completed
value-added service requests into commission records for the assigned agent.

Idempotent per source entity: a repeated trigger returns the commission that
already exists. Nothing after the ledger write can fail the call; notification,
audit and earnings refresh problems are logged.
"""
import logging
import uuid
from datetime import datetime
from typing import Optional, Dict, Any, Union

from pydantic import BaseModel, ValidationError as SchemaError
from pymongo.errors import DuplicateKeyError

from fly8.config.database import Collections
from fly8.database.db_operations import db_ops
from fly8.models.commission import (
    CommissionRecord,
    CommissionStatus,
    CommissionType,
    EARNING_STATUSES,
    SERVICE_TYPE_NAMES,
    StatusHistoryEntry,
)
from fly8.models.triggers import (
    APPLICATION_COMPLETED,
    SERVICE_REQUEST_COMPLETED,
    CompletedApplication,
    CompletedServiceRequest,
)
from fly8.services import agent_registry, notification_service
from fly8.services.audit_service import create_audit_log
from fly8.services.base_amount_resolver import (
    SOURCE_DEFAULT,
    load_university,
    resolve_application_base_amount,
    resolve_vas_base_amount,
)
from fly8.services.invoice_sequencer import assign_commission_invoice
from fly8.services.rate_resolver import resolve_commission_rate
from fly8.services.settings_service import get_settings
from fly8.services.wallet_service import refresh_agent_earnings
from fly8.utils.errors import ConflictError, PreconditionError, ValidationError
from fly8.utils.helpers import compute_commission_amount, generate_reference_id, serialize_doc

logger = logging.getLogger(__name__)

SYSTEM_ACTOR = "system"
REFERENCE_ATTEMPTS = 3


# ─── Ledger lookups ───────────────────────────────────────────────────────────

async def find_live_commission_for_source(source_field: str, source_id: str) -> Optional[Dict]:
    return await db_ops.get_one(
        Collections.COMMISSIONS, {source_field: source_id, "isDeleted": False}
    )


async def get_commission_doc(commission_id: str) -> Optional[Dict]:
    return await db_ops.get_one(
        Collections.COMMISSIONS, {"commissionId": commission_id, "isDeleted": False}
    )


async def count_agent_commissions(agent_id: str, commission_type: str) -> int:
    return await db_ops.count(Collections.COMMISSIONS, {
        "agentId": agent_id,
        "commissionType": commission_type,
        "status": {"$in": EARNING_STATUSES},
        "isDeleted": False,
    })


def _parse(model, payload: Union[Dict, BaseModel]):
    if isinstance(payload, model):
        return payload
    if isinstance(payload, BaseModel):
        payload = payload.model_dump()
    try:
        return model.model_validate(payload)
    except SchemaError as exc:
        raise ValidationError(f"Invalid {model.__name__} payload", errors=exc.errors(include_url=False))


async def insert_commission(record: CommissionRecord, source_field: Optional[str]) -> Dict:
    """
    Insert with the partial unique source index as the race guard. A duplicate
    on the source id returns the live commission; a duplicate referenceId is
    retried with a fresh one.
    """
    for attempt in range(REFERENCE_ATTEMPTS):
        doc = record.to_document()
        try:
            await db_ops.create(Collections.COMMISSIONS, doc)
            return await get_commission_doc(record.commissionId)
        except DuplicateKeyError:
            if source_field:
                existing = await find_live_commission_for_source(source_field, doc[source_field])
                if existing:
                    logger.info("Commission already exists for %s %s", source_field, doc[source_field])
                    return existing
            record.referenceId = generate_reference_id(record.commissionType.value)
            logger.warning("Reference collision on attempt %d, retrying", attempt + 1)
    raise ConflictError("Could not allocate a unique commission reference")


# ─── Side effects ─────────────────────────────────────────────────────────────

async def _announce_created(
    commission: Dict,
    agent: Dict,
    auto_approved: bool,
    subject: str,
    source_field: str,
    triggered_by: Optional[str],
    actor_role: str,
) -> None:
    agent_id = commission["agentId"]
    amount = commission["amount"]
    currency = commission["currency"]

    await refresh_agent_earnings(agent_id)

    await notification_service.notify_user(
        agent_id,
        "COMMISSION_EARNED",
        "New Commission Earned",
        f"You earned {currency} {amount:.2f} commission for {subject}.",
        metadata={"commissionId": commission["commissionId"]},
    )
    notification_service.push_event(agent_id, notification_service.COMMISSION_CREATED, commission)
    if auto_approved:
        notification_service.push_event(agent_id, notification_service.COMMISSION_APPROVED, commission)
    else:
        await notification_service.notify_super_admins(
            "COMMISSION_PENDING_REVIEW",
            "Commission Pending Review",
            f"New {commission['commissionType']} commission of {currency} {amount:.2f} for agent "
            f"{agent_registry.agent_display_name(agent)} needs approval.",
            metadata={"commissionId": commission["commissionId"]},
        )

    await create_audit_log(
        triggered_by or SYSTEM_ACTOR,
        "commission_created",
        "commission",
        commission["commissionId"],
        previous_state=None,
        new_state={
            "status": commission["status"],
            "amount": amount,
            "invoiceNumber": commission.get("invoiceNumber"),
        },
        details={
            "agentId": agent_id,
            "amount": amount,
            "commissionType": commission["commissionType"],
            source_field: commission.get(source_field),
            "baseAmount": commission["baseAmount"],
            "baseAmountSource": commission.get("baseAmountSource"),
            "percentage": commission["percentage"],
        },
        actor_role=actor_role,
    )


# ─── Shared construction ──────────────────────────────────────────────────────

async def _eligible_agent(agent_id: Optional[str], source_label: str) -> Optional[Dict]:
    if not agent_id:
        logger.info("No commission for %s: no agent assigned", source_label)
        return None
    agent = await agent_registry.get_agent(agent_id)
    if not agent or not agent.get("isActive", False):
        logger.info("No commission for %s: agent %s missing or inactive", source_label, agent_id)
        return None
    return agent


async def _create(
    *,
    commission_type: CommissionType,
    agent: Dict,
    student_id: str,
    source_field: str,
    source_id: str,
    base_amount: float,
    base_source: str,
    description: str,
    subject: str,
    extra: Dict[str, Any],
    triggered_by: Optional[str],
    actor_role: str,
) -> Dict:
    platform = await get_settings()
    commission_settings = platform.commission

    completed = await count_agent_commissions(agent["userId"], commission_type.value)
    percentage, tier = resolve_commission_rate(agent, commission_settings, completed)
    amount = compute_commission_amount(base_amount, percentage)
    auto_approve = commission_settings.autoApproveCommissions
    now = datetime.utcnow()

    if base_source == SOURCE_DEFAULT:
        description = f"{description} (default base amount {base_amount:.2f} applied)"

    status = CommissionStatus.APPROVED if auto_approve else CommissionStatus.PENDING
    record = CommissionRecord(
        commissionId=str(uuid.uuid4()),
        referenceId=generate_reference_id(commission_type.value),
        agentId=agent["userId"],
        studentId=student_id,
        commissionType=commission_type,
        baseAmount=base_amount,
        percentage=percentage,
        amount=amount,
        currency=commission_settings.commissionCurrency or "USD",
        baseAmountSource=base_source,
        tierApplied=tier,
        status=status,
        description=description,
        statusHistory=[StatusHistoryEntry(
            status=status.value,
            changedBy=SYSTEM_ACTOR,
            changedAt=now,
            note=(
                "Commission auto-approved per platform settings"
                if auto_approve else
                f"Commission created upon {subject} completion"
            ),
        )],
        **{source_field: source_id},
        **extra,
    )
    if auto_approve:
        record.approvedBy = SYSTEM_ACTOR
        record.approvedAt = now

    commission = await insert_commission(record, source_field)
    if commission.get("commissionId") != record.commissionId:
        # Lost the race to a concurrent trigger for the same source
        return serialize_doc(commission)
    if auto_approve:
        commission = await assign_commission_invoice(commission, now)

    logger.info(
        "Commission %s created: agent %s earns %s %.2f (%s %s)",
        commission["commissionId"], agent["userId"], commission["currency"],
        amount, source_field, source_id,
    )
    try:
        await _announce_created(
            commission, agent, auto_approve, subject, source_field, triggered_by, actor_role
        )
    except Exception:
        logger.exception("Post-create side effects failed for commission %s", commission["commissionId"])
    return serialize_doc(commission)


# ─── Public entry points ──────────────────────────────────────────────────────

async def create_application_commission(
    application: Union[Dict, CompletedApplication],
    triggered_by: Optional[str] = None,
    actor_role: str = "system",
) -> Optional[Dict]:
    """
    Called when a university application reaches Completed.
    Returns the commission (new or existing), or None when no agent is eligible.
    """
    app = _parse(CompletedApplication, application)
    if app.status is not None and app.status != APPLICATION_COMPLETED:
        raise PreconditionError(
            f"Application {app.applicationId} is '{app.status}', not '{APPLICATION_COMPLETED}'"
        )

    existing = await find_live_commission_for_source("applicationId", app.applicationId)
    if existing:
        logger.info("Commission already exists for application %s", app.applicationId)
        return serialize_doc(existing)

    agent = await _eligible_agent(app.agentId, f"application {app.applicationId}")
    if agent is None:
        return None

    university = await load_university(app.universityCode)
    base_amount, base_source = resolve_application_base_amount(university)

    return await _create(
        commission_type=CommissionType.APPLICATION,
        agent=agent,
        student_id=app.studentId,
        source_field="applicationId",
        source_id=app.applicationId,
        base_amount=base_amount,
        base_source=base_source,
        description=f"Commission for {app.universityName} - {app.programName}",
        subject=f"{app.universityName} application" if app.universityName else "application",
        extra={
            "universityName": app.universityName,
            "universityCode": app.universityCode,
            "programName": app.programName,
        },
        triggered_by=triggered_by,
        actor_role=actor_role,
    )


async def create_vas_commission(
    service_request: Union[Dict, CompletedServiceRequest],
    triggered_by: Optional[str] = None,
    actor_role: str = "system",
) -> Optional[Dict]:
    """
    Called when a value-added service request reaches COMPLETED.
    Returns the commission (new or existing), or None when no agent is eligible.
    """
    request = _parse(CompletedServiceRequest, service_request)
    if request.status is not None and request.status != SERVICE_REQUEST_COMPLETED:
        raise PreconditionError(
            f"Service request {request.serviceRequestId} is '{request.status}', "
            f"not '{SERVICE_REQUEST_COMPLETED}'"
        )

    existing = await find_live_commission_for_source("serviceRequestId", request.serviceRequestId)
    if existing:
        logger.info("Commission already exists for service request %s", request.serviceRequestId)
        return serialize_doc(existing)

    agent = await _eligible_agent(request.assignedAgent, f"service request {request.serviceRequestId}")
    if agent is None:
        return None

    platform = await get_settings()
    base_amount, base_source = resolve_vas_base_amount(request.serviceType, platform.payment.serviceFees)
    service_name = SERVICE_TYPE_NAMES.get(request.serviceType, request.serviceType)

    return await _create(
        commission_type=CommissionType.VAS,
        agent=agent,
        student_id=request.studentId,
        source_field="serviceRequestId",
        source_id=request.serviceRequestId,
        base_amount=base_amount,
        base_source=base_source,
        description=f"Commission for {service_name}",
        subject=service_name,
        extra={"serviceType": request.serviceType, "serviceId": request.serviceId},
        triggered_by=triggered_by,
        actor_role=actor_role,
    )


# Trigger names used by the application and service-request workflows
on_application_completed = create_application_commission
on_service_request_completed = create_vas_commission
