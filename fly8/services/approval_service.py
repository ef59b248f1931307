"""
Approval Workflow – super admin transitions on individual commissions.

Each transition is a conditional update on the expected current status, so two
admins acting on the same commission cannot both succeed.
"""
import logging
import uuid
from datetime import datetime
from typing import Optional, Dict, List, Any

from pydantic import ValidationError as SchemaError

from fly8.config.database import Collections
from fly8.database.db_operations import db_ops
from fly8.models.commission import (
    CommissionRecord,
    CommissionStatus,
    CommissionType,
    ManualCommissionCreate,
    StatusHistoryEntry,
    EARNING_STATUSES,
    is_legal_transition,
)
from fly8.services import agent_registry, notification_service
from fly8.services.audit_service import create_audit_log, actor_role_of
from fly8.services.base_amount_resolver import SOURCE_MANUAL
from fly8.services.commission_service import (
    find_live_commission_for_source,
    get_commission_doc,
    insert_commission,
)
from fly8.services.invoice_sequencer import assign_commission_invoice
from fly8.services.settings_service import get_settings
from fly8.services.wallet_service import refresh_agent_earnings
from fly8.utils.errors import (
    ConflictError,
    EngineError,
    NotFoundError,
    PreconditionError,
    ValidationError,
)
from fly8.utils.helpers import (
    compute_commission_amount,
    generate_reference_id,
    paginate,
    pagination_meta,
    round2,
    serialize_doc,
    serialize_docs,
)

logger = logging.getLogger(__name__)

PENDING = CommissionStatus.PENDING.value
APPROVED = CommissionStatus.APPROVED.value
PAID = CommissionStatus.PAID.value
REJECTED = CommissionStatus.REJECTED.value


def _actor_id(actor: Optional[Dict]) -> str:
    return (actor or {}).get("sub") or "system"


def _history_entry(status: str, actor_id: str, note: str, at: datetime) -> Dict:
    return StatusHistoryEntry(status=status, changedBy=actor_id, changedAt=at, note=note).model_dump()


async def require_commission(commission_id: str) -> Dict:
    commission = await get_commission_doc(commission_id)
    if not commission:
        raise NotFoundError("Commission not found", commissionId=commission_id)
    return commission


async def _transition(
    commission_id: str,
    expected: str,
    target: str,
    fields: Dict[str, Any],
    actor_id: str,
    note: str,
    at: datetime,
    extra_filter: Optional[Dict] = None,
) -> Dict:
    """CAS ``expected -> target``; PreconditionError when the commission moved underneath us."""
    if not is_legal_transition(expected, target):
        raise PreconditionError(
            f"Illegal commission transition {expected} -> {target}", commissionId=commission_id
        )
    query = {"commissionId": commission_id, "status": expected, "isDeleted": False}
    if extra_filter:
        query.update(extra_filter)
    updated = await db_ops.update_where(
        Collections.COMMISSIONS,
        query,
        {
            "$set": {"status": target, **fields},
            "$push": {"statusHistory": _history_entry(target, actor_id, note, at)},
        },
    )
    if not updated:
        current = await get_commission_doc(commission_id)
        if not current:
            raise NotFoundError("Commission not found", commissionId=commission_id)
        raise PreconditionError(
            f"Commission is '{current.get('status')}', expected '{expected}'",
            commissionId=commission_id,
            currentStatus=current.get("status"),
        )
    return updated


# ─── Approve ──────────────────────────────────────────────────────────────────

async def _approve_one(commission_id: str, actor: Dict, note: str, channel: str) -> Dict:
    commission = await require_commission(commission_id)
    if commission["status"] != PENDING:
        raise PreconditionError(
            "Commission is not in pending status",
            commissionId=commission_id,
            currentStatus=commission["status"],
        )

    now = datetime.utcnow()
    fields = {"approvedBy": _actor_id(actor), "approvedAt": now}
    invoice = commission.get("invoiceNumber")

    updated = await _transition(commission_id, PENDING, APPROVED, fields, _actor_id(actor), note, now)
    updated = await assign_commission_invoice(updated, now)
    logger.info("Commission %s approved by %s (%s)", commission_id, _actor_id(actor), updated["invoiceNumber"])

    await create_audit_log(
        _actor_id(actor),
        "commission_approved",
        "commission",
        commission_id,
        previous_state={"status": PENDING, "invoiceNumber": invoice},
        new_state={"status": APPROVED, "invoiceNumber": updated["invoiceNumber"]},
        details={"amount": updated["amount"], "agentId": updated["agentId"]},
        actor_role=actor_role_of(actor),
    )
    await notification_service.notify_user(
        updated["agentId"],
        "COMMISSION_CREDITED",
        "Commission Approved",
        f"Your commission of {updated['currency']} {updated['amount']:.2f} has been approved. "
        f"Invoice: {updated['invoiceNumber']}",
        channel=channel,
        metadata={"commissionId": commission_id},
    )
    notification_service.push_event(updated["agentId"], notification_service.COMMISSION_APPROVED, updated)
    return updated


async def approve(commission_id: str, actor: Dict) -> Dict:
    updated = await _approve_one(commission_id, actor, "Approved by admin", "BOTH")
    await refresh_agent_earnings(updated["agentId"])
    return serialize_doc(updated)


async def bulk_approve(commission_ids: List[str], actor: Dict) -> Dict:
    """Approve every pending id; anything not pending (or unknown) is skipped."""
    results = {"approved": 0, "skipped": 0, "errors": []}
    affected_agents = set()
    approved_ids = []

    for commission_id in dict.fromkeys(commission_ids):
        try:
            updated = await _approve_one(commission_id, actor, "Bulk approved by admin", "DASHBOARD")
        except (PreconditionError, NotFoundError):
            results["skipped"] += 1
            continue
        except EngineError as exc:
            results["errors"].append({"commissionId": commission_id, "error": exc.message})
            continue
        affected_agents.add(updated["agentId"])
        approved_ids.append(commission_id)
        results["approved"] += 1

    for agent_id in affected_agents:
        await refresh_agent_earnings(agent_id)

    await create_audit_log(
        _actor_id(actor),
        "commissions_bulk_approved",
        "commission",
        None,
        details={
            "count": results["approved"],
            "skipped": results["skipped"],
            "commissionIds": approved_ids,
        },
        actor_role=actor_role_of(actor),
    )
    logger.info("Bulk approve: %d approved, %d skipped, %d errors",
                results["approved"], results["skipped"], len(results["errors"]))
    return results


# ─── Reject ───────────────────────────────────────────────────────────────────

async def reject(commission_id: str, reason: Optional[str], actor: Dict) -> Dict:
    reason = (reason or "").strip()
    if not reason:
        raise ValidationError("Rejection reason is required")

    commission = await require_commission(commission_id)
    if commission["status"] != PENDING:
        raise PreconditionError(
            "Only pending commissions can be rejected",
            commissionId=commission_id,
            currentStatus=commission["status"],
        )

    now = datetime.utcnow()
    fields = {
        "rejectedBy": _actor_id(actor),
        "rejectedAt": now,
        "rejectionReason": reason,
    }
    updated = await _transition(
        commission_id, PENDING, REJECTED, fields, _actor_id(actor), f"Rejected: {reason}", now
    )
    logger.info("Commission %s rejected by %s", commission_id, _actor_id(actor))
    await refresh_agent_earnings(updated["agentId"])

    await create_audit_log(
        _actor_id(actor),
        "commission_rejected",
        "commission",
        commission_id,
        previous_state={"status": PENDING},
        new_state={"status": REJECTED},
        details={"amount": updated["amount"], "reason": reason, "agentId": updated["agentId"]},
        actor_role=actor_role_of(actor),
    )
    await notification_service.notify_user(
        updated["agentId"],
        "COMMISSION_REJECTED",
        "Commission Rejected",
        f"Your commission of {updated['currency']} {updated['amount']:.2f} has been rejected. Reason: {reason}",
        priority="HIGH",
        metadata={"commissionId": commission_id},
    )
    return serialize_doc(updated)


# ─── Direct payment ───────────────────────────────────────────────────────────

async def mark_paid_direct(commission_id: str, external_reference: Optional[str], actor: Dict) -> Dict:
    commission = await require_commission(commission_id)
    if commission["status"] != APPROVED:
        raise PreconditionError(
            "Commission must be approved before payout",
            commissionId=commission_id,
            currentStatus=commission["status"],
        )
    if commission.get("activePayoutId"):
        raise ConflictError(
            "Commission is already part of a payout request",
            commissionId=commission_id,
            payoutId=commission["activePayoutId"],
        )

    now = datetime.utcnow()
    fields = {
        "paidAt": now,
        "processedBy": _actor_id(actor),
        "payoutReference": external_reference or "",
    }
    updated = await _transition(
        commission_id, APPROVED, PAID, fields, _actor_id(actor), "Payout processed by admin", now,
        extra_filter={"activePayoutId": {"$exists": False}},
    )
    updated = await assign_commission_invoice(updated, now)
    logger.info("Commission %s paid directly (ref %s)", commission_id, external_reference or "-")
    await refresh_agent_earnings(updated["agentId"])

    await create_audit_log(
        _actor_id(actor),
        "commission_paid",
        "commission",
        commission_id,
        previous_state={"status": APPROVED, "invoiceNumber": commission.get("invoiceNumber")},
        new_state={"status": PAID, "invoiceNumber": updated["invoiceNumber"]},
        details={
            "amount": updated["amount"],
            "agentId": updated["agentId"],
            "externalReference": external_reference or "",
        },
        actor_role=actor_role_of(actor),
    )
    await notification_service.notify_user(
        updated["agentId"],
        "COMMISSION_CREDITED",
        "Commission Paid",
        f"Your commission of {updated['currency']} {updated['amount']:.2f} has been paid to your account",
        metadata={"commissionId": commission_id},
    )
    notification_service.push_event(updated["agentId"], notification_service.COMMISSION_PAID, updated)
    return serialize_doc(updated)


# ─── Manual creation ──────────────────────────────────────────────────────────

def _manual_financials(amount: float, base_amount: Optional[float], percentage: Optional[float]):
    """
    Fill in whichever of baseAmount / percentage is missing so that
    amount == round2(baseAmount * percentage / 100) still holds.
    """
    amount = round2(amount)
    if base_amount is None and percentage is None:
        return amount, 100.0
    if base_amount is None:
        if not percentage:
            raise ValidationError("percentage must be greater than 0 when baseAmount is omitted")
        return round2(amount * 100 / percentage), float(percentage)
    if percentage is None:
        percentage = round2(amount * 100 / base_amount)
        if percentage > 100:
            raise ValidationError("amount cannot exceed baseAmount", amount=amount, baseAmount=base_amount)
        return float(base_amount), percentage
    if abs(compute_commission_amount(base_amount, percentage) - amount) > 0.01:
        raise ValidationError(
            "amount does not match baseAmount * percentage / 100",
            amount=amount, baseAmount=base_amount, percentage=percentage,
        )
    return float(base_amount), float(percentage)


async def create_manual(payload: ManualCommissionCreate, actor: Dict) -> Dict:
    await agent_registry.require_agent_record(payload.agentId)

    source_field, source_id = None, None
    if payload.commissionType == CommissionType.APPLICATION and payload.applicationId:
        source_field, source_id = "applicationId", payload.applicationId
    elif payload.commissionType == CommissionType.VAS and payload.serviceRequestId:
        source_field, source_id = "serviceRequestId", payload.serviceRequestId

    if source_field and await find_live_commission_for_source(source_field, source_id):
        raise ConflictError(
            "A commission already exists for this source", **{source_field: source_id}
        )

    base_amount, percentage = _manual_financials(payload.amount, payload.baseAmount, payload.percentage)
    platform = await get_settings()
    actor_id = _actor_id(actor)
    now = datetime.utcnow()

    try:
        record = CommissionRecord(
            commissionId=str(uuid.uuid4()),
            referenceId=generate_reference_id(payload.commissionType.value),
            agentId=payload.agentId,
            studentId=payload.studentId,
            commissionType=payload.commissionType,
            applicationId=payload.applicationId,
            serviceRequestId=payload.serviceRequestId,
            universityName=payload.universityName,
            universityCode=payload.universityCode,
            programName=payload.programName,
            serviceType=payload.serviceType.value if payload.serviceType else None,
            baseAmount=base_amount,
            percentage=percentage,
            amount=round2(payload.amount),
            currency=(payload.currency or platform.commission.commissionCurrency or "USD").upper(),
            baseAmountSource=SOURCE_MANUAL,
            status=CommissionStatus.APPROVED,
            approvedBy=actor_id,
            approvedAt=now,
            description=payload.description or "Manually created by admin",
            adminNotes=f"Created by admin {actor_id}",
            statusHistory=[
                StatusHistoryEntry(status=PENDING, changedBy=actor_id, changedAt=now,
                                   note="Manual commission created"),
                StatusHistoryEntry(status=APPROVED, changedBy=actor_id, changedAt=now,
                                   note="Auto-approved (admin created)"),
            ],
        )
    except SchemaError as exc:
        raise ValidationError("Invalid manual commission", errors=exc.errors(include_url=False))

    commission = await insert_commission(record, source_field)
    if commission["commissionId"] != record.commissionId:
        raise ConflictError(
            "A commission already exists for this source", **{source_field: source_id}
        )
    commission = await assign_commission_invoice(commission, now)

    logger.info("Manual commission %s created for agent %s by %s",
                record.commissionId, payload.agentId, actor_id)
    await refresh_agent_earnings(payload.agentId)

    await create_audit_log(
        actor_id,
        "commission_created",
        "commission",
        record.commissionId,
        previous_state=None,
        new_state={
            "status": APPROVED,
            "amount": commission["amount"],
            "invoiceNumber": commission["invoiceNumber"],
        },
        details={
            "agentId": payload.agentId,
            "amount": commission["amount"],
            "commissionType": payload.commissionType.value,
            "manual": True,
            **({source_field: source_id} if source_field else {}),
        },
        actor_role=actor_role_of(actor),
    )
    await notification_service.notify_user(
        payload.agentId,
        "COMMISSION_EARNED",
        "New Commission Added",
        f"A commission of {commission['currency']} {commission['amount']:.2f} has been added "
        f"to your account",
        metadata={"commissionId": record.commissionId},
    )
    notification_service.push_event(payload.agentId, notification_service.COMMISSION_CREATED, commission)
    return serialize_doc(commission)


# ─── Reads ────────────────────────────────────────────────────────────────────

def _summary(totals: Dict[str, Dict[str, float]]) -> Dict[str, Dict[str, float]]:
    return {
        status: {
            "count": int(totals.get(status, {}).get("count", 0)),
            "total": round2(totals.get(status, {}).get("total", 0) or 0),
        }
        for status in EARNING_STATUSES
    }


async def list_commissions(
    status: Optional[str] = None,
    agent_id: Optional[str] = None,
    commission_type: Optional[str] = None,
    page: int = 1,
    limit: int = 20,
) -> Dict:
    base_query: Dict[str, Any] = {"isDeleted": False}
    if agent_id:        base_query["agentId"] = agent_id
    if commission_type: base_query["commissionType"] = commission_type

    query = dict(base_query)
    if status:
        query["status"] = status

    p = paginate(page, limit)
    commissions = await db_ops.get_all(
        Collections.COMMISSIONS, query, skip=p["skip"], limit=p["limit"], sort=[("createdAt", -1)]
    )
    total = await db_ops.count(Collections.COMMISSIONS, query)
    totals = await db_ops.sum_by_status(Collections.COMMISSIONS, base_query)

    return {
        "commissions": serialize_docs(commissions),
        "summary": _summary(totals),
        "pagination": pagination_meta(total, p["page"], p["limit"]),
    }


async def get_commission(commission_id: str) -> Dict:
    return serialize_doc(await require_commission(commission_id))
