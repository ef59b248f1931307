"""
Payout Workflow – agent payout requests over approved commissions and their
processing or rejection by a super admin.

A commission is claimed by at most one live payout through ``activePayoutId``.
Claims are taken one commission at a time with a conditional update and are
released again when the request fails or the payout is rejected.
"""
import asyncio
import logging
import uuid
from datetime import datetime
from typing import Optional, Dict, List, Any

from pymongo.errors import DuplicateKeyError

from fly8.config.database import Collections
from fly8.database.db_operations import db_ops
from fly8.models.commission import CommissionStatus, StatusHistoryEntry
from fly8.models.payout import (
    BankDetailsSnapshot,
    PayoutRecord,
    PayoutStatus,
    PROCESSABLE_PAYOUT_STATUSES,
)
from fly8.services import agent_registry, notification_service
from fly8.services.audit_service import create_audit_log, actor_role_of
from fly8.services.invoice_sequencer import assign_commission_invoice, payout_invoice_number
from fly8.services.settings_service import get_settings
from fly8.services.wallet_service import refresh_agent_earnings
from fly8.utils.auth import AGENT, SUPER_ADMIN
from fly8.utils.errors import (
    ConflictError,
    NotFoundError,
    PreconditionError,
    ValidationError,
)
from fly8.utils.helpers import paginate, pagination_meta, round2, serialize_doc, serialize_docs

logger = logging.getLogger(__name__)

APPROVED = CommissionStatus.APPROVED.value
PAID = CommissionStatus.PAID.value
INVOICE_ATTEMPTS = 3


def _actor_id(actor: Optional[Dict]) -> str:
    return (actor or {}).get("sub") or "system"


def _history_entry(status: str, actor_id: str, note: str, at: datetime) -> Dict:
    return StatusHistoryEntry(status=status, changedBy=actor_id, changedAt=at, note=note).model_dump()


async def require_payout(payout_id: str) -> Dict:
    payout = await db_ops.get_one(Collections.PAYOUTS, {"payoutId": payout_id})
    if not payout:
        raise NotFoundError("Payout not found", payoutId=payout_id)
    return payout


# ─── Claims ───────────────────────────────────────────────────────────────────

async def _claim(commission_id: str, agent_id: str, payout_id: str, method: str, now: datetime) -> bool:
    claimed = await db_ops.update_where(
        Collections.COMMISSIONS,
        {
            "commissionId": commission_id,
            "agentId": agent_id,
            "status": APPROVED,
            "isDeleted": False,
            "activePayoutId": {"$exists": False},
        },
        {"$set": {"activePayoutId": payout_id, "payoutRequestedAt": now, "payoutMethod": method}},
    )
    return claimed is not None


async def release_claims(payout_id: str, commission_ids: List[str]) -> int:
    """Free commissions claimed by ``payout_id`` so they can join a new payout."""
    if not commission_ids:
        return 0
    released = await db_ops.update_many(
        Collections.COMMISSIONS,
        {"commissionId": {"$in": commission_ids}, "activePayoutId": payout_id},
        {
            "$unset": {"activePayoutId": "", "payoutRequestedAt": "", "payoutMethod": ""},
            "$set": {"updatedAt": datetime.utcnow()},
        },
    )
    logger.info("Released %d commission claim(s) held by payout %s", released, payout_id)
    return released


# ─── Request ──────────────────────────────────────────────────────────────────

async def _load_requested_commissions(agent_id: str, ids: List[str]) -> List[Dict]:
    commissions = await db_ops.get_all(
        Collections.COMMISSIONS,
        {"commissionId": {"$in": ids}, "isDeleted": False},
        limit=len(ids),
    )
    found = {c["commissionId"]: c for c in commissions}

    missing = [cid for cid in ids if cid not in found]
    if missing:
        raise NotFoundError("Commission not found", commissionIds=missing)

    foreign = [cid for cid in ids if found[cid]["agentId"] != agent_id]
    if foreign:
        raise ValidationError("Commissions do not belong to this agent", commissionIds=foreign)

    not_approved = [cid for cid in ids if found[cid]["status"] != APPROVED]
    if not_approved:
        raise ValidationError("Only approved commissions can be paid out", commissionIds=not_approved)

    claimed = [cid for cid in ids if found[cid].get("activePayoutId")]
    if claimed:
        raise ConflictError("Commissions are already part of a payout request", commissionIds=claimed)

    return [found[cid] for cid in ids]


async def request_payout(
    agent_id: str,
    commission_ids: List[str],
    method: str = "bank_transfer",
    note: Optional[str] = None,
) -> Dict:
    ids = list(dict.fromkeys(commission_ids or []))
    if not ids:
        raise ValidationError("commissionIds must be a non-empty list")

    agent = await agent_registry.require_agent_record(agent_id)
    commissions = await _load_requested_commissions(agent_id, ids)

    platform = await get_settings()
    threshold = platform.commission.payoutThreshold
    amount = round2(sum(c["amount"] for c in commissions))
    if amount < threshold:
        raise ValidationError(
            f"Payout amount {amount:.2f} is below the minimum payout threshold of {threshold:.2f}",
            amount=amount,
            payoutThreshold=threshold,
        )

    payout_id = str(uuid.uuid4())
    now = datetime.utcnow()
    record = PayoutRecord(
        payoutId=payout_id,
        agentId=agent_id,
        amount=amount,
        currency=commissions[0].get("currency") or platform.commission.commissionCurrency,
        commissionIds=ids,
        status=PayoutStatus.REQUESTED,
        payoutMethod=method,
        bankDetailsSnapshot=BankDetailsSnapshot.model_validate(agent.get("bankDetails") or {}),
        requestedAt=now,
        agentNote=note,
        statusHistory=[StatusHistoryEntry(
            status=PayoutStatus.REQUESTED.value,
            changedBy=agent_id,
            changedAt=now,
            note=note or "Payout requested by agent",
        )],
    )

    # Any failure between the first claim and the insert must free every claim
    # taken under this payout id, including one whose write outcome is unknown.
    try:
        for commission_id in ids:
            if not await _claim(commission_id, agent_id, payout_id, method, now):
                raise ConflictError(
                    "Commission is no longer available for payout", commissionId=commission_id
                )
        payout = await db_ops.create(Collections.PAYOUTS, record.to_document())
    except BaseException:
        await release_claims(payout_id, ids)
        raise

    logger.info("Payout %s requested by agent %s for %s %.2f (%d commissions)",
                payout_id, agent_id, record.currency, amount, len(ids))

    await create_audit_log(
        agent_id,
        "payout_requested",
        "payout",
        payout_id,
        previous_state=None,
        new_state={"status": PayoutStatus.REQUESTED.value, "commissionIds": ids, "amount": amount},
        details={"agentId": agent_id, "amount": amount, "payoutMethod": method},
        actor_role=AGENT,
    )
    await notification_service.notify_super_admins(
        "PAYOUT_REQUESTED",
        "Payout Requested",
        f"{agent_registry.agent_display_name(agent)} requested a payout of "
        f"{record.currency} {amount:.2f} for {len(ids)} commission(s).",
        priority="HIGH",
        metadata={"payoutId": payout_id, "agentId": agent_id},
    )
    notification_service.push_role_event(SUPER_ADMIN, notification_service.PAYOUT_REQUESTED, payout)
    return serialize_doc(payout)


# ─── Process ──────────────────────────────────────────────────────────────────
#
# requested -> processing -> completed. The payout only completes after every
# linked commission is paid, so a failure part way leaves it in processing and
# a repeated call resumes where the previous one stopped.

async def _start_processing(payout: Dict, actor_id: str, now: datetime) -> Dict:
    if payout["status"] == PayoutStatus.PROCESSING.value:
        logger.info("Resuming processing of payout %s", payout["payoutId"])
        return payout

    updated = await db_ops.update_where(
        Collections.PAYOUTS,
        {"payoutId": payout["payoutId"], "status": PayoutStatus.REQUESTED.value},
        {
            "$set": {"status": PayoutStatus.PROCESSING.value, "processedBy": actor_id},
            "$push": {"statusHistory": _history_entry(
                PayoutStatus.PROCESSING.value, actor_id, "Processing started", now
            )},
        },
    )
    if updated:
        return updated

    current = await require_payout(payout["payoutId"])
    if current["status"] == PayoutStatus.PROCESSING.value:
        return current
    raise PreconditionError(
        "Payout is not in a processable state",
        payoutId=payout["payoutId"],
        currentStatus=current.get("status"),
    )


async def _pay_commission(commission_id: str, payout_id: str, actor_id: str, now: datetime) -> Optional[Dict]:
    """Pay one commission claimed by ``payout_id``; returns None when it is not payable."""
    updated = await db_ops.update_where(
        Collections.COMMISSIONS,
        {
            "commissionId": commission_id,
            "status": APPROVED,
            "isDeleted": False,
            "activePayoutId": payout_id,
        },
        {
            "$set": {
                "status": PAID,
                "paidAt": now,
                "processedBy": actor_id,
                "payoutReference": payout_id,
            },
            "$push": {"statusHistory": _history_entry(PAID, actor_id, f"Paid via payout {payout_id}", now)},
        },
    )
    if updated:
        return await assign_commission_invoice(updated, now)

    # Paid by an earlier attempt at this same payout
    return await db_ops.get_one(
        Collections.COMMISSIONS,
        {"commissionId": commission_id, "status": PAID, "payoutReference": payout_id},
    )


async def _complete_payout(payout_id: str, external_reference: Optional[str], note: Optional[str],
                           actor_id: str, now: datetime) -> Dict:
    for attempt in range(INVOICE_ATTEMPTS):
        try:
            updated = await db_ops.update_where(
                Collections.PAYOUTS,
                {"payoutId": payout_id, "status": PayoutStatus.PROCESSING.value},
                {
                    "$set": {
                        "status": PayoutStatus.COMPLETED.value,
                        "processedAt": now,
                        "processedBy": actor_id,
                        "externalReference": external_reference or "",
                        "adminNote": note or "",
                        "invoiceNumber": payout_invoice_number(),
                    },
                    "$push": {"statusHistory": _history_entry(
                        PayoutStatus.COMPLETED.value, actor_id, note or "Payout processed", now
                    )},
                },
            )
        except DuplicateKeyError:
            logger.warning("Payout invoice collision on attempt %d, retrying", attempt + 1)
            await asyncio.sleep(0.002)
            continue
        if not updated:
            current = await require_payout(payout_id)
            raise PreconditionError(
                "Payout is not in a processable state",
                payoutId=payout_id,
                currentStatus=current.get("status"),
            )
        return updated
    raise ConflictError("Could not allocate a unique payout invoice number", payoutId=payout_id)


async def process_payout(
    payout_id: str,
    external_reference: Optional[str],
    note: Optional[str],
    actor: Dict,
) -> Dict:
    payout = await require_payout(payout_id)
    if payout["status"] not in PROCESSABLE_PAYOUT_STATUSES:
        raise PreconditionError(
            "Payout is not in a processable state",
            payoutId=payout_id,
            currentStatus=payout["status"],
        )

    actor_id = _actor_id(actor)
    now = datetime.utcnow()
    previous_status = payout["status"]
    payout = await _start_processing(payout, actor_id, now)

    paid, skipped = [], []
    for commission_id in payout.get("commissionIds", []):
        if await _pay_commission(commission_id, payout_id, actor_id, now):
            paid.append(commission_id)
        else:
            skipped.append(commission_id)
    if skipped:
        logger.warning("Payout %s: %d linked commission(s) were no longer payable: %s",
                       payout_id, len(skipped), skipped)
        await release_claims(payout_id, skipped)

    updated = await _complete_payout(payout_id, external_reference, note, actor_id, now)
    logger.info("Payout %s completed by %s (%s), %d commission(s) paid",
                payout_id, actor_id, updated["invoiceNumber"], len(paid))

    await refresh_agent_earnings(updated["agentId"])

    await create_audit_log(
        actor_id,
        "payout_processed",
        "payout",
        payout_id,
        previous_state={"status": previous_status, "commissionIds": payout.get("commissionIds", [])},
        new_state={
            "status": PayoutStatus.COMPLETED.value,
            "invoiceNumber": updated["invoiceNumber"],
            "commissionIds": paid,
        },
        details={
            "amount": updated["amount"],
            "agentId": updated["agentId"],
            "externalReference": external_reference or "",
            "skippedCommissionIds": skipped,
        },
        actor_role=actor_role_of(actor),
    )
    await notification_service.notify_user(
        updated["agentId"],
        "PAYOUT_COMPLETED",
        "Payout Processed",
        f"Your payout of {updated['currency']} {updated['amount']:.2f} has been processed",
        priority="HIGH",
        metadata={"payoutId": payout_id},
    )
    notification_service.push_event(updated["agentId"], notification_service.PAYOUT_COMPLETED, updated)
    return serialize_doc(updated)


# ─── Reject ───────────────────────────────────────────────────────────────────

async def reject_payout(payout_id: str, reason: Optional[str], actor: Dict) -> Dict:
    reason = (reason or "").strip()
    if not reason:
        raise ValidationError("Rejection reason is required")

    payout = await require_payout(payout_id)
    if payout["status"] != PayoutStatus.REQUESTED.value:
        raise PreconditionError(
            "Only requested payouts can be rejected",
            payoutId=payout_id,
            currentStatus=payout["status"],
        )

    actor_id = _actor_id(actor)
    now = datetime.utcnow()
    updated = await db_ops.update_where(
        Collections.PAYOUTS,
        {"payoutId": payout_id, "status": PayoutStatus.REQUESTED.value},
        {
            "$set": {"status": PayoutStatus.FAILED.value, "failureReason": reason},
            "$push": {"statusHistory": _history_entry(
                PayoutStatus.FAILED.value, actor_id, f"Rejected: {reason}", now
            )},
        },
    )
    if not updated:
        current = await require_payout(payout_id)
        raise PreconditionError(
            "Only requested payouts can be rejected",
            payoutId=payout_id,
            currentStatus=current.get("status"),
        )

    await release_claims(payout_id, updated.get("commissionIds", []))
    logger.info("Payout %s rejected by %s: %s", payout_id, actor_id, reason)

    await create_audit_log(
        actor_id,
        "payout_rejected",
        "payout",
        payout_id,
        previous_state={"status": PayoutStatus.REQUESTED.value},
        new_state={"status": PayoutStatus.FAILED.value},
        details={"amount": updated["amount"], "reason": reason, "agentId": updated["agentId"]},
        actor_role=actor_role_of(actor),
    )
    await notification_service.notify_user(
        updated["agentId"],
        "PAYOUT_FAILED",
        "Payout Request Rejected",
        f"Your payout request of {updated['currency']} {updated['amount']:.2f} was rejected. Reason: {reason}",
        priority="HIGH",
        metadata={"payoutId": payout_id},
    )
    notification_service.push_event(updated["agentId"], notification_service.PAYOUT_FAILED, updated)
    return serialize_doc(updated)


# ─── Reads ────────────────────────────────────────────────────────────────────

async def list_payouts(
    status: Optional[str] = None,
    agent_id: Optional[str] = None,
    page: int = 1,
    limit: int = 20,
) -> Dict:
    """Admin listing, each payout enriched with the agent's name and email."""
    query: Dict[str, Any] = {}
    if status:   query["status"] = status
    if agent_id: query["agentId"] = agent_id

    p = paginate(page, limit)
    payouts = await db_ops.get_all(
        Collections.PAYOUTS, query, skip=p["skip"], limit=p["limit"], sort=[("createdAt", -1)]
    )
    total = await db_ops.count(Collections.PAYOUTS, query)
    agents = await agent_registry.get_agents_by_ids([doc["agentId"] for doc in payouts])
    for payout in payouts:
        payout["agent"] = agents.get(payout["agentId"])

    return {
        "payouts": serialize_docs(payouts),
        "pagination": pagination_meta(total, p["page"], p["limit"]),
    }


async def list_agent_payouts(agent_id: str, status: Optional[str] = None, limit: int = 100) -> List[Dict]:
    query: Dict[str, Any] = {"agentId": agent_id}
    if status:
        query["status"] = status
    payouts = await db_ops.get_all(Collections.PAYOUTS, query, limit=limit, sort=[("requestedAt", -1)])
    return serialize_docs(payouts)


async def get_payout(payout_id: str) -> Dict:
    return serialize_doc(await require_payout(payout_id))
