"""
Wallet Projector – agent balances derived from the commission ledger.

``get_agent_wallet`` is the source of truth. ``refresh_agent_earnings`` writes the
cached totals onto the agent record and runs after every status-changing write;
its failures are logged, never raised.
"""
import logging
from typing import Dict, Optional

from fly8.config.database import Collections
from fly8.database.db_operations import db_ops
from fly8.models.agent import AgentWallet
from fly8.models.commission import CommissionStatus, EARNING_STATUSES
from fly8.services import agent_registry
from fly8.services.settings_service import get_settings
from fly8.utils.helpers import round2, serialize_docs

logger = logging.getLogger(__name__)

PENDING = CommissionStatus.PENDING.value
APPROVED = CommissionStatus.APPROVED.value
PAID = CommissionStatus.PAID.value


async def _totals(agent_id: str) -> Dict[str, Dict[str, float]]:
    return await db_ops.sum_by_status(
        Collections.COMMISSIONS,
        {"agentId": agent_id, "isDeleted": False, "status": {"$in": EARNING_STATUSES}},
    )


def _total(totals: Dict, status: str) -> float:
    return round2(totals.get(status, {}).get("total", 0) or 0)


def _count(totals: Dict, status: str) -> int:
    return int(totals.get(status, {}).get("count", 0) or 0)


async def get_agent_wallet(agent_id: str) -> AgentWallet:
    totals = await _totals(agent_id)
    last_paid = await db_ops.get_one(
        Collections.COMMISSIONS,
        {"agentId": agent_id, "status": PAID, "isDeleted": False},
        sort=[("paidAt", -1)],
    )
    platform = await get_settings()
    threshold = platform.commission.payoutThreshold

    available = _total(totals, APPROVED)
    return AgentWallet(
        availableBalance=available,
        pendingBalance=_total(totals, PENDING),
        lifetimeEarnings=_total(totals, PAID),
        totalCommissions=sum(_count(totals, s) for s in EARNING_STATUSES),
        payoutThreshold=threshold,
        isPayoutEligible=available >= threshold,
        lastPayoutDate=last_paid.get("paidAt") if last_paid else None,
        lastPayoutAmount=last_paid.get("amount") if last_paid else None,
        currency=platform.commission.commissionCurrency,
    )


async def refresh_agent_earnings(agent_id: Optional[str]) -> Optional[Dict[str, float]]:
    """totalEarnings = paid; pendingEarnings = pending + approved."""
    if not agent_id:
        return None
    try:
        totals = await _totals(agent_id)
        cached = {
            "totalEarnings": _total(totals, PAID),
            "pendingEarnings": round2(_total(totals, PENDING) + _total(totals, APPROVED)),
        }
        await agent_registry.set_cached_earnings(
            agent_id, cached["totalEarnings"], cached["pendingEarnings"]
        )
        return cached
    except Exception as exc:
        logger.warning("Earnings refresh failed for agent %s: %s", agent_id, exc)
        return None


async def list_agent_commissions(agent_id: str, status: Optional[str] = None, limit: int = 200) -> Dict:
    query = {"agentId": agent_id, "isDeleted": False}
    if status:
        query["status"] = status
    commissions = await db_ops.get_all(
        Collections.COMMISSIONS, query, limit=limit, sort=[("createdAt", -1)]
    )
    totals = await _totals(agent_id)
    return {
        "commissions": serialize_docs(commissions),
        "summary": {
            "totalPending": _total(totals, PENDING),
            "totalApproved": _total(totals, APPROVED),
            "totalPaid": _total(totals, PAID),
            "lifetimeEarnings": _total(totals, PAID),
            "totalCommissions": sum(_count(totals, s) for s in EARNING_STATUSES),
        },
    }
