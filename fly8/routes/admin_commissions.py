"""
Admin Commission API routes – review, approval and direct payment of agent
commissions. Super admin only.
"""
from fastapi import APIRouter, Depends, Query, status
from typing import Optional

from fly8.models.commission import (
    BulkApproveRequest,
    DirectPayoutRequest,
    ManualCommissionCreate,
    RejectCommissionRequest,
)
from fly8.services import approval_service
from fly8.utils.auth import require_super_admin

router = APIRouter(prefix="/admin/commissions", tags=["Admin Commissions"])


# ─── List ─────────────────────────────────────────────────────────────────────

@router.get("/")
async def list_commissions(
    status_filter:   Optional[str] = Query(None, alias="status"),
    agent_id:        Optional[str] = Query(None, alias="agentId"),
    commission_type: Optional[str] = Query(None, alias="commissionType"),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1),
    current_user: dict = Depends(require_super_admin),
):
    """Page of commissions plus pending / approved / paid counts and totals."""
    return await approval_service.list_commissions(
        status=status_filter,
        agent_id=agent_id,
        commission_type=commission_type,
        page=page,
        limit=limit,
    )


# ─── Manual create ────────────────────────────────────────────────────────────

@router.post("/", status_code=status.HTTP_201_CREATED)
async def create_manual_commission(
    body: ManualCommissionCreate,
    current_user: dict = Depends(require_super_admin),
):
    commission = await approval_service.create_manual(body, current_user)
    return {"message": "Commission created successfully", "commission": commission}


# ─── Bulk approve ─────────────────────────────────────────────────────────────

@router.post("/bulk-approve")
async def bulk_approve_commissions(
    body: BulkApproveRequest,
    current_user: dict = Depends(require_super_admin),
):
    results = await approval_service.bulk_approve(body.ids, current_user)
    return {"message": f"{results['approved']} commissions approved", "results": results}


# ─── Detail ───────────────────────────────────────────────────────────────────

@router.get("/{commission_id}")
async def get_commission(
    commission_id: str,
    current_user: dict = Depends(require_super_admin),
):
    return {"commission": await approval_service.get_commission(commission_id)}


# ─── Transitions ──────────────────────────────────────────────────────────────

@router.put("/{commission_id}/approve")
async def approve_commission(
    commission_id: str,
    current_user: dict = Depends(require_super_admin),
):
    commission = await approval_service.approve(commission_id, current_user)
    return {"message": "Commission approved", "commission": commission}


@router.put("/{commission_id}/reject")
async def reject_commission(
    commission_id: str,
    body: RejectCommissionRequest = RejectCommissionRequest(),
    current_user: dict = Depends(require_super_admin),
):
    commission = await approval_service.reject(commission_id, body.reason, current_user)
    return {"message": "Commission rejected", "commission": commission}


@router.post("/{commission_id}/payout")
async def pay_commission_directly(
    commission_id: str,
    body: DirectPayoutRequest = DirectPayoutRequest(),
    current_user: dict = Depends(require_super_admin),
):
    """Mark an approved commission as paid outside of an agent payout request."""
    commission = await approval_service.mark_paid_direct(
        commission_id, body.externalReference, current_user
    )
    return {"message": "Commission payout processed", "commission": commission}
