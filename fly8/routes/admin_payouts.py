"""
Admin Payout API routes – process or reject agent payout requests.
"""
from fastapi import APIRouter, Depends, Query
from typing import Optional

from fly8.models.payout import ProcessPayoutRequest, RejectPayoutRequest
from fly8.services import payout_service
from fly8.utils.auth import require_super_admin

router = APIRouter(prefix="/admin/payouts", tags=["Admin Payouts"])


@router.get("/")
async def list_payouts(
    status_filter: Optional[str] = Query(None, alias="status"),
    agent_id:      Optional[str] = Query(None, alias="agentId"),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1),
    current_user: dict = Depends(require_super_admin),
):
    return await payout_service.list_payouts(
        status=status_filter, agent_id=agent_id, page=page, limit=limit
    )


@router.get("/{payout_id}")
async def get_payout(
    payout_id: str,
    current_user: dict = Depends(require_super_admin),
):
    return {"payout": await payout_service.get_payout(payout_id)}


@router.post("/{payout_id}/process")
async def process_payout(
    payout_id: str,
    body: ProcessPayoutRequest = ProcessPayoutRequest(),
    current_user: dict = Depends(require_super_admin),
):
    """Complete the payout and mark every linked approved commission as paid."""
    payout = await payout_service.process_payout(
        payout_id, body.externalReference, body.note, current_user
    )
    return {"message": "Payout processed successfully", "payout": payout}


@router.post("/{payout_id}/reject")
async def reject_payout(
    payout_id: str,
    body: RejectPayoutRequest = RejectPayoutRequest(),
    current_user: dict = Depends(require_super_admin),
):
    payout = await payout_service.reject_payout(payout_id, body.reason, current_user)
    return {"message": "Payout request rejected", "payout": payout}
