"""
Agent API routes – wallet, own commissions and payout requests.
The agent id always comes from the token, never from the request.
"""
from fastapi import APIRouter, Depends, Query, status
from typing import Optional

from fly8.models.payout import PayoutCreateRequest
from fly8.services import payout_service, wallet_service
from fly8.services.agent_registry import require_agent_record
from fly8.utils.auth import require_agent
from fly8.utils.helpers import serialize_doc

router = APIRouter(prefix="/agent", tags=["Agent Wallet"])


@router.get("/wallet")
async def get_wallet(current_user: dict = Depends(require_agent)):
    await require_agent_record(current_user["sub"])
    wallet = await wallet_service.get_agent_wallet(current_user["sub"])
    return {"wallet": serialize_doc(wallet.model_dump())}


@router.get("/commissions")
async def list_my_commissions(
    status_filter: Optional[str] = Query(None, alias="status"),
    current_user: dict = Depends(require_agent),
):
    return await wallet_service.list_agent_commissions(current_user["sub"], status=status_filter)


@router.get("/payouts")
async def list_my_payouts(
    status_filter: Optional[str] = Query(None, alias="status"),
    current_user: dict = Depends(require_agent),
):
    payouts = await payout_service.list_agent_payouts(current_user["sub"], status=status_filter)
    return {"payouts": payouts}


@router.post("/payouts", status_code=status.HTTP_201_CREATED)
async def request_payout(
    body: PayoutCreateRequest,
    current_user: dict = Depends(require_agent),
):
    payout = await payout_service.request_payout(
        current_user["sub"], body.commissionIds, method=body.method, note=body.note
    )
    return {"message": "Payout requested successfully", "payout": payout}
