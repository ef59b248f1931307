"""
Admin configuration routes – commission settings, per-agent rate overrides and
the audit trail.
"""
from fastapi import APIRouter, Depends, Query
from typing import Optional
from datetime import datetime

from fly8.models.agent import AgentCommissionRateUpdate
from fly8.models.settings import CommissionSettingsUpdate
from fly8.services import agent_registry, settings_service
from fly8.services.audit_service import query_audit_logs
from fly8.utils.auth import require_super_admin

router = APIRouter(prefix="/admin", tags=["Admin Settings"])


# ─── Commission settings ──────────────────────────────────────────────────────

@router.get("/settings/commission")
async def get_commission_settings(current_user: dict = Depends(require_super_admin)):
    platform = await settings_service.get_settings()
    return {
        "commission": platform.commission.model_dump(),
        "serviceFees": platform.payment.serviceFees.model_dump(),
    }


@router.put("/settings/commission")
async def update_commission_settings(
    body: CommissionSettingsUpdate,
    current_user: dict = Depends(require_super_admin),
):
    platform = await settings_service.update_commission_settings(body, current_user)
    return {
        "message": "Commission settings updated",
        "commission": platform.commission.model_dump(),
        "serviceFees": platform.payment.serviceFees.model_dump(),
    }


# ─── Agent rate override ──────────────────────────────────────────────────────

@router.patch("/agents/{agent_id}/commission")
async def update_agent_commission_rate(
    agent_id: str,
    body: AgentCommissionRateUpdate,
    current_user: dict = Depends(require_super_admin),
):
    agent = await agent_registry.update_agent_commission_rate(
        agent_id, body.commissionPercentage, current_user
    )
    return {"message": "Agent commission rate updated", "agent": agent}


# ─── Audit trail ──────────────────────────────────────────────────────────────

@router.get("/audit-logs")
async def list_audit_logs(
    entity_type:   Optional[str] = Query(None, alias="entityType"),
    entity_id:     Optional[str] = Query(None, alias="entityId"),
    action:        Optional[str] = None,
    actor_user_id: Optional[str] = Query(None, alias="actorUserId"),
    start_date:    Optional[datetime] = Query(None, alias="startDate"),
    end_date:      Optional[datetime] = Query(None, alias="endDate"),
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1),
    current_user: dict = Depends(require_super_admin),
):
    return await query_audit_logs(
        entity_type=entity_type,
        entity_id=entity_id,
        action=action,
        actor_user_id=actor_user_id,
        start_date=start_date,
        end_date=end_date,
        page=page,
        limit=limit,
    )
