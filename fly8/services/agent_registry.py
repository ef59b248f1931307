"""
Agent Registry – agent lookups, rate overrides and the cached earnings fields.

``totalEarnings`` / ``pendingEarnings`` on the user document are a cache for list
views; decisions are always made from the ledger projection.
"""
import logging
from typing import Optional, Dict, List

from fly8.config.database import Collections
from fly8.database.db_operations import db_ops
from fly8.services.audit_service import create_audit_log
from fly8.utils.auth import AGENT, SUPER_ADMIN
from fly8.utils.errors import NotFoundError, ValidationError
from fly8.utils.helpers import serialize_doc

logger = logging.getLogger(__name__)


async def get_agent(agent_id: str) -> Optional[Dict]:
    return await db_ops.get_one(Collections.USERS, {"userId": agent_id, "role": AGENT})


async def require_agent_record(agent_id: str) -> Dict:
    agent = await get_agent(agent_id)
    if not agent:
        raise NotFoundError("Agent not found", agentId=agent_id)
    return agent


def agent_display_name(agent: Optional[Dict]) -> str:
    if not agent:
        return "Unknown agent"
    name = f"{agent.get('firstName', '')} {agent.get('lastName', '')}".strip()
    return name or agent.get("email") or agent.get("userId", "Unknown agent")


async def get_agents_by_ids(agent_ids: List[str]) -> Dict[str, Dict]:
    if not agent_ids:
        return {}
    docs = await db_ops.get_all(
        Collections.USERS,
        {"userId": {"$in": list(set(agent_ids))}},
        limit=len(agent_ids),
    )
    return {
        doc["userId"]: {
            "userId": doc["userId"],
            "firstName": doc.get("firstName"),
            "lastName": doc.get("lastName"),
            "email": doc.get("email"),
        }
        for doc in docs
    }


async def get_active_super_admin_ids() -> List[str]:
    admins = await db_ops.get_all(
        Collections.USERS, {"role": SUPER_ADMIN, "isActive": True}, limit=500
    )
    return [admin["userId"] for admin in admins if admin.get("userId")]


async def list_agent_ids() -> List[str]:
    agents = await db_ops.get_all(Collections.USERS, {"role": AGENT}, limit=10000)
    return [agent["userId"] for agent in agents if agent.get("userId")]


async def set_cached_earnings(agent_id: str, total_earnings: float, pending_earnings: float) -> None:
    await db_ops.update_where(
        Collections.USERS,
        {"userId": agent_id},
        {"$set": {"totalEarnings": total_earnings, "pendingEarnings": pending_earnings}},
    )


async def update_agent_commission_rate(agent_id: str, percentage: float, actor: Dict) -> Dict:
    if percentage is None or percentage < 0 or percentage > 100:
        raise ValidationError("Commission percentage must be a number between 0 and 100")

    agent = await require_agent_record(agent_id)
    previous = agent.get("commissionPercentage")
    updated = await db_ops.update_where(
        Collections.USERS,
        {"userId": agent_id, "role": AGENT},
        {"$set": {"commissionPercentage": percentage}},
    )
    if not updated:
        raise NotFoundError("Agent not found", agentId=agent_id)

    logger.info("Commission rate for agent %s changed %s -> %s", agent_id, previous, percentage)
    await create_audit_log(
        actor.get("sub"),
        "commission_rate_updated",
        "user",
        agent_id,
        previous_state={"commissionPercentage": previous},
        new_state={"commissionPercentage": percentage},
        actor_role=actor.get("role", "system"),
    )
    updated.pop("password", None)
    return serialize_doc(updated)
