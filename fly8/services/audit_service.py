"""
Audit Sink – append-only trail of ledger transitions.

Writes are best effort: a failed audit write is logged and never fails the
transition that produced it.
"""
import logging
import uuid
from datetime import datetime
from typing import Optional, Dict, Any

from fly8.config.database import Collections
from fly8.database.db_operations import db_ops
from fly8.models.audit_log import AuditLogEntry
from fly8.utils.errors import AuditError
from fly8.utils.helpers import serialize_docs, paginate, pagination_meta

logger = logging.getLogger(__name__)


def actor_role_of(current_user: Optional[Dict]) -> str:
    if not current_user:
        return "system"
    return current_user.get("role") or "system"


async def _insert_audit(doc: Dict) -> Dict:
    try:
        return await db_ops.create(Collections.AUDIT_LOGS, doc)
    except Exception as exc:
        raise AuditError(
            f"Audit write failed for {doc['action']} on {doc['entityType']}:{doc['entityId']}"
        ) from exc


async def create_audit_log(
    actor_user_id: Optional[str],
    action: str,
    entity_type: str,
    entity_id: Optional[str],
    previous_state: Optional[Dict[str, Any]] = None,
    new_state: Optional[Dict[str, Any]] = None,
    details: Optional[Dict[str, Any]] = None,
    actor_role: str = "system",
) -> Optional[Dict]:
    try:
        entry = AuditLogEntry(
            logId=str(uuid.uuid4()),
            actorUserId=actor_user_id or "system",
            actorRole=actor_role,
            action=action,
            entityType=entity_type,
            entityId=entity_id,
            previousState=previous_state,
            newState=new_state,
            details=details or {},
        )
        doc = entry.model_dump(mode="python")
        doc["action"] = entry.action.value
        doc["entityType"] = entry.entityType.value
        return await _insert_audit(doc)
    except AuditError as exc:
        logger.error("%s: %s", exc.message, exc.__cause__)
    except ValueError as exc:
        logger.error("Invalid audit entry %s on %s:%s: %s", action, entity_type, entity_id, exc)
    return None


async def query_audit_logs(
    entity_type: Optional[str] = None,
    entity_id: Optional[str] = None,
    action: Optional[str] = None,
    actor_user_id: Optional[str] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    page: int = 1,
    limit: int = 50,
) -> Dict:
    query: Dict[str, Any] = {}
    if entity_type:   query["entityType"] = entity_type
    if entity_id:     query["entityId"] = entity_id
    if action:        query["action"] = action
    if actor_user_id: query["actorUserId"] = actor_user_id
    if start_date or end_date:
        query["timestamp"] = {}
        if start_date: query["timestamp"]["$gte"] = start_date
        if end_date:   query["timestamp"]["$lte"] = end_date

    p = paginate(page, limit)
    logs = await db_ops.get_all(
        Collections.AUDIT_LOGS, query, skip=p["skip"], limit=p["limit"], sort=[("timestamp", -1)]
    )
    total = await db_ops.count(Collections.AUDIT_LOGS, query)
    return {
        "logs": serialize_docs(logs),
        "pagination": pagination_meta(total, p["page"], p["limit"]),
    }
