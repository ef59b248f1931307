"""
Notification Emitter – dashboard notification records plus real-time pushes.

Delivery is best effort. Nothing in here may fail the ledger transition that
triggered it; failures are logged and swallowed.
"""
import copy
import logging
import uuid
from typing import Optional, Dict, Any, List

from fly8.config.database import Collections
from fly8.database.db_operations import db_ops
from fly8.models.notification import NotificationRecord
from fly8.realtime.socket_manager import socket_manager
from fly8.services import agent_registry
from fly8.utils.errors import NotificationError
from fly8.utils.helpers import serialize_doc

logger = logging.getLogger(__name__)

# Typed real-time events
NEW_NOTIFICATION = "new_notification"
COMMISSION_CREATED = "commission_created"
COMMISSION_APPROVED = "commission_approved"
COMMISSION_PAID = "commission_paid"
PAYOUT_REQUESTED = "payout_requested"
PAYOUT_COMPLETED = "payout_completed"
PAYOUT_FAILED = "payout_failed"


async def _write_notification(record: NotificationRecord) -> Dict:
    doc = record.model_dump(mode="python")
    doc["type"] = record.type.value
    try:
        return await db_ops.create(Collections.NOTIFICATIONS, doc)
    except Exception as exc:
        raise NotificationError(
            f"Could not store {record.type.value} notification for {record.recipientId}"
        ) from exc


def push_event(user_id: str, event: str, payload: Any) -> None:
    """Fire-and-forget push of a typed event to one user."""
    try:
        if isinstance(payload, dict):
            payload = serialize_doc(copy.deepcopy(payload))
        socket_manager.emit_to_user(user_id, event, payload)
    except Exception as exc:
        logger.warning("Push of %s to %s failed: %s", event, user_id, exc)


def push_role_event(role: str, event: str, payload: Any) -> None:
    """Fire-and-forget push to every socket in a role room (e.g. all super admins)."""
    try:
        if isinstance(payload, dict):
            payload = serialize_doc(copy.deepcopy(payload))
        socket_manager.emit_to_role(role, event, payload)
    except Exception as exc:
        logger.warning("Push of %s to role %s failed: %s", event, role, exc)


async def notify_user(
    recipient_id: str,
    notification_type: str,
    title: str,
    message: str,
    priority: str = "NORMAL",
    channel: str = "BOTH",
    metadata: Optional[Dict[str, Any]] = None,
) -> Optional[Dict]:
    try:
        record = NotificationRecord(
            notificationId=str(uuid.uuid4()),
            recipientId=recipient_id,
            type=notification_type,
            title=title,
            message=message,
            priority=priority,
            channel=channel,
            metadata=metadata or {},
        )
        stored = await _write_notification(record)
    except NotificationError as exc:
        logger.error("%s: %s", exc.message, exc.__cause__)
        return None
    except ValueError as exc:
        logger.error("Invalid notification for %s: %s", recipient_id, exc)
        return None

    push_event(recipient_id, NEW_NOTIFICATION, stored)
    return stored


async def notify_super_admins(
    notification_type: str,
    title: str,
    message: str,
    priority: str = "NORMAL",
    metadata: Optional[Dict[str, Any]] = None,
) -> List[Dict]:
    try:
        admin_ids = await agent_registry.get_active_super_admin_ids()
    except Exception as exc:
        logger.error("Could not load super admins for %s: %s", notification_type, exc)
        return []

    sent = []
    for admin_id in admin_ids:
        stored = await notify_user(
            admin_id,
            notification_type,
            title,
            message,
            priority=priority,
            channel="DASHBOARD",
            metadata=metadata,
        )
        if stored:
            sent.append(stored)
    return sent
