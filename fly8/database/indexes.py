"""
Index definitions for the ledger collections.

Run at startup. ``create_index`` is idempotent, so re-running is safe.
The partial unique indexes on the source ids back the Commission Creator's
at-most-one-per-source guarantee.
"""
import logging
from pymongo import ASCENDING, DESCENDING

from fly8.config.database import db_config, Collections

logger = logging.getLogger(__name__)


async def ensure_indexes() -> None:
    commissions = db_config.get_collection(Collections.COMMISSIONS)
    await commissions.create_index([("commissionId", ASCENDING)], unique=True)
    await commissions.create_index([("referenceId", ASCENDING)], unique=True)
    await commissions.create_index([("invoiceNumber", ASCENDING)], unique=True, sparse=True)
    await commissions.create_index(
        [("applicationId", ASCENDING)],
        unique=True,
        name="uniq_live_application",
        partialFilterExpression={"applicationId": {"$exists": True}, "isDeleted": False},
    )
    await commissions.create_index(
        [("serviceRequestId", ASCENDING)],
        unique=True,
        name="uniq_live_service_request",
        partialFilterExpression={"serviceRequestId": {"$exists": True}, "isDeleted": False},
    )
    await commissions.create_index([("agentId", ASCENDING), ("status", ASCENDING)])
    await commissions.create_index([("agentId", ASCENDING), ("createdAt", DESCENDING)])
    await commissions.create_index([("commissionType", ASCENDING), ("status", ASCENDING)])
    await commissions.create_index([("status", ASCENDING), ("createdAt", DESCENDING)])

    payouts = db_config.get_collection(Collections.PAYOUTS)
    await payouts.create_index([("payoutId", ASCENDING)], unique=True)
    await payouts.create_index([("invoiceNumber", ASCENDING)], unique=True, sparse=True)
    await payouts.create_index([("agentId", ASCENDING), ("status", ASCENDING)])
    await payouts.create_index([("status", ASCENDING), ("requestedAt", DESCENDING)])

    audit = db_config.get_collection(Collections.AUDIT_LOGS)
    await audit.create_index([("logId", ASCENDING)], unique=True)
    await audit.create_index([("entityType", ASCENDING), ("entityId", ASCENDING)])
    await audit.create_index([("action", ASCENDING), ("timestamp", DESCENDING)])

    settings_coll = db_config.get_collection(Collections.SETTINGS)
    await settings_coll.create_index([("settingsId", ASCENDING)], unique=True)

    notifications = db_config.get_collection(Collections.NOTIFICATIONS)
    await notifications.create_index([("recipientId", ASCENDING), ("createdAt", DESCENDING)])

    logger.info("Ledger indexes ensured")
