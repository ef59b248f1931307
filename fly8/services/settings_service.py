"""
Settings Store – the platform settings singleton, commission sections only.
"""
import logging
from typing import Dict

from pymongo.errors import DuplicateKeyError

from fly8.config.database import Collections
from fly8.database.db_operations import db_ops
from fly8.models.settings import PlatformSettings, CommissionSettingsUpdate, SETTINGS_ID
from fly8.services.audit_service import create_audit_log

logger = logging.getLogger(__name__)


async def get_settings() -> PlatformSettings:
    """Return the singleton, creating it with defaults on first read."""
    doc = await db_ops.get_one(Collections.SETTINGS, {"settingsId": SETTINGS_ID})
    if doc is None:
        defaults = PlatformSettings()
        try:
            await db_ops.create(Collections.SETTINGS, defaults.model_dump())
            logger.info("Created default platform settings")
        except DuplicateKeyError:
            pass
        return defaults
    doc.pop("_id", None)
    return PlatformSettings.model_validate(doc)


async def update_commission_settings(patch: CommissionSettingsUpdate, actor: Dict) -> PlatformSettings:
    current = await get_settings()
    changes = patch.model_dump(exclude_unset=True, exclude_none=True)

    set_ops = {}
    service_fees = changes.pop("serviceFees", None)
    for key, value in changes.items():
        set_ops[f"commission.{key}"] = value
    if service_fees is not None:
        set_ops["payment.serviceFees"] = service_fees

    if set_ops:
        await db_ops.update_where(Collections.SETTINGS, {"settingsId": SETTINGS_ID}, {"$set": set_ops})

    updated = await get_settings()
    await create_audit_log(
        actor.get("sub"),
        "settings_updated",
        "settings",
        SETTINGS_ID,
        previous_state={"commission": current.commission.model_dump(), "serviceFees": current.payment.serviceFees.model_dump()},
        new_state={"commission": updated.commission.model_dump(), "serviceFees": updated.payment.serviceFees.model_dump()},
        actor_role=actor.get("role", "system"),
    )
    return updated
