"""
Invoice Sequencer

Commissions: FLY8-INV-<YYYY>-<NNNNN>, strictly increasing per year, drawn from a
counter document advanced atomically with $inc. The counter is seeded from the
highest number already on the ledger the first time a year is used.

Payouts: FLY8-PAY-<YYYY>-<last 6 digits of the ms timestamp>; uniqueness is
enforced by the sparse unique index, callers retry on collision.
"""
import logging
import re
import time
from datetime import datetime
from typing import Dict, Optional

from pymongo import ReturnDocument

from fly8.config.database import db_config, Collections
from fly8.config.settings import settings
from fly8.database.db_operations import datastore_call, db_ops

logger = logging.getLogger(__name__)

COMMISSION_INVOICE_RE = re.compile(r"^[A-Z0-9]+-INV-(\d{4})-(\d{5})$")


def _counter_id(year: int) -> str:
    return f"commission_invoice_{year}"


def format_commission_invoice(year: int, seq: int) -> str:
    return f"{settings.INVOICE_PREFIX}-INV-{year}-{seq:05d}"


async def _highest_ledger_sequence(year: int) -> int:
    coll = db_config.get_collection(Collections.COMMISSIONS)
    prefix = f"{settings.INVOICE_PREFIX}-INV-{year}-"
    with datastore_call(Collections.COMMISSIONS):
        last = await coll.find_one(
            {"invoiceNumber": {"$regex": f"^{re.escape(prefix)}"}},
            sort=[("invoiceNumber", -1)],
        )
    if not last:
        return 0
    match = COMMISSION_INVOICE_RE.match(last["invoiceNumber"])
    return int(match.group(2)) if match else 0


async def next_commission_invoice_number(now: Optional[datetime] = None) -> str:
    year = (now or datetime.utcnow()).year
    counters = db_config.get_collection(Collections.COUNTERS)

    with datastore_call(Collections.COUNTERS):
        existing = await counters.find_one({"_id": _counter_id(year)})
        if existing is None:
            # $max makes concurrent seeders converge on the same starting point
            seed = await _highest_ledger_sequence(year)
            await counters.update_one(
                {"_id": _counter_id(year)},
                {"$max": {"seq": seed}},
                upsert=True,
            )

        counter = await counters.find_one_and_update(
            {"_id": _counter_id(year)},
            {"$inc": {"seq": 1}},
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )

    invoice = format_commission_invoice(year, counter["seq"])
    logger.debug("Allocated commission invoice %s", invoice)
    return invoice


async def assign_commission_invoice(commission: Dict, now: Optional[datetime] = None) -> Dict:
    """
    Give ``commission`` its invoice number unless it already has one.

    Only the caller that won the status change calls this, so a number is
    never drawn for a transition that did not happen.
    """
    if commission.get("invoiceNumber"):
        return commission

    invoice = await next_commission_invoice_number(now)
    updated = await db_ops.update_where(
        Collections.COMMISSIONS,
        {"commissionId": commission["commissionId"], "invoiceNumber": {"$exists": False}},
        {"$set": {"invoiceNumber": invoice}},
    )
    if updated is None:
        logger.warning("Commission %s was invoiced concurrently; %s unused",
                       commission["commissionId"], invoice)
        return await db_ops.get_one(Collections.COMMISSIONS, {"commissionId": commission["commissionId"]})
    return updated


def payout_invoice_number(now: Optional[datetime] = None) -> str:
    year = (now or datetime.utcnow()).year
    suffix = str(int(time.time() * 1000))[-6:]
    return f"{settings.INVOICE_PREFIX}-PAY-{year}-{suffix}"
