"""
Replay the commission triggers over every completed application and service
request. Sources that already have a commission are left untouched, so the
script is safe to run repeatedly (e.g. after a trigger outage).

Usage:
    python scripts/replay_completion_triggers.py [--dry-run]
"""
import asyncio
import sys
import os

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from fly8.config.database import db_config, Collections
from fly8.models.triggers import APPLICATION_COMPLETED, SERVICE_REQUEST_COMPLETED
from fly8.services.commission_service import (
    find_live_commission_for_source,
    on_application_completed,
    on_service_request_completed,
)
from fly8.utils.errors import EngineError


async def _replay(collection_name: str, status: str, source_field: str, trigger, dry_run: bool):
    coll = db_config.get_collection(collection_name)
    seen = created = existing = skipped = failed = 0

    async for doc in coll.find({"status": status}):
        seen += 1
        source_id = doc.get(source_field)
        if not source_id:
            skipped += 1
            continue
        if await find_live_commission_for_source(source_field, source_id):
            existing += 1
            continue
        if dry_run:
            print(f"Would create commission for {source_field}={source_id}")
            created += 1
            continue
        try:
            commission = await trigger(doc, triggered_by="replay_script")
        except EngineError as exc:
            print(f"❌  {source_field}={source_id}: {exc.message}")
            failed += 1
            continue
        if commission is None:
            skipped += 1
        else:
            print(f"✅  {source_field}={source_id} -> {commission['commissionId']} ({commission['amount']:.2f})")
            created += 1

    print(f"\n{collection_name}: seen={seen} created={created} existing={existing} "
          f"skipped={skipped} failed={failed}")


async def main(dry_run: bool = False):
    await db_config.connect_db()
    await _replay(Collections.APPLICATIONS, APPLICATION_COMPLETED, "applicationId",
                  on_application_completed, dry_run)
    await _replay(Collections.SERVICE_REQUESTS, SERVICE_REQUEST_COMPLETED, "serviceRequestId",
                  on_service_request_completed, dry_run)
    await db_config.close_db()


if __name__ == "__main__":
    asyncio.run(main(dry_run="--dry-run" in sys.argv))
