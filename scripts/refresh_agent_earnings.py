"""
Recompute the cached totalEarnings / pendingEarnings on agent records from the
commission ledger.

Usage:
    python scripts/refresh_agent_earnings.py [agent_id]

Without an agent id every agent is refreshed. Calls the wallet service directly
(bypasses HTTP) so it can be run without a running server.
"""
import asyncio
import sys
import os

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from fly8.config.database import db_config
from fly8.services.agent_registry import list_agent_ids
from fly8.services.wallet_service import refresh_agent_earnings


async def main(agent_id: str = None):
    await db_config.connect_db()

    agent_ids = [agent_id] if agent_id else await list_agent_ids()
    refreshed = 0
    failed = 0
    for aid in agent_ids:
        cached = await refresh_agent_earnings(aid)
        if cached is None:
            print(f"⚠️  {aid}: refresh failed")
            failed += 1
            continue
        print(f"✅  {aid}: total={cached['totalEarnings']:.2f} pending={cached['pendingEarnings']:.2f}")
        refreshed += 1

    print(f"\nRefreshed : {refreshed}")
    print(f"Failed    : {failed}")
    await db_config.close_db()


if __name__ == "__main__":
    asyncio.run(main(sys.argv[1] if len(sys.argv) > 1 else None))
