import asyncio
import uuid
from datetime import datetime

import pytest

from fly8.config.database import Collections
from fly8.database.indexes import ensure_indexes
from fly8.models.commission import CommissionRecord
from fly8.services import approval_service, audit_service, commission_service, notification_service
from fly8.utils.errors import PreconditionError
from fly8.utils.helpers import generate_reference_id

APPLICATION = {
    "applicationId": "app-race",
    "agentId": "A",
    "studentId": "s1",
    "universityName": "U1",
    "universityCode": "U1C",
    "programName": "P1",
    "status": "Completed",
}


@pytest.fixture
async def indexed_db(mock_db):
    await ensure_indexes()
    return mock_db


async def _invoice_counter(mock_db):
    counter = await mock_db[Collections.COUNTERS].find_one(
        {"_id": f"commission_invoice_{datetime.utcnow().year}"}
    )
    return counter["seq"] if counter else 0


# ─── Creation ─────────────────────────────────────────────────────────────────

async def test_concurrent_triggers_create_one_commission(indexed_db, make_agent):
    await make_agent()

    results = await asyncio.gather(
        *[commission_service.on_application_completed(APPLICATION) for _ in range(3)]
    )

    assert len({r["commissionId"] for r in results}) == 1
    assert await indexed_db[Collections.COMMISSIONS].count_documents({"applicationId": "app-race"}) == 1


async def test_duplicate_source_insert_returns_live_commission(indexed_db, make_agent, make_commission):
    await make_agent()
    existing = await make_commission(status="pending", applicationId="app-race")
    record = CommissionRecord(
        commissionId=str(uuid.uuid4()),
        referenceId=generate_reference_id("APPLICATION"),
        agentId="A",
        studentId="s1",
        commissionType="APPLICATION",
        applicationId="app-race",
        baseAmount=1000,
        percentage=10,
        amount=100,
    )

    result = await commission_service.insert_commission(record, "applicationId")

    assert result["commissionId"] == existing["commissionId"]
    assert await indexed_db[Collections.COMMISSIONS].count_documents({"applicationId": "app-race"}) == 1


# ─── Approval ─────────────────────────────────────────────────────────────────

async def test_concurrent_approvals_have_one_winner(indexed_db, make_agent, make_commission, admin_actor):
    await make_agent()
    row = await make_commission(status="pending")
    second_admin = {"sub": "admin-2", "role": "super_admin"}

    results = await asyncio.gather(
        approval_service.approve(row["commissionId"], admin_actor),
        approval_service.approve(row["commissionId"], second_admin),
        return_exceptions=True,
    )

    wins = [r for r in results if isinstance(r, dict)]
    losses = [r for r in results if isinstance(r, PreconditionError)]
    assert len(wins) == 1 and len(losses) == 1

    stored = await indexed_db[Collections.COMMISSIONS].find_one({"commissionId": row["commissionId"]})
    assert [h["status"] for h in stored["statusHistory"]].count("approved") == 1
    assert stored["invoiceNumber"] == wins[0]["invoiceNumber"]
    assert await _invoice_counter(indexed_db) == 1


async def test_lost_approval_race_draws_no_invoice_number(mock_db, make_agent, make_commission,
                                                         admin_actor, monkeypatch):
    await make_agent()
    row = await make_commission(status="pending")
    stale = dict(row)
    await approval_service.approve(row["commissionId"], admin_actor)
    assert await _invoice_counter(mock_db) == 1

    async def stale_read(commission_id):
        return stale

    monkeypatch.setattr(approval_service, "require_commission", stale_read)
    with pytest.raises(PreconditionError):
        await approval_service.approve(row["commissionId"], admin_actor)

    assert await _invoice_counter(mock_db) == 1
    next_one = await make_commission(status="pending")
    monkeypatch.undo()
    approved = await approval_service.approve(next_one["commissionId"], admin_actor)
    assert approved["invoiceNumber"].endswith("-00002")


# ─── Side-effect failures ─────────────────────────────────────────────────────

@pytest.fixture
def broken_side_effects(monkeypatch):
    """Audit and notification stores reject every write; the ledger still works."""
    original = audit_service.db_ops.create

    async def create(collection_name, document):
        if collection_name in (Collections.AUDIT_LOGS, Collections.NOTIFICATIONS):
            raise RuntimeError(f"{collection_name} unavailable")
        return await original(collection_name, document)

    monkeypatch.setattr(audit_service.db_ops, "create", create)


async def test_failed_audit_and_notification_keep_approval(mock_db, make_agent, make_commission,
                                                          admin_user, admin_actor, broken_side_effects):
    await make_agent()
    row = await make_commission(status="pending", amount=80)

    approved = await approval_service.approve(row["commissionId"], admin_actor)

    assert approved["status"] == "approved"
    stored = await mock_db[Collections.COMMISSIONS].find_one({"commissionId": row["commissionId"]})
    assert stored["status"] == "approved"
    assert await mock_db[Collections.AUDIT_LOGS].count_documents({}) == 0
    assert await mock_db[Collections.NOTIFICATIONS].count_documents({}) == 0


async def test_failed_side_effects_keep_created_commission(mock_db, make_agent, admin_user, broken_side_effects):
    await make_agent()

    commission = await commission_service.on_application_completed(APPLICATION)

    assert commission["status"] == "pending"
    assert await mock_db[Collections.COMMISSIONS].count_documents({"applicationId": "app-race"}) == 1
    agent = await mock_db[Collections.USERS].find_one({"userId": "A"})
    assert agent["pendingEarnings"] == pytest.approx(commission["amount"])


async def test_notification_helpers_swallow_store_errors(admin_user, broken_side_effects):
    assert await notification_service.notify_user("A", "COMMISSION_EARNED", "t", "m") is None
    assert await notification_service.notify_super_admins("PAYOUT_REQUESTED", "t", "m") == []
    assert await audit_service.create_audit_log("admin-1", "commission_paid", "commission", "c1") is None
