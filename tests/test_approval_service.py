import re

import pytest

from fly8.config.database import Collections
from fly8.models.commission import ManualCommissionCreate, is_legal_transition
from fly8.services import approval_service
from fly8.services.wallet_service import get_agent_wallet
from fly8.utils.errors import ConflictError, NotFoundError, PreconditionError, ValidationError

INVOICE_RE = re.compile(r"^FLY8-INV-\d{4}-\d{5}$")


async def test_approve_assigns_invoice_and_notifies(mock_db, make_agent, make_commission, admin_actor):
    await make_agent()
    row = await make_commission(status="pending", amount=250)

    approved = await approval_service.approve(row["commissionId"], admin_actor)

    assert approved["status"] == "approved"
    assert INVOICE_RE.match(approved["invoiceNumber"])
    assert approved["statusHistory"][-1]["changedBy"] == "admin-1"

    note = await mock_db[Collections.NOTIFICATIONS].find_one({"recipientId": "A"})
    assert note["type"] == "COMMISSION_CREDITED"
    audit = await mock_db[Collections.AUDIT_LOGS].find_one({"action": "commission_approved"})
    assert audit["previousState"]["status"] == "pending"
    assert audit["newState"]["invoiceNumber"] == approved["invoiceNumber"]
    assert audit["actorRole"] == "super_admin"

    wallet = await get_agent_wallet("A")
    assert wallet.availableBalance == 250
    assert wallet.pendingBalance == 0


async def test_approve_twice_is_a_precondition_failure(make_agent, make_commission, admin_actor):
    await make_agent()
    row = await make_commission(status="pending")
    await approval_service.approve(row["commissionId"], admin_actor)

    with pytest.raises(PreconditionError) as exc_info:
        await approval_service.approve(row["commissionId"], admin_actor)
    assert exc_info.value.context["currentStatus"] == "approved"


async def test_unknown_commission_is_not_found(admin_actor):
    with pytest.raises(NotFoundError):
        await approval_service.approve("missing", admin_actor)
    with pytest.raises(NotFoundError):
        await approval_service.get_commission("missing")


async def test_reject_requires_reason(make_agent, make_commission, admin_actor):
    await make_agent()
    row = await make_commission(status="pending")
    for reason in (None, "", "   "):
        with pytest.raises(ValidationError):
            await approval_service.reject(row["commissionId"], reason, admin_actor)


async def test_reject_pending_commission(mock_db, make_agent, make_commission, admin_actor):
    await make_agent()
    row = await make_commission(status="pending", amount=300)

    rejected = await approval_service.reject(row["commissionId"], "Duplicate enrolment", admin_actor)

    assert rejected["status"] == "rejected"
    assert rejected["rejectionReason"] == "Duplicate enrolment"
    assert rejected["rejectedBy"] == "admin-1"
    assert rejected["statusHistory"][-1]["note"] == "Rejected: Duplicate enrolment"

    agent = await mock_db[Collections.USERS].find_one({"userId": "A"})
    assert agent["pendingEarnings"] == 0

    with pytest.raises(PreconditionError):
        await approval_service.approve(row["commissionId"], admin_actor)


async def test_reject_approved_commission_is_refused(make_agent, make_commission, admin_actor):
    await make_agent()
    row = await make_commission(status="approved")
    with pytest.raises(PreconditionError):
        await approval_service.reject(row["commissionId"], "too late", admin_actor)


async def test_mark_paid_direct_requires_approved(make_agent, make_commission, admin_actor):
    await make_agent()
    row = await make_commission(status="pending")
    with pytest.raises(PreconditionError):
        await approval_service.mark_paid_direct(row["commissionId"], "EXT-9", admin_actor)


async def test_manual_commission_starts_approved(mock_db, make_agent, admin_actor):
    await make_agent()
    payload = ManualCommissionCreate(
        agentId="A", studentId="s9", amount=75.5, commissionType="VAS", serviceType="LOAN_ASSISTANCE"
    )

    commission = await approval_service.create_manual(payload, admin_actor)

    assert commission["status"] == "approved"
    assert [h["status"] for h in commission["statusHistory"]] == ["pending", "approved"]
    assert INVOICE_RE.match(commission["invoiceNumber"])
    assert commission["baseAmountSource"] == "manual"
    assert commission["baseAmount"] == 75.5
    assert commission["percentage"] == 100
    assert commission["approvedBy"] == "admin-1"

    audit = await mock_db[Collections.AUDIT_LOGS].find_one({"action": "commission_created"})
    assert audit["details"]["manual"] is True


async def test_manual_commission_derives_base_from_percentage(make_agent, admin_actor):
    await make_agent()
    payload = ManualCommissionCreate(
        agentId="A", studentId="s9", amount=150, commissionType="APPLICATION", percentage=10
    )
    commission = await approval_service.create_manual(payload, admin_actor)
    assert commission["baseAmount"] == 1500
    assert commission["percentage"] == 10


async def test_manual_commission_rejects_inconsistent_amount(make_agent, admin_actor):
    await make_agent()
    payload = ManualCommissionCreate(
        agentId="A", studentId="s9", amount=50, commissionType="APPLICATION",
        baseAmount=1000, percentage=10,
    )
    with pytest.raises(ValidationError):
        await approval_service.create_manual(payload, admin_actor)


async def test_manual_commission_unknown_agent(admin_actor):
    payload = ManualCommissionCreate(agentId="ghost", studentId="s1", amount=10, commissionType="VAS")
    with pytest.raises(NotFoundError):
        await approval_service.create_manual(payload, admin_actor)


async def test_manual_commission_refuses_existing_source(make_agent, make_commission, admin_actor):
    await make_agent()
    await make_commission(status="pending", applicationId="app1")
    payload = ManualCommissionCreate(
        agentId="A", studentId="s1", amount=10, commissionType="APPLICATION", applicationId="app1"
    )
    with pytest.raises(ConflictError):
        await approval_service.create_manual(payload, admin_actor)


async def test_bulk_approve_skips_non_pending(mock_db, make_agent, make_commission, admin_actor):
    await make_agent()
    p1 = await make_commission(status="pending", amount=10)
    p2 = await make_commission(status="pending", amount=20)
    done = await make_commission(status="approved", amount=30)

    results = await approval_service.bulk_approve(
        [p1["commissionId"], p2["commissionId"], done["commissionId"], "missing"], admin_actor
    )

    assert results == {"approved": 2, "skipped": 2, "errors": []}
    rows = await mock_db[Collections.COMMISSIONS].find(
        {"commissionId": {"$in": [p1["commissionId"], p2["commissionId"]]}}
    ).to_list(None)
    invoices = sorted(r["invoiceNumber"] for r in rows)
    assert len(set(invoices)) == 2
    assert all(INVOICE_RE.match(i) for i in invoices)

    bulk_audit = await mock_db[Collections.AUDIT_LOGS].find_one({"action": "commissions_bulk_approved"})
    assert bulk_audit["details"]["count"] == 2

    agent = await mock_db[Collections.USERS].find_one({"userId": "A"})
    assert agent["pendingEarnings"] == 60


async def test_list_commissions_summary(make_agent, make_commission):
    await make_agent()
    await make_commission(status="pending", amount=100)
    await make_commission(status="approved", amount=200)
    await make_commission(status="approved", amount=300)
    await make_commission(status="paid", amount=50)
    await make_commission(status="approved", amount=999, isDeleted=True)

    page = await approval_service.list_commissions(status="approved", page=1, limit=1)

    assert len(page["commissions"]) == 1
    assert page["pagination"] == {"total": 2, "page": 1, "limit": 1, "totalPages": 2}
    assert page["summary"]["pending"] == {"count": 1, "total": 100}
    assert page["summary"]["approved"] == {"count": 2, "total": 500}
    assert page["summary"]["paid"] == {"count": 1, "total": 50}


def test_transition_table_has_no_reopening():
    assert is_legal_transition("pending", "approved")
    assert is_legal_transition("approved", "paid")
    assert not is_legal_transition("rejected", "pending")
    assert not is_legal_transition("paid", "approved")
    assert not is_legal_transition("pending", "paid")
