import re
from datetime import datetime

import pytest

from fly8.config.database import Collections
from fly8.services import approval_service, commission_service
from fly8.services.wallet_service import get_agent_wallet
from fly8.utils.errors import PreconditionError

APPLICATION = {
    "applicationId": "app1",
    "agentId": "A",
    "studentId": "s1",
    "universityName": "U1",
    "universityCode": "U1C",
    "programName": "P1",
    "status": "Completed",
}

SERVICE_REQUEST = {
    "serviceRequestId": "sr1",
    "assignedAgent": "A",
    "studentId": "s1",
    "serviceType": "VISA_GUIDANCE",
    "status": "COMPLETED",
}


def _year():
    return datetime.utcnow().year


async def test_application_commission_happy_path(mock_db, make_agent, admin_user, admin_actor):
    await make_agent()

    commission = await commission_service.on_application_completed(APPLICATION, triggered_by="u-ops")

    assert commission["status"] == "pending"
    assert commission["commissionType"] == "APPLICATION"
    assert commission["baseAmount"] == 10000
    assert commission["baseAmountSource"] == "default"
    assert commission["percentage"] == 10
    assert commission["amount"] == 1000.00
    assert commission["currency"] == "USD"
    assert re.match(r"^COM-APP-[A-Z0-9]+-[A-Z0-9]{4}$", commission["referenceId"])
    assert "invoiceNumber" not in commission
    assert "default base amount" in commission["description"]
    assert [h["status"] for h in commission["statusHistory"]] == ["pending"]

    approved = await approval_service.approve(commission["commissionId"], admin_actor)
    assert approved["status"] == "approved"
    assert approved["invoiceNumber"] == f"FLY8-INV-{_year()}-00001"
    assert approved["approvedBy"] == "admin-1"

    paid = await approval_service.mark_paid_direct(commission["commissionId"], "EXT-1", admin_actor)
    assert paid["status"] == "paid"
    assert paid["paidAt"]
    assert paid["payoutReference"] == "EXT-1"
    assert [h["status"] for h in paid["statusHistory"]] == ["pending", "approved", "paid"]

    wallet = await get_agent_wallet("A")
    assert wallet.availableBalance == 0
    assert wallet.pendingBalance == 0
    assert wallet.lifetimeEarnings == 1000


async def test_creation_side_effects(mock_db, make_agent, admin_user):
    await make_agent()
    commission = await commission_service.create_application_commission(APPLICATION)

    agent_notes = await mock_db[Collections.NOTIFICATIONS].find({"recipientId": "A"}).to_list(None)
    assert [n["type"] for n in agent_notes] == ["COMMISSION_EARNED"]

    admin_notes = await mock_db[Collections.NOTIFICATIONS].find({"recipientId": "admin-1"}).to_list(None)
    assert [n["type"] for n in admin_notes] == ["COMMISSION_PENDING_REVIEW"]
    assert admin_notes[0]["channel"] == "DASHBOARD"

    audit = await mock_db[Collections.AUDIT_LOGS].find_one({"action": "commission_created"})
    assert audit["entityId"] == commission["commissionId"]
    assert audit["actorUserId"] == "system"
    assert audit["details"]["applicationId"] == "app1"
    assert audit["details"]["agentId"] == "A"
    assert audit["details"]["amount"] == 1000.0
    assert audit["details"]["baseAmountSource"] == "default"

    agent = await mock_db[Collections.USERS].find_one({"userId": "A"})
    assert agent["pendingEarnings"] == 1000.0
    assert agent["totalEarnings"] == 0


async def test_retrigger_returns_existing_commission(mock_db, make_agent, admin_actor):
    await make_agent()
    first = await commission_service.on_application_completed(APPLICATION)

    again = [await commission_service.on_application_completed(APPLICATION) for _ in range(2)]
    await approval_service.approve(first["commissionId"], admin_actor)
    after_approval = await commission_service.on_application_completed(APPLICATION)

    assert all(c["commissionId"] == first["commissionId"] for c in again + [after_approval])
    assert again[0] == first
    assert after_approval["status"] == "approved"
    assert len(after_approval["statusHistory"]) == 2
    assert await mock_db[Collections.COMMISSIONS].count_documents({"applicationId": "app1"}) == 1


async def test_vas_commission_auto_approved(mock_db, make_agent, set_platform_settings):
    await set_platform_settings(
        autoApproveCommissions=True,
        defaultAgentCommission=15,
        service_fees={"visaGuidance": 400},
    )
    await make_agent()

    commission = await commission_service.on_service_request_completed(SERVICE_REQUEST)

    assert commission["commissionType"] == "VAS"
    assert commission["baseAmount"] == 400
    assert commission["baseAmountSource"] == "service_fee"
    assert commission["percentage"] == 15
    assert commission["amount"] == 60.00
    assert commission["status"] == "approved"
    assert commission["approvedBy"] == "system"
    assert commission["invoiceNumber"] == f"FLY8-INV-{_year()}-00001"
    assert commission["serviceType"] == "VISA_GUIDANCE"
    assert re.match(r"^COM-VAS-", commission["referenceId"])
    assert commission["statusHistory"][-1]["status"] == "approved"
    assert "applicationId" not in commission

    wallet = await get_agent_wallet("A")
    assert wallet.availableBalance == 60.0


async def test_tier_escalation(mock_db, make_agent, make_commission, set_platform_settings):
    await set_platform_settings(
        defaultAgentCommission=10,
        commissionTiers=[{"minStudents": 5, "commissionRate": 12}],
    )
    await make_agent()
    for _ in range(5):
        await make_commission(status="paid", amount=100)

    commission = await commission_service.on_application_completed(APPLICATION)
    assert commission["percentage"] == 12
    assert commission["amount"] == 1200.0
    assert commission["tierApplied"]["minStudents"] == 5


async def test_lower_tier_keeps_default(mock_db, make_agent, make_commission, set_platform_settings):
    await set_platform_settings(
        defaultAgentCommission=10,
        commissionTiers=[{"minStudents": 4, "commissionRate": 9}],
    )
    await make_agent()
    for _ in range(5):
        await make_commission(status="paid", amount=100)

    commission = await commission_service.on_application_completed(APPLICATION)
    assert commission["percentage"] == 10
    assert "tierApplied" not in commission


async def test_tuition_is_used_when_present(mock_db, make_agent):
    await mock_db[Collections.UNIVERSITIES].insert_one(
        {"universitycode": "U1C", "tuitionData": [{"amount": "USD 20,000 per year"}]}
    )
    await make_agent(commissionPercentage=7.5)

    commission = await commission_service.on_application_completed(APPLICATION)
    assert commission["baseAmount"] == 20000
    assert commission["baseAmountSource"] == "tuition"
    assert commission["percentage"] == 7.5
    assert commission["amount"] == 1500.0
    assert "default base amount" not in commission["description"]


async def test_no_agent_is_a_noop(mock_db):
    payload = {**APPLICATION, "agentId": None}
    assert await commission_service.on_application_completed(payload) is None
    assert await mock_db[Collections.COMMISSIONS].count_documents({}) == 0


async def test_inactive_agent_is_a_noop(mock_db, make_agent):
    await make_agent(isActive=False)
    assert await commission_service.on_service_request_completed(SERVICE_REQUEST) is None
    assert await mock_db[Collections.COMMISSIONS].count_documents({}) == 0


async def test_unknown_agent_is_a_noop(mock_db):
    assert await commission_service.on_application_completed({**APPLICATION, "agentId": "ghost"}) is None


async def test_non_terminal_source_is_rejected(mock_db, make_agent):
    await make_agent()
    with pytest.raises(PreconditionError):
        await commission_service.on_application_completed({**APPLICATION, "status": "In Review"})
    with pytest.raises(PreconditionError):
        await commission_service.on_service_request_completed({**SERVICE_REQUEST, "status": "IN_PROGRESS"})
    assert await mock_db[Collections.COMMISSIONS].count_documents({}) == 0


async def test_soft_deleted_commission_does_not_block_recreation(mock_db, make_agent, make_commission):
    await make_agent()
    await make_commission(status="pending", applicationId="app1", isDeleted=True)

    commission = await commission_service.on_application_completed(APPLICATION)
    assert commission["applicationId"] == "app1"
    assert commission["isDeleted"] is False
    assert await mock_db[Collections.COMMISSIONS].count_documents({"applicationId": "app1"}) == 2
