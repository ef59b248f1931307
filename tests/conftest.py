import uuid
from datetime import datetime, timedelta

import httpx
import pytest
from mongomock_motor import AsyncMongoMockClient

from fly8.config.database import db_config, Collections
from fly8.models.commission import CommissionRecord, StatusHistoryEntry
from fly8.models.settings import PlatformSettings, SETTINGS_ID
from fly8.utils.auth import create_access_token, AGENT, SUPER_ADMIN
from fly8.utils.helpers import generate_reference_id

ADMIN_ID = "admin-1"
AGENT_ID = "A"


@pytest.fixture(autouse=True)
def mock_db():
    """Fresh in-memory database bound to the global db_config for every test."""
    client = AsyncMongoMockClient()
    db_config.use_client(client, "fly8_test")
    yield db_config.database
    db_config.client = None
    db_config.database = None


@pytest.fixture
def set_platform_settings(mock_db):
    async def _set(service_fees=None, **commission):
        doc = PlatformSettings().model_dump()
        doc["commission"].update(commission)
        doc["payment"]["serviceFees"].update(service_fees or {})
        await mock_db[Collections.SETTINGS].replace_one({"settingsId": SETTINGS_ID}, doc, upsert=True)
        return doc
    return _set


@pytest.fixture
def make_agent(mock_db):
    async def _make(user_id=AGENT_ID, **fields):
        doc = {
            "userId": user_id,
            "role": AGENT,
            "firstName": "Amina",
            "lastName": "Rahman",
            "email": f"{user_id.lower()}@agents.fly8.test",
            "isActive": True,
            "commissionPercentage": None,
            "bankDetails": {
                "bankName": "First Bank",
                "accountNumber": "0012345678",
                "routingNumber": "021000021",
                "accountHolderName": "Amina Rahman",
            },
            "totalEarnings": 0,
            "pendingEarnings": 0,
        }
        doc.update(fields)
        await mock_db[Collections.USERS].insert_one(doc)
        return doc
    return _make


@pytest.fixture
async def admin_user(mock_db):
    doc = {
        "userId": ADMIN_ID,
        "role": SUPER_ADMIN,
        "firstName": "Sam",
        "lastName": "Admin",
        "email": "admin@fly8.test",
        "isActive": True,
    }
    await mock_db[Collections.USERS].insert_one(doc)
    return doc


@pytest.fixture
def make_commission(mock_db):
    """Insert a ledger row directly, bypassing the creator."""
    counter = {"n": 0}

    async def _make(agent_id=AGENT_ID, amount=100.0, status="approved", commission_type="APPLICATION", **fields):
        counter["n"] += 1
        now = datetime.utcnow()
        history = [StatusHistoryEntry(status="pending", changedBy="system", changedAt=now - timedelta(minutes=5))]
        if status != "pending":
            history.append(StatusHistoryEntry(status=status, changedBy=ADMIN_ID, changedAt=now))
        record = CommissionRecord(
            commissionId=str(uuid.uuid4()),
            referenceId=generate_reference_id(commission_type),
            agentId=agent_id,
            studentId=f"student-{counter['n']}",
            commissionType=commission_type,
            baseAmount=amount,
            percentage=100,
            amount=amount,
            status=status,
            statusHistory=history,
            **fields,
        )
        if status in ("approved", "paid"):
            record.invoiceNumber = record.invoiceNumber or f"FLY8-INV-2020-{counter['n']:05d}"
            record.approvedBy = ADMIN_ID
            record.approvedAt = now
        if status == "paid":
            record.paidAt = record.paidAt or now
        doc = record.to_document()
        doc["createdAt"] = doc["updatedAt"] = now
        await mock_db[Collections.COMMISSIONS].insert_one(doc)
        return doc
    return _make


def auth_headers(user_id: str, role: str, expires_delta=None) -> dict:
    token = create_access_token({"sub": user_id, "role": role}, expires_delta=expires_delta)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def admin_headers():
    return auth_headers(ADMIN_ID, SUPER_ADMIN)


@pytest.fixture
def agent_headers():
    return auth_headers(AGENT_ID, AGENT)


@pytest.fixture
def admin_actor():
    return {"sub": ADMIN_ID, "role": SUPER_ADMIN}


@pytest.fixture
async def client(mock_db):
    from fly8.main import app

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as ac:
        yield ac
