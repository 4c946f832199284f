"""Pytest configuration and fixtures."""

from datetime import datetime

import pytest
from mongomock_motor import AsyncMongoMockClient

from core.clock import FixedClock
from core.proof_storage import LocalProofStorage
from core.roles import Principal, Role
from ledger_service import LedgerService
from project_service import ProjectService

START = datetime(2025, 1, 1, 12, 0, 0)

ADMIN_ID = 1
AGENT_ID = 2
CLIENT_ID = 3
OTHER_CLIENT_ID = 4
OTHER_AGENT_ID = 5
INACTIVE_ID = 6

SERVICE_ID = 7
OTHER_SERVICE_ID = 8
TASK_ID = 11
ORDER_ID = 5
OTHER_ORDER_ID = 6
PROJECT_ID = 42
OTHER_PROJECT_ID = 43


async def populate(db, created_at=START):
    """Users plus the collaborator entities ledger entries can link to."""
    await db.users.insert_many([
        {"_id": ADMIN_ID, "name": "Admin", "role": "admin", "active_status": True},
        {"_id": AGENT_ID, "name": "Agent", "role": "agent", "active_status": True},
        {"_id": CLIENT_ID, "name": "Client", "role": "client", "active_status": True},
        {"_id": OTHER_CLIENT_ID, "name": "Other client", "role": "client", "active_status": True},
        {"_id": OTHER_AGENT_ID, "name": "Other agent", "role": "agent", "active_status": True},
        {"_id": INACTIVE_ID, "name": "Gone", "role": "client", "active_status": False},
    ])
    await db.services.insert_many([
        {"_id": SERVICE_ID, "client_id": CLIENT_ID, "agent_id": AGENT_ID, "status": "active"},
        {"_id": OTHER_SERVICE_ID, "client_id": OTHER_CLIENT_ID, "agent_id": OTHER_AGENT_ID, "status": "active"},
    ])
    await db.tasks.insert_one(
        {"_id": TASK_ID, "creator_id": CLIENT_ID, "assigned_to": AGENT_ID, "status": "open"}
    )
    await db.orders.insert_many([
        {"_id": ORDER_ID, "user_id": CLIENT_ID, "status": "pending"},
        {"_id": OTHER_ORDER_ID, "user_id": OTHER_CLIENT_ID, "status": "pending"},
    ])
    await db.projects.insert_many([
        {
            "_id": PROJECT_ID, "client_id": CLIENT_ID, "agent_id": AGENT_ID,
            "title": "Villa", "type": "real_estate", "currency": "XOF",
            "status": "created", "created_at": created_at, "updated_at": created_at
        },
        {
            "_id": OTHER_PROJECT_ID, "client_id": OTHER_CLIENT_ID, "agent_id": OTHER_AGENT_ID,
            "title": "Farm", "type": "agricultural", "currency": "XOF",
            "status": "created", "created_at": created_at, "updated_at": created_at
        },
    ])
    await db.sequences.insert_one({"_id": "projects", "current": OTHER_PROJECT_ID})


@pytest.fixture
def clock():
    return FixedClock(START)


@pytest.fixture
async def db():
    database = AsyncMongoMockClient()["ledger_test"]
    await populate(database)
    yield database


@pytest.fixture
def storage(tmp_path):
    return LocalProofStorage(tmp_path / "evidences")


@pytest.fixture
def ledger(db, clock, storage):
    return LedgerService(db, clock=clock, storage=storage)


@pytest.fixture
def projects(db, clock):
    return ProjectService(db, clock=clock)


@pytest.fixture
def admin():
    return Principal(ADMIN_ID, Role.ADMIN)


@pytest.fixture
def agent():
    return Principal(AGENT_ID, Role.AGENT)


@pytest.fixture
def client_user():
    return Principal(CLIENT_ID, Role.CLIENT)


@pytest.fixture
def other_client():
    return Principal(OTHER_CLIENT_ID, Role.CLIENT)


@pytest.fixture
def other_agent():
    return Principal(OTHER_AGENT_ID, Role.AGENT)
