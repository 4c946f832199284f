"""
Seed script for the ledger development database.

Creates:
- 3 users: admin (id 1), agent (id 2), client (id 3)
- 1 service and 1 task assigned to the agent, owned by the client
- 1 order placed by the client
- 1 project (id 42) owned by the client, assigned to the agent
- Indexes for the ledger collections

Prints one access token per user for local testing.
"""

import asyncio
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from datetime import datetime
import os
from pathlib import Path
from dotenv import load_dotenv

from auth import create_access_token
from core.atomic_numbering import AtomicSequence
from core.ledger_types import DEFAULT_CURRENCY, ProjectStatus

# Load environment
ROOT_DIR = Path(__file__).parent
load_dotenv(ROOT_DIR / '.env')

USERS = [
    {"_id": 1, "name": "Admin", "email": "admin@example.com", "role": "admin"},
    {"_id": 2, "name": "Agent", "email": "agent@example.com", "role": "agent"},
    {"_id": 3, "name": "Client", "email": "client@example.com", "role": "client"},
]


async def _insert_missing(collection, doc) -> bool:
    if await collection.find_one({"_id": doc["_id"]}):
        print(f"   ⚠️  {collection.name} {doc['_id']} already exists. Skipping...")
        return False
    await collection.insert_one(doc)
    print(f"   ✅ {collection.name} {doc['_id']} created")
    return True


async def seed_database(db: AsyncIOMotorDatabase) -> dict:
    """Seed the database with development data; safe to run twice"""
    now = datetime.utcnow()

    # ============================================
    # 1. USERS
    # ============================================
    print("👤 Creating users...")
    for user in USERS:
        await _insert_missing(db.users, {**user, "active_status": True, "created_at": now})

    # ============================================
    # 2. COLLABORATOR ENTITIES
    # ============================================
    print("🔗 Creating services, tasks and orders...")
    await _insert_missing(db.services, {
        "_id": 7, "title": "Land survey", "client_id": 3, "agent_id": 2,
        "status": "active", "created_at": now
    })
    await _insert_missing(db.tasks, {
        "_id": 11, "title": "Site visit", "creator_id": 3, "assigned_to": 2,
        "status": "open", "created_at": now
    })
    await _insert_missing(db.orders, {
        "_id": 5, "user_id": 3, "status": "pending", "created_at": now
    })

    # ============================================
    # 3. PROJECT
    # ============================================
    print("🏗️  Creating project...")
    await _insert_missing(db.projects, {
        "_id": 42, "client_id": 3, "agent_id": 2, "title": "Villa Almadies",
        "type": "real_estate", "description": None, "budget": None,
        "currency": DEFAULT_CURRENCY, "status": ProjectStatus.CREATED.value,
        "created_at": now, "updated_at": now
    })

    # ============================================
    # 4. SEQUENCES & INDEXES
    # ============================================
    sequence = AtomicSequence(db)
    await sequence.ensure_at_least("projects", 42)

    print("📇 Creating indexes...")
    await db.transactions.create_index([("owner_user_id", 1), ("created_at", -1)])
    for field in ("service_id", "task_id", "project_id", "order_id"):
        await db.transactions.create_index([(field, 1)])
    await db.projects.create_index([("client_id", 1)])
    await db.projects.create_index([("agent_id", 1)])
    await db.project_phases.create_index([("project_id", 1)])
    print("   ✅ Indexes created")

    return {user["role"]: create_access_token({"user_id": user["_id"], "role": user["role"]}) for user in USERS}


async def main():
    client = AsyncIOMotorClient(os.environ.get('MONGO_URL', 'mongodb://localhost:27017'))
    db = client[os.environ.get('DB_NAME', 'ledger')]

    print("🌱 Starting database seeding...")
    try:
        tokens = await seed_database(db)
        print("\n" + "="*60)
        print("✨ DATABASE SEEDING COMPLETE ✨")
        print("="*60)
        for role, token in tokens.items():
            print(f"🔑 {role}: {token}")
        print("\n📖 API Documentation: http://localhost:8001/docs")
    except Exception as e:
        print(f"\n❌ Error during seeding: {str(e)}")
        raise
    finally:
        client.close()


if __name__ == "__main__":
    asyncio.run(main())
