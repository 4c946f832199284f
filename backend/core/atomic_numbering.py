"""
ATOMIC ID SEQUENCES

Integer ids for ledger entries, projects and phases.

Uses findOneAndUpdate with $inc on the sequences collection, so concurrent
creates never receive the same id.
"""

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ReturnDocument
from datetime import datetime
import logging

logger = logging.getLogger(__name__)


class AtomicSequence:
    """Atomic per-collection id generator."""

    COLLECTION = "sequences"

    def __init__(self, db: AsyncIOMotorDatabase):
        self.db = db

    async def next_id(self, name: str, session=None) -> int:
        """
        Get next id for a named sequence.
        Returns the NEW value after increment.
        """
        result = await self.db[self.COLLECTION].find_one_and_update(
            {"_id": name},
            {
                "$inc": {"current": 1},
                "$set": {"updated_at": datetime.utcnow()}
            },
            upsert=True,
            return_document=ReturnDocument.AFTER,
            session=session
        )
        logger.debug(f"[SEQUENCE] {name} -> {result['current']}")
        return result["current"]

    async def ensure_at_least(self, name: str, value: int, session=None) -> None:
        """Move a sequence forward so it never hands out ids at or below value."""
        await self.db[self.COLLECTION].update_one(
            {"_id": name},
            {"$max": {"current": value}},
            upsert=True,
            session=session
        )
