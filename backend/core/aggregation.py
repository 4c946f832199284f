"""
LEDGER AGGREGATION ENGINE

Financial summaries over a visibility-scoped set of transactions.

    totals per type   revenue / expense / commission / adjustment
    balance           revenue - (expense + commission + adjustment)
    by_role           (admins only) the same totals partitioned by the
                      owning user's role: client / agent / admin / other

All sums are exact Decimals; nothing is rounded until the values are
serialized for the response. aggregate() is a pure function of the entries
it is given, so running it twice over the same set gives the same result.

Usage:
    engine = AggregationEngine(db)
    summary = await engine.summarize(scope, filters, include_role_breakdown=True)
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Mapping, Optional
import logging

from motor.motor_asyncio import AsyncIOMotorDatabase

from core.clock import to_naive_utc
from core.entitlements import VisibilityScope
from core.financial_precision import to_decimal, to_float
from core.ledger_types import TransactionStatus, TransactionType
from core.link_registry import LINK_FIELDS, LinkKind
from core.roles import Role

logger = logging.getLogger(__name__)

OTHER_ROLE = "other"
ROLE_PARTITIONS = [role.value for role in Role] + [OTHER_ROLE]


# =============================================================================
# TOTALS
# =============================================================================

@dataclass
class TypeTotals:
    """Running per-type totals for one partition."""
    amounts: Dict[str, Decimal] = field(
        default_factory=lambda: {t.value: Decimal('0') for t in TransactionType}
    )
    count: int = 0

    def add(self, tx_type: str, amount) -> None:
        self.amounts[tx_type] += to_decimal(amount)
        self.count += 1

    @property
    def revenue(self) -> Decimal:
        return self.amounts[TransactionType.REVENUE.value]

    @property
    def balance(self) -> Decimal:
        outflows = (
            self.amounts[TransactionType.EXPENSE.value]
            + self.amounts[TransactionType.COMMISSION.value]
            + self.amounts[TransactionType.ADJUSTMENT.value]
        )
        return self.revenue - outflows

    def to_dict(self) -> Dict[str, Any]:
        payload = {tx_type: to_float(amount) for tx_type, amount in self.amounts.items()}
        payload["balance"] = to_float(self.balance)
        payload["count"] = self.count
        return payload


@dataclass
class LedgerSummary:
    totals: TypeTotals
    by_role: Optional[Dict[str, TypeTotals]] = None

    def to_dict(self) -> Dict[str, Any]:
        payload = {"totals": self.totals.to_dict()}
        if self.by_role is not None:
            payload["by_role"] = {role: totals.to_dict() for role, totals in self.by_role.items()}
        return payload


# =============================================================================
# FILTERS
# =============================================================================

@dataclass(frozen=True)
class SummaryFilters:
    """Caller-supplied narrowing of the scoped set."""
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    type: Optional[TransactionType] = None
    status: Optional[TransactionStatus] = None
    linked: Optional[bool] = None
    link_kind: Optional[LinkKind] = None

    def to_query(self) -> Dict[str, Any]:
        query: Dict[str, Any] = {}

        if self.start_date or self.end_date:
            created = {}
            if self.start_date:
                created["$gte"] = to_naive_utc(self.start_date)
            if self.end_date:
                created["$lte"] = to_naive_utc(self.end_date)
            query["created_at"] = created

        if self.type is not None:
            query["type"] = self.type.value
        if self.status is not None:
            query["status"] = self.status.value

        if self.link_kind is not None:
            query[self.link_kind.field] = {"$ne": None}
        elif self.linked is True:
            query["$or"] = [{name: {"$ne": None}} for name in LINK_FIELDS]
        elif self.linked is False:
            for name in LINK_FIELDS:
                query[name] = None

        return query


def combine_queries(*queries: Mapping[str, Any]) -> Dict[str, Any]:
    """AND together MongoDB filters without clobbering shared keys like $or."""
    parts = [dict(q) for q in queries if q]
    if not parts:
        return {}
    if len(parts) == 1:
        return parts[0]
    return {"$and": parts}


# =============================================================================
# ENGINE
# =============================================================================

class AggregationEngine:

    def __init__(self, db: AsyncIOMotorDatabase):
        self.db = db

    @staticmethod
    def aggregate(
        entries: Iterable[Mapping[str, Any]],
        owner_roles: Optional[Mapping[Any, str]] = None,
        include_role_breakdown: bool = False
    ) -> LedgerSummary:
        """
        Pure aggregation over already-scoped entries.

        owner_roles maps owner_user_id to the owner's role; owners missing
        from it (or with an unknown role) fall into "other".
        """
        totals = TypeTotals()
        by_role = {role: TypeTotals() for role in ROLE_PARTITIONS} if include_role_breakdown else None
        owner_roles = owner_roles or {}

        for entry in entries:
            tx_type = entry.get("type")
            if tx_type not in totals.amounts:
                logger.warning(
                    f"[AGGREGATION] Skipping transaction {entry.get('_id')} with unknown type {tx_type!r}"
                )
                continue

            totals.add(tx_type, entry["amount"])

            if by_role is not None:
                role = owner_roles.get(entry.get("owner_user_id"))
                partition = role if role in by_role else OTHER_ROLE
                by_role[partition].add(tx_type, entry["amount"])

        return LedgerSummary(totals=totals, by_role=by_role)

    async def summarize(
        self,
        scope: VisibilityScope,
        filters: Optional[SummaryFilters] = None,
        include_role_breakdown: bool = False,
        session=None
    ) -> LedgerSummary:
        """Fetch the scoped set once and aggregate it."""
        filters = filters or SummaryFilters()
        query = combine_queries(scope.to_query(), filters.to_query())

        if include_role_breakdown:
            # Owner roles come back with the entries in the same round trip
            pipeline: List[Dict[str, Any]] = [
                {"$match": query},
                {"$lookup": {
                    "from": "users",
                    "localField": "owner_user_id",
                    "foreignField": "_id",
                    "as": "owner"
                }}
            ]
            entries = await self.db.transactions.aggregate(pipeline, session=session).to_list(length=None)
            owner_roles = {}
            for entry in entries:
                owners = entry.get("owner") or []
                if owners:
                    owner_roles[entry.get("owner_user_id")] = str(owners[0].get("role", "")).lower()
        else:
            entries = await self.db.transactions.find(query, session=session).to_list(length=None)
            owner_roles = None

        logger.debug(
            f"[AGGREGATION] Summarizing {len(entries)} transactions for "
            f"{scope.principal.role.value}:{scope.principal.user_id}"
        )

        return self.aggregate(entries, owner_roles, include_role_breakdown)
