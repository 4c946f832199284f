"""
Ledger summaries: exact totals, balance, per-role breakdown
"""
from datetime import datetime
from decimal import Decimal

import pytest
from bson import Decimal128

from core.aggregation import AggregationEngine, SummaryFilters, combine_queries
from core.entitlements import VisibilityScope
from core.ledger_types import TransactionStatus, TransactionType
from core.link_registry import LinkKind
from core.roles import Principal, Role

ADMIN = Principal(1, Role.ADMIN)
CLIENT = Principal(3, Role.CLIENT)

ROLES = {1: "admin", 2: "agent", 3: "client", 4: "client"}


def tx(_id, owner, tx_type, amount, **extra):
    doc = {
        "_id": _id, "owner_user_id": owner, "type": tx_type, "amount": Decimal128(amount),
        "status": "completed", "service_id": None, "task_id": None, "project_id": None,
        "order_id": None, "created_at": datetime(2025, 1, 1, 12, 0, 0),
    }
    doc.update(extra)
    return doc


ENTRIES = [
    tx(1, 3, "revenue", "0.10"),
    tx(2, 3, "revenue", "0.20"),
    tx(3, 2, "commission", "0.05"),
    tx(4, 1, "expense", "100.00"),
    tx(5, 4, "revenue", "1000.00"),
    tx(6, 4, "adjustment", "10.00"),
    tx(7, 99, "revenue", "7.00"),
]


class TestAggregate:
    """Pure aggregation over a given set"""

    def test_totals_and_balance_are_exact(self):
        summary = AggregationEngine.aggregate(ENTRIES)
        totals = summary.totals

        assert totals.amounts["revenue"] == Decimal("1007.30")
        assert totals.amounts["expense"] == Decimal("100.00")
        assert totals.amounts["commission"] == Decimal("0.05")
        assert totals.amounts["adjustment"] == Decimal("10.00")
        assert totals.balance == Decimal("897.25")
        assert totals.count == 7
        assert summary.by_role is None

    def test_adjustments_reduce_balance(self):
        summary = AggregationEngine.aggregate([tx(1, 3, "revenue", "50.00"), tx(2, 3, "adjustment", "20.00")])
        assert summary.totals.balance == Decimal("30.00")

    def test_idempotent(self):
        first = AggregationEngine.aggregate(ENTRIES, ROLES, include_role_breakdown=True).to_dict()
        second = AggregationEngine.aggregate(ENTRIES, ROLES, include_role_breakdown=True).to_dict()
        assert first == second

    def test_role_breakdown_partitions_revenue(self):
        summary = AggregationEngine.aggregate(ENTRIES, ROLES, include_role_breakdown=True)
        by_role = summary.by_role

        assert set(by_role) == {"client", "agent", "admin", "other"}
        assert by_role["client"].revenue == Decimal("1000.30")
        assert by_role["agent"].amounts["commission"] == Decimal("0.05")
        assert by_role["admin"].amounts["expense"] == Decimal("100.00")
        assert by_role["other"].revenue == Decimal("7.00")
        assert sum((t.revenue for t in by_role.values()), Decimal("0")) == summary.totals.revenue

    def test_unknown_type_is_skipped(self):
        summary = AggregationEngine.aggregate([tx(1, 3, "revenue", "5.00"), tx(2, 3, "refund", "5.00")])
        assert summary.totals.count == 1
        assert summary.totals.balance == Decimal("5.00")

    def test_serialized_shape(self):
        payload = AggregationEngine.aggregate(ENTRIES[:2]).to_dict()
        assert payload == {"totals": {
            "revenue": 0.3, "expense": 0.0, "commission": 0.0, "adjustment": 0.0,
            "balance": 0.3, "count": 2,
        }}


class TestFilters:
    """Narrowing the scoped set"""

    def test_empty_filters(self):
        assert SummaryFilters().to_query() == {}

    def test_type_status_and_dates(self):
        start, end = datetime(2025, 1, 1), datetime(2025, 2, 1)
        query = SummaryFilters(
            start_date=start, end_date=end,
            type=TransactionType.REVENUE, status=TransactionStatus.PENDING
        ).to_query()
        assert query == {
            "created_at": {"$gte": start, "$lte": end},
            "type": "revenue",
            "status": "pending",
        }

    def test_link_presence(self):
        assert SummaryFilters(link_kind=LinkKind.ORDER).to_query() == {"order_id": {"$ne": None}}
        unlinked = SummaryFilters(linked=False).to_query()
        assert unlinked == {"service_id": None, "task_id": None, "project_id": None, "order_id": None}
        assert len(SummaryFilters(linked=True).to_query()["$or"]) == 4

    def test_combine_keeps_both_or_clauses(self):
        combined = combine_queries({"$or": [{"a": 1}]}, {}, {"$or": [{"b": 2}]})
        assert combined == {"$and": [{"$or": [{"a": 1}]}, {"$or": [{"b": 2}]}]}


class TestSummarize:
    """Scoped fetch from MongoDB"""

    @pytest.fixture
    async def engine(self, db):
        await db.transactions.insert_many(ENTRIES[:6])
        return AggregationEngine(db)

    async def test_client_summary_covers_own_entries_only(self, engine):
        summary = await engine.summarize(VisibilityScope(CLIENT))
        assert summary.totals.revenue == Decimal("0.30")
        assert summary.totals.count == 2
        assert summary.by_role is None

    async def test_admin_breakdown_uses_stored_roles(self, engine):
        summary = await engine.summarize(VisibilityScope(ADMIN, unrestricted=True), include_role_breakdown=True)
        assert summary.totals.count == 6
        assert summary.by_role["client"].revenue == Decimal("1000.30")
        assert summary.by_role["admin"].amounts["expense"] == Decimal("100.00")
        assert summary.by_role["other"].count == 0

    async def test_type_filter(self, engine):
        summary = await engine.summarize(
            VisibilityScope(ADMIN, unrestricted=True),
            SummaryFilters(type=TransactionType.ADJUSTMENT)
        )
        assert summary.totals.count == 1
        assert summary.totals.balance == Decimal("-10.00")
