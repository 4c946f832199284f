from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from pymongo import ReturnDocument
from bson import Decimal128
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Optional, Dict, Any, List, Mapping
import logging
import re

from core.aggregation import AggregationEngine, SummaryFilters, combine_queries
from core.atomic_numbering import AtomicSequence
from core.clock import Clock, SystemClock, to_naive_utc
from core.entitlements import EntitlementEvaluator
from core.errors import ConcurrentModificationError, NotFoundError, ValidationError
from core.financial_precision import parse_amount, to_decimal128, to_float
from core.labels import (
    CURRENCY_LABELS, ROLE_LABELS, TRANSACTION_STATUS_LABELS, TRANSACTION_TYPE_LABELS, get_label
)
from core.ledger_types import DEFAULT_CURRENCY, TransactionType, normalize_currency
from core.link_registry import (
    LINK_FIELDS, LinkableEntityRegistry, link_from_fields, link_to_fields, to_safe_int
)
from core.proof_storage import LocalProofStorage, decode_proof
from core.roles import Principal
from core.state_machine import parse_status, resolve_initial_status, transaction_status_machine
from core.time_window import TimeWindowPolicy

logger = logging.getLogger(__name__)

SORTABLE_FIELDS = {"created_at", "amount", "type", "status"}
DEFAULT_PAGE_SIZE = 25
MAX_PAGE_SIZE = 200
REPORT_DEFAULT_DAYS = 30
# status moves at most once (pending -> terminal), so a second pass always settles
MAX_UPDATE_ATTEMPTS = 2


def serialize_doc(doc: Dict[str, Any]) -> Dict[str, Any]:
    """Serialize MongoDB document for JSON response (handles Decimal128, datetime)"""
    if doc is None:
        return None
    result = {}
    for key, value in doc.items():
        if isinstance(value, Decimal128):
            result[key] = to_float(value)
        elif isinstance(value, Decimal):
            result[key] = float(value)
        elif isinstance(value, datetime):
            result[key] = value.isoformat()
        elif isinstance(value, dict):
            result[key] = serialize_doc(value)
        else:
            result[key] = value
    return result


@asynccontextmanager
async def unit_of_work(client: Optional[AsyncIOMotorClient], enabled: bool):
    """Yield a session inside a MongoDB transaction, or None when disabled."""
    if not enabled or client is None:
        yield None
        return
    async with await client.start_session() as session:
        async with session.start_transaction():
            yield session


def to_trim_or_none(value) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def parse_type(value) -> TransactionType:
    if value is None or str(value).strip() == "":
        raise ValidationError("Transaction type is required", field="type")
    try:
        return TransactionType(str(value).strip())
    except ValueError:
        raise ValidationError(f"Invalid transaction type: {value!r}", field="type")


@dataclass
class TransactionListParams:
    """Filters, sort and pagination for the transaction list."""
    type: Optional[str] = None
    status: Optional[str] = None
    currency: Optional[str] = None
    payment_method: Optional[str] = None
    service_id: Optional[int] = None
    task_id: Optional[int] = None
    project_id: Optional[int] = None
    order_id: Optional[int] = None
    min_amount: Optional[Decimal] = None
    max_amount: Optional[Decimal] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    q: Optional[str] = None
    sort: Optional[str] = None
    limit: Optional[int] = None
    offset: Optional[int] = None
    page: Optional[int] = None

    def to_query(self) -> Dict[str, Any]:
        query: Dict[str, Any] = {}

        if self.type:
            query["type"] = parse_type(self.type).value
        if self.status:
            query["status"] = parse_status(self.status).value
        if self.currency:
            query["currency"] = str(self.currency).strip().upper()
        if self.payment_method:
            query["payment_method"] = {"$regex": re.escape(self.payment_method.strip()), "$options": "i"}

        for name in LINK_FIELDS:
            value = getattr(self, name)
            if value is not None:
                query[name] = value

        if self.min_amount is not None or self.max_amount is not None:
            amount = {}
            if self.min_amount is not None:
                amount["$gte"] = to_decimal128(self.min_amount)
            if self.max_amount is not None:
                amount["$lte"] = to_decimal128(self.max_amount)
            query["amount"] = amount

        if self.start_date or self.end_date:
            created = {}
            if self.start_date:
                created["$gte"] = to_naive_utc(self.start_date)
            if self.end_date:
                created["$lte"] = to_naive_utc(self.end_date)
            query["created_at"] = created

        needle = (self.q or "").strip()
        if needle:
            pattern = {"$regex": re.escape(needle), "$options": "i"}
            query["$or"] = [{"description": pattern}, {"payment_method": pattern}]

        return query

    def sort_spec(self) -> List[tuple]:
        if self.sort:
            key = self.sort.lstrip("-")
            if key in SORTABLE_FIELDS:
                return [(key, -1 if self.sort.startswith("-") else 1), ("_id", 1)]
        return [("created_at", -1), ("_id", -1)]

    def pagination(self) -> Dict[str, int]:
        """limit in [1, 200]; page wins over offset when given."""
        limit = self.limit if self.limit is not None else DEFAULT_PAGE_SIZE
        limit = min(max(limit, 1), MAX_PAGE_SIZE)

        if self.page is not None and self.page > 0:
            page = self.page
            offset = (page - 1) * limit
        else:
            offset = self.offset if self.offset is not None and self.offset >= 0 else 0
            page = offset // limit + 1

        return {"limit": limit, "offset": offset, "page": page}


class LedgerService:
    """
    Ledger entry operations: create, read, list, update, delete, summarize.

    RULES:
    - Every operation is authorized by the EntitlementEvaluator
    - Status is derived at creation and only moves pending -> completed|cancelled
    - Each mutation is one unit of work (a MongoDB transaction when enabled)
    - A proof file is written before the entry and removed again if the
      entry cannot be stored, so no entry points at a missing file
    """

    def __init__(
        self,
        db: AsyncIOMotorDatabase,
        client: Optional[AsyncIOMotorClient] = None,
        clock: Optional[Clock] = None,
        storage: Optional[LocalProofStorage] = None,
        use_transactions: bool = False
    ):
        self.db = db
        self.client = client
        self.clock = clock or SystemClock()
        self.storage = storage
        self.use_transactions = use_transactions and client is not None

        self.registry = LinkableEntityRegistry(db)
        self.time_window = TimeWindowPolicy(self.clock)
        self.evaluator = EntitlementEvaluator(self.registry, self.time_window)
        self.aggregation = AggregationEngine(db)
        self.sequence = AtomicSequence(db)

    def _unit_of_work(self):
        return unit_of_work(self.client, self.use_transactions)

    # =========================================================================
    # SERIALIZATION
    # =========================================================================

    def to_response(self, doc: Dict[str, Any]) -> Dict[str, Any]:
        # Stored documents must still carry at most one link
        link_from_fields(doc)

        result = serialize_doc(doc)
        result["transaction_id"] = result.pop("_id")
        result["type_label"] = get_label(doc.get("type"), TRANSACTION_TYPE_LABELS)
        result["status_label"] = get_label(doc.get("status"), TRANSACTION_STATUS_LABELS)
        result["currency_label"] = get_label(doc.get("currency"), CURRENCY_LABELS)
        result["mutation_window_remaining_seconds"] = int(
            self.time_window.remaining(doc.get("created_at")).total_seconds()
        )
        return result

    # =========================================================================
    # CREATE
    # =========================================================================

    async def create_transaction(self, principal: Principal, data: Mapping[str, Any]) -> Dict[str, Any]:
        """
        Record a new ledger entry owned by the principal.

        Raises:
            ValidationError: missing/invalid type or amount, bad proof file
            LinkIntegrityError: several links, or a link that does not resolve
            ForbiddenError: link target not owned by / assigned to the caller
        """
        tx_type = parse_type(data.get("type"))
        amount = parse_amount(data.get("amount"))
        link = link_from_fields(data)

        owner = await self.db.users.find_one({"_id": principal.user_id})
        if not owner:
            raise NotFoundError("User", principal.user_id)

        linked = await self.registry.resolve_optional(link)
        self.evaluator.authorize_create(principal, linked)
        status = resolve_initial_status(link, data.get("status"), principal)

        proof_pointer = await self._store_proof(data.get("proof_file"))

        try:
            async with self._unit_of_work() as session:
                tx_id = await self.sequence.next_id("transactions", session=session)
                now = self.clock.now()
                doc = {
                    "_id": tx_id,
                    "owner_user_id": principal.user_id,
                    "type": tx_type.value,
                    "amount": to_decimal128(amount),
                    "currency": normalize_currency(data.get("currency"), DEFAULT_CURRENCY),
                    "status": status.value,
                    "payment_method": to_trim_or_none(data.get("payment_method")),
                    "description": to_trim_or_none(data.get("description")),
                    "proof_file": proof_pointer,
                    **link_to_fields(link),
                    "created_at": now,
                    "updated_at": now
                }
                await self.db.transactions.insert_one(doc, session=session)
        except Exception as e:
            logger.error(f"[LEDGER] Create failed for user:{principal.user_id}: {e}")
            if proof_pointer:
                await self.storage.delete(proof_pointer)
            raise

        logger.info(
            f"[LEDGER] Created transaction {tx_id} ({tx_type.value}, {amount}, {status.value}) "
            f"for {principal.role.value}:{principal.user_id}"
        )
        return self.to_response(doc)

    async def _store_proof(self, upload) -> Optional[Dict[str, Any]]:
        if not upload:
            return None
        if self.storage is None:
            raise ValidationError("Proof file uploads are not enabled", field="proof_file")

        if not isinstance(upload, Mapping):
            upload = upload.dict()
        content = decode_proof(upload.get("content_base64") or "")
        return await self.storage.save(upload.get("filename") or "", content, upload.get("mime_type"))

    # =========================================================================
    # READ
    # =========================================================================

    async def get_transaction(self, principal: Principal, tx_id: int) -> Dict[str, Any]:
        scope = await self.evaluator.scope_for(principal)
        doc = await self.db.transactions.find_one({"_id": tx_id})
        self.evaluator.ensure_visible(scope, doc, tx_id)
        return self.to_response(doc)

    async def list_transactions(
        self,
        principal: Principal,
        params: Optional[TransactionListParams] = None
    ) -> Dict[str, Any]:
        params = params or TransactionListParams()
        scope = await self.evaluator.scope_for(principal)
        query = combine_queries(scope.to_query(), params.to_query())
        paging = params.pagination()

        total = await self.db.transactions.count_documents(query)
        docs = await self.db.transactions.find(query).sort(params.sort_spec()).skip(
            paging["offset"]
        ).limit(paging["limit"]).to_list(length=paging["limit"])

        return {
            "transactions": [self.to_response(doc) for doc in docs],
            "pagination": {"page": paging["page"], "limit": paging["limit"], "total": total}
        }

    # =========================================================================
    # UPDATE
    # =========================================================================

    def _prepare_changes(self, changes: Mapping[str, Any]) -> Dict[str, Any]:
        """Validate and normalize the fields a caller asked to change."""
        prepared: Dict[str, Any] = {}

        if "amount" in changes:
            prepared["amount"] = to_decimal128(parse_amount(changes["amount"]))
        if "currency" in changes:
            prepared["currency"] = normalize_currency(changes["currency"], DEFAULT_CURRENCY)
        if "payment_method" in changes:
            prepared["payment_method"] = to_trim_or_none(changes["payment_method"])
        if "description" in changes:
            prepared["description"] = to_trim_or_none(changes["description"])
        if changes.get("status") is not None:
            prepared["status"] = parse_status(changes["status"]).value

        return prepared

    @staticmethod
    def _check_immutable_fields(doc: Mapping[str, Any], changes: Mapping[str, Any]) -> None:
        if changes.get("type") is not None and parse_type(changes["type"]).value != doc["type"]:
            raise ValidationError("Transaction type cannot be changed after creation", field="type")

        current = link_to_fields(link_from_fields(doc))
        for name in LINK_FIELDS:
            if name in changes and to_safe_int(changes[name], name) != current[name]:
                raise ValidationError("Transaction links cannot be changed after creation", field=name)

    async def update_transaction(
        self,
        principal: Principal,
        tx_id: int,
        changes: Mapping[str, Any]
    ) -> Dict[str, Any]:
        """
        Apply allowed field changes.

        The status rule is checked against the stored status and the write is
        conditional on that status still being current; if another writer
        moved it first, the entry is re-read and re-validated.

        Raises:
            NotFoundError, ForbiddenError, ValidationError, InvalidStateTransition
        """
        prepared = self._prepare_changes(changes)
        proof_upload = changes.get("proof_file")
        scope = await self.evaluator.scope_for(principal)
        new_proof = None

        try:
            async with self._unit_of_work() as session:
                updated = None
                for attempt in range(1, MAX_UPDATE_ATTEMPTS + 1):
                    doc = await self.db.transactions.find_one({"_id": tx_id}, session=session)
                    self.evaluator.authorize_update(principal, scope, doc, prepared)
                    self._check_immutable_fields(doc, changes)
                    if "status" in prepared:
                        transaction_status_machine.validate_transition(doc["status"], prepared["status"])

                    if proof_upload and new_proof is None:
                        new_proof = await self._store_proof(proof_upload)
                    fields = dict(prepared)
                    if new_proof is not None:
                        fields["proof_file"] = new_proof
                    fields["updated_at"] = self.clock.now()

                    updated = await self.db.transactions.find_one_and_update(
                        {"_id": tx_id, "status": doc["status"]},
                        {"$set": fields},
                        return_document=ReturnDocument.AFTER,
                        session=session
                    )
                    if updated is not None:
                        break
                    logger.warning(
                        f"[LEDGER] Transaction {tx_id} changed status during update "
                        f"(attempt {attempt}/{MAX_UPDATE_ATTEMPTS})"
                    )
                if updated is None:
                    raise ConcurrentModificationError(
                        f"Transaction {tx_id} changed during update, retry the request",
                        {"transaction_id": tx_id, "attempts": MAX_UPDATE_ATTEMPTS}
                    )
        except Exception:
            if new_proof:
                await self.storage.delete(new_proof)
            raise

        if new_proof and doc.get("proof_file"):
            await self.storage.delete(doc["proof_file"])

        logger.info(
            f"[LEDGER] Updated transaction {tx_id} fields={sorted(fields)} "
            f"by {principal.role.value}:{principal.user_id}"
        )
        return self.to_response(updated)

    # =========================================================================
    # DELETE
    # =========================================================================

    async def delete_transaction(self, principal: Principal, tx_id: int) -> Dict[str, Any]:
        scope = await self.evaluator.scope_for(principal)

        async with self._unit_of_work() as session:
            doc = await self.db.transactions.find_one({"_id": tx_id}, session=session)
            self.evaluator.authorize_delete(principal, scope, doc)
            result = await self.db.transactions.delete_one({"_id": tx_id}, session=session)

        if result.deleted_count == 0:
            raise NotFoundError("Transaction", tx_id)

        if doc.get("proof_file") and self.storage is not None:
            await self.storage.delete(doc["proof_file"])

        logger.info(f"[LEDGER] Deleted transaction {tx_id} by {principal.role.value}:{principal.user_id}")
        return {"message": "Transaction deleted", "transaction_id": tx_id}

    # =========================================================================
    # SUMMARY / REPORT
    # =========================================================================

    async def summarize(self, principal: Principal, filters: Optional[SummaryFilters] = None) -> Dict[str, Any]:
        scope = await self.evaluator.scope_for(principal)
        include_roles = self.evaluator.includes_role_breakdown(principal)
        summary = await self.aggregation.summarize(scope, filters, include_role_breakdown=include_roles)

        result = summary.to_dict()
        result["scope"] = principal.role.value
        if "by_role" in result:
            result["role_labels"] = {role: get_label(role, ROLE_LABELS) for role in result["by_role"]}
        return result

    async def report(
        self,
        principal: Principal,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None
    ) -> Dict[str, Any]:
        """Per-type totals over a date window (default: the last 30 days)."""
        end = to_naive_utc(end_date) or self.clock.now()
        start = to_naive_utc(start_date) or end - timedelta(days=REPORT_DEFAULT_DAYS)
        if start > end:
            raise ValidationError("start_date must not be after end_date", field="start_date")

        scope = await self.evaluator.scope_for(principal)
        summary = await self.aggregation.summarize(scope, SummaryFilters(start_date=start, end_date=end))
        totals = summary.totals.to_dict()

        return {
            "period": {"start": start.isoformat(), "end": end.isoformat()},
            "count": summary.totals.count,
            "totals": {t.value: totals[t.value] for t in TransactionType},
            "totals_with_labels": [
                {
                    "type": t.value,
                    "type_label": get_label(t.value, TRANSACTION_TYPE_LABELS),
                    "amount": totals[t.value]
                }
                for t in TransactionType
            ],
            "balance": totals["balance"]
        }
