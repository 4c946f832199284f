"""
ENTITLEMENT EVALUATOR

Decides, for every ledger operation, whether the principal may perform it and
which entries they can see.

RULES:
1. admin  - unrestricted read, create, update, delete and summarize
2. agent  - sees entries they own plus entries linked to a Service / Task /
            Project they are assigned to; updates those only while pending;
            never deletes
3. client - sees only entries they own; updates/deletes them only inside the
            one-hour window
4. Only admins choose or change a status; a non-admin status on create is
   dropped (state machine), a non-admin status change on update is refused
5. Only admins change an entry's amount or currency
6. Entries outside the visibility scope are reported as NotFound, never as
   Forbidden, so their existence does not leak. Agent deletes are the
   exception: they are refused outright, before any lookup

The visibility scope is computed once per request and used both as the
MongoDB filter for list/summarize and as the pre-check for detail, update
and delete.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, FrozenSet, Mapping, Optional
import logging

from core.errors import ForbiddenError, NotFoundError
from core.financial_precision import to_decimal
from core.link_registry import ASSIGNABLE_KINDS, LinkableEntityRegistry, LinkedEntity, LinkKind
from core.roles import Principal, Role
from core.state_machine import transaction_status_machine
from core.time_window import MutableRecord, TimeWindowPolicy

logger = logging.getLogger(__name__)


class Operation(str, Enum):
    CREATE = "create"
    READ_ONE = "read-one"
    LIST = "list"
    UPDATE = "update"
    DELETE = "delete"
    SUMMARIZE = "summarize"


@dataclass(frozen=True)
class VisibilityScope:
    """The subset of ledger entries a principal may see."""
    principal: Principal
    unrestricted: bool = False
    assignments: Dict[LinkKind, FrozenSet[int]] = field(default_factory=dict)

    def to_query(self) -> Dict[str, Any]:
        """MongoDB filter selecting exactly the visible entries."""
        if self.unrestricted:
            return {}

        owned = {"owner_user_id": self.principal.user_id}
        clauses = [owned]
        for kind in ASSIGNABLE_KINDS:
            ids = self.assignments.get(kind)
            if ids:
                clauses.append({kind.field: {"$in": sorted(ids)}})

        return owned if len(clauses) == 1 else {"$or": clauses}

    def contains(self, doc: Mapping[str, Any]) -> bool:
        """Python mirror of to_query() for a single loaded document."""
        if self.unrestricted:
            return True
        if doc.get("owner_user_id") == self.principal.user_id:
            return True
        for kind in ASSIGNABLE_KINDS:
            linked_id = doc.get(kind.field)
            if linked_id is not None and linked_id in self.assignments.get(kind, ()):
                return True
        return False


class EntitlementEvaluator:

    def __init__(self, registry: LinkableEntityRegistry, time_window: TimeWindowPolicy):
        self.registry = registry
        self.time_window = time_window

    # =========================================================================
    # VISIBILITY
    # =========================================================================

    async def scope_for(self, principal: Principal, session=None) -> VisibilityScope:
        role = principal.role
        if role is Role.ADMIN:
            return VisibilityScope(principal, unrestricted=True)
        if role is Role.AGENT:
            assignments = await self.registry.assignments_of(principal.user_id, session=session)
            return VisibilityScope(
                principal,
                assignments={kind: frozenset(ids) for kind, ids in assignments.items()}
            )
        if role is Role.CLIENT:
            return VisibilityScope(principal)
        raise ValueError(f"Unhandled role: {role!r}")

    def ensure_visible(self, scope: VisibilityScope, doc: Optional[Mapping[str, Any]], entity_id=None) -> None:
        if doc is None or not scope.contains(doc):
            raise NotFoundError("Transaction", entity_id)

    def includes_role_breakdown(self, principal: Principal) -> bool:
        return principal.is_admin

    # =========================================================================
    # CREATE
    # =========================================================================

    def authorize_create(self, principal: Principal, linked: Optional[LinkedEntity]) -> None:
        """
        Everyone may create entries they own. A non-admin may only attribute
        the entry to an entity they own or are assigned to.
        """
        role = principal.role
        if role is Role.ADMIN or linked is None:
            return
        if role is Role.AGENT:
            allowed = linked.is_assigned_to(principal.user_id) or linked.is_owned_by(principal.user_id)
        elif role is Role.CLIENT:
            allowed = linked.is_owned_by(principal.user_id)
        else:
            raise ValueError(f"Unhandled role: {role!r}")

        if not allowed:
            self._deny(principal, Operation.CREATE, linked.target.kind.value)
            raise ForbiddenError(
                f"Not allowed to record transactions against this {linked.target.kind.value}"
            )

    # =========================================================================
    # UPDATE / DELETE
    # =========================================================================

    def authorize_update(
        self,
        principal: Principal,
        scope: VisibilityScope,
        doc: Mapping[str, Any],
        changes: Mapping[str, Any]
    ) -> None:
        """Raises NotFoundError / ForbiddenError unless the update is allowed."""
        self.ensure_visible(scope, doc, doc.get("_id") if doc else None)

        new_status = changes.get("status")
        if new_status is not None and new_status != doc["status"] and not principal.is_admin:
            self._deny(principal, Operation.UPDATE, "status")
            raise ForbiddenError("Only an admin may change a transaction status")

        if not principal.is_admin:
            for name in self._changed_money_fields(doc, changes):
                self._deny(principal, Operation.UPDATE, name)
                raise ForbiddenError(f"Only an admin may change a transaction {name}", {"field": name})

        role = principal.role
        if role is Role.ADMIN:
            return
        if role is Role.AGENT:
            if transaction_status_machine.is_terminal(doc["status"]):
                self._deny(principal, Operation.UPDATE, f"terminal:{doc['status']}")
                raise ForbiddenError(
                    f"Agents may only modify pending transactions (this one is {doc['status']})"
                )
            return
        if role is Role.CLIENT:
            self.time_window.ensure_can_mutate(self.mutable_record(doc), principal, "transaction")
            return
        raise ValueError(f"Unhandled role: {role!r}")

    def authorize_delete(
        self,
        principal: Principal,
        scope: VisibilityScope,
        doc: Optional[Mapping[str, Any]]
    ) -> None:
        role = principal.role
        if role is Role.AGENT:
            self._deny(principal, Operation.DELETE, "agent")
            raise ForbiddenError("Agents may not delete transactions")

        self.ensure_visible(scope, doc, doc.get("_id") if doc else None)
        if role is Role.ADMIN:
            return
        if role is Role.CLIENT:
            self.time_window.ensure_can_mutate(self.mutable_record(doc), principal, "transaction")
            return
        raise ValueError(f"Unhandled role: {role!r}")

    @staticmethod
    def _changed_money_fields(doc: Mapping[str, Any], changes: Mapping[str, Any]):
        if changes.get("amount") is not None:
            current = doc.get("amount")
            if current is None or to_decimal(changes["amount"]) != to_decimal(current):
                yield "amount"
        if changes.get("currency") is not None and changes["currency"] != doc.get("currency"):
            yield "currency"

    @staticmethod
    def mutable_record(doc: Mapping[str, Any]) -> MutableRecord:
        return MutableRecord(owner_id=doc.get("owner_user_id"), created_at=doc.get("created_at"))

    def _deny(self, principal: Principal, operation: Operation, reason: str) -> None:
        logger.info(
            f"[ENTITLEMENT] Denied {operation.value} for "
            f"{principal.role.value}:{principal.user_id} ({reason})"
        )
