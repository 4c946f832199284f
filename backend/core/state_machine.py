"""
TRANSACTION STATUS DERIVATION & STATE MACHINE

A small reusable state machine plus the ledger's status rules:
- Initial status derivation from the entry's link target
- Admin-only explicit status at creation
- Transition validation (terminal states have no way out)

Usage:
    status = resolve_initial_status(link, requested_status, principal)
    transaction_status_machine.validate_transition("pending", "completed")
"""

from typing import Dict, List, Optional, Set, Tuple
import logging

from core.errors import InvalidStateTransition, ValidationError
from core.ledger_types import TransactionStatus
from core.link_registry import LinkKind, LinkTarget
from core.roles import Principal

logger = logging.getLogger(__name__)


# =============================================================================
# STATE MACHINE
# =============================================================================

class StateMachine:
    """
    Generic state machine over string states.

    Example:
        machine = StateMachine("transaction", initial_state="pending")
        machine.register("pending", "completed")
        machine.register("pending", "cancelled")
        machine.validate_transition("completed", "pending")  # raises
    """

    def __init__(self, entity_name: str, initial_state: str):
        self.entity_name = entity_name
        self.initial_state = initial_state

        # Transitions indexed by (from_state, to_state)
        self._transitions: Dict[Tuple[str, str], str] = {}
        self._states: Set[str] = {initial_state}

    def register(self, from_state: str, to_state: str, description: str = "") -> "StateMachine":
        """Register a legal transition. Returns self for chaining."""
        key = (from_state, to_state)

        if key in self._transitions:
            logger.warning(
                f"[STATE_MACHINE] Overwriting transition {self.entity_name}: "
                f"'{from_state}' -> '{to_state}'"
            )

        self._transitions[key] = description
        self._states.add(from_state)
        self._states.add(to_state)
        return self

    # =========================================================================
    # VALIDATION
    # =========================================================================

    def get_allowed_transitions(self, from_state: str) -> List[str]:
        """Get list of valid target states from a given state."""
        return [dst for (src, dst) in self._transitions if src == from_state]

    def can_transition(self, from_state: str, to_state: str) -> bool:
        return (from_state, to_state) in self._transitions

    def is_terminal(self, state: str) -> bool:
        return state in self._states and not self.get_allowed_transitions(state)

    def validate_transition(self, from_state: str, to_state: str) -> None:
        """
        Validate a status change.

        Re-asserting the current state is a no-op. Anything else must be a
        registered transition, otherwise InvalidStateTransition is raised.
        """
        if to_state not in self._states:
            raise ValidationError(
                f"Unknown {self.entity_name} status: {to_state!r}", field="status"
            )
        if from_state == to_state:
            return
        if not self.can_transition(from_state, to_state):
            logger.info(
                f"[STATE_MACHINE] Rejected {self.entity_name}: "
                f"'{from_state}' -> '{to_state}'"
            )
            raise InvalidStateTransition(
                entity=self.entity_name,
                from_state=from_state,
                to_state=to_state,
                allowed=self.get_allowed_transitions(from_state)
            )

    # =========================================================================
    # INTROSPECTION
    # =========================================================================

    def get_states(self) -> List[str]:
        return sorted(self._states)

    def get_graph(self) -> Dict[str, List[str]]:
        """Get state graph as adjacency list."""
        graph = {state: [] for state in self._states}
        for (src, dst) in self._transitions:
            graph[src].append(dst)
        return graph

    def __repr__(self):
        return (
            f"StateMachine({self.entity_name}, "
            f"states={len(self._states)}, "
            f"transitions={len(self._transitions)})"
        )


transaction_status_machine = (
    StateMachine("transaction", initial_state=TransactionStatus.PENDING.value)
    .register(TransactionStatus.PENDING.value, TransactionStatus.COMPLETED.value,
              "Settlement confirmed")
    .register(TransactionStatus.PENDING.value, TransactionStatus.CANCELLED.value,
              "Settlement abandoned")
)


# =============================================================================
# INITIAL STATUS
# =============================================================================

# Links whose money only becomes final after an outside workflow settles.
SETTLEMENT_LINKS = (LinkKind.PROJECT, LinkKind.ORDER)


def derive_initial_status(link: Optional[LinkTarget]) -> TransactionStatus:
    """
    Standalone entries (no link, or a Service/Task link) are final at once;
    entries tied to a Project or an Order wait for settlement.
    """
    if link is not None and link.kind in SETTLEMENT_LINKS:
        return TransactionStatus.PENDING
    return TransactionStatus.COMPLETED


def parse_status(value) -> TransactionStatus:
    try:
        return TransactionStatus(str(value).strip())
    except ValueError:
        raise ValidationError(f"Invalid transaction status: {value!r}", field="status")


def resolve_initial_status(
    link: Optional[LinkTarget],
    requested: Optional[str],
    principal: Principal
) -> TransactionStatus:
    """
    Status a new entry is stored with.

    Only admins may choose it explicitly; a status sent by anyone else is
    dropped and the derived status applies.
    """
    derived = derive_initial_status(link)

    if requested is None or requested == "":
        return derived

    if not principal.is_admin:
        logger.info(
            f"[STATE_MACHINE] Ignoring status '{requested}' requested by "
            f"{principal.role.value}:{principal.user_id}; using '{derived.value}'"
        )
        return derived

    return parse_status(requested)
