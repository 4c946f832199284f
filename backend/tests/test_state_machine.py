"""
Status derivation and transition rules for ledger entries
"""
import pytest

from core.errors import InvalidStateTransition, ValidationError
from core.ledger_types import TransactionStatus
from core.link_registry import LinkKind, LinkTarget
from core.roles import Principal, Role
from core.state_machine import (
    StateMachine,
    derive_initial_status,
    resolve_initial_status,
    transaction_status_machine,
)

ADMIN = Principal(1, Role.ADMIN)
AGENT = Principal(2, Role.AGENT)
CLIENT = Principal(3, Role.CLIENT)


class TestDerivation:
    """Initial status from the link target"""

    def test_standalone_entry_is_completed(self):
        assert derive_initial_status(None) is TransactionStatus.COMPLETED

    @pytest.mark.parametrize("kind", [LinkKind.SERVICE, LinkKind.TASK])
    def test_service_and_task_links_are_completed(self, kind):
        assert derive_initial_status(LinkTarget(kind, 7)) is TransactionStatus.COMPLETED

    @pytest.mark.parametrize("kind", [LinkKind.PROJECT, LinkKind.ORDER])
    def test_project_and_order_links_are_pending(self, kind):
        assert derive_initial_status(LinkTarget(kind, 42)) is TransactionStatus.PENDING


class TestRequestedStatus:
    """Explicit status on create is an admin privilege"""

    @pytest.mark.parametrize("principal", [CLIENT, AGENT])
    def test_non_admin_status_is_ignored(self, principal):
        link = LinkTarget(LinkKind.PROJECT, 42)
        assert resolve_initial_status(link, "completed", principal) is TransactionStatus.PENDING

    def test_admin_status_is_honored(self):
        link = LinkTarget(LinkKind.PROJECT, 42)
        assert resolve_initial_status(link, "completed", ADMIN) is TransactionStatus.COMPLETED

    def test_admin_unknown_status_is_rejected(self):
        with pytest.raises(ValidationError):
            resolve_initial_status(None, "archived", ADMIN)

    def test_empty_status_means_derived(self):
        assert resolve_initial_status(None, "", ADMIN) is TransactionStatus.COMPLETED


class TestTransitions:
    """pending -> completed | cancelled, terminal states are final"""

    @pytest.mark.parametrize("target", ["completed", "cancelled"])
    def test_pending_can_settle(self, target):
        transaction_status_machine.validate_transition("pending", target)

    @pytest.mark.parametrize("source,target", [
        ("completed", "pending"),
        ("completed", "cancelled"),
        ("cancelled", "pending"),
        ("cancelled", "completed"),
    ])
    def test_terminal_states_cannot_move(self, source, target):
        with pytest.raises(InvalidStateTransition) as exc:
            transaction_status_machine.validate_transition(source, target)
        assert exc.value.code == "INVALID_STATE_TRANSITION"
        assert exc.value.allowed == []

    @pytest.mark.parametrize("state", ["pending", "completed", "cancelled"])
    def test_same_status_is_a_no_op(self, state):
        transaction_status_machine.validate_transition(state, state)

    def test_unknown_target_is_a_validation_error(self):
        with pytest.raises(ValidationError):
            transaction_status_machine.validate_transition("pending", "refunded")

    def test_terminal_detection(self):
        assert not transaction_status_machine.is_terminal("pending")
        assert transaction_status_machine.is_terminal("completed")
        assert transaction_status_machine.is_terminal("cancelled")


class TestStateMachine:
    """Generic machine behaviour"""

    def test_graph_and_allowed_transitions(self):
        machine = StateMachine("phase", "pending").register("pending", "active").register("active", "completed")

        assert machine.get_allowed_transitions("pending") == ["active"]
        assert machine.get_graph()["completed"] == []
        assert machine.get_states() == ["active", "completed", "pending"]
        assert machine.can_transition("active", "completed")
        assert not machine.can_transition("pending", "completed")
