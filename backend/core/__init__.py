"""
Ledger core: roles, status rules, entitlements, time window, aggregation
"""
from .errors import (
    LedgerError,
    ValidationError,
    ForbiddenError,
    NotFoundError,
    InvalidStateTransition,
    LinkIntegrityError,
    ConcurrentModificationError
)

from .roles import Role, Principal

from .clock import Clock, SystemClock, FixedClock

from .financial_precision import (
    to_decimal,
    parse_amount,
    to_decimal128,
    to_float
)

from .ledger_types import TransactionType, TransactionStatus, ProjectStatus, PhaseStatus

from .link_registry import LinkKind, LinkTarget, LinkedEntity, LinkableEntityRegistry

from .state_machine import StateMachine, transaction_status_machine, resolve_initial_status

from .time_window import TimeWindowPolicy, MutableRecord, CLIENT_MUTATION_WINDOW

from .entitlements import EntitlementEvaluator, VisibilityScope

from .aggregation import AggregationEngine, SummaryFilters, LedgerSummary

__all__ = [
    # Errors
    'LedgerError',
    'ValidationError',
    'ForbiddenError',
    'NotFoundError',
    'InvalidStateTransition',
    'LinkIntegrityError',
    'ConcurrentModificationError',

    # Identity & time
    'Role',
    'Principal',
    'Clock',
    'SystemClock',
    'FixedClock',

    # Money
    'to_decimal',
    'parse_amount',
    'to_decimal128',
    'to_float',

    # Ledger rules
    'TransactionType',
    'TransactionStatus',
    'ProjectStatus',
    'PhaseStatus',
    'LinkKind',
    'LinkTarget',
    'LinkedEntity',
    'LinkableEntityRegistry',
    'StateMachine',
    'transaction_status_machine',
    'resolve_initial_status',
    'TimeWindowPolicy',
    'MutableRecord',
    'CLIENT_MUTATION_WINDOW',
    'EntitlementEvaluator',
    'VisibilityScope',
    'AggregationEngine',
    'SummaryFilters',
    'LedgerSummary'
]
