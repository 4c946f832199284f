"""
Closed enumerations persisted by the ledger and project components.
"""

from enum import Enum


class TransactionType(str, Enum):
    REVENUE = "revenue"
    EXPENSE = "expense"
    COMMISSION = "commission"
    ADJUSTMENT = "adjustment"


class TransactionStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class ProjectStatus(str, Enum):
    CREATED = "created"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    VALIDATED = "validated"
    CANCELLED = "cancelled"


class PhaseStatus(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    COMPLETED = "completed"


DEFAULT_CURRENCY = "XOF"
KNOWN_CURRENCIES = ("XOF", "EUR", "USD", "GBP")


def normalize_currency(value, fallback: str = DEFAULT_CURRENCY) -> str:
    """Upper-case a currency code; unknown or empty codes fall back."""
    if not value:
        return fallback
    code = str(value).strip().upper()
    return code if code in KNOWN_CURRENCIES else fallback
