"""
Display labels for stored enumeration keys.

Keys are the technical values stored in MongoDB; values are what the UI
shows. Unknown keys fall back to the key itself.
"""

from typing import Dict, Optional

ROLE_LABELS = {
    "client": "Client",
    "agent": "Agent",
    "admin": "Administrateur",
    "other": "Autre",
}

TRANSACTION_TYPE_LABELS = {
    "revenue": "Revenu",
    "expense": "Dépense",
    "commission": "Commission",
    "adjustment": "Ajustement",
}

TRANSACTION_STATUS_LABELS = {
    "pending": "En attente",
    "completed": "Effectuée",
    "cancelled": "Annulée",
}

PROJECT_STATUS_LABELS = {
    "created": "Créé",
    "in_progress": "En cours",
    "completed": "Terminé",
    "validated": "Validé",
    "cancelled": "Annulé",
}

PHASE_STATUS_LABELS = {
    "pending": "En attente",
    "active": "En cours",
    "completed": "Terminée",
}

CURRENCY_LABELS = {
    "XOF": "Franc CFA (XOF)",
    "EUR": "Euro (€)",
    "USD": "Dollar US ($)",
    "GBP": "Livre sterling (£)",
}


def get_label(key: Optional[str], labels: Dict[str, str]) -> str:
    if key is None:
        return ""
    return labels.get(key, key)
