"""
Roles and the authenticated principal.

The identity collaborator hands every operation a principal; the ledger core
only ever looks at its id and role.
"""

from dataclasses import dataclass
from enum import Enum


class Role(str, Enum):
    CLIENT = "client"
    AGENT = "agent"
    ADMIN = "admin"

    @classmethod
    def parse(cls, value) -> "Role":
        """Parse a stored/token role string, case-insensitively."""
        if isinstance(value, Role):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise ValueError(f"Unknown role: {value!r}")


@dataclass(frozen=True)
class Principal:
    user_id: int
    role: Role

    @property
    def is_admin(self) -> bool:
        return self.role is Role.ADMIN
