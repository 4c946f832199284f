"""
LINKABLE ENTITY REGISTRY

Read-only lookups for the four entities a ledger entry may be attributed to
(Service, Task, Project, Order). The ledger only needs to know whether the
entity exists and who owns it / is assigned to it.

A ledger entry carries at most one link. The four nullable link fields of the
stored document are folded into a single LinkTarget (or None) here; any
document or request with more than one link set is rejected with
LinkIntegrityError.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional
import logging

from motor.motor_asyncio import AsyncIOMotorDatabase

from core.errors import LinkIntegrityError, ValidationError

logger = logging.getLogger(__name__)


class LinkKind(str, Enum):
    SERVICE = "service"
    TASK = "task"
    PROJECT = "project"
    ORDER = "order"

    @property
    def field(self) -> str:
        """Name of the link field on a transaction document."""
        return f"{self.value}_id"


LINK_FIELDS = tuple(kind.field for kind in LinkKind)

# collection, owner field, assignee field
_ENTITY_SCHEMA = {
    LinkKind.SERVICE: ("services", "client_id", "agent_id"),
    LinkKind.TASK: ("tasks", "creator_id", "assigned_to"),
    LinkKind.PROJECT: ("projects", "client_id", "agent_id"),
    LinkKind.ORDER: ("orders", "user_id", None),
}

# Link kinds through which an assigned agent gains visibility
ASSIGNABLE_KINDS = (LinkKind.SERVICE, LinkKind.TASK, LinkKind.PROJECT)


@dataclass(frozen=True)
class LinkTarget:
    kind: LinkKind
    entity_id: int


@dataclass(frozen=True)
class LinkedEntity:
    """Ownership facts about a resolved link target."""
    target: LinkTarget
    owner_id: Optional[int]
    assignee_id: Optional[int]
    status: Optional[str] = None

    def is_assigned_to(self, user_id: int) -> bool:
        return self.assignee_id is not None and self.assignee_id == user_id

    def is_owned_by(self, user_id: int) -> bool:
        return self.owner_id is not None and self.owner_id == user_id


def to_safe_int(value: Any, field_name: str) -> Optional[int]:
    """Parse an optional integer id; empty values mean "not set"."""
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise ValidationError(f"'{field_name}' must be an integer id", field=field_name)
    try:
        parsed = int(str(value).strip())
    except ValueError:
        raise ValidationError(f"'{field_name}' must be an integer id", field=field_name)
    if parsed <= 0:
        raise ValidationError(f"'{field_name}' must be a positive id", field=field_name)
    return parsed


def link_from_fields(fields: Mapping[str, Any]) -> Optional[LinkTarget]:
    """
    Fold service_id / task_id / project_id / order_id into one LinkTarget.

    Raises LinkIntegrityError if more than one is set.
    """
    present = []
    for kind in LinkKind:
        entity_id = to_safe_int(fields.get(kind.field), kind.field)
        if entity_id is not None:
            present.append(LinkTarget(kind, entity_id))

    if len(present) > 1:
        raise LinkIntegrityError(
            "A transaction may be linked to at most one of service, task, project or order",
            {"links": {t.kind.field: t.entity_id for t in present}}
        )
    return present[0] if present else None


def link_to_fields(link: Optional[LinkTarget]) -> Dict[str, Optional[int]]:
    """Expand a LinkTarget back into the four document fields."""
    fields = {name: None for name in LINK_FIELDS}
    if link is not None:
        fields[link.kind.field] = link.entity_id
    return fields


class LinkableEntityRegistry:
    """Read-only ownership/assignment lookups against the collaborator collections."""

    def __init__(self, db: AsyncIOMotorDatabase):
        self.db = db

    async def resolve(self, link: LinkTarget, session=None) -> LinkedEntity:
        """
        Load ownership facts for a link target.
        Raises LinkIntegrityError if the entity does not exist.
        """
        collection, owner_field, assignee_field = _ENTITY_SCHEMA[link.kind]
        doc = await self.db[collection].find_one({"_id": link.entity_id}, session=session)

        if not doc:
            logger.info(f"[LINKS] Unresolved {link.kind.value}:{link.entity_id}")
            raise LinkIntegrityError(
                f"{link.kind.value.capitalize()} {link.entity_id} does not exist",
                {"field": link.kind.field, "id": link.entity_id}
            )

        return LinkedEntity(
            target=link,
            owner_id=doc.get(owner_field),
            assignee_id=doc.get(assignee_field) if assignee_field else None,
            status=doc.get("status")
        )

    async def resolve_optional(self, link: Optional[LinkTarget], session=None) -> Optional[LinkedEntity]:
        if link is None:
            return None
        return await self.resolve(link, session=session)

    async def assignments_of(self, agent_id: int, session=None) -> Dict[LinkKind, List[int]]:
        """Ids of every Service / Task / Project the agent is assigned to."""
        assignments = {}
        for kind in ASSIGNABLE_KINDS:
            collection, _, assignee_field = _ENTITY_SCHEMA[kind]
            docs = await self.db[collection].find(
                {assignee_field: agent_id}, {"_id": 1}, session=session
            ).to_list(length=None)
            assignments[kind] = [doc["_id"] for doc in docs]
        return assignments
