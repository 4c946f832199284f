from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from pymongo import ReturnDocument
from typing import Optional, Dict, Any, List, Mapping
import logging

from core.atomic_numbering import AtomicSequence
from core.clock import Clock, SystemClock, to_naive_utc
from core.errors import ForbiddenError, LinkIntegrityError, NotFoundError, ValidationError
from core.financial_precision import parse_amount, to_decimal128
from core.labels import CURRENCY_LABELS, PHASE_STATUS_LABELS, PROJECT_STATUS_LABELS, get_label
from core.ledger_types import DEFAULT_CURRENCY, PhaseStatus, ProjectStatus, normalize_currency
from core.link_registry import to_safe_int
from core.roles import Principal, Role
from core.time_window import MutableRecord, TimeWindowPolicy
from ledger_service import serialize_doc, to_trim_or_none, unit_of_work

logger = logging.getLogger(__name__)

ADMIN_ONLY_PROJECT_FIELDS = ("status", "client_id", "agent_id")


def _required_text(value, field_name: str) -> str:
    text = to_trim_or_none(value)
    if text is None:
        raise ValidationError(f"'{field_name}' is required", field=field_name)
    return text


def _parse_enum(enum_cls, value, field_name: str):
    try:
        return enum_cls(str(value).strip())
    except ValueError:
        raise ValidationError(f"Invalid {field_name}: {value!r}", field=field_name)


def _parse_progress(value) -> int:
    if isinstance(value, bool):
        raise ValidationError("progress must be an integer between 0 and 100", field="progress")
    try:
        progress = int(value)
    except (TypeError, ValueError):
        raise ValidationError("progress must be an integer between 0 and 100", field="progress")
    if progress < 0 or progress > 100:
        raise ValidationError("progress must be an integer between 0 and 100", field="progress")
    return progress


def _check_dates(start_date, end_date) -> None:
    start_date, end_date = to_naive_utc(start_date), to_naive_utc(end_date)
    if start_date and end_date and start_date > end_date:
        raise ValidationError("start_date must not be after end_date", field="start_date")


def project_record(project: Mapping[str, Any]) -> MutableRecord:
    """A project is owned by its client and assigned to its agent."""
    return MutableRecord(
        owner_id=project.get("client_id"),
        created_at=project.get("created_at"),
        assignee_id=project.get("agent_id")
    )


class ProjectService:
    """
    Projects and their phases.

    RULES:
    - Client sees and owns their projects; agent sees projects assigned to them
    - Mutations go through the same time-window policy as ledger entries
    - A phase is gated by its parent project (owner, agent, window anchor)
    - Only admins set a project's client, agent or status
    - A project referenced by ledger entries cannot be deleted
    """

    def __init__(
        self,
        db: AsyncIOMotorDatabase,
        client: Optional[AsyncIOMotorClient] = None,
        clock: Optional[Clock] = None,
        use_transactions: bool = False
    ):
        self.db = db
        self.client = client
        self.clock = clock or SystemClock()
        self.use_transactions = use_transactions and client is not None
        self.time_window = TimeWindowPolicy(self.clock)
        self.sequence = AtomicSequence(db)

    # =========================================================================
    # VISIBILITY
    # =========================================================================

    @staticmethod
    def visibility_query(principal: Principal) -> Dict[str, Any]:
        if principal.role is Role.ADMIN:
            return {}
        if principal.role is Role.AGENT:
            return {"$or": [{"agent_id": principal.user_id}, {"client_id": principal.user_id}]}
        if principal.role is Role.CLIENT:
            return {"client_id": principal.user_id}
        raise ValueError(f"Unhandled role: {principal.role!r}")

    @staticmethod
    def is_visible(principal: Principal, project: Mapping[str, Any]) -> bool:
        if principal.is_admin:
            return True
        if project.get("client_id") == principal.user_id:
            return True
        return principal.role is Role.AGENT and project.get("agent_id") == principal.user_id

    async def _load_visible_project(self, principal: Principal, project_id: int) -> Dict[str, Any]:
        project = await self.db.projects.find_one({"_id": project_id})
        if not project or not self.is_visible(principal, project):
            raise NotFoundError("Project", project_id)
        return project

    # =========================================================================
    # SERIALIZATION
    # =========================================================================

    def project_to_response(self, project: Dict[str, Any]) -> Dict[str, Any]:
        result = serialize_doc(project)
        result["project_id"] = result.pop("_id")
        result["status_label"] = get_label(project.get("status"), PROJECT_STATUS_LABELS)
        result["currency_label"] = get_label(project.get("currency"), CURRENCY_LABELS)
        result["mutation_window_remaining_seconds"] = int(
            self.time_window.remaining(project.get("created_at")).total_seconds()
        )
        return result

    @staticmethod
    def phase_to_response(phase: Dict[str, Any]) -> Dict[str, Any]:
        result = serialize_doc(phase)
        result["phase_id"] = result.pop("_id")
        result["status_label"] = get_label(phase.get("status"), PHASE_STATUS_LABELS)
        return result

    async def _user_with_role(self, user_id: int, role: Role, field_name: str) -> int:
        user = await self.db.users.find_one({"_id": user_id})
        if not user or str(user.get("role", "")).lower() != role.value:
            raise ValidationError(f"'{field_name}' must reference an existing {role.value}", field=field_name)
        return user_id

    # =========================================================================
    # PROJECTS
    # =========================================================================

    async def create_project(self, principal: Principal, data: Mapping[str, Any]) -> Dict[str, Any]:
        title = _required_text(data.get("title"), "title")
        project_type = _required_text(data.get("type"), "type")

        client_id = principal.user_id
        agent_id = None
        if principal.is_admin:
            requested_client = to_safe_int(data.get("client_id"), "client_id")
            if requested_client is not None:
                client_id = await self._user_with_role(requested_client, Role.CLIENT, "client_id")
            requested_agent = to_safe_int(data.get("agent_id"), "agent_id")
            if requested_agent is not None:
                agent_id = await self._user_with_role(requested_agent, Role.AGENT, "agent_id")
        elif data.get("client_id") is not None or data.get("agent_id") is not None:
            logger.info(
                f"[PROJECTS] Ignoring client_id/agent_id sent by "
                f"{principal.role.value}:{principal.user_id}"
            )

        budget = data.get("budget")
        now = self.clock.now()
        project = {
            "_id": await self.sequence.next_id("projects"),
            "client_id": client_id,
            "agent_id": agent_id,
            "title": title,
            "type": project_type,
            "description": to_trim_or_none(data.get("description")),
            "budget": to_decimal128(parse_amount(budget, "budget")) if budget is not None else None,
            "currency": normalize_currency(data.get("currency"), DEFAULT_CURRENCY),
            "status": ProjectStatus.CREATED.value,
            "created_at": now,
            "updated_at": now
        }
        await self.db.projects.insert_one(project)

        logger.info(
            f"[PROJECTS] Created project {project['_id']} for client:{client_id} "
            f"by {principal.role.value}:{principal.user_id}"
        )
        return self.project_to_response(project)

    async def list_projects(self, principal: Principal) -> List[Dict[str, Any]]:
        projects = await self.db.projects.find(self.visibility_query(principal)).sort(
            [("created_at", -1), ("_id", -1)]
        ).to_list(length=None)
        return [self.project_to_response(p) for p in projects]

    async def get_project(self, principal: Principal, project_id: int) -> Dict[str, Any]:
        project = await self._load_visible_project(principal, project_id)
        result = self.project_to_response(project)
        result["phases"] = await self._phases_of(project_id)
        return result

    async def update_project(
        self,
        principal: Principal,
        project_id: int,
        changes: Mapping[str, Any]
    ) -> Dict[str, Any]:
        project = await self._load_visible_project(principal, project_id)
        self.time_window.ensure_can_mutate(project_record(project), principal, "project")

        fields: Dict[str, Any] = {}
        for name in ADMIN_ONLY_PROJECT_FIELDS:
            if changes.get(name) is not None and not principal.is_admin:
                logger.info(f"[PROJECTS] {principal.role.value}:{principal.user_id} tried to set {name}")
                raise ForbiddenError(f"Only an admin may change a project's {name}")

        if "title" in changes:
            fields["title"] = _required_text(changes["title"], "title")
        if "type" in changes:
            fields["type"] = _required_text(changes["type"], "type")
        if "description" in changes:
            fields["description"] = to_trim_or_none(changes["description"])
        if "budget" in changes:
            budget = changes["budget"]
            fields["budget"] = to_decimal128(parse_amount(budget, "budget")) if budget is not None else None
        if "currency" in changes:
            fields["currency"] = normalize_currency(changes["currency"], DEFAULT_CURRENCY)
        if changes.get("status") is not None:
            fields["status"] = _parse_enum(ProjectStatus, changes["status"], "status").value
        if changes.get("client_id") is not None:
            client_id = to_safe_int(changes["client_id"], "client_id")
            fields["client_id"] = await self._user_with_role(client_id, Role.CLIENT, "client_id")
        if changes.get("agent_id") is not None:
            agent_id = to_safe_int(changes["agent_id"], "agent_id")
            fields["agent_id"] = await self._user_with_role(agent_id, Role.AGENT, "agent_id")

        fields["updated_at"] = self.clock.now()
        updated = await self.db.projects.find_one_and_update(
            {"_id": project_id},
            {"$set": fields},
            return_document=ReturnDocument.AFTER
        )
        if updated is None:
            raise NotFoundError("Project", project_id)

        logger.info(f"[PROJECTS] Updated project {project_id} fields={sorted(fields)}")
        return self.project_to_response(updated)

    async def delete_project(self, principal: Principal, project_id: int) -> Dict[str, Any]:
        project = await self._load_visible_project(principal, project_id)
        self.time_window.ensure_can_mutate(project_record(project), principal, "project")

        async with unit_of_work(self.client, self.use_transactions) as session:
            referenced = await self.db.transactions.count_documents(
                {"project_id": project_id}, session=session
            )
            if referenced:
                raise LinkIntegrityError(
                    f"Project {project_id} is referenced by {referenced} transaction(s)",
                    {"project_id": project_id, "transactions": referenced}
                )

            # project first: a phase without its project is unreachable
            result = await self.db.projects.delete_one({"_id": project_id}, session=session)
            if result.deleted_count == 0:
                raise NotFoundError("Project", project_id)
            phases = await self.db.project_phases.delete_many({"project_id": project_id}, session=session)

        logger.info(
            f"[PROJECTS] Deleted project {project_id} with {phases.deleted_count} phase(s) "
            f"by {principal.role.value}:{principal.user_id}"
        )
        return {"message": "Project deleted", "project_id": project_id}

    # =========================================================================
    # PHASES
    # =========================================================================

    async def _phases_of(self, project_id: int) -> List[Dict[str, Any]]:
        phases = await self.db.project_phases.find({"project_id": project_id}).sort(
            [("created_at", 1), ("_id", 1)]
        ).to_list(length=None)
        return [self.phase_to_response(p) for p in phases]

    async def _load_phase(self, principal: Principal, phase_id: int):
        phase = await self.db.project_phases.find_one({"_id": phase_id})
        if not phase:
            raise NotFoundError("Phase", phase_id)
        project = await self.db.projects.find_one({"_id": phase["project_id"]})
        if not project or not self.is_visible(principal, project):
            raise NotFoundError("Phase", phase_id)
        return phase, project

    async def create_phase(self, principal: Principal, data: Mapping[str, Any]) -> Dict[str, Any]:
        project_id = to_safe_int(data.get("project_id"), "project_id")
        if project_id is None:
            raise ValidationError("'project_id' is required", field="project_id")
        title = _required_text(data.get("title"), "title")
        _check_dates(data.get("start_date"), data.get("end_date"))

        project = await self._load_visible_project(principal, project_id)
        self.time_window.ensure_can_mutate(project_record(project), principal, "project phase")

        now = self.clock.now()
        phase = {
            "_id": await self.sequence.next_id("project_phases"),
            "project_id": project_id,
            "title": title,
            "description": to_trim_or_none(data.get("description")),
            "start_date": to_naive_utc(data.get("start_date")),
            "end_date": to_naive_utc(data.get("end_date")),
            "status": PhaseStatus.PENDING.value,
            "progress": 0,
            "created_at": now,
            "updated_at": now
        }
        await self.db.project_phases.insert_one(phase)

        logger.info(f"[PROJECTS] Created phase {phase['_id']} on project {project_id}")
        return self.phase_to_response(phase)

    async def list_phases(self, principal: Principal, project_id: int) -> List[Dict[str, Any]]:
        await self._load_visible_project(principal, project_id)
        return await self._phases_of(project_id)

    async def update_phase(
        self,
        principal: Principal,
        phase_id: int,
        changes: Mapping[str, Any]
    ) -> Dict[str, Any]:
        phase, project = await self._load_phase(principal, phase_id)
        self.time_window.ensure_can_mutate(project_record(project), principal, "project phase")

        fields: Dict[str, Any] = {}
        if "title" in changes:
            fields["title"] = _required_text(changes["title"], "title")
        if "description" in changes:
            fields["description"] = to_trim_or_none(changes["description"])
        if "start_date" in changes:
            fields["start_date"] = to_naive_utc(changes["start_date"])
        if "end_date" in changes:
            fields["end_date"] = to_naive_utc(changes["end_date"])
        if changes.get("status") is not None:
            fields["status"] = _parse_enum(PhaseStatus, changes["status"], "status").value
        if changes.get("progress") is not None:
            fields["progress"] = _parse_progress(changes["progress"])

        _check_dates(
            fields.get("start_date", phase.get("start_date")),
            fields.get("end_date", phase.get("end_date"))
        )

        fields["updated_at"] = self.clock.now()
        updated = await self.db.project_phases.find_one_and_update(
            {"_id": phase_id},
            {"$set": fields},
            return_document=ReturnDocument.AFTER
        )
        if updated is None:
            raise NotFoundError("Phase", phase_id)

        logger.info(f"[PROJECTS] Updated phase {phase_id} fields={sorted(fields)}")
        return self.phase_to_response(updated)

    async def delete_phase(self, principal: Principal, phase_id: int) -> Dict[str, Any]:
        phase, project = await self._load_phase(principal, phase_id)
        self.time_window.ensure_can_mutate(project_record(project), principal, "project phase")

        await self.db.project_phases.delete_one({"_id": phase_id})

        logger.info(f"[PROJECTS] Deleted phase {phase_id} of project {phase['project_id']}")
        return {"message": "Phase deleted", "phase_id": phase_id}
