# Project & Phase API Endpoints

from fastapi import APIRouter, status, Depends
import logging

from models import ProjectCreate, ProjectUpdate, ProjectPhaseCreate, ProjectPhaseUpdate
from project_service import ProjectService
from permissions import PermissionChecker
from auth import get_current_user
from ledger_routes import to_http_exception
from core.errors import LedgerError

logger = logging.getLogger(__name__)


def create_project_routes(
    project_service: ProjectService,
    permission_checker: PermissionChecker
) -> APIRouter:
    """Create the project/phase API router"""

    router = APIRouter(prefix="/api", tags=["Projects"])

    # ============================================
    # PROJECTS
    # ============================================

    @router.post("/projects", status_code=status.HTTP_201_CREATED)
    async def create_project(
        project_data: ProjectCreate,
        current_user: dict = Depends(get_current_user)
    ):
        """Create project (admins may create for another client)"""
        principal = await permission_checker.get_authenticated_user(current_user)
        try:
            return await project_service.create_project(principal, project_data.dict())
        except LedgerError as e:
            raise to_http_exception(e)

    @router.get("/projects")
    async def list_projects(current_user: dict = Depends(get_current_user)):
        principal = await permission_checker.get_authenticated_user(current_user)
        return await project_service.list_projects(principal)

    @router.get("/projects/{project_id}")
    async def get_project(
        project_id: int,
        current_user: dict = Depends(get_current_user)
    ):
        """Project detail with its phases"""
        principal = await permission_checker.get_authenticated_user(current_user)
        try:
            return await project_service.get_project(principal, project_id)
        except LedgerError as e:
            raise to_http_exception(e)

    @router.put("/projects/{project_id}")
    async def update_project(
        project_id: int,
        project_data: ProjectUpdate,
        current_user: dict = Depends(get_current_user)
    ):
        principal = await permission_checker.get_authenticated_user(current_user)
        try:
            return await project_service.update_project(
                principal, project_id, project_data.dict(exclude_unset=True)
            )
        except LedgerError as e:
            raise to_http_exception(e)

    @router.delete("/projects/{project_id}")
    async def delete_project(
        project_id: int,
        current_user: dict = Depends(get_current_user)
    ):
        principal = await permission_checker.get_authenticated_user(current_user)
        try:
            return await project_service.delete_project(principal, project_id)
        except LedgerError as e:
            raise to_http_exception(e)

    # ============================================
    # PHASES
    # ============================================

    @router.post("/project-phases", status_code=status.HTTP_201_CREATED)
    async def create_phase(
        phase_data: ProjectPhaseCreate,
        current_user: dict = Depends(get_current_user)
    ):
        principal = await permission_checker.get_authenticated_user(current_user)
        try:
            return await project_service.create_phase(principal, phase_data.dict())
        except LedgerError as e:
            raise to_http_exception(e)

    @router.get("/projects/{project_id}/phases")
    async def list_phases(
        project_id: int,
        current_user: dict = Depends(get_current_user)
    ):
        principal = await permission_checker.get_authenticated_user(current_user)
        try:
            return await project_service.list_phases(principal, project_id)
        except LedgerError as e:
            raise to_http_exception(e)

    @router.put("/project-phases/{phase_id}")
    async def update_phase(
        phase_id: int,
        phase_data: ProjectPhaseUpdate,
        current_user: dict = Depends(get_current_user)
    ):
        principal = await permission_checker.get_authenticated_user(current_user)
        try:
            return await project_service.update_phase(
                principal, phase_id, phase_data.dict(exclude_unset=True)
            )
        except LedgerError as e:
            raise to_http_exception(e)

    @router.delete("/project-phases/{phase_id}")
    async def delete_phase(
        phase_id: int,
        current_user: dict = Depends(get_current_user)
    ):
        principal = await permission_checker.get_authenticated_user(current_user)
        try:
            return await project_service.delete_phase(principal, phase_id)
        except LedgerError as e:
            raise to_http_exception(e)

    return router
