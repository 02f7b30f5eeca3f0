"""
Projects API Endpoints
Thin wrappers over ProjectService / ProjectTransitionService / ConflictService.
"""
import uuid
from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, Query

from api.dependencies import Services, get_services, map_exception_to_http
from conflict_detector import ConflictDetectionResult
from exceptions import BasePermitException, ProjectNotFound
from models import ProjectState
from schemas import (
    ProjectCreate,
    ProjectPage,
    ProjectSnapshot,
    ProjectUpdate,
    StateTransitionRecord,
    TransitionRequest,
    TransitionResponse,
)

router = APIRouter(prefix="/projects", tags=["projects"])


@router.post(
    "",
    response_model=ProjectSnapshot,
    status_code=201,
    responses={422: {"model": dict, "description": "Invalid geometry or date range"}},
)
async def create_project(
    payload: ProjectCreate,
    services: Services = Depends(get_services),
) -> ProjectSnapshot:
    """Register a new project in draft."""
    try:
        return await services.projects.create_project(payload)
    except BasePermitException as e:
        raise map_exception_to_http(e) from e


@router.get("", response_model=ProjectPage, responses={422: {"model": dict, "description": "Reversed date filter"}})
async def list_projects(
    state: Optional[ProjectState] = Query(None),
    municipality: Optional[str] = Query(None, description="Affected municipality code"),
    applicant_id: Optional[str] = Query(None),
    has_conflict: Optional[bool] = Query(None),
    work_category: Optional[str] = Query(None),
    start_date: Optional[date] = Query(None, description="Projects running on or after this day"),
    end_date: Optional[date] = Query(None, description="Projects running on or before this day"),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, description="Capped at 100"),
    services: Services = Depends(get_services),
) -> ProjectPage:
    """List projects, newest first."""
    try:
        return await services.projects.list_projects(
            state=state,
            municipality=municipality,
            applicant_id=applicant_id,
            has_conflict=has_conflict,
            work_category=work_category,
            start_date=start_date,
            end_date=end_date,
            page=page,
            limit=limit,
        )
    except BasePermitException as e:
        raise map_exception_to_http(e) from e


@router.get(
    "/{project_id}",
    response_model=ProjectSnapshot,
    responses={404: {"model": dict, "description": "Project not found"}},
)
async def get_project(
    project_id: uuid.UUID,
    services: Services = Depends(get_services),
) -> ProjectSnapshot:
    try:
        return await services.projects.get_project(project_id)
    except BasePermitException as e:
        raise map_exception_to_http(e) from e


@router.put(
    "/{project_id}",
    response_model=ProjectSnapshot,
    responses={
        404: {"model": dict, "description": "Project not found"},
        409: {"model": dict, "description": "Project is in a final state"},
        422: {"model": dict, "description": "Invalid geometry or date range"},
    },
)
async def update_project(
    project_id: uuid.UUID,
    payload: ProjectUpdate,
    services: Services = Depends(get_services),
) -> ProjectSnapshot:
    """
    Edit a project. Changing the footprint or dates of an active project
    re-runs conflict detection before responding.
    """
    try:
        return await services.projects.update_project(project_id, payload)
    except BasePermitException as e:
        raise map_exception_to_http(e) from e


@router.delete(
    "/{project_id}",
    responses={
        404: {"model": dict, "description": "Project not found"},
        409: {"model": dict, "description": "Project can no longer be cancelled"},
    },
)
async def delete_project(
    project_id: uuid.UUID,
    actor_id: str = Query(..., description="User performing the deletion"),
    services: Services = Depends(get_services),
):
    """
    Delete a draft project. Non-draft projects are cancelled instead,
    where the lifecycle allows it.
    """
    try:
        event = await services.projects.delete_project(project_id, actor_id)
    except BasePermitException as e:
        raise map_exception_to_http(e) from e

    if event is None:
        return {"status": "deleted", "project_id": str(project_id)}
    return {"status": "cancelled", "project_id": str(project_id), "from_state": event.old_state}


@router.post(
    "/{project_id}/transition",
    response_model=TransitionResponse,
    responses={
        404: {"model": dict, "description": "Project not found"},
        409: {"model": dict, "description": "Transition not allowed"},
    },
)
async def transition_project(
    project_id: uuid.UUID,
    payload: TransitionRequest,
    services: Services = Depends(get_services),
) -> TransitionResponse:
    """
    Move a project through its lifecycle.

    Submitting for approval runs conflict detection before responding.
    A detection failure does not undo the transition: the project is
    flagged for re-verification and conflict_check is "failed".
    """
    try:
        outcome = await services.transitions.request_transition(
            project_id, payload.to_state, payload.actor_id
        )
    except BasePermitException as e:
        raise map_exception_to_http(e) from e

    return TransitionResponse(
        project=outcome.project,
        from_state=outcome.event.old_state,
        to_state=outcome.event.new_state,
        conflict_check=outcome.conflict_check,
        conflicts=outcome.conflicts.summary() if outcome.conflicts is not None else None,
        error=outcome.error,
    )


@router.get(
    "/{project_id}/conflicts",
    response_model=ConflictDetectionResult,
    responses={
        404: {"model": dict, "description": "Project not found"},
        503: {"model": dict, "description": "Conflict detection failed"},
        504: {"model": dict, "description": "Conflict detection timed out"},
    },
)
async def project_conflicts(
    project_id: uuid.UUID,
    services: Services = Depends(get_services),
) -> ConflictDetectionResult:
    """Re-run detection for a stored project and return the verdict."""
    try:
        return await services.conflicts.run_for_project(project_id)
    except BasePermitException as e:
        raise map_exception_to_http(e) from e


@router.get(
    "/{project_id}/history",
    response_model=List[StateTransitionRecord],
    responses={404: {"model": dict, "description": "Project not found"}},
)
async def project_history(
    project_id: uuid.UUID,
    services: Services = Depends(get_services),
) -> List[StateTransitionRecord]:
    """Lifecycle audit trail, oldest first."""
    try:
        if await services.conflicts.queries.find_project_by_id(project_id) is None:
            raise ProjectNotFound(str(project_id))
    except BasePermitException as e:
        raise map_exception_to_http(e) from e

    rows = await services.audit.history(project_id)
    return [StateTransitionRecord.model_validate(row) for row in rows]
