"""
Project Service

Registration, editing, listing and removal of projects. Lifecycle changes go
through ProjectTransitionService; conflict fields are never set from user
input. Editing the footprint or dates of an active project re-runs conflict
detection.
"""
import math
from datetime import date
from typing import Optional, Union
from uuid import UUID

from conflict_config import ACTIVE_PROJECT_STATES
from domain.project_domain_service import TERMINAL_STATES
from events import ProjectStateChanged
from exceptions import ConflictDetectionFailed, ProjectNotEditable, ProjectNotFound
from geometry import DateInterval, geometry_bounds, parse_geometry, to_geojson
from infrastructure.uow import UnitOfWork
from logging_config import get_logger
from models import Project, ProjectState
from schemas import ProjectCreate, ProjectPage, ProjectSnapshot, ProjectUpdate

logger = get_logger(__name__)

MAX_PAGE_SIZE = 100


class ProjectService:

    def __init__(self, session_factory, transition_service, conflict_service):
        self._session_factory = session_factory
        self._transition_service = transition_service
        self._conflict_service = conflict_service
        self._queries = conflict_service.queries

    async def create_project(self, data: ProjectCreate) -> ProjectSnapshot:
        """
        Register a project in draft.

        Raises:
            InvalidGeometry, InvalidDateRange
        """
        geometry = parse_geometry(data.geometry)
        DateInterval(start=data.start_date, end=data.end_date)
        municipalities = await self._queries.find_municipalities_intersecting(geometry)

        project = Project(
            name=data.name,
            applicant_id=data.applicant_id,
            contractor_organization=data.contractor_organization,
            work_type=data.work_type,
            work_category=data.work_category,
            description=data.description,
            _state=ProjectState.DRAFT.value,
            start_date=data.start_date,
            end_date=data.end_date,
            geometry=to_geojson(geometry),
            has_conflict=False,
            conflict_verification_pending=False,
            violated_moratorium_ids=[],
            affected_municipalities=municipalities,
            conflict_links=[],
        )
        project.set_bounds(geometry_bounds(geometry))

        async with UnitOfWork(self._session_factory) as uow:
            await uow.projects.save(uow.session, project)
            snapshot = ProjectSnapshot.model_validate(project)

        logger.info("project_created", project_id=str(snapshot.id), applicant_id=data.applicant_id)
        return snapshot

    async def get_project(self, project_id: UUID) -> ProjectSnapshot:
        """
        Raises:
            ProjectNotFound
        """
        snapshot = await self._queries.find_project_by_id(project_id)
        if snapshot is None:
            raise ProjectNotFound(str(project_id))
        return snapshot

    async def list_projects(
        self,
        state: Optional[Union[ProjectState, str]] = None,
        municipality: Optional[str] = None,
        applicant_id: Optional[str] = None,
        has_conflict: Optional[bool] = None,
        work_category: Optional[str] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        page: int = 1,
        limit: int = 20,
    ) -> ProjectPage:
        """
        Filtered, paginated listing, newest first.

        start_date / end_date select projects whose interval overlaps the
        given one (either bound may be omitted). `limit` is capped at 100.

        Raises:
            InvalidDateRange: both bounds given and reversed
        """
        page = max(page, 1)
        limit = min(max(limit, 1), MAX_PAGE_SIZE)

        filters = []
        if state is not None:
            filters.append(Project.state == ProjectState(state).value)
        if applicant_id is not None:
            filters.append(Project.applicant_id == applicant_id)
        if has_conflict is not None:
            filters.append(Project.has_conflict == has_conflict)
        if work_category is not None:
            filters.append(Project.work_category == work_category)
        if start_date is not None and end_date is not None:
            DateInterval(start=start_date, end=end_date)
        if start_date is not None:
            filters.append(Project.end_date >= start_date)
        if end_date is not None:
            filters.append(Project.start_date <= end_date)

        offset = (page - 1) * limit
        async with UnitOfWork(self._session_factory) as uow:
            if municipality is None:
                rows, total = await uow.projects.find_page(uow.session, filters, offset, limit)
            else:
                # Municipality codes live in a JSON list, matched after loading
                rows = [
                    row for row in await uow.projects.find_all(uow.session, filters)
                    if municipality in (row.affected_municipalities or [])
                ]
                total = len(rows)
                rows = rows[offset:offset + limit]
            items = [ProjectSnapshot.model_validate(row) for row in rows]

        return ProjectPage(
            items=items,
            total=total,
            page=page,
            limit=limit,
            total_pages=math.ceil(total / limit),
        )

    async def update_project(self, project_id: UUID, changes: ProjectUpdate) -> ProjectSnapshot:
        """
        Partial edit of a project that has not reached a final state.

        A changed footprint refreshes the bounding box and the affected
        municipalities. When the footprint or the dates of an active project
        change, detection is re-run; if that run fails the project is flagged
        conflict_verification_pending, the edit itself stays.

        Raises:
            ProjectNotFound
            ProjectNotEditable: completed, rejected or cancelled
            InvalidGeometry, InvalidDateRange: nothing is written
        """
        fields = changes.model_dump(exclude_unset=True, exclude_none=True, exclude={"actor_id"})
        geometry = parse_geometry(fields.pop("geometry")) if "geometry" in fields else None
        municipalities = (
            await self._queries.find_municipalities_intersecting(geometry) if geometry is not None else None
        )

        async with UnitOfWork(self._session_factory) as uow:
            project = await uow.projects.get_for_update(uow.session, project_id)
            if project is None:
                raise ProjectNotFound(str(project_id))
            if ProjectState(project.state) in TERMINAL_STATES:
                raise ProjectNotEditable(str(project_id), project.state)

            DateInterval(
                start=fields.get("start_date", project.start_date),
                end=fields.get("end_date", project.end_date),
            )
            if geometry is not None:
                project.geometry = to_geojson(geometry)
                project.set_bounds(geometry_bounds(geometry))
                project.affected_municipalities = municipalities
            for name, value in fields.items():
                setattr(project, name, value)
            await uow.session.flush()
            state = project.state

        changed = sorted(fields) + (["geometry"] if geometry is not None else [])
        logger.info(
            "project_updated",
            project_id=str(project_id),
            actor_id=changes.actor_id,
            fields=changed,
        )

        footprint_changed = geometry is not None or "start_date" in fields or "end_date" in fields
        if footprint_changed and state in ACTIVE_PROJECT_STATES:
            await self._recheck(project_id)

        return await self.get_project(project_id)

    async def delete_project(self, project_id: UUID, actor_id: str) -> Optional[ProjectStateChanged]:
        """
        Drafts are removed; any other project is cancelled instead.

        Returns the cancellation event, or None when the draft was deleted.

        Raises:
            ProjectNotFound
            InvalidTransition: cancellation not allowed from the current state
        """
        async with UnitOfWork(self._session_factory) as uow:
            project = await uow.projects.get_for_update(uow.session, project_id)
            if project is None:
                raise ProjectNotFound(str(project_id))
            if project.state == ProjectState.DRAFT.value:
                await uow.projects.delete(uow.session, project)
                logger.info("project_deleted", project_id=str(project_id), actor_id=actor_id)
                return None

        outcome = await self._transition_service.request_transition(
            project_id, ProjectState.CANCELLED, actor_id
        )
        return outcome.event

    async def _recheck(self, project_id: UUID) -> None:
        try:
            await self._conflict_service.run_for_project(project_id)
        except ConflictDetectionFailed as e:
            logger.error(
                "project_update_conflict_check_failed",
                project_id=str(project_id),
                error_type=type(e).__name__,
                error=e.message,
            )
            async with UnitOfWork(self._session_factory) as uow:
                await uow.projects.set_verification_pending(uow.session, project_id, True)
