"""
Conflict Service

Per-project detection run: detect → apply to the conflict graph →
refresh affected municipalities → emit ConflictDetected when something new
was linked.
Also aggregate conflict statistics for coordinators.
"""

from datetime import date
from typing import List, Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from conflict_config import ACTIVE_PROJECT_STATES
from conflict_detector import ConflictDetectionEngine, ConflictDetectionResult
from conflict_graph import ConflictGraphMaintainer
from events import ConflictDetected
from exceptions import BasePermitException, ConflictDetectionFailed, ProjectNotFound
from geometry import DateInterval, parse_geometry
from infrastructure.uow import UnitOfWork
from logging_config import get_logger
from models import Project, ProjectConflict
from schemas import ConflictStatistics
from spatial_query import SpatialQueryLayer

logger = get_logger(__name__)


class ConflictService:

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        dispatcher,
        queries: Optional[SpatialQueryLayer] = None,
        engine: Optional[ConflictDetectionEngine] = None,
        maintainer: Optional[ConflictGraphMaintainer] = None,
    ):
        self._session_factory = session_factory
        self._dispatcher = dispatcher
        self.queries = queries or SpatialQueryLayer(session_factory)
        self.engine = engine or ConflictDetectionEngine(self.queries)
        self.maintainer = maintainer or ConflictGraphMaintainer(session_factory)

    async def run_for_project(self, project_id: UUID, timeout: Optional[float] = None) -> ConflictDetectionResult:
        """
        Run detection for a stored project and persist the verdict.

        ConflictDetected is published only when the run links something new,
        so re-running with an unchanged verdict does not re-notify.

        Raises:
            ProjectNotFound
            ConflictDetectionFailed / ConflictDetectionTimeout: detection or
                persisting its verdict failed
        """
        try:
            project = await self.queries.find_project_by_id(project_id)
            if project is None:
                raise ProjectNotFound(str(project_id))

            geometry = parse_geometry(project.geometry)
            result = await self.engine.detect_conflicts(
                geometry,
                project.interval,
                exclude_project_id=project_id,
                timeout=timeout,
            )

            report = await self.maintainer.apply_conflict_result(project_id, result)
            municipalities = await self.queries.find_municipalities_intersecting(geometry)
            async with UnitOfWork(self._session_factory) as uow:
                await uow.projects.update_affected_municipalities(uow.session, project_id, municipalities)
        except BasePermitException:
            raise
        except Exception as e:
            logger.error(
                "conflict_run_failed",
                project_id=str(project_id),
                error_type=type(e).__name__,
                error=str(e),
            )
            raise ConflictDetectionFailed("Conflict detection run failed", cause=e) from e

        if result.has_conflict and report.has_news:
            self._dispatcher.publish(ConflictDetected(
                project_id=project.id,
                project_name=project.name,
                applicant_id=project.applicant_id,
                conflicting_project_ids=result.conflicting_project_ids,
                moratorium_ids=result.moratorium_ids,
            ))

        logger.info(
            "project_conflicts_evaluated",
            project_id=str(project_id),
            has_conflict=result.has_conflict,
            newly_linked=len(report.newly_linked),
            detached=len(report.detached),
            notified=result.has_conflict and report.has_news,
            municipalities=municipalities,
        )
        return result

    async def get_conflict_statistics(
        self,
        municipality_codes: Optional[List[str]] = None,
        start: Optional[date] = None,
        end: Optional[date] = None,
    ) -> ConflictStatistics:
        """Counts over active projects, optionally narrowed by territory and dates."""
        async with self._session_factory() as session:
            stmt = select(Project).where(Project.state.in_(ACTIVE_PROJECT_STATES))
            if start is not None:
                stmt = stmt.where(Project.end_date >= start)
            if end is not None:
                stmt = stmt.where(Project.start_date <= end)
            projects = [
                project for project in (await session.execute(stmt)).scalars().all()
                if not municipality_codes
                or set(project.affected_municipalities or []) & set(municipality_codes)
            ]

            project_ids = [project.id for project in projects]
            linked = set()
            if project_ids:
                linked_stmt = select(ProjectConflict.project_id).where(
                    ProjectConflict.project_id.in_(project_ids)
                ).distinct()
                linked = {row[0] for row in (await session.execute(linked_stmt)).all()}

        violations = 0
        for project in projects:
            moratoriums = await self.queries.find_overlapping_moratoriums(
                parse_geometry(project.geometry),
                DateInterval(start=project.start_date, end=project.end_date),
            )
            if moratoriums:
                violations += 1

        return ConflictStatistics(
            total_projects=len(projects),
            projects_with_conflicts=sum(1 for project in projects if project.has_conflict),
            spatial_conflicts=len(linked),
            moratorium_violations=violations,
        )
