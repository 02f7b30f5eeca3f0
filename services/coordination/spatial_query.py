"""
Spatial-Temporal Query Layer

Translates a geometry + interval into primitive, read-only queries against
the persistence boundary. Candidates only: conflict decisions are made by
the detection engine.

Each query runs in its own session, so calls are safe to run concurrently.
The database narrows candidates (state, dates, bounding box grown by the
buffer); the exact metric predicate then runs on the candidates with shapely.
"""
from typing import List, Optional
from uuid import UUID

from shapely.geometry import shape as to_shape
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from conflict_config import ACTIVE_PROJECT_STATES, CONFLICT_BUFFER_METERS
from geometry import DateInterval, Geometry, expand_bounds, to_shapely, within_distance
from logging_config import get_logger
from models import Moratorium, Municipality, Project
from schemas import MoratoriumSnapshot, ProjectSnapshot

logger = get_logger(__name__)


def _bbox_filter(model, bounds):
    min_lon, min_lat, max_lon, max_lat = bounds
    return (
        model.max_lon >= min_lon,
        model.min_lon <= max_lon,
        model.max_lat >= min_lat,
        model.min_lat <= max_lat,
    )


class SpatialQueryLayer:

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def find_active_projects_near(
        self,
        geometry: Geometry,
        buffer_meters: float = CONFLICT_BUFFER_METERS,
        exclude_id: Optional[UUID] = None,
    ) -> List[ProjectSnapshot]:
        """
        Projects in an active state whose geometry lies within `buffer_meters`
        of `geometry`, most recently created first.
        """
        query_shape = to_shapely(geometry)
        stmt = (
            select(Project)
            .where(Project.state.in_(ACTIVE_PROJECT_STATES))
            .where(*_bbox_filter(Project, expand_bounds(query_shape.bounds, buffer_meters)))
            .order_by(Project.created_at.desc(), Project.id.desc())
        )
        if exclude_id is not None:
            stmt = stmt.where(Project.id != exclude_id)

        async with self._session_factory() as session:
            candidates = [
                ProjectSnapshot.model_validate(project)
                for project in (await session.execute(stmt)).scalars().all()
            ]

        matches = [
            candidate for candidate in candidates
            if within_distance(query_shape, to_shape(candidate.geometry), buffer_meters)
        ]
        logger.debug(
            "active_projects_near",
            candidates=len(candidates),
            matches=len(matches),
            buffer_meters=buffer_meters,
        )
        return matches

    async def find_overlapping_moratoriums(
        self,
        geometry: Geometry,
        interval: DateInterval,
    ) -> List[MoratoriumSnapshot]:
        """
        Moratoriums whose validity interval intersects `interval` and whose
        geometry intersects `geometry`, most recently created first.
        """
        query_shape = to_shapely(geometry)
        stmt = (
            select(Moratorium)
            .where(Moratorium.valid_from <= interval.end)
            .where(Moratorium.valid_to >= interval.start)
            .where(*_bbox_filter(Moratorium, query_shape.bounds))
            .order_by(Moratorium.created_at.desc(), Moratorium.id.desc())
        )

        async with self._session_factory() as session:
            candidates = [
                MoratoriumSnapshot.model_validate(moratorium)
                for moratorium in (await session.execute(stmt)).scalars().all()
            ]

        return [
            candidate for candidate in candidates
            if query_shape.intersects(to_shape(candidate.geometry))
        ]

    async def find_active_projects_in_area(
        self,
        geometry: Geometry,
        interval: DateInterval,
    ) -> List[ProjectSnapshot]:
        """Active projects touching an area during an interval (moratorium re-runs)."""
        query_shape = to_shapely(geometry)
        stmt = (
            select(Project)
            .where(Project.state.in_(ACTIVE_PROJECT_STATES))
            .where(Project.start_date <= interval.end)
            .where(Project.end_date >= interval.start)
            .where(*_bbox_filter(Project, query_shape.bounds))
            .order_by(Project.created_at.desc(), Project.id.desc())
        )

        async with self._session_factory() as session:
            candidates = [
                ProjectSnapshot.model_validate(project)
                for project in (await session.execute(stmt)).scalars().all()
            ]

        return [
            candidate for candidate in candidates
            if query_shape.intersects(to_shape(candidate.geometry))
        ]

    async def find_project_by_id(self, project_id: UUID) -> Optional[ProjectSnapshot]:
        async with self._session_factory() as session:
            project = (
                await session.execute(select(Project).where(Project.id == project_id))
            ).scalar_one_or_none()
            return ProjectSnapshot.model_validate(project) if project is not None else None

    async def find_municipalities_intersecting(self, geometry: Geometry) -> List[str]:
        query_shape = to_shapely(geometry)
        async with self._session_factory() as session:
            rows = (await session.execute(select(Municipality.code, Municipality.geometry))).all()

        return sorted(
            code for code, outline in rows
            if query_shape.intersects(to_shape(outline))
        )
