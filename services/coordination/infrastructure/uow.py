"""
Unit of Work Pattern + Repositories - Infrastructure Layer
=========================================================
"""
from dataclasses import dataclass, field
from typing import Iterable, List
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy import func, or_, select, update, delete
from sqlalchemy.exc import IntegrityError

from models import Project, ProjectConflict, Moratorium


@dataclass
class SourceChange:
    """What a source recompute changed compared with the stored state."""
    added: List[UUID] = field(default_factory=list)
    added_moratoriums: List[str] = field(default_factory=list)
    detached: List[UUID] = field(default_factory=list)


class UnitOfWork:
    """
    Thin Unit of Work managing one transaction.

    Usage:
        async with UnitOfWork(session_factory) as uow:
            project = await uow.projects.get_for_update(uow.session, project_id)
            ...
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory
        self._session: AsyncSession | None = None
        self.projects = ProjectRepository()
        self.moratoriums = MoratoriumRepository()

    async def __aenter__(self) -> "UnitOfWork":
        self._session = self._session_factory()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Commit or rollback + close the session"""
        try:
            if exc_type is None:
                if self._session:
                    await self._session.commit()
            else:
                if self._session:
                    await self._session.rollback()
        finally:
            if self._session:
                await self._session.close()
                self._session = None

    @property
    def session(self) -> AsyncSession:
        if self._session is None:
            raise RuntimeError(
                "Session not available. Use 'async with UnitOfWork(...) as uow:' pattern."
            )
        return self._session


class ProjectRepository:
    """Project persistence, including the per-row conflict-field writes"""

    async def get_for_update(self, session, project_id) -> Project | None:
        """
        Load project with pessimistic lock (SELECT ... FOR UPDATE).
        """
        stmt = (
            select(Project)
            .where(Project.id == project_id)
            .with_for_update()
        )
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_ids_in_states(self, session, states: Iterable[str]) -> list:
        stmt = (
            select(Project.id)
            .where(Project.state.in_(list(states)))
            .order_by(Project.created_at.desc(), Project.id.desc())
        )
        result = await session.execute(stmt)
        return [row[0] for row in result.all()]

    async def find_page(self, session, filters: list, offset: int, limit: int) -> tuple:
        """One page of projects matching `filters`, newest first, plus the total count."""
        total = (await session.execute(
            select(func.count()).select_from(Project).where(*filters)
        )).scalar_one()
        stmt = (
            select(Project)
            .where(*filters)
            .order_by(Project.created_at.desc(), Project.id.desc())
            .offset(offset)
            .limit(limit)
        )
        rows = (await session.execute(stmt)).scalars().all()
        return list(rows), total

    async def find_all(self, session, filters: list) -> list:
        stmt = (
            select(Project)
            .where(*filters)
            .order_by(Project.created_at.desc(), Project.id.desc())
        )
        return list((await session.execute(stmt)).scalars().all())

    async def save(self, session, project: Project) -> None:
        """add + flush to obtain generated values"""
        session.add(project)
        await session.flush()

    async def delete(self, session, project: Project) -> None:
        await session.delete(project)
        await session.flush()

    async def replace_conflicts(self, session, project_id, conflicting_ids, moratorium_ids=()) -> SourceChange:
        """
        Source side of a detection run: the edge set is recomputed from scratch.

        Reverse edges (X -> source) for any X no longer in the set are
        removed as well and X's flag is recomputed, so a counterpart that
        left the active states does not keep listing the source.

        Caller holds the row lock on project_id.
        """
        conflicting_ids = list(dict.fromkeys(conflicting_ids))
        moratorium_ids = sorted({str(mid) for mid in moratorium_ids})

        previous_ids = set((await session.execute(
            select(ProjectConflict.conflicting_project_id)
            .where(ProjectConflict.project_id == project_id)
        )).scalars().all())
        previous_moratoriums = set((await session.execute(
            select(Project.violated_moratorium_ids).where(Project.id == project_id)
        )).scalar_one() or [])

        await session.execute(
            delete(ProjectConflict).where(
                ProjectConflict.project_id == project_id,
                ProjectConflict.conflicting_project_id.not_in(conflicting_ids),
            )
        )
        for conflicting_id in conflicting_ids:
            await self._insert_edge(session, project_id, conflicting_id)

        stale = sorted(set((await session.execute(
            select(ProjectConflict.project_id).where(
                ProjectConflict.conflicting_project_id == project_id,
                ProjectConflict.project_id.not_in(conflicting_ids),
            )
        )).scalars().all()), key=str)
        if stale:
            await session.execute(
                delete(ProjectConflict).where(
                    ProjectConflict.conflicting_project_id == project_id,
                    ProjectConflict.project_id.in_(stale),
                )
            )
            for other_id in stale:
                await self._refresh_flag(session, other_id)

        await session.execute(
            update(Project)
            .where(Project.id == project_id)
            .values(
                has_conflict=bool(conflicting_ids) or bool(moratorium_ids),
                violated_moratorium_ids=moratorium_ids,
                conflict_verification_pending=False,
            )
        )
        return SourceChange(
            added=[cid for cid in conflicting_ids if cid not in previous_ids],
            added_moratoriums=[mid for mid in moratorium_ids if mid not in previous_moratoriums],
            detached=stale,
        )

    async def detach_conflicts(self, session, project_id) -> list:
        """
        Remove every edge touching project_id, in both directions.

        Used when a project leaves the active states; returns the
        counterparts whose flag was recomputed.
        """
        others = set((await session.execute(
            select(ProjectConflict.project_id)
            .where(ProjectConflict.conflicting_project_id == project_id)
        )).scalars().all())
        await session.execute(
            delete(ProjectConflict).where(
                or_(
                    ProjectConflict.project_id == project_id,
                    ProjectConflict.conflicting_project_id == project_id,
                )
            )
        )
        others.discard(project_id)
        for other_id in sorted(others, key=str):
            await self._refresh_flag(session, other_id)
        await self._refresh_flag(session, project_id)
        return sorted(others, key=str)

    async def append_conflict(self, session, project_id, conflicting_id) -> bool:
        """
        Atomic "append id if absent, set flag".

        Returns True when the edge was added, False when it already existed.
        """
        added = await self._insert_edge(session, project_id, conflicting_id)
        if added:
            await session.execute(
                update(Project)
                .where(Project.id == project_id)
                .values(has_conflict=True)
            )
        return added

    async def set_verification_pending(self, session, project_id, pending: bool = True) -> None:
        await session.execute(
            update(Project)
            .where(Project.id == project_id)
            .values(conflict_verification_pending=pending)
        )

    async def update_affected_municipalities(self, session, project_id, codes) -> None:
        await session.execute(
            update(Project)
            .where(Project.id == project_id)
            .values(affected_municipalities=sorted(set(codes)))
        )

    async def _refresh_flag(self, session, project_id) -> None:
        """has_conflict := any remaining edge or any violated moratorium."""
        has_edge = (await session.execute(
            select(ProjectConflict.conflicting_project_id)
            .where(ProjectConflict.project_id == project_id)
            .limit(1)
        )).first() is not None
        moratoriums = (await session.execute(
            select(Project.violated_moratorium_ids).where(Project.id == project_id)
        )).scalar_one_or_none()
        await session.execute(
            update(Project)
            .where(Project.id == project_id)
            .values(has_conflict=has_edge or bool(moratoriums))
        )

    async def _insert_edge(self, session, project_id, conflicting_id) -> bool:
        values = {"project_id": project_id, "conflicting_project_id": conflicting_id}
        dialect = session.bind.dialect.name

        if dialect in ("postgresql", "sqlite"):
            if dialect == "postgresql":
                from sqlalchemy.dialects.postgresql import insert
            else:
                from sqlalchemy.dialects.sqlite import insert
            stmt = (
                insert(ProjectConflict)
                .values(**values)
                .on_conflict_do_nothing(index_elements=["project_id", "conflicting_project_id"])
                .returning(ProjectConflict.project_id)
            )
            result = await session.execute(stmt)
            return result.first() is not None

        # Other backends: the composite primary key still rejects duplicates
        try:
            async with session.begin_nested():
                session.add(ProjectConflict(**values))
            return True
        except IntegrityError:
            return False


class MoratoriumRepository:
    """Moratorium persistence - CRUD only"""

    async def get_for_update(self, session, moratorium_id) -> Moratorium | None:
        stmt = (
            select(Moratorium)
            .where(Moratorium.id == moratorium_id)
            .with_for_update()
        )
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    async def save(self, session, moratorium: Moratorium) -> None:
        session.add(moratorium)
        await session.flush()

    async def delete(self, session, moratorium: Moratorium) -> None:
        await session.delete(moratorium)
        await session.flush()
