"""
Moratorium Service

Create / update / delete of municipal work bans. Every change re-evaluates
the active projects the ban touches (before and after the change), so
project conflict flags never go stale.
"""
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import List, Optional
from uuid import UUID

from sqlalchemy import select

from batch_runner import BatchConflictRunner, BatchReport
from domain.moratorium_rules import validate_moratorium_geometry, validate_moratorium_period
from events import MoratoriumAction, MoratoriumChanged
from exceptions import MoratoriumNotEditable, MoratoriumNotFound
from geometry import DateInterval, geometry_bounds, to_geojson
from infrastructure.uow import UnitOfWork
from logging_config import get_logger
from models import Moratorium
from schemas import MoratoriumCreate, MoratoriumSnapshot, MoratoriumUpdate

logger = get_logger(__name__)


@dataclass
class MoratoriumChangeResult:
    moratorium: MoratoriumSnapshot
    action: MoratoriumAction
    rerun: BatchReport = field(default_factory=BatchReport)


class MoratoriumService:

    def __init__(self, session_factory, dispatcher, batch_runner: BatchConflictRunner, queries):
        self._session_factory = session_factory
        self._dispatcher = dispatcher
        self._batch_runner = batch_runner
        self._queries = queries

    async def create_moratorium(self, data: MoratoriumCreate) -> MoratoriumChangeResult:
        """
        Raises:
            InvalidGeometry: point or malformed geometry
            InvalidMoratorium: interval reversed or longer than 5 years
        """
        geometry = validate_moratorium_geometry(data.geometry)
        validate_moratorium_period(data.valid_from, data.valid_to)

        moratorium = Moratorium(
            name=data.name,
            geometry=to_geojson(geometry),
            reason=data.reason,
            reason_detail=data.reason_detail,
            valid_from=data.valid_from,
            valid_to=data.valid_to,
            exceptions=data.exceptions,
            created_by=data.created_by,
            municipality_code=data.municipality_code,
        )
        moratorium.set_bounds(geometry_bounds(geometry))

        async with UnitOfWork(self._session_factory) as uow:
            await uow.moratoriums.save(uow.session, moratorium)
            snapshot = MoratoriumSnapshot.model_validate(moratorium)

        logger.info(
            "moratorium_created",
            moratorium_id=str(snapshot.id),
            municipality_code=snapshot.municipality_code,
            valid_from=snapshot.valid_from.isoformat(),
            valid_to=snapshot.valid_to.isoformat(),
        )
        affected = await self._affected_project_ids(snapshot)
        return await self._after_change(snapshot, MoratoriumAction.CREATED, data.created_by, affected)

    async def update_moratorium(
        self,
        moratorium_id: UUID,
        changes: MoratoriumUpdate,
    ) -> MoratoriumChangeResult:
        """
        Creator-only edit. Projects affected before or after the edit are re-run.

        Raises:
            MoratoriumNotFound, MoratoriumNotEditable,
            InvalidGeometry, InvalidMoratorium
        """
        fields = changes.model_dump(exclude_unset=True, exclude_none=True, exclude={"actor_id"})

        async with UnitOfWork(self._session_factory) as uow:
            moratorium = await self._load_owned(uow, moratorium_id, changes.actor_id)
            before = MoratoriumSnapshot.model_validate(moratorium)

            valid_from = fields.get("valid_from", moratorium.valid_from)
            valid_to = fields.get("valid_to", moratorium.valid_to)
            validate_moratorium_period(valid_from, valid_to)

            if fields.get("geometry") is not None:
                geometry = validate_moratorium_geometry(fields.pop("geometry"))
                moratorium.geometry = to_geojson(geometry)
                moratorium.set_bounds(geometry_bounds(geometry))
            else:
                fields.pop("geometry", None)

            for name, value in fields.items():
                setattr(moratorium, name, value)
            await uow.session.flush()
            after = MoratoriumSnapshot.model_validate(moratorium)

        logger.info("moratorium_updated", moratorium_id=str(moratorium_id), fields=sorted(fields))

        affected = await self._affected_project_ids(before)
        affected += await self._affected_project_ids(after)
        return await self._after_change(after, MoratoriumAction.UPDATED, changes.actor_id, affected)

    async def delete_moratorium(self, moratorium_id: UUID, actor_id: str) -> MoratoriumChangeResult:
        """
        Raises:
            MoratoriumNotFound, MoratoriumNotEditable
        """
        async with UnitOfWork(self._session_factory) as uow:
            moratorium = await self._load_owned(uow, moratorium_id, actor_id)
            snapshot = MoratoriumSnapshot.model_validate(moratorium)
            await uow.moratoriums.delete(uow.session, moratorium)

        logger.info("moratorium_deleted", moratorium_id=str(moratorium_id), actor_id=actor_id)

        # Area lookup does not depend on the row, so it still works after deletion
        affected = await self._affected_project_ids(snapshot)
        return await self._after_change(snapshot, MoratoriumAction.DELETED, actor_id, affected)

    async def find_expiring_soon(self, days: int = 30, today: Optional[date] = None) -> List[MoratoriumSnapshot]:
        """Moratoriums still valid today whose validity ends within `days`."""
        today = today or date.today()
        stmt = (
            select(Moratorium)
            .where(Moratorium.valid_to >= today)
            .where(Moratorium.valid_to <= today + timedelta(days=days))
            .order_by(Moratorium.valid_to.asc(), Moratorium.id.asc())
        )
        async with self._session_factory() as session:
            rows = (await session.execute(stmt)).scalars().all()
            return [MoratoriumSnapshot.model_validate(row) for row in rows]

    async def _load_owned(self, uow: UnitOfWork, moratorium_id: UUID, actor_id: str) -> Moratorium:
        moratorium = await uow.moratoriums.get_for_update(uow.session, moratorium_id)
        if moratorium is None:
            raise MoratoriumNotFound(str(moratorium_id))
        if moratorium.created_by != actor_id:
            logger.warning(
                "moratorium_edit_forbidden",
                moratorium_id=str(moratorium_id),
                actor_id=actor_id,
                created_by=moratorium.created_by,
            )
            raise MoratoriumNotEditable(str(moratorium_id), actor_id)
        return moratorium

    async def _affected_project_ids(self, moratorium: MoratoriumSnapshot) -> List[UUID]:
        projects = await self._queries.find_active_projects_in_area(
            validate_moratorium_geometry(moratorium.geometry),
            DateInterval(start=moratorium.valid_from, end=moratorium.valid_to),
        )
        return [project.id for project in projects]

    async def _after_change(
        self,
        moratorium: MoratoriumSnapshot,
        action: MoratoriumAction,
        actor_id: str,
        affected: List[UUID],
    ) -> MoratoriumChangeResult:
        self._dispatcher.publish(MoratoriumChanged(
            moratorium_id=moratorium.id,
            action=action,
            municipality_code=moratorium.municipality_code,
            actor_id=actor_id,
        ))
        report = await self._batch_runner.run_batch(affected)
        return MoratoriumChangeResult(moratorium=moratorium, action=action, rerun=report)
