"""
AUDIT LOGGER - Database-integrated audit trail
==============================================

Every project state change is recorded in project_state_transitions.
Runs as a subscriber of ProjectStateChanged; a failed write raises so the
dispatcher can retry it, and never affects the transition itself.
"""

from typing import List
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from events import ProjectStateChanged
from logging_config import get_logger
from models import ProjectStateTransition

logger = get_logger(__name__)


class AuditSubscriber:
    """
    Writes one ProjectStateTransition row per ProjectStateChanged event.

    Usage:
        audit = AuditSubscriber(session_factory)
        dispatcher.subscribe(ProjectStateChanged, audit.handle)
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def handle(self, event: ProjectStateChanged) -> None:
        async with self._session_factory() as session:
            session.add(ProjectStateTransition(
                project_id=event.project_id,
                from_state=event.old_state,
                to_state=event.new_state,
                actor_id=event.actor_id,
                transitioned_at=event.timestamp,
            ))
            await session.commit()

        logger.info(
            "audit_transition_recorded",
            project_id=str(event.project_id),
            from_state=event.old_state,
            to_state=event.new_state,
            actor_id=event.actor_id,
        )

    async def history(self, project_id: UUID) -> List[ProjectStateTransition]:
        """Audit trail of a project, oldest first."""
        stmt = (
            select(ProjectStateTransition)
            .where(ProjectStateTransition.project_id == project_id)
            .order_by(ProjectStateTransition.transitioned_at.asc(), ProjectStateTransition.created_at.asc())
        )
        async with self._session_factory() as session:
            return list((await session.execute(stmt)).scalars().all())
