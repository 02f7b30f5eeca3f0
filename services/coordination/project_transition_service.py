"""
PROJECT TRANSITION SERVICE - Application Operation
==================================================

ARCHITECTURE:
- Domain Layer: domain/project_domain_service.py - pure lifecycle rules
- Application Layer: this file - load, transition, commit, emit
- Infrastructure: infrastructure/uow.py - transactions and row locks

Submitting for approval (→ pending_approval) runs conflict detection
synchronously before returning. Detection is advisory: its verdict never
blocks the transition. If detection itself fails, the project is flagged
conflict_verification_pending instead of passing as conflict-free.
"""
from typing import Any, Dict, Literal, Optional, Union
from uuid import UUID

from pydantic import BaseModel

from conflict_config import ACTIVE_PROJECT_STATES
from conflict_detector import ConflictDetectionResult
from domain.project_domain_service import project_domain_service
from events import ProjectStateChanged
from exceptions import ConflictDetectionFailed, InvalidTransition, ProjectNotFound
from infrastructure.uow import UnitOfWork
from logging_config import get_logger, log_project_transition
from models import ProjectState
from schemas import ProjectSnapshot

logger = get_logger(__name__)


class TransitionOutcome(BaseModel):
    project: ProjectSnapshot
    event: ProjectStateChanged
    conflict_check: Literal["not_required", "completed", "failed"] = "not_required"
    conflicts: Optional[ConflictDetectionResult] = None
    error: Optional[Dict[str, Any]] = None


class ProjectTransitionService:

    def __init__(self, session_factory, dispatcher, conflict_service):
        self._session_factory = session_factory
        self._dispatcher = dispatcher
        self._conflict_service = conflict_service
        self._domain = project_domain_service

    async def request_transition(
        self,
        project_id: UUID,
        to_state: Union[ProjectState, str],
        actor_id: str,
    ) -> TransitionOutcome:
        """
        Move a project to `to_state`.

        Raises:
            ProjectNotFound
            InvalidTransition: nothing is written, project unchanged
        """
        try:
            async with UnitOfWork(self._session_factory) as uow:
                project = await uow.projects.get_for_update(uow.session, project_id)
                if project is None:
                    raise ProjectNotFound(str(project_id))

                event = self._domain.transition(project, to_state, actor_id)
                await uow.session.flush()

                detached = []
                if event.new_state not in ACTIVE_PROJECT_STATES:
                    # Inactive projects take no part in the conflict graph
                    detached = await uow.projects.detach_conflicts(uow.session, project_id)
        except InvalidTransition as e:
            logger.warning(
                "project_transition_rejected",
                project_id=str(project_id),
                from_state=e.details.get("from_state"),
                to_state=e.details.get("to_state"),
                actor_id=actor_id,
            )
            raise

        log_project_transition(str(project_id), event.old_state, event.new_state, actor_id)
        if detached:
            logger.info(
                "project_detached_from_conflicts",
                project_id=str(project_id),
                counterparts=[str(other_id) for other_id in detached],
            )
        self._dispatcher.publish(event)

        outcome = {"event": event}
        if event.new_state == ProjectState.PENDING_APPROVAL.value:
            outcome.update(await self._check_submission(project_id))

        snapshot = await self._conflict_service.queries.find_project_by_id(project_id)
        return TransitionOutcome(project=snapshot, **outcome)

    async def _check_submission(self, project_id: UUID) -> dict:
        try:
            result = await self._conflict_service.run_for_project(project_id)
        except ConflictDetectionFailed as e:
            logger.error(
                "submission_conflict_check_failed",
                project_id=str(project_id),
                error_type=type(e).__name__,
                error=e.message,
            )
            async with UnitOfWork(self._session_factory) as uow:
                await uow.projects.set_verification_pending(uow.session, project_id, True)
            return {"conflict_check": "failed", "error": e.to_dict()}

        return {"conflict_check": "completed", "conflicts": result}
