"""
Project Domain Service - pure domain layer
=========================================
No session, commit, async, logging or side effects.
Only the lifecycle rules and the event they produce.
"""
from datetime import datetime, timezone
from typing import FrozenSet, Union

from models import ProjectState
from events import ProjectStateChanged
from exceptions import InvalidTransition


# Source state → allowed targets. completed / rejected / cancelled are terminal.
TRANSITIONS = {
    ProjectState.DRAFT: frozenset({ProjectState.FORWARD_PLANNING, ProjectState.PENDING_APPROVAL}),
    ProjectState.FORWARD_PLANNING: frozenset({ProjectState.PENDING_APPROVAL}),
    ProjectState.PENDING_APPROVAL: frozenset({ProjectState.APPROVED, ProjectState.REJECTED}),
    ProjectState.APPROVED: frozenset({ProjectState.IN_PROGRESS, ProjectState.CANCELLED}),
    ProjectState.IN_PROGRESS: frozenset({ProjectState.COMPLETED}),
    ProjectState.COMPLETED: frozenset(),
    ProjectState.REJECTED: frozenset(),
    ProjectState.CANCELLED: frozenset(),
}

TERMINAL_STATES = frozenset(state for state, targets in TRANSITIONS.items() if not targets)


def _coerce(state: Union[ProjectState, str]) -> ProjectState:
    return state if isinstance(state, ProjectState) else ProjectState(state)


def allowed_transitions(state: Union[ProjectState, str]) -> FrozenSet[ProjectState]:
    return TRANSITIONS[_coerce(state)]


def can_transition(from_state: Union[ProjectState, str], to_state: Union[ProjectState, str]) -> bool:
    """Unknown state names are never a legal transition."""
    try:
        return _coerce(to_state) in TRANSITIONS[_coerce(from_state)]
    except ValueError:
        return False


class ProjectDomainService:
    """
    The single authority on which lifecycle transitions are legal.

    Responsibilities:
    - Validate transitions against TRANSITIONS
    - Change project state
    - Produce the ProjectStateChanged event

    Does NOT:
    - commit/flush
    - write audit records (subscribers do, from the event)
    - run conflict detection
    """

    def transition(self, project, to_state: Union[ProjectState, str], actor_id: str) -> ProjectStateChanged:
        """
        The ONLY way to change a project's state.

        Raises:
            InvalidTransition: target not allowed from the current state.
                The project is left untouched.
        """
        from_state = project._state

        if not can_transition(from_state, to_state):
            try:
                allowed = sorted(s.value for s in allowed_transitions(from_state))
            except ValueError:
                allowed = []
            raise InvalidTransition(
                project_id=str(project.id),
                from_state=str(from_state),
                to_state=to_state.value if isinstance(to_state, ProjectState) else str(to_state),
                allowed=allowed,
            )

        target = _coerce(to_state)
        project._state = target.value

        return ProjectStateChanged(
            project_id=project.id,
            old_state=from_state,
            new_state=target.value,
            actor_id=actor_id,
            timestamp=datetime.now(timezone.utc),
        )


project_domain_service = ProjectDomainService()
