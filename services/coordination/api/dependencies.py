"""
API wiring: the service graph shared by all routers, and the mapping of
domain exceptions to HTTP responses.
"""
from dataclasses import dataclass

from fastapi import HTTPException, Request

from audit_logger import AuditSubscriber
from batch_runner import BatchConflictRunner
from conflict_service import ConflictService
from events import ProjectStateChanged
from exceptions import BasePermitException, EXCEPTION_TO_STATUS
from moratorium_service import MoratoriumService
from notifications import LogNotifier, NotificationSubscriber
from project_service import ProjectService
from project_transition_service import ProjectTransitionService


@dataclass
class Services:
    conflicts: ConflictService
    transitions: ProjectTransitionService
    projects: ProjectService
    moratoriums: MoratoriumService
    batch_runner: BatchConflictRunner
    audit: AuditSubscriber
    notifier: object


def build_services(session_factory, dispatcher, notifier=None) -> Services:
    """Wire services and register the event subscribers on `dispatcher`."""
    notifier = notifier or LogNotifier()

    conflicts = ConflictService(session_factory, dispatcher)
    transitions = ProjectTransitionService(session_factory, dispatcher, conflicts)
    batch_runner = BatchConflictRunner(conflicts, session_factory)

    audit = AuditSubscriber(session_factory)
    dispatcher.subscribe(ProjectStateChanged, audit.handle)
    NotificationSubscriber(notifier).register(dispatcher)

    return Services(
        conflicts=conflicts,
        transitions=transitions,
        projects=ProjectService(session_factory, transitions, conflicts),
        moratoriums=MoratoriumService(session_factory, dispatcher, batch_runner, conflicts.queries),
        batch_runner=batch_runner,
        audit=audit,
        notifier=notifier,
    )


def get_services(request: Request) -> Services:
    return request.app.state.services


def status_for(exc: BasePermitException) -> int:
    """Most specific mapped status along the exception's class hierarchy."""
    for cls in type(exc).__mro__:
        if cls in EXCEPTION_TO_STATUS:
            return EXCEPTION_TO_STATUS[cls]
    return 500


def map_exception_to_http(exc: BasePermitException) -> HTTPException:
    """
    Map domain exception to HTTP response.

    Args:
        exc: Domain exception from service layer

    Returns:
        HTTPException with proper status code and structured error payload
    """
    return HTTPException(
        status_code=status_for(exc),
        detail=exc.to_dict()["error"],
    )
