"""
NOTIFICATIONS MODULE

Turns domain events into notifications for the people involved:
applicants on state changes, applicant and coordinator on conflicts,
coordinators on moratorium changes.

Delivery goes through a Notifier. The default LogNotifier only logs;
email delivery is out of scope.
"""
from typing import List, Protocol

from pydantic import BaseModel

from events import ConflictDetected, MoratoriumChanged, ProjectStateChanged
from logging_config import get_logger

logger = get_logger(__name__)

COORDINATOR_ROLE = "coordinator"
APPLICANT_ROLE = "applicant"


class Notification(BaseModel):
    recipient_role: str
    recipient_id: str | None = None
    subject: str
    body: str
    event_id: str

    class Config:
        frozen = True


class Notifier(Protocol):

    async def send(self, notification: Notification) -> None: ...


class LogNotifier:
    """Writes notifications to the log and keeps them for inspection."""

    def __init__(self):
        self.sent: List[Notification] = []

    async def send(self, notification: Notification) -> None:
        self.sent.append(notification)
        logger.info(
            "notification_sent",
            recipient_role=notification.recipient_role,
            recipient_id=notification.recipient_id,
            subject=notification.subject,
            event_id=notification.event_id,
        )


class NotificationSubscriber:
    """
    Usage:
        notifications = NotificationSubscriber(LogNotifier())
        dispatcher.subscribe(ConflictDetected, notifications.on_conflict_detected)
    """

    def __init__(self, notifier: Notifier):
        self._notifier = notifier

    def register(self, dispatcher) -> None:
        dispatcher.subscribe(ProjectStateChanged, self.on_state_changed)
        dispatcher.subscribe(ConflictDetected, self.on_conflict_detected)
        dispatcher.subscribe(MoratoriumChanged, self.on_moratorium_changed)

    async def on_state_changed(self, event: ProjectStateChanged) -> None:
        await self._notifier.send(Notification(
            recipient_role=APPLICANT_ROLE,
            subject=f"Project {event.project_id} is now {event.new_state}",
            body=f"State changed from {event.old_state} to {event.new_state} by {event.actor_id}.",
            event_id=event.event_id,
        ))

    async def on_conflict_detected(self, event: ConflictDetected) -> None:
        lines = [f"Conflicts were found for project '{event.project_name}'."]
        if event.conflicting_project_ids:
            lines.append(
                "Overlapping projects: " + ", ".join(str(pid) for pid in event.conflicting_project_ids)
            )
        if event.moratorium_ids:
            lines.append(
                "Moratoriums in force: " + ", ".join(str(mid) for mid in event.moratorium_ids)
            )
        body = "\n".join(lines)
        subject = f"Conflict detected: {event.project_name}"

        await self._notifier.send(Notification(
            recipient_role=APPLICANT_ROLE,
            recipient_id=event.applicant_id,
            subject=subject,
            body=body,
            event_id=event.event_id,
        ))
        await self._notifier.send(Notification(
            recipient_role=COORDINATOR_ROLE,
            subject=subject,
            body=body,
            event_id=event.event_id,
        ))

    async def on_moratorium_changed(self, event: MoratoriumChanged) -> None:
        await self._notifier.send(Notification(
            recipient_role=COORDINATOR_ROLE,
            subject=f"Moratorium {event.action.value} in {event.municipality_code}",
            body=f"Moratorium {event.moratorium_id} was {event.action.value} by {event.actor_id}.",
            event_id=event.event_id,
        ))
