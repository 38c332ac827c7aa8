"""
Realtime event bus — in-process pub/sub behind the SSE stream.

Services publish after their commit; the bus fans each event out to the
subscribers allowed to see it:

    RequestChanged       subscriber can_view the request snapshot
    CommentAdded         subscriber can_view the parent request
    NotificationCreated  subscriber is the recipient

Each subscriber owns a bounded queue; a full queue drops the event for that
subscriber only (the UI re-fetches on reconnect).
"""

import logging
import queue
import threading
from dataclasses import dataclass
from types import SimpleNamespace

from auditpack.models.auth import ROLE_ADMIN, ROLE_MANAGER
from auditpack.services.access_control import can_view

logger = logging.getLogger(__name__)

EVENT_REQUEST_CHANGED = "RequestChanged"
EVENT_COMMENT_ADDED = "CommentAdded"
EVENT_NOTIFICATION_CREATED = "NotificationCreated"

SUBSCRIBER_QUEUE_SIZE = 256


@dataclass(frozen=True)
class Viewer:
    """Detached copy of the profile attributes the filters need."""

    id: str
    role: str
    department: str | None

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN

    @property
    def is_manager(self) -> bool:
        return self.role == ROLE_MANAGER

    @classmethod
    def from_profile(cls, profile) -> "Viewer":
        return cls(id=profile.id, role=profile.role, department=profile.department)


@dataclass(frozen=True)
class Event:
    type: str
    data: dict
    # request snapshot used for visibility checks (RequestChanged / CommentAdded)
    request: dict | None = None
    recipient_id: str | None = None


class Subscription:
    def __init__(self, viewer: Viewer, maxsize: int = SUBSCRIBER_QUEUE_SIZE):
        self.viewer = viewer
        self.queue: queue.Queue = queue.Queue(maxsize=maxsize)

    def get(self, timeout: float | None = None) -> Event | None:
        """Next event, or None when ``timeout`` elapses."""
        try:
            return self.queue.get(timeout=timeout)
        except queue.Empty:
            return None


def _visible_to(viewer: Viewer, event: Event) -> bool:
    if event.type == EVENT_NOTIFICATION_CREATED:
        return event.recipient_id == viewer.id
    if event.request is None:
        return False
    snapshot = SimpleNamespace(
        employee_id=event.request.get("employee_id"),
        department=event.request.get("department"),
        status=event.request.get("status"),
    )
    return can_view(viewer, snapshot)


class EventBus:
    def __init__(self):
        self._lock = threading.Lock()
        self._subscribers: list[Subscription] = []

    def subscribe(self, viewer: Viewer) -> Subscription:
        sub = Subscription(viewer)
        with self._lock:
            self._subscribers.append(sub)
        return sub

    def unsubscribe(self, sub: Subscription) -> None:
        with self._lock:
            if sub in self._subscribers:
                self._subscribers.remove(sub)

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    def publish(self, event: Event) -> int:
        """Deliver to every subscriber allowed to see it. Returns deliveries."""
        with self._lock:
            targets = [s for s in self._subscribers if _visible_to(s.viewer, event)]
        delivered = 0
        for sub in targets:
            try:
                sub.queue.put_nowait(event)
                delivered += 1
            except queue.Full:
                logger.warning("Dropping %s for slow subscriber %s", event.type, sub.viewer.id,
                               extra={"event_type": event.type})
        return delivered


# Process-wide bus
event_bus = EventBus()


# ── Publishing helpers ─────────────────────────────────────────────────────

def publish_request_changed(audit_request) -> int:
    snapshot = audit_request.to_dict()
    return event_bus.publish(Event(EVENT_REQUEST_CHANGED, {"request": snapshot}, request=snapshot))


def publish_comment_added(audit_request, comment) -> int:
    snapshot = audit_request.to_dict(include_owner=False)
    return event_bus.publish(Event(
        EVENT_COMMENT_ADDED,
        {"request_id": audit_request.id, "comment": comment.to_dict()},
        request=snapshot,
    ))


def publish_notification_created(notification) -> int:
    return event_bus.publish(Event(
        EVENT_NOTIFICATION_CREATED,
        {"notification": notification.to_dict()},
        recipient_id=notification.user_id,
    ))
