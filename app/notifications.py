"""
Admin notification hub.

Holds the current list of notifications for the admin dashboard and pushes
every state change to subscribers. One hub lives on app.state; expiry timers
run on the injected DeferredExecutor.
"""

import itertools
import logging
import threading
from dataclasses import asdict, dataclass, replace
from typing import Callable, Optional

from app.deferred import DeferredExecutor

logger = logging.getLogger(__name__)

NOTIFICATION_LIMIT = 5
DEFAULT_DURATION = 5.0
REMOVE_DELAY = 0.3

VARIANT_DURATIONS = {
    "success": 5.0,
    "destructive": 7.0,
    "warning": 5.0,
    "default": 4.0,
}


@dataclass(frozen=True)
class Notification:
    id: str
    title: str
    description: Optional[str] = None
    variant: str = "default"
    duration: float = DEFAULT_DURATION
    open: bool = True

    def to_dict(self) -> dict:
        return asdict(self)


class NotificationHandle:
    def __init__(self, hub: "NotificationHub", notification_id: str):
        self.hub = hub
        self.id = notification_id

    def update(self, **changes):
        self.hub.update(self.id, **changes)

    def dismiss(self):
        self.hub.dismiss(self.id)


class NotificationHub:
    def __init__(self, executor: DeferredExecutor, limit: int = NOTIFICATION_LIMIT):
        self.executor = executor
        self.limit = limit
        self._notifications = []
        self._listeners = []
        self._timers = {}
        self._ids = itertools.count(1)
        self._lock = threading.RLock()

    @property
    def notifications(self) -> list[Notification]:
        with self._lock:
            return list(self._notifications)

    def subscribe(self, listener: Callable[[list], None]) -> Callable[[], None]:
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe():
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def notify(
        self,
        title: str,
        description: Optional[str] = None,
        variant: str = "default",
        duration: Optional[float] = None,
    ) -> NotificationHandle:
        if duration is None:
            duration = VARIANT_DURATIONS.get(variant, DEFAULT_DURATION)
        notification = Notification(
            id=str(next(self._ids)),
            title=title,
            description=description,
            variant=variant,
            duration=duration,
        )
        with self._lock:
            kept = self._notifications[: self.limit - 1]
            for evicted in self._notifications[self.limit - 1:]:
                self._cancel_timer(evicted.id)
            self._notifications = [notification] + kept
            self._arm_dismiss(notification.id, duration)
        self._publish()
        return NotificationHandle(self, notification.id)

    def success(self, title: str, description: Optional[str] = None) -> NotificationHandle:
        return self.notify(title, description, variant="success")

    def error(self, title: str, description: Optional[str] = None) -> NotificationHandle:
        return self.notify(title, description, variant="destructive")

    def warning(self, title: str, description: Optional[str] = None) -> NotificationHandle:
        return self.notify(title, description, variant="warning")

    def info(self, title: str, description: Optional[str] = None) -> NotificationHandle:
        return self.notify(title, description, variant="default")

    def update(self, notification_id: str, **changes):
        changes.pop("id", None)
        with self._lock:
            self._notifications = [
                replace(n, **changes) if n.id == notification_id else n
                for n in self._notifications
            ]
            current = self._find(notification_id)
            if current is not None:
                self._arm_dismiss(notification_id, current.duration)
        self._publish()

    def dismiss(self, notification_id: Optional[str] = None):
        with self._lock:
            if notification_id is None:
                targets = [n.id for n in self._notifications]
            else:
                targets = [notification_id]
            for target in targets:
                self._cancel_timer(target)
            self._notifications = [
                replace(n, open=False) if n.id in targets else n
                for n in self._notifications
            ]
            for target in targets:
                self.executor.schedule(self.remove, target, delay=REMOVE_DELAY)
        self._publish()

    def remove(self, notification_id: Optional[str] = None):
        with self._lock:
            if notification_id is None:
                for target in list(self._timers):
                    self._cancel_timer(target)
                self._notifications = []
            else:
                self._cancel_timer(notification_id)
                self._notifications = [
                    n for n in self._notifications if n.id != notification_id
                ]
        self._publish()

    def _find(self, notification_id: str) -> Optional[Notification]:
        for notification in self._notifications:
            if notification.id == notification_id:
                return notification
        return None

    def _arm_dismiss(self, notification_id: str, duration: float):
        self._cancel_timer(notification_id)
        self._timers[notification_id] = self.executor.schedule(
            self.dismiss, notification_id, delay=duration
        )

    def _cancel_timer(self, notification_id: str):
        handle = self._timers.pop(notification_id, None)
        if handle is not None:
            self.executor.cancel(handle)

    def _publish(self):
        with self._lock:
            state = list(self._notifications)
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(state)
            except Exception:
                logger.exception("Notification listener failed")
