"""
Post-commit side-effect queue.

Lifecycle operations commit their state change first, then run the queued
side effects (notifications, realtime events). Each effect gets its own
commit; a failing effect is rolled back and logged with traceback, and
never undoes the state change or stops the remaining effects.

Usage:
    effects = SideEffectQueue()
    effects.add("fan_out", NotificationService.fan_out_request_event, req, actor, "created")
    effects.add("realtime", publish_request_changed, req)
    db.session.commit()
    effects.run()
"""

import logging

from auditpack.models import db

logger = logging.getLogger(__name__)


class SideEffectQueue:
    def __init__(self, *, request_id: str | None = None):
        self.request_id = request_id
        self._pending: list[tuple[str, callable, tuple, dict]] = []

    def add(self, name: str, fn, *args, **kwargs) -> None:
        self._pending.append((name, fn, args, kwargs))

    def __len__(self):
        return len(self._pending)

    def run(self) -> list[str]:
        """Run every queued effect in order. Returns the names that failed."""
        failed = []
        pending, self._pending = self._pending, []
        for name, fn, args, kwargs in pending:
            try:
                fn(*args, **kwargs)
                db.session.commit()
            except Exception:
                db.session.rollback()
                failed.append(name)
                logger.exception(
                    "Side effect '%s' failed; state change kept", name,
                    extra={"audit_request_id": self.request_id, "event_type": f"side_effect.{name}"},
                )
        return failed
