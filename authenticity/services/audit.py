"""
Activity log for pipeline events.

Every event is appended to a bounded in-memory trail and mirrored to the
module logger. The logger is the durable record; the trail only keeps the
most recent ``retention`` events. Metadata must never carry biometric
vectors or raw media.
"""

import logging
from collections import deque

from ..models.domain import AuditEvent

logger = logging.getLogger(__name__)

DEFAULT_RETENTION = 10000


class ActivityLog:
    def __init__(self, sink: logging.Logger | None = None, retention: int = DEFAULT_RETENTION):
        self.sink = sink or logger
        self.events: deque[AuditEvent] = deque(maxlen=retention)

    def emit(self, event: str, user_id: str, **metadata) -> None:
        """Record an event. Failures here never reach the caller."""
        try:
            self.events.append(AuditEvent(event=event, user_id=user_id, metadata=metadata))
            self.sink.info(f"{event} user={user_id} {metadata}")
        except Exception as e:
            logger.warning(f"Activity log write failed for {event}: {e}")

    def for_user(self, user_id: str) -> list[AuditEvent]:
        return [e for e in self.events if e.user_id == user_id]

    def named(self, event: str) -> list[AuditEvent]:
        return [e for e in self.events if e.event == event]
