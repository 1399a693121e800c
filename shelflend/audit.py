"""Audit trail for ShelfLend state changes.

Every successful state-changing operation emits one AuditEvent. Delivery
is fire-and-forget: a failing sink is logged and never undoes the
business transaction, which has already committed.
"""
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from shelflend.config import TIMESTAMP_FORMAT_STORAGE

logger = logging.getLogger(__name__)


@dataclass
class AuditEvent:
    """One structured audit record."""
    operation: str
    actor: Optional[str]
    entity_ids: Dict[str, Any]
    details: Dict[str, Any] = field(default_factory=dict)
    timestamp: str = field(default_factory=lambda: datetime.now().strftime(TIMESTAMP_FORMAT_STORAGE))


class AuditSink(ABC):
    """Destination for audit events."""

    @abstractmethod
    def emit(self, event: AuditEvent) -> None:
        pass


class LoggingAuditSink(AuditSink):
    """Writes audit events to the shelflend.audit logger."""

    def __init__(self, logger_name="shelflend.audit"):
        self._logger = logging.getLogger(logger_name)

    def emit(self, event):
        self._logger.info(
            "%s by %s %s",
            event.operation, event.actor or "system", event.entity_ids,
            extra={"audit": event},
        )


class MemoryAuditSink(AuditSink):
    """Keeps events in a list; useful for embedding callers and tests."""

    def __init__(self):
        self.events: List[AuditEvent] = []

    def emit(self, event):
        self.events.append(event)


class AuditTrail:
    """Records audit events without letting sink failures escape."""

    def __init__(self, sink: AuditSink = None):
        self.sink = sink or LoggingAuditSink()

    def record(self, operation, actor, entity_ids, **details):
        event = AuditEvent(operation=operation, actor=actor,
                           entity_ids=dict(entity_ids), details=details)
        try:
            self.sink.emit(event)
        except Exception:
            logger.exception("Audit sink failed for %s %s", operation, entity_ids)
        return event
