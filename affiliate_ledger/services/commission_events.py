"""
Commission Event Publishing

Lifecycle services report what happened through a CommissionEventPublisher
handed to them at construction. Nothing is global: callers choose the
publisher (log-only by default, a queue producer in production, a recording
publisher in tests).

Delivery is best-effort. Events are published after the database commit,
and a publisher failure is logged without affecting the committed
lifecycle operation.
"""
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Protocol

from affiliate_ledger.core.clock import utcnow


logger = logging.getLogger(__name__)


class CommissionEventType(str, Enum):
    """Types of commission lifecycle events."""
    COMMISSION_CREATED = "commission.created"
    STATUS_CHANGED = "commission.status_changed"
    COMMISSION_PAID = "commission.paid"
    COMMISSION_CLAWED_BACK = "commission.clawed_back"
    PARTIAL_CLAWBACK = "commission.partial_clawback"
    COMMISSION_ADJUSTED = "commission.adjusted"
    COMMISSION_RECALCULATED = "commission.recalculated"


@dataclass
class CommissionEvent:
    event_type: CommissionEventType
    commission_id: uuid.UUID
    marketer_id: Optional[uuid.UUID] = None
    payload: Dict[str, Any] = field(default_factory=dict)
    occurred_at: datetime = field(default_factory=utcnow)


class CommissionEventPublisher(Protocol):
    async def publish(self, event: CommissionEvent) -> None:
        ...


class LoggingEventPublisher:
    """Default publisher: writes events to the application log."""

    async def publish(self, event: CommissionEvent) -> None:
        logger.info(
            f"[EVENT] {event.event_type.value} commission={event.commission_id} "
            f"marketer={event.marketer_id} payload={event.payload}"
        )


class RecordingEventPublisher:
    """Keeps published events in memory."""

    def __init__(self):
        self.events: List[CommissionEvent] = []

    async def publish(self, event: CommissionEvent) -> None:
        self.events.append(event)

    def of_type(self, event_type: CommissionEventType) -> List[CommissionEvent]:
        return [e for e in self.events if e.event_type == event_type]


async def publish_safely(publisher: CommissionEventPublisher, event: CommissionEvent) -> bool:
    """Publish an event, logging (not raising) delivery failures."""
    try:
        await publisher.publish(event)
        return True
    except Exception as e:
        logger.warning(
            f"Failed to publish {event.event_type.value} for commission {event.commission_id}: {e}"
        )
        return False
