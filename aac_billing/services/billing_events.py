"""
Billing domain events.

The engine announces profile updates, claim lifecycle changes, payments
and authorization warnings. Audit and analytics collaborators subscribe
to them; every event is also written to the log.
"""

import inspect
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Awaitable, Callable, Optional, Union

from aac_billing.core.enums import BillingEventType

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BillingEvent:
    """Something that happened in the billing engine."""

    event_type: BillingEventType
    patient_id: Optional[str] = None
    claim_id: Optional[str] = None
    amount: Optional[Decimal] = None
    data: dict[str, Any] = field(default_factory=dict)
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict[str, Any]:
        return {
            "event_type": self.event_type.value,
            "patient_id": self.patient_id,
            "claim_id": self.claim_id,
            "amount": str(self.amount) if self.amount is not None else None,
            "data": self.data,
            "occurred_at": self.occurred_at.isoformat(),
        }


EventHandler = Callable[[BillingEvent], Union[None, Awaitable[None]]]


class BillingEventPublisher:
    """
    Fan-out of billing events to subscribers.

    Handlers may be plain or async callables. A failing handler is logged
    and does not stop delivery to the others or fail the billing operation
    that emitted the event.
    """

    def __init__(self) -> None:
        self._handlers: list[tuple[Optional[frozenset[BillingEventType]], EventHandler]] = []

    def subscribe(
        self,
        handler: EventHandler,
        event_types: Optional[list[BillingEventType]] = None,
    ) -> None:
        """Register ``handler`` for ``event_types`` (all events when None)."""
        types = frozenset(event_types) if event_types else None
        self._handlers.append((types, handler))

    def unsubscribe(self, handler: EventHandler) -> None:
        self._handlers = [(t, h) for t, h in self._handlers if h != handler]

    async def publish(self, event: BillingEvent) -> None:
        logger.info(
            f"Billing event {event.event_type.value}: patient={event.patient_id} "
            f"claim={event.claim_id} amount={event.amount} data={event.data}"
        )
        for types, handler in list(self._handlers):
            if types is not None and event.event_type not in types:
                continue
            try:
                result = handler(event)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(f"Billing event handler error for {event.event_type.value}: {e}")

    async def emit(
        self,
        event_type: BillingEventType,
        patient_id: Optional[str] = None,
        claim_id: Optional[str] = None,
        amount: Optional[Decimal] = None,
        **data: Any,
    ) -> BillingEvent:
        """Build and publish an event in one call."""
        event = BillingEvent(
            event_type=event_type,
            patient_id=patient_id,
            claim_id=claim_id,
            amount=amount,
            data=data,
        )
        await self.publish(event)
        return event
