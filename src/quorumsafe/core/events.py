"""Outbound engine notifications and their dispatch to subscribers."""

from __future__ import annotations

import logging
from collections import defaultdict
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Iterator, List, Optional

logger = logging.getLogger(__name__)


class EventType(Enum):
    DEPOSIT_RECEIVED = "deposit_received"
    TRANSACTION_PROPOSED = "transaction_proposed"
    APPROVAL_RECORDED = "approval_recorded"
    APPROVAL_REVOKED = "approval_revoked"
    TRANSACTION_EXECUTED = "transaction_executed"
    EXECUTION_FAILED = "execution_failed"


@dataclass(frozen=True)
class EngineEvent:
    """One auditable state transition."""

    seq: int
    event_type: EventType
    identity: str  # depositor, proposer, approving owner or executor
    tx_id: Optional[int] = None
    value: Optional[int] = None
    details: Dict[str, Any] = field(default_factory=dict)


Subscriber = Callable[[EngineEvent], None]


class EventLog:
    """
    Ordered history of engine events plus subscriber fan-out.

    Events are delivered once the outermost held operation finishes. Events
    discarded by ``restore`` before that point are never delivered, so
    subscribers only see transitions that actually committed.
    """

    def __init__(self) -> None:
        self._events: List[EngineEvent] = []
        self._delivered = 0
        self._hold_depth = 0
        self._subscribers: Dict[Optional[EventType], List[Subscriber]] = defaultdict(list)

    def __len__(self) -> int:
        return len(self._events)

    @property
    def events(self) -> List[EngineEvent]:
        return list(self._events)

    def of_type(self, event_type: EventType) -> List[EngineEvent]:
        return [event for event in self._events if event.event_type is event_type]

    def subscribe(self, subscriber: Subscriber, event_types: Optional[List[EventType]] = None) -> None:
        """Subscribe to specific event types, or to all events if None."""
        if event_types is None:
            self._subscribers[None].append(subscriber)
        else:
            for event_type in event_types:
                self._subscribers[event_type].append(subscriber)

    def unsubscribe(self, subscriber: Subscriber) -> None:
        for subscribers in self._subscribers.values():
            if subscriber in subscribers:
                subscribers.remove(subscriber)

    def record(
        self,
        event_type: EventType,
        identity: str,
        tx_id: Optional[int] = None,
        value: Optional[int] = None,
        **details: Any,
    ) -> EngineEvent:
        event = EngineEvent(
            seq=len(self._events),
            event_type=event_type,
            identity=identity,
            tx_id=tx_id,
            value=value,
            details=details,
        )
        self._events.append(event)
        if self._hold_depth == 0:
            self._flush()
        return event

    @contextmanager
    def hold(self) -> Iterator[None]:
        """Defer delivery until the outermost hold exits."""
        self._hold_depth += 1
        try:
            yield
        finally:
            self._hold_depth -= 1
            if self._hold_depth == 0:
                self._flush()

    def snapshot(self) -> int:
        return len(self._events)

    def restore(self, snapshot: int) -> None:
        del self._events[snapshot:]
        self._delivered = min(self._delivered, snapshot)

    def _flush(self) -> None:
        while self._delivered < len(self._events):
            event = self._events[self._delivered]
            self._delivered += 1
            for subscriber in self._subscribers.get(None, []) + self._subscribers.get(event.event_type, []):
                self._safe_notify(subscriber, event)

    def _safe_notify(self, subscriber: Subscriber, event: EngineEvent) -> None:
        try:
            subscriber(event)
        except Exception as e:
            logger.warning(
                "Event subscriber failed",
                exc_info=True,
                extra={
                    "event": "quorumsafe.events.subscriber_failed",
                    "event_type": event.event_type.value,
                    "seq": event.seq,
                    "error_type": type(e).__name__,
                },
            )
