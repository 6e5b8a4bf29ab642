"""
Registry Event Infrastructure

Typed, synchronous event bus for the facts the registry produces. Events are
published only after the operation that produced them has committed, so a
subscriber never observes a registration, claim or slash that was later
rolled back.

Usage
─────

    bus = EventBus()

    @bus.subscribe(OperatorSlashed, OperatorDeleted)
    def audit(event):
        print(event.event_type, event.registration_root)

    ledger = OperatorLedger(params, gateway, event_bus=bus)

Handler failures are isolated: they are counted, logged and passed to the
optional `on_error` callback, and never propagate into the ledger.

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

import hashlib
import json
import logging
import threading
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple, Type

from stakereg.canonical import jcs_canonicalize

logger = logging.getLogger(__name__)


# ════════════════════════════════════════════════════════════════════════════
# EVENT BASE
# ════════════════════════════════════════════════════════════════════════════


@dataclass
class Event:
    """
    Base class for all registry events.

    The envelope (id, timestamp, correlation id, metadata) differs per
    instance; `payload()` and `digest()` cover the content only. Byte
    values are carried as 0x-prefixed hex.
    """

    event_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    event_timestamp: str = field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )
    correlation_id: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def event_type(self) -> str:
        return self.__class__.__name__

    def to_dict(self) -> Dict[str, Any]:
        """Envelope and content as a plain dict."""
        data = asdict(self)
        data["event_type"] = self.event_type
        return data

    def to_json(self) -> str:
        """JSON for display; use `digest()` for identity."""
        return json.dumps(self.to_dict(), default=str, sort_keys=True)

    def payload(self) -> Dict[str, Any]:
        """Event content without the per-instance envelope."""
        data = self.to_dict()
        for key in ("event_id", "event_timestamp", "correlation_id", "metadata"):
            data.pop(key, None)
        return data

    def digest(self) -> str:
        """SHA-256 hex of the JCS-canonical payload."""
        return hashlib.sha256(jcs_canonicalize(self.payload())).hexdigest()


# ════════════════════════════════════════════════════════════════════════════
# DOMAIN EVENTS
# ════════════════════════════════════════════════════════════════════════════


@dataclass
class KeyRegistered(Event):
    """Emitted once per leaf of a new registration batch."""
    registration_root: str = ""
    leaf_index: int = 0
    public_key: str = ""


@dataclass
class OperatorRegistered(Event):
    """Emitted when a registration root is stored."""
    registration_root: str = ""
    withdrawal_address: str = ""
    collateral_gwei: int = 0
    unregistration_delay: int = 0
    num_keys: int = 0
    registered_at: int = 0


@dataclass
class CollateralAdded(Event):
    """Emitted when a live operator is topped up."""
    registration_root: str = ""
    amount_gwei: int = 0
    collateral_gwei: int = 0


@dataclass
class OperatorUnregistered(Event):
    """Emitted when the withdrawal address starts the unregistration delay."""
    registration_root: str = ""
    unregistered_at: int = 0


@dataclass
class CollateralClaimed(Event):
    """Emitted when collateral is returned after the unregistration delay."""
    registration_root: str = ""
    withdrawal_address: str = ""
    amount_gwei: int = 0


@dataclass
class RegistrationSlashed(Event):
    """Emitted when a fraud proof deletes an operator."""
    registration_root: str = ""
    challenger: str = ""
    withdrawal_address: str = ""
    reward_wei: int = 0
    returned_wei: int = 0
    leaf_index: int = 0


@dataclass
class OperatorSlashed(Event):
    """Emitted when an adjudicator-approved commitment slash deletes an operator."""
    registration_root: str = ""
    proposer_key: str = ""
    challenger: str = ""
    adjudicator: str = ""
    slash_gwei: int = 0
    reward_gwei: int = 0
    returned_gwei: int = 0


@dataclass
class OperatorDeleted(Event):
    """Emitted whenever an operator record reaches its terminal state."""
    registration_root: str = ""
    reason: str = ""


# ════════════════════════════════════════════════════════════════════════════
# SUBSCRIPTIONS
# ════════════════════════════════════════════════════════════════════════════


EventHandler = Callable[[Event], None]


@dataclass
class Subscription:
    """A handler together with the events it wants to see."""
    handler: EventHandler
    event_types: Tuple[Type[Event], ...] = (Event,)
    priority: int = 0
    filter_func: Optional[Callable[[Event], bool]] = None

    def wants(self, event: Event) -> bool:
        if not isinstance(event, self.event_types):
            return False
        return self.filter_func is None or bool(self.filter_func(event))


class EventHandlerError(Exception):
    """A subscriber raised while handling an event."""

    def __init__(self, event: Event, handler: EventHandler, cause: Exception):
        self.event = event
        self.handler = handler
        self.cause = cause
        name = getattr(handler, "__name__", repr(handler))
        super().__init__(f"Handler {name} failed for {event.event_type}: {cause}")


# ════════════════════════════════════════════════════════════════════════════
# EVENT BUS
# ════════════════════════════════════════════════════════════════════════════


class EventBus:
    """
    Synchronous in-process dispatcher.

    Subscribers are called in descending priority; ties keep subscription
    order. Subscribing and publishing may happen from any thread.
    """

    def __init__(self, on_error: Optional[Callable[[EventHandlerError], None]] = None):
        self._subscriptions: List[Subscription] = []
        self._lock = threading.RLock()
        self._on_error = on_error
        self._counts = {"published_count": 0, "handled_count": 0, "error_count": 0}

    def subscribe(
        self,
        *event_types: Type[Event],
        priority: int = 0,
        filter_func: Optional[Callable[[Event], bool]] = None,
    ) -> Callable[[EventHandler], EventHandler]:
        """
        Decorator registering a handler.

        With no event types the handler receives every event. `filter_func`
        is applied after the type check.
        """
        def decorator(handler: EventHandler) -> EventHandler:
            sub = Subscription(handler, tuple(event_types) or (Event,), priority, filter_func)
            with self._lock:
                self._subscriptions.append(sub)
                self._subscriptions.sort(key=lambda s: -s.priority)
            return handler
        return decorator

    def unsubscribe(self, handler: EventHandler) -> bool:
        """Drop every subscription of `handler`; False when there was none."""
        with self._lock:
            kept = [s for s in self._subscriptions if s.handler != handler]
            removed = len(kept) != len(self._subscriptions)
            self._subscriptions = kept
        return removed

    def publish(self, event: Event) -> None:
        with self._lock:
            self._counts["published_count"] += 1
            targets = [s.handler for s in self._subscriptions if s.wants(event)]

        for handler in targets:
            self._dispatch(handler, event)

    def _dispatch(self, handler: EventHandler, event: Event) -> None:
        try:
            handler(event)
        except Exception as exc:
            failure = EventHandlerError(event, handler, exc)
            self._bump("error_count")
            logger.warning("event handler failed: %s", failure)
            if self._on_error is not None:
                self._on_error(failure)
        else:
            self._bump("handled_count")

    def _bump(self, counter: str) -> None:
        with self._lock:
            self._counts[counter] += 1

    @property
    def metrics(self) -> Dict[str, int]:
        """Dispatch counters plus the current subscription count."""
        with self._lock:
            return dict(self._counts, handler_count=len(self._subscriptions))


__all__ = [
    "Event",
    "EventHandler",
    "Subscription",
    "EventHandlerError",
    "KeyRegistered",
    "OperatorRegistered",
    "CollateralAdded",
    "OperatorUnregistered",
    "CollateralClaimed",
    "RegistrationSlashed",
    "OperatorSlashed",
    "OperatorDeleted",
    "EventBus",
]
