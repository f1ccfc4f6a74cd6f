"""
Charity Ledger Events

Every committed instruction appends exactly one immutable event. Off-core
observers (indexers, dashboards, auditors) read the log or subscribe to it;
nothing in the ledger depends on them.

Architecture
────────────

    ┌──────────────────────────────────────────────────────────────────┐
    │                            EVENT LOG                              │
    │                                                                   │
    │  Domain Events            EventLog                                │
    │  ├─ CharityCreated        ├─ Append-only records                  │
    │  ├─ DonationMade          ├─ Global sequence + per-charity stream │
    │  ├─ Withdrawn             ├─ Typed subscriptions                  │
    │  ├─ CharityUpdated        └─ Handler failures logged and counted  │
    │  ├─ PauseToggled                                                  │
    │  └─ CharityDeleted                                                │
    └──────────────────────────────────────────────────────────────────┘

Events are appended only after the runtime transaction commits, so a
rejected instruction never leaves a trace in the log. A failing subscriber
cannot undo a commit.

Usage
─────

    log = EventLog()

    @log.subscribe(DonationMade)
    def on_donation(event: DonationMade):
        print(event.amount)

    for record in log.read_stream(charity):
        print(record.sequence_number, record.event.event_type)

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

import threading
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Set, Type

from charity_ledger.canonical import canonical_bytes, sha256_hex
from charity_ledger.observability import correlation_id_var, get_logger

logger = get_logger("events")


# ════════════════════════════════════════════════════════════════════════════
# EVENT BASE
# ════════════════════════════════════════════════════════════════════════════


@dataclass
class Event:
    """
    Base class for ledger events.

    Addresses are stored as base58 text so events serialize without custom
    encoders.
    """

    event_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    event_timestamp: str = field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )
    correlation_id: Optional[str] = field(default_factory=lambda: correlation_id_var.get() or None)

    @property
    def event_type(self) -> str:
        return self.__class__.__name__

    def payload(self) -> Dict[str, Any]:
        """Domain fields only (no id, timestamp or correlation)."""
        data = asdict(self)
        for key in ("event_id", "event_timestamp", "correlation_id"):
            data.pop(key, None)
        return data

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["event_type"] = self.event_type
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Event":
        data = dict(data)
        event_type = data.pop("event_type", cls.__name__)
        target = EVENT_TYPES.get(event_type, cls) if cls is Event else cls
        return target(**data)

    def to_json(self) -> str:
        return canonical_bytes(self.to_dict()).decode("utf-8")

    def digest(self) -> str:
        """SHA-256 over the canonical JSON of the event type and payload."""
        return sha256_hex({"event_type": self.event_type, "payload": self.payload()})


# ════════════════════════════════════════════════════════════════════════════
# DOMAIN EVENTS
# ════════════════════════════════════════════════════════════════════════════


@dataclass
class CharityCreated(Event):
    """Emitted when a charity and its vault are created."""
    charity: str = ""
    authority: str = ""
    name: str = ""
    description: str = ""
    created_at: int = 0


@dataclass
class DonationMade(Event):
    """Emitted when a donor's lamports land in a vault."""
    donor: str = ""
    charity: str = ""
    donation: str = ""
    amount: int = 0
    new_total: int = 0
    new_count: int = 0
    created_at: int = 0


@dataclass
class Withdrawn(Event):
    """Emitted when the authority moves lamports out of the vault."""
    charity: str = ""
    authority: str = ""
    recipient: str = ""
    amount: int = 0
    remaining_balance: int = 0
    withdrawn_at: int = 0


@dataclass
class CharityUpdated(Event):
    charity: str = ""
    old_description: str = ""
    new_description: str = ""
    updated_at: int = 0


@dataclass
class PauseToggled(Event):
    charity: str = ""
    paused: bool = False
    updated_at: int = 0


@dataclass
class CharityDeleted(Event):
    """Emitted when a charity is soft-deleted and its vault swept."""
    charity: str = ""
    recipient: str = ""
    final_balance: int = 0
    total_received: int = 0
    donation_count: int = 0
    deleted_at: int = 0


EVENT_TYPES: Dict[str, Type[Event]] = {
    cls.__name__: cls
    for cls in (CharityCreated, DonationMade, Withdrawn, CharityUpdated, PauseToggled, CharityDeleted)
}


# ════════════════════════════════════════════════════════════════════════════
# EVENT LOG
# ════════════════════════════════════════════════════════════════════════════

EventHandler = Callable[[Event], None]


@dataclass
class EventRecord:
    """A logged event with its global position."""
    sequence_number: int
    event: Event
    stream_id: str
    version: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sequence_number": self.sequence_number,
            "stream_id": self.stream_id,
            "version": self.version,
            "event": self.event.to_dict(),
            "digest": self.event.digest(),
        }


@dataclass
class EventHandlerRegistration:
    handler: EventHandler
    event_types: Set[Type[Event]]


class EventLog:
    """
    Append-only event log with per-charity streams and subscribers.

    Thread-safe; handlers run synchronously after the record is stored and
    outside the log's lock.
    """

    def __init__(self):
        self._records: List[EventRecord] = []
        self._streams: Dict[str, List[EventRecord]] = {}
        self._handlers: List[EventHandlerRegistration] = []
        self._lock = threading.RLock()
        self._handled_count = 0
        self._error_count = 0

    def subscribe(self, *event_types: Type[Event]) -> Callable[[EventHandler], EventHandler]:
        """Decorator subscribing a handler to the given types (all if none)."""
        def decorator(handler: EventHandler) -> EventHandler:
            with self._lock:
                self._handlers.append(EventHandlerRegistration(
                    handler=handler,
                    event_types=set(event_types) if event_types else {Event},
                ))
            return handler
        return decorator

    def unsubscribe(self, handler: EventHandler) -> bool:
        with self._lock:
            before = len(self._handlers)
            self._handlers = [r for r in self._handlers if r.handler != handler]
            return len(self._handlers) < before

    def append(self, event: Event) -> EventRecord:
        with self._lock:
            stream_id = getattr(event, "charity", "")
            stream = self._streams.setdefault(stream_id, [])
            record = EventRecord(
                sequence_number=len(self._records) + 1,
                event=event,
                stream_id=stream_id,
                version=len(stream) + 1,
            )
            self._records.append(record)
            stream.append(record)
            handlers = [
                r.handler for r in self._handlers
                if any(isinstance(event, t) for t in r.event_types)
            ]

        for handler in handlers:
            self._call_handler(handler, event)
        return record

    def _call_handler(self, handler: EventHandler, event: Event) -> None:
        try:
            handler(event)
            with self._lock:
                self._handled_count += 1
        except Exception:
            with self._lock:
                self._error_count += 1
            logger.error(
                f"event handler {getattr(handler, '__name__', handler)!s} failed",
                error_code="EVENT_HANDLER_FAILED",
                exc_info=True,
                event_type=event.event_type,
                event_id=event.event_id,
            )

    def read_all(self, from_position: int = 0, max_count: Optional[int] = None) -> List[EventRecord]:
        with self._lock:
            end = None if max_count is None else from_position + max_count
            return list(self._records[from_position:end])

    def read_stream(self, charity: Any, from_version: int = 0) -> List[EventRecord]:
        with self._lock:
            return list(self._streams.get(str(charity), [])[from_version:])

    def events(self, *event_types: Type[Event]) -> List[Event]:
        with self._lock:
            return [
                r.event for r in self._records
                if not event_types or isinstance(r.event, event_types)
            ]

    def stream_ids(self) -> List[str]:
        with self._lock:
            return list(self._streams)

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    @property
    def metrics(self) -> Dict[str, int]:
        with self._lock:
            return {
                "appended_count": len(self._records),
                "handled_count": self._handled_count,
                "error_count": self._error_count,
                "handler_count": len(self._handlers),
            }
