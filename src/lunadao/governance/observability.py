"""
Observability and audit trail for governance.

``GovernanceEvents`` is an in-process ``Broadcaster``: every published event
is appended to a hash-chained ``AuditTrail`` and handed to the listeners
registered for its type.
"""

import json
import logging
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from ..crypto.hashing import SHA256Hasher
from ..errors.exceptions import ValidationError
from .core import generate_id
from .interfaces import Broadcaster

logger = logging.getLogger(__name__)


class EventType(Enum):
    """Types of governance events."""

    PROPOSAL_CREATED = "proposal_created"
    PROPOSAL_EXECUTED = "proposal_executed"
    PROPOSAL_CANCELLED = "proposal_cancelled"
    PROPOSALS_ENDED = "proposals_ended"
    COMMENT_ADDED = "comment_added"

    VOTE_CAST = "vote_cast"

    DELEGATION_CREATED = "delegation_created"
    DELEGATION_REVOKED = "delegation_revoked"


@dataclass
class GovernanceEvent:
    """A governance event for audit trail."""

    event_id: str
    event_type: EventType
    timestamp: float = field(default_factory=time.time)

    # Event data
    proposal_id: Optional[str] = None
    voter_address: Optional[str] = None
    delegate_address: Optional[str] = None
    delegator_address: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    # Cryptographic integrity
    event_hash: Optional[str] = None
    previous_event_hash: Optional[str] = None

    def __post_init__(self):
        self.event_hash = self._calculate_hash()

    def _calculate_hash(self) -> str:
        event_data = {
            "event_id": self.event_id,
            "event_type": self.event_type.value,
            "timestamp": self.timestamp,
            "proposal_id": self.proposal_id,
            "voter_address": self.voter_address,
            "delegate_address": self.delegate_address,
            "delegator_address": self.delegator_address,
            "metadata": self.metadata,
            "previous_event_hash": self.previous_event_hash,
        }
        event_json = json.dumps(event_data, sort_keys=True, default=str)
        return str(SHA256Hasher.hash(event_json.encode()))

    def to_dict(self) -> Dict[str, Any]:
        """Convert event to dictionary."""
        return {
            "event_id": self.event_id,
            "event_type": self.event_type.value,
            "timestamp": self.timestamp,
            "proposal_id": self.proposal_id,
            "voter_address": self.voter_address,
            "delegate_address": self.delegate_address,
            "delegator_address": self.delegator_address,
            "metadata": self.metadata,
            "event_hash": self.event_hash,
            "previous_event_hash": self.previous_event_hash,
        }


class AuditTrail:
    """Append-only, hash-chained log of governance events."""

    def __init__(self):
        self.events: List[GovernanceEvent] = []
        self.event_index: Dict[str, int] = {}
        self.proposal_events: Dict[str, List[GovernanceEvent]] = {}
        self.voter_events: Dict[str, List[GovernanceEvent]] = {}
        self._lock = threading.RLock()

    def add_event(self, event: GovernanceEvent) -> None:
        with self._lock:
            if self.events:
                event.previous_event_hash = self.events[-1].event_hash
            event.event_hash = event._calculate_hash()

            self.events.append(event)
            self.event_index[event.event_id] = len(self.events) - 1

            if event.proposal_id:
                self.proposal_events.setdefault(event.proposal_id, []).append(event)
            if event.voter_address:
                self.voter_events.setdefault(event.voter_address, []).append(event)

    def get_event(self, event_id: str) -> Optional[GovernanceEvent]:
        with self._lock:
            index = self.event_index.get(event_id)
            return self.events[index] if index is not None else None

    def get_proposal_events(self, proposal_id: str) -> List[GovernanceEvent]:
        with self._lock:
            return list(self.proposal_events.get(proposal_id, []))

    def get_voter_events(self, voter_address: str) -> List[GovernanceEvent]:
        with self._lock:
            return list(self.voter_events.get(voter_address, []))

    def get_events_in_range(self, start_time: float, end_time: float) -> List[GovernanceEvent]:
        with self._lock:
            return [e for e in self.events if start_time <= e.timestamp <= end_time]

    def verify_integrity(self) -> bool:
        """Recompute every hash and check each link to its predecessor."""
        with self._lock:
            for i, event in enumerate(self.events):
                if event.event_hash != event._calculate_hash():
                    return False
                if i > 0 and event.previous_event_hash != self.events[i - 1].event_hash:
                    return False
            return True

    def get_audit_summary(self) -> Dict[str, Any]:
        with self._lock:
            event_counts: Dict[str, int] = {}
            for event in self.events:
                key = event.event_type.value
                event_counts[key] = event_counts.get(key, 0) + 1
            return {
                "total_events": len(self.events),
                "event_counts": event_counts,
                "unique_proposals": len(self.proposal_events),
                "unique_voters": len(self.voter_events),
                "integrity_verified": self.verify_integrity(),
            }

    def __len__(self) -> int:
        with self._lock:
            return len(self.events)


EventListener = Callable[[GovernanceEvent], None]


class GovernanceEvents(Broadcaster):
    """Event system for governance observability."""

    def __init__(self):
        self.audit_trail = AuditTrail()
        self.event_listeners: Dict[EventType, List[EventListener]] = {}
        self._lock = threading.RLock()

    def add_event_listener(self, event_type: EventType, listener: EventListener) -> None:
        with self._lock:
            self.event_listeners.setdefault(event_type, []).append(listener)

    def publish(self, event_type: str, payload: Dict[str, Any]) -> None:
        try:
            kind = EventType(event_type)
        except ValueError:
            raise ValidationError(f"Unknown event type: {event_type}", field="event_type") from None
        self.emit_event(kind, payload)

    def emit_event(
        self, event_type: EventType, payload: Optional[Dict[str, Any]] = None
    ) -> GovernanceEvent:
        """Record an event in the audit trail and notify listeners."""
        payload = dict(payload or {})
        event = GovernanceEvent(
            event_id=generate_id("evt"),
            event_type=event_type,
            proposal_id=payload.get("proposal_id"),
            voter_address=payload.get("voter_address"),
            delegate_address=payload.get("delegate"),
            delegator_address=payload.get("delegator"),
            metadata=payload,
        )
        self.audit_trail.add_event(event)

        with self._lock:
            listeners = list(self.event_listeners.get(event_type, []))
        for listener in listeners:
            try:
                listener(event)
            except Exception as e:
                logger.error("Error in event listener for %s: %s", event_type.value, e)

        return event

    def export_audit_trail(self, start_time: float, end_time: float) -> List[Dict[str, Any]]:
        events = self.audit_trail.get_events_in_range(start_time, end_time)
        return [event.to_dict() for event in events]

    def verify_audit_integrity(self) -> bool:
        return self.audit_trail.verify_integrity()
