"""
Audit Trail Module

Hash-chained immutable audit log with SHA-256 for tamper detection.
Every ledger mutation (loan issue/delete, payment, penalty stamp or flip,
status change) and every batch run is logged here.
"""

import hashlib
import json
import threading
from datetime import datetime, timezone
from dataclasses import dataclass
from typing import Dict, List, Optional, Any
from enum import Enum
from decimal import Decimal
import uuid

from .storage import StorageInterface, StorageRecord


class AuditEventType(Enum):
    """Types of audit events"""
    # Loan events
    LOAN_ISSUED = "loan_issued"
    LOAN_DELETED = "loan_deleted"
    LOAN_STATUS_CHANGED = "loan_status_changed"

    # Payment events
    PAYMENT_RECORDED = "payment_recorded"

    # Penalty events
    PENALTY_ACCRUED = "penalty_accrued"
    PENALTY_LIQUIDATED = "penalty_liquidated"
    PENALTY_NOTE_ADDED = "penalty_note_added"

    # Batch events
    ACCRUAL_RUN_COMPLETED = "accrual_run_completed"
    REMINDER_RUN_COMPLETED = "reminder_run_completed"

    # System events
    AUDIT_INTEGRITY_CHECK = "audit_integrity_check"


def _convert_value(value):
    if isinstance(value, Decimal):
        return str(value)
    elif isinstance(value, datetime):
        return value.isoformat()
    elif isinstance(value, Enum):
        return value.value
    elif isinstance(value, dict):
        return {k: _convert_value(v) for k, v in value.items()}
    elif isinstance(value, (list, tuple)):
        return [_convert_value(v) for v in value]
    else:
        return value


@dataclass
class AuditEvent(StorageRecord):
    """
    Immutable audit event with hash chaining for tamper detection
    """
    event_type: AuditEventType
    entity_type: str    # loan, payment, penalty, run
    entity_id: str
    sequence: int       # Position in the chain, 1-based
    previous_hash: str  # Hash of previous audit event for chaining
    current_hash: str   # SHA-256 hash of this event
    metadata: Dict[str, Any]

    def __post_init__(self):
        if self.metadata:
            self.metadata = {k: _convert_value(v) for k, v in self.metadata.items()}

    def calculate_hash(self) -> str:
        """
        Calculate SHA-256 hash of this event
        Hash includes all fields except current_hash to prevent circular reference
        """
        hash_data = {
            'id': self.id,
            'created_at': self.created_at.isoformat(),
            'event_type': self.event_type.value,
            'entity_type': self.entity_type,
            'entity_id': self.entity_id,
            'sequence': self.sequence,
            'previous_hash': self.previous_hash,
            'metadata': self.metadata
        }

        # Create deterministic JSON string
        json_data = json.dumps(hash_data, sort_keys=True, separators=(',', ':'))
        return hashlib.sha256(json_data.encode('utf-8')).hexdigest()

    def verify_hash(self) -> bool:
        """Verify that the current hash is correct"""
        return self.current_hash == self.calculate_hash()

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result['event_type'] = self.event_type.value
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'AuditEvent':
        """Create AuditEvent from dictionary with proper enum deserialization"""
        data = dict(data)
        if isinstance(data['created_at'], str):
            data['created_at'] = datetime.fromisoformat(data['created_at'])
        if isinstance(data['updated_at'], str):
            data['updated_at'] = datetime.fromisoformat(data['updated_at'])
        if isinstance(data['event_type'], str):
            data['event_type'] = AuditEventType(data['event_type'])
        return cls(**data)


class AuditTrail:
    """
    Hash-chained audit trail for tamper detection
    """

    def __init__(self, storage: StorageInterface, table_name: str = "audit_events",
                 enabled: bool = True):
        self.storage = storage
        self.table_name = table_name
        self.enabled = enabled
        self._lock = threading.Lock()

    def _chain_head(self) -> Optional[Dict[str, Any]]:
        events = self.storage.load_all(self.table_name)
        if not events:
            return None
        return max(events, key=lambda x: x.get('sequence', 0))

    def log_event(
        self,
        event_type: AuditEventType,
        entity_type: str,
        entity_id: str,
        metadata: Optional[Dict[str, Any]] = None
    ) -> Optional[AuditEvent]:
        """
        Log an audit event with hash chaining

        Args:
            event_type: Type of audit event
            entity_type: Type of entity being audited
            entity_id: ID of the entity
            metadata: Additional event-specific data

        Returns:
            Created AuditEvent, or None when audit logging is disabled
        """
        if not self.enabled:
            return None

        with self._lock:
            now = datetime.now(timezone.utc)

            # The head is re-read on every call so a rolled back transaction
            # never leaves a dangling hash behind
            head = self._chain_head()

            event = AuditEvent(
                id=str(uuid.uuid4()),
                created_at=now,
                updated_at=now,
                event_type=event_type,
                entity_type=entity_type,
                entity_id=entity_id,
                sequence=(head['sequence'] + 1) if head else 1,
                previous_hash=head['current_hash'] if head else "",
                current_hash="",
                metadata=metadata or {}
            )
            event.current_hash = event.calculate_hash()

            self.storage.save(self.table_name, event.id, event.to_dict())
            return event

    def _load_events(self) -> List[AuditEvent]:
        events = [AuditEvent.from_dict(data) for data in self.storage.load_all(self.table_name)]
        events.sort(key=lambda x: x.sequence)
        return events

    def get_events_for_entity(
        self,
        entity_type: str,
        entity_id: str,
        limit: Optional[int] = None
    ) -> List[AuditEvent]:
        """
        Get all audit events for a specific entity, oldest first

        Args:
            entity_type: Type of entity
            entity_id: ID of entity
            limit: Maximum number of (most recent) events to return
        """
        events_data = self.storage.find(self.table_name, {
            'entity_type': entity_type,
            'entity_id': entity_id
        })
        events = [AuditEvent.from_dict(data) for data in events_data]
        events.sort(key=lambda x: x.sequence)

        if limit:
            events = events[-limit:]
        return events

    def get_events_by_type(
        self,
        event_type: AuditEventType,
        limit: Optional[int] = None
    ) -> List[AuditEvent]:
        """Get audit events of one type, oldest first"""
        events = [e for e in self._load_events() if e.event_type == event_type]
        if limit:
            events = events[-limit:]
        return events

    def verify_integrity(self) -> Dict[str, Any]:
        """
        Verify the integrity of the entire audit chain

        Returns:
            Dictionary with integrity check results
        """
        result = {
            'valid': True,
            'total_events': 0,
            'hash_errors': [],
            'chain_breaks': [],
            'details': {}
        }

        events = self._load_events()
        if not events:
            return result

        result['total_events'] = len(events)

        # Verify each event's hash
        for i, event in enumerate(events):
            if not event.verify_hash():
                result['valid'] = False
                result['hash_errors'].append({
                    'event_id': event.id,
                    'position': i,
                    'expected_hash': event.calculate_hash(),
                    'actual_hash': event.current_hash
                })

        # Verify chain continuity
        previous_hash = ""
        for i, event in enumerate(events):
            if event.previous_hash != previous_hash:
                result['valid'] = False
                result['chain_breaks'].append({
                    'event_id': event.id,
                    'position': i,
                    'expected_previous_hash': previous_hash,
                    'actual_previous_hash': event.previous_hash
                })
            previous_hash = event.current_hash

        result['details'] = {
            'first_event_time': events[0].created_at.isoformat(),
            'last_event_time': events[-1].created_at.isoformat(),
            'event_types': sorted(set(e.event_type.value for e in events)),
            'entity_types': sorted(set(e.entity_type for e in events))
        }

        return result

    def count_events(self) -> int:
        """Get total number of audit events"""
        return self.storage.count(self.table_name)
