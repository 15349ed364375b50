"""
Notification Module

Narrow outbound interface for client notifications (reminders, penalties,
payment and loan confirmations) plus the fire-and-forget Notifier used by the
engines. Delivery mechanics live behind NotificationSink; a sink may raise,
the Notifier never does.
"""

from datetime import datetime, timezone
from dataclasses import dataclass
from typing import Dict, List, Optional, Any
from enum import Enum
from abc import ABC, abstractmethod
import logging
import time
import uuid

import requests

from .exceptions import NotFoundError
from .storage import StorageInterface, StorageRecord
from .logging_config import log_action

logger = logging.getLogger("microcredit.notifications")


class NotificationKind(Enum):
    """Types of client notifications"""
    REMINDER = "reminder"
    PAYMENT_CONFIRMATION = "payment_confirmation"
    LOAN_CONFIRMATION = "loan_confirmation"
    PENALTY = "penalty"


class NotificationStatus(Enum):
    """Delivery status of stored notifications"""
    PENDING = "pending"
    READ = "read"


@dataclass
class Notification(StorageRecord):
    """Notification row queued for delivery"""
    client_id: str
    kind: NotificationKind
    message: str
    status: NotificationStatus = NotificationStatus.PENDING

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Notification':
        return cls(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            client_id=data['client_id'],
            kind=NotificationKind(data['kind']),
            message=data['message'],
            status=NotificationStatus(data['status'])
        )


class NotificationSink(ABC):
    """Abstract outbound notification channel"""

    @abstractmethod
    def send(self, client_id: str, kind: NotificationKind, message: str) -> None:
        """Deliver a notification. Raises on failure."""
        pass


class StorageNotificationSink(NotificationSink):
    """Queues notifications as PENDING rows for a downstream dispatcher"""

    def __init__(self, storage: StorageInterface, table: str = "notifications"):
        self.storage = storage
        self.table = table

    def send(self, client_id: str, kind: NotificationKind, message: str) -> None:
        now = datetime.now(timezone.utc)
        notification = Notification(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            client_id=client_id,
            kind=kind,
            message=message
        )
        self.storage.save(self.table, notification.id, notification.to_dict())

    def list_notifications(self, client_id: Optional[str] = None) -> List[Notification]:
        if client_id:
            rows = self.storage.find(self.table, {'client_id': client_id})
        else:
            rows = self.storage.load_all(self.table)
        notifications = [Notification.from_dict(row) for row in rows]
        notifications.sort(key=lambda n: n.created_at)
        return notifications

    def get_notification(self, notification_id: str) -> Notification:
        data = self.storage.load(self.table, notification_id)
        if data is None:
            raise NotFoundError(f"Notification {notification_id} not found")
        return Notification.from_dict(data)

    def mark_read(self, notification_id: str) -> Notification:
        """Flip a queued notification to READ; already read rows are left as they are"""
        notification = self.get_notification(notification_id)
        if notification.status != NotificationStatus.READ:
            notification.status = NotificationStatus.READ
            notification.updated_at = datetime.now(timezone.utc)
            self.storage.save(self.table, notification.id, notification.to_dict())
        return notification


class LogNotificationSink(NotificationSink):
    """Logs notifications instead of delivering them"""

    def __init__(self, sink_logger: Optional[logging.Logger] = None):
        self.logger = sink_logger or logger

    def send(self, client_id: str, kind: NotificationKind, message: str) -> None:
        log_action(self.logger, "info", message, action=f"notify_{kind.value}",
                   resource=f"client:{client_id}")


class WebhookNotificationSink(NotificationSink):
    """POSTs notifications to an external endpoint with a bounded timeout"""

    def __init__(self, url: str, timeout: float = 2.0,
                 session: Optional[requests.Session] = None):
        self.url = url
        self.timeout = timeout
        self.session = session or requests.Session()

    def send(self, client_id: str, kind: NotificationKind, message: str) -> None:
        payload = {
            "notification_id": str(uuid.uuid4()),
            "client_id": client_id,
            "type": kind.value,
            "message": message,
            "timestamp": datetime.now(timezone.utc).isoformat()
        }
        response = self.session.post(
            self.url,
            json=payload,
            timeout=self.timeout,
            headers={"Content-Type": "application/json"}
        )
        response.raise_for_status()


@dataclass
class NotificationResult:
    """Outcome of a single notification attempt"""
    client_id: str
    kind: NotificationKind
    delivered: bool
    error: Optional[str] = None
    latency_ms: float = 0.0


class Notifier:
    """
    Fire-and-forget wrapper around a sink.

    Failures are logged and reported in the NotificationResult; they are
    never raised to the caller.
    """

    def __init__(self, sink: NotificationSink):
        self.sink = sink

    def notify(self, client_id: str, kind: NotificationKind, message: str) -> NotificationResult:
        start = time.time()
        try:
            self.sink.send(client_id, kind, message)
        except Exception as e:
            latency_ms = (time.time() - start) * 1000
            log_action(
                logger, "warning", f"Notification delivery failed: {e}",
                action="notify_failed", resource=f"client:{client_id}",
                extra={"kind": kind.value, "error": str(e)}
            )
            return NotificationResult(client_id, kind, False, str(e), latency_ms)

        return NotificationResult(client_id, kind, True, None, (time.time() - start) * 1000)


def build_sink(sink_type: str, storage: StorageInterface, webhook_url: str = "",
               timeout: float = 2.0) -> NotificationSink:
    """Create the configured sink (storage, log or webhook)"""
    if sink_type == "storage":
        return StorageNotificationSink(storage)
    if sink_type == "log":
        return LogNotificationSink()
    if sink_type == "webhook":
        if not webhook_url:
            raise ValueError("notification_webhook_url is required for the webhook sink")
        return WebhookNotificationSink(webhook_url, timeout=timeout)
    raise ValueError(f"Unknown notification sink: {sink_type}")
