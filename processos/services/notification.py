"""
ProcessOS
Notification Service — domain events and in-app notifications.

Lifecycle and run services describe what happened as a ``DomainEvent`` and
hand it to the configured event sink after their own commit succeeded.
Publishing is fire-and-forget: a failing sink is logged and never undoes
or fails the action that produced the event.

The default sink persists ``Notification`` rows. Hosts (or tests) can swap
it by placing any object with a ``publish(event)`` method in
``app.extensions["event_sink"]``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Iterable, Protocol

from flask import current_app

from processos.models import db
from processos.models.notification import Notification

logger = logging.getLogger(__name__)

EVENT_SINK_KEY = "event_sink"


# ═════════════════════════════════════════════════════════════════════════════
# Events
# ═════════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class DomainEvent:
    """State change announced to the outside world.

    ``recipients`` holds user ids; empty means broadcast.
    """
    category: str
    title: str
    message: str = ""
    severity: str = "info"
    recipients: tuple[str, ...] = ()
    entity_type: str = ""
    entity_id: str | None = None
    payload: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "category": self.category,
            "title": self.title,
            "message": self.message,
            "severity": self.severity,
            "recipients": list(self.recipients),
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "payload": dict(self.payload),
        }


class EventSink(Protocol):
    def publish(self, event: DomainEvent) -> None: ...


class NotificationSink:
    """Default sink: one Notification row per recipient (or one broadcast row)."""

    def publish(self, event: DomainEvent) -> None:
        kwargs = dict(
            title=event.title,
            message=event.message,
            category=event.category,
            severity=event.severity,
            entity_type=event.entity_type,
            entity_id=event.entity_id,
        )
        if event.recipients:
            NotificationService.broadcast(recipients=list(event.recipients), **kwargs)
        else:
            NotificationService.create(**kwargs)


def get_event_sink() -> EventSink:
    sink = current_app.extensions.get(EVENT_SINK_KEY)
    if sink is None:
        sink = NotificationSink()
        current_app.extensions[EVENT_SINK_KEY] = sink
    return sink


def publish_events(events: Iterable[DomainEvent]) -> int:
    """Hand events to the sink; returns how many were accepted."""
    sink = get_event_sink()
    published = 0
    for event in events:
        try:
            sink.publish(event)
            published += 1
        except Exception:
            db.session.rollback()
            logger.exception(
                "Event sink rejected %s for %s %s",
                event.category, event.entity_type, event.entity_id,
                extra={"event_type": event.category},
            )
    return published


# ═════════════════════════════════════════════════════════════════════════════
# Notification queries
# ═════════════════════════════════════════════════════════════════════════════

class NotificationService:
    """Stateless service class for notification operations."""

    # ── Create ────────────────────────────────────────────────────────────

    @staticmethod
    def create(*, title, message="", category="SYSTEM", severity="info",
               recipient="all", entity_type="", entity_id=None):
        """
        Create a single notification record.

        Returns:
            The created Notification instance (already committed).
        """
        notif = Notification(
            recipient=recipient,
            title=title,
            message=message,
            category=category,
            severity=severity,
            entity_type=entity_type,
            entity_id=entity_id,
        )
        db.session.add(notif)
        db.session.commit()
        return notif

    @staticmethod
    def broadcast(*, title, message="", category="SYSTEM", severity="info",
                  entity_type="", entity_id=None, recipients=None):
        """
        Send a notification to multiple recipients (or 'all' if none given).

        Duplicate recipient ids receive a single row.
        """
        targets = list(dict.fromkeys(recipients or ["all"]))
        notifications = []
        for r in targets:
            notif = Notification(
                recipient=r,
                title=title,
                message=message,
                category=category,
                severity=severity,
                entity_type=entity_type,
                entity_id=entity_id,
            )
            db.session.add(notif)
            notifications.append(notif)
        db.session.commit()
        return notifications

    # ── Query ─────────────────────────────────────────────────────────────

    @staticmethod
    def list_for_recipient(recipient="all", unread_only=False, category=None,
                           limit=50, offset=0):
        """Retrieve notifications for a recipient, newest first."""
        q = Notification.query.filter(
            (Notification.recipient == recipient) | (Notification.recipient == "all")
        )
        if unread_only:
            q = q.filter_by(is_read=False)
        if category:
            q = q.filter_by(category=category)
        total = q.count()
        items = (
            q.order_by(Notification.created_at.desc(), Notification.id.desc())
            .offset(offset).limit(limit).all()
        )
        return items, total

    @staticmethod
    def unread_count(recipient="all"):
        q = Notification.query.filter(
            (Notification.recipient == recipient) | (Notification.recipient == "all")
        ).filter_by(is_read=False)
        return q.count()

    # ── Actions ───────────────────────────────────────────────────────────

    @staticmethod
    def mark_read(notification_id):
        """Mark a single notification as read."""
        notif = db.session.get(Notification, notification_id)
        if notif:
            notif.mark_read()
            db.session.commit()
        return notif

    @staticmethod
    def mark_all_read(recipient="all"):
        """Mark all notifications for a recipient as read."""
        q = Notification.query.filter(
            (Notification.recipient == recipient) | (Notification.recipient == "all")
        ).filter_by(is_read=False)
        now = datetime.now(timezone.utc)
        count = q.update({"is_read": True, "read_at": now}, synchronize_session="fetch")
        db.session.commit()
        return count
