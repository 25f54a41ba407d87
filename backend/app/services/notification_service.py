"""
Lifecycle notifications: best-effort fan-out to delivery channels.

Channels: structured log line (always), notification outbox row (when
ENABLE_NOTIFICATION_OUTBOX is set). A channel is any object with a ``name``
and a ``send(event_kind, request, recipient)`` method.
"""

from __future__ import annotations

import hashlib
import json
import logging
from dataclasses import dataclass
from typing import Any, Callable, Optional, Protocol, Sequence

from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.orm import Session

from app.core.config import Settings, get_settings
from app.models.service_request import NotificationOutbox
from app.schemas.service_request import ActorRole, EventKind, ServiceRequestView
from app.utils.clock import utcnow

logger = logging.getLogger(__name__)

SUMMARY_LENGTH = 50

RECIPIENT_ROLES = {
    EventKind.NEW_REQUEST: ActorRole.PROFESSIONAL,
    EventKind.CANCELLED: ActorRole.PROFESSIONAL,
    EventKind.ACCEPTED: ActorRole.CLIENT,
    EventKind.REJECTED: ActorRole.CLIENT,
    EventKind.COMPLETED: ActorRole.CLIENT,
}


@dataclass(frozen=True)
class Recipient:
    role: ActorRole
    user_id: int


def recipient_for(event_kind: EventKind, request: ServiceRequestView) -> Recipient:
    role = RECIPIENT_ROLES[event_kind]
    if role == ActorRole.PROFESSIONAL:
        return Recipient(role=role, user_id=request.professional_id)
    return Recipient(role=role, user_id=request.client_id)


def _summary(text: Optional[str]) -> str:
    if not text:
        return ""
    if len(text) <= SUMMARY_LENGTH:
        return text
    return text[:SUMMARY_LENGTH] + "..."


class NotificationChannel(Protocol):
    name: str

    def send(self, event_kind: EventKind, request: ServiceRequestView, recipient: Recipient) -> None: ...


class LogChannel:
    name = "log"

    def __init__(self, *, redact_pii: bool = True) -> None:
        self.redact_pii = redact_pii

    def send(self, event_kind: EventKind, request: ServiceRequestView, recipient: Recipient) -> None:
        logger.info(
            "NOTIFICATION event=%s request_id=%s code=%s recipient=%s:%s "
            "client_id=%s professional_id=%s state=%s service_date=%s location=%r summary=%r",
            event_kind.value,
            request.id,
            request.request_code,
            recipient.role.value,
            recipient.user_id,
            request.client_id,
            request.professional_id,
            request.state.value,
            request.service_date.isoformat(),
            self._location(request),
            _summary(request.description),
        )

    def _location(self, request: ServiceRequestView) -> str:
        if self.redact_pii:
            return f"[REDACTED], {request.district}"
        return f"{request.address}, {request.district}"


def _outbox_dedupe_key(*, channel: str, template_key: str, entity_id: str, payload: dict[str, Any]) -> str:
    raw = json.dumps(
        {"channel": channel, "template_key": template_key, "entity_id": entity_id, "payload": payload},
        sort_keys=True,
        separators=(",", ":"),
        default=str,
    )
    digest = hashlib.sha256(raw.encode("utf-8")).hexdigest()
    return f"{channel}:{template_key}:service_request:{entity_id}:{digest[:16]}"


class OutboxChannel:
    """Queues the event in ``notification_outbox`` for a later delivery worker."""

    name = "outbox"

    def __init__(self, session_factory: Callable[[], Session], *, delivery_channel: str = "email") -> None:
        self._session_factory = session_factory
        self.delivery_channel = delivery_channel

    def _insert_ignoring_duplicates(self, db: Session, values: dict[str, Any]) -> bool:
        table = NotificationOutbox.__table__
        dialect_name = db.get_bind().dialect.name
        if dialect_name == "postgresql":
            stmt = pg_insert(table).values(**values).on_conflict_do_nothing(index_elements=["dedupe_key"])
        elif dialect_name == "sqlite":
            stmt = sqlite_insert(table).values(**values).prefix_with("OR IGNORE")
        else:
            exists = db.query(NotificationOutbox.id).filter(NotificationOutbox.dedupe_key == values["dedupe_key"])
            if exists.first() is not None:
                return False
            stmt = table.insert().values(**values)
        return bool(db.execute(stmt).rowcount)

    def send(self, event_kind: EventKind, request: ServiceRequestView, recipient: Recipient) -> None:
        payload = {
            "request_id": request.id,
            "request_code": request.request_code,
            "state": request.state.value,
            "recipient_role": recipient.role.value,
            "recipient_id": recipient.user_id,
            "updated_at": request.updated_at.isoformat(),
        }
        entity_id = str(request.id)
        values = {
            "entity_type": "service_request",
            "entity_id": entity_id,
            "channel": self.delivery_channel,
            "template_key": event_kind.value,
            "payload_json": payload,
            "dedupe_key": _outbox_dedupe_key(
                channel=self.delivery_channel,
                template_key=event_kind.value,
                entity_id=entity_id,
                payload=payload,
            ),
            "status": "PENDING",
            "attempt_count": 0,
            "next_attempt_at": utcnow(),
        }

        db = self._session_factory()
        try:
            created = self._insert_ignoring_duplicates(db, values)
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()
        if not created:
            logger.debug("Outbox notification already queued dedupe_key=%s", values["dedupe_key"])


class Notifier:
    def __init__(self, channels: Sequence[NotificationChannel] = ()) -> None:
        self.channels = list(channels)

    def notify(self, event_kind: EventKind | str, request: Optional[ServiceRequestView]) -> int:
        """Dispatch to every channel. Never raises; returns how many channels succeeded."""
        if request is None:
            logger.warning("Notification %s requested without a service request; skipping", event_kind)
            return 0
        try:
            kind = EventKind(event_kind)
        except ValueError:
            logger.warning("Unknown notification event %r for request_id=%s; skipping", event_kind, request.id)
            return 0

        recipient = recipient_for(kind, request)
        delivered = 0
        for channel in self.channels:
            try:
                channel.send(kind, request, recipient)
                delivered += 1
            except Exception:
                logger.exception(
                    "Notification channel failed channel=%s event=%s request_id=%s",
                    getattr(channel, "name", type(channel).__name__),
                    kind.value,
                    request.id,
                )
        return delivered


def build_notifier(
    settings: Optional[Settings] = None,
    session_factory: Optional[Callable[[], Session]] = None,
) -> Notifier:
    settings = settings or get_settings()
    channels: list[NotificationChannel] = [LogChannel(redact_pii=settings.pii_redaction_enabled)]
    if settings.enable_notification_outbox:
        if session_factory is None:
            logger.warning("ENABLE_NOTIFICATION_OUTBOX is set but no session factory is available")
        else:
            channels.append(OutboxChannel(session_factory, delivery_channel=settings.notification_outbox_channel))
    return Notifier(channels)
