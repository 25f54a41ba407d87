import logging
from dataclasses import dataclass
from typing import Any, Callable, Optional, Union

from pydantic import ValidationError as PydanticValidationError

from app.schemas.service_request import (
    ActorRole,
    EventKind,
    RequestState,
    ServiceRequestCreate,
    ServiceRequestView,
    TransitionEvent,
)
from app.services.duplicate_guard import ensure_no_pending_request
from app.services.errors import (
    InvalidTransitionError,
    NotFoundError,
    NotOwnerError,
    ValidationError,
)
from app.services.notification_service import Notifier
from app.services.request_store import RequestStore, ServiceRequestDraft
from app.utils.clock import as_utc, utcnow

logger = logging.getLogger(__name__)


ALLOWED_TRANSITIONS = {
    RequestState.PENDING: [RequestState.ACCEPTED, RequestState.REJECTED, RequestState.CANCELLED],
    RequestState.ACCEPTED: [RequestState.COMPLETED],
    RequestState.REJECTED: [],
    RequestState.CANCELLED: [],
    RequestState.COMPLETED: [],
}


@dataclass(frozen=True)
class EventRule:
    target: RequestState
    actor: ActorRole
    notification: EventKind
    deactivate: bool = False
    mark_responded: bool = False


EVENT_RULES = {
    TransitionEvent.ACCEPT: EventRule(
        RequestState.ACCEPTED, ActorRole.PROFESSIONAL, EventKind.ACCEPTED, mark_responded=True
    ),
    TransitionEvent.REJECT: EventRule(
        RequestState.REJECTED, ActorRole.PROFESSIONAL, EventKind.REJECTED, mark_responded=True
    ),
    TransitionEvent.CANCEL: EventRule(
        RequestState.CANCELLED, ActorRole.CLIENT, EventKind.CANCELLED, deactivate=True
    ),
    TransitionEvent.COMPLETE: EventRule(
        RequestState.COMPLETED, ActorRole.PROFESSIONAL, EventKind.COMPLETED
    ),
}


def _is_allowed_actor(current: RequestState, new: RequestState, actor_role: ActorRole) -> bool:
    if current == RequestState.PENDING and new in {RequestState.ACCEPTED, RequestState.REJECTED}:
        return actor_role == ActorRole.PROFESSIONAL
    if current == RequestState.PENDING and new == RequestState.CANCELLED:
        return actor_role == ActorRole.CLIENT
    if current == RequestState.ACCEPTED and new == RequestState.COMPLETED:
        return actor_role == ActorRole.PROFESSIONAL
    return False


def _parse_event(event: Union[TransitionEvent, str]) -> TransitionEvent:
    if isinstance(event, TransitionEvent):
        return event
    try:
        return TransitionEvent(str(event).strip().lower())
    except ValueError as exc:
        raise ValidationError("event", f"Unknown transition event: {event!r}") from exc


def _parse_role(actor_role: Union[ActorRole, str]) -> ActorRole:
    if isinstance(actor_role, ActorRole):
        return actor_role
    try:
        return ActorRole(str(actor_role).strip().lower())
    except ValueError as exc:
        raise ValidationError("actor_role", f"Unknown actor role: {actor_role!r}") from exc


def _is_party(request: ServiceRequestView, actor_id: int, actor_role: ActorRole) -> bool:
    if actor_role == ActorRole.CLIENT:
        return request.client_id == actor_id
    return request.professional_id == actor_id


def available_events(request: ServiceRequestView, actor_role: Union[ActorRole, str]) -> list[TransitionEvent]:
    """Events the given role could fire on the request in its current state."""
    role = _parse_role(actor_role)
    if not request.active:
        return []
    allowed = ALLOWED_TRANSITIONS.get(request.state, [])
    return [
        event
        for event, rule in EVENT_RULES.items()
        if rule.target in allowed and _is_allowed_actor(request.state, rule.target, role)
    ]


class LifecycleController:
    """
    Entry point for every service-request operation.

    Validates input and ownership, runs the duplicate guard on creation,
    performs state changes through conditional store updates and fires
    notifications afterwards. Notification failures never reach the caller.
    """

    def __init__(
        self,
        store: RequestStore,
        notifier: Notifier,
        clock: Callable[[], Any] = utcnow,
    ) -> None:
        self.store = store
        self.notifier = notifier
        self.clock = clock

    def _validate_create(self, payload: Union[dict, ServiceRequestCreate]) -> ServiceRequestCreate:
        if isinstance(payload, ServiceRequestCreate):
            payload = payload.model_dump()
        try:
            return ServiceRequestCreate.model_validate(
                payload or {},
                context={"today": as_utc(self.clock()).date()},
            )
        except PydanticValidationError as exc:
            first = exc.errors()[0]
            loc = first.get("loc") or ("payload",)
            field = str(loc[0])
            raise ValidationError(field, f"Invalid value for '{field}': {first.get('msg')}") from exc

    def create_request(self, payload: Union[dict, ServiceRequestCreate]) -> ServiceRequestView:
        data = self._validate_create(payload)
        ensure_no_pending_request(self.store, data.client_id, data.professional_id)

        now = as_utc(self.clock())
        draft = ServiceRequestDraft(
            client_id=data.client_id,
            professional_id=data.professional_id,
            description=data.description,
            estimated_budget=data.estimated_budget,
            address=data.address,
            district=data.district,
            service_date=data.service_date,
            requested_at=now,
            updated_at=now,
            postal_code=data.postal_code,
            reference=data.reference,
            urgency=data.urgency,
            additional_notes=data.additional_notes,
            photo_urls=tuple(data.photo_urls),
        )
        request_id = self.store.create(draft)
        created = self.store.get_by_id(request_id)
        if created is None:
            raise NotFoundError(f"Service request {request_id} vanished after creation")

        logger.info(
            "Service request created id=%s code=%s client_id=%s professional_id=%s",
            created.id,
            created.request_code,
            created.client_id,
            created.professional_id,
        )
        self._notify_safely(EventKind.NEW_REQUEST, created)
        return created

    def transition(
        self,
        request_id: int,
        actor_id: int,
        actor_role: Union[ActorRole, str],
        event: Union[TransitionEvent, str],
    ) -> ServiceRequestView:
        parsed_event = _parse_event(event)
        role = _parse_role(actor_role)
        rule = EVENT_RULES[parsed_event]

        current = self.store.get_by_id(request_id)
        if current is None or (not current.active and current.state == RequestState.PENDING):
            raise NotFoundError(f"Service request {request_id} not found")

        if role != rule.actor or not _is_party(current, actor_id, role):
            logger.info(
                "Transition refused (not owner) id=%s event=%s actor=%s:%s",
                request_id,
                parsed_event.value,
                role.value,
                actor_id,
            )
            raise NotOwnerError(f"Only the owning {rule.actor.value} may {parsed_event.value} this request")

        if rule.target not in ALLOWED_TRANSITIONS.get(current.state, []) or not current.active:
            raise InvalidTransitionError(
                f"Cannot {parsed_event.value} a request in state '{current.state.value}'"
            )

        changed = self.store.update_state(
            request_id,
            new_state=rule.target,
            timestamp=self.clock(),
            expected_state=current.state,
            expected_client_id=current.client_id if role == ActorRole.CLIENT else None,
            expected_professional_id=current.professional_id if role == ActorRole.PROFESSIONAL else None,
            deactivate=rule.deactivate,
            mark_responded=rule.mark_responded,
        )
        if not changed:
            # Lost a race: someone else moved or removed the row in between.
            latest = self.store.get_by_id(request_id)
            if latest is None or (not latest.active and latest.state == RequestState.PENDING):
                raise NotFoundError(f"Service request {request_id} not found")
            raise InvalidTransitionError(
                f"Cannot {parsed_event.value} a request in state '{latest.state.value}'"
            )

        updated = self.store.get_by_id(request_id)
        if updated is None:
            raise NotFoundError(f"Service request {request_id} not found")

        logger.info(
            "Service request transition id=%s %s -> %s actor=%s:%s",
            request_id,
            current.state.value,
            updated.state.value,
            role.value,
            actor_id,
        )
        self._notify_safely(rule.notification, updated)
        return updated

    def cancel_request(self, request_id: int, client_id: int) -> ServiceRequestView:
        return self.transition(request_id, client_id, ActorRole.CLIENT, TransitionEvent.CANCEL)

    def list_by_client(self, client_id: int) -> list[ServiceRequestView]:
        return self.store.list_by_client(client_id)

    def list_by_professional(self, professional_id: int) -> list[ServiceRequestView]:
        return self.store.list_by_professional(professional_id)

    def get_request(
        self,
        request_id: int,
        actor_id: int,
        actor_role: Union[ActorRole, str],
    ) -> ServiceRequestView:
        role = _parse_role(actor_role)
        request = self.store.get_by_id(request_id)
        if request is None:
            raise NotFoundError(f"Service request {request_id} not found")
        if not _is_party(request, actor_id, role):
            raise NotOwnerError("Only the client or professional on the request may view it")
        return request

    def count_pending_for_professional(self, professional_id: int) -> int:
        return self.store.count_pending_for_professional(professional_id)

    def available_events(
        self,
        request: ServiceRequestView,
        actor_role: Union[ActorRole, str],
    ) -> list[TransitionEvent]:
        return available_events(request, actor_role)

    def _notify_safely(self, event_kind: EventKind, request: Optional[ServiceRequestView]) -> None:
        try:
            self.notifier.notify(event_kind, request)
        except Exception:
            logger.exception(
                "Notifier raised for event=%s request_id=%s",
                event_kind.value,
                getattr(request, "id", None),
            )
