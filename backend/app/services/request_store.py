"""SQLAlchemy-backed persistence for service requests.

Rows are decoded into ``ServiceRequestView`` snapshots in one place
(``_row_to_view``); callers never see ORM instances. Every write is a single
row committed in its own transaction.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Iterator, Optional

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from app.models.service_request import ServiceRequest
from app.schemas.service_request import RequestState, ServiceRequestView, Urgency
from app.services.errors import DuplicateRequestError, PersistenceError
from app.utils.clock import as_utc

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ServiceRequestDraft:
    client_id: int
    professional_id: int
    description: str
    estimated_budget: float
    address: str
    district: str
    service_date: datetime
    requested_at: datetime
    updated_at: datetime
    postal_code: Optional[str] = None
    reference: Optional[str] = None
    urgency: Urgency = Urgency.MEDIUM
    additional_notes: Optional[str] = None
    photo_urls: tuple[str, ...] = field(default_factory=tuple)
    state: RequestState = RequestState.PENDING
    active: bool = True


_DECODERS: dict[str, Callable[[Any], Any]] = {
    "estimated_budget": lambda value: float(value or 0),
    "photo_urls": lambda value: list(value or []),
    "service_date": as_utc,
    "requested_at": as_utc,
    "responded_at": as_utc,
    "updated_at": as_utc,
    "active": bool,
}

_COLUMNS = tuple(ServiceRequest.__table__.columns.keys())

_undecoded = set(_COLUMNS) ^ set(ServiceRequestView.model_fields)
if _undecoded:
    raise RuntimeError(f"ServiceRequestView and service_requests columns differ: {sorted(_undecoded)}")


def _row_to_view(row: ServiceRequest) -> ServiceRequestView:
    values = {}
    for name in _COLUMNS:
        raw = getattr(row, name)
        decoder = _DECODERS.get(name)
        values[name] = decoder(raw) if decoder else raw
    return ServiceRequestView(**values)


class RequestStore:
    def __init__(self, db: Session) -> None:
        self.db = db

    @contextmanager
    def _storage_errors(self, action: str) -> Iterator[None]:
        try:
            yield
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.exception("Service request storage failure action=%s", action)
            raise PersistenceError(f"Storage failure while trying to {action}") from exc

    def create(self, draft: ServiceRequestDraft) -> int:
        if draft.state != RequestState.PENDING or not draft.active:
            raise ValueError("New service requests must be active and pending")
        if draft.requested_at != draft.updated_at:
            raise ValueError("requested_at and updated_at must match on creation")

        row = ServiceRequest(
            client_id=draft.client_id,
            professional_id=draft.professional_id,
            description=draft.description,
            estimated_budget=draft.estimated_budget,
            address=draft.address,
            district=draft.district,
            postal_code=draft.postal_code,
            reference=draft.reference,
            service_date=as_utc(draft.service_date),
            urgency=Urgency(draft.urgency).value,
            additional_notes=draft.additional_notes,
            photo_urls=list(draft.photo_urls),
            state=draft.state.value,
            requested_at=as_utc(draft.requested_at),
            updated_at=as_utc(draft.updated_at),
            active=True,
        )
        self.db.add(row)
        try:
            self.db.commit()
        except IntegrityError as exc:
            self.db.rollback()
            # A concurrent creator won the pending-pair unique index.
            if self.count_pending(draft.client_id, draft.professional_id) > 0:
                raise DuplicateRequestError(
                    "A pending request already exists for this client and professional"
                ) from exc
            logger.exception("Service request insert rejected by the database")
            raise PersistenceError("Storage failure while trying to create the request") from exc
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.exception("Service request storage failure action=create")
            raise PersistenceError("Storage failure while trying to create the request") from exc

        request_id = int(row.id)
        logger.info(
            "Service request stored id=%s client_id=%s professional_id=%s",
            request_id,
            draft.client_id,
            draft.professional_id,
        )
        return request_id

    def get_by_id(self, request_id: int) -> Optional[ServiceRequestView]:
        with self._storage_errors("load the request"):
            row = self.db.get(ServiceRequest, request_id, populate_existing=True)
        return _row_to_view(row) if row is not None else None

    def _list_active(self, *conditions) -> list[ServiceRequestView]:
        with self._storage_errors("list requests"):
            rows = (
                self.db.execute(
                    select(ServiceRequest)
                    .where(ServiceRequest.active.is_(True), *conditions)
                    .order_by(ServiceRequest.requested_at.desc(), ServiceRequest.id.desc())
                    .execution_options(populate_existing=True)
                )
                .scalars()
                .all()
            )
        return [_row_to_view(row) for row in rows]

    def list_by_client(self, client_id: int) -> list[ServiceRequestView]:
        return self._list_active(ServiceRequest.client_id == client_id)

    def list_by_professional(self, professional_id: int) -> list[ServiceRequestView]:
        return self._list_active(ServiceRequest.professional_id == professional_id)

    def _count_pending(self, *conditions) -> int:
        with self._storage_errors("count pending requests"):
            count = self.db.execute(
                select(func.count())
                .select_from(ServiceRequest)
                .where(
                    ServiceRequest.active.is_(True),
                    ServiceRequest.state == RequestState.PENDING.value,
                    *conditions,
                )
            ).scalar_one()
        return int(count or 0)

    def count_pending(self, client_id: int, professional_id: int) -> int:
        return self._count_pending(
            ServiceRequest.client_id == client_id,
            ServiceRequest.professional_id == professional_id,
        )

    def count_pending_for_professional(self, professional_id: int) -> int:
        return self._count_pending(ServiceRequest.professional_id == professional_id)

    def update_state(
        self,
        request_id: int,
        *,
        new_state: RequestState,
        timestamp: datetime,
        expected_state: Optional[RequestState] = None,
        expected_client_id: Optional[int] = None,
        expected_professional_id: Optional[int] = None,
        deactivate: bool = False,
        mark_responded: bool = False,
    ) -> bool:
        """
        Conditional single-row update. Applies only to an active row that still
        matches every given expectation; returns whether a row changed.
        """
        ts = as_utc(timestamp)
        conditions = [ServiceRequest.id == request_id, ServiceRequest.active.is_(True)]
        if expected_state is not None:
            conditions.append(ServiceRequest.state == RequestState(expected_state).value)
        if expected_client_id is not None:
            conditions.append(ServiceRequest.client_id == expected_client_id)
        if expected_professional_id is not None:
            conditions.append(ServiceRequest.professional_id == expected_professional_id)

        values: dict[str, Any] = {"state": RequestState(new_state).value, "updated_at": ts}
        if deactivate:
            values["active"] = False
        if mark_responded:
            values["responded_at"] = func.coalesce(ServiceRequest.responded_at, ts)

        stmt = (
            update(ServiceRequest)
            .where(*conditions)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        with self._storage_errors("update the request state"):
            result = self.db.execute(stmt)
            self.db.commit()

        changed = bool(result.rowcount)
        logger.debug(
            "Conditional state update id=%s new_state=%s changed=%s",
            request_id,
            RequestState(new_state).value,
            changed,
        )
        return changed
