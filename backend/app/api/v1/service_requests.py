import logging

from fastapi import APIRouter, Body, Depends
from sqlalchemy.orm import Session

from app.core.auth import CurrentUser, get_current_user, require_roles
from app.core.config import get_settings
from app.core.dependencies import SessionLocal, get_db
from app.schemas.service_request import (
    ActorRole,
    PendingCountResponse,
    ServiceRequestListResponse,
    ServiceRequestOut,
    ServiceRequestView,
    TransitionBody,
)
from app.services.notification_service import build_notifier
from app.services.request_store import RequestStore
from app.services.transition_service import LifecycleController

logger = logging.getLogger(__name__)

router = APIRouter()


def get_lifecycle_controller(db: Session = Depends(get_db)) -> LifecycleController:
    notifier = build_notifier(get_settings(), SessionLocal)
    return LifecycleController(RequestStore(db), notifier)


def _to_out(
    controller: LifecycleController,
    request: ServiceRequestView,
    role: ActorRole,
) -> ServiceRequestOut:
    return ServiceRequestOut(
        **request.model_dump(exclude={"request_code"}),
        available_events=controller.available_events(request, role),
    )


@router.post("/service-requests", response_model=ServiceRequestOut, status_code=201)
def create_service_request(
    payload: dict = Body(...),
    current_user: CurrentUser = Depends(require_roles("CLIENT")),
    controller: LifecycleController = Depends(get_lifecycle_controller),
):
    """Client opens a request to a professional. The client id always comes from the token."""
    data = dict(payload)
    data["client_id"] = current_user.id
    created = controller.create_request(data)
    return _to_out(controller, created, current_user.actor_role)


@router.get("/service-requests", response_model=ServiceRequestListResponse)
def list_service_requests(
    current_user: CurrentUser = Depends(get_current_user),
    controller: LifecycleController = Depends(get_lifecycle_controller),
):
    role = current_user.actor_role
    if role == ActorRole.CLIENT:
        rows = controller.list_by_client(current_user.id)
    else:
        rows = controller.list_by_professional(current_user.id)
    items = [_to_out(controller, row, role) for row in rows]
    return ServiceRequestListResponse(items=items, total=len(items))


@router.get("/service-requests/pending/count", response_model=PendingCountResponse)
def count_pending_service_requests(
    current_user: CurrentUser = Depends(require_roles("PROFESSIONAL")),
    controller: LifecycleController = Depends(get_lifecycle_controller),
):
    count = controller.count_pending_for_professional(current_user.id)
    return PendingCountResponse(professional_id=current_user.id, count=count)


@router.get("/service-requests/{request_id}", response_model=ServiceRequestOut)
def get_service_request(
    request_id: int,
    current_user: CurrentUser = Depends(get_current_user),
    controller: LifecycleController = Depends(get_lifecycle_controller),
):
    request = controller.get_request(request_id, current_user.id, current_user.actor_role)
    return _to_out(controller, request, current_user.actor_role)


@router.post("/service-requests/{request_id}/transitions", response_model=ServiceRequestOut)
def transition_service_request(
    request_id: int,
    payload: TransitionBody,
    current_user: CurrentUser = Depends(get_current_user),
    controller: LifecycleController = Depends(get_lifecycle_controller),
):
    updated = controller.transition(request_id, current_user.id, current_user.actor_role, payload.event)
    return _to_out(controller, updated, current_user.actor_role)


@router.post("/service-requests/{request_id}/cancel", response_model=ServiceRequestOut)
def cancel_service_request(
    request_id: int,
    current_user: CurrentUser = Depends(require_roles("CLIENT")),
    controller: LifecycleController = Depends(get_lifecycle_controller),
):
    cancelled = controller.cancel_request(request_id, current_user.id)
    return _to_out(controller, cancelled, current_user.actor_role)
