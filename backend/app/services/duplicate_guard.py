import logging

from app.services.errors import DuplicateRequestError

logger = logging.getLogger(__name__)


def ensure_no_pending_request(store, client_id: int, professional_id: int) -> None:
    """Refuse a new request while the pair already has an open one.

    The check and the following insert are not one transaction; the partial
    unique index on service_requests catches the concurrent case at insert time.
    """
    pending = store.count_pending(client_id, professional_id)
    if pending > 0:
        logger.info(
            "Duplicate service request refused client_id=%s professional_id=%s pending=%s",
            client_id,
            professional_id,
            pending,
        )
        raise DuplicateRequestError(
            "You already have a pending request with this professional. "
            "Wait for a response before sending a new one."
        )
