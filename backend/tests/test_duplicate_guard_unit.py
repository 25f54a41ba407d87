from unittest.mock import MagicMock

import pytest

from app.services.duplicate_guard import ensure_no_pending_request
from app.services.errors import DuplicateRequestError


def test_passes_when_pair_has_no_pending_request():
    store = MagicMock()
    store.count_pending.return_value = 0

    ensure_no_pending_request(store, 1, 2)

    store.count_pending.assert_called_once_with(1, 2)


def test_refuses_when_pair_already_pending():
    store = MagicMock()
    store.count_pending.return_value = 1

    with pytest.raises(DuplicateRequestError) as exc_info:
        ensure_no_pending_request(store, 1, 2)

    assert exc_info.value.kind == "duplicate_request"
    store.create.assert_not_called()


def test_storage_errors_propagate():
    from app.services.errors import PersistenceError

    store = MagicMock()
    store.count_pending.side_effect = PersistenceError("down")

    with pytest.raises(PersistenceError):
        ensure_no_pending_request(store, 1, 2)
