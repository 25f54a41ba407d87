import os
import tempfile
from datetime import datetime, timedelta, timezone

import httpx
import jwt
import pytest
import pytest_asyncio

# Engine and SessionLocal are built at import time, so the database must be
# configured before anything under app/ is imported.
_DB_DIR = tempfile.mkdtemp(prefix="service-requests-tests-")
os.environ.setdefault("DATABASE_URL", f"sqlite:///{_DB_DIR}/tests.db")
os.environ.setdefault("AUTH_JWT_SECRET", "test-secret-key-for-service-requests-32chars")

from app.core.config import get_settings  # noqa: E402
from app.core.dependencies import create_schema  # noqa: E402

create_schema()

TEST_JWT_SECRET = os.environ["AUTH_JWT_SECRET"]


@pytest.fixture(autouse=True)
def _reset_settings_cache():
    # Tests that patch env vars must not leak a cached Settings instance.
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture(autouse=True)
def _clean_tables():
    from app.core.dependencies import SessionLocal
    from app.models.service_request import NotificationOutbox, ServiceRequest

    db = SessionLocal()
    try:
        db.query(NotificationOutbox).delete()
        db.query(ServiceRequest).delete()
        db.commit()
    finally:
        db.close()
    yield


@pytest.fixture
def db():
    from app.core.dependencies import SessionLocal

    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


def build_token(user_id: int, role: str, *, secret: str = TEST_JWT_SECRET, **claims) -> str:
    now = datetime.now(timezone.utc)
    payload = {
        "sub": str(user_id),
        "app_metadata": {"role": role},
        "iat": int(now.timestamp()),
        "exp": int((now + timedelta(hours=1)).timestamp()),
    }
    payload.update(claims)
    token = jwt.encode(payload, secret, algorithm="HS256")
    if isinstance(token, bytes):
        token = token.decode("utf-8")
    return token


def auth_header(user_id: int, role: str) -> dict:
    return {"Authorization": f"Bearer {build_token(user_id, role)}"}


def _make_asgi_client(headers: dict | None = None) -> httpx.AsyncClient:
    from app.main import app

    transport = httpx.ASGITransport(app=app)
    return httpx.AsyncClient(transport=transport, base_url="http://test", headers=headers or {})


@pytest_asyncio.fixture
async def client():
    """Unauthenticated in-process client; pass headers per request."""
    async with _make_asgi_client() as c:
        yield c


@pytest.fixture
def auth_headers():
    return auth_header


def request_payload(**overrides) -> dict:
    tomorrow = datetime.now(timezone.utc) + timedelta(days=1)
    payload = {
        "client_id": 1,
        "professional_id": 2,
        "description": "Fix leak",
        "estimated_budget": 120.0,
        "address": "Av X",
        "district": "Lima",
        "service_date": tomorrow.isoformat(),
    }
    payload.update(overrides)
    return payload


@pytest.fixture
def make_payload():
    return request_payload
