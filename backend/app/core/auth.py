import logging
from dataclasses import dataclass
from typing import Optional

import jwt
from fastapi import Depends, Header, HTTPException

from app.core.config import get_settings
from app.schemas.service_request import ActorRole

logger = logging.getLogger(__name__)

ALLOWED_ROLES = {"CLIENT", "PROFESSIONAL"}


@dataclass
class CurrentUser:
    id: int
    role: str

    @property
    def actor_role(self) -> ActorRole:
        return ActorRole(self.role.lower())


def _extract_role(payload: dict) -> Optional[str]:
    # Role must come only from server-managed app_metadata.
    app_meta = payload.get("app_metadata") or {}
    raw = app_meta.get("role")
    if raw is None:
        return None
    role = str(raw).strip().upper()
    if role not in ALLOWED_ROLES:
        return None
    return role


def _decode_token(token: str) -> dict:
    settings = get_settings()
    audience = (settings.auth_jwt_audience or "").strip()
    decode_kwargs = {}
    options = {"verify_aud": bool(audience)}
    if audience:
        decode_kwargs["audience"] = audience
    try:
        return jwt.decode(
            token,
            settings.auth_jwt_secret,
            algorithms=["HS256"],
            options=options,
            **decode_kwargs,
        )
    except jwt.InvalidTokenError as exc:
        logger.debug("JWT verification failed: %s", exc)
        raise HTTPException(401, "Invalid token") from exc


def get_current_user(
    authorization: Optional[str] = Header(None, alias="Authorization"),
) -> CurrentUser:
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(401, "Missing bearer token")

    settings = get_settings()
    if not settings.auth_jwt_secret:
        raise HTTPException(500, "AUTH_JWT_SECRET is not configured")

    payload = _decode_token(authorization.split(" ", 1)[1].strip())

    try:
        user_id = int(str(payload.get("sub") or "").strip())
    except ValueError:
        raise HTTPException(401, "Invalid token")

    role = _extract_role(payload)
    if not role:
        raise HTTPException(403, "Missing role")

    return CurrentUser(id=user_id, role=role)


def require_roles(*roles: str):
    def _dependency(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
        if user.role not in roles:
            raise HTTPException(403, "Forbidden")
        return user

    return _dependency
