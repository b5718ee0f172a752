# backend/coachbook/auth.py
"""
Principal resolution.

The identity provider (Google sign-in, outside this service) writes the
session to Redis:

    session:{token} → {"sub": "...", "email": "...", "name": "..."}

and the browser sends the token in the `session` cookie. A fronting proxy
may instead put the already-verified identity on request.state.identity.
"""

import json
import logging
from dataclasses import dataclass
from typing import Optional

from fastapi import Header, Request
from redis.exceptions import RedisError

from .config import settings
from .errors import ForbiddenError, NotAuthenticatedError
from .redis_client import redis_client

logger = logging.getLogger(__name__)

SESSION_COOKIE = "session"
SESSION_PREFIX = "session"


@dataclass(frozen=True)
class Principal:
    subject: str
    email: str
    name: Optional[str] = None

    @classmethod
    def from_identity(cls, identity: dict) -> Optional["Principal"]:
        subject = identity.get("sub") or identity.get("subject") or ""
        email = identity.get("email") or ""
        if not subject and not email:
            return None
        return cls(subject=str(subject), email=email, name=identity.get("name"))


def _load_session(token: str) -> Optional[dict]:
    try:
        raw = redis_client.get(f"{SESSION_PREFIX}:{token}")
    except RedisError as e:
        logger.error(f"Session lookup failed: {e}")
        return None
    if not raw:
        return None
    try:
        return json.loads(raw)
    except ValueError:
        logger.warning("Malformed session record")
        return None


def get_principal(request: Request) -> Principal:
    """FastAPI dependency: the authenticated principal, or 401."""
    identity = getattr(request.state, "identity", None)
    if identity is None:
        token = request.cookies.get(SESSION_COOKIE)
        if token:
            identity = _load_session(token)

    principal = Principal.from_identity(identity) if identity else None
    if principal is None:
        raise NotAuthenticatedError()
    return principal


def require_internal(x_internal_token: Optional[str] = Header(None)) -> None:
    """
    Guard for /internal/* endpoints.

    Without INTERNAL_API_TOKEN configured, access is left to the network
    boundary (the proxy does not forward /internal/*).
    """
    expected = settings.internal_api_token
    if expected and x_internal_token != expected:
        raise ForbiddenError()
