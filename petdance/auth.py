"""
Caller authentication.

Requests carry the Supabase session token as `Authorization: Bearer <jwt>`.
The token is verified against Supabase Auth and resolved to the owner id that
every job and credit operation is scoped to.
"""

import logging
from typing import Optional, Protocol

from fastapi import Request
from supabase import Client

from .errors import UnauthorizedError

logger = logging.getLogger(__name__)


class Authenticator(Protocol):
    def verify(self, token: str) -> str: ...


class SupabaseAuthenticator:
    def __init__(self, client: Client):
        self.sb = client

    def verify(self, token: str) -> str:
        try:
            response = self.sb.auth.get_user(token)
        except Exception as e:
            logger.info(f"Token rejected by Supabase Auth: {e}")
            raise UnauthorizedError("Unauthorized") from e
        user = getattr(response, "user", None)
        if user is None or not getattr(user, "id", None):
            raise UnauthorizedError("Unauthorized")
        return str(user.id)


class DevAuthenticator:
    """Development only: the bearer token *is* the user id."""

    def verify(self, token: str) -> str:
        return token


def bearer_token(request: Request) -> Optional[str]:
    header = request.headers.get("Authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def get_current_user_id(request: Request) -> str:
    """FastAPI dependency: resolve the caller's user id or raise UnauthorizedError."""
    token = bearer_token(request)
    if not token:
        raise UnauthorizedError("Unauthorized")
    authenticator: Authenticator = request.app.state.container.authenticator
    return authenticator.verify(token)
