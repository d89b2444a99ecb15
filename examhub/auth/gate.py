"""
Edge gate - coarse allow/deny in front of every API route.

The gate only checks that a token is *present*. It does not verify it:
signature, expiry, account and role checks belong to the route guard
(see policies.py). On pass, the raw token is copied into an internal
header so handlers never have to care whether it came from the cookie
or the Authorization header.
"""

from __future__ import annotations

import logging
from typing import Iterable

from starlette.requests import HTTPConnection
from starlette.responses import JSONResponse
from starlette.types import ASGIApp, Receive, Scope, Send

from examhub.config import Settings
from examhub.core.errors import AuthenticationRequired

logger = logging.getLogger(__name__)


# Relative to the API prefix.
PUBLIC_PATHS: frozenset[str] = frozenset({
    "/users/login",
    "/users/signup",
    "/users/logout",
    "/example",           # middleware echo
    "/test-db",           # storage connectivity check
    "/upload/test",       # upload configuration check
    "/auth/forgot-password",
    "/auth/reset-password",
})


def extract_token(conn: HTTPConnection, cookie_name: str) -> str | None:
    """Bearer header wins over the session cookie when both are present."""
    auth_header = conn.headers.get("authorization", "")
    scheme, _, credentials = auth_header.partition(" ")
    if scheme.lower() == "bearer" and credentials.strip():
        return credentials.strip()
    return conn.cookies.get(cookie_name) or None


class EdgeGate:
    """ASGI middleware enforcing token presence on protected API paths."""

    def __init__(
        self,
        app: ASGIApp,
        api_prefix: str = "/api",
        cookie_name: str = "token",
        internal_header: str = "x-auth-token",
        public_paths: Iterable[str] = PUBLIC_PATHS,
    ):
        self.app = app
        self.api_prefix = api_prefix.rstrip("/")
        self.cookie_name = cookie_name
        self.internal_header = internal_header.lower().encode("latin-1")
        self.public_paths = frozenset(self.api_prefix + p for p in public_paths)

    @classmethod
    def options_from_settings(cls, settings: Settings) -> dict:
        return {
            "api_prefix": settings.api_prefix,
            "cookie_name": settings.session_cookie_name,
            "internal_header": settings.internal_token_header,
        }

    def is_protected(self, path: str) -> bool:
        normalized = path.rstrip("/") or "/"
        if normalized != self.api_prefix and not normalized.startswith(self.api_prefix + "/"):
            return False
        return normalized not in self.public_paths

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http" or scope["method"] == "OPTIONS" or not self.is_protected(scope["path"]):
            await self.app(scope, receive, send)
            return

        token = extract_token(HTTPConnection(scope), self.cookie_name)
        if not token:
            logger.debug("Rejected %s %s: no token", scope["method"], scope["path"])
            error = AuthenticationRequired()
            response = JSONResponse(error.to_dict(), status_code=error.status_code)
            await response(scope, receive, send)
            return

        headers = [
            (name, value)
            for name, value in scope["headers"]
            if name.lower() != self.internal_header
        ]
        headers.append((self.internal_header, token.encode("latin-1")))
        await self.app({**scope, "headers": headers}, receive, send)
