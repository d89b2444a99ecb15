"""
Route guard - the clean interface for route authorization.

Just use: `ctx: AuthContext = Depends(authorize(Capability.EXAM_CREATE))`

Design:
- `authorize()` returns a FastAPI dependency that resolves to AuthContext
- It reads the token the edge gate forwarded, verifies it, loads the account
- Checks run in a fixed order and stop at the first failure:
    missing token → invalid token → account missing → role/capability
- Business rules are left to the handler, after the guard has passed
"""

from __future__ import annotations

import logging
from typing import Callable, Iterable

from fastapi import Request

from examhub.auth.capabilities import Capability
from examhub.auth.context import AuthContext
from examhub.auth.tokens import SESSION_TOKEN, TokenCodec, TokenError, TokenExpiredError
from examhub.core.errors import (
    AccountNotFound,
    AuthenticationRequired,
    InsufficientRole,
    InvalidToken,
)
from examhub.core.models import Account, Role
from examhub.storage.base import Collections, StorageProvider

logger = logging.getLogger(__name__)


# =============================================================================
# Token extraction
# =============================================================================


def get_request_token(request: Request) -> str | None:
    """
    Read the raw token for this request.

    The edge gate forwards it in the internal header; routes reached
    without the gate fall back to the Authorization header.
    """
    header_name = request.app.state.settings.internal_token_header
    token = request.headers.get(header_name)
    if token:
        return token

    auth_header = request.headers.get("authorization", "")
    scheme, _, credentials = auth_header.partition(" ")
    if scheme.lower() == "bearer" and credentials.strip():
        return credentials.strip()
    return None


async def resolve_auth_context(request: Request) -> AuthContext:
    """Verify the request's token and load the account behind it."""
    token = get_request_token(request)
    if not token:
        raise AuthenticationRequired()

    codec: TokenCodec = request.app.state.token_codec
    try:
        payload = codec.decode(token, expected_type=SESSION_TOKEN)
    except TokenExpiredError:
        raise InvalidToken("Token has expired")
    except TokenError:
        raise InvalidToken("Invalid token")

    storage: StorageProvider = request.app.state.storage
    record = await storage.metadata.get(Collections.ACCOUNTS, payload.sub)
    if record is None:
        raise AccountNotFound()

    account = Account.model_validate(record)
    if not account.is_active:
        raise InsufficientRole("Account is not active")

    return AuthContext(account=account, token=token)


# =============================================================================
# Policy - the core authorization type
# =============================================================================


class Policy:
    """
    A policy that can be checked against an AuthContext.

        Policy([Capability.QUESTION_CREATE])             # single capability
        Policy([...], require_all=False)                 # any of these
        Policy(roles={Role.ADMIN, Role.MODERATOR})       # role set
    """

    def __init__(
        self,
        capabilities: Iterable[Capability | str] = (),
        roles: Iterable[Role] | None = None,
        require_all: bool = True,
        custom_check: Callable[[AuthContext], bool] | None = None,
    ):
        self.capabilities = [Capability(c) for c in capabilities]
        self.roles = frozenset(roles) if roles else None
        self.require_all_caps = require_all
        self.custom_check = custom_check

    def check(self, ctx: AuthContext) -> tuple[bool, str | None]:
        """
        Check if context satisfies this policy.

        Returns: (allowed, error_message)
        """
        if self.roles is not None and ctx.role not in self.roles:
            allowed = ", ".join(sorted(r.value for r in self.roles))
            return False, f"Requires one of roles: {allowed}"

        if self.capabilities:
            if self.require_all_caps:
                missing = [c.value for c in self.capabilities if not ctx.can(c)]
                if missing:
                    return False, f"Missing permissions: {missing}"
            elif not ctx.can_any(*self.capabilities):
                return False, f"Requires one of: {[c.value for c in self.capabilities]}"

        if self.custom_check and not self.custom_check(ctx):
            return False, "Custom policy check failed"

        return True, None


# =============================================================================
# Main Interface - authorize()
# =============================================================================


def authorize(
    *capabilities: Capability | str,
    roles: Iterable[Role] | None = None,
    require_all: bool = True,
) -> Callable:
    """
    Guard a route.

    Usage:
        @router.post("/exams/{exam_id}/publish")
        async def publish(
            exam_id: str,
            ctx: AuthContext = Depends(authorize(Capability.EXAM_PUBLISH)),
        ):
            ...

    With no arguments it only requires a verified, existing account.
    """
    return _create_dependency(Policy(capabilities, roles=roles, require_all=require_all))


def require_roles(*roles: Role) -> Callable:
    """Require the account's role to be one of ``roles``."""
    return authorize(roles=roles)


def _create_dependency(policy: Policy) -> Callable:
    """Create a FastAPI dependency from a policy."""

    async def dependency(request: Request) -> AuthContext:
        ctx = await resolve_auth_context(request)

        allowed, error = policy.check(ctx)
        if not allowed:
            logger.info("Denied %s %s for %s: %s", request.method, request.url.path, ctx.account_id, error)
            raise InsufficientRole(error)

        return ctx

    return dependency
