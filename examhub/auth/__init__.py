"""
Authentication and authorization boundary.

Layers, outermost first:
1. EdgeGate - token presence on protected API paths (ASGI middleware)
2. authorize() - token verification, account lookup, role/capability check
3. AuthContext - what the handler receives; owner-or-capability helpers
4. CredentialFlows - email verification, password reset and change

The user/auth routes live in examhub.auth.routes and are mounted by the
application factory.
"""

from examhub.auth.context import AuthContext
from examhub.auth.policies import (
    authorize,
    require_roles,
    resolve_auth_context,
    Policy,
)
from examhub.auth.capabilities import (
    Capability,
    ROLE_CAPABILITIES,
    can_assign_role,
    get_capabilities,
    has_capability,
)
from examhub.auth.tokens import (
    RESET_TOKEN,
    SESSION_TOKEN,
    TokenCodec,
    TokenError,
    TokenExpiredError,
    TokenInvalidError,
    TokenPayload,
)
from examhub.auth.passwords import hash_password, verify_password
from examhub.auth.gate import EdgeGate, PUBLIC_PATHS
from examhub.auth.flows import CredentialFlows, generate_verification_code

__all__ = [
    # Main interface
    "authorize",
    "require_roles",
    "resolve_auth_context",
    "AuthContext",
    "Policy",
    # Roles / capabilities
    "Capability",
    "ROLE_CAPABILITIES",
    "can_assign_role",
    "get_capabilities",
    "has_capability",
    # Tokens
    "RESET_TOKEN",
    "SESSION_TOKEN",
    "TokenCodec",
    "TokenError",
    "TokenExpiredError",
    "TokenInvalidError",
    "TokenPayload",
    # Passwords
    "hash_password",
    "verify_password",
    # Gate
    "EdgeGate",
    "PUBLIC_PATHS",
    # Flows
    "CredentialFlows",
    "generate_verification_code",
]
