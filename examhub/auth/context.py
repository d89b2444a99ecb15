"""
Auth context - the "who can do what" for each request.

This is the lightweight object the route guard hands to handlers.
It contains everything needed to make authorization decisions.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from examhub.auth.capabilities import Capability, get_capabilities
from examhub.core.errors import InsufficientRole
from examhub.core.models import Account, Role


@dataclass
class AuthContext:
    """
    Authorization context for a request.

    Usage in routes:
        async def my_route(ctx: AuthContext = Depends(authorize(Capability.EXAM_CREATE))):
            print(f"Account {ctx.account_id} creating an exam")
            if ctx.can(Capability.EXAM_PUBLISH):
                ...
    """

    account: Account
    token: str

    # Computed capabilities (cached)
    _capabilities: set[Capability] = field(default_factory=set, repr=False)

    def __post_init__(self):
        self._capabilities = get_capabilities(self.account.role)

    @property
    def account_id(self) -> str:
        return self.account.id

    @property
    def email(self) -> str:
        return self.account.email

    @property
    def role(self) -> Role:
        return self.account.role

    @property
    def is_admin(self) -> bool:
        return self.account.role == Role.ADMIN

    @property
    def capabilities(self) -> set[Capability]:
        return self._capabilities

    def can(self, capability: Capability | str) -> bool:
        """Check if the account has a capability."""
        if isinstance(capability, str):
            try:
                capability = Capability(capability)
            except ValueError:
                return False
        return capability in self._capabilities

    def can_any(self, *capabilities: Capability | str) -> bool:
        return any(self.can(c) for c in capabilities)

    def require(self, capability: Capability | str) -> None:
        """Raise InsufficientRole if the account lacks ``capability``."""
        if not self.can(capability):
            raise InsufficientRole(f"Permission denied: {Capability(capability).value}")

    def is_owner(self, owner_id: str | None) -> bool:
        return owner_id is not None and owner_id == self.account.id

    def require_owner_or(self, owner_id: str | None, capability: Capability | str) -> None:
        """Allow the owner of a resource, or anyone holding ``capability``."""
        if self.is_owner(owner_id):
            return
        self.require(capability)
