"""
Account service - signup, login, profile and role management.
"""

from __future__ import annotations

import logging
from typing import Any

from examhub.auth.capabilities import can_assign_role
from examhub.auth.passwords import hash_password, verify_password
from examhub.core.errors import (
    AccountNotFound,
    AlreadyInDesiredState,
    Conflict,
    InsufficientRole,
    InvalidCredentials,
    ValidationFailed,
)
from examhub.core.models import Account, Role
from examhub.core.utils import utc_now
from examhub.services.rankings import RankingService
from examhub.storage.base import Collections, DuplicateKeyError, StorageProvider

logger = logging.getLogger(__name__)

# Fields an account may change on its own profile.
PROFILE_FIELDS = ("name", "bio", "phone_number", "profile_image")


class AccountService:
    """Reads and writes Account records."""

    def __init__(self, storage: StorageProvider, rankings: RankingService | None = None):
        self.storage = storage
        self.rankings = rankings or RankingService(storage)

    async def get(self, account_id: str) -> Account:
        record = await self.storage.metadata.get(Collections.ACCOUNTS, account_id)
        if record is None:
            raise AccountNotFound()
        return Account.model_validate(record)

    async def find_by_email(self, email: str) -> Account | None:
        records = await self.storage.metadata.query(
            Collections.ACCOUNTS, {"email": email.strip().lower()}, limit=1
        )
        return Account.model_validate(records[0]) if records else None

    async def _save(self, account: Account) -> None:
        account.touch()
        await self.storage.metadata.save(Collections.ACCOUNTS, account.id, account.model_dump())

    # -------------------------------------------------------------------------
    # Signup / login
    # -------------------------------------------------------------------------

    async def signup(
        self,
        email: str,
        password: str,
        name: str | None = None,
        role: Role = Role.USER,
    ) -> Account:
        """
        Create an account.

        Email uniqueness is enforced by the storage layer, so two racing
        signups for the same address cannot both succeed.
        """
        account = Account(
            email=email.strip().lower(),
            password_hash=hash_password(password),
            name=name,
            role=role,
        )
        try:
            await self.storage.metadata.insert(
                Collections.ACCOUNTS, account.id, account.model_dump(), unique=("email",)
            )
        except DuplicateKeyError:
            raise Conflict("User already exists")

        logger.info(f"Account created: {account.id}")
        return account

    async def authenticate(self, email: str, password: str) -> Account:
        """Return the account behind the credentials and stamp its last login."""
        account = await self.find_by_email(email)
        if account is None or not verify_password(password, account.password_hash):
            raise InvalidCredentials()
        if not account.is_active:
            raise InsufficientRole("Account is not active")

        account.last_login = utc_now()
        await self._save(account)
        return account

    # -------------------------------------------------------------------------
    # Profile
    # -------------------------------------------------------------------------

    async def update_profile(self, account_id: str, changes: dict[str, Any]) -> Account:
        account = await self.get(account_id)
        unknown = set(changes) - set(PROFILE_FIELDS)
        if unknown:
            raise ValidationFailed(f"Cannot update fields: {sorted(unknown)}")
        for key, value in changes.items():
            setattr(account, key, value)
        await self._save(account)
        return account

    # -------------------------------------------------------------------------
    # Administration
    # -------------------------------------------------------------------------

    async def change_role(self, actor: Account, target_id: str, new_role: Role) -> Account:
        """
        Move ``target_id`` to ``new_role`` on behalf of ``actor``.

        Nobody may change their own role.
        """
        if actor.id == target_id:
            raise ValidationFailed("You cannot change your own role")

        target = await self.get(target_id)
        if not can_assign_role(actor.role, target.role, new_role):
            raise InsufficientRole("Insufficient permissions to assign this role")
        if target.role == new_role:
            raise AlreadyInDesiredState(f"User already has role {new_role.value}")

        previous = target.role
        target.role = new_role
        await self._save(target)
        logger.info(f"Role of {target.id} changed {previous.value} -> {new_role.value} by {actor.id}")
        return target

    async def set_active(self, actor: Account, target_id: str, is_active: bool) -> Account:
        if actor.id == target_id:
            raise ValidationFailed("You cannot deactivate your own account")
        target = await self.get(target_id)
        if not can_assign_role(actor.role, target.role, target.role):
            raise InsufficientRole("Insufficient permissions to change this account")
        if target.is_active == is_active:
            raise AlreadyInDesiredState("Account already in requested state")
        target.is_active = is_active
        await self._save(target)
        return target

    async def delete(self, actor: Account, target_id: str) -> None:
        """Delete an account with its attempts and leaderboard rows."""
        if actor.id == target_id:
            raise ValidationFailed("You cannot delete your own account")
        await self.get(target_id)
        for record in await self.storage.metadata.query(Collections.SUBMISSIONS, {"user_id": target_id}):
            await self.storage.metadata.delete(Collections.SUBMISSIONS, record["id"])
        await self.rankings.forget_user(target_id)
        await self.storage.metadata.delete(Collections.ACCOUNTS, target_id)
        logger.info(f"Account {target_id} deleted by {actor.id}")

    async def list(
        self,
        role: Role | None = None,
        search: str | None = None,
    ) -> list[Account]:
        filters = {"role": role} if role else None
        records = await self.storage.metadata.query(Collections.ACCOUNTS, filters)
        accounts = [Account.model_validate(r) for r in records]
        if search:
            needle = search.lower()
            accounts = [
                a for a in accounts
                if needle in a.email or (a.name and needle in a.name.lower())
            ]
        accounts.sort(key=lambda a: a.created_at, reverse=True)
        return accounts
