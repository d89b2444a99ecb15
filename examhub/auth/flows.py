"""
Password and email-verification flows.

Both flows share one shape, driven by a value stored on the account:

    none issued → issued (pending) → consumed | expired | superseded

- Issuing overwrites whatever was pending, so only the newest code/token
  can ever match.
- A matching value before expiry is consumed and cleared (one-time use).
- Expiry is noticed lazily when someone tries to use the value; the stored
  value is cleared and the caller has to start again.
- Nothing is retried. Email delivery is reported, never awaited beyond the
  initial send.
"""

from __future__ import annotations

import logging
import secrets
from datetime import timedelta

from examhub.auth.passwords import hash_password, verify_password
from examhub.auth.tokens import RESET_TOKEN, TokenCodec, TokenError, TokenExpiredError
from examhub.core.errors import (
    AccountNotFound,
    AlreadyInDesiredState,
    Expired,
    ValidationFailed,
)
from examhub.core.models import Account
from examhub.core.utils import as_utc, utc_now
from examhub.integrations.email import EmailService
from examhub.storage.base import Collections, StorageProvider

logger = logging.getLogger(__name__)


def generate_verification_code() -> str:
    """Six random digits, never starting with zero."""
    return str(100000 + secrets.randbelow(900000))


class CredentialFlows:
    """Verification-code, password-reset and password-change flows."""

    def __init__(
        self,
        storage: StorageProvider,
        codec: TokenCodec,
        email: EmailService,
        code_ttl: timedelta = timedelta(minutes=10),
    ):
        self.storage = storage
        self.codec = codec
        self.email = email
        self.code_ttl = code_ttl

    # -------------------------------------------------------------------------
    # Persistence helpers
    # -------------------------------------------------------------------------

    async def _load(self, account_id: str) -> Account:
        record = await self.storage.metadata.get(Collections.ACCOUNTS, account_id)
        if record is None:
            raise AccountNotFound()
        return Account.model_validate(record)

    async def _save(self, account: Account) -> None:
        account.touch()
        await self.storage.metadata.save(Collections.ACCOUNTS, account.id, account.model_dump())

    async def _find_by_email(self, email: str) -> Account | None:
        records = await self.storage.metadata.query(
            Collections.ACCOUNTS, {"email": email.strip().lower()}, limit=1
        )
        return Account.model_validate(records[0]) if records else None

    # -------------------------------------------------------------------------
    # Email verification
    # -------------------------------------------------------------------------

    async def send_verification_code(self, account_id: str) -> bool:
        """
        Issue a fresh code (superseding any pending one) and email it.

        Returns whether the email was handed off successfully.
        """
        account = await self._load(account_id)
        if account.is_email_verified:
            raise AlreadyInDesiredState("Email is already verified")

        account.email_verification_code = generate_verification_code()
        account.email_verification_expiry = utc_now() + self.code_ttl
        await self._save(account)

        sent = await self.email.send_verification_code(
            account.email, account.name, account.email_verification_code
        )
        if not sent:
            logger.warning(f"Verification email for {account.id} was not delivered")
        return sent

    async def verify_email(self, account_id: str, code: str) -> Account:
        """Consume a verification code and mark the email verified."""
        account = await self._load(account_id)
        if account.is_email_verified:
            raise AlreadyInDesiredState("Email is already verified")

        if not account.email_verification_code or not account.email_verification_expiry:
            raise ValidationFailed("No verification code found. Please request a new one.")

        if utc_now() > as_utc(account.email_verification_expiry):
            account.email_verification_code = None
            account.email_verification_expiry = None
            await self._save(account)
            raise Expired("Verification code has expired. Please request a new one.")

        if not secrets.compare_digest(account.email_verification_code, code):
            raise ValidationFailed("Invalid verification code")

        account.is_email_verified = True
        account.email_verification_code = None
        account.email_verification_expiry = None
        await self._save(account)
        logger.info(f"Email verified for {account.id}")
        return account

    async def verification_status(self, account_id: str) -> dict:
        account = await self._load(account_id)
        pending = (
            account.email_verification_expiry is not None
            and utc_now() <= as_utc(account.email_verification_expiry)
        )
        return {
            "is_email_verified": account.is_email_verified,
            "has_pending_code": bool(account.email_verification_code) and pending,
            "code_expires_at": account.email_verification_expiry if pending else None,
        }

    # -------------------------------------------------------------------------
    # Password reset
    # -------------------------------------------------------------------------

    async def request_password_reset(self, email: str) -> None:
        """
        Issue a reset token for ``email`` if such an account exists.

        Returns nothing either way so callers cannot tell the difference.
        """
        account = await self._find_by_email(email)
        if account is None:
            logger.info("Password reset requested for unknown email")
            return

        token = self.codec.create_reset_token(account.id, account.email)
        account.reset_token = token
        account.reset_token_expiry = utc_now() + self.codec.reset_ttl
        await self._save(account)

        sent = await self.email.send_password_reset(account.email, account.name, token)
        if not sent:
            logger.warning(f"Password reset email for {account.id} was not delivered")

    async def reset_password(self, token: str, new_password: str) -> None:
        """Consume a reset token and set a new password."""
        try:
            payload = self.codec.decode(token, expected_type=RESET_TOKEN)
        except TokenExpiredError:
            await self._clear_expired_reset(token)
            raise Expired("Reset token has expired. Please request a new password reset.")
        except TokenError:
            raise ValidationFailed("Invalid or expired reset token")

        account = await self._load(payload.sub)

        if not account.reset_token or not account.reset_token_expiry:
            raise ValidationFailed("No password reset request found")

        # Only the most recently issued token is honoured.
        if not secrets.compare_digest(account.reset_token, token):
            raise ValidationFailed("Invalid reset token")

        if utc_now() > as_utc(account.reset_token_expiry):
            account.reset_token = None
            account.reset_token_expiry = None
            await self._save(account)
            raise Expired("Reset token has expired. Please request a new password reset.")

        account.password_hash = hash_password(new_password)
        account.reset_token = None
        account.reset_token_expiry = None
        await self._save(account)
        logger.info(f"Password reset for {account.id}")

    async def _clear_expired_reset(self, token: str) -> None:
        try:
            payload = self.codec.decode(token, expected_type=RESET_TOKEN, verify_exp=False)
        except TokenError:
            return
        record = await self.storage.metadata.get(Collections.ACCOUNTS, payload.sub)
        if record is None:
            return
        account = Account.model_validate(record)
        if account.reset_token == token:
            account.reset_token = None
            account.reset_token_expiry = None
            await self._save(account)

    # -------------------------------------------------------------------------
    # Password change (authenticated)
    # -------------------------------------------------------------------------

    async def change_password(self, account_id: str, current_password: str, new_password: str) -> None:
        account = await self._load(account_id)
        if not verify_password(current_password, account.password_hash):
            raise ValidationFailed("Current password is incorrect")
        if verify_password(new_password, account.password_hash):
            raise AlreadyInDesiredState("New password must differ from the current one")

        account.password_hash = hash_password(new_password)
        await self._save(account)
