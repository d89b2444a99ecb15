"""
Tests for email verification, password reset and password change.
"""

from datetime import timedelta

import pytest

from examhub.auth.flows import CredentialFlows, generate_verification_code
from examhub.auth.passwords import verify_password
from examhub.auth.tokens import RESET_TOKEN
from examhub.core.errors import AlreadyInDesiredState, Expired, ValidationFailed
from examhub.core.utils import utc_now
from examhub.services import AccountService
from examhub.storage import Collections

from conftest import PASSWORD


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def flows(storage, codec, email) -> CredentialFlows:
    return CredentialFlows(storage, codec, email)


@pytest.fixture
def accounts(storage) -> AccountService:
    return AccountService(storage)


async def _signup(accounts: AccountService, email: str = "learner@example.com"):
    return await accounts.signup(email, PASSWORD, name="Learner")


async def _stored(storage, account_id):
    return await storage.metadata.get(Collections.ACCOUNTS, account_id)


# =============================================================================
# Verification codes
# =============================================================================


class TestVerificationCode:
    def test_code_shape(self):
        for _ in range(50):
            code = generate_verification_code()
            assert len(code) == 6 and code.isdigit() and code[0] != "0"

    @pytest.mark.asyncio
    async def test_send_stores_and_emails(self, flows, accounts, storage, email):
        account = await _signup(accounts)
        assert await flows.send_verification_code(account.id)

        record = await _stored(storage, account.id)
        assert record["email_verification_code"] == email.last("verification_code")["data"]["code"]
        assert record["email_verification_expiry"] > utc_now()

    @pytest.mark.asyncio
    async def test_wrong_code_changes_nothing(self, flows, accounts, storage):
        account = await _signup(accounts)
        await flows.send_verification_code(account.id)
        before = await _stored(storage, account.id)
        wrong = "111111" if before["email_verification_code"] != "111111" else "222222"

        with pytest.raises(ValidationFailed):
            await flows.verify_email(account.id, wrong)

        after = await _stored(storage, account.id)
        assert after["email_verification_code"] == before["email_verification_code"]
        assert after["email_verification_expiry"] == before["email_verification_expiry"]
        assert after["is_email_verified"] is False

    @pytest.mark.asyncio
    async def test_correct_code_verifies_once(self, flows, accounts, storage):
        account = await _signup(accounts)
        await flows.send_verification_code(account.id)
        code = (await _stored(storage, account.id))["email_verification_code"]

        verified = await flows.verify_email(account.id, code)
        assert verified.is_email_verified
        assert verified.email_verification_code is None
        assert verified.email_verification_expiry is None

        with pytest.raises(AlreadyInDesiredState):
            await flows.verify_email(account.id, code)
        with pytest.raises(AlreadyInDesiredState):
            await flows.send_verification_code(account.id)

    @pytest.mark.asyncio
    async def test_reissue_supersedes(self, flows, accounts, storage):
        account = await _signup(accounts)
        await flows.send_verification_code(account.id)
        first = (await _stored(storage, account.id))["email_verification_code"]
        await flows.send_verification_code(account.id)
        second = (await _stored(storage, account.id))["email_verification_code"]

        if first != second:
            with pytest.raises(ValidationFailed):
                await flows.verify_email(account.id, first)
        assert (await flows.verify_email(account.id, second)).is_email_verified

    @pytest.mark.asyncio
    async def test_expired_code_is_cleared(self, flows, accounts, storage):
        account = await _signup(accounts)
        await flows.send_verification_code(account.id)
        code = (await _stored(storage, account.id))["email_verification_code"]
        await storage.metadata.update(
            Collections.ACCOUNTS, account.id, {"email_verification_expiry": utc_now() - timedelta(seconds=1)}
        )

        with pytest.raises(Expired):
            await flows.verify_email(account.id, code)

        record = await _stored(storage, account.id)
        assert record["email_verification_code"] is None
        assert record["is_email_verified"] is False

    @pytest.mark.asyncio
    async def test_no_code_issued(self, flows, accounts):
        account = await _signup(accounts)
        with pytest.raises(ValidationFailed):
            await flows.verify_email(account.id, "123456")

    @pytest.mark.asyncio
    async def test_status(self, flows, accounts):
        account = await _signup(accounts)
        assert (await flows.verification_status(account.id))["has_pending_code"] is False
        await flows.send_verification_code(account.id)
        status = await flows.verification_status(account.id)
        assert status["has_pending_code"] is True
        assert status["is_email_verified"] is False


# =============================================================================
# Password reset
# =============================================================================


class TestPasswordReset:
    @pytest.mark.asyncio
    async def test_unknown_email_is_silent(self, flows, email):
        assert await flows.request_password_reset("nobody@example.com") is None
        assert email.sent == []

    @pytest.mark.asyncio
    async def test_reset_flow(self, flows, accounts, storage, email):
        account = await _signup(accounts)
        await flows.request_password_reset("Learner@Example.com")

        token = (await _stored(storage, account.id))["reset_token"]
        assert token in email.last("password_reset")["data"]["reset_url"]

        await flows.reset_password(token, "brand-new-pass")
        record = await _stored(storage, account.id)
        assert verify_password("brand-new-pass", record["password_hash"])
        assert record["reset_token"] is None
        assert record["reset_token_expiry"] is None

        with pytest.raises(ValidationFailed):
            await flows.reset_password(token, "another-pass")

    @pytest.mark.asyncio
    async def test_only_latest_token_honoured(self, flows, accounts, storage):
        account = await _signup(accounts)
        await flows.request_password_reset(account.email)
        first = (await _stored(storage, account.id))["reset_token"]
        await flows.request_password_reset(account.email)
        second = (await _stored(storage, account.id))["reset_token"]

        assert first != second
        with pytest.raises(ValidationFailed):
            await flows.reset_password(first, "brand-new-pass")
        await flows.reset_password(second, "brand-new-pass")

    @pytest.mark.asyncio
    async def test_expired_token_is_cleared(self, flows, codec, accounts, storage):
        account = await _signup(accounts)
        token = codec.encode(
            account.id, RESET_TOKEN, timedelta(minutes=10), now=utc_now() - timedelta(minutes=11)
        )
        await storage.metadata.update(
            Collections.ACCOUNTS,
            account.id,
            {"reset_token": token, "reset_token_expiry": utc_now() - timedelta(minutes=1)},
        )

        with pytest.raises(Expired):
            await flows.reset_password(token, "brand-new-pass")
        assert (await _stored(storage, account.id))["reset_token"] is None

    @pytest.mark.asyncio
    async def test_stored_expiry_enforced(self, flows, accounts, storage):
        account = await _signup(accounts)
        await flows.request_password_reset(account.email)
        token = (await _stored(storage, account.id))["reset_token"]
        await storage.metadata.update(
            Collections.ACCOUNTS, account.id, {"reset_token_expiry": utc_now() - timedelta(seconds=1)}
        )

        with pytest.raises(Expired):
            await flows.reset_password(token, "brand-new-pass")

    @pytest.mark.asyncio
    async def test_session_token_rejected(self, flows, codec, accounts):
        account = await _signup(accounts)
        with pytest.raises(ValidationFailed):
            await flows.reset_password(codec.create_session_token(account.id), "brand-new-pass")


# =============================================================================
# Password change
# =============================================================================


class TestChangePassword:
    @pytest.mark.asyncio
    async def test_change(self, flows, accounts, storage):
        account = await _signup(accounts)
        await flows.change_password(account.id, PASSWORD, "brand-new-pass")
        assert verify_password("brand-new-pass", (await _stored(storage, account.id))["password_hash"])

    @pytest.mark.asyncio
    async def test_wrong_current(self, flows, accounts):
        account = await _signup(accounts)
        with pytest.raises(ValidationFailed):
            await flows.change_password(account.id, "not-it", "brand-new-pass")

    @pytest.mark.asyncio
    async def test_same_password(self, flows, accounts):
        account = await _signup(accounts)
        with pytest.raises(AlreadyInDesiredState):
            await flows.change_password(account.id, PASSWORD, PASSWORD)
