"""
Tests for roles, capabilities and the route guard.
"""

from datetime import timedelta

import pytest

from examhub.auth.capabilities import (
    Capability,
    ROLE_CAPABILITIES,
    can_assign_role,
    get_capabilities,
    has_capability,
)
from examhub.auth.context import AuthContext
from examhub.auth.policies import Policy
from examhub.auth.tokens import SESSION_TOKEN
from examhub.core.errors import InsufficientRole
from examhub.core.models import Account, Role
from examhub.core.utils import utc_now
from examhub.storage import Collections


def _ctx(role: Role, account_id: str = "acct_1") -> AuthContext:
    return AuthContext(
        account=Account(id=account_id, email=f"{account_id}@example.com", password_hash="x:y", role=role),
        token="tok",
    )


# =============================================================================
# Role → capability policy
# =============================================================================


class TestCapabilities:
    def test_admin_has_everything(self):
        assert get_capabilities(Role.ADMIN) == set(Capability)

    def test_publish_is_admin_only(self):
        holders = {role for role, caps in ROLE_CAPABILITIES.items() if Capability.EXAM_PUBLISH in caps}
        assert holders == {Role.ADMIN}

    def test_moderator_authors_but_cannot_delete_exams(self):
        assert has_capability(Capability.QUESTION_CREATE, Role.MODERATOR)
        assert has_capability(Capability.EXAM_EDIT, Role.MODERATOR)
        assert not has_capability(Capability.EXAM_DELETE, Role.MODERATOR)
        assert not has_capability(Capability.USER_DELETE, Role.MODERATOR)

    def test_student(self):
        assert has_capability(Capability.SUBMISSION_CREATE, Role.USER)
        assert not has_capability(Capability.QUESTION_READ, Role.USER)
        assert not has_capability(Capability.EXAM_READ_DRAFTS, Role.USER)

    def test_guest_reads_only(self):
        assert get_capabilities(Role.GUEST) == {Capability.EXAM_READ, Capability.RANKING_READ}

    def test_no_role(self):
        assert get_capabilities(None) == set()

    def test_capabilities_are_copies(self):
        get_capabilities(Role.USER).add(Capability.USER_DELETE)
        assert not has_capability(Capability.USER_DELETE, Role.USER)


class TestRoleAssignment:
    def test_admin_may_grant_anything(self):
        assert can_assign_role(Role.ADMIN, Role.USER, Role.ADMIN)
        assert can_assign_role(Role.ADMIN, Role.ADMIN, Role.USER)

    def test_moderator_may_not_touch_admin(self):
        assert can_assign_role(Role.MODERATOR, Role.USER, Role.MODERATOR)
        assert not can_assign_role(Role.MODERATOR, Role.USER, Role.ADMIN)
        assert not can_assign_role(Role.MODERATOR, Role.ADMIN, Role.USER)

    def test_students_may_not_assign(self):
        assert not can_assign_role(Role.USER, Role.GUEST, Role.USER)


# =============================================================================
# AuthContext / Policy
# =============================================================================


class TestAuthContext:
    def test_require(self):
        ctx = _ctx(Role.USER)
        ctx.require(Capability.SUBMISSION_CREATE)
        with pytest.raises(InsufficientRole):
            ctx.require(Capability.EXAM_PUBLISH)

    def test_unknown_capability_string(self):
        assert not _ctx(Role.ADMIN).can("no.such.thing")

    def test_owner_or_capability(self):
        ctx = _ctx(Role.USER, "acct_1")
        ctx.require_owner_or("acct_1", Capability.USER_READ_ALL)
        with pytest.raises(InsufficientRole):
            ctx.require_owner_or("acct_2", Capability.USER_READ_ALL)
        _ctx(Role.MODERATOR).require_owner_or("acct_2", Capability.USER_READ_ALL)


class TestPolicy:
    def test_roles(self):
        policy = Policy(roles={Role.ADMIN, Role.MODERATOR})
        assert policy.check(_ctx(Role.MODERATOR)) == (True, None)
        allowed, message = policy.check(_ctx(Role.USER))
        assert not allowed
        assert "ADMIN" in message

    def test_all_capabilities(self):
        policy = Policy([Capability.EXAM_CREATE, Capability.EXAM_PUBLISH])
        assert not policy.check(_ctx(Role.MODERATOR))[0]
        assert policy.check(_ctx(Role.ADMIN))[0]

    def test_any_capability(self):
        policy = Policy([Capability.EXAM_CREATE, Capability.EXAM_PUBLISH], require_all=False)
        assert policy.check(_ctx(Role.MODERATOR))[0]
        assert not policy.check(_ctx(Role.USER))[0]

    def test_custom_check(self):
        policy = Policy(custom_check=lambda ctx: ctx.account.is_email_verified)
        assert not policy.check(_ctx(Role.ADMIN))[0]


# =============================================================================
# Route guard through the app
# =============================================================================


class TestRouteGuard:
    def test_valid_token(self, client, student):
        _, headers = student
        response = client.get("/api/users/me", headers=headers)
        assert response.status_code == 200
        assert response.json()["user"]["email"] == "student@example.com"

    def test_cookie_session(self, client, student):
        client.post("/api/users/login", json={"email": "student@example.com", "password": "correct-horse"})
        assert client.get("/api/users/me").status_code == 200

    def test_invalid_signature(self, client):
        response = client.get("/api/users/me", headers={"Authorization": "Bearer garbage"})
        assert response.status_code == 401
        assert response.json()["error"] == "invalid_token"

    def test_expired_token(self, client, codec, student):
        account_id, _ = student
        token = codec.encode(account_id, SESSION_TOKEN, timedelta(days=7), now=utc_now() - timedelta(days=8))
        response = client.get("/api/users/me", headers={"Authorization": f"Bearer {token}"})
        assert response.status_code == 401
        assert response.json()["error"] == "invalid_token"

    def test_reset_token_is_not_a_session(self, client, codec, student):
        account_id, _ = student
        token = codec.create_reset_token(account_id)
        response = client.get("/api/users/me", headers={"Authorization": f"Bearer {token}"})
        assert response.status_code == 401

    def test_valid_token_for_missing_account(self, client, codec):
        token = codec.create_session_token("acct_gone")
        response = client.get("/api/users/me", headers={"Authorization": f"Bearer {token}"})
        assert response.status_code == 404
        assert response.json() == {
            "success": False,
            "error": "account_not_found",
            "message": "User not found",
        }

    def test_expired_token_for_missing_account_is_invalid_not_missing(self, client, codec):
        token = codec.encode("acct_gone", SESSION_TOKEN, timedelta(days=1), now=utc_now() - timedelta(days=2))
        response = client.get("/api/users/me", headers={"Authorization": f"Bearer {token}"})
        assert response.status_code == 401

    def test_insufficient_role(self, client, student):
        _, headers = student
        response = client.get("/api/users/all", headers=headers)
        assert response.status_code == 403
        assert response.json()["error"] == "insufficient_role"

    def test_inactive_account(self, client, storage, student, run):
        account_id, headers = student
        run(storage.metadata.update(Collections.ACCOUNTS, account_id, {"is_active": False}))
        assert client.get("/api/users/me", headers=headers).status_code == 403

    def test_role_read_per_request(self, client, storage, student, run):
        account_id, headers = student
        assert client.get("/api/users/all", headers=headers).status_code == 403
        run(storage.metadata.update(Collections.ACCOUNTS, account_id, {"role": Role.MODERATOR}))
        assert client.get("/api/users/all", headers=headers).status_code == 200
