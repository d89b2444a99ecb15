"""
Shared fixtures: an app on in-memory storage with a recording mailer.
"""

from __future__ import annotations

import asyncio
from typing import Any

import pytest
from fastapi.testclient import TestClient

from examhub.api.app import create_app
from examhub.auth.tokens import TokenCodec
from examhub.config import Settings
from examhub.core.models import Role
from examhub.integrations.email import EmailService
from examhub.storage import Collections, StorageProvider, create_local_storage

PASSWORD = "correct-horse"


class RecordingEmailService(EmailService):
    """Captures outgoing mail instead of calling SES."""

    def __init__(self, settings: Settings):
        super().__init__(settings)
        self.sent: list[dict[str, Any]] = []

    async def send(self, to: str, template: str, data: dict[str, Any] | None = None) -> bool:
        self.sent.append({"to": to, "template": template, "data": data or {}})
        return True

    def last(self, template: str) -> dict[str, Any]:
        return [m for m in self.sent if m["template"] == template][-1]


def run_sync(coro):
    """Drive a storage/service coroutine from a synchronous test."""
    return asyncio.run(coro)


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def run():
    return run_sync


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        _env_file=None,
        environment="test",
        jwt_secret_key="test-secret-key-with-enough-length-for-hs256",
        data_dir=str(tmp_path),
        sentry_dsn="",
    )


@pytest.fixture
def storage(tmp_path) -> StorageProvider:
    return create_local_storage(str(tmp_path))


@pytest.fixture
def email(settings) -> RecordingEmailService:
    return RecordingEmailService(settings)


@pytest.fixture
def codec(settings) -> TokenCodec:
    return TokenCodec.from_settings(settings)


@pytest.fixture
def app(settings, storage, email):
    return create_app(settings=settings, storage=storage, email_service=email)


@pytest.fixture
def client(app) -> TestClient:
    return TestClient(app)


@pytest.fixture
def make_user(client, storage):
    """
    Sign up through the API, optionally promote, then log in.

    Returns (account_id, auth headers).
    """

    def _make(email: str, role: Role = Role.USER, password: str = PASSWORD) -> tuple[str, dict[str, str]]:
        response = client.post("/api/users/signup", json={"email": email, "password": password, "name": email.split("@")[0]})
        assert response.status_code == 201, response.text
        account_id = response.json()["user"]["id"]

        if role != Role.USER:
            run_sync(storage.metadata.update(Collections.ACCOUNTS, account_id, {"role": role}))

        response = client.post("/api/users/login", json={"email": email, "password": password})
        assert response.status_code == 200, response.text
        client.cookies.clear()
        return account_id, {"Authorization": f"Bearer {response.json()['token']}"}

    return _make


@pytest.fixture
def admin(make_user):
    return make_user("admin@example.com", Role.ADMIN)


@pytest.fixture
def moderator(make_user):
    return make_user("mod@example.com", Role.MODERATOR)


@pytest.fixture
def student(make_user):
    return make_user("student@example.com")


@pytest.fixture
def make_question(client, moderator):
    """Create a bank question as the moderator and return its JSON."""
    _, headers = moderator

    def _make(**overrides: Any) -> dict[str, Any]:
        body = {
            "content": "What is 2 + 2?",
            "options": ["3", "4", "5", "22"],
            "correct_option": 1,
            "subject": "Maths",
            "topic": "Arithmetic",
            **overrides,
        }
        response = client.post("/api/questions/create", json=body, headers=headers)
        assert response.status_code == 201, response.text
        return response.json()["question"]

    return _make
