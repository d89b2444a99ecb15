# =============================================================================
# Token Codec
# =============================================================================
#
# Stateless signed tokens (JWT, HMAC-SHA256):
#   - session tokens          (7 days, carried in cookie or bearer header)
#   - password reset tokens   (10 minutes, also stored on the account)
#
# A token is accepted only if the signature verifies, it has not expired and
# its type matches what the caller expects.
#
# =============================================================================

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any

import jwt
from pydantic import BaseModel

from examhub.config import Settings
from examhub.core.utils import generate_id, utc_now

logger = logging.getLogger(__name__)

SESSION_TOKEN = "session"
RESET_TOKEN = "password_reset"


class TokenPayload(BaseModel):
    """Decoded token claims."""
    sub: str  # account id
    email: str | None = None
    type: str
    iat: datetime
    exp: datetime
    jti: str


class TokenError(Exception):
    """Base exception for token errors."""
    pass


class TokenExpiredError(TokenError):
    """Token has expired."""
    pass


class TokenInvalidError(TokenError):
    """Token is invalid or malformed."""
    pass


class TokenCodec:
    """Signs and verifies platform tokens against a shared secret."""

    def __init__(
        self,
        secret: str,
        algorithm: str = "HS256",
        session_ttl: timedelta = timedelta(days=7),
        reset_ttl: timedelta = timedelta(minutes=10),
    ):
        if not secret:
            raise ValueError("jwt_secret_blank")
        self.secret = secret
        self.algorithm = algorithm
        self.session_ttl = session_ttl
        self.reset_ttl = reset_ttl

    @classmethod
    def from_settings(cls, settings: Settings) -> TokenCodec:
        return cls(
            secret=settings.jwt_secret_key,
            algorithm=settings.jwt_algorithm,
            session_ttl=timedelta(days=settings.session_token_expire_days),
            reset_ttl=timedelta(minutes=settings.reset_token_expire_minutes),
        )

    # -------------------------------------------------------------------------
    # Creation
    # -------------------------------------------------------------------------

    def encode(
        self,
        subject: str,
        token_type: str,
        ttl: timedelta,
        email: str | None = None,
        now: datetime | None = None,
    ) -> str:
        """Sign a token for ``subject`` valid for ``ttl`` from ``now``."""
        issued = now or utc_now()
        payload: dict[str, Any] = {
            "sub": subject,
            "type": token_type,
            "iat": int(issued.timestamp()),
            "exp": int((issued + ttl).timestamp()),
            # Distinguishes tokens issued within the same second.
            "jti": generate_id("tok"),
        }
        if email:
            payload["email"] = email
        return jwt.encode(payload, self.secret, algorithm=self.algorithm)

    def create_session_token(self, account_id: str, email: str | None = None) -> str:
        return self.encode(account_id, SESSION_TOKEN, self.session_ttl, email=email)

    def create_reset_token(self, account_id: str, email: str | None = None) -> str:
        return self.encode(account_id, RESET_TOKEN, self.reset_ttl, email=email)

    # -------------------------------------------------------------------------
    # Validation
    # -------------------------------------------------------------------------

    def decode(
        self,
        token: str,
        expected_type: str = SESSION_TOKEN,
        verify_exp: bool = True,
    ) -> TokenPayload:
        """
        Decode and validate a token.

        Args:
            token: The encoded token
            expected_type: "session" or "password_reset"
            verify_exp: Set False only to identify the subject of a token
                already known to be expired

        Raises:
            TokenExpiredError: Token has expired
            TokenInvalidError: Bad signature, malformed, or wrong type
        """
        if not token:
            raise TokenInvalidError("Token is blank")

        try:
            payload = jwt.decode(
                token,
                self.secret,
                algorithms=[self.algorithm],
                options={"verify_exp": verify_exp, "require": ["sub", "exp", "iat"]},
            )
        except jwt.ExpiredSignatureError:
            raise TokenExpiredError("Token has expired")
        except jwt.InvalidTokenError as e:
            raise TokenInvalidError(f"Invalid token: {e}")

        if payload.get("type") != expected_type:
            raise TokenInvalidError(f"Expected {expected_type} token, got {payload.get('type')}")

        return TokenPayload(
            sub=str(payload["sub"]),
            email=payload.get("email"),
            type=payload["type"],
            iat=datetime.fromtimestamp(payload["iat"], tz=timezone.utc),
            exp=datetime.fromtimestamp(payload["exp"], tz=timezone.utc),
            jti=payload.get("jti", ""),
        )
