# =============================================================================
# Email Delivery Integration (AWS SES)
# =============================================================================
#
# Setup:
#   1. Verify your sending address in the AWS SES console
#   2. Set env vars:
#      - AWS_SES_FROM_EMAIL=noreply@yourdomain.com
#      - AWS_ACCESS_KEY_ID=...
#      - AWS_SECRET_ACCESS_KEY=...
#      - AWS_REGION=us-east-1
#
# Delivery is fire-and-report: a send either succeeds or returns False.
# Nothing here retries.
#
# =============================================================================

from __future__ import annotations

import logging
from typing import Any

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from examhub.config import Settings

logger = logging.getLogger(__name__)


# =============================================================================
# Email Templates
# =============================================================================

TEMPLATES = {
    "verification_code": {
        "subject": "Verify your email address",
        "text": """
Hello {name},

Your ExamHub verification code is:

    {code}

This code expires in {expires_minutes} minutes.

If you didn't create an account, you can safely ignore this email.
        """,
    },

    "password_reset": {
        "subject": "Reset your ExamHub password",
        "text": """
Hello {name},

We received a request to reset your password. Visit this link to choose a new one:
{reset_url}

This link expires in {expires_minutes} minutes.

If you didn't request this, you can safely ignore this email.
        """,
    },

    "welcome": {
        "subject": "Welcome to ExamHub!",
        "text": """
Welcome to ExamHub, {name}!

Your account is ready. Sign in at {app_url} and verify your email to get started.
        """,
    },
}


# =============================================================================
# Email Service
# =============================================================================

class EmailService:
    """Send emails via AWS SES."""

    def __init__(self, settings: Settings):
        self.settings = settings
        self._client = None

    @property
    def client(self):
        """Lazy-load SES client."""
        if self._client is None and self.settings.use_aws:
            self._client = boto3.client(
                'ses',
                region_name=self.settings.aws_region,
                aws_access_key_id=self.settings.aws_access_key_id,
                aws_secret_access_key=self.settings.aws_secret_access_key,
            )
        return self._client

    @property
    def is_configured(self) -> bool:
        """Check if email sending is properly configured."""
        return self.settings.use_aws and bool(self.settings.aws_ses_from_email)

    async def send(
        self,
        to: str,
        template: str,
        data: dict[str, Any] | None = None,
    ) -> bool:
        """
        Send an email using a template.

        Returns:
            True if sent successfully, False otherwise
        """
        if template not in TEMPLATES:
            logger.error(f"Unknown email template: {template}")
            return False

        tpl = TEMPLATES[template]
        data = data or {}

        try:
            text_body = tpl["text"].format(**data)
        except KeyError as e:
            logger.error(f"Missing template variable for '{template}': {e}")
            return False

        if not self.is_configured:
            logger.warning(f"Email not configured - would send '{template}' to {to}")
            if not self.settings.is_production:
                logger.info(f"Email content: {text_body}")
            return False

        try:
            response = self.client.send_email(
                Source=self.settings.aws_ses_from_email,
                Destination={"ToAddresses": [to]},
                Message={
                    "Subject": {"Data": tpl["subject"], "Charset": "UTF-8"},
                    "Body": {"Text": {"Data": text_body, "Charset": "UTF-8"}},
                },
            )
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Failed to send email to {to}: {e}")
            return False

        logger.info(f"Email sent to {to}: {template} (MessageId: {response['MessageId']})")
        return True

    async def send_verification_code(self, email: str, name: str | None, code: str) -> bool:
        return await self.send(
            to=email,
            template="verification_code",
            data={
                "name": name or email,
                "code": code,
                "expires_minutes": self.settings.verification_code_expire_minutes,
            },
        )

    async def send_password_reset(self, email: str, name: str | None, reset_token: str) -> bool:
        reset_url = f"{self.settings.app_url.rstrip('/')}/forgot-password/{reset_token}"
        return await self.send(
            to=email,
            template="password_reset",
            data={
                "name": name or email,
                "reset_url": reset_url,
                "expires_minutes": self.settings.reset_token_expire_minutes,
            },
        )

    async def send_welcome(self, email: str, name: str | None) -> bool:
        return await self.send(
            to=email,
            template="welcome",
            data={"name": name or email, "app_url": self.settings.app_url},
        )
