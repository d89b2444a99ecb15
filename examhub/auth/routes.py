# =============================================================================
# User & Auth API Routes
# =============================================================================
#
# Endpoints (under the API prefix):
#   POST /users/signup                  - Create account
#   POST /users/login                   - Session token (+ cookie)
#   POST /users/logout                  - Clear session cookie
#   GET  /users/me                      - Current account
#   PUT  /users/updateuserprofile       - Edit own profile
#   POST /users/change-password         - Change password (needs current)
#   POST /users/send-verification       - Email a 6-digit code
#   POST /users/verify-email            - Consume the code
#   GET  /users/check-verification-status
#
# Administration:
#   GET    /users/all                   - List accounts
#   GET    /users/admins                - List admins and moderators
#   GET    /users/{id}                  - One account (self or admin)
#   DELETE /users/{id}                  - Delete account
#   PUT    /users/{id}/role             - Change role
#   PUT    /users/{id}/status           - Activate / deactivate
#   GET    /users/{id}/submissions      - Account's submissions
#
# Recovery (public):
#   POST /auth/forgot-password          - Email a reset link
#   POST /auth/reset-password           - Set a new password with the link token
#
# =============================================================================

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Query, Response, status
from pydantic import BaseModel, ConfigDict, EmailStr, Field

from examhub.api.deps import (
    get_account_service,
    get_app_settings,
    get_email_service,
    get_flows,
    get_submission_service,
    get_token_codec,
)
from examhub.auth.capabilities import Capability
from examhub.auth.context import AuthContext
from examhub.auth.flows import CredentialFlows
from examhub.auth.policies import authorize, require_roles
from examhub.auth.tokens import TokenCodec
from examhub.config import Settings
from examhub.core.errors import ValidationFailed
from examhub.core.models import AccountResponse, Role
from examhub.core.utils import paginate
from examhub.integrations.email import EmailService
from examhub.services import AccountService, SubmissionService

logger = logging.getLogger(__name__)

users_router = APIRouter(prefix="/users", tags=["users"])
recovery_router = APIRouter(prefix="/auth", tags=["auth"])

PASSWORD_MIN_LENGTH = 6

# Same answer whether or not the email is registered.
RESET_REQUESTED_MESSAGE = "If an account exists with this email, a password reset link has been sent."


# =============================================================================
# Request Models
# =============================================================================


class SignupRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    email: EmailStr
    password: str = Field(min_length=PASSWORD_MIN_LENGTH)
    name: str | None = Field(default=None, max_length=100)


class LoginRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    email: EmailStr
    password: str


class ProfileUpdateRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str | None = Field(default=None, max_length=100)
    bio: str | None = Field(default=None, max_length=500)
    phone_number: str | None = Field(default=None, max_length=20)
    profile_image: str | None = None


class ChangePasswordRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    current_password: str
    new_password: str = Field(min_length=PASSWORD_MIN_LENGTH)


class VerifyEmailRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    code: str = Field(pattern=r"^\d{6}$")


class ChangeRoleRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    role: Role


class ChangeStatusRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    is_active: bool


class ForgotPasswordRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    email: EmailStr


class ResetPasswordRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    token: str
    new_password: str = Field(min_length=PASSWORD_MIN_LENGTH)
    confirm_password: str


# =============================================================================
# Public Endpoints
# =============================================================================


@users_router.post("/signup", status_code=status.HTTP_201_CREATED)
async def signup(
    data: SignupRequest,
    accounts: AccountService = Depends(get_account_service),
    email: EmailService = Depends(get_email_service),
):
    """Create a student account."""
    account = await accounts.signup(data.email, data.password, name=data.name)
    await email.send_welcome(account.email, account.name)
    return {
        "success": True,
        "message": "User created successfully",
        "user": AccountResponse.from_account(account),
    }


@users_router.post("/login")
async def login(
    data: LoginRequest,
    response: Response,
    accounts: AccountService = Depends(get_account_service),
    codec: TokenCodec = Depends(get_token_codec),
    settings: Settings = Depends(get_app_settings),
):
    """
    Authenticate and start a session.

    The token is returned in the body for header-based clients and set
    as an httpOnly cookie for the browser.
    """
    account = await accounts.authenticate(data.email, data.password)
    token = codec.create_session_token(account.id, account.email)

    response.set_cookie(
        key=settings.session_cookie_name,
        value=token,
        max_age=settings.session_max_age,
        httponly=True,
        secure=settings.is_production,
        samesite="strict",
        path="/",
    )
    return {
        "success": True,
        "message": "Login successful",
        "token": token,
        "user": AccountResponse.from_account(account),
    }


@users_router.post("/logout")
async def logout(response: Response, settings: Settings = Depends(get_app_settings)):
    """Clear the session cookie. Header-token clients simply discard theirs."""
    response.delete_cookie(
        key=settings.session_cookie_name,
        path="/",
        httponly=True,
        secure=settings.is_production,
        samesite="strict",
    )
    return {"success": True, "message": "Logged out successfully"}


# =============================================================================
# Own account
# =============================================================================


@users_router.get("/me")
async def me(ctx: AuthContext = Depends(authorize())):
    return {
        "success": True,
        "user": AccountResponse.from_account(ctx.account),
        "capabilities": sorted(c.value for c in ctx.capabilities),
    }


@users_router.put("/updateuserprofile")
async def update_profile(
    data: ProfileUpdateRequest,
    ctx: AuthContext = Depends(authorize(Capability.PROFILE_EDIT)),
    accounts: AccountService = Depends(get_account_service),
):
    changes = data.model_dump(exclude_unset=True)
    if not changes:
        raise ValidationFailed("No profile fields supplied")
    account = await accounts.update_profile(ctx.account_id, changes)
    return {"success": True, "user": AccountResponse.from_account(account)}


@users_router.post("/change-password")
async def change_password(
    data: ChangePasswordRequest,
    ctx: AuthContext = Depends(authorize()),
    flows: CredentialFlows = Depends(get_flows),
):
    await flows.change_password(ctx.account_id, data.current_password, data.new_password)
    return {"success": True, "message": "Password changed successfully"}


@users_router.post("/send-verification")
async def send_verification(
    ctx: AuthContext = Depends(authorize()),
    flows: CredentialFlows = Depends(get_flows),
):
    sent = await flows.send_verification_code(ctx.account_id)
    return {
        "success": True,
        "message": "Verification code sent" if sent else "Verification code issued but email delivery failed",
        "email_sent": sent,
    }


@users_router.post("/verify-email")
async def verify_email(
    data: VerifyEmailRequest,
    ctx: AuthContext = Depends(authorize()),
    flows: CredentialFlows = Depends(get_flows),
):
    account = await flows.verify_email(ctx.account_id, data.code)
    return {
        "success": True,
        "message": "Email verified successfully",
        "user": AccountResponse.from_account(account),
    }


@users_router.get("/check-verification-status")
async def check_verification_status(
    ctx: AuthContext = Depends(authorize()),
    flows: CredentialFlows = Depends(get_flows),
):
    return {"success": True, **await flows.verification_status(ctx.account_id)}


# =============================================================================
# Administration
# =============================================================================


@users_router.get("/all")
async def list_users(
    role: Role | None = None,
    search: str | None = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    ctx: AuthContext = Depends(authorize(Capability.USER_READ_ALL)),
    accounts: AccountService = Depends(get_account_service),
):
    users, pagination = paginate(await accounts.list(role=role, search=search), page, limit)
    return {
        "success": True,
        "users": [AccountResponse.from_account(a) for a in users],
        "pagination": pagination,
    }


@users_router.get("/admins")
async def list_admins(
    ctx: AuthContext = Depends(require_roles(Role.ADMIN, Role.MODERATOR)),
    accounts: AccountService = Depends(get_account_service),
):
    staff = await accounts.list(role=Role.ADMIN) + await accounts.list(role=Role.MODERATOR)
    return {"success": True, "users": [AccountResponse.from_account(a) for a in staff]}


@users_router.get("/{user_id}")
async def get_user(
    user_id: str,
    ctx: AuthContext = Depends(authorize()),
    accounts: AccountService = Depends(get_account_service),
):
    ctx.require_owner_or(user_id, Capability.USER_READ_ALL)
    account = await accounts.get(user_id)
    return {"success": True, "user": AccountResponse.from_account(account)}


@users_router.delete("/{user_id}")
async def delete_user(
    user_id: str,
    ctx: AuthContext = Depends(authorize(Capability.USER_DELETE)),
    accounts: AccountService = Depends(get_account_service),
):
    await accounts.delete(ctx.account, user_id)
    return {"success": True, "message": "User deleted successfully"}


@users_router.put("/{user_id}/role")
async def change_role(
    user_id: str,
    data: ChangeRoleRequest,
    ctx: AuthContext = Depends(authorize(Capability.USER_CHANGE_ROLE)),
    accounts: AccountService = Depends(get_account_service),
):
    account = await accounts.change_role(ctx.account, user_id, data.role)
    return {
        "success": True,
        "message": f"User role updated to {account.role.value}",
        "user": AccountResponse.from_account(account),
    }


@users_router.put("/{user_id}/status")
async def change_status(
    user_id: str,
    data: ChangeStatusRequest,
    ctx: AuthContext = Depends(authorize(Capability.USER_DELETE)),
    accounts: AccountService = Depends(get_account_service),
):
    account = await accounts.set_active(ctx.account, user_id, data.is_active)
    return {"success": True, "user": AccountResponse.from_account(account)}


@users_router.get("/{user_id}/submissions")
async def user_submissions(
    user_id: str,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    ctx: AuthContext = Depends(authorize()),
    submissions: SubmissionService = Depends(get_submission_service),
):
    ctx.require_owner_or(user_id, Capability.SUBMISSION_READ_ALL)
    items, pagination = await submissions.list(user_id=user_id, page=page, limit=limit)
    return {
        "success": True,
        "submissions": [s.model_dump() for s in items],
        "pagination": pagination,
    }


# =============================================================================
# Password recovery (public)
# =============================================================================


@recovery_router.post("/forgot-password")
async def forgot_password(
    data: ForgotPasswordRequest,
    flows: CredentialFlows = Depends(get_flows),
):
    await flows.request_password_reset(data.email)
    return {"success": True, "message": RESET_REQUESTED_MESSAGE}


@recovery_router.post("/reset-password")
async def reset_password(
    data: ResetPasswordRequest,
    flows: CredentialFlows = Depends(get_flows),
):
    if data.new_password != data.confirm_password:
        raise ValidationFailed("Passwords do not match")
    await flows.reset_password(data.token, data.new_password)
    return {"success": True, "message": "Password has been reset successfully"}
