"""
FastAPI dependencies.

Everything a handler needs is built once by the application factory and
kept on ``app.state``; these accessors hand it out per request.
"""

from __future__ import annotations

from fastapi import Request

from examhub.auth.flows import CredentialFlows
from examhub.auth.tokens import TokenCodec
from examhub.config import Settings
from examhub.integrations.email import EmailService
from examhub.services import (
    AccountService,
    ExamService,
    QuestionService,
    RankingService,
    SubmissionService,
)
from examhub.storage import StorageProvider


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_storage(request: Request) -> StorageProvider:
    return request.app.state.storage


def get_token_codec(request: Request) -> TokenCodec:
    return request.app.state.token_codec


def get_email_service(request: Request) -> EmailService:
    return request.app.state.email


def get_flows(request: Request) -> CredentialFlows:
    return request.app.state.flows


def get_account_service(request: Request) -> AccountService:
    return request.app.state.accounts


def get_question_service(request: Request) -> QuestionService:
    return request.app.state.questions


def get_exam_service(request: Request) -> ExamService:
    return request.app.state.exams


def get_submission_service(request: Request) -> SubmissionService:
    return request.app.state.submissions


def get_ranking_service(request: Request) -> RankingService:
    return request.app.state.rankings
