"""
FastAPI application for the ExamHub platform.

``create_app()`` wires settings, storage, token codec, email and the
services onto ``app.state``, installs the edge gate and the error
handlers, and mounts the routers. Tests build their own app with
in-memory storage and a recording email service.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import timedelta

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from examhub import __version__
from examhub.api.admin import router as admin_router
from examhub.api.deps import get_storage
from examhub.api.exams import router as exams_router
from examhub.api.questions import router as questions_router
from examhub.api.rankings import router as rankings_router
from examhub.api.submissions import router as submissions_router
from examhub.api.uploads import router as uploads_router
from examhub.auth.flows import CredentialFlows
from examhub.auth.gate import EdgeGate, extract_token
from examhub.auth.routes import recovery_router, users_router
from examhub.auth.tokens import TokenCodec
from examhub.config import Settings, get_settings
from examhub.core.errors import ExamHubError, ValidationFailed
from examhub.integrations.email import EmailService
from examhub.integrations.sentry import capture_exception, init_sentry
from examhub.services import (
    AccountService,
    ExamService,
    QuestionService,
    RankingService,
    SubmissionService,
)
from examhub.storage import StorageProvider, create_local_storage

logger = logging.getLogger(__name__)


# =============================================================================
# Lifespan
# =============================================================================


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Configure logging and error tracking for the process."""
    settings: Settings = app.state.settings

    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if init_sentry(settings):
        logger.info("Sentry error tracking enabled")

    if not app.state.email.is_configured:
        logger.warning("Email delivery not configured - messages will only be logged")

    logger.info(f"ExamHub API starting in {settings.environment} mode")

    yield

    logger.info("ExamHub API shutting down")


# =============================================================================
# Error handlers
# =============================================================================


async def handle_exam_hub_error(request: Request, exc: ExamHubError) -> JSONResponse:
    return JSONResponse(exc.to_dict(), status_code=exc.status_code)


async def handle_request_validation(request: Request, exc: RequestValidationError) -> JSONResponse:
    details = [
        {
            "field": ".".join(str(p) for p in err.get("loc", ()) if p != "body") or None,
            "message": err.get("msg"),
        }
        for err in exc.errors()
    ]
    error = ValidationFailed("Invalid request", details=details)
    return JSONResponse(error.to_dict(), status_code=error.status_code)


async def handle_unexpected(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    capture_exception(exc, path=request.url.path, method=request.method)
    return JSONResponse(
        {"success": False, "error": "internal_error", "message": "Internal server error"},
        status_code=500,
    )


# =============================================================================
# App factory
# =============================================================================


def create_app(
    settings: Settings | None = None,
    storage: StorageProvider | None = None,
    email_service: EmailService | None = None,
) -> FastAPI:
    settings = settings or get_settings()
    storage = storage or create_local_storage(settings.data_dir)
    email_service = email_service or EmailService(settings)
    codec = TokenCodec.from_settings(settings)

    app = FastAPI(
        title="ExamHub API",
        description="Question bank, exams, submissions and rankings",
        version=__version__,
        lifespan=lifespan,
    )

    # State
    app.state.settings = settings
    app.state.storage = storage
    app.state.token_codec = codec
    app.state.email = email_service
    app.state.flows = CredentialFlows(
        storage,
        codec,
        email_service,
        code_ttl=timedelta(minutes=settings.verification_code_expire_minutes),
    )
    app.state.rankings = RankingService(storage)
    app.state.accounts = AccountService(storage, app.state.rankings)
    app.state.questions = QuestionService(storage)
    app.state.exams = ExamService(storage)
    app.state.submissions = SubmissionService(storage, app.state.exams, app.state.rankings)

    # Middleware: the last one added runs first, so CORS wraps the gate
    # and preflight/401 responses still carry CORS headers.
    app.add_middleware(EdgeGate, **EdgeGate.options_from_settings(settings))
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Errors
    app.add_exception_handler(ExamHubError, handle_exam_hub_error)
    app.add_exception_handler(RequestValidationError, handle_request_validation)
    app.add_exception_handler(Exception, handle_unexpected)

    # Routers
    prefix = settings.api_prefix
    for router in (
        users_router,
        recovery_router,
        questions_router,
        exams_router,
        submissions_router,
        rankings_router,
        uploads_router,
        admin_router,
    ):
        app.include_router(router, prefix=prefix)

    # =========================================================================
    # Diagnostics
    # =========================================================================

    @app.get("/health")
    async def health_check():
        return {"status": "healthy", "service": "examhub-api", "version": __version__}

    @app.get(f"{prefix}/example")
    async def middleware_echo(request: Request):
        """Shows whether the request carries a session token."""
        return {
            "success": True,
            "message": "Middleware is working",
            "has_token": bool(extract_token(request, settings.session_cookie_name)),
        }

    @app.get(f"{prefix}/test-db")
    async def storage_check(storage: StorageProvider = Depends(get_storage)):
        connected = await storage.metadata.ping()
        return JSONResponse(
            {"success": connected, "message": "Storage reachable" if connected else "Storage unreachable"},
            status_code=200 if connected else 503,
        )

    return app
