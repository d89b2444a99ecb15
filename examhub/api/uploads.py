"""
Image upload routes.

Files go through ContentStorage; the returned URL is what gets stored on
the account or question.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, File, Form, UploadFile

from examhub.api.deps import (
    get_account_service,
    get_app_settings,
    get_question_service,
    get_storage,
)
from examhub.auth import AuthContext, Capability, authorize
from examhub.config import Settings
from examhub.core.errors import ValidationFailed
from examhub.core.utils import generate_id
from examhub.services import AccountService, QuestionService
from examhub.storage import StorageProvider

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/upload", tags=["uploads"])

EXTENSIONS = {
    "image/png": ".png",
    "image/jpeg": ".jpg",
    "image/webp": ".webp",
    "image/gif": ".gif",
}


async def _read_image(file: UploadFile, settings: Settings) -> bytes:
    """Enforce type and size limits before anything is stored."""
    if file.content_type not in settings.allowed_image_types_list:
        raise ValidationFailed(
            f"Unsupported file type: {file.content_type}",
            details={"allowed_types": settings.allowed_image_types_list},
        )
    data = await file.read()
    if not data:
        raise ValidationFailed("File is empty")
    if len(data) > settings.max_upload_bytes:
        raise ValidationFailed(
            "File is too large",
            details={"max_bytes": settings.max_upload_bytes},
        )
    return data


async def _store(storage: StorageProvider, folder: str, file: UploadFile, data: bytes) -> str:
    key = f"{folder}/{generate_id('img')}{EXTENSIONS.get(file.content_type, '')}"
    await storage.content.put(key, data, content_type=file.content_type)
    return await storage.content.get_url(key)


@router.post("/profile-image")
async def upload_profile_image(
    file: UploadFile = File(...),
    ctx: AuthContext = Depends(authorize(Capability.UPLOAD_PROFILE_IMAGE)),
    settings: Settings = Depends(get_app_settings),
    storage: StorageProvider = Depends(get_storage),
    accounts: AccountService = Depends(get_account_service),
):
    data = await _read_image(file, settings)
    url = await _store(storage, f"profile-images/{ctx.account_id}", file, data)
    await accounts.update_profile(ctx.account_id, {"profile_image": url})
    logger.info(f"Profile image uploaded for {ctx.account_id}")
    return {"success": True, "url": url}


@router.post("/question-image")
async def upload_question_image(
    file: UploadFile = File(...),
    question_id: str | None = Form(None),
    ctx: AuthContext = Depends(authorize(Capability.UPLOAD_QUESTION_IMAGE)),
    settings: Settings = Depends(get_app_settings),
    storage: StorageProvider = Depends(get_storage),
    questions: QuestionService = Depends(get_question_service),
):
    """Store a question image, attaching it when ``question_id`` is given."""
    if question_id:
        await questions.get(question_id)
    data = await _read_image(file, settings)
    url = await _store(storage, "question-images", file, data)
    if question_id:
        await questions.update(question_id, {"question_image": url})
    return {"success": True, "url": url, "question_id": question_id}


@router.get("/test")
async def upload_config_check(
    settings: Settings = Depends(get_app_settings),
    storage: StorageProvider = Depends(get_storage),
):
    """Report the upload configuration."""
    return {
        "success": True,
        "message": "Upload service is configured",
        "storage": type(storage.content).__name__,
        "max_upload_bytes": settings.max_upload_bytes,
        "allowed_types": settings.allowed_image_types_list,
    }
