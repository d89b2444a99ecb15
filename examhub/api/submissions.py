"""
Submission routes - drafts, submitting and reading results.

An attempt is saved as a draft while the exam is being sat and becomes
immutable once submitted. Drafts are only ever visible to their owner.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, ConfigDict, Field

from examhub.api.deps import get_submission_service
from examhub.auth import AuthContext, Capability, authorize
from examhub.core.models import QuestionProgress, Submission
from examhub.services import SubmissionService

router = APIRouter(prefix="/submissions", tags=["submissions"])


class SubmitRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    exam_id: str
    answers: dict[str, int] = Field(default_factory=dict)
    time_spent: int = Field(default=0, ge=0)


class DraftRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    exam_id: str
    answers: dict[str, int] = Field(default_factory=dict)
    question_statuses: dict[str, QuestionProgress] = Field(default_factory=dict)
    time_spent: int = Field(default=0, ge=0)


# =============================================================================
# Drafts
# =============================================================================


def _draft_body(draft: Submission) -> dict:
    return {
        "submission_id": draft.id,
        "exam_id": draft.exam_id,
        "answers": draft.answers,
        "question_statuses": {k: v.model_dump() for k, v in draft.question_statuses.items()},
        "time_spent": draft.time_spent,
        "total_questions": draft.total_questions,
        "last_saved": draft.updated_at,
        "progress": draft.progress(),
    }


@router.post("/draft")
async def save_draft(
    data: DraftRequest,
    ctx: AuthContext = Depends(authorize(Capability.SUBMISSION_CREATE)),
    submissions: SubmissionService = Depends(get_submission_service),
):
    draft = await submissions.save_draft(
        ctx.account,
        data.exam_id,
        data.answers,
        question_statuses=data.question_statuses,
        time_spent=data.time_spent,
    )
    return {"success": True, "message": "Draft saved successfully", "draft": _draft_body(draft)}


@router.get("/draft")
async def get_draft(
    exam_id: str,
    ctx: AuthContext = Depends(authorize(Capability.SUBMISSION_CREATE)),
    submissions: SubmissionService = Depends(get_submission_service),
):
    draft = await submissions.get_draft(ctx.account_id, exam_id)
    return {"success": True, "draft": _draft_body(draft)}


@router.delete("/draft")
async def discard_draft(
    exam_id: str,
    ctx: AuthContext = Depends(authorize(Capability.SUBMISSION_CREATE)),
    submissions: SubmissionService = Depends(get_submission_service),
):
    await submissions.discard_draft(ctx.account_id, exam_id)
    return {"success": True, "message": "Draft deleted successfully"}


# =============================================================================
# Submissions
# =============================================================================


@router.post("", status_code=status.HTTP_201_CREATED)
async def submit_exam(
    data: SubmitRequest,
    ctx: AuthContext = Depends(authorize(Capability.SUBMISSION_CREATE)),
    submissions: SubmissionService = Depends(get_submission_service),
):
    submission = await submissions.submit(
        ctx.account, data.exam_id, data.answers, time_spent=data.time_spent
    )
    return {
        "success": True,
        "message": "Exam submitted successfully",
        "submission": submission.model_dump(),
    }


@router.get("")
async def list_submissions(
    exam_id: str | None = None,
    user_id: str | None = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    ctx: AuthContext = Depends(authorize()),
    submissions: SubmissionService = Depends(get_submission_service),
):
    """Own submissions, or anyone's for staff who can read them all."""
    if not ctx.can(Capability.SUBMISSION_READ_ALL):
        user_id = ctx.account_id
    items, pagination = await submissions.list(
        user_id=user_id, exam_id=exam_id, page=page, limit=limit
    )
    return {
        "success": True,
        "submissions": [s.model_dump() for s in items],
        "pagination": pagination,
    }


@router.get("/{submission_id}")
async def get_submission(
    submission_id: str,
    ctx: AuthContext = Depends(authorize()),
    submissions: SubmissionService = Depends(get_submission_service),
):
    submission = await submissions.get(submission_id)
    ctx.require_owner_or(submission.user_id, Capability.SUBMISSION_READ_ALL)
    return {
        "success": True,
        "submission": submission.model_dump(),
        "review": await submissions.breakdown(submission),
    }
