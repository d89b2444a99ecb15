"""
Question bank routes.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, ConfigDict, Field

from examhub.api.deps import get_question_service
from examhub.auth import AuthContext, Capability, authorize
from examhub.core.errors import ValidationFailed
from examhub.core.models import Difficulty
from examhub.services import QuestionService

router = APIRouter(prefix="/questions", tags=["questions"])


# =============================================================================
# Request Models
# =============================================================================


class QuestionCreateRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    content: str = Field(min_length=1)
    options: list[str] = Field(min_length=2)
    correct_option: int = Field(ge=0)
    positive_marks: float = Field(default=1, ge=0)
    negative_marks: float = Field(default=0, ge=0)
    difficulty: Difficulty = Difficulty.MEDIUM
    subject: str = Field(min_length=1)
    topic: str = Field(min_length=1)
    tags: list[str] = Field(default_factory=list)
    question_image: str | None = None
    explanation: str | None = None


class QuestionUpdateRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    content: str | None = Field(default=None, min_length=1)
    options: list[str] | None = Field(default=None, min_length=2)
    correct_option: int | None = Field(default=None, ge=0)
    positive_marks: float | None = Field(default=None, ge=0)
    negative_marks: float | None = Field(default=None, ge=0)
    difficulty: Difficulty | None = None
    subject: str | None = Field(default=None, min_length=1)
    topic: str | None = Field(default=None, min_length=1)
    tags: list[str] | None = None
    question_image: str | None = None
    explanation: str | None = None


# =============================================================================
# Routes
# =============================================================================


@router.get("")
async def list_questions(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    subject: str | None = None,
    topic: str | None = None,
    difficulty: Difficulty | None = None,
    tag: str | None = None,
    search: str | None = None,
    ctx: AuthContext = Depends(authorize(Capability.QUESTION_READ)),
    questions: QuestionService = Depends(get_question_service),
):
    items, pagination = await questions.list(
        page=page,
        limit=limit,
        subject=subject,
        topic=topic,
        difficulty=difficulty,
        tag=tag,
        search=search,
    )
    return {
        "success": True,
        "questions": [q.model_dump() for q in items],
        "pagination": pagination,
    }


@router.post("/create", status_code=status.HTTP_201_CREATED)
async def create_question(
    data: QuestionCreateRequest,
    ctx: AuthContext = Depends(authorize(Capability.QUESTION_CREATE)),
    questions: QuestionService = Depends(get_question_service),
):
    question = await questions.create(data.model_dump(), author_id=ctx.account_id)
    return {"success": True, "question": question.model_dump()}


@router.get("/subjects")
async def list_subjects(
    ctx: AuthContext = Depends(authorize(Capability.QUESTION_READ)),
    questions: QuestionService = Depends(get_question_service),
):
    return {"success": True, "subjects": await questions.subjects()}


@router.get("/topics")
async def list_topics(
    subject: str | None = None,
    ctx: AuthContext = Depends(authorize(Capability.QUESTION_READ)),
    questions: QuestionService = Depends(get_question_service),
):
    return {"success": True, "topics": await questions.topics(subject)}


@router.get("/{question_id}")
async def get_question(
    question_id: str,
    ctx: AuthContext = Depends(authorize(Capability.QUESTION_READ)),
    questions: QuestionService = Depends(get_question_service),
):
    question = await questions.get(question_id)
    return {"success": True, "question": question.model_dump()}


@router.put("/{question_id}")
async def update_question(
    question_id: str,
    data: QuestionUpdateRequest,
    ctx: AuthContext = Depends(authorize(Capability.QUESTION_EDIT)),
    questions: QuestionService = Depends(get_question_service),
):
    changes = data.model_dump(exclude_unset=True)
    if not changes:
        raise ValidationFailed("No question fields supplied")
    question = await questions.update(question_id, changes)
    return {"success": True, "question": question.model_dump()}


@router.delete("/{question_id}")
async def delete_question(
    question_id: str,
    ctx: AuthContext = Depends(authorize(Capability.QUESTION_DELETE)),
    questions: QuestionService = Depends(get_question_service),
):
    await questions.delete(question_id)
    return {"success": True, "message": "Question deleted successfully"}
