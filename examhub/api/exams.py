"""
Exam routes - authoring, sections, placements, publishing.

Students only ever see published exams, without answers. Staff with
draft access see everything; editors also get the answer key.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, ConfigDict, Field

from examhub.api.deps import get_exam_service
from examhub.auth import AuthContext, Capability, authorize
from examhub.core.errors import Conflict, NotFound, ValidationFailed
from examhub.core.models import Exam
from examhub.services import ExamService

router = APIRouter(prefix="/exams", tags=["exams"])


# =============================================================================
# Request Models
# =============================================================================


class PlacementRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    question_id: str
    marks: float | None = Field(default=None, ge=0)
    order: int | None = Field(default=None, ge=0)


class SectionCreateRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str = Field(min_length=1)
    description: str = ""
    order: int | None = Field(default=None, ge=0)
    time_limit: int | None = Field(default=None, gt=0)
    questions: list[PlacementRequest] = Field(default_factory=list)


class SectionUpdateRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str | None = Field(default=None, min_length=1)
    description: str | None = None
    order: int | None = Field(default=None, ge=0)
    time_limit: int | None = Field(default=None, gt=0)


class ExamCreateRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str = Field(min_length=1, max_length=200)
    description: str = ""
    time_limit: int = Field(default=60, gt=0)
    password: str | None = None
    questions: list[PlacementRequest] = Field(default_factory=list)
    sections: list[SectionCreateRequest] = Field(default_factory=list)


class ExamUpdateRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str | None = Field(default=None, min_length=1, max_length=200)
    description: str | None = None
    time_limit: int | None = Field(default=None, gt=0)
    password: str | None = None


class PublishRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    is_published: bool = True


class ExamPasswordRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    password: str


# =============================================================================
# Helpers
# =============================================================================


async def _visible_exam(exams: ExamService, exam_id: str, ctx: AuthContext) -> Exam:
    """Drafts look like missing exams to anyone without draft access."""
    exam = await exams.get(exam_id)
    if not exam.is_published and not ctx.can(Capability.EXAM_READ_DRAFTS):
        raise NotFound("Exam not found")
    return exam


async def _place_section(exams: ExamService, exam_id: str, data: SectionCreateRequest) -> None:
    section = await exams.create_section(
        exam_id,
        name=data.name,
        description=data.description,
        order=data.order,
        time_limit=data.time_limit,
    )
    for placement in data.questions:
        await exams.add_section_question(
            exam_id, section.id, placement.question_id, marks=placement.marks, order=placement.order
        )


# =============================================================================
# Exams
# =============================================================================


@router.get("")
async def list_exams(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    search: str | None = None,
    published_only: bool = False,
    ctx: AuthContext = Depends(authorize(Capability.EXAM_READ)),
    exams: ExamService = Depends(get_exam_service),
):
    include_drafts = ctx.can(Capability.EXAM_READ_DRAFTS) and not published_only
    items, pagination = await exams.list(
        include_drafts=include_drafts, page=page, limit=limit, search=search
    )
    return {
        "success": True,
        "exams": [e.public_dict() for e in items],
        "pagination": pagination,
    }


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_exam(
    data: ExamCreateRequest,
    ctx: AuthContext = Depends(authorize(Capability.EXAM_CREATE)),
    exams: ExamService = Depends(get_exam_service),
):
    """Create an exam, optionally with its questions and sections in one go."""
    # Every placement must resolve before anything is written
    groups = [[p.question_id for p in data.questions]]
    groups += [[p.question_id for p in s.questions] for s in data.sections]
    for ids in groups:
        if len(set(ids)) != len(ids):
            raise Conflict("A question is placed twice in the same group")
    await exams.require_questions([qid for ids in groups for qid in ids])

    exam = await exams.create(
        ctx.account_id,
        name=data.name,
        description=data.description,
        time_limit=data.time_limit,
        password=data.password,
    )
    for placement in data.questions:
        await exams.add_question(exam.id, placement.question_id, marks=placement.marks, order=placement.order)
    for section in data.sections:
        await _place_section(exams, exam.id, section)

    return {"success": True, "exam": await exams.detail(exam.id, include_answers=True)}


@router.get("/{exam_id}")
async def get_exam(
    exam_id: str,
    ctx: AuthContext = Depends(authorize(Capability.EXAM_READ)),
    exams: ExamService = Depends(get_exam_service),
):
    await _visible_exam(exams, exam_id, ctx)
    detail = await exams.detail(exam_id, include_answers=ctx.can(Capability.EXAM_EDIT))
    return {"success": True, "exam": detail}


@router.put("/{exam_id}")
async def update_exam(
    exam_id: str,
    data: ExamUpdateRequest,
    ctx: AuthContext = Depends(authorize(Capability.EXAM_EDIT)),
    exams: ExamService = Depends(get_exam_service),
):
    # A null password clears it; other nulls mean "unchanged"
    changes = {
        k: v for k, v in data.model_dump(exclude_unset=True).items()
        if v is not None or k == "password"
    }
    if not changes:
        raise ValidationFailed("No exam fields supplied")
    exam = await exams.update(exam_id, changes)
    return {"success": True, "exam": exam.public_dict()}


@router.delete("/{exam_id}")
async def delete_exam(
    exam_id: str,
    ctx: AuthContext = Depends(authorize(Capability.EXAM_DELETE)),
    exams: ExamService = Depends(get_exam_service),
):
    await exams.delete(exam_id)
    return {"success": True, "message": "Exam deleted successfully"}


@router.put("/{exam_id}/publish")
async def publish_exam(
    exam_id: str,
    data: PublishRequest | None = None,
    ctx: AuthContext = Depends(authorize(Capability.EXAM_PUBLISH)),
    exams: ExamService = Depends(get_exam_service),
):
    exam = await exams.publish(exam_id, data.is_published if data else True)
    return {
        "success": True,
        "message": "Exam published" if exam.is_published else "Exam unpublished",
        "exam": exam.public_dict(),
    }


@router.post("/{exam_id}/validate-password")
async def validate_exam_password(
    exam_id: str,
    data: ExamPasswordRequest,
    ctx: AuthContext = Depends(authorize(Capability.EXAM_READ)),
    exams: ExamService = Depends(get_exam_service),
):
    await _visible_exam(exams, exam_id, ctx)
    if not await exams.validate_password(exam_id, data.password):
        raise ValidationFailed("Invalid exam password")
    return {"success": True, "message": "Password is valid"}


# =============================================================================
# Direct questions
# =============================================================================


@router.get("/{exam_id}/questions")
async def list_exam_questions(
    exam_id: str,
    ctx: AuthContext = Depends(authorize(Capability.EXAM_READ)),
    exams: ExamService = Depends(get_exam_service),
):
    await _visible_exam(exams, exam_id, ctx)
    detail = await exams.detail(exam_id, include_answers=ctx.can(Capability.EXAM_EDIT))
    return {"success": True, "questions": detail["questions"]}


@router.post("/{exam_id}/questions", status_code=status.HTTP_201_CREATED)
async def add_exam_question(
    exam_id: str,
    data: PlacementRequest,
    ctx: AuthContext = Depends(authorize(Capability.EXAM_EDIT)),
    exams: ExamService = Depends(get_exam_service),
):
    placement = await exams.add_question(exam_id, data.question_id, marks=data.marks, order=data.order)
    return {"success": True, "placement": placement.model_dump()}


@router.delete("/{exam_id}/questions/{question_id}")
async def remove_exam_question(
    exam_id: str,
    question_id: str,
    ctx: AuthContext = Depends(authorize(Capability.EXAM_EDIT)),
    exams: ExamService = Depends(get_exam_service),
):
    await exams.remove_question(exam_id, question_id)
    return {"success": True, "message": "Question removed from exam"}


# =============================================================================
# Sections
# =============================================================================


@router.get("/exam/{exam_id}/sections")
async def list_sections(
    exam_id: str,
    ctx: AuthContext = Depends(authorize(Capability.EXAM_READ)),
    exams: ExamService = Depends(get_exam_service),
):
    await _visible_exam(exams, exam_id, ctx)
    detail = await exams.detail(exam_id, include_answers=ctx.can(Capability.EXAM_EDIT))
    return {"success": True, "sections": detail["sections"]}


@router.post("/exam/{exam_id}/sections", status_code=status.HTTP_201_CREATED)
async def create_section(
    exam_id: str,
    data: SectionCreateRequest,
    ctx: AuthContext = Depends(authorize(Capability.EXAM_EDIT)),
    exams: ExamService = Depends(get_exam_service),
):
    await _place_section(exams, exam_id, data)
    detail = await exams.detail(exam_id, include_answers=True)
    return {"success": True, "sections": detail["sections"]}


@router.get("/exam/{exam_id}/sections/{section_id}")
async def get_section(
    exam_id: str,
    section_id: str,
    ctx: AuthContext = Depends(authorize(Capability.EXAM_READ)),
    exams: ExamService = Depends(get_exam_service),
):
    await _visible_exam(exams, exam_id, ctx)
    await exams.get_section(exam_id, section_id)
    detail = await exams.detail(exam_id, include_answers=ctx.can(Capability.EXAM_EDIT))
    section = next(s for s in detail["sections"] if s["id"] == section_id)
    return {"success": True, "section": section}


@router.put("/exam/{exam_id}/sections/{section_id}")
async def update_section(
    exam_id: str,
    section_id: str,
    data: SectionUpdateRequest,
    ctx: AuthContext = Depends(authorize(Capability.EXAM_EDIT)),
    exams: ExamService = Depends(get_exam_service),
):
    changes = data.model_dump(exclude_unset=True, exclude_none=True)
    if not changes:
        raise ValidationFailed("No section fields supplied")
    section = await exams.update_section(exam_id, section_id, changes)
    return {"success": True, "section": section.model_dump()}


@router.delete("/exam/{exam_id}/sections/{section_id}")
async def delete_section(
    exam_id: str,
    section_id: str,
    ctx: AuthContext = Depends(authorize(Capability.EXAM_EDIT)),
    exams: ExamService = Depends(get_exam_service),
):
    await exams.delete_section(exam_id, section_id)
    return {"success": True, "message": "Section deleted successfully"}


@router.post("/exam/{exam_id}/sections/{section_id}/questions", status_code=status.HTTP_201_CREATED)
async def add_section_question(
    exam_id: str,
    section_id: str,
    data: PlacementRequest,
    ctx: AuthContext = Depends(authorize(Capability.EXAM_EDIT)),
    exams: ExamService = Depends(get_exam_service),
):
    placement = await exams.add_section_question(
        exam_id, section_id, data.question_id, marks=data.marks, order=data.order
    )
    return {"success": True, "placement": placement.model_dump()}


@router.delete("/exam/{exam_id}/sections/{section_id}/questions/{question_id}")
async def remove_section_question(
    exam_id: str,
    section_id: str,
    question_id: str,
    ctx: AuthContext = Depends(authorize(Capability.EXAM_EDIT)),
    exams: ExamService = Depends(get_exam_service),
):
    await exams.remove_section_question(exam_id, section_id, question_id)
    return {"success": True, "message": "Question removed from section"}
