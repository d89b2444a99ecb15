"""
Exam service - authoring, sections, placements and publishing.

An exam owns its sections and question placements. Questions themselves
live in the bank and may be placed on many exams; a placement carries
its own marks and order.
"""

from __future__ import annotations

import logging
from typing import Any

from examhub.auth.passwords import hash_password, verify_password
from examhub.core.errors import (
    AlreadyInDesiredState,
    BusinessRuleViolation,
    Conflict,
    NotFound,
    ValidationFailed,
)
from examhub.core.models import (
    Exam,
    ExamQuestion,
    ExamSection,
    ExamSectionQuestion,
    Question,
)
from examhub.core.utils import paginate, utc_now
from examhub.storage.base import Collections, StorageProvider

logger = logging.getLogger(__name__)

EXAM_FIELDS = ("name", "description", "time_limit")
SECTION_FIELDS = ("name", "description", "order", "time_limit")

# Fields hidden from anyone still able to sit the exam.
ANSWER_FIELDS = {"correct_option", "explanation"}


class ExamService:
    def __init__(self, storage: StorageProvider):
        self.storage = storage

    # =========================================================================
    # Exams
    # =========================================================================

    async def get(self, exam_id: str) -> Exam:
        record = await self.storage.metadata.get(Collections.EXAMS, exam_id)
        if record is None:
            raise NotFound("Exam not found")
        return Exam.model_validate(record)

    async def _save(self, exam: Exam) -> None:
        exam.updated_at = utc_now()
        await self.storage.metadata.save(Collections.EXAMS, exam.id, exam.model_dump())

    async def create(
        self,
        created_by_id: str,
        name: str,
        description: str = "",
        time_limit: int = 60,
        password: str | None = None,
    ) -> Exam:
        if time_limit <= 0:
            raise ValidationFailed("Time limit must be positive")
        exam = Exam(
            name=name,
            description=description,
            time_limit=time_limit,
            password_hash=hash_password(password) if password else None,
            created_by_id=created_by_id,
        )
        await self.storage.metadata.save(Collections.EXAMS, exam.id, exam.model_dump())
        logger.info(f"Exam {exam.id} created by {created_by_id}")
        return exam

    async def update(self, exam_id: str, changes: dict[str, Any]) -> Exam:
        """
        Partial update of exam details.

        ``password`` sets a new access password; an empty or null value removes it.
        """
        exam = await self.get(exam_id)
        changes = dict(changes)

        if "password" in changes:
            password = changes.pop("password")
            exam.password_hash = hash_password(password) if password else None

        unknown = set(changes) - set(EXAM_FIELDS)
        if unknown:
            raise ValidationFailed(f"Cannot update fields: {sorted(unknown)}")
        if "time_limit" in changes and changes["time_limit"] <= 0:
            raise ValidationFailed("Time limit must be positive")

        for key, value in changes.items():
            setattr(exam, key, value)
        await self._save(exam)
        return exam

    async def delete(self, exam_id: str) -> None:
        """Delete an exam with everything it owns."""
        await self.get(exam_id)
        for collection in (
            Collections.EXAM_SECTION_QUESTIONS,
            Collections.EXAM_SECTIONS,
            Collections.EXAM_QUESTIONS,
            Collections.SUBMISSIONS,
            Collections.RANKINGS,
        ):
            for record in await self.storage.metadata.query(collection, {"exam_id": exam_id}):
                await self.storage.metadata.delete(collection, record["id"])
        await self.storage.metadata.delete(Collections.EXAMS, exam_id)
        await self.storage.cache.delete_prefix("leaderboard:")
        logger.info(f"Exam {exam_id} deleted")

    async def list(
        self,
        include_drafts: bool = False,
        page: int = 1,
        limit: int = 20,
        search: str | None = None,
    ) -> tuple[list[Exam], dict]:
        filters = None if include_drafts else {"is_published": True}
        records = await self.storage.metadata.query(Collections.EXAMS, filters)
        exams = [Exam.model_validate(r) for r in records]
        if search:
            needle = search.lower()
            exams = [e for e in exams if needle in e.name.lower()]
        exams.sort(key=lambda e: e.created_at, reverse=True)
        return paginate(exams, page, limit)

    # =========================================================================
    # Direct question placement
    # =========================================================================

    async def add_question(
        self,
        exam_id: str,
        question_id: str,
        marks: float | None = None,
        order: int | None = None,
    ) -> ExamQuestion:
        await self.get(exam_id)
        record = await self.storage.metadata.get(Collections.QUESTIONS, question_id)
        if record is None:
            raise NotFound(f"Question {question_id} not found")

        existing = await self.storage.metadata.query(
            Collections.EXAM_QUESTIONS, {"exam_id": exam_id, "question_id": question_id}
        )
        if existing:
            raise Conflict("Question is already on this exam")

        if order is None:
            order = await self.storage.metadata.count(Collections.EXAM_QUESTIONS, {"exam_id": exam_id})
        placement = ExamQuestion(
            exam_id=exam_id,
            question_id=question_id,
            order=order,
            marks=record["positive_marks"] if marks is None else marks,
        )
        await self.storage.metadata.save(Collections.EXAM_QUESTIONS, placement.id, placement.model_dump())
        return placement

    async def remove_question(self, exam_id: str, question_id: str) -> None:
        placements = await self.storage.metadata.query(
            Collections.EXAM_QUESTIONS, {"exam_id": exam_id, "question_id": question_id}
        )
        if not placements:
            raise NotFound("Question is not on this exam")
        for placement in placements:
            await self.storage.metadata.delete(Collections.EXAM_QUESTIONS, placement["id"])

    async def direct_questions(self, exam_id: str) -> list[ExamQuestion]:
        records = await self.storage.metadata.query(Collections.EXAM_QUESTIONS, {"exam_id": exam_id})
        return sorted((ExamQuestion.model_validate(r) for r in records), key=lambda p: p.order)

    # =========================================================================
    # Sections
    # =========================================================================

    async def get_section(self, exam_id: str, section_id: str) -> ExamSection:
        record = await self.storage.metadata.get(Collections.EXAM_SECTIONS, section_id)
        if record is None or record["exam_id"] != exam_id:
            raise NotFound("Section not found")
        return ExamSection.model_validate(record)

    async def sections(self, exam_id: str) -> list[ExamSection]:
        records = await self.storage.metadata.query(Collections.EXAM_SECTIONS, {"exam_id": exam_id})
        return sorted((ExamSection.model_validate(r) for r in records), key=lambda s: s.order)

    async def create_section(
        self,
        exam_id: str,
        name: str,
        description: str = "",
        order: int | None = None,
        time_limit: int | None = None,
    ) -> ExamSection:
        await self.get(exam_id)
        if order is None:
            order = await self.storage.metadata.count(Collections.EXAM_SECTIONS, {"exam_id": exam_id})
        section = ExamSection(
            exam_id=exam_id,
            name=name,
            description=description,
            order=order,
            time_limit=time_limit,
        )
        await self.storage.metadata.save(Collections.EXAM_SECTIONS, section.id, section.model_dump())
        return section

    async def update_section(self, exam_id: str, section_id: str, changes: dict[str, Any]) -> ExamSection:
        section = await self.get_section(exam_id, section_id)
        unknown = set(changes) - set(SECTION_FIELDS)
        if unknown:
            raise ValidationFailed(f"Cannot update fields: {sorted(unknown)}")
        for key, value in changes.items():
            setattr(section, key, value)
        await self.storage.metadata.save(Collections.EXAM_SECTIONS, section.id, section.model_dump())
        return section

    async def delete_section(self, exam_id: str, section_id: str) -> None:
        await self.get_section(exam_id, section_id)
        for placement in await self.storage.metadata.query(
            Collections.EXAM_SECTION_QUESTIONS, {"section_id": section_id}
        ):
            await self.storage.metadata.delete(Collections.EXAM_SECTION_QUESTIONS, placement["id"])
        await self.storage.metadata.delete(Collections.EXAM_SECTIONS, section_id)

    async def add_section_question(
        self,
        exam_id: str,
        section_id: str,
        question_id: str,
        marks: float | None = None,
        order: int | None = None,
    ) -> ExamSectionQuestion:
        await self.get_section(exam_id, section_id)
        record = await self.storage.metadata.get(Collections.QUESTIONS, question_id)
        if record is None:
            raise NotFound(f"Question {question_id} not found")

        existing = await self.storage.metadata.query(
            Collections.EXAM_SECTION_QUESTIONS, {"section_id": section_id, "question_id": question_id}
        )
        if existing:
            raise Conflict("Question is already in this section")

        if order is None:
            order = await self.storage.metadata.count(
                Collections.EXAM_SECTION_QUESTIONS, {"section_id": section_id}
            )
        placement = ExamSectionQuestion(
            exam_id=exam_id,
            section_id=section_id,
            question_id=question_id,
            order=order,
            marks=record["positive_marks"] if marks is None else marks,
        )
        await self.storage.metadata.save(
            Collections.EXAM_SECTION_QUESTIONS, placement.id, placement.model_dump()
        )
        return placement

    async def remove_section_question(self, exam_id: str, section_id: str, question_id: str) -> None:
        await self.get_section(exam_id, section_id)
        placements = await self.storage.metadata.query(
            Collections.EXAM_SECTION_QUESTIONS, {"section_id": section_id, "question_id": question_id}
        )
        if not placements:
            raise NotFound("Question is not in this section")
        for placement in placements:
            await self.storage.metadata.delete(Collections.EXAM_SECTION_QUESTIONS, placement["id"])

    async def section_questions(self, section_id: str) -> list[ExamSectionQuestion]:
        records = await self.storage.metadata.query(
            Collections.EXAM_SECTION_QUESTIONS, {"section_id": section_id}
        )
        return sorted((ExamSectionQuestion.model_validate(r) for r in records), key=lambda p: p.order)

    # =========================================================================
    # Aggregate views
    # =========================================================================

    async def placements(self, exam_id: str) -> list[ExamQuestion | ExamSectionQuestion]:
        """Every placement on the exam: direct first, then by section order."""
        placements: list[ExamQuestion | ExamSectionQuestion] = list(await self.direct_questions(exam_id))
        for section in await self.sections(exam_id):
            placements.extend(await self.section_questions(section.id))
        return placements

    async def marks_by_question(self, exam_id: str) -> dict[str, float]:
        """Marks available per question id across direct and section placements."""
        marks: dict[str, float] = {}
        for placement in await self.placements(exam_id):
            marks[placement.question_id] = marks.get(placement.question_id, 0) + placement.marks
        return marks

    async def detail(self, exam_id: str, include_answers: bool = False) -> dict[str, Any]:
        """Exam with its sections and question bodies."""
        exam = await self.get(exam_id)
        direct = await self.direct_questions(exam_id)
        sections = await self.sections(exam_id)
        section_placements = {s.id: await self.section_questions(s.id) for s in sections}

        ids = [p.question_id for p in direct]
        for placements in section_placements.values():
            ids.extend(p.question_id for p in placements)
        questions = await self.load_questions(ids)

        def render(placement: ExamQuestion | ExamSectionQuestion) -> dict[str, Any] | None:
            question = questions.get(placement.question_id)
            if question is None:
                return None
            exclude = None if include_answers else ANSWER_FIELDS
            return {
                **question.model_dump(exclude=exclude),
                "marks": placement.marks,
                "order": placement.order,
            }

        return {
            **exam.public_dict(),
            "questions": [q for q in map(render, direct) if q],
            "sections": [
                {
                    **section.model_dump(),
                    "questions": [q for q in map(render, section_placements[section.id]) if q],
                }
                for section in sections
            ],
        }

    async def load_questions(self, question_ids: list[str]) -> dict[str, Question]:
        found: dict[str, Question] = {}
        for qid in set(question_ids):
            record = await self.storage.metadata.get(Collections.QUESTIONS, qid)
            if record is not None:
                found[qid] = Question.model_validate(record)
        return found

    async def require_questions(self, question_ids: list[str]) -> dict[str, Question]:
        """Load questions by id, failing on the first one missing from the bank."""
        found = await self.load_questions(question_ids)
        for qid in question_ids:
            if qid not in found:
                raise NotFound(f"Question {qid} not found")
        return found

    # =========================================================================
    # Publishing
    # =========================================================================

    async def publish(self, exam_id: str, is_published: bool = True) -> Exam:
        """
        Publish or unpublish an exam.

        Publishing needs at least one question across direct and section
        placements, and fixes total_marks to the sum of their marks.
        """
        exam = await self.get(exam_id)
        if exam.is_published == is_published:
            state = "published" if is_published else "unpublished"
            raise AlreadyInDesiredState(f"Exam is already {state}")

        if is_published:
            placements = await self.placements(exam_id)
            if not placements:
                raise BusinessRuleViolation("Cannot publish an exam with no questions")
            exam.total_marks = sum(p.marks for p in placements)

        exam.is_published = is_published
        exam.is_draft = not is_published
        await self._save(exam)
        logger.info(f"Exam {exam_id} {'published' if is_published else 'unpublished'}")
        return exam

    async def validate_password(self, exam_id: str, password: str) -> bool:
        exam = await self.get(exam_id)
        if not exam.is_password_protected:
            return True
        return verify_password(password, exam.password_hash)
