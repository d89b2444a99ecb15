"""
Question bank service.
"""

from __future__ import annotations

import logging
from typing import Any

from pydantic import ValidationError

from examhub.core.errors import NotFound, ValidationFailed
from examhub.core.models import Difficulty, Question
from examhub.core.utils import paginate, utc_now
from examhub.storage.base import Collections, StorageProvider

logger = logging.getLogger(__name__)

# Fields fixed at creation.
_IMMUTABLE = {"id", "author_id", "created_at", "updated_at"}


def _validation_details(error: ValidationError) -> list[dict[str, Any]]:
    return [
        {"field": ".".join(str(p) for p in e["loc"]) or None, "message": e["msg"]}
        for e in error.errors()
    ]


class QuestionService:
    def __init__(self, storage: StorageProvider):
        self.storage = storage

    async def get(self, question_id: str) -> Question:
        record = await self.storage.metadata.get(Collections.QUESTIONS, question_id)
        if record is None:
            raise NotFound("Question not found")
        return Question.model_validate(record)

    async def create(self, data: dict[str, Any], author_id: str) -> Question:
        try:
            question = Question(**data, author_id=author_id)
        except ValidationError as e:
            raise ValidationFailed("Invalid question", details=_validation_details(e))

        await self.storage.metadata.save(Collections.QUESTIONS, question.id, question.model_dump())
        logger.info(f"Question {question.id} created by {author_id}")
        return question

    async def update(self, question_id: str, changes: dict[str, Any]) -> Question:
        """
        Apply a partial update.

        The merged record is revalidated as a whole, so changing ``options``
        without ``correct_option`` still has to leave a valid index.
        """
        current = await self.get(question_id)
        forbidden = set(changes) & _IMMUTABLE
        if forbidden:
            raise ValidationFailed(f"Cannot update fields: {sorted(forbidden)}")

        merged = {**current.model_dump(), **changes}
        try:
            question = Question.model_validate(merged)
        except ValidationError as e:
            raise ValidationFailed("Invalid question", details=_validation_details(e))

        question.updated_at = utc_now()
        await self.storage.metadata.save(Collections.QUESTIONS, question.id, question.model_dump())
        return question

    async def delete(self, question_id: str) -> None:
        await self.get(question_id)
        await self.storage.metadata.delete(Collections.QUESTIONS, question_id)

        # Drop placements that pointed at it
        for collection in (Collections.EXAM_QUESTIONS, Collections.EXAM_SECTION_QUESTIONS):
            for placement in await self.storage.metadata.query(collection, {"question_id": question_id}):
                await self.storage.metadata.delete(collection, placement["id"])

        logger.info(f"Question {question_id} deleted")

    # -------------------------------------------------------------------------
    # Listing
    # -------------------------------------------------------------------------

    async def list(
        self,
        page: int = 1,
        limit: int = 20,
        subject: str | None = None,
        topic: str | None = None,
        difficulty: Difficulty | None = None,
        tag: str | None = None,
        search: str | None = None,
    ) -> tuple[list[Question], dict]:
        filters: dict[str, Any] = {}
        if subject:
            filters["subject"] = subject
        if topic:
            filters["topic"] = topic
        if difficulty:
            filters["difficulty"] = difficulty

        records = await self.storage.metadata.query(Collections.QUESTIONS, filters or None)
        questions = [Question.model_validate(r) for r in records]

        if tag:
            questions = [q for q in questions if tag in q.tags]
        if search:
            needle = search.lower()
            questions = [
                q for q in questions
                if needle in q.content.lower()
                or any(needle in t.lower() for t in q.tags)
            ]

        questions.sort(key=lambda q: q.created_at, reverse=True)
        return paginate(questions, page, limit)

    async def subjects(self) -> list[str]:
        records = await self.storage.metadata.query(Collections.QUESTIONS)
        return sorted({r["subject"] for r in records if r.get("subject")})

    async def topics(self, subject: str | None = None) -> list[str]:
        filters = {"subject": subject} if subject else None
        records = await self.storage.metadata.query(Collections.QUESTIONS, filters)
        return sorted({r["topic"] for r in records if r.get("topic")})
