"""
Submission service - draft attempts and server-side scoring.
"""

from __future__ import annotations

import logging
from typing import Any

from examhub.core.errors import BusinessRuleViolation, Conflict, NotFound, ValidationFailed
from examhub.core.models import Account, Exam, Question, QuestionProgress, Submission
from examhub.core.utils import paginate, utc_now
from examhub.services.exams import ExamService
from examhub.services.rankings import RankingService
from examhub.services.scoring import score_answers
from examhub.storage.base import Collections, StorageProvider

logger = logging.getLogger(__name__)


class SubmissionService:
    def __init__(self, storage: StorageProvider, exams: ExamService, rankings: RankingService):
        self.storage = storage
        self.exams = exams
        self.rankings = rankings

    async def _attempt(self, user_id: str, exam_id: str) -> Submission | None:
        """The account's single row for an exam, draft or submitted."""
        records = await self.storage.metadata.query(
            Collections.SUBMISSIONS, {"user_id": user_id, "exam_id": exam_id}, limit=1
        )
        return Submission.model_validate(records[0]) if records else None

    async def _open_attempt(self, account: Account, exam_id: str) -> tuple[Exam, Submission | None]:
        exam = await self.exams.get(exam_id)
        if not exam.is_published:
            raise BusinessRuleViolation("Exam is not published")
        attempt = await self._attempt(account.id, exam_id)
        if attempt is not None and attempt.is_submitted:
            raise Conflict("Exam already submitted")
        return exam, attempt

    async def _check_answers(
        self,
        marks: dict[str, float],
        answers: dict[str, int],
        statuses: dict[str, QuestionProgress] | None = None,
    ) -> dict[str, Question]:
        unknown = (set(answers) | set(statuses or ())) - set(marks)
        if unknown:
            raise ValidationFailed(
                "Answers reference questions not on this exam",
                details=[{"field": f"answers.{qid}", "message": "Not on this exam"} for qid in sorted(unknown)],
            )

        questions = await self.exams.load_questions(list(marks))
        for question_id, chosen in answers.items():
            question = questions.get(question_id)
            if question is not None and not 0 <= chosen < len(question.options):
                raise ValidationFailed(f"Answer for {question_id} is out of range")
        return questions

    # -------------------------------------------------------------------------
    # Drafts
    # -------------------------------------------------------------------------

    async def save_draft(
        self,
        account: Account,
        exam_id: str,
        answers: dict[str, int],
        question_statuses: dict[str, QuestionProgress] | None = None,
        time_spent: int = 0,
    ) -> Submission:
        """
        Auto-save an unfinished attempt.

        Answers replace the saved sheet; question statuses merge into what
        was saved before. Nothing is scored until the attempt is submitted.
        """
        _, draft = await self._open_attempt(account, exam_id)
        marks = await self.exams.marks_by_question(exam_id)
        await self._check_answers(marks, answers, question_statuses)

        if draft is None:
            draft = Submission(user_id=account.id, exam_id=exam_id)
        draft.answers = answers
        draft.question_statuses.update(question_statuses or {})
        draft.time_spent = time_spent
        draft.total_questions = len(marks)
        draft.updated_at = utc_now()
        await self.storage.metadata.save(Collections.SUBMISSIONS, draft.id, draft.model_dump())
        logger.debug(f"Draft {draft.id} saved for {account.id} on {exam_id}")
        return draft

    async def get_draft(self, user_id: str, exam_id: str) -> Submission:
        attempt = await self._attempt(user_id, exam_id)
        if attempt is None or attempt.is_submitted:
            raise NotFound("Draft not found")
        return attempt

    async def discard_draft(self, user_id: str, exam_id: str) -> None:
        attempt = await self._attempt(user_id, exam_id)
        if attempt is None:
            raise NotFound("Draft not found")
        if attempt.is_submitted:
            raise BusinessRuleViolation("Cannot delete a submitted exam")
        await self.storage.metadata.delete(Collections.SUBMISSIONS, attempt.id)

    # -------------------------------------------------------------------------
    # Submitting
    # -------------------------------------------------------------------------

    async def submit(
        self,
        account: Account,
        exam_id: str,
        answers: dict[str, int],
        time_spent: int = 0,
    ) -> Submission:
        """
        Score and store one attempt, then update the exam's rankings.

        Only published exams accept submissions, and each account gets a
        single submitted attempt per exam. A saved draft is converted in
        place and keeps its id, statuses and time when none is sent.
        """
        exam, draft = await self._open_attempt(account, exam_id)
        marks = await self.exams.marks_by_question(exam_id)
        questions = await self._check_answers(marks, answers)

        result = score_answers(answers, marks, questions)
        submission = Submission(
            user_id=account.id,
            exam_id=exam_id,
            answers=answers,
            time_spent=time_spent or (draft.time_spent if draft else 0),
            is_submitted=True,
            completed_at=utc_now(),
            **result,
        )
        if draft is not None:
            submission.id = draft.id
            submission.question_statuses = draft.question_statuses
            submission.created_at = draft.created_at
        await self.storage.metadata.save(Collections.SUBMISSIONS, submission.id, submission.model_dump())
        logger.info(
            f"Submission {submission.id}: {account.id} scored {submission.score}/{submission.total_marks} on {exam_id}"
        )

        await self.rankings.record_submission(submission, account, exam)
        return submission

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    async def get(self, submission_id: str) -> Submission:
        record = await self.storage.metadata.get(Collections.SUBMISSIONS, submission_id)
        if record is None or not record.get("is_submitted"):
            raise NotFound("Submission not found")
        return Submission.model_validate(record)

    async def list(
        self,
        user_id: str | None = None,
        exam_id: str | None = None,
        page: int = 1,
        limit: int = 20,
    ) -> tuple[list[Submission], dict]:
        filters: dict[str, Any] = {"is_submitted": True}
        if user_id:
            filters["user_id"] = user_id
        if exam_id:
            filters["exam_id"] = exam_id
        records = await self.storage.metadata.query(Collections.SUBMISSIONS, filters)
        submissions = sorted(
            (Submission.model_validate(r) for r in records),
            key=lambda s: s.completed_at,
            reverse=True,
        )
        return paginate(submissions, page, limit)

    async def breakdown(self, submission: Submission) -> list[dict[str, Any]]:
        """Per-question review: the chosen option against the correct one."""
        marks = await self.exams.marks_by_question(submission.exam_id)
        questions = await self.exams.load_questions(list(marks))
        review = []
        for question_id, available in marks.items():
            question = questions.get(question_id)
            if question is None:
                continue
            chosen = submission.answers.get(question_id)
            is_correct = chosen == question.correct_option
            if chosen is None:
                awarded = 0.0
            elif is_correct:
                awarded = available
            else:
                awarded = -question.negative_marks
            review.append({
                "question_id": question_id,
                "content": question.content,
                "options": question.options,
                "selected_option": chosen,
                "correct_option": question.correct_option,
                "is_correct": is_correct,
                "marks": available,
                "marks_awarded": awarded,
                "explanation": question.explanation,
            })
        return review
