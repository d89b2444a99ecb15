"""
Ranking service - leaderboards derived from submissions.

Rankings are a materialized view: one row per (user, exam), rebuilt from
submissions whenever they change. Leaderboards are cached and the cache is
dropped on every recompute.
"""

from __future__ import annotations

import logging
from typing import Any

from examhub.core.errors import NotFound, ValidationFailed
from examhub.core.models import Account, Exam, Question, Ranking, Submission
from examhub.core.utils import as_utc, utc_now
from examhub.services.scoring import score_answers
from examhub.storage.base import Collections, StorageProvider

logger = logging.getLogger(__name__)

CACHE_PREFIX = "leaderboard:"
CACHE_TTL = 300


def _exam_key(exam_id: str) -> str:
    return f"{CACHE_PREFIX}exam:{exam_id}"


GLOBAL_KEY = f"{CACHE_PREFIX}global"
SUBJECT_PREFIX = f"{CACHE_PREFIX}subject:"
MAX_SUBJECT_LENGTH = 100


def _subject_key(subject: str) -> str:
    return f"{SUBJECT_PREFIX}{subject}"


def assign_ranks(rows: list[Ranking]) -> list[Ranking]:
    """
    Order rows best-first and assign competition ranks.

    Higher score wins, then higher percentage, then the earlier finish.
    Rows tied on score and percentage share a rank; the next distinct row
    takes its position (1, 1, 3).
    """
    ordered = sorted(rows, key=lambda r: (-r.score, -r.percentage, as_utc(r.completed_at)))
    previous: tuple[float, float] | None = None
    for position, row in enumerate(ordered, start=1):
        current = (row.score, row.percentage)
        if current != previous:
            rank = position
            previous = current
        row.rank = rank
    return ordered


class RankingService:
    def __init__(self, storage: StorageProvider):
        self.storage = storage

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    async def record_submission(self, submission: Submission, account: Account, exam: Exam) -> Ranking:
        """Upsert the submitter's row and re-rank the exam."""
        existing = await self.storage.metadata.query(
            Collections.RANKINGS,
            {"user_id": submission.user_id, "exam_id": submission.exam_id},
            limit=1,
        )
        row = Ranking(
            user_id=account.id,
            user_name=account.name or account.email,
            exam_id=exam.id,
            exam_name=exam.name,
            submission_id=submission.id,
            score=submission.score,
            percentage=submission.percentage,
            total_questions=submission.total_questions,
            completed_at=submission.completed_at,
        )
        if existing:
            row.id = existing[0]["id"]
        await self.storage.metadata.save(Collections.RANKINGS, row.id, row.model_dump())

        ranked = await self.recompute(exam.id)
        return next(r for r in ranked if r.user_id == account.id)

    async def recompute(self, exam_id: str) -> list[Ranking]:
        """Re-rank every row for one exam."""
        records = await self.storage.metadata.query(Collections.RANKINGS, {"exam_id": exam_id})
        ranked = assign_ranks([Ranking.model_validate(r) for r in records])
        now = utc_now()
        for row in ranked:
            row.updated_at = now
            await self.storage.metadata.save(Collections.RANKINGS, row.id, row.model_dump())

        await self.invalidate(exam_id)
        logger.debug(f"Re-ranked {len(ranked)} rows for exam {exam_id}")
        return ranked

    async def rebuild(self, exam_id: str) -> list[Ranking]:
        """Throw away an exam's rows and derive them again from submissions."""
        for record in await self.storage.metadata.query(Collections.RANKINGS, {"exam_id": exam_id}):
            await self.storage.metadata.delete(Collections.RANKINGS, record["id"])

        exam_record = await self.storage.metadata.get(Collections.EXAMS, exam_id)
        submissions = await self.storage.metadata.query(
            Collections.SUBMISSIONS, {"exam_id": exam_id, "is_submitted": True}
        )
        for data in submissions:
            submission = Submission.model_validate(data)
            account = await self.storage.metadata.get(Collections.ACCOUNTS, submission.user_id)
            row = Ranking(
                user_id=submission.user_id,
                user_name=(account.get("name") or account["email"]) if account else None,
                exam_id=exam_id,
                exam_name=exam_record["name"] if exam_record else "",
                submission_id=submission.id,
                score=submission.score,
                percentage=submission.percentage,
                total_questions=submission.total_questions,
                completed_at=submission.completed_at,
            )
            await self.storage.metadata.save(Collections.RANKINGS, row.id, row.model_dump())

        logger.info(f"Rebuilt rankings for exam {exam_id} from {len(submissions)} submissions")
        return await self.recompute(exam_id)

    async def forget_user(self, user_id: str) -> None:
        """Drop a user's rows and re-rank every exam they appeared on."""
        records = await self.storage.metadata.query(Collections.RANKINGS, {"user_id": user_id})
        for record in records:
            await self.storage.metadata.delete(Collections.RANKINGS, record["id"])
        for exam_id in {r["exam_id"] for r in records}:
            await self.recompute(exam_id)
        await self.invalidate()

    async def invalidate(self, exam_id: str | None = None) -> None:
        if exam_id:
            await self.storage.cache.delete(_exam_key(exam_id))
        await self.storage.cache.delete(GLOBAL_KEY)
        await self.storage.cache.delete_prefix(SUBJECT_PREFIX)

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    async def exam_leaderboard(self, exam_id: str, limit: int = 50) -> list[dict[str, Any]]:
        cached = await self.storage.cache.get(_exam_key(exam_id))
        if cached is None:
            records = await self.storage.metadata.query(Collections.RANKINGS, {"exam_id": exam_id})
            rows = sorted((Ranking.model_validate(r) for r in records), key=lambda r: (r.rank, as_utc(r.completed_at)))
            cached = [r.model_dump(mode="json") for r in rows]
            await self.storage.cache.set(_exam_key(exam_id), cached, ttl=CACHE_TTL)
        return cached[:limit]

    async def global_leaderboard(self, limit: int | None = 50) -> list[dict[str, Any]]:
        """
        Users ranked by average percentage across every exam they took.

        Ties on average break on the number of exams taken, then total score.
        """
        cached = await self.storage.cache.get(GLOBAL_KEY)
        if cached is None:
            cached = await self._build_global()
            await self.storage.cache.set(GLOBAL_KEY, cached, ttl=CACHE_TTL)
        return cached[:limit]

    async def _build_global(self) -> list[dict[str, Any]]:
        per_user: dict[str, dict[str, Any]] = {}
        for record in await self.storage.metadata.query(Collections.RANKINGS):
            row = Ranking.model_validate(record)
            entry = per_user.setdefault(row.user_id, {
                "user_id": row.user_id,
                "user_name": row.user_name,
                "total_exams": 0,
                "total_score": 0.0,
                "percentages": [],
                "best_rank": row.rank,
            })
            entry["total_exams"] += 1
            entry["total_score"] += row.score
            entry["percentages"].append(row.percentage)
            entry["best_rank"] = min(entry["best_rank"], row.rank)

        board = []
        for entry in per_user.values():
            percentages = entry.pop("percentages")
            entry["average_percentage"] = round(sum(percentages) / len(percentages), 2)
            entry["highest_percentage"] = max(percentages)
            board.append(entry)

        board.sort(key=lambda e: (-e["average_percentage"], -e["total_exams"], -e["total_score"]))
        previous = None
        for position, entry in enumerate(board, start=1):
            current = (entry["average_percentage"], entry["total_exams"], entry["total_score"])
            if current != previous:
                rank = position
                previous = current
            entry["rank"] = rank
        return board

    async def subject_leaderboard(self, subject: str | None) -> list[dict[str, Any]]:
        """
        Users ranked on one subject's questions across every exam they sat.

        Each submitted sheet is re-scored on that subject's placements only,
        then totals are pooled per user. Higher percentage wins, then higher
        score; ties share a rank.
        """
        subject = (subject or "").strip()
        if not subject:
            raise ValidationFailed("Valid subject is required")
        if len(subject) > MAX_SUBJECT_LENGTH:
            raise ValidationFailed(f"Subject name too long (max {MAX_SUBJECT_LENGTH} characters)")

        cached = await self.storage.cache.get(_subject_key(subject))
        if cached is not None:
            return cached

        records = await self.storage.metadata.query(Collections.QUESTIONS, {"subject": subject})
        if not records:
            raise NotFound(f"Subject '{subject}' not found")
        questions = {r["id"]: Question.model_validate(r) for r in records}

        # exam_id -> {question_id: marks} for this subject's placements
        subject_marks: dict[str, dict[str, float]] = {}
        for collection in (Collections.EXAM_QUESTIONS, Collections.EXAM_SECTION_QUESTIONS):
            for placement in await self.storage.metadata.query(collection):
                if placement["question_id"] in questions:
                    subject_marks.setdefault(placement["exam_id"], {})[placement["question_id"]] = placement["marks"]

        per_user: dict[str, dict[str, Any]] = {}
        for record in await self.storage.metadata.query(Collections.SUBMISSIONS, {"is_submitted": True}):
            marks = subject_marks.get(record["exam_id"])
            if not marks:
                continue
            account = await self.storage.metadata.get(Collections.ACCOUNTS, record["user_id"])
            if account is None:
                continue
            result = score_answers(record["answers"], marks, questions)
            entry = per_user.setdefault(record["user_id"], {
                "user_id": record["user_id"],
                "user_name": account.get("name") or account["email"],
                "total_exams": 0,
                "score": 0.0,
                "total_marks": 0.0,
                "correct_answers": 0,
            })
            entry["total_exams"] += 1
            entry["score"] += result["score"]
            entry["total_marks"] += result["total_marks"]
            entry["correct_answers"] += result["correct_answers"]

        board = list(per_user.values())
        for entry in board:
            total = entry["total_marks"]
            entry["percentage"] = round(max(entry["score"], 0) / total * 100, 2) if total else 0.0
        board.sort(key=lambda e: (-e["percentage"], -e["score"]))
        previous = None
        for position, entry in enumerate(board, start=1):
            current = (entry["percentage"], entry["score"])
            if current != previous:
                rank = position
                previous = current
            entry["rank"] = rank

        await self.storage.cache.set(_subject_key(subject), board, ttl=CACHE_TTL)
        return board

    async def user_rankings(self, user_id: str) -> dict[str, Any]:
        """A user's rows on every exam plus a summary and global position."""
        records = await self.storage.metadata.query(Collections.RANKINGS, {"user_id": user_id})
        rows = sorted(
            (Ranking.model_validate(r) for r in records),
            key=lambda r: as_utc(r.completed_at),
            reverse=True,
        )

        global_rank = None
        for entry in await self.global_leaderboard(limit=None):
            if entry["user_id"] == user_id:
                global_rank = entry["rank"]
                break

        percentages = [r.percentage for r in rows]
        return {
            "rankings": [r.model_dump(mode="json") for r in rows],
            "summary": {
                "total_exams": len(rows),
                "average_percentage": round(sum(percentages) / len(percentages), 2) if rows else 0,
                "best_rank": min((r.rank for r in rows), default=None),
                "global_rank": global_rank,
            },
        }
