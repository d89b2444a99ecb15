"""
Ranking and leaderboard routes.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from examhub.api.deps import get_exam_service, get_ranking_service
from examhub.auth import AuthContext, Capability, authorize
from examhub.services import ExamService, RankingService

router = APIRouter(tags=["rankings"])


@router.get("/rankings/exam/{exam_id}")
async def exam_leaderboard(
    exam_id: str,
    limit: int = Query(50, ge=1, le=500),
    ctx: AuthContext = Depends(authorize(Capability.RANKING_READ)),
    exams: ExamService = Depends(get_exam_service),
    rankings: RankingService = Depends(get_ranking_service),
):
    exam = await exams.get(exam_id)
    return {
        "success": True,
        "exam": {"id": exam.id, "name": exam.name},
        "rankings": await rankings.exam_leaderboard(exam_id, limit=limit),
    }


@router.get("/rankings/global")
async def global_leaderboard(
    limit: int = Query(50, ge=1, le=500),
    ctx: AuthContext = Depends(authorize(Capability.RANKING_READ)),
    rankings: RankingService = Depends(get_ranking_service),
):
    return {"success": True, "rankings": await rankings.global_leaderboard(limit=limit)}


@router.get("/rankings/subject")
async def subject_leaderboard(
    subject: str | None = None,
    limit: int = Query(50, ge=1, le=500),
    ctx: AuthContext = Depends(authorize(Capability.RANKING_READ)),
    rankings: RankingService = Depends(get_ranking_service),
):
    """Top of one subject's board, plus where the caller stands on it."""
    board = await rankings.subject_leaderboard(subject)
    personal = next((e for e in board if e["user_id"] == ctx.account_id), None)
    average = round(sum(e["percentage"] for e in board) / len(board), 2) if board else 0
    return {
        "success": True,
        "subject": subject.strip(),
        "rankings": board[:limit],
        "personal_rank": personal,
        "statistics": {
            "total_participants": len(board),
            "average_percentage": average,
        },
    }


@router.get("/student/ranking")
async def my_rankings(
    ctx: AuthContext = Depends(authorize(Capability.RANKING_READ)),
    rankings: RankingService = Depends(get_ranking_service),
):
    return {"success": True, **await rankings.user_rankings(ctx.account_id)}


@router.post("/rankings/exam/{exam_id}/recalculate")
async def recalculate_rankings(
    exam_id: str,
    ctx: AuthContext = Depends(authorize(Capability.RANKING_RECALCULATE)),
    exams: ExamService = Depends(get_exam_service),
    rankings: RankingService = Depends(get_ranking_service),
):
    await exams.get(exam_id)
    rows = await rankings.rebuild(exam_id)
    return {
        "success": True,
        "message": f"Rankings recalculated for {len(rows)} students",
        "rankings": [r.model_dump(mode="json") for r in rows],
    }
