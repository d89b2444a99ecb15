"""
Scoring rules shared by submissions and the subject leaderboard.
"""

from __future__ import annotations

from typing import Any

from examhub.core.models import Question

# (minimum percentage, grade), best first
GRADE_THRESHOLDS: list[tuple[float, str]] = [
    (98, "AA"),
    (90, "A+"),
    (80, "A"),
    (70, "B"),
    (60, "C"),
]


def grade_for(percentage: float) -> str:
    for minimum, grade in GRADE_THRESHOLDS:
        if percentage >= minimum:
            return grade
    return "F"


def score_answers(
    answers: dict[str, int],
    marks: dict[str, float],
    questions: dict[str, Question],
) -> dict[str, Any]:
    """
    Score an answer sheet.

    A correct answer earns the placement's marks, a wrong one loses the
    question's negative marks, and a skipped one counts zero. ``marks``
    maps every question on the exam to the marks it carries there.
    """
    score = 0.0
    correct = wrong = unanswered = 0
    for question_id, available in marks.items():
        question = questions.get(question_id)
        chosen = answers.get(question_id)
        if question is None or chosen is None:
            unanswered += 1
        elif chosen == question.correct_option:
            correct += 1
            score += available
        else:
            wrong += 1
            score -= question.negative_marks

    total_marks = sum(marks.values())
    percentage = round(max(score, 0) / total_marks * 100, 2) if total_marks else 0.0
    return {
        "score": score,
        "total_marks": total_marks,
        "total_questions": len(marks),
        "correct_answers": correct,
        "wrong_answers": wrong,
        "unanswered": unanswered,
        "percentage": percentage,
        "grade": grade_for(percentage),
    }
