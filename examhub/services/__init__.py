"""Services - domain operations over the storage layer."""

from examhub.services.accounts import AccountService
from examhub.services.questions import QuestionService
from examhub.services.exams import ExamService
from examhub.services.rankings import RankingService, assign_ranks
from examhub.services.scoring import grade_for, score_answers
from examhub.services.submissions import SubmissionService

__all__ = [
    "AccountService",
    "QuestionService",
    "ExamService",
    "RankingService",
    "SubmissionService",
    "assign_ranks",
    "grade_for",
    "score_answers",
]
