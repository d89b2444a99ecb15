"""
Core module - data models, error taxonomy and shared helpers.
"""

from examhub.core.models import (
    Account,
    AccountResponse,
    Role,
    Difficulty,
    AttemptStatus,
    Question,
    Exam,
    ExamSection,
    ExamQuestion,
    ExamSectionQuestion,
    Submission,
    QuestionProgress,
    Ranking,
)

from examhub.core.errors import (
    ExamHubError,
    AuthenticationRequired,
    InvalidToken,
    AccountNotFound,
    InsufficientRole,
    ValidationFailed,
    Conflict,
    Expired,
    AlreadyInDesiredState,
    NotFound,
    BusinessRuleViolation,
    InvalidCredentials,
)

from examhub.core.utils import (
    generate_id,
    utc_now,
)

__all__ = [
    # Models
    "Account",
    "AccountResponse",
    "Role",
    "Difficulty",
    "AttemptStatus",
    "Question",
    "Exam",
    "ExamSection",
    "ExamQuestion",
    "ExamSectionQuestion",
    "Submission",
    "QuestionProgress",
    "Ranking",
    # Errors
    "ExamHubError",
    "AuthenticationRequired",
    "InvalidToken",
    "AccountNotFound",
    "InsufficientRole",
    "ValidationFailed",
    "Conflict",
    "Expired",
    "AlreadyInDesiredState",
    "NotFound",
    "BusinessRuleViolation",
    "InvalidCredentials",
    # Utils
    "generate_id",
    "utc_now",
]
