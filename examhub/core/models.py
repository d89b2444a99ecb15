"""
Core data models for the exam platform.

Accounts, the question bank, exams with their sections and placements,
submissions, and the derived rankings. Records are persisted as plain
dicts through MetadataStorage and rehydrated with ``model_validate``.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, model_validator

from examhub.core.utils import generate_id, utc_now


# =============================================================================
# Enums
# =============================================================================


class Role(str, Enum):
    """Platform-wide role attached to an account."""

    ADMIN = "ADMIN"
    MODERATOR = "MODERATOR"
    USER = "USER"  # students
    GUEST = "GUEST"


class Difficulty(str, Enum):
    EASY = "EASY"
    MEDIUM = "MEDIUM"
    HARD = "HARD"


class AttemptStatus(str, Enum):
    """Where a student left a question in an unfinished attempt."""

    NOT_ANSWERED = "NOT_ANSWERED"
    ANSWERED = "ANSWERED"
    MARKED_FOR_REVIEW = "MARKED_FOR_REVIEW"


# =============================================================================
# Account
# =============================================================================


class Account(BaseModel):
    """
    A registered account.

    The verification code and reset token fields are owned by the
    verification/reset flows; nothing else writes them.
    """

    id: str = Field(default_factory=lambda: generate_id("acct"))
    email: str
    password_hash: str
    name: str | None = None
    role: Role = Role.USER

    # Profile
    bio: str | None = None
    phone_number: str | None = None
    profile_image: str | None = None

    # State
    is_active: bool = True
    is_email_verified: bool = False

    # Email verification (6-digit code)
    email_verification_code: str | None = None
    email_verification_expiry: datetime | None = None

    # Password reset (signed token)
    reset_token: str | None = None
    reset_token_expiry: datetime | None = None

    # Timestamps
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    last_login: datetime | None = None

    def touch(self) -> None:
        self.updated_at = utc_now()


class AccountResponse(BaseModel):
    """Account data returned to clients (no secrets)."""

    id: str
    email: str
    name: str | None
    role: Role
    bio: str | None
    phone_number: str | None
    profile_image: str | None
    is_active: bool
    is_email_verified: bool
    created_at: datetime
    updated_at: datetime
    last_login: datetime | None

    @classmethod
    def from_account(cls, account: Account) -> AccountResponse:
        return cls.model_validate(account.model_dump(exclude={
            "password_hash",
            "email_verification_code",
            "email_verification_expiry",
            "reset_token",
            "reset_token_expiry",
        }))


# =============================================================================
# Question bank
# =============================================================================


class Question(BaseModel):
    """A multiple-choice question in the bank."""

    id: str = Field(default_factory=lambda: generate_id("q"))
    content: str
    options: list[str]
    correct_option: int

    # Marking
    positive_marks: float = 1
    negative_marks: float = 0

    # Classification
    difficulty: Difficulty = Difficulty.MEDIUM
    subject: str
    topic: str
    tags: list[str] = Field(default_factory=list)

    # Media / explanation
    question_image: str | None = None
    explanation: str | None = None

    author_id: str | None = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @model_validator(mode="after")
    def _correct_option_in_range(self) -> Question:
        if len(self.options) < 2:
            raise ValueError("At least 2 options are required")
        if not 0 <= self.correct_option < len(self.options):
            raise ValueError("Correct option index is out of range")
        return self


# =============================================================================
# Exams
# =============================================================================


class Exam(BaseModel):
    """
    An exam. Owns its sections and question placements.

    ``total_marks`` is derived; it is recomputed whenever the exam is
    published.
    """

    id: str = Field(default_factory=lambda: generate_id("exam"))
    name: str
    description: str = ""
    time_limit: int = 60  # minutes

    # Optional access password (hashed)
    password_hash: str | None = None

    is_published: bool = False
    is_draft: bool = True
    total_marks: float = 0

    created_by_id: str
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @property
    def is_password_protected(self) -> bool:
        return self.password_hash is not None

    def public_dict(self) -> dict[str, Any]:
        data = self.model_dump(exclude={"password_hash"})
        data["is_password_protected"] = self.is_password_protected
        return data


class ExamSection(BaseModel):
    id: str = Field(default_factory=lambda: generate_id("sec"))
    exam_id: str
    name: str
    description: str = ""
    order: int = 0
    time_limit: int | None = None
    created_at: datetime = Field(default_factory=utc_now)


class ExamQuestion(BaseModel):
    """A question placed directly on an exam."""

    id: str = Field(default_factory=lambda: generate_id("eq"))
    exam_id: str
    question_id: str
    order: int = 0
    marks: float = 1


class ExamSectionQuestion(BaseModel):
    """A question placed inside an exam section."""

    id: str = Field(default_factory=lambda: generate_id("esq"))
    exam_id: str
    section_id: str
    question_id: str
    order: int = 0
    marks: float = 1


# =============================================================================
# Submissions & rankings
# =============================================================================


class QuestionProgress(BaseModel):
    status: AttemptStatus = AttemptStatus.NOT_ANSWERED
    answer: int | None = None
    time_spent: int = Field(default=0, ge=0)  # seconds


class Submission(BaseModel):
    """
    One attempt at an exam.

    Starts life as a draft the student keeps saving while sitting the exam.
    Scoring happens once, when the attempt is submitted; after that the row
    is immutable.
    """

    id: str = Field(default_factory=lambda: generate_id("sub"))
    user_id: str
    exam_id: str
    answers: dict[str, int] = Field(default_factory=dict)
    question_statuses: dict[str, QuestionProgress] = Field(default_factory=dict)

    score: float = 0
    total_marks: float = 0
    total_questions: int = 0
    correct_answers: int = 0
    wrong_answers: int = 0
    unanswered: int = 0
    percentage: float = 0
    grade: str = "F"

    time_spent: int = 0  # seconds
    is_submitted: bool = False
    completed_at: datetime | None = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    def progress(self) -> dict[str, int]:
        answered = len(self.answers)
        total = self.total_questions
        return {
            "answered": answered,
            "total": total,
            "percentage": round(answered / total * 100) if total else 0,
        }


class Ranking(BaseModel):
    """
    Leaderboard row for one (user, exam) pair.

    A materialized view over submissions, never a source of truth.
    """

    id: str = Field(default_factory=lambda: generate_id("rank"))
    user_id: str
    user_name: str | None = None
    exam_id: str
    exam_name: str
    submission_id: str
    rank: int = 1
    score: float
    percentage: float
    total_questions: int
    completed_at: datetime
    updated_at: datetime = Field(default_factory=utc_now)
