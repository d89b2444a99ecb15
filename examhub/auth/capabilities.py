"""
Capabilities and the role → capability policy.

This defines WHAT each role can do, not HOW we check it.
The actual checking happens in policies.py.
"""

from __future__ import annotations

from enum import Enum

from examhub.core.models import Role


class Capability(str, Enum):
    """
    Fine-grained capabilities.

    These are the actual permissions checked by the route guard.
    An account's capabilities are derived from its role.
    """

    # Question bank
    QUESTION_READ = "question.read"
    QUESTION_CREATE = "question.create"
    QUESTION_EDIT = "question.edit"
    QUESTION_DELETE = "question.delete"

    # Exams
    EXAM_READ = "exam.read"
    EXAM_READ_DRAFTS = "exam.read_drafts"
    EXAM_CREATE = "exam.create"
    EXAM_EDIT = "exam.edit"
    EXAM_DELETE = "exam.delete"
    EXAM_PUBLISH = "exam.publish"

    # Submissions
    SUBMISSION_CREATE = "submission.create"
    SUBMISSION_READ_ALL = "submission.read_all"

    # Rankings
    RANKING_READ = "ranking.read"
    RANKING_RECALCULATE = "ranking.recalculate"

    # Accounts
    PROFILE_EDIT = "profile.edit"
    USER_READ_ALL = "user.read_all"
    USER_CHANGE_ROLE = "user.change_role"
    USER_DELETE = "user.delete"

    # Uploads
    UPLOAD_PROFILE_IMAGE = "upload.profile_image"
    UPLOAD_QUESTION_IMAGE = "upload.question_image"

    # Admin
    ADMIN_STATS = "admin.stats"


# =============================================================================
# Capability Mappings
# =============================================================================


_STUDENT: set[Capability] = {
    Capability.EXAM_READ,
    Capability.SUBMISSION_CREATE,
    Capability.RANKING_READ,
    Capability.PROFILE_EDIT,
    Capability.UPLOAD_PROFILE_IMAGE,
}

_MODERATOR: set[Capability] = _STUDENT | {
    Capability.QUESTION_READ,
    Capability.QUESTION_CREATE,
    Capability.QUESTION_EDIT,
    Capability.QUESTION_DELETE,
    Capability.EXAM_READ_DRAFTS,
    Capability.EXAM_CREATE,
    Capability.EXAM_EDIT,
    Capability.SUBMISSION_READ_ALL,
    Capability.USER_READ_ALL,
    Capability.USER_CHANGE_ROLE,
    Capability.UPLOAD_QUESTION_IMAGE,
    Capability.ADMIN_STATS,
}

ROLE_CAPABILITIES: dict[Role, set[Capability]] = {
    Role.ADMIN: set(Capability),
    Role.MODERATOR: _MODERATOR,
    Role.USER: _STUDENT,
    Role.GUEST: {
        Capability.EXAM_READ,
        Capability.RANKING_READ,
    },
}

# Roles that may change other accounts' roles.
ROLE_MANAGERS: frozenset[Role] = frozenset({Role.ADMIN, Role.MODERATOR})


def get_capabilities(role: Role | None) -> set[Capability]:
    """Get all capabilities for a role."""
    if role is None:
        return set()
    return set(ROLE_CAPABILITIES.get(role, set()))


def has_capability(capability: Capability | str, role: Role | None) -> bool:
    """Check if a role has a specific capability."""
    if isinstance(capability, str):
        capability = Capability(capability)
    return capability in get_capabilities(role)


def can_assign_role(actor: Role, target_current: Role, target_new: Role) -> bool:
    """
    Whether ``actor`` may move an account from ``target_current`` to ``target_new``.

    Role managers may assign roles; only an ADMIN may grant the ADMIN role
    or touch an account that already holds it.
    """
    if actor not in ROLE_MANAGERS:
        return False
    if Role.ADMIN in (target_current, target_new) and actor != Role.ADMIN:
        return False
    return True
