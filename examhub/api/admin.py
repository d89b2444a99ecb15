"""
Admin dashboard routes.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends

from examhub.api.deps import get_storage
from examhub.auth import AuthContext, Capability, authorize
from examhub.core.models import Role
from examhub.storage import Collections, StorageProvider

router = APIRouter(prefix="/admin", tags=["admin"])


@router.get("/stats")
async def dashboard_stats(
    ctx: AuthContext = Depends(authorize(Capability.ADMIN_STATS)),
    storage: StorageProvider = Depends(get_storage),
):
    """Headline counts for the admin dashboard."""
    metadata = storage.metadata

    users = {role.value: await metadata.count(Collections.ACCOUNTS, {"role": role}) for role in Role}
    published = await metadata.count(Collections.EXAMS, {"is_published": True})
    total_exams = await metadata.count(Collections.EXAMS)

    submissions = await metadata.query(Collections.SUBMISSIONS, {"is_submitted": True})
    average = (
        round(sum(s["percentage"] for s in submissions) / len(submissions), 2)
        if submissions else 0
    )

    return {
        "success": True,
        "stats": {
            "users": {"total": sum(users.values()), "by_role": users},
            "questions": await metadata.count(Collections.QUESTIONS),
            "exams": {
                "total": total_exams,
                "published": published,
                "drafts": total_exams - published,
            },
            "submissions": {
                "total": len(submissions),
                "average_percentage": average,
            },
        },
    }
