"""
ExamHub - main entry point.

    uvicorn examhub.main:app --reload
    python -m examhub.main
"""

from __future__ import annotations

import uvicorn

from examhub.api.app import create_app
from examhub.config import get_settings

app = create_app()


def main() -> None:
    settings = get_settings()
    uvicorn.run(
        "examhub.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.debug and not settings.is_production,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
