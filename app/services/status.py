from __future__ import annotations

import uuid
from typing import Optional

from app.repositories import jobs_repo


def is_valid_job_id(value: object) -> bool:
    if not isinstance(value, str) or not value.strip():
        return False
    try:
        uuid.UUID(value)
    except ValueError:
        return False
    return True


def get_job(job_id: str) -> Optional[dict[str, object]]:
    """Return the latest stored state of a job, or None when it does not exist."""
    return jobs_repo.fetch_job(job_id)
