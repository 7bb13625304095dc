"""
resumes/models.py -- Domain dataclass for an uploaded resume.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass
class Resume:
    """Metadata for one uploaded resume file plus its latest analysis.

    The file itself lives in object storage; file_path / gcs_url point at it.
    analysis_data and ats_score stay None until an analysis has been stored.
    """

    user_id: int
    file_name: str
    file_path: str
    file_size: int | None = None
    mime_type: str | None = None
    gcs_url: str | None = None
    analysis_data: Any = None
    ats_score: int | None = None
    id: int | None = None
    created_at: str | None = None
