"""
resumes/store.py -- SQLAlchemy Core persistence for resume metadata and analyses.

Pattern: Repository + Data Mapper, same shape as auth/store.py. ResumeStore
receives an Engine (normally the one built by auth.store.create_db_engine())
and owns only the resumes table.

Data-access only: uploading the file and running the analysis happen
elsewhere. This module records where the file lives and stores the analysis
result (arbitrary JSON) and ATS score against the row.

Security:
  All queries use bound parameters. No f-strings in SQL.
"""

from __future__ import annotations

from typing import Any

from sqlalchemy import JSON, Column, ForeignKey, Index, Integer, String, Table, Text
from sqlalchemy.engine import Engine

from auth.store import metadata, now_iso
from resumes.models import Resume

DEFAULT_LIST_LIMIT = 50

# Declared on the auth MetaData so user_id resolves against users; deleting a
# user removes their resumes.
resumes = Table(
    "resumes",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
    Column("file_name", String(512), nullable=False),
    Column("file_path", Text, nullable=False),
    Column("file_size", Integer),
    Column("mime_type", String(255)),
    Column("gcs_url", Text),
    Column("analysis_data", JSON),
    Column("ats_score", Integer),
    Column("created_at", String(32), nullable=False),
    Index("ix_resumes_user_id_created_at", "user_id", "created_at"),
)


class ResumeStore:
    """Repository for Resume entities.

    Usage:
        store = ResumeStore(engine)
        resume = store.create_resume(user.id, "cv.pdf", "uploads/7/cv.pdf", file_size=48213)
        store.update_analysis(resume.id, {"skills": [...]}, ats_score=82)
    """

    def __init__(self, engine: Engine) -> None:
        self.engine = engine
        metadata.create_all(engine, tables=[resumes])

    def create_resume(
        self,
        user_id: int,
        file_name: str,
        file_path: str,
        file_size: int | None = None,
        mime_type: str | None = None,
        gcs_url: str | None = None,
    ) -> Resume:
        """Insert a resume row and return it.

        Raises sqlalchemy.exc.IntegrityError for an unknown user_id.
        """
        created = now_iso()
        with self.engine.connect() as conn:
            result = conn.execute(
                resumes.insert().values(
                    user_id=user_id,
                    file_name=file_name,
                    file_path=file_path,
                    file_size=file_size,
                    mime_type=mime_type,
                    gcs_url=gcs_url,
                    created_at=created,
                )
            )
            conn.commit()
            resume_id = result.inserted_primary_key[0]
        return Resume(
            id=resume_id,
            user_id=user_id,
            file_name=file_name,
            file_path=file_path,
            file_size=file_size,
            mime_type=mime_type,
            gcs_url=gcs_url,
            created_at=created,
        )

    def get_by_id(self, resume_id: int) -> Resume | None:
        with self.engine.connect() as conn:
            row = conn.execute(resumes.select().where(resumes.c.id == resume_id)).fetchone()
        return _row_to_resume(row) if row is not None else None

    def list_for_user(self, user_id: int, limit: int = DEFAULT_LIST_LIMIT) -> list[Resume]:
        """Return a user's resumes, newest first, at most `limit` rows."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                resumes.select()
                .where(resumes.c.user_id == user_id)
                .order_by(resumes.c.created_at.desc(), resumes.c.id.desc())
                .limit(limit)
            ).fetchall()
        return [_row_to_resume(r) for r in rows]

    def update_analysis(self, resume_id: int, analysis_data: Any, ats_score: int | None = None) -> Resume | None:
        """Replace the stored analysis and ATS score. Returns None for an unknown id.

        A score of 0 is stored as 0; only None clears it.
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                resumes.update()
                .where(resumes.c.id == resume_id)
                .values(analysis_data=analysis_data, ats_score=ats_score)
            )
            conn.commit()
        if result.rowcount == 0:
            return None
        return self.get_by_id(resume_id)

    def delete_resume(self, resume_id: int) -> None:
        """Delete the resume row. A missing row is not an error."""
        with self.engine.connect() as conn:
            conn.execute(resumes.delete().where(resumes.c.id == resume_id))
            conn.commit()


def _row_to_resume(row) -> Resume:
    return Resume(
        id=row.id,
        user_id=row.user_id,
        file_name=row.file_name,
        file_path=row.file_path,
        file_size=row.file_size,
        mime_type=row.mime_type,
        gcs_url=row.gcs_url,
        analysis_data=row.analysis_data,
        ats_score=row.ats_score,
        created_at=row.created_at,
    )
