"""Subject and ReferenceMaterial tables.

Owned by the admin side of the platform; the tutor only reads them.
"""
from datetime import datetime, timezone
from typing import Optional

from sqlmodel import Field, SQLModel


class Subject(SQLModel, table=True):
    __tablename__ = "subject"

    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(max_length=255)


class ReferenceMaterial(SQLModel, table=True):
    """
    Uploaded past paper or reference book.

    type: "pyq" or "book"
    text_content is None when extraction failed or was skipped.
    """
    __tablename__ = "reference_material"

    id: Optional[int] = Field(default=None, primary_key=True)
    subject_id: int = Field(foreign_key="subject.id", index=True)
    title: str = Field(max_length=255)
    type: str = Field(default="pyq", max_length=20)
    year: Optional[int] = None
    text_content: Optional[str] = None
    is_active: bool = Field(default=True, index=True)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
