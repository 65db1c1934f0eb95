"""Reference-material context assembly for the AI tutor.

Materials are included in the order the store returns them; there is no
relevance ranking. An empty context is the normal state for a new subject.
"""
import logging
from typing import Optional

from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from examforge.models.material import ReferenceMaterial, Subject

logger = logging.getLogger(__name__)

# Conversational context, subject-bound
SUBJECT_MAX_MATERIALS = 5
SUBJECT_MAX_CHARS = 1500

# Conversational context, no subject selected
GENERAL_MAX_MATERIALS = 3
GENERAL_MAX_CHARS = 1000

# Dedicated Q&A endpoint, total budget across all materials
DIGEST_MAX_CHARS = 12000

DEFAULT_SUBJECT_NAME = "General"


class MaterialSnippet(BaseModel):
    """Read-only view of a ReferenceMaterial row."""
    title: str
    kind: str
    year: Optional[int] = None
    extracted_text: Optional[str] = None


class StudyDigest(BaseModel):
    """Context for the single-shot Q&A endpoint."""
    materials: list[str]
    content: str


def list_active_materials(
    session: Session,
    subject_id: Optional[int],
    limit: Optional[int],
    with_text_only: bool = False,
) -> list[MaterialSnippet]:
    """
    Fetch active materials for a subject, or across all subjects.

    Args:
        session: Database session
        subject_id: Subject to filter on, None for all subjects
        limit: Maximum rows, None for no limit
        with_text_only: Skip rows whose extraction produced no text

    Returns:
        Materials in insertion order (text may be None)
    """
    statement = select(ReferenceMaterial).where(ReferenceMaterial.is_active == True)  # noqa: E712
    if subject_id is not None:
        statement = statement.where(ReferenceMaterial.subject_id == subject_id)
    if with_text_only:
        statement = statement.where(ReferenceMaterial.text_content != None)  # noqa: E711
    statement = statement.order_by(ReferenceMaterial.id)
    if limit is not None:
        statement = statement.limit(limit)

    return [
        MaterialSnippet(
            title=row.title,
            kind=row.type,
            year=row.year,
            extracted_text=row.text_content,
        )
        for row in session.exec(statement).all()
    ]


def get_subject_name(session: Session, subject_id: Optional[int]) -> str:
    """Subject display name, or "General" when unscoped or unknown."""
    if subject_id is None:
        return DEFAULT_SUBJECT_NAME
    try:
        subject = session.get(Subject, subject_id)
    except SQLAlchemyError as e:
        logger.warning(f"Subject lookup failed for {subject_id}: {str(e)}")
        session.rollback()
        return DEFAULT_SUBJECT_NAME
    return subject.name if subject else DEFAULT_SUBJECT_NAME


def assemble_context(
    session: Session,
    subject_id: Optional[int],
    max_materials: Optional[int] = None,
    max_chars_per_material: Optional[int] = None,
) -> str:
    """
    Build the labeled context block for a conversational turn.

    Subject-bound scope defaults to 5 materials x 1500 chars, general
    scope to 3 materials x 1000 chars. Read failures degrade to "".
    """
    if subject_id is not None:
        default_materials, default_chars = SUBJECT_MAX_MATERIALS, SUBJECT_MAX_CHARS
    else:
        default_materials, default_chars = GENERAL_MAX_MATERIALS, GENERAL_MAX_CHARS
    if max_materials is None:
        max_materials = default_materials
    max_chars = default_chars if max_chars_per_material is None else max_chars_per_material

    try:
        materials = list_active_materials(
            session, subject_id, max_materials, with_text_only=True
        )
    except SQLAlchemyError as e:
        logger.warning(f"Context read failed for subject={subject_id}: {str(e)}")
        session.rollback()
        return ""

    segments = []
    for material in materials:
        if not material.extracted_text:
            continue
        segments.append(f"[MATERIAL: {material.title} ({material.kind})]\n{material.extracted_text[:max_chars]}")

    return "\n\n".join(segments)


def assemble_study_digest(
    session: Session,
    subject_id: int,
    max_total_chars: int = DIGEST_MAX_CHARS,
) -> StudyDigest:
    """
    Build the materials list and content body for the Q&A endpoint.

    Every active material of the subject is listed; bodies of those with
    text are joined and cut to max_total_chars as a whole.
    """
    try:
        materials = list_active_materials(session, subject_id, None)
    except SQLAlchemyError as e:
        logger.warning(f"Digest read failed for subject={subject_id}: {str(e)}")
        session.rollback()
        return StudyDigest(materials=[], content="")

    listing = [
        f"{m.title} ({m.kind}, {m.year or 'N/A'})"
        for m in materials
    ]
    content = "\n\n---\n\n".join(
        f"### {m.title} ({m.kind})\n{m.extracted_text}"
        for m in materials
        if m.extracted_text
    )
    return StudyDigest(materials=listing, content=content[:max_total_chars])
