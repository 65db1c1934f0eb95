"""Attachment content extraction for chat turns.

Turns an uploaded file into something the assistant can use:
- images are passed through as a data URI (multimodal part)
- PDFs are converted to plain text with PyMuPDF
- anything else is ignored for context purposes

Extraction never raises; failures come back as an "unreadable" result.
"""
import base64
import binascii
import logging
from typing import Literal, Optional

import pymupdf
from pydantic import BaseModel

logger = logging.getLogger(__name__)

CHAT_ATTACHMENT_CHAR_LIMIT = 10000

PDF_MEDIA_TYPE = "application/pdf"

EMPTY_NOTE = "(Attached PDF was empty or unreadable)."
FAILED_NOTE = "(Failed to parse attached PDF file)."


class ExtractionResult(BaseModel):
    """
    Outcome of processing one attachment.

    kind:
        image      - data_uri holds an embeddable data: URI
        text       - text holds the (truncated) document text
        unreadable - note holds the annotation to show the user
        ignored    - unsupported media type or no data, file only recorded
    """
    kind: Literal["image", "text", "unreadable", "ignored"]
    text: Optional[str] = None
    data_uri: Optional[str] = None
    note: Optional[str] = None


def strip_data_url(data: str) -> str:
    """Drop a `data:<type>;base64,` prefix if the client sent one."""
    if "base64," in data:
        return data.split("base64,", 1)[1]
    return data


def attachment_label(media_type: str) -> str:
    """Human label used when annotating stored user messages."""
    if media_type.startswith("image/"):
        return "Image"
    if media_type == PDF_MEDIA_TYPE:
        return "PDF"
    return "File"


def extract_pdf_text(pdf_bytes: bytes) -> str:
    """Return the plain text of every page, joined in page order."""
    doc = pymupdf.open(stream=pdf_bytes, filetype="pdf")
    try:
        return "".join(str(page.get_text()) for page in doc)
    finally:
        doc.close()


def extract(
    data: str,
    media_type: str,
    max_chars: int = CHAT_ATTACHMENT_CHAR_LIMIT,
) -> ExtractionResult:
    """
    Extract usable content from a base64 encoded attachment.

    Args:
        data: Base64 payload, optionally with a data-URL prefix
        media_type: Declared MIME type of the file
        max_chars: Ceiling applied to extracted document text

    Returns:
        ExtractionResult describing what the assistant should receive
    """
    payload = strip_data_url(data or "").strip()
    if not payload:
        return ExtractionResult(kind="ignored")

    if media_type.startswith("image/"):
        return ExtractionResult(
            kind="image",
            data_uri=f"data:{media_type};base64,{payload}",
        )

    if media_type != PDF_MEDIA_TYPE:
        return ExtractionResult(kind="ignored")

    try:
        raw = base64.b64decode(payload, validate=False)
        text = extract_pdf_text(raw).strip()
    except binascii.Error as e:
        logger.warning(f"Attachment is not valid base64: {str(e)}")
        return ExtractionResult(kind="unreadable", note=FAILED_NOTE)
    except Exception as e:
        # PyMuPDF raises several unrelated types for corrupt input
        logger.warning(f"PDF extraction failed: {str(e)}")
        return ExtractionResult(kind="unreadable", note=FAILED_NOTE)

    if not text:
        return ExtractionResult(kind="unreadable", note=EMPTY_NOTE)

    return ExtractionResult(kind="text", text=text[:max_chars])
