"""Conversation endpoints for the AI tutor.

Provides:
- GET/POST /api/ai/conversations - General threads
- GET/DELETE /api/ai/conversations/{id} - Read or delete a general thread
  (subject threads are 404 here)
- GET/POST /api/ai/subjects/{subject_id}/conversations - Subject threads
- GET/DELETE /api/ai/subjects/{subject_id}/conversations/{id}
- POST /api/ai/subjects/{subject_id}/conversations/{id}/messages - Append
"""
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel
from sqlmodel import Session

from examforge.core.deps import get_current_user, get_db
from examforge.models.conversation import Conversation
from examforge.services.conversation_store import (
    PREVIEW_LENGTH,
    TITLE_LENGTH,
    ConversationNotFoundError,
    ConversationStore,
    truncate,
)

router = APIRouter(prefix="/api/ai", tags=["conversations"])

store = ConversationStore()

DEFAULT_TITLE = "New Chat"


class ConversationCreate(BaseModel):
    title: Optional[str] = None
    preview: Optional[str] = None
    first_message: Optional[str] = None


class ConversationCreated(BaseModel):
    id: int


class ConversationSummary(BaseModel):
    """Response model for conversation list."""
    id: int
    title: Optional[str]
    preview: Optional[str]
    created_at: datetime


class MessageResponse(BaseModel):
    """Response model for a single message."""
    id: int
    role: str
    content: str
    created_at: datetime


class ConversationDetail(BaseModel):
    messages: list[MessageResponse]


class MessageCreate(BaseModel):
    role: str
    content: str


class SuccessResponse(BaseModel):
    success: bool = True


def _summaries(conversations: list[Conversation]) -> list[ConversationSummary]:
    return [
        ConversationSummary(
            id=conv.id,
            title=conv.title,
            preview=conv.preview,
            created_at=conv.created_at,
        )
        for conv in conversations
    ]


def _detail(session: Session, conversation_id: int, user_id: str) -> ConversationDetail:
    try:
        messages = store.get_messages(session, conversation_id, user_id)
    except ConversationNotFoundError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Conversation not found",
        )
    return ConversationDetail(
        messages=[
            MessageResponse(
                id=msg.id,
                role=msg.role,
                content=msg.content,
                created_at=msg.created_at,
            )
            for msg in messages
        ]
    )


def _delete(session: Session, conversation_id: int, user_id: str) -> SuccessResponse:
    try:
        store.delete(session, conversation_id, user_id)
    except ConversationNotFoundError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Conversation not found",
        )
    return SuccessResponse()


def _owned_in_scope(
    session: Session, conversation_id: int, user_id: str, subject_id: Optional[int]
) -> Conversation:
    """Fetch an owned conversation and check it belongs to subject_id (None = general)."""
    try:
        conversation = store.get(session, conversation_id, user_id)
    except ConversationNotFoundError:
        conversation = None
    if conversation is None or conversation.subject_id != subject_id:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Conversation not found",
        )
    return conversation


@router.get("/conversations", response_model=list[ConversationSummary])
def list_conversations(
    current_user_id: str = Depends(get_current_user),
    session: Session = Depends(get_db),
) -> list[ConversationSummary]:
    """List the user's general (unscoped) conversations, newest first."""
    return _summaries(store.list_by_owner(session, current_user_id))


@router.post("/conversations", response_model=ConversationCreated)
def create_conversation(
    body: ConversationCreate,
    current_user_id: str = Depends(get_current_user),
    session: Session = Depends(get_db),
) -> ConversationCreated:
    """Start an empty general conversation."""
    conversation = store.create(
        session,
        current_user_id,
        None,
        body.title or DEFAULT_TITLE,
        body.preview or "",
    )
    return ConversationCreated(id=conversation.id)


@router.get("/conversations/{conversation_id}", response_model=ConversationDetail)
def get_conversation(
    conversation_id: int,
    current_user_id: str = Depends(get_current_user),
    session: Session = Depends(get_db),
) -> ConversationDetail:
    """Get all messages of an owned conversation, oldest first."""
    _owned_in_scope(session, conversation_id, current_user_id, None)
    return _detail(session, conversation_id, current_user_id)


@router.delete("/conversations/{conversation_id}", response_model=SuccessResponse)
def delete_conversation(
    conversation_id: int,
    current_user_id: str = Depends(get_current_user),
    session: Session = Depends(get_db),
) -> SuccessResponse:
    """Delete an owned conversation and its messages."""
    _owned_in_scope(session, conversation_id, current_user_id, None)
    return _delete(session, conversation_id, current_user_id)


@router.get("/subjects/{subject_id}/conversations", response_model=list[ConversationSummary])
def list_subject_conversations(
    subject_id: int,
    current_user_id: str = Depends(get_current_user),
    session: Session = Depends(get_db),
) -> list[ConversationSummary]:
    """List the user's conversations for one subject, newest first."""
    return _summaries(store.list_by_owner(session, current_user_id, subject_id))


@router.post("/subjects/{subject_id}/conversations", response_model=ConversationSummary)
def create_subject_conversation(
    subject_id: int,
    body: ConversationCreate,
    current_user_id: str = Depends(get_current_user),
    session: Session = Depends(get_db),
) -> ConversationSummary:
    """Start an empty conversation bound to a subject."""
    conversation = store.create(
        session,
        current_user_id,
        subject_id,
        body.title or DEFAULT_TITLE,
        (body.first_message or "")[:PREVIEW_LENGTH],
    )
    return _summaries([conversation])[0]


@router.get(
    "/subjects/{subject_id}/conversations/{conversation_id}",
    response_model=ConversationDetail,
)
def get_subject_conversation(
    subject_id: int,
    conversation_id: int,
    current_user_id: str = Depends(get_current_user),
    session: Session = Depends(get_db),
) -> ConversationDetail:
    _owned_in_scope(session, conversation_id, current_user_id, subject_id)
    return _detail(session, conversation_id, current_user_id)


@router.delete(
    "/subjects/{subject_id}/conversations/{conversation_id}",
    response_model=SuccessResponse,
)
def delete_subject_conversation(
    subject_id: int,
    conversation_id: int,
    current_user_id: str = Depends(get_current_user),
    session: Session = Depends(get_db),
) -> SuccessResponse:
    _owned_in_scope(session, conversation_id, current_user_id, subject_id)
    return _delete(session, conversation_id, current_user_id)


@router.post(
    "/subjects/{subject_id}/conversations/{conversation_id}/messages",
    response_model=SuccessResponse,
)
def append_subject_message(
    subject_id: int,
    conversation_id: int,
    body: MessageCreate,
    current_user_id: str = Depends(get_current_user),
    session: Session = Depends(get_db),
) -> SuccessResponse:
    """
    Append a message written by the client.

    A user message also refreshes the conversation preview and title.

    Raises:
        HTTPException: 400 if role is not "user" or "assistant"
        HTTPException: 404 if conversation not found or not owned
    """
    _owned_in_scope(session, conversation_id, current_user_id, subject_id)
    try:
        store.append_message(
            session, conversation_id, current_user_id, body.role, body.content
        )
    except ConversationNotFoundError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Conversation not found",
        )
    except ValueError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(e),
        )

    if body.role == "user":
        store.update_summary(
            session,
            conversation_id,
            current_user_id,
            preview=body.content[:PREVIEW_LENGTH],
            title=truncate(body.content, TITLE_LENGTH),
        )

    return SuccessResponse()
