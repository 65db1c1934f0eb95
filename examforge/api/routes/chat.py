"""Chat endpoint routes for the AI tutor.

Provides:
- POST /api/ai/chat - Submit a turn (text and/or file) to the tutor
- POST /api/ai/ask - Single-shot question against a subject's materials
"""
from typing import Optional
import asyncio
import logging
import threading

from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import BaseModel
from sqlmodel import Session
from starlette.concurrency import run_in_threadpool

from examforge.core.deps import get_current_user, get_db
from examforge.services.chat_service import (
    AskResult,
    ChatService,
    EmptyTurnError,
    TurnFile,
)
from examforge.services.conversation_store import ConversationNotFoundError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/ai", tags=["chat"])

DISCONNECT_POLL_SECONDS = 0.5

# Global chat service instance (stateless, no session stored)
_chat_service: Optional[ChatService] = None


def get_chat_service() -> ChatService:
    global _chat_service
    if _chat_service is None:
        _chat_service = ChatService()
    return _chat_service


class ChatRequest(BaseModel):
    """Request model for submitting a chat turn."""
    message: Optional[str] = None
    conversation_id: Optional[int] = None
    subject_id: Optional[int] = None
    file: Optional[TurnFile] = None


class ChatResponse(BaseModel):
    """Response model for a chat turn."""
    response: str
    conversation_id: Optional[int]
    saved: bool


class AskRequest(BaseModel):
    subject_id: Optional[int] = None
    question: Optional[str] = None


async def _watch_disconnect(request: Request, cancel: threading.Event) -> None:
    """Set `cancel` once the client goes away (user pressed stop)."""
    while not cancel.is_set():
        if await request.is_disconnected():
            logger.info("Client disconnected, cancelling turn")
            cancel.set()
            return
        await asyncio.sleep(DISCONNECT_POLL_SECONDS)


@router.post("/chat", response_model=ChatResponse)
async def send_chat_message(
    request: Request,
    body: ChatRequest,
    current_user_id: str = Depends(get_current_user),
    session: Session = Depends(get_db),
    chat_service: ChatService = Depends(get_chat_service),
) -> ChatResponse:
    """
    Submit one turn to the AI tutor.

    Flow:
    1. Validate that text or a file is present
    2. Reuse the caller's conversation or start a new one
    3. Run the turn in a worker thread while watching for disconnect
    4. Return the reply and the conversation id

    Raises:
        HTTPException: 400 if neither message nor file is present
        HTTPException: 404 if conversation not found or not owned
    """
    cancel = threading.Event()
    watcher = asyncio.create_task(_watch_disconnect(request, cancel))
    try:
        result = await run_in_threadpool(
            chat_service.submit_turn,
            session,
            current_user_id,
            message=body.message,
            file=body.file,
            conversation_id=body.conversation_id,
            subject_id=body.subject_id,
            cancel=cancel,
        )
    except EmptyTurnError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(e),
        )
    except ConversationNotFoundError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Conversation not found",
        )
    finally:
        cancel.set()
        watcher.cancel()

    return ChatResponse(
        response=result.response,
        conversation_id=result.conversation_id,
        saved=result.saved,
    )


@router.post("/ask", response_model=AskResult)
def ask_subject_question(
    body: AskRequest,
    current_user_id: str = Depends(get_current_user),
    session: Session = Depends(get_db),
    chat_service: ChatService = Depends(get_chat_service),
) -> AskResult:
    """
    Answer a question using every active material of one subject.

    Raises:
        HTTPException: 400 if subject_id or question is missing
    """
    if body.subject_id is None or not body.question or not body.question.strip():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Missing required fields",
        )

    return chat_service.ask_subject(
        session, current_user_id, body.subject_id, body.question
    )
