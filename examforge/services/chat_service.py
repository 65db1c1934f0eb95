"""Chat service layer for the ExamForge AI tutor.

Handles:
- Conversation resolution (reuse owned thread or create a new one)
- Canned identity responses that bypass the model
- Attachment extraction, material context and history assembly
- Assistant dispatch and persistence of both sides of a turn
- The single-shot subject Q&A path
"""
from typing import Optional
import logging
import threading

from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session

from examforge.config import settings
from examforge.models.conversation import Conversation
from examforge.services import content_extractor, context_assembler
from examforge.services.assistant_client import (
    AssistantClient,
    AssistantError,
    AssistantNotConfiguredError,
    AssistantTransportError,
    TurnCancelledError,
    build_user_content,
)
from examforge.services.content_extractor import ExtractionResult
from examforge.services.context_assembler import StudyDigest
from examforge.services.conversation_store import (
    PREVIEW_LENGTH,
    TITLE_LENGTH,
    ConversationNotFoundError,
    ConversationStore,
    truncate,
)
from examforge.services.history_loader import load_history

logger = logging.getLogger(__name__)

AI_NAME = "ExamForge AI Tutor"
AI_CREATOR = "Danish"

IDENTITY_RESPONSE = (
    "I'm built for a specific Exam purpose and the Name is ExamForge, "
    f"built truly by {AI_CREATOR}. 🦊"
)
ABOUT_RESPONSE = (
    f"ExamForge is an AI-powered exam preparation platform built by {AI_CREATOR}. "
    "I help students prepare using PYQs, study materials, and AI tutoring. 🦊📚"
)

# Ordered; first matching group wins
CANNED_RESPONSES: list[tuple[tuple[str, ...], str]] = [
    (
        (
            "who built you",
            "who made you",
            "who created you",
            "who developed you",
            "your creator",
            "your developer",
        ),
        IDENTITY_RESPONSE,
    ),
    (("what is examforge", "about examforge"), ABOUT_RESPONSE),
]

ASK_IDENTITY_PHRASES = (
    "who built you",
    "who made you",
    "who created you",
    "your name",
    "who are you",
)

FALLBACK_RESPONSE = "I'm having trouble. Please try again."
NOT_CONFIGURED_RESPONSE = "AI service is not configured."
ASK_FALLBACK_RESPONSE = "I'm having trouble responding. Please try again."

DEFAULT_FILE_PROMPT = "Analyze this file."
FILE_ONLY_TITLE = "File Upload Analysis"
FILE_ONLY_PREVIEW = "Sent a file"

CHAT_MAX_TOKENS = 1000
ASK_MAX_TOKENS = 1024
TEMPERATURE = 0.7


class EmptyTurnError(ValueError):
    """Turn carried neither text nor a file."""


class TurnFile(BaseModel):
    """Attachment as sent by the client (base64 data, data-URL allowed)."""
    name: str
    type: str
    data: str


class TurnResult(BaseModel):
    """
    Outcome of submit_turn.

    saved is False when the exchange could not be fully written; the
    reply is still returned to the caller.
    """
    response: str
    conversation_id: Optional[int] = None
    saved: bool = True


class AskResult(BaseModel):
    answer: str
    sources: list[str] = []
    confidence: Optional[float] = None


def match_canned_response(text: str) -> Optional[str]:
    """Case-insensitive substring match against the canned phrase groups."""
    lowered = text.lower()
    for phrases, response in CANNED_RESPONSES:
        if any(phrase in lowered for phrase in phrases):
            return response
    return None


class ChatService:
    """Service layer for AI tutor turns."""

    def __init__(
        self,
        assistant: Optional[AssistantClient] = None,
        store: Optional[ConversationStore] = None,
        history_limit: Optional[int] = None,
    ):
        """Initialize chat service."""
        self.assistant = assistant or AssistantClient()
        self.store = store or ConversationStore()
        self.history_limit = history_limit or settings.CHAT_HISTORY_LIMIT

    def get_or_create_conversation(
        self,
        session: Session,
        user_id: str,
        conversation_id: Optional[int],
        subject_id: Optional[int],
        text: str,
    ) -> Optional[Conversation]:
        """
        Resolve the conversation for a turn.

        Args:
            session: Database session
            user_id: Authenticated user ID
            conversation_id: Existing conversation ID or None for new
            subject_id: Scope for a new conversation
            text: User text, used for the initial title/preview

        Returns:
            Conversation instance, or None if a new one could not be stored

        Raises:
            ConversationNotFoundError: If conversation_id is not owned by user
        """
        if conversation_id is not None:
            return self.store.get(session, conversation_id, user_id)

        title = truncate(text, TITLE_LENGTH) if text else FILE_ONLY_TITLE
        preview = text[:PREVIEW_LENGTH] if text else FILE_ONLY_PREVIEW
        try:
            return self.store.create(session, user_id, subject_id, title, preview)
        except SQLAlchemyError as e:
            logger.error(f"Failed to create conversation for user {user_id}: {str(e)}")
            session.rollback()
            return None

    def submit_turn(
        self,
        session: Session,
        user_id: str,
        message: Optional[str] = None,
        file: Optional[TurnFile] = None,
        conversation_id: Optional[int] = None,
        subject_id: Optional[int] = None,
        cancel: Optional[threading.Event] = None,
    ) -> TurnResult:
        """
        Process one user turn.

        Flow:
        1. Reject turns with neither text nor file
        2. Reuse the owned conversation or create one in the given scope
        3. Answer canned identity questions without calling the model
        4. Extract the attachment, assemble material context and history
        5. Call the assistant backend
        6. Store user + assistant messages, refresh title/preview

        A backend failure or cancellation stores only the user message and
        returns a fallback string.

        Raises:
            EmptyTurnError: If neither text nor file is present
            ConversationNotFoundError: If conversation_id is not owned by user
        """
        text = (message or "").strip()
        if not text and file is None:
            raise EmptyTurnError("Message or file is required")

        conversation = self.get_or_create_conversation(
            session, user_id, conversation_id, subject_id, text
        )
        if conversation is not None:
            # Scope is fixed at creation time
            subject_id = conversation.subject_id
        conv_id = conversation.id if conversation else None

        stored_user_content = self._annotate_user_content(text, file)

        canned = match_canned_response(text) if text else None
        if canned is not None:
            saved = self._persist_exchange(
                session, user_id, conv_id, text, stored_user_content, canned
            )
            return TurnResult(response=canned, conversation_id=conv_id, saved=saved)

        extraction: Optional[ExtractionResult] = None
        if file is not None and file.data:
            logger.info(f"Processing file: {file.name} ({file.type})")
            extraction = content_extractor.extract(file.data, file.type)

        subject_name = context_assembler.get_subject_name(session, subject_id)
        material_context = context_assembler.assemble_context(session, subject_id)
        history = load_history(session, self.store, conv_id, self.history_limit)

        user_text, attachment_context = self._build_user_text(text, file, extraction)
        system_prompt = self._build_system_prompt(
            subject_name, material_context, attachment_context
        )
        user_turn = build_user_content(
            user_text, extraction.data_uri if extraction else None
        )

        try:
            reply = self.assistant.complete(
                system_prompt,
                history,
                user_turn,
                max_output_tokens=CHAT_MAX_TOKENS,
                temperature=TEMPERATURE,
                cancel=cancel,
            )
        except AssistantNotConfiguredError:
            saved = self._persist_user_only(session, user_id, conv_id, stored_user_content)
            return TurnResult(response=NOT_CONFIGURED_RESPONSE, conversation_id=conv_id, saved=saved)
        except TurnCancelledError:
            logger.info(f"Turn cancelled: user={user_id}, conversation={conv_id}")
            saved = self._persist_user_only(session, user_id, conv_id, stored_user_content)
            return TurnResult(response=FALLBACK_RESPONSE, conversation_id=conv_id, saved=saved)
        except AssistantTransportError as e:
            logger.error(f"Assistant error for user {user_id}: {str(e)}")
            saved = self._persist_user_only(session, user_id, conv_id, stored_user_content)
            return TurnResult(response=FALLBACK_RESPONSE, conversation_id=conv_id, saved=saved)

        saved = self._persist_exchange(
            session, user_id, conv_id, text, stored_user_content, reply
        )
        logger.info(f"Chat turn processed: user={user_id}, conversation={conv_id}, saved={saved}")
        return TurnResult(response=reply, conversation_id=conv_id, saved=saved)

    def ask_subject(
        self,
        session: Session,
        user_id: str,
        subject_id: int,
        question: str,
    ) -> AskResult:
        """
        Answer a single question against all active materials of a subject.

        Nothing is persisted and no history is sent.
        """
        lowered = question.lower()
        if any(phrase in lowered for phrase in ASK_IDENTITY_PHRASES):
            return AskResult(
                answer=(
                    "I'm built for a specific Exam purpose and the Name is ExamForge, "
                    f"built truly by {AI_CREATOR}. 🦊\n\n"
                    "I help students prepare for exams using uploaded study materials and PYQs."
                ),
                confidence=1.0,
            )

        if not self.assistant.configured:
            return AskResult(
                answer=(
                    "## 🔧 API Not Configured\n\n"
                    f"I'm the **{AI_NAME}**, built by **{AI_CREATOR}**.\n\n"
                    "To enable AI responses, please add your OpenRouter API key to the `.env` file."
                ),
            )

        subject_name = context_assembler.get_subject_name(session, subject_id)
        if subject_name == context_assembler.DEFAULT_SUBJECT_NAME:
            subject_name = "this subject"
        digest = context_assembler.assemble_study_digest(session, subject_id)
        system_prompt = self._build_ask_prompt(subject_name, digest)

        try:
            answer = self.assistant.complete(
                system_prompt,
                [],
                question,
                max_output_tokens=ASK_MAX_TOKENS,
                temperature=TEMPERATURE,
            )
        except AssistantError as e:
            logger.error(f"Ask failed for user {user_id}, subject {subject_id}: {str(e)}")
            return AskResult(answer=ASK_FALLBACK_RESPONSE)

        return AskResult(answer=answer, confidence=0.8 if digest.content else 0.5)

    def _annotate_user_content(self, text: str, file: Optional[TurnFile]) -> str:
        """Stored form of the user turn: file annotation, never file bytes."""
        if file is None:
            return text
        label = content_extractor.attachment_label(file.type)
        return f"[Attached {label}: {file.name}]\n{text}"

    def _build_user_text(
        self,
        text: str,
        file: Optional[TurnFile],
        extraction: Optional[ExtractionResult],
    ) -> tuple[str, str]:
        """
        Build the user text sent to the model and any attachment context.

        Returns:
            (user_text, attachment_context) where attachment_context goes
            into the system prompt
        """
        user_text = text or DEFAULT_FILE_PROMPT
        if file is None or extraction is None:
            return user_text, ""

        if extraction.kind == "text":
            attachment_context = (
                f"[USER ATTACHED PDF: {file.name}]\n"
                f"CONTENT START:\n{extraction.text}\nCONTENT END"
            )
            user_text += (
                f"\n(I have attached a PDF file: {file.name}. "
                "Please analyze its content provided in the system context.)"
            )
            return user_text, attachment_context

        if extraction.kind == "unreadable":
            user_text += f"\n{extraction.note}"
            return user_text, f"[USER ATTACHED PDF: {file.name}] {extraction.note}"

        return user_text, ""

    def _build_system_prompt(
        self,
        subject_name: str,
        material_context: str,
        attachment_context: str,
    ) -> str:
        """Identity, scope, library materials and attachment content."""
        sections = [
            f"You are {AI_NAME}.",
            "IDENTITY:",
            f"- Creator: {AI_CREATOR}",
            "- Purpose: Help students prepare for exams",
            f"- Subject Context: {subject_name}",
            "- Tone: Helpful, intelligent, encouraging",
            "",
            "CONTEXT:",
        ]
        if material_context:
            sections.append(f"LIBRARY MATERIALS:\n{material_context}")
        if attachment_context:
            sections.append(attachment_context)
        sections += [
            "",
            "INSTRUCTIONS:",
            "1. Answer ANY question.",
            "2. If an Image is provided, analyze it (Math problem, Diagram, Text).",
            "3. If a PDF is provided in context, answer questions based on it.",
            "4. Use markdown.",
        ]
        return "\n".join(sections)

    def _build_ask_prompt(self, subject_name: str, digest: StudyDigest) -> str:
        if digest.materials:
            listing = "\n".join(f"- {m}" for m in digest.materials)
            materials = f"## Available Materials ({len(digest.materials)} files)\n{listing}"
        else:
            materials = "## No materials uploaded yet"
        content = f"## Study Material Content\n{digest.content}" if digest.content else ""

        return f"""You are "{AI_NAME}", an AI tutor built by {AI_CREATOR} for ExamForge.

## Your Identity
- Name: {AI_NAME}
- Creator: {AI_CREATOR}
- Purpose: Help students prepare for exams using uploaded materials

## Subject: {subject_name}

{materials}

{content}

## Response Guidelines
1. Be helpful, friendly, and encouraging
2. Use markdown formatting (headers, bullets, bold)
3. Keep responses under 500 words
4. If materials are available, reference them
5. For non-educational questions, politely redirect to study topics
6. Be honest if information isn't in the materials"""

    def _persist_user_only(
        self,
        session: Session,
        user_id: str,
        conversation_id: Optional[int],
        stored_user_content: str,
    ) -> bool:
        """Store the user message of a turn that got no assistant reply."""
        if conversation_id is None:
            return False
        try:
            self.store.append_message(
                session, conversation_id, user_id, "user", stored_user_content
            )
            self.store.update_summary(session, conversation_id, user_id)
        except (SQLAlchemyError, ConversationNotFoundError) as e:
            logger.error(f"Failed to save user message for conversation {conversation_id}: {str(e)}")
            session.rollback()
            return False
        return True

    def _persist_exchange(
        self,
        session: Session,
        user_id: str,
        conversation_id: Optional[int],
        text: str,
        stored_user_content: str,
        reply: str,
    ) -> bool:
        """
        Store both sides of a turn and refresh the conversation summary.

        Title is only rewritten on the conversation's first user turn.
        Failures are logged and reported through the return value.
        """
        if conversation_id is None:
            return False
        try:
            first_turn = self.store.count_user_messages(session, conversation_id) == 0
            user_msg = self.store.append_message(
                session, conversation_id, user_id, "user", stored_user_content
            )
            assistant_msg = self.store.append_message(
                session, conversation_id, user_id, "assistant", reply
            )
            self.store.update_summary(
                session,
                conversation_id,
                user_id,
                preview=truncate(reply, PREVIEW_LENGTH),
                title=truncate(text, TITLE_LENGTH) if first_turn and text else None,
            )
        except (SQLAlchemyError, ConversationNotFoundError) as e:
            logger.error(f"Failed to save turn for conversation {conversation_id}: {str(e)}")
            session.rollback()
            return False

        logger.debug(
            f"Turn saved: conversation={conversation_id}, "
            f"message_id={user_msg.id}, response_id={assistant_msg.id}"
        )
        return True
