"""Conversation persistence for the AI tutor.

Every operation takes the owning user_id and filters on it. A conversation
owned by someone else is reported exactly like a missing one.
"""
from datetime import datetime, timezone
from typing import Optional
import logging

from sqlmodel import Session, col, select

from examforge.models.conversation import Conversation, Message

logger = logging.getLogger(__name__)

GENERAL_LIST_LIMIT = 50
SUBJECT_LIST_LIMIT = 30

TITLE_LENGTH = 30
PREVIEW_LENGTH = 50

VALID_ROLES = ("user", "assistant")


class ConversationNotFoundError(ValueError):
    """Conversation does not exist or is not owned by the caller."""


def truncate(text: str, length: int) -> str:
    """Cut text to length, marking the cut with an ellipsis."""
    if len(text) > length:
        return text[:length] + "..."
    return text


class ConversationStore:
    """Thin persistence operations over Conversation and Message."""

    def create(
        self,
        session: Session,
        user_id: str,
        subject_id: Optional[int],
        title: str,
        preview: str,
    ) -> Conversation:
        """
        Create a conversation in the given scope.

        Args:
            session: Database session
            user_id: Owning principal
            subject_id: Subject scope or None for general
            title: Initial title
            preview: Initial preview

        Returns:
            The committed Conversation
        """
        conversation = Conversation(
            user_id=user_id,
            subject_id=subject_id,
            title=title,
            preview=preview,
        )
        session.add(conversation)
        session.commit()
        session.refresh(conversation)
        return conversation

    def get(self, session: Session, conversation_id: int, user_id: str) -> Conversation:
        """
        Fetch a conversation owned by user_id.

        Raises:
            ConversationNotFoundError: If missing or owned by another user
        """
        statement = select(Conversation).where(
            Conversation.id == conversation_id,
            Conversation.user_id == user_id,
        )
        conversation = session.exec(statement).first()
        if not conversation:
            raise ConversationNotFoundError(
                f"Conversation {conversation_id} not found or not owned by user"
            )
        return conversation

    def append_message(
        self,
        session: Session,
        conversation_id: int,
        user_id: str,
        role: str,
        content: str,
    ) -> Message:
        """
        Append one message to a conversation owned by user_id.

        Raises:
            ValueError: If role is not "user" or "assistant"
            ConversationNotFoundError: If the conversation is not owned
        """
        if role not in VALID_ROLES:
            raise ValueError(f"Invalid role: {role}")
        self.get(session, conversation_id, user_id)

        message = Message(
            conversation_id=conversation_id,
            user_id=user_id,
            role=role,
            content=content,
        )
        session.add(message)
        session.commit()
        session.refresh(message)
        return message

    def count_user_messages(self, session: Session, conversation_id: int) -> int:
        statement = select(Message.id).where(
            Message.conversation_id == conversation_id,
            Message.role == "user",
        )
        return len(session.exec(statement).all())

    def update_summary(
        self,
        session: Session,
        conversation_id: int,
        user_id: str,
        preview: Optional[str] = None,
        title: Optional[str] = None,
    ) -> Conversation:
        """Refresh preview/title (when given) and always updated_at."""
        conversation = self.get(session, conversation_id, user_id)
        if preview is not None:
            conversation.preview = preview
        if title is not None:
            conversation.title = title
        conversation.updated_at = datetime.now(timezone.utc)
        session.add(conversation)
        session.commit()
        session.refresh(conversation)
        return conversation

    def list_by_owner(
        self,
        session: Session,
        user_id: str,
        subject_id: Optional[int] = None,
    ) -> list[Conversation]:
        """
        List conversations of one scope, most recent first.

        General threads (subject_id None) are capped at 50, subject
        threads at 30.
        """
        statement = select(Conversation).where(Conversation.user_id == user_id)
        if subject_id is None:
            statement = statement.where(col(Conversation.subject_id).is_(None))
            limit = GENERAL_LIST_LIMIT
        else:
            statement = statement.where(Conversation.subject_id == subject_id)
            limit = SUBJECT_LIST_LIMIT

        statement = statement.order_by(
            col(Conversation.created_at).desc(),
            col(Conversation.id).desc(),
        ).limit(limit)
        return list(session.exec(statement).all())

    def get_messages(
        self,
        session: Session,
        conversation_id: int,
        user_id: str,
    ) -> list[Message]:
        """All messages of an owned conversation in chronological order."""
        self.get(session, conversation_id, user_id)
        statement = select(Message).where(
            Message.conversation_id == conversation_id,
            Message.user_id == user_id,
        ).order_by(col(Message.created_at), col(Message.id))
        return list(session.exec(statement).all())

    def recent_messages(
        self,
        session: Session,
        conversation_id: int,
        limit: int,
    ) -> list[Message]:
        """Newest-first slice of a conversation's messages."""
        statement = select(Message).where(
            Message.conversation_id == conversation_id,
        ).order_by(
            col(Message.created_at).desc(),
            col(Message.id).desc(),
        ).limit(limit)
        return list(session.exec(statement).all())

    def delete(self, session: Session, conversation_id: int, user_id: str) -> None:
        """
        Delete an owned conversation and all of its messages.

        Ownership is checked before anything is removed; messages and the
        conversation row go in the same commit.

        Raises:
            ConversationNotFoundError: If missing or owned by another user
        """
        conversation = self.get(session, conversation_id, user_id)
        try:
            messages = session.exec(
                select(Message).where(
                    Message.conversation_id == conversation_id,
                    Message.user_id == user_id,
                )
            ).all()
            for message in messages:
                session.delete(message)
            session.flush()
            session.delete(conversation)
            session.commit()
        except Exception:
            session.rollback()
            raise
        logger.info(f"Conversation deleted: user={user_id}, conversation={conversation_id}")
