"""Conversation and Message SQLModel definitions for the AI tutor.

Models:
- Conversation: Chat thread owned by one student, general or subject-bound
- Message: One user or assistant turn inside a conversation
"""
from datetime import datetime, timezone
from typing import Optional

from sqlmodel import Field, SQLModel


class Conversation(SQLModel, table=True):
    """
    Conversation entity for the AI tutor.

    Ownership: Each conversation belongs to exactly one user via user_id.
    Scope: subject_id is None for general threads; it never changes after
    creation. title/preview/updated_at are refreshed after every turn.
    """
    __tablename__ = "conversation"

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: str = Field(index=True, nullable=False)
    subject_id: Optional[int] = Field(default=None, index=True)
    title: Optional[str] = Field(max_length=255, default=None)
    preview: Optional[str] = Field(max_length=255, default=None)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class Message(SQLModel, table=True):
    """
    Message entity for conversations.

    Role: "user" or "assistant". System prompts are never stored.
    Denormalized user_id so every read/delete can filter by owner.
    Ordered by (created_at, id).
    """
    __tablename__ = "message"

    id: Optional[int] = Field(default=None, primary_key=True)
    conversation_id: int = Field(foreign_key="conversation.id", index=True, nullable=False)
    user_id: str = Field(index=True, nullable=False)
    role: str = Field(default="user", max_length=20)
    content: str = Field()
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
