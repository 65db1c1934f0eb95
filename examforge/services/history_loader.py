"""Recent-history window for assistant requests."""
import logging
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session

from examforge.services.conversation_store import ConversationStore

logger = logging.getLogger(__name__)

DEFAULT_HISTORY_LIMIT = 10


def load_history(
    session: Session,
    store: ConversationStore,
    conversation_id: Optional[int],
    limit: int = DEFAULT_HISTORY_LIMIT,
) -> list[dict[str, str]]:
    """
    Return the last `limit` messages oldest-first as {role, content}.

    The store yields newest-first; the assistant needs chronological order.
    A missing conversation id or a failed read gives an empty history.
    """
    if conversation_id is None:
        return []

    try:
        recent = store.recent_messages(session, conversation_id, limit)
    except SQLAlchemyError as e:
        logger.warning(f"History read failed for conversation={conversation_id}: {str(e)}")
        session.rollback()
        return []

    return [{"role": msg.role, "content": msg.content} for msg in reversed(recent)]
