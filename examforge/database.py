"""Database engine and session helpers."""
from typing import Iterator

from sqlmodel import Session, SQLModel, create_engine

from examforge.config import settings

connect_args = {}
if settings.DATABASE_URL.startswith("sqlite"):
    connect_args = {"check_same_thread": False}

engine = create_engine(settings.DATABASE_URL, connect_args=connect_args)


def init_db() -> None:
    """Create all tables registered on SQLModel metadata."""
    from examforge.models import conversation, material  # noqa: F401

    SQLModel.metadata.create_all(engine)


def get_session() -> Iterator[Session]:
    """Yield a session bound to the application engine."""
    with Session(engine) as session:
        yield session
