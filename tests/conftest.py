import base64
from typing import Optional

import pymupdf
import pytest
from fastapi.testclient import TestClient
from sqlmodel import Session, SQLModel, create_engine
from sqlmodel.pool import StaticPool

from examforge.api.routes.chat import get_chat_service
from examforge.core.deps import get_current_user, get_db
from examforge.main import app
from examforge.models.conversation import Conversation, Message  # noqa: F401
from examforge.models.material import ReferenceMaterial, Subject
from examforge.services.chat_service import ChatService

USER_ID = "student-1"


class FakeAssistant:
    """Records every request; replies with a fixed string or raises."""

    def __init__(self, reply: str = "Here is an explanation.", error: Optional[Exception] = None, configured: bool = True):
        self.reply = reply
        self.error = error
        self.configured = configured
        self.calls = []

    def complete(self, system_instruction, history, user_turn, max_output_tokens=1000, temperature=0.7, cancel=None):
        self.calls.append(
            {
                "system": system_instruction,
                "history": history,
                "user_turn": user_turn,
                "max_output_tokens": max_output_tokens,
                "temperature": temperature,
            }
        )
        if self.error is not None:
            raise self.error
        return self.reply


def pdf_base64(text: Optional[str] = None) -> str:
    doc = pymupdf.open()
    page = doc.new_page()
    if text:
        page.insert_text((72, 72), text)
    data = doc.tobytes()
    doc.close()
    return base64.b64encode(data).decode()


def add_material(session, subject_id, title, text, kind="pyq", active=True, year=None):
    material = ReferenceMaterial(
        subject_id=subject_id,
        title=title,
        type=kind,
        text_content=text,
        is_active=active,
        year=year,
    )
    session.add(material)
    session.commit()
    return material


@pytest.fixture
def session():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    with Session(engine) as session:
        yield session


@pytest.fixture
def subject(session):
    subject = Subject(name="Data Structures")
    session.add(subject)
    session.commit()
    session.refresh(subject)
    return subject


@pytest.fixture
def assistant():
    return FakeAssistant()


@pytest.fixture
def chat_service(assistant):
    return ChatService(assistant=assistant)


@pytest.fixture
def client(session, chat_service):
    app.dependency_overrides[get_db] = lambda: session
    app.dependency_overrides[get_current_user] = lambda: USER_ID
    app.dependency_overrides[get_chat_service] = lambda: chat_service
    yield TestClient(app)
    app.dependency_overrides.clear()
