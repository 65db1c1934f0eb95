import jwt
from sqlmodel import select

from examforge.config import settings
from examforge.core.deps import get_current_user
from examforge.main import app
from examforge.models.conversation import Conversation, Message
from examforge.services.chat_service import IDENTITY_RESPONSE, FALLBACK_RESPONSE
from examforge.services.assistant_client import AssistantTransportError
from tests.conftest import USER_ID


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}


def test_chat_requires_text_or_file(client, session, assistant):
    response = client.post("/api/ai/chat", json={"message": ""})

    assert response.status_code == 400
    assert session.exec(select(Conversation)).all() == []
    assert assistant.calls == []


def test_chat_creates_conversation_and_threads_follow_up(client, session):
    first = client.post("/api/ai/chat", json={"message": "Explain OOP"}).json()

    assert first["response"] == "Here is an explanation."
    assert first["saved"] is True
    conversation_id = first["conversation_id"]

    second = client.post(
        "/api/ai/chat",
        json={"message": "Give an example", "conversation_id": conversation_id},
    ).json()

    assert second["conversation_id"] == conversation_id
    messages = client.get(f"/api/ai/conversations/{conversation_id}").json()["messages"]
    assert [m["role"] for m in messages] == ["user", "assistant", "user", "assistant"]
    assert messages[0]["content"] == "Explain OOP"


def test_chat_canned_response(client, assistant):
    body = client.post("/api/ai/chat", json={"message": "who built you?"}).json()

    assert body["response"] == IDENTITY_RESPONSE
    assert assistant.calls == []


def test_chat_backend_failure_returns_fallback(client, session, assistant):
    assistant.error = AssistantTransportError("HTTP 502")

    body = client.post("/api/ai/chat", json={"message": "Explain OOP"}).json()

    assert body["response"] == FALLBACK_RESPONSE
    roles = session.exec(
        select(Message.role).where(Message.conversation_id == body["conversation_id"])
    ).all()
    assert roles == ["user"]


def test_chat_unknown_conversation_is_404(client):
    response = client.post("/api/ai/chat", json={"message": "hi", "conversation_id": 999})

    assert response.status_code == 404


def test_chat_image_upload(client, assistant):
    payload = {
        "message": "",
        "file": {"name": "diagram.png", "type": "image/png", "data": "data:image/png;base64,AAAA"},
    }

    body = client.post("/api/ai/chat", json=payload).json()

    messages = client.get(f"/api/ai/conversations/{body['conversation_id']}").json()["messages"]
    assert messages[0]["content"] == "[Attached Image: diagram.png]\n"
    assert assistant.calls[0]["user_turn"][1]["type"] == "image_url"


def test_general_and_subject_listings_are_separate(client, subject):
    client.post("/api/ai/chat", json={"message": "general one"})
    client.post("/api/ai/chat", json={"message": "subject one", "subject_id": subject.id})

    general = client.get("/api/ai/conversations").json()
    scoped = client.get(f"/api/ai/subjects/{subject.id}/conversations").json()

    assert [c["title"] for c in general] == ["general one"]
    assert [c["title"] for c in scoped] == ["subject one"]
    assert set(general[0]) == {"id", "title", "preview", "created_at"}


def test_delete_conversation(client, session):
    body = client.post("/api/ai/chat", json={"message": "temporary"}).json()
    conversation_id = body["conversation_id"]

    response = client.delete(f"/api/ai/conversations/{conversation_id}")

    assert response.json() == {"success": True}
    assert session.get(Conversation, conversation_id) is None
    assert client.get(f"/api/ai/conversations/{conversation_id}").status_code == 404


def test_cannot_touch_another_users_conversation(client, session):
    foreign = Conversation(user_id="someone-else", title="theirs")
    session.add(foreign)
    session.commit()
    session.refresh(foreign)

    assert client.get(f"/api/ai/conversations/{foreign.id}").status_code == 404
    assert client.delete(f"/api/ai/conversations/{foreign.id}").status_code == 404
    assert session.get(Conversation, foreign.id) is not None


def test_subject_conversation_create_and_append(client, subject):
    created = client.post(
        f"/api/ai/subjects/{subject.id}/conversations",
        json={"title": "Revision", "first_message": "Start here"},
    ).json()
    base = f"/api/ai/subjects/{subject.id}/conversations/{created['id']}"

    client.post(f"{base}/messages", json={"role": "user", "content": "What is an AVL tree and why balance it?"})
    client.post(f"{base}/messages", json={"role": "assistant", "content": "A self-balancing BST."})

    messages = client.get(base).json()["messages"]
    assert [m["role"] for m in messages] == ["user", "assistant"]
    listed = client.get(f"/api/ai/subjects/{subject.id}/conversations").json()[0]
    assert listed["title"] == "What is an AVL tree and why ba..."
    assert listed["preview"] == "What is an AVL tree and why balance it?"


def test_append_rejects_bad_role(client, subject):
    created = client.post(f"/api/ai/subjects/{subject.id}/conversations", json={}).json()

    response = client.post(
        f"/api/ai/subjects/{subject.id}/conversations/{created['id']}/messages",
        json={"role": "system", "content": "x"},
    )

    assert response.status_code == 400


def test_subject_route_rejects_general_conversation(client, subject):
    body = client.post("/api/ai/chat", json={"message": "general"}).json()

    response = client.get(f"/api/ai/subjects/{subject.id}/conversations/{body['conversation_id']}")

    assert response.status_code == 404


def test_ask_requires_fields(client):
    assert client.post("/api/ai/ask", json={"question": "x"}).status_code == 400


def test_ask(client, subject):
    body = client.post("/api/ai/ask", json={"subject_id": subject.id, "question": "Explain stacks"}).json()

    assert body["answer"] == "Here is an explanation."
    assert body["sources"] == []
    assert body["confidence"] == 0.5


def test_bearer_token_is_required(client):
    app.dependency_overrides.pop(get_current_user, None)

    assert client.get("/api/ai/conversations").status_code == 401
    assert client.get(
        "/api/ai/conversations",
        headers={"Authorization": "Bearer not-a-jwt"},
    ).status_code == 401


def test_valid_token_resolves_principal(client, monkeypatch):
    monkeypatch.setattr(settings, "JWT_SECRET", "test-secret-that-is-long-enough-for-hs256")
    app.dependency_overrides.pop(get_current_user, None)
    token = jwt.encode({"sub": USER_ID}, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)

    response = client.get("/api/ai/conversations", headers={"Authorization": f"Bearer {token}"})

    assert response.status_code == 200


def test_general_routes_reject_subject_conversation(client, session, subject):
    created = client.post(f"/api/ai/subjects/{subject.id}/conversations", json={}).json()

    assert client.get(f"/api/ai/conversations/{created['id']}").status_code == 404
    assert client.delete(f"/api/ai/conversations/{created['id']}").status_code == 404
    assert session.get(Conversation, created["id"]) is not None
