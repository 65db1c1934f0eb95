import threading
import time
from types import SimpleNamespace

import httpx
import openai
import pytest

from examforge.services.assistant_client import (
    EMPTY_COMPLETION,
    AssistantClient,
    AssistantNotConfiguredError,
    AssistantTransportError,
    TurnCancelledError,
    build_user_content,
)

URL = "https://openrouter.ai/api/v1/chat/completions"


def _reply(content):
    return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=content))])


class _FakeCompletions:
    def __init__(self, outcomes):
        self.outcomes = list(outcomes)
        self.calls = []

    def create(self, **kwargs):
        self.calls.append(kwargs)
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


def _client(*outcomes):
    completions = _FakeCompletions(outcomes)
    fake = SimpleNamespace(chat=SimpleNamespace(completions=completions))
    return AssistantClient(api_key="test-key", model="test-model", client=fake), completions


def _connection_error():
    return openai.APIConnectionError(request=httpx.Request("POST", URL))


def _status_error(code):
    request = httpx.Request("POST", URL)
    return openai.APIStatusError(
        "upstream failure",
        response=httpx.Response(code, request=request),
        body=None,
    )


def test_request_shape():
    client, completions = _client(_reply("Sure."))
    history = [{"role": "user", "content": "hi"}, {"role": "assistant", "content": "hello"}]

    text = client.complete("system prompt", history, "next question", max_output_tokens=1000, temperature=0.7)

    assert text == "Sure."
    call = completions.calls[0]
    assert call["model"] == "test-model"
    assert call["max_tokens"] == 1000
    assert call["temperature"] == 0.7
    assert call["messages"] == [
        {"role": "system", "content": "system prompt"},
        {"role": "user", "content": "hi"},
        {"role": "assistant", "content": "hello"},
        {"role": "user", "content": "next question"},
    ]


def test_multimodal_user_content():
    content = build_user_content("What is this?", "data:image/png;base64,AAAA")

    assert content == [
        {"type": "text", "text": "What is this?"},
        {"type": "image_url", "image_url": {"url": "data:image/png;base64,AAAA"}},
    ]
    assert build_user_content("plain") == "plain"


def test_transport_error_is_retried_once():
    client, completions = _client(_connection_error(), _reply("recovered"))

    assert client.complete("s", [], "q") == "recovered"
    assert len(completions.calls) == 2


def test_transport_error_twice_raises():
    client, completions = _client(_connection_error(), _connection_error())

    with pytest.raises(AssistantTransportError):
        client.complete("s", [], "q")
    assert len(completions.calls) == 2


def test_status_error_is_not_retried():
    client, completions = _client(_status_error(429), _reply("never"))

    with pytest.raises(AssistantTransportError):
        client.complete("s", [], "q")
    assert len(completions.calls) == 1


def test_missing_key_sends_nothing():
    client = AssistantClient(api_key="")

    with pytest.raises(AssistantNotConfiguredError):
        client.complete("s", [], "q")


def test_empty_completion_gets_placeholder():
    client, _ = _client(_reply(None))

    assert client.complete("s", [], "q") == EMPTY_COMPLETION


def test_cancel_before_dispatch():
    client, completions = _client(_reply("unused"))
    cancel = threading.Event()
    cancel.set()

    with pytest.raises(TurnCancelledError):
        client.complete("s", [], "q", cancel=cancel)
    assert completions.calls == []


class _SlowCompletions:
    def __init__(self, delay):
        self.delay = delay
        self.calls = []

    def create(self, **kwargs):
        self.calls.append(kwargs)
        time.sleep(self.delay)
        return _reply("too late")


def test_cancel_interrupts_in_flight_call():
    completions = _SlowCompletions(delay=2)
    fake = SimpleNamespace(chat=SimpleNamespace(completions=completions))
    client = AssistantClient(api_key="test-key", model="test-model", client=fake)
    cancel = threading.Event()
    timer = threading.Timer(0.1, cancel.set)

    started = time.monotonic()
    timer.start()
    try:
        with pytest.raises(TurnCancelledError):
            client.complete("s", [], "q", cancel=cancel)
    finally:
        timer.cancel()
    elapsed = time.monotonic() - started

    assert len(completions.calls) == 1
    assert elapsed < 0.5
