"""Assistant backend client (OpenRouter chat completions via the OpenAI SDK).

One non-streaming request per call with an explicit deadline. Only
transport-level failures (connection error, timeout) are retried, once.
HTTP error statuses are never retried.
"""
from typing import Any, Optional, Union
from concurrent.futures import ThreadPoolExecutor
import logging
import threading

from openai import APIConnectionError, APIStatusError, OpenAI, OpenAIError

from examforge.config import settings

logger = logging.getLogger(__name__)

EMPTY_COMPLETION = "I couldn't generate a response."

CANCEL_POLL_SECONDS = 0.05

UserTurn = Union[str, list[dict[str, Any]]]


class AssistantError(Exception):
    """Base class for assistant backend failures."""


class AssistantNotConfiguredError(AssistantError):
    """No API credential configured; no request was attempted."""


class AssistantTransportError(AssistantError):
    """Request failed, timed out or returned a non-success status."""


class TurnCancelledError(AssistantError):
    """Caller aborted the turn before a reply was accepted."""


def build_user_content(text: str, image_data_uri: Optional[str] = None) -> UserTurn:
    """
    Build the `user` message content.

    Plain string for text-only turns; an ordered list of typed parts
    (text first, then the image) when an image is attached.
    """
    if not image_data_uri:
        return text
    return [
        {"type": "text", "text": text},
        {"type": "image_url", "image_url": {"url": image_data_uri}},
    ]


class AssistantClient:
    """Chat-completion client for the tutor model."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        timeout: Optional[float] = None,
        client: Optional[OpenAI] = None,
        transport_retries: int = 1,
    ):
        """
        Initialize the assistant client.

        Args:
            api_key: OpenRouter key (defaults to settings.OPENROUTER_API_KEY)
            model: Model name (defaults to settings.OPENROUTER_MODEL)
            timeout: Per-request deadline in seconds
            client: Pre-built OpenAI client, mainly for tests
            transport_retries: Extra attempts on connection/timeout errors
        """
        self.api_key = api_key if api_key is not None else settings.OPENROUTER_API_KEY
        self.model = model or settings.OPENROUTER_MODEL
        self.timeout = timeout or settings.OPENROUTER_TIMEOUT
        self.transport_retries = transport_retries
        self._client = client

    @property
    def configured(self) -> bool:
        return bool(self.api_key) or self._client is not None

    def _new_client(self) -> OpenAI:
        # SDK-level retries are disabled; retry policy lives in complete()
        return OpenAI(
            api_key=self.api_key,
            base_url=settings.OPENROUTER_BASE_URL,
            timeout=self.timeout,
            max_retries=0,
            default_headers={
                "HTTP-Referer": settings.APP_URL,
                "X-Title": settings.APP_TITLE,
            },
        )

    def _dispatch(
        self,
        client: OpenAI,
        request: dict[str, Any],
        cancel: Optional[threading.Event],
    ) -> Any:
        """
        Run one completion request, abandoning it as soon as cancel is set.

        The SDK call runs on a helper thread so the caller can stop waiting;
        complete() then closes its per-call client, which aborts the
        in-flight HTTP request.
        """
        if cancel is None:
            return client.chat.completions.create(**request)

        executor = ThreadPoolExecutor(max_workers=1)
        try:
            future = executor.submit(client.chat.completions.create, **request)
            while not future.done():
                if cancel.wait(CANCEL_POLL_SECONDS):
                    future.cancel()
                    raise TurnCancelledError("Turn cancelled while waiting for reply")
            return future.result()
        finally:
            executor.shutdown(wait=False)

    def complete(
        self,
        system_instruction: str,
        history: list[dict[str, str]],
        user_turn: UserTurn,
        max_output_tokens: int = 1000,
        temperature: float = 0.7,
        cancel: Optional[threading.Event] = None,
    ) -> str:
        """
        Send one chat-completion request and return the reply text.

        Args:
            system_instruction: System prompt
            history: Prior turns, oldest first
            user_turn: New user content (string or typed parts)
            max_output_tokens: Output ceiling
            temperature: Sampling temperature
            cancel: Set by the caller to abort the turn, also mid-request

        Returns:
            Assistant reply text

        Raises:
            AssistantNotConfiguredError: No credential, nothing sent
            AssistantTransportError: Request failed or non-success status
            TurnCancelledError: cancel was set before a reply was accepted
        """
        if not self.configured:
            raise AssistantNotConfiguredError("OPENROUTER_API_KEY is not set")

        request = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": system_instruction},
                *history,
                {"role": "user", "content": user_turn},
            ],
            "max_tokens": max_output_tokens,
            "temperature": temperature,
            "timeout": self.timeout,
        }

        owned = self._client is None
        client = self._client or self._new_client()
        try:
            response = self._send_with_retry(client, request, cancel)
        finally:
            if owned:
                client.close()

        if cancel is not None and cancel.is_set():
            raise TurnCancelledError("Turn cancelled while waiting for reply")

        if not response.choices:
            return EMPTY_COMPLETION
        return response.choices[0].message.content or EMPTY_COMPLETION

    def _send_with_retry(
        self,
        client: OpenAI,
        request: dict[str, Any],
        cancel: Optional[threading.Event],
    ) -> Any:
        attempt = 0
        while True:
            if cancel is not None and cancel.is_set():
                raise TurnCancelledError("Turn cancelled before dispatch")
            try:
                return self._dispatch(client, request, cancel)
            except APIConnectionError as e:
                # Includes APITimeoutError
                if cancel is not None and cancel.is_set():
                    raise TurnCancelledError("Turn cancelled while waiting for reply") from e
                if attempt < self.transport_retries:
                    attempt += 1
                    logger.warning(
                        f"Assistant transport error, retry {attempt}/{self.transport_retries}: {str(e)}"
                    )
                    continue
                logger.error(f"Assistant transport error: {str(e)}")
                raise AssistantTransportError(str(e)) from e
            except APIStatusError as e:
                logger.error(f"Assistant returned status {e.status_code}: {str(e)}")
                raise AssistantTransportError(str(e)) from e
            except OpenAIError as e:
                logger.error(f"Assistant request failed: {str(e)}")
                raise AssistantTransportError(str(e)) from e
