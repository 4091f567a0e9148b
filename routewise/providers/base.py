"""
Provider capability surface.

The router only ever calls `id()`, `supports()`, `is_available()`, `chat()`
and `chat_complete()`. Wire formats live in the concrete adapters.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Iterator, Optional

logger = logging.getLogger("routewise.providers")


class EventType(str, Enum):
    """Stream event tags."""
    TEXT = "text"
    DONE = "done"
    ERROR = "error"


@dataclass(frozen=True)
class ChatMessage:
    role: str  # "system", "user" or "assistant"
    content: str


@dataclass
class ChatOptions:
    """Per-call options."""
    max_tokens: Optional[int] = None
    temperature: Optional[float] = None
    json: bool = False
    timeout: Optional[float] = None  # seconds


@dataclass(frozen=True)
class TokenUsage:
    """Token counters reported by a provider after a call."""
    input_tokens: int
    output_tokens: int
    cached_input_tokens: Optional[int] = None


@dataclass(frozen=True)
class StreamEvent:
    """
    One message on a chat stream.

    TEXT events carry incremental content. A stream ends with exactly one
    DONE (optionally with usage) or ERROR event.
    """
    type: EventType
    text: str = ""
    usage: Optional[TokenUsage] = None
    finish_reason: Optional[str] = None
    error: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.type in (EventType.DONE, EventType.ERROR)

    @classmethod
    def text_chunk(cls, text: str) -> StreamEvent:
        return cls(type=EventType.TEXT, text=text)

    @classmethod
    def done(
        cls,
        usage: Optional[TokenUsage] = None,
        finish_reason: str = "stop",
    ) -> StreamEvent:
        return cls(type=EventType.DONE, usage=usage, finish_reason=finish_reason)

    @classmethod
    def failed(cls, error: str) -> StreamEvent:
        return cls(type=EventType.ERROR, error=error)


@dataclass
class ChatResult:
    """Result of a non-streaming call."""
    content: str
    usage: Optional[TokenUsage] = None
    finish_reason: str = "stop"


class ProviderError(Exception):
    """Raised for provider-level failures."""
    def __init__(
        self,
        message: str,
        provider: str,
        model: Optional[str] = None,
        status_code: Optional[int] = None,
    ):
        self.provider = provider
        self.model = model
        self.status_code = status_code
        super().__init__(message)


class RateLimitError(ProviderError):
    def __init__(self, provider: str, model: Optional[str] = None, retry_after: Optional[float] = None):
        self.retry_after = retry_after
        super().__init__(f"Rate limit exceeded for {provider}:{model}", provider, model, 429)


class AuthenticationError(ProviderError):
    def __init__(self, provider: str):
        super().__init__(f"Authentication failed for {provider}", provider, None, 401)


class ChatStream:
    """
    Ordered chat events with a guaranteed terminal message.

    Wraps a provider's event generator. Consumers iterate until a DONE or
    ERROR event; anything after the first terminal event is dropped. If the
    source ends without a terminal event a DONE is emitted, and if it raises
    an ERROR is emitted. `close()` cancels the stream and closes the source
    generator, which releases the underlying connection.
    """

    def __init__(self, source: Iterator[StreamEvent], provider_id: str = "", model: str = ""):
        self._source = source
        self.provider_id = provider_id
        self.model = model
        self._finished = False
        self._closed = False

    def __iter__(self) -> Iterator[StreamEvent]:
        try:
            while not self._finished and not self._closed:
                try:
                    event = next(self._source)
                except StopIteration:
                    self._finished = True
                    yield StreamEvent.done()
                    return
                except Exception as e:
                    self._finished = True
                    logger.warning(
                        f"Stream from {self.provider_id}:{self.model} failed: {e}"
                    )
                    yield StreamEvent.failed(str(e))
                    return

                if event.is_terminal:
                    self._finished = True
                yield event
        finally:
            self.close()

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        """Cancel the stream and close the underlying source."""
        if self._closed:
            return
        self._closed = True
        close = getattr(self._source, "close", None)
        if callable(close):
            close()

    def __enter__(self) -> ChatStream:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False


class Provider(ABC):
    """
    Abstract base class for model providers.

    Subclasses implement `_stream()`; `chat_complete()` is derived from it
    unless a provider has a cheaper non-streaming call.
    """

    def __init__(self, provider_id: str, models: list[str]):
        self._id = provider_id
        self._models = list(models)

    def id(self) -> str:
        return self._id

    def supports(self, model: str) -> bool:
        return model in self._models

    @abstractmethod
    def is_available(self) -> bool:
        """Probe whether the provider can serve requests right now."""
        pass

    @abstractmethod
    def _stream(
        self,
        model: str,
        messages: list[ChatMessage],
        opts: ChatOptions,
    ) -> Iterator[StreamEvent]:
        """Yield raw stream events for a chat call."""
        pass

    def chat(
        self,
        model: str,
        messages: list[ChatMessage],
        opts: Optional[ChatOptions] = None,
    ) -> ChatStream:
        """Stream a chat completion."""
        if not self.supports(model):
            raise ProviderError(f"Model {model} not supported", self.id(), model)
        return ChatStream(self._stream(model, messages, opts or ChatOptions()), self.id(), model)

    def chat_complete(
        self,
        model: str,
        messages: list[ChatMessage],
        opts: Optional[ChatOptions] = None,
    ) -> ChatResult:
        """Non-streaming chat completion, assembled from the stream."""
        content = []
        usage = None
        finish_reason = "stop"

        with self.chat(model, messages, opts) as stream:
            for event in stream:
                if event.type == EventType.TEXT:
                    content.append(event.text)
                elif event.type == EventType.DONE:
                    usage = event.usage
                    finish_reason = event.finish_reason or "stop"
                elif event.type == EventType.ERROR:
                    raise ProviderError(
                        event.error or "Chat completion failed", self.id(), model
                    )

        return ChatResult(content="".join(content), usage=usage, finish_reason=finish_reason)
