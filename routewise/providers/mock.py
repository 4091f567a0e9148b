"""
Mock provider for testing and dry runs.

Simulates availability, replies and usage without any network I/O.
"""

import time
from typing import Iterator, Optional

from routewise.providers.base import (
    ChatMessage,
    ChatOptions,
    Provider,
    StreamEvent,
    TokenUsage,
)


class MockProvider(Provider):
    """
    In-process provider with configurable behavior.

    Args:
        provider_id: Provider identifier.
        models: Model names this provider serves.
        available: Value returned by `is_available()`.
        reply: Text streamed back, split into word chunks.
        usage: Usage reported on the terminal event. If None, usage is
            estimated from message and reply lengths (~4 chars per token).
        fail_with: If set, the stream emits this error after the first chunk.
        probe_delay_s: Sleep before answering an availability probe.
        probe_error: If set, `is_available()` raises it.
    """

    def __init__(
        self,
        provider_id: str,
        models: list[str],
        available: bool = True,
        reply: str = "ok",
        usage: Optional[TokenUsage] = None,
        fail_with: Optional[str] = None,
        probe_delay_s: float = 0.0,
        probe_error: Optional[Exception] = None,
    ):
        super().__init__(provider_id, models)
        self.available = available
        self.reply = reply
        self.usage = usage
        self.fail_with = fail_with
        self.probe_delay_s = probe_delay_s
        self.probe_error = probe_error
        self.probe_count = 0
        self.calls: list[tuple[str, list[ChatMessage]]] = []

    def is_available(self) -> bool:
        self.probe_count += 1
        if self.probe_delay_s:
            time.sleep(self.probe_delay_s)
        if self.probe_error is not None:
            raise self.probe_error
        return self.available

    def _stream(
        self,
        model: str,
        messages: list[ChatMessage],
        opts: ChatOptions,
    ) -> Iterator[StreamEvent]:
        self.calls.append((model, list(messages)))

        chunks = self.reply.split(" ")
        for index, chunk in enumerate(chunks):
            yield StreamEvent.text_chunk(chunk if index == 0 else " " + chunk)
            if self.fail_with is not None:
                yield StreamEvent.failed(self.fail_with)
                return

        usage = self.usage
        if usage is None:
            prompt_chars = sum(len(m.content) for m in messages)
            usage = TokenUsage(
                input_tokens=max(1, prompt_chars // 4),
                output_tokens=max(1, len(self.reply) // 4),
            )
        yield StreamEvent.done(usage=usage)
