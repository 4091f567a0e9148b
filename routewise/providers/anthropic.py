"""
Anthropic provider.

Uses the `anthropic` SDK, imported on first use so the package stays
optional (install the `anthropic` extra).
"""

from typing import Iterator, Optional

from routewise.providers.base import (
    AuthenticationError,
    ChatMessage,
    ChatOptions,
    ChatResult,
    Provider,
    ProviderError,
    RateLimitError,
    StreamEvent,
    TokenUsage,
    logger,
)
from routewise.schemas import ProviderConfig

DEFAULT_TIMEOUT_S = 60.0
DEFAULT_MAX_TOKENS = 1024
PROBE_TIMEOUT_S = 5.0

_FINISH_REASONS = {
    "end_turn": "stop",
    "stop_sequence": "stop",
    "max_tokens": "length",
    "tool_use": "tool_calls",
}


def _sdk():
    try:
        import anthropic
    except ImportError:
        raise ImportError("anthropic package required. Install with: pip install anthropic")
    return anthropic


def _usage_from(raw) -> Optional[TokenUsage]:
    if raw is None:
        return None
    cached = getattr(raw, "cache_read_input_tokens", None)
    return TokenUsage(
        input_tokens=(raw.input_tokens or 0) + (cached or 0),
        output_tokens=raw.output_tokens or 0,
        cached_input_tokens=cached,
    )


class AnthropicProvider(Provider):
    """
    Anthropic Messages API provider.

    System messages are sent through the `system` parameter; the rest go
    in `messages`.
    """

    def __init__(self, config: ProviderConfig, api_key: Optional[str] = None):
        super().__init__(config.id, config.model_names)
        self.config = config
        self.api_key = api_key
        self._client = None

    @property
    def client(self):
        if self._client is None:
            self._client = _sdk().Anthropic(
                api_key=self.api_key,
                base_url=self.config.base_url,
                timeout=self.config.timeout or DEFAULT_TIMEOUT_S,
                max_retries=self.config.max_retries if self.config.max_retries is not None else 2,
            )
        return self._client

    def is_available(self) -> bool:
        if not self.api_key:
            return False
        try:
            self.client.with_options(timeout=PROBE_TIMEOUT_S, max_retries=0).models.list(limit=1)
            return True
        except Exception as e:
            logger.info(f"Availability probe for {self.id()} failed: {e}")
            return False

    def _request_args(self, model: str, messages: list[ChatMessage], opts: ChatOptions) -> dict:
        system = "\n\n".join(m.content for m in messages if m.role == "system")
        args = {
            "model": model,
            "max_tokens": opts.max_tokens or DEFAULT_MAX_TOKENS,
            "messages": [
                {"role": m.role, "content": m.content}
                for m in messages
                if m.role != "system"
            ],
        }
        if system:
            args["system"] = system
        if opts.temperature is not None:
            args["temperature"] = opts.temperature
        if opts.timeout is not None:
            args["timeout"] = opts.timeout
        return args

    def _translate_error(self, error: Exception, model: str) -> ProviderError:
        sdk = _sdk()
        if isinstance(error, sdk.RateLimitError):
            return RateLimitError(self.id(), model)
        if isinstance(error, sdk.AuthenticationError):
            return AuthenticationError(self.id())
        status = error.status_code if isinstance(error, sdk.APIStatusError) else None
        return ProviderError(str(error), self.id(), model, status)

    def _stream(
        self,
        model: str,
        messages: list[ChatMessage],
        opts: ChatOptions,
    ) -> Iterator[StreamEvent]:
        sdk = _sdk()
        try:
            # Leaving the context manager closes the HTTP response
            with self.client.messages.stream(**self._request_args(model, messages, opts)) as stream:
                for text in stream.text_stream:
                    yield StreamEvent.text_chunk(text)
                final = stream.get_final_message()
        except sdk.APIError as e:
            yield StreamEvent.failed(str(self._translate_error(e, model)))
            return

        yield StreamEvent.done(
            usage=_usage_from(final.usage),
            finish_reason=_FINISH_REASONS.get(final.stop_reason, "stop"),
        )

    def chat_complete(
        self,
        model: str,
        messages: list[ChatMessage],
        opts: Optional[ChatOptions] = None,
    ) -> ChatResult:
        if not self.supports(model):
            raise ProviderError(f"Model {model} not supported", self.id(), model)
        sdk = _sdk()
        try:
            response = self.client.messages.create(
                **self._request_args(model, messages, opts or ChatOptions())
            )
        except sdk.APIError as e:
            raise self._translate_error(e, model) from e

        content = "".join(
            block.text for block in response.content if getattr(block, "type", "") == "text"
        )
        return ChatResult(
            content=content,
            usage=_usage_from(response.usage),
            finish_reason=_FINISH_REASONS.get(response.stop_reason, "stop"),
        )
