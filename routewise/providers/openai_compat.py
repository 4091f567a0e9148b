"""
OpenAI-compatible provider.

Covers the OpenAI API and any server speaking the same protocol,
including Ollama's `/v1` endpoint.
"""

from typing import Iterator, Optional

from openai import OpenAI, APIError, APIStatusError, AuthenticationError as OpenAIAuthError
from openai import RateLimitError as OpenAIRateLimitError

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
from routewise.schemas import ProviderConfig, ProviderKind

DEFAULT_TIMEOUT_S = 60.0
PROBE_TIMEOUT_S = 5.0


def _usage_from(raw) -> Optional[TokenUsage]:
    if raw is None:
        return None
    cached = None
    details = getattr(raw, "prompt_tokens_details", None)
    if details is not None:
        cached = getattr(details, "cached_tokens", None)
    return TokenUsage(
        input_tokens=raw.prompt_tokens or 0,
        output_tokens=raw.completion_tokens or 0,
        cached_input_tokens=cached,
    )


class OpenAICompatProvider(Provider):
    """
    Provider backed by the `openai` SDK.

    Requires an API key for hosted endpoints. Local servers (Ollama) accept
    any placeholder key.
    """

    def __init__(self, config: ProviderConfig, api_key: Optional[str] = None):
        super().__init__(config.id, config.model_names)
        self.config = config
        self.api_key = api_key
        self._client: Optional[OpenAI] = None

    @property
    def client(self) -> OpenAI:
        if self._client is None:
            api_key = self.api_key
            if not api_key and self.config.kind == ProviderKind.OLLAMA:
                api_key = "ollama"
            self._client = OpenAI(
                api_key=api_key or "missing",
                base_url=self.config.base_url,
                timeout=self.config.timeout or DEFAULT_TIMEOUT_S,
                max_retries=self.config.max_retries if self.config.max_retries is not None else 2,
            )
        return self._client

    def is_available(self) -> bool:
        if not self.api_key and not self.config.is_local:
            return False
        try:
            self.client.with_options(timeout=PROBE_TIMEOUT_S, max_retries=0).models.list()
            return True
        except Exception as e:
            logger.info(f"Availability probe for {self.id()} failed: {e}")
            return False

    def _request_args(self, model: str, messages: list[ChatMessage], opts: ChatOptions) -> dict:
        args = {
            "model": model,
            "messages": [{"role": m.role, "content": m.content} for m in messages],
        }
        if opts.max_tokens is not None:
            args["max_tokens"] = opts.max_tokens
        if opts.temperature is not None:
            args["temperature"] = opts.temperature
        if opts.json:
            args["response_format"] = {"type": "json_object"}
        if opts.timeout is not None:
            args["timeout"] = opts.timeout
        return args

    def _translate_error(self, error: Exception, model: str) -> ProviderError:
        if isinstance(error, OpenAIRateLimitError):
            return RateLimitError(self.id(), model)
        if isinstance(error, OpenAIAuthError):
            return AuthenticationError(self.id())
        status = error.status_code if isinstance(error, APIStatusError) else None
        return ProviderError(str(error), self.id(), model, status)

    def _stream(
        self,
        model: str,
        messages: list[ChatMessage],
        opts: ChatOptions,
    ) -> Iterator[StreamEvent]:
        try:
            response = self.client.chat.completions.create(
                stream=True,
                stream_options={"include_usage": True},
                **self._request_args(model, messages, opts),
            )
        except APIError as e:
            yield StreamEvent.failed(str(self._translate_error(e, model)))
            return

        usage = None
        finish_reason = "stop"
        # Closing the generator closes the HTTP response
        with response:
            try:
                for chunk in response:
                    if chunk.usage is not None:
                        usage = _usage_from(chunk.usage)
                    for choice in chunk.choices:
                        if choice.delta and choice.delta.content:
                            yield StreamEvent.text_chunk(choice.delta.content)
                        if choice.finish_reason:
                            finish_reason = choice.finish_reason
            except APIError as e:
                yield StreamEvent.failed(str(self._translate_error(e, model)))
                return

        yield StreamEvent.done(usage=usage, finish_reason=finish_reason)

    def chat_complete(
        self,
        model: str,
        messages: list[ChatMessage],
        opts: Optional[ChatOptions] = None,
    ) -> ChatResult:
        if not self.supports(model):
            raise ProviderError(f"Model {model} not supported", self.id(), model)
        try:
            response = self.client.chat.completions.create(
                **self._request_args(model, messages, opts or ChatOptions())
            )
        except APIError as e:
            raise self._translate_error(e, model) from e

        choice = response.choices[0]
        return ChatResult(
            content=choice.message.content or "",
            usage=_usage_from(response.usage),
            finish_reason=choice.finish_reason or "stop",
        )
