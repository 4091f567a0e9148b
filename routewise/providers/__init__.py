"""Provider adapters and the factory that builds them from a profile."""

import os
from typing import Optional, Protocol

from routewise.providers.base import (
    AuthenticationError,
    ChatMessage,
    ChatOptions,
    ChatResult,
    ChatStream,
    EventType,
    Provider,
    ProviderError,
    RateLimitError,
    StreamEvent,
    TokenUsage,
)
from routewise.providers.anthropic import AnthropicProvider
from routewise.providers.mock import MockProvider
from routewise.providers.openai_compat import OpenAICompatProvider
from routewise.schemas import ProfileConfig, ProviderKind


class CredentialProvider(Protocol):
    """Resolves an `apiKeyRef` to a secret."""

    def get(self, ref: str) -> Optional[str]:
        ...


class EnvCredentials:
    """Reads credentials from environment variables."""

    def __init__(self, environ: Optional[dict] = None):
        self._environ = environ if environ is not None else os.environ

    def get(self, ref: str) -> Optional[str]:
        return self._environ.get(ref)


def build_providers(
    profile: ProfileConfig,
    credentials: Optional[CredentialProvider] = None,
) -> dict[str, Provider]:
    """
    Build one adapter per configured provider, keyed by provider id.

    Credentials are injected; the routing engine itself never reads them.
    """
    credentials = credentials or EnvCredentials()
    providers: dict[str, Provider] = {}
    for config in profile.providers:
        api_key = credentials.get(config.api_key_ref) if config.api_key_ref else None
        if config.kind == ProviderKind.ANTHROPIC:
            providers[config.id] = AnthropicProvider(config, api_key=api_key)
        else:
            providers[config.id] = OpenAICompatProvider(config, api_key=api_key)
    return providers


__all__ = [
    "AnthropicProvider",
    "AuthenticationError",
    "ChatMessage",
    "ChatOptions",
    "ChatResult",
    "ChatStream",
    "CredentialProvider",
    "EnvCredentials",
    "EventType",
    "MockProvider",
    "OpenAICompatProvider",
    "Provider",
    "ProviderError",
    "RateLimitError",
    "StreamEvent",
    "TokenUsage",
    "build_providers",
]
