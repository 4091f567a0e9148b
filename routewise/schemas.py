"""
Data schemas for Routewise.

Profile configuration, routing rules, routing context and routing results.
"""

from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Mapping, Optional, Union


class Mode(str, Enum):
    """Routing policies that bias candidate ordering and filtering."""
    AUTO = "auto"
    SPEED = "speed"
    QUALITY = "quality"
    CHEAP = "cheap"
    LOCAL_ONLY = "local-only"
    OFFLINE = "offline"
    PRIVACY_STRICT = "privacy-strict"


class ProviderKind(str, Enum):
    """Provider adapter families."""
    OPENAI_COMPAT = "openai-compat"
    OLLAMA = "ollama"
    ANTHROPIC = "anthropic"
    CUSTOM = "custom"


class CallTarget(str, Enum):
    """Which provider call a rule is meant for."""
    CHAT = "chat"
    COMPLETION = "completion"


# Modes that only allow providers running on the local machine
LOCAL_MODES = frozenset({Mode.LOCAL_ONLY, Mode.OFFLINE, Mode.PRIVACY_STRICT})

# Capability tags that mark a model as safe for privacy-strict routing
PRIVACY_SAFE_CAPS = frozenset({"local", "private", "privacy"})


@dataclass(frozen=True)
class RoutingContext:
    """
    A single request to be routed.

    Immutable once constructed; the router derives an effective copy
    with `dataclasses.replace` instead of mutating it.
    """
    prompt: str
    lang: Optional[str] = None
    file_path: Optional[str] = None
    file_size_kb: Optional[float] = None
    mode: Optional[Mode] = None
    privacy_strict: bool = False
    keywords: Optional[tuple[str, ...]] = None
    metadata: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if self.mode is not None and not isinstance(self.mode, Mode):
            object.__setattr__(self, "mode", Mode(self.mode))
        if self.keywords is not None and not isinstance(self.keywords, tuple):
            object.__setattr__(self, "keywords", tuple(self.keywords))
        if not isinstance(self.metadata, MappingProxyType):
            object.__setattr__(self, "metadata", MappingProxyType(dict(self.metadata)))


@dataclass(frozen=True)
class ModelPrice:
    """Per-million-token pricing in USD."""
    input_per_mtok: float
    output_per_mtok: float
    cached_input_per_mtok: Optional[float] = None


@dataclass(frozen=True)
class ModelConfig:
    """A model exposed by a provider."""
    name: str
    caps: frozenset[str] = frozenset()
    price: Optional[ModelPrice] = None
    context: Optional[int] = None

    def __post_init__(self):
        if not isinstance(self.caps, frozenset):
            object.__setattr__(self, "caps", frozenset(self.caps))

    def has_cap(self, cap: str) -> bool:
        return cap in self.caps


@dataclass(frozen=True)
class ProviderConfig:
    """
    A configured provider.

    One ProviderConfig maps to exactly one runtime adapter, keyed by `id`.
    """
    id: str
    kind: ProviderKind
    base_url: str
    models: tuple[ModelConfig, ...] = ()
    api_key_ref: Optional[str] = None
    local: Optional[bool] = None  # None: derive from kind
    timeout: Optional[float] = None
    max_retries: Optional[int] = None

    def __post_init__(self):
        if not isinstance(self.kind, ProviderKind):
            object.__setattr__(self, "kind", ProviderKind(self.kind))
        if not isinstance(self.models, tuple):
            object.__setattr__(self, "models", tuple(self.models))

    @property
    def is_local(self) -> bool:
        if self.local is not None:
            return self.local
        return self.kind == ProviderKind.OLLAMA

    @property
    def model_names(self) -> list[str]:
        return [m.name for m in self.models]

    def model(self, name: str) -> Optional[ModelConfig]:
        for model in self.models:
            if model.name == name:
                return model
        return None


# =============================================================================
# Rule conditions
# =============================================================================

@dataclass(frozen=True)
class AnyKeyword:
    """Matches when at least one keyword appears in the request."""
    keywords: tuple[str, ...]


@dataclass(frozen=True)
class AllKeywords:
    """Matches only when every keyword appears in the request."""
    keywords: tuple[str, ...]


@dataclass(frozen=True)
class WordCountRange:
    """Prompt word count within [min_words, max_words]."""
    min_words: Optional[int] = None
    max_words: Optional[int] = None


@dataclass(frozen=True)
class PathGlob:
    """File path matches one of the glob patterns."""
    patterns: tuple[str, ...]


@dataclass(frozen=True)
class FileSizeBound:
    """File size (KB) within [min_kb, max_kb]."""
    min_kb: Optional[float] = None
    max_kb: Optional[float] = None


@dataclass(frozen=True)
class ModeIn:
    """Effective routing mode is one of `modes`."""
    modes: tuple[Mode, ...]


@dataclass(frozen=True)
class LanguageIn:
    """Request language id is one of `languages`."""
    languages: tuple[str, ...]


@dataclass(frozen=True)
class PrivacyRequired:
    """Request privacy flag equals `privacy_strict`."""
    privacy_strict: bool


Condition = Union[
    AnyKeyword,
    AllKeywords,
    WordCountRange,
    PathGlob,
    FileSizeBound,
    ModeIn,
    LanguageIn,
    PrivacyRequired,
]


@dataclass(frozen=True)
class RuleAction:
    """The `then` part of a rule."""
    prefer: tuple[str, ...]
    target: CallTarget = CallTarget.CHAT
    priority: Optional[float] = None
    fallback: tuple[str, ...] = ()


@dataclass(frozen=True)
class RoutingRule:
    """A declarative condition -> preference mapping."""
    id: str
    conditions: tuple[Condition, ...]
    action: RuleAction

    @property
    def prefer(self) -> tuple[str, ...]:
        return self.action.prefer


@dataclass(frozen=True)
class DefaultRule:
    """Preferences used when no rule matches."""
    prefer: tuple[str, ...]
    target: CallTarget = CallTarget.CHAT


@dataclass(frozen=True)
class BudgetConfig:
    """Spending ceilings for a profile."""
    daily_usd: Optional[float] = None
    monthly_usd: Optional[float] = None
    warning_threshold: float = 80.0  # Percentage (0-100)
    hard_stop: bool = True  # If False, a blocked check warns but still allows.


@dataclass(frozen=True)
class PrivacyConfig:
    """Request redaction applied before rule scoring."""
    redact_paths: tuple[str, ...] = ()
    strip_file_content_over_kb: Optional[float] = None


@dataclass
class ProfileConfig:
    """
    The active configuration bundle.

    Holds providers, ordered rules, the mandatory default rule, an optional
    profile-level fallback chain, budget, privacy and mode.
    """
    providers: list[ProviderConfig]
    default: DefaultRule
    rules: list[RoutingRule] = field(default_factory=list)
    mode: Mode = Mode.AUTO
    fallback: tuple[str, ...] = ()
    budget: Optional[BudgetConfig] = None
    privacy: Optional[PrivacyConfig] = None
    name: str = "default"

    def provider(self, provider_id: str) -> Optional[ProviderConfig]:
        for provider in self.providers:
            if provider.id == provider_id:
                return provider
        return None


# =============================================================================
# Routing results
# =============================================================================

@dataclass(frozen=True)
class Candidate:
    """A concrete (provider id, model name) pair considered for a request."""
    provider_id: str
    model_name: str
    score: float = 0.0
    source: str = "default"  # rule id, "fallback" or "default"
    rule: Optional[RoutingRule] = None

    @property
    def key(self) -> tuple[str, str]:
        return (self.provider_id, self.model_name)

    def __str__(self) -> str:
        return f"{self.provider_id}:{self.model_name}"


@dataclass
class RoutingResult:
    """
    The routing decision.

    `reasoning` is an ordered audit trail from the scorer, expander and
    validator stages.
    """
    provider_id: str
    model_name: str
    provider: Any
    model: ModelConfig
    score: float
    rule: Optional[RoutingRule] = None
    reasoning: list[str] = field(default_factory=list)
    target: CallTarget = CallTarget.CHAT
    estimated_cost: Optional[float] = None


@dataclass
class CandidateCheck:
    """Outcome of validating one candidate."""
    candidate: Candidate
    passed: bool
    available: bool
    reasoning: list[str] = field(default_factory=list)
    skip_reason: Optional[str] = None
    estimated_cost: Optional[float] = None


@dataclass
class Alternative:
    """One row of a simulated routing diagnostic."""
    provider_id: str
    model_name: str
    score: float
    available: bool
    reasoning: list[str] = field(default_factory=list)
    source: str = "default"
    skip_reason: Optional[str] = None


@dataclass
class SimulationResult:
    """Dry-run output: the chosen result (if any) and every candidate."""
    result: Optional[RoutingResult]
    alternatives: list[Alternative] = field(default_factory=list)
