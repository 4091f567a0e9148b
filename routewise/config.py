"""
Configuration loading and validation for Routewise.

Reads `router.config.yaml` files into the dataclasses in
`routewise.schemas`. Validation is strict: unknown keys, wrong types and
malformed provider references are rejected before any routing happens.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from routewise.schemas import (
    AllKeywords,
    AnyKeyword,
    BudgetConfig,
    CallTarget,
    Condition,
    DefaultRule,
    FileSizeBound,
    LanguageIn,
    Mode,
    ModeIn,
    ModelConfig,
    ModelPrice,
    PathGlob,
    PrivacyConfig,
    PrivacyRequired,
    ProfileConfig,
    ProviderConfig,
    ProviderKind,
    RoutingRule,
    RuleAction,
    WordCountRange,
)

logger = logging.getLogger("routewise.config")

CONFIG_ENV_VAR = "ROUTEWISE_CONFIG"
DEFAULT_CONFIG_FILE = "router.config.yaml"


class ConfigurationError(ValueError):
    """Malformed configuration file, profile or rule reference."""

    def __init__(self, message: str, path: Optional[str] = None):
        self.path = path
        super().__init__(message)


@dataclass
class RouterConfig:
    """A parsed configuration file: named profiles plus the active one."""
    version: int
    active_profile: str
    profiles: Dict[str, ProfileConfig] = field(default_factory=dict)

    @property
    def active(self) -> ProfileConfig:
        return self.profiles[self.active_profile]


# =============================================================================
# Loading
# =============================================================================

def resolve_config_path(path: Optional[str] = None) -> Path:
    """Explicit path, else $ROUTEWISE_CONFIG, else ./router.config.yaml."""
    return Path(path or os.getenv(CONFIG_ENV_VAR) or DEFAULT_CONFIG_FILE)


def load_config(path: Optional[str] = None) -> RouterConfig:
    """
    Load and validate a configuration file.

    Args:
        path: Path to a YAML configuration file. See `resolve_config_path`.

    Returns:
        Validated RouterConfig.

    Raises:
        ConfigurationError: If the file is missing, unparsable or invalid.
    """
    config_path = resolve_config_path(path)
    if not config_path.exists():
        raise ConfigurationError(f"Configuration file not found: {config_path}", str(config_path))

    with open(config_path, "r", encoding="utf-8") as f:
        try:
            raw_config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in config file {config_path}: {e}", str(config_path)) from e

    try:
        return parse_config(raw_config)
    except ConfigurationError as e:
        e.path = str(config_path)
        raise


def load_profile(path: Optional[str] = None, profile: Optional[str] = None) -> ProfileConfig:
    """
    Load one profile from a configuration file.

    Args:
        path: Configuration file path.
        profile: Profile name. Defaults to the file's `activeProfile`.
    """
    config = load_config(path)
    name = profile or config.active_profile
    if name not in config.profiles:
        raise ConfigurationError(
            f"Profile '{name}' not found. Available: {', '.join(sorted(config.profiles))}",
            str(resolve_config_path(path)),
        )
    return config.profiles[name]


def parse_config(raw_config: Any) -> RouterConfig:
    """Validate a raw configuration mapping and build a RouterConfig."""
    if not raw_config:
        raise ConfigurationError("Configuration file is empty")
    data = _mapping(raw_config, "configuration")
    _no_unknown_keys(data, {"version", "activeProfile", "profiles"}, "configuration")

    version = data.get("version")
    if not isinstance(version, int) or isinstance(version, bool) or version < 1:
        raise ConfigurationError("Configuration version must be a positive number")

    active = data.get("activeProfile")
    if not active or not isinstance(active, str):
        raise ConfigurationError("activeProfile must be a non-empty string")

    profiles_data = _mapping(data.get("profiles"), "profiles")
    if active not in profiles_data:
        raise ConfigurationError(f"Active profile '{active}' not found in profiles")

    profiles = {
        str(name): parse_profile(profile_data, str(name))
        for name, profile_data in profiles_data.items()
    }
    return RouterConfig(version=version, active_profile=active, profiles=profiles)


def parse_profile(raw: Any, name: str = "default") -> ProfileConfig:
    """Validate one raw profile mapping and build a ProfileConfig."""
    prefix = f"Profile '{name}'"
    data = _mapping(raw, prefix)
    _no_unknown_keys(data, {"mode", "budget", "privacy", "providers", "routing"}, prefix)

    mode = _enum(Mode, data.get("mode", Mode.AUTO.value), f"{prefix} mode")

    providers_data = data.get("providers")
    if not isinstance(providers_data, list) or not providers_data:
        raise ConfigurationError(f"{prefix} must have at least one provider")
    providers = [
        _parse_provider(p, f"{prefix} provider[{i}]")
        for i, p in enumerate(providers_data)
    ]

    routing = _mapping(data.get("routing"), f"{prefix} routing")
    _no_unknown_keys(routing, {"rules", "default", "fallback"}, f"{prefix} routing")

    rules_data = routing.get("rules", [])
    if not isinstance(rules_data, list):
        raise ConfigurationError(f"{prefix} routing rules must be a list")
    rules = [
        _parse_rule(r, f"{prefix} routing rule[{i}]")
        for i, r in enumerate(rules_data)
    ]

    default_data = _mapping(routing.get("default"), f"{prefix} routing default")
    _no_unknown_keys(default_data, {"prefer", "target"}, f"{prefix} routing default")
    default = DefaultRule(
        prefer=_preferences(default_data.get("prefer"), f"{prefix} routing default.prefer"),
        target=_enum(CallTarget, default_data.get("target", CallTarget.CHAT.value), f"{prefix} routing default.target"),
    )

    fallback = ()
    if routing.get("fallback") is not None:
        fallback = _preferences(routing["fallback"], f"{prefix} routing fallback", allow_empty=True)

    budget = _parse_budget(data["budget"], f"{prefix} budget") if data.get("budget") is not None else None
    privacy = _parse_privacy(data["privacy"], f"{prefix} privacy") if data.get("privacy") is not None else None

    profile = ProfileConfig(
        providers=providers,
        default=default,
        rules=rules,
        mode=mode,
        fallback=fallback,
        budget=budget,
        privacy=privacy,
        name=name,
    )
    validate_profile(profile)
    return profile


# =============================================================================
# Semantic validation
# =============================================================================

def validate_profile(profile: ProfileConfig) -> None:
    """
    Check an in-memory profile for malformed references.

    Preference tokens naming an unknown provider are only logged: the
    candidate expander drops them with a reasoning note.

    Raises:
        ConfigurationError: On duplicate ids, an empty default rule,
            malformed preference tokens or invalid budget values.
    """
    prefix = f"Profile '{profile.name}'"

    seen_providers = set()
    for provider in profile.providers:
        if provider.id in seen_providers:
            raise ConfigurationError(f"{prefix} has duplicate provider id '{provider.id}'")
        seen_providers.add(provider.id)

        names = provider.model_names
        if len(names) != len(set(names)):
            raise ConfigurationError(f"{prefix} provider '{provider.id}' lists a model twice")

    if not profile.default.prefer:
        raise ConfigurationError(f"{prefix} default rule must prefer at least one model")

    seen_rules = set()
    for rule in profile.rules:
        if not rule.id:
            raise ConfigurationError(f"{prefix} has a rule without an id")
        if rule.id in seen_rules:
            raise ConfigurationError(f"{prefix} has duplicate rule id '{rule.id}'")
        seen_rules.add(rule.id)
        if not rule.action.prefer:
            raise ConfigurationError(f"{prefix} rule '{rule.id}' must prefer at least one model")

    tokens = list(profile.default.prefer) + list(profile.fallback)
    for rule in profile.rules:
        tokens += list(rule.action.prefer) + list(rule.action.fallback)

    for token in tokens:
        provider_id, sep, model_name = token.partition(":")
        if not sep or not provider_id.strip() or not model_name.strip():
            raise ConfigurationError(
                f"{prefix} preference '{token}' must be in format 'providerId:modelName'"
            )
        if provider_id.strip() not in seen_providers:
            logger.warning(f"{prefix} preference '{token}' references unknown provider")

    budget = profile.budget
    if budget is not None:
        for label, value in (("daily", budget.daily_usd), ("monthly", budget.monthly_usd)):
            if value is not None and value < 0:
                raise ConfigurationError(f"{prefix} {label} budget must be non-negative")
        if not 0 <= budget.warning_threshold <= 100:
            raise ConfigurationError(f"{prefix} warningThreshold must be between 0 and 100")


# =============================================================================
# Section parsers
# =============================================================================

_RULE_IF_KEYS = {
    "anyKeyword",
    "allKeywords",
    "minWords",
    "maxWords",
    "filePathMatches",
    "minContextKB",
    "maxContextKB",
    "mode",
    "fileLangIn",
    "privacyStrict",
}


def _parse_provider(raw: Any, prefix: str) -> ProviderConfig:
    data = _mapping(raw, prefix)
    _no_unknown_keys(
        data,
        {"id", "kind", "baseUrl", "apiKeyRef", "local", "timeout", "maxRetries", "models"},
        prefix,
    )

    provider_id = data.get("id")
    if not provider_id or not isinstance(provider_id, str):
        raise ConfigurationError(f"{prefix} must have a non-empty id")

    base_url = data.get("baseUrl")
    if not base_url or not isinstance(base_url, str):
        raise ConfigurationError(f"{prefix} must have a non-empty baseUrl")

    models_data = data.get("models")
    if not isinstance(models_data, list) or not models_data:
        raise ConfigurationError(f"{prefix} must have at least one model")

    api_key_ref = data.get("apiKeyRef")
    if api_key_ref is not None and not isinstance(api_key_ref, str):
        raise ConfigurationError(f"{prefix} apiKeyRef must be a string")

    local = data.get("local")
    if local is not None and not isinstance(local, bool):
        raise ConfigurationError(f"{prefix} local must be a boolean")

    max_retries = data.get("maxRetries")
    if max_retries is not None:
        max_retries = int(_number(max_retries, f"{prefix} maxRetries"))

    return ProviderConfig(
        id=provider_id,
        kind=_enum(ProviderKind, data.get("kind"), f"{prefix} kind"),
        base_url=base_url,
        models=tuple(_parse_model(m, f"{prefix} model[{i}]") for i, m in enumerate(models_data)),
        api_key_ref=api_key_ref,
        local=local,
        timeout=_number(data["timeout"], f"{prefix} timeout", positive=True) if data.get("timeout") is not None else None,
        max_retries=max_retries,
    )


def _parse_model(raw: Any, prefix: str) -> ModelConfig:
    data = _mapping(raw, prefix)
    _no_unknown_keys(data, {"name", "context", "caps", "price"}, prefix)

    name = data.get("name")
    if not name or not isinstance(name, str):
        raise ConfigurationError(f"{prefix} must have a non-empty name")

    context = data.get("context")
    if context is not None:
        context = int(_number(context, f"{prefix} context", positive=True))

    price = None
    if data.get("price") is not None:
        price_data = _mapping(data["price"], f"{prefix} price")
        _no_unknown_keys(price_data, {"inputPerMTok", "outputPerMTok", "cachedInputPerMTok"}, f"{prefix} price")
        cached = price_data.get("cachedInputPerMTok")
        price = ModelPrice(
            input_per_mtok=_number(price_data.get("inputPerMTok"), f"{prefix} price inputPerMTok"),
            output_per_mtok=_number(price_data.get("outputPerMTok"), f"{prefix} price outputPerMTok"),
            cached_input_per_mtok=(
                _number(cached, f"{prefix} price cachedInputPerMTok") if cached is not None else None
            ),
        )

    return ModelConfig(
        name=name,
        caps=frozenset(_string_list(data.get("caps", []), f"{prefix} caps")),
        price=price,
        context=context,
    )


def _parse_rule(raw: Any, prefix: str) -> RoutingRule:
    data = _mapping(raw, prefix)
    _no_unknown_keys(data, {"id", "if", "then"}, prefix)

    rule_id = data.get("id")
    if not rule_id or not isinstance(rule_id, str):
        raise ConfigurationError(f"{prefix} must have a non-empty id")

    conditions_data = _mapping(data.get("if"), f"{prefix} 'if' condition")
    _no_unknown_keys(conditions_data, _RULE_IF_KEYS, f"{prefix} 'if'")
    conditions = _parse_conditions(conditions_data, prefix)

    then = _mapping(data.get("then"), f"{prefix} 'then' action")
    _no_unknown_keys(then, {"prefer", "target", "priority", "fallback"}, f"{prefix} 'then'")

    priority = then.get("priority")
    if priority is not None:
        priority = _number(priority, f"{prefix} then.priority", allow_negative=True)

    fallback = ()
    if then.get("fallback") is not None:
        fallback = _preferences(then["fallback"], f"{prefix} then.fallback", allow_empty=True)

    return RoutingRule(
        id=rule_id,
        conditions=conditions,
        action=RuleAction(
            prefer=_preferences(then.get("prefer"), f"{prefix} then.prefer"),
            target=_enum(CallTarget, then.get("target", CallTarget.CHAT.value), f"{prefix} then.target"),
            priority=priority,
            fallback=fallback,
        ),
    )


def _parse_conditions(data: Dict[str, Any], prefix: str) -> tuple[Condition, ...]:
    """Map `if` keys onto condition variants, in a fixed order."""
    conditions: list[Condition] = []

    if "anyKeyword" in data:
        conditions.append(AnyKeyword(tuple(_string_list(data["anyKeyword"], f"{prefix} anyKeyword"))))
    if "allKeywords" in data:
        conditions.append(AllKeywords(tuple(_string_list(data["allKeywords"], f"{prefix} allKeywords"))))
    if "minWords" in data or "maxWords" in data:
        conditions.append(WordCountRange(
            min_words=_optional_int(data.get("minWords"), f"{prefix} minWords"),
            max_words=_optional_int(data.get("maxWords"), f"{prefix} maxWords"),
        ))
    if "filePathMatches" in data:
        conditions.append(PathGlob(tuple(_string_list(data["filePathMatches"], f"{prefix} filePathMatches"))))
    if "minContextKB" in data or "maxContextKB" in data:
        conditions.append(FileSizeBound(
            min_kb=_optional_number(data.get("minContextKB"), f"{prefix} minContextKB"),
            max_kb=_optional_number(data.get("maxContextKB"), f"{prefix} maxContextKB"),
        ))
    if "mode" in data:
        raw_modes = data["mode"]
        if isinstance(raw_modes, str):
            raw_modes = [raw_modes]
        modes = tuple(_enum(Mode, m, f"{prefix} mode") for m in _string_list(raw_modes, f"{prefix} mode"))
        conditions.append(ModeIn(modes))
    if "fileLangIn" in data:
        conditions.append(LanguageIn(tuple(_string_list(data["fileLangIn"], f"{prefix} fileLangIn"))))
    if "privacyStrict" in data:
        if not isinstance(data["privacyStrict"], bool):
            raise ConfigurationError(f"{prefix} privacyStrict must be a boolean")
        conditions.append(PrivacyRequired(data["privacyStrict"]))

    return tuple(conditions)


def _parse_budget(raw: Any, prefix: str) -> BudgetConfig:
    data = _mapping(raw, prefix)
    _no_unknown_keys(data, {"dailyUSD", "monthlyUSD", "hardStop", "warningThreshold"}, prefix)

    hard_stop = data.get("hardStop", True)
    if not isinstance(hard_stop, bool):
        raise ConfigurationError(f"{prefix} hardStop must be a boolean")

    return BudgetConfig(
        daily_usd=_optional_number(data.get("dailyUSD"), f"{prefix} dailyUSD"),
        monthly_usd=_optional_number(data.get("monthlyUSD"), f"{prefix} monthlyUSD"),
        warning_threshold=_number(data.get("warningThreshold", 80), f"{prefix} warningThreshold"),
        hard_stop=hard_stop,
    )


def _parse_privacy(raw: Any, prefix: str) -> PrivacyConfig:
    data = _mapping(raw, prefix)
    _no_unknown_keys(data, {"redactPaths", "stripFileContentOverKB"}, prefix)
    return PrivacyConfig(
        redact_paths=tuple(_string_list(data.get("redactPaths", []), f"{prefix} redactPaths")),
        strip_file_content_over_kb=_optional_number(
            data.get("stripFileContentOverKB"), f"{prefix} stripFileContentOverKB"
        ),
    )


# =============================================================================
# Primitive validators
# =============================================================================

def _mapping(value: Any, prefix: str) -> Dict[str, Any]:
    if not isinstance(value, dict):
        raise ConfigurationError(f"{prefix} must be a mapping")
    return value


def _no_unknown_keys(data: Dict[str, Any], allowed: set, prefix: str) -> None:
    unknown = set(data.keys()) - allowed
    if unknown:
        raise ConfigurationError(f"Unknown keys in {prefix}: {sorted(unknown)}")


def _string_list(value: Any, prefix: str) -> list[str]:
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise ConfigurationError(f"{prefix} must be a list of strings")
    return value


def _preferences(value: Any, prefix: str, allow_empty: bool = False) -> tuple[str, ...]:
    tokens = _string_list(value if value is not None else [], prefix)
    if not tokens and not allow_empty:
        raise ConfigurationError(f"{prefix} must be a non-empty list")
    for token in tokens:
        if ":" not in token:
            raise ConfigurationError(f"{prefix} items must be in format 'providerId:modelName'")
    return tuple(tokens)


def _number(value: Any, prefix: str, positive: bool = False, allow_negative: bool = False) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ConfigurationError(f"{prefix} must be a number")
    if positive and value <= 0:
        raise ConfigurationError(f"{prefix} must be a positive number")
    if not allow_negative and value < 0:
        raise ConfigurationError(f"{prefix} must be a non-negative number")
    return float(value)


def _optional_number(value: Any, prefix: str) -> Optional[float]:
    return None if value is None else _number(value, prefix)


def _optional_int(value: Any, prefix: str) -> Optional[int]:
    return None if value is None else int(_number(value, prefix))


def _enum(enum_cls, value: Any, prefix: str):
    try:
        return enum_cls(value)
    except ValueError:
        valid = ", ".join(member.value for member in enum_cls)
        raise ConfigurationError(f"{prefix} must be one of: {valid}") from None


# =============================================================================
# Starter configuration
# =============================================================================

def default_config() -> Dict[str, Any]:
    """A starter configuration with a cloud and a local provider."""
    return {
        "version": 1,
        "activeProfile": "default",
        "profiles": {
            "default": {
                "mode": "auto",
                "budget": {
                    "dailyUSD": 5.0,
                    "monthlyUSD": 50.0,
                    "hardStop": True,
                    "warningThreshold": 80,
                },
                "privacy": {
                    "redactPaths": ["**/secrets/**", "**/.env*"],
                    "stripFileContentOverKB": 256,
                },
                "providers": [
                    {
                        "id": "openai",
                        "kind": "openai-compat",
                        "baseUrl": "https://api.openai.com/v1",
                        "apiKeyRef": "OPENAI_API_KEY",
                        "models": [
                            {
                                "name": "gpt-4o-mini",
                                "context": 128000,
                                "caps": ["cheap", "fast", "json"],
                                "price": {
                                    "inputPerMTok": 0.15,
                                    "outputPerMTok": 0.6,
                                    "cachedInputPerMTok": 0.075,
                                },
                            },
                            {
                                "name": "gpt-4o",
                                "context": 128000,
                                "caps": ["reasoning", "coder", "long"],
                                "price": {
                                    "inputPerMTok": 2.5,
                                    "outputPerMTok": 10.0,
                                    "cachedInputPerMTok": 1.25,
                                },
                            },
                        ],
                    },
                    {
                        "id": "ollama",
                        "kind": "ollama",
                        "baseUrl": "http://localhost:11434/v1",
                        "models": [
                            {
                                "name": "llama3.1:8b",
                                "context": 8192,
                                "caps": ["local", "private", "fast"],
                            },
                        ],
                    },
                ],
                "routing": {
                    "rules": [
                        {
                            "id": "code-review",
                            "if": {
                                "anyKeyword": ["refactor", "review", "debug", "bug"],
                                "filePathMatches": ["**/*.py", "**/*.ts"],
                            },
                            "then": {
                                "prefer": ["openai:gpt-4o"],
                                "target": "chat",
                                "fallback": ["openai:gpt-4o-mini"],
                            },
                        },
                        {
                            "id": "private",
                            "if": {"privacyStrict": True},
                            "then": {
                                "prefer": ["ollama:llama3.1:8b"],
                                "target": "chat",
                                "priority": 5,
                            },
                        },
                        {
                            "id": "short-question",
                            "if": {"maxWords": 40, "mode": ["auto", "cheap", "speed"]},
                            "then": {
                                "prefer": ["openai:gpt-4o-mini", "ollama:llama3.1:8b"],
                                "target": "chat",
                            },
                        },
                    ],
                    "default": {
                        "prefer": ["openai:gpt-4o-mini"],
                        "target": "chat",
                    },
                    "fallback": ["ollama:llama3.1:8b"],
                },
            },
        },
    }


def write_default_config(path: str = DEFAULT_CONFIG_FILE, overwrite: bool = False) -> Path:
    """
    Write the starter configuration as YAML.

    Raises:
        FileExistsError: If the file exists and `overwrite` is False.
    """
    config_path = Path(path)
    if config_path.exists() and not overwrite:
        raise FileExistsError(f"Configuration file already exists: {config_path}")

    config_path.parent.mkdir(parents=True, exist_ok=True)
    with open(config_path, "w", encoding="utf-8") as f:
        yaml.safe_dump(default_config(), f, sort_keys=False)
    logger.info(f"Wrote starter configuration to {config_path}")
    return config_path
