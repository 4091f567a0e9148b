"""
Candidate expansion for Routewise.

Turns the winning rule's preference list into the ordered, deduplicated
candidate sequence the validator walks.
"""

import logging
import math
from dataclasses import dataclass, field
from typing import Optional

from routewise.pricing import estimate_cost
from routewise.schemas import (
    LOCAL_MODES,
    PRIVACY_SAFE_CAPS,
    Candidate,
    Mode,
    ModelConfig,
    ProfileConfig,
)
from routewise.scorer import RuleScore

logger = logging.getLogger("routewise.expander")

FALLBACK_SOURCE = "fallback"
DEFAULT_SOURCE = "default"


def parse_preference(token: str) -> Optional[tuple[str, str]]:
    """
    Split a "providerId:modelName" token.

    Only the first colon separates, so model tags such as "llama3:8b" survive.
    Returns None for malformed tokens.
    """
    provider_id, sep, model_name = token.partition(":")
    provider_id = provider_id.strip()
    model_name = model_name.strip()
    if not sep or not provider_id or not model_name:
        return None
    return provider_id, model_name


@dataclass
class Expansion:
    """Ordered candidates plus the notes explaining drops and reorders."""
    candidates: list[Candidate] = field(default_factory=list)
    reasoning: list[str] = field(default_factory=list)


class CandidateExpander:
    """
    Expands preferences into candidates.

    Steps, in order:
    1. Parse tokens; drop those naming a provider absent from the profile.
    2. Apply mode overrides. Local modes (and strict privacy) drop
       non-local providers; strict privacy also drops models without a
       privacy-safe capability tag. "cheap" sorts the primary list by
       estimated cost; "speed" and "quality" move "fast" / "reasoning"
       models to the front.
    3. Append the rule fallback, the profile fallback and (for a matched
       rule) the default preferences, deduplicated by (provider, model).
    """

    def __init__(self, profile: ProfileConfig):
        self.profile = profile

    def expand(
        self,
        scored: RuleScore,
        mode: Mode,
        strict_privacy: bool = False,
        prompt: str = "",
    ) -> Expansion:
        expansion = Expansion()

        primary = self._parse_all(scored.prefer, scored, expansion)
        primary = self._filter(primary, mode, strict_privacy, expansion)
        primary = self._reorder(primary, mode, prompt, expansion)

        chain = self._parse_all(scored.fallback, scored, expansion)
        chain += self._parse_all(self.profile.fallback, None, expansion, source=FALLBACK_SOURCE)
        if not scored.is_default:
            chain += self._parse_all(self.profile.default.prefer, None, expansion, source=DEFAULT_SOURCE)
        chain = self._filter(chain, mode, strict_privacy, expansion)

        seen: set[tuple[str, str]] = set()
        for candidate in primary + chain:
            if candidate.key in seen:
                continue
            seen.add(candidate.key)
            expansion.candidates.append(candidate)

        if not expansion.candidates:
            expansion.reasoning.append("No candidates left after expansion")

        return expansion

    # =========================================================================
    # Steps
    # =========================================================================

    def _parse_all(
        self,
        tokens: tuple[str, ...],
        scored: Optional[RuleScore],
        expansion: Expansion,
        source: Optional[str] = None,
    ) -> list[Candidate]:
        candidates = []
        for token in tokens:
            parsed = parse_preference(token)
            if parsed is None:
                expansion.reasoning.append(f"Dropped malformed preference '{token}'")
                continue

            provider_id, model_name = parsed
            if self.profile.provider(provider_id) is None:
                expansion.reasoning.append(
                    f"Dropped {token}: provider '{provider_id}' not in profile"
                )
                continue

            if scored is not None:
                candidates.append(Candidate(
                    provider_id=provider_id,
                    model_name=model_name,
                    score=scored.score,
                    source=scored.source,
                    rule=scored.rule,
                ))
            else:
                candidates.append(Candidate(
                    provider_id=provider_id,
                    model_name=model_name,
                    score=0.0,
                    source=source or DEFAULT_SOURCE,
                ))
        return candidates

    def _model_config(self, candidate: Candidate) -> Optional[ModelConfig]:
        provider = self.profile.provider(candidate.provider_id)
        return provider.model(candidate.model_name) if provider else None

    def _filter(
        self,
        candidates: list[Candidate],
        mode: Mode,
        strict_privacy: bool,
        expansion: Expansion,
    ) -> list[Candidate]:
        local_only = mode in LOCAL_MODES or strict_privacy
        privacy_caps = mode == Mode.PRIVACY_STRICT or strict_privacy
        if not local_only:
            return candidates

        kept = []
        for candidate in candidates:
            provider = self.profile.provider(candidate.provider_id)
            if provider is None or not provider.is_local:
                expansion.reasoning.append(
                    f"Filtered {candidate}: {mode.value} mode requires a local provider"
                )
                continue
            if privacy_caps:
                model = self._model_config(candidate)
                if model is None or not (model.caps & PRIVACY_SAFE_CAPS):
                    expansion.reasoning.append(
                        f"Filtered {candidate}: no privacy-safe capability tag"
                    )
                    continue
            kept.append(candidate)
        return kept

    def _reorder(
        self,
        candidates: list[Candidate],
        mode: Mode,
        prompt: str,
        expansion: Expansion,
    ) -> list[Candidate]:
        if len(candidates) < 2:
            return candidates

        if mode == Mode.CHEAP:
            def price(candidate: Candidate) -> float:
                model = self._model_config(candidate)
                if model is None:
                    return math.inf
                return estimate_cost(prompt, model, candidate.provider_id).total_cost

            ordered = sorted(candidates, key=price)
            expansion.reasoning.append("Cheap mode: ordered by estimated cost")
            return ordered

        tag = {Mode.SPEED: "fast", Mode.QUALITY: "reasoning"}.get(mode)
        if tag is None:
            return candidates

        def lacks_tag(candidate: Candidate) -> bool:
            model = self._model_config(candidate)
            return model is None or tag not in model.caps

        ordered = sorted(candidates, key=lacks_tag)
        expansion.reasoning.append(f"{mode.value.capitalize()} mode: '{tag}' models first")
        return ordered
