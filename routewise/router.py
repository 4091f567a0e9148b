"""
Router for Routewise.

Makes the final routing decision: scores rules, expands the winner into
ordered candidates and returns the first candidate that passes every check.
"""

import logging
import threading
import uuid
from dataclasses import dataclass, replace
from typing import Mapping, Optional

from routewise.config import validate_profile
from routewise.expander import DEFAULT_SOURCE, FALLBACK_SOURCE, CandidateExpander
from routewise.ledger import BudgetLedger
from routewise.matcher import extract_keywords, matches_pattern, strip_large_content
from routewise.metrics import RoutingMetrics
from routewise.pricing import estimate_cost
from routewise.providers.base import Provider
from routewise.schemas import (
    Alternative,
    Candidate,
    CandidateCheck,
    Mode,
    ModelConfig,
    ProfileConfig,
    RoutingContext,
    RoutingResult,
    SimulationResult,
)
from routewise.scorer import RuleScore, RuleScorer

logger = logging.getLogger("routewise.router")

REDACTED = "[REDACTED]"


class NoAvailableRouteError(Exception):
    """Every candidate was exhausted without one passing validation."""

    def __init__(self, message: str, reasoning: list[str], attempts: list[CandidateCheck]):
        self.reasoning = reasoning
        self.attempts = attempts
        super().__init__(message)


@dataclass
class RouteOptions:
    """
    Per-call routing options.

    Attributes:
        max_fallbacks: Maximum number of candidates attempted. None means
            every candidate.
        require_available: Probe provider availability.
        budget_check: Consult the budget ledger when the profile has a budget.
        availability_timeout: Seconds before an availability probe counts
            as unavailable.
    """
    max_fallbacks: Optional[int] = None
    require_available: bool = True
    budget_check: bool = True
    availability_timeout: float = 5.0

    def __post_init__(self):
        if self.max_fallbacks is not None and self.max_fallbacks < 1:
            raise ValueError(f"max_fallbacks must be >= 1, got {self.max_fallbacks}")
        if self.availability_timeout <= 0:
            raise ValueError("availability_timeout must be positive")


@dataclass
class ModelEntry:
    """A configured model with a registered provider adapter."""
    provider_id: str
    model_name: str
    config: ModelConfig
    provider: Provider


class _Probe(threading.Thread):
    """One availability check, run off the routing thread."""

    def __init__(self, provider: Provider):
        super().__init__(name=f"routewise-probe-{provider.id()}", daemon=True)
        self.provider = provider
        self.available = False
        self.error: Optional[Exception] = None

    def run(self) -> None:
        try:
            self.available = bool(self.provider.is_available())
        except Exception as e:
            self.error = e


class Router:
    """
    Routes requests to the best available provider model.

    The routing algorithm:
    1. Derive the effective context (keywords, mode, privacy transforms)
    2. Score rules; the highest score wins, ties go to the earlier rule
    3. Expand the winner into ordered candidates with fallbacks
    4. Validate candidates in order: model configured, provider available,
       budget headroom
    5. Return the first survivor, or raise NoAvailableRouteError
    """

    def __init__(
        self,
        profile: ProfileConfig,
        providers: Mapping[str, Provider],
        ledger: Optional[BudgetLedger] = None,
        metrics: Optional[RoutingMetrics] = None,
    ):
        """
        Initialize the router.

        Args:
            profile: Active profile.
            providers: Runtime adapters keyed by provider id.
            ledger: Budget ledger. Defaults to a transient in-memory ledger.
            metrics: Optional metrics collector.

        Raises:
            ConfigurationError: If the profile is malformed.
        """
        validate_profile(profile)

        self.profile = profile
        self.providers = dict(providers)
        self.ledger = ledger or BudgetLedger()
        self.metrics = metrics
        self.scorer = RuleScorer()
        self.expander = CandidateExpander(profile)
        self._probes: dict[str, _Probe] = {}
        self._probes_lock = threading.Lock()

        unknown = sorted(set(self.providers) - {p.id for p in profile.providers})
        if unknown:
            logger.warning(f"Adapters registered for providers not in profile: {unknown}")

    def get_profile(self) -> ProfileConfig:
        return self.profile

    def close(self) -> None:
        """
        Forget in-flight availability probes.

        Probe threads are daemons; a hung one ends with its provider call
        or with the interpreter.
        """
        with self._probes_lock:
            self._probes.clear()

    # =========================================================================
    # Routing
    # =========================================================================

    def route(
        self,
        context: RoutingContext,
        options: Optional[RouteOptions] = None,
    ) -> RoutingResult:
        """
        Route a request.

        Args:
            context: Request to route.
            options: Routing options.

        Returns:
            RoutingResult for the first candidate passing all checks.

        Raises:
            NoAvailableRouteError: If every candidate was exhausted.
        """
        options = options or RouteOptions()
        request_id = uuid.uuid4().hex[:12]

        effective, strict, reasoning = self._effective_context(context)
        scored = self.scorer.select(self.profile.rules, self.profile.default, effective)
        expansion = self.expander.expand(scored, effective.mode, strict, effective.prompt)
        reasoning += scored.reasoning + expansion.reasoning

        availability: dict[str, bool] = {}
        attempts: list[CandidateCheck] = []

        for candidate in self._capped(expansion.candidates, options):
            check = self._validate(candidate, effective, options, availability)
            attempts.append(check)

            if check.passed:
                result = self._build_result(candidate, scored, reasoning, check)
                logger.debug(f"Routed request {request_id} to {candidate}")
                if self.metrics:
                    self.metrics.record_route(
                        request_id=request_id,
                        provider_id=result.provider_id,
                        model_name=result.model_name,
                        rule_id=result.rule.id if result.rule else None,
                        score=result.score,
                        estimated_cost=result.estimated_cost,
                        attempts=len(attempts),
                    )
                return result

            reasoning.append(f"Skipped {candidate}: {check.skip_reason}")
            if self.metrics:
                self.metrics.record_skip(request_id, str(candidate), check.skip_reason or "")

        if options.max_fallbacks is not None and len(expansion.candidates) > options.max_fallbacks:
            reasoning.append(f"Stopped after {options.max_fallbacks} candidates (max_fallbacks)")

        if self.metrics:
            self.metrics.record_no_route(request_id, reasoning)

        raise NoAvailableRouteError(
            f"No available route after {len(attempts)} candidates",
            reasoning=reasoning,
            attempts=attempts,
        )

    def simulate_route(
        self,
        context: RoutingContext,
        options: Optional[RouteOptions] = None,
    ) -> SimulationResult:
        """
        Dry-run routing. Never raises NoAvailableRouteError.

        Every candidate is validated and listed as an alternative with its
        score, availability and skip reason. `result` is the candidate
        `route` would pick, or None.
        """
        options = options or RouteOptions()

        effective, strict, reasoning = self._effective_context(context)
        scored = self.scorer.select(self.profile.rules, self.profile.default, effective)
        expansion = self.expander.expand(scored, effective.mode, strict, effective.prompt)
        reasoning += scored.reasoning + expansion.reasoning

        availability: dict[str, bool] = {}
        alternatives: list[Alternative] = []
        result: Optional[RoutingResult] = None

        for index, candidate in enumerate(expansion.candidates):
            check = self._validate(candidate, effective, options, availability, probe_always=True)
            within_cap = options.max_fallbacks is None or index < options.max_fallbacks

            skip_reason = check.skip_reason
            if check.passed and not within_cap:
                skip_reason = "beyond max_fallbacks"

            alternatives.append(Alternative(
                provider_id=candidate.provider_id,
                model_name=candidate.model_name,
                score=candidate.score,
                available=check.available,
                reasoning=check.reasoning,
                source=candidate.source,
                skip_reason=None if (check.passed and within_cap) else skip_reason,
            ))

            if result is not None or not within_cap:
                continue
            if check.passed:
                result = self._build_result(candidate, scored, reasoning, check)
            else:
                reasoning.append(f"Skipped {candidate}: {check.skip_reason}")

        return SimulationResult(result=result, alternatives=alternatives)

    # =========================================================================
    # Model queries
    # =========================================================================

    def get_available_models(self) -> list[ModelEntry]:
        """Configured models whose provider has a registered adapter, in profile order."""
        entries = []
        for provider_config in self.profile.providers:
            provider = self.providers.get(provider_config.id)
            if provider is None:
                continue
            for model in provider_config.models:
                entries.append(ModelEntry(
                    provider_id=provider_config.id,
                    model_name=model.name,
                    config=model,
                    provider=provider,
                ))
        return entries

    def get_models_by_cap(self, cap: str) -> list[ModelEntry]:
        """Available models carrying a capability tag."""
        return [entry for entry in self.get_available_models() if entry.config.has_cap(cap)]

    # =========================================================================
    # Pipeline stages
    # =========================================================================

    def _effective_context(self, context: RoutingContext) -> tuple[RoutingContext, bool, list[str]]:
        """
        Derive the context rules are scored against.

        Returns:
            (effective context, strict privacy requested, notes)
        """
        notes: list[str] = []
        mode = context.mode or self.profile.mode

        keywords = context.keywords
        if keywords is None:
            keywords = tuple(extract_keywords(context.prompt))

        file_path = context.file_path
        prompt = context.prompt
        privacy = self.profile.privacy
        if privacy is not None:
            if file_path and any(matches_pattern(file_path, p) for p in privacy.redact_paths):
                file_path = REDACTED
                notes.append("File path redacted by privacy settings")

            limit = privacy.strip_file_content_over_kb
            if limit and context.file_size_kb and context.file_size_kb > limit:
                prompt = strip_large_content(prompt)
                notes.append(f"Large content stripped (file over {limit:g}KB)")

        effective = replace(
            context,
            prompt=prompt,
            file_path=file_path,
            mode=mode,
            keywords=keywords,
            privacy_strict=context.privacy_strict or mode in (Mode.PRIVACY_STRICT, Mode.LOCAL_ONLY),
        )
        return effective, context.privacy_strict, notes

    def _capped(self, candidates: list[Candidate], options: RouteOptions) -> list[Candidate]:
        if options.max_fallbacks is None:
            return candidates
        return candidates[:options.max_fallbacks]

    def _is_available(
        self,
        provider: Provider,
        timeout: float,
        cache: dict[str, bool],
    ) -> bool:
        """
        Probe a provider once per routing call, bounded by `timeout`.

        Each probe runs on its own thread, so a hung provider never delays
        the probe of another. A provider whose previous probe is still
        running is waited on instead of being probed again.
        """
        provider_id = provider.id()
        if provider_id in cache:
            return cache[provider_id]

        with self._probes_lock:
            probe = self._probes.get(provider_id)
            if probe is None or not probe.is_alive():
                probe = _Probe(provider)
                self._probes[provider_id] = probe
                probe.start()

        probe.join(timeout)
        if probe.is_alive():
            logger.warning(f"Availability probe for {provider_id} timed out after {timeout:g}s")
            available = False
        elif probe.error is not None:
            logger.warning(f"Availability probe for {provider_id} failed: {probe.error}")
            available = False
        else:
            available = probe.available

        cache[provider_id] = available
        return available

    def _validate(
        self,
        candidate: Candidate,
        context: RoutingContext,
        options: RouteOptions,
        availability: dict[str, bool],
        probe_always: bool = False,
    ) -> CandidateCheck:
        """
        Run the validator steps for one candidate.

        Stops at the first failed step. With `probe_always`, availability is
        still probed after an earlier failure so diagnostics can report it.
        """
        check = CandidateCheck(candidate=candidate, passed=False, available=False)

        provider = self.providers.get(candidate.provider_id)
        provider_config = self.profile.provider(candidate.provider_id)
        model = provider_config.model(candidate.model_name) if provider_config else None

        if provider is not None and (probe_always or options.require_available):
            check.available = self._is_available(provider, options.availability_timeout, availability)
        elif provider is not None:
            check.available = True

        if provider is None or model is None or not provider.supports(candidate.model_name):
            check.skip_reason = "model not configured"
            return check

        if options.require_available and not check.available:
            check.skip_reason = "provider unavailable"
            return check

        estimate = estimate_cost(context.prompt, model, candidate.provider_id)
        check.estimated_cost = estimate.total_cost

        budget = self.profile.budget
        if options.budget_check and budget is not None:
            budget_check = self.ledger.check_budget(estimate.total_cost, budget)
            if not budget_check.allowed:
                if budget.hard_stop:
                    check.skip_reason = budget_check.reason
                    return check
                check.reasoning.append(f"Budget warning: {budget_check.reason} (hard stop disabled)")

            for warning in self.ledger.get_budget_warnings(budget):
                check.reasoning.append(f"Budget warning: {warning}")

        check.passed = True
        return check

    def _build_result(
        self,
        candidate: Candidate,
        scored: RuleScore,
        reasoning: list[str],
        check: CandidateCheck,
    ) -> RoutingResult:
        notes = list(reasoning)
        if not scored.is_default and candidate.source == DEFAULT_SOURCE:
            notes.append("Used default fallback")
        elif candidate.source == FALLBACK_SOURCE:
            notes.append(f"Used profile fallback {candidate}")
        notes.append(f"Selected {candidate}")
        notes.extend(check.reasoning)

        if candidate.rule is not None:
            target = candidate.rule.action.target
        else:
            target = self.profile.default.target

        provider_config = self.profile.provider(candidate.provider_id)
        return RoutingResult(
            provider_id=candidate.provider_id,
            model_name=candidate.model_name,
            provider=self.providers[candidate.provider_id],
            model=provider_config.model(candidate.model_name),
            score=candidate.score,
            rule=candidate.rule,
            reasoning=notes,
            target=target,
            estimated_cost=check.estimated_cost,
        )
