"""
Rule scorer for Routewise.

Evaluates routing rules against a request context. Pure and synchronous:
the same (rule, context) pair always yields the same score and reasoning.
"""

from dataclasses import dataclass, field
from typing import Optional, Sequence

from routewise.matcher import keyword_matches, matches_pattern, word_count
from routewise.schemas import (
    AllKeywords,
    AnyKeyword,
    CallTarget,
    Condition,
    DefaultRule,
    FileSizeBound,
    LanguageIn,
    ModeIn,
    PathGlob,
    PrivacyRequired,
    RoutingContext,
    RoutingRule,
    WordCountRange,
)

# Score weights per condition kind
ALL_KEYWORDS_WEIGHT = 3
PRIVACY_WEIGHT = 3


@dataclass
class RuleScore:
    """A rule's score for one context. `rule` is None for the default rule."""
    rule: Optional[RoutingRule]
    score: float
    reasoning: list[str] = field(default_factory=list)
    default: Optional[DefaultRule] = None

    @property
    def is_default(self) -> bool:
        return self.rule is None

    @property
    def source(self) -> str:
        return self.rule.id if self.rule else "default"

    @property
    def prefer(self) -> tuple[str, ...]:
        if self.rule:
            return self.rule.action.prefer
        return self.default.prefer if self.default else ()

    @property
    def fallback(self) -> tuple[str, ...]:
        return self.rule.action.fallback if self.rule else ()

    @property
    def target(self) -> CallTarget:
        if self.rule:
            return self.rule.action.target
        return self.default.target if self.default else CallTarget.CHAT


class RuleScorer:
    """
    Scores routing rules against a context.

    Weights:
    - mode match: +1
    - each matched any-keyword: +1
    - all keywords present: +3 per keyword
    - word count within range: +1
    - file size within bounds: +1
    - file path matches a glob: +1
    - language match: +1
    - privacy requirement met: +3
    - explicit priority: added only to a rule that already matched
    """

    def __init__(self):
        self._handlers = {
            AnyKeyword: self._any_keyword,
            AllKeywords: self._all_keywords,
            WordCountRange: self._word_count,
            PathGlob: self._path_glob,
            FileSizeBound: self._file_size,
            ModeIn: self._mode,
            LanguageIn: self._language,
            PrivacyRequired: self._privacy,
        }

    def score_rule(self, rule: RoutingRule, context: RoutingContext) -> RuleScore:
        """Score a single rule. A score of 0 means the rule does not match."""
        score = 0.0
        reasoning = []

        for condition in rule.conditions:
            points, reason = self._score_condition(condition, context)
            if points > 0:
                score += points
                reasoning.append(reason)

        if score > 0 and rule.action.priority:
            score += rule.action.priority
            reasoning.append(f"Priority {rule.action.priority:+g}")

        return RuleScore(rule=rule, score=score, reasoning=reasoning)

    def _score_condition(self, condition: Condition, context: RoutingContext) -> tuple[float, str]:
        handler = self._handlers.get(type(condition))
        if handler is None:
            raise TypeError(f"Unknown rule condition: {type(condition).__name__}")
        return handler(condition, context)

    def rank(self, rules: Sequence[RoutingRule], context: RoutingContext) -> list[RuleScore]:
        """
        Score all rules and keep the matching ones, best first.

        Equal scores keep declaration order.
        """
        scored = [self.score_rule(rule, context) for rule in rules]
        matched = [s for s in scored if s.score > 0]
        return sorted(matched, key=lambda s: s.score, reverse=True)

    def select(
        self,
        rules: Sequence[RoutingRule],
        default: DefaultRule,
        context: RoutingContext,
    ) -> RuleScore:
        """The winning rule, or the default rule with score 0."""
        ranked = self.rank(rules, context)
        if ranked:
            winner = ranked[0]
            winner.reasoning.insert(0, f"Matched rule: {winner.rule.id} (score: {winner.score:g})")
            return winner
        return RuleScore(rule=None, score=0.0, reasoning=["default"], default=default)

    # =========================================================================
    # Condition handlers: (condition, context) -> (points, reason)
    # =========================================================================

    def _any_keyword(self, condition: AnyKeyword, context: RoutingContext) -> tuple[float, str]:
        hits = [
            k for k in condition.keywords
            if keyword_matches(k, context.keywords, context.prompt)
        ]
        return len(hits), f"Keywords matched: {', '.join(hits)}"

    def _all_keywords(self, condition: AllKeywords, context: RoutingContext) -> tuple[float, str]:
        if not condition.keywords:
            return 0, ""
        if all(keyword_matches(k, context.keywords, context.prompt) for k in condition.keywords):
            return (
                len(condition.keywords) * ALL_KEYWORDS_WEIGHT,
                f"All keywords present: {', '.join(condition.keywords)}",
            )
        return 0, ""

    def _word_count(self, condition: WordCountRange, context: RoutingContext) -> tuple[float, str]:
        if condition.min_words is None and condition.max_words is None:
            return 0, ""
        count = word_count(context.prompt)
        if condition.min_words is not None and count < condition.min_words:
            return 0, ""
        if condition.max_words is not None and count > condition.max_words:
            return 0, ""
        return 1, f"Word count {count} within range"

    def _path_glob(self, condition: PathGlob, context: RoutingContext) -> tuple[float, str]:
        if not context.file_path:
            return 0, ""
        for pattern in condition.patterns:
            if matches_pattern(context.file_path, pattern):
                return 1, f"File path matches {pattern}"
        return 0, ""

    def _file_size(self, condition: FileSizeBound, context: RoutingContext) -> tuple[float, str]:
        size = context.file_size_kb
        if size is None or (condition.min_kb is None and condition.max_kb is None):
            return 0, ""
        if condition.min_kb is not None and size < condition.min_kb:
            return 0, ""
        if condition.max_kb is not None and size > condition.max_kb:
            return 0, ""
        return 1, f"File size {size:g}KB within bounds"

    def _mode(self, condition: ModeIn, context: RoutingContext) -> tuple[float, str]:
        if context.mode is not None and context.mode in condition.modes:
            return 1, f"Mode {context.mode.value} matched"
        return 0, ""

    def _language(self, condition: LanguageIn, context: RoutingContext) -> tuple[float, str]:
        if context.lang and context.lang in condition.languages:
            return 1, f"Language {context.lang} matched"
        return 0, ""

    def _privacy(self, condition: PrivacyRequired, context: RoutingContext) -> tuple[float, str]:
        if condition.privacy_strict == context.privacy_strict:
            return PRIVACY_WEIGHT, f"Privacy requirement met (strict={context.privacy_strict})"
        return 0, ""
