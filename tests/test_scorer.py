"""Tests for rule scoring."""

import pytest

from routewise.schemas import (
    AllKeywords,
    AnyKeyword,
    DefaultRule,
    FileSizeBound,
    LanguageIn,
    Mode,
    ModeIn,
    PathGlob,
    PrivacyRequired,
    RoutingContext,
    RoutingRule,
    RuleAction,
    WordCountRange,
)
from routewise.scorer import RuleScorer


def make_rule(rule_id, *conditions, priority=None, prefer=("p1:m1",)):
    return RoutingRule(
        id=rule_id,
        conditions=tuple(conditions),
        action=RuleAction(prefer=tuple(prefer), priority=priority),
    )


class TestConditions:
    """Test per-condition scoring weights."""

    def setup_method(self):
        self.scorer = RuleScorer()

    def test_any_keyword_counts_each_hit(self):
        """Each matched keyword adds one point."""
        rule = make_rule("r", AnyKeyword(("test", "bug", "deploy")))
        result = self.scorer.score_rule(rule, RoutingContext(prompt="fix the bug in this test"))

        assert result.score == 2
        assert result.reasoning == ["Keywords matched: test, bug"]

    def test_all_keywords_requires_every_keyword(self):
        """All-keywords scores three per keyword, or nothing."""
        rule = make_rule("r", AllKeywords(("refactor", "python")))

        hit = self.scorer.score_rule(rule, RoutingContext(prompt="refactor this python module"))
        miss = self.scorer.score_rule(rule, RoutingContext(prompt="refactor this module"))

        assert hit.score == 6
        assert miss.score == 0

    def test_word_count_range(self):
        rule = make_rule("r", WordCountRange(max_words=3))

        assert self.scorer.score_rule(rule, RoutingContext(prompt="what is rust")).score == 1
        assert self.scorer.score_rule(rule, RoutingContext(prompt="what is rust anyway")).score == 0

    def test_word_count_min(self):
        rule = make_rule("r", WordCountRange(min_words=3))
        assert self.scorer.score_rule(rule, RoutingContext(prompt="two words")).score == 0

    def test_path_glob(self):
        rule = make_rule("r", PathGlob(("**/*.rs", "**/*.go")))

        hit = self.scorer.score_rule(rule, RoutingContext(prompt="x", file_path="src/main.go"))
        no_path = self.scorer.score_rule(rule, RoutingContext(prompt="x"))

        assert hit.score == 1
        assert hit.reasoning == ["File path matches **/*.go"]
        assert no_path.score == 0

    def test_file_size_bounds(self):
        rule = make_rule("r", FileSizeBound(min_kb=10, max_kb=100))

        assert self.scorer.score_rule(rule, RoutingContext(prompt="x", file_size_kb=50)).score == 1
        assert self.scorer.score_rule(rule, RoutingContext(prompt="x", file_size_kb=500)).score == 0
        assert self.scorer.score_rule(rule, RoutingContext(prompt="x")).score == 0

    def test_mode(self):
        rule = make_rule("r", ModeIn((Mode.CHEAP, Mode.SPEED)))

        assert self.scorer.score_rule(rule, RoutingContext(prompt="x", mode=Mode.CHEAP)).score == 1
        assert self.scorer.score_rule(rule, RoutingContext(prompt="x", mode=Mode.QUALITY)).score == 0
        assert self.scorer.score_rule(rule, RoutingContext(prompt="x")).score == 0

    def test_language(self):
        rule = make_rule("r", LanguageIn(("python", "rust")))
        assert self.scorer.score_rule(rule, RoutingContext(prompt="x", lang="rust")).score == 1
        assert self.scorer.score_rule(rule, RoutingContext(prompt="x", lang="go")).score == 0

    def test_privacy(self):
        """Privacy requirement scores three when the flag matches."""
        rule = make_rule("r", PrivacyRequired(True))
        assert self.scorer.score_rule(rule, RoutingContext(prompt="x", privacy_strict=True)).score == 3
        assert self.scorer.score_rule(rule, RoutingContext(prompt="x")).score == 0

    def test_conditions_accumulate(self):
        rule = make_rule(
            "r",
            AnyKeyword(("review",)),
            LanguageIn(("python",)),
            PathGlob(("**/*.py",)),
        )
        context = RoutingContext(prompt="review this", lang="python", file_path="app/main.py")
        assert self.scorer.score_rule(rule, context).score == 3


class TestPriority:
    """Test priority handling."""

    def setup_method(self):
        self.scorer = RuleScorer()

    def test_priority_added_when_matched(self):
        rule = make_rule("r", AnyKeyword(("test",)), priority=5)
        result = self.scorer.score_rule(rule, RoutingContext(prompt="a test"))

        assert result.score == 6
        assert result.reasoning[-1] == "Priority +5"

    def test_priority_alone_does_not_match(self):
        """Priority never turns a non-matching rule into a match."""
        rule = make_rule("r", AnyKeyword(("deploy",)), priority=10)
        assert self.scorer.score_rule(rule, RoutingContext(prompt="a test")).score == 0


class TestSelection:
    """Test rule ranking and selection."""

    def setup_method(self):
        self.scorer = RuleScorer()
        self.default = DefaultRule(prefer=("p1:m1",))

    def test_highest_score_wins(self):
        rules = [
            make_rule("weak", AnyKeyword(("test",))),
            make_rule("strong", AllKeywords(("test", "unit"))),
        ]
        winner = self.scorer.select(rules, self.default, RoutingContext(prompt="write a unit test"))

        assert winner.rule.id == "strong"
        assert winner.reasoning[0] == "Matched rule: strong (score: 6)"

    def test_ties_keep_declaration_order(self):
        """Equal scores go to the rule declared first."""
        rules = [
            make_rule("first", AnyKeyword(("test",))),
            make_rule("second", AnyKeyword(("test",))),
        ]
        for _ in range(5):
            winner = self.scorer.select(rules, self.default, RoutingContext(prompt="a test"))
            assert winner.rule.id == "first"

    def test_default_when_nothing_matches(self):
        rules = [make_rule("r", AnyKeyword(("deploy",)))]
        result = self.scorer.select(rules, self.default, RoutingContext(prompt="hello"))

        assert result.is_default
        assert result.score == 0
        assert result.reasoning == ["default"]
        assert result.prefer == ("p1:m1",)
        assert result.source == "default"

    def test_rank_drops_non_matching(self):
        rules = [
            make_rule("a", AnyKeyword(("deploy",))),
            make_rule("b", AnyKeyword(("test",))),
        ]
        ranked = self.scorer.rank(rules, RoutingContext(prompt="a test"))
        assert [s.rule.id for s in ranked] == ["b"]

    def test_deterministic(self):
        """Scoring the same input twice yields the same result."""
        rule = make_rule("r", AnyKeyword(("test", "bug")), LanguageIn(("go",)))
        context = RoutingContext(prompt="bug in test", lang="go")

        first = self.scorer.score_rule(rule, context)
        second = self.scorer.score_rule(rule, context)

        assert first.score == second.score
        assert first.reasoning == second.reasoning

    def test_unknown_condition_type(self):
        rule = make_rule("r", object())
        with pytest.raises(TypeError):
            self.scorer.score_rule(rule, RoutingContext(prompt="x"))
