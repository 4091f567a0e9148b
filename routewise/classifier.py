"""
Prompt Classifier for Routewise.

Heuristic labeler that turns a prompt (plus optional file context) into a
task label and capability hints. Routing never requires it; callers may
feed its output into a RoutingContext with `enrich_context`.
"""

import hashlib
import re
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Optional

from routewise.matcher import extract_keywords
from routewise.schemas import RoutingContext


class PromptClass(str, Enum):
    """Task labels."""
    BOILERPLATE = "boilerplate"
    TESTS = "tests"
    BUG = "bug"
    REFACTOR = "refactor"
    DOCS = "docs"
    OPTIMIZATION = "optimization"
    ARCHITECTURE = "architecture"
    CREATIVE = "creative"
    ANALYSIS = "analysis"
    REASONING = "reasoning"
    CONVERSATION = "conversation"
    GENERAL = "general"


# Keyword vocabulary per label, checked in this order
LABEL_KEYWORDS: dict[PromptClass, tuple[str, ...]] = {
    PromptClass.BOILERPLATE: (
        "boilerplate", "template", "scaffold", "generate", "create",
        "skeleton", "starter", "basic", "simple",
    ),
    PromptClass.TESTS: (
        "test", "unit test", "integration test", "spec", "assert",
        "mock", "stub", "jest", "pytest", "junit",
    ),
    PromptClass.BUG: (
        "bug", "error", "fix", "debug", "issue", "problem",
        "crash", "exception", "stack trace", "segfault",
    ),
    PromptClass.REFACTOR: (
        "refactor", "restructure", "reorganize", "clean up",
        "optimize structure", "improve code", "modernize",
    ),
    PromptClass.DOCS: (
        "document", "comment", "explain", "readme", "guide",
        "tutorial", "documentation", "javadoc", "docstring",
    ),
    PromptClass.OPTIMIZATION: (
        "optimize", "performance", "speed up", "efficient",
        "faster", "memory", "cpu", "benchmark",
    ),
    PromptClass.ARCHITECTURE: (
        "architecture", "design", "system", "pattern",
        "microservice", "api design", "database schema",
    ),
    PromptClass.CREATIVE: (
        "creative", "brainstorm", "idea", "innovative",
        "artistic", "story", "poem",
    ),
    PromptClass.ANALYSIS: (
        "analyze", "review", "examine", "evaluate",
        "assess", "code review", "quality",
    ),
    PromptClass.REASONING: (
        "prove", "logic", "algorithm", "mathematical",
        "complex", "reasoning", "step by step", "solve",
    ),
    PromptClass.CONVERSATION: (
        "hello", "thanks", "thank you", "how are you", "chat",
    ),
}

# Capability tags each label benefits from
LABEL_CAPS: dict[PromptClass, tuple[str, ...]] = {
    PromptClass.BOILERPLATE: ("cheap", "tools"),
    PromptClass.TESTS: ("tools", "coder"),
    PromptClass.BUG: ("reasoning", "tools"),
    PromptClass.REFACTOR: ("long", "tools", "coder"),
    PromptClass.OPTIMIZATION: ("reasoning", "tools"),
    PromptClass.ARCHITECTURE: ("long", "reasoning"),
    PromptClass.ANALYSIS: ("reasoning", "long"),
    PromptClass.REASONING: ("reasoning",),
    PromptClass.CONVERSATION: ("cheap",),
}

LARGE_FILE_KB = 100
LONG_PROMPT_CHARS = 5000


@dataclass(frozen=True)
class Classification:
    """Classifier output."""
    label: PromptClass
    confidence: float
    suggested_caps: tuple[str, ...] = ()
    reasoning: tuple[str, ...] = ()
    complexity: str = "medium"  # low, medium, high

    def to_dict(self) -> dict:
        return {
            "label": self.label.value,
            "confidence": self.confidence,
            "suggested_caps": list(self.suggested_caps),
            "reasoning": list(self.reasoning),
            "complexity": self.complexity,
        }


@dataclass
class _Draft:
    label: PromptClass = PromptClass.GENERAL
    confidence: float = 0.5
    caps: list[str] = field(default_factory=list)
    reasoning: list[str] = field(default_factory=list)
    complexity: str = "medium"


class PromptClassifier:
    """
    Labels prompts by keyword vocabulary and file context.

    Signals:
    - File path naming a test or documentation file
    - Language id (code context)
    - File size and prompt length
    - Keyword hits per label; the label with the most hits wins,
      earlier labels win ties
    """

    def __init__(self, cache_results: bool = True):
        self.cache_results = cache_results
        self._cache: dict[str, Classification] = {}
        self._hits = 0
        self._misses = 0

        self._patterns = {
            label: [
                (keyword, re.compile(r"\b" + re.escape(keyword) + r"\b", re.IGNORECASE))
                for keyword in keywords
            ]
            for label, keywords in LABEL_KEYWORDS.items()
        }
        self._test_path_pattern = re.compile(r"(test|spec)", re.IGNORECASE)
        self._docs_path_pattern = re.compile(r"(readme|docs?\b|\.md$|\.rst$)", re.IGNORECASE)

    def classify(
        self,
        prompt: str,
        file_path: Optional[str] = None,
        lang: Optional[str] = None,
        file_size_kb: Optional[float] = None,
    ) -> Classification:
        """
        Classify a prompt.

        Args:
            prompt: Prompt text.
            file_path: Path of the file the prompt refers to.
            lang: Language id of that file.
            file_size_kb: Size of that file.

        Returns:
            Classification with label, confidence and capability hints.
        """
        key = self._cache_key(prompt, file_path, lang, file_size_kb)
        if self.cache_results and key in self._cache:
            self._hits += 1
            return self._cache[key]
        self._misses += 1

        draft = _Draft()
        self._apply_file_context(draft, file_path, lang, file_size_kb)
        self._apply_keywords(draft, prompt)
        draft.caps.extend(LABEL_CAPS.get(draft.label, ()))
        self._apply_length(draft, prompt)

        result = Classification(
            label=draft.label,
            confidence=round(draft.confidence, 2),
            suggested_caps=tuple(dict.fromkeys(draft.caps)),
            reasoning=tuple(draft.reasoning),
            complexity=draft.complexity,
        )
        if self.cache_results:
            self._cache[key] = result
        return result

    def _apply_file_context(
        self,
        draft: _Draft,
        file_path: Optional[str],
        lang: Optional[str],
        file_size_kb: Optional[float],
    ) -> None:
        if file_path:
            if self._test_path_pattern.search(file_path):
                draft.label = PromptClass.TESTS
                draft.confidence = 0.8
                draft.reasoning.append("File path suggests test file")
            elif self._docs_path_pattern.search(file_path):
                draft.label = PromptClass.DOCS
                draft.confidence = 0.8
                draft.reasoning.append("File path suggests documentation")

        if lang:
            draft.caps.append("coder")
            draft.reasoning.append(f"Code context detected: {lang}")

        if file_size_kb is not None and file_size_kb > LARGE_FILE_KB:
            draft.caps.append("long")
            draft.reasoning.append("Large context detected")

    def _apply_keywords(self, draft: _Draft, prompt: str) -> None:
        best_label, best_hits = None, []
        for label, patterns in self._patterns.items():
            hits = [keyword for keyword, pattern in patterns if pattern.search(prompt)]
            if len(hits) > len(best_hits):
                best_label, best_hits = label, hits

        if best_label is None:
            return

        # A keyword match only overrides file context when it is stronger
        confidence = min(0.9, 0.5 + len(best_hits) * 0.1)
        if draft.label != PromptClass.GENERAL and confidence < draft.confidence:
            return

        draft.label = best_label
        draft.confidence = confidence
        draft.reasoning.append(
            f"Matched {len(best_hits)} keywords for {best_label.value}: {', '.join(best_hits)}"
        )
        if best_label in (PromptClass.BUG, PromptClass.ARCHITECTURE, PromptClass.ANALYSIS):
            draft.complexity = "high"

    def _apply_length(self, draft: _Draft, prompt: str) -> None:
        if len(prompt) > LONG_PROMPT_CHARS:
            draft.complexity = "high"
            draft.caps.append("long")
            draft.reasoning.append("Long prompt detected")
        elif len(prompt) < 100 and draft.complexity == "medium":
            draft.complexity = "low"

    def _cache_key(self, *parts) -> str:
        return hashlib.sha1(repr(parts).encode("utf-8")).hexdigest()

    def clear_cache(self) -> None:
        self._cache.clear()
        self._hits = 0
        self._misses = 0

    def get_cache_stats(self) -> dict:
        lookups = self._hits + self._misses
        return {
            "size": len(self._cache),
            "hits": self._hits,
            "misses": self._misses,
            "hit_rate": self._hits / lookups if lookups else 0.0,
        }


_default_classifier: Optional[PromptClassifier] = None


def enrich_context(
    context: RoutingContext,
    classifier: Optional[PromptClassifier] = None,
) -> RoutingContext:
    """
    Return a copy of `context` carrying classification hints.

    Keywords become the context's own (or extracted) keywords followed by
    the label and suggested capability tags, without duplicates. The full
    classification is stored under `metadata["classification"]`.
    """
    global _default_classifier
    if classifier is None:
        if _default_classifier is None:
            _default_classifier = PromptClassifier()
        classifier = _default_classifier

    result = classifier.classify(
        context.prompt,
        file_path=context.file_path,
        lang=context.lang,
        file_size_kb=context.file_size_kb,
    )

    base = context.keywords if context.keywords is not None else tuple(extract_keywords(context.prompt))
    hints = (result.label.value,) + result.suggested_caps if result.label != PromptClass.GENERAL else result.suggested_caps
    keywords = tuple(dict.fromkeys(base + hints))

    metadata = dict(context.metadata)
    metadata["classification"] = result.to_dict()
    return replace(context, keywords=keywords, metadata=metadata)
