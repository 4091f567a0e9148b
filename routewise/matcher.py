"""
Keyword and path matching for routing rules.

Pure functions, no state.
"""

import re
from collections import Counter
from functools import lru_cache
from typing import Iterable, Optional

_WORD_PATTERN = re.compile(r"\b[a-zA-Z]{3,}\b")

MAX_KEYWORDS = 20


def extract_keywords(prompt: str, limit: int = MAX_KEYWORDS) -> list[str]:
    """
    Extract normalized keyword tokens from a prompt.

    Args:
        prompt: Raw prompt text.
        limit: Maximum number of keywords to return.

    Returns:
        Unique lowercase words of 3+ letters, most frequent first.
        Equal counts keep first-occurrence order.
    """
    words = _WORD_PATTERN.findall(prompt.lower())
    # Counter preserves insertion order, and sorted() is stable
    counts = Counter(words)
    ranked = sorted(counts.items(), key=lambda item: item[1], reverse=True)
    return [word for word, _ in ranked[:limit]]


def word_count(text: str) -> int:
    return len(text.split())


def keyword_matches(
    keyword: str,
    keywords: Optional[Iterable[str]],
    prompt: str,
) -> bool:
    """Case-insensitive substring match against extracted keywords or the prompt."""
    needle = keyword.lower()
    if not needle:
        return False
    for candidate in keywords or ():
        if needle in candidate.lower():
            return True
    return needle in prompt.lower()


@lru_cache(maxsize=256)
def glob_to_regex(pattern: str) -> re.Pattern:
    """
    Compile a glob-like pattern.

    `**` spans directories, `*` stays within one path segment and `?`
    matches one non-separator character. Everything else is literal.
    """
    parts = []
    i = 0
    normalized = pattern.replace("\\", "/")
    while i < len(normalized):
        char = normalized[i]
        if normalized.startswith("**", i):
            parts.append(".*")
            i += 2
            continue
        if char == "*":
            parts.append("[^/]*")
        elif char == "?":
            parts.append("[^/]")
        else:
            parts.append(re.escape(char))
        i += 1
    return re.compile("^" + "".join(parts) + "$", re.IGNORECASE)


def matches_pattern(path: str, pattern: str) -> bool:
    """Return True if the whole path matches the glob pattern."""
    return bool(glob_to_regex(pattern).match(path.replace("\\", "/")))


def strip_large_content(content: str, keep_lines: int = 50) -> str:
    """Keep the first and last `keep_lines` lines of long content."""
    lines = content.split("\n")
    if len(lines) <= keep_lines * 2:
        return content

    first_part = "\n".join(lines[:keep_lines])
    last_part = "\n".join(lines[-keep_lines:])
    omitted = len(lines) - keep_lines * 2
    return f"{first_part}\n\n[... {omitted} lines omitted for privacy ...]\n\n{last_part}"
