"""Tests for keyword and path matching."""

from routewise.matcher import (
    extract_keywords,
    glob_to_regex,
    keyword_matches,
    matches_pattern,
    strip_large_content,
    word_count,
)


class TestExtractKeywords:
    """Test keyword extraction."""

    def test_lowercases_and_drops_short_words(self):
        """Words under three letters and non-letters are ignored."""
        keywords = extract_keywords("Fix the DB bug in module 42, ok?")
        assert keywords == ["fix", "the", "bug", "module"]

    def test_orders_by_frequency(self):
        """More frequent words come first; ties keep first occurrence."""
        keywords = extract_keywords("alpha beta beta gamma gamma gamma alpha delta")
        assert keywords == ["gamma", "alpha", "beta", "delta"]

    def test_caps_at_twenty(self):
        """At most twenty keywords are returned."""
        prompt = " ".join(f"word{chr(97 + i)}" for i in range(26))
        assert len(extract_keywords(prompt)) == 20
        assert len(extract_keywords(prompt, limit=5)) == 5

    def test_empty_prompt(self):
        """An empty prompt has no keywords."""
        assert extract_keywords("") == []


class TestKeywordMatches:
    """Test keyword matching."""

    def test_matches_extracted_keyword_substring(self):
        """A keyword matches inside an extracted keyword."""
        assert keyword_matches("test", ["testing"], "")

    def test_falls_back_to_prompt(self):
        """A keyword absent from the list can still match the prompt."""
        assert keyword_matches("c++", [], "Port this to C++ please")

    def test_case_insensitive(self):
        """Matching ignores case."""
        assert keyword_matches("REFACTOR", None, "please refactor this")

    def test_no_match(self):
        """Unrelated keyword does not match."""
        assert not keyword_matches("deploy", ["refactor"], "refactor this")


class TestGlobPatterns:
    """Test glob-like path patterns."""

    def test_double_star_spans_directories(self):
        """`**` crosses directory separators."""
        assert matches_pattern("src/app/models/user.py", "**/*.py")

    def test_single_star_stays_in_segment(self):
        """`*` does not cross a separator."""
        assert matches_pattern("src/user.py", "src/*.py")
        assert not matches_pattern("src/models/user.py", "src/*.py")

    def test_question_mark(self):
        """`?` matches exactly one non-separator character."""
        assert matches_pattern("v1.txt", "v?.txt")
        assert not matches_pattern("v10.txt", "v?.txt")
        assert not matches_pattern("v/.txt", "v?.txt")

    def test_dots_are_literal(self):
        """Regex metacharacters in the pattern are literal."""
        assert not matches_pattern("srcXpy", "src.py")
        assert matches_pattern("src.py", "src.py")

    def test_case_insensitive(self):
        """Path matching ignores case."""
        assert matches_pattern("Docs/README.MD", "docs/*.md")

    def test_backslashes_normalized(self):
        """Windows separators are treated as `/`."""
        assert matches_pattern("C:\\project\\secrets\\key.pem", "**/secrets/**")

    def test_whole_path_match(self):
        """Patterns must match the entire path."""
        assert not matches_pattern("src/app.py.bak", "**/*.py")

    def test_compiled_pattern_is_cached(self):
        """The same pattern compiles once."""
        assert glob_to_regex("**/*.ts") is glob_to_regex("**/*.ts")


class TestHelpers:
    """Test word counting and content stripping."""

    def test_word_count(self):
        assert word_count("one  two\nthree") == 3
        assert word_count("") == 0

    def test_strip_large_content_keeps_head_and_tail(self):
        """Long content keeps its first and last 50 lines."""
        content = "\n".join(f"line {i}" for i in range(150))
        stripped = strip_large_content(content)

        lines = stripped.split("\n")
        assert lines[0] == "line 0"
        assert lines[-1] == "line 149"
        assert "line 75" not in stripped
        assert "50 lines omitted" in stripped

    def test_strip_short_content_unchanged(self):
        """Content within 100 lines is returned as is."""
        content = "\n".join(str(i) for i in range(100))
        assert strip_large_content(content) == content
