from __future__ import annotations

import pytest

from mnemo.memory.canonical import (
    build_content_preview,
    canonicalize,
    canonicalize_text,
    normalize_url,
    sanitize_content_for_storage,
    text_similarity,
)


class TestCanonicalizeText:
    def test_lowercases_and_collapses_whitespace(self):
        assert canonicalize_text("  Hello   World\n\tAgain ") == "hello world again"

    def test_strips_volatile_tokens(self):
        a = canonicalize_text("Report generated 2024-03-01T10:00:00Z id 123e4567-e89b-12d3-a456-426614174000 done")
        b = canonicalize_text("Report generated 2025-07-09T23:59:59Z id 00000000-1111-2222-3333-444444444444 done")
        assert a == b
        assert "2024" not in a

    def test_strips_markup_and_scripts(self):
        text = '<div class="x" id="main"><script>var a = 1;</script><p>Body text</p><!-- note --></div>'
        assert canonicalize_text(text) == "body text"

    def test_strips_tracking_parameters(self):
        assert "utm_source" not in canonicalize_text("see page utm_source=newsletter end")

    def test_truncates_to_max_length(self):
        assert len(canonicalize_text("a " * 100, max_length=10)) <= 10

    @pytest.mark.parametrize(
        "text",
        [
            "meeting 10:<!-- c -->30 pm notes",
            "deploy 2024-03-01<b>T</b>10:00:00Z finished",
            "build 12/<span>0</span>1/2024 ok",
            "id <i>123e4567-e89b</i>-12d3-a456-426614174000 end",
            "1<script>x</script>0:<!-- a -->4<!-- b -->5 standup",
            '<p class="a">Plain</p> text with\ttabs',
        ],
    )
    def test_is_idempotent(self, text):
        once = canonicalize_text(text)
        assert canonicalize_text(once) == once

    def test_markup_joined_time_is_stripped(self):
        assert canonicalize_text("meeting 10:<!-- c -->30 pm notes") == "meeting notes"

    def test_non_string_is_empty(self):
        assert canonicalize_text(None) == ""

    def test_same_content_same_hash(self):
        first = canonicalize("Rust ownership explained at 10:30 am", "https://Example.com/a?x=1")
        second = canonicalize("rust   ownership explained at 11:45 pm", "https://example.com/a#frag")
        assert first.canonical_hash == second.canonical_hash
        assert first.normalized_url == second.normalized_url == "https://example.com/a"


class TestNormalizeUrl:
    def test_drops_query_and_fragment(self):
        assert normalize_url("HTTPS://Docs.Example.com/Guide?ref=1#top") == "https://docs.example.com/guide"

    def test_unknown_and_empty(self):
        assert normalize_url("unknown") is None
        assert normalize_url("   ") is None
        assert normalize_url(None) is None

    def test_non_url_text(self):
        assert normalize_url("notes/page?x=1") == "notes/page"


class TestSimilarity:
    def test_identical(self):
        assert text_similarity("a b c", "a b c") == 1.0

    def test_jaccard(self):
        assert text_similarity("a b c d", "a b c e") == 3 / 5

    def test_empty(self):
        assert text_similarity("", "a") == 0.0


class TestStorageCleanup:
    def test_sanitize_keeps_case_and_removes_scripts(self):
        out = sanitize_content_for_storage("Hello <script>x()</script><b>World</b> &amp; friends!!!")
        assert out == "Hello World & friends!"

    def test_sanitize_empty(self):
        assert sanitize_content_for_storage("   ") == ""

    def test_preview(self):
        assert build_content_preview("one\n\ntwo   three", length=7) == "one two"
