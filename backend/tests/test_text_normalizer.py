"""Tests for text_normalizer: escaped newlines, line endings, non-breaking spaces, idempotence."""
import pytest

from services.text_normalizer import normalize_optional, normalize_text

SAMPLES = [
    "",
    "plain text",
    "line one\\nline two\\n\\nline four",
    "windows\r\nline\rmac\nunix",
    "dose 10 mg daily",
    "trailing backslash \\",
    "escaped backslash \\\\n stays readable",
    "mixed\\r\\n and \r\n and \\n",
    "**Recommendation**\\n- FOLFOX\\n- NCT01234567",
]


def test_none_maps_to_empty_string():
    assert normalize_text(None) == ""


def test_escaped_newlines_become_real_newlines():
    text = "first\\nsecond\\nthird"
    result = normalize_text(text)
    assert "\\n" not in result
    assert result == "first\nsecond\nthird"


def test_newline_count_matches_escaped_pairs_plus_real_newlines():
    text = "a\\nb\nc\\nd"
    result = normalize_text(text)
    assert result.count("\n") == text.count("\\n") + text.count("\n")


def test_crlf_and_lone_cr_become_lf():
    assert normalize_text("a\r\nb\rc\nd") == "a\nb\nc\nd"


def test_crlf_is_a_single_newline():
    assert normalize_text("a\r\n\r\nb") == "a\n\nb"


def test_non_breaking_spaces_become_spaces():
    assert normalize_text("10\u00a0mg\u202fdaily\u2007x") == "10 mg daily x"


def test_no_truncation_or_content_loss():
    text = "Stage IV adenocarcinoma. " * 500
    assert normalize_text(text) == text


def test_non_string_values_are_stringified():
    assert normalize_text(42) == "42"


@pytest.mark.parametrize("text", SAMPLES)
def test_idempotent(text):
    once = normalize_text(text)
    assert normalize_text(once) == once


@pytest.mark.parametrize("text", SAMPLES)
def test_output_has_no_carriage_returns_or_escaped_newlines(text):
    result = normalize_text(text)
    assert "\r" not in result
    assert "\\n" not in result


def test_normalize_optional_blank_is_none():
    assert normalize_optional(None) is None
    assert normalize_optional("  \\n \r\n ") is None
    assert normalize_optional("text\\n") == "text\n"
