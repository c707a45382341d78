"""
Canonical display form for clinical narrative text.

Workflow documents, legacy files and the baseline store are written by
different pipelines. Some store newlines as the two characters backslash-n
or use Windows line endings. Copy-pasted case notes also carry non-breaking
spaces. Every narrative field passes through normalize_text before it
enters a PatientRecord.

The transformation only touches escaping and whitespace. It never
truncates and it is idempotent.
"""

import re

# Literal backslash followed by "n" as written by JSON-escaping pipelines
_ESCAPED_NEWLINE = re.compile(r"\\n")

# CRLF or lone CR
_LINE_ENDINGS = re.compile(r"\r\n?")

# No-break space, figure space, narrow no-break space
_NON_BREAKING_SPACES = re.compile("[\u00a0\u2007\u202f]")


def normalize_text(text: str | None) -> str:
    """
    Convert raw narrative text into the canonical display form.

    Args:
        text: Raw text from any source, or None.

    Returns:
        Text with LF line endings, real newlines in place of escaped ones
        and ordinary spaces in place of non-breaking ones. None maps to "".
    """
    if text is None:
        return ""
    if not isinstance(text, str):
        text = str(text)

    text = _ESCAPED_NEWLINE.sub("\n", text)
    text = _LINE_ENDINGS.sub("\n", text)
    return _NON_BREAKING_SPACES.sub(" ", text)


def normalize_optional(text: str | None) -> str | None:
    """Normalize text, mapping missing or blank values to None."""
    normalized = normalize_text(text)
    return normalized if normalized.strip() else None
