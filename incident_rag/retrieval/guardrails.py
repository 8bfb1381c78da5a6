"""
Citation Guardrails
--------------------
Checks applied to every generated draft before it is returned:

1. Baseline      -- the output must contain at least one `[[chunk:` marker.

2. Density       -- list-structured sections need a complete
                    `[[chunk:<id>]]` marker on every Markdown bullet line;
                    narrative sections need one in every paragraph.

3. Marker scan   -- collects the distinct chunk IDs cited in the output.
                    Malformed or unterminated markers are skipped, not
                    treated as parse errors.
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum

from loguru import logger

from incident_rag.errors import ErrorCode, RagError
from incident_rag.utils.helpers import normalize_text


MARKER_OPEN = "[[chunk:"
MARKER_CLOSE = "]]"

_BULLET_PREFIXES = ("- ", "* ")
_BLANK_LINE = re.compile(r"\n[ \t]*\n")


class SectionKind(str, Enum):
    LIST = "list"
    NARRATIVE = "narrative"


# ---------------------------------------------------------------------------
# Marker Scan
# ---------------------------------------------------------------------------

def extract_cited_chunk_ids(markdown: str) -> set[str]:
    """Distinct, trimmed, non-empty IDs from complete `[[chunk:<id>]]` markers."""
    out: set[str] = set()
    i = 0
    while True:
        i = markdown.find(MARKER_OPEN, i)
        if i < 0:
            break
        start = i + len(MARKER_OPEN)
        end = markdown.find("]", start)
        if end < 0:
            break
        if markdown.startswith(MARKER_CLOSE, end):
            chunk_id = markdown[start:end].strip()
            if chunk_id:
                out.add(chunk_id)
        i = end + len(MARKER_CLOSE)
    return out


def has_marker(text: str) -> bool:
    return bool(extract_cited_chunk_ids(text))


# ---------------------------------------------------------------------------
# Data Classes
# ---------------------------------------------------------------------------

@dataclass
class GuardrailResult:
    """Result of a citation-density check."""
    passed: bool
    blocked_reason: str = ""
    failures: list[int] = field(default_factory=list)   # 1-based lines or paragraphs


# ---------------------------------------------------------------------------
# CitationGuard
# ---------------------------------------------------------------------------

class CitationGuard:
    """
    Citation-density checks for generated Markdown.

    Usage:
        guard = CitationGuard()
        guard.enforce(markdown, SectionKind.LIST)
    """

    def check_bullets(self, markdown: str) -> GuardrailResult:
        """Every `- ` / `* ` bullet line must carry a complete marker."""
        failures = [
            n
            for n, line in enumerate(normalize_text(markdown).split("\n"), start=1)
            if line.lstrip().startswith(_BULLET_PREFIXES) and not has_marker(line)
        ]
        if failures:
            return GuardrailResult(
                passed=False,
                blocked_reason="Every bullet must include a [[chunk:<id>]] citation",
                failures=failures,
            )
        return GuardrailResult(passed=True)

    def check_paragraphs(self, markdown: str) -> GuardrailResult:
        """Every non-empty blank-line-separated paragraph must carry a marker."""
        paragraphs = [p for p in _BLANK_LINE.split(normalize_text(markdown)) if p.strip()]
        failures = [n for n, para in enumerate(paragraphs, start=1) if not has_marker(para)]
        if failures:
            return GuardrailResult(
                passed=False,
                blocked_reason="Every paragraph must include a [[chunk:<id>]] citation",
                failures=failures,
            )
        return GuardrailResult(passed=True)

    def check(self, markdown: str, kind: SectionKind) -> GuardrailResult:
        if MARKER_OPEN not in markdown:
            return GuardrailResult(
                passed=False,
                blocked_reason="AI output must include evidence chunk citations",
            )
        if kind == SectionKind.LIST:
            return self.check_bullets(markdown)
        return self.check_paragraphs(markdown)

    def enforce(self, markdown: str, kind: SectionKind) -> None:
        """Raise AI_CITATION_REQUIRED when the output fails the density rules."""
        result = self.check(markdown, kind)
        if result.passed:
            return
        unit = "lines" if kind == SectionKind.LIST else "paragraphs"
        details = f"{unit}={result.failures}" if result.failures else None
        logger.warning(f"[CitationGuard] {result.blocked_reason} | {details or 'no markers'}")
        raise RagError(ErrorCode.CITATION_REQUIRED, result.blocked_reason, details=details)
