"""Tests for paragraph packing and strategy selection."""

from __future__ import annotations

import pytest

from incident_rag.chunking.chunker import EvidenceChunker, split_paragraphs
from incident_rag.errors import ErrorCode, RagError
from incident_rag.schemas import EvidenceOrigin, EvidenceSource, EvidenceSourceType


def _source(source_type: EvidenceSourceType, path: str | None = None) -> EvidenceSource:
    return EvidenceSource(
        source_id="s" * 64,
        type=source_type,
        origin=EvidenceOrigin(kind="directory" if path else "paste", path=path),
        label="x",
        created_at="2026-01-01T00:00:00Z",
    )


def test_split_paragraphs_on_empty_lines_only() -> None:
    assert split_paragraphs("one\n\ntwo\n\n\n\nthree\r\n\r\nfour") == ["one", "two", "three", "four"]


def test_whitespace_only_line_does_not_split() -> None:
    assert split_paragraphs("one\n  \t\ntwo") == ["one\n  \t\ntwo"]
    assert [d.text for d in EvidenceChunker(max_chars=1).chunk_text("a\n \nb")] == ["a\n \nb"]


def test_small_paragraphs_pack_into_one_chunk() -> None:
    drafts = EvidenceChunker().chunk_text("alpha\n\nbeta")
    assert [d.text for d in drafts] == ["alpha\n\nbeta"]
    assert drafts[0].ordinal == 0
    assert drafts[0].token_count_est == len("alpha\n\nbeta")
    assert drafts[0].meta.kind == "paragraph"


def test_budget_splits_between_paragraphs() -> None:
    drafts = EvidenceChunker(max_chars=8).chunk_text("alpha\n\nbeta")
    assert [(d.ordinal, d.text) for d in drafts] == [(0, "alpha"), (1, "beta")]


def test_paragraph_that_exactly_fits_is_packed() -> None:
    # "aaa" + "\n\n" + "bbb" == 8 characters
    drafts = EvidenceChunker(max_chars=8).chunk_text("aaa\n\nbbb")
    assert len(drafts) == 1


def test_oversized_paragraph_is_never_split() -> None:
    big = "x" * 50
    drafts = EvidenceChunker(max_chars=10).chunk_text(f"a\n\n{big}\n\nb")
    assert [d.text for d in drafts] == ["a", big, "b"]
    assert [d.ordinal for d in drafts] == [0, 1, 2]


def test_empty_text_yields_no_chunks() -> None:
    assert EvidenceChunker().chunk_text("  \n\n \n") == []


def test_two_900_char_paragraphs_become_two_chunks() -> None:
    drafts = EvidenceChunker().chunk_text("a" * 900 + "\n\n" + "b" * 900)
    assert [d.text[0] for d in drafts] == ["a", "b"]


def test_invalid_budget_rejected() -> None:
    with pytest.raises(ValueError):
        EvidenceChunker(max_chars=0)


def test_sanitized_export_requires_path() -> None:
    source = _source(EvidenceSourceType.SANITIZED_EXPORT)
    with pytest.raises(RagError) as exc:
        EvidenceChunker().chunk_source(source)
    assert exc.value.code == ErrorCode.EVIDENCE_SOURCE_INVALID


def test_paragraph_source_uses_given_text() -> None:
    drafts = EvidenceChunker().chunk_source(_source(EvidenceSourceType.SLACK_TRANSCRIPT), "hello\n\nworld")
    assert len(drafts) == 1
    assert drafts[0].text == "hello\n\nworld"
