"""Tests for the draft artifact ledger."""

from __future__ import annotations

from pathlib import Path

import pytest

from conftest import StubGenerator, add_paste
from incident_rag.errors import ErrorCode, RagError
from incident_rag.evidence.store import EvidenceStore
from incident_rag.generation.artifacts import DraftArtifactStore
from incident_rag.generation.drafter import SectionDrafter
from incident_rag.schemas import AiDraftResponse, AiDraftSectionRequest, SectionId


@pytest.fixture
def response(store: EvidenceStore) -> AiDraftResponse:
    add_paste(store, "Payments outage on Jan 5.")
    store.build_chunks()
    (summary,) = store.list_chunks()
    drafter = SectionDrafter(store, StubGenerator(f"Summary [[chunk:{summary.chunk_id}]]"), model="stub-llm")
    return drafter.draft(
        AiDraftSectionRequest(
            section_id=SectionId.EXEC_SUMMARY,
            quarter_label="Q1 2026",
            citation_chunk_ids=[summary.chunk_id],
        )
    )


@pytest.fixture
def ledger(store: EvidenceStore) -> DraftArtifactStore:
    return DraftArtifactStore(store.root)


def test_save_and_get(ledger: DraftArtifactStore, response: AiDraftResponse) -> None:
    artifact = ledger.save(response, "Q1 2026", "2026-04-01T00:00:00Z")

    assert len(artifact.artifact_hash) == 64
    assert artifact.markdown == response.markdown
    assert artifact.citation_chunk_ids == [c.chunk_id for c in response.citations]
    assert artifact.citations == response.citations
    assert artifact.prompt_template_version == "exec_summary.v1"
    assert (ledger.drafts_dir / f"{artifact.artifact_hash}.json").is_file()
    assert ledger.get(artifact.artifact_hash) == artifact


def test_same_draft_same_timestamp_same_hash(ledger: DraftArtifactStore, response: AiDraftResponse) -> None:
    a = ledger.save(response, "Q1 2026", "2026-04-01T00:00:00Z")
    b = ledger.save(response, "Q1 2026", "2026-04-01T00:00:00Z")
    c = ledger.save(response, "Q1 2026", "2026-04-02T00:00:00Z")
    assert a.artifact_hash == b.artifact_hash
    assert a.artifact_hash != c.artifact_hash
    assert len(ledger.list()) == 2


def test_list_orders_by_created_at_and_filters(ledger: DraftArtifactStore, response: AiDraftResponse) -> None:
    later = ledger.save(response, "Q1 2026", "2026-04-03T00:00:00Z")
    earlier = ledger.save(response, "Q1 2026", "2026-04-01T00:00:00Z")
    other = ledger.save(response, "Q2 2026", "2026-07-01T00:00:00Z")

    assert [a.artifact_hash for a in ledger.list()] == [earlier.artifact_hash, later.artifact_hash, other.artifact_hash]
    assert [a.artifact_hash for a in ledger.list("Q2 2026")] == [other.artifact_hash]


def test_list_empty_ledger(tmp_path: Path) -> None:
    assert DraftArtifactStore(tmp_path / "nothing").list() == []


def test_save_requires_citations(ledger: DraftArtifactStore, response: AiDraftResponse) -> None:
    uncited = response.model_copy(update={"citations": []})
    with pytest.raises(RagError) as exc:
        ledger.save(uncited, "Q1 2026", "2026-04-01T00:00:00Z")
    assert exc.value.code == ErrorCode.CITATION_REQUIRED


@pytest.mark.parametrize(
    "update, quarter",
    [
        ({}, "  "),
        ({"markdown": " "}, "Q1 2026"),
        ({"model_name": ""}, "Q1 2026"),
        ({"model_params_hash": ""}, "Q1 2026"),
        ({"prompt_template_version": ""}, "Q1 2026"),
    ],
)
def test_save_rejects_incomplete_drafts(
    ledger: DraftArtifactStore, response: AiDraftResponse, update: dict, quarter: str
) -> None:
    with pytest.raises(RagError) as exc:
        ledger.save(response.model_copy(update=update), quarter, "2026-04-01T00:00:00Z")
    assert exc.value.code == ErrorCode.DRAFT_INVALID
    assert ledger.list() == []


def test_get_unknown_hash(ledger: DraftArtifactStore) -> None:
    for bad in ("0" * 64, "../evil"):
        with pytest.raises(RagError) as exc:
            ledger.get(bad)
        assert exc.value.code == ErrorCode.DRAFT_INVALID
