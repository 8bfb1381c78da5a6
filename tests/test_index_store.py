"""Tests for incremental index builds."""

from __future__ import annotations

import pytest

from conftest import CREATED_AT, CountingEmbedder, FailingEmbedder, MappingEmbedder, add_paste
import incident_rag.embedding.index_store as index_store_module
from incident_rag.embedding.index_store import IndexStore
from incident_rag.errors import ErrorCode, RagError
from incident_rag.evidence.store import EvidenceStore
from incident_rag.schemas import EvidenceSourceType, IndexBuildInput

MODEL = "stub-embed"
TWO_PARAGRAPHS = "a" * 900 + "\n\n" + "b" * 900


def _build(index: IndexStore, store: EvidenceStore, embedder, model: str = MODEL, source_id=None, **kw):
    return index.build(
        store,
        embedder,
        IndexBuildInput(model=model, source_id=source_id, updated_at=CREATED_AT),
        **kw,
    )


def test_status_defaults_to_not_ready(index: IndexStore) -> None:
    status = index.status()
    assert status.ready is False
    assert status.chunk_count == 0
    assert status.chunks_total == 0
    assert index.read_vectors() == {}
    assert index.read_hashes() == {}


def test_build_without_chunks_is_not_ready(index: IndexStore, store: EvidenceStore) -> None:
    with pytest.raises(RagError) as exc:
        _build(index, store, CountingEmbedder())
    assert exc.value.code == ErrorCode.INDEX_NOT_READY


def test_build_writes_vectors_hashes_and_status(index: IndexStore, store: EvidenceStore) -> None:
    add_paste(store, TWO_PARAGRAPHS)
    store.build_chunks()
    status = _build(index, store, CountingEmbedder())

    assert status.ready is True
    assert status.model == MODEL
    assert status.dims == 2
    assert status.chunk_count == 2
    assert status.chunks_total == 2
    assert status.source_id is None
    assert status.updated_at == CREATED_AT
    assert index.status() == status

    chunks = {c.chunk_id: c for c in store.list_chunks()}
    assert set(index.read_vectors()) == set(chunks)
    assert index.read_hashes() == {cid: c.text_sha256 for cid, c in chunks.items()}


def test_rebuild_without_changes_makes_no_embed_calls(index: IndexStore, store: EvidenceStore) -> None:
    add_paste(store, "alpha\n\nbeta")
    store.build_chunks()
    embedder = CountingEmbedder()
    _build(index, store, embedder)
    calls = len(embedder.calls)
    assert calls >= 1

    _build(index, store, embedder)
    assert len(embedder.calls) == calls


def test_changing_one_paragraph_embeds_one_chunk(index: IndexStore, store: EvidenceStore) -> None:
    add_paste(store, TWO_PARAGRAPHS)
    store.build_chunks()
    embedder = CountingEmbedder()
    _build(index, store, embedder)
    assert len(embedder.calls) == 2

    add_paste(store, "a" * 900 + "\n\n" + "ab" * 450)
    store.build_chunks()
    status = _build(index, store, embedder)

    assert len(embedder.calls) == 3
    assert embedder.calls[-1][1] == "ab" * 450
    assert status.chunk_count == 2
    assert len(index.read_vectors()) == 2


def test_embeds_in_ascending_chunk_id_order(index: IndexStore, store: EvidenceStore) -> None:
    add_paste(store, TWO_PARAGRAPHS)
    store.build_chunks()
    embedder = CountingEmbedder()
    _build(index, store, embedder)

    by_text = {store.get_chunk(c.chunk_id).text: c.chunk_id for c in store.list_chunks()}
    embedded_ids = [by_text[text] for _, text in embedder.calls]
    assert embedded_ids == sorted(embedded_ids)


def test_model_change_triggers_full_rebuild(index: IndexStore, store: EvidenceStore) -> None:
    add_paste(store, TWO_PARAGRAPHS)
    store.build_chunks()
    embedder = CountingEmbedder()
    _build(index, store, embedder)
    _build(index, store, embedder, model="other-embed")

    assert len(embedder.calls) == 4
    assert index.status().model == "other-embed"


def test_scope_change_triggers_full_rebuild(index: IndexStore, store: EvidenceStore) -> None:
    source = add_paste(store, TWO_PARAGRAPHS)
    add_paste(store, "b" * 10, source_type=EvidenceSourceType.SLACK_TRANSCRIPT)
    store.build_chunks()
    embedder = CountingEmbedder()

    all_status = _build(index, store, embedder)
    assert all_status.chunks_total == 3
    assert len(embedder.calls) == 3

    scoped = _build(index, store, embedder, source_id=source.source_id)
    assert len(embedder.calls) == 5
    assert scoped.source_id == source.source_id
    assert scoped.chunks_total == 2
    assert set(index.read_vectors()) == {c.chunk_id for c in store.list_chunks(source.source_id)}


def test_removed_chunks_are_pruned(index: IndexStore, store: EvidenceStore) -> None:
    add_paste(store, TWO_PARAGRAPHS)
    store.build_chunks()
    embedder = CountingEmbedder()
    _build(index, store, embedder)

    add_paste(store, "a" * 900)
    store.build_chunks()
    status = _build(index, store, embedder)

    assert len(embedder.calls) == 2
    assert status.chunk_count == 1
    assert status.chunks_total == 1
    assert set(index.read_hashes()) == {c.chunk_id for c in store.list_chunks()}


def test_dimension_mismatch_fails_before_any_write(index: IndexStore, store: EvidenceStore) -> None:
    add_paste(store, TWO_PARAGRAPHS)
    store.build_chunks()
    texts = [store.get_chunk(c.chunk_id).text for c in store.list_chunks()]
    embedder = MappingEmbedder({texts[0]: [1.0, 0.0], texts[1]: [1.0, 0.0, 0.0]})

    with pytest.raises(RagError) as exc:
        _build(index, store, embedder)
    assert exc.value.code == ErrorCode.INDEX_BUILD_FAILED
    assert not index.status_path.exists()
    assert not index.vectors_path.exists()
    assert not index.hashes_path.exists()


def test_new_vector_must_match_existing_dims(index: IndexStore, store: EvidenceStore) -> None:
    add_paste(store, "alpha")
    store.build_chunks()
    _build(index, store, MappingEmbedder({}, default=[1.0, 0.0]))
    before = index.status()

    add_paste(store, "beta")
    store.build_chunks()
    with pytest.raises(RagError) as exc:
        _build(index, store, MappingEmbedder({}, default=[1.0, 0.0, 0.0]))
    assert exc.value.code == ErrorCode.INDEX_BUILD_FAILED
    assert index.status() == before


@pytest.mark.parametrize("retryable", [True, False])
def test_embedder_errors_become_embeddings_failed(
    index: IndexStore, store: EvidenceStore, retryable: bool
) -> None:
    add_paste(store, "alpha")
    store.build_chunks()
    with pytest.raises(RagError) as exc:
        _build(index, store, FailingEmbedder(retryable=retryable))
    assert exc.value.code == ErrorCode.EMBEDDINGS_FAILED
    assert exc.value.retryable is retryable
    assert index.status().ready is False


def test_progress_callback_reports_each_embedding(index: IndexStore, store: EvidenceStore) -> None:
    add_paste(store, TWO_PARAGRAPHS)
    store.build_chunks()
    seen: list[tuple[int, int]] = []
    _build(index, store, CountingEmbedder(), on_progress=lambda done, total: seen.append((done, total)))
    assert seen == [(1, 2), (2, 2)]


def test_corrupt_status_is_build_failed(index: IndexStore) -> None:
    index.index_dir.mkdir(parents=True)
    index.status_path.write_text("{broken", encoding="utf-8")
    with pytest.raises(RagError) as exc:
        index.status()
    assert exc.value.code == ErrorCode.INDEX_BUILD_FAILED


def test_files_are_written_vectors_then_hashes_then_status(
    index: IndexStore, store: EvidenceStore, monkeypatch: pytest.MonkeyPatch
) -> None:
    add_paste(store, TWO_PARAGRAPHS)
    store.build_chunks()
    written = []
    real_save = index_store_module.save_json

    def recording_save(data, path):
        written.append(path)
        real_save(data, path)

    monkeypatch.setattr(index_store_module, "save_json", recording_save)
    _build(index, store, CountingEmbedder())

    assert written == [index.vectors_path, index.hashes_path, index.status_path]


@pytest.mark.parametrize("failing", ["hashes_path", "status_path"])
def test_failed_write_keeps_previous_status(
    index: IndexStore, store: EvidenceStore, monkeypatch: pytest.MonkeyPatch, failing: str
) -> None:
    add_paste(store, TWO_PARAGRAPHS)
    store.build_chunks()
    before = _build(index, store, CountingEmbedder())

    real_save = index_store_module.save_json
    target = getattr(index, failing)

    def failing_save(data, path):
        if path == target:
            raise OSError("disk full")
        real_save(data, path)

    monkeypatch.setattr(index_store_module, "save_json", failing_save)
    with pytest.raises(RagError) as exc:
        _build(index, store, CountingEmbedder(), model="other-embed")

    assert exc.value.code == ErrorCode.INDEX_BUILD_FAILED
    assert index.status() == before
    assert index.status().model == MODEL
