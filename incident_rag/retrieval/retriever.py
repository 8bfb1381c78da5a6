"""
Evidence Retriever
-------------------
Embeds the query with the index's model and scores every stored vector by
exact cosine similarity.  Results are ordered by score descending, with
chunk_id ascending as the tie-break, so identical inputs always give the
same ranking.

The retriever is stateless per query -- call query() as many times as you
like from the same instance.
"""
from __future__ import annotations

from typing import Optional

from loguru import logger

from incident_rag.embedding.embedder import Embedder
from incident_rag.embedding.index_store import IndexStore
from incident_rag.errors import ErrorCode, RagError
from incident_rag.evidence.store import EvidenceStore
from incident_rag.retrieval.similarity import as_vector, cosine_similarity, l2_norm
from incident_rag.schemas import EvidenceQueryHit, EvidenceQueryResponse


MAX_TOP_K = 50
DEFAULT_TOP_K = 8


class EvidenceRetriever:
    """
    Cosine retrieval over the persisted vector index.

    Usage:
        retriever = EvidenceRetriever(evidence, index, embedder)
        response = retriever.query("vendor outage", top_k=5)
    """

    def __init__(
        self,
        evidence: EvidenceStore,
        index: IndexStore,
        embedder: Embedder,
        top_k: int = DEFAULT_TOP_K,
    ) -> None:
        self.evidence = evidence
        self.index = index
        self.embedder = embedder
        self.top_k = top_k

    def query(
        self,
        text: str,
        top_k: Optional[int] = None,
        source_filter: Optional[list[str]] = None,
    ) -> EvidenceQueryResponse:
        """
        Rank stored chunks against a free-text query.

        Args:
            text: Query string; must be non-blank.
            top_k: Hits to return, clamped to [1, 50].
            source_filter: When given, only chunks from these source IDs score.
        """
        query = text.strip()
        if not query:
            raise RagError(ErrorCode.RETRIEVAL_FAILED, "Query is required")
        k = min(max(self.top_k if top_k is None else top_k, 1), MAX_TOP_K)

        status = self.index.status()
        if not status.ready or not status.model:
            raise RagError(ErrorCode.INDEX_NOT_READY, "Evidence index is not ready")

        q = as_vector(self.embedder.embed(status.model, query))
        if status.dims is not None and len(q) != status.dims:
            raise RagError(
                ErrorCode.RETRIEVAL_FAILED,
                "Query embedding dims mismatch",
                details=f"expected={status.dims}; got={len(q)}",
            )
        q_norm = l2_norm(q)
        if q_norm == 0.0:
            raise RagError(ErrorCode.RETRIEVAL_FAILED, "Query embedding has zero norm")

        vectors = self.index.read_vectors()
        if not vectors:
            raise RagError(ErrorCode.INDEX_NOT_READY, "Evidence index has no vectors")

        allowed = set(source_filter) if source_filter is not None else None
        scored: list[tuple[float, str]] = []
        for chunk_id, values in vectors.items():
            v = as_vector(values)
            if len(v) != len(q):
                raise RagError(
                    ErrorCode.RETRIEVAL_FAILED,
                    "Index vector dims mismatch",
                    details=f"chunk_id={chunk_id}; expected={len(q)}; got={len(v)}",
                )
            if allowed is not None and self.evidence.get_chunk_summary(chunk_id).source_id not in allowed:
                continue
            v_norm = l2_norm(v)
            if v_norm == 0.0:
                continue
            scored.append((cosine_similarity(q, v, q_norm, v_norm), chunk_id))

        scored.sort(key=lambda item: (-item[0], item[1]))

        hits = []
        for score, chunk_id in scored[:k]:
            summary = self.evidence.get_chunk_summary(chunk_id)
            hits.append(
                EvidenceQueryHit(
                    chunk_id=chunk_id,
                    source_id=summary.source_id,
                    score=score,
                    snippet=summary.snippet,
                    citation=self.evidence.citation_for_chunk(summary),
                )
            )

        logger.info(
            f"[Retriever] {query[:80]!r} | {len(scored)} scored | {len(hits)} hit(s)"
            + (f" | top score {hits[0].score:.4f}" if hits else "")
        )
        return EvidenceQueryResponse(hits=hits)
