"""
Chunk schemas - the atomic unit that gets embedded, indexed and cited.

Every chunk is content-addressed: its ID is derived from the owning
source, its ordinal, and hashes of its text and metadata, so rebuilding
an unchanged source reproduces identical IDs.
"""
from __future__ import annotations

from typing import Optional

from pydantic import BaseModel


class EvidenceTimeRange(BaseModel):
    start_ts: Optional[str] = None
    end_ts: Optional[str] = None


class EvidenceChunkMeta(BaseModel):
    kind: str                                    # "paragraph" | "sanitized_incident_bundle"
    incident_keys: Optional[list[str]] = None
    time_range: Optional[EvidenceTimeRange] = None


class ChunkDraft(BaseModel):
    """Chunker output before the store assigns content-addressed identity."""

    ordinal: int
    text: str
    token_count_est: int
    meta: EvidenceChunkMeta


class EvidenceChunk(BaseModel):
    # Identity
    chunk_id: str
    source_id: str
    ordinal: int                                 # 0-based, contiguous within a source

    # Content
    text: str
    text_sha256: str
    token_count_est: int                         # character-length proxy

    meta: EvidenceChunkMeta


class EvidenceChunkSummary(BaseModel):
    """Chunk projection without the full text, for browsing large stores."""

    chunk_id: str
    source_id: str
    ordinal: int
    text_sha256: str
    token_count_est: int
    meta: EvidenceChunkMeta
    snippet: str = ""

    @classmethod
    def from_chunk(cls, chunk: EvidenceChunk, snippet: str) -> "EvidenceChunkSummary":
        return cls(
            chunk_id=chunk.chunk_id,
            source_id=chunk.source_id,
            ordinal=chunk.ordinal,
            text_sha256=chunk.text_sha256,
            token_count_est=chunk.token_count_est,
            meta=chunk.meta,
            snippet=snippet,
        )
