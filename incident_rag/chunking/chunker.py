"""
Evidence Chunker
-----------------
Different evidence source types need different chunking strategies.  The
chunker looks at the source type and picks one:

  - PARAGRAPH_PACKING (freeform text, Slack transcripts, incident report
      Markdown): split on blank lines, then greedily pack consecutive
      paragraphs into one chunk until the next paragraph would push it over
      the character budget.  Paragraphs are never split, so a single
      oversized paragraph becomes its own (oversized) chunk.

  - SANITIZED_BUNDLE (sanitized exports): one chunk per incident, rendered
      from the structured export files (see chunking/sanitized.py).

Ordinals are assigned here and are contiguous from 0 in source order.
"""
from __future__ import annotations

from typing import Optional

from loguru import logger

from incident_rag.chunking.sanitized import chunk_sanitized_export
from incident_rag.chunking.schemas import ChunkDraft, EvidenceChunkMeta
from incident_rag.errors import ErrorCode, RagError
from incident_rag.schemas import EvidenceSource, EvidenceSourceType
from incident_rag.utils.helpers import normalize_text


# --- Constants ----------------------------------------------------------------

MAX_CHARS = 1600          # Packing budget per paragraph chunk
PARAGRAPH_KIND = "paragraph"

PARAGRAPH_SOURCE_TYPES = {
    EvidenceSourceType.FREEFORM_TEXT,
    EvidenceSourceType.SLACK_TRANSCRIPT,
    EvidenceSourceType.INCIDENT_REPORT_MD,
}

_PARAGRAPH_SEPARATOR = "\n\n"


def split_paragraphs(text: str) -> list[str]:
    """Split normalised text on empty lines, dropping empty paragraphs.

    Only a literal empty line separates paragraphs; a line holding just
    spaces or tabs stays inside its paragraph.
    """
    paras = [p.strip() for p in normalize_text(text).split(_PARAGRAPH_SEPARATOR)]
    return [p for p in paras if p]


# --- Main Chunker -------------------------------------------------------------

class EvidenceChunker:
    """
    Selects and applies the chunking strategy for each evidence source.

    Usage:
        chunker = EvidenceChunker(max_chars=1600)
        drafts = chunker.chunk_source(source, text)
    """

    def __init__(self, max_chars: int = MAX_CHARS) -> None:
        if max_chars < 1:
            raise ValueError("max_chars must be positive")
        self.max_chars = max_chars

    def chunk_source(self, source: EvidenceSource, text: Optional[str] = None) -> list[ChunkDraft]:
        """
        Chunk one source.

        Args:
            source: The registered source.
            text: Raw text for paragraph-packed types (paste body or file
                contents).  Ignored for sanitized exports, which are read
                from the origin directory.
        """
        if source.type == EvidenceSourceType.SANITIZED_EXPORT:
            if not source.origin.path:
                raise RagError(
                    ErrorCode.EVIDENCE_SOURCE_INVALID,
                    "Sanitized export requires a directory path",
                )
            strategy = "sanitized_bundle"
            drafts = chunk_sanitized_export(source.origin.path)
        else:
            strategy = "paragraph_packing"
            drafts = self.chunk_text(text or "")

        logger.debug(
            f"[Chunker] {source.source_id[:12]} | {source.type.value} | "
            f"{strategy} -> {len(drafts)} chunk(s)"
        )
        return drafts

    # --- Strategy: Paragraph Packing -----------------------------------------

    def chunk_text(self, text: str, kind: str = PARAGRAPH_KIND) -> list[ChunkDraft]:
        paras = split_paragraphs(text)
        if not paras:
            whole = normalize_text(text).strip()
            paras = [whole] if whole else []

        packed: list[str] = []
        buf = ""
        for para in paras:
            add_len = len(para) if not buf else len(_PARAGRAPH_SEPARATOR) + len(para)
            if buf and len(buf) + add_len > self.max_chars:
                packed.append(buf)
                buf = ""
            buf = para if not buf else buf + _PARAGRAPH_SEPARATOR + para
        if buf.strip():
            packed.append(buf)

        return [
            ChunkDraft(
                ordinal=ordinal,
                text=chunk_text,
                token_count_est=len(chunk_text),
                meta=EvidenceChunkMeta(kind=kind),
            )
            for ordinal, chunk_text in enumerate(packed)
        ]
