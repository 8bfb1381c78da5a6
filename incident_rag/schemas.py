"""
Core Pydantic schemas for the incident-review evidence pipeline.

All stages share these models so a citation produced by the retriever or
the drafter can be traced to the exact stored chunk it came from.
"""
from __future__ import annotations

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from incident_rag.chunking.schemas import EvidenceChunkSummary


# --- Enumerations ------------------------------------------------------------

class EvidenceSourceType(str, Enum):
    SANITIZED_EXPORT = "sanitized_export"        # incidents/timeline/warnings JSON bundle
    SLACK_TRANSCRIPT = "slack_transcript"
    INCIDENT_REPORT_MD = "incident_report_md"
    FREEFORM_TEXT = "freeform_text"


class OriginKind(str, Enum):
    FILE = "file"
    DIRECTORY = "directory"
    PASTE = "paste"


class SectionId(str, Enum):
    EXEC_SUMMARY = "exec_summary"
    INCIDENT_HIGHLIGHTS_TOP_N = "incident_highlights_top_n"
    THEME_ANALYSIS = "theme_analysis"
    ACTION_PLAN_NEXT_QUARTER = "action_plan_next_quarter"
    QUARTER_NARRATIVE_RECAP = "quarter_narrative_recap"


# --- Sources ------------------------------------------------------------------

class EvidenceOrigin(BaseModel):
    # Kept as a plain string so unknown kinds reach add_source validation
    # and fail with a structured error instead of a pydantic one.
    kind: str
    path: Optional[str] = None


class EvidenceSource(BaseModel):
    source_id: str
    type: EvidenceSourceType
    origin: EvidenceOrigin
    label: str
    created_at: str                              # RFC3339


class EvidenceAddSourceInput(BaseModel):
    type: EvidenceSourceType
    origin: EvidenceOrigin
    label: str
    created_at: str
    text: Optional[str] = None                   # paste sources only


class EvidenceSourceRecord(BaseModel):
    """Persisted form of a source: the public record plus paste body location."""

    source: EvidenceSource
    content_rel_path: Optional[str] = None


class BuildChunksResult(BaseModel):
    source_id: Optional[str] = None
    chunk_count: int
    updated_at: str


class EvidenceContextResponse(BaseModel):
    center_chunk_id: str
    chunks: list[EvidenceChunkSummary]


# --- Citations ----------------------------------------------------------------

class CitationLocator(BaseModel):
    source_id: str
    ordinal: int
    text_sha256: str
    char_range: Optional[tuple[int, int]] = None


class Citation(BaseModel):
    chunk_id: str
    locator: CitationLocator


# --- Index --------------------------------------------------------------------

class IndexStatus(BaseModel):
    """One embedding space, scoped to (model, source_id-or-all)."""

    ready: bool = False
    model: Optional[str] = None
    dims: Optional[int] = None
    chunk_count: int = 0                         # vectors present
    chunks_total: int = 0                        # chunks in scope
    source_id: Optional[str] = None
    updated_at: Optional[str] = None


class IndexBuildInput(BaseModel):
    model: str
    source_id: Optional[str] = None
    updated_at: str


# --- Retrieval ----------------------------------------------------------------

class EvidenceQueryHit(BaseModel):
    chunk_id: str
    source_id: str
    score: float
    snippet: str
    citation: Citation


class EvidenceQueryResponse(BaseModel):
    hits: list[EvidenceQueryHit] = Field(default_factory=list)


# --- Drafting -----------------------------------------------------------------

class AiDraftSectionRequest(BaseModel):
    section_id: SectionId
    quarter_label: str
    prompt: str = ""
    citation_chunk_ids: list[str] = Field(default_factory=list)


class AiDraftResponse(BaseModel):
    section_id: SectionId
    markdown: str
    citations: list[Citation]
    model_name: str
    model_params_hash: str
    prompt_template_version: str


class AiDraftArtifact(BaseModel):
    """A validated draft as recorded in the draft ledger."""

    artifact_hash: str
    quarter_label: str
    section_id: SectionId
    markdown: str
    citation_chunk_ids: list[str]
    citations: list[Citation]
    model_name: str
    model_params_hash: str
    prompt_template_version: str
    created_at: str
