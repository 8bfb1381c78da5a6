"""
Section Drafter
----------------
Drafts one quarterly-review section from caller-approved evidence chunks.

Pipeline (any failure aborts; nothing partially grounded is returned):
  1. Resolve and validate the approved citations.
  2. Assemble the section prompt around one evidence block per chunk.
  3. Generate Markdown with the configured TextGenerator.
  4. Enforce citation density for the section kind.
  5. Extract cited chunk IDs and check them against the approved set.
  6. Return the Markdown with canonical citations and audit metadata.
"""
from __future__ import annotations

from loguru import logger

from incident_rag.errors import ErrorCode, RagError
from incident_rag.evidence.store import EvidenceStore
from incident_rag.generation.generator import TextGenerator
from incident_rag.generation.prompts import (
    EVIDENCE_BLOCK_SEPARATOR,
    EVIDENCE_BLOCK_TEMPLATE,
    template_for,
)
from incident_rag.providers.ollama import DEFAULT_BASE_URL
from incident_rag.retrieval.guardrails import CitationGuard, extract_cited_chunk_ids
from incident_rag.schemas import AiDraftResponse, AiDraftSectionRequest, Citation
from incident_rag.utils.helpers import canonical_hash


def model_params_hash(model: str, endpoint: str, prompt_template_version: str) -> str:
    return canonical_hash(
        {
            "model": model,
            "endpoint": endpoint,
            "stream": False,
            "prompt_template_version": prompt_template_version,
        }
    )


class SectionDrafter:
    """
    Grounded section drafting with citation enforcement.

    Usage:
        drafter = SectionDrafter(evidence, OllamaGenerator(), model="llama3.1:8b")
        response = drafter.draft(AiDraftSectionRequest(...))
    """

    def __init__(
        self,
        evidence: EvidenceStore,
        generator: TextGenerator,
        model: str,
        endpoint: str = DEFAULT_BASE_URL,
    ) -> None:
        self.evidence = evidence
        self.generator = generator
        self.model = model
        self.endpoint = endpoint
        self.guard = CitationGuard()

    def _resolve_approved(self, chunk_ids: list[str]) -> list[Citation]:
        if not chunk_ids:
            raise RagError(
                ErrorCode.CITATION_REQUIRED,
                "At least one citation chunk must be selected",
            )
        citations: list[Citation] = []
        for chunk_id in chunk_ids:
            try:
                chunk = self.evidence.get_chunk(chunk_id)
            except RagError as exc:
                if exc.code != ErrorCode.EVIDENCE_NOT_FOUND:
                    raise
                raise RagError(
                    ErrorCode.CITATION_INVALID,
                    "Citation chunk_id not found",
                    details=f"chunk_id={chunk_id}",
                ) from exc
            citations.append(self.evidence.citation_for_chunk(chunk))
        self.evidence.validate_citations(citations)
        return citations

    def build_evidence_blocks(self, chunk_ids: list[str]) -> str:
        blocks = []
        for chunk_id in chunk_ids:
            chunk = self.evidence.get_chunk(chunk_id)
            blocks.append(
                EVIDENCE_BLOCK_TEMPLATE.format(
                    chunk_id=chunk_id,
                    source_id=chunk.source_id,
                    ordinal=chunk.ordinal,
                    text_sha256=chunk.text_sha256,
                    text=chunk.text,
                )
            )
        return EVIDENCE_BLOCK_SEPARATOR.join(blocks)

    def draft(self, request: AiDraftSectionRequest) -> AiDraftResponse:
        self._resolve_approved(request.citation_chunk_ids)

        template = template_for(request.section_id)
        prompt = template.render(
            quarter_label=request.quarter_label,
            user_prompt=request.prompt,
            evidence_blocks=self.build_evidence_blocks(request.citation_chunk_ids),
        )
        logger.info(
            f"[Drafter] {request.section_id.value} | {request.quarter_label} | "
            f"{len(request.citation_chunk_ids)} approved chunk(s) | {template.version}"
        )

        markdown = self.generator.generate(self.model, prompt)
        if not markdown.strip():
            raise RagError(ErrorCode.DRAFT_FAILED, "Generator returned an empty draft")

        self.guard.enforce(markdown, template.kind)

        cited = extract_cited_chunk_ids(markdown)
        if not cited:
            raise RagError(ErrorCode.CITATION_REQUIRED, "Draft missing citations")
        approved = set(request.citation_chunk_ids)
        unapproved = sorted(cited - approved)
        if unapproved:
            logger.warning(f"[Drafter] Unapproved citation(s): {unapproved}")
            raise RagError(
                ErrorCode.CITATION_INVALID,
                "Draft cited an unapproved chunk_id",
                details=f"chunk_id={unapproved[0]}",
            )

        citations = [
            self.evidence.citation_for_chunk(self.evidence.get_chunk(chunk_id))
            for chunk_id in sorted(cited)
        ]
        logger.info(f"[Drafter] Accepted | {len(citations)} citation(s)")
        return AiDraftResponse(
            section_id=request.section_id,
            markdown=markdown,
            citations=citations,
            model_name=self.model,
            model_params_hash=model_params_hash(self.model, self.endpoint, template.version),
            prompt_template_version=template.version,
        )
