"""
Prompt templates for the quarterly incident review drafter.

Keeping templates in a separate module makes them easy to iterate on
without touching drafting logic.  Bump a section's version whenever its
template text changes; the version is recorded with every draft.
"""
from __future__ import annotations

from dataclasses import dataclass

from incident_rag.retrieval.guardrails import SectionKind
from incident_rag.schemas import SectionId


# ---------------------------------------------------------------------------
# Shared rules
# ---------------------------------------------------------------------------

RULES = """\
Rules (non-negotiable):
1) Use ONLY the evidence chunks provided below. Do not invent facts.
2) Every concrete claim MUST include an inline citation marker in the form [[chunk:<chunk_id>]].
3) If you cannot support a claim with evidence, write UNKNOWN (and do not cite).
4) Do not compute or infer metrics; treat any metrics in evidence as already computed.
"""

PROMPT_TEMPLATE = """\
You are drafting the {title} of a Quarterly Incident Review for quarter "{quarter_label}".

{rules}
{shape}

User prompt:
{user_prompt}

Evidence chunks:
{evidence_blocks}

Output:
- Return Markdown only.
- Include inline citations as specified.
"""

EVIDENCE_BLOCK_TEMPLATE = "[[chunk:{chunk_id}]] source_id={source_id} ordinal={ordinal} text_sha256={text_sha256}\n{text}"
EVIDENCE_BLOCK_SEPARATOR = "\n\n---\n\n"

_NARRATIVE_SHAPE = (
    "Write short paragraphs separated by blank lines. "
    "Every paragraph must contain at least one [[chunk:<chunk_id>]] marker."
)
_LIST_SHAPE = (
    "Write a Markdown bullet list, one item per line starting with \"- \". "
    "Every bullet must contain at least one [[chunk:<chunk_id>]] marker."
)


# ---------------------------------------------------------------------------
# Section templates
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class SectionTemplate:
    section_id: SectionId
    title: str
    kind: SectionKind
    version: str
    guidance: str

    def render(self, quarter_label: str, user_prompt: str, evidence_blocks: str) -> str:
        shape = _LIST_SHAPE if self.kind == SectionKind.LIST else _NARRATIVE_SHAPE
        return PROMPT_TEMPLATE.format(
            title=self.title,
            quarter_label=quarter_label,
            rules=RULES,
            shape=f"{self.guidance}\n{shape}",
            user_prompt=user_prompt.strip() or "(none)",
            evidence_blocks=evidence_blocks,
        )


SECTION_TEMPLATES: dict[SectionId, SectionTemplate] = {
    SectionId.EXEC_SUMMARY: SectionTemplate(
        section_id=SectionId.EXEC_SUMMARY,
        title="executive summary",
        kind=SectionKind.NARRATIVE,
        version="exec_summary.v1",
        guidance="Summarise the quarter's most important incidents and their business impact.",
    ),
    SectionId.INCIDENT_HIGHLIGHTS_TOP_N: SectionTemplate(
        section_id=SectionId.INCIDENT_HIGHLIGHTS_TOP_N,
        title="incident highlights",
        kind=SectionKind.LIST,
        version="incident_highlights_top_n.v1",
        guidance="List the most significant incidents: severity, service, impact, and resolution.",
    ),
    SectionId.THEME_ANALYSIS: SectionTemplate(
        section_id=SectionId.THEME_ANALYSIS,
        title="theme analysis",
        kind=SectionKind.LIST,
        version="theme_analysis.v1",
        guidance="List recurring themes across incidents (vendors, services, detection gaps).",
    ),
    SectionId.ACTION_PLAN_NEXT_QUARTER: SectionTemplate(
        section_id=SectionId.ACTION_PLAN_NEXT_QUARTER,
        title="action plan for next quarter",
        kind=SectionKind.LIST,
        version="action_plan_next_quarter.v1",
        guidance="List concrete follow-up actions, each tied to the evidence that motivates it.",
    ),
    SectionId.QUARTER_NARRATIVE_RECAP: SectionTemplate(
        section_id=SectionId.QUARTER_NARRATIVE_RECAP,
        title="quarter narrative recap",
        kind=SectionKind.NARRATIVE,
        version="quarter_narrative_recap.v1",
        guidance="Tell the story of the quarter in chronological order.",
    ),
}


def template_for(section_id: SectionId) -> SectionTemplate:
    return SECTION_TEMPLATES[section_id]
