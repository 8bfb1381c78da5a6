"""
Sanitized Export Bundles
-------------------------
Reads the three companion files produced by the external metrics engine
(`incidents.json`, `timeline_events.json`, `warnings.json`) and renders one
evidence chunk per incident.

The bundle is read-only input: metrics are copied exactly as exported and
never recomputed, and timeline event text is never rendered (the export
only says whether it was redacted).
"""
from __future__ import annotations

from pathlib import Path
from typing import Optional, TypeVar

import orjson
from loguru import logger
from pydantic import BaseModel, ConfigDict, TypeAdapter, ValidationError

from incident_rag.chunking.schemas import ChunkDraft, EvidenceChunkMeta, EvidenceTimeRange
from incident_rag.errors import ErrorCode, RagError


BUNDLE_KIND = "sanitized_incident_bundle"
NULL = "NULL"

INCIDENTS_FILE = "incidents.json"
EVENTS_FILE = "timeline_events.json"
WARNINGS_FILE = "warnings.json"


# --- Export Models ------------------------------------------------------------

class SanitizedMetrics(BaseModel):
    model_config = ConfigDict(extra="ignore")

    mttd_seconds: Optional[int] = None
    it_awareness_lag_seconds: Optional[int] = None
    mtta_seconds: Optional[int] = None
    time_to_mitigation_seconds: Optional[int] = None
    mttr_seconds: Optional[int] = None


class SanitizedIncident(BaseModel):
    model_config = ConfigDict(extra="ignore")

    incident_key: str
    severity: Optional[str] = None
    detection_source: Optional[str] = None
    vendor: Optional[str] = None
    service: Optional[str] = None
    impact_pct: Optional[int] = None
    service_health_pct: Optional[int] = None
    start_ts: Optional[str] = None
    first_observed_ts: Optional[str] = None
    it_awareness_ts: Optional[str] = None
    ack_ts: Optional[str] = None
    mitigate_ts: Optional[str] = None
    resolve_ts: Optional[str] = None
    metrics: SanitizedMetrics
    warning_count: int


class SanitizedTimelineEvent(BaseModel):
    # Any free-text field present in the file is dropped here.
    model_config = ConfigDict(extra="ignore")

    incident_key: str
    source: str
    ts: Optional[str] = None
    kind: Optional[str] = None
    text_redacted: bool


class SanitizedWarning(BaseModel):
    model_config = ConfigDict(extra="ignore")

    incident_key: str
    code: str


T = TypeVar("T")


def _load_list(root: Path, filename: str, item_type: type[T]) -> list[T]:
    path = root / filename
    try:
        raw = path.read_bytes()
    except OSError as exc:
        raise RagError(
            ErrorCode.EVIDENCE_SOURCE_INVALID,
            f"Failed to read {filename} from sanitized export",
            details=f"path={path}; err={exc}",
        ) from exc
    try:
        return TypeAdapter(list[item_type]).validate_python(orjson.loads(raw))
    except (orjson.JSONDecodeError, ValidationError) as exc:
        raise RagError(
            ErrorCode.EVIDENCE_SOURCE_INVALID,
            f"Failed to decode {filename} from sanitized export",
            details=f"path={path}; err={exc}",
        ) from exc


# --- Rendering ----------------------------------------------------------------

def _fmt(value: object) -> str:
    return NULL if value is None else str(value)


def render_incident(
    incident: SanitizedIncident,
    events: list[SanitizedTimelineEvent],
    warnings: list[SanitizedWarning],
) -> str:
    """Render one incident as a plain-text evidence block."""
    m = incident.metrics
    lines = [
        f"Incident Key: {incident.incident_key}",
        f"Severity: {_fmt(incident.severity)}",
        f"Detection Source: {_fmt(incident.detection_source)}",
        f"Vendor: {_fmt(incident.vendor)}",
        f"Service: {_fmt(incident.service)}",
        f"Impact %: {_fmt(incident.impact_pct)}",
        f"Service Health %: {_fmt(incident.service_health_pct)}",
        "Timestamps (RFC3339, nullable):",
        f"  start_ts: {_fmt(incident.start_ts)}",
        f"  first_observed_ts: {_fmt(incident.first_observed_ts)}",
        f"  it_awareness_ts: {_fmt(incident.it_awareness_ts)}",
        f"  ack_ts: {_fmt(incident.ack_ts)}",
        f"  mitigate_ts: {_fmt(incident.mitigate_ts)}",
        f"  resolve_ts: {_fmt(incident.resolve_ts)}",
        "Deterministic metrics (seconds, nullable):",
        f"  mttd_seconds: {_fmt(m.mttd_seconds)}",
        f"  it_awareness_lag_seconds: {_fmt(m.it_awareness_lag_seconds)}",
        f"  mtta_seconds: {_fmt(m.mtta_seconds)}",
        f"  time_to_mitigation_seconds: {_fmt(m.time_to_mitigation_seconds)}",
        f"  mttr_seconds: {_fmt(m.mttr_seconds)}",
        f"Warning count: {incident.warning_count}",
    ]

    codes = sorted({w.code for w in warnings})
    if codes:
        lines.append("Warnings (codes):")
        lines.extend(f"  - {code}" for code in codes)

    if events:
        lines.append("Timeline events (sanitized):")
        for e in events:
            redacted = "true" if e.text_redacted else "false"
            lines.append(
                f"  - ts={_fmt(e.ts)}; source={e.source}; kind={_fmt(e.kind)}; "
                f"text_redacted={redacted}"
            )

    return "\n".join(lines)


def chunk_sanitized_export(directory: str | Path) -> list[ChunkDraft]:
    """
    Build one ChunkDraft per incident, ordered by ascending incident_key.

    Any unreadable or undecodable companion file fails the whole bundle so
    no partial chunk set is ever produced.
    """
    root = Path(directory)
    if not root.is_dir():
        raise RagError(
            ErrorCode.EVIDENCE_SOURCE_INVALID,
            "Sanitized export origin must be a directory",
            details=f"path={root}",
        )

    incidents = _load_list(root, INCIDENTS_FILE, SanitizedIncident)
    events = _load_list(root, EVENTS_FILE, SanitizedTimelineEvent)
    warnings = _load_list(root, WARNINGS_FILE, SanitizedWarning)

    incidents.sort(key=lambda inc: inc.incident_key)

    drafts: list[ChunkDraft] = []
    for ordinal, inc in enumerate(incidents):
        key = inc.incident_key
        text = render_incident(
            inc,
            [e for e in events if e.incident_key == key],
            [w for w in warnings if w.incident_key == key],
        )
        drafts.append(
            ChunkDraft(
                ordinal=ordinal,
                text=text,
                token_count_est=len(text),
                meta=EvidenceChunkMeta(
                    kind=BUNDLE_KIND,
                    incident_keys=[key],
                    time_range=EvidenceTimeRange(start_ts=inc.start_ts, end_ts=inc.resolve_ts),
                ),
            )
        )

    logger.debug(
        f"[Chunker] Sanitized export {root} | {len(incidents)} incidents | "
        f"{len(events)} events | {len(warnings)} warnings"
    )
    return drafts
