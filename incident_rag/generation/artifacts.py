"""
Draft Artifact Ledger
----------------------
Persists validated drafts under <store root>/drafts/<artifact_hash>.json.

The artifact hash covers every recorded field (quarter, section, text,
cited chunk IDs, model metadata and created_at), so the same draft saved
twice at the same timestamp lands on the same file.
"""
from __future__ import annotations

import re
from pathlib import Path
from typing import Optional

import orjson
from loguru import logger
from pydantic import ValidationError

from incident_rag.errors import ErrorCode, RagError
from incident_rag.schemas import AiDraftArtifact, AiDraftResponse
from incident_rag.utils.helpers import canonical_hash, load_json, save_json


_SAFE_HASH = re.compile(r"^[0-9a-f]{64}$")


class DraftArtifactStore:
    """
    File-backed ledger of accepted section drafts.

    Usage:
        ledger = DraftArtifactStore(Path("data/evidence"))
        artifact = ledger.save(response, "Q1 2026", "2026-04-01T00:00:00Z")
    """

    def __init__(self, root: str | Path) -> None:
        self.root = Path(root)

    @classmethod
    def from_config(cls, config: dict) -> "DraftArtifactStore":
        return cls(config.get("storage", {}).get("root", "data/evidence"))

    @property
    def drafts_dir(self) -> Path:
        return self.root / "drafts"

    def _path(self, artifact_hash: str) -> Path:
        return self.drafts_dir / f"{artifact_hash}.json"

    def save(self, response: AiDraftResponse, quarter_label: str, created_at: str) -> AiDraftArtifact:
        citation_chunk_ids = [c.chunk_id for c in response.citations]
        if not citation_chunk_ids:
            raise RagError(
                ErrorCode.CITATION_REQUIRED,
                "At least one citation chunk_id is required to store a draft",
            )
        if not quarter_label.strip():
            raise RagError(ErrorCode.DRAFT_INVALID, "quarter_label is required")
        if not response.markdown.strip():
            raise RagError(ErrorCode.DRAFT_INVALID, "draft text is required")
        if not (
            response.model_name.strip()
            and response.model_params_hash.strip()
            and response.prompt_template_version.strip()
        ):
            raise RagError(ErrorCode.DRAFT_INVALID, "model metadata is required")

        payload = {
            "quarter_label": quarter_label,
            "section_id": response.section_id.value,
            "markdown": response.markdown,
            "citation_chunk_ids": citation_chunk_ids,
            "model_name": response.model_name,
            "model_params_hash": response.model_params_hash,
            "prompt_template_version": response.prompt_template_version,
            "created_at": created_at,
        }
        artifact = AiDraftArtifact(
            artifact_hash=canonical_hash(payload),
            citations=response.citations,
            **payload,
        )

        path = self._path(artifact.artifact_hash)
        try:
            save_json(artifact.model_dump(mode="json"), path)
        except (OSError, TypeError) as exc:
            raise RagError(
                ErrorCode.EVIDENCE_STORE_FAILED,
                "Failed to store draft artifact",
                details=f"path={path}; err={exc}",
            ) from exc

        logger.info(
            f"[DraftLedger] Saved {artifact.artifact_hash[:12]} | {quarter_label} | "
            f"{artifact.section_id.value} | {len(citation_chunk_ids)} citation(s)"
        )
        return artifact

    def _load(self, path: Path) -> AiDraftArtifact:
        try:
            return AiDraftArtifact.model_validate(load_json(path))
        except (OSError, orjson.JSONDecodeError, ValidationError) as exc:
            raise RagError(
                ErrorCode.EVIDENCE_STORE_FAILED,
                "Failed to decode draft artifact",
                details=f"path={path}; err={exc}",
            ) from exc

    def get(self, artifact_hash: str) -> AiDraftArtifact:
        path = self._path(artifact_hash)
        if not _SAFE_HASH.match(artifact_hash) or not path.is_file():
            raise RagError(
                ErrorCode.DRAFT_INVALID,
                "Draft artifact not found",
                details=f"artifact_hash={artifact_hash}",
            )
        return self._load(path)

    def list(self, quarter_label: Optional[str] = None) -> list[AiDraftArtifact]:
        """Saved drafts ordered by created_at, then artifact_hash."""
        if not self.drafts_dir.is_dir():
            return []
        artifacts = [self._load(p) for p in sorted(self.drafts_dir.glob("*.json"))]
        if quarter_label is not None:
            artifacts = [a for a in artifacts if a.quarter_label == quarter_label]
        artifacts.sort(key=lambda a: (a.created_at, a.artifact_hash))
        return artifacts
