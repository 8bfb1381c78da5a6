"""
Structured error type shared by every layer.

Each failure carries a stable code, a human message, optional diagnostic
detail, and a retryable flag.  Only transport failures against the
embedding / generation provider are retryable.
"""
from __future__ import annotations

from enum import Enum
from typing import Optional


class ErrorCode(str, Enum):
    EVIDENCE_SOURCE_INVALID = "AI_EVIDENCE_SOURCE_INVALID"
    EVIDENCE_NOT_FOUND = "AI_EVIDENCE_NOT_FOUND"
    EVIDENCE_STORE_FAILED = "AI_EVIDENCE_STORE_FAILED"
    EVIDENCE_EMPTY = "AI_EVIDENCE_EMPTY"
    EVIDENCE_CONTEXT_INVALID = "AI_EVIDENCE_CONTEXT_INVALID"
    CITATION_REQUIRED = "AI_CITATION_REQUIRED"
    CITATION_INVALID = "AI_CITATION_INVALID"
    INDEX_NOT_READY = "AI_INDEX_NOT_READY"
    INDEX_BUILD_FAILED = "AI_INDEX_BUILD_FAILED"
    EMBEDDINGS_FAILED = "AI_EMBEDDINGS_FAILED"
    RETRIEVAL_FAILED = "AI_RETRIEVAL_FAILED"
    DRAFT_FAILED = "AI_DRAFT_FAILED"
    DRAFT_INVALID = "AI_DRAFT_INVALID"
    REMOTE_NOT_ALLOWED = "AI_REMOTE_NOT_ALLOWED"
    OLLAMA_UNHEALTHY = "AI_OLLAMA_UNHEALTHY"


class RagError(Exception):
    """Single structured failure raised by stores, providers, and the drafter."""

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        details: Optional[str] = None,
        retryable: bool = False,
    ) -> None:
        super().__init__(f"[{code.value}] {message}")
        self.code = code
        self.message = message
        self.details = details
        self.retryable = retryable

    def to_dict(self) -> dict:
        return {
            "code": self.code.value,
            "message": self.message,
            "details": self.details,
            "retryable": self.retryable,
        }
