"""Shared fixtures and provider stubs."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import pytest

from incident_rag.errors import ErrorCode, RagError
from incident_rag.evidence.store import EvidenceStore
from incident_rag.embedding.index_store import IndexStore
from incident_rag.schemas import (
    EvidenceAddSourceInput,
    EvidenceOrigin,
    EvidenceSource,
    EvidenceSourceType,
)

CREATED_AT = "2026-01-01T00:00:00Z"


class CountingEmbedder:
    """Embeds text as [count('a'), count('b')] and records every call."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, str]] = []

    def embed(self, model: str, text: str) -> list[float]:
        self.calls.append((model, text))
        return [float(text.count("a")), float(text.count("b"))]


class MappingEmbedder:
    """Returns a fixed vector per exact text; unknown text gets the default."""

    def __init__(self, vectors: dict[str, list[float]], default: Optional[list[float]] = None) -> None:
        self.vectors = vectors
        self.default = default if default is not None else [1.0, 0.0]
        self.calls = 0

    def embed(self, model: str, text: str) -> list[float]:
        self.calls += 1
        return list(self.vectors.get(text, self.default))


class FailingEmbedder:
    def __init__(self, retryable: bool = True) -> None:
        self.retryable = retryable

    def embed(self, model: str, text: str) -> list[float]:
        raise RagError(ErrorCode.EMBEDDINGS_FAILED, "connection refused", retryable=self.retryable)


class StubGenerator:
    """Returns canned output and keeps the prompts it was given."""

    def __init__(self, output: str) -> None:
        self.output = output
        self.prompts: list[str] = []

    def generate(self, model: str, prompt: str) -> str:
        self.prompts.append(prompt)
        return self.output


@pytest.fixture
def store(tmp_path: Path) -> EvidenceStore:
    return EvidenceStore(tmp_path / "evidence")


@pytest.fixture
def index(store: EvidenceStore) -> IndexStore:
    return IndexStore(store.root)


def add_paste(
    store: EvidenceStore,
    text: str,
    source_type: EvidenceSourceType = EvidenceSourceType.FREEFORM_TEXT,
    label: str = "notes",
) -> EvidenceSource:
    return store.add_source(
        EvidenceAddSourceInput(
            type=source_type,
            origin=EvidenceOrigin(kind="paste"),
            label=label,
            created_at=CREATED_AT,
            text=text,
        )
    )
