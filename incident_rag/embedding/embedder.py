"""
Ollama Embedding Client
------------------------
Embeds one text per call through the loopback Ollama `/api/embeddings`
endpoint.

The index store and retriever depend only on the `Embedder` protocol, so
tests can pass any object with a matching `embed(model, text)` method.
"""
from __future__ import annotations

from typing import Optional, Protocol

from loguru import logger

from incident_rag.errors import ErrorCode, RagError
from incident_rag.providers.ollama import EMBED_TIMEOUT, OllamaClient


MAX_PROMPT_CHARS = 12_000  # longer prompts are truncated before sending


class Embedder(Protocol):
    def embed(self, model: str, text: str) -> list[float]:
        ...


class OllamaEmbedder:
    """
    Calls Ollama for one embedding vector per text.

    Vectors are returned as-is (no normalisation); cosine scoring happens
    in the retriever.
    """

    def __init__(self, client: Optional[OllamaClient] = None, timeout: float = EMBED_TIMEOUT) -> None:
        self.client = client or OllamaClient()
        self.timeout = timeout
        self.total_api_calls: int = 0

    @classmethod
    def from_config(cls, config: dict, client: Optional[OllamaClient] = None) -> "OllamaEmbedder":
        timeout = config.get("ollama", {}).get("timeouts", {}).get("embeddings", EMBED_TIMEOUT)
        return cls(client or OllamaClient.from_config(config), timeout=timeout)

    def embed(self, model: str, text: str) -> list[float]:
        """Embed a single string. Raises AI_EMBEDDINGS_FAILED on any failure."""
        body = self.client.post_json(
            "/api/embeddings",
            {"model": model, "prompt": text[:MAX_PROMPT_CHARS]},
            timeout=self.timeout,
            error_code=ErrorCode.EMBEDDINGS_FAILED,
            what="embeddings",
        )
        self.total_api_calls += 1

        embedding = body.get("embedding") if isinstance(body, dict) else None
        if not embedding:
            raise RagError(ErrorCode.EMBEDDINGS_FAILED, "Ollama returned an empty embedding")
        try:
            vector = [float(x) for x in embedding]
        except (TypeError, ValueError) as exc:
            raise RagError(
                ErrorCode.EMBEDDINGS_FAILED,
                "Ollama returned a non-numeric embedding",
                details=str(exc),
            ) from exc

        logger.debug(f"[Embedder] {model} | {len(text)} chars -> {len(vector)} dims")
        return vector
