"""
Text Generator
---------------
Generation provider interface plus the loopback Ollama implementation.

The drafter depends only on the `TextGenerator` protocol; tests pass a
stub that returns canned Markdown.
"""
from __future__ import annotations

from typing import Optional, Protocol

from loguru import logger

from incident_rag.errors import ErrorCode, RagError
from incident_rag.providers.ollama import GENERATE_TIMEOUT, OllamaClient


class TextGenerator(Protocol):
    def generate(self, model: str, prompt: str) -> str:
        ...


class OllamaGenerator:
    """
    Non-streaming completion through Ollama `/api/generate`.

    Usage:
        gen = OllamaGenerator(OllamaClient("http://127.0.0.1:11434"))
        markdown = gen.generate("llama3.1:8b", prompt)
    """

    def __init__(self, client: Optional[OllamaClient] = None, timeout: float = GENERATE_TIMEOUT) -> None:
        self.client = client or OllamaClient()
        self.timeout = timeout

    @classmethod
    def from_config(cls, config: dict, client: Optional[OllamaClient] = None) -> "OllamaGenerator":
        timeout = config.get("ollama", {}).get("timeouts", {}).get("generate", GENERATE_TIMEOUT)
        return cls(client or OllamaClient.from_config(config), timeout=timeout)

    @property
    def endpoint(self) -> str:
        return self.client.base_url

    def generate(self, model: str, prompt: str) -> str:
        logger.debug(f"[Generator] {model} | prompt={len(prompt)} chars")
        body = self.client.post_json(
            "/api/generate",
            {"model": model, "prompt": prompt, "stream": False},
            timeout=self.timeout,
            error_code=ErrorCode.DRAFT_FAILED,
            what="generate",
        )
        text = body.get("response") if isinstance(body, dict) else None
        if not isinstance(text, str) or not text.strip():
            raise RagError(ErrorCode.DRAFT_FAILED, "Ollama returned an empty response")

        logger.info(f"[Generator] {model} | {len(text)} chars generated")
        return text
