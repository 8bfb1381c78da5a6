"""
Loopback Ollama Client
-----------------------
Thin synchronous httpx wrapper shared by the Ollama embedder and generator.

Network policy: the base URL must be exactly `http://127.0.0.1[:port]`.
It is checked by parsing the URL structurally, not by prefix matching, so
look-alike hosts (`127.0.0.1.evil.com`), userinfo tricks
(`127.0.0.1@evil.com`), hostname aliases (`localhost`, `0.0.0.0`, `[::1]`)
and any path / query / fragment are all rejected.

Transport failures are raised as retryable RagErrors and retried with
tenacity; HTTP status and decode failures are terminal.
"""
from __future__ import annotations

import re
import time
from typing import Any, Optional
from urllib.parse import urlsplit

import httpx
from loguru import logger
from tenacity import Retrying, retry_if_exception, stop_after_attempt, wait_exponential

from incident_rag.errors import ErrorCode, RagError


LOOPBACK_HOST = "127.0.0.1"
DEFAULT_BASE_URL = "http://127.0.0.1:11434"

HEALTH_TIMEOUT = 0.8        # seconds
EMBED_TIMEOUT = 10.0
GENERATE_TIMEOUT = 30.0

_PORT = re.compile(r"[0-9]+")


def is_loopback_base_url(url: str) -> bool:
    """True only for http://127.0.0.1 with an optional port in 1..65535."""
    # urlsplit strips tab, CR and LF anywhere in the string before parsing.
    if any(ord(c) <= 0x20 or ord(c) == 0x7F for c in url):
        return False
    try:
        parts = urlsplit(url)
    except ValueError:
        return False
    if parts.scheme != "http":
        return False
    if parts.path or parts.query or parts.fragment:
        return False
    # urlsplit drops an empty '?' or '#'; the raw string must not carry one.
    if "?" in url or "#" in url:
        return False

    netloc = parts.netloc
    if "@" in netloc or any(c.isspace() for c in netloc):
        return False
    host, sep, port = netloc.partition(":")
    if host != LOOPBACK_HOST:
        return False
    if sep:
        if not _PORT.fullmatch(port):
            return False
        if not 0 < int(port) <= 65535:
            return False
    return True


def _is_retryable(exc: BaseException) -> bool:
    return isinstance(exc, RagError) and exc.retryable


class OllamaClient:
    """
    Validated loopback endpoint plus the HTTP plumbing for JSON calls.

    Usage:
        client = OllamaClient("http://127.0.0.1:11434")
        client.health_check()
    """

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        max_attempts: int = 3,
        backoff_seconds: float = 0.5,
        health_timeout: float = HEALTH_TIMEOUT,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        normalized = base_url.strip().rstrip("/")
        if not is_loopback_base_url(normalized):
            raise RagError(
                ErrorCode.REMOTE_NOT_ALLOWED,
                "Ollama base URL must be http://127.0.0.1[:port]",
                details=f"base_url={base_url}",
            )
        self.base_url = normalized
        self.max_attempts = max(1, int(max_attempts))
        self.backoff_seconds = backoff_seconds
        self.health_timeout = health_timeout
        self._transport = transport

    @classmethod
    def from_config(cls, config: dict) -> "OllamaClient":
        cfg = config.get("ollama", {})
        return cls(
            base_url=cfg.get("base_url", DEFAULT_BASE_URL),
            max_attempts=cfg.get("max_attempts", 3),
            backoff_seconds=cfg.get("backoff_seconds", 0.5),
            health_timeout=cfg.get("timeouts", {}).get("health", HEALTH_TIMEOUT),
        )

    def _client(self, timeout: float) -> httpx.Client:
        return httpx.Client(base_url=self.base_url, timeout=timeout, transport=self._transport)

    def health_check(self) -> None:
        """GET /api/tags with a short timeout; raises AI_OLLAMA_UNHEALTHY."""
        try:
            with self._client(self.health_timeout) as client:
                resp = client.get("/api/tags")
        except httpx.TransportError as exc:
            raise RagError(
                ErrorCode.OLLAMA_UNHEALTHY,
                f"Failed to reach Ollama on {LOOPBACK_HOST}",
                details=str(exc),
                retryable=True,
            ) from exc
        if resp.status_code != 200:
            raise RagError(
                ErrorCode.OLLAMA_UNHEALTHY,
                "Ollama health check failed",
                details=f"status={resp.status_code}",
            )

    def post_json(self, path: str, payload: dict, timeout: float, error_code: ErrorCode, what: str) -> Any:
        """
        POST a JSON body and return the decoded JSON response.

        Retryable failures are retried up to max_attempts times.
        """
        retrying = Retrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(multiplier=self.backoff_seconds, max=8),
            retry=retry_if_exception(_is_retryable),
            reraise=True,
        )
        for attempt in retrying:
            with attempt:
                return self._post_once(path, payload, timeout, error_code, what)

    def _post_once(self, path: str, payload: dict, timeout: float, error_code: ErrorCode, what: str) -> Any:
        start = time.perf_counter()
        try:
            with self._client(timeout) as client:
                resp = client.post(path, json=payload)
        except httpx.TransportError as exc:
            logger.warning(f"[Ollama] {what} transport failure: {exc}")
            raise RagError(
                error_code,
                f"Failed to call {what} endpoint",
                details=str(exc),
                retryable=True,
            ) from exc

        if resp.status_code != 200:
            raise RagError(error_code, f"{what.capitalize()} request failed", details=f"status={resp.status_code}")
        try:
            body = resp.json()
        except ValueError as exc:
            raise RagError(error_code, f"Failed to decode {what} response", details=str(exc)) from exc

        logger.debug(f"[Ollama] POST {path} | {time.perf_counter() - start:.2f}s")
        return body
