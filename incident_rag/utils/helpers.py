"""Shared utility functions used across the evidence pipeline."""
from __future__ import annotations

import hashlib
import os
import tempfile
from pathlib import Path
from typing import Any

import orjson


SNIPPET_CHARS = 280


# --- Text Utilities -----------------------------------------------------------

def normalize_text(text: str) -> str:
    """Normalise line endings to LF (CRLF and lone CR both become LF)."""
    return text.replace("\r\n", "\n").replace("\r", "\n")


def snippet(text: str, max_chars: int = SNIPPET_CHARS) -> str:
    """Leading-text snippet for listings and query hits."""
    trimmed = text.strip()
    if len(trimmed) <= max_chars:
        return trimmed
    return trimmed[:max_chars] + "..."


# --- Hashing ------------------------------------------------------------------

def sha256_hex(data: str | bytes) -> str:
    if isinstance(data, str):
        data = data.encode("utf-8")
    return hashlib.sha256(data).hexdigest()


def _canonicalize(value: Any) -> Any:
    """Recursively sort object keys; arrays keep their order."""
    if isinstance(value, dict):
        return {k: _canonicalize(value[k]) for k in sorted(value)}
    if isinstance(value, (list, tuple)):
        return [_canonicalize(v) for v in value]
    return value


def canonical_json(value: Any) -> bytes:
    """
    Compact, key-sorted UTF-8 JSON used for every content-addressed ID.

    Two structures that differ only in key order serialise to the same
    bytes, so their hashes collide as intended.
    """
    return orjson.dumps(_canonicalize(value))


def canonical_hash(value: Any) -> str:
    return sha256_hex(canonical_json(value))


# --- File I/O -----------------------------------------------------------------

def atomic_write_bytes(path: str | Path, payload: bytes) -> None:
    """Write to a uniquely named sibling temp file, then rename it over the destination."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with tempfile.NamedTemporaryFile(
        dir=path.parent, prefix=path.name + ".", suffix=".tmp", delete=False
    ) as f:
        tmp = Path(f.name)
        try:
            f.write(payload)
            f.flush()
            os.fsync(f.fileno())
        except OSError:
            f.close()
            tmp.unlink(missing_ok=True)
            raise
    try:
        os.replace(tmp, path)
    except OSError:
        tmp.unlink(missing_ok=True)
        raise


def save_json(data: Any, path: str | Path) -> None:
    """Serialise data to JSON using orjson and commit it atomically."""
    atomic_write_bytes(path, orjson.dumps(data, option=orjson.OPT_INDENT_2 | orjson.OPT_NON_STR_KEYS))


def load_json(path: str | Path) -> Any:
    """Load JSON data from file."""
    with open(Path(path), "rb") as f:
        return orjson.loads(f.read())


def ensure_dirs(*paths: str | Path) -> None:
    """Create directories (and parents) if they don't exist."""
    for p in paths:
        Path(p).mkdir(parents=True, exist_ok=True)
