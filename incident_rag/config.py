"""
Configuration loading.

Built-in defaults are deep-merged with an optional YAML file, then a small
set of environment variables (read after python-dotenv loads `.env`) take
precedence.  Components receive plain dict sections, the same way the
rest of the pipeline is configured.
"""
from __future__ import annotations

import copy
import os
from pathlib import Path
from typing import Any, Optional

import yaml
from dotenv import load_dotenv
from loguru import logger


DEFAULT_CONFIG_PATH = "config/config.yaml"

DEFAULTS: dict[str, Any] = {
    "storage": {"root": "data/evidence"},
    "ollama": {
        "base_url": "http://127.0.0.1:11434",
        "timeouts": {"health": 0.8, "embeddings": 10.0, "generate": 30.0},
        "max_attempts": 3,
        "backoff_seconds": 0.5,
    },
    "models": {"embedding": "nomic-embed-text", "generation": "llama3.1:8b"},
    "chunking": {"max_chars": 1600},
    "evidence": {"max_context_window": 50},
    "retrieval": {"top_k": 8},
    "logging": {
        "level": "INFO",
        "file": "logs/incident_rag.log",
        "rotation": "10 MB",
        "retention": "7 days",
        "json": False,
    },
}

# env var -> (section, key)
_ENV_OVERRIDES: dict[str, tuple[str, str]] = {
    "INCIDENT_RAG_STORE_ROOT": ("storage", "root"),
    "INCIDENT_RAG_OLLAMA_URL": ("ollama", "base_url"),
    "INCIDENT_RAG_EMBED_MODEL": ("models", "embedding"),
    "INCIDENT_RAG_GENERATE_MODEL": ("models", "generation"),
    "INCIDENT_RAG_LOG_LEVEL": ("logging", "level"),
}


def _deep_merge(base: dict, override: dict) -> dict:
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_config(path: Optional[str] = None, use_env: bool = True) -> dict:
    """
    Resolve the effective configuration.

    A missing file at the default path is fine (defaults apply); a missing
    file at an explicitly requested path raises FileNotFoundError.
    """
    cfg = copy.deepcopy(DEFAULTS)

    cfg_path = Path(path or DEFAULT_CONFIG_PATH)
    if cfg_path.exists():
        with open(cfg_path, "r", encoding="utf-8") as f:
            loaded = yaml.safe_load(f) or {}
        if not isinstance(loaded, dict):
            raise ValueError(f"Config file {cfg_path} must contain a mapping")
        cfg = _deep_merge(cfg, loaded)
        logger.debug(f"[Config] Loaded {cfg_path}")
    elif path:
        raise FileNotFoundError(f"Config file not found: {cfg_path}")

    if use_env:
        load_dotenv()
        for env_name, (section, key) in _ENV_OVERRIDES.items():
            value = os.getenv(env_name)
            if value:
                cfg.setdefault(section, {})[key] = value

    return cfg
