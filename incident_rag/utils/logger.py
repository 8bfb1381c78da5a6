"""
Loguru sinks for the evidence pipeline.

stderr carries the human-readable stream so `--json` command output on
stdout stays machine-parseable.  The optional file sink is the audit
trail of builds, queries and guardrail rejections; with `json: true` it
writes one serialised record per line.
"""
from __future__ import annotations

import sys
from pathlib import Path
from typing import Optional

from loguru import logger


CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{line}</cyan> - "
    "<level>{message}</level>"
)
FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{line} - {message}"


def _check_level(log_level: str) -> str:
    level = log_level.strip().upper()
    try:
        logger.level(level)
    except ValueError as exc:
        raise ValueError(f"Unknown log level: {log_level!r}") from exc
    return level


def setup_logger(
    log_level: str = "INFO",
    log_file: Optional[str] = "logs/incident_rag.log",
    rotation: str = "10 MB",
    retention: str = "7 days",
    serialize: bool = False,
) -> None:
    """Replace every loguru sink with the stderr sink and, if log_file is set, a rotating file sink."""
    level = _check_level(log_level)
    logger.remove()
    logger.add(sys.stderr, level=level, format=CONSOLE_FORMAT, colorize=True)

    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            log_file,
            level=level,
            format=FILE_FORMAT,
            rotation=rotation,
            retention=retention,
            compression="zip",
            serialize=serialize,
            enqueue=True,
        )

    logger.debug(f"[Logger] level={level} | file={log_file or '-'} | json={serialize}")


def setup_logger_from_config(config: dict) -> None:
    """Apply the `logging` section of a loaded config."""
    section = config.get("logging", {})
    setup_logger(
        log_level=str(section.get("level", "INFO")),
        log_file=section.get("file"),
        rotation=str(section.get("rotation", "10 MB")),
        retention=str(section.get("retention", "7 days")),
        serialize=bool(section.get("json", False)),
    )
