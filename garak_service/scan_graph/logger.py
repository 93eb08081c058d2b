from __future__ import annotations

import logging
import os
import re


def _build_logger() -> logging.Logger:
    logger = logging.getLogger("garak_service.scan")
    if logger.handlers:
        return logger

    level_name = os.getenv("SCAN_LOG_LEVEL", "INFO").upper()
    level = getattr(logging, level_name, logging.INFO)

    handler = logging.StreamHandler()
    formatter = logging.Formatter("%(asctime)s | %(levelname)s | %(message)s")
    handler.setFormatter(formatter)

    logger.addHandler(handler)
    logger.setLevel(level)
    logger.propagate = False
    return logger


scan_logger = _build_logger()

_REDACTION_PATTERNS = [
    r"(?i)(authorization\s*[\"']?\s*:\s*[\"']?bearer\s+)[^\s\"']+",
    r"(?i)(api[_-]?key\s*[\"']?\s*[=:]\s*[\"']?)[^\s\"']+",
    r"(?i)(token\s*[\"']?\s*[=:]\s*[\"']?)[^\s\"']+",
]


def redact(text: str) -> str:
    if not text:
        return ""
    redacted = text
    for pattern in _REDACTION_PATTERNS:
        redacted = re.sub(pattern, r"\1[REDACTED]", redacted)
    return redacted


def log_agent(scan_id: str, agent: str, message: str) -> None:
    scan_logger.info("[scan:%s] [%s] %s", scan_id, agent, message)


def warn_agent(scan_id: str, agent: str, message: str) -> None:
    scan_logger.warning("[scan:%s] [%s] %s", scan_id, agent, message)
