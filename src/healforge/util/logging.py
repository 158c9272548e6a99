"""Logging helpers with secret redaction."""

from __future__ import annotations

import logging
import re
from typing import Iterable

_ROOT_LOGGER = "healforge"
_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"

_REDACTIONS = [
    (re.compile(r"Bearer\s+[A-Za-z0-9\-_.]+"), "Bearer [REDACTED]"),
    (re.compile(r"sk-[A-Za-z0-9]+"), "sk-[REDACTED]"),
    (re.compile(r"gh[pousr]_[A-Za-z0-9]{20,}"), "gh_[REDACTED]"),
]


def redact(text: str, extra_secrets: Iterable[str] | None = None) -> str:
    """Mask API keys, bearer tokens and explicit secrets in text."""
    redacted = text
    for pattern, replacement in _REDACTIONS:
        redacted = pattern.sub(replacement, redacted)
    for secret in extra_secrets or ():
        if secret:
            redacted = redacted.replace(secret, "[REDACTED]")
    return redacted


def configure_logging(level: str | int = logging.INFO) -> None:
    root = logging.getLogger(_ROOT_LOGGER)
    if not root.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(_FORMAT))
        root.addHandler(handler)
    root.setLevel(level.upper() if isinstance(level, str) else level)


def get_logger(name: str) -> logging.Logger:
    """Return a logger in the healforge tree, configuring the root once."""
    if not logging.getLogger(_ROOT_LOGGER).handlers:
        configure_logging()
    if name != _ROOT_LOGGER and not name.startswith(f"{_ROOT_LOGGER}."):
        name = f"{_ROOT_LOGGER}.{name}"
    return logging.getLogger(name)
