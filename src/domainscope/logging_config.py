"""Process-wide logging setup.

``setup_logging`` configures the root logger and has to run before
``domainscope.llm.provider`` is imported: litellm reads ``LITELLM_LOG``
when it is first imported. ``cleanup_third_party_handlers`` runs after
that import and strips the handlers litellm attaches to its own loggers,
so their records reach the root handler exactly once.

Both calls are idempotent.
"""

import logging
import os
from dataclasses import dataclass

LOG_FORMAT = "%(asctime)s - %(levelname)s - [%(name)s] - %(message)s"
LOG_DATEFMT = "%Y-%m-%dT%H:%M:%S"

LITELLM_LOGGERS = ("LiteLLM", "LiteLLM Router", "LiteLLM Proxy")

# Capped at WARNING regardless of the configured level
QUIET_LOGGERS = (*LITELLM_LOGGERS, "httpx", "aiosqlite", "sqlalchemy.engine")


@dataclass
class _SetupFlags:
    root_configured: bool = False
    handlers_cleaned: bool = False


_flags = _SetupFlags()


def resolve_level(level: str | int) -> int:
    """Numeric level for ``"debug"``, ``"INFO"``, 10 ...; unknown means INFO."""
    if isinstance(level, int):
        return level
    return logging.getLevelNamesMapping().get(level.upper(), logging.INFO)


def setup_logging(level: str | int = "INFO") -> None:
    if _flags.root_configured:
        return
    _flags.root_configured = True

    os.environ.setdefault("LITELLM_LOG", "WARNING")
    logging.basicConfig(
        level=resolve_level(level),
        format=LOG_FORMAT,
        datefmt=LOG_DATEFMT,
    )
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def cleanup_third_party_handlers() -> None:
    if _flags.handlers_cleaned:
        return
    _flags.handlers_cleaned = True

    for name in LITELLM_LOGGERS:
        lg = logging.getLogger(name)
        lg.handlers.clear()
        lg.propagate = True

