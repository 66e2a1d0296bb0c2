"""
cloudbase_manager.tier0_core.logging
─────────────────────────────────────
Structured logs for API calls, saga steps and batch runs. Events are
dotted names (``cloud_api.request``, ``provisioning.rollback``) and carry
key/value fields; secret-bearing keys are redacted before rendering.

``log_context(env_id=...)`` scopes fields to the current task, so every
event emitted while provisioning or loading an environment names it.

Minimal stack: structlog (stdout JSON or console)
Configure via: CLOUDBASE_LOG_LEVEL, CLOUDBASE_LOG_FORMAT=json|console
"""
from __future__ import annotations

import contextlib
import logging
import sys
from typing import Any, Iterator

import structlog

from cloudbase_manager.tier0_core.config import get_config
from cloudbase_manager.tier0_core.redact import structlog_redact_processor

ROOT_LOGGER = "cloudbase_manager"

_configured = False
_handler: logging.Handler | None = None


def _level(name: str) -> int:
    return getattr(logging, name.upper(), logging.INFO)


# ── Configuration ─────────────────────────────────────────────────────────────

def configure_logging(level: str | None = None, fmt: str | None = None) -> None:
    """
    (Re)configure structlog and the ``cloudbase_manager`` stdlib logger.
    Arguments override CLOUDBASE_LOG_LEVEL / CLOUDBASE_LOG_FORMAT. Safe to
    call repeatedly; the stdout handler is replaced, never stacked.
    """
    global _configured, _handler
    config = get_config()
    log_level = _level(level or config.log_level)
    renderer: Any = (
        structlog.dev.ConsoleRenderer()
        if (fmt or config.log_format) == "console"
        else structlog.processors.JSONRenderer()
    )

    pre_chain: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog_redact_processor,
    ]
    structlog.configure(
        processors=pre_chain + [structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=False,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=pre_chain,
        processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
    ))

    root = logging.getLogger(ROOT_LOGGER)
    if _handler is not None:
        root.removeHandler(_handler)
    root.addHandler(handler)
    root.setLevel(log_level)
    root.propagate = False
    _handler = handler
    _configured = True


# ── Public API ────────────────────────────────────────────────────────────────

def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """
    Usage:
        log = get_logger(__name__)
        log.info("cloud_api.request", service="tcb", action="DescribeEnvs")
    """
    if not _configured:
        configure_logging()
    return structlog.get_logger(name or ROOT_LOGGER)


@contextlib.contextmanager
def log_context(**fields: Any) -> Iterator[None]:
    """Attach ``fields`` to every event logged inside the block, then restore."""
    with structlog.contextvars.bound_contextvars(**fields):
        yield


__all__ = ["get_logger", "configure_logging", "log_context", "ROOT_LOGGER"]
