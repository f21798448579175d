"""Structured logging for the swap coordinator, built on structlog.

Console rendering while developing, one JSON object per line otherwise. Log
entries emitted while the coordinator works on a leg carry `swap_id` and
`role` from structlog's context variables (see swap_context).

A secret preimage must never reach a log sink before it is revealed
on-chain, so values under the keys in REDACTED_KEYS are masked by a
processor that runs before any renderer.

Usage:
    from htlc_swap.logging_config import setup_logging, get_logger
    setup_logging(log_level="DEBUG", json_logs=False)
    logger = get_logger(__name__)
    logger.info("leg.deployed", role="source", address="0xabc...")
"""

from __future__ import annotations

import logging
import sys
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any

import structlog

if TYPE_CHECKING:
    from collections.abc import Iterator, MutableMapping

    from htlc_swap.config import Settings

REDACTED_KEYS = frozenset({"secret", "preimage", "revealed_secret"})

_QUIET_LOGGERS = ("redis", "asyncio")


def redact_secrets(
    _logger: Any, _method: str, event_dict: MutableMapping[str, Any]
) -> MutableMapping[str, Any]:
    """Mask secret preimages, keeping a short prefix for correlation."""
    for key in REDACTED_KEYS.intersection(event_dict):
        value = event_dict[key]
        if isinstance(value, str) and value:
            event_dict[key] = f"{value[:6]}…<redacted>"
    return event_dict


def _pre_chain() -> list[structlog.types.Processor]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        redact_secrets,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]


def setup_logging(log_level: str = "INFO", json_logs: bool = False) -> None:
    """Configure structlog and hand its output to the stdlib root logger.

    Args:
        log_level: Standard Python level name (DEBUG, INFO, WARNING, ...).
        json_logs: Render JSON lines instead of colored console output.
    """
    renderer: structlog.types.Processor = (
        structlog.processors.JSONRenderer()
        if json_logs
        else structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())
    )

    structlog.configure(
        processors=[*_pre_chain(), structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
            foreign_pre_chain=_pre_chain(),
        )
    )

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(getattr(logging, log_level.upper(), logging.INFO))

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def setup_logging_from_settings(settings: Settings) -> None:
    """setup_logging with the level and format from Settings.

    JSON is used whenever `json_logs` is set or the app is not running in
    development.
    """
    setup_logging(
        log_level=settings.app_log_level,
        json_logs=settings.json_logs or not settings.is_development,
    )


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


@contextmanager
def swap_context(swap_id: str, **extra: str) -> Iterator[None]:
    """Bind swap_id (and any extra keys) to every log entry inside the block."""
    with structlog.contextvars.bound_contextvars(swap_id=swap_id, **extra):
        yield
