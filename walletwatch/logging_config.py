"""
Logging setup: stdlib loggers rendered through structlog.

Records carry the Solana network plus whatever wallet context is bound with
``wallet_context`` (address, operation), so a notification's log lines can
be followed across normalizer, classifier and event bus.
"""

import logging
import sys
from contextlib import contextmanager
from typing import Iterator, Optional

import structlog

from .config import settings

_NOISY_LOGGERS = ("uvicorn.access", "httpcore", "httpx", "websockets")


def _add_network(_, __, event_dict):
    event_dict.setdefault("network", settings.solana_network)
    return event_dict


@contextmanager
def wallet_context(address: str, operation: str) -> Iterator[None]:
    """Bind ``address`` and ``operation`` to every log record in this task."""
    with structlog.contextvars.bound_contextvars(address=address, operation=operation):
        yield


def setup_logging(log_level: Optional[str] = None, json_logs: Optional[bool] = None) -> None:
    """Route all logging through structlog.

    Console output at DEBUG, JSON lines otherwise unless ``json_logs`` says
    differently.
    """
    level = getattr(logging, (log_level or settings.log_level).upper(), logging.INFO)
    if json_logs is None:
        json_logs = level != logging.DEBUG

    pre_chain: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        _add_network,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
    ]

    renderer: structlog.types.Processor
    if json_logs:
        pre_chain.append(structlog.processors.format_exc_info)
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[*pre_chain, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=pre_chain,
            processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
        )
    )

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
