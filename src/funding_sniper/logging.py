"""Structured logging for the funding sniper bot.

Every log line from a run carries the trading mode (paper or live). Lines
emitted while handling a position carry its symbol and stop order id, which
is how a deferred profit check firing minutes after entry can be tied back
to the position it was scheduled for.
"""

import logging
import os
from contextlib import AbstractContextManager
from decimal import Decimal
from enum import Enum

import structlog


def render_trading_values(
    logger: object, method_name: str, event_dict: dict
) -> dict:
    """Render Decimal prices and enum states as plain strings.

    JSON output would otherwise show Decimal('99.3') and PositionState.OPEN.
    """
    for key, value in event_dict.items():
        if isinstance(value, Enum):
            event_dict[key] = value.value
        elif isinstance(value, Decimal):
            event_dict[key] = str(value)
    return event_dict


def setup_logging(log_level: str = "INFO", mode: str | None = None) -> None:
    """Configure structlog over stdlib logging.

    Args:
        log_level: Root log level name.
        mode: Trading mode bound to every subsequent log line.

    Rendering is chosen by the LOG_FORMAT environment variable: "json" for
    machine-readable output, "console" (default) otherwise.
    """
    log_format = os.environ.get("LOG_FORMAT", "console").lower()

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        render_trading_values,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if log_format == "json":
        renderer: structlog.types.Processor = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler()
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                renderer,
            ],
        )
    )

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))

    # ccxt logs every request at DEBUG
    logging.getLogger("ccxt").setLevel(logging.WARNING)

    structlog.contextvars.clear_contextvars()
    if mode is not None:
        structlog.contextvars.bind_contextvars(mode=mode)


def position_context(
    symbol: str, stop_order_id: str | None
) -> AbstractContextManager[None]:
    """Bind a position's identity to log lines emitted inside the block.

    Tasks created inside the block copy the binding, so a deferred check
    keeps logging under the position it was scheduled for.
    """
    return structlog.contextvars.bound_contextvars(
        symbol=symbol, stop_order_id=stop_order_id
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Return a bound structlog logger with the given name."""
    return structlog.get_logger(name)
