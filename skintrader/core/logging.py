"""structlog setup shared by every module.

JSON lines in production, colored console otherwise. Money values are
rendered as plain strings and secrets never reach the output. Trade
lifecycle events (reserve, release, buy, list, adjust, sold, reject) go
through ``log_trade_event`` so they can be filtered on ``event_type``.
"""

from __future__ import annotations

import logging
import os
import sys
from decimal import Decimal
from typing import Any, cast

import structlog

SECRET_FIELDS = frozenset({"apikey", "api_key", "password", "dsn", "database_url", "redis_url"})

_state: dict[str, Any] = {"configured": False, "level": "INFO"}


def _redact_secrets(
    _logger: Any, _method: str, event_dict: dict[str, Any]
) -> dict[str, Any]:
    for key in SECRET_FIELDS.intersection(event_dict):
        event_dict[key] = "****"
    return event_dict


def _decimals_as_str(
    _logger: Any, _method: str, event_dict: dict[str, Any]
) -> dict[str, Any]:
    for key, value in event_dict.items():
        if isinstance(value, Decimal):
            event_dict[key] = str(value)
    return event_dict


def configure_logging(env: str | None = None, level: str | None = None) -> None:
    """(Re)configure structlog.

    Args:
        env: ``production`` selects JSON output. Defaults to SKINTRADER_ENV.
        level: Minimum level name. Defaults to SKINTRADER_LOG_LEVEL, then INFO.
    """
    env = env or os.environ.get("SKINTRADER_ENV", "development")
    level_name = (level or os.environ.get("SKINTRADER_LOG_LEVEL", "INFO")).upper()
    numeric = logging.getLevelName(level_name)
    if not isinstance(numeric, int):
        level_name, numeric = "INFO", logging.INFO

    renderer: structlog.types.Processor
    if env == "production":
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            _redact_secrets,
            _decimals_as_str,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(numeric),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=False,
    )
    _state.update(configured=True, level=level_name)


def current_level() -> str:
    return str(_state["level"])


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Named logger; configures structlog from the environment on first use."""
    if not _state["configured"]:
        configure_logging()
    return cast(structlog.stdlib.BoundLogger, structlog.get_logger(name))


def log_trade_event(action: str, trade_id: str, **kwargs: Any) -> None:
    """Record one trade lifecycle step on the ``skintrader.audit`` logger.

    Args:
        action: reserve, release, buy, list, adjust, sold or reject.
        trade_id: Sale id or reservation id the event belongs to.
        **kwargs: Extra context (price, item, gate, reason).
    """
    get_logger("skintrader.audit").info(
        "trade_event", event_type="audit", action=action, trade_id=trade_id, **kwargs
    )
