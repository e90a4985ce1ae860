"""
Logging setup and authorization context propagation.

Diagnostics from the resolution engine are emitted through structlog.
A correlation id (usually the inbound request id) can be bound for the
duration of an authorization context so every diagnostic carries it.

Usage:
    from rolegate.core.logging import configure_logging, bind_correlation_id

    configure_logging(settings)

    token = bind_correlation_id(request_id)
    try:
        ability = await Ability.build(db, user)
    finally:
        reset_correlation_id(token)
"""

from __future__ import annotations

import logging
import sys
from contextvars import ContextVar, Token
from typing import Any, Optional

import structlog

from rolegate.core.config import Settings


# Async-safe, one value per task
_correlation_id: ContextVar[Optional[str]] = ContextVar("correlation_id", default=None)
_actor_id: ContextVar[Optional[str]] = ContextVar("actor_id", default=None)


def get_correlation_id() -> Optional[str]:
    """Get the current correlation ID (None outside a bound context)."""
    return _correlation_id.get()


def bind_correlation_id(correlation_id: str) -> Token:
    """Bind a correlation id; returns the token for reset_correlation_id."""
    return _correlation_id.set(correlation_id)


def reset_correlation_id(token: Token) -> None:
    _correlation_id.reset(token)


def bind_actor(actor_id: Any) -> Token:
    """Bind the actor being evaluated so diagnostics name it."""
    return _actor_id.set(str(actor_id) if actor_id is not None else None)


def reset_actor(token: Token) -> None:
    _actor_id.reset(token)


def add_authorization_context(
    logger: Any,
    method_name: str,
    event_dict: dict[str, Any],
) -> dict[str, Any]:
    """Structlog processor that adds correlation and actor ids."""
    correlation_id = get_correlation_id()
    if correlation_id:
        event_dict["correlation_id"] = correlation_id

    actor_id = _actor_id.get()
    if actor_id and "actor_id" not in event_dict:
        event_dict["actor_id"] = actor_id

    return event_dict


def configure_logging(settings: Settings) -> None:
    """
    Configure stdlib logging and structlog.

    JSON output for production, console rendering for local work.
    """
    level = getattr(logging, settings.log_level.upper(), logging.INFO)
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)

    if settings.log_format == "json":
        renderer: Any = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            add_authorization_context,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        cache_logger_on_first_use=True,
    )
