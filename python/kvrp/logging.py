"""Structured logging configuration using structlog.

Provides JSON-formatted logs with consistent context including:
- session_user: Display name of the session driving the feed (when available)
- feed: Feed name (public_chat, posts, ...) for sync events
- channel: Realtime channel name for subscription events
- timestamp: ISO8601 formatted timestamp

Message bodies are never logged. Log ids, counts and lengths instead.

Usage:
    from kvrp.logging import get_logger, configure_logging

    # Configure once at startup
    configure_logging()

    # Get a logger for a module
    logger = get_logger(__name__)
    logger.info("something_happened", extra_field="value")
"""

import logging
import sys
from contextvars import ContextVar

import structlog

# Context variables for session-scoped logging
session_user_var: ContextVar[str | None] = ContextVar("session_user", default=None)
feed_var: ContextVar[str | None] = ContextVar("feed", default=None)
channel_var: ContextVar[str | None] = ContextVar("channel", default=None)


def add_session_context(logger: logging.Logger, method_name: str, event_dict: dict) -> dict:
    """Add session context to all log entries.

    Injects all non-None ContextVar values into the log event dict.
    Explicit keyword fields on the log call win over context values.
    """
    session_user = session_user_var.get()
    feed = feed_var.get()
    channel = channel_var.get()

    if session_user:
        event_dict.setdefault("session_user", session_user)
    if feed:
        event_dict.setdefault("feed", feed)
    if channel:
        event_dict.setdefault("channel", channel)

    return event_dict


def configure_logging(json_format: bool = True, level: int = logging.INFO) -> None:
    """Configure structlog for the application.

    Args:
        json_format: If True, output JSON logs. If False, output console-friendly logs.
        level: Root log level.
    """
    shared_processors = [
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        add_session_context,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    if json_format:
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=shared_processors
        + [
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )

    root_logger = logging.getLogger()
    root_logger.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)
    root_logger.addHandler(handler)
    root_logger.setLevel(level)

    # Silence noisy loggers
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("websockets").setLevel(logging.WARNING)


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Get a structlog logger for the given name.

    Args:
        name: Logger name (typically __name__).

    Returns:
        A bound structlog logger.
    """
    return structlog.get_logger(name)


def set_session_context(session_user: str | None) -> None:
    """Set the session user for the current async context."""
    session_user_var.set(session_user)


def set_feed_context(feed: str | None, channel: str | None = None) -> None:
    """Set feed (and optionally channel) for the current async context.

    asyncio tasks copy the context when they are created, so a feed that sets
    this before spawning its listener gets tagged events from the listener too.
    """
    feed_var.set(feed)
    if channel is not None:
        channel_var.set(channel)


def clear_session_context() -> None:
    """Clear all session-scoped context."""
    session_user_var.set(None)
    feed_var.set(None)
    channel_var.set(None)
