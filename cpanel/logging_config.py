"""
Structured logging configuration using structlog
JSON logs in production, colored console output in development
"""
import logging
import structlog
from typing import Any, Optional

_app_context: dict = {}


def add_app_context(logger: Any, method_name: str, event_dict: dict) -> dict:
    """Add application-level context to all log entries"""
    for key, value in _app_context.items():
        event_dict.setdefault(key, value)
    return event_dict


def drop_color_message_key(logger: Any, method_name: str, event_dict: dict) -> dict:
    """Remove the 'color_message' key uvicorn adds for colored output"""
    event_dict.pop('color_message', None)
    return event_dict


def configure_logging(
    log_level: str = "INFO",
    json_logs: bool = True,
    app: str = "cpanel",
    version: Optional[str] = None,
    environment: str = "production",
):
    """
    Configure structured logging for the control panel

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_logs: If True, output JSON logs. If False, use human-readable format
        app: Application name attached to every entry
        version: Application version attached to every entry
        environment: Deployment environment attached to every entry

    Usage:
        from cpanel.logging_config import configure_logging
        logger = configure_logging(settings.log_level, settings.json_logs)

        logger.info("config_saved", guild_id=guild_id, user_id=user_id)
    """
    _app_context.clear()
    _app_context.update({"app": app, "environment": environment})
    if version:
        _app_context["version"] = version

    shared_processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        add_app_context,
        drop_color_message_key,
    ]

    if json_logs:
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=True)

    structlog.configure(
        processors=[structlog.stdlib.filter_by_level] + shared_processors + [
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        processor=renderer,
        foreign_pre_chain=shared_processors,
    )

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)
    root_logger = logging.getLogger()
    root_logger.handlers = [handler]
    root_logger.setLevel(log_level.upper())

    return structlog.get_logger()


def get_logger(name: str = None):
    """Get a structlog logger, optionally named after the calling module"""
    if name:
        return structlog.get_logger(name)
    return structlog.get_logger()
