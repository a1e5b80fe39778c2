# browsergate/utils/logger.py
"""
Centralized logging setup for browsergate.

This module configures the root logger with a JSON formatter and a session
filter so that every validator decision and recovery attempt can be traced
back to the browser session that produced it.
"""
import logging
import os
import sys
from pathlib import Path
from typing import Any, MutableMapping, Optional

from pythonjsonlogger import jsonlogger

from browsergate.utils.log_sinks import JsonlFileHandler, SessionIdFilter

_LOGGING_CONFIGURED = False
_CONFIGURING = False

LOG_FORMAT = "%(asctime)s %(name)s %(levelname)s %(session_id)s %(tool_name)s %(message)s"


class StructuredLoggerAdapter(logging.LoggerAdapter):
    """Extends the standard logging adapter to support structured logging.

    A dictionary passed via `extra` is nested under an `extra_data` key so
    that it never collides with reserved LogRecord attributes.
    """

    def process(
        self, msg: str, kwargs: MutableMapping[str, Any]
    ) -> tuple[str, MutableMapping[str, Any]]:
        """Processes the log message and keyword arguments.

        :param msg: The original log message.
        :type msg: str
        :param kwargs: The keyword arguments passed to the log call.
        :type kwargs: MutableMapping[str, Any]
        :return: The processed message and keyword arguments.
        :rtype: tuple[str, MutableMapping[str, Any]]
        """
        original_extra_content = kwargs.get("extra")
        if original_extra_content is not None:
            kwargs["extra"] = {"extra_data": original_extra_content}
        return msg, kwargs


def _resolve_level() -> str:
    env_level = os.getenv("BROWSERGATE_LOG_LEVEL")
    if env_level:
        return env_level.upper()
    try:
        # Imported lazily: the config module itself logs through setup_logger.
        from browsergate.utils.config import get_config

        level = (get_config().get("logging") or {}).get("level", "info")
        return str(level).upper()
    except ImportError:
        return "INFO"


def setup_logger(name: str) -> StructuredLoggerAdapter:
    """Sets up the root logger and returns a structured child logger.

    This is the main entry point for obtaining a logger in any module. On the
    first call, it configures the root logger with a JSON stdout handler and
    the session filter. Subsequent calls simply retrieve a logger for the
    specified name.

    :param name: The name of the logger, typically `__name__`.
    :type name: str
    :return: A `StructuredLoggerAdapter` instance ready for use.
    :rtype: StructuredLoggerAdapter
    """
    global _LOGGING_CONFIGURED, _CONFIGURING

    if not _LOGGING_CONFIGURED and not _CONFIGURING:
        _CONFIGURING = True
        try:
            root_logger = logging.getLogger()
            log_level_str = _resolve_level()
            level = getattr(logging, log_level_str, logging.INFO)
            root_logger.setLevel(level)

            if root_logger.hasHandlers():
                root_logger.handlers.clear()

            console_handler = logging.StreamHandler(sys.stdout)
            console_handler.setFormatter(jsonlogger.JsonFormatter(LOG_FORMAT))
            console_handler.addFilter(SessionIdFilter())
            root_logger.addHandler(console_handler)

            root_logger.debug(
                f"Root logger configured with JSON stdout handler. Level: {log_level_str}"
            )
            _LOGGING_CONFIGURED = True
        finally:
            _CONFIGURING = False

    return StructuredLoggerAdapter(logging.getLogger(name), {})


def enable_session_files(logs_dir: str, level: Optional[int] = None) -> JsonlFileHandler:
    """Attach a per-session JSON-lines file handler to the root logger.

    :param logs_dir: Directory receiving one `<session_id>.jsonl` per session.
    :type logs_dir: str
    :param level: Optional minimum level for the file handler.
    :type level: Optional[int]
    :return: The attached handler, so callers can remove it again.
    :rtype: JsonlFileHandler
    """
    root = logging.getLogger()
    for existing in root.handlers:
        if isinstance(existing, JsonlFileHandler) and existing.logs_dir == Path(logs_dir):
            return existing
    handler = JsonlFileHandler(logs_dir)
    handler.setFormatter(jsonlogger.JsonFormatter(LOG_FORMAT))
    if level is not None:
        handler.setLevel(level)
    root.addHandler(handler)
    return handler


def release_session_files(session_id: str) -> None:
    """Close the per-session log streams held for `session_id` by root handlers."""
    for handler in logging.getLogger().handlers:
        if isinstance(handler, JsonlFileHandler):
            handler.release(session_id)
