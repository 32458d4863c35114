"""
Logging setup for Armor Daemon.

Every armor module logs through the standard logging package. This module
registers the daemon's extra levels, installs ArmorLogger as the logger
class, and formats records as plain text or one JSON object per line.

Usage:
    from armor.logging_config import get_logger, setup_logging

    setup_logging(verbose=True)
    logger = get_logger(__name__)
    logger.verbose("apparmor_parser output for web-profile: ...")

Environment Variables (configure_from_environment):
    ARMOR_VERBOSE         - show VERBOSE records
    ARMOR_LOG_FILE        - also append records to this file
    ARMOR_LOG_JSON        - emit JSON instead of text
    ARMOR_LOG_NO_CONSOLE  - do not log to stderr
"""

import json
import logging
import os
import sys
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Optional, TextIO


class LogLevel(Enum):
    """Numeric levels used by armor loggers."""
    DEBUG = logging.DEBUG
    VERBOSE = 15        # apparmor_parser chatter
    INFO = logging.INFO
    NOTICE = 25         # stale profiles removed at startup
    WARNING = logging.WARNING
    ERROR = logging.ERROR
    CRITICAL = logging.CRITICAL
    SECURITY = 55       # a foreign profile was about to be touched


for _level in (LogLevel.VERBOSE, LogLevel.NOTICE, LogLevel.SECURITY):
    logging.addLevelName(_level.value, _level.name)


def _env_flag(name: str) -> bool:
    return os.environ.get(name, '').strip().lower() in ('1', 'true', 'yes', 'on')


# =============================================================================
# FORMATTER
# =============================================================================

class ArmorFormatter(logging.Formatter):
    """Text or JSON records, tagged with the armor subpackage that emitted them."""

    LEVEL_COLORS = {
        'DEBUG': '\033[90m',
        'VERBOSE': '\033[36m',
        'INFO': '\033[32m',
        'NOTICE': '\033[34m',
        'WARNING': '\033[33m',
        'ERROR': '\033[31m',
        'CRITICAL': '\033[1;31m',
        'SECURITY': '\033[1;35m',
    }
    RESET = '\033[0m'

    def __init__(
        self,
        use_colors: bool = True,
        json_format: bool = False,
        stream: Optional[TextIO] = None,
    ):
        super().__init__()
        stream = stream or sys.stderr
        self.json_format = json_format
        self.use_colors = use_colors and not json_format and stream.isatty()

    @staticmethod
    def area(logger_name: str) -> str:
        """armor.enforcement.loader -> enforcement; foreign loggers keep their top name."""
        parts = logger_name.split('.')
        if parts[0] == 'armor' and len(parts) > 1:
            return parts[1]
        return parts[0] or 'root'

    def format(self, record: logging.LogRecord) -> str:
        when = datetime.fromtimestamp(record.created)

        if self.json_format:
            data = {
                'timestamp': when.isoformat(),
                'level': record.levelname,
                'logger': record.name,
                'area': self.area(record.name),
                'message': record.getMessage(),
            }
            if record.exc_info:
                data['exception'] = self.formatException(record.exc_info)
            return json.dumps(data)

        level = f"{record.levelname:8}"
        if self.use_colors:
            level = f"{self.LEVEL_COLORS.get(record.levelname, '')}{level}{self.RESET}"

        line = f"{when:%Y-%m-%d %H:%M:%S} {level} [{self.area(record.name)}] {record.getMessage()}"
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


# =============================================================================
# LOGGER CLASS
# =============================================================================

class ArmorLogger(logging.Logger):
    """Logger with methods for the armor-specific levels."""

    def verbose(self, msg: str, *args, **kwargs) -> None:
        if self.isEnabledFor(LogLevel.VERBOSE.value):
            self._log(LogLevel.VERBOSE.value, msg, args, **kwargs)

    def notice(self, msg: str, *args, **kwargs) -> None:
        if self.isEnabledFor(LogLevel.NOTICE.value):
            self._log(LogLevel.NOTICE.value, msg, args, **kwargs)


# Every logger created after this import is an ArmorLogger
logging.setLoggerClass(ArmorLogger)


def get_logger(name: str) -> ArmorLogger:
    """Logger for an armor module."""
    return logging.getLogger(name)  # type: ignore[return-value]


# =============================================================================
# SETUP
# =============================================================================

def _armor_handlers(root: logging.Logger):
    return [h for h in root.handlers if isinstance(h.formatter, ArmorFormatter)]


def setup_logging(
    verbose: bool = False,
    log_file: Optional[str] = None,
    console: bool = True,
    json_format: bool = False,
    use_colors: bool = True,
) -> None:
    """
    Route root logger output through ArmorFormatter.

    Calling it again replaces the handlers installed by the previous call;
    handlers added by anything else are left in place.

    Args:
        verbose: Lower the threshold from INFO to VERBOSE
        log_file: Append records to this file, creating its directory
        console: Write records to stderr
        json_format: One JSON object per record
        use_colors: Colorize stderr output when it is a terminal
    """
    level = LogLevel.VERBOSE.value if verbose else logging.INFO
    root = logging.getLogger()

    for handler in _armor_handlers(root):
        root.removeHandler(handler)
        handler.close()

    handlers = []
    if console:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(ArmorFormatter(use_colors, json_format, sys.stderr))
        handlers.append(handler)

    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        handler = logging.FileHandler(log_file)
        handler.setFormatter(ArmorFormatter(use_colors=False, json_format=json_format))
        handlers.append(handler)

    root.setLevel(level)
    for handler in handlers:
        handler.setLevel(level)
        root.addHandler(handler)


def configure_from_environment() -> None:
    """setup_logging() driven by the ARMOR_VERBOSE and ARMOR_LOG_* variables."""
    setup_logging(
        verbose=_env_flag('ARMOR_VERBOSE'),
        log_file=os.environ.get('ARMOR_LOG_FILE') or None,
        console=not _env_flag('ARMOR_LOG_NO_CONSOLE'),
        json_format=_env_flag('ARMOR_LOG_JSON'),
    )


__all__ = [
    'LogLevel',
    'ArmorFormatter',
    'ArmorLogger',
    'get_logger',
    'setup_logging',
    'configure_from_environment',
]
