"""
Failure reporting for Armor Daemon.

Enforcer operations do not raise to their callers; they return (ok, message)
and hand the exception to handle_error(), which:
1. picks a severity from the failure category
2. logs one report per failure, with the traceback only for real errors
3. records it in a process-wide ErrorAggregator that folds repeats of the
   same failure within a window into a counter

The aggregator's summary and most recent reports are what
AppArmorEnforcer.get_status() exposes.

Usage:
    from armor.utils.error_handling import ErrorCategory, handle_error

    try:
        loader.load(path)
    except LoaderError as e:
        handle_error(e, "update AppArmor profile", ErrorCategory.LOADER)
"""

import logging
import threading
import time
import traceback
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)


class ErrorCategory(Enum):
    """What part of the profile lifecycle failed."""
    OWNERSHIP = "ownership"         # profile file without our marker
    COMPILATION = "compilation"     # rule could not be rendered
    LOADER = "loader"               # apparmor_parser failed or timed out
    FILESYSTEM = "filesystem"       # profile directory I/O
    REGISTRY = "registry"           # refcount bookkeeping
    CONFIG = "configuration"        # configuration and startup
    UNKNOWN = "unknown"


class ErrorSeverity(Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"
    FATAL = "fatal"


_SEVERITY_LEVELS = {
    ErrorSeverity.INFO: logging.INFO,
    ErrorSeverity.WARNING: logging.WARNING,
    ErrorSeverity.ERROR: logging.ERROR,
    ErrorSeverity.CRITICAL: logging.CRITICAL,
    ErrorSeverity.FATAL: logging.CRITICAL,
}


@dataclass
class ErrorContext:
    """One reported failure."""
    error: Exception
    category: ErrorCategory
    severity: ErrorSeverity
    operation: str
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    thread_name: str = field(default_factory=lambda: threading.current_thread().name)
    stack_trace: str = ""
    additional_context: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if not self.stack_trace and self.error.__traceback__ is not None:
            self.stack_trace = ''.join(traceback.format_exception(
                type(self.error), self.error, self.error.__traceback__
            ))

    @property
    def key(self) -> str:
        """Identity used to fold repeated failures together."""
        return f"{self.category.value}:{type(self.error).__name__}:{self.operation}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            'error_type': type(self.error).__name__,
            'error_message': str(self.error),
            'category': self.category.value,
            'severity': self.severity.value,
            'operation': self.operation,
            'timestamp': self.timestamp,
            'thread_name': self.thread_name,
            'stack_trace': self.stack_trace,
            'additional_context': self.additional_context,
        }

    def format_log_message(self, include_trace: bool = True) -> str:
        """Multi-line report for the log."""
        lines = [
            f"{self.operation} failed [{self.severity.value.upper()}]: {self.error}",
            f"  category={self.category.value} type={type(self.error).__name__} "
            f"thread={self.thread_name}",
        ]
        lines.extend(f"  {key}={value}" for key, value in self.additional_context.items())

        if include_trace and self.stack_trace:
            lines.extend(
                f"  | {line}" for line in self.stack_trace.splitlines() if line.strip()
            )
        return '\n'.join(lines)


class ErrorAggregator:
    """
    Bounded, thread-safe record of reported failures.

    A failure whose key was already recorded less than dedup_window_seconds
    ago only bumps that key's counter.
    """

    def __init__(self, max_errors: int = 1000, dedup_window_seconds: float = 60):
        self._lock = threading.Lock()
        self._errors: List[ErrorContext] = []
        self._counts: Dict[str, int] = {}
        self._last_seen: Dict[str, float] = {}
        self._max_errors = max_errors
        self._window = dedup_window_seconds

    def add_error(self, context: ErrorContext) -> bool:
        """Record a failure. Returns False when it was folded into an earlier one."""
        now = time.monotonic()
        key = context.key

        with self._lock:
            last = self._last_seen.get(key)
            if last is not None and now - last < self._window:
                self._counts[key] += 1
                return False

            self._last_seen[key] = now
            self._counts[key] = 1
            self._errors.append(context)
            del self._errors[:-self._max_errors]
            return True

    def get_error_summary(self) -> Dict[str, Any]:
        """Totals by category and severity, plus per-key repeat counts."""
        with self._lock:
            by_category: Dict[str, int] = {}
            by_severity: Dict[str, int] = {}
            for ctx in self._errors:
                by_category[ctx.category.value] = by_category.get(ctx.category.value, 0) + 1
                by_severity[ctx.severity.value] = by_severity.get(ctx.severity.value, 0) + 1

            return {
                'total_errors': len(self._errors),
                'by_category': by_category,
                'by_severity': by_severity,
                'deduplicated_counts': dict(self._counts),
            }

    def get_recent_errors(self, count: int = 10) -> List[Dict[str, Any]]:
        """The last count recorded failures, oldest first."""
        with self._lock:
            recent = self._errors[-count:] if count > 0 else []
            return [ctx.to_dict() for ctx in recent]

    def clear(self) -> None:
        with self._lock:
            self._errors.clear()
            self._counts.clear()
            self._last_seen.clear()


_global_aggregator = ErrorAggregator()


def get_error_aggregator() -> ErrorAggregator:
    """The process-wide aggregator handle_error() records into."""
    return _global_aggregator


def determine_severity(error: BaseException, category: ErrorCategory) -> ErrorSeverity:
    """Severity of a failure from its category, or its type when that says more."""
    if isinstance(error, (SystemExit, KeyboardInterrupt)):
        return ErrorSeverity.FATAL

    # Foreign profiles and broken configuration need an operator
    if category in (ErrorCategory.OWNERSHIP, ErrorCategory.CONFIG):
        return ErrorSeverity.CRITICAL

    # Refusals that changed nothing
    if category in (ErrorCategory.REGISTRY, ErrorCategory.COMPILATION):
        return ErrorSeverity.WARNING
    if isinstance(error, FileNotFoundError):
        return ErrorSeverity.WARNING

    return ErrorSeverity.ERROR


def handle_error(
    error: Exception,
    operation: str,
    category: ErrorCategory = ErrorCategory.UNKNOWN,
    severity: Optional[ErrorSeverity] = None,
    additional_context: Optional[Dict[str, Any]] = None,
    reraise: bool = False,
    log_level: Optional[int] = None,
) -> ErrorContext:
    """
    Log and record a failure.

    Args:
        error: The exception being reported
        operation: What was being attempted, e.g. "register AppArmor profile"
        category: Lifecycle area that failed
        severity: Overrides determine_severity()
        additional_context: Extra key/value pairs for the report
        reraise: Raise the error again once it is recorded
        log_level: Overrides the level derived from the severity

    Returns:
        The recorded ErrorContext
    """
    if severity is None:
        severity = determine_severity(error, category)
    if log_level is None:
        log_level = _SEVERITY_LEVELS[severity]

    context = ErrorContext(
        error=error,
        category=category,
        severity=severity,
        operation=operation,
        additional_context=dict(additional_context or {}),
    )

    if _global_aggregator.add_error(context):
        include_trace = severity in (ErrorSeverity.ERROR, ErrorSeverity.FATAL)
        logger.log(log_level, context.format_log_message(include_trace))
    else:
        logger.log(log_level, f"{operation} failed again: {type(error).__name__}: {error}")

    if reraise:
        raise error
    return context


__all__ = [
    'ErrorCategory',
    'ErrorSeverity',
    'ErrorContext',
    'ErrorAggregator',
    'get_error_aggregator',
    'determine_severity',
    'handle_error',
]
