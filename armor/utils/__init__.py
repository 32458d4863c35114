"""
Utility modules for Armor Daemon.

Provides common utilities including:
- Error handling with categorized logging
- Process execution helpers
"""

from .error_handling import (
    ErrorCategory,
    ErrorSeverity,
    ErrorContext,
    ErrorAggregator,
    get_error_aggregator,
    handle_error,
    determine_severity,
)

from .commands import (
    get_command_output,
    get_command_output_without_err,
    mount_securityfs,
)

__all__ = [
    # Error handling
    'ErrorCategory',
    'ErrorSeverity',
    'ErrorContext',
    'ErrorAggregator',
    'get_error_aggregator',
    'handle_error',
    'determine_severity',
    # Commands
    'get_command_output',
    'get_command_output_without_err',
    'mount_securityfs',
]
