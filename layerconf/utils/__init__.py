"""
Utility modules for layerconf.

Provides common utilities including:
- Error handling with contextual logging
"""

from .error_handling import (
    ErrorCategory,
    ErrorSeverity,
    ErrorContext,
    ErrorAggregator,
    determine_severity,
    handle_error,
)

__all__ = [
    # Error handling
    'ErrorCategory',
    'ErrorSeverity',
    'ErrorContext',
    'ErrorAggregator',
    'determine_severity',
    'handle_error',
]
