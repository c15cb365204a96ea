"""
Error Handling Utilities for layerconf

Provides consistent error reporting for failures that are recovered
locally (a settings file that cannot be decoded, a template that cannot
be expanded, a file that does not match its signature) so that they are
logged with their context and collected for the caller instead of
aborting the whole resolution.

USAGE:
    from layerconf.utils.error_handling import (
        handle_error,
        ErrorCategory,
        ErrorAggregator,
    )

    aggregator = ErrorAggregator()
    try:
        source.parse()
    except DecodeFailure as e:
        handle_error(e, "parse", ErrorCategory.DECODE,
                     additional_context={'path': source.path},
                     aggregator=aggregator)
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)


class ErrorCategory(Enum):
    """Categories of errors for proper handling and reporting."""
    # Settings document could not be decoded
    DECODE = "decode"

    # Template expansion failed
    TEMPLATE = "template"

    # File does not verify against its signature
    SIGNATURE = "signature"


class ErrorSeverity(Enum):
    """Severity levels for errors."""
    # Warning - recovered locally, result may be degraded
    WARNING = "warning"

    # Error - operation failed
    ERROR = "error"

    # Critical - result cannot be trusted
    CRITICAL = "critical"


@dataclass
class ErrorContext:
    """Detailed context information for an error."""
    error: Exception
    category: ErrorCategory
    severity: ErrorSeverity
    operation: str
    additional_context: Dict[str, Any] = field(default_factory=dict)

    def format_log_message(self) -> str:
        """Format a detailed log message."""
        lines = [
            f"ERROR [{self.severity.value.upper()}] in {self.operation}",
            f"  Category: {self.category.value}",
            f"  Type: {type(self.error).__name__}",
            f"  Message: {self.error}",
        ]

        if self.additional_context:
            lines.append("  Context:")
            for key, value in self.additional_context.items():
                lines.append(f"    {key}: {value}")

        return '\n'.join(lines)


class ErrorAggregator:
    """
    Collects error contexts for reporting.

    One aggregator is owned by each FileSet so that per-file failures are
    attributed to the resolution that produced them.
    """

    def __init__(self):
        self._errors: List[ErrorContext] = []

    def add_error(self, context: ErrorContext) -> None:
        """Add an error to the aggregator."""
        self._errors.append(context)

    def get_error_summary(self) -> Dict[str, Any]:
        """Get a summary of aggregated errors."""
        by_category: Dict[str, int] = {}
        by_severity: Dict[str, int] = {}

        for ctx in self._errors:
            cat = ctx.category.value
            sev = ctx.severity.value
            by_category[cat] = by_category.get(cat, 0) + 1
            by_severity[sev] = by_severity.get(sev, 0) + 1

        return {
            'total_errors': len(self._errors),
            'by_category': by_category,
            'by_severity': by_severity,
        }


def determine_severity(category: ErrorCategory) -> ErrorSeverity:
    """
    Default severity for a category.
    """
    # A single bad file degrades the merged result but does not stop it
    if category in (ErrorCategory.DECODE, ErrorCategory.TEMPLATE):
        return ErrorSeverity.WARNING

    return ErrorSeverity.CRITICAL


def handle_error(
    error: Exception,
    operation: str,
    category: ErrorCategory,
    severity: Optional[ErrorSeverity] = None,
    additional_context: Optional[Dict[str, Any]] = None,
    aggregator: Optional[ErrorAggregator] = None,
) -> ErrorContext:
    """
    Handle an error with logging and tracking.

    Args:
        error: The exception that occurred
        operation: Name of the operation that failed
        category: Category of the error
        severity: Severity level (from the category if not provided)
        additional_context: Additional context information
        aggregator: Aggregator to record the error in

    Returns:
        ErrorContext with full error details
    """
    if severity is None:
        severity = determine_severity(category)

    context = ErrorContext(
        error=error,
        category=category,
        severity=severity,
        operation=operation,
        additional_context=additional_context or {},
    )

    if aggregator is not None:
        aggregator.add_error(context)

    log_level_map = {
        ErrorSeverity.WARNING: logging.WARNING,
        ErrorSeverity.ERROR: logging.ERROR,
        ErrorSeverity.CRITICAL: logging.CRITICAL,
    }
    logger.log(log_level_map[severity], context.format_log_message())

    return context
