"""
Logging Configuration for layerconf.

Library modules log through ``logging.getLogger(__name__)`` and never
install handlers themselves. Applications (and the layerctl CLI) call
``setup_logging`` once to attach a console and/or file handler.

Usage:
    from layerconf.logging_config import setup_logging, log_with_data

    setup_logging(verbose=True)

    logger = logging.getLogger('layerconf.file_set')
    log_with_data(logger, logging.INFO, "Resolved files", {'count': 3})
"""

import sys
import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional


ROOT_LOGGER_NAME = 'layerconf'


# =============================================================================
# CUSTOM FORMATTER
# =============================================================================

class LayerconfFormatter(logging.Formatter):
    """Formatter with color support and structured output."""

    COLORS = {
        'DEBUG': '\033[36m',      # Cyan
        'INFO': '\033[32m',       # Green
        'WARNING': '\033[33;1m',  # Bold yellow
        'ERROR': '\033[31m',      # Red
        'CRITICAL': '\033[31;1m', # Bold red
        'RESET': '\033[0m',
    }

    def __init__(self, use_colors: bool = True, json_format: bool = False, stream=None):
        stream = stream if stream is not None else sys.stderr
        self.use_colors = use_colors and hasattr(stream, 'isatty') and stream.isatty()
        self.json_format = json_format
        super().__init__()

    def format(self, record: logging.LogRecord) -> str:
        if self.json_format:
            return self._format_json(record)
        return self._format_text(record)

    def _format_text(self, record: logging.LogRecord) -> str:
        timestamp = datetime.fromtimestamp(record.created).strftime('%Y-%m-%d %H:%M:%S.%f')[:-3]
        level_name = record.levelname

        if self.use_colors:
            color = self.COLORS.get(level_name, '')
            reset = self.COLORS['RESET']
            level_str = f"{color}{level_name:8}{reset}"
        else:
            level_str = f"{level_name:8}"

        component = self._extract_component(record.name)
        msg = record.getMessage()

        extra_str = ""
        if getattr(record, 'extra_data', None):
            extra_items = [f"{k}={v}" for k, v in record.extra_data.items()]
            extra_str = f" | {', '.join(extra_items)}"

        text = f"{timestamp} {level_str} [{component}] {msg}{extra_str}"
        if record.exc_info:
            text = f"{text}\n{self.formatException(record.exc_info)}"
        return text

    def _format_json(self, record: logging.LogRecord) -> str:
        data = {
            'timestamp': datetime.fromtimestamp(record.created).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'component': self._extract_component(record.name),
        }

        if getattr(record, 'extra_data', None):
            data['extra'] = record.extra_data

        if record.exc_info:
            data['exception'] = self.formatException(record.exc_info)

        return json.dumps(data, default=str)

    def _extract_component(self, logger_name: str) -> str:
        """layerconf.crypto.cipher -> crypto.cipher"""
        parts = logger_name.split('.')
        if len(parts) >= 2 and parts[0] == ROOT_LOGGER_NAME:
            return '.'.join(parts[1:])
        return logger_name or 'root'


# =============================================================================
# SETUP AND CONFIGURATION
# =============================================================================

def setup_logging(
    verbose: bool = False,
    log_file: Optional[str] = None,
    console: bool = True,
    json_format: bool = False,
    stream=None,
) -> logging.Logger:
    """
    Initialize logging for the layerconf package.

    Args:
        verbose: Enable DEBUG level output
        log_file: Optional file path for log output
        console: Enable console output (stderr by default)
        json_format: Use JSON format for logs
        stream: Alternate console stream

    Returns:
        The configured package logger
    """
    level = logging.DEBUG if verbose else logging.INFO

    package_logger = logging.getLogger(ROOT_LOGGER_NAME)
    package_logger.setLevel(level)

    for handler in package_logger.handlers[:]:
        package_logger.removeHandler(handler)
        handler.close()

    if console:
        console_stream = stream if stream is not None else sys.stderr
        console_handler = logging.StreamHandler(console_stream)
        console_handler.setLevel(level)
        console_handler.setFormatter(LayerconfFormatter(
            use_colors=True,
            json_format=json_format,
            stream=console_stream,
        ))
        package_logger.addHandler(console_handler)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(level)
        file_handler.setFormatter(LayerconfFormatter(
            use_colors=False,
            json_format=json_format,
        ))
        package_logger.addHandler(file_handler)

    package_logger.propagate = not (console or log_file)
    return package_logger


def log_with_data(logger: logging.Logger, level: int, msg: str, data: Dict[str, Any]) -> None:
    """Log with structured extra data."""
    logger.log(level, msg, extra={'extra_data': data})

