"""
Logging Utility for the Practice Backend

Console logging with:
- Color-coded log levels
- Icons per engine component (taken from the "[Component]" tag of a message)
- Section banners for startup/shutdown
- Request/response lines with timing
"""

import logging
import re
import sys
from datetime import datetime
from typing import Any, Dict, Optional


class Colors:
    """ANSI color codes for terminal output."""
    RESET = '\033[0m'
    BOLD = '\033[1m'

    DEBUG = '\033[36m'      # Cyan
    INFO = '\033[32m'       # Green
    WARNING = '\033[33m'    # Yellow
    ERROR = '\033[31m'      # Red
    CRITICAL = '\033[35m'   # Magenta

    SECTION = '\033[94m'    # Bright Blue
    KEY = '\033[93m'        # Bright Yellow
    TIMESTAMP = '\033[90m'  # Dark Gray


LEVEL_COLORS = {
    'DEBUG': Colors.DEBUG,
    'INFO': Colors.INFO,
    'WARNING': Colors.WARNING,
    'ERROR': Colors.ERROR,
    'CRITICAL': Colors.CRITICAL,
}

_COMPONENT_TAG = re.compile(r"\[(\w+)\]")


class ColoredFormatter(logging.Formatter):
    """Formatter with colors and component icons."""

    LEVEL_ICONS = {
        'DEBUG': '🔍',
        'INFO': 'ℹ️',
        'WARNING': '⚠️',
        'ERROR': '❌',
        'CRITICAL': '🚨',
    }

    COMPONENT_ICONS = {
        'SessionStateMachine': '🎯',
        'QuestionAcquisition': '❓',
        'PrimaryQuestionSource': '🤖',
        'OpenAIQuestionBackend': '🤖',
        'FallbackGenerator': '🛟',
        'DifficultyController': '📊',
        'HistoryReporter': '💾',
        'API': '🌐',
    }

    def __init__(self, use_colors: bool = True):
        super().__init__()
        self.use_colors = use_colors and sys.stdout.isatty()

    def _icon(self, record: logging.LogRecord, message: str) -> str:
        if record.levelno >= logging.WARNING:
            return self.LEVEL_ICONS.get(record.levelname, '•')
        match = _COMPONENT_TAG.search(message)
        if match and match.group(1) in self.COMPONENT_ICONS:
            return self.COMPONENT_ICONS[match.group(1)]
        return self.LEVEL_ICONS.get(record.levelname, '•')

    def format(self, record: logging.LogRecord) -> str:
        message = record.getMessage()
        timestamp = datetime.fromtimestamp(record.created).strftime('%H:%M:%S.%f')[:-3]

        if self.use_colors:
            level_color = LEVEL_COLORS.get(record.levelname, Colors.RESET)
            reset, bold, grey = Colors.RESET, Colors.BOLD, Colors.TIMESTAMP
        else:
            level_color = reset = bold = grey = ''

        formatted = (
            f"{grey}[{timestamp}]{reset} "
            f"{self._icon(record, message)} {level_color}{record.levelname:8s}{reset} "
            f"{bold}{record.name}{reset} | {message}"
        )

        data = getattr(record, "data", None)
        if data:
            formatted += "\n" + _format_data(data, colors=self.use_colors)

        if record.exc_info:
            formatted += f"\n{self.formatException(record.exc_info)}"

        return formatted


def _format_data(data: Any, indent: int = 2, colors: bool = False) -> str:
    """Indented key/value rendering for dicts and short lists."""
    key_color = Colors.KEY if colors else ''
    reset = Colors.RESET if colors else ''
    pad = ' ' * indent

    if isinstance(data, dict):
        lines = []
        for key, value in data.items():
            if isinstance(value, (dict, list)):
                value = _format_data(value, indent + 2, colors)
            lines.append(f"{pad}{key_color}{key}{reset}: {value}")
        return "\n".join(lines)
    if isinstance(data, list):
        shown = [str(item) for item in data[:5]]
        if len(data) > 5:
            shown.append(f"... ({len(data)} items total)")
        return "[" + ", ".join(shown) + "]"
    return str(data)


class StructuredLogger:
    """Logger wrapper with optional structured data and section banners."""

    def __init__(self, name: str, logger: Optional[logging.Logger] = None):
        self.name = name
        self.logger = logger or logging.getLogger(name)

    def section(self, title: str, data: Optional[Dict[str, Any]] = None):
        """Log a banner, e.g. at startup."""
        separator = "=" * 80
        body = f"\n{separator}\n📋 {title.upper()}"
        if data:
            body += "\n" + _format_data(data)
        self.logger.info(f"{body}\n{separator}")

    def debug(self, message: str, data: Optional[Dict[str, Any]] = None):
        self.logger.debug(message, extra={"data": data})

    def info(self, message: str, data: Optional[Dict[str, Any]] = None):
        self.logger.info(message, extra={"data": data})

    def warning(self, message: str, data: Optional[Dict[str, Any]] = None):
        self.logger.warning(message, extra={"data": data})

    def error(self, message: str, error: Optional[Exception] = None, data: Optional[Dict[str, Any]] = None):
        """Log error message with exception and optional data."""
        if error is not None:
            message = f"{message} Error: {type(error).__name__}: {error}"
        self.logger.error(message, exc_info=error, extra={"data": data})

    def success(self, message: str, data: Optional[Dict[str, Any]] = None):
        self.logger.info(f"✅ {message}", extra={"data": data})

    def request(self, method: str, path: str, user_id: Optional[str] = None, data: Optional[Dict[str, Any]] = None):
        """Log incoming request."""
        request_data = {
            "user_id": user_id[:20] + "..." if user_id and len(user_id) > 20 else user_id,
        }
        if data:
            request_data.update(data)
        self.logger.info(f"📥 [API] {method} {path}", extra={"data": request_data})

    def response(self, status: int, path: str, duration: Optional[float] = None, data: Optional[Dict[str, Any]] = None):
        """Log response."""
        timing = f" ({duration * 1000:.2f}ms)" if duration is not None else ""
        self.logger.info(f"📤 [API] {status} {path}{timing}", extra={"data": data})


def setup_logging(level: int = logging.INFO, use_colors: bool = True):
    """Install the colored console handler on the root logger."""
    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    console_handler.setFormatter(ColoredFormatter(use_colors=use_colors))

    root_logger.setLevel(level)
    root_logger.addHandler(console_handler)

    # Suppress noisy loggers
    for noisy in ('asyncio', 'httpx', 'httpcore', 'openai', 'hpack'):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    return root_logger


def get_logger(name: str) -> StructuredLogger:
    """Get a structured logger instance."""
    return StructuredLogger(name, logging.getLogger(name))
