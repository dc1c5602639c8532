"""Logging setup: readable console lines plus a JSON-lines run log."""

import json
import logging
import sys
from contextvars import ContextVar
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

DEFAULT_LOG_DIR = '.fargate-deploy/logs'

# Fields copied onto every record emitted inside a LogContext
STRUCTURED_FIELDS = ('environment', 'unit_id', 'full_name', 'operation', 'error')

_context: ContextVar[Dict[str, Any]] = ContextVar('fargate_deploy_log_context', default={})

NOISY_LOGGERS = ('boto3', 'botocore', 'urllib3', 's3transfer')


class ContextFilter(logging.Filter):
    """Stamps the active LogContext fields onto each record."""

    def filter(self, record: logging.LogRecord) -> bool:
        for key, value in _context.get().items():
            if not hasattr(record, key):
                setattr(record, key, value)
        return True


class JSONFormatter(logging.Formatter):
    """One JSON object per line, for the run log file."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            'timestamp': datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
        }
        for field_name in STRUCTURED_FIELDS:
            value = getattr(record, field_name, None)
            if value is not None:
                entry[field_name] = value

        if record.exc_info:
            entry['exception'] = self.formatException(record.exc_info)

        return json.dumps(entry, default=str)


class ConsoleFormatter(logging.Formatter):
    """Short console line: time, level and the unit being worked on."""

    COLORS = {
        'DEBUG': '\033[36m',
        'INFO': '\033[34m',
        'WARNING': '\033[33m',
        'ERROR': '\033[31m',
        'CRITICAL': '\033[35m',
    }
    RESET = '\033[0m'

    def __init__(self, use_color: bool = True):
        super().__init__()
        self.use_color = use_color

    def format(self, record: logging.LogRecord) -> str:
        timestamp = datetime.fromtimestamp(record.created).strftime('%H:%M:%S')
        level = f"{record.levelname:8}"
        if self.use_color:
            level = f"{self.COLORS.get(record.levelname, '')}{level}{self.RESET}"

        unit_id = getattr(record, 'unit_id', None)
        prefix = f"[{unit_id}] " if unit_id else ""
        line = f"{timestamp} {level} {prefix}{record.getMessage()}"

        if record.exc_info and logging.getLogger().isEnabledFor(logging.DEBUG):
            line = f"{line}\n{self.formatException(record.exc_info)}"
        return line


def setup_logging(
    log_level: str = 'info',
    log_dir: Optional[str] = DEFAULT_LOG_DIR
) -> Optional[Path]:
    """Configure the root logger for one CLI invocation.

    Console output goes to stderr so tables printed on stdout stay clean. The
    JSON log always records debug detail.

    Args:
        log_level: Console level (debug, info, warning, error)
        log_dir: Directory for the JSON-lines log, or None to skip the file

    Returns:
        Path of the JSON log file, if one was opened
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(getattr(logging, log_level.upper()))
    console_handler.setFormatter(ConsoleFormatter(use_color=sys.stderr.isatty()))
    console_handler.addFilter(ContextFilter())
    root_logger.addHandler(console_handler)

    log_file = None
    if log_dir:
        log_path = Path(log_dir)
        log_path.mkdir(parents=True, exist_ok=True)
        log_file = log_path / f"fargate-deploy-{datetime.now(timezone.utc):%Y%m%d}.jsonl"
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(JSONFormatter())
        file_handler.addFilter(ContextFilter())
        root_logger.addHandler(file_handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    return log_file


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance.

    Args:
        name: Name of the logger (typically __name__)

    Returns:
        Logger instance
    """
    return logging.getLogger(name)


class LogContext:
    """Adds structured fields to every record logged inside the block.

    Contexts nest; inner fields override outer ones until the inner block exits.
    """

    def __init__(self, logger: logging.Logger, **fields: Any):
        self.logger = logger
        self.fields = fields
        self._token = None

    def __enter__(self):
        self._token = _context.set({**_context.get(), **self.fields})
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self._token is not None:
            _context.reset(self._token)
            self._token = None
