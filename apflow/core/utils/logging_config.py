"""
Structured logging configuration for apflow.

JSON lines in production, colored single lines in development. Approval
log records carry workflow identifiers (firm, invoice, plan, step, actor)
either passed through ``extra=`` or bound for a block with ``LogContext``.
"""

import os
import sys
import json
import logging
import contextvars
from datetime import datetime, timezone

# Record attributes promoted into structured output when present.
CONTEXT_FIELDS = ('firm_id', 'invoice_id', 'plan_id', 'scope_id', 'step_id',
                  'actor_user_id', 'action')

_bound_context = contextvars.ContextVar('apflow_log_context', default={})


def _context_of(record: logging.LogRecord) -> dict:
    fields = dict(_bound_context.get())
    for key in CONTEXT_FIELDS:
        value = getattr(record, key, None)
        if value is not None:
            fields[key] = value
    return fields


class JSONFormatter(logging.Formatter):
    """One JSON object per line, workflow identifiers as top-level keys."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            'timestamp': datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'module': record.module,
            'line': record.lineno,
        }
        log_entry.update(_context_of(record))

        if record.exc_info:
            log_entry['exception'] = self.formatException(record.exc_info)

        return json.dumps(log_entry, default=str)


class DevelopmentFormatter(logging.Formatter):
    """Colored one-line records with workflow identifiers appended as key=value."""

    COLORS = {
        'DEBUG': '\033[36m',
        'INFO': '\033[32m',
        'WARNING': '\033[33m',
        'ERROR': '\033[31m',
        'CRITICAL': '\033[35m',
    }
    RESET = '\033[0m'

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname, '')
        reset = self.RESET if color else ''

        timestamp = datetime.fromtimestamp(record.created).strftime('%H:%M:%S')
        location = f'{record.module}:{record.lineno}'
        base = f'{color}[{timestamp}] {record.levelname:8}{reset} {location:28} {record.getMessage()}'

        context = _context_of(record)
        if context:
            base = f"{base} | {' '.join(f'{k}={v}' for k, v in context.items())}"
        if record.exc_info:
            base = f'{base}\n{self.formatException(record.exc_info)}'
        return base


def setup_logging(
    level: str = 'INFO',
    json_format: bool = None,
    logger_name: str = 'apflow'
) -> logging.Logger:
    """Configure and return the application logger.

    Args:
        level: Log level name.
        json_format: Use JSON formatting. If None, JSON when PRODUCTION=true
            or when running under gunicorn.
        logger_name: Root of the logger hierarchy to configure.
    """
    if json_format is None:
        json_format = os.environ.get('PRODUCTION', '').lower() == 'true' or \
                      'gunicorn' in os.environ.get('SERVER_SOFTWARE', '')

    logger = logging.getLogger(logger_name)
    logger.setLevel(getattr(logging, level.upper(), logging.INFO))
    logger.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(logger.level)
    handler.setFormatter(JSONFormatter() if json_format else DevelopmentFormatter())
    logger.addHandler(handler)
    logger.propagate = False

    return logger


def get_logger(name: str = 'apflow') -> logging.Logger:
    """Shorthand for logging.getLogger under the apflow hierarchy."""
    return logging.getLogger(name)


class LogContext:
    """Bind workflow identifiers to every record logged inside the block.

        with LogContext(firm_id=firm_id, invoice_id=invoice_id):
            logger.info('Plan created')
    """

    def __init__(self, **fields):
        self.fields = {k: v for k, v in fields.items() if v is not None}
        self._token = None

    def __enter__(self):
        merged = dict(_bound_context.get())
        merged.update(self.fields)
        self._token = _bound_context.set(merged)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        _bound_context.reset(self._token)
        return False


def log_with_context(logger: logging.Logger, level: int, message: str, **context):
    """Log a message with additional structured fields."""
    logger.log(level, message, extra={k: v for k, v in context.items() if k in CONTEXT_FIELDS})
