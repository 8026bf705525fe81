# backend/config/logging.py
import json
import logging
import logging.config
import os
import re
from datetime import datetime, timezone
from typing import Dict, Any
from .settings import get_settings

settings = get_settings()

SENSITIVE_KEYS = ("password", "token", "secret", "credit_card", "authorization")
MASK = "***MASKED***"

_SENSITIVE_PATTERN = re.compile(
    r"(?i)\b(" + "|".join(SENSITIVE_KEYS) + r")(\s*[=:]\s*)([^\s,;&]+)"
)


def mask_sensitive(value: Any) -> Any:
    """Recursively mask sensitive keys in dicts/lists."""
    if isinstance(value, dict):
        return {
            k: MASK if any(s in str(k).lower() for s in SENSITIVE_KEYS) else mask_sensitive(v)
            for k, v in value.items()
        }
    if isinstance(value, (list, tuple)):
        return [mask_sensitive(v) for v in value]
    return value


class SensitiveDataFilter(logging.Filter):
    """Masks credentials in log messages and structured extras."""

    def filter(self, record):
        if isinstance(record.msg, str):
            record.msg = _SENSITIVE_PATTERN.sub(lambda m: f"{m.group(1)}{m.group(2)}{MASK}", record.msg)
        if hasattr(record, "payload"):
            record.payload = mask_sensitive(record.payload)
        return True


# Custom formatter with colors for console output
class ColoredFormatter(logging.Formatter):
    """Custom formatter with color coding for different log levels."""

    COLORS = {
        'DEBUG': '\033[36m',     # Cyan
        'INFO': '\033[32m',      # Green
        'WARNING': '\033[33m',   # Yellow
        'ERROR': '\033[31m',     # Red
        'CRITICAL': '\033[35m',  # Magenta
        'RESET': '\033[0m'       # Reset
    }

    def format(self, record):
        color = self.COLORS.get(record.levelname, self.COLORS['RESET'])
        levelname = record.levelname
        record.levelname = f"{color}{levelname}{self.COLORS['RESET']}"
        try:
            return super().format(record)
        finally:
            record.levelname = levelname


# JSON formatter for structured logging
class JSONFormatter(logging.Formatter):
    """JSON formatter for the API log."""

    def format(self, record):
        log_entry = {
            'timestamp': datetime.now(timezone.utc).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'module': record.module,
            'function': record.funcName,
            'line': record.lineno
        }

        for attr in ('request_id', 'user_id', 'duration', 'status_code', 'payload'):
            if hasattr(record, attr):
                log_entry[attr] = getattr(record, attr)

        if record.exc_info:
            log_entry['exception'] = self.formatException(record.exc_info)

        return json.dumps(log_entry, default=str)


def _rotating_handler(filename: str, level: str, formatter: str, max_mb: int, backups: int) -> Dict[str, Any]:
    return {
        'level': level,
        'class': 'logging.handlers.RotatingFileHandler',
        'formatter': formatter,
        'filters': ['mask_sensitive'],
        'filename': filename,
        'maxBytes': max_mb * 1024 * 1024,
        'backupCount': backups,
        'encoding': 'utf8'
    }


def _logger(*handlers: str, level: str = 'INFO') -> Dict[str, Any]:
    return {'handlers': list(handlers), 'level': level, 'propagate': False}


SERVICE_LEVEL = 'DEBUG' if settings.DEBUG else 'INFO'

LOGGING_CONFIG: Dict[str, Any] = {
    'version': 1,
    'disable_existing_loggers': False,
    'filters': {
        'mask_sensitive': {'()': SensitiveDataFilter}
    },
    'formatters': {
        'standard': {
            'format': '%(asctime)s [%(levelname)s] %(name)s: %(message)s',
            'datefmt': '%Y-%m-%d %H:%M:%S'
        },
        'detailed': {
            'format': '%(asctime)s [%(levelname)s] %(name)s:%(lineno)d - %(funcName)s(): %(message)s',
            'datefmt': '%Y-%m-%d %H:%M:%S'
        },
        'colored': {
            '()': ColoredFormatter,
            'format': '%(asctime)s [%(levelname)s] %(name)s: %(message)s',
            'datefmt': '%Y-%m-%d %H:%M:%S'
        },
        'json': {'()': JSONFormatter}
    },
    'handlers': {
        'console': {
            'level': SERVICE_LEVEL,
            'class': 'logging.StreamHandler',
            'formatter': 'colored' if settings.DEBUG else 'standard',
            'filters': ['mask_sensitive'],
            'stream': 'ext://sys.stdout'
        },
        'combined_file': _rotating_handler(settings.LOG_FILE, 'INFO', 'detailed', max_mb=10, backups=5),
        'error_file': _rotating_handler(
            os.path.join(settings.LOG_DIRECTORY, 'error.log'), 'ERROR', 'detailed', max_mb=10, backups=14
        ),
        'api_file': _rotating_handler(
            os.path.join(settings.LOG_DIRECTORY, 'api.log'), 'INFO', 'detailed' if settings.DEBUG else 'json',
            max_mb=20, backups=7
        ),
    },
    'loggers': {
        '': {'handlers': ['console', 'combined_file', 'error_file'], 'level': settings.LOG_LEVEL},
        'uvicorn': _logger('console', 'api_file'),
        'uvicorn.access': _logger('api_file'),
        'sqlalchemy.engine': _logger('combined_file', level='INFO' if settings.DEBUG else 'WARNING'),
        'api': _logger('console', 'api_file', 'error_file'),
        'services': _logger('console', 'combined_file', 'error_file', level=SERVICE_LEVEL),
        # order change feed and WebSocket fan-out
        'realtime': _logger('console', 'combined_file', 'error_file', level=SERVICE_LEVEL),
    }
}


def setup_logging():
    """Setup logging configuration."""
    os.makedirs(settings.LOG_DIRECTORY, exist_ok=True)
    log_file_dir = os.path.dirname(settings.LOG_FILE)
    if log_file_dir:
        os.makedirs(log_file_dir, exist_ok=True)

    logging.config.dictConfig(LOGGING_CONFIG)

    logging.getLogger("multipart").setLevel(logging.WARNING)
    if not settings.DEBUG:
        logging.getLogger("aiosmtplib").setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance with the specified name."""
    return logging.getLogger(name)


def log_api_request(request_id: str, method: str, path: str, user_id: str = None):
    """Log API request information."""
    logger = get_logger("api")
    extra = {'request_id': request_id}
    if user_id:
        extra['user_id'] = user_id
    logger.info(f"{method} {path}", extra=extra)


def log_api_response(request_id: str, status_code: int, duration: float):
    """Log API response information."""
    logger = get_logger("api")
    extra = {'request_id': request_id, 'duration': duration, 'status_code': status_code}
    level = logging.WARNING if status_code >= 400 else logging.INFO
    logger.log(level, f"Response: {status_code} ({duration:.3f}s)", extra=extra)


__all__ = [
    "setup_logging",
    "get_logger",
    "mask_sensitive",
    "SensitiveDataFilter",
    "log_api_request",
    "log_api_response",
]
