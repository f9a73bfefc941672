"""
Logging configuration for the Media Generation Gateway.
Provides structured logging with proper formatting.
"""

import sys
import copy
import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Iterable, List, Optional

from api.config import config

# Gateway logger plus the package loggers every module logger hangs off
LOGGER_NAMES = ("mediagen_gateway", "core", "api")

LOG_FILE_MAX_BYTES = 10 * 1024 * 1024
LOG_FILE_BACKUPS = 5

CONSOLE_FORMAT = '%(asctime)s | %(levelname)s | %(name)s | %(message)s'
FILE_FORMAT = '%(asctime)s | %(levelname)s | %(name)s | %(funcName)s:%(lineno)d | %(message)s'
DATE_FORMAT = '%Y-%m-%d %H:%M:%S'

# Inline base64 longer than this is cut down before logging
MAX_LOGGED_BYTES_FIELD = 100


class ColoredFormatter(logging.Formatter):
    """Level names in color for console output."""

    COLORS = {
        'DEBUG': '\033[36m',
        'INFO': '\033[32m',
        'WARNING': '\033[33m',
        'ERROR': '\033[31m',
        'CRITICAL': '\033[35m',
    }
    RESET = '\033[0m'

    def format(self, record):
        record = copy.copy(record)
        color = self.COLORS.get(record.levelname, self.RESET)
        record.levelname = f"{color}{record.levelname}{self.RESET}"
        return super().format(record)


def build_handlers(log_dir: Path, file_stem: str = "gateway") -> List[logging.Handler]:
    """Console, full rotating file and errors-only rotating file."""
    log_dir.mkdir(parents=True, exist_ok=True)

    console = logging.StreamHandler(sys.stdout)
    console.setFormatter(ColoredFormatter(CONSOLE_FORMAT, datefmt=DATE_FORMAT))

    file_format = logging.Formatter(FILE_FORMAT, datefmt=DATE_FORMAT)
    handlers: List[logging.Handler] = [console]
    for suffix, level in (("", logging.DEBUG), ("_errors", logging.ERROR)):
        handler = RotatingFileHandler(
            log_dir / f"{file_stem}{suffix}.log",
            maxBytes=LOG_FILE_MAX_BYTES,
            backupCount=LOG_FILE_BACKUPS,
        )
        handler.setLevel(level)
        handler.setFormatter(file_format)
        handlers.append(handler)
    return handlers


def setup_logging(
    log_dir: Optional[str] = None,
    level: Optional[str] = None,
    names: Iterable[str] = LOGGER_NAMES,
) -> logging.Logger:
    """
    Attach one shared handler set to the gateway and package loggers.

    Loggers that already have handlers are left alone, so calling this twice
    does not duplicate output. Returns the gateway logger.
    """
    handlers = None
    log_level = getattr(logging, (level or config.LOG_LEVEL).upper(), logging.INFO)
    for name in names:
        target = logging.getLogger(name)
        if target.handlers:
            continue
        if handlers is None:
            handlers = build_handlers(Path(log_dir or config.LOG_DIR))
        target.setLevel(log_level)
        for handler in handlers:
            target.addHandler(handler)
    return logging.getLogger(LOGGER_NAMES[0])


# Create default logger
logger = setup_logging()


def summarize_payload(payload: Any) -> Any:
    """
    Return a copy of a request payload that is safe to log.

    Inline image bytes (imageInput.rawImageBytes, uploadMediaInput.rawImageBytes)
    are truncated so a single upload does not flood the log files.
    """
    if not isinstance(payload, dict):
        return payload

    summary = copy.deepcopy(payload)
    for container_key in ("imageInput", "uploadMediaInput"):
        container = summary.get(container_key)
        if not isinstance(container, dict):
            continue
        raw = container.get("rawImageBytes")
        if isinstance(raw, str) and len(raw) > MAX_LOGGED_BYTES_FIELD:
            container["rawImageBytes"] = raw[:50] + "...[TRUNCATED]"

    context = summary.get("clientContext")
    if isinstance(context, dict) and context.get("recaptchaToken"):
        context["recaptchaToken"] = f"<{len(context['recaptchaToken'])} chars>"
    return summary


def log_request(method: str, path: str, username: str = None, status_code: int = None, duration_ms: float = None):
    """Log an HTTP request."""
    who = f"[{username or 'anonymous'}] "
    if duration_ms is not None:
        logger.info(f"{who}HTTP {method} {path} -> {status_code} ({duration_ms:.2f}ms)")
    else:
        logger.info(f"{who}HTTP {method} {path}")


def log_upstream_call(service: str, action: str, status_code: int, username: str = None, error: Optional[str] = None):
    """Log a forwarded provider call."""
    who = username or "anonymous"
    if error:
        logger.error(f"[{who}] Upstream {service}/{action} failed ({status_code}): {error}")
    else:
        logger.info(f"[{who}] Upstream {service}/{action} -> {status_code}")


def log_combine_event(job_id: str, event: str, details: str = None):
    """Log a video combine pipeline event."""
    logger.info(f"Combine [{job_id}] {event}: {details}" if details else f"Combine [{job_id}] {event}")
