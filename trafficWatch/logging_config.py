"""
Centralized logging configuration for trafficWatch.

Provides structured JSONL logging with rotation and component-specific
loggers. Enabled by default with environment variable configuration.

Pipeline context:
    Use `get_logger(component, context={...})` to attach fixed fields
    (pipeline name, interface) to every record emitted by that logger.

    Example:
        from trafficWatch.logging_config import get_logger

        logger = get_logger("domains", context={"iface": "eth0"})
        logger.info("Capture started", extra={"action": "capture_start"})
        # Log will include: "iface": "eth0"
"""
import logging
import logging.handlers
import json
import os
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional
import traceback


# Extra attributes copied into the JSON payload when present on a record
EXTRA_ATTRS = [
    "pipeline", "iface", "action", "outcome", "state", "path", "pattern",
    "client_ip", "domain", "remote_ip", "source", "delayed", "clients",
    "ignore_domains", "ignore_clients", "hosts", "lines", "emitted",
    "suppressed", "discarded", "error_type", "command", "exit_code",
]


class JSONLFormatter(logging.Formatter):
    """
    Formatter that outputs logs in JSON Lines format.
    Each log entry is a single-line JSON object with standardized fields.
    """

    def __init__(self, component: str = "trafficwatch"):
        super().__init__()
        self.component = component
        self.hostname = os.getenv("HOSTNAME", "unknown")

    def format(self, record: logging.LogRecord) -> str:
        log_data: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "component": self.component,
            "logger": record.name,
            "message": record.getMessage(),
            "hostname": self.hostname,
            "process_id": record.process,
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        if record.exc_info:
            log_data["exception"] = {
                "type": record.exc_info[0].__name__,
                "message": str(record.exc_info[1]),
                "traceback": traceback.format_exception(*record.exc_info)
            }

        for attr in EXTRA_ATTRS:
            if hasattr(record, attr):
                log_data[attr] = getattr(record, attr)

        return json.dumps(log_data, default=str)


class ContextAdapter(logging.LoggerAdapter):
    """
    Logger adapter that injects fixed context into every log record.
    Call-site `extra` fields win over the adapter's context.
    """

    def process(self, msg: str, kwargs: Dict[str, Any]) -> tuple:
        extra = dict(self.extra)
        extra.update(kwargs.get("extra", {}))
        kwargs["extra"] = extra
        return msg, kwargs


def setup_logging(
    component: str = "trafficwatch",
    log_level: Optional[str] = None,
    log_file: Optional[str] = None,
    max_bytes: Optional[int] = None,
    backup_count: int = 5,
    enable_console: bool = True
) -> logging.Logger:
    """
    Set up logging configuration for a trafficWatch component.

    Args:
        component: Component name (domains, bytes, reloader, monitor, etc.)
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Path to log file (default: logs/trafficwatch.jsonl)
        max_bytes: Max bytes per log file before rotation (default: 20MB)
        backup_count: Number of backup files to keep (default: 5)
        enable_console: Whether to enable console logging (default: True)

    Returns:
        Configured logger instance
    """
    log_level = (log_level or os.getenv("TRAFFICWATCH_LOG_LEVEL", "INFO")).upper()
    log_file = log_file or os.getenv("TRAFFICWATCH_LOG_FILE", "logs/trafficwatch.jsonl")
    max_bytes = max_bytes or int(os.getenv("TRAFFICWATCH_LOG_MAX_BYTES", str(20 * 1024 * 1024)))

    numeric_level = getattr(logging, log_level, logging.INFO)

    logger = logging.getLogger(f"trafficwatch.{component}")
    logger.setLevel(numeric_level)
    logger.propagate = False

    logger.handlers.clear()

    log_dir = os.path.dirname(log_file)
    if log_dir and not os.path.exists(log_dir):
        os.makedirs(log_dir, exist_ok=True)

    formatter = JSONLFormatter(component=component)

    try:
        file_handler = logging.handlers.RotatingFileHandler(
            log_file,
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding="utf-8"
        )
        file_handler.setLevel(numeric_level)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)
    except (IOError, OSError) as e:
        sys.stderr.write(f"Failed to set up file logging to {log_file}: {e}\n")

    if enable_console:
        # stderr keeps stdout free for piping capture lines in replay mode
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setLevel(numeric_level)
        console_formatter = logging.Formatter(
            "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S"
        )
        console_handler.setFormatter(console_formatter)
        logger.addHandler(console_handler)

    logger.debug(
        "Logging configured",
        extra={"path": log_file, "state": log_level}
    )

    return logger


def get_logger(component: str, context: Optional[Dict[str, Any]] = None) -> logging.Logger:
    """
    Get or create a logger for a component with optional context.

    Args:
        component: Component name (domains, bytes, reloader, monitor, etc.)
        context: Optional context dictionary to inject into all logs

    Returns:
        Logger or ContextAdapter if context is provided
    """
    logger = logging.getLogger(f"trafficwatch.{component}")

    if not logger.handlers:
        logger = setup_logging(component)

    if context:
        return ContextAdapter(logger, context)

    return logger
