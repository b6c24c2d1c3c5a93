"""
Logging configuration for the triage and self-healing engine.

This module provides structured logging configuration with different loggers
for the components of the engine.
"""

import logging
import logging.handlers
import json
import sys
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Dict, Any, Optional
from dataclasses import asdict, is_dataclass


# Extra attributes copied from log records into the JSON payload
STRUCTURED_FIELDS = (
    "request_id", "element_path", "test_name", "change_id", "operation",
    "phase", "duration", "success", "error_code", "metadata",
)

HEALING_COMPONENTS = ("orchestrator", "pipeline", "triage", "registry", "oracle")


class StructuredFormatter(logging.Formatter):
    """Custom formatter for structured JSON logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as structured JSON."""
        log_data = {
            "timestamp": datetime.fromtimestamp(record.created).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno
        }

        for name in STRUCTURED_FIELDS:
            if hasattr(record, name):
                log_data[name] = getattr(record, name)

        if record.exc_info:
            log_data['exception'] = {
                "type": record.exc_info[0].__name__ if record.exc_info[0] else None,
                "message": str(record.exc_info[1]) if record.exc_info[1] else None,
                "traceback": self.formatException(record.exc_info)
            }

        return json.dumps(log_data, default=self._json_serializer)

    def _json_serializer(self, obj):
        """Custom JSON serializer for complex objects."""
        if isinstance(obj, Enum):
            return obj.value
        elif is_dataclass(obj):
            return asdict(obj)
        elif hasattr(obj, 'isoformat'):  # datetime objects
            return obj.isoformat()
        else:
            return str(obj)


class HealingLoggerAdapter(logging.LoggerAdapter):
    """Logger adapter for healing operations with contextual information."""

    def process(self, msg: str, kwargs: Dict[str, Any]) -> tuple:
        """Process log message and add contextual information."""
        extra = dict(self.extra)
        extra.update(kwargs.get('extra') or {})
        kwargs['extra'] = extra
        return msg, kwargs

    def log_operation_start(self, operation: str, **metadata):
        """Log the start of a healing operation."""
        self.info(f"Starting {operation}", extra={
            'operation': operation,
            'phase': 'start',
            'metadata': metadata
        })

    def log_operation_success(self, operation: str, duration: float, **metadata):
        """Log successful completion of a healing operation."""
        self.info(f"Completed {operation} successfully", extra={
            'operation': operation,
            'phase': 'complete',
            'success': True,
            'duration': duration,
            'metadata': metadata
        })

    def log_operation_failure(self, operation: str, duration: float, error: str,
                              error_code: Optional[str] = None, **metadata):
        """Log failure of a healing operation."""
        self.warning(f"Failed {operation}: {error}", extra={
            'operation': operation,
            'phase': 'complete',
            'success': False,
            'duration': duration,
            'error_code': error_code,
            'metadata': metadata
        })

    def log_phase(self, operation: str, phase: str, message: str, **metadata):
        """Log a state change within a healing operation."""
        self.info(f"{operation} [{phase}]: {message}", extra={
            'operation': operation,
            'phase': phase,
            'metadata': metadata
        })


def setup_healing_logging(log_level: str = "INFO", log_dir: str = "logs") -> Dict[str, logging.Logger]:
    """
    Set up structured logging for the engine.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_dir: Directory to store log files

    Returns:
        Dictionary of configured loggers
    """
    log_path = Path(log_dir)
    log_path.mkdir(parents=True, exist_ok=True)
    level = getattr(logging, log_level.upper())

    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    # Remove existing handlers
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    structured_formatter = StructuredFormatter()
    console_formatter = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    # Console handler for development
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(console_formatter)
    console_handler.setLevel(level)

    # File handler for all logs
    all_logs_handler = logging.handlers.RotatingFileHandler(
        log_path / "healing_all.log",
        maxBytes=10 * 1024 * 1024,  # 10MB
        backupCount=5
    )
    all_logs_handler.setFormatter(structured_formatter)
    all_logs_handler.setLevel(logging.DEBUG)

    # File handler for healing operations only
    healing_handler = logging.handlers.RotatingFileHandler(
        log_path / "healing_operations.log",
        maxBytes=10 * 1024 * 1024,  # 10MB
        backupCount=10
    )
    healing_handler.setFormatter(structured_formatter)
    healing_handler.setLevel(logging.INFO)

    # File handler for errors only
    error_handler = logging.handlers.RotatingFileHandler(
        log_path / "healing_errors.log",
        maxBytes=5 * 1024 * 1024,  # 5MB
        backupCount=10
    )
    error_handler.setFormatter(structured_formatter)
    error_handler.setLevel(logging.ERROR)

    root_logger.addHandler(console_handler)
    root_logger.addHandler(all_logs_handler)

    loggers = {}
    for component in HEALING_COMPONENTS:
        component_logger = logging.getLogger(f"healing.{component}")
        component_logger.addHandler(healing_handler)
        component_logger.addHandler(error_handler)
        loggers[component] = component_logger

    # Audit logger
    audit_logger = logging.getLogger("healing.audit")
    audit_handler = logging.handlers.RotatingFileHandler(
        log_path / "healing_audit.log",
        maxBytes=20 * 1024 * 1024,  # 20MB
        backupCount=20
    )
    audit_handler.setFormatter(structured_formatter)
    audit_logger.addHandler(audit_handler)
    loggers["audit"] = audit_logger

    # LLM client loggers are noisy at DEBUG
    for noisy in ("litellm", "LiteLLM", "httpx", "crewai"):
        logging.getLogger(noisy).setLevel(max(level, logging.WARNING))

    return loggers


def get_healing_logger(component: str, request_id: Optional[str] = None,
                       element_path: Optional[str] = None,
                       test_name: Optional[str] = None) -> HealingLoggerAdapter:
    """
    Get a healing logger adapter with contextual information.

    Args:
        component: Component name (orchestrator, triage, registry, etc.)
        request_id: Optional healing request ID
        element_path: Optional element path such as ``loginPage.username``
        test_name: Optional test case name

    Returns:
        HealingLoggerAdapter instance
    """
    logger = logging.getLogger(f"healing.{component}")

    extra = {}
    if request_id:
        extra['request_id'] = request_id
    if element_path:
        extra['element_path'] = element_path
    if test_name:
        extra['test_name'] = test_name

    return HealingLoggerAdapter(logger, extra)
