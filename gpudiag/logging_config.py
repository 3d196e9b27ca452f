"""
Logging configuration: probe-log suppression and correlation IDs
"""

import contextvars
import logging
import logging.config
import secrets
from typing import Any, Dict

PROBE_PATHS = ("/healthz", "/readyz", "/metrics")

# Correlation ID of the tools/call currently being served
correlation_id_var: contextvars.ContextVar[str] = contextvars.ContextVar(
    "correlation_id", default="-"
)


def new_correlation_id() -> str:
    """Generate a fresh 16-hex-character correlation ID."""
    return secrets.token_hex(8)


class HealthCheckFilter(logging.Filter):
    """Filter to suppress probe endpoint logs."""

    def filter(self, record: logging.LogRecord) -> bool:
        """Filter out probe requests from uvicorn access logs."""
        if record.name == "uvicorn.access":
            message = record.getMessage()
            if "GET" in message and any(path in message for path in PROBE_PATHS):
                return False
        return True


class CorrelationIdFilter(logging.Filter):
    """Stamp every record with the active correlation ID."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.correlation_id = correlation_id_var.get()
        return True


def get_logging_config(level: str = "INFO") -> Dict[str, Any]:
    """Get logging configuration with probe suppression."""
    level = level.upper()
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "filters": {
            "health_check_filter": {
                "()": HealthCheckFilter
            },
            "correlation_id_filter": {
                "()": CorrelationIdFilter
            }
        },
        "formatters": {
            "default": {
                "format": "%(asctime)s - %(name)s - %(levelname)s - [%(correlation_id)s] %(message)s"
            },
            "access": {
                "format": "%(message)s"
            }
        },
        "handlers": {
            "default": {
                "class": "logging.StreamHandler",
                "formatter": "default",
                "stream": "ext://sys.stderr",
                "filters": ["correlation_id_filter"]
            },
            "access": {
                "class": "logging.StreamHandler",
                "formatter": "access",
                "stream": "ext://sys.stderr",
                "filters": ["health_check_filter"]
            }
        },
        "loggers": {
            "uvicorn": {
                "handlers": ["default"],
                "level": "INFO",
                "propagate": False
            },
            "uvicorn.error": {
                "handlers": ["default"],
                "level": "INFO",
                "propagate": False
            },
            "uvicorn.access": {
                "handlers": ["access"],
                "level": "INFO",
                "propagate": False
            },
            "gpudiag": {
                "handlers": ["default"],
                "level": level,
                "propagate": False
            }
        },
        "root": {
            "level": level,
            "handlers": ["default"]
        }
    }
