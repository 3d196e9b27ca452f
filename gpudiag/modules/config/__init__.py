"""
Config Module - Black Box Interface

Purpose: Application configuration management
Interface: get_config(), ConfigModule.get(), ConfigModule.get_all()
Hidden: Config sources, validation logic, environment parsing

Loaded once at startup and treated as read-only afterwards.
"""

import os
from typing import Any, Dict

from gpudiag.modules.transport.timeouts import (
    DEFAULT_AGGREGATE_TIMEOUT,
    DEFAULT_EXEC_TIMEOUT,
    bounded_timeout,
    parse_duration,
)


# Configuration Contract: Required and Optional Keys
# This defines the black box interface - what the config module guarantees to provide

REQUIRED_CONFIG_KEYS = {
    "host": "API server bind address",
    "port": "API server port",
    "log_level": "Logging level (DEBUG, INFO, WARNING, ERROR)",
    "namespace": "Namespace the agents run in",
    "service_name": "Headless service fronting the agents",
    "label_selector": "Label selector matching agent pods",
    "cluster_backend": "Cluster API backend (kubernetes or memory)",
    "agent_port": "Port the agents serve MCP on",
    "agent_container": "Agent container name used for exec",
    "routing_mode": "Primary transport (http or exec)",
    "address_mode": "HTTP address resolution (direct or dns)",
    "exec_timeout": "Per-call timeout in seconds",
    "aggregate_timeout": "Fan-out deadline in seconds",
    "circuit_failure_threshold": "Consecutive failures before a circuit opens",
    "circuit_reset_timeout": "Seconds an open circuit waits before probing",
    "http_max_retries": "Retries for connection failures and 5xx replies",
    "gateway_transport": "Protocol surface (http or stdio)",
    "oneshot": "Stdio requests to serve before exiting (0 = unlimited)",
    "session_ttl": "Session time-to-live in seconds",
}

OPTIONAL_CONFIG_KEYS = {
    "kubeconfig": {
        "description": "Kubeconfig path used when not running in-cluster",
        "default": None,
    },
    "debug": {
        "description": "Enable debug mode",
        "default": False,
    },
    "http_retry_base": {
        "description": "Initial HTTP retry backoff in seconds",
        "default": 0.1,
    },
    "http_retry_max": {
        "description": "Maximum HTTP retry backoff in seconds",
        "default": 2.0,
    },
}

ALLOWED_VALUES = {
    "routing_mode": ("http", "exec"),
    "address_mode": ("direct", "dns"),
    "gateway_transport": ("http", "stdio"),
    "cluster_backend": ("kubernetes", "memory"),
}

DEFAULT_LABEL_SELECTOR = (
    "app.kubernetes.io/name=gpu-diag-agent,app.kubernetes.io/component!=gateway"
)


class ConfigModule:
    """Configuration management module."""

    def __init__(self):
        """Initialize with environment variables."""
        self._config = self._load_from_env()
        self._validate_required_keys()
        self._validate_choices()

    def _validate_required_keys(self) -> None:
        """Fail startup when a required key resolved to None."""
        missing_keys = [key for key in REQUIRED_CONFIG_KEYS if self._config.get(key) is None]
        if missing_keys:
            raise ValueError(f"Gateway config incomplete, unset keys: {', '.join(missing_keys)}")

    def _validate_choices(self) -> None:
        for key, allowed in ALLOWED_VALUES.items():
            if self._config[key] not in allowed:
                raise ValueError(
                    f"Invalid {key} {self._config[key]!r}: expected one of {', '.join(allowed)}"
                )

        if self._config["circuit_failure_threshold"] < 1:
            raise ValueError("circuit_failure_threshold must be at least 1")
        if self._config["http_max_retries"] < 0:
            raise ValueError("http_max_retries must not be negative")

    def _load_from_env(self) -> Dict[str, Any]:
        """Load configuration from environment."""
        return {
            # API settings
            "host": os.getenv("API_HOST", "0.0.0.0"),
            "port": int(os.getenv("API_PORT", "8080")),
            "log_level": os.getenv("LOG_LEVEL", "INFO").upper(),
            "debug": os.getenv("DEBUG", "false").lower() == "true",
            "gateway_transport": os.getenv("GATEWAY_TRANSPORT", "http").lower(),
            "oneshot": int(os.getenv("ONESHOT", "0")),
            "session_ttl": int(os.getenv("SESSION_TTL", "3600")),
            # Discovery settings
            "namespace": os.getenv("GPUDIAG_NAMESPACE", "gpu-diagnostics"),
            "service_name": os.getenv("GPUDIAG_SERVICE_NAME", "gpu-diag-agent"),
            "label_selector": os.getenv("AGENT_LABEL_SELECTOR", DEFAULT_LABEL_SELECTOR),
            "cluster_backend": os.getenv("CLUSTER_BACKEND", "kubernetes").lower(),
            "kubeconfig": os.getenv("KUBECONFIG"),
            # Agent transport settings
            "agent_port": int(os.getenv("AGENT_PORT", "8080")),
            "agent_container": os.getenv("AGENT_CONTAINER", "agent"),
            "routing_mode": os.getenv("ROUTING_MODE", "http").lower(),
            "address_mode": os.getenv("ADDRESS_MODE", "direct").lower(),
            "exec_timeout": bounded_timeout(
                os.getenv("EXEC_TIMEOUT"), DEFAULT_EXEC_TIMEOUT, "EXEC_TIMEOUT"
            ),
            "aggregate_timeout": bounded_timeout(
                os.getenv("AGGREGATE_TIMEOUT"), DEFAULT_AGGREGATE_TIMEOUT, "AGGREGATE_TIMEOUT"
            ),
            "http_max_retries": int(os.getenv("HTTP_MAX_RETRIES", "3")),
            "http_retry_base": parse_duration(os.getenv("HTTP_RETRY_BASE", "100ms")),
            "http_retry_max": parse_duration(os.getenv("HTTP_RETRY_MAX", "2s")),
            # Circuit breaker settings
            "circuit_failure_threshold": int(os.getenv("CIRCUIT_FAILURE_THRESHOLD", "3")),
            "circuit_reset_timeout": bounded_timeout(
                os.getenv("CIRCUIT_RESET_TIMEOUT"), 30.0, "CIRCUIT_RESET_TIMEOUT"
            ),
        }

    def get(self, key: str, default: Any = None) -> Any:
        """Get configuration value."""
        return self._config.get(key, default)

    def get_all(self) -> Dict[str, Any]:
        """Get all configuration values."""
        return self._config.copy()

    @staticmethod
    def get_config_schema() -> Dict[str, Any]:
        """
        Describe every key the gateway reads, grouped by whether it must be set.

        Returns:
            {"required": {key: description}, "optional": {key: description or details}}

        Example:
            >>> schema = ConfigModule.get_config_schema()
            >>> print(schema['required']['exec_timeout'])
            'Per-call timeout in seconds'
        """
        return {
            "required": REQUIRED_CONFIG_KEYS.copy(),
            "optional": OPTIONAL_CONFIG_KEYS.copy(),
        }


# Singleton instance
_instance = None


def get_config() -> ConfigModule:
    """Get the configuration module singleton."""
    global _instance
    if _instance is None:
        _instance = ConfigModule()
    return _instance


def reset_config() -> None:
    """Drop the singleton so the next get_config() re-reads the environment."""
    global _instance
    _instance = None


__all__ = ["get_config", "reset_config", "ConfigModule"]
