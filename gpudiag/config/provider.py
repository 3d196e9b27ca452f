"""Configuration provider following Black Box Design principles."""
from dataclasses import dataclass
from typing import Optional, Protocol

from gpudiag.modules.config import ConfigModule, get_config


@dataclass
class DirectoryConfig:
    """Agent discovery configuration."""
    namespace: str
    service_name: str
    label_selector: str
    backend: str
    kubeconfig: Optional[str]


@dataclass
class TransportConfig:
    """Agent transport configuration."""
    routing_mode: str
    address_mode: str
    agent_port: int
    agent_container: str
    exec_timeout: float
    aggregate_timeout: float
    max_retries: int
    retry_base_delay: float
    retry_max_delay: float

    @property
    def uses_exec(self) -> bool:
        """Check if exec is the primary transport."""
        return self.routing_mode == "exec"


@dataclass
class BreakerConfig:
    """Circuit breaker configuration."""
    failure_threshold: int
    reset_timeout: float


@dataclass
class APIConfig:
    """API configuration."""
    port: int
    host: str
    debug: bool
    log_level: str
    transport: str
    oneshot: int
    session_ttl: int


class ConfigProvider(Protocol):
    """Protocol for configuration providers."""

    def get_directory_config(self) -> DirectoryConfig:
        """Get discovery configuration."""
        ...

    def get_transport_config(self) -> TransportConfig:
        """Get transport configuration."""
        ...

    def get_breaker_config(self) -> BreakerConfig:
        """Get circuit breaker configuration."""
        ...

    def get_api_config(self) -> APIConfig:
        """Get API configuration."""
        ...


class EnvConfigProvider:
    """Environment-based configuration provider."""

    def __init__(self, config: Optional[ConfigModule] = None):
        self._config = config or get_config()

    def get_directory_config(self) -> DirectoryConfig:
        """Get discovery configuration from environment variables."""
        return DirectoryConfig(
            namespace=self._config.get("namespace"),
            service_name=self._config.get("service_name"),
            label_selector=self._config.get("label_selector"),
            backend=self._config.get("cluster_backend"),
            kubeconfig=self._config.get("kubeconfig"),
        )

    def get_transport_config(self) -> TransportConfig:
        """Get transport configuration from environment variables."""
        return TransportConfig(
            routing_mode=self._config.get("routing_mode"),
            address_mode=self._config.get("address_mode"),
            agent_port=self._config.get("agent_port"),
            agent_container=self._config.get("agent_container"),
            exec_timeout=self._config.get("exec_timeout"),
            aggregate_timeout=self._config.get("aggregate_timeout"),
            max_retries=self._config.get("http_max_retries"),
            retry_base_delay=self._config.get("http_retry_base", 0.1),
            retry_max_delay=self._config.get("http_retry_max", 2.0),
        )

    def get_breaker_config(self) -> BreakerConfig:
        """Get circuit breaker configuration from environment variables."""
        return BreakerConfig(
            failure_threshold=self._config.get("circuit_failure_threshold"),
            reset_timeout=self._config.get("circuit_reset_timeout"),
        )

    def get_api_config(self) -> APIConfig:
        """Get API configuration from environment variables."""
        return APIConfig(
            port=self._config.get("port"),
            host=self._config.get("host"),
            debug=self._config.get("debug", False),
            log_level=self._config.get("log_level"),
            transport=self._config.get("gateway_transport"),
            oneshot=self._config.get("oneshot"),
            session_ttl=self._config.get("session_ttl"),
        )
