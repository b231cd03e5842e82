"""Operator configuration loaded from environment variables.

The configuration is an immutable value built once at startup and passed
to the components that need it. Invalid values raise ConfigurationError
immediately rather than failing in the middle of a reconcile.
"""

import os
from dataclasses import dataclass

from models import ConfigurationError

DEFAULT_SUBNET_SIZE = 64
DEFAULT_REALIZE_TIMEOUT_SECONDS = 120.0
DEFAULT_REALIZE_POLL_INTERVAL_SECONDS = 1.0
DEFAULT_IP_RELEASE_TIMEOUT_SECONDS = 600.0
DEFAULT_IP_RELEASE_POLL_INTERVAL_SECONDS = 5.0
DEFAULT_STORE_RESYNC_INTERVAL_SECONDS = 600
DEFAULT_RETRY_DELAY_SECONDS = 60
DEFAULT_RETRY_MAX_DELAY_SECONDS = 900
DEFAULT_METRICS_PORT = 9090


@dataclass(frozen=True)
class OperatorConfig:
    """Operator configuration.

    Timeouts and intervals are in seconds. An ip_release_timeout of 0 waits
    for the IP pool to drain without a deadline.
    """

    nsx_manager_url: str
    cluster: str
    nsx_username: str = ""
    nsx_password: str = ""
    nsx_token: str = ""
    nsx_ca_file: str = ""
    nsx_insecure: bool = False
    org_id: str = "default"
    project_id: str = "default"
    vpc_id: str = "default"
    default_subnet_size: int = DEFAULT_SUBNET_SIZE
    realize_timeout: float = DEFAULT_REALIZE_TIMEOUT_SECONDS
    realize_poll_interval: float = DEFAULT_REALIZE_POLL_INTERVAL_SECONDS
    ip_release_timeout: float = DEFAULT_IP_RELEASE_TIMEOUT_SECONDS
    ip_release_poll_interval: float = DEFAULT_IP_RELEASE_POLL_INTERVAL_SECONDS
    store_resync_interval: int = DEFAULT_STORE_RESYNC_INTERVAL_SECONDS
    worker_count: int = 1
    retry_delay: int = DEFAULT_RETRY_DELAY_SECONDS
    retry_max_delay: int = DEFAULT_RETRY_MAX_DELAY_SECONDS
    watch_namespace: str = ""
    metrics_port: int = DEFAULT_METRICS_PORT

    def __post_init__(self) -> None:
        errors: list[str] = []

        if not self.nsx_manager_url:
            errors.append("NSX_MANAGER_URL is required")
        if not self.cluster:
            errors.append("NSX_CLUSTER is required")
        if self.default_subnet_size < 1:
            errors.append("DEFAULT_SUBNET_SIZE must be positive")
        if self.realize_timeout <= 0:
            errors.append("REALIZE_TIMEOUT must be positive")
        if self.realize_poll_interval <= 0:
            errors.append("REALIZE_POLL_INTERVAL must be positive")
        if self.ip_release_timeout < 0:
            errors.append("IP_RELEASE_TIMEOUT must not be negative")
        if self.ip_release_poll_interval <= 0:
            errors.append("IP_RELEASE_POLL_INTERVAL must be positive")
        if self.store_resync_interval < 0:
            errors.append("STORE_RESYNC_INTERVAL must not be negative")
        if self.worker_count < 1:
            errors.append("WORKER_COUNT must be at least 1")
        if self.retry_delay < 1:
            errors.append("RETRY_DELAY must be positive")
        if self.retry_max_delay < self.retry_delay:
            errors.append("RETRY_MAX_DELAY must not be less than RETRY_DELAY")

        if errors:
            error_msg = "Configuration validation failed:\n  - " + "\n  - ".join(errors)
            raise ConfigurationError(error_msg)

    @property
    def verify(self) -> bool | str:
        """TLS verification argument for requests."""
        if self.nsx_insecure:
            return False
        return self.nsx_ca_file or True

    @classmethod
    def from_env(cls) -> "OperatorConfig":
        """Load configuration from environment variables.

        Environment Variables:
            NSX_MANAGER_URL: Base URL of the NSX manager (required)
            NSX_CLUSTER: Cluster identity used in tags and as domain id (required)
            NSX_USERNAME / NSX_PASSWORD: Basic authentication
            NSX_TOKEN: Bearer token, preferred over basic auth when set
            NSX_CA_FILE: CA bundle for TLS verification
            NSX_INSECURE: Disable TLS verification (default: false)
            NSX_ORG / NSX_PROJECT / NSX_VPC: VPC locator (default: default)
            DEFAULT_SUBNET_SIZE: Subnet size when a spec omits it (default: 64)
            REALIZE_TIMEOUT: Realization deadline (default: 120)
            REALIZE_POLL_INTERVAL: Realization poll interval (default: 1)
            IP_RELEASE_TIMEOUT: IP pool drain deadline, 0 for none (default: 600)
            IP_RELEASE_POLL_INTERVAL: IP pool poll interval (default: 5)
            STORE_RESYNC_INTERVAL: Cache reload interval, 0 disables (default: 600)
            WORKER_COUNT: Parallel reconcile workers (default: CPU count)
            RETRY_DELAY: Delay before the first retry of a failed reconcile,
                doubled on every further retry (default: 60)
            RETRY_MAX_DELAY: Upper bound of the retry delay (default: 900)
            WATCH_NAMESPACE: Restrict watching to one namespace
            METRICS_PORT: Prometheus exporter port (default: 9090)
        """

        def get_int(key: str, default: int) -> int:
            value = os.environ.get(key)
            if value is None or value == "":
                return default
            try:
                return int(value)
            except ValueError as e:
                raise ConfigurationError(f"{key} must be an integer: {value}") from e

        def get_float(key: str, default: float) -> float:
            value = os.environ.get(key)
            if value is None or value == "":
                return default
            try:
                return float(value)
            except ValueError as e:
                raise ConfigurationError(f"{key} must be a number: {value}") from e

        def get_bool(key: str, default: bool) -> bool:
            value = os.environ.get(key, "").lower()
            if not value:
                return default
            return value in ("true", "1", "yes")

        return cls(
            nsx_manager_url=os.environ.get("NSX_MANAGER_URL", "").rstrip("/"),
            cluster=os.environ.get("NSX_CLUSTER", ""),
            nsx_username=os.environ.get("NSX_USERNAME", ""),
            nsx_password=os.environ.get("NSX_PASSWORD", ""),
            nsx_token=os.environ.get("NSX_TOKEN", ""),
            nsx_ca_file=os.environ.get("NSX_CA_FILE", ""),
            nsx_insecure=get_bool("NSX_INSECURE", False),
            org_id=os.environ.get("NSX_ORG", "default"),
            project_id=os.environ.get("NSX_PROJECT", "default"),
            vpc_id=os.environ.get("NSX_VPC", "default"),
            default_subnet_size=get_int("DEFAULT_SUBNET_SIZE", DEFAULT_SUBNET_SIZE),
            realize_timeout=get_float(
                "REALIZE_TIMEOUT", DEFAULT_REALIZE_TIMEOUT_SECONDS
            ),
            realize_poll_interval=get_float(
                "REALIZE_POLL_INTERVAL", DEFAULT_REALIZE_POLL_INTERVAL_SECONDS
            ),
            ip_release_timeout=get_float(
                "IP_RELEASE_TIMEOUT", DEFAULT_IP_RELEASE_TIMEOUT_SECONDS
            ),
            ip_release_poll_interval=get_float(
                "IP_RELEASE_POLL_INTERVAL", DEFAULT_IP_RELEASE_POLL_INTERVAL_SECONDS
            ),
            store_resync_interval=get_int(
                "STORE_RESYNC_INTERVAL", DEFAULT_STORE_RESYNC_INTERVAL_SECONDS
            ),
            worker_count=get_int("WORKER_COUNT", os.cpu_count() or 1),
            retry_delay=get_int("RETRY_DELAY", DEFAULT_RETRY_DELAY_SECONDS),
            retry_max_delay=get_int("RETRY_MAX_DELAY", DEFAULT_RETRY_MAX_DELAY_SECONDS),
            watch_namespace=os.environ.get("WATCH_NAMESPACE", ""),
            metrics_port=get_int("METRICS_PORT", DEFAULT_METRICS_PORT),
        )
