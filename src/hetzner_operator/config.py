"""Configuration management with validation.

Bounds are enforced at load time so a misconfigured operator fails at
startup rather than in the middle of a convergence pass. API tokens are
deliberately not part of this configuration; callers resolve credentials
and hand the token to ``provider.new_client``.
"""

from __future__ import annotations

import os
from dataclasses import dataclass

from .hcloud_client import DEFAULT_ENDPOINT


class ConfigurationError(Exception):
    """Raised when configuration validation fails."""

    pass


# Configuration constants with documented bounds
DEFAULT_RECONCILE_INTERVAL_SECONDS = 60
MIN_RECONCILE_INTERVAL_SECONDS = 1
MAX_RECONCILE_INTERVAL_SECONDS = 3600

DEFAULT_ACTION_TIMEOUT_SECONDS = 60.0
DEFAULT_ACTION_POLL_INTERVAL_SECONDS = 1.0
MAX_ACTION_TIMEOUT_SECONDS = 3600.0

DEFAULT_REQUEST_TIMEOUT_SECONDS = 30.0
DEFAULT_MAX_CONCURRENT_PASSES = 10
MAX_CONCURRENT_PASSES_LIMIT = 100

# Circuit breaker: pause a single instance after repeated failed passes
MAX_CONSECUTIVE_FAILURES = 5
CIRCUIT_BREAKER_RESET_SECONDS = 300

VALID_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass(frozen=True)
class Config:
    """Operator configuration.

    All fields are validated at construction time. Invalid configurations
    raise ConfigurationError immediately rather than failing at runtime.
    """

    # Timing
    reconcile_interval_seconds: int = DEFAULT_RECONCILE_INTERVAL_SECONDS
    action_timeout_seconds: float = DEFAULT_ACTION_TIMEOUT_SECONDS
    action_poll_interval_seconds: float = DEFAULT_ACTION_POLL_INTERVAL_SECONDS
    request_timeout_seconds: float = DEFAULT_REQUEST_TIMEOUT_SECONDS

    # Scheduling
    max_concurrent_passes: int = DEFAULT_MAX_CONCURRENT_PASSES

    # Provider
    api_endpoint: str = DEFAULT_ENDPOINT

    # Logging
    log_level: str = "INFO"
    enable_audit_logging: bool = True

    def __post_init__(self) -> None:
        """Validate configuration after initialization."""
        errors: list[str] = []

        if not (
            MIN_RECONCILE_INTERVAL_SECONDS
            <= self.reconcile_interval_seconds
            <= MAX_RECONCILE_INTERVAL_SECONDS
        ):
            errors.append(
                f"RECONCILE_INTERVAL must be between {MIN_RECONCILE_INTERVAL_SECONDS} "
                f"and {MAX_RECONCILE_INTERVAL_SECONDS} seconds"
            )

        if not (0 < self.action_timeout_seconds <= MAX_ACTION_TIMEOUT_SECONDS):
            errors.append(
                f"ACTION_TIMEOUT must be positive and at most {MAX_ACTION_TIMEOUT_SECONDS:g} seconds"
            )

        if self.action_poll_interval_seconds <= 0:
            errors.append("ACTION_POLL_INTERVAL must be positive")
        elif self.action_poll_interval_seconds > self.action_timeout_seconds:
            errors.append("ACTION_POLL_INTERVAL cannot exceed ACTION_TIMEOUT")

        if self.request_timeout_seconds <= 0:
            errors.append("REQUEST_TIMEOUT must be positive")

        if not (1 <= self.max_concurrent_passes <= MAX_CONCURRENT_PASSES_LIMIT):
            errors.append(
                f"MAX_CONCURRENT_PASSES must be between 1 and {MAX_CONCURRENT_PASSES_LIMIT}"
            )

        if not self.api_endpoint.startswith(("https://", "http://")):
            errors.append(f"HCLOUD_ENDPOINT must be an http(s) URL: {self.api_endpoint}")

        if self.log_level.upper() not in VALID_LOG_LEVELS:
            errors.append(f"LOG_LEVEL must be one of {VALID_LOG_LEVELS}: {self.log_level}")

        if errors:
            error_msg = "Configuration validation failed:\n  - " + "\n  - ".join(errors)
            raise ConfigurationError(error_msg)

    @classmethod
    def from_env(cls) -> Config:
        """Load configuration from environment variables.

        Environment Variables:
            RECONCILE_INTERVAL: Seconds between passes per instance (default: 60)
            ACTION_TIMEOUT: Max seconds to wait for one provider action (default: 60)
            ACTION_POLL_INTERVAL: Seconds between action status polls (default: 1)
            REQUEST_TIMEOUT: Timeout for a single HTTP request (default: 30)
            MAX_CONCURRENT_PASSES: Passes allowed to run at once (default: 10)
            HCLOUD_ENDPOINT: Hetzner Cloud API base URL
            LOG_LEVEL: Root log level (default: INFO)
            ENABLE_AUDIT_LOGGING: Emit one provenance record per pass (default: true)
        """

        def get_int(key: str, default: int) -> int:
            value = os.environ.get(key)
            if value is None:
                return default
            try:
                return int(value)
            except ValueError as e:
                raise ConfigurationError(f"{key} must be an integer: {value}") from e

        def get_float(key: str, default: float) -> float:
            value = os.environ.get(key)
            if value is None:
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
            reconcile_interval_seconds=get_int(
                "RECONCILE_INTERVAL", DEFAULT_RECONCILE_INTERVAL_SECONDS
            ),
            action_timeout_seconds=get_float("ACTION_TIMEOUT", DEFAULT_ACTION_TIMEOUT_SECONDS),
            action_poll_interval_seconds=get_float(
                "ACTION_POLL_INTERVAL", DEFAULT_ACTION_POLL_INTERVAL_SECONDS
            ),
            request_timeout_seconds=get_float("REQUEST_TIMEOUT", DEFAULT_REQUEST_TIMEOUT_SECONDS),
            max_concurrent_passes=get_int("MAX_CONCURRENT_PASSES", DEFAULT_MAX_CONCURRENT_PASSES),
            api_endpoint=os.environ.get("HCLOUD_ENDPOINT", DEFAULT_ENDPOINT),
            log_level=os.environ.get("LOG_LEVEL", "INFO"),
            enable_audit_logging=get_bool("ENABLE_AUDIT_LOGGING", True),
        )
