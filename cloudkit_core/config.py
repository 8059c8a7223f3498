"""CloudKit configuration system.

Externalizes the settings a container implementation needs at runtime:
which container and database to talk to, the credentials to present, and
request timeouts.

Configuration can be loaded from:
- Environment variables (CLOUDKIT_*), see CloudKitConfig.from_env()
- Programmatic construction

This module defines the schema. Loading .env files is left to entry points.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, field

DEFAULT_BASE_URL = "https://api.apple-cloudkit.com"

ENVIRONMENTS = frozenset({"development", "production"})
DATABASES = frozenset({"public", "private", "shared"})


@dataclass
class ContainerConfig:
    """Remote container configuration."""

    identifier: str = ""
    """Container identifier, e.g. "iCloud.com.example.tasks"."""

    environment: str = "development"
    database: str = "public"
    api_token: str = ""
    web_auth_token: str = ""
    """Per-user token; without it only the public database is readable."""

    base_url: str = DEFAULT_BASE_URL
    request_timeout: float = 30.0

    def __post_init__(self) -> None:
        if self.environment not in ENVIRONMENTS:
            raise ValueError(
                f"environment must be one of {sorted(ENVIRONMENTS)}, "
                f"got {self.environment!r}"
            )
        if self.database not in DATABASES:
            raise ValueError(
                f"database must be one of {sorted(DATABASES)}, got {self.database!r}"
            )
        if self.request_timeout <= 0:
            raise ValueError("request_timeout must be positive")


@dataclass
class LoggingConfig:
    """Logging configuration applied by command-line entry points."""

    level: str = "INFO"


@dataclass
class CloudKitConfig:
    """Top-level CloudKit configuration.

    Load from the environment:
        config = CloudKitConfig.from_env()

    Or construct programmatically:
        config = CloudKitConfig(
            container=ContainerConfig(identifier="iCloud.com.example.tasks", ...),
        )
    """

    container: ContainerConfig = field(default_factory=ContainerConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> CloudKitConfig:
        """Build a configuration from CLOUDKIT_* environment variables.

        Args:
            environ: Mapping to read instead of os.environ.

        Raises:
            ValueError: A variable holds an invalid value.
        """
        env = os.environ if environ is None else environ
        timeout_raw = env.get("CLOUDKIT_REQUEST_TIMEOUT", "30")
        try:
            timeout = float(timeout_raw)
        except ValueError:
            raise ValueError(
                f"CLOUDKIT_REQUEST_TIMEOUT must be a number, got {timeout_raw!r}"
            ) from None

        return cls(
            container=ContainerConfig(
                identifier=env.get("CLOUDKIT_CONTAINER", ""),
                environment=env.get("CLOUDKIT_ENVIRONMENT", "development"),
                database=env.get("CLOUDKIT_DATABASE", "public"),
                api_token=env.get("CLOUDKIT_API_TOKEN", ""),
                web_auth_token=env.get("CLOUDKIT_WEB_AUTH_TOKEN", ""),
                base_url=env.get("CLOUDKIT_BASE_URL", DEFAULT_BASE_URL),
                request_timeout=timeout,
            ),
            logging=LoggingConfig(level=env.get("CLOUDKIT_LOG_LEVEL", "INFO").upper()),
        )
