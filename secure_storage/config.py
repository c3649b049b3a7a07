"""
Secure storage configuration.

Defaults match the mobile client policy: a 24 hour key rotation interval,
three retries with a fixed one second delay and 10,000 PBKDF2 iterations.
Values can be overridden from the environment (or a `.env` file).
"""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Callable, List, Optional, TypeVar

from dotenv import load_dotenv

from .errors import ConfigError

DEFAULT_NAMESPACE_PREFIX = "secure_"
DEFAULT_ROTATION_MARKER_KEY = "__secure_storage_key_rotation__"
DEFAULT_MAX_RETRIES = 3
DEFAULT_RETRY_DELAY = 1.0  # seconds
DEFAULT_ROTATION_INTERVAL = timedelta(hours=24)
MIN_KDF_ITERATIONS = 10_000
MIN_ROTATION_INTERVAL = timedelta(hours=1)
MAX_RETRIES_LIMIT = 10


def _default_platform_id() -> str:
    return f"{sys.platform}-secure-storage"


@dataclass
class SecureStoreConfig:
    """Policy constants for a secure store instance."""

    namespace_prefix: str = DEFAULT_NAMESPACE_PREFIX
    rotation_marker_key: str = DEFAULT_ROTATION_MARKER_KEY
    rotation_interval: timedelta = DEFAULT_ROTATION_INTERVAL
    max_retries: int = DEFAULT_MAX_RETRIES
    retry_delay: float = DEFAULT_RETRY_DELAY
    kdf_iterations: int = MIN_KDF_ITERATIONS
    platform_id: str = field(default_factory=_default_platform_id)

    @classmethod
    def from_env(cls, env_file: Optional[str] = None) -> SecureStoreConfig:
        """
        Build a config from SECURE_STORAGE_* environment variables.

        Args:
            env_file: Optional path to a .env file (defaults to dotenv lookup)

        Returns:
            SecureStoreConfig with environment overrides applied

        Raises:
            ConfigError: If a variable cannot be parsed
        """
        load_dotenv(env_file)
        config = cls()

        prefix = os.environ.get("SECURE_STORAGE_PREFIX")
        if prefix is not None:
            config.namespace_prefix = prefix

        platform_id = os.environ.get("SECURE_STORAGE_PLATFORM_ID")
        if platform_id:
            config.platform_id = platform_id

        config.max_retries = _env_number(
            "SECURE_STORAGE_MAX_RETRIES", int, config.max_retries
        )
        config.retry_delay = _env_number(
            "SECURE_STORAGE_RETRY_DELAY", float, config.retry_delay
        )
        config.kdf_iterations = _env_number(
            "SECURE_STORAGE_KDF_ITERATIONS", int, config.kdf_iterations
        )
        hours = _env_number("SECURE_STORAGE_ROTATION_HOURS", float, None)
        if hours is not None:
            config.rotation_interval = timedelta(hours=hours)

        return config

    def validate(self) -> List[str]:
        """
        Check the policy against the minimum security requirements.

        Returns:
            List of problems, empty when the configuration is valid
        """
        problems = []
        if not self.namespace_prefix:
            problems.append("namespace_prefix must not be empty")
        elif self.rotation_marker_key.startswith(self.namespace_prefix):
            problems.append("rotation_marker_key must live outside the namespace")
        if not 1 <= self.max_retries <= MAX_RETRIES_LIMIT:
            problems.append(f"max_retries must be between 1 and {MAX_RETRIES_LIMIT}")
        if self.retry_delay < 0:
            problems.append("retry_delay must not be negative")
        if self.rotation_interval < MIN_ROTATION_INTERVAL:
            problems.append("rotation_interval must be at least one hour")
        if self.kdf_iterations < MIN_KDF_ITERATIONS:
            problems.append(f"kdf_iterations must be at least {MIN_KDF_ITERATIONS}")
        return problems


Number = TypeVar("Number", int, float)


def _env_number(
    name: str, cast: Callable[[str], Number], default: Optional[Number]
) -> Optional[Number]:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return cast(raw)
    except ValueError:
        raise ConfigError(f"Invalid value for {name}: {raw!r}")
