"""Kata configuration management."""

from __future__ import annotations

import os
from dataclasses import dataclass, fields
from enum import Enum
from pathlib import Path
from typing import Optional

import yaml

from kata.exceptions import ConfigurationError


class Locale(Enum):
    """Content locales the loader knows about."""

    ENGLISH = "english"
    SPANISH = "espanol"
    PORTUGUESE = "portuguese"
    GERMAN = "german"
    ITALIAN = "italian"
    JAPANESE = "japanese"
    UKRAINIAN = "ukrainian"
    CHINESE = "chinese"

    @classmethod
    def from_string(cls, value: str) -> Locale:
        """Create Locale from string value."""
        try:
            return cls(value.lower())
        except ValueError:
            valid = ", ".join(loc.value for loc in cls)
            raise ConfigurationError(f"Invalid locale: {value}. Valid locales: {valid}", config_key="locale")


FALLBACK_LOCALE = Locale.ENGLISH


@dataclass
class KataConfig:
    """Configuration for curriculum builds and sandbox runs."""

    # Content
    content_dir: Path = Path("curriculum")
    locale: Locale = FALLBACK_LOCALE
    parse_workers: int = 8

    # Sandbox limits
    default_timeout_ms: int = 5000
    min_timeout_ms: int = 50
    memory_limit_mb: int = 256
    max_workers: int = 4
    kill_grace_ms: int = 500
    startup_timeout_ms: int = 10000

    def __post_init__(self) -> None:
        """Coerce loosely typed values."""
        self.content_dir = Path(self.content_dir)
        if isinstance(self.locale, str):
            self.locale = Locale.from_string(self.locale)
        self.validate()

    def validate(self) -> None:
        """Check numeric limits are sane.

        Raises:
            ConfigurationError: If any limit is out of range.
        """
        for key in ("parse_workers", "max_workers"):
            if getattr(self, key) < 1:
                raise ConfigurationError(f"{key} must be at least 1", config_key=key)
        if self.min_timeout_ms < 1:
            raise ConfigurationError("min_timeout_ms must be positive", config_key="min_timeout_ms")
        if self.default_timeout_ms < self.min_timeout_ms:
            raise ConfigurationError(
                f"default_timeout_ms ({self.default_timeout_ms}) is below min_timeout_ms ({self.min_timeout_ms})",
                config_key="default_timeout_ms",
            )
        if self.memory_limit_mb < 16:
            raise ConfigurationError("memory_limit_mb must be at least 16", config_key="memory_limit_mb")
        if self.kill_grace_ms < 0:
            raise ConfigurationError("kill_grace_ms must not be negative", config_key="kill_grace_ms")
        if self.startup_timeout_ms < 1:
            raise ConfigurationError("startup_timeout_ms must be positive", config_key="startup_timeout_ms")

    @property
    def memory_limit_bytes(self) -> int:
        return self.memory_limit_mb * 1024 * 1024

    def clamp_timeout(self, requested_ms: Optional[int]) -> int:
        """Resolve a caller's timeout override; callers may only shorten it."""
        if requested_ms is None:
            return self.default_timeout_ms
        return max(self.min_timeout_ms, min(int(requested_ms), self.default_timeout_ms))

    @classmethod
    def from_env(cls) -> KataConfig:
        """Load configuration from environment variables."""
        try:
            config = cls(
                content_dir=Path(os.getenv("KATA_CONTENT_DIR", "curriculum")),
                locale=os.getenv("KATA_LOCALE", FALLBACK_LOCALE.value),
                default_timeout_ms=int(os.getenv("KATA_TIMEOUT_MS", "5000")),
                memory_limit_mb=int(os.getenv("KATA_MEMORY_LIMIT_MB", "256")),
                max_workers=int(os.getenv("KATA_MAX_WORKERS", "4")),
                parse_workers=int(os.getenv("KATA_PARSE_WORKERS", "8")),
            )
        except ValueError as e:
            raise ConfigurationError(f"Invalid numeric setting in environment: {e}")
        return config

    @classmethod
    def from_file(cls, path: Path) -> KataConfig:
        """
        Load configuration from a YAML file.

        Only the known option names are accepted.

        Args:
            path: Path to the YAML file.

        Returns:
            The loaded configuration.

        Raises:
            ConfigurationError: On unreadable files, unknown keys or bad values.
        """
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise ConfigurationError(f"Cannot read config file {path}: {e}")

        if not isinstance(data, dict):
            raise ConfigurationError(f"Config file {path} must contain a mapping")

        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ConfigurationError(f"Unknown config option(s): {', '.join(unknown)}", config_key=unknown[0])

        try:
            return cls(**data)
        except TypeError as e:
            raise ConfigurationError(f"Invalid config value: {e}")

    def to_dict(self) -> dict:
        """Convert configuration to dictionary."""
        return {
            "content": {
                "content_dir": str(self.content_dir),
                "locale": self.locale.value,
                "parse_workers": self.parse_workers,
            },
            "sandbox": {
                "default_timeout_ms": self.default_timeout_ms,
                "min_timeout_ms": self.min_timeout_ms,
                "memory_limit_mb": self.memory_limit_mb,
                "max_workers": self.max_workers,
                "kill_grace_ms": self.kill_grace_ms,
                "startup_timeout_ms": self.startup_timeout_ms,
            },
        }
