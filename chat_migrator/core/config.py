"""
Configuration module for the chat migration tool.

This module holds the built-in rate limit defaults for every throttling
tier, the command profiles used by the export and import commands, and the
functions that load YAML overrides and merge them over those defaults.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Mapping

import yaml

from chat_migrator.constants import DEFAULT_OUTPUT_DIR
from chat_migrator.exceptions import ConfigError
from chat_migrator.types import ServiceTier
from chat_migrator.utils.logging import log_with_context


@dataclass(frozen=True)
class RateLimitConfig:
    """Token bucket and retry settings for one tier.

    Delays are in seconds. Instances are immutable; replacing the config of
    a tier means building a new bucket from a new instance.
    """

    capacity: int
    refill_rate: float  # tokens per second
    max_retries: int
    base_delay: float
    max_delay: float

    def __post_init__(self) -> None:
        if self.capacity < 1:
            raise ConfigError(f"capacity must be >= 1, got {self.capacity}")
        if self.refill_rate <= 0:
            raise ConfigError(f"refill_rate must be > 0, got {self.refill_rate}")
        if self.max_retries < 0:
            raise ConfigError(f"max_retries must be >= 0, got {self.max_retries}")
        if self.base_delay < 0 or self.max_delay < 0:
            raise ConfigError("retry delays must be non-negative")
        if self.base_delay > self.max_delay:
            raise ConfigError(
                f"base_delay ({self.base_delay}s) exceeds max_delay ({self.max_delay}s)"
            )

    def merged(self, override: RateLimitOverride | None) -> RateLimitConfig:
        """Return a copy with every field the override sets replaced."""
        if override is None:
            return self
        changes = {k: v for k, v in override.as_changes().items() if v is not None}
        return replace(self, **changes) if changes else self


@dataclass(frozen=True)
class RateLimitOverride:
    """A partial :class:`RateLimitConfig`; unset fields keep the default."""

    capacity: int | None = None
    refill_rate: float | None = None
    max_retries: int | None = None
    base_delay: float | None = None
    max_delay: float | None = None

    _KEYS = ("capacity", "refill_rate", "max_retries", "base_delay_ms", "max_delay_ms")

    @classmethod
    def from_dict(cls, data: Mapping[str, Any] | None) -> RateLimitOverride:
        """Build an override from a YAML mapping (delays in milliseconds)."""
        if not data:
            return cls()
        if not isinstance(data, Mapping):
            raise ConfigError(f"Rate limit settings must be a mapping, got {data!r}")
        unknown = set(data) - set(cls._KEYS)
        if unknown:
            raise ConfigError(
                f"Unknown rate limit option(s): {', '.join(sorted(unknown))}"
            )
        try:
            return cls(
                capacity=_optional(int, data.get("capacity")),
                refill_rate=_optional(float, data.get("refill_rate")),
                max_retries=_optional(int, data.get("max_retries")),
                base_delay=_ms_to_seconds(data.get("base_delay_ms")),
                max_delay=_ms_to_seconds(data.get("max_delay_ms")),
            )
        except (TypeError, ValueError) as e:
            raise ConfigError(f"Invalid rate limit option: {e}") from e

    def as_changes(self) -> dict[str, Any]:
        return {
            "capacity": self.capacity,
            "refill_rate": self.refill_rate,
            "max_retries": self.max_retries,
            "base_delay": self.base_delay,
            "max_delay": self.max_delay,
        }

    def to_dict(self) -> dict[str, Any]:
        """Render the set fields in the YAML shape (delays in milliseconds)."""
        data: dict[str, Any] = {
            "capacity": self.capacity,
            "refill_rate": self.refill_rate,
            "max_retries": self.max_retries,
            "base_delay_ms": None if self.base_delay is None else int(self.base_delay * 1000),
            "max_delay_ms": None if self.max_delay is None else int(self.max_delay * 1000),
        }
        return {k: v for k, v in data.items() if v is not None}

    def combined(self, other: RateLimitOverride | None) -> RateLimitOverride:
        """Layer ``other`` on top of this override."""
        if other is None:
            return self
        mine = self.as_changes()
        mine.update({k: v for k, v in other.as_changes().items() if v is not None})
        return RateLimitOverride(**mine)


def _optional(convert: Any, value: Any) -> Any:
    return None if value is None else convert(value)


def _ms_to_seconds(value: Any) -> float | None:
    return None if value is None else float(value) / 1000.0


# Default rate limit configurations based on each platform's documented limits
DEFAULT_TIER_CONFIGS: dict[ServiceTier, RateLimitConfig] = {
    # 3000/minute project quota, kept under with a buffer
    ServiceTier.GOOGLE_CHAT: RateLimitConfig(
        capacity=50, refill_rate=50, max_retries=5, base_delay=1.0, max_delay=30.0
    ),
    # ~100/minute
    ServiceTier.GOOGLE_DIRECTORY: RateLimitConfig(
        capacity=10, refill_rate=1.5, max_retries=3, base_delay=2.0, max_delay=60.0
    ),
    # Effective per-channel limit for untiered Slack calls
    ServiceTier.SLACK: RateLimitConfig(
        capacity=5, refill_rate=1, max_retries=5, base_delay=2.0, max_delay=60.0
    ),
    ServiceTier.SLACK_TIER_1: RateLimitConfig(
        capacity=2, refill_rate=1 / 60, max_retries=3, base_delay=5.0, max_delay=300.0
    ),
    ServiceTier.SLACK_TIER_2: RateLimitConfig(
        capacity=5, refill_rate=20 / 60, max_retries=3, base_delay=3.0, max_delay=180.0
    ),
    ServiceTier.SLACK_TIER_3: RateLimitConfig(
        capacity=10, refill_rate=50 / 60, max_retries=5, base_delay=2.0, max_delay=120.0
    ),
    ServiceTier.SLACK_TIER_4: RateLimitConfig(
        capacity=20, refill_rate=100 / 60, max_retries=5, base_delay=1.0, max_delay=60.0
    ),
    # chat.postMessage: 1 per second per channel with short bursts
    ServiceTier.SLACK_SPECIAL: RateLimitConfig(
        capacity=3, refill_rate=1, max_retries=5, base_delay=1.0, max_delay=30.0
    ),
}


def get_default_config(tier: str) -> RateLimitConfig:
    """Return the built-in config for a tier.

    Raises:
        ConfigError: If the tier has no built-in default.
    """
    try:
        return DEFAULT_TIER_CONFIGS[ServiceTier(tier)]
    except (KeyError, ValueError):
        raise ConfigError(f"No default rate limit configured for tier '{tier}'") from None


def merge_with_defaults(
    tier: str, override: RateLimitOverride | None = None
) -> RateLimitConfig:
    """Merge a partial override over the tier's built-in default."""
    return get_default_config(tier).merged(override)


@dataclass(frozen=True)
class CommandProfile:
    """Rate limit overrides and parallelism for one command."""

    name: str
    max_concurrent_operations: int = 1
    overrides: Mapping[str, RateLimitOverride] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.max_concurrent_operations < 1:
            raise ConfigError(
                f"max_concurrent_operations must be >= 1, got {self.max_concurrent_operations}"
            )

    def tier_configs(self) -> dict[str, RateLimitConfig]:
        """Fully merged configs for every tier this profile overrides."""
        return {
            tier: merge_with_defaults(tier, override)
            for tier, override in self.overrides.items()
        }

    def layered(
        self,
        overrides: Mapping[str, RateLimitOverride],
        max_concurrent_operations: int | None = None,
    ) -> CommandProfile:
        """Return a profile with ``overrides`` layered over this one."""
        merged: dict[str, RateLimitOverride] = dict(self.overrides)
        for tier, override in overrides.items():
            merged[tier] = merged.get(tier, RateLimitOverride()).combined(override)
        return CommandProfile(
            name=self.name,
            max_concurrent_operations=(
                max_concurrent_operations
                if max_concurrent_operations is not None
                else self.max_concurrent_operations
            ),
            overrides=merged,
        )


EXPORT_PROFILE = CommandProfile(
    name="export",
    max_concurrent_operations=5,  # up to 5 spaces at once
    overrides={
        ServiceTier.GOOGLE_CHAT.value: RateLimitOverride(capacity=100, refill_rate=45),
        ServiceTier.GOOGLE_DIRECTORY.value: RateLimitOverride(refill_rate=1.2),
    },
)

IMPORT_PROFILE = CommandProfile(
    name="import",
    max_concurrent_operations=1,  # channels one at a time
    overrides={
        # chat.postMessage runs on slack-special
        ServiceTier.SLACK_SPECIAL.value: RateLimitOverride(capacity=3, refill_rate=0.8),
    },
)

BUILTIN_PROFILES: dict[str, CommandProfile] = {
    EXPORT_PROFILE.name: EXPORT_PROFILE,
    IMPORT_PROFILE.name: IMPORT_PROFILE,
}


def _parse_tier_overrides(data: Any, where: str) -> dict[str, RateLimitOverride]:
    if not data:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"'{where}' must be a mapping of tier to settings")
    overrides = {}
    for tier, settings in data.items():
        # Validates the tier name
        get_default_config(tier)
        overrides[str(tier)] = RateLimitOverride.from_dict(settings)
    return overrides


@dataclass
class ProfileConfig:
    """Profile section of the YAML config."""

    max_concurrent_operations: int | None = None
    rate_limits: dict[str, RateLimitOverride] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, name: str, data: dict[str, Any] | None) -> ProfileConfig:
        if not data:
            return cls()
        try:
            max_concurrent = _optional(int, data.get("max_concurrent_operations"))
        except (TypeError, ValueError) as e:
            raise ConfigError(
                f"Invalid profiles.{name}.max_concurrent_operations: {e}"
            ) from e
        return cls(
            max_concurrent_operations=max_concurrent,
            rate_limits=_parse_tier_overrides(
                data.get("rate_limits"), f"profiles.{name}.rate_limits"
            ),
        )


@dataclass
class MigrationConfig:
    """Typed configuration for the migration tool.

    All fields have defaults, so an empty or missing YAML file yields the
    built-in behavior.
    """

    rate_limits: dict[str, RateLimitOverride] = field(default_factory=dict)
    profiles: dict[str, ProfileConfig] = field(default_factory=dict)
    output_dir: str = DEFAULT_OUTPUT_DIR
    abort_on_auth_failure: bool = True

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> MigrationConfig:
        """Create a MigrationConfig from a raw config dictionary."""
        raw_profiles = data.get("profiles") or {}
        if not isinstance(raw_profiles, dict):
            raise ConfigError("'profiles' must be a mapping of command to settings")
        unknown = set(raw_profiles) - set(BUILTIN_PROFILES)
        if unknown:
            raise ConfigError(f"Unknown profile(s): {', '.join(sorted(unknown))}")
        config = cls(
            rate_limits=_parse_tier_overrides(data.get("rate_limits"), "rate_limits"),
            profiles={
                name: ProfileConfig.from_dict(name, settings)
                for name, settings in raw_profiles.items()
            },
            output_dir=data.get("output_dir", DEFAULT_OUTPUT_DIR),
            abort_on_auth_failure=data.get("abort_on_auth_failure", True),
        )
        # Build every profile once so invalid merged values fail at load
        for name in BUILTIN_PROFILES:
            config.profile(name).tier_configs()
        return config

    def profile(self, name: str) -> CommandProfile:
        """Build the effective profile for a command.

        Layers, lowest precedence first: the built-in profile, the global
        ``rate_limits`` section, then the profile's own ``rate_limits``.
        """
        try:
            base = BUILTIN_PROFILES[name]
        except KeyError:
            raise ConfigError(f"Unknown profile '{name}'") from None
        section = self.profiles.get(name, ProfileConfig())
        return base.layered(self.rate_limits).layered(
            section.rate_limits, section.max_concurrent_operations
        )


def load_config(config_path: Path) -> MigrationConfig:
    """
    Load configuration from YAML file and apply default values.

    A missing or unreadable file logs a warning and yields the defaults. A
    readable file with invalid values raises instead, so a typo in a rate
    limit never silently falls back to a default.

    Args:
        config_path: Path to the config YAML file

    Returns:
        MigrationConfig with all necessary defaults applied

    Raises:
        ConfigError: If the file contents are not a valid configuration.
    """
    raw: dict[str, Any] = {}

    if config_path.exists():
        try:
            with open(config_path) as f:
                loaded_config = yaml.safe_load(f)
                # Handle None result from empty file
                if loaded_config is not None:
                    raw = loaded_config
            log_with_context(logging.INFO, f"Loaded configuration from {config_path}")
        except (yaml.YAMLError, OSError) as e:
            log_with_context(
                logging.WARNING, f"Failed to load config file {config_path}: {e}"
            )
    else:
        log_with_context(
            logging.WARNING,
            f"Config file {config_path} not found, using default settings",
        )

    if not isinstance(raw, dict):
        raise ConfigError(f"Config file {config_path} must contain a mapping")

    return MigrationConfig.from_dict(raw)


def create_default_config(output_path: Path) -> bool:
    """
    Create a default configuration file with recommended settings.

    The file lists every tier and profile option with the built-in values
    so they can be tuned. An existing file is never overwritten.

    Args:
        output_path: Path where the default config should be saved

    Returns:
        True if the config file was created successfully, False otherwise
    """
    if output_path.exists():
        log_with_context(
            logging.WARNING,
            f"Config file {output_path} already exists, not overwriting",
        )
        return False

    default_config = {
        "output_dir": DEFAULT_OUTPUT_DIR,
        "abort_on_auth_failure": True,
        "rate_limits": {},
        "profiles": {
            name: {
                "max_concurrent_operations": profile.max_concurrent_operations,
                "rate_limits": {
                    tier: override.to_dict()
                    for tier, override in profile.overrides.items()
                },
            }
            for name, profile in BUILTIN_PROFILES.items()
        },
    }

    try:
        with open(output_path, "w") as f:
            yaml.safe_dump(default_config, f, default_flow_style=False, sort_keys=False)
        log_with_context(logging.INFO, f"Created default config file at {output_path}")
        return True
    except OSError as e:
        log_with_context(logging.ERROR, f"Failed to create default config file: {e}")
        return False
