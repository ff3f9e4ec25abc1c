"""Engine configuration for RequestKit.

Settings come from three places, later ones overriding earlier ones:
defaults, the ``engine:`` section of a YAML file, and ``REQUESTKIT_*``
environment variables.

Example::

    engine:
      max_depth: 10
      cache:
        enabled: true
        max_size: 1000
        ttl_seconds: 300
      tracking:
        max_steps: 500
"""

import dataclasses
import os
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional

import yaml

from requestkit.core.variables.cache import ResolutionCache
from requestkit.core.variables.errors import ConfigurationError
from requestkit.core.variables.functions import FunctionLibrary
from requestkit.core.variables.resolver import DEFAULT_MAX_DEPTH, VariableResolver
from requestkit.core.variables.tracer import TrackingConfig
from requestkit.logging import get_logger

logger = get_logger(__name__)

ENV_MAX_DEPTH = "REQUESTKIT_MAX_DEPTH"
ENV_CACHE_ENABLED = "REQUESTKIT_CACHE_ENABLED"
ENV_CACHE_MAX_SIZE = "REQUESTKIT_CACHE_MAX_SIZE"
ENV_CACHE_TTL_SECONDS = "REQUESTKIT_CACHE_TTL_SECONDS"

_TRUE_VALUES = ("1", "true", "yes", "on")
_FALSE_VALUES = ("0", "false", "no", "off")


@dataclass(frozen=True)
class ResolverSettings:
    max_depth: int = DEFAULT_MAX_DEPTH

    def __post_init__(self):
        if self.max_depth < 1:
            raise ConfigurationError(
                f"max_depth must be at least 1, got {self.max_depth}"
            )


@dataclass(frozen=True)
class CacheSettings:
    enabled: bool = True
    max_size: int = 1000
    ttl_seconds: Optional[float] = None

    def __post_init__(self):
        if self.max_size < 1:
            raise ConfigurationError(
                f"cache max_size must be at least 1, got {self.max_size}"
            )
        if self.ttl_seconds is not None and self.ttl_seconds <= 0:
            raise ConfigurationError(
                f"cache ttl_seconds must be positive, got {self.ttl_seconds}"
            )


@dataclass(frozen=True)
class EngineConfig:
    """Complete engine configuration."""

    resolver: ResolverSettings = field(default_factory=ResolverSettings)
    cache: CacheSettings = field(default_factory=CacheSettings)
    tracking: TrackingConfig = field(default_factory=TrackingConfig)

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> "EngineConfig":
        """Build a config from the contents of an ``engine:`` section.

        Raises:
            ConfigurationError: For unknown keys or invalid values
        """
        data = dict(data or {})
        _reject_unknown(data, {"max_depth", "cache", "tracking"}, "engine")

        cache_data = _section(data, "cache")
        _reject_unknown(cache_data, _field_names(CacheSettings), "engine.cache")
        tracking_data = _section(data, "tracking")
        _reject_unknown(tracking_data, _field_names(TrackingConfig), "engine.tracking")

        try:
            resolver = ResolverSettings(
                max_depth=int(data.get("max_depth", DEFAULT_MAX_DEPTH))
            )
            cache = CacheSettings(**cache_data)
            tracking = TrackingConfig(**tracking_data)
        except ConfigurationError:
            raise
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"Invalid engine settings: {e}")

        return cls(resolver=resolver, cache=cache, tracking=tracking)

    @classmethod
    def from_file(cls, path: str) -> "EngineConfig":
        """Load the ``engine:`` section of a YAML file.

        A file without an ``engine:`` section yields the defaults.
        """
        if not os.path.exists(path):
            raise ConfigurationError("Configuration file not found", path)

        try:
            with open(path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML: {e}", path)

        if not isinstance(data, dict):
            raise ConfigurationError("Expected a mapping at the top level", path)

        try:
            config = cls.from_dict(data.get("engine"))
        except ConfigurationError as e:
            raise ConfigurationError(str(e), path)

        logger.debug(f"Loaded engine configuration from '{path}'")
        return config

    def with_env_overrides(
        self, environ: Optional[Mapping[str, str]] = None
    ) -> "EngineConfig":
        """Apply ``REQUESTKIT_*`` environment variables on top of this config."""
        environ = os.environ if environ is None else environ
        config = self

        if ENV_MAX_DEPTH in environ:
            config = dataclasses.replace(
                config,
                resolver=ResolverSettings(
                    max_depth=_parse_int(environ[ENV_MAX_DEPTH], ENV_MAX_DEPTH)
                ),
            )

        cache_changes: Dict[str, Any] = {}
        if ENV_CACHE_ENABLED in environ:
            cache_changes["enabled"] = _parse_bool(
                environ[ENV_CACHE_ENABLED], ENV_CACHE_ENABLED
            )
        if ENV_CACHE_MAX_SIZE in environ:
            cache_changes["max_size"] = _parse_int(
                environ[ENV_CACHE_MAX_SIZE], ENV_CACHE_MAX_SIZE
            )
        if ENV_CACHE_TTL_SECONDS in environ:
            raw = environ[ENV_CACHE_TTL_SECONDS].strip()
            cache_changes["ttl_seconds"] = (
                None if raw == "" else _parse_float(raw, ENV_CACHE_TTL_SECONDS)
            )
        if cache_changes:
            config = dataclasses.replace(
                config, cache=dataclasses.replace(config.cache, **cache_changes)
            )

        if config is not self:
            logger.debug("Applied environment overrides to engine configuration")
        return config

    def to_dict(self) -> Dict[str, Any]:
        return {
            "max_depth": self.resolver.max_depth,
            "cache": dataclasses.asdict(self.cache),
            "tracking": dataclasses.asdict(self.tracking),
        }


def load_config(path: Optional[str] = None, use_env: bool = True) -> EngineConfig:
    """Defaults, then the file when given, then the environment."""
    config = EngineConfig.from_file(path) if path else EngineConfig()
    return config.with_env_overrides() if use_env else config


def create_resolver(
    config: Optional[EngineConfig] = None,
    functions: Optional[FunctionLibrary] = None,
) -> VariableResolver:
    """Build a resolver wired according to ``config``."""
    config = config or EngineConfig()
    cache = None
    if config.cache.enabled:
        cache = ResolutionCache(
            max_size=config.cache.max_size, ttl_seconds=config.cache.ttl_seconds
        )
    return VariableResolver(
        cache=cache,
        functions=functions,
        max_depth=config.resolver.max_depth,
        tracking=config.tracking,
        use_cache=config.cache.enabled,
    )


def _field_names(cls) -> set:
    return {f.name for f in dataclasses.fields(cls)}


def _section(data: Dict[str, Any], name: str) -> Dict[str, Any]:
    section = data.get(name) or {}
    if not isinstance(section, dict):
        raise ConfigurationError(f"engine.{name} must be a mapping")
    return dict(section)


def _reject_unknown(data: Mapping[str, Any], allowed: set, where: str) -> None:
    unknown = sorted(set(data) - allowed)
    if unknown:
        raise ConfigurationError(
            f"Unknown key(s) in {where}: {', '.join(map(str, unknown))}"
        )


def _parse_int(raw: str, name: str) -> int:
    try:
        return int(raw.strip())
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}")


def _parse_float(raw: str, name: str) -> float:
    try:
        return float(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}")


def _parse_bool(raw: str, name: str) -> bool:
    lowered = raw.strip().lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    raise ConfigurationError(f"{name} must be true or false, got {raw!r}")
