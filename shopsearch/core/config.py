"""Configuration management for shopsearch.

Configuration is loaded from, in increasing order of precedence:
- built-in defaults
- a YAML or TOML file (the source registry)
- environment variables (``.env`` is loaded first if present)

Keys written in camelCase in the registry file (``maxParallel``,
``defaultParams``, ``rateLimit`` ...) are normalized to snake_case.
"""

from __future__ import annotations

import copy
import logging
import os
import re
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from dotenv import load_dotenv

from shopsearch.core.errors import ConfigurationError

_CAMEL_RE = re.compile(r"(?<!^)(?=[A-Z])")

TRUTHY = ("1", "true", "yes", "on")

# Keys whose nested mappings are upstream parameters and must keep their spelling.
_OPAQUE_KEYS = {"default_params"}

DEFAULT_CONFIG: Dict[str, Any] = {
    "logging": {
        "level": "INFO",
        "file": "",
        "json": False,
    },
    "multi_source": {
        "parallel": True,
        "max_parallel": 3,
        "timeout_ms": 800,
        "fallback_on_timeout": True,
        "default_sources": ["serpapi", "search1api"],
        "merge_strategy": "interleave",
        "results_per_source": 3,
        "max_results": 10,
        "include_enrichment": True,
    },
    "cache": {
        "composite_ttl_seconds": 300,
        "source_ttl_seconds": 600,
    },
    "sources": [
        {
            "id": "serpapi",
            "name": "Google Shopping",
            "priority": 1,
            "endpoint": "http://localhost:3001/tool/serpapi_search",
            "default_params": {
                "num_results": 5,
                "fields": "shopping_results.price,title,thumbnail,link,source,reviews,rating",
                "no_cache": False,
            },
            "rate_limit": {"max_requests": 10, "per_minutes": 1},
            "error_retry": {"max_attempts": 3, "initial_delay_ms": 500, "backoff_factor": 2},
        },
        {
            "id": "search1api",
            "name": "Smart Shopper Index",
            "priority": 2,
            "endpoint": "http://localhost:3002/tool/search1_query",
            "default_params": {
                "limit": 10,
                "facets": ["brand", "category", "price_range", "rating"],
                "boost": {"field": "rating", "factor": 1.2},
            },
            "rate_limit": {"max_requests": 20, "per_minutes": 1},
            "error_retry": {"max_attempts": 2, "initial_delay_ms": 300, "backoff_factor": 1.5},
        },
        {
            "id": "perplexity",
            "name": "Product Enrichment",
            "priority": 3,
            "endpoint": "http://localhost:3003/tool/perplexity_search",
            "default_params": {
                "model": "sonar-small-online",
                "context_size": "medium",
                "no_cache": False,
            },
            "rate_limit": {"max_requests": 5, "per_minutes": 1},
            "error_retry": {"max_attempts": 2, "initial_delay_ms": 1000, "backoff_factor": 2},
        },
    ],
}


def snake_case(key: str) -> str:
    return _CAMEL_RE.sub("_", key).lower()


def normalize_keys(data: Any) -> Any:
    """Recursively convert camelCase mapping keys to snake_case."""
    if isinstance(data, dict):
        normalized = {}
        for key, value in data.items():
            snake = snake_case(str(key))
            normalized[snake] = value if snake in _OPAQUE_KEYS else normalize_keys(value)
        return normalized
    if isinstance(data, list):
        return [normalize_keys(item) for item in data]
    return data


def parse_bool(value: Any) -> bool:
    """Interpret flags that may arrive as strings (``"false"``, ``"0"``, ``"off"``)."""
    if isinstance(value, str):
        return value.strip().lower() in TRUTHY
    return bool(value)


def _coerce_env(value: str, current: Any) -> Any:
    """Convert an environment string to the type of the value it overrides."""
    if isinstance(current, bool):
        return parse_bool(value)
    if isinstance(current, int):
        return int(value)
    if isinstance(current, float):
        return float(value)
    if isinstance(current, list):
        return [item.strip() for item in value.split(",") if item.strip()]
    return value


@dataclass
class ValidationResult:
    """Result of configuration validation."""

    is_valid: bool
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    missing_api_keys: List[str] = field(default_factory=list)

    def add_error(self, message: str) -> None:
        self.errors.append(message)
        self.is_valid = False

    def add_warning(self, message: str) -> None:
        self.warnings.append(message)

    def __str__(self) -> str:
        lines = []
        if self.errors:
            lines.append("Errors:")
            lines.extend(f"  - {e}" for e in self.errors)
        if self.warnings:
            lines.append("Warnings:")
            lines.extend(f"  - {w}" for w in self.warnings)
        if self.missing_api_keys:
            lines.append("Missing API keys (optional):")
            lines.extend(f"  - {k}" for k in self.missing_api_keys)
        if not lines:
            return "Configuration is valid."
        return "\n".join(lines)


class Config:
    """Configuration manager for shopsearch."""

    CANDIDATE_FILES = (
        Path("config") / "sources.yaml",
        Path("config") / "shopsearch.yaml",
        Path("config") / "shopsearch.toml",
        Path("shopsearch.yaml"),
        Path("shopsearch.toml"),
    )

    def __init__(
        self,
        config_file: Optional[str] = None,
        *,
        overrides: Optional[Dict[str, Any]] = None,
        load_env: bool = True,
    ) -> None:
        """
        Initialize configuration.

        Args:
            config_file: Path to a YAML or TOML file (optional, auto-detected otherwise)
            overrides: Mapping merged over the loaded file (used by tests and embedders)
            load_env: Whether to read ``.env`` and environment variable overrides
        """
        self.logger = logging.getLogger(self.__class__.__name__)
        self._load_env = load_env
        self._config: Dict[str, Any] = {}

        if load_env:
            env_path = Path(".env")
            if env_path.exists():
                load_dotenv(env_path)
                self.logger.info("Loaded environment variables from .env")

        if config_file:
            self._load_config_file(config_file)
        else:
            self._auto_load_config()

        if overrides:
            self._merge(normalize_keys(overrides))

        self._load_defaults()

    def _load_config_file(self, config_file: str) -> None:
        """Load configuration from YAML or TOML file."""
        config_path = Path(config_file)
        if not config_path.exists():
            raise ConfigurationError(f"Config file not found: {config_file}")

        try:
            with open(config_path, "rb") as f:
                if config_path.suffix in (".yaml", ".yml"):
                    loaded = yaml.safe_load(f) or {}
                elif config_path.suffix == ".toml":
                    loaded = tomllib.load(f)
                else:
                    raise ConfigurationError(f"Unsupported config format: {config_file}")
        except (yaml.YAMLError, tomllib.TOMLDecodeError) as e:
            raise ConfigurationError(f"Failed to parse config file {config_file}: {e}") from e

        if not isinstance(loaded, dict):
            raise ConfigurationError(f"Config file {config_file} must contain a mapping")
        self._merge(normalize_keys(loaded))
        self.logger.info("Loaded config from %s", config_file)

    def _auto_load_config(self) -> None:
        for candidate in self.CANDIDATE_FILES:
            if candidate.exists():
                self._load_config_file(str(candidate))
                return
        self.logger.debug("No config file found, using defaults and environment variables")

    def _merge(self, data: Dict[str, Any]) -> None:
        for key, value in data.items():
            current = self._config.get(key)
            if isinstance(current, dict) and isinstance(value, dict):
                self._config[key] = {**current, **value}
            else:
                self._config[key] = value

    def _load_defaults(self) -> None:
        """Fill in defaults; loaded values take precedence."""
        for key, value in DEFAULT_CONFIG.items():
            if key not in self._config:
                self._config[key] = copy.deepcopy(value)
            elif isinstance(value, dict):
                self._config[key] = {**copy.deepcopy(value), **self._config.get(key, {})}

    def get(self, key: str, default: Any = None) -> Any:
        """
        Get configuration value.

        Supports dot notation for nested keys: ``"multi_source.timeout_ms"``.
        An environment variable named after the key (``MULTI_SOURCE_TIMEOUT_MS``)
        wins over the file and is coerced to the type of the configured value.
        """
        keys = key.split(".")
        value: Any = self._config
        for k in keys:
            if isinstance(value, dict) and k in value:
                value = value[k]
            else:
                value = default
                break

        if self._load_env:
            env_value = os.getenv(key.upper().replace(".", "_"))
            if env_value is not None:
                try:
                    return _coerce_env(env_value, value)
                except ValueError:
                    self.logger.warning("Ignoring invalid value for %s: %r", key, env_value)
        return value

    def set(self, key: str, value: Any) -> None:
        """Set a configuration value at runtime (dot notation supported)."""
        keys = key.split(".")
        config = self._config
        for k in keys[:-1]:
            config = config.setdefault(k, {})
        config[keys[-1]] = value
        self.logger.debug("Set config %s = %r", key, value)

    def get_section(self, section: str) -> Dict[str, Any]:
        return self._config.get(section, {})

    def get_sources(self) -> List[Dict[str, Any]]:
        """Source registry entries that are enabled."""
        sources = self._config.get("sources") or []
        return [s for s in sources if isinstance(s, dict) and s.get("enabled", True)]

    def get_source_config(self, source_id: str) -> Dict[str, Any]:
        for source in self._config.get("sources") or []:
            if isinstance(source, dict) and source.get("id") == source_id:
                return source
        return {}

    def get_api_key(self, source_id: str) -> str:
        """API key for a source: ``<SOURCE>_API_KEY`` env var, then ``api_key`` in its entry."""
        env_value = os.getenv(f"{source_id.upper()}_API_KEY", "") if self._load_env else ""
        if env_value:
            return env_value
        return str(self.get_source_config(source_id).get("api_key") or "")

    def to_dict(self) -> Dict[str, Any]:
        return copy.deepcopy(self._config)

    def validate(self) -> ValidationResult:
        """
        Validate the configuration.

        Checks:
        - logging level is known
        - multi_source defaults are in range
        - source entries are complete and unique
        - default sources reference registered sources
        - API keys are present (warnings only)
        """
        result = ValidationResult(is_valid=True)

        log_level = str(self.get("logging.level", "INFO"))
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if log_level.upper() not in valid_levels:
            result.add_error(
                f"Invalid logging level '{log_level}'. Must be one of: {', '.join(valid_levels)}"
            )

        bounds = {
            "multi_source.max_parallel": (1, 5),
            "multi_source.timeout_ms": (100, 5000),
            "multi_source.results_per_source": (1, 20),
            "multi_source.max_results": (1, 50),
        }
        for key, (low, high) in bounds.items():
            value = self.get(key)
            if not isinstance(value, int) or isinstance(value, bool) or not low <= value <= high:
                result.add_error(f"{key} must be an integer between {low} and {high}")

        strategy = self.get("multi_source.merge_strategy", "interleave")
        if strategy not in ("interleave", "sequential", "priority"):
            result.add_warning(f"Unknown merge strategy '{strategy}', interleave will be used")

        for key in ("cache.composite_ttl_seconds", "cache.source_ttl_seconds"):
            ttl = self.get(key)
            if not isinstance(ttl, (int, float)) or ttl <= 0:
                result.add_error(f"{key} must be a positive number")

        seen = set()
        for index, source in enumerate(self.get_sources()):
            source_id = source.get("id")
            if not source_id:
                result.add_error(f"sources[{index}] has no id")
                continue
            if source_id in seen:
                result.add_error(f"Duplicate source id '{source_id}'")
            seen.add(source_id)
            if not source.get("endpoint"):
                result.add_error(f"Source '{source_id}' has no endpoint")
            if not isinstance(source.get("priority", 99), int):
                result.add_error(f"Source '{source_id}' priority must be an integer")
            rate_limit = source.get("rate_limit") or {}
            if rate_limit and int(rate_limit.get("max_requests", 1)) <= 0:
                result.add_error(f"Source '{source_id}' rate_limit.max_requests must be positive")
            if not self.get_api_key(source_id):
                result.missing_api_keys.append(source_id)

        for source_id in self.get("multi_source.default_sources", []) or []:
            if source_id not in seen:
                result.add_warning(f"Default source '{source_id}' is not registered")

        if not result.is_valid:
            for error in result.errors:
                self.logger.error("Config validation error: %s", error)
        for warning in result.warnings:
            self.logger.warning("Config validation warning: %s", warning)

        return result

    def validate_and_raise(self) -> None:
        """
        Validate configuration and raise exception if invalid.

        Raises:
            ConfigurationError: If configuration is invalid
        """
        result = self.validate()
        if not result.is_valid:
            raise ConfigurationError(f"Invalid configuration:\n{result}")
