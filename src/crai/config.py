"""Configuration loading and validation.

Configuration is merged, in order of precedence:
  1. Built-in defaults
  2. The YAML config file (``crai.yml`` by default), if present
  3. CLI overrides (dotted keys such as ``ai.concurrent_requests``)

The resulting :class:`Config` is an immutable snapshot for the session.
"""

import copy
import logging
import os
import re
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from types import MappingProxyType
from typing import Any, Mapping, Optional

import yaml

from .constants import (
    DEFAULT_BACKOFF_BASE,
    DEFAULT_BACKOFF_MAX,
    DEFAULT_BASE_BRANCH,
    DEFAULT_CONCURRENCY,
    DEFAULT_CONTEXT_LINES,
    DEFAULT_EVENT_BUFFER,
    DEFAULT_LLM_TIMEOUT,
    DEFAULT_MAX_ATTEMPTS,
    DEFAULT_MAX_FILE_SIZE,
    DEFAULT_THRESHOLD,
    ENV_VARS_TO_PASS,
    GENERATED_FILE_PATTERNS,
    IMPORT_PATTERNS,
    LOCK_FILE_PATTERNS,
)
from .errors import ConfigurationError
from .models import ReviewRole, StaticClass

logger = logging.getLogger(__name__)

PROVIDERS = ("claude", "gemini", "kiro")
COMPOSITE_POLICIES = ("max", "weighted")
LOG_LEVELS = ("debug", "info", "warning", "error")


@dataclass(frozen=True)
class RoleSettings:
    enabled: bool = True
    priority_threshold: float = 0.0
    weight: float = 1.0
    custom_prompt: str | None = None


def _default_roles() -> dict[ReviewRole, RoleSettings]:
    return {
        ReviewRole.PRIMARY: RoleSettings(enabled=True, priority_threshold=0.0),
        ReviewRole.SECURITY: RoleSettings(enabled=True, priority_threshold=0.5),
        ReviewRole.PERFORMANCE: RoleSettings(enabled=True, priority_threshold=0.6),
        ReviewRole.USABILITY: RoleSettings(enabled=False, priority_threshold=0.7),
    }


@dataclass(frozen=True)
class AiConfig:
    provider: str = "claude"
    model: str | None = None
    cli_path: str | None = None
    timeout_seconds: float = DEFAULT_LLM_TIMEOUT
    max_retries: int = DEFAULT_MAX_ATTEMPTS
    concurrent_requests: int = DEFAULT_CONCURRENCY
    backoff_base_seconds: float = DEFAULT_BACKOFF_BASE
    backoff_max_seconds: float = DEFAULT_BACKOFF_MAX


@dataclass(frozen=True)
class DiffConfig:
    context_lines: int = DEFAULT_CONTEXT_LINES
    default_base_branch: str = DEFAULT_BASE_BRANCH
    ignore_whitespace: bool = False
    # Files whose diff text is larger than this are not chunked; 0 disables the limit
    max_file_size_bytes: int = DEFAULT_MAX_FILE_SIZE


@dataclass(frozen=True)
class FilterConfig:
    controversiality_threshold: float = DEFAULT_THRESHOLD
    composite_policy: str = "max"
    auto_filter_whitespace: bool = True
    auto_filter_imports: bool = True
    auto_filter_generated: bool = True
    auto_filter_renames: bool = True
    lock_file_patterns: tuple[str, ...] = LOCK_FILE_PATTERNS
    generated_file_patterns: tuple[str, ...] = GENERATED_FILE_PATTERNS
    import_patterns: Mapping[str, tuple[str, ...]] = field(
        default_factory=lambda: {lang: tuple(p) for lang, p in IMPORT_PATTERNS.items()}
    )

    def __post_init__(self):
        object.__setattr__(self, "import_patterns", MappingProxyType(dict(self.import_patterns)))

    def auto_filters(self, classification: StaticClass) -> bool:
        """Whether chunks with this classification skip scoring and display."""
        if classification is StaticClass.WHITESPACE:
            return self.auto_filter_whitespace
        if classification is StaticClass.IMPORT_ONLY:
            return self.auto_filter_imports
        if classification is StaticClass.RENAME:
            return self.auto_filter_renames
        if classification in (StaticClass.GENERATED, StaticClass.LOCK_FILE):
            return self.auto_filter_generated
        return False

    def to_dict(self) -> dict:
        data = {f.name: getattr(self, f.name) for f in fields(self)}
        data["lock_file_patterns"] = list(self.lock_file_patterns)
        data["generated_file_patterns"] = list(self.generated_file_patterns)
        data["import_patterns"] = {lang: list(p) for lang, p in self.import_patterns.items()}
        return data


@dataclass(frozen=True)
class EventConfig:
    buffer_size: int = DEFAULT_EVENT_BUFFER


@dataclass(frozen=True)
class Config:
    log_level: str = "warning"
    ai: AiConfig = field(default_factory=AiConfig)
    diff: DiffConfig = field(default_factory=DiffConfig)
    filters: FilterConfig = field(default_factory=FilterConfig)
    events: EventConfig = field(default_factory=EventConfig)
    roles: Mapping[ReviewRole, RoleSettings] = field(default_factory=_default_roles)

    def __post_init__(self):
        object.__setattr__(self, "roles", MappingProxyType(dict(self.roles)))

    def role(self, role: ReviewRole) -> RoleSettings:
        return self.roles.get(role, RoleSettings(enabled=False))

    @property
    def enabled_roles(self) -> tuple[ReviewRole, ...]:
        return tuple(role for role in ReviewRole if self.role(role).enabled)

    def to_dict(self) -> dict:
        """Plain-data form suitable for YAML serialization."""
        return {
            "log_level": self.log_level,
            "ai": asdict(self.ai),
            "diff": asdict(self.diff),
            "filters": self.filters.to_dict(),
            "events": asdict(self.events),
            "roles": {role.value: asdict(settings) for role, settings in self.roles.items()},
        }


def _deep_merge(base: dict, update: dict) -> dict:
    for key, value in update.items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            _deep_merge(base[key], value)
        else:
            base[key] = value
    return base


def _apply_override(data: dict, dotted_key: str, value: Any) -> None:
    *parents, leaf = dotted_key.split(".")
    node = data
    for part in parents:
        node = node.setdefault(part, {})
        if not isinstance(node, dict):
            raise ConfigurationError(f"Cannot override '{dotted_key}': '{part}' is not a section")
    node[leaf] = value


def _section(cls, data: Any, name: str):
    if data is None:
        return cls()
    if not isinstance(data, dict):
        raise ConfigurationError(f"Section '{name}' must be a mapping, got {type(data).__name__}")
    known = {f.name for f in fields(cls)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise ConfigurationError(f"Unknown key(s) in '{name}': {', '.join(unknown)}")
    return cls(**data)


def config_from_dict(data: dict) -> Config:
    """Build and validate a :class:`Config` from plain data."""
    if not isinstance(data, dict):
        raise ConfigurationError("Configuration root must be a mapping")

    known = {f.name for f in fields(Config)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise ConfigurationError(f"Unknown configuration key(s): {', '.join(unknown)}")

    filters_data = data.get("filters") or {}
    if not isinstance(filters_data, dict):
        raise ConfigurationError("Section 'filters' must be a mapping")
    filters_data = dict(filters_data)
    for key in ("lock_file_patterns", "generated_file_patterns"):
        if key in filters_data:
            filters_data[key] = _pattern_list(filters_data[key], f"filters.{key}")
    if "import_patterns" in filters_data:
        by_language = filters_data["import_patterns"] or {}
        if not isinstance(by_language, dict):
            raise ConfigurationError("filters.import_patterns must map languages to pattern lists")
        filters_data["import_patterns"] = {
            lang: _pattern_list(patterns, f"filters.import_patterns.{lang}")
            for lang, patterns in by_language.items()
        }

    roles_data = data.get("roles") or {}
    if not isinstance(roles_data, dict):
        raise ConfigurationError("Section 'roles' must be a mapping")
    roles = _default_roles()
    for name, settings in roles_data.items():
        try:
            role = ReviewRole(name)
        except ValueError:
            raise ConfigurationError(f"Unknown review role: {name}") from None
        roles[role] = _section(RoleSettings, settings, f"roles.{name}")

    try:
        config = Config(
            log_level=str(data.get("log_level", "warning")).lower(),
            ai=_section(AiConfig, data.get("ai"), "ai"),
            diff=_section(DiffConfig, data.get("diff"), "diff"),
            filters=_section(FilterConfig, filters_data, "filters"),
            events=_section(EventConfig, data.get("events"), "events"),
            roles=roles,
        )
    except TypeError as e:
        raise ConfigurationError(f"Invalid configuration: {e}") from e

    validate_config(config)
    return config


def _pattern_list(value: Any, name: str) -> tuple[str, ...]:
    if value is None:
        return ()
    if not isinstance(value, (list, tuple)) or not all(isinstance(p, str) for p in value):
        raise ConfigurationError(f"{name} must be a list of strings, got {value!r}")
    return tuple(value)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _is_count(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _check_unit_interval(value: Any, name: str) -> None:
    if not _is_number(value) or not 0.0 <= value <= 1.0:
        raise ConfigurationError(f"{name} must be a number in [0, 1], got {value!r}")


def _check_bool(value: Any, name: str) -> None:
    if not isinstance(value, bool):
        raise ConfigurationError(f"{name} must be true or false, got {value!r}")


def _check_optional_str(value: Any, name: str) -> None:
    if value is not None and not isinstance(value, str):
        raise ConfigurationError(f"{name} must be a string, got {value!r}")


def validate_config(config: Config) -> None:
    """Raise ConfigurationError if any setting has the wrong type or is out of range."""
    if config.log_level not in LOG_LEVELS:
        raise ConfigurationError(f"log_level must be one of {', '.join(LOG_LEVELS)}")

    ai = config.ai
    if ai.provider not in PROVIDERS:
        raise ConfigurationError(f"Unsupported provider '{ai.provider}' (expected one of {', '.join(PROVIDERS)})")
    _check_optional_str(ai.model, "ai.model")
    _check_optional_str(ai.cli_path, "ai.cli_path")
    if not _is_number(ai.timeout_seconds) or ai.timeout_seconds <= 0:
        raise ConfigurationError("ai.timeout_seconds must be positive")
    if not _is_count(ai.max_retries) or ai.max_retries < 1:
        raise ConfigurationError("ai.max_retries must be an integer >= 1")
    if not _is_count(ai.concurrent_requests) or ai.concurrent_requests < 1:
        raise ConfigurationError("ai.concurrent_requests must be an integer >= 1")
    if not _is_number(ai.backoff_base_seconds) or not _is_number(ai.backoff_max_seconds):
        raise ConfigurationError("ai.backoff_base_seconds and ai.backoff_max_seconds must be numbers")
    if ai.backoff_base_seconds < 0 or ai.backoff_max_seconds < ai.backoff_base_seconds:
        raise ConfigurationError("ai.backoff_base_seconds must be >= 0 and <= ai.backoff_max_seconds")

    diff = config.diff
    if not _is_count(diff.context_lines) or diff.context_lines < 0:
        raise ConfigurationError("diff.context_lines must be a non-negative integer")
    if not isinstance(diff.default_base_branch, str) or not diff.default_base_branch:
        raise ConfigurationError("diff.default_base_branch must be a non-empty string")
    _check_bool(diff.ignore_whitespace, "diff.ignore_whitespace")
    if not _is_count(diff.max_file_size_bytes) or diff.max_file_size_bytes < 0:
        raise ConfigurationError("diff.max_file_size_bytes must be a non-negative integer")

    filters = config.filters
    _check_unit_interval(filters.controversiality_threshold, "filters.controversiality_threshold")
    if filters.composite_policy not in COMPOSITE_POLICIES:
        raise ConfigurationError(
            f"filters.composite_policy must be one of {', '.join(COMPOSITE_POLICIES)}"
        )
    for name in ("auto_filter_whitespace", "auto_filter_imports", "auto_filter_generated", "auto_filter_renames"):
        _check_bool(getattr(filters, name), f"filters.{name}")
    for lang, patterns in filters.import_patterns.items():
        for pattern in patterns:
            try:
                re.compile(pattern)
            except re.error as e:
                raise ConfigurationError(f"Invalid import pattern for {lang}: {pattern!r} ({e})") from e

    if not _is_count(config.events.buffer_size) or config.events.buffer_size < 1:
        raise ConfigurationError("events.buffer_size must be an integer >= 1")

    for role, settings in config.roles.items():
        prefix = f"roles.{role.value}"
        _check_bool(settings.enabled, f"{prefix}.enabled")
        _check_unit_interval(settings.priority_threshold, f"{prefix}.priority_threshold")
        if not _is_number(settings.weight) or settings.weight < 0:
            raise ConfigurationError(f"{prefix}.weight must be a non-negative number, got {settings.weight!r}")
        _check_optional_str(settings.custom_prompt, f"{prefix}.custom_prompt")
    if not config.enabled_roles:
        logger.warning("No review roles enabled; chunks will not be scored")


def load_config(config_path: Optional[str | Path] = None, cli_overrides: Optional[dict] = None) -> Config:
    """Load configuration by merging defaults, the YAML file and CLI overrides.

    Args:
        config_path: Path to the YAML file. A missing file means defaults.
        cli_overrides: Mapping of dotted keys to values; ``None`` values are ignored.

    Raises:
        ConfigurationError: If the file cannot be parsed or a value is invalid.
    """
    data = copy.deepcopy(Config().to_dict())

    if config_path is not None:
        path = Path(config_path)
        if path.exists():
            try:
                with open(path, encoding="utf-8") as f:
                    file_data = yaml.safe_load(f) or {}
            except yaml.YAMLError as e:
                raise ConfigurationError(f"Failed to parse {path}: {e}") from e
            if not isinstance(file_data, dict):
                raise ConfigurationError(f"{path} must contain a mapping at the top level")
            _deep_merge(data, file_data)
            logger.debug(f"Loaded configuration from {path}")
        else:
            logger.debug(f"Config file {path} not found, using defaults")

    for key, value in (cli_overrides or {}).items():
        if value is not None:
            _apply_override(data, key, value)

    return config_from_dict(data)


def write_default_config(path: str | Path) -> Path:
    """Write the default configuration as YAML."""
    path = Path(path)
    with open(path, "w", encoding="utf-8") as f:
        yaml.safe_dump(Config().to_dict(), f, sort_keys=False)
    return path


def get_api_env_vars() -> dict[str, str]:
    """Get API configuration environment variables."""
    env_vars = {}
    for var_name in ENV_VARS_TO_PASS:
        value = os.environ.get(var_name)
        if value:
            env_vars[var_name] = value
    return env_vars
