# ==============================================================================
# CONFIGURATION - File + Environment Resolution
# ==============================================================================
# Hierarchical loading: environment variables override the config file,
# the config file overrides hardcoded defaults.
#
#   ENV VAR → config.yaml / config.json → Default
#
# The resolved Config is frozen and meant to be built once at startup and
# passed explicitly to every component that needs it.
# ==============================================================================

from __future__ import annotations

import json
import logging
import os
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Literal, Mapping, Optional, Tuple, Union

import yaml
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from polystore.core.exceptions import ConfigError, ConfigErrorKind

logger = logging.getLogger(__name__)


class BackendKind(str, Enum):
    """
    Supported backend kinds.

    Attributes:
        POSTGRES: PostgreSQL via asyncpg
        MYSQL: MySQL via aiomysql
        SQLITE: SQLite via aiosqlite (development/testing)
        MONGODB: Document store via motor
        REDIS: Key-value cache via redis-py asyncio
    """
    POSTGRES = "postgres"
    MYSQL = "mysql"
    SQLITE = "sqlite"
    MONGODB = "mongodb"
    REDIS = "redis"


RELATIONAL_KINDS = (BackendKind.POSTGRES, BackendKind.MYSQL, BackendKind.SQLITE)
MONGO_SCHEMES = ("mongodb://", "mongodb+srv://")
REDIS_SCHEMES = ("redis://", "rediss://", "unix://")
LOG_LEVELS = ("debug", "info", "warn", "warning", "error", "critical")

DEFAULT_SERVER_PORT = 8080


# ==============================================================================
# DESCRIPTORS
# ==============================================================================

class _Descriptor(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")


class DatabaseDescriptor(_Descriptor):
    """
    Relational backend descriptor.

    Either ``url`` is set, or ``host``, ``port`` and ``name`` together
    describe the server. ``type`` also carries ``mongodb`` when the
    descriptor was backfilled from a document store URI.
    """

    type: BackendKind = BackendKind.POSTGRES
    host: str = "localhost"
    port: int = Field(default=5432, ge=0, le=65535)
    user: str = ""
    password: str = ""
    name: str = "postgres"
    sslmode: str = "disable"
    url: str = ""
    max_retries: int = Field(default=3, ge=1)
    max_pool_size: int = Field(default=10, ge=1)
    pool_timeout: float = Field(default=30.0, gt=0)

    @field_validator("type", mode="before")
    @classmethod
    def normalize_type(cls, v: Any) -> Any:
        """Accept ``postgresql`` and mixed case as kind tags."""
        if isinstance(v, str):
            v = v.strip().lower()
            if v == "postgresql":
                return BackendKind.POSTGRES.value
        return v


class MongoDescriptor(_Descriptor):
    """Document store descriptor. Declared only when ``uri`` is set."""

    uri: str = ""
    database: str = ""
    timeout: float = Field(default=10.0, gt=0)
    max_pool_size: int = Field(default=10, ge=1)
    pool_timeout: float = Field(default=30.0, gt=0)

    @property
    def declared(self) -> bool:
        return bool(self.uri)


class CacheDescriptor(_Descriptor):
    """
    Key-value cache descriptor.

    ``url`` and the ``addr``/``password``/``db`` tuple are substitutes
    for each other; ``url`` wins when both are present.
    """

    url: str = ""
    addr: str = ""
    password: str = ""
    db: int = Field(default=0, ge=0)
    max_pool_size: int = Field(default=10, ge=1)

    @property
    def declared(self) -> bool:
        return bool(self.url or self.addr)


class ServerDescriptor(_Descriptor):
    """HTTP listener settings consumed by the hosting application."""

    addr: str = ""
    host: str = ""
    port: int = Field(default=DEFAULT_SERVER_PORT, ge=0, le=65535)
    tls: bool = False
    cert_file: str = ""
    key_file: str = ""
    read_timeout: float = 5.0
    write_timeout: float = 10.0
    shutdown_timeout: float = 10.0

    def address(self) -> str:
        """
        Resolve the listen address.

        An explicit ``addr`` is returned unchanged. Otherwise ``host`` and
        ``port`` are joined; an empty host binds every interface and a
        zero port falls back to 8080.

        Example:
            >>> ServerDescriptor().address()
            ':8080'
            >>> ServerDescriptor(host="db.local", port=5433).address()
            'db.local:5433'
        """
        if self.addr:
            return self.addr
        return f"{self.host}:{self.port or DEFAULT_SERVER_PORT}"


class LoggerDescriptor(_Descriptor):
    level: str = "info"
    format: Literal["text", "json"] = "text"

    @field_validator("level", mode="before")
    @classmethod
    def normalize_level(cls, v: Any) -> Any:
        if isinstance(v, str):
            v = v.strip().lower()
            if v not in LOG_LEVELS:
                raise ValueError(f"unknown log level '{v}'")
        return v


class Config(_Descriptor):
    """
    Root configuration value.

    Holds one descriptor per backend kind plus server and logger
    settings. Immutable; share it freely between tasks.

    Example:
        >>> config = resolve_config("config.yaml")
        >>> config.database.max_pool_size
        10
    """

    database: DatabaseDescriptor = Field(default_factory=DatabaseDescriptor)
    mongodb: MongoDescriptor = Field(default_factory=MongoDescriptor)
    redis: CacheDescriptor = Field(default_factory=CacheDescriptor)
    server: ServerDescriptor = Field(default_factory=ServerDescriptor)
    logger: LoggerDescriptor = Field(default_factory=LoggerDescriptor)

    def declared_backends(self) -> List[Tuple[BackendKind, _Descriptor]]:
        """
        List the backends this configuration asks for.

        The relational descriptor is always present; the document store
        and cache only when they carry a connection target.
        """
        backends: List[Tuple[BackendKind, _Descriptor]] = [
            (self.database.type, self.database)
        ]
        if self.mongodb.declared and self.database.type != BackendKind.MONGODB:
            backends.append((BackendKind.MONGODB, self.mongodb))
        if self.redis.declared:
            backends.append((BackendKind.REDIS, self.redis))
        return backends


# ==============================================================================
# SOURCES
# ==============================================================================

# Dotted file key -> environment variables, first non-empty wins.
ENV_BINDINGS: Tuple[Tuple[str, Tuple[str, ...]], ...] = (
    ("database.type", ("DATABASE_TYPE",)),
    ("database.url", ("DATABASE_URL",)),
    ("database.host", ("DATABASE_HOST",)),
    ("database.port", ("DATABASE_PORT",)),
    ("database.user", ("DATABASE_USER",)),
    ("database.password", ("DATABASE_PASSWORD",)),
    ("database.name", ("DATABASE_NAME",)),
    ("database.sslmode", ("DATABASE_SSLMODE",)),
    ("database.max_retries", ("DATABASE_MAX_RETRIES",)),
    ("database.max_pool_size", ("DATABASE_MAX_POOL_SIZE",)),
    ("database.pool_timeout", ("DATABASE_POOL_TIMEOUT",)),
    ("mongodb.uri", ("MONGO_URI", "MONGODB_URI")),
    ("mongodb.database", ("MONGODB_DATABASE",)),
    ("mongodb.timeout", ("MONGODB_TIMEOUT",)),
    ("redis.url", ("REDIS_URL",)),
    ("redis.addr", ("REDIS_ADDR",)),
    ("redis.password", ("REDIS_PASSWORD",)),
    ("redis.db", ("REDIS_DB",)),
    ("server.addr", ("SERVER_ADDRESS", "SERVER_ADDR")),
    ("server.host", ("SERVER_HOST",)),
    ("server.port", ("SERVER_PORT",)),
    ("server.tls", ("SERVER_TLS",)),
    ("server.cert_file", ("SERVER_CERT_FILE",)),
    ("server.key_file", ("SERVER_KEY_FILE",)),
    ("logger.level", ("LOGGER_LEVEL", "LOG_LEVEL")),
    ("logger.format", ("LOGGER_FORMAT", "LOG_FORMAT")),
)


def load_config_file(path: Union[str, Path]) -> Dict[str, Any]:
    """
    Load a YAML or JSON configuration file.

    A missing file yields an empty mapping so resolution can fall back to
    the environment. ``.json`` files are read with the json module,
    anything else with PyYAML's safe_load.

    Raises:
        ConfigError: If the file cannot be parsed or is not a mapping
    """
    path = Path(path)
    if not path.exists():
        logger.debug("Config file not found: %s (using environment and defaults)", path)
        return {}

    try:
        with open(path, "r", encoding="utf-8") as f:
            if path.suffix.lower() == ".json":
                data = json.load(f)
            else:
                data = yaml.safe_load(f)
    except (OSError, ValueError, yaml.YAMLError) as e:
        raise ConfigError(
            ConfigErrorKind.INVALID_VALUE,
            f"Failed to parse config file {path}: {e}",
        ) from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(
            ConfigErrorKind.INVALID_VALUE,
            f"Config file {path} must contain a mapping at the top level",
        )
    logger.info("Loaded configuration from: %s", path)
    return data


def env_overrides(env: Mapping[str, str]) -> Dict[str, Dict[str, str]]:
    """Collect environment overrides as a nested ``section -> key`` mapping."""
    overrides: Dict[str, Dict[str, str]] = {}
    for dotted, names in ENV_BINDINGS:
        value = next((env[n] for n in names if env.get(n)), None)
        if value is None:
            continue
        section, key = dotted.split(".", 1)
        overrides.setdefault(section, {})[key] = value
    return overrides


def _merge(base: Dict[str, Any], overrides: Dict[str, Dict[str, str]]) -> Dict[str, Any]:
    # A section written with no keys ("database:") loads as None
    merged = {key: {} if value is None else value for key, value in base.items()}
    for section, values in overrides.items():
        current = merged.get(section)
        if isinstance(current, dict):
            merged[section] = {**current, **values}
        else:
            merged[section] = dict(values)
    return merged


# Keys that describe a relational server; pool tuning alone does not.
_TARGET_KEYS = ("type", "url", "host", "port", "user", "password", "name", "sslmode")


def _backfill_relational(raw: Dict[str, Any]) -> None:
    # Document store only: give generic single-descriptor callers a URL.
    mongo = raw.get("mongodb")
    database = raw.get("database") or {}
    if not isinstance(mongo, dict) or not isinstance(database, dict):
        return
    uri = mongo.get("uri")
    if not uri:
        return
    if any(database.get(key) not in (None, "") for key in _TARGET_KEYS):
        return
    raw["database"] = {**database, "url": uri, "type": BackendKind.MONGODB.value}
    logger.debug("Backfilled relational descriptor from document store URI")


def _build(raw: Dict[str, Any]) -> Config:
    try:
        return Config.model_validate(raw)
    except ValidationError as e:
        error = e.errors()[0]
        field = ".".join(str(part) for part in error["loc"])
        kind = (
            ConfigErrorKind.MISSING_REQUIRED
            if error["type"] == "missing"
            else ConfigErrorKind.INVALID_VALUE
        )
        raise ConfigError(kind, f"Invalid configuration for '{field}': {error['msg']}", field=field) from e


def resolve_config(
    source: Union[str, Path, Mapping[str, Any], None] = None,
    env: Optional[Mapping[str, str]] = None,
    *,
    validate: bool = True,
) -> Config:
    """
    Resolve the process configuration.

    Args:
        source: Path to a YAML/JSON file, an already-loaded mapping, or
            None for environment-only resolution
        env: Environment mapping (defaults to ``os.environ``)
        validate: Run ``validate_config`` on the result

    Returns:
        Frozen Config

    Raises:
        ConfigError: On unparseable input, bad values or broken invariants
    """
    if source is None:
        file_values: Dict[str, Any] = {}
    elif isinstance(source, Mapping):
        file_values = dict(source)
    else:
        file_values = load_config_file(source)

    raw = _merge(file_values, env_overrides(os.environ if env is None else env))
    _backfill_relational(raw)
    config = _build(raw)

    if validate:
        validate_config(config)
    return config


# ==============================================================================
# VALIDATION
# ==============================================================================

def validate_database(descriptor: DatabaseDescriptor) -> None:
    """Require a URL or the full host/port/name tuple."""
    if descriptor.url:
        return
    missing = [
        key
        for key, value in (
            ("host", descriptor.host),
            ("port", descriptor.port),
            ("name", descriptor.name),
        )
        if not value
    ]
    if missing:
        raise ConfigError(
            ConfigErrorKind.MISSING_REQUIRED,
            "database requires either url or host, port and name "
            f"(missing: {', '.join(missing)})",
            field=f"database.{missing[0]}",
        )


def validate_mongodb(descriptor: MongoDescriptor) -> None:
    """
    Check the document store URI scheme.

    A missing database name is allowed; the backend then uses the
    database named in the URI.
    """
    if descriptor.uri and not descriptor.uri.startswith(MONGO_SCHEMES):
        raise ConfigError(
            ConfigErrorKind.INVALID_VALUE,
            f"mongodb uri must start with one of {', '.join(MONGO_SCHEMES)}",
            field="mongodb.uri",
        )


def validate_cache(descriptor: CacheDescriptor) -> None:
    if descriptor.url and not descriptor.url.startswith(REDIS_SCHEMES):
        raise ConfigError(
            ConfigErrorKind.INVALID_VALUE,
            f"redis url must start with one of {', '.join(REDIS_SCHEMES)}",
            field="redis.url",
        )


def validate_server(descriptor: ServerDescriptor) -> None:
    """TLS needs both a certificate and a key."""
    if not descriptor.tls:
        return
    for key in ("cert_file", "key_file"):
        if not getattr(descriptor, key):
            raise ConfigError(
                ConfigErrorKind.MISSING_REQUIRED,
                f"server.tls is enabled but server.{key} is empty",
                field=f"server.{key}",
            )


def validate_config(config: Config) -> None:
    """
    Validate backend invariants.

    Pure: no I/O and no logging. Safe to call on hand-built values.

    Raises:
        ConfigError: On the first violated invariant
    """
    validate_database(config.database)
    validate_mongodb(config.mongodb)
    validate_cache(config.redis)
    validate_server(config.server)


# ==============================================================================
# QUICK CONFIGS - Single backend from one environment variable
# ==============================================================================

class _QuickSQLEnv(BaseSettings):
    model_config = SettingsConfigDict(case_sensitive=True, env_ignore_empty=True, extra="ignore")

    url: str = Field(validation_alias="DATABASE_URL")


class _QuickMongoEnv(BaseSettings):
    model_config = SettingsConfigDict(case_sensitive=True, env_ignore_empty=True, extra="ignore")

    uri: str = Field(validation_alias=AliasChoices("MONGO_URI", "MONGODB_URI"))
    database: str = Field(default="", validation_alias="MONGODB_DATABASE")


class _QuickRedisEnv(BaseSettings):
    model_config = SettingsConfigDict(case_sensitive=True, env_ignore_empty=True, extra="ignore")

    url: str = Field(validation_alias="REDIS_URL")


_QUICK_SOURCES = {
    BackendKind.POSTGRES: (_QuickSQLEnv, "DATABASE_URL"),
    BackendKind.MYSQL: (_QuickSQLEnv, "DATABASE_URL"),
    BackendKind.SQLITE: (_QuickSQLEnv, "DATABASE_URL"),
    BackendKind.MONGODB: (_QuickMongoEnv, "MONGO_URI or MONGODB_URI"),
    BackendKind.REDIS: (_QuickRedisEnv, "REDIS_URL"),
}


def quick_config(kind: Union[BackendKind, str]) -> Config:
    """
    Build a single-backend Config straight from the process environment.

    Most callers need exactly one backend; this skips the file and the
    full environment table.

    Example:
        >>> os.environ["REDIS_URL"] = "redis://localhost:6379/0"
        >>> quick_config("redis").redis.url
        'redis://localhost:6379/0'

    Raises:
        ConfigError: MISSING_REQUIRED when the backend's variable is unset
            or INVALID_VALUE for an unknown kind
    """
    if isinstance(kind, str) and not isinstance(kind, BackendKind):
        kind = kind.strip().lower()
        if kind == "postgresql":
            kind = BackendKind.POSTGRES.value
    try:
        kind = BackendKind(kind)
    except ValueError:
        raise ConfigError(
            ConfigErrorKind.INVALID_VALUE,
            f"Unknown backend kind '{kind}'",
            field="kind",
        ) from None
    settings_cls, variable = _QUICK_SOURCES[kind]
    try:
        values = settings_cls()
    except ValidationError as e:
        raise ConfigError(
            ConfigErrorKind.MISSING_REQUIRED,
            f"{variable} is required for a quick {kind.value} configuration",
            field=variable,
        ) from e

    if kind == BackendKind.MONGODB:
        raw: Dict[str, Any] = {"mongodb": {"uri": values.uri, "database": values.database}}
    elif kind == BackendKind.REDIS:
        raw = {"redis": {"url": values.url}}
    else:
        raw = {"database": {"type": kind.value, "url": values.url}}

    _backfill_relational(raw)
    config = _build(raw)
    validate_config(config)
    return config
