"""
Server configuration.

Read once at startup from (lowest precedence first) built-in defaults, a
YAML file and ``DUCKDBFS_<SECTION>_<KEY>`` environment variables, then
passed around as an immutable ``Config`` record.

Supports ${ENV_VAR} interpolation in YAML string values so that paths
and keys can be injected via environment variables rather than
hard-coded in the config file.
"""

import logging
import os
import re
import typing
from typing import Mapping, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

logger = logging.getLogger(__name__)

ENV_PREFIX = "DUCKDBFS"
CONFIG_ENV_VAR = "DUCKDBFS_CONFIG"
LEGACY_PATH_ENV_VAR = "DUCKDB_PATH"
DEFAULT_CONFIG_PATH = "config/duckdb_featureserv.yml"

_ENV_RE = re.compile(r"\$\{(\w+)\}")


class ConfigError(Exception):
    """Invalid configuration detected at startup."""


class _Section(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")


class ServerConfig(_Section):
    http_host: str = "0.0.0.0"
    http_port: int = Field(9000, ge=1, le=65535)
    url_base: str = ""
    cors_origins: tuple[str, ...] = ("*",)
    debug: bool = False


class DatabaseConfig(_Section):
    path: str = ""
    table_includes: tuple[str, ...] = ()
    table_excludes: tuple[str, ...] = ()
    pool_size: int = Field(4, ge=1)
    assumed_srid: int = Field(0, ge=0)
    compute_extents: bool = True


class PagingConfig(_Section):
    limit_default: int = Field(10, ge=0)
    limit_max: int = Field(10000, ge=1)


class FeaturesConfig(_Section):
    default_crs: int = Field(4326, ge=0)
    default_precision: Optional[int] = Field(None, ge=0, le=15)
    supported_crs: tuple[int, ...] = (4326, 3857)


class MetadataConfig(_Section):
    title: str = "DuckDB Feature Server"
    description: str = "OGC API - Features for spatial tables in a DuckDB database"


class DuckDBConfig(_Section):
    enable_http_server: bool = False
    port: int = Field(9001, ge=1, le=65535)
    api_key: str = ""


class Config(_Section):
    server: ServerConfig = ServerConfig()
    database: DatabaseConfig = DatabaseConfig()
    paging: PagingConfig = PagingConfig()
    features: FeaturesConfig = FeaturesConfig()
    metadata: MetadataConfig = MetadataConfig()
    duckdb: DuckDBConfig = DuckDBConfig()

    def with_overrides(self, section: str, **values) -> "Config":
        """Return a copy with ``values`` replaced in ``section``."""
        current = getattr(self, section)
        data = current.model_dump()
        data.update(values)
        try:
            updated = type(current).model_validate(data)
        except ValidationError as e:
            raise ConfigError(str(e)) from e
        return self.model_copy(update={section: updated})


_SECTIONS = {
    "server": ServerConfig,
    "database": DatabaseConfig,
    "paging": PagingConfig,
    "features": FeaturesConfig,
    "metadata": MetadataConfig,
    "duckdb": DuckDBConfig,
}


def env_var_name(section: str, key: str) -> str:
    """``("database", "table_includes")`` -> ``DUCKDBFS_DATABASE_TABLEINCLUDES``."""
    return f"{ENV_PREFIX}_{section.upper()}_{key.replace('_', '').upper()}"


def _resolve_env_vars(value, environ: Mapping[str, str]):
    """Replace ${VAR} placeholders with environment variable values."""
    if isinstance(value, str):
        return _ENV_RE.sub(lambda m: environ.get(m.group(1), m.group(0)), value)
    if isinstance(value, dict):
        return {k: _resolve_env_vars(v, environ) for k, v in value.items()}
    if isinstance(value, list):
        return [_resolve_env_vars(v, environ) for v in value]
    return value


def _is_sequence(annotation) -> bool:
    return typing.get_origin(annotation) is tuple


def _split_list(raw: str) -> list[str]:
    return [item.strip() for item in raw.split(",") if item.strip()]


def _apply_environment(data: dict, environ: Mapping[str, str]) -> dict:
    for section, model in _SECTIONS.items():
        for key, field in model.model_fields.items():
            raw = environ.get(env_var_name(section, key))
            if raw is None:
                continue
            if _is_sequence(field.annotation):
                value = _split_list(raw)
            elif raw == "" and not field.is_required() and field.default is None:
                value = None
            else:
                value = raw
            data.setdefault(section, {})[key] = value

    legacy = environ.get(LEGACY_PATH_ENV_VAR)
    if legacy and env_var_name("database", "path") not in environ:
        logger.warning(
            "%s is deprecated; use %s instead",
            LEGACY_PATH_ENV_VAR,
            env_var_name("database", "path"),
        )
        data.setdefault("database", {})["path"] = legacy
    return data


def _read_file(path: str, environ: Mapping[str, str]) -> dict:
    try:
        with open(path) as f:
            raw = yaml.safe_load(f)
    except OSError as e:
        raise ConfigError(f"Cannot read config file {path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in config file {path}: {e}") from e
    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise ConfigError(f"Config file {path} must contain a mapping")
    data = {}
    for section, values in raw.items():
        name = str(section).lower()
        if values is None:
            continue
        if name not in _SECTIONS or not isinstance(values, dict):
            raise ConfigError(f"Unknown or malformed config section {section!r}")
        data[name] = _resolve_env_vars(dict(values), environ)
    return data


def load_config(
    path: Optional[str] = None, environ: Optional[Mapping[str, str]] = None
) -> Config:
    """Build the process configuration: defaults < file < environment."""
    environ = os.environ if environ is None else environ
    if path is None:
        path = environ.get(CONFIG_ENV_VAR)
    if path is None and os.path.exists(DEFAULT_CONFIG_PATH):
        path = DEFAULT_CONFIG_PATH

    data = _read_file(path, environ) if path else {}
    data = _apply_environment(data, environ)

    try:
        config = Config.model_validate(data)
    except ValidationError as e:
        raise ConfigError(str(e)) from e
    if config.paging.limit_default > config.paging.limit_max:
        raise ConfigError("paging.limit_default exceeds paging.limit_max")
    if path:
        logger.info("Loaded configuration from %s", path)
    return config


def dump_config(config: Config) -> None:
    """Log the effective configuration at DEBUG level, masking secrets."""
    data = config.model_dump()
    if data["duckdb"]["api_key"]:
        data["duckdb"]["api_key"] = "***"
    for section, values in data.items():
        for key, value in values.items():
            logger.debug("  %s.%s = %r", section, key, value)
