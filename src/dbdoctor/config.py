"""Configuration loader for dbdoctor.

This module centralises the logic for reading configuration values from
multiple sources, in increasing order of precedence:

1. Built-in defaults.
2. ``/etc/dbdoctor/config.yml`` (or an override path).
3. Environment variables prefixed with ``DBDOCTOR_``.
4. Explicit overrides supplied programmatically (CLI flags).

Environment keys use double underscores to express nesting, e.g.::

    export DBDOCTOR_PROBES__STABILITY_REPETITIONS=5
    export DBDOCTOR_PROBES__FAIL_ON_DEGRADED=false

Values are coerced via PyYAML's ``safe_load`` so that booleans and numbers are
parsed naturally. The connection string itself is only located here (config
value or the environment variable named by ``database_url_env``); it is parsed
and validated by the diagnostic pipeline.
"""
from __future__ import annotations

import os
from collections.abc import Mapping, MutableMapping, Sequence
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import cast

import yaml

from .doctor.models import DEFAULT_POOLING_PARAMS, ProbePolicy

ENV_PREFIX = "DBDOCTOR_"
CONFIG_ENV_VAR = f"{ENV_PREFIX}CONFIG_FILE"
RESERVED_ENV_KEYS = {CONFIG_ENV_VAR}


class ConfigError(RuntimeError):
    """Raised when configuration parsing fails."""


@dataclass(frozen=True)
class AppConfig:
    """Resolved configuration values for dbdoctor."""

    config_file: Path
    database_url: str | None
    database_url_env: str
    logs_dir: Path | None
    probes: ProbePolicy

    def to_dict(self) -> dict[str, object]:
        """Return a JSON-serialisable representation of the config."""
        policy = asdict(self.probes)
        policy["pooling_params"] = list(self.probes.pooling_params)
        return {
            "config_file": str(self.config_file),
            "database_url": "<set>" if self.database_url else None,
            "database_url_env": self.database_url_env,
            "logs_dir": str(self.logs_dir) if self.logs_dir is not None else None,
            "probes": policy,
        }

    def resolve_database_url(self, env: Mapping[str, str] | None = None) -> str | None:
        """Return the configured URL, falling back to ``database_url_env``."""
        if self.database_url:
            return self.database_url
        resolved_env = os.environ if env is None else env
        value = resolved_env.get(self.database_url_env)
        return value or None


DEFAULTS: dict[str, object] = {
    "config_file": "/etc/dbdoctor/config.yml",
    "database_url": None,
    "database_url_env": "DATABASE_URL",
    "logs_dir": None,
    "probes": {
        "stability_repetitions": 3,
        "stability_delay_ms": 1000,
        "query_timeout": 30.0,
        "capacity_warn_threshold": 0.8,
        "capacity_error_threshold": None,
        "fail_on_degraded": True,
        "pooling_params": list(DEFAULT_POOLING_PARAMS),
    },
}

ALLOWED_TOP_LEVEL_KEYS = set(DEFAULTS.keys())
ALLOWED_PROBE_KEYS = set(cast(Mapping[str, object], DEFAULTS["probes"]).keys())


def load_config(
    config_file: str | os.PathLike[str] | None = None,
    *,
    env: Mapping[str, str] | None = None,
    overrides: Mapping[str, object] | None = None,
) -> AppConfig:
    """Load and merge configuration sources into an :class:`AppConfig`."""
    merged: dict[str, object] = _deep_copy(DEFAULTS)
    resolved_env = dict(os.environ if env is None else env)

    config_default = _expect_str(merged["config_file"], "config_file")
    config_path = _determine_config_path(config_default, config_file, resolved_env)

    file_values = _load_yaml_file(config_path)
    if file_values:
        _deep_merge(merged, file_values)

    env_values = _build_env_overrides(resolved_env)
    if env_values:
        _deep_merge(merged, env_values)

    if overrides:
        _deep_merge(merged, dict(overrides))

    merged["config_file"] = str(config_path)

    _validate_structure(merged)

    return _build_app_config(merged)


def _determine_config_path(
    default_path: str,
    cli_override: str | os.PathLike[str] | None,
    env: Mapping[str, str],
) -> Path:
    if cli_override:
        return Path(cli_override)
    if CONFIG_ENV_VAR in env:
        return Path(env[CONFIG_ENV_VAR])
    return Path(default_path)


def _load_yaml_file(path: Path) -> dict[str, object]:
    if not path.exists():
        return {}
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:  # pragma: no cover - PyYAML owns detailed error
        raise ConfigError(f"Failed to parse config file {path}: {exc}") from exc
    if not isinstance(data, Mapping):
        raise ConfigError(f"Config file {path} must contain a mapping at the top level.")
    return _as_dict(data, f"file:{path}")


def _validate_structure(raw: Mapping[str, object]) -> None:
    unknown_keys = set(raw.keys()) - ALLOWED_TOP_LEVEL_KEYS
    if unknown_keys:
        joined = ", ".join(sorted(unknown_keys))
        raise ConfigError(f"Unknown configuration keys: {joined}.")

    probes = raw.get("probes")
    if probes is not None:
        probes_map = _as_dict(probes, "probes")
        unknown = set(probes_map.keys()) - ALLOWED_PROBE_KEYS
        if unknown:
            joined = ", ".join(sorted(unknown))
            raise ConfigError(f"Unknown probes configuration keys: {joined}.")


def _build_app_config(raw: Mapping[str, object]) -> AppConfig:
    config_file = _to_path(raw.get("config_file"))

    database_url_value = raw.get("database_url")
    if database_url_value is not None and not isinstance(database_url_value, str):
        raise ConfigError("database_url must be a string or null.")
    database_url: str | None = None
    if database_url_value:
        database_url = database_url_value.strip() or None

    database_url_env = _expect_str(
        raw.get("database_url_env", "DATABASE_URL"),
        "database_url_env",
    )
    if not database_url_env.strip():
        raise ConfigError("database_url_env must be a non-empty string.")

    logs_dir_value = raw.get("logs_dir")
    logs_dir = _to_path(logs_dir_value) if logs_dir_value not in (None, "") else None

    return AppConfig(
        config_file=config_file,
        database_url=database_url,
        database_url_env=database_url_env.strip(),
        logs_dir=logs_dir,
        probes=_build_policy(_as_dict(raw.get("probes"), "probes")),
    )


def _build_policy(mapping: Mapping[str, object]) -> ProbePolicy:
    defaults = ProbePolicy()
    repetitions = _expect_int(
        mapping.get("stability_repetitions"),
        "probes.stability_repetitions",
        default=defaults.stability_repetitions,
    )
    if repetitions < 1:
        raise ConfigError("probes.stability_repetitions must be at least 1.")

    delay_ms = _expect_int(
        mapping.get("stability_delay_ms"),
        "probes.stability_delay_ms",
        default=defaults.stability_delay_ms,
    )
    if delay_ms < 0:
        raise ConfigError("probes.stability_delay_ms must be non-negative.")

    query_timeout = _expect_positive_float(
        mapping.get("query_timeout"),
        "probes.query_timeout",
        default=defaults.query_timeout,
    )

    warn_threshold = _expect_positive_float(
        mapping.get("capacity_warn_threshold"),
        "probes.capacity_warn_threshold",
        default=defaults.capacity_warn_threshold,
    )
    if warn_threshold > 1:
        raise ConfigError("probes.capacity_warn_threshold must not exceed 1.0.")

    error_threshold: float | None = None
    error_value = mapping.get("capacity_error_threshold")
    if error_value not in (None, ""):
        error_threshold = _expect_positive_float(
            error_value,
            "probes.capacity_error_threshold",
            default=1.0,
        )
        if error_threshold <= warn_threshold:
            raise ConfigError(
                "probes.capacity_error_threshold must be greater than "
                "probes.capacity_warn_threshold."
            )

    fail_on_degraded = _expect_bool(
        mapping.get("fail_on_degraded"),
        "probes.fail_on_degraded",
        default=defaults.fail_on_degraded,
    )

    pooling_raw = mapping.get("pooling_params")
    if pooling_raw is None:
        pooling_params = defaults.pooling_params
    else:
        pooling_params = tuple(
            str(item).strip()
            for item in _as_sequence(pooling_raw, "probes.pooling_params")
            if str(item).strip()
        )

    return ProbePolicy(
        stability_repetitions=repetitions,
        stability_delay_ms=delay_ms,
        query_timeout=query_timeout,
        capacity_warn_threshold=warn_threshold,
        capacity_error_threshold=error_threshold,
        fail_on_degraded=fail_on_degraded,
        pooling_params=pooling_params,
    )


def _build_env_overrides(env: Mapping[str, str]) -> dict[str, object]:
    overrides: dict[str, object] = {}
    for key, value in env.items():
        if key in RESERVED_ENV_KEYS:
            continue
        if not key.startswith(ENV_PREFIX):
            continue
        suffix = key[len(ENV_PREFIX) :]
        path_segments = [segment.lower() for segment in suffix.split("__") if segment]
        if not path_segments:
            continue
        _assign_nested(overrides, path_segments, _coerce_value(value))
    return overrides


def _assign_nested(tree: MutableMapping[str, object], path: list[str], value: object) -> None:
    current: MutableMapping[str, object] = tree
    for segment in path[:-1]:
        existing = current.get(segment)
        if existing is None:
            new_child: MutableMapping[str, object] = {}
            current[segment] = new_child
            current = new_child
            continue
        if isinstance(existing, MutableMapping):
            current = cast(MutableMapping[str, object], existing)
            continue
        raise ConfigError(
            "Environment overrides conflict with existing scalar value at "
            f"{'.'.join(path)}"
        )
    current[path[-1]] = value


def _deep_merge(target: MutableMapping[str, object], overrides: Mapping[str, object]) -> None:
    for key, value in overrides.items():
        existing = target.get(key)
        if isinstance(existing, MutableMapping) and isinstance(value, Mapping):
            _deep_merge(existing, _as_dict(value, f"merge.{key}"))
            continue
        target[key] = value


def _deep_copy(source: Mapping[str, object]) -> dict[str, object]:
    result: dict[str, object] = {}
    for key, value in source.items():
        if isinstance(value, Mapping):
            result[key] = _deep_copy(_as_dict(value, f"copy.{key}"))
        elif isinstance(value, list):
            result[key] = list(value)
        else:
            result[key] = value
    return result


def _as_sequence(value: object, label: str) -> Sequence[object]:
    if isinstance(value, str):
        return value.split(",")
    if isinstance(value, bytes) or not isinstance(value, Sequence):
        raise ConfigError(f"Expected {label} to be a sequence. Got {type(value).__name__}.")
    return value


def _coerce_value(raw: str) -> object:
    raw = raw.strip()
    try:
        parsed = yaml.safe_load(raw)
    except yaml.YAMLError:  # pragma: no cover - treat as string if parsing fails
        return raw
    return parsed


def _to_path(value: object) -> Path:
    if value is None:
        raise ConfigError("Expected a filesystem path, received None.")
    if isinstance(value, Path):
        return value.expanduser()
    if isinstance(value, str):
        return Path(value).expanduser()
    raise ConfigError(f"Cannot convert value {value!r} to Path.")


def _expect_int(value: object | None, label: str, *, default: int) -> int:
    if value is None:
        return default
    if isinstance(value, bool):
        raise ConfigError(f"Expected {label} to be an integer. Got boolean {value!r}.")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value, 0)
        except ValueError as exc:
            raise ConfigError(f"Invalid integer for {label}: {value!r}.") from exc
    raise ConfigError(f"Expected {label} to be an integer. Got {type(value).__name__}.")


def _expect_bool(value: object | None, label: str, *, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"1", "true", "yes", "on"}:
            return True
        if lowered in {"0", "false", "no", "off"}:
            return False
    raise ConfigError(f"Expected {label} to be a boolean. Got {value!r}.")


def _expect_str(value: object, key: str) -> str:
    if isinstance(value, str):
        return value
    raise ConfigError(f"Expected {key} to resolve to a string. Got {value!r}.")


def _expect_positive_float(
    value: object | None,
    label: str,
    *,
    default: float,
) -> float:
    if value is None:
        return float(default)
    if isinstance(value, bool):
        raise ConfigError(f"Expected {label} to be a number. Got boolean {value!r}.")
    if isinstance(value, (int, float)):
        numeric = float(value)
    elif isinstance(value, str):
        try:
            numeric = float(value)
        except ValueError as exc:
            raise ConfigError(f"Invalid number for {label}: {value!r}.") from exc
    else:
        raise ConfigError(
            f"Expected {label} to be numeric. Got {type(value).__name__}."
        )
    if numeric <= 0:
        raise ConfigError(f"{label} must be greater than zero. Got {numeric}.")
    return numeric


def _as_dict(value: object | None, label: str) -> dict[str, object]:
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ConfigError(f"Expected {label} to be a mapping. Got {type(value).__name__}.")
    result: dict[str, object] = {}
    for key, item in value.items():
        if not isinstance(key, str):
            raise ConfigError(f"Mapping {label} must use string keys. Got {key!r}.")
        result[key] = item
    return result


__all__ = [
    "AppConfig",
    "ConfigError",
    "DEFAULTS",
    "load_config",
]
