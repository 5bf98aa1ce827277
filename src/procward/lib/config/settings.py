"""Operational config loader for process execution tunables."""

from __future__ import annotations

import logging
import os
import tomllib
from dataclasses import dataclass, fields
from pathlib import Path
from typing import cast

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "PROCWARD_CONFIG"
DEFAULT_CONFIG_RELATIVE_PATH = Path(".procward") / "config.toml"


@dataclass(frozen=True, slots=True)
class ProcwardConfig:
    """Resolved operational configuration for procward."""

    kill_grace_seconds: float = 1.0
    retry_attempts: int = 3
    retry_delay_seconds: float = 1.0
    max_parallel: int | None = None


_SECTION_KEY_MAP: dict[str, dict[str, str]] = {
    "retry": {
        "attempts": "retry_attempts",
        "max_attempts": "retry_attempts",
        "delay_seconds": "retry_delay_seconds",
    },
    "timeouts": {
        "kill_grace_seconds": "kill_grace_seconds",
    },
    "parallel": {
        "max_parallel": "max_parallel",
        "max_concurrency": "max_parallel",
    },
}

_TOP_LEVEL_KEY_MAP: dict[str, str] = {
    "kill_grace_seconds": "kill_grace_seconds",
    "retry_attempts": "retry_attempts",
    "retry_delay_seconds": "retry_delay_seconds",
    "max_parallel": "max_parallel",
}

_ENV_OVERRIDE_MAP: dict[str, str] = {
    "PROCWARD_KILL_GRACE_SECONDS": "kill_grace_seconds",
    "PROCWARD_RETRY_ATTEMPTS": "retry_attempts",
    "PROCWARD_RETRY_DELAY_SECONDS": "retry_delay_seconds",
    "PROCWARD_MAX_PARALLEL": "max_parallel",
}

_INT_FIELDS = frozenset({"retry_attempts", "max_parallel"})
_FLOAT_FIELDS = frozenset({"kill_grace_seconds", "retry_delay_seconds"})


def _validate_range(*, field_name: str, value: object, source: str) -> object:
    if field_name == "max_parallel":
        if value is not None and cast("int", value) < 1:
            raise ValueError(f"Invalid value for '{source}': expected int >= 1, got {value!r}.")
        return value
    if field_name == "retry_attempts" and cast("int", value) < 1:
        raise ValueError(f"Invalid value for '{source}': expected int >= 1, got {value!r}.")
    if field_name in _FLOAT_FIELDS and cast("float", value) < 0:
        raise ValueError(f"Invalid value for '{source}': expected float >= 0, got {value!r}.")
    return value


def _coerce_file_value(*, field_name: str, raw_value: object, source: str) -> object:
    if field_name in _INT_FIELDS:
        if isinstance(raw_value, bool) or not isinstance(raw_value, int):
            raise ValueError(
                f"Invalid value for '{source}': expected int, got "
                f"{type(raw_value).__name__} ({raw_value!r})."
            )
        return _validate_range(field_name=field_name, value=raw_value, source=source)

    if isinstance(raw_value, bool) or not isinstance(raw_value, int | float):
        raise ValueError(
            f"Invalid value for '{source}': expected float, got "
            f"{type(raw_value).__name__} ({raw_value!r})."
        )
    return _validate_range(field_name=field_name, value=float(raw_value), source=source)


def _coerce_env_value(*, field_name: str, raw_value: str, env_name: str) -> object:
    normalized = raw_value.strip()
    if field_name == "max_parallel" and normalized.lower() in {"", "none", "unbounded"}:
        return None

    if field_name in _INT_FIELDS:
        try:
            value: object = int(normalized)
        except ValueError as error:
            raise ValueError(
                f"Invalid environment override '{env_name}': expected int, got {raw_value!r}."
            ) from error
    else:
        try:
            value = float(normalized)
        except ValueError as error:
            raise ValueError(
                f"Invalid environment override '{env_name}': expected float, got {raw_value!r}."
            ) from error
    return _validate_range(field_name=field_name, value=value, source=env_name)


def _default_values() -> dict[str, object]:
    defaults = ProcwardConfig()
    return {field.name: getattr(defaults, field.name) for field in fields(ProcwardConfig)}


def _apply_toml_payload(
    *,
    values: dict[str, object],
    payload: dict[str, object],
    path: Path,
) -> None:
    for key, raw_value in payload.items():
        section_map = _SECTION_KEY_MAP.get(key)
        if section_map is not None:
            if not isinstance(raw_value, dict):
                raise ValueError(f"Invalid value for '{key}' in '{path}': expected table.")
            for section_key, section_value in cast("dict[str, object]", raw_value).items():
                field_name = section_map.get(section_key)
                if field_name is None:
                    logger.warning(
                        "Ignoring unknown procward config key '%s.%s'.",
                        key,
                        section_key,
                    )
                    continue
                values[field_name] = _coerce_file_value(
                    field_name=field_name,
                    raw_value=section_value,
                    source=f"{key}.{section_key}",
                )
            continue

        field_name = _TOP_LEVEL_KEY_MAP.get(key)
        if field_name is None:
            logger.warning("Ignoring unknown procward config key '%s'.", key)
            continue
        values[field_name] = _coerce_file_value(
            field_name=field_name,
            raw_value=raw_value,
            source=key,
        )


def _apply_env_overrides(values: dict[str, object]) -> None:
    for env_name, field_name in _ENV_OVERRIDE_MAP.items():
        raw_value = os.getenv(env_name)
        if raw_value is None:
            continue
        values[field_name] = _coerce_env_value(
            field_name=field_name,
            raw_value=raw_value,
            env_name=env_name,
        )


def resolve_config_path(path: Path | None = None) -> Path | None:
    """Pick the config file: explicit path, then $PROCWARD_CONFIG, then cwd."""

    if path is not None:
        return path
    from_env = os.getenv(CONFIG_ENV_VAR, "").strip()
    if from_env:
        return Path(from_env).expanduser()
    candidate = Path.cwd() / DEFAULT_CONFIG_RELATIVE_PATH
    if candidate.is_file():
        return candidate
    return None


def load_config(path: Path | None = None) -> ProcwardConfig:
    """Load the TOML config file if present and apply environment overrides."""

    values = _default_values()
    resolved = resolve_config_path(path)
    if resolved is not None:
        if not resolved.is_file():
            raise FileNotFoundError(f"procward config file not found: {resolved}")
        payload_obj = tomllib.loads(resolved.read_text(encoding="utf-8"))
        payload = cast("dict[str, object]", payload_obj)
        _apply_toml_payload(values=values, payload=payload, path=resolved)

    _apply_env_overrides(values)
    return ProcwardConfig(
        kill_grace_seconds=cast("float", values["kill_grace_seconds"]),
        retry_attempts=cast("int", values["retry_attempts"]),
        retry_delay_seconds=cast("float", values["retry_delay_seconds"]),
        max_parallel=cast("int | None", values["max_parallel"]),
    )


_CACHED_CONFIG: ProcwardConfig | None = None


def get_config() -> ProcwardConfig:
    """Return the process-wide config, loading it on first use."""

    global _CACHED_CONFIG
    if _CACHED_CONFIG is None:
        _CACHED_CONFIG = load_config()
    return _CACHED_CONFIG


def reset_config_cache() -> None:
    global _CACHED_CONFIG
    _CACHED_CONFIG = None
