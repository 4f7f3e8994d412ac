"""
nexus-compliance — configuration override loader.

File: src/nexus_compliance/config/loader.py

Purpose
- Build a partial override document from a TOML file and ``NEXUS_COMPLIANCE_``
  environment variables.

Functional requirements
- Precedence: explicit overrides > env > file.
- Environment variables map to leaves of the default document
  (``NEXUS_COMPLIANCE_MEMORY_MAX_CONVERSATIONS`` -> ``memory.max_conversations``)
  and are coerced to the default leaf's type.
- Validation is not performed here; the result is a candidate for the validator.

Non-functional requirements
- Deterministic output for identical inputs.
"""

from __future__ import annotations

import os
import tomllib
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Final, Literal

from nexus_compliance.config.schema import DEFAULT_CONFIG, merge_config
from nexus_compliance.constants import ENV_PREFIX

DEFAULT_CONFIG_FILE: Final[str] = "compliance.toml"

_BOOLEAN_TRUE: Final[frozenset[str]] = frozenset({"1", "true", "t", "yes", "y", "on"})
_BOOLEAN_FALSE: Final[frozenset[str]] = frozenset({"0", "false", "f", "no", "n", "off"})

_ValueType = Literal["str", "int", "float", "bool"]


@dataclass(frozen=True, slots=True)
class _Binding:
    path: tuple[str, ...]
    value_type: _ValueType


class ConfigLoadError(ValueError):
    """Raised when a config file cannot be read or an override cannot be coerced."""


def load_overrides(
    config_path: str | Path | None = None,
    *,
    environ: Mapping[str, str] | None = None,
    overrides: Mapping[str, object] | None = None,
) -> dict[str, Any]:
    """Return a partial document: file values, then env values, then explicit overrides."""

    file_payload: dict[str, Any] = {}
    if config_path is not None:
        file_payload = load_config_file(config_path)

    env_map = dict(os.environ if environ is None else environ)
    merged = merge_config(file_payload, collect_env_overrides(env_map))
    return merge_config(merged, _materialize_overrides(dict(overrides or {})))


def load_config_file(path: str | Path) -> dict[str, Any]:
    """Parse a TOML config file into a plain mapping."""

    resolved = Path(path).expanduser().resolve()
    if not resolved.exists():
        raise ConfigLoadError(f"config file not found: {resolved}")
    try:
        with resolved.open("rb") as handle:
            parsed = tomllib.load(handle)
    except tomllib.TOMLDecodeError as exc:
        raise ConfigLoadError(f"invalid TOML in {resolved}: {exc}") from exc
    except OSError as exc:
        raise ConfigLoadError(f"unable to read config file {resolved}: {exc}") from exc
    return parsed


def collect_env_overrides(environ: Mapping[str, str]) -> dict[str, Any]:
    """Collect ``NEXUS_COMPLIANCE_*`` variables that name a known config leaf."""

    bindings = _build_bindings()
    result: dict[str, Any] = {}
    for env_name in sorted(bindings):
        raw = environ.get(env_name)
        if raw is None:
            continue
        binding = bindings[env_name]
        _set_nested(result, binding.path, _coerce_env(raw, binding, env_name))
    return result


def env_name_for_path(path: tuple[str, ...]) -> str:
    return ENV_PREFIX + "_".join(part.upper() for part in path)


def _build_bindings() -> dict[str, _Binding]:
    bindings: dict[str, _Binding] = {}
    for path, value in _iter_scalar_paths(DEFAULT_CONFIG):
        kind = _kind_for_value(value)
        if kind is not None:
            bindings[env_name_for_path(path)] = _Binding(path=path, value_type=kind)
    return bindings


def _iter_scalar_paths(
    payload: Mapping[str, object],
    prefix: tuple[str, ...] = (),
) -> list[tuple[tuple[str, ...], object]]:
    pairs: list[tuple[tuple[str, ...], object]] = []
    for key in sorted(payload):
        value = payload[key]
        path = (*prefix, key)
        if isinstance(value, Mapping):
            pairs.extend(_iter_scalar_paths(value, path))
        else:
            pairs.append((path, value))
    return pairs


def _kind_for_value(value: object) -> _ValueType | None:
    if isinstance(value, bool):
        return "bool"
    if isinstance(value, int):
        return "int"
    if isinstance(value, float):
        return "float"
    if isinstance(value, str):
        return "str"
    return None


def _coerce_env(raw: str, binding: _Binding, env_name: str) -> object:
    value = raw.strip()
    dotted = ".".join(binding.path)
    if binding.value_type == "str":
        return value
    if binding.value_type == "int":
        try:
            return int(value)
        except ValueError as exc:
            raise ConfigLoadError(f"{env_name} -> {dotted} must be an integer") from exc
    if binding.value_type == "float":
        try:
            return float(value)
        except ValueError as exc:
            raise ConfigLoadError(f"{env_name} -> {dotted} must be a number") from exc

    lowered = value.lower()
    if lowered in _BOOLEAN_TRUE:
        return True
    if lowered in _BOOLEAN_FALSE:
        return False
    raise ConfigLoadError(
        f"{env_name} -> {dotted} must be a boolean (true/false/1/0/yes/no/on/off)"
    )


def _materialize_overrides(overrides: Mapping[str, object]) -> dict[str, Any]:
    payload: dict[str, Any] = {}
    for key in sorted(overrides):
        value = overrides[key]
        if "." in key:
            path = tuple(part for part in key.split(".") if part)
            if not path:
                raise ConfigLoadError(f"invalid override key {key!r}")
            _set_nested(payload, path, value)
        elif isinstance(value, Mapping):
            payload[key] = merge_config(payload.get(key, {}), value)
        else:
            payload[key] = value
    return payload


def _set_nested(target: dict[str, Any], path: tuple[str, ...], value: object) -> None:
    cursor = target
    for part in path[:-1]:
        next_node = cursor.get(part)
        if not isinstance(next_node, dict):
            next_node = {}
            cursor[part] = next_node
        cursor = next_node
    cursor[path[-1]] = value


__all__ = [
    "ConfigLoadError",
    "DEFAULT_CONFIG_FILE",
    "collect_env_overrides",
    "env_name_for_path",
    "load_config_file",
    "load_overrides",
]
