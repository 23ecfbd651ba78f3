"""
specsheet — settings loader.

Purpose
- Load effective settings from defaults, ``specsheet.toml``, environment
  variables and command-line overrides.

What should be included in this file
- Precedence logic: CLI > env (SPECSHEET_<SECTION>_<KEY>) > file > defaults.
- TOML loading via ``tomllib``.
- Environment coercion driven by the type of each default value.

Functional requirements
- A missing default settings file is not an error; a missing ``--config``
  file is.
"""

from __future__ import annotations

import os
import tomllib
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Final, Literal

from specsheet.config.schema import assert_valid_config, default_config, merge_config
from specsheet.constants import DEFAULT_CONFIG_FILE, ENV_PREFIX
from specsheet.errors import ConfigLoadError

_BOOLEAN_TRUE: Final[frozenset[str]] = frozenset({"1", "true", "t", "yes", "y", "on"})
_BOOLEAN_FALSE: Final[frozenset[str]] = frozenset({"0", "false", "f", "no", "n", "off"})

ValueType = Literal["str", "int", "float", "bool"]


@dataclass(frozen=True, slots=True)
class _Binding:
    path: tuple[str, str]
    value_type: ValueType


def load_config(
    config_path: str | Path | None = None,
    *,
    cli_overrides: Mapping[str, object] | None = None,
    environ: Mapping[str, str] | None = None,
    cwd: Path | None = None,
) -> dict[str, Any]:
    """Load effective settings with precedence CLI > env > file > defaults.

    ``cli_overrides`` uses dotted keys (``"run.threads"``); ``None`` values
    mean the flag was not given and are skipped.
    """

    explicit = config_path is not None
    resolved = _resolve_config_path(config_path, cwd=cwd)
    env_map = os.environ if environ is None else environ

    merged = merge_config(default_config(), _load_toml_file(resolved, required=explicit))
    merged = assert_valid_config(merged)
    merged = merge_config(merged, _collect_env_overrides(merged, env_map))
    merged = merge_config(merged, _materialize_cli_overrides(cli_overrides or {}))
    return assert_valid_config(merged)


def _resolve_config_path(config_path: str | Path | None, *, cwd: Path | None) -> Path:
    base = cwd if cwd is not None else Path.cwd()
    if config_path is None:
        return base / DEFAULT_CONFIG_FILE
    path = Path(config_path).expanduser()
    return path if path.is_absolute() else base / path


def _load_toml_file(path: Path, *, required: bool) -> dict[str, Any]:
    if not path.exists():
        if required:
            raise ConfigLoadError(f"config file not found: {path}")
        return {}

    try:
        with path.open("rb") as handle:
            return tomllib.load(handle)
    except tomllib.TOMLDecodeError as exc:
        raise ConfigLoadError(f"invalid TOML in {path}: {exc}") from exc
    except OSError as exc:
        raise ConfigLoadError(f"unable to read config file {path}: {exc}") from exc


def _collect_env_overrides(
    config: Mapping[str, object], environ: Mapping[str, str]
) -> dict[str, Any]:
    overrides: dict[str, Any] = {}
    for env_name, binding in sorted(_build_bindings(config).items()):
        raw = environ.get(env_name)
        if raw is None:
            continue
        section, key = binding.path
        value = _coerce_env(raw, binding.value_type, env_name, binding.path)
        overrides.setdefault(section, {})[key] = value
    return overrides


def _build_bindings(config: Mapping[str, object]) -> dict[str, _Binding]:
    bindings: dict[str, _Binding] = {}
    for section, values in config.items():
        if not isinstance(values, Mapping):
            continue
        for key, value in values.items():
            kind = _kind_for_value(value)
            if kind is not None:
                bindings[_env_name_for_path((section, key))] = _Binding((section, key), kind)
    return bindings


def _kind_for_value(value: object) -> ValueType | None:
    if isinstance(value, bool):
        return "bool"
    if isinstance(value, int):
        return "int"
    if isinstance(value, float):
        return "float"
    if isinstance(value, str):
        return "str"
    return None


def _coerce_env(raw: str, value_type: ValueType, env_name: str, path: tuple[str, str]) -> object:
    value = raw.strip()
    dotted = ".".join(path)
    if value_type == "str":
        return value
    if value_type == "int":
        try:
            return int(value)
        except ValueError as exc:
            raise ConfigLoadError(f"{env_name} -> {dotted} must be an integer") from exc
    if value_type == "float":
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


def _materialize_cli_overrides(cli_overrides: Mapping[str, object]) -> dict[str, Any]:
    payload: dict[str, Any] = {}
    for key in sorted(cli_overrides):
        value = cli_overrides[key]
        if value is None:
            continue
        section, sep, name = key.partition(".")
        if not sep or not section or not name:
            raise ConfigLoadError(f"invalid CLI override key {key!r}")
        payload.setdefault(section, {})[name] = value
    return payload


def _env_name_for_path(path: tuple[str, ...]) -> str:
    return ENV_PREFIX + "_".join(part.upper() for part in path)


__all__ = ["load_config"]
